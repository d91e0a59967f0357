"""Quotation validator. Collects every violation instead of stopping at the first."""
from dataclasses import dataclass
from typing import Optional, Tuple

from quotation_tool.engine.money import PricingPolicy, compute_line, compute_totals
from quotation_tool.exceptions import InvalidLineItem

MISSING_CLIENT = 'missing_client'
NO_ITEMS = 'no_items'
INVALID_LINE_ITEM = 'invalid_line_item'
INVALID_VALIDITY = 'invalid_validity'
STALE_TOTALS = 'stale_totals'

_TOTAL_FIELDS = ('subtotal', 'discount_amount', 'tax_amount', 'grand_total')


@dataclass(frozen=True)
class ValidationError:
    code: str
    field: str
    message: str

    def to_dict(self):
        return {'code': self.code, 'field': self.field, 'message': self.message}


@dataclass(frozen=True)
class ValidationResult:
    errors: Tuple[ValidationError, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def codes(self):
        return [error.code for error in self.errors]

    def to_dict(self):
        return {
            'is_valid': self.is_valid,
            'errors': [error.to_dict() for error in self.errors],
        }


def validate(quotation, policy: Optional[PricingPolicy] = None) -> ValidationResult:
    """Validate a quotation aggregate before it is sent."""
    policy = policy or PricingPolicy()
    errors = []

    if quotation.client_ref is None:
        errors.append(ValidationError(MISSING_CLIENT, 'client_ref', 'A client is required'))

    if not quotation.items:
        errors.append(ValidationError(NO_ITEMS, 'items', 'At least one line item is required'))

    items_ok = bool(quotation.items)
    for index, item in enumerate(quotation.items):
        try:
            compute_line(item, index, policy)
        except InvalidLineItem as e:
            items_ok = False
            errors.append(ValidationError(INVALID_LINE_ITEM, f'items[{index}].{e.field}', e.message))

    if quotation.valid_until is None:
        errors.append(ValidationError(INVALID_VALIDITY, 'valid_until', 'A validity date is required'))
    elif quotation.valid_until <= quotation.created_at.date():
        errors.append(ValidationError(
            INVALID_VALIDITY, 'valid_until',
            f'Validity date {quotation.valid_until} must be after the creation date',
        ))

    # Totals are only comparable when every line could be priced
    if items_ok:
        totals = compute_totals(quotation.items, policy)
        stale = [
            name for name in _TOTAL_FIELDS
            if abs(getattr(quotation, name) - getattr(totals, name)) > policy.quantum
        ]
        if stale:
            errors.append(ValidationError(
                STALE_TOTALS, ','.join(stale),
                'Stored totals do not match the line items; recalculate before sending',
            ))

    return ValidationResult(errors=tuple(errors))
