"""
Money and tax calculator.

Totals are computed per line item and rounded half-up to the currency minor
unit before they are summed, so the quotation totals always equal the sum of
what is printed on each line.
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Sequence, Tuple

from quotation_tool.exceptions import InvalidLineItem

HUNDRED = Decimal('100')


@dataclass(frozen=True)
class PricingPolicy:
    """
    Per-company pricing configuration passed explicitly into each calculation.

    Items without their own discount or tax percentage fall back to the
    policy defaults.
    """
    minor_units: int = 2
    default_discount_percent: Decimal = Decimal('0')
    default_tax_rate_percent: Decimal = Decimal('0')

    @property
    def quantum(self) -> Decimal:
        return Decimal(1).scaleb(-self.minor_units)

    def to_dict(self):
        return {
            'minor_units': self.minor_units,
            'default_discount_percent': self.default_discount_percent,
            'default_tax_rate_percent': self.default_tax_rate_percent,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            minor_units=int(data.get('minor_units', 2)),
            default_discount_percent=Decimal(str(data.get('default_discount_percent') or 0)),
            default_tax_rate_percent=Decimal(str(data.get('default_tax_rate_percent') or 0)),
        )


@dataclass(frozen=True)
class LineTotals:
    line_total: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total: Decimal


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    grand_total: Decimal
    lines: Tuple[LineTotals, ...] = ()

    def to_dict(self):
        return {
            'subtotal': str(self.subtotal),
            'discount_amount': str(self.discount_amount),
            'tax_amount': str(self.tax_amount),
            'grand_total': str(self.grand_total),
        }


def round_money(value: Decimal, minor_units: int = 2) -> Decimal:
    """Round half-up to the given number of decimals."""
    return Decimal(value).quantize(Decimal(1).scaleb(-minor_units), rounding=ROUND_HALF_UP)


def _to_decimal(value, index: int, field: str) -> Decimal:
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidLineItem(index, field, f'{field} must be a number')
    # NaN and Infinity parse but cannot be compared or rounded
    if not number.is_finite():
        raise InvalidLineItem(index, field, f'{field} must be a number')
    return number


def _percent(value, default: Decimal, index: int, field: str) -> Decimal:
    if value is None:
        return default
    percent = _to_decimal(value, index, field)
    if percent < 0 or percent > HUNDRED:
        raise InvalidLineItem(index, field, f'{field} must be between 0 and 100')
    return percent


def compute_line(item, index: int, policy: PricingPolicy) -> LineTotals:
    """Compute the rounded totals of a single line item."""
    quantity = item.quantity
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidLineItem(index, 'quantity', 'quantity must be a positive integer')

    unit_price = _to_decimal(item.unit_price, index, 'unit_price')
    if unit_price < 0:
        raise InvalidLineItem(index, 'unit_price', 'unit_price cannot be negative')

    discount_percent = _percent(item.discount_percent, policy.default_discount_percent, index, 'discount_percent')
    tax_rate = _percent(item.tax_rate_percent, policy.default_tax_rate_percent, index, 'tax_rate_percent')

    line_total = round_money(quantity * unit_price, policy.minor_units)
    after_discount = round_money(line_total * (1 - discount_percent / HUNDRED), policy.minor_units)
    line_tax = round_money(after_discount * tax_rate / HUNDRED, policy.minor_units)

    return LineTotals(
        line_total=line_total,
        discount_amount=line_total - after_discount,
        tax_amount=line_tax,
        total=after_discount + line_tax,
    )


def compute_totals(items: Sequence, policy: Optional[PricingPolicy] = None) -> Totals:
    """
    Compute subtotal, discount, tax and grand total for a list of line items.

    Raises:
        InvalidLineItem: if the list is empty or any item breaks its contract.
    """
    policy = policy or PricingPolicy()
    if not items:
        raise InvalidLineItem(0, 'items', 'at least one line item is required')

    lines = tuple(compute_line(item, index, policy) for index, item in enumerate(items))

    subtotal = sum((line.line_total for line in lines), Decimal('0'))
    discount = sum((line.discount_amount for line in lines), Decimal('0'))
    tax = sum((line.tax_amount for line in lines), Decimal('0'))

    return Totals(
        subtotal=round_money(subtotal, policy.minor_units),
        discount_amount=round_money(discount, policy.minor_units),
        tax_amount=round_money(tax, policy.minor_units),
        grand_total=round_money(subtotal - discount + tax, policy.minor_units),
        lines=lines,
    )
