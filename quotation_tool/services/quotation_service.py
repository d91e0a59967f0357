"""
Quotation service: persistence and orchestration around the pricing and
workflow engine.

Every status change follows the same path: load the row, rebuild the
aggregate, refresh totals while in draft, ask the workflow for the
transition, write the new state back with a version check, commit, then
hand the side effects to the notification dispatcher.
"""
import logging
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from quotation_tool.blueprints.metrics import record_transition
from quotation_tool.engine.models import LineItem, QuotationAggregate, QuotationStatus, TransitionResult
from quotation_tool.engine.money import PricingPolicy, Totals, compute_totals
from quotation_tool.engine.validator import ValidationResult, validate
from quotation_tool.engine.workflow import available_transitions, parse_status, transition
from quotation_tool.exceptions import (
    BusinessLogicError, ConcurrentUpdateError, InvalidLineItem, ItemsFrozen, NotFoundError, TransitionError,
)
from quotation_tool.models import AppUser, Client, Quotation, QuotationLine, AuditAction
from quotation_tool.services.audit_service import log_action
from quotation_tool.services.company_service import get_company_settings, get_pricing_policy
from quotation_tool.services.notification_service import dispatch_side_effects

logger = logging.getLogger(__name__)

# Decimal places the line columns can hold without rounding
UNIT_PRICE_PLACES = 4
PERCENT_PLACES = 4
NUMBER_RETRIES = 3


# ---------------------------------------------------------------------------
# Input parsing
# ---------------------------------------------------------------------------

def _parse_number(value, index: int, field: str, places: int) -> Decimal:
    if isinstance(value, bool):
        raise InvalidLineItem(index, field, f'{field} must be a number')
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidLineItem(index, field, f'{field} must be a number')
    if not number.is_finite():
        raise InvalidLineItem(index, field, f'{field} must be a number')
    if number.as_tuple().exponent < -places:
        raise InvalidLineItem(index, field, f'{field} accepts at most {places} decimal places')
    return number


def parse_line_items(items_data: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Convert API line item payloads into typed values.

    Range checks (positive quantity, non-negative price, 0-100 percentages)
    are left to the calculator so every caller gets the same errors.
    """
    if not isinstance(items_data, (list, tuple)):
        raise InvalidLineItem(0, 'items', 'items must be a list')

    parsed = []
    for index, data in enumerate(items_data):
        if not isinstance(data, dict):
            raise InvalidLineItem(index, 'item', 'line item must be an object')

        description = str(data.get('description') or '').strip()
        if not description:
            raise InvalidLineItem(index, 'description', 'description is required')

        quantity = data.get('quantity')
        if isinstance(quantity, str) and quantity.strip().isdigit():
            quantity = int(quantity.strip())

        if data.get('unit_price') is None:
            raise InvalidLineItem(index, 'unit_price', 'unit_price is required')
        unit_price = _parse_number(data['unit_price'], index, 'unit_price', UNIT_PRICE_PLACES)

        discount = data.get('discount_percent')
        tax = data.get('tax_rate_percent')

        parsed.append({
            'description': description[:500],
            'sku': (data.get('sku') or None),
            'unit': (data.get('unit') or None),
            'quantity': quantity,
            'unit_price': unit_price,
            'discount_percent': None if discount is None else _parse_number(discount, index, 'discount_percent', PERCENT_PLACES),
            'tax_rate_percent': None if tax is None else _parse_number(tax, index, 'tax_rate_percent', PERCENT_PLACES),
        })
    return parsed


def _line_items(parsed: Sequence[Dict[str, Any]]) -> Tuple[LineItem, ...]:
    return tuple(
        LineItem(
            description=item['description'],
            quantity=item['quantity'],
            unit_price=item['unit_price'],
            discount_percent=item['discount_percent'],
            tax_rate_percent=item['tax_rate_percent'],
        )
        for item in parsed
    )


def price_line_items(items_data, policy: PricingPolicy) -> Tuple[List[Dict[str, Any]], Optional[Totals]]:
    """Parse and price API line items. Totals are None for an empty list."""
    parsed = parse_line_items(items_data or [])
    return parsed, (compute_totals(_line_items(parsed), policy) if parsed else None)


def _parse_valid_until(value) -> Optional[date]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise BusinessLogicError(f'Invalid date: {value}. Use YYYY-MM-DD', payload={'field': 'valid_until'})


def _check_valid_until(valid_until: Optional[date], created_on: date) -> Optional[date]:
    if valid_until is not None and valid_until <= created_on:
        raise BusinessLogicError(
            f'Validity date {valid_until} must be after {created_on}',
            payload={'field': 'valid_until'},
        )
    return valid_until


# ---------------------------------------------------------------------------
# Row <-> aggregate
# ---------------------------------------------------------------------------

def _decimal(value) -> Decimal:
    return Decimal('0.00') if value is None else Decimal(value)


def to_aggregate(record: Quotation) -> QuotationAggregate:
    """Rebuild the immutable aggregate from a persisted quotation."""
    items = tuple(
        LineItem(
            description=line.description,
            quantity=line.quantity,
            unit_price=_decimal(line.unit_price),
            discount_percent=None if line.discount_percent is None else Decimal(line.discount_percent),
            tax_rate_percent=None if line.tax_rate_percent is None else Decimal(line.tax_rate_percent),
            id=line.id,
        )
        for line in record.lines
    )
    return QuotationAggregate(
        id=record.id,
        number=record.number,
        client_ref=record.client_id,
        items=items,
        status=QuotationStatus(record.status),
        valid_until=record.valid_until,
        created_at=record.created_at,
        updated_at=record.updated_at,
        subtotal=_decimal(record.subtotal),
        discount_amount=_decimal(record.discount_amount),
        tax_amount=_decimal(record.tax_amount),
        grand_total=_decimal(record.grand_total),
        currency=record.currency,
        version=record.version,
        owner_ref=record.owner_id,
        sent_at=record.sent_at,
        viewed_at=record.viewed_at,
        closed_at=record.closed_at,
        rejection_reason=record.rejection_reason,
        cancellation_reason=record.cancellation_reason,
    )


def _apply_aggregate(record: Quotation, aggregate: QuotationAggregate) -> None:
    record.status = aggregate.status.value
    record.subtotal = aggregate.subtotal
    record.discount_amount = aggregate.discount_amount
    record.tax_amount = aggregate.tax_amount
    record.grand_total = aggregate.grand_total
    record.sent_at = aggregate.sent_at
    record.viewed_at = aggregate.viewed_at
    record.closed_at = aggregate.closed_at
    record.rejection_reason = aggregate.rejection_reason
    record.cancellation_reason = aggregate.cancellation_reason
    record.updated_at = aggregate.updated_at or datetime.now()


def _build_lines(parsed: Sequence[Dict[str, Any]], totals: Totals) -> List[QuotationLine]:
    return [
        QuotationLine(
            position=position,
            description=item['description'],
            sku=item['sku'],
            unit=item['unit'],
            quantity=item['quantity'],
            unit_price=item['unit_price'],
            discount_percent=item['discount_percent'],
            tax_rate_percent=item['tax_rate_percent'],
            line_total=line.line_total,
            discount_amount=line.discount_amount,
            tax_amount=line.tax_amount,
            total=line.total,
        )
        for position, (item, line) in enumerate(zip(parsed, totals.lines), start=1)
    ]


def _store_line_totals(record: Quotation, totals: Totals) -> None:
    for line, line_totals in zip(record.lines, totals.lines):
        line.line_total = line_totals.line_total
        line.discount_amount = line_totals.discount_amount
        line.tax_amount = line_totals.tax_amount
        line.total = line_totals.total


def _refreshed(aggregate: QuotationAggregate, policy: PricingPolicy) -> Tuple[QuotationAggregate, Optional[Totals]]:
    """Recalculate a draft's totals; non-drafts and unpriceable items are returned as they are."""
    if aggregate.status is not QuotationStatus.DRAFT or not aggregate.items:
        return aggregate, None
    try:
        totals = compute_totals(aggregate.items, policy)
    except InvalidLineItem as e:
        logger.info(f"[QUOTE] Totals of {aggregate.number} left as stored: {e.message}")
        return aggregate, None
    return aggregate.with_totals(totals), totals


def save_aggregate(session, record: Quotation, aggregate: QuotationAggregate, expected_version: Optional[int] = None) -> Quotation:
    """
    Write an aggregate back to its row (flush only, the caller commits).

    The loaded version must still be the stored one; SQLAlchemy adds
    `WHERE version = ...` to the UPDATE and bumps the version.

    Raises:
        ConcurrentUpdateError: if another writer got there first
    """
    for expected in (expected_version, aggregate.version):
        if expected is not None and record.version != expected:
            raise ConcurrentUpdateError(record.id, expected, record.version)

    _apply_aggregate(record, aggregate)
    try:
        session.flush()
    except StaleDataError:
        session.rollback()
        logger.warning(f"[QUOTE] Concurrent update detected on quotation {aggregate.id}")
        raise ConcurrentUpdateError(aggregate.id, aggregate.version)
    return record


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def get_quotation(session, company_id: int, quotation_id: int) -> Quotation:
    record = session.query(Quotation).filter(
        Quotation.id == quotation_id,
        Quotation.company_id == company_id,
    ).first()
    if not record:
        raise NotFoundError(f'Quotation {quotation_id} not found')
    return record


def list_quotations(
    session,
    company_id: int,
    status: Optional[str] = None,
    client_id: Optional[int] = None,
    search: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[Quotation]:
    query = session.query(Quotation).filter(Quotation.company_id == company_id)

    if status:
        try:
            query = query.filter(Quotation.status == parse_status(status).value)
        except ValueError:
            raise BusinessLogicError(f'Unknown status: {status}', payload={'field': 'status'})

    if client_id:
        query = query.filter(Quotation.client_id == client_id)

    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Quotation.number.ilike(pattern), Quotation.title.ilike(pattern)))

    return query.order_by(Quotation.created_at.desc(), Quotation.id.desc()).limit(limit).offset(offset).all()


def validate_quotation(session, company_id: int, quotation_id: int) -> ValidationResult:
    """Validation report of the quotation as stored (stale totals are reported, not fixed)."""
    record = get_quotation(session, company_id, quotation_id)
    return validate(to_aggregate(record), get_pricing_policy(session, company_id))


def get_available_transitions(session, record: Quotation, now: Optional[datetime] = None) -> List[QuotationStatus]:
    policy = get_pricing_policy(session, record.company_id)
    aggregate, _ = _refreshed(to_aggregate(record), policy)
    return available_transitions(aggregate, now=now, policy=policy)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def _check_client(session, company_id: int, client_id) -> Optional[int]:
    if client_id in (None, ''):
        return None
    client = session.query(Client).filter(Client.id == client_id, Client.company_id == company_id).first()
    if not client:
        raise NotFoundError(f'Client {client_id} not found')
    return client.id


def _check_owner(session, company_id: int, owner_id) -> Optional[int]:
    if owner_id is None:
        return None
    owner = session.query(AppUser).filter(AppUser.id == owner_id, AppUser.company_id == company_id).first()
    if not owner:
        raise NotFoundError(f'User {owner_id} not found')
    return owner.id


def generate_quotation_number(session, company_id: int, prefix: str, year: Optional[int] = None) -> str:
    """Next number of the company for the year: <prefix>-<year>-<seq:04d>."""
    year = year or date.today().year
    base = f"{prefix}-{year}-"
    numbers = session.query(Quotation.number).filter(
        Quotation.company_id == company_id,
        Quotation.number.like(f"{base}%"),
    ).all()

    last = 0
    for (number,) in numbers:
        suffix = number[len(base):]
        if suffix.isdigit():
            last = max(last, int(suffix))
    return f"{base}{last + 1:04d}"


def create_quotation(
    session,
    company_id: int,
    items: Optional[Sequence[Dict[str, Any]]] = None,
    client_id: Optional[int] = None,
    owner_id: Optional[int] = None,
    valid_until=None,
    title: Optional[str] = None,
    notes: Optional[str] = None,
    terms: Optional[str] = None,
    user_id: Optional[int] = None,
    source_quotation_id: Optional[int] = None,
    template_id: Optional[int] = None,
) -> Quotation:
    """
    Create a draft quotation.

    Drafts may be incomplete (no client, no items); the validator reports
    what is missing when the quotation is sent.

    Raises:
        InvalidLineItem: if a line item is malformed
        NotFoundError: if the client or owner is not part of the company
    """
    settings = get_company_settings(session, company_id)
    policy = get_pricing_policy(session, company_id)

    client_id = _check_client(session, company_id, client_id)
    owner_id = _check_owner(session, company_id, owner_id if owner_id is not None else user_id)

    parsed, totals = price_line_items(items, policy)

    today = date.today()
    valid_until = (
        _check_valid_until(_parse_valid_until(valid_until), today)
        or today + timedelta(days=settings.quote_valid_days)
    )

    for attempt in range(NUMBER_RETRIES):
        now = datetime.now()
        record = Quotation(
            company_id=company_id,
            number=generate_quotation_number(session, company_id, settings.quote_number_prefix, now.year),
            title=(title or '').strip() or None,
            client_id=client_id,
            owner_id=owner_id,
            source_quotation_id=source_quotation_id,
            template_id=template_id,
            status=QuotationStatus.DRAFT.value,
            currency=settings.currency,
            valid_until=valid_until,
            notes=notes or None,
            terms=terms or None,
            subtotal=totals.subtotal if totals else Decimal('0.00'),
            discount_amount=totals.discount_amount if totals else Decimal('0.00'),
            tax_amount=totals.tax_amount if totals else Decimal('0.00'),
            grand_total=totals.grand_total if totals else Decimal('0.00'),
            created_at=now,
            updated_at=now,
        )
        if totals:
            record.lines = _build_lines(parsed, totals)

        try:
            session.add(record)
            session.flush()
            log_action(
                session,
                AuditAction.QUOTATION_DUPLICATED if source_quotation_id else AuditAction.QUOTATION_CREATED,
                company_id=company_id,
                user_id=user_id,
                resource_type='quotation',
                resource_id=record.id,
                details={'number': record.number, 'grand_total': record.grand_total, 'source_quotation_id': source_quotation_id},
            )
            session.commit()
        except IntegrityError:
            # Number taken by a concurrent request
            session.rollback()
            logger.warning(f"[QUOTE] Number collision for company {company_id}, attempt {attempt + 1}")
            continue
        except Exception:
            session.rollback()
            raise

        logger.info(f"[QUOTE] Quotation {record.number} created for company {company_id} ({record.grand_total} {record.currency})")
        return record

    raise BusinessLogicError('Could not assign a quotation number, try again', status_code=409)


def update_quotation_items(
    session,
    company_id: int,
    quotation_id: int,
    items: Sequence[Dict[str, Any]],
    expected_version: Optional[int] = None,
    user_id: Optional[int] = None,
) -> Quotation:
    """
    Replace the line items of a draft and recompute its totals.

    Raises:
        ItemsFrozen: if the quotation is no longer a draft
        InvalidLineItem: if a line item is malformed or the list is empty
        ConcurrentUpdateError: if `expected_version` is stale
    """
    record = get_quotation(session, company_id, quotation_id)
    policy = get_pricing_policy(session, company_id)

    parsed = parse_line_items(items)
    aggregate = to_aggregate(record).with_items(_line_items(parsed))
    totals = compute_totals(aggregate.items, policy)
    aggregate = aggregate.with_totals(totals)

    try:
        if expected_version is not None and record.version != expected_version:
            raise ConcurrentUpdateError(record.id, expected_version, record.version)
        record.lines = _build_lines(parsed, totals)
        save_aggregate(session, record, aggregate)
        log_action(
            session,
            AuditAction.QUOTATION_UPDATED,
            company_id=company_id,
            user_id=user_id,
            resource_type='quotation',
            resource_id=record.id,
            details={'items': len(parsed), 'grand_total': aggregate.grand_total},
        )
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"[QUOTE] Items of {record.number} replaced ({len(parsed)} lines, total {record.grand_total})")
    return record


DETAIL_FIELDS = ('title', 'notes', 'terms', 'client_id', 'valid_until')


def update_quotation_details(
    session,
    company_id: int,
    quotation_id: int,
    data: Dict[str, Any],
    expected_version: Optional[int] = None,
    user_id: Optional[int] = None,
) -> Quotation:
    """Update header fields of a draft (title, notes, terms, client, validity)."""
    record = get_quotation(session, company_id, quotation_id)
    if record.status != QuotationStatus.DRAFT.value:
        raise ItemsFrozen(record.status)

    unknown = set(data) - set(DETAIL_FIELDS)
    if unknown:
        raise BusinessLogicError(f"Unknown fields: {', '.join(sorted(unknown))}")

    changes = {}
    if 'client_id' in data:
        changes['client_id'] = _check_client(session, company_id, data['client_id'])
    if 'valid_until' in data:
        changes['valid_until'] = _check_valid_until(_parse_valid_until(data['valid_until']), record.created_at.date())
    for field in ('title', 'notes', 'terms'):
        if field in data:
            changes[field] = (data[field] or '').strip() or None

    try:
        if expected_version is not None and record.version != expected_version:
            raise ConcurrentUpdateError(record.id, expected_version, record.version)
        for field, value in changes.items():
            setattr(record, field, value)
        record.updated_at = datetime.now()
        session.flush()
        log_action(
            session,
            AuditAction.QUOTATION_UPDATED,
            company_id=company_id,
            user_id=user_id,
            resource_type='quotation',
            resource_id=record.id,
            details=changes,
        )
        session.commit()
    except StaleDataError:
        session.rollback()
        raise ConcurrentUpdateError(quotation_id, expected_version)
    except Exception:
        session.rollback()
        raise

    return record


def transition_quotation(
    session,
    company_id: int,
    quotation_id: int,
    target_status,
    user_id: Optional[int] = None,
    reason: Optional[str] = None,
    expected_version: Optional[int] = None,
    now: Optional[datetime] = None,
    dispatch: bool = True,
) -> Tuple[Quotation, TransitionResult]:
    """
    Request a status change and persist it.

    Nothing is written when the workflow rejects the request. Side effects
    are dispatched only after the new status is committed.

    Returns:
        (quotation row, TransitionResult)

    Raises:
        TransitionError subclasses, ValidationFailed, ConcurrentUpdateError, NotFoundError
    """
    now = now or datetime.now()
    record = get_quotation(session, company_id, quotation_id)
    policy = get_pricing_policy(session, company_id)

    aggregate, totals = _refreshed(to_aggregate(record), policy)
    result = transition(aggregate, target_status, now=now, reason=reason, policy=policy)

    try:
        if totals is not None:
            _store_line_totals(record, totals)
        save_aggregate(session, record, result.quotation, expected_version)
        log_action(
            session,
            AuditAction.QUOTATION_STATUS_CHANGED,
            company_id=company_id,
            user_id=user_id,
            resource_type='quotation',
            resource_id=record.id,
            details={
                'from': result.previous_status.value,
                'to': result.new_status.value,
                'reason': reason,
            },
        )
        session.commit()
    except Exception:
        session.rollback()
        raise

    record_transition(result.previous_status.value, result.new_status.value)
    logger.info(
        f"[QUOTE] {record.number}: {result.previous_status.value} -> {result.new_status.value} (version {record.version})"
    )

    if dispatch and result.side_effects:
        try:
            dispatch_side_effects(session, company_id, record.id, result.side_effects)
        except Exception as e:
            # The status change is committed; undelivered notifications are logged for follow-up
            session.rollback()
            logger.exception(f"[QUOTE] Dispatch failed for {record.number}: {e}")

    return record, result


def duplicate_quotation(session, company_id: int, quotation_id: int, user_id: Optional[int] = None) -> Quotation:
    """Create a new draft with the items of an existing quotation (any status)."""
    source = get_quotation(session, company_id, quotation_id)
    items = [
        {
            'description': line.description,
            'sku': line.sku,
            'unit': line.unit,
            'quantity': line.quantity,
            'unit_price': line.unit_price,
            'discount_percent': line.discount_percent,
            'tax_rate_percent': line.tax_rate_percent,
        }
        for line in source.lines
    ]
    return create_quotation(
        session,
        company_id,
        items=items,
        client_id=source.client_id,
        owner_id=source.owner_id if source.owner_id is not None else user_id,
        title=source.title,
        notes=source.notes,
        terms=source.terms,
        user_id=user_id,
        source_quotation_id=source.id,
    )


def expire_overdue_quotations(session, now: Optional[datetime] = None, company_id: Optional[int] = None) -> List[Quotation]:
    """
    Move sent/viewed quotations whose validity date is over to expired.

    Quotations changed concurrently are skipped and picked up by the next run.
    """
    now = now or datetime.now()
    query = session.query(Quotation.id, Quotation.company_id).filter(
        Quotation.status.in_([QuotationStatus.SENT.value, QuotationStatus.VIEWED.value]),
        Quotation.valid_until < now.date(),
    )
    if company_id is not None:
        query = query.filter(Quotation.company_id == company_id)

    expired = []
    for quotation_id, owner_company_id in query.order_by(Quotation.id).all():
        try:
            record, _ = transition_quotation(
                session, owner_company_id, quotation_id, QuotationStatus.EXPIRED, now=now,
            )
        except (TransitionError, ConcurrentUpdateError) as e:
            logger.warning(f"[QUOTE] Quotation {quotation_id} not expired: {e.message}")
            continue
        expired.append(record)

    logger.info(f"[QUOTE] Expiry sweep at {now.isoformat()}: {len(expired)} quotations expired")
    return expired
