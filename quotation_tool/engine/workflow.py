"""
Quotation status state machine.

The workflow only decides: it returns the new aggregate and a list of
side-effect descriptors, and the caller persists and dispatches them.
"""
import logging
from dataclasses import replace
from datetime import datetime
from typing import List, Optional

from quotation_tool.engine.models import (
    NotificationChannel, NotificationEvent, QuotationAggregate, QuotationStatus,
    Recipient, RecipientRole, SideEffect, TransitionResult,
)
from quotation_tool.engine.money import PricingPolicy
from quotation_tool.engine.validator import validate
from quotation_tool.exceptions import (
    IllegalTransition, MissingReason, NotYetExpired, TerminalState, ValidationFailed,
)

logger = logging.getLogger(__name__)

S = QuotationStatus

ALLOWED_TRANSITIONS = {
    S.DRAFT: frozenset({S.SENT, S.CANCELLED}),
    S.SENT: frozenset({S.VIEWED, S.EXPIRED, S.CANCELLED}),
    S.VIEWED: frozenset({S.ACCEPTED, S.REJECTED, S.EXPIRED, S.CANCELLED}),
}

# (event, channel, recipient role) emitted when entering a status
_NOTIFICATIONS = {
    S.SENT: [
        (NotificationEvent.QUOTATION_SENT, NotificationChannel.EMAIL, RecipientRole.CLIENT),
    ],
    S.VIEWED: [
        (NotificationEvent.QUOTATION_VIEWED, NotificationChannel.IN_APP, RecipientRole.OWNER),
    ],
    S.ACCEPTED: [
        (NotificationEvent.QUOTATION_ACCEPTED, NotificationChannel.IN_APP, RecipientRole.OWNER),
        (NotificationEvent.QUOTATION_ACCEPTED, NotificationChannel.EMAIL, RecipientRole.OWNER),
    ],
    S.REJECTED: [
        (NotificationEvent.QUOTATION_REJECTED, NotificationChannel.IN_APP, RecipientRole.OWNER),
        (NotificationEvent.QUOTATION_REJECTED, NotificationChannel.EMAIL, RecipientRole.OWNER),
    ],
}


def parse_status(value) -> QuotationStatus:
    """Coerce a status name or enum into QuotationStatus (ValueError if unknown)."""
    if isinstance(value, QuotationStatus):
        return value
    return QuotationStatus(str(value).strip().lower())


def can_transition(current: QuotationStatus, target: QuotationStatus) -> bool:
    """Structural check only; guards (validity, dates, reasons) are not evaluated."""
    if current.is_terminal:
        return False
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def idempotency_key(quotation_id, status: QuotationStatus, channel: NotificationChannel) -> str:
    return f"quotation:{quotation_id}:{status.value}:{channel.value}"


def _check_guards(quotation, target, now, reason, policy):
    current = quotation.status

    if current is S.DRAFT and target is S.SENT:
        result = validate(quotation, policy)
        if not result.is_valid:
            raise ValidationFailed(result.errors)

    if target is S.EXPIRED and not quotation.is_past_validity(now):
        raise NotYetExpired(current.value, target.value, quotation.valid_until)

    if target is S.REJECTED and not (reason and reason.strip()):
        raise MissingReason(current.value, target.value)


def _apply(quotation: QuotationAggregate, target, now, reason) -> QuotationAggregate:
    changes = {'status': target, 'updated_at': now}
    if target is S.SENT:
        changes['sent_at'] = now
    elif target is S.VIEWED:
        changes['viewed_at'] = now
    elif target.is_terminal:
        changes['closed_at'] = now

    if target is S.REJECTED:
        changes['rejection_reason'] = reason.strip()
    elif target is S.CANCELLED and reason and reason.strip():
        changes['cancellation_reason'] = reason.strip()

    return replace(quotation, **changes)


def _side_effects(before: QuotationAggregate, after: QuotationAggregate) -> List[SideEffect]:
    target = after.status
    plan = list(_NOTIFICATIONS.get(target, []))

    # Clients only hear about a cancellation if they received the quotation
    if target is S.CANCELLED and before.status is not S.DRAFT:
        plan.append((NotificationEvent.QUOTATION_CANCELLED, NotificationChannel.EMAIL, RecipientRole.CLIENT))

    payload = {
        'quotation_id': after.id,
        'number': after.number,
        'grand_total': str(after.grand_total),
        'currency': after.currency,
        'valid_until': after.valid_until.isoformat() if after.valid_until else None,
    }
    if after.rejection_reason and target is S.REJECTED:
        payload['reason'] = after.rejection_reason
    if after.cancellation_reason and target is S.CANCELLED:
        payload['reason'] = after.cancellation_reason

    effects = []
    for event, channel, role in plan:
        ref = after.client_ref if role is RecipientRole.CLIENT else after.owner_ref
        effects.append(SideEffect(
            kind='notify',
            channel=channel,
            recipient=Recipient(role=role, ref=ref),
            event=event,
            idempotency_key=idempotency_key(after.id, target, channel),
            payload=dict(payload),
        ))
    return effects


def transition(
    quotation: QuotationAggregate,
    target,
    now: Optional[datetime] = None,
    reason: Optional[str] = None,
    policy: Optional[PricingPolicy] = None,
) -> TransitionResult:
    """
    Request a status change.

    Args:
        quotation: Current aggregate (left untouched)
        target: Requested status (enum or name)
        now: Clock used for expiry checks and timestamps
        reason: Rejection reason (required for rejected) or cancellation reason
        policy: Pricing policy used when validating draft -> sent

    Returns:
        TransitionResult with the new aggregate and side-effect descriptors

    Raises:
        TerminalState, IllegalTransition, ValidationFailed, NotYetExpired, MissingReason
    """
    now = now or datetime.now()
    current = quotation.status

    try:
        target = parse_status(target)
    except ValueError:
        raise IllegalTransition(current.value, str(target))

    if current.is_terminal:
        raise TerminalState(current.value, target.value)
    if not can_transition(current, target):
        raise IllegalTransition(current.value, target.value)

    _check_guards(quotation, target, now, reason, policy)

    updated = _apply(quotation, target, now, reason)
    effects = _side_effects(quotation, updated)

    logger.info(f"[WORKFLOW] Quotation {quotation.id}: {current.value} -> {target.value} ({len(effects)} side effects)")

    return TransitionResult(
        quotation=updated,
        previous_status=current,
        new_status=target,
        side_effects=tuple(effects),
    )


def available_transitions(
    quotation: QuotationAggregate,
    now: Optional[datetime] = None,
    policy: Optional[PricingPolicy] = None,
) -> List[QuotationStatus]:
    """Targets whose guards currently pass (a rejection reason is assumed to be supplied)."""
    now = now or datetime.now()
    if quotation.status.is_terminal:
        return []

    available = []
    for target in sorted(ALLOWED_TRANSITIONS.get(quotation.status, ()), key=lambda s: s.value):
        try:
            _check_guards(quotation, target, now, 'reason', policy)
        except (ValidationFailed, NotYetExpired, MissingReason):
            continue
        available.append(target)
    return available
