"""
Notification dispatcher.

Delivers the side-effect descriptors returned by the status workflow. Each
descriptor is stored as a Notification row keyed by its idempotency key, so
dispatching the same transition twice never notifies anybody twice. Failed
e-mails stay in 'failed' and are picked up by retry_failed_notifications.
"""
import logging
from datetime import datetime
from typing import Iterable, List, Optional

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError

from quotation_tool.blueprints.metrics import record_notification
from quotation_tool.engine.models import NotificationChannel, RecipientRole, SideEffect
from quotation_tool.exceptions import NotFoundError
from quotation_tool.models import (
    AppUser, Client, Company, CompanySettings, CompanyBranding, Notification, DeliveryStatus, Quotation,
)
from quotation_tool.services.email_service import EmailDeliveryError, send_notification_email
from quotation_tool.services.notification_preferences_service import get_preferences, is_enabled
from quotation_tool.services.template_service import get_template, render
from quotation_tool.utils.formatters import format_date, format_money

logger = logging.getLogger(__name__)


def _template_variables(quotation: Quotation, company: Company, settings: Optional[CompanySettings], payload: dict) -> dict:
    date_format = settings.date_format if settings else None
    return {
        'company_name': company.name,
        'client_name': quotation.client.name if quotation.client else '',
        'owner_name': (quotation.owner.full_name or quotation.owner.email) if quotation.owner else '',
        'quotation_number': quotation.number,
        'quotation_title': quotation.title or '',
        'grand_total': format_money(quotation.grand_total, quotation.currency, settings.minor_units if settings else 2),
        'currency': quotation.currency,
        'valid_until': format_date(quotation.valid_until, date_format),
        'status': quotation.status,
        'reason': payload.get('reason') or '',
    }


def _resolve_recipient(session, quotation: Quotation, effect: SideEffect):
    """Return (user_id, email) of the descriptor's recipient."""
    if effect.recipient.role is RecipientRole.CLIENT:
        client = session.get(Client, effect.recipient.ref) if effect.recipient.ref else None
        return None, client.email if client else None
    user = session.get(AppUser, effect.recipient.ref) if effect.recipient.ref else None
    return (user.id, user.email) if user else (None, None)


def _deliver(notification: Notification, channel: NotificationChannel, primary_color: str) -> None:
    """Attempt delivery and record the outcome on the notification row."""
    notification.attempts = (notification.attempts or 0) + 1

    if channel is NotificationChannel.IN_APP:
        if notification.user_id is None:
            notification.status = DeliveryStatus.SKIPPED
            notification.last_error = 'in-app notifications need a user recipient'
            return
        notification.status = DeliveryStatus.SENT
        notification.delivered_at = datetime.now()
        return

    if channel is NotificationChannel.EMAIL:
        if not notification.recipient_email:
            notification.status = DeliveryStatus.SKIPPED
            notification.last_error = 'recipient has no e-mail address'
            return
        try:
            sent = send_notification_email(notification.recipient_email, notification.title, notification.message, primary_color)
        except EmailDeliveryError as e:
            notification.status = DeliveryStatus.FAILED
            notification.last_error = str(e)
            return
        if sent:
            notification.status = DeliveryStatus.SENT
            notification.delivered_at = datetime.now()
            notification.last_error = None
        else:
            notification.status = DeliveryStatus.SKIPPED
            notification.last_error = 'mail delivery is disabled'
        return

    notification.status = DeliveryStatus.SKIPPED
    notification.last_error = f"channel {channel.value} is not supported"


def dispatch_side_effects(session, company_id: int, quotation_id: int, side_effects: Iterable[SideEffect]) -> List[Notification]:
    """
    Deliver side-effect descriptors of a committed transition.

    Descriptors whose idempotency key was already handled are skipped.
    Owner-bound descriptors honour the owner's notification preferences.

    Returns:
        Notification rows created by this call (duplicates excluded)
    """
    side_effects = list(side_effects)
    if not side_effects:
        return []

    quotation = session.query(Quotation).filter(
        Quotation.id == quotation_id,
        Quotation.company_id == company_id,
    ).first()
    if not quotation:
        raise NotFoundError(f'Quotation {quotation_id} not found')

    company = session.get(Company, company_id)
    settings = session.query(CompanySettings).filter_by(company_id=company_id).first()
    branding = session.query(CompanyBranding).filter_by(company_id=company_id).first()
    primary_color = branding.primary_color if branding else '#3B82F6'
    overrides = settings.notification_templates if settings else {}

    created = []
    for effect in side_effects:
        if effect.kind != 'notify':
            logger.warning(f"[NOTIFY] Unknown side effect kind '{effect.kind}' ignored")
            continue

        if session.query(Notification.id).filter_by(idempotency_key=effect.idempotency_key).first():
            logger.info(f"[NOTIFY] Duplicate side effect {effect.idempotency_key} skipped")
            record_notification(effect.channel.value, 'duplicate')
            continue

        user_id, email = _resolve_recipient(session, quotation, effect)
        template = get_template(effect.event.value, overrides)
        variables = _template_variables(quotation, company, settings, effect.payload)

        notification = Notification(
            company_id=company_id,
            user_id=user_id,
            quotation_id=quotation.id,
            event=effect.event.value,
            channel=effect.channel.value,
            recipient_email=email,
            title=render(template['subject'], variables),
            message=render(template['body'], variables),
            idempotency_key=effect.idempotency_key,
            attempts=0,
            created_at=datetime.now(),
        )

        if effect.recipient.role is RecipientRole.OWNER and user_id is not None:
            prefs = get_preferences(session, user_id)
            if not is_enabled(prefs, effect.channel, effect.event):
                notification.status = DeliveryStatus.SKIPPED
                notification.last_error = 'disabled by recipient preferences'
            else:
                _deliver(notification, effect.channel, primary_color)
        else:
            _deliver(notification, effect.channel, primary_color)

        try:
            session.add(notification)
            session.commit()
        except IntegrityError:
            # Another dispatcher stored the same key first
            session.rollback()
            record_notification(effect.channel.value, 'duplicate')
            continue

        record_notification(effect.channel.value, notification.status)
        logger.info(
            f"[NOTIFY] {effect.event.value} via {effect.channel.value} for quotation {quotation.number}: {notification.status}"
        )
        created.append(notification)

    return created


def retry_failed_notifications(session, max_attempts: Optional[int] = None, company_id: Optional[int] = None) -> List[Notification]:
    """
    Retry failed e-mail deliveries that still have attempts left.

    Returns:
        Notifications that were retried (whatever their new status)
    """
    if max_attempts is None:
        max_attempts = current_app.config.get('NOTIFICATION_MAX_ATTEMPTS', 5) if has_app_context() else 5

    query = session.query(Notification).filter(
        Notification.status == DeliveryStatus.FAILED,
        Notification.attempts < max_attempts,
    )
    if company_id is not None:
        query = query.filter(Notification.company_id == company_id)

    retried = []
    for notification in query.order_by(Notification.id).all():
        branding = session.query(CompanyBranding).filter_by(company_id=notification.company_id).first()
        _deliver(notification, NotificationChannel(notification.channel), branding.primary_color if branding else '#3B82F6')
        record_notification(notification.channel, f'retry_{notification.status}')
        retried.append(notification)

    session.commit()
    logger.info(f"[NOTIFY] Retried {len(retried)} failed notifications")
    return retried


def list_notifications(session, company_id: int, user_id: int, unread_only: bool = False, limit: int = 50) -> List[Notification]:
    """In-app notifications of a user, newest first."""
    query = session.query(Notification).filter(
        Notification.company_id == company_id,
        Notification.user_id == user_id,
        Notification.channel == NotificationChannel.IN_APP.value,
        Notification.status == DeliveryStatus.SENT,
    )
    if unread_only:
        query = query.filter(Notification.read_at.is_(None))
    return query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()


def mark_read(session, company_id: int, user_id: int, notification_id: int) -> Notification:
    notification = session.query(Notification).filter(
        Notification.id == notification_id,
        Notification.company_id == company_id,
        Notification.user_id == user_id,
    ).first()
    if not notification:
        raise NotFoundError(f'Notification {notification_id} not found')

    if notification.read_at is None:
        notification.read_at = datetime.now()
        session.commit()
    return notification
