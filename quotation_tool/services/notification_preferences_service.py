"""
Notification preferences service.

Channels and events are closed enums: every stored mapping holds exactly one
boolean per enum member, and keys outside the enums are rejected.
"""
import logging
from datetime import datetime
from typing import Dict, Optional

from quotation_tool.engine.models import NotificationChannel, NotificationEvent
from quotation_tool.exceptions import BusinessLogicError, NotFoundError, UnknownPreferenceKey
from quotation_tool.models import AppUser, NotificationPreferences, AuditAction
from quotation_tool.services.audit_service import log_action

logger = logging.getLogger(__name__)

# Channels with a delivery implementation are on by default
DEFAULT_CHANNELS = {
    NotificationChannel.EMAIL: True,
    NotificationChannel.IN_APP: True,
    NotificationChannel.PUSH: False,
    NotificationChannel.SMS: False,
}


def parse_channel(key) -> NotificationChannel:
    if isinstance(key, NotificationChannel):
        return key
    try:
        return NotificationChannel(key)
    except ValueError:
        raise UnknownPreferenceKey('channel', key)


def parse_event(key) -> NotificationEvent:
    if isinstance(key, NotificationEvent):
        return key
    try:
        return NotificationEvent(key)
    except ValueError:
        raise UnknownPreferenceKey('event', key)


def default_channel_settings() -> Dict[str, bool]:
    return {channel.value: DEFAULT_CHANNELS[channel] for channel in NotificationChannel}


def default_event_settings() -> Dict[str, bool]:
    return {event.value: True for event in NotificationEvent}


def build_default_preferences(user: Optional[AppUser] = None) -> NotificationPreferences:
    """Construct (without persisting) the default preferences of a user."""
    return NotificationPreferences(
        user=user,
        notifications_enabled=True,
        channel_settings=default_channel_settings(),
        event_settings=default_event_settings(),
        updated_at=datetime.now(),
    )


def get_preferences(session, user_id: int) -> NotificationPreferences:
    """
    Get the preferences of a user, adding the defaults if none exist yet.

    The new row is flushed; the caller commits.
    """
    prefs = session.query(NotificationPreferences).filter_by(user_id=user_id).first()
    if prefs:
        return prefs

    user = session.get(AppUser, user_id)
    if not user:
        raise NotFoundError(f'User {user_id} not found')

    prefs = build_default_preferences(user)
    session.add(prefs)
    session.flush()
    logger.info(f"[NOTIFY] Default notification preferences created for user {user_id}")
    return prefs


def is_enabled(prefs: Optional[NotificationPreferences], channel: NotificationChannel, event: NotificationEvent) -> bool:
    """Whether a notification of `event` may be delivered on `channel`."""
    if prefs is None:
        return DEFAULT_CHANNELS[channel]
    if not prefs.notifications_enabled:
        return False
    channels = prefs.channel_settings or {}
    events = prefs.event_settings or {}
    return bool(channels.get(channel.value, DEFAULT_CHANNELS[channel])) and bool(events.get(event.value, True))


def _require_bool(name, value) -> bool:
    if not isinstance(value, bool):
        raise BusinessLogicError(f'{name} must be true or false', payload={'field': name})
    return value


def _save(session, prefs: NotificationPreferences, changes: dict) -> NotificationPreferences:
    prefs.updated_at = datetime.now()
    try:
        log_action(
            session,
            AuditAction.PREFERENCES_CHANGED,
            company_id=prefs.user.company_id,
            user_id=prefs.user_id,
            resource_type='notification_preferences',
            resource_id=prefs.id,
            details=changes,
        )
        session.commit()
    except Exception:
        session.rollback()
        raise
    return prefs


def toggle_channel(session, user_id: int, channel, enabled: bool) -> NotificationPreferences:
    channel = parse_channel(channel)
    enabled = _require_bool(channel.value, enabled)
    prefs = get_preferences(session, user_id)
    # JSON columns are not mutation-tracked, assign a new dict
    prefs.channel_settings = {**(prefs.channel_settings or {}), channel.value: enabled}
    return _save(session, prefs, {'channels': {channel.value: enabled}})


def toggle_event(session, user_id: int, event, enabled: bool) -> NotificationPreferences:
    event = parse_event(event)
    enabled = _require_bool(event.value, enabled)
    prefs = get_preferences(session, user_id)
    prefs.event_settings = {**(prefs.event_settings or {}), event.value: enabled}
    return _save(session, prefs, {'events': {event.value: enabled}})


def set_notifications_enabled(session, user_id: int, enabled: bool) -> NotificationPreferences:
    """Master switch."""
    enabled = _require_bool('notifications_enabled', enabled)
    prefs = get_preferences(session, user_id)
    prefs.notifications_enabled = enabled
    return _save(session, prefs, {'notifications_enabled': enabled})


def _require_mapping(field: str, value) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise BusinessLogicError(f'{field} must be an object', payload={'field': field})
    return value


def update_preferences(session, user_id: int, data: dict) -> NotificationPreferences:
    """
    Bulk update from an API payload.

    Accepted shape: {"notifications_enabled": bool, "channels": {channel: bool},
    "events": {event: bool}}. Every key is checked before anything is changed.
    """
    for key in data:
        if key not in ('notifications_enabled', 'channels', 'events'):
            raise UnknownPreferenceKey('setting', key)

    channels = {
        parse_channel(key).value: _require_bool(key, value)
        for key, value in _require_mapping('channels', data.get('channels')).items()
    }
    events = {
        parse_event(key).value: _require_bool(key, value)
        for key, value in _require_mapping('events', data.get('events')).items()
    }

    enabled = None
    if 'notifications_enabled' in data:
        enabled = _require_bool('notifications_enabled', data['notifications_enabled'])

    prefs = get_preferences(session, user_id)
    if enabled is not None:
        prefs.notifications_enabled = enabled
    if channels:
        prefs.channel_settings = {**(prefs.channel_settings or {}), **channels}
    if events:
        prefs.event_settings = {**(prefs.event_settings or {}), **events}

    logger.info(f"[NOTIFY] Preferences updated for user {user_id}")
    return _save(session, prefs, data)
