"""Notification preferences model."""
from datetime import datetime
from sqlalchemy import Column, BigInteger, Boolean, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from quotation_tool.database import Base, BigIntPK


class NotificationPreferences(Base):
    """
    Per-user notification switches.

    `channel_settings` and `event_settings` hold one boolean per member of
    NotificationChannel / NotificationEvent; the preferences service is the
    only writer and rejects unknown keys.
    """

    __tablename__ = 'notification_preferences'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, ForeignKey('app_user.id'), nullable=False, unique=True)
    notifications_enabled = Column(Boolean, nullable=False, default=True)
    channel_settings = Column(JSON, nullable=False, default=dict)
    event_settings = Column(JSON, nullable=False, default=dict)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    user = relationship('AppUser', back_populates='notification_preferences')

    def to_dict(self):
        return {
            'notifications_enabled': self.notifications_enabled,
            'channels': dict(self.channel_settings or {}),
            'events': dict(self.event_settings or {}),
        }

    def __repr__(self):
        return f"<NotificationPreferences(user_id={self.user_id}, enabled={self.notifications_enabled})>"
