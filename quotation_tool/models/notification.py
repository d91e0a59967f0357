"""Notification model: one row per delivered (or attempted) side effect."""
from datetime import datetime
from sqlalchemy import Column, BigInteger, Integer, String, Text, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from quotation_tool.database import Base, BigIntPK


class DeliveryStatus:
    SENT = 'sent'
    FAILED = 'failed'
    SKIPPED = 'skipped'


class Notification(Base):
    """
    Delivery record for a notification side effect.

    `idempotency_key` is unique, so a descriptor dispatched twice never
    produces a second delivery. In-app notifications are the rows with
    channel 'in_app'; `read_at` tracks whether the user has seen them.
    """

    __tablename__ = 'notification'
    __table_args__ = (
        Index('ix_notification_user_channel', 'user_id', 'channel'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    company_id = Column(BigInteger, ForeignKey('company.id'), nullable=False, index=True)
    user_id = Column(BigInteger, ForeignKey('app_user.id'), nullable=True)
    quotation_id = Column(BigInteger, ForeignKey('quotation.id'), nullable=True)
    event = Column(String(50), nullable=False)
    channel = Column(String(20), nullable=False)
    recipient_email = Column(String(255), nullable=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default=DeliveryStatus.SENT)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    idempotency_key = Column(String(200), nullable=False, unique=True)
    read_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)

    user = relationship('AppUser')
    quotation = relationship('Quotation')

    def to_dict(self):
        return {
            'id': self.id,
            'event': self.event,
            'channel': self.channel,
            'title': self.title,
            'message': self.message,
            'status': self.status,
            'quotation_id': self.quotation_id,
            'read': self.read_at is not None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification(id={self.id}, event='{self.event}', channel='{self.channel}', status='{self.status}')>"
