"""
Audit Log model for tracking critical actions in the system.
"""
from sqlalchemy import Column, BigInteger, String, Text, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
import json

from quotation_tool.database import Base, BigIntPK


class AuditAction(enum.Enum):
    """Enumeration of auditable actions."""
    # Companies
    COMPANY_CREATED = "COMPANY_CREATED"
    SETTINGS_CHANGED = "SETTINGS_CHANGED"

    # Clients
    CLIENT_CREATED = "CLIENT_CREATED"

    # Quotations
    QUOTATION_CREATED = "QUOTATION_CREATED"
    QUOTATION_UPDATED = "QUOTATION_UPDATED"
    QUOTATION_DUPLICATED = "QUOTATION_DUPLICATED"
    QUOTATION_STATUS_CHANGED = "QUOTATION_STATUS_CHANGED"

    # Quotation templates
    TEMPLATE_CREATED = "TEMPLATE_CREATED"
    TEMPLATE_UPDATED = "TEMPLATE_UPDATED"
    TEMPLATE_STATUS_CHANGED = "TEMPLATE_STATUS_CHANGED"
    TEMPLATE_DELETED = "TEMPLATE_DELETED"

    # Notifications
    PREFERENCES_CHANGED = "PREFERENCES_CHANGED"


class AuditLog(Base):
    """
    Audit log for tracking user actions.
    Multi-tenant: filtered by company_id.
    """
    __tablename__ = 'audit_log'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    company_id = Column(BigInteger, ForeignKey('company.id'), nullable=False, index=True)
    user_id = Column(BigInteger, ForeignKey('app_user.id'), nullable=True)  # NULL for CLI/system actions
    action = Column(SQLEnum(AuditAction), nullable=False, index=True)
    resource_type = Column(String(50))  # e.g., 'quotation', 'client'
    resource_id = Column(BigInteger)
    details = Column(Text)  # JSON with additional details
    ip_address = Column(String(45))  # IPv4 or IPv6
    user_agent = Column(String(255))
    created_at = Column(DateTime, default=datetime.now, nullable=False, index=True)

    # Relationships
    company = relationship('Company')
    user = relationship('AppUser')

    def __repr__(self):
        return f"<AuditLog {self.action.value} by user {self.user_id} at {self.created_at}>"

    def to_dict(self):
        return {
            'id': self.id,
            'action': self.action.value,
            'user_id': self.user_id,
            'resource_type': self.resource_type,
            'resource_id': self.resource_id,
            'details': json.loads(self.details) if self.details else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
