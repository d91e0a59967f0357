"""Application user, always attached to one company."""
from datetime import datetime
from sqlalchemy import Column, BigInteger, String, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from quotation_tool.database import Base, BigIntPK


class UserRole:
    OWNER = 'OWNER'
    ADMIN = 'ADMIN'
    SALES = 'SALES'


class AppUser(Base):
    """User of a company (owner of quotations)."""

    __tablename__ = 'app_user'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    company_id = Column(BigInteger, ForeignKey('company.id'), nullable=False, index=True)
    email = Column(String(255), nullable=False, unique=True)
    full_name = Column(String(200), nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.SALES)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)

    # Relationships
    company = relationship('Company', back_populates='users')
    notification_preferences = relationship('NotificationPreferences', back_populates='user', uselist=False)

    def __repr__(self):
        return f"<AppUser(id={self.id}, email='{self.email}', role='{self.role}')>"
