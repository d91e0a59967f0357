"""Company (tenant) model with its settings and branding records."""
from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, BigInteger, String, Text, Integer, Numeric, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from quotation_tool.database import Base, BigIntPK


class Company(Base):
    """Company model - each business using the platform."""

    __tablename__ = 'company'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False, unique=True)
    slug = Column(String(80), nullable=False, unique=True)  # URL-safe identifier
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default='active')
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    # Relationships
    settings = relationship('CompanySettings', back_populates='company', uselist=False)
    branding = relationship('CompanyBranding', back_populates='company', uselist=False)
    users = relationship('AppUser', back_populates='company')

    def __repr__(self):
        return f"<Company(id={self.id}, slug='{self.slug}', name='{self.name}')>"


class CompanySettings(Base):
    """Per-company configuration: currency, pricing defaults and notification templates."""

    __tablename__ = 'company_settings'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    company_id = Column(BigInteger, ForeignKey('company.id'), nullable=False, unique=True)
    currency = Column(String(3), nullable=False, default='USD')
    minor_units = Column(Integer, nullable=False, default=2)
    default_tax_rate = Column(Numeric(5, 2), nullable=False, default=Decimal('0'))
    default_discount_percent = Column(Numeric(5, 2), nullable=False, default=Decimal('0'))
    quote_valid_days = Column(Integer, nullable=False, default=30)
    quote_number_prefix = Column(String(10), nullable=False, default='QT')
    timezone = Column(String(50), nullable=False, default='UTC')
    language = Column(String(10), nullable=False, default='en')
    date_format = Column(String(20), nullable=False, default='%Y-%m-%d')
    # {event: {"subject": "...", "body": "..."}}
    notification_templates = Column(JSON, nullable=False, default=dict)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    company = relationship('Company', back_populates='settings')

    def to_dict(self):
        return {
            'currency': self.currency,
            'minor_units': self.minor_units,
            'default_tax_rate': str(self.default_tax_rate),
            'default_discount_percent': str(self.default_discount_percent),
            'quote_valid_days': self.quote_valid_days,
            'quote_number_prefix': self.quote_number_prefix,
            'timezone': self.timezone,
            'language': self.language,
            'date_format': self.date_format,
            'notification_templates': dict(self.notification_templates or {}),
        }

    def __repr__(self):
        return f"<CompanySettings(company_id={self.company_id}, currency='{self.currency}')>"


class CompanyBranding(Base):
    """Branding used on quotation PDFs and e-mails."""

    __tablename__ = 'company_branding'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    company_id = Column(BigInteger, ForeignKey('company.id'), nullable=False, unique=True)
    company_name = Column(String(200), nullable=False)
    primary_color = Column(String(7), nullable=False, default='#3B82F6')
    secondary_color = Column(String(7), nullable=False, default='#6B7280')
    accent_color = Column(String(7), nullable=False, default='#10B981')
    logo_url = Column(String(500), nullable=True)
    tagline = Column(String(255), nullable=True)
    website = Column(String(255), nullable=True)
    contact_email = Column(String(255), nullable=True)
    contact_phone = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)

    company = relationship('Company', back_populates='branding')

    def __repr__(self):
        return f"<CompanyBranding(company_id={self.company_id}, name='{self.company_name}')>"
