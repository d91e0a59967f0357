"""Quotation model."""
from datetime import date, datetime
from sqlalchemy import (
    Column, BigInteger, Integer, String, Numeric, DateTime, Date, Text, ForeignKey, UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship
from quotation_tool.database import Base, BigIntPK


class Quotation(Base):
    """
    Quotation (persisted form of the quotation aggregate).

    `version` is SQLAlchemy's version_id_col: every UPDATE is issued with
    `WHERE version = <loaded version>` so a stale writer fails instead of
    overwriting a concurrent change.
    """

    __tablename__ = 'quotation'
    __table_args__ = (
        UniqueConstraint('company_id', 'number', name='uq_quotation_company_number'),
        Index('ix_quotation_company_status', 'company_id', 'status'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    company_id = Column(BigInteger, ForeignKey('company.id'), nullable=False)
    number = Column(String(64), nullable=False)
    title = Column(String(255), nullable=True)
    client_id = Column(BigInteger, ForeignKey('client.id'), nullable=True)
    owner_id = Column(BigInteger, ForeignKey('app_user.id'), nullable=True)
    source_quotation_id = Column(BigInteger, ForeignKey('quotation.id'), nullable=True)
    template_id = Column(BigInteger, ForeignKey('quotation_template.id'), nullable=True)
    status = Column(String(20), nullable=False, default='draft')
    currency = Column(String(3), nullable=False, default='USD')
    valid_until = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)
    terms = Column(Text, nullable=True)
    subtotal = Column(Numeric(14, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(14, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(14, 2), nullable=False, default=0)
    grand_total = Column(Numeric(14, 2), nullable=False, default=0)
    sent_at = Column(DateTime, nullable=True)
    viewed_at = Column(DateTime, nullable=True)
    closed_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now)

    # Relationships
    company = relationship('Company')
    client = relationship('Client', back_populates='quotations')
    owner = relationship('AppUser')
    lines = relationship(
        'QuotationLine',
        back_populates='quotation',
        cascade='all, delete-orphan',
        order_by='QuotationLine.position',
    )

    __mapper_args__ = {'version_id_col': version}

    def __repr__(self):
        return f"<Quotation(id={self.id}, number='{self.number}', status='{self.status}', total={self.grand_total})>"

    @property
    def is_expired(self):
        """Past its validity date while still open (calculated, not stored)."""
        if self.status in ('sent', 'viewed') and self.valid_until:
            return date.today() > self.valid_until
        return False

    def to_dict(self, include_lines=True):
        data = {
            'id': self.id,
            'number': self.number,
            'title': self.title,
            'client_id': self.client_id,
            'client_name': self.client.name if self.client else None,
            'owner_id': self.owner_id,
            'source_quotation_id': self.source_quotation_id,
            'template_id': self.template_id,
            'status': self.status,
            'currency': self.currency,
            'valid_until': self.valid_until.isoformat() if self.valid_until else None,
            'notes': self.notes,
            'terms': self.terms,
            'subtotal': str(self.subtotal),
            'discount_amount': str(self.discount_amount),
            'tax_amount': str(self.tax_amount),
            'grand_total': str(self.grand_total),
            'sent_at': self.sent_at.isoformat() if self.sent_at else None,
            'viewed_at': self.viewed_at.isoformat() if self.viewed_at else None,
            'closed_at': self.closed_at.isoformat() if self.closed_at else None,
            'rejection_reason': self.rejection_reason,
            'cancellation_reason': self.cancellation_reason,
            'is_expired': self.is_expired,
            'version': self.version,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_lines:
            data['lines'] = [line.to_dict() for line in self.lines]
        return data
