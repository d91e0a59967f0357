"""Quotation template model (reusable starting point for new quotations)."""
from datetime import datetime
from sqlalchemy import (
    Column, BigInteger, Boolean, Integer, String, Text, DateTime, ForeignKey, JSON, CheckConstraint, Index,
)
from sqlalchemy.orm import relationship
from quotation_tool.database import Base, BigIntPK


class TemplateStatus:
    DRAFT = 'draft'
    ACTIVE = 'active'
    ARCHIVED = 'archived'

    ALL = (DRAFT, ACTIVE, ARCHIVED)


class TemplateVisibility:
    PRIVATE = 'private'
    COMPANY = 'company'

    ALL = (PRIVATE, COMPANY)


class QuotationTemplate(Base):
    """
    Quotation template.

    Holds default line items (stored as the API sends them, decimals as
    strings), header texts and a validity period. Only `active` templates
    can be used to start a quotation. Private templates are visible to their
    creator only.
    """

    __tablename__ = 'quotation_template'
    __table_args__ = (
        CheckConstraint('usage_count >= 0', name='quotation_template_usage_count_check'),
        CheckConstraint("status IN ('draft', 'active', 'archived')", name='quotation_template_status_check'),
        CheckConstraint("visibility IN ('private', 'company')", name='quotation_template_visibility_check'),
        Index('ix_quotation_template_company_status', 'company_id', 'status'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    company_id = Column(BigInteger, ForeignKey('company.id'), nullable=False)
    created_by_id = Column(BigInteger, ForeignKey('app_user.id'), nullable=True)
    parent_template_id = Column(BigInteger, ForeignKey('quotation_template.id'), nullable=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=True)
    tags = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default=TemplateStatus.DRAFT)
    visibility = Column(String(20), nullable=False, default=TemplateVisibility.COMPANY)
    version = Column(String(20), nullable=True)
    is_default = Column(Boolean, nullable=False, default=False)
    default_items = Column(JSON, nullable=False, default=list)
    title = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    terms = Column(Text, nullable=True)
    valid_days = Column(Integer, nullable=True)  # NULL: company default
    usage_count = Column(Integer, nullable=False, default=0)
    last_used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    # Relationships
    company = relationship('Company')
    created_by = relationship('AppUser')
    parent_template = relationship('QuotationTemplate', remote_side=[id])

    def __repr__(self):
        return f"<QuotationTemplate(id={self.id}, name='{self.name}', status='{self.status}')>"

    @property
    def tag_list(self):
        return [tag.strip() for tag in (self.tags or '').split(',') if tag.strip()]

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'category': self.category,
            'tags': self.tag_list,
            'status': self.status,
            'visibility': self.visibility,
            'version': self.version,
            'parent_template_id': self.parent_template_id,
            'is_default': self.is_default,
            'default_items': list(self.default_items or []),
            'title': self.title,
            'notes': self.notes,
            'terms': self.terms,
            'valid_days': self.valid_days,
            'usage_count': self.usage_count,
            'last_used_at': self.last_used_at.isoformat() if self.last_used_at else None,
            'created_by_id': self.created_by_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
