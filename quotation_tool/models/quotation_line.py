"""QuotationLine model for quotation line items."""
from sqlalchemy import Column, BigInteger, Integer, String, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from quotation_tool.database import Base, BigIntPK


class QuotationLine(Base):
    """
    Quotation line.

    Stores the priced snapshot of each item; lines are never edited once the
    quotation has been sent.
    """

    __tablename__ = 'quotation_line'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    quotation_id = Column(BigInteger, ForeignKey('quotation.id'), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=1)
    description = Column(String(500), nullable=False)
    sku = Column(String(100), nullable=True)
    unit = Column(String(50), nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(14, 4), nullable=False)
    discount_percent = Column(Numeric(7, 4), nullable=True)
    tax_rate_percent = Column(Numeric(7, 4), nullable=True)
    line_total = Column(Numeric(14, 2), nullable=False)
    discount_amount = Column(Numeric(14, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(14, 2), nullable=False, default=0)
    total = Column(Numeric(14, 2), nullable=False)

    # Relationships
    quotation = relationship('Quotation', back_populates='lines')

    def to_dict(self):
        return {
            'id': self.id,
            'position': self.position,
            'description': self.description,
            'sku': self.sku,
            'unit': self.unit,
            'quantity': self.quantity,
            'unit_price': str(self.unit_price),
            'discount_percent': str(self.discount_percent) if self.discount_percent is not None else None,
            'tax_rate_percent': str(self.tax_rate_percent) if self.tax_rate_percent is not None else None,
            'line_total': str(self.line_total),
            'discount_amount': str(self.discount_amount),
            'tax_amount': str(self.tax_amount),
            'total': str(self.total),
        }

    def __repr__(self):
        return f"<QuotationLine(id={self.id}, quotation_id={self.quotation_id}, qty={self.quantity}, total={self.total})>"
