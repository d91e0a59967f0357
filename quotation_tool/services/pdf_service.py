"""PDF export of quotations (ReportLab)."""
from decimal import Decimal
from io import BytesIO

from reportlab.lib.pagesizes import A4
from reportlab.lib import colors
from reportlab.lib.units import inch
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.enums import TA_CENTER
from xml.sax.saxutils import escape

from quotation_tool.models import Company, CompanyBranding, CompanySettings, Quotation
from quotation_tool.services.quotation_service import get_quotation
from quotation_tool.utils.formatters import format_date, format_money


def _percent(value) -> str:
    if value is None:
        return '-'
    return f"{Decimal(value).normalize():f}%"


def render_quotation_pdf(
    quotation: Quotation,
    company: Company,
    branding: CompanyBranding = None,
    settings: CompanySettings = None,
) -> BytesIO:
    """
    Render a quotation as an A4 document.

    Returns:
        BytesIO positioned at the start of the PDF
    """
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        rightMargin=0.75*inch,
        leftMargin=0.75*inch,
        topMargin=0.75*inch,
        bottomMargin=0.75*inch,
        title=f"Quotation {quotation.number}",
    )

    primary = colors.HexColor(branding.primary_color if branding else '#3B82F6')
    minor_units = settings.minor_units if settings else 2
    date_format = settings.date_format if settings else None
    currency = quotation.currency

    def money(value):
        return format_money(value, currency, minor_units)

    elements = []
    styles = getSampleStyleSheet()

    title_style = ParagraphStyle(
        'QuotationTitle',
        parent=styles['Heading1'],
        fontSize=24,
        textColor=colors.HexColor('#2C3E50'),
        spaceAfter=12,
        alignment=TA_CENTER,
        fontName='Helvetica-Bold'
    )
    header_style = ParagraphStyle(
        'QuotationHeader',
        parent=styles['Normal'],
        fontSize=10,
        textColor=colors.HexColor('#7F8C8D'),
        alignment=TA_CENTER,
        spaceAfter=6
    )

    # 1. Title and company header
    elements.append(Paragraph("QUOTATION", title_style))

    company_name = branding.company_name if branding else company.name
    elements.append(Paragraph(f"<b>{escape(company_name)}</b>", header_style))
    if branding and branding.tagline:
        elements.append(Paragraph(escape(branding.tagline), header_style))

    address = (branding.address if branding else None) or company.address
    if address:
        elements.append(Paragraph(escape(address), header_style))

    contact_parts = []
    phone = (branding.contact_phone if branding else None) or company.phone
    email = (branding.contact_email if branding else None) or company.email
    if phone:
        contact_parts.append(f"Tel: {escape(phone)}")
    if email:
        contact_parts.append(f"Email: {escape(email)}")
    if branding and branding.website:
        contact_parts.append(escape(branding.website))
    if contact_parts:
        elements.append(Paragraph(" | ".join(contact_parts), header_style))

    elements.append(Spacer(1, 0.3*inch))

    # 2. Metadata
    info_data = [
        ['Quotation No.:', quotation.number],
        ['Issued:', format_date(quotation.created_at, date_format)],
        ['Valid until:', format_date(quotation.valid_until, date_format)],
        ['Status:', quotation.status.upper()],
    ]
    if quotation.title:
        info_data.append(['Subject:', quotation.title])
    if quotation.client:
        info_data.append(['Client:', quotation.client.name])
        if quotation.client.email:
            info_data.append(['Client e-mail:', quotation.client.email])

    info_table = Table(info_data, colWidths=[2*inch, 4*inch])
    info_table.setStyle(TableStyle([
        ('ALIGN', (0, 0), (0, -1), 'RIGHT'),
        ('ALIGN', (1, 0), (1, -1), 'LEFT'),
        ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 10),
        ('TEXTCOLOR', (0, 0), (-1, -1), colors.HexColor('#34495E')),
    ]))
    elements.append(info_table)
    elements.append(Spacer(1, 0.3*inch))

    # 3. Items
    table_data = [['Description', 'Qty', 'Unit price', 'Disc.', 'Tax', 'Total']]
    for line in quotation.lines:
        table_data.append([
            Paragraph(escape(line.description), styles['Normal']),
            str(line.quantity),
            money(line.unit_price),
            _percent(line.discount_percent),
            _percent(line.tax_rate_percent),
            money(line.total),
        ])

    items_table = Table(table_data, colWidths=[2.4*inch, 0.5*inch, 1.1*inch, 0.6*inch, 0.6*inch, 1.2*inch])
    items_table.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), primary),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
        ('ALIGN', (0, 0), (-1, 0), 'CENTER'),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('BOTTOMPADDING', (0, 0), (-1, 0), 12),
        ('ALIGN', (1, 1), (1, -1), 'CENTER'),
        ('ALIGN', (2, 1), (-1, -1), 'RIGHT'),
        ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
        ('GRID', (0, 0), (-1, -1), 0.5, colors.HexColor('#BDC3C7')),
        ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, colors.HexColor('#ECF0F1')]),
    ]))
    elements.append(items_table)
    elements.append(Spacer(1, 0.2*inch))

    # 4. Totals
    totals_data = [
        ['Subtotal:', money(quotation.subtotal)],
        ['Discount:', f"-{money(quotation.discount_amount)}"],
        ['Tax:', money(quotation.tax_amount)],
        ['TOTAL:', money(quotation.grand_total)],
    ]
    totals_table = Table(totals_data, colWidths=[5.2*inch, 1.2*inch])
    totals_table.setStyle(TableStyle([
        ('ALIGN', (0, 0), (-1, -1), 'RIGHT'),
        ('FONTSIZE', (0, 0), (-1, 2), 10),
        ('FONTNAME', (0, 3), (-1, 3), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 3), (-1, 3), 14),
        ('TEXTCOLOR', (0, 3), (-1, 3), colors.HexColor('#27AE60')),
        ('BACKGROUND', (0, 3), (-1, 3), colors.HexColor('#E8F8F5')),
        ('BOX', (0, 3), (-1, 3), 2, colors.HexColor('#27AE60')),
    ]))
    elements.append(totals_table)
    elements.append(Spacer(1, 0.4*inch))

    # 5. Notes and terms
    footer_style = ParagraphStyle('Footer', parent=styles['Normal'], fontSize=9, textColor=colors.HexColor('#95A5A6'), alignment=TA_CENTER)
    if quotation.notes:
        elements.append(Paragraph(f"<b>Notes:</b> {escape(quotation.notes)}", footer_style))
    if quotation.terms:
        elements.append(Paragraph(f"<b>Terms:</b> {escape(quotation.terms)}", footer_style))
    elements.append(Paragraph("<i>This quotation is not an invoice.</i>", footer_style))

    doc.build(elements)
    buffer.seek(0)
    return buffer


def generate_quotation_pdf(session, company_id: int, quotation_id: int) -> BytesIO:
    """Render a persisted quotation of a company."""
    quotation = get_quotation(session, company_id, quotation_id)
    company = session.get(Company, company_id)
    branding = session.query(CompanyBranding).filter_by(company_id=company_id).first()
    settings = session.query(CompanySettings).filter_by(company_id=company_id).first()
    return render_quotation_pdf(quotation, company, branding, settings)
