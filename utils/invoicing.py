"""
Invoice generation for paid correction orders.

Renders the PDF with reportlab, stores it through ObjectStorage, records the
Invoice row and mails the PDF to the customer.
"""

import time
from datetime import datetime, timedelta, timezone
from io import BytesIO
from xml.sax.saxutils import escape
from typing import Optional

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle, HRFlowable
from reportlab.lib.enums import TA_CENTER, TA_RIGHT
from sqlalchemy.orm import Session

from core.config import APP_NAME, COMPANY_NAME, COMPANY_ADDRESS, SUPPORT_EMAIL, logger
from models.invoice import Invoice
from models.order import Order
from models.user import User
from utils.emailing import render_email

VAT_RATE = 0.20
PAYMENT_TERMS_DAYS = 30


def invoice_pdf_number(order_id: str) -> str:
    """Number printed on the PDF, derived from the order id."""
    return f"INV-{order_id[-8:].upper()}"


def new_invoice_number(now: Optional[datetime] = None) -> str:
    """Accounting number stored on the Invoice row."""
    now = now or datetime.now(timezone.utc)
    return f"FACT-{now.year}-{str(int(now.timestamp() * 1000))[-6:]}"


def format_euros(amount_cents: int) -> str:
    return f"{(amount_cents or 0) / 100:.2f} €"


def generate_invoice_pdf(
    order: Order, user: User, issued_at: Optional[datetime] = None, amount: Optional[int] = None
) -> bytes:
    issued_at = issued_at or datetime.utcnow()
    due_at = issued_at + timedelta(days=PAYMENT_TERMS_DAYS)
    number = invoice_pdf_number(order.id)
    if amount is None:
        amount = order.amount or 0
    tax_amount = round(amount * VAT_RATE)

    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        rightMargin=0.75*inch,
        leftMargin=0.75*inch,
        topMargin=0.75*inch,
        bottomMargin=0.75*inch
    )

    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        'InvoiceTitle',
        parent=styles['Heading1'],
        fontSize=24,
        spaceAfter=6,
        textColor=colors.HexColor('#1e293b'),
        fontName='Helvetica-Bold'
    )
    meta_style = ParagraphStyle(
        'InvoiceMeta',
        parent=styles['Normal'],
        fontSize=10,
        alignment=TA_RIGHT,
        textColor=colors.HexColor('#475569')
    )
    section_style = ParagraphStyle(
        'InvoiceSection',
        parent=styles['Heading2'],
        fontSize=12,
        spaceBefore=14,
        spaceAfter=6,
        textColor=colors.HexColor('#1e293b'),
        fontName='Helvetica-Bold'
    )
    body_style = ParagraphStyle(
        'InvoiceBody',
        parent=styles['Normal'],
        fontSize=10,
        leading=14,
        textColor=colors.HexColor('#334155')
    )
    small_style = ParagraphStyle(
        'InvoiceSmall',
        parent=styles['Normal'],
        fontSize=8,
        alignment=TA_CENTER,
        textColor=colors.HexColor('#94a3b8')
    )

    story = []
    story.append(Paragraph("FACTURE", title_style))
    story.append(Paragraph(f"Facture N° {number}", meta_style))
    story.append(Paragraph(f"Date d'émission: {issued_at.strftime('%d/%m/%Y')}", meta_style))
    story.append(Paragraph(f"Date d'échéance: {due_at.strftime('%d/%m/%Y')}", meta_style))
    story.append(HRFlowable(width="100%", thickness=2, color=colors.HexColor('#2563EB'), spaceBefore=8, spaceAfter=12))

    seller_lines = [f"<b>{escape(COMPANY_NAME.upper())}</b>", "Correction et édition de manuscrits"]
    if COMPANY_ADDRESS:
        seller_lines.append(escape(COMPANY_ADDRESS))
    seller_lines.append(f"Email: {SUPPORT_EMAIL}")

    buyer_lines = ["<b>FACTURÉ À:</b>", escape(user.full_name or user.email), escape(user.email)]
    if user.address:
        buyer_lines.append(escape(user.address))

    parties = Table(
        [[Paragraph("<br/>".join(seller_lines), body_style), Paragraph("<br/>".join(buyer_lines), body_style)]],
        colWidths=[3.4*inch, 3.4*inch],
    )
    parties.setStyle(TableStyle([('VALIGN', (0, 0), (-1, -1), 'TOP')]))
    story.append(parties)

    story.append(Paragraph("PROJET", section_style))
    story.append(Paragraph(escape(order.title or ""), body_style))
    if order.description:
        story.append(Paragraph(escape(order.description).replace("\n", "<br/>"), body_style))
    story.append(Spacer(1, 12))

    unit_price = format_euros(amount)
    lines = [
        ["DESCRIPTION", "QTÉ", "PRIX UNITAIRE", "MONTANT TTC"],
        [order.title or "", "1", unit_price, unit_price],
        ["", "", "dont TVA (20%)", format_euros(tax_amount)],
        ["", "", "TOTAL TTC", unit_price],
    ]
    items_table = Table(lines, colWidths=[3.3*inch, 0.6*inch, 1.5*inch, 1.4*inch])
    items_table.setStyle(TableStyle([
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#f1f5f9')),
        ('FONTNAME', (0, 1), (-1, -2), 'Helvetica'),
        ('FONTSIZE', (0, 0), (-1, -1), 10),
        ('FONTNAME', (0, -1), (-1, -1), 'Helvetica-Bold'),
        ('LINEABOVE', (0, -1), (-1, -1), 1, colors.HexColor('#cbd5e1')),
        ('BOTTOMPADDING', (0, 0), (-1, -1), 8),
        ('TOPPADDING', (0, 0), (-1, -1), 8),
        ('ALIGN', (1, 0), (-1, -1), 'RIGHT'),
        ('GRID', (0, 0), (-1, 1), 0.5, colors.HexColor('#e2e8f0')),
    ]))
    story.append(items_table)
    story.append(Spacer(1, 20))

    story.append(HRFlowable(width="100%", thickness=1, color=colors.HexColor('#e2e8f0'), spaceBefore=10, spaceAfter=10))
    story.append(Paragraph(
        f"Facture générée par {APP_NAME} le {datetime.utcnow().strftime('%d/%m/%Y à %H:%M UTC')}. "
        f"Paiement reçu par carte bancaire. Contact: {SUPPORT_EMAIL}",
        small_style,
    ))

    doc.build(story)
    pdf_bytes = buffer.getvalue()
    buffer.close()
    return pdf_bytes


def process_invoice_for_order(
    db: Session, order: Order, user: User, storage, mailer, amount: Optional[int] = None
) -> Optional[Invoice]:
    """Generate, store, record and mail the invoice for a paid order.

    `amount` is the total Stripe charged; it defaults to the order amount.

    Returns None when the order already has an invoice. The Invoice row is
    flushed, not committed; the caller owns the transaction.
    """
    existing = db.query(Invoice).filter(Invoice.order_id == order.id).first()
    if existing:
        logger.info(f"[invoice] order {order.id} already invoiced ({existing.number}); skipping")
        return None

    billed = amount if amount is not None else (order.amount or 0)
    pdf_bytes = generate_invoice_pdf(order, user, amount=billed)
    pdf_number = invoice_pdf_number(order.id)
    key = f"invoices/{pdf_number}-{int(time.time() * 1000)}.pdf"
    pdf_url = storage.upload_bytes(key, pdf_bytes, content_type="application/pdf")

    invoice = Invoice(
        order_id=order.id,
        number=new_invoice_number(),
        amount=billed,
        pdf_url=pdf_url,
        status="GENERATED",
        issued_at=datetime.utcnow(),
    )
    db.add(invoice)
    db.flush()
    logger.info(f"[invoice] created {invoice.number} for order {order.id}")

    html = render_email(
        "invoice.html",
        first_name=user.first_name,
        order_title=order.title,
        amount=format_euros(billed),
        invoice_number=pdf_number,
        pdf_url=pdf_url,
    )
    mailer.send(
        user.email,
        f"Votre facture {pdf_number} - {APP_NAME}",
        html,
        text=f"Votre facture pour \"{order.title}\" est disponible: {pdf_url}",
        attachments=[{"filename": f"{pdf_number}.pdf", "content": pdf_bytes, "mime_type": "application/pdf"}],
    )
    return invoice
