from zellow.models import OrderStatus, PaymentStatus
from fpdf import FPDF
from flask import current_app
import logging

logger = logging.getLogger(__name__)

LEFT = 14
RIGHT = 196
COL_QTY = 110
COL_PRICE = 140
COL_TOTAL = 170


def _latin1(text):
    # Core PDF fonts only cover latin-1
    return str(text).encode('latin-1', 'replace').decode('latin-1')


def format_price(amount, currency=None):
    currency = currency or current_app.config.get('CURRENCY', 'KES')
    return f'{currency} {float(amount or 0):,.2f}'


def format_date(value):
    return value.strftime('%b %d, %Y') if value else 'N/A'


def _refund_date(order):
    for entry in reversed(order.delivery_history):
        if entry.status == OrderStatus.CANCELLED:
            return entry.timestamp
    return None


def receipt_filename(order):
    return f'Zellow-Receipt-{order.id}.pdf'


def build_receipt_pdf(order) -> bytes:
    """Render an itemized receipt for ``order`` and return the PDF bytes."""
    pdf = FPDF(unit='mm', format='A4')
    pdf.add_page()

    pdf.set_font('helvetica', 'B', 18)
    pdf.text(LEFT, 22, 'Zellow Enterprises - Order Receipt')

    pdf.set_font('helvetica', '', 11)
    pdf.text(LEFT, 32, f'Order ID: {order.id}')
    pdf.text(LEFT, 38, f'Date Placed: {format_date(order.created_at)}')

    address = order.shipping_address or {}
    pdf.text(LEFT, 50, 'Billed To:')
    pdf.text(LEFT, 56, _latin1(order.customer_name))
    if address.get('address_line1'):
        pdf.text(LEFT, 62, _latin1(address['address_line1']))
    if address.get('city') and address.get('county'):
        pdf.text(LEFT, 68, _latin1(f"{address['city']}, {address['county']}"))

    y = 80
    pdf.set_font('helvetica', 'B', 11)
    pdf.text(LEFT, y, 'Item')
    pdf.text(COL_QTY, y, 'Qty')
    pdf.text(COL_PRICE, y, 'Price')
    pdf.text(COL_TOTAL, y, 'Total')
    pdf.line(LEFT, y + 2, RIGHT, y + 2)
    y += 8

    pdf.set_font('helvetica', '', 11)
    for item in order.items:
        if y > 270:
            pdf.add_page()
            y = 20
        pdf.text(LEFT, y, _latin1(item.name)[:48])
        pdf.text(COL_QTY, y, str(item.quantity))
        pdf.text(COL_PRICE, y, format_price(item.price))
        pdf.text(COL_TOTAL, y, format_price(item.line_total))
        y += 7

    pdf.line(LEFT, y, RIGHT, y)
    y += 8
    pdf.text(COL_PRICE - 20, y, 'Subtotal:')
    pdf.text(COL_TOTAL, y, format_price(order.sub_total))
    y += 7
    pdf.text(COL_PRICE - 20, y, 'Shipping:')
    pdf.text(COL_TOTAL, y, format_price(order.shipping_cost))
    y += 7
    pdf.set_font('helvetica', 'B', 11)
    pdf.text(COL_PRICE - 20, y, 'Total:')
    pdf.text(COL_TOTAL, y, format_price(order.total_amount))
    y += 10

    if order.payment_status == PaymentStatus.REFUNDED:
        pdf.set_font('helvetica', 'B', 14)
        pdf.set_text_color(220, 53, 69)
        pdf.text(LEFT, y, 'REFUNDED')
        pdf.set_text_color(0, 0, 0)
        refunded_at = _refund_date(order)
        if refunded_at:
            pdf.set_font('helvetica', '', 10)
            pdf.text(
                LEFT, y + 6,
                f'Refund processed on: {format_date(refunded_at)}')

    data = bytes(pdf.output())
    logger.debug("Built receipt for order %s (%d bytes)", order.id, len(data))
    return data
