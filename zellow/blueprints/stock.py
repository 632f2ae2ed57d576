from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from zellow.extensions import db
from zellow.models import (
    Invoice,
    InvoiceStatus,
    Product,
    StockRequest,
    StockRequestStatus,
    UserRole,
)
from zellow.errors import NotFoundError, PermissionDeniedError
from zellow.middleware import role_required
from zellow.services.audit_service import audit_actor
from zellow.services.workflow import Workflow
from zellow.utils import json_body, isoformat, money, money_json, text_value
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
import logging
import uuid

logger = logging.getLogger(__name__)

bp = Blueprint('stock', __name__)

SR = StockRequestStatus
STOCK_REQUEST_WORKFLOW = Workflow('STOCK_REQUEST', {
    SR.PENDING_FINANCE_APPROVAL: {
        SR.PENDING_SUPPLIER_FULFILLMENT,
        SR.REJECTED_FINANCE,
        SR.CANCELLED,
    },
    SR.PENDING_SUPPLIER_FULFILLMENT: {
        SR.AWAITING_RECEIPT,
        SR.REJECTED_SUPPLIER,
        SR.CANCELLED,
    },
    SR.AWAITING_RECEIPT: {SR.RECEIVED},
})

IS = InvoiceStatus
INVOICE_WORKFLOW = Workflow('INVOICE', {
    IS.PENDING_APPROVAL: {IS.APPROVED_FOR_PAYMENT, IS.REJECTED},
    IS.APPROVED_FOR_PAYMENT: {IS.PAID},
})

INVOICE_DUE_DAYS = 30


def stock_request_payload(req):
    return {
        'id': req.id,
        'product_id': req.product_id,
        'product_name': req.product_name,
        'requested_quantity': req.requested_quantity,
        'requester_id': req.requester_id,
        'requester_name': req.requester_name,
        'status': req.status.value,
        'notes': req.notes,
        'finance_manager_id': req.finance_manager_id,
        'finance_action_at': isoformat(req.finance_action_at),
        'finance_notes': req.finance_notes,
        'supplier_id': req.supplier_id,
        'supplier_name': req.supplier_name,
        'supplier_price': money_json(req.supplier_price),
        'supplier_notes': req.supplier_notes,
        'fulfilled_quantity': req.fulfilled_quantity,
        'supplier_action_at': isoformat(req.supplier_action_at),
        'received_quantity': req.received_quantity,
        'received_by_id': req.received_by_id,
        'received_at': isoformat(req.received_at),
        'receipt_notes': req.receipt_notes,
        'created_at': isoformat(req.created_at),
        'updated_at': isoformat(req.updated_at),
    }


def invoice_payload(invoice):
    return {
        'id': invoice.id,
        'invoice_number': invoice.invoice_number,
        'supplier_id': invoice.supplier_id,
        'supplier_name': invoice.supplier_name,
        'client_name': invoice.client_name,
        'invoice_date': isoformat(invoice.invoice_date),
        'due_date': isoformat(invoice.due_date),
        'items': invoice.items,
        'sub_total': money_json(invoice.sub_total),
        'tax_rate': money_json(invoice.tax_rate),
        'tax_amount': money_json(invoice.tax_amount),
        'total_amount': money_json(invoice.total_amount),
        'status': invoice.status.value,
        'notes': invoice.notes,
        'stock_request_id': invoice.stock_request_id,
        'payment_reference': invoice.payment_reference,
        'paid_at': isoformat(invoice.paid_at),
        'created_at': isoformat(invoice.created_at),
    }


def _get_stock_request(request_id):
    req = db.session.get(StockRequest, request_id)
    if req is None:
        raise NotFoundError('Stock request not found')
    return req


def _get_invoice(invoice_id):
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFoundError('Invoice not found')
    return invoice


def _notes(data, key='notes'):
    return text_value(data.get(key)) or None


def _positive_int(value):
    try:
        value = int(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return value if value > 0 else None


def _decimal(value):
    try:
        return money(Decimal(str(value)))
    except (InvalidOperation, ValueError):
        return None


# Stock requests

@bp.route('/api/stock-requests', methods=['POST'])
@login_required
@role_required('INVENTORY_MANAGER')
def create_stock_request():
    data = json_body()
    quantity = _positive_int(data.get('requested_quantity'))
    if quantity is None:
        return jsonify(
            {'error': 'Requested quantity must be greater than 0'}), 400

    product_id = _positive_int(data.get('product_id'))
    product = db.session.get(Product, product_id) if product_id else None
    if product is None:
        return jsonify({'error': 'Product not found'}), 404

    req = StockRequest(
        product_id=product.id,
        product_name=product.name,
        requested_quantity=quantity,
        requester_id=current_user.id,
        requester_name=current_user.name,
        notes=_notes(data),
    )
    db.session.add(req)
    db.session.commit()

    audit_actor(
        current_user,
        'STOCK_REQUEST_CREATE',
        target_type='STOCK_REQUEST',
        target_id=req.id,
        payload={'product_id': product.id, 'quantity': quantity})
    return jsonify(
        {'ok': True, 'stock_request': stock_request_payload(req)}), 201


@bp.route('/api/stock-requests', methods=['GET'])
@login_required
@role_required('INVENTORY_MANAGER', 'FINANCE_MANAGER', 'SUPPLIER')
def list_stock_requests():
    query = StockRequest.query
    if current_user.role == UserRole.SUPPLIER:
        # Open queue plus whatever this supplier already handled
        query = query.filter(db.or_(
            StockRequest.status == SR.PENDING_SUPPLIER_FULFILLMENT,
            StockRequest.supplier_id == current_user.id,
        ))

    status = request.args.get('status')
    if status:
        try:
            query = query.filter(StockRequest.status == SR(status))
        except ValueError:
            return jsonify({'error': f'Unknown status {status}'}), 400

    requests = query.order_by(StockRequest.created_at.desc()).all()
    return jsonify(
        {'stock_requests': [stock_request_payload(r) for r in requests]})


@bp.route('/api/stock-requests/<int:request_id>/approve', methods=['POST'])
@login_required
@role_required('FINANCE_MANAGER')
def approve_stock_request(request_id):
    req = _get_stock_request(request_id)
    STOCK_REQUEST_WORKFLOW.advance(
        req, SR.PENDING_SUPPLIER_FULFILLMENT, current_user,
        'STOCK_REQUEST_APPROVE',
        finance_manager_id=current_user.id,
        finance_action_at=datetime.utcnow(),
        finance_notes=_notes(json_body()))
    return jsonify({'ok': True, 'stock_request': stock_request_payload(req)})


@bp.route('/api/stock-requests/<int:request_id>/reject', methods=['POST'])
@login_required
@role_required('FINANCE_MANAGER')
def reject_stock_request(request_id):
    notes = _notes(json_body())
    if not notes:
        return jsonify({'error': 'A rejection note is required'}), 400
    req = _get_stock_request(request_id)
    STOCK_REQUEST_WORKFLOW.advance(
        req, SR.REJECTED_FINANCE, current_user, 'STOCK_REQUEST_REJECT',
        payload={'notes': notes},
        finance_manager_id=current_user.id,
        finance_action_at=datetime.utcnow(),
        finance_notes=notes)
    return jsonify({'ok': True, 'stock_request': stock_request_payload(req)})


@bp.route('/api/stock-requests/<int:request_id>/cancel', methods=['POST'])
@login_required
@role_required('INVENTORY_MANAGER')
def cancel_stock_request(request_id):
    req = _get_stock_request(request_id)
    STOCK_REQUEST_WORKFLOW.advance(
        req, SR.CANCELLED, current_user, 'STOCK_REQUEST_CANCEL',
        notes=_notes(json_body()) or req.notes)
    return jsonify({'ok': True, 'stock_request': stock_request_payload(req)})


@bp.route(
    '/api/stock-requests/<int:request_id>/supplier-reject',
    methods=['POST'])
@login_required
@role_required('SUPPLIER')
def supplier_reject_stock_request(request_id):
    notes = _notes(json_body())
    if not notes:
        return jsonify({'error': 'A rejection note is required'}), 400
    req = _get_stock_request(request_id)
    STOCK_REQUEST_WORKFLOW.advance(
        req, SR.REJECTED_SUPPLIER, current_user,
        'STOCK_REQUEST_SUPPLIER_REJECT',
        payload={'notes': notes},
        supplier_id=current_user.id,
        supplier_name=current_user.name,
        supplier_notes=notes,
        supplier_action_at=datetime.utcnow())
    return jsonify({'ok': True, 'stock_request': stock_request_payload(req)})


@bp.route('/api/stock-requests/<int:request_id>/invoice', methods=['POST'])
@login_required
@role_required('SUPPLIER')
def submit_invoice(request_id):
    """Supplier fulfils a request by invoicing it."""
    data = json_body()
    req = _get_stock_request(request_id)
    STOCK_REQUEST_WORKFLOW.check(req, SR.AWAITING_RECEIPT)

    quantity = _positive_int(data.get('fulfilled_quantity'))
    if quantity is None or quantity > req.requested_quantity:
        return jsonify({
            'error': (
                'Fulfilled quantity must be between 1 and '
                f'{req.requested_quantity}')
        }), 400

    unit_price = _decimal(data.get('unit_price'))
    if unit_price is None or unit_price <= 0:
        return jsonify({'error': 'Unit price must be greater than 0'}), 400

    tax_rate = _decimal(data.get('tax_rate', 0))
    if tax_rate is None or not (0 <= tax_rate <= 100):
        return jsonify({'error': 'Tax rate must be between 0 and 100'}), 400

    sub_total = unit_price * quantity
    tax_amount = money(sub_total * tax_rate / 100)
    invoice_date = date.today()

    invoice = Invoice(
        invoice_number=f'INV-{uuid.uuid4().hex[:8].upper()}',
        supplier_id=current_user.id,
        supplier_name=current_user.name,
        client_name='Zellow Enterprises',
        invoice_date=invoice_date,
        due_date=invoice_date + timedelta(days=INVOICE_DUE_DAYS),
        items=[{
            'description': req.product_name,
            'quantity': quantity,
            'unit_price': float(unit_price),
            'total_price': float(sub_total),
        }],
        sub_total=sub_total,
        tax_rate=tax_rate,
        tax_amount=tax_amount,
        total_amount=sub_total + tax_amount,
        notes=_notes(data),
        stock_request_id=req.id,
    )
    db.session.add(invoice)

    STOCK_REQUEST_WORKFLOW.advance(
        req, SR.AWAITING_RECEIPT, current_user, 'STOCK_REQUEST_FULFILL',
        payload={
            'fulfilled_quantity': quantity,
            'invoice_number': invoice.invoice_number,
        },
        supplier_id=current_user.id,
        supplier_name=current_user.name,
        supplier_price=unit_price,
        supplier_notes=_notes(data),
        fulfilled_quantity=quantity,
        supplier_action_at=datetime.utcnow())

    audit_actor(
        current_user,
        'INVOICE_CREATE',
        target_type='INVOICE',
        target_id=invoice.id,
        payload={'total_amount': money_json(invoice.total_amount)})
    return jsonify({
        'ok': True,
        'stock_request': stock_request_payload(req),
        'invoice': invoice_payload(invoice),
    }), 201


@bp.route('/api/stock-requests/<int:request_id>/receive', methods=['POST'])
@login_required
@role_required('INVENTORY_MANAGER')
def receive_stock(request_id):
    data = json_body()
    req = _get_stock_request(request_id)
    STOCK_REQUEST_WORKFLOW.check(req, SR.RECEIVED)

    received = _positive_int(
        data.get('received_quantity', req.fulfilled_quantity))
    if received is None:
        return jsonify(
            {'error': 'Received quantity must be greater than 0'}), 400

    product = db.session.get(Product, req.product_id)
    product.stock += received

    STOCK_REQUEST_WORKFLOW.advance(
        req, SR.RECEIVED, current_user, 'STOCK_REQUEST_RECEIVE',
        payload={'received_quantity': received, 'new_stock': product.stock},
        received_quantity=received,
        received_by_id=current_user.id,
        received_at=datetime.utcnow(),
        receipt_notes=_notes(data))
    return jsonify({'ok': True, 'stock_request': stock_request_payload(req)})


# Invoices

@bp.route('/api/invoices', methods=['GET'])
@login_required
@role_required('FINANCE_MANAGER', 'SUPPLIER')
def list_invoices():
    query = Invoice.query
    if current_user.role == UserRole.SUPPLIER:
        query = query.filter(Invoice.supplier_id == current_user.id)

    status = request.args.get('status')
    if status:
        try:
            query = query.filter(Invoice.status == IS(status))
        except ValueError:
            return jsonify({'error': f'Unknown status {status}'}), 400

    invoices = query.order_by(Invoice.created_at.desc()).all()
    return jsonify({'invoices': [invoice_payload(i) for i in invoices]})


@bp.route('/api/invoices/<int:invoice_id>', methods=['GET'])
@login_required
@role_required('FINANCE_MANAGER', 'SUPPLIER')
def invoice_detail(invoice_id):
    invoice = _get_invoice(invoice_id)
    if (current_user.role == UserRole.SUPPLIER
            and invoice.supplier_id != current_user.id):
        raise PermissionDeniedError('Not your invoice')
    return jsonify(invoice_payload(invoice))


@bp.route('/api/invoices/<int:invoice_id>/approve', methods=['POST'])
@login_required
@role_required('FINANCE_MANAGER')
def approve_invoice(invoice_id):
    invoice = _get_invoice(invoice_id)
    INVOICE_WORKFLOW.advance(
        invoice, IS.APPROVED_FOR_PAYMENT, current_user, 'INVOICE_APPROVE',
        finance_manager_id=current_user.id,
        notes=_notes(json_body()) or invoice.notes)
    return jsonify({'ok': True, 'invoice': invoice_payload(invoice)})


@bp.route('/api/invoices/<int:invoice_id>/reject', methods=['POST'])
@login_required
@role_required('FINANCE_MANAGER')
def reject_invoice(invoice_id):
    notes = _notes(json_body())
    if not notes:
        return jsonify({'error': 'A rejection note is required'}), 400
    invoice = _get_invoice(invoice_id)
    INVOICE_WORKFLOW.advance(
        invoice, IS.REJECTED, current_user, 'INVOICE_REJECT',
        payload={'notes': notes},
        finance_manager_id=current_user.id,
        notes=notes)
    return jsonify({'ok': True, 'invoice': invoice_payload(invoice)})


@bp.route('/api/invoices/<int:invoice_id>/pay', methods=['POST'])
@login_required
@role_required('FINANCE_MANAGER')
def pay_invoice(invoice_id):
    reference = _notes(json_body(), 'payment_reference')
    if not reference:
        return jsonify({'error': 'Payment reference is required'}), 400
    invoice = _get_invoice(invoice_id)
    INVOICE_WORKFLOW.advance(
        invoice, IS.PAID, current_user, 'INVOICE_PAY',
        payload={'payment_reference': reference},
        finance_manager_id=current_user.id,
        payment_reference=reference,
        paid_at=datetime.utcnow())
    return jsonify({'ok': True, 'invoice': invoice_payload(invoice)})
