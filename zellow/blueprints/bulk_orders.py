from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from zellow.extensions import db
from zellow.models import (
    BulkOrderRequest,
    BulkOrderStatus,
    Order,
    Product,
    UserRole,
)
from zellow.errors import NotFoundError, ValidationError
from zellow.middleware import role_required
from zellow.services.audit_service import audit_actor
from zellow.services.workflow import Workflow
from zellow.utils import json_body, isoformat, text_value
from datetime import date
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('bulk_orders', __name__)

B = BulkOrderStatus
BULK_ORDER_WORKFLOW = Workflow('BULK_ORDER', {
    B.PENDING_REVIEW: {B.APPROVED, B.REJECTED},
    B.APPROVED: {B.FULFILLED},
})

REVIEWER_ROLES = ('SERVICE_MANAGER',)


def bulk_order_payload(req):
    return {
        'id': req.id,
        'requester_id': req.requester_id,
        'requester_name': req.requester_name,
        'requester_email': req.requester_email,
        'requester_phone': req.requester_phone,
        'company_name': req.company_name,
        'desired_delivery_date': isoformat(req.desired_delivery_date),
        'items': req.items,
        'status': req.status.value,
        'admin_notes': req.admin_notes,
        'converted_order_id': req.converted_order_id,
        'created_at': isoformat(req.created_at),
        'updated_at': isoformat(req.updated_at),
    }


def _validate_items(raw_items):
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError('Please add at least one item to the request')

    items = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise ValidationError('Each item must be an object')
        try:
            product_id = int(raw.get('product_id'))
            quantity = int(raw.get('quantity'))
        except (TypeError, ValueError, OverflowError):
            raise ValidationError('Each item needs a product and a quantity')
        if quantity < 1:
            raise ValidationError('Quantity must be at least 1')
        product = db.session.get(Product, product_id)
        if product is None:
            raise ValidationError(f'Product {product_id} not found')
        items.append({
            'product_id': product.id,
            'name': product.name,
            'quantity': quantity,
            'notes': text_value(raw.get('notes')) or None,
            'customizations': raw.get('customizations') or None,
        })
    return items


def _get_request(request_id):
    req = db.session.get(BulkOrderRequest, request_id)
    if req is None:
        raise NotFoundError('Bulk order request not found')
    return req


@bp.route('/api/bulk-orders', methods=['POST'])
@login_required
@role_required('CUSTOMER')
def create_bulk_order():
    data = json_body()
    name = text_value(
        data.get('requester_name') or current_user.display_name)
    email = text_value(data.get('requester_email') or current_user.email)
    phone = text_value(data.get('requester_phone') or current_user.phone)

    if len(name) < 2:
        return jsonify({'error': 'Contact name is required'}), 400
    if '@' not in email:
        return jsonify({'error': 'Invalid email address'}), 400
    if len(phone) < 10:
        return jsonify({'error': 'A valid phone number is required'}), 400

    try:
        desired = date.fromisoformat(str(data.get('desired_delivery_date')))
    except ValueError:
        return jsonify({'error': 'Please select a delivery date'}), 400
    if desired < date.today():
        return jsonify({'error': 'Delivery date cannot be in the past'}), 400

    items = _validate_items(data.get('items'))

    req = BulkOrderRequest(
        requester_id=current_user.id,
        requester_name=name,
        requester_email=email,
        requester_phone=phone,
        company_name=text_value(data.get('company_name')) or None,
        desired_delivery_date=desired,
        items=items,
    )
    db.session.add(req)
    db.session.commit()

    audit_actor(
        current_user,
        'BULK_ORDER_CREATE',
        target_type='BULK_ORDER',
        target_id=req.id,
        payload={'item_count': len(items)})
    return jsonify({'ok': True, 'bulk_order': bulk_order_payload(req)}), 201


@bp.route('/api/bulk-orders', methods=['GET'])
@login_required
def list_bulk_orders():
    query = BulkOrderRequest.query
    role = current_user.role
    if role == UserRole.CUSTOMER:
        query = query.filter(BulkOrderRequest.requester_id == current_user.id)
    elif role.value not in ('ADMIN',) + REVIEWER_ROLES:
        return jsonify({'error': 'Insufficient permissions'}), 403

    status = request.args.get('status')
    if status:
        try:
            query = query.filter(
                BulkOrderRequest.status == BulkOrderStatus(status))
        except ValueError:
            return jsonify({'error': f'Unknown status {status}'}), 400

    requests = query.order_by(BulkOrderRequest.created_at.desc()).all()
    return jsonify({'bulk_orders': [bulk_order_payload(r) for r in requests]})


@bp.route('/api/bulk-orders/<int:request_id>/approve', methods=['POST'])
@login_required
@role_required(*REVIEWER_ROLES)
def approve_bulk_order(request_id):
    req = _get_request(request_id)
    notes = text_value(json_body().get('notes')) or req.admin_notes
    BULK_ORDER_WORKFLOW.advance(
        req, B.APPROVED, current_user, 'BULK_ORDER_APPROVE',
        admin_notes=notes)
    return jsonify({'ok': True, 'bulk_order': bulk_order_payload(req)})


@bp.route('/api/bulk-orders/<int:request_id>/reject', methods=['POST'])
@login_required
@role_required(*REVIEWER_ROLES)
def reject_bulk_order(request_id):
    notes = text_value(json_body().get('notes'))
    if not notes:
        return jsonify({'error': 'A rejection note is required'}), 400
    req = _get_request(request_id)
    BULK_ORDER_WORKFLOW.advance(
        req, B.REJECTED, current_user, 'BULK_ORDER_REJECT',
        payload={'notes': notes}, admin_notes=notes)
    return jsonify({'ok': True, 'bulk_order': bulk_order_payload(req)})


@bp.route('/api/bulk-orders/<int:request_id>/fulfill', methods=['POST'])
@login_required
@role_required(*REVIEWER_ROLES)
def fulfill_bulk_order(request_id):
    data = json_body()
    req = _get_request(request_id)

    order_id = text_value(data.get('order_id')) or None
    if order_id and db.session.get(Order, order_id) is None:
        return jsonify({'error': 'Order not found'}), 404

    BULK_ORDER_WORKFLOW.advance(
        req, B.FULFILLED, current_user, 'BULK_ORDER_FULFILL',
        payload={'order_id': order_id},
        converted_order_id=order_id)
    return jsonify({'ok': True, 'bulk_order': bulk_order_payload(req)})
