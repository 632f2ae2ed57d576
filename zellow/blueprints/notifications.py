from flask import Blueprint, jsonify
from flask_login import login_required, current_user
from zellow.extensions import db
from zellow.models import Order
from zellow.errors import NotFoundError
from zellow.middleware import role_required
from zellow.services import notification_service
from zellow.services.audit_service import audit_actor
from zellow.utils import json_body, text_value
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('notifications', __name__)

NOTIFY_ROLES = ('DISPATCH_MANAGER', 'FINANCE_MANAGER', 'SERVICE_MANAGER')


def _order_from(data):
    order_id = text_value(data.get('order_id'))
    if not order_id:
        return None
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError('Order not found')
    return order


def _respond(action, order_id, result):
    audit_actor(
        current_user,
        action,
        target_type='ORDER',
        target_id=order_id,
        payload={'success': result.success})
    return jsonify(result.to_dict())


@bp.route('/api/notifications/gift', methods=['POST'])
@login_required
@role_required(*NOTIFY_ROLES)
def send_gift():
    data = json_body()
    order = _order_from(data)

    if order is not None and not data.get('recipient_name'):
        result = notification_service.send_gift_notification_for_order(
            order, sender_name=data.get('sender_name'))
        return _respond('NOTIFY_GIFT', order.id, result)

    if not data.get('order_id') or not data.get('recipient_name'):
        return jsonify(
            {'error': 'order_id and recipient_name are required'}), 400

    result = notification_service.send_gift_notification(
        order_id=data['order_id'],
        recipient_name=data['recipient_name'],
        contact_method=data.get('recipient_contact_method') or '',
        contact_value=data.get('recipient_contact_value') or '',
        gift_message=data.get('gift_message') or '',
        sender_name=data.get('sender_name') or 'Someone special',
        can_view_and_track=bool(data.get('can_view_and_track', True)),
        show_prices=bool(data.get('show_prices_to_recipient')),
        notify_recipient=bool(data.get('notify_recipient', True)),
        order=order,
    )
    return _respond('NOTIFY_GIFT', data['order_id'], result)


@bp.route('/api/notifications/delivery-confirmation', methods=['POST'])
@login_required
@role_required(*NOTIFY_ROLES)
def send_delivery_confirmation():
    order = _order_from(json_body())
    if order is None:
        return jsonify({'error': 'order_id is required'}), 400
    result = notification_service.send_delivery_confirmation(order)
    return _respond('NOTIFY_DELIVERY_CONFIRMATION', order.id, result)


@bp.route('/api/notifications/receipt', methods=['POST'])
@login_required
@role_required(*NOTIFY_ROLES)
def send_receipt():
    data = json_body()
    order = _order_from(data)
    if order is None:
        return jsonify({'error': 'order_id is required'}), 400
    result = notification_service.send_receipt(
        order, subject=text_value(data.get('subject')) or None)
    return _respond('NOTIFY_RECEIPT', order.id, result)
