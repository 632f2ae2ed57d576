from flask import Blueprint, request, jsonify, current_app
from flask_login import login_required, current_user
from zellow.extensions import db
from zellow.models import Order, OrderStatus, UserRole
from zellow.errors import NotFoundError, PermissionDeniedError
from zellow.services import lifecycle_service, notification_service
from zellow.services.order_events import broker
from zellow.utils import (
    json_body,
    money_json,
    isoformat,
    parse_datetime,
    paginate_query,
    text_value,
)
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('orders', __name__)

NO_ORDER_ACCESS_ROLES = (UserRole.SUPPLIER,)


def history_entry_payload(entry):
    return {
        'position': entry.position,
        'status': entry.status.value,
        'timestamp': isoformat(entry.timestamp),
        'notes': entry.notes,
        'actor_id': entry.actor_id,
    }


def order_payload(order, include_history=True):
    data = {
        'id': order.id,
        'customer_id': order.customer_id,
        'customer_name': order.customer_name,
        'customer_email': order.customer_email,
        'customer_phone': order.customer_phone,
        'items': [
            {
                'product_id': item.product_id,
                'name': item.name,
                'price': money_json(item.price),
                'quantity': item.quantity,
                'customizations': item.customizations or {},
                'image_url': item.image_url,
            }
            for item in order.items
        ],
        'sub_total': money_json(order.sub_total),
        'shipping_cost': money_json(order.shipping_cost),
        'total_amount': money_json(order.total_amount),
        'status': order.status.value,
        'payment_status': order.payment_status.value,
        'payment_method': order.payment_method.value,
        'shipping_address': order.shipping_address,
        'shipping_method': {
            'id': order.shipping_method_id,
            'name': order.shipping_method_name,
        },
        'rider_id': order.rider_id,
        'estimated_delivery_time': isoformat(order.estimated_delivery_time),
        'actual_delivery_time': isoformat(order.actual_delivery_time),
        'is_gift': order.is_gift,
        'gift_details': order.gift_details,
        'created_at': isoformat(order.created_at),
        'updated_at': isoformat(order.updated_at),
    }
    if include_history:
        data['delivery_history'] = [
            history_entry_payload(e) for e in order.delivery_history
        ]
    return data


def get_order_for(user, order_id):
    """Load an order the user may see, or raise."""
    if user.role in NO_ORDER_ACCESS_ROLES:
        raise PermissionDeniedError('Insufficient permissions')

    order = db.session.get(Order, order_id)
    # Customers cannot tell someone else's order from a missing one
    if order is None or (
            user.role == UserRole.CUSTOMER and order.customer_id != user.id):
        raise NotFoundError('Order not found')
    if user.role == UserRole.RIDER and order.rider_id != user.id:
        raise PermissionDeniedError('This delivery is not assigned to you')
    return order


@bp.route('/api/orders', methods=['GET'])
@login_required
def list_orders():
    if current_user.role in NO_ORDER_ACCESS_ROLES:
        return jsonify({'error': 'Insufficient permissions'}), 403

    query = Order.query
    if current_user.role == UserRole.CUSTOMER:
        query = query.filter(Order.customer_id == current_user.id)
    elif current_user.role == UserRole.RIDER:
        query = query.filter(Order.rider_id == current_user.id)

    status = request.args.get('status')
    if status:
        try:
            query = query.filter(Order.status == OrderStatus(status))
        except ValueError:
            return jsonify({'error': f'Unknown status {status}'}), 400

    page = request.args.get('page', 1, type=int)
    per_page = request.args.get(
        'per_page', current_app.config.get('ITEMS_PER_PAGE', 20), type=int)
    result = paginate_query(
        query.order_by(Order.created_at.desc()), page, per_page)

    return jsonify({
        'orders': [
            order_payload(o, include_history=False) for o in result['items']
        ],
        'page': result['page'],
        'pages': result['pages'],
        'total': result['total'],
    })


@bp.route('/api/orders/<order_id>', methods=['GET'])
@login_required
def order_detail(order_id):
    order = get_order_for(current_user, order_id)
    data = order_payload(order)
    data['available_commands'] = lifecycle_service.available_commands(
        order, current_user)
    return jsonify(data)


@bp.route('/api/orders/<order_id>/history', methods=['GET'])
@login_required
def order_history(order_id):
    """History feed; with ``after=N`` it long-polls for entry N+1."""
    order = get_order_for(current_user, order_id)
    after = request.args.get('after', type=int)

    if after is not None and len(order.delivery_history) <= after:
        limit = current_app.config.get('HISTORY_LONG_POLL_SECONDS', 25)
        timeout = request.args.get('wait', limit, type=float)
        timeout = max(0.0, min(timeout, limit))
        broker.wait(order.id, after, timeout)
        db.session.expire(order)

    entries = order.delivery_history
    start = after if after is not None and after > 0 else 0
    return jsonify({
        'order_id': order.id,
        'status': order.status.value,
        'version': len(entries),
        'history': [history_entry_payload(e) for e in entries[start:]],
    })


@bp.route('/api/orders/<order_id>/commands', methods=['GET'])
@login_required
def order_commands(order_id):
    order = get_order_for(current_user, order_id)
    return jsonify({
        'order_id': order.id,
        'status': order.status.value,
        'commands': lifecycle_service.available_commands(
            order, current_user),
    })


@bp.route('/api/orders/<order_id>/transitions', methods=['POST'])
@login_required
def apply_transition(order_id):
    data = json_body()
    command_name = text_value(data.get('command'))
    if not command_name:
        return jsonify({'error': 'Command cannot be empty'}), 400

    order = get_order_for(current_user, order_id)
    command = lifecycle_service.get_command(command_name)

    rider_id = data.get('rider_id')
    if rider_id is not None:
        try:
            rider_id = int(rider_id)
        except (TypeError, ValueError, OverflowError):
            return jsonify({'error': 'Invalid rider ID'}), 400

    estimated = None
    if data.get('estimated_delivery_time'):
        estimated = parse_datetime(data['estimated_delivery_time'])
        if estimated is None:
            return jsonify(
                {'error': 'Invalid estimated delivery time'}), 400

    entry = lifecycle_service.apply_transition(
        order,
        command,
        current_user,
        note=data.get('note'),
        rider_id=rider_id,
        estimated_delivery_time=estimated,
    )

    results = notification_service.dispatch_for_transition(order, command)
    return jsonify({
        'ok': True,
        'entry': history_entry_payload(entry),
        'order': order_payload(order),
        'notifications': [
            {'channel': channel, **result.to_dict()}
            for channel, result in results
        ],
    })
