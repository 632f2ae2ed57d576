from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user
from zellow.models import ShippingMethod, ShippingRegion
from zellow.middleware import role_required
from zellow.services import cart_service, checkout_service
from zellow.services import notification_service
from zellow.blueprints.orders import order_payload
from zellow.utils import json_body, money_json
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('checkout', __name__)


@bp.route('/api/shipping-methods', methods=['GET'])
def list_shipping_methods():
    """Active methods, priced for ``region_id`` when one is given."""
    region_id = request.args.get('region_id', type=int)
    methods = ShippingMethod.query.filter_by(active=True).all()
    priced = sorted(
        ((m, checkout_service.shipping_price(m, region_id)) for m in methods),
        key=lambda pair: (pair[1], pair[0].id))
    return jsonify({
        'region_id': region_id,
        'shipping_methods': [
            {
                'id': m.id,
                'name': m.name,
                'description': m.description,
                'duration': m.duration,
                'price': money_json(price),
            }
            for m, price in priced
        ]
    })


@bp.route('/api/shipping-regions', methods=['GET'])
def list_shipping_regions():
    regions = ShippingRegion.query.filter_by(active=True).order_by(
        ShippingRegion.name.asc()).all()
    return jsonify({
        'shipping_regions': [
            {
                'id': r.id,
                'name': r.name,
                'county': r.county,
                'towns': r.towns or [],
            }
            for r in regions
        ]
    })


@bp.route('/api/checkout', methods=['GET'])
@login_required
@role_required('CUSTOMER')
def get_checkout():
    cart = cart_service.get_or_create_cart(current_user)
    return jsonify(checkout_service.checkout_summary(cart))


@bp.route('/api/checkout/shipping-address', methods=['PUT'])
@login_required
@role_required('CUSTOMER')
def set_shipping_address():
    cart = cart_service.get_or_create_cart(current_user)
    checkout_service.set_shipping_address(cart, json_body())
    return jsonify(checkout_service.checkout_summary(cart))


@bp.route('/api/checkout/payment-method', methods=['PUT'])
@login_required
@role_required('CUSTOMER')
def set_payment_method():
    data = json_body()
    if not data.get('payment_method'):
        return jsonify({'error': 'Payment method cannot be empty'}), 400
    cart = cart_service.get_or_create_cart(current_user)
    checkout_service.set_payment_method(cart, data['payment_method'])
    return jsonify(checkout_service.checkout_summary(cart))


@bp.route('/api/checkout/shipping-method', methods=['PUT'])
@login_required
@role_required('CUSTOMER')
def set_shipping_method():
    data = json_body()
    if data.get('shipping_method_id') is None:
        return jsonify({'error': 'Shipping method cannot be empty'}), 400
    cart = cart_service.get_or_create_cart(current_user)
    checkout_service.set_shipping_method(cart, data['shipping_method_id'])
    return jsonify(checkout_service.checkout_summary(cart))


@bp.route('/api/checkout/gift', methods=['PUT'])
@login_required
@role_required('CUSTOMER')
def set_gift():
    cart = cart_service.get_or_create_cart(current_user)
    checkout_service.set_gift_details(cart, json_body())
    return jsonify(checkout_service.checkout_summary(cart))


@bp.route('/api/checkout/gift', methods=['DELETE'])
@login_required
@role_required('CUSTOMER')
def clear_gift():
    cart = cart_service.get_or_create_cart(current_user)
    checkout_service.clear_gift_details(cart)
    return jsonify(checkout_service.checkout_summary(cart))


@bp.route('/api/checkout/place-order', methods=['POST'])
@login_required
@role_required('CUSTOMER')
def place_order():
    cart = cart_service.get_or_create_cart(current_user)
    order = checkout_service.place_order(cart, current_user)

    response = {
        'ok': True,
        'order_id': order.id,
        'order': order_payload(order),
    }

    if order.is_gift:
        gift = order.gift
        if gift.recipient_can_view_and_track:
            response['tracking_link'] = notification_service.tracking_link(
                order.id)
        # The order stands even when the recipient cannot be reached
        result = notification_service.send_gift_notification_for_order(
            order, sender_name=current_user.display_name)
        response['gift_notification'] = result.to_dict()

    return jsonify(response), 201
