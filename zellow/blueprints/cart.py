from flask import Blueprint, jsonify
from flask_login import login_required, current_user
from zellow.extensions import db
from zellow.models import Product
from zellow.middleware import role_required
from zellow.services import cart_service
from zellow.utils import json_body
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('cart', __name__)


def _mutation_response(cart, mutation, status=200):
    payload = cart_service.serialize_cart(cart)
    payload.update({
        'ok': True,
        'stock_limited': mutation.stock_limited,
        'message': mutation.message,
    })
    if mutation.line is not None and not mutation.removed:
        payload['cart_item'] = cart_service.serialize_line(mutation.line)
    return jsonify(payload), status


@bp.route('/api/cart', methods=['GET'])
@login_required
@role_required('CUSTOMER')
def get_cart():
    cart = cart_service.get_or_create_cart(current_user)
    return jsonify(cart_service.serialize_cart(cart))


@bp.route('/api/cart/items', methods=['POST'])
@login_required
@role_required('CUSTOMER')
def add_cart_item():
    data = json_body()
    product_id = data.get('product_id')
    quantity = data.get('quantity', 1)

    if not product_id:
        return jsonify({'error': 'Product ID cannot be empty'}), 400
    try:
        product_id = int(product_id)
    except (TypeError, ValueError, OverflowError):
        return jsonify({'error': 'Invalid product ID'}), 400

    product = db.session.get(Product, product_id)
    cart = cart_service.get_or_create_cart(current_user)
    mutation = cart_service.add_line(
        cart, product, quantity, data.get('customizations'))
    return _mutation_response(cart, mutation, 201)


@bp.route('/api/cart/items/<path:line_key>', methods=['PATCH'])
@login_required
@role_required('CUSTOMER')
def update_cart_item(line_key):
    data = json_body()
    quantity = data.get('quantity')

    if quantity is None:
        return jsonify({'error': 'Quantity cannot be empty'}), 400

    cart = cart_service.get_or_create_cart(current_user)
    mutation = cart_service.set_quantity(cart, line_key, quantity)
    return _mutation_response(cart, mutation)


@bp.route('/api/cart/items/<path:line_key>', methods=['DELETE'])
@login_required
@role_required('CUSTOMER')
def delete_cart_item(line_key):
    cart = cart_service.get_or_create_cart(current_user)
    mutation = cart_service.remove_line(cart, line_key)
    return _mutation_response(cart, mutation)


@bp.route('/api/cart', methods=['DELETE'])
@login_required
@role_required('CUSTOMER')
def clear_cart():
    cart = cart_service.get_or_create_cart(current_user)
    cart_service.clear_cart(cart)
    logger.info("Cart %s cleared by user %s", cart.id, current_user.id)
    return jsonify({'ok': True, **cart_service.serialize_cart(cart)})
