"""Turn a cart plus its checkout selections into an order.

The steps are gated in order: cart, shipping address, payment method,
shipping method, review. ``place_order`` writes the order, its item
snapshot, the first history entry and the stock decrements in a single
transaction.
"""
from zellow.extensions import db
from zellow.models import (
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    Product,
    ShippingMethod,
    ShippingRate,
    ShippingRegion,
    GiftDetails,
)
from zellow.errors import (
    ValidationError,
    CheckoutIncompleteError,
    NotFoundError,
    PersistenceError,
)
from zellow.services import cart_service
from zellow.services.audit_service import audit_actor
from zellow.services.order_events import broker
from zellow.utils import money, money_json
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from collections import defaultdict
import logging
import re

logger = logging.getLogger(__name__)

STEPS = ('cart', 'shipping_address', 'payment_method', 'shipping_method',
         'review')

ADDRESS_REQUIRED_FIELDS = ('full_name', 'address_line1', 'city', 'county',
                           'phone')
ADDRESS_OPTIONAL_FIELDS = ('address_line2', 'postal_code', 'email')

EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
PHONE_RE = re.compile(r'^\+?[0-9\s\-()]{10,}$')
GIFT_MESSAGE_MAX = 300


def _selected_shipping_method(cart):
    if cart.shipping_method_id is None:
        return None
    method = db.session.get(ShippingMethod, cart.shipping_method_id)
    if method is None or not method.active:
        return None
    return method


def next_incomplete_step(cart):
    """First step whose input is missing, or ``'review'``."""
    if not cart.lines:
        return 'cart'
    if not cart.shipping_address:
        return 'shipping_address'
    if cart.payment_method is None:
        return 'payment_method'
    if _selected_shipping_method(cart) is None:
        return 'shipping_method'
    return 'review'


def _require_step(cart, step):
    pending = next_incomplete_step(cart)
    if STEPS.index(pending) < STEPS.index(step):
        raise CheckoutIncompleteError(pending)


def validate_shipping_address(data):
    if not isinstance(data, dict):
        raise ValidationError('Shipping address must be an object')

    address = {}
    for field in ADDRESS_REQUIRED_FIELDS:
        value = str(data.get(field) or '').strip()
        if not value:
            raise ValidationError(f'{field} is required', field=field)
        address[field] = value
    for field in ADDRESS_OPTIONAL_FIELDS:
        value = str(data.get(field) or '').strip()
        if value:
            address[field] = value

    if len(address['full_name']) < 2:
        raise ValidationError(
            'Full name must be at least 2 characters', field='full_name')
    if len(address['address_line1']) < 5:
        raise ValidationError(
            'Address line 1 must be at least 5 characters',
            field='address_line1')
    if not PHONE_RE.match(address['phone']):
        raise ValidationError('Invalid phone number format', field='phone')
    if 'email' in address and not EMAIL_RE.match(address['email']):
        raise ValidationError('Invalid email address', field='email')

    region = _resolve_region(data.get('region_id'), address['city'])
    if region is not None:
        address['region_id'] = region.id
        address['region_name'] = region.name
    return address


def _resolve_region(raw_id, city):
    """The active region chosen with the address.

    A region is mandatory once any active region is configured.
    """
    if raw_id in (None, ''):
        if ShippingRegion.query.filter_by(active=True).first() is not None:
            raise ValidationError(
                'Please select your delivery region', field='region_id')
        return None
    try:
        region = db.session.get(ShippingRegion, int(raw_id))
    except (TypeError, ValueError, OverflowError):
        region = None
    if region is None or not region.active:
        raise ValidationError('Unknown delivery region', field='region_id')
    if not region.covers_town(city):
        raise ValidationError(
            f'{region.name} does not cover {city}', field='city')
    return region


def set_shipping_address(cart, data):
    _require_step(cart, 'shipping_address')
    cart.shipping_address = validate_shipping_address(data)
    db.session.commit()
    return cart.shipping_address


def set_payment_method(cart, value):
    _require_step(cart, 'payment_method')
    try:
        method = PaymentMethod[str(value or '').strip().upper()]
    except KeyError:
        raise ValidationError(
            'Payment method must be one of: '
            + ', '.join(m.value for m in PaymentMethod))
    cart.payment_method = method
    db.session.commit()
    return method


def set_shipping_method(cart, shipping_method_id):
    _require_step(cart, 'shipping_method')
    method = None
    if shipping_method_id is not None:
        try:
            method = db.session.get(ShippingMethod, int(shipping_method_id))
        except (TypeError, ValueError, OverflowError):
            raise ValidationError('Invalid shipping method')
    if method is None or not method.active:
        raise NotFoundError('Shipping method not found')
    cart.shipping_method_id = method.id
    db.session.commit()
    return method


def validate_gift_details(data):
    if not isinstance(data, dict):
        raise ValidationError('Gift details must be an object')
    gift = GiftDetails.from_dict(data)

    if not gift.recipient_name:
        raise ValidationError(
            "Recipient's full name is required for gifts",
            field='recipient_name')
    if len(gift.gift_message) > GIFT_MESSAGE_MAX:
        raise ValidationError(
            f'Gift message cannot exceed {GIFT_MESSAGE_MAX} characters',
            field='gift_message')

    method = gift.recipient_contact_method
    if method not in ('', 'email', 'phone'):
        raise ValidationError(
            'Contact method must be email or phone',
            field='recipient_contact_method')
    if gift.notify_recipient:
        if not method:
            raise ValidationError(
                'Recipient contact method is required if notifying',
                field='recipient_contact_method')
        if not gift.recipient_contact_value:
            raise ValidationError(
                'Recipient contact detail is required if notifying',
                field='recipient_contact_value')
    value = gift.recipient_contact_value
    if value and method == 'email' and not EMAIL_RE.match(value):
        raise ValidationError(
            'Invalid recipient email address',
            field='recipient_contact_value')
    if value and method == 'phone' and not PHONE_RE.match(value):
        raise ValidationError(
            'Invalid recipient phone number (min 10 digits)',
            field='recipient_contact_value')
    return gift


def set_gift_details(cart, data):
    _require_step(cart, 'payment_method')
    gift = validate_gift_details(data)
    cart.is_gift = True
    cart.gift_details = gift.to_dict()
    db.session.commit()
    return gift


def clear_gift_details(cart):
    cart.is_gift = False
    cart.gift_details = None
    db.session.commit()


def initial_payment_status(payment_method):
    sync_methods = current_app.config.get(
        'SYNC_PAYMENT_METHODS', ('MPESA', 'CARD'))
    if payment_method.value in sync_methods:
        return PaymentStatus.PAID
    return PaymentStatus.PENDING


def region_id_of(address):
    return (address or {}).get('region_id')


def shipping_price(method, region_id=None):
    """The region's active rate for ``method``, else its base price."""
    if region_id is not None:
        rate = ShippingRate.query.filter_by(
            region_id=region_id, method_id=method.id, active=True).first()
        if rate is not None and rate.region.active:
            return money(rate.custom_price)
    return money(method.base_price)


def checkout_summary(cart):
    method = _selected_shipping_method(cart)
    sub_total = cart_service.subtotal(cart)
    region_id = region_id_of(cart.shipping_address)
    shipping_cost = (
        shipping_price(method, region_id) if method else money(0))
    return {
        'next_step': next_incomplete_step(cart),
        'cart': cart_service.serialize_cart(cart),
        'shipping_address': cart.shipping_address,
        'payment_method': (
            cart.payment_method.value if cart.payment_method else None),
        'shipping_method': {
            'id': method.id,
            'name': method.name,
            'duration': method.duration,
            'price': money_json(shipping_cost),
        } if method else None,
        'is_gift': cart.is_gift,
        'gift_details': cart.gift_details,
        'sub_total': money_json(sub_total),
        'shipping_cost': money_json(shipping_cost),
        'total_amount': money_json(sub_total + shipping_cost),
    }


def _reserve_stock(cart):
    """Check live stock for every line before anything is written."""
    needed = defaultdict(int)
    names = {}
    for line in cart.lines:
        needed[line.product_id] += line.quantity
        names[line.product_id] = line.name

    products = Product.query.filter(
        Product.id.in_(list(needed))).with_for_update().all()
    by_id = {p.id: p for p in products}

    for product_id, quantity in needed.items():
        product = by_id.get(product_id)
        if product is None or not product.published:
            raise ValidationError(
                f'{names[product_id]} is no longer available',
                product_id=product_id)
        if product.stock < quantity:
            raise ValidationError(
                f'Only {product.stock} units of {product.name} available',
                product_id=product_id)
    return by_id, needed


def place_order(cart, actor):
    step = next_incomplete_step(cart)
    if step != 'review':
        raise CheckoutIncompleteError(step)

    products, needed = _reserve_stock(cart)
    shipping_method = _selected_shipping_method(cart)
    address = cart.shipping_address

    sub_total = cart_service.subtotal(cart)
    shipping_cost = shipping_price(
        shipping_method, region_id_of(address))

    order = Order(
        customer_id=actor.id,
        customer_name=address['full_name'],
        customer_email=address.get('email') or actor.email,
        customer_phone=address.get('phone'),
        sub_total=sub_total,
        shipping_cost=shipping_cost,
        total_amount=sub_total + shipping_cost,
        payment_method=cart.payment_method,
        payment_status=initial_payment_status(cart.payment_method),
        shipping_address=dict(address),
        shipping_method_id=shipping_method.id,
        shipping_method_name=shipping_method.name,
        is_gift=bool(cart.is_gift and cart.gift_details),
        gift_details=cart.gift_details if cart.is_gift else None,
    )
    for line in cart.lines:
        order.items.append(OrderItem(
            product_id=line.product_id,
            name=line.name,
            price=money(line.effective_price),
            quantity=line.quantity,
            customizations=line.customizations,
            image_url=line.image_url,
        ))
    order.record_status(
        OrderStatus.PENDING, actor_id=actor.id, notes='Order placed')

    for product_id, quantity in needed.items():
        products[product_id].stock -= quantity

    try:
        db.session.add(order)
        cart_service.clear_cart(cart, commit=False)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to place order: {e}", exc_info=True)
        raise PersistenceError('Could not place order, please try again')

    logger.info(
        "Order %s placed by user %s total=%s payment=%s/%s",
        order.id, actor.id, order.total_amount,
        order.payment_method.value, order.payment_status.value)

    audit_actor(
        actor,
        'ORDER_CREATE',
        target_type='ORDER',
        target_id=order.id,
        payload={
            'total_amount': money_json(order.total_amount),
            'item_count': len(order.items),
            'payment_method': order.payment_method.value,
            'is_gift': order.is_gift,
        })
    broker.publish(order.id, len(order.delivery_history))
    return order
