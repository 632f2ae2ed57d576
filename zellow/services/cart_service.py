"""Server-side shopping cart.

A cart line is identified by the product id plus the normalized set of
customizations, so the same product with two different engravings sits in
two parallel lines. Quantities are clamped to the stock seen at the time of
the mutation; every mutation commits.
"""
from zellow.extensions import db
from zellow.models import Cart, CartLine
from zellow.errors import ValidationError, NotFoundError, OutOfStockError
from zellow.utils import money, money_json
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import logging

logger = logging.getLogger(__name__)

CHOICE_OPTION_TYPES = ('dropdown', 'checkbox_group')


@dataclass
class CartMutation:
    line: CartLine = None
    stock_limited: bool = False
    removed: bool = False

    @property
    def message(self):
        if self.removed:
            return 'Item removed from cart'
        if self.stock_limited:
            return (
                f'Only {self.line.stock} units of {self.line.name} '
                'available'
            )
        return 'Cart updated'


def get_or_create_cart(user):
    cart = Cart.query.filter_by(user_id=user.id).first()
    if not cart:
        cart = Cart(user_id=user.id)
        db.session.add(cart)
        db.session.commit()
    return cart


def _coerce_quantity(value):
    if isinstance(value, bool):
        raise ValidationError('Quantity must be an integer')
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError('Quantity must be an integer')


def _is_empty(value):
    return value is None or value is False or value == '' or value == []


def normalize_customizations(customizations):
    if not customizations:
        return {}
    if not isinstance(customizations, dict):
        raise ValidationError('Customizations must be an object')
    return {
        str(key): value
        for key, value in customizations.items()
        if not _is_empty(value)
    }


def _key_value(value):
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (list, tuple)):
        return ','.join(str(v) for v in value)
    return str(value)


def line_key(product_id, customizations=None):
    """Stable identity of a cart line.

    >>> line_key(7, {'color': 'red', 'engraving': 'Amy'})
    '7_color:red|engraving:Amy'
    """
    normalized = normalize_customizations(customizations)
    if not normalized:
        return str(product_id)
    parts = '|'.join(
        f'{key}:{_key_value(normalized[key])}'
        for key in sorted(normalized)
    )
    return f'{product_id}_{parts}'


def _choice_adjustment(option, value):
    for choice in option.get('choices') or []:
        if str(choice.get('value')) == str(value):
            return money(choice.get('price_adjustment') or 0)
    raise ValidationError(
        f'Invalid choice "{value}" for {option.get("label") or option["id"]}')


def customization_price(product, customizations=None):
    """Unit price of ``product`` with the selected customizations applied."""
    normalized = normalize_customizations(customizations)
    options = {
        str(opt['id']): opt for opt in (product.customization_options or [])
    }

    for option_id, option in options.items():
        if option.get('required') and option_id not in normalized:
            raise ValidationError(
                f'{option.get("label") or option_id} is required')

    price = money(product.price)
    for option_id, value in normalized.items():
        option = options.get(option_id)
        if option is None:
            raise ValidationError(f'Unknown customization "{option_id}"')

        option_type = option.get('type')
        if option_type in CHOICE_OPTION_TYPES:
            values = value if isinstance(value, (list, tuple)) else [value]
            for v in values:
                price += _choice_adjustment(option, v)
        elif option_type == 'checkbox':
            adjustment = option.get('price_adjustment_if_checked')
            if adjustment is None and option.get('choices'):
                adjustment = option['choices'][0].get('price_adjustment')
            price += money(adjustment or 0)
        # text, color_picker and image_upload carry no price change

    return price


def _touch(cart):
    cart.updated_at = datetime.utcnow()


def add_line(cart, product, quantity=1, customizations=None):
    quantity = _coerce_quantity(quantity)
    if quantity < 1:
        raise ValidationError('Quantity must be greater than 0')

    if product is None or not product.published:
        raise NotFoundError('Product not found')

    normalized = normalize_customizations(customizations)
    effective_price = customization_price(product, normalized)

    if product.stock <= 0:
        raise OutOfStockError(product.name)

    key = line_key(product.id, normalized)
    line = cart.find_line(key)
    requested = quantity + (line.quantity if line else 0)
    stock_limited = requested > product.stock
    final_quantity = min(requested, product.stock)

    if line is None:
        line = CartLine(
            line_key=key,
            product_id=product.id,
            name=product.name,
            customizations=normalized or None,
            image_url=product.image_url,
            quantity=final_quantity,
        )
        cart.lines.append(line)
    else:
        line.quantity = final_quantity

    # Refresh price and stock snapshot from the live product
    line.unit_price = money(product.price)
    line.effective_price = effective_price
    line.stock = product.stock
    _touch(cart)
    db.session.commit()

    if stock_limited:
        logger.info(
            "Cart %s line %s clamped to stock %s (requested %s)",
            cart.id, key, product.stock, requested)
    return CartMutation(line=line, stock_limited=stock_limited)


def _get_line(cart, key):
    line = cart.find_line(key)
    if line is None:
        raise NotFoundError('Cart item not found')
    return line


def set_quantity(cart, key, quantity):
    quantity = _coerce_quantity(quantity)
    line = _get_line(cart, key)

    if quantity <= 0:
        cart.lines.remove(line)
        _touch(cart)
        db.session.commit()
        return CartMutation(line=line, removed=True)

    stock_limited = quantity > line.stock
    line.quantity = min(quantity, line.stock)
    _touch(cart)
    db.session.commit()
    return CartMutation(line=line, stock_limited=stock_limited)


def remove_line(cart, key):
    line = _get_line(cart, key)
    cart.lines.remove(line)
    _touch(cart)
    db.session.commit()
    return CartMutation(line=line, removed=True)


def clear_cart(cart, commit=True):
    """Empty the cart and forget every checkout selection."""
    cart.lines.clear()
    cart.shipping_address = None
    cart.payment_method = None
    cart.shipping_method_id = None
    cart.is_gift = False
    cart.gift_details = None
    _touch(cart)
    if commit:
        db.session.commit()


def subtotal(cart) -> Decimal:
    return sum(
        (money(line.effective_price) * line.quantity for line in cart.lines),
        Decimal('0.00'),
    )


def total_item_count(cart) -> int:
    return sum(line.quantity for line in cart.lines)


def serialize_line(line):
    return {
        'line_key': line.line_key,
        'product_id': line.product_id,
        'name': line.name,
        'unit_price': money_json(line.unit_price),
        'effective_price': money_json(line.effective_price),
        'quantity': line.quantity,
        'stock': line.stock,
        'customizations': line.customizations or {},
        'image_url': line.image_url,
        'line_total': money_json(money(line.effective_price) * line.quantity),
    }


def serialize_cart(cart):
    return {
        'cart_id': cart.id,
        'items': [serialize_line(line) for line in cart.lines],
        'subtotal': money_json(subtotal(cart)),
        'total_items': total_item_count(cart),
    }
