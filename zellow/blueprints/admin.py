from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from zellow.extensions import db
from zellow.models import (
    Product,
    ShippingMethod,
    ShippingRate,
    ShippingRegion,
    User,
    UserRole,
)
from zellow.errors import NotFoundError, ValidationError
from zellow.middleware import role_required
from zellow.services.audit_service import log_audit
from zellow.utils import json_body, money, money_json, isoformat, text_value
from decimal import InvalidOperation
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('admin', __name__)

OPTION_TYPES = {
    'dropdown',
    'text',
    'checkbox',
    'checkbox_group',
    'color_picker',
    'image_upload',
}
CHOICE_TYPES = {'dropdown', 'checkbox_group'}


def product_payload(product):
    return {
        'id': product.id,
        'name': product.name,
        'description': product.description,
        'price': money_json(product.price),
        'supplier_price': money_json(product.supplier_price),
        'stock': product.stock,
        'published': product.published,
        'image_url': product.image_url,
        'customization_options': product.customization_options or [],
        'updated_at': isoformat(product.updated_at),
    }


def shipping_method_payload(method):
    return {
        'id': method.id,
        'name': method.name,
        'description': method.description,
        'duration': method.duration,
        'base_price': money_json(method.base_price),
        'active': method.active,
    }


def _price(value, field):
    try:
        amount = money(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f'{field} must be a number')
    if amount < 0:
        raise ValidationError(f'{field} cannot be negative')
    return amount


def _stock(value):
    try:
        stock = int(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError('Stock must be a whole number')
    if stock < 0:
        raise ValidationError('Stock cannot be negative')
    return stock


def _options(raw):
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError('customization_options must be a list')

    seen = set()
    for option in raw:
        if not isinstance(option, dict) or not option.get('id'):
            raise ValidationError('Each customization option needs an id')
        if option['id'] in seen:
            raise ValidationError(f"Duplicate option id {option['id']}")
        seen.add(option['id'])
        if option.get('type') not in OPTION_TYPES:
            raise ValidationError(
                f"Unsupported option type for {option['id']}")
        if option['type'] in CHOICE_TYPES and not option.get('choices'):
            raise ValidationError(
                f"Option {option['id']} needs at least one choice")
    return raw


def _apply_product_fields(product, data):
    if 'name' in data:
        name = text_value(data.get('name'))
        if not name:
            raise ValidationError('Product name cannot be empty')
        product.name = name
    if 'description' in data:
        product.description = text_value(data.get('description')) or None
    if 'price' in data:
        product.price = _price(data.get('price'), 'Price')
    if 'supplier_price' in data:
        raw = data.get('supplier_price')
        product.supplier_price = (
            None if raw is None else _price(raw, 'Supplier price'))
    if 'stock' in data:
        product.stock = _stock(data.get('stock'))
    if 'published' in data:
        product.published = bool(data.get('published'))
    if 'image_url' in data:
        product.image_url = text_value(data.get('image_url')) or None
    if 'customization_options' in data:
        product.customization_options = _options(
            data.get('customization_options'))


@bp.route('/api/admin/products', methods=['GET'])
@login_required
@role_required('ADMIN')
def list_products():
    products = Product.query.order_by(Product.name).all()
    return jsonify({'items': [product_payload(p) for p in products]})


@bp.route('/api/admin/products', methods=['POST'])
@login_required
@role_required('ADMIN')
def create_product():
    data = json_body()
    if 'name' not in data or 'price' not in data:
        return jsonify({'error': 'Name and price are required'}), 400

    product = Product(stock=0, published=True)
    _apply_product_fields(product, data)
    db.session.add(product)
    db.session.commit()

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        action='PRODUCT_CREATE',
        target_type='PRODUCT',
        target_id=product.id,
        payload={'name': product.name, 'price': money_json(product.price)}
    )
    return jsonify({'ok': True, 'product': product_payload(product)}), 201


@bp.route('/api/admin/products/<int:product_id>', methods=['PUT', 'PATCH'])
@login_required
@role_required('ADMIN')
def update_product(product_id):
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError('Product not found')

    data = json_body()
    _apply_product_fields(product, data)
    db.session.commit()

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        action='PRODUCT_UPDATE',
        target_type='PRODUCT',
        target_id=product.id,
        payload={'fields': sorted(data.keys())}
    )
    return jsonify({'ok': True, 'product': product_payload(product)})


@bp.route('/api/admin/shipping-methods', methods=['GET'])
@login_required
@role_required('ADMIN')
def list_shipping_methods():
    methods = ShippingMethod.query.order_by(ShippingMethod.base_price).all()
    return jsonify({'items': [shipping_method_payload(m) for m in methods]})


@bp.route('/api/admin/shipping-methods', methods=['POST'])
@login_required
@role_required('ADMIN')
def create_shipping_method():
    data = json_body()
    name = text_value(data.get('name'))
    if not name or 'base_price' not in data:
        return jsonify({'error': 'Name and base_price are required'}), 400

    method = ShippingMethod(
        name=name,
        description=text_value(data.get('description')) or None,
        duration=text_value(data.get('duration')) or None,
        base_price=_price(data.get('base_price'), 'Base price'),
        active=bool(data.get('active', True)),
    )
    db.session.add(method)
    db.session.commit()

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        action='SHIPPING_METHOD_CREATE',
        target_type='SHIPPING_METHOD',
        target_id=method.id,
        payload={'name': method.name}
    )
    return jsonify({
        'ok': True,
        'shipping_method': shipping_method_payload(method),
    }), 201


@bp.route('/api/admin/shipping-methods/<int:method_id>',
          methods=['PUT', 'PATCH'])
@login_required
@role_required('ADMIN')
def update_shipping_method(method_id):
    method = db.session.get(ShippingMethod, method_id)
    if method is None:
        raise NotFoundError('Shipping method not found')

    data = json_body()
    if 'name' in data:
        name = text_value(data.get('name'))
        if not name:
            return jsonify({'error': 'Name cannot be empty'}), 400
        method.name = name
    if 'description' in data:
        method.description = text_value(data.get('description')) or None
    if 'duration' in data:
        method.duration = text_value(data.get('duration')) or None
    if 'base_price' in data:
        method.base_price = _price(data.get('base_price'), 'Base price')
    if 'active' in data:
        method.active = bool(data.get('active'))
    db.session.commit()

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        action='SHIPPING_METHOD_UPDATE',
        target_type='SHIPPING_METHOD',
        target_id=method.id,
        payload={'fields': sorted(data.keys())}
    )
    return jsonify({
        'ok': True,
        'shipping_method': shipping_method_payload(method),
    })


def region_payload(region):
    return {
        'id': region.id,
        'name': region.name,
        'county': region.county,
        'towns': region.towns or [],
        'active': region.active,
        'updated_at': isoformat(region.updated_at),
    }


def rate_payload(rate):
    return {
        'id': rate.id,
        'region_id': rate.region_id,
        'region_name': rate.region.name if rate.region else None,
        'method_id': rate.method_id,
        'method_name': rate.method.name if rate.method else None,
        'custom_price': money_json(rate.custom_price),
        'notes': rate.notes,
        'active': rate.active,
    }


def _towns(raw):
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = raw.split(',')
    if not isinstance(raw, list):
        raise ValidationError('towns must be a list')
    towns = []
    for town in raw:
        town = text_value(town)
        if town and town.lower() not in {t.lower() for t in towns}:
            towns.append(town)
    return towns


def _apply_region_fields(region, data):
    for field in ('name', 'county'):
        if field in data:
            value = text_value(data.get(field))
            if not value:
                raise ValidationError(f'{field} cannot be empty')
            setattr(region, field, value)
    if 'towns' in data:
        region.towns = _towns(data.get('towns'))
    if 'active' in data:
        region.active = bool(data.get('active'))


def _get_or_404(model, ident, label):
    record = db.session.get(model, ident)
    if record is None:
        raise NotFoundError(f'{label} not found')
    return record


@bp.route('/api/admin/shipping-regions', methods=['GET'])
@login_required
@role_required('ADMIN')
def list_shipping_regions():
    regions = ShippingRegion.query.order_by(ShippingRegion.name).all()
    return jsonify({'items': [region_payload(r) for r in regions]})


@bp.route('/api/admin/shipping-regions', methods=['POST'])
@login_required
@role_required('ADMIN')
def create_shipping_region():
    data = json_body()
    if not text_value(data.get('name')) or not text_value(data.get('county')):
        return jsonify({'error': 'Name and county are required'}), 400

    region = ShippingRegion(towns=[], active=True)
    _apply_region_fields(region, data)
    db.session.add(region)
    db.session.commit()

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        action='SHIPPING_REGION_CREATE',
        target_type='SHIPPING_REGION',
        target_id=region.id,
        payload={'name': region.name, 'towns': len(region.towns)}
    )
    return jsonify({
        'ok': True,
        'shipping_region': region_payload(region),
    }), 201


@bp.route('/api/admin/shipping-regions/<int:region_id>',
          methods=['PUT', 'PATCH'])
@login_required
@role_required('ADMIN')
def update_shipping_region(region_id):
    region = _get_or_404(ShippingRegion, region_id, 'Shipping region')
    data = json_body()
    _apply_region_fields(region, data)
    db.session.commit()

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        action='SHIPPING_REGION_UPDATE',
        target_type='SHIPPING_REGION',
        target_id=region.id,
        payload={'fields': sorted(data.keys())}
    )
    return jsonify({'ok': True, 'shipping_region': region_payload(region)})


@bp.route('/api/admin/shipping-regions/<int:region_id>', methods=['DELETE'])
@login_required
@role_required('ADMIN')
def delete_shipping_region(region_id):
    """Remove a region together with its rates."""
    region = _get_or_404(ShippingRegion, region_id, 'Shipping region')
    name = region.name
    db.session.delete(region)
    db.session.commit()

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        action='SHIPPING_REGION_DELETE',
        target_type='SHIPPING_REGION',
        target_id=region_id,
        payload={'name': name}
    )
    return jsonify({'ok': True})


@bp.route('/api/admin/shipping-rates', methods=['GET'])
@login_required
@role_required('ADMIN')
def list_shipping_rates():
    query = ShippingRate.query
    region_id = request.args.get('region_id', type=int)
    if region_id is not None:
        query = query.filter_by(region_id=region_id)
    rates = query.order_by(ShippingRate.created_at.desc()).all()
    return jsonify({'items': [rate_payload(r) for r in rates]})


@bp.route('/api/admin/shipping-rates', methods=['POST'])
@login_required
@role_required('ADMIN')
def create_shipping_rate():
    data = json_body()
    if any(data.get(k) is None
           for k in ('region_id', 'method_id', 'custom_price')):
        return jsonify({
            'error': 'region_id, method_id and custom_price are required'
        }), 400

    try:
        region_id = int(data.get('region_id'))
        method_id = int(data.get('method_id'))
    except (TypeError, ValueError, OverflowError):
        return jsonify({'error': 'Invalid region or method ID'}), 400
    _get_or_404(ShippingRegion, region_id, 'Shipping region')
    _get_or_404(ShippingMethod, method_id, 'Shipping method')

    if ShippingRate.query.filter_by(
            region_id=region_id, method_id=method_id).first():
        return jsonify({
            'error': 'A rate for this region and method already exists'
        }), 409

    rate = ShippingRate(
        region_id=region_id,
        method_id=method_id,
        custom_price=_price(data.get('custom_price'), 'Custom price'),
        notes=text_value(data.get('notes')) or None,
        active=bool(data.get('active', True)),
    )
    db.session.add(rate)
    db.session.commit()

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        action='SHIPPING_RATE_CREATE',
        target_type='SHIPPING_RATE',
        target_id=rate.id,
        payload={
            'region_id': region_id,
            'method_id': method_id,
            'custom_price': money_json(rate.custom_price),
        }
    )
    return jsonify({'ok': True, 'shipping_rate': rate_payload(rate)}), 201


@bp.route('/api/admin/shipping-rates/<int:rate_id>', methods=['PUT', 'PATCH'])
@login_required
@role_required('ADMIN')
def update_shipping_rate(rate_id):
    rate = _get_or_404(ShippingRate, rate_id, 'Shipping rate')
    data = json_body()
    if 'custom_price' in data:
        rate.custom_price = _price(data.get('custom_price'), 'Custom price')
    if 'notes' in data:
        rate.notes = text_value(data.get('notes')) or None
    if 'active' in data:
        rate.active = bool(data.get('active'))
    db.session.commit()

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        action='SHIPPING_RATE_UPDATE',
        target_type='SHIPPING_RATE',
        target_id=rate.id,
        payload={'fields': sorted(data.keys())}
    )
    return jsonify({'ok': True, 'shipping_rate': rate_payload(rate)})


@bp.route('/api/admin/shipping-rates/<int:rate_id>', methods=['DELETE'])
@login_required
@role_required('ADMIN')
def delete_shipping_rate(rate_id):
    rate = _get_or_404(ShippingRate, rate_id, 'Shipping rate')
    db.session.delete(rate)
    db.session.commit()

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        action='SHIPPING_RATE_DELETE',
        target_type='SHIPPING_RATE',
        target_id=rate_id,
    )
    return jsonify({'ok': True})


@bp.route('/api/admin/users', methods=['GET'])
@login_required
@role_required('ADMIN')
def list_users():
    page = request.args.get('page', 1, type=int)
    per_page = request.args.get('per_page', 20, type=int)
    role_filter = request.args.get('role')

    query = User.query
    if role_filter:
        try:
            query = query.filter_by(role=UserRole[role_filter.upper()])
        except KeyError:
            return jsonify({'error': f'Unknown role {role_filter}'}), 400

    users = query.order_by(User.created_at.desc()).paginate(
        page=page, per_page=per_page, error_out=False
    )
    return jsonify({
        'items': [{
            'id': u.id,
            'email': u.email,
            'name': u.name,
            'role': u.role.value,
            'status': u.status.value,
            'is_active': u.is_active,
            'created_at': isoformat(u.created_at),
        } for u in users.items],
        'page': users.page,
        'total': users.total,
    })


@bp.route('/api/admin/users/<int:user_id>/status', methods=['PATCH'])
@login_required
@role_required('ADMIN')
def update_user_status(user_id):
    if user_id == current_user.id:
        return jsonify({'error': 'You cannot change your own status'}), 400

    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError('User not found')
    if user.role == UserRole.ADMIN:
        return jsonify({'error': 'Cannot change admin status'}), 400

    data = json_body()
    if 'is_active' not in data:
        return jsonify({'error': 'is_active is required'}), 400

    user.is_active = bool(data.get('is_active'))
    db.session.commit()

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        action='USER_STATUS_UPDATE',
        target_type='USER',
        target_id=user.id,
        payload={'is_active': user.is_active}
    )
    return jsonify({'ok': True, 'is_active': user.is_active})
