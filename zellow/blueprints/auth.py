from flask import Blueprint, jsonify, current_app
from flask_login import (
    login_user,
    logout_user,
    login_required,
    current_user,
)
from zellow.extensions import db
from zellow.models import (
    User,
    UserRole,
    UserStatus,
    Cart,
    ApprovalRequest,
    ApprovalRequestType,
)
from zellow.services.audit_service import log_audit
from zellow.services.token_service import issue_token
from zellow.utils import json_body, isoformat, text_value
from datetime import datetime
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('auth', __name__)


def user_payload(user):
    return {
        'id': user.id,
        'email': user.email,
        'display_name': user.display_name,
        'phone': user.phone,
        'role': user.role.value,
        'status': user.status.value,
        'created_at': isoformat(user.created_at),
    }


def _authenticate(data):
    """Return ``(user, error_response)`` for an email/password payload."""
    email = text_value(data.get('email')).lower()
    password = str(data.get('password') or '')

    if not email or not password:
        return None, (
            jsonify({'error': 'Email and password cannot be empty'}), 400)

    user = User.query.filter_by(email=email).first()
    if not user or not user.check_password(password) or not user.is_active:
        log_audit(
            actor_id=None,
            actor_role='ANONYMOUS',
            action='LOGIN_FAILED',
            target_type='USER',
            target_id=None,
            payload={
                'reason': 'invalid_credentials' if user
                else 'user_not_found'})
        return None, (jsonify({'error': 'Invalid email or password'}), 401)

    if user.status == UserStatus.PENDING:
        return None, (jsonify({
            'error': 'Your account is awaiting admin approval',
            'status': user.status.value,
        }), 403)
    if user.status == UserStatus.REJECTED:
        return None, (jsonify({
            'error': 'Your registration was rejected',
            'status': user.status.value,
            'reason': user.rejection_reason,
        }), 403)
    return user, None


@bp.route('/api/auth/login', methods=['POST'])
def login():
    user, error = _authenticate(json_body())
    if error:
        return error

    login_user(user, remember=True)
    user.last_login_at = datetime.utcnow()
    db.session.commit()

    log_audit(
        actor_id=user.id,
        actor_role=user.role.value,
        action='LOGIN_SUCCESS',
        target_type='USER',
        target_id=user.id,
        payload={'event': 'login_success'}
    )
    return jsonify({'ok': True, 'user': user_payload(user)})


@bp.route('/api/auth/logout', methods=['POST'])
@login_required
def logout():
    user_id = current_user.id
    role = current_user.role.value
    logout_user()
    log_audit(
        actor_id=user_id,
        actor_role=role,
        action='LOGOUT',
        target_type='USER',
        target_id=user_id,
    )
    return jsonify({'ok': True})


@bp.route('/api/auth/register', methods=['POST'])
def register():
    data = json_body()
    email = text_value(data.get('email')).lower()
    password = str(data.get('password') or '')
    display_name = text_value(data.get('display_name')) or None
    phone = text_value(data.get('phone')) or None
    role = (text_value(data.get('role')) or 'CUSTOMER').upper()

    if not email or not password:
        return jsonify({'error': 'Email and password cannot be empty'}), 400

    if len(password) < 6:
        return jsonify(
            {'error': 'Password must be at least 6 characters'}), 400

    # Check if email already exists
    if User.query.filter_by(email=email).first():
        return jsonify({'error': 'Email already registered'}), 400

    # Validate role; admins are never self-registered
    try:
        user_role = UserRole[role]
    except KeyError:
        return jsonify({'error': f'Unknown role {role}'}), 400
    if user_role == UserRole.ADMIN:
        return jsonify({'error': 'Cannot register as admin'}), 403

    is_customer = user_role == UserRole.CUSTOMER
    user = User(
        email=email,
        display_name=display_name,
        phone=phone,
        role=user_role,
        status=UserStatus.APPROVED if is_customer else UserStatus.PENDING,
    )
    user.set_password(password)
    db.session.add(user)
    db.session.flush()  # Get user.id

    if is_customer:
        db.session.add(Cart(user_id=user.id))
    else:
        # Staff accounts wait for an admin
        db.session.add(ApprovalRequest(
            type=ApprovalRequestType.USER_REGISTRATION,
            requested_by=user.id,
            requested_by_name=user.name,
            requested_by_email=user.email,
            details={'user_id': user.id, 'role': user_role.value},
        ))

    db.session.commit()

    log_audit(
        actor_id=user.id,
        actor_role=user.role.value,
        action='REGISTER',
        target_type='USER',
        target_id=user.id,
        payload={'role': user_role.value, 'status': user.status.value}
    )

    if is_customer:
        login_user(user, remember=True)

    return jsonify({'ok': True, 'user': user_payload(user)}), 201


@bp.route('/api/auth/token', methods=['POST'])
def token():
    """Issue a bearer identity token for the push endpoints."""
    if current_user.is_authenticated:
        user = current_user
    else:
        user, error = _authenticate(json_body())
        if error:
            return error

    return jsonify({
        'token': issue_token(user),
        'expires_in': current_app.config.get('AUTH_TOKEN_MAX_AGE', 3600),
    })


@bp.route('/api/auth/me', methods=['GET'])
@login_required
def me():
    return jsonify({'user': user_payload(current_user)})
