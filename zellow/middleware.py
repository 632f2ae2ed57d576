from flask import request, jsonify
from flask_login import current_user
from functools import wraps
import logging

logger = logging.getLogger(__name__)

# Exact API paths reachable without a session
LOGIN_WHITELIST = frozenset({
    '/api/auth/login',
    '/api/auth/register',
    '/api/auth/token',
    '/api/shipping-methods',
    '/api/shipping-regions',
})

# Public gift tracking, plus the push endpoints that carry a bearer token
PUBLIC_PREFIXES = (
    '/api/track/',
    '/api/push/subscribe',
    '/api/push/unsubscribe',
)

SUPERUSER_ROLE = 'ADMIN'


def needs_session(method: str, path: str) -> bool:
    if method == 'OPTIONS' or not path.startswith('/api/'):
        return False
    if path in LOGIN_WHITELIST:
        return False
    return not path.startswith(PUBLIC_PREFIXES)


def setup_auth_middleware(app):

    @app.before_request
    def require_login():
        if not needs_session(request.method.upper(), request.path):
            return None
        if current_user.is_authenticated:
            return None
        return jsonify({'error': 'Not logged in',
                        'login_required': True}), 401


def role_required(*allowed_roles):
    """Allow the listed role names; ADMIN passes everywhere."""
    allowed = frozenset(allowed_roles) | {SUPERUSER_ROLE}

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                return jsonify({'error': 'Not logged in'}), 401

            role = current_user.role.value
            if role not in allowed:
                logger.warning(
                    "User %s with role %s refused at %s (allowed: %s)",
                    current_user.id, role, request.path,
                    ', '.join(sorted(allowed_roles)))
                return jsonify({'error': 'Insufficient permissions'}), 403

            return f(*args, **kwargs)
        return decorated_function
    return decorator
