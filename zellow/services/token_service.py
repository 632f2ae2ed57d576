from zellow.extensions import db
from zellow.models import User
from zellow.errors import AuthenticationError
from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired
from flask import current_app
import logging

logger = logging.getLogger(__name__)

TOKEN_SALT = 'zellow-identity'


def _serializer():
    return URLSafeTimedSerializer(
        current_app.config['SECRET_KEY'], salt=TOKEN_SALT)


def issue_token(user):
    return _serializer().dumps({'uid': user.id})


def verify_token(token):
    """Return the active user the bearer token identifies."""
    if not token:
        raise AuthenticationError('Missing authentication token')
    try:
        data = _serializer().loads(
            token, max_age=current_app.config.get('AUTH_TOKEN_MAX_AGE', 3600))
    except SignatureExpired:
        raise AuthenticationError('Authentication token expired')
    except BadSignature:
        logger.warning("Rejected invalid identity token")
        raise AuthenticationError('Invalid authentication token')

    user = db.session.get(User, data.get('uid'))
    if user is None or not user.is_active:
        raise AuthenticationError('Unauthorized')
    return user


def bearer_token(request, data=None):
    """Token from the JSON body, falling back to the Authorization header."""
    token = (data or {}).get('token')
    if token:
        return token
    header = request.headers.get('Authorization', '')
    if header.lower().startswith('bearer '):
        return header[7:].strip()
    return None
