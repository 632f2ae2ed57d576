from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from zellow.extensions import db
from zellow.models import PushSubscription, User
from zellow.middleware import role_required
from zellow.services import notification_service
from zellow.services.token_service import verify_token, bearer_token
from zellow.utils import json_body, text_value
from datetime import datetime
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('push', __name__)


@bp.route('/api/push/subscribe', methods=['POST'])
def subscribe():
    data = json_body()
    subscription = data.get('subscription')
    token = bearer_token(request, data)

    if not subscription or not token:
        return jsonify({
            'success': False,
            'error': 'Missing subscription or token',
        }), 400
    if not isinstance(subscription, dict) or not subscription.get('endpoint'):
        return jsonify({
            'success': False,
            'error': 'Subscription must include an endpoint',
        }), 400

    user = verify_token(token)

    record = db.session.get(PushSubscription, user.id)
    if record is None:
        record = PushSubscription(user_id=user.id)
        db.session.add(record)
    record.endpoint = subscription['endpoint']
    record.keys = subscription.get('keys') or {}
    record.created_at = datetime.utcnow()
    db.session.commit()

    logger.info("Push subscription stored for user %s", user.id)
    return jsonify({'success': True})


@bp.route('/api/push/unsubscribe', methods=['POST'])
def unsubscribe():
    data = json_body()
    token = bearer_token(request, data)
    if not token:
        return jsonify({'success': False, 'error': 'Missing token'}), 400

    user = verify_token(token)

    record = db.session.get(PushSubscription, user.id)
    if record is not None:
        db.session.delete(record)
        db.session.commit()
        logger.info("Push subscription removed for user %s", user.id)
    return jsonify({'success': True})


@bp.route('/api/push/send', methods=['POST'])
@login_required
@role_required('ADMIN')
def send():
    data = json_body()
    user_id = data.get('user_id')
    title = text_value(data.get('title'))
    body = text_value(data.get('body'))

    if not user_id or not title or not body:
        return jsonify({
            'success': False,
            'error': 'Missing user_id, title, or body',
        }), 400

    try:
        user = db.session.get(User, int(user_id))
    except (TypeError, ValueError, OverflowError):
        user = None
    if user is None:
        return jsonify({'success': False, 'error': 'User not found'}), 404

    result = notification_service.send_push_notification(
        user.id, title, body, data.get('url'))
    logger.info(
        "Admin %s sent test push to user %s: %s",
        current_user.id, user.id, result.message)
    return jsonify(result.to_dict())
