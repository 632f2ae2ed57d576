from flask import Blueprint, jsonify
from flask_login import login_required, current_user
from zellow.extensions import db
from zellow.models import (
    FeedbackThread,
    FeedbackMessage,
    FeedbackStatus,
    UserRole,
)
from zellow.errors import NotFoundError, PermissionDeniedError
from zellow.services.audit_service import audit_actor
from zellow.services.workflow import Workflow
from zellow.utils import json_body, isoformat, text_value
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('feedback', __name__)

CUSTOMER_BROADCAST = 'CUSTOMER_BROADCAST'
SNIPPET_LENGTH = 50

F = FeedbackStatus
FEEDBACK_WORKFLOW = Workflow('FEEDBACK_THREAD', {
    F.OPEN: {F.REPLIED, F.CLOSED},
    F.REPLIED: {F.REPLIED, F.CLOSED},
})


def thread_payload(thread, include_messages=False):
    data = {
        'id': thread.id,
        'subject': thread.subject,
        'sender_id': thread.sender_id,
        'sender_name': thread.sender_name,
        'sender_email': thread.sender_email,
        'target_role': thread.target_role,
        'target_user_id': thread.target_user_id,
        'status': thread.status.value,
        'last_message_snippet': thread.last_message_snippet,
        'last_replier_role': thread.last_replier_role,
        'created_at': isoformat(thread.created_at),
        'updated_at': isoformat(thread.updated_at),
    }
    if include_messages:
        data['messages'] = [
            {
                'id': m.id,
                'sender_id': m.sender_id,
                'sender_name': m.sender_name,
                'sender_role': m.sender_role,
                'message': m.message,
                'created_at': isoformat(m.created_at),
            }
            for m in thread.messages
        ]
    return data


def is_participant(thread, user):
    role = user.role.value
    if role == 'ADMIN' or thread.sender_id == user.id:
        return True
    if thread.target_user_id is not None:
        return thread.target_user_id == user.id
    if thread.target_role == CUSTOMER_BROADCAST:
        return role == 'CUSTOMER'
    return thread.target_role == role


def _get_thread(thread_id):
    thread = db.session.get(FeedbackThread, thread_id)
    if thread is None or not is_participant(thread, current_user):
        raise NotFoundError('Feedback thread not found')
    return thread


def _add_message(thread, text):
    thread.messages.append(FeedbackMessage(
        sender_id=current_user.id,
        sender_name=current_user.name,
        sender_role=current_user.role.value,
        message=text,
    ))
    thread.last_message_snippet = text[:SNIPPET_LENGTH]
    thread.last_replier_role = current_user.role.value


@bp.route('/api/feedback', methods=['POST'])
@login_required
def create_thread():
    data = json_body()
    subject = text_value(data.get('subject'))
    message = text_value(data.get('message'))
    target_role = text_value(data.get('target_role')).upper()

    if not subject or not message:
        return jsonify({'error': 'Subject and message are required'}), 400

    valid_roles = {r.value for r in UserRole} | {CUSTOMER_BROADCAST}
    if target_role not in valid_roles:
        return jsonify(
            {'error': 'Please select a recipient department'}), 400
    if (target_role == CUSTOMER_BROADCAST
            and current_user.role != UserRole.ADMIN):
        return jsonify(
            {'error': 'Only admins can message all customers'}), 403

    thread = FeedbackThread(
        subject=subject,
        sender_id=current_user.id,
        sender_name=current_user.name,
        sender_email=current_user.email,
        target_role=target_role,
        target_user_id=data.get('target_user_id'),
    )
    _add_message(thread, message)
    db.session.add(thread)
    db.session.commit()

    audit_actor(
        current_user,
        'FEEDBACK_CREATE',
        target_type='FEEDBACK_THREAD',
        target_id=thread.id,
        payload={'target_role': target_role})
    return jsonify({
        'ok': True,
        'thread': thread_payload(thread, include_messages=True),
    }), 201


@bp.route('/api/feedback', methods=['GET'])
@login_required
def list_threads():
    query = FeedbackThread.query
    if current_user.role != UserRole.ADMIN:
        role = current_user.role.value
        visible_roles = [role]
        if current_user.role == UserRole.CUSTOMER:
            visible_roles.append(CUSTOMER_BROADCAST)
        query = query.filter(db.or_(
            FeedbackThread.sender_id == current_user.id,
            FeedbackThread.target_user_id == current_user.id,
            db.and_(
                FeedbackThread.target_user_id.is_(None),
                FeedbackThread.target_role.in_(visible_roles),
            ),
        ))
    threads = query.order_by(FeedbackThread.updated_at.desc()).all()
    return jsonify({'threads': [thread_payload(t) for t in threads]})


@bp.route('/api/feedback/<int:thread_id>', methods=['GET'])
@login_required
def get_thread(thread_id):
    thread = _get_thread(thread_id)
    return jsonify(thread_payload(thread, include_messages=True))


@bp.route('/api/feedback/<int:thread_id>/messages', methods=['POST'])
@login_required
def reply(thread_id):
    text = text_value(json_body().get('message'))
    if not text:
        return jsonify({'error': 'Message cannot be empty'}), 400

    thread = _get_thread(thread_id)
    FEEDBACK_WORKFLOW.check(thread, F.REPLIED)
    _add_message(thread, text)
    FEEDBACK_WORKFLOW.advance(
        thread, F.REPLIED, current_user, 'FEEDBACK_REPLY',
        payload={'snippet': thread.last_message_snippet})
    return jsonify({
        'ok': True,
        'thread': thread_payload(thread, include_messages=True),
    }), 201


@bp.route('/api/feedback/<int:thread_id>/close', methods=['POST'])
@login_required
def close_thread(thread_id):
    thread = _get_thread(thread_id)
    if (thread.target_role == CUSTOMER_BROADCAST
            and current_user.role != UserRole.ADMIN):
        raise PermissionDeniedError('Only admins can close announcements')
    FEEDBACK_WORKFLOW.advance(
        thread, F.CLOSED, current_user, 'FEEDBACK_CLOSE')
    return jsonify({'ok': True, 'thread': thread_payload(thread)})
