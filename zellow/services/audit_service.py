"""Audit trail for business actions.

Rows land in ``audit_logs``; each one is echoed to the application log and,
for order, stock, invoice and account events, to ``major_events.log``.
"""
from zellow.extensions import db
from zellow.models import AuditLog
from flask import request, has_request_context
import logging
import json

logger = logging.getLogger(__name__)

major_logger = logging.getLogger('major_events')
if not major_logger.handlers:
    _major_handler = logging.FileHandler('major_events.log')
    _major_handler.setFormatter(
        logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
    major_logger.addHandler(_major_handler)
    major_logger.setLevel(logging.INFO)
    major_logger.propagate = False

MAJOR_ACTION_PREFIXES = (
    'LOGIN',
    'REGISTER',
    'USER_',
    'ORDER_',
    'PAYMENT_',
    'STOCK_',
    'INVOICE_',
)

PAYLOAD_BRIEF_LIMIT = 600

AUDIT_FIELDS = (
    'action', 'actor_role', 'actor_id', 'target_type', 'target_id',
    'method', 'path', 'payload',
)


def is_major(action):
    return bool(action) and action.startswith(MAJOR_ACTION_PREFIXES)


def _brief(payload):
    if payload is None:
        return None
    text = json.dumps(
        payload, ensure_ascii=False, separators=(',', ':'), default=str)
    if len(text) > PAYLOAD_BRIEF_LIMIT:
        text = text[:PAYLOAD_BRIEF_LIMIT] + '...'
    return text


def _request_meta():
    if not has_request_context():
        return {}
    return {
        'ip': request.remote_addr,
        'user_agent': request.headers.get('User-Agent'),
        'method': request.method,
        'path': request.path,
    }


def _format(event):
    return ' '.join(f'{name}={event.get(name)}' for name in AUDIT_FIELDS)


def log_audit(
        actor_id=None,
        actor_role='ANONYMOUS',
        action='',
        target_type=None,
        target_id=None,
        payload=None,
        ip=None,
        user_agent=None):
    """Persist an audit row and mirror it to the logs.

    Call after the business change has been committed. A failure here is
    logged and rolled back; the caller's response is unaffected.
    """
    meta = _request_meta()
    audit = AuditLog(
        actor_id=actor_id,
        actor_role=actor_role,
        action=action,
        target_type=target_type,
        target_id=str(target_id) if target_id is not None else None,
        ip=ip or meta.get('ip'),
        user_agent=user_agent or meta.get('user_agent'),
    )
    if payload:
        audit.set_payload(payload)

    try:
        db.session.add(audit)
        db.session.commit()
    except Exception as e:
        logger.error(f"Failed to log audit {action}: {e}", exc_info=True)
        db.session.rollback()
        return None

    line = _format({
        'action': action,
        'actor_role': actor_role,
        'actor_id': actor_id,
        'target_type': target_type,
        'target_id': target_id,
        'method': meta.get('method'),
        'path': meta.get('path'),
        'payload': _brief(payload),
    })
    logger.info("AUDIT %s", line)
    if is_major(action):
        major_logger.info(line)
    return audit


def audit_actor(user, action, target_type=None, target_id=None,
                payload=None):
    """``log_audit`` for an authenticated user (or ``None`` for system)."""
    if user is None:
        actor_id, actor_role = None, 'SYSTEM'
    else:
        actor_id, actor_role = user.id, user.role.value
    return log_audit(
        actor_id=actor_id,
        actor_role=actor_role,
        action=action,
        target_type=target_type,
        target_id=target_id,
        payload=payload,
    )
