from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from zellow.extensions import db
from zellow.models import (
    ApprovalRequest,
    ApprovalRequestType,
    ApprovalStatus,
    User,
    UserStatus,
)
from zellow.errors import NotFoundError
from zellow.middleware import role_required
from zellow.services.workflow import Workflow
from zellow.utils import json_body, isoformat, text_value
from datetime import datetime
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('approvals', __name__)

APPROVAL_WORKFLOW = Workflow('APPROVAL_REQUEST', {
    ApprovalStatus.PENDING: {ApprovalStatus.APPROVED, ApprovalStatus.REJECTED},
})


def approval_payload(req):
    return {
        'id': req.id,
        'type': req.type.value,
        'status': req.status.value,
        'requested_by': req.requested_by,
        'requested_by_name': req.requested_by_name,
        'requested_by_email': req.requested_by_email,
        'details': req.details or {},
        'resolved_by': req.resolved_by,
        'resolved_at': isoformat(req.resolved_at),
        'resolution_notes': req.resolution_notes,
        'created_at': isoformat(req.created_at),
    }


def _get_request(request_id):
    req = db.session.get(ApprovalRequest, request_id)
    if req is None:
        raise NotFoundError('Approval request not found')
    return req


def _registered_user(req):
    if req.type != ApprovalRequestType.USER_REGISTRATION:
        return None
    user_id = (req.details or {}).get('user_id', req.requested_by)
    return db.session.get(User, user_id)


@bp.route('/api/approvals', methods=['GET'])
@login_required
@role_required('ADMIN')
def list_approvals():
    query = ApprovalRequest.query
    status = request.args.get('status')
    if status:
        try:
            query = query.filter(
                ApprovalRequest.status == ApprovalStatus(status))
        except ValueError:
            return jsonify({'error': f'Unknown status {status}'}), 400
    requests = query.order_by(ApprovalRequest.created_at.desc()).all()
    return jsonify({'approvals': [approval_payload(r) for r in requests]})


@bp.route('/api/approvals/<int:request_id>/approve', methods=['POST'])
@login_required
@role_required('ADMIN')
def approve(request_id):
    req = _get_request(request_id)
    APPROVAL_WORKFLOW.check(req, ApprovalStatus.APPROVED)

    user = _registered_user(req)
    if user is not None:
        user.status = UserStatus.APPROVED
        user.rejection_reason = None

    APPROVAL_WORKFLOW.advance(
        req,
        ApprovalStatus.APPROVED,
        current_user,
        'USER_APPROVE' if user else 'APPROVAL_APPROVE',
        payload={'user_id': user.id if user else None},
        resolved_by=current_user.id,
        resolved_at=datetime.utcnow(),
        resolution_notes=text_value(json_body().get('notes')) or None,
    )
    return jsonify({'ok': True, 'approval': approval_payload(req)})


@bp.route('/api/approvals/<int:request_id>/reject', methods=['POST'])
@login_required
@role_required('ADMIN')
def reject(request_id):
    reason = text_value(json_body().get('reason'))
    if not reason:
        return jsonify({'error': 'A rejection reason is required'}), 400

    req = _get_request(request_id)
    APPROVAL_WORKFLOW.check(req, ApprovalStatus.REJECTED)

    user = _registered_user(req)
    if user is not None:
        user.status = UserStatus.REJECTED
        user.rejection_reason = reason

    APPROVAL_WORKFLOW.advance(
        req,
        ApprovalStatus.REJECTED,
        current_user,
        'USER_REJECT' if user else 'APPROVAL_REJECT',
        payload={'user_id': user.id if user else None, 'reason': reason},
        resolved_by=current_user.id,
        resolved_at=datetime.utcnow(),
        resolution_notes=reason,
    )
    return jsonify({'ok': True, 'approval': approval_payload(req)})
