"""One-directional status workflows for the back-office records.

Approval requests, bulk orders, stock requests, invoices and feedback
threads all follow the same pattern: a status column, a table of allowed
moves, and an audit row for every move.
"""
from zellow.extensions import db
from zellow.errors import IllegalTransitionError
from zellow.services.audit_service import audit_actor
from datetime import datetime
import logging

logger = logging.getLogger(__name__)


class Workflow:

    def __init__(self, target_type, transitions):
        self.target_type = target_type
        self.transitions = {
            state: frozenset(targets)
            for state, targets in transitions.items()
        }

    def allowed(self, current):
        return self.transitions.get(current, frozenset())

    def can(self, current, target):
        return target in self.allowed(current)

    def check(self, record, target):
        if not self.can(record.status, target):
            raise IllegalTransitionError(
                record.status.value,
                target.value,
                f'{self.target_type.replace("_", " ").title()} cannot move '
                f'from {record.status.value} to {target.value}')

    def advance(self, record, target, actor, action, payload=None,
                **fields):
        """Move ``record`` to ``target``, set ``fields``, commit and audit."""
        self.check(record, target)
        previous = record.status
        record.status = target
        for name, value in fields.items():
            setattr(record, name, value)
        if hasattr(record, 'updated_at'):
            record.updated_at = datetime.utcnow()
        db.session.commit()

        logger.info(
            "%s %s %s -> %s by user %s",
            self.target_type, record.id, previous.value, target.value,
            actor.id if actor else None)

        audit_payload = {'from': previous.value, 'to': target.value}
        if payload:
            audit_payload.update(payload)
        audit_actor(
            actor,
            action,
            target_type=self.target_type,
            target_id=record.id,
            payload=audit_payload)
        return record
