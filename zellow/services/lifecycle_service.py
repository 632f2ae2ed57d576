"""Order status machine.

Every status change goes through ``apply_transition`` with a named command.
The command's role set, the transition table and the command guards are all
checked before anything is written; the change itself is one appended
history entry plus the matching status.
"""
from zellow.extensions import db
from zellow.models import OrderStatus, PaymentStatus, User, UserRole
from zellow.errors import (
    ValidationError,
    PermissionDeniedError,
    IllegalTransitionError,
    PersistenceError,
)
from zellow.services.audit_service import audit_actor
from zellow.services.order_events import broker
from zellow.utils import text_value
from sqlalchemy.exc import SQLAlchemyError
from dataclasses import dataclass
from datetime import datetime
import logging

logger = logging.getLogger(__name__)

S = OrderStatus

TERMINAL_STATES = frozenset({S.DELIVERED, S.CANCELLED})

TRANSITIONS = {
    S.PENDING: {S.PROCESSING, S.CANCELLED},
    S.PROCESSING: {
        S.IN_PRODUCTION,
        S.AWAITING_QUALITY_CHECK,
        S.AWAITING_ASSIGNMENT,
        S.CANCELLED,
    },
    S.IN_PRODUCTION: {
        S.AWAITING_QUALITY_CHECK,
        S.AWAITING_ASSIGNMENT,
        S.CANCELLED,
    },
    S.AWAITING_QUALITY_CHECK: {
        S.AWAITING_ASSIGNMENT,
        S.PROCESSING,
        S.CANCELLED,
    },
    S.AWAITING_ASSIGNMENT: {S.ASSIGNED, S.CANCELLED},
    S.ASSIGNED: {S.OUT_FOR_DELIVERY, S.AWAITING_ASSIGNMENT, S.CANCELLED},
    S.OUT_FOR_DELIVERY: {S.DELIVERED, S.DELIVERY_ATTEMPTED},
    S.DELIVERY_ATTEMPTED: {S.OUT_FOR_DELIVERY, S.CANCELLED},
    S.DELIVERED: set(),
    S.CANCELLED: set(),
}

TECHNICIAN_ROLES = frozenset({'ENGRAVING', 'PRINTING', 'ASSEMBLY',
                              'PACKAGING'})


@dataclass(frozen=True)
class LifecycleCommand:
    name: str
    target: OrderStatus
    roles: frozenset
    from_states: frozenset = None
    requires_note: bool = False
    requires_rider: bool = False
    payment_status: PaymentStatus = None
    own_order_only: bool = False


def _command(name, target, roles, **kwargs):
    return LifecycleCommand(name, target, frozenset(roles), **kwargs)


COMMANDS = {c.name: c for c in (
    _command('approve', S.PROCESSING, {'FINANCE_MANAGER'}),
    _command(
        'start_production', S.IN_PRODUCTION,
        {'SERVICE_MANAGER'} | TECHNICIAN_ROLES),
    _command(
        'submit_for_quality_check', S.AWAITING_QUALITY_CHECK,
        {'SERVICE_MANAGER'} | TECHNICIAN_ROLES),
    _command(
        'mark_fulfilled', S.AWAITING_ASSIGNMENT,
        {'SERVICE_MANAGER', 'PACKAGING'},
        from_states=frozenset({S.PROCESSING, S.IN_PRODUCTION})),
    _command(
        'approve_quality_check', S.AWAITING_ASSIGNMENT, {'QUALITY_CHECK'},
        from_states=frozenset({S.AWAITING_QUALITY_CHECK})),
    _command(
        'reject_quality_check', S.PROCESSING, {'QUALITY_CHECK'},
        from_states=frozenset({S.AWAITING_QUALITY_CHECK}),
        requires_note=True),
    _command(
        'assign_rider', S.ASSIGNED, {'DISPATCH_MANAGER'},
        requires_rider=True),
    _command(
        'unassign_rider', S.AWAITING_ASSIGNMENT, {'DISPATCH_MANAGER'},
        from_states=frozenset({S.ASSIGNED})),
    _command(
        'mark_out_for_delivery', S.OUT_FOR_DELIVERY,
        {'DISPATCH_MANAGER', 'RIDER'}),
    _command(
        'mark_delivery_attempted', S.DELIVERY_ATTEMPTED,
        {'DISPATCH_MANAGER', 'RIDER'}),
    _command('mark_delivered', S.DELIVERED, {'DISPATCH_MANAGER'}),
    _command('cancel', S.CANCELLED, {'DISPATCH_MANAGER', 'FINANCE_MANAGER'}),
    _command(
        'cancel_by_customer', S.CANCELLED, {'CUSTOMER'},
        from_states=frozenset({S.PENDING}),
        own_order_only=True),
    _command(
        'refund', S.CANCELLED, {'FINANCE_MANAGER'},
        payment_status=PaymentStatus.REFUNDED),
)}


def get_command(name):
    command = COMMANDS.get(name)
    if command is None:
        raise ValidationError(f'Unknown command "{name}"')
    return command


def can_transition(current, target):
    return target in TRANSITIONS.get(current, ())


def _check_role(command, order, actor):
    role = actor.role.value
    if role == 'ADMIN':
        return
    if role not in command.roles:
        raise PermissionDeniedError(
            f'Role {role} may not {command.name.replace("_", " ")}')
    if command.own_order_only and order.customer_id != actor.id:
        raise PermissionDeniedError('You can only manage your own orders')
    if role == 'RIDER' and order.rider_id != actor.id:
        raise PermissionDeniedError('This delivery is not assigned to you')


def _check_state(command, order):
    current = order.status
    if command.from_states is not None and current not in command.from_states:
        raise IllegalTransitionError(
            current.value,
            command.target.value,
            f'{command.name} is not possible while the order is '
            f'{current.value}')
    if not can_transition(current, command.target):
        raise IllegalTransitionError(current.value, command.target.value)


def _check_guards(command, order, note, rider_id):
    """Return the rider for ``assign_rider``; raise on any failed guard."""
    if command.requires_note and not text_value(note):
        raise ValidationError(f'A note is required to {command.name}')

    if command.name == 'mark_fulfilled' and order.has_customized_items:
        raise IllegalTransitionError(
            order.status.value,
            command.target.value,
            'Orders with customized items must pass quality check')

    if command.payment_status == PaymentStatus.REFUNDED and (
            order.payment_status != PaymentStatus.PAID):
        raise ValidationError('Only paid orders can be refunded')

    if command.requires_rider:
        if rider_id is None:
            raise ValidationError('A rider is required')
        rider = db.session.get(User, rider_id)
        if (rider is None or rider.role != UserRole.RIDER
                or not rider.is_active):
            raise ValidationError('Rider not found')
        return rider
    return None


def check_transition(order, command, actor, note=None, rider_id=None):
    """Run every check for ``command`` without writing anything."""
    _check_role(command, order, actor)
    _check_state(command, order)
    return _check_guards(command, order, note, rider_id)


def apply_transition(order, command, actor, note=None, rider_id=None,
                     estimated_delivery_time=None):
    if isinstance(command, str):
        command = get_command(command)

    previous = order.status
    rider = check_transition(order, command, actor, note, rider_id)

    now = datetime.utcnow()
    entry = order.record_status(
        command.target,
        actor_id=actor.id,
        notes=text_value(note) or None,
        at=now)

    if rider is not None:
        order.rider_id = rider.id
    if command.name == 'unassign_rider' or (
            command.target == S.CANCELLED and order.rider_id):
        order.rider_id = None
    if estimated_delivery_time is not None:
        order.estimated_delivery_time = estimated_delivery_time
    if command.target == S.DELIVERED:
        order.actual_delivery_time = now
    if command.payment_status is not None:
        order.payment_status = command.payment_status

    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(
            f"Failed to record {command.name} on order {order.id}: {e}",
            exc_info=True)
        raise PersistenceError('Could not update order, please try again')

    logger.info(
        "Order %s %s -> %s via %s by user %s",
        order.id, previous.value, command.target.value, command.name,
        actor.id)

    payload = {
        'from': previous.value,
        'to': command.target.value,
        'note': entry.notes,
    }
    if rider is not None:
        payload['rider_id'] = rider.id
    if command.payment_status is not None:
        payload['payment_status'] = command.payment_status.value
    audit_actor(
        actor,
        f'ORDER_{command.name.upper()}',
        target_type='ORDER',
        target_id=order.id,
        payload=payload)

    broker.publish(order.id, len(order.delivery_history),
                   final=order.status in TERMINAL_STATES)
    return entry


def available_commands(order, actor):
    names = []
    for command in COMMANDS.values():
        try:
            _check_role(command, order, actor)
            _check_state(command, order)
        except (PermissionDeniedError, IllegalTransitionError):
            continue
        if command.name == 'mark_fulfilled' and order.has_customized_items:
            continue
        if (command.payment_status == PaymentStatus.REFUNDED
                and order.payment_status != PaymentStatus.PAID):
            continue
        names.append(command.name)
    return names
