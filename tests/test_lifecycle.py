"""Tests for the order status machine and the history feed."""

import threading

import pytest

from zellow.errors import (
    HistoryImmutableError,
    IllegalTransitionError,
    PermissionDeniedError,
    ValidationError,
)
from zellow.extensions import db
from zellow.models import AuditLog, OrderStatus, PaymentStatus
from zellow.services import lifecycle_service
from zellow.services.order_events import OrderEventBroker, broker

CUSTOM_OPTIONS = [
    {"id": "engraving", "label": "Engraving", "type": "text",
     "required": True},
]


@pytest.fixture
def order(customer, order_factory):
    return order_factory(customer)


class TestTransitionTable:
    def test_terminal_states_have_no_moves(self):
        dead_ends = {
            status for status, moves in lifecycle_service.TRANSITIONS.items()
            if not moves
        }
        assert dead_ends == lifecycle_service.TERMINAL_STATES
        assert dead_ends == {OrderStatus.DELIVERED, OrderStatus.CANCELLED}

    def test_out_for_delivery_cannot_cancel(self):
        assert not lifecycle_service.can_transition(
            OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED)

    def test_every_command_targets_a_known_state(self):
        for command in lifecycle_service.COMMANDS.values():
            assert command.target in lifecycle_service.TRANSITIONS


class TestApplyTransition:
    def test_full_delivery_path(self, order, admin, rider, advance):
        advance(order, admin, "approve", "mark_fulfilled")
        advance(order, admin, "assign_rider", rider_id=rider.id)
        assert order.rider_id == rider.id

        advance(order, rider, "mark_out_for_delivery")
        advance(order, admin, "mark_delivered")

        assert order.status == OrderStatus.DELIVERED
        assert order.actual_delivery_time is not None
        statuses = [e.status for e in order.delivery_history]
        assert statuses == [
            OrderStatus.PENDING,
            OrderStatus.PROCESSING,
            OrderStatus.AWAITING_ASSIGNMENT,
            OrderStatus.ASSIGNED,
            OrderStatus.OUT_FOR_DELIVERY,
            OrderStatus.DELIVERED,
        ]
        assert [e.position for e in order.delivery_history] == \
            list(range(6))

    def test_status_matches_newest_history_entry(self, order, finance):
        entry = lifecycle_service.apply_transition(
            order, "approve", finance, note="Payment confirmed")
        assert order.delivery_history[-1] is entry
        assert order.status == entry.status
        assert entry.notes == "Payment confirmed"
        assert entry.actor_id == finance.id

    def test_wrong_role_writes_nothing(self, order, rider):
        with pytest.raises(PermissionDeniedError):
            lifecycle_service.apply_transition(order, "approve", rider)
        assert order.status == OrderStatus.PENDING
        assert len(order.delivery_history) == 1

    def test_illegal_transition(self, order, dispatcher):
        with pytest.raises(IllegalTransitionError) as excinfo:
            lifecycle_service.apply_transition(
                order, "mark_delivered", dispatcher)
        assert excinfo.value.current == "pending"
        assert excinfo.value.target == "delivered"
        assert len(order.delivery_history) == 1

    def test_customized_orders_need_quality_check(
            self, customer, make_user, make_product, order_factory,
            finance, advance):
        product = make_product(options=CUSTOM_OPTIONS)
        order = order_factory(
            customer, items=[(product, 1, {"engraving": "Amy"})])
        advance(order, finance, "approve")
        manager = make_user("SERVICE_MANAGER")

        with pytest.raises(IllegalTransitionError, match="quality check"):
            lifecycle_service.apply_transition(
                order, "mark_fulfilled", manager)

        qc = make_user("QUALITY_CHECK")
        advance(order, manager, "submit_for_quality_check")
        advance(order, qc, "approve_quality_check")
        assert order.status == OrderStatus.AWAITING_ASSIGNMENT

    def test_reject_quality_check_requires_note(
            self, order, make_user, finance, advance):
        technician = make_user("ENGRAVING")
        qc = make_user("QUALITY_CHECK")
        advance(order, finance, "approve")
        advance(order, technician, "start_production",
                "submit_for_quality_check")

        with pytest.raises(ValidationError, match="note"):
            lifecycle_service.apply_transition(
                order, "reject_quality_check", qc)

        lifecycle_service.apply_transition(
            order, "reject_quality_check", qc, note="Engraving smudged")
        assert order.status == OrderStatus.PROCESSING

    def test_assign_rider_requires_a_rider(
            self, order, admin, dispatcher, customer, advance):
        advance(order, admin, "approve", "mark_fulfilled")

        with pytest.raises(ValidationError, match="rider"):
            lifecycle_service.apply_transition(
                order, "assign_rider", dispatcher)
        with pytest.raises(ValidationError, match="Rider not found"):
            lifecycle_service.apply_transition(
                order, "assign_rider", dispatcher, rider_id=customer.id)

    def test_rider_only_moves_own_deliveries(
            self, order, admin, rider, make_user, advance):
        advance(order, admin, "approve", "mark_fulfilled")
        advance(order, admin, "assign_rider", rider_id=rider.id)
        other = make_user("RIDER")

        with pytest.raises(PermissionDeniedError):
            lifecycle_service.apply_transition(
                order, "mark_out_for_delivery", other)

    def test_cancel_clears_rider(self, order, admin, rider, dispatcher,
                                 advance):
        advance(order, admin, "approve", "mark_fulfilled")
        advance(order, admin, "assign_rider", rider_id=rider.id)

        advance(order, dispatcher, "cancel", note="Customer unreachable")

        assert order.status == OrderStatus.CANCELLED
        assert order.rider_id is None

    def test_customer_cancels_own_pending_order(
            self, order, customer, make_user, finance, advance):
        stranger = make_user("CUSTOMER")
        with pytest.raises(PermissionDeniedError):
            lifecycle_service.apply_transition(
                order, "cancel_by_customer", stranger)

        advance(order, customer, "cancel_by_customer")
        assert order.status == OrderStatus.CANCELLED

    def test_customer_cannot_cancel_after_approval(
            self, order, customer, finance, advance):
        advance(order, finance, "approve")
        with pytest.raises(IllegalTransitionError):
            lifecycle_service.apply_transition(
                order, "cancel_by_customer", customer)

    def test_refund_requires_paid_order(
            self, customer, order_factory, finance):
        order = order_factory(customer, payment_method="PAY_ON_DELIVERY")
        with pytest.raises(ValidationError, match="paid"):
            lifecycle_service.apply_transition(order, "refund", finance)

    def test_refund_sets_payment_status(self, order, finance):
        lifecycle_service.apply_transition(
            order, "refund", finance, note="Out of materials")
        assert order.status == OrderStatus.CANCELLED
        assert order.payment_status == PaymentStatus.REFUNDED

    def test_transition_is_audited(self, order, finance):
        lifecycle_service.apply_transition(order, "approve", finance)
        audit = AuditLog.query.filter_by(action="ORDER_APPROVE").one()
        assert audit.get_payload()["from"] == "pending"
        assert audit.get_payload()["to"] == "processing"

    def test_available_commands(self, order, finance, customer, rider):
        assert lifecycle_service.available_commands(order, finance) == [
            "approve", "cancel", "refund"]
        assert lifecycle_service.available_commands(order, customer) == [
            "cancel_by_customer"]
        assert lifecycle_service.available_commands(order, rider) == []


class TestHistoryImmutability:
    def test_entry_cannot_be_edited(self, order):
        entry = order.delivery_history[0]
        entry.notes = "rewritten"
        with pytest.raises(HistoryImmutableError):
            db.session.commit()
        db.session.rollback()

    def test_entry_cannot_be_deleted(self, order):
        entry = order.delivery_history[0]
        db.session.delete(entry)
        with pytest.raises(HistoryImmutableError):
            db.session.commit()
        db.session.rollback()


class TestOrderEventBroker:
    def test_wait_returns_after_publish(self):
        events = OrderEventBroker()
        timer = threading.Timer(0.05, events.publish, args=("abc", 2))
        timer.start()

        version = events.wait("abc", 1, timeout=2)

        timer.join()
        assert version == 2

    def test_wait_times_out(self):
        events = OrderEventBroker()
        events.publish("abc", 1)
        assert events.wait("abc", 1, timeout=0.01) == 1

    def test_versions_never_go_backwards(self):
        events = OrderEventBroker()
        events.publish("abc", 3)
        events.publish("abc", 2)
        assert events.version("abc") == 3

    def test_final_publish_forgets_idle_order(self):
        events = OrderEventBroker()
        events.publish("abc", 1)
        events.publish("abc", 2, final=True)
        assert not events.tracked("abc")
        assert events.version("abc") == 0

    def test_final_publish_wakes_waiters_first(self):
        events = OrderEventBroker()
        events.publish("abc", 2)
        timer = threading.Timer(
            0.05, events.publish, args=("abc", 3), kwargs={"final": True})
        timer.start()

        version = events.wait("abc", 2, timeout=2)

        timer.join()
        assert version == 3
        assert not events.tracked("abc")

    def test_finished_orders_are_dropped(self, order, admin, rider,
                                         advance):
        assert broker.tracked(order.id)
        advance(order, admin, "approve", "mark_fulfilled")
        advance(order, admin, "assign_rider", rider_id=rider.id)
        advance(order, rider, "mark_out_for_delivery")
        assert broker.version(order.id) == len(order.delivery_history)

        advance(order, admin, "mark_delivered")

        assert not broker.tracked(order.id)


class TestOrderRoutes:
    def test_customer_sees_only_own_orders(
            self, client, login, customer, make_user, order_factory):
        order = order_factory(customer)
        other = make_user("CUSTOMER")
        order_factory(other)
        login(customer)

        response = client.get("/api/orders")

        data = response.get_json()
        assert data["total"] == 1
        assert data["orders"][0]["id"] == order.id

    def test_other_customers_order_is_not_found(
            self, client, login, customer, make_user, order_factory):
        order = order_factory(customer)
        login(make_user("CUSTOMER"))

        response = client.get(f"/api/orders/{order.id}")

        assert response.status_code == 404

    def test_supplier_has_no_order_access(
            self, client, login, make_user):
        login(make_user("SUPPLIER"))
        assert client.get("/api/orders").status_code == 403

    def test_detail_lists_commands(self, client, login, order, finance):
        login(finance)
        response = client.get(f"/api/orders/{order.id}")
        data = response.get_json()
        assert data["status"] == "pending"
        assert "approve" in data["available_commands"]
        assert len(data["delivery_history"]) == 1

    def test_transition_route(self, client, login, order, finance):
        login(finance)

        response = client.post(
            f"/api/orders/{order.id}/transitions",
            json={"command": "approve", "note": "Paid via M-Pesa"})

        assert response.status_code == 200
        data = response.get_json()
        assert data["entry"]["status"] == "processing"
        assert data["order"]["status"] == "processing"
        push = data["notifications"][0]
        assert push["channel"] == "push"
        assert push["success"] is False

    def test_transition_route_errors(self, client, login, order, rider):
        login(rider)
        response = client.post(
            f"/api/orders/{order.id}/transitions",
            json={"command": "approve"})
        # Riders only see orders assigned to them
        assert response.status_code == 403

    def test_illegal_transition_route(self, client, login, order, admin):
        login(admin)
        response = client.post(
            f"/api/orders/{order.id}/transitions",
            json={"command": "mark_delivered"})
        assert response.status_code == 409
        assert response.get_json()["current_status"] == "pending"

    def test_unknown_command(self, client, login, order, admin):
        login(admin)
        response = client.post(
            f"/api/orders/{order.id}/transitions",
            json={"command": "teleport"})
        assert response.status_code == 400

    @pytest.mark.parametrize("body", [
        ["approve"],
        {"command": 5},
        {"command": ["approve"]},
        {"command": "assign_rider", "rider_id": float("inf")},
    ])
    def test_malformed_transition_body(self, client, login, order, admin,
                                       body):
        login(admin)
        response = client.post(
            f"/api/orders/{order.id}/transitions", json=body)
        assert response.status_code == 400
        assert "error" in response.get_json()
        assert order.status == OrderStatus.PENDING

    def test_history_after_returns_new_entries(
            self, client, login, order, finance, advance):
        advance(order, finance, "approve")
        login(finance)

        response = client.get(f"/api/orders/{order.id}/history?after=1")

        data = response.get_json()
        assert data["version"] == 2
        assert [e["status"] for e in data["history"]] == ["processing"]

    def test_history_long_poll_times_out(self, client, login, order,
                                         finance):
        login(finance)
        response = client.get(
            f"/api/orders/{order.id}/history?after=1&wait=0")
        data = response.get_json()
        assert data["version"] == 1
        assert data["history"] == []
