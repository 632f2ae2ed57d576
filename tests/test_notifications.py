"""Tests for email, receipt and push notifications."""

import smtplib
from types import SimpleNamespace

import pytest
from pywebpush import WebPushException

from zellow.extensions import db
from zellow.models import PushSubscription
from zellow.services import notification_service, receipt_service

GIFT = {
    "recipient_name": "Amina Otieno",
    "recipient_contact_method": "email",
    "recipient_contact_value": "amina@example.com",
    "gift_message": "Happy birthday!",
    "notify_recipient": True,
    "show_prices_to_recipient": True,
    "recipient_can_view_and_track": True,
}


def gift_kwargs(**overrides):
    kwargs = dict(
        order_id="a1b2c3d4e5f6",
        recipient_name="Amina Otieno",
        contact_method="email",
        contact_value="amina@example.com",
        gift_message="Happy birthday!",
        sender_name="Jane",
        can_view_and_track=True,
        show_prices=False,
    )
    kwargs.update(overrides)
    return kwargs


@pytest.fixture
def delivered_order(customer, order_factory, admin, rider, advance):
    def _make(**kwargs):
        order = order_factory(customer, **kwargs)
        advance(order, admin, "approve", "mark_fulfilled")
        advance(order, admin, "assign_rider", rider_id=rider.id)
        advance(order, admin, "mark_out_for_delivery", "mark_delivered")
        return order

    return _make


@pytest.fixture
def vapid(app):
    app.config["VAPID_PUBLIC_KEY"] = "public-key"
    app.config["VAPID_PRIVATE_KEY"] = "private-key"


class TestGiftNotification:
    def test_not_requested(self, app, outbox):
        result = notification_service.send_gift_notification(
            **gift_kwargs(notify_recipient=False))
        assert result.success is False
        assert "not requested" in result.message
        assert outbox == []

    def test_missing_contact(self, app, outbox):
        result = notification_service.send_gift_notification(
            **gift_kwargs(contact_value=""))
        assert result.success is False
        assert outbox == []

    def test_phone_is_simulated(self, app, outbox):
        result = notification_service.send_gift_notification(
            **gift_kwargs(contact_method="phone", contact_value="0722000000"))
        assert result.success is True
        assert "Simulated" in result.message
        assert result.tracking_link.endswith("token=a1b2c3d4e5f6")
        assert outbox == []

    def test_email_with_tracking_link(self, app, outbox):
        result = notification_service.send_gift_notification(**gift_kwargs())

        assert result.success is True
        assert len(outbox) == 1
        message = outbox[0]
        assert message.subject == "A special gift is on its way!"
        assert "https://zellow.test/track/gift?token=a1b2c3d4e5f6" in \
            message.html
        assert "Happy birthday!" in message.html

    def test_email_without_tracking(self, app, outbox):
        result = notification_service.send_gift_notification(
            **gift_kwargs(can_view_and_track=False))
        assert result.tracking_link is None
        assert "track/gift" not in outbox[0].html

    def test_prices_only_when_visible(self, customer, order_factory, outbox):
        order = order_factory(customer, gift=dict(GIFT))

        notification_service.send_gift_notification_for_order(order)
        order.gift_details = {**GIFT, "show_prices_to_recipient": False}
        notification_service.send_gift_notification_for_order(order)

        assert "KES 500.00" in outbox[0].html
        assert "KES 500.00" not in outbox[1].html

    def test_transport_error_is_reported(self, app, monkeypatch):
        def broken(*args, **kwargs):
            raise smtplib.SMTPException("connection refused")

        monkeypatch.setattr(notification_service, "_send_mail", broken)
        result = notification_service.send_gift_notification(**gift_kwargs())

        assert result.success is False
        assert "connection refused" in result.message

    def test_non_gift_order(self, customer, order_factory):
        order = order_factory(customer)
        result = notification_service.send_gift_notification_for_order(order)
        assert result.success is False


class TestDeliveryConfirmation:
    def test_customer_and_recipient_get_receipts(
            self, delivered_order, outbox):
        order = delivered_order(gift=dict(GIFT))
        outbox.clear()

        result = notification_service.send_delivery_confirmation(order)

        assert result.success is True
        assert sorted(m.recipients[0] for m in outbox) == [
            "amina@example.com", order.customer_email]
        for message in outbox:
            attachment = message.attachments[0]
            assert attachment.filename == f"Zellow-Receipt-{order.id}.pdf"
            assert attachment.data.startswith(b"%PDF")

    def test_gifter_and_recipient_bodies_differ(
            self, delivered_order, outbox):
        order = delivered_order(gift=dict(GIFT))
        outbox.clear()

        notification_service.send_delivery_confirmation(order)

        by_email = {m.recipients[0]: m.html for m in outbox}
        assert "Your order" in by_email[order.customer_email]
        assert "A gift sent to you" in by_email["amina@example.com"]

    def test_delivered_transition_sends_confirmation(
            self, delivered_order, outbox):
        order = delivered_order()

        results = notification_service.dispatch_for_transition(
            order, "mark_delivered")

        assert [channel for channel, _ in results] == [
            "push", "delivery_confirmation"]
        delivered = [m for m in outbox if "Has Been Delivered" in m.subject]
        assert len(delivered) == 1
        assert delivered[0].recipients == [order.customer_email]

    def test_no_recipients(self, customer, order_factory):
        order = order_factory(customer)
        order.customer_email = None
        result = notification_service.send_delivery_confirmation(order)
        assert result.success is False


class TestReceipt:
    def test_subject_by_payment_status(self, customer, order_factory,
                                       finance, advance):
        order = order_factory(customer)
        ref = order.id[:8]
        subject, _ = notification_service.receipt_subject_and_body(order)
        assert subject == f"Receipt for Your Zellow Order #{ref}"

        advance(order, finance, "refund")
        subject, body = notification_service.receipt_subject_and_body(order)
        assert subject == f"Refund Confirmation for Zellow Order #{ref}"
        assert "refunded" in body

    def test_pending_payment_subject(self, customer, order_factory):
        order = order_factory(customer, payment_method="PAY_ON_DELIVERY")
        subject, _ = notification_service.receipt_subject_and_body(order)
        assert subject.startswith("Update on Your Zellow Order")

    def test_custom_subject(self, customer, order_factory):
        order = order_factory(customer)
        subject, _ = notification_service.receipt_subject_and_body(
            order, subject="Your invoice")
        assert subject == "Your invoice"

    def test_recipient_excluded_until_delivered(
            self, customer, order_factory, outbox):
        order = order_factory(customer, gift=dict(GIFT))
        outbox.clear()

        notification_service.send_receipt(order)

        assert [m.recipients for m in outbox] == [[order.customer_email]]

    def test_refund_sends_receipt(self, customer, order_factory, finance,
                                  advance, outbox):
        order = order_factory(customer)
        advance(order, finance, "refund")

        results = notification_service.dispatch_for_transition(
            order, "refund")

        channels = [channel for channel, _ in results]
        assert channels == ["push", "receipt"]
        assert outbox[-1].subject.startswith("Refund Confirmation")

    def test_pdf_is_built(self, customer, order_factory):
        order = order_factory(customer)
        data = receipt_service.build_receipt_pdf(order)
        assert data.startswith(b"%PDF")

    def test_format_price(self, app):
        assert receipt_service.format_price(1234.5) == "KES 1,234.50"


class TestPush:
    def test_skipped_without_vapid_keys(self, customer):
        result = notification_service.send_push_notification(
            customer.id, "Hello", "World")
        assert result.success is False
        assert "not configured" in result.message

    def test_skipped_without_subscription(self, customer, vapid):
        result = notification_service.send_push_notification(
            customer.id, "Hello", "World")
        assert result.success is False

    def test_sends_payload(self, customer, vapid, monkeypatch):
        db.session.add(PushSubscription(
            user_id=customer.id,
            endpoint="https://push.example/abc",
            keys={"p256dh": "key", "auth": "secret"},
        ))
        db.session.commit()
        calls = []
        monkeypatch.setattr(
            notification_service, "webpush",
            lambda **kwargs: calls.append(kwargs))

        result = notification_service.send_push_notification(
            customer.id, "Order Update", "Shipped", "/orders/1")

        assert result.success is True
        assert calls[0]["subscription_info"]["endpoint"] == \
            "https://push.example/abc"
        assert '"url": "/orders/1"' in calls[0]["data"]

    @pytest.mark.parametrize("status_code, kept", [(410, False), (500, True)])
    def test_gone_subscription_is_deleted(
            self, customer, vapid, monkeypatch, status_code, kept):
        db.session.add(PushSubscription(
            user_id=customer.id, endpoint="https://push.example/abc"))
        db.session.commit()

        def failing(**kwargs):
            raise WebPushException(
                "push failed",
                response=SimpleNamespace(status_code=status_code))

        monkeypatch.setattr(notification_service, "webpush", failing)
        result = notification_service.send_push_notification(
            customer.id, "Hello", "World")

        assert result.success is False
        assert (db.session.get(PushSubscription, customer.id) is not None) \
            is kept

    def test_dispatch_never_raises(self, customer, order_factory,
                                   monkeypatch):
        order = order_factory(customer)

        def explode(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(
            notification_service, "send_push_notification", explode)
        results = notification_service.dispatch_for_transition(
            order, "approve")

        assert results[0][0] == "push"
        assert results[0][1].success is False


class TestNotificationRoutes:
    def test_customer_cannot_trigger(self, client, login, customer,
                                     order_factory):
        order = order_factory(customer)
        login(customer)
        response = client.post(
            "/api/notifications/receipt", json={"order_id": order.id})
        assert response.status_code == 403

    def test_receipt_route(self, client, login, customer, order_factory,
                           finance, outbox):
        order = order_factory(customer)
        login(finance)

        response = client.post(
            "/api/notifications/receipt", json={"order_id": order.id})

        assert response.status_code == 200
        assert response.get_json()["success"] is True
        assert len(outbox) == 1

    def test_gift_route_from_order(self, client, login, customer,
                                   order_factory, dispatcher, outbox):
        order = order_factory(customer, gift=dict(GIFT))
        outbox.clear()
        login(dispatcher)

        response = client.post(
            "/api/notifications/gift", json={"order_id": order.id})

        data = response.get_json()
        assert data["success"] is True
        assert data["tracking_link"].endswith(order.id)

    def test_unknown_order(self, client, login, finance):
        login(finance)
        response = client.post(
            "/api/notifications/delivery-confirmation",
            json={"order_id": "missing"})
        assert response.status_code == 404
