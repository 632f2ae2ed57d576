"""Tests for recipient gift tracking."""

import pytest

from zellow.errors import NotFoundError, ValidationError
from zellow.services.tracking_service import NOT_TRACKABLE, gift_tracking_view

GIFT = {
    "recipient_name": "Amina Otieno",
    "recipient_contact_method": "email",
    "recipient_contact_value": "amina@example.com",
    "gift_message": "Happy birthday!",
    "notify_recipient": True,
    "show_prices_to_recipient": False,
    "recipient_can_view_and_track": True,
}


class TestGiftTrackingView:
    def test_blank_token(self, app):
        with pytest.raises(ValidationError):
            gift_tracking_view("  ")

    def test_unknown_token(self, app):
        with pytest.raises(NotFoundError, match=NOT_TRACKABLE):
            gift_tracking_view("deadbeef")

    def test_non_gift_order_is_hidden(self, customer, order_factory):
        order = order_factory(customer)
        with pytest.raises(NotFoundError):
            gift_tracking_view(order.id)

    def test_tracking_disabled_by_sender(self, customer, order_factory):
        order = order_factory(customer, gift={
            **GIFT, "recipient_can_view_and_track": False})
        with pytest.raises(NotFoundError):
            gift_tracking_view(order.id)

    def test_reduced_view_without_prices(self, customer, order_factory,
                                         finance, advance):
        order = order_factory(customer, gift=dict(GIFT))
        advance(order, finance, "approve")

        view = gift_tracking_view(order.id)

        assert view["status"] == "processing"
        assert view["recipient_name"] == "Amina Otieno"
        assert view["gift_message"] == "Happy birthday!"
        assert [h["status"] for h in view["history"]] == [
            "pending", "processing"]
        assert view["last_updated"] == view["history"][-1]["timestamp"]
        assert "price" not in view["items"][0]
        assert "total_amount" not in view
        assert "estimated_delivery_time" in view
        # Nothing about the buyer leaks to the recipient
        for key in ("customer_email", "shipping_address", "payment_status"):
            assert key not in view

    def test_prices_when_allowed(self, customer, order_factory):
        order = order_factory(customer, gift={
            **GIFT, "show_prices_to_recipient": True})

        view = gift_tracking_view(order.id)

        assert view["items"][0]["price"] == 500.0
        assert view["total_amount"] == 600.0

    def test_delivered_gift(self, customer, order_factory, admin, rider,
                            advance):
        order = order_factory(customer, gift=dict(GIFT))
        advance(order, admin, "approve", "mark_fulfilled")
        advance(order, admin, "assign_rider", rider_id=rider.id)
        advance(order, admin, "mark_out_for_delivery", "mark_delivered")

        view = gift_tracking_view(order.id)

        assert view["status"] == "delivered"
        assert view["delivered_at"] is not None
        assert "estimated_delivery_time" not in view

    def test_defaults_for_blank_fields(self, customer, order_factory):
        order = order_factory(customer, gift={
            **GIFT, "gift_message": "", "notify_recipient": False})
        view = gift_tracking_view(order.id)
        assert view["gift_message"] == "Enjoy your gift!"


class TestTrackingRoute:
    def test_public_lookup(self, client, customer, order_factory):
        order = order_factory(customer, gift=dict(GIFT))

        response = client.get(f"/api/track/gift?token={order.id}")

        assert response.status_code == 200
        assert response.get_json()["status"] == "pending"

    def test_missing_token(self, client):
        response = client.get("/api/track/gift")
        assert response.status_code == 400

    def test_not_trackable(self, client):
        response = client.get("/api/track/gift?token=nope")
        assert response.status_code == 404
        assert response.get_json()["error"] == NOT_TRACKABLE
