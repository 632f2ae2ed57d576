"""Tests for web push subscription endpoints."""

import pytest

from zellow.extensions import db
from zellow.models import PushSubscription
from zellow.services import notification_service
from zellow.services.token_service import issue_token

SUBSCRIPTION = {
    "endpoint": "https://fcm.googleapis.com/fcm/send/abc123",
    "keys": {"p256dh": "BNc...", "auth": "tBH..."},
}


@pytest.fixture
def token(customer):
    return issue_token(customer)


class TestSubscribe:
    def test_stores_subscription(self, client, customer, token):
        response = client.post("/api/push/subscribe", json={
            "subscription": SUBSCRIPTION, "token": token})

        assert response.status_code == 200
        assert response.get_json() == {"success": True}
        record = db.session.get(PushSubscription, customer.id)
        assert record.endpoint == SUBSCRIPTION["endpoint"]
        assert record.keys["auth"] == "tBH..."

    def test_resubscribe_replaces(self, client, customer, token):
        client.post("/api/push/subscribe", json={
            "subscription": SUBSCRIPTION, "token": token})
        client.post(
            "/api/push/subscribe",
            json={"subscription": {"endpoint": "https://push.example/new"}},
            headers={"Authorization": f"Bearer {token}"})

        assert PushSubscription.query.count() == 1
        record = db.session.get(PushSubscription, customer.id)
        assert record.endpoint == "https://push.example/new"

    def test_missing_fields(self, client, token):
        response = client.post("/api/push/subscribe", json={"token": token})
        assert response.status_code == 400
        assert response.get_json()["success"] is False

    def test_invalid_token(self, client):
        response = client.post("/api/push/subscribe", json={
            "subscription": SUBSCRIPTION, "token": "not-a-token"})
        assert response.status_code == 401
        assert response.get_json()["error"] == "Invalid authentication token"

    def test_expired_token(self, app, client, token):
        app.config["AUTH_TOKEN_MAX_AGE"] = -1
        response = client.post("/api/push/subscribe", json={
            "subscription": SUBSCRIPTION, "token": token})
        assert response.status_code == 401
        assert response.get_json()["error"] == "Authentication token expired"

    def test_deactivated_user(self, client, customer, token):
        customer.is_active = False
        db.session.commit()
        response = client.post("/api/push/subscribe", json={
            "subscription": SUBSCRIPTION, "token": token})
        assert response.status_code == 401


class TestUnsubscribe:
    def test_removes_subscription(self, client, customer, token):
        client.post("/api/push/subscribe", json={
            "subscription": SUBSCRIPTION, "token": token})

        response = client.post("/api/push/unsubscribe", json={"token": token})

        assert response.get_json()["success"] is True
        assert db.session.get(PushSubscription, customer.id) is None

    def test_missing_token(self, client):
        response = client.post("/api/push/unsubscribe", json={})
        assert response.status_code == 400


class TestAdminSend:
    def test_requires_admin(self, client, login, finance, customer):
        login(finance)
        response = client.post("/api/push/send", json={
            "user_id": customer.id, "title": "Hi", "body": "There"})
        assert response.status_code == 403

    def test_missing_fields(self, client, login, admin):
        login(admin)
        response = client.post("/api/push/send", json={"title": "Hi"})
        assert response.status_code == 400

    def test_unknown_user(self, client, login, admin):
        login(admin)
        response = client.post("/api/push/send", json={
            "user_id": 999, "title": "Hi", "body": "There"})
        assert response.status_code == 404

    def test_sends_to_subscriber(self, app, client, login, admin, customer,
                                 monkeypatch):
        app.config["VAPID_PUBLIC_KEY"] = "public-key"
        app.config["VAPID_PRIVATE_KEY"] = "private-key"
        db.session.add(PushSubscription(
            user_id=customer.id, endpoint=SUBSCRIPTION["endpoint"],
            keys=SUBSCRIPTION["keys"]))
        db.session.commit()
        sent = []
        monkeypatch.setattr(notification_service, "webpush",
                            lambda **kwargs: sent.append(kwargs))
        login(admin)

        response = client.post("/api/push/send", json={
            "user_id": customer.id, "title": "Hi", "body": "There"})

        assert response.get_json()["success"] is True
        assert len(sent) == 1
