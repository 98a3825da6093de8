"""
test_api_alerts.py — Panic alert routes and the live WebSocket over HTTP.

Gateways are fakes (see conftest); nothing leaves the process.

Run with:
    pytest tests/test_api_alerts.py -v
"""

from __future__ import annotations

import pytest
from starlette.websockets import WebSocketDisconnect

from backend.app.emergency.rate_limit import AlertRateLimiter

from conftest import CountingCache

ALERT = {
    "latitude": 6.5244,
    "longitude": 3.3792,
    "address": "Broad St, Lagos",
    "accuracy": 15,
    "alertType": "harassment",
    "message": "Being followed",
    "batteryLevel": 23,
    "networkType": "4g",
}


@pytest.fixture
def user_with_contacts(client, make_user):
    """A signed-in user with two active contacts; returns auth headers."""
    _, headers = make_user()
    for i, email in enumerate(("a@example.com", None)):
        client.post(
            "/emergency/contacts",
            json={"name": f"Contact {i}", "phone": f"+1555123000{i}", "email": email},
            headers=headers,
        )
    return headers


def _activate(client, headers, **overrides):
    return client.post("/emergency/alert", json={**ALERT, **overrides}, headers=headers)


class TestActivate:

    def test_activation_summary(self, client, user_with_contacts, gateways):
        response = _activate(client, user_with_contacts)

        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "Emergency alert activated! 2 contact(s) have been notified."
        data = body["data"]
        assert data["status"] == "active"
        assert data["notifiedContacts"] == 2
        assert data["deliveredContacts"] == 2
        assert data["location"]["latitude"] == 6.5244

        sms, email, _ = gateways
        assert len(sms.sent) == 2
        assert email.targets == ["a@example.com"]

    def test_contacts_record_the_alert(self, client, user_with_contacts):
        _activate(client, user_with_contacts)
        contacts = client.get("/emergency/contacts", headers=user_with_contacts).json()["data"]
        assert all(c["alertCount"] == 1 for c in contacts)
        assert all(c["lastAlertSent"] for c in contacts)

    def test_no_contacts(self, client, make_user):
        _, headers = make_user()
        response = _activate(client, headers)

        assert response.status_code == 400
        assert response.json()["message"] == (
            "No emergency contacts found. Please add emergency contacts first."
        )
        assert client.get("/emergency/alerts", headers=headers).json()["count"] == 0

    def test_missing_location(self, client, user_with_contacts):
        response = client.post(
            "/emergency/alert", json={"alertType": "panic"}, headers=user_with_contacts,
        )
        assert response.status_code == 400
        assert response.json()["message"] == "Location is required for emergency alert"

    def test_out_of_range_location(self, client, user_with_contacts):
        response = _activate(client, user_with_contacts, latitude=123.0)
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_LOCATION"

    def test_unknown_alert_type(self, client, user_with_contacts):
        response = _activate(client, user_with_contacts, alertType="earthquake")
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_all_deliveries_failing_still_201(self, client, user_with_contacts, gateways):
        sms, email, _ = gateways
        sms.fail_all = email.fail_all = True
        response = _activate(client, user_with_contacts)

        assert response.status_code == 201
        assert response.json()["data"]["deliveredContacts"] == 0

    def test_rate_limited(self, client, container, user_with_contacts):
        container.rate_limiter = AlertRateLimiter(CountingCache(), max_alerts=1, window_seconds=30)
        assert _activate(client, user_with_contacts).status_code == 201

        response = _activate(client, user_with_contacts)
        assert response.status_code == 429
        assert response.json()["details"] == {"retry_after_seconds": 30}

    def test_rejected_requests_do_not_use_up_the_limit(self, client, container, user_with_contacts):
        container.rate_limiter = AlertRateLimiter(CountingCache(), max_alerts=1, window_seconds=30)
        for _ in range(3):
            assert _activate(client, user_with_contacts, latitude=None).status_code == 400

        assert _activate(client, user_with_contacts).status_code == 201
        assert _activate(client, user_with_contacts).status_code == 429


class TestQueries:

    def test_history_detail_and_active(self, client, user_with_contacts):
        first = _activate(client, user_with_contacts).json()["data"]["alertId"]
        second = _activate(client, user_with_contacts).json()["data"]["alertId"]

        history = client.get("/emergency/alerts", headers=user_with_contacts).json()
        assert history["count"] == 2
        assert [a["id"] for a in history["data"]] == [second, first]

        limited = client.get("/emergency/alerts?limit=1", headers=user_with_contacts).json()
        assert [a["id"] for a in limited["data"]] == [second]

        detail = client.get(f"/emergency/alerts/{first}", headers=user_with_contacts).json()["data"]
        assert detail["alertType"] == "harassment"
        assert detail["additionalInfo"] == {
            "message": "Being followed", "batteryLevel": 23, "networkType": "4g",
        }
        assert len(detail["notifiedContacts"]) == 3
        assert detail["notifiedContacts"][0]["contact"]["name"] == "Contact 0"
        assert detail["resolution"] is None

        client.put(f"/emergency/alerts/{first}/cancel", headers=user_with_contacts)
        active = client.get("/emergency/alerts/active", headers=user_with_contacts).json()
        assert [a["id"] for a in active["data"]] == [second]

    def test_history_limit_bounds(self, client, user_with_contacts):
        assert client.get("/emergency/alerts?limit=0", headers=user_with_contacts).status_code == 400
        assert client.get("/emergency/alerts?limit=1000", headers=user_with_contacts).status_code == 400

    def test_unknown_alert(self, client, user_with_contacts):
        response = client.get("/emergency/alerts/doesnotexist", headers=user_with_contacts)
        assert response.status_code == 404
        assert response.json()["message"] == "Alert not found"

    def test_other_users_alert_hidden(self, client, make_user, user_with_contacts):
        alert_id = _activate(client, user_with_contacts).json()["data"]["alertId"]
        _, stranger = make_user(email="stranger@example.com")

        assert client.get(f"/emergency/alerts/{alert_id}", headers=stranger).status_code == 404
        assert client.put(f"/emergency/alerts/{alert_id}/resolve", headers=stranger).status_code == 404

    def test_statistics(self, client, user_with_contacts):
        alert_id = _activate(client, user_with_contacts).json()["data"]["alertId"]
        _activate(client, user_with_contacts)
        client.put(f"/emergency/alerts/{alert_id}/false-alarm", headers=user_with_contacts)

        stats = client.get("/emergency/alerts/stats", headers=user_with_contacts).json()["data"]
        assert stats["total"] == 2
        assert stats["byStatus"]["active"]["count"] == 1
        assert stats["byStatus"]["false-alarm"]["count"] == 1


class TestLifecycle:

    def test_resolve_with_outcome(self, client, user_with_contacts, gateways):
        alert_id = _activate(client, user_with_contacts).json()["data"]["alertId"]
        sms, _, _ = gateways
        sms.sent.clear()

        response = client.put(
            f"/emergency/alerts/{alert_id}/resolve",
            json={"outcome": "assisted", "notes": "Friend arrived"},
            headers=user_with_contacts,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Alert resolved successfully"
        assert body["data"]["status"] == "resolved"
        assert body["data"]["resolution"]["outcome"] == "assisted"
        assert body["data"]["resolution"]["notes"] == "Friend arrived"
        assert body["data"]["deactivatedAt"] is not None
        assert body["data"]["duration"] >= 0
        assert len(sms.sent) == 2

    def test_resolve_without_body(self, client, user_with_contacts):
        alert_id = _activate(client, user_with_contacts).json()["data"]["alertId"]
        response = client.put(f"/emergency/alerts/{alert_id}/resolve", headers=user_with_contacts)
        assert response.json()["data"]["resolution"]["outcome"] == "unknown"

    def test_second_transition_rejected(self, client, user_with_contacts):
        alert_id = _activate(client, user_with_contacts).json()["data"]["alertId"]
        client.put(f"/emergency/alerts/{alert_id}/false-alarm", headers=user_with_contacts)

        response = client.put(f"/emergency/alerts/{alert_id}/cancel", headers=user_with_contacts)
        assert response.status_code == 400
        assert response.json()["message"] == "Alert is not active"
        assert response.json()["details"]["current_status"] == "false-alarm"

    def test_cancel(self, client, user_with_contacts):
        alert_id = _activate(client, user_with_contacts).json()["data"]["alertId"]
        response = client.put(f"/emergency/alerts/{alert_id}/cancel", headers=user_with_contacts)
        assert response.json()["message"] == "Alert cancelled"
        assert response.json()["data"]["status"] == "cancelled"

    def test_acknowledge_notification(self, client, user_with_contacts):
        alert_id = _activate(client, user_with_contacts).json()["data"]["alertId"]
        detail = client.get(f"/emergency/alerts/{alert_id}", headers=user_with_contacts).json()["data"]
        nid = detail["notifiedContacts"][0]["id"]

        response = client.put(
            f"/emergency/alerts/{alert_id}/notifications/{nid}/acknowledge",
            json={"response": "On my way"},
            headers=user_with_contacts,
        )
        assert response.status_code == 200
        acked = next(n for n in response.json()["data"]["notifiedContacts"] if n["id"] == nid)
        assert acked["acknowledgement"]["acknowledged"] is True
        assert acked["acknowledgement"]["response"] == "On my way"


class TestLiveEvents:

    def test_receives_activation_and_status_change(self, client, test_settings, user_with_contacts):
        token = user_with_contacts["Authorization"].split()[1]
        with client.websocket_connect(f"/emergency/live?token={token}") as ws:
            assert ws.receive_json()["event"] == "connected"

            alert_id = _activate(client, user_with_contacts).json()["data"]["alertId"]
            activated = ws.receive_json()
            assert activated["event"] == "alert_activated"
            assert activated["data"]["alertId"] == alert_id
            assert activated["data"]["notifiedContacts"] == 2

            client.put(f"/emergency/alerts/{alert_id}/resolve", headers=user_with_contacts)
            changed = ws.receive_json()
            assert changed["event"] == "alert_status_changed"
            assert changed["data"] == {"alertId": alert_id, "status": "resolved"}

    def test_ping(self, client, user_with_contacts):
        token = user_with_contacts["Authorization"].split()[1]
        with client.websocket_connect(f"/emergency/live?token={token}") as ws:
            ws.receive_json()
            ws.send_text("ping")
            assert ws.receive_text() == "pong"

    def test_bad_token_refused(self, client):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/emergency/live?token=garbage"):
                pass
        assert exc.value.code == 1008

    def test_other_users_events_not_delivered(self, client, make_user, user_with_contacts):
        _, other = make_user(email="watcher@example.com")
        token = other["Authorization"].split()[1]
        with client.websocket_connect(f"/emergency/live?token={token}") as ws:
            ws.receive_json()
            _activate(client, user_with_contacts)
            ws.send_text("ping")
            assert ws.receive_text() == "pong"
