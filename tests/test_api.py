import json
from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi.testclient import TestClient

from pickforme.booking_simulator import BookingSimulator
from pickforme.dispatcher import RequestDispatcher
from pickforme.errors import NetworkFailure
from pickforme.main import app
from pickforme.orchestrator import ChatSession, SessionRegistry
from pickforme.tools.backend_client import BackendClient

BUSINESSES = [
    {"id": "it-1", "name": "Trattoria Luna", "rating": 4.7},
    {"id": "it-2", "name": "Osteria Nonna", "rating": 4.5},
    {"id": "it-3", "name": "Via Roma", "rating": 4.3},
]


class ZeroRandom:
    def next_float(self) -> float:
        return 0.0


def _install_backend(monkeypatch, handler) -> SessionRegistry:
    def factory() -> ChatSession:
        client = BackendClient("http://backend.test/api/chat", transport=httpx.MockTransport(handler))
        return ChatSession(
            dispatcher=RequestDispatcher(client, backoff_base=0),
            simulator=BookingSimulator(ZeroRandom()),
        )

    registry = SessionRegistry(factory=factory)
    monkeypatch.setattr("pickforme.main.sessions", registry)
    return registry


def _echo_backend(seen):
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        seen.append(body)
        return httpx.Response(
            200,
            json={
                "success": True,
                "data": {
                    "message": f"You said: {body['message']}",
                    "businesses": BUSINESSES,
                    "metadata": {"suggested_actions": ["Make a reservation"]},
                },
            },
        )

    return handler


def test_chat_then_action(monkeypatch):
    seen = []
    _install_backend(monkeypatch, _echo_backend(seen))
    client = TestClient(app)

    first = client.post(
        "/api/chat",
        json={"message": "Find me a cozy Italian restaurant nearby", "location": {"latitude": 40.7, "longitude": -74.0}},
    )

    assert first.status_code == 200
    data = first.json()
    assert data["success"] is True
    assert len(data["message"]["businesses"]) == 3
    assert data["message"]["metadata"]["suggestedActions"] == ["Make a reservation"]
    assert seen[0]["location"]["latitude"] == 40.7

    session_id = data["sessionId"]
    second = client.post(
        f"/api/chat/{session_id}/actions",
        json={"label": "Make a reservation", "business": BUSINESSES[0]},
    )

    assert second.status_code == 200
    assert second.json()["action"] == {"kind": "dispatch", "utterance": "Make a reservation at Trattoria Luna"}
    assert seen[-1]["message"] == "Make a reservation at Trattoria Luna"


def test_suggestion_endpoint(monkeypatch):
    seen = []
    registry = _install_backend(monkeypatch, _echo_backend(seen))
    session_id, _ = registry.create()
    client = TestClient(app)

    response = client.post(
        f"/api/chat/{session_id}/suggestions",
        json={"suggestion": {"id": "s1", "text": "Via Roma", "action": "explore"}},
    )

    assert response.status_code == 200
    assert seen[0]["message"] == "Tell me more about Via Roma"


def test_empty_message_is_422(monkeypatch):
    seen = []
    _install_backend(monkeypatch, _echo_backend(seen))
    client = TestClient(app)

    response = client.post("/api/chat", json={"message": "   "})

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "INVALID_INPUT"
    assert seen == []


def test_invalid_location_is_422(monkeypatch):
    _install_backend(monkeypatch, _echo_backend([]))
    client = TestClient(app)

    response = client.post("/api/chat", json={"message": "hi", "location": {"latitude": 123, "longitude": 0}})

    assert response.status_code == 422


def test_blank_messages_do_not_open_sessions(monkeypatch):
    registry = _install_backend(monkeypatch, _echo_backend([]))
    client = TestClient(app)

    for _ in range(50):
        assert client.post("/api/chat", json={"message": "   "}).status_code == 422

    assert len(registry) == 0


@pytest.mark.parametrize("max_retries", [0, 100])
def test_out_of_range_max_retries_is_422(monkeypatch, max_retries):
    seen = []
    _install_backend(monkeypatch, _echo_backend(seen))
    client = TestClient(app)

    response = client.post("/api/chat", json={"message": "hi", "maxRetries": max_retries})

    assert response.status_code == 422
    assert seen == []


def test_retry_without_failure_is_422(monkeypatch):
    seen = []
    _install_backend(monkeypatch, _echo_backend(seen))
    client = TestClient(app)
    session_id = client.post("/api/chat", json={"message": "pizza"}).json()["sessionId"]

    response = client.post(f"/api/chat/{session_id}/retry")

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "INVALID_INPUT"
    assert len(seen) == 1


def test_malformed_backend_reply_is_502_and_retry_recovers(monkeypatch):
    replies = iter([httpx.Response(200, json={"data": None})])

    def handler(request):
        try:
            return next(replies)
        except StopIteration:
            return httpx.Response(200, json={"success": True, "data": {"message": "recovered"}})

    _install_backend(monkeypatch, handler)
    client = TestClient(app)

    failed = client.post("/api/chat", json={"message": "hi", "sessionId": "abc"})

    assert failed.status_code == 502
    assert failed.json() == {
        "error": {"code": "MALFORMED_RESPONSE", "message": "Invalid response format", "retryable": False}
    }

    retried = client.post("/api/chat/abc/retry")
    assert retried.status_code == 200
    assert retried.json()["message"]["content"] == "recovered"


def test_network_failure_is_503(monkeypatch):
    registry = _install_backend(monkeypatch, _echo_backend([]))
    session_id, session = registry.create()
    failing = AsyncMock(side_effect=NetworkFailure("Network error. Please check your connection and try again."))
    monkeypatch.setattr(session.dispatcher.client, "post_chat", failing)
    client = TestClient(app)

    response = client.post(f"/api/chat/{session_id}/actions", json={"label": "Keep looking"})

    assert response.status_code == 503
    assert response.json()["error"]["retryable"] is True
    failing.assert_awaited()


def test_dismiss_error_and_close_session(monkeypatch):
    registry = _install_backend(monkeypatch, _echo_backend([]))
    session_id, _ = registry.create()
    client = TestClient(app)

    assert client.delete(f"/api/chat/{session_id}/error").json() == {"sessionId": session_id, "messageCount": 0}
    assert client.delete(f"/api/chat/{session_id}").status_code == 200
    assert client.delete(f"/api/chat/{session_id}").status_code == 404
    assert client.post(f"/api/chat/{session_id}/retry").status_code == 404


def test_booking_endpoint(monkeypatch):
    monkeypatch.setattr("pickforme.main.booking_simulator", BookingSimulator(ZeroRandom()))
    client = TestClient(app)
    payload = {
        "businessId": "it-1",
        "businessName": "Trattoria Luna",
        "category": "dining",
        "bookingDetails": {"date": "2024-06-01", "partySize": 2},
        "userContact": {"name": "Sam", "email": "sam@example.com"},
    }

    confirmed = client.post("/api/bookings", json=payload)
    rejected = client.post("/api/bookings", json={**payload, "userContact": {"name": "Sam"}})

    assert confirmed.status_code == 200
    assert confirmed.json()["confirmationId"].startswith("CONF_")
    assert rejected.status_code == 422
    assert rejected.json()["error"]["message"] == "User contact information is incomplete"


def test_itinerary_balance_endpoint():
    client = TestClient(app)
    itinerary = {
        "days": [
            {
                "activities": [
                    {"time": "09:00", "duration": 60, "category": "dining", "activity": {"id": "a", "name": "Cafe"}},
                ]
            }
        ]
    }

    response = client.post("/api/itinerary/balance", json={"itinerary": itinerary, "preset": "summary_card"})
    unknown = client.post("/api/itinerary/balance", json={"itinerary": itinerary, "preset": "nope"})

    assert response.status_code == 200
    body = response.json()
    assert body["preset"] == "summary_card"
    assert body["overallBalance"] == pytest.approx(0.25)
    assert unknown.status_code == 422
