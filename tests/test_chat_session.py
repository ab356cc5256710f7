import asyncio
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from pickforme.booking_simulator import BookingSimulator
from pickforme.dispatcher import RequestDispatcher
from pickforme.errors import BookingValidationError, InvalidInput, MalformedResponse
from pickforme.orchestrator import ChatSession, SessionRegistry
from pickforme.preference_cache import PreferenceCache
from pickforme.schemas import BookingOutcome, BookingRequest, ConversationStage, Itinerary, Suggestion
from pickforme.suggestions import CompositeDispatchAndSelect, Dispatch
from pickforme.tools.backend_client import BackendClient

ITALIAN_SPOTS = [
    {"id": "it-1", "name": "Trattoria Luna", "rating": 4.7, "price": "$$"},
    {"id": "it-2", "name": "Osteria Nonna", "rating": 4.5, "price": "$$"},
    {"id": "it-3", "name": "Via Roma", "rating": 4.3, "price": "$$$"},
]


class FakeBackend:
    """Scripted backend; records every request body it receives."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        if self.responses:
            return self.responses.pop(0)
        return httpx.Response(200, json={"success": True, "data": {"message": "ok"}})


class ZeroRandom:
    def next_float(self) -> float:
        return 0.0


def _session(backend: FakeBackend, **kwargs) -> ChatSession:
    client = BackendClient("http://backend.test/api/chat", transport=httpx.MockTransport(backend))
    return ChatSession(
        dispatcher=RequestDispatcher(client, backoff_base=0),
        simulator=BookingSimulator(ZeroRandom()),
        **kwargs,
    )


def _reply(message, **data) -> httpx.Response:
    return httpx.Response(200, json={"success": True, "data": {"message": message, **data}})


def test_cozy_italian_end_to_end():
    backend = FakeBackend(
        _reply(
            "Here are three cozy Italian places near you.",
            businesses=ITALIAN_SPOTS,
            metadata={"suggested_actions": ["Make a reservation", "Get directions", "See alternatives"]},
        )
    )
    session = _session(backend)

    outcome = asyncio.run(session.send_message("Find me a cozy Italian restaurant nearby"))

    assert outcome.ok
    assert [m.role for m in session.store.messages] == ["user", "assistant"]
    reply = session.store.messages[-1]
    assert len(reply.businesses) == 3
    assert "Make a reservation" in reply.metadata.suggested_actions
    assert session.store.context.stage is ConversationStage.DECISION_MADE

    first = reply.businesses[0]
    followup = asyncio.run(session.apply_suggested_action("Make a reservation", first))

    assert followup.action == Dispatch("Make a reservation at Trattoria Luna")
    assert backend.requests[-1]["message"] == "Make a reservation at Trattoria Luna"
    assert len(backend.requests[-1]["conversation_history"]) == 2
    assert "action_clicked" in [e.type for e in session.store.interactions]


def test_history_excludes_current_message():
    backend = FakeBackend()
    session = _session(backend)

    asyncio.run(session.send_message("first"))
    asyncio.run(session.send_message("second"))

    assert backend.requests[0]["conversation_history"] == []
    assert [h["content"] for h in backend.requests[1]["conversation_history"]] == ["first", "ok"]


def test_empty_message_leaves_conversation_untouched():
    backend = FakeBackend()
    session = _session(backend)

    outcome = asyncio.run(session.send_message("  "))

    assert isinstance(outcome.error, InvalidInput)
    assert session.store.messages == ()
    assert backend.requests == []


def test_failure_keeps_messages_and_retry_reuses_utterance():
    backend = FakeBackend(httpx.Response(200, json={"nope": True}), _reply("Back online"))
    session = _session(backend)

    failed = asyncio.run(session.send_message("Tacos please"))

    assert isinstance(failed.error, MalformedResponse)
    assert isinstance(session.last_error, MalformedResponse)
    assert [m.role for m in session.store.messages] == ["user"]
    assert session.store.interactions[-1].type == "dispatch_failed"

    retried = asyncio.run(session.retry())

    assert retried.ok
    assert session.last_error is None
    assert [m.content for m in session.store.messages] == ["Tacos please", "Back online"]
    assert backend.requests[1]["message"] == "Tacos please"
    assert backend.requests[1]["conversation_history"] == []


def test_dismiss_error_does_not_touch_messages():
    backend = FakeBackend(httpx.Response(200, json={"nope": True}))
    session = _session(backend)
    asyncio.run(session.send_message("hello"))

    session.dismiss_error()

    assert session.last_error is None
    assert len(session.store) == 1


def test_book_suggestion_selects_business_and_dispatches():
    backend = FakeBackend()
    session = _session(backend)
    suggestion = Suggestion.model_validate(
        {"id": "s1", "text": "Book Luna", "action": "book", "data": {"business": ITALIAN_SPOTS[0]}}
    )

    outcome = asyncio.run(session.apply_suggestion(suggestion))

    assert isinstance(outcome.action, CompositeDispatchAndSelect)
    assert session.store.context.selected_business.id == "it-1"
    assert backend.requests[0]["message"] == "Book Trattoria Luna"
    assert session.store.interactions[0].type == "suggestion_clicked"


def test_confirmed_booking_is_recorded():
    session = _session(FakeBackend())
    request = BookingRequest.model_validate(
        {
            "businessId": "it-1",
            "businessName": "Trattoria Luna",
            "category": "dining",
            "bookingDetails": {"date": "2024-06-01", "partySize": 2},
            "userContact": {"name": "Sam", "email": "sam@example.com"},
        }
    )

    outcome = asyncio.run(session.book(request))

    assert outcome.success
    assert session.bookings.latest() == outcome
    assert [e.type for e in session.store.interactions] == ["booking_attempted", "booking_result"]
    assert session.store.context.stage is ConversationStage.COMPLETED


def test_invalid_booking_is_logged_and_raised():
    session = _session(FakeBackend())

    with pytest.raises(BookingValidationError):
        asyncio.run(session.book(BookingRequest(category="dining")))

    assert len(session.bookings) == 0
    assert session.booking_error.code == "VALIDATION_ERROR"
    assert session.store.interactions[-1].payload["success"] is False


def test_new_conversation_keeps_bookings():
    session = _session(FakeBackend())
    asyncio.run(session.send_message("hello"))
    session.bookings.append(BookingOutcome(success=True, confirmation_id="CONF_x"))

    session.new_conversation()

    assert session.store.messages == ()
    assert len(session.bookings) == 1


def test_extracted_preferences_are_cached_and_reused():
    cache = PreferenceCache()
    backend = FakeBackend()
    session = _session(backend, preference_cache=cache, user_id="alice")

    asyncio.run(session.send_message("Something vegan and cheap"))

    assert cache.get("alice", "preferences")["dietary_restrictions"] == ["vegan"]
    assert backend.requests[0]["user_preferences"]["priceRange"] == "$"
    assert session.store.interactions[0].type == "preference_updated"


def test_registry_round_trip():
    registry = SessionRegistry(factory=lambda: _session(FakeBackend()))
    session_id, session = registry.create()

    assert registry.get_or_create(session_id) == (session_id, session)
    assert registry.drop(session_id) is True
    assert session_id not in registry


def test_evaluate_itinerary_uses_requested_preset():
    session = _session(FakeBackend())
    itinerary = Itinerary.model_validate(
        {"days": [{"activities": [{"time": "18:00", "category": "dining", "activity": ITALIAN_SPOTS[0]}]}]}
    )

    report = session.evaluate_itinerary(itinerary, "summary_card")

    assert report.preset == "summary_card"
    assert report.time_slots == {"evening": 1}


def test_book_suggestion_logs_click_before_selection():
    session = _session(FakeBackend())
    suggestion = Suggestion.model_validate(
        {"id": "s2", "text": "Book Roma", "action": "book", "data": {"business": ITALIAN_SPOTS[2]}}
    )

    asyncio.run(session.apply_suggestion(suggestion))

    assert [e.type for e in session.store.interactions][:2] == ["suggestion_clicked", "business_selected"]


def test_retry_after_success_sends_nothing():
    backend = FakeBackend()
    session = _session(backend)
    asyncio.run(session.send_message("pizza"))

    outcome = asyncio.run(session.retry())

    assert isinstance(outcome.error, InvalidInput)
    assert [m.role for m in session.store.messages] == ["user", "assistant"]
    assert len(backend.requests) == 1
    assert session.last_error is None


def test_retry_after_dismissed_error_sends_nothing():
    backend = FakeBackend(httpx.Response(200, json={"nope": True}))
    session = _session(backend)
    asyncio.run(session.send_message("pizza"))
    session.dismiss_error()

    outcome = asyncio.run(session.retry())

    assert isinstance(outcome.error, InvalidInput)
    assert len(backend.requests) == 1


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


def test_registry_expires_idle_sessions():
    clock = FakeClock()
    registry = SessionRegistry(factory=lambda: _session(FakeBackend()), idle_ttl_hours=2, clock=clock)
    stale_id, _ = registry.create()
    clock.now += timedelta(hours=1)
    fresh_id, _ = registry.create()

    clock.now += timedelta(hours=1, minutes=30)

    assert stale_id not in registry
    with pytest.raises(KeyError):
        registry.get(stale_id)
    assert registry.get(fresh_id) is not None
    assert len(registry) == 1


def test_registry_evicts_least_recently_used_past_cap():
    registry = SessionRegistry(factory=lambda: _session(FakeBackend()), max_sessions=2, clock=FakeClock())
    first, _ = registry.create()
    second, _ = registry.create()
    registry.get(first)

    third, _ = registry.create()

    assert len(registry) == 2
    assert second not in registry
    assert first in registry and third in registry
