"""Wires one conversation to the dispatcher, suggestion resolver, booking simulator and scorer."""
from __future__ import annotations

import asyncio
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple

from pickforme.booking_simulator import BookingSimulator, SeededRandom
from pickforme.config import settings
from pickforme.conversation_store import BookingHistory, ConversationStore
from pickforme.dispatcher import DispatchResult, RequestDispatcher
from pickforme.errors import BookingValidationError, DispatchError, InvalidInput
from pickforme.itinerary_balance import BalancePreset, ItineraryBalanceScorer
from pickforme.log import get_logger
from pickforme.preference_cache import PreferenceCache
from pickforme.schemas import (
    BalanceReport,
    BookingError,
    BookingOutcome,
    BookingRequest,
    Business,
    ConversationStage,
    DispatchContext,
    Itinerary,
    Message,
    Preferences,
    Suggestion,
)
from pickforme.suggestions import (
    CompositeDispatchAndSelect,
    NextAction,
    SelectBusiness,
    describe,
    resolve,
    resolve_label,
)

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TurnOutcome:
    """What one user action produced: the dispatch (if any) and the messages it added."""

    result: Optional[DispatchResult] = None
    action: Optional[NextAction] = None
    user_message: Optional[Message] = None
    assistant_message: Optional[Message] = None

    @property
    def ok(self) -> bool:
        return self.result is None or self.result.ok

    @property
    def error(self) -> Optional[DispatchError]:
        return self.result.error if self.result is not None else None


class ChatSession:
    """
    One conversation and everything the UI can do to it.

    Interactions are logged before they execute. Failures never remove
    messages; the most recent one is kept in ``last_error`` until
    ``dismiss_error()`` or a later success clears it.
    """

    def __init__(
        self,
        store: Optional[ConversationStore] = None,
        dispatcher: Optional[RequestDispatcher] = None,
        simulator: Optional[BookingSimulator] = None,
        scorer: Optional[ItineraryBalanceScorer] = None,
        *,
        context: Optional[DispatchContext] = None,
        preference_cache: Optional[PreferenceCache] = None,
        user_id: Optional[str] = None,
    ):
        self.store = store or ConversationStore()
        self.dispatcher = dispatcher or RequestDispatcher()
        self.simulator = simulator or BookingSimulator(SeededRandom(settings.booking_seed))
        self.scorer = scorer or ItineraryBalanceScorer()
        self.context = context or DispatchContext(max_retries=settings.max_retries)
        self.preference_cache = preference_cache
        self.user_id = user_id
        self.bookings = BookingHistory()
        self.last_error: Optional[DispatchError] = None
        self.booking_error: Optional[BookingError] = None
        self._send_lock = asyncio.Lock()

    # ---------- dispatch ----------
    async def send_message(self, text: str, context: Optional[DispatchContext] = None) -> TurnOutcome:
        ctx = context or self.context
        async with self._send_lock:
            if not text or not text.strip():
                result = await self.dispatcher.send(text, ctx)
                self._absorb(result)
                return TurnOutcome(result=result)

            before = dict(self.store.context.extracted_preferences)
            user_message = self.store.append_user_message(text)
            self._note_preferences(before)
            history = self.store.messages[:-1]
            result = await self.dispatcher.send(text, self._with_cached_preferences(ctx), history)
            assistant_message = self._absorb(result)
            return TurnOutcome(result=result, user_message=user_message, assistant_message=assistant_message)

    async def retry(self) -> TurnOutcome:
        """Re-dispatch the failed user utterance without appending it again.

        Only valid while a dispatch error is pending and the last message is
        that unanswered utterance; otherwise nothing is sent.
        """
        async with self._send_lock:
            messages = self.store.messages
            if self.last_error is None or not messages or messages[-1].role != "user":
                logger.info("Retry ignored: no failed message is pending")
                return TurnOutcome(result=DispatchResult(error=InvalidInput("There is no failed message to retry.")))

            index = len(messages) - 1
            utterance = messages[index].content
            logger.info("Retrying last utterance (%d prior messages)", index)
            result = await self.dispatcher.send(utterance, self._with_cached_preferences(self.context), messages[:index])
            assistant_message = self._absorb(result)
            return TurnOutcome(result=result, assistant_message=assistant_message)

    def dismiss_error(self) -> None:
        self.last_error = None
        self.booking_error = None

    # ---------- suggestions ----------
    async def apply_suggestion(self, suggestion: Suggestion) -> TurnOutcome:
        self.store.record_interaction(
            "suggestion_clicked",
            {"id": suggestion.id, "text": suggestion.text, "action": suggestion.action.value},
        )
        return await self._execute(resolve(suggestion))

    async def apply_suggested_action(self, label: str, business: Optional[Business] = None) -> TurnOutcome:
        self.store.record_interaction(
            "action_clicked",
            {"label": label, "business_id": business.id if business else None},
        )
        return await self._execute(resolve_label(label, business))

    def select_business(self, business: Business) -> None:
        self.store.record_interaction("business_selected", {"business_id": business.id, "name": business.name})
        self.store.select_business(business)

    async def _execute(self, action: NextAction) -> TurnOutcome:
        logger.info("Executing next action %s", describe(action))
        if isinstance(action, SelectBusiness):
            self.select_business(action.business)
            return TurnOutcome(action=action)
        if isinstance(action, CompositeDispatchAndSelect):
            self.select_business(action.business)
        outcome = await self.send_message(action.utterance)
        outcome.action = action
        return outcome

    # ---------- bookings ----------
    async def book(self, request: BookingRequest) -> BookingOutcome:
        self.store.record_interaction(
            "booking_attempted",
            {"business_id": request.business_id, "category": request.category},
        )
        self.store.context.stage = ConversationStage.BOOKING
        try:
            outcome = await self.simulator.simulate_single_booking(request)
        except BookingValidationError as exc:
            self.booking_error = BookingError(code=exc.code, message=exc.message, retryable=False)
            self.store.record_interaction(
                "booking_result",
                {"success": False, "code": exc.code, "business_id": request.business_id},
            )
            raise

        if outcome.success:
            self.bookings.append(outcome)
            self.booking_error = None
            self.store.context.stage = ConversationStage.COMPLETED
        else:
            self.booking_error = outcome.error
        self.store.record_interaction(
            "booking_result",
            {
                "success": outcome.success,
                "business_id": request.business_id,
                "confirmation_id": outcome.confirmation_id,
                "code": outcome.error.code if outcome.error else None,
            },
        )
        return outcome

    # ---------- itineraries ----------
    def evaluate_itinerary(
        self, itinerary: Itinerary, preset: Optional[BalancePreset | str] = None
    ) -> BalanceReport:
        return self.scorer.evaluate(itinerary, preset)

    def new_conversation(self) -> None:
        """Drop messages, interactions and error state; booking history stays."""
        self.store.clear()
        self.dismiss_error()

    # ---------- helpers ----------
    def _absorb(self, result: DispatchResult) -> Optional[Message]:
        if not result.ok:
            self.last_error = result.error
            self.store.record_interaction(
                "dispatch_failed",
                {
                    "code": result.error.code if result.error else None,
                    "message": result.error.message if result.error else None,
                    "attempts": result.attempts,
                },
            )
            return None
        self.last_error = None
        turn = result.turn
        return self.store.append_assistant_message(turn.message, metadata=turn.metadata, businesses=turn.businesses)

    def _note_preferences(self, before: Dict[str, object]) -> None:
        after = self.store.context.extracted_preferences
        if after == before:
            return
        self.store.record_interaction("preference_updated", {"preferences": dict(after)})
        if self.preference_cache is not None and self.user_id:
            self.preference_cache.set(self.user_id, "preferences", dict(after))

    def _with_cached_preferences(self, ctx: DispatchContext) -> DispatchContext:
        if ctx.user_preferences is not None or self.preference_cache is None or not self.user_id:
            return ctx
        cached = self.preference_cache.get(self.user_id, "preferences")
        if not cached:
            return ctx
        return ctx.model_copy(update={"user_preferences": Preferences.model_validate(cached)})


class SessionRegistry:
    """
    Live chat sessions by id, for the HTTP facade.

    Sessions idle for longer than ``idle_ttl_hours`` are dropped on the next
    registry access. Past ``max_sessions`` the least recently used one goes.
    """

    def __init__(
        self,
        factory: Optional[Callable[[], ChatSession]] = None,
        *,
        idle_ttl_hours: Optional[float] = None,
        max_sessions: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        hours = settings.session_ttl_hours if idle_ttl_hours is None else idle_ttl_hours
        self._factory = factory or ChatSession
        self.idle_ttl = timedelta(hours=hours)
        self.max_sessions = max(1, settings.max_sessions if max_sessions is None else max_sessions)
        self._clock = clock
        # Least recently used first.
        self._sessions: OrderedDict[str, Tuple[ChatSession, datetime]] = OrderedDict()

    def create(self, session_id: Optional[str] = None) -> Tuple[str, ChatSession]:
        self._prune()
        session_id = session_id or f"chat_{uuid.uuid4().hex[:12]}"
        session = self._factory()
        self._sessions[session_id] = (session, self._clock())
        self._sessions.move_to_end(session_id)
        while len(self._sessions) > self.max_sessions:
            evicted, _ = self._sessions.popitem(last=False)
            logger.info("Evicted chat session %s (registry full)", evicted)
        logger.info("Opened chat session %s", session_id)
        return session_id, session

    def get_or_create(self, session_id: Optional[str] = None) -> Tuple[str, ChatSession]:
        if session_id:
            try:
                return session_id, self.get(session_id)
            except KeyError:
                pass
        return self.create(session_id)

    def get(self, session_id: str) -> ChatSession:
        """Return a live session and mark it used; ``KeyError`` when unknown or expired."""
        self._prune()
        session, _ = self._sessions[session_id]
        self._sessions[session_id] = (session, self._clock())
        self._sessions.move_to_end(session_id)
        return session

    def drop(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def _prune(self) -> None:
        now = self._clock()
        expired = [sid for sid, (_, last_used) in self._sessions.items() if now - last_used > self.idle_ttl]
        for sid in expired:
            del self._sessions[sid]
            logger.info("Expired idle chat session %s", sid)

    def __contains__(self, session_id: object) -> bool:
        self._prune()
        return session_id in self._sessions

    def __len__(self) -> int:
        self._prune()
        return len(self._sessions)
