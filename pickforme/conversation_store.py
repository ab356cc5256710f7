"""In-memory conversation state: ordered messages, interaction log, booking history."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from pickforme.agents.context_extractor import (
    detect_follow_up,
    extract_preferences,
    extract_travel_context,
    merge_preferences,
)
from pickforme.log import get_logger
from pickforme.schemas import (
    BookingOutcome,
    Business,
    ConversationContext,
    ConversationStage,
    InteractionEvent,
    Message,
    MessageMetadata,
    TravelContext,
)

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationStore:
    """
    Owns one conversation. Messages are append-only until ``clear()``.

    Instances are independent, so tabs, sessions and tests can each hold their
    own store.
    """

    def __init__(self, *, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._messages: List[Message] = []
        self._interactions: List[InteractionEvent] = []
        self.context = ConversationContext()

    @property
    def messages(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def interactions(self) -> Tuple[InteractionEvent, ...]:
        return tuple(self._interactions)

    def __len__(self) -> int:
        return len(self._messages)

    def append_user_message(self, content: str) -> Message:
        message = self._build("user", content)
        last_assistant = self._last_by_role("assistant")
        awaiting_clarification = bool(
            last_assistant and last_assistant.metadata and last_assistant.metadata.requires_clarification
        )
        self._messages.append(message)
        self._update_context_for_user(content, awaiting_clarification)
        logger.debug("Appended user message %s (%d total)", message.id, len(self._messages))
        return message

    def append_assistant_message(
        self,
        content: str,
        metadata: Optional[MessageMetadata] = None,
        businesses: Optional[Sequence[Business]] = None,
    ) -> Message:
        message = self._build(
            "assistant",
            content,
            metadata=metadata,
            businesses=list(businesses) if businesses is not None else None,
        )
        self._messages.append(message)
        if message.businesses:
            self.context.stage = ConversationStage.DECISION_MADE
        if metadata and metadata.requires_clarification:
            self.context.clarification_needed = True
        logger.debug(
            "Appended assistant message %s with %d business(es)",
            message.id,
            len(message.businesses or []),
        )
        return message

    def record_interaction(self, type: str, payload: Optional[Dict[str, Any]] = None) -> InteractionEvent:
        event = InteractionEvent(type=type, payload=dict(payload or {}), timestamp=self._clock())
        self._interactions.append(event)
        return event

    def clear(self) -> None:
        """Start a new conversation; extracted preferences survive the reset."""
        kept_preferences = dict(self.context.extracted_preferences)
        self._messages = []
        self._interactions = []
        self.context = ConversationContext(extracted_preferences=kept_preferences)
        logger.info("Conversation cleared")

    def history_payload(self) -> List[Dict[str, str]]:
        return serialize_history(self._messages)

    def last_user_message(self) -> Optional[Message]:
        return self._last_by_role("user")

    def select_business(self, business: Business) -> None:
        self.context.selected_business = business

    # ---------- helpers ----------
    def _build(self, role: str, content: str, **extra: Any) -> Message:
        now = self._clock()
        message_id = f"msg_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}"
        return Message(id=message_id, role=role, content=content, timestamp=now, **extra)

    def _last_by_role(self, role: str) -> Optional[Message]:
        for message in reversed(self._messages):
            if message.role == role:
                return message
        return None

    def _update_context_for_user(self, content: str, awaiting_clarification: bool) -> None:
        ctx = self.context
        ctx.last_user_query = content
        ctx.stage = ConversationStage.SEARCHING
        ctx.extracted_preferences = merge_preferences(ctx.extracted_preferences, extract_preferences(content))

        travel = extract_travel_context(content)
        if travel:
            current = ctx.travel_context.model_dump() if ctx.travel_context else {}
            ctx.travel_context = TravelContext.model_validate({**current, **travel})

        if detect_follow_up(content, awaiting_clarification):
            ctx.clarification_needed = False


def serialize_history(messages: Sequence[Message]) -> List[Dict[str, str]]:
    """Role/content/timestamp triples in the shape the recommendation backend expects."""
    return [
        {"role": msg.role, "content": msg.content, "timestamp": msg.timestamp.isoformat()}
        for msg in messages
    ]


class BookingHistory:
    """Append-only list of confirmed bookings, most recent last."""

    def __init__(self) -> None:
        self._entries: List[BookingOutcome] = []

    def append(self, outcome: BookingOutcome) -> None:
        if not outcome.success:
            raise ValueError("Only confirmed bookings belong in the booking history")
        self._entries.append(outcome)

    @property
    def entries(self) -> Tuple[BookingOutcome, ...]:
        return tuple(self._entries)

    def latest(self) -> Optional[BookingOutcome]:
        return self._entries[-1] if self._entries else None

    def __len__(self) -> int:
        return len(self._entries)
