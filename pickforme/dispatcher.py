from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence

import httpx
from pydantic import ValidationError

from pickforme.config import settings
from pickforme.conversation_store import serialize_history
from pickforme.errors import (
    BackendRejected,
    DispatchError,
    InvalidInput,
    MalformedResponse,
    NetworkFailure,
)
from pickforme.log import get_logger
from pickforme.schemas import AssistantTurn, DispatchContext, Message
from pickforme.tools.backend_client import BackendClient

logger = get_logger(__name__)

INVALID_RESPONSE_MESSAGE = "Invalid response format"

# Older backend builds put these next to ``message`` instead of under ``metadata``.
_LEGACY_METADATA_KEYS = ("suggested_actions", "requires_clarification", "interactive_suggestions", "ai_decision")


@dataclass
class DispatchResult:
    turn: Optional[AssistantTurn] = None
    error: Optional[DispatchError] = None
    attempts: int = 0
    session_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.turn is not None

    def raise_for_error(self) -> AssistantTurn:
        if self.error is not None:
            raise self.error
        assert self.turn is not None
        return self.turn


class RequestDispatcher:
    """Send one utterance to the recommendation backend with bounded retries.

    Stateless between calls; the attempt counter lives inside ``send``. The
    dispatcher never writes to a conversation store, callers do that with the
    returned result.
    """

    def __init__(
        self,
        client: Optional[BackendClient] = None,
        *,
        backoff_base: Optional[float] = None,
        backoff_cap: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client = client or BackendClient()
        self.backoff_base = settings.retry_backoff_base if backoff_base is None else backoff_base
        self.backoff_cap = settings.retry_backoff_cap if backoff_cap is None else backoff_cap
        self._sleep = sleep

    async def send(
        self,
        utterance: str,
        context: Optional[DispatchContext] = None,
        history: Sequence[Message] = (),
    ) -> DispatchResult:
        if not utterance or not utterance.strip():
            logger.info("Rejected empty utterance without contacting the backend")
            return DispatchResult(error=InvalidInput("Please enter a message before sending."))

        context = context or DispatchContext()
        session_id = new_session_id()
        payload = build_payload(utterance, context, history, session_id)
        max_attempts = max(1, context.max_retries) if context.retry_on_failure else 1

        logger.info(
            "Dispatching utterance (%d chars, %d prior messages) session=%s max_attempts=%d",
            len(utterance),
            len(history),
            session_id,
            max_attempts,
        )

        last_error: Optional[DispatchError] = None
        attempt = 0
        while attempt < max_attempts:
            attempt += 1
            try:
                turn = await self._attempt(payload, context.timeout)
            except DispatchError as exc:
                last_error = exc
                logger.warning(
                    "Dispatch attempt %d/%d failed (%s): %s",
                    attempt,
                    max_attempts,
                    exc.code,
                    exc.message,
                )
                if not exc.retryable or attempt >= max_attempts:
                    break
                delay = self._backoff(attempt)
                if delay > 0:
                    logger.info("Retrying in %.2fs (attempt %d/%d)", delay, attempt + 1, max_attempts)
                    await self._sleep(delay)
                continue

            logger.info(
                "Dispatch succeeded after %d attempt(s) with %d business(es)",
                attempt,
                len(turn.businesses),
            )
            return DispatchResult(turn=turn, attempts=attempt, session_id=session_id)

        return DispatchResult(error=last_error, attempts=attempt, session_id=session_id)

    async def _attempt(self, payload: Dict[str, Any], timeout: Optional[float]) -> AssistantTurn:
        try:
            response = await self.client.post_chat(payload, timeout=timeout)
        except httpx.TimeoutException as exc:
            raise NetworkFailure("Request timed out. Please try again.") from exc
        except httpx.RequestError as exc:
            # TransportError plus body failures such as DecodingError
            raise NetworkFailure("Network error. Please check your connection and try again.") from exc
        return parse_backend_response(response)

    def _backoff(self, attempt: int) -> float:
        if self.backoff_base <= 0:
            return 0.0
        return min(self.backoff_base * (2 ** (attempt - 1)), self.backoff_cap)


def new_session_id() -> str:
    return f"session_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


def build_payload(
    utterance: str,
    context: DispatchContext,
    history: Sequence[Message],
    session_id: str,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "message": utterance,
        "conversation_history": serialize_history(history),
        "session_id": session_id,
    }
    if context.location is not None:
        payload["location"] = context.location.model_dump(by_alias=True, exclude_none=True)
    if context.user_preferences is not None:
        payload["user_preferences"] = context.user_preferences.model_dump(by_alias=True, exclude_none=True)
    return payload


def parse_backend_response(response: httpx.Response) -> AssistantTurn:
    """Normalise one backend reply into an ``AssistantTurn`` or raise a typed error."""
    try:
        body = response.json()
    except ValueError:
        body = None

    if not response.is_success:
        message, terminal = _error_details(body)
        raise BackendRejected(
            message or f"HTTP {response.status_code}: {response.reason_phrase}",
            status_code=response.status_code,
            terminal=terminal,
        )

    if not isinstance(body, dict) or "success" not in body:
        raise MalformedResponse(INVALID_RESPONSE_MESSAGE)

    if body.get("success") is not True:
        message, terminal = _error_details(body)
        raise BackendRejected(message or "API request failed", status_code=response.status_code, terminal=terminal)

    data = body.get("data")
    if not isinstance(data, dict) or not isinstance(data.get("message"), str):
        raise MalformedResponse(INVALID_RESPONSE_MESSAGE)

    metadata = data.get("metadata")
    metadata = dict(metadata) if isinstance(metadata, dict) else {}
    for key in _LEGACY_METADATA_KEYS:
        if key in data and key not in metadata:
            metadata[key] = data[key]

    try:
        return AssistantTurn.model_validate(
            {
                "message": data["message"],
                "businesses": data.get("businesses") or [],
                "metadata": metadata,
            }
        )
    except ValidationError as exc:
        raise MalformedResponse(INVALID_RESPONSE_MESSAGE, details={"errors": exc.errors()}) from exc


def _error_details(body: Any) -> tuple[Optional[str], bool]:
    if not isinstance(body, dict):
        return None, False
    error = body.get("error")
    terminal = body.get("retryable") is False
    if isinstance(error, dict):
        if error.get("retryable") is False:
            terminal = True
        message = error.get("message")
        return (message if isinstance(message, str) and message else None), terminal
    if isinstance(error, str) and error:
        return error, terminal
    return None, terminal
