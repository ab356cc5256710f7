from __future__ import annotations

from typing import Any, Dict, Optional, Type, TypeVar

from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from pickforme.booking_simulator import BookingSimulator, SeededRandom
from pickforme.config import settings
from pickforme.errors import (
    BookingValidationError,
    DispatchError,
    InvalidInput,
    NetworkFailure,
    PickForMeError,
)
from pickforme.itinerary_balance import ItineraryBalanceScorer
from pickforme.log import get_logger
from pickforme.orchestrator import ChatSession, SessionRegistry, TurnOutcome
from pickforme.schemas import (
    ActionRequest,
    BookingRequest,
    ChatRequest,
    DispatchContext,
    ItineraryBalanceRequest,
    SuggestionRequest,
)
from pickforme.suggestions import describe

logger = get_logger(__name__)

app = FastAPI(title="Pick For Me Orchestration API")

# Local UIs (Vite dev server, static builds) call straight into the API.
# PICKFORME_ALLOWED_ORIGINS narrows this to a comma-separated list.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

sessions = SessionRegistry()
booking_simulator = BookingSimulator(SeededRandom(settings.booking_seed))
balance_scorer = ItineraryBalanceScorer()

ModelT = TypeVar("ModelT", bound=BaseModel)


def _status_for(exc: PickForMeError) -> int:
    if isinstance(exc, (InvalidInput, BookingValidationError)):
        return 422
    if isinstance(exc, NetworkFailure):
        return 503
    if isinstance(exc, DispatchError):
        return 502
    return 500


@app.exception_handler(PickForMeError)
async def _engine_error_handler(request: Request, exc: PickForMeError) -> JSONResponse:
    status = _status_for(exc)
    logger.warning("%s %s -> %d %s: %s", request.method, request.url.path, status, exc.code, exc.message)
    return JSONResponse(status_code=status, content={"error": exc.to_dict()})


def _validate(model: Type[ModelT], payload: Dict[str, Any]) -> ModelT:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False, include_context=False)) from exc


def _session(session_id: str) -> ChatSession:
    try:
        return sessions.get(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown chat session {session_id}") from None


def _turn_response(session_id: str, outcome: TurnOutcome) -> Dict[str, Any]:
    """Raise the turn's error for the handler above, otherwise serialise it."""
    if outcome.result is not None:
        outcome.result.raise_for_error()
    message = outcome.assistant_message
    return {
        "sessionId": session_id,
        "success": True,
        "attempts": outcome.result.attempts if outcome.result is not None else 0,
        "action": describe(outcome.action) if outcome.action is not None else None,
        "message": message.model_dump(mode="json", by_alias=True, exclude_none=True) if message else None,
    }


@app.post("/api/chat")
async def api_chat(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    """Append the user's message and dispatch it, opening a session when needed."""
    req = _validate(ChatRequest, payload)
    if not req.message.strip():
        raise InvalidInput("Please enter a message before sending.")
    session_id, session = sessions.get_or_create(req.session_id)
    context = DispatchContext(
        location=req.location,
        user_preferences=req.user_preferences,
        retry_on_failure=req.retry_on_failure,
        max_retries=req.max_retries,
    )
    outcome = await session.send_message(req.message, context)
    return _turn_response(session_id, outcome)


@app.post("/api/chat/{session_id}/suggestions")
async def api_apply_suggestion(session_id: str, payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    session = _session(session_id)
    req = _validate(SuggestionRequest, payload)
    outcome = await session.apply_suggestion(req.suggestion)
    return _turn_response(session_id, outcome)


@app.post("/api/chat/{session_id}/actions")
async def api_apply_action(session_id: str, payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    session = _session(session_id)
    req = _validate(ActionRequest, payload)
    outcome = await session.apply_suggested_action(req.label, req.business)
    return _turn_response(session_id, outcome)


@app.post("/api/chat/{session_id}/retry")
async def api_retry(session_id: str) -> Dict[str, Any]:
    outcome = await _session(session_id).retry()
    return _turn_response(session_id, outcome)


@app.delete("/api/chat/{session_id}/error")
async def api_dismiss_error(session_id: str) -> Dict[str, Any]:
    session = _session(session_id)
    session.dismiss_error()
    return {"sessionId": session_id, "messageCount": len(session.store)}


@app.delete("/api/chat/{session_id}")
async def api_end_session(session_id: str) -> Dict[str, Any]:
    if not sessions.drop(session_id):
        raise HTTPException(status_code=404, detail=f"Unknown chat session {session_id}")
    return {"sessionId": session_id, "closed": True}


@app.post("/api/bookings")
async def api_book(payload: Dict[str, Any] = Body(...), session_id: Optional[str] = None) -> Dict[str, Any]:
    """Simulate a reservation; with ``session_id`` it is logged against that chat."""
    req = _validate(BookingRequest, payload)
    if session_id:
        outcome = await _session(session_id).book(req)
    else:
        outcome = await booking_simulator.simulate_single_booking(req)
    return outcome.model_dump(mode="json", by_alias=True, exclude_none=True)


@app.post("/api/itinerary/balance")
async def api_itinerary_balance(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    req = _validate(ItineraryBalanceRequest, payload)
    try:
        report = balance_scorer.evaluate(req.itinerary, req.preset)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return report.model_dump(mode="json", by_alias=True)
