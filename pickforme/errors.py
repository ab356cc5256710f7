"""Typed failures raised or returned by the orchestration engine."""
from __future__ import annotations

from typing import Any, Dict, Optional


class PickForMeError(Exception):
    """Base class for every engine failure."""

    code = "ENGINE_ERROR"
    retryable = False

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "retryable": self.retryable}


class DispatchError(PickForMeError):
    code = "DISPATCH_ERROR"


class InvalidInput(DispatchError):
    """Empty or whitespace-only utterance; rejected before any network call."""

    code = "INVALID_INPUT"
    retryable = False


class NetworkFailure(DispatchError):
    code = "NETWORK_FAILURE"
    retryable = True


class BackendRejected(DispatchError):
    code = "BACKEND_REJECTED"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        terminal: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details=details)
        self.status_code = status_code
        self.terminal = terminal
        self.retryable = not terminal


class MalformedResponse(DispatchError):
    code = "MALFORMED_RESPONSE"
    retryable = False


class BookingValidationError(PickForMeError):
    code = "VALIDATION_ERROR"
    retryable = False
