"""Stand-in reservation provider with seeded, reproducible partial failure."""
from __future__ import annotations

import math
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol, Sequence

from pickforme.errors import BookingValidationError
from pickforme.log import get_logger
from pickforme.schemas import (
    AlternativeOption,
    BookingError,
    BookingOutcome,
    BookingRequest,
    BookingSummary,
    MultiServiceBookingOutcome,
    ServiceBookingResult,
    UserContact,
)

logger = get_logger(__name__)


class RandomSource(Protocol):
    def next_float(self) -> float:
        """Return a float in [0, 1)."""
        ...


class SeededRandom:
    def __init__(self, seed: Optional[int] = None):
        self._rng = random.Random(seed)

    def next_float(self) -> float:
        return self._rng.random()


@dataclass(frozen=True)
class BookingScenario:
    id: str
    name: str
    success_rate: float
    weight: float
    response_time_ms: float
    error_condition: Optional[str] = None


DEFAULT_SCENARIOS: Sequence[BookingScenario] = (
    BookingScenario("success_immediate", "Immediate Confirmation", 1.0, 0.45, 500),
    BookingScenario("success_delayed", "Delayed Confirmation", 0.95, 0.2, 2000),
    BookingScenario("limited_availability", "Limited Availability", 0.7, 0.15, 1000),
    BookingScenario("payment_failed", "Payment Processing Error", 0.0, 0.04, 3000, "payment_failed"),
    BookingScenario("fully_booked", "Fully Booked", 0.0, 0.08, 800, "fully_booked"),
    BookingScenario("system_error", "System Error", 0.0, 0.03, 5000, "system_error"),
    BookingScenario("provider_timeout", "Provider Timeout", 0.0, 0.03, 10000, "provider_timeout"),
    BookingScenario("invalid_dates", "Invalid Date Range", 0.0, 0.02, 200, "invalid_dates"),
)

_ERRORS: Dict[str, BookingError] = {
    "payment_failed": BookingError(
        code="PAYMENT_FAILED",
        message="Payment processing failed. Please check your payment information.",
        retryable=False,
        suggested_actions=["Check payment information", "Try different payment method", "Contact support"],
    ),
    "fully_booked": BookingError(
        code="FULLY_BOOKED",
        message="Sorry, no availability for the requested dates.",
        retryable=False,
        suggested_actions=["Try different dates", "View alternative options", "Join waitlist"],
    ),
    "system_error": BookingError(
        code="SYSTEM_ERROR",
        message="System temporarily unavailable. Please try again later.",
        retryable=True,
        suggested_actions=["Try again later", "Contact support", "Use alternative booking method"],
    ),
    "provider_timeout": BookingError(
        code="PROVIDER_TIMEOUT",
        message="The reservation provider did not respond in time.",
        retryable=True,
        suggested_actions=["Try again", "Contact venue directly"],
    ),
    "invalid_dates": BookingError(
        code="INVALID_REQUEST",
        message="Invalid date range. Please select valid future dates.",
        retryable=False,
        suggested_actions=["Check booking details", "Select valid dates", "Contact venue directly"],
    ),
}

_GENERIC_FAILURE = BookingError(
    code="BOOKING_FAILED",
    message="Booking could not be completed at this time.",
    retryable=False,
    suggested_actions=["Try again", "Contact support", "View alternatives"],
)

_PRICE_TIER_COST = {"$": 25.0, "$$": 50.0, "$$$": 100.0, "$$$$": 200.0}
_HOTEL_CATEGORIES = {"hotels", "accommodation"}
_PARTY_CATEGORIES = {"dining", "attractions", "attraction"}
_ID_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


class BookingSimulator:
    """
    Produces a confirmed or failed ``BookingOutcome`` for a booking request.

    Every draw comes from the injected ``RandomSource``; with a seeded source
    the sequence of outcomes (and confirmation ids) is reproducible. The
    simulator keeps no state of its own; recording confirmed bookings is up to
    the caller.
    """

    def __init__(
        self,
        rng: Optional[RandomSource] = None,
        *,
        scenarios: Sequence[BookingScenario] = DEFAULT_SCENARIOS,
    ):
        self.rng = rng or SeededRandom()
        self.scenarios = list(scenarios)
        if not self.scenarios:
            raise ValueError("BookingSimulator needs at least one scenario")

    async def simulate_single_booking(self, request: BookingRequest) -> BookingOutcome:
        validate_booking_request(request)

        scenario = self._pick_scenario(request.scenario)
        response_time = scenario.response_time_ms + self.rng.next_float() * 1000
        succeeded = self.rng.next_float() < scenario.success_rate
        logger.info(
            "Simulated %s booking for %s via scenario %s -> %s",
            request.category,
            request.business_id,
            scenario.id,
            "confirmed" if succeeded else "failed",
        )

        if succeeded:
            details = request.booking_details
            return BookingOutcome(
                success=True,
                confirmation_id=self._confirmation_id(),
                booking_details=BookingSummary(
                    business_name=request.business_name or request.business_id,
                    category=request.category or "",
                    date=details.date or details.check_in or datetime.now().date().isoformat(),
                    total_cost=estimate_booking_cost(request),
                    status="confirmed",
                ),
                response_time_ms=round(response_time, 1),
            )

        error = _ERRORS.get(scenario.error_condition or "", _GENERIC_FAILURE)
        alternatives: List[AlternativeOption] = []
        if scenario.error_condition == "fully_booked":
            alternatives = _alternatives_for(request)
        return BookingOutcome(
            success=False,
            error=error.model_copy(deep=True),
            alternative_options=alternatives,
            response_time_ms=round(response_time, 1),
        )

    async def simulate_multi_service_booking(
        self,
        bookings: Iterable[BookingRequest],
        user_contact: UserContact,
    ) -> MultiServiceBookingOutcome:
        results: List[ServiceBookingResult] = []
        failed: List[ServiceBookingResult] = []
        total_cost = 0.0
        confirmed = 0

        requests = [booking.model_copy(update={"user_contact": user_contact}) for booking in bookings]
        for booking in requests:
            try:
                outcome = await self.simulate_single_booking(booking)
            except BookingValidationError as exc:
                outcome = BookingOutcome(
                    success=False,
                    error=BookingError(code=exc.code, message=exc.message, retryable=False),
                )

            if outcome.success:
                confirmed += 1
                total_cost += outcome.booking_details.total_cost if outcome.booking_details else 0.0
                results.append(
                    ServiceBookingResult(
                        category=booking.category or "",
                        business_id=booking.business_id,
                        status="confirmed",
                        confirmation_id=outcome.confirmation_id,
                    )
                )
            else:
                entry = ServiceBookingResult(
                    category=booking.category or "",
                    business_id=booking.business_id,
                    status="failed",
                    error=outcome.error.message if outcome.error else "Unknown error",
                )
                results.append(entry)
                failed.append(entry)

        if requests and confirmed == len(requests):
            overall = "all_confirmed"
        elif confirmed > 0:
            overall = "partial_confirmed"
        else:
            overall = "all_failed"

        logger.info("Multi-service booking finished: %s (%d/%d confirmed)", overall, confirmed, len(requests))
        return MultiServiceBookingOutcome(
            success=overall != "all_failed",
            overall_status=overall,
            booking_results=results,
            total_cost=total_cost,
            coordination_id=f"COORD_{self._random_token()}" if overall != "all_failed" else None,
            failed_bookings=failed,
        )

    def _pick_scenario(self, forced: Optional[str]) -> BookingScenario:
        if forced:
            return next((s for s in self.scenarios if s.id == forced), self.scenarios[0])
        total = sum(s.weight for s in self.scenarios) or 1.0
        draw = self.rng.next_float() * total
        cursor = 0.0
        for scenario in self.scenarios:
            cursor += scenario.weight
            if draw < cursor:
                return scenario
        return self.scenarios[-1]

    def _confirmation_id(self) -> str:
        return f"CONF_{self._random_token()}"

    def _random_token(self, length: int = 9) -> str:
        return "".join(
            _ID_ALPHABET[min(int(self.rng.next_float() * len(_ID_ALPHABET)), len(_ID_ALPHABET) - 1)]
            for _ in range(length)
        )


def validate_booking_request(request: BookingRequest) -> None:
    """Raise ``BookingValidationError`` for requests the provider must never see."""
    if not request.business_id:
        raise BookingValidationError("Business ID is required")
    if not request.category:
        raise BookingValidationError("Booking category is required")

    contact = request.user_contact
    if not contact.name or not contact.email:
        raise BookingValidationError("User contact information is incomplete")

    details = request.booking_details
    if not details.date and not details.check_in:
        raise BookingValidationError("Booking date is required")

    category = request.category.lower()
    if category in _HOTEL_CATEGORIES and (not details.check_in or not details.check_out):
        raise BookingValidationError("Check-in and check-out dates are required for hotel bookings")
    if category in _PARTY_CATEGORIES and not details.party_size:
        raise BookingValidationError("Party size is required for this booking")
    if category == "transportation" and not details.passengers:
        raise BookingValidationError("Number of passengers is required for transportation bookings")
    if details.party_size is not None and details.party_size < 1:
        raise BookingValidationError("Invalid party size")


def estimate_booking_cost(request: BookingRequest) -> float:
    base = _PRICE_TIER_COST.get(request.price or "", 50.0)
    details = request.booking_details
    multiplier = 1
    for factor in (details.party_size, details.guests, details.passengers):
        if factor:
            multiplier *= factor
    if (request.category or "").lower() in _HOTEL_CATEGORIES:
        multiplier *= _nights(details.check_in, details.check_out)
    return float(round(base * multiplier))


def booking_stats(outcomes: Sequence[BookingOutcome]) -> Dict[str, object]:
    total = len(outcomes)
    successful = sum(1 for outcome in outcomes if outcome.success)
    errors: Dict[str, int] = {}
    for outcome in outcomes:
        if not outcome.success and outcome.error:
            errors[outcome.error.code] = errors.get(outcome.error.code, 0) + 1
    avg_time = sum(o.response_time_ms for o in outcomes) / total if total else 0.0
    return {
        "total_bookings": total,
        "success_rate": successful / total if total else 0.0,
        "average_response_time_ms": round(avg_time, 1),
        "error_breakdown": errors,
    }


def _nights(check_in: Optional[str], check_out: Optional[str]) -> int:
    if not check_in or not check_out:
        return 1
    try:
        start = datetime.fromisoformat(check_in)
        end = datetime.fromisoformat(check_out)
    except ValueError:
        return 1
    return max(1, math.ceil((end - start).total_seconds() / 86400))


def _alternatives_for(request: BookingRequest) -> List[AlternativeOption]:
    name = request.business_name or request.business_id
    price = estimate_booking_cost(request)
    return [
        AlternativeOption(
            business_id=f"{request.business_id}-alt-{idx}",
            business_name=f"{name} (alternative {idx})",
            availability=availability,
            price=price,
        )
        for idx, availability in ((1, "available"), (2, "limited"))
    ]
