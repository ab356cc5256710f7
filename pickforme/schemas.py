from __future__ import annotations

import math
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class _Record(BaseModel):
    # The UI speaks camelCase, the recommendation backend snake_case; accept both.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ------- Location & preferences -------
class Location(_Record):
    latitude: float
    longitude: float
    address: str = ""
    city: str = ""
    state: str = ""
    zip_code: Optional[str] = None
    country: Optional[str] = None

    @field_validator("latitude")
    @classmethod
    def _check_latitude(cls, value: float) -> float:
        if not math.isfinite(value) or abs(value) > 90:
            raise ValueError("latitude must be a finite number between -90 and 90")
        return value

    @field_validator("longitude")
    @classmethod
    def _check_longitude(cls, value: float) -> float:
        if not math.isfinite(value) or abs(value) > 180:
            raise ValueError("longitude must be a finite number between -180 and 180")
        return value


class Preferences(_Record):
    cuisine_types: List[str] = Field(default_factory=list)
    price_range: Optional[Literal["$", "$$", "$$$", "$$$$"]] = None
    dietary_restrictions: List[str] = Field(default_factory=list)
    atmosphere: Optional[str] = None
    party_size: Optional[int] = None


# ------- Businesses & suggestions -------
class Business(_Record):
    id: str
    name: str
    rating: Optional[float] = None
    review_count: Optional[int] = None
    price: Optional[str] = None
    categories: List[Dict[str, str]] = Field(default_factory=list)
    url: Optional[str] = None
    image_url: Optional[str] = None
    phone: Optional[str] = None
    distance: Optional[float] = None
    cost: Optional[float] = None


class SuggestionAction(str, Enum):
    QUERY = "query"
    BOOK = "book"
    EXPLORE = "explore"
    CLARIFY = "clarify"
    DEFAULT = "default"


class SuggestionData(_Record):
    business: Optional[Business] = None


class Suggestion(_Record):
    id: str
    text: str
    action: SuggestionAction = SuggestionAction.DEFAULT
    data: Optional[SuggestionData] = None
    category: Optional[str] = None

    @field_validator("action", mode="before")
    @classmethod
    def _unknown_action_is_default(cls, value: Any) -> Any:
        if isinstance(value, SuggestionAction):
            return value
        try:
            return SuggestionAction(str(value).lower())
        except ValueError:
            return SuggestionAction.DEFAULT


# ------- Conversation -------
class MessageMetadata(_Record):
    requires_clarification: bool = False
    suggested_actions: List[str] = Field(default_factory=list)
    interactive_suggestions: List[Suggestion] = Field(default_factory=list)
    ai_decision: Optional[Dict[str, Any]] = None
    reasoning: Optional[str] = None


class Message(_Record):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime
    businesses: Optional[List[Business]] = None
    metadata: Optional[MessageMetadata] = None


class InteractionEvent(_Record):
    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


class ConversationStage(str, Enum):
    INITIAL = "initial"
    SEARCHING = "searching"
    DECISION_MADE = "decision_made"
    BOOKING = "booking"
    COMPLETED = "completed"
    TRAVEL_PLANNING = "travel_planning"


class TravelContext(_Record):
    travel_style: Optional[Literal["budget", "mid-range", "luxury", "adventure", "cultural"]] = None
    group_size: Optional[int] = None
    interests: List[str] = Field(default_factory=list)


class ConversationContext(_Record):
    last_user_query: str = ""
    extracted_preferences: Dict[str, Any] = Field(default_factory=dict)
    clarification_needed: bool = False
    stage: ConversationStage = ConversationStage.INITIAL
    travel_context: Optional[TravelContext] = None
    selected_business: Optional[Business] = None


# ------- Dispatch -------
class DispatchContext(_Record):
    location: Optional[Location] = None
    user_preferences: Optional[Preferences] = None
    retry_on_failure: bool = True
    max_retries: int = 3
    timeout: Optional[float] = None


class AssistantTurn(_Record):
    message: str
    businesses: List[Business] = Field(default_factory=list)
    metadata: MessageMetadata = Field(default_factory=MessageMetadata)


# ------- Booking -------
class BookingDetails(_Record):
    date: Optional[str] = None
    time: Optional[str] = None
    party_size: Optional[int] = None
    special_requests: Optional[str] = None
    check_in: Optional[str] = None
    check_out: Optional[str] = None
    guests: Optional[int] = None
    passengers: Optional[int] = None


class UserContact(_Record):
    name: str = ""
    email: str = ""
    phone: str = ""


class BookingRequest(_Record):
    # Left optional so a malformed request reaches the simulator's own validation.
    business_id: str = ""
    category: Optional[str] = None
    booking_details: BookingDetails = Field(default_factory=BookingDetails)
    user_contact: UserContact = Field(default_factory=UserContact)
    business_name: Optional[str] = None
    price: Optional[str] = None
    scenario: Optional[str] = None


class BookingError(_Record):
    code: str
    message: str
    retryable: bool = False
    suggested_actions: List[str] = Field(default_factory=list)


class BookingSummary(_Record):
    business_name: str
    category: str
    date: str
    total_cost: float
    status: Literal["confirmed", "pending", "failed"] = "confirmed"


class AlternativeOption(_Record):
    business_id: str
    business_name: str
    availability: str
    price: float


class BookingOutcome(_Record):
    success: bool
    confirmation_id: Optional[str] = None
    error: Optional[BookingError] = None
    booking_details: Optional[BookingSummary] = None
    alternative_options: List[AlternativeOption] = Field(default_factory=list)
    response_time_ms: float = 0.0


class ServiceBookingResult(_Record):
    category: str
    business_id: str
    status: Literal["confirmed", "pending", "failed"]
    confirmation_id: Optional[str] = None
    error: Optional[str] = None


class MultiServiceBookingOutcome(_Record):
    success: bool
    overall_status: Literal["all_confirmed", "partial_confirmed", "all_failed"]
    booking_results: List[ServiceBookingResult] = Field(default_factory=list)
    total_cost: float = 0.0
    coordination_id: Optional[str] = None
    failed_bookings: List[ServiceBookingResult] = Field(default_factory=list)


# ------- Itinerary -------
class PlannedActivity(_Record):
    time: str
    duration: int = 0
    category: str
    activity: Business
    booking_required: bool = False
    booking_status: Literal["confirmed", "pending", "failed", "none"] = "none"


class Day(_Record):
    date: Optional[str] = None
    activities: List[PlannedActivity] = Field(default_factory=list)
    accommodation: Optional[Business] = None
    notes: Optional[str] = None


class Itinerary(_Record):
    id: Optional[str] = None
    name: Optional[str] = None
    days: List[Day] = Field(default_factory=list)
    total_estimated_cost: Optional[float] = None


class BalanceReport(_Record):
    preset: str
    category_balance: float
    pacing_balance: float
    time_balance: float
    overall_balance: float
    total_activities: int
    avg_activities_per_day: float
    total_estimated_cost: float
    computed_cost: float
    avg_cost_per_day: float
    total_duration_minutes: int
    avg_duration_per_day: float
    category_counts: Dict[str, int] = Field(default_factory=dict)
    time_slots: Dict[str, int] = Field(default_factory=dict)
    daily_activity_counts: List[int] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    label: str = ""


# ------- HTTP payloads -------
class ChatRequest(_Record):
    message: str
    session_id: Optional[str] = None
    location: Optional[Location] = None
    user_preferences: Optional[Preferences] = None
    retry_on_failure: bool = True
    max_retries: int = Field(3, ge=1, le=10)


class SuggestionRequest(_Record):
    suggestion: Suggestion


class ActionRequest(_Record):
    label: str
    business: Optional[Business] = None


class ItineraryBalanceRequest(_Record):
    itinerary: Itinerary
    preset: str = "equal_thirds"
