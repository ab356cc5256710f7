"""Variety, pacing and time-of-day balance scoring for generated itineraries."""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from pickforme.log import get_logger
from pickforme.schemas import BalanceReport, Itinerary, PlannedActivity

logger = get_logger(__name__)

IDEAL_CATEGORY_COUNT = 4
IDEAL_ACTIVITIES_PER_DAY = 4.0
TIME_SLOTS = ("morning", "afternoon", "evening")
RECOMMENDATION_THRESHOLD = 0.7
COMPONENT_THRESHOLD = 0.6

PRICE_TIER_COST = {"$": 25.0, "$$": 50.0, "$$$": 100.0, "$$$$": 150.0}

_HOUR = re.compile(r"^\s*(\d{1,2})(?::\d{2})?")


@dataclass(frozen=True)
class BalanceWeights:
    category: float
    pacing: float
    time: float


class BalancePreset(str, Enum):
    # Detailed analysis panel: the three balances weighted equally.
    EQUAL_THIRDS = "equal_thirds"
    # Trip summary card: category and pacing only.
    SUMMARY_CARD = "summary_card"


PRESET_WEIGHTS: Dict[BalancePreset, BalanceWeights] = {
    BalancePreset.EQUAL_THIRDS: BalanceWeights(category=1 / 3, pacing=1 / 3, time=1 / 3),
    BalancePreset.SUMMARY_CARD: BalanceWeights(category=0.4, pacing=0.6, time=0.0),
}


class ItineraryBalanceScorer:
    def __init__(self, preset: BalancePreset | str = BalancePreset.EQUAL_THIRDS):
        self.preset = BalancePreset(preset)

    def evaluate(self, itinerary: Itinerary, preset: Optional[BalancePreset | str] = None) -> BalanceReport:
        """Score ``itinerary`` and attach remediation hints when it is unbalanced."""
        active = BalancePreset(preset) if preset is not None else self.preset
        weights = PRESET_WEIGHTS[active]

        category_counts: Dict[str, int] = {}
        time_slots: Dict[str, int] = {}
        daily_counts: List[int] = []
        total_duration = 0
        computed_cost = 0.0

        for day in itinerary.days:
            daily_counts.append(len(day.activities))
            for activity in day.activities:
                category_counts[activity.category] = category_counts.get(activity.category, 0) + 1
                slot = time_slot_for(activity.time)
                time_slots[slot] = time_slots.get(slot, 0) + 1
                total_duration += activity.duration
                computed_cost += activity_cost(activity)

        day_count = len(daily_counts)
        total_activities = sum(daily_counts)
        avg_per_day = total_activities / day_count if day_count else 0.0

        category_balance = min(1.0, len(category_counts) / IDEAL_CATEGORY_COUNT)
        if day_count:
            pacing_balance = _clamp(
                1.0 - abs(avg_per_day - IDEAL_ACTIVITIES_PER_DAY) / IDEAL_ACTIVITIES_PER_DAY
            )
        else:
            pacing_balance = 0.0
        time_balance = min(1.0, len(time_slots) / len(TIME_SLOTS))

        overall = _clamp(
            weights.category * category_balance
            + weights.pacing * pacing_balance
            + weights.time * time_balance
        )

        recommendations = _recommendations(
            overall, category_balance, pacing_balance, time_balance, avg_per_day
        )
        display_cost = (
            itinerary.total_estimated_cost if itinerary.total_estimated_cost is not None else computed_cost
        )

        logger.info(
            "Balance (%s) over %d day(s)/%d activities: category %.2f pacing %.2f time %.2f overall %.2f",
            active.value,
            day_count,
            total_activities,
            category_balance,
            pacing_balance,
            time_balance,
            overall,
        )

        return BalanceReport(
            preset=active.value,
            category_balance=category_balance,
            pacing_balance=pacing_balance,
            time_balance=time_balance,
            overall_balance=overall,
            total_activities=total_activities,
            avg_activities_per_day=avg_per_day,
            total_estimated_cost=display_cost,
            computed_cost=computed_cost,
            avg_cost_per_day=computed_cost / day_count if day_count else 0.0,
            total_duration_minutes=total_duration,
            avg_duration_per_day=total_duration / day_count if day_count else 0.0,
            category_counts=category_counts,
            time_slots=time_slots,
            daily_activity_counts=daily_counts,
            recommendations=recommendations,
            label=balance_label(overall),
        )


def time_slot_for(value: str) -> str:
    hour = _parse_hour(value)
    if hour is None:
        logger.warning("Unparseable activity time %r; counting it as morning", value)
        return "morning"
    if hour < 12:
        return "morning"
    if hour < 17:
        return "afternoon"
    return "evening"


def activity_cost(activity: PlannedActivity) -> float:
    if activity.activity.cost is not None:
        return float(activity.activity.cost)
    return PRICE_TIER_COST.get(activity.activity.price or "", 0.0)


def balance_label(score: float) -> str:
    if score >= 0.8:
        return "Excellent"
    if score >= 0.6:
        return "Good"
    if score >= 0.4:
        return "Fair"
    return "Needs Improvement"


def _parse_hour(value: str) -> Optional[int]:
    match = _HOUR.match(value or "")
    if not match:
        return None
    hour = int(match.group(1))
    return hour if 0 <= hour <= 23 else None


def _recommendations(
    overall: float,
    category_balance: float,
    pacing_balance: float,
    time_balance: float,
    avg_per_day: float,
) -> List[str]:
    if overall >= RECOMMENDATION_THRESHOLD:
        return []
    hints: List[str] = []
    if category_balance < COMPONENT_THRESHOLD:
        hints.append("Consider adding more variety in activity types")
    if pacing_balance < COMPONENT_THRESHOLD:
        if avg_per_day > IDEAL_ACTIVITIES_PER_DAY:
            hints.append("Consider reducing activities per day for a more relaxed pace")
        else:
            hints.append("Consider adding more activities to make the most of your trip")
    if time_balance < COMPONENT_THRESHOLD:
        hints.append("Try to spread activities across morning, afternoon, and evening")
    return hints


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))
