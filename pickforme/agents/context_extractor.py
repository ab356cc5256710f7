"""Keyword agent that lifts preferences and travel context out of user messages."""
from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List

_CUISINE_KEYWORDS: Dict[str, List[str]] = {
    "italian": ["italian", "pasta", "pizza", "risotto"],
    "chinese": ["chinese", "dim sum", "noodles", "stir fry"],
    "mexican": ["mexican", "tacos", "burrito", "salsa"],
    "japanese": ["japanese", "sushi", "ramen", "tempura"],
    "indian": ["indian", "curry", "tandoor", "biryani"],
    "thai": ["thai", "pad thai", "tom yum", "green curry"],
    "french": ["french", "bistro", "croissant", "baguette"],
    "american": ["american", "burger", "bbq", "steak"],
}

_DIETARY_KEYWORDS = ["vegetarian", "vegan", "gluten-free", "dairy-free", "kosher", "halal"]

_ATMOSPHERES = [
    ("romantic", ("romantic",)),
    ("casual", ("casual",)),
    ("family", ("family",)),
    ("business", ("business",)),
    ("upscale", ("upscale", "fancy")),
]

_INTEREST_KEYWORDS = [
    "food", "dining", "restaurants", "cuisine",
    "museums", "art", "culture", "history",
    "nightlife", "bars", "clubs", "entertainment",
    "shopping", "markets", "boutiques",
    "nature", "parks", "hiking", "outdoor",
    "beaches", "water", "swimming",
    "architecture", "buildings", "landmarks",
    "music", "concerts", "shows", "theater",
]

_FOLLOW_UP_KEYWORDS = [
    "actually", "also", "but", "however", "instead", "or maybe", "what about",
    "alternatively", "on second thought", "change of mind",
]

_PARTY_SIZE = re.compile(r"(\d+)\s*(people|person|pax)")
_GROUP_SIZE = re.compile(r"(\d+)\s*(people|person|travelers|guests)")


def extract_preferences(message: str) -> Dict[str, Any]:
    """Return the dining preferences mentioned in ``message``.

    Only keys that were actually detected are present, so the result can be
    merged over earlier extractions without erasing them.
    """
    content = (message or "").lower()
    prefs: Dict[str, Any] = {}

    cuisines = [
        cuisine for cuisine, keywords in _CUISINE_KEYWORDS.items()
        if any(keyword in content for keyword in keywords)
    ]
    if cuisines:
        prefs["cuisine_types"] = cuisines

    if any(word in content for word in ("cheap", "budget", "affordable")):
        prefs["price_range"] = "$"
    elif any(word in content for word in ("expensive", "fancy", "upscale")):
        prefs["price_range"] = "$$$"
    elif any(word in content for word in ("moderate", "mid-range")):
        prefs["price_range"] = "$$"

    dietary = [item for item in _DIETARY_KEYWORDS if item in content]
    if dietary:
        prefs["dietary_restrictions"] = dietary

    for atmosphere, keywords in _ATMOSPHERES:
        if any(keyword in content for keyword in keywords):
            prefs["atmosphere"] = atmosphere
            break

    match = _PARTY_SIZE.search(content)
    if match:
        prefs["party_size"] = int(match.group(1))

    return prefs


def extract_travel_context(message: str) -> Dict[str, Any]:
    content = (message or "").lower()
    travel: Dict[str, Any] = {}

    if any(word in content for word in ("budget", "cheap", "backpack")):
        travel["travel_style"] = "budget"
    elif any(word in content for word in ("luxury", "fancy", "upscale")):
        travel["travel_style"] = "luxury"
    elif any(word in content for word in ("adventure", "hiking", "outdoor")):
        travel["travel_style"] = "adventure"
    elif any(word in content for word in ("cultural", "museum", "history")):
        travel["travel_style"] = "cultural"
    elif any(word in content for word in ("mid-range", "moderate")):
        travel["travel_style"] = "mid-range"

    match = _GROUP_SIZE.search(content)
    if match:
        travel["group_size"] = int(match.group(1))

    interests = [interest for interest in _INTEREST_KEYWORDS if interest in content]
    if interests:
        travel["interests"] = interests

    return travel


def detect_follow_up(message: str, last_assistant_requires_clarification: bool = False) -> bool:
    """True when the user is answering a clarification or refining a request."""
    if last_assistant_requires_clarification:
        return True
    content = (message or "").lower()
    return any(keyword in content for keyword in _FOLLOW_UP_KEYWORDS)


def merge_preferences(current: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(current)
    for key, value in updates.items():
        if isinstance(value, list):
            merged[key] = _unique([*merged.get(key, []), *value])
        else:
            merged[key] = value
    return merged


def _unique(items: Iterable[Any]) -> List[Any]:
    seen: List[Any] = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen
