"""Turn backend suggestions and quick-action labels into the next engine step."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple, Union

from pickforme.schemas import Business, Suggestion, SuggestionAction


# ------- next actions -------
@dataclass(frozen=True)
class Dispatch:
    utterance: str


@dataclass(frozen=True)
class SelectBusiness:
    business: Business


@dataclass(frozen=True)
class CompositeDispatchAndSelect:
    business: Business
    utterance: str


NextAction = Union[Dispatch, SelectBusiness, CompositeDispatchAndSelect]


# ------- typed suggestions -------
def resolve(suggestion: Suggestion) -> NextAction:
    """Map a structured suggestion to its next action. Pure; no I/O."""
    action = suggestion.action
    if action is SuggestionAction.EXPLORE:
        return Dispatch(f"Tell me more about {suggestion.text}")
    if action is SuggestionAction.BOOK:
        business = suggestion.data.business if suggestion.data else None
        if business is not None:
            return CompositeDispatchAndSelect(business=business, utterance=f"Book {business.name}")
        return Dispatch("Book this option")
    # query, clarify and anything unrecognised send the text as typed
    return Dispatch(suggestion.text)


# ------- free-text action labels -------
class ActionLabel(str, Enum):
    MAKE_RESERVATION = "make a reservation"
    GET_DIRECTIONS = "get directions"
    VIEW_MENU = "view menu"
    SEE_ALTERNATIVES = "see alternatives"
    TELL_ME_MORE = "tell me more"
    SURPRISE_ME = "surprise me"
    SHOW_POPULAR = "show popular options"
    KEEP_LOOKING = "keep looking"


# (template with a business name, template without one)
_LABEL_TEMPLATES: Dict[ActionLabel, Tuple[Optional[str], str]] = {
    ActionLabel.MAKE_RESERVATION: ("Make a reservation at {name}", "Make a reservation"),
    ActionLabel.GET_DIRECTIONS: ("Get directions to {name}", "Get directions"),
    ActionLabel.VIEW_MENU: ("Show me the menu for {name}", "Show me the menu"),
    ActionLabel.SEE_ALTERNATIVES: (None, "Show me other options"),
    ActionLabel.TELL_ME_MORE: ("Tell me more about {name}", "Tell me more about these options"),
    ActionLabel.SURPRISE_ME: (None, "Just pick something good for me"),
    ActionLabel.SHOW_POPULAR: (None, "Show me the most popular restaurants nearby"),
    ActionLabel.KEEP_LOOKING: (None, "Keep looking for more options"),
}

if set(_LABEL_TEMPLATES) != set(ActionLabel):
    raise RuntimeError("every action label needs a template")


def match_label(label: str) -> Optional[ActionLabel]:
    """Case-insensitive exact match; ``None`` for labels outside the table."""
    try:
        return ActionLabel(label.lower())
    except ValueError:
        return None


def resolve_label(label: str, business: Optional[Business] = None) -> Dispatch:
    matched = match_label(label)
    if matched is None:
        return Dispatch(label)
    with_name, without_name = _LABEL_TEMPLATES[matched]
    if business is not None and with_name is not None:
        return Dispatch(with_name.format(name=business.name))
    return Dispatch(without_name)


def describe(action: NextAction) -> Dict[str, object]:
    """Flat form of a next action for the interaction log and API responses."""
    if isinstance(action, Dispatch):
        return {"kind": "dispatch", "utterance": action.utterance}
    if isinstance(action, SelectBusiness):
        return {"kind": "select_business", "business_id": action.business.id}
    return {
        "kind": "dispatch_and_select",
        "business_id": action.business.id,
        "utterance": action.utterance,
    }
