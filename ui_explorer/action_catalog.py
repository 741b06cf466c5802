"""Candidate action discovery and ordering for a single observed state."""

from __future__ import annotations

import re
from typing import Collection, Iterable, List, Optional, Sequence, Set, Tuple

from .knowledge import ActionType, DiscoveredAction, ElementInfo, PageObservation

DESTRUCTIVE_LABEL = re.compile(
    r"\b(delete|remove|destroy|erase|drop|discard|archive|revoke|deactivate|"
    r"log ?out|sign ?out|unsubscribe|cancel (subscription|account|plan)|confirm)\b",
    re.IGNORECASE,
)

_FILLABLE_INPUTS = {
    "", "text", "email", "password", "search", "tel", "url", "number",
    "date", "datetime-local", "month", "week", "time",
}
_CLICKABLE_INPUTS = {"submit", "button", "reset", "image"}

# lower rank explores first
_RANK_FORM = 0
_RANK_BUTTON = 1
_RANK_LINK = 2
_RANK_OTHER = 3


class ActionCatalog:
    """Enumerate and prioritise the interactive elements of one page observation.

    Both operations are pure functions of their inputs. ``max_actions`` bounds
    the fan-out from a single state; without it one long list page would keep
    the crawl busy forever.
    """

    def __init__(self, max_actions: int = 50) -> None:
        self.max_actions = max_actions

    # ------------------------------------------------------------------
    def discover(
        self, observation: PageObservation, ignore: Optional[Collection[str]] = None
    ) -> List[DiscoveredAction]:
        ignore_set: Set[str] = set(ignore or ())
        seen: Set[Tuple[str, str, Optional[str]]] = set()
        actions: List[DiscoveredAction] = []
        for element in observation.elements:
            if not element.visible or not element.enabled:
                continue
            if element.selector in ignore_set or ignore_set.intersection(element.matched_ignore):
                continue
            action = self._to_action(element)
            if action is None or action.key in seen:
                continue
            seen.add(action.key)
            actions.append(action)
        return actions

    def prioritize(
        self,
        actions: Sequence[DiscoveredAction],
        matched: Iterable[Tuple[str, str, Optional[str]]] = (),
    ) -> List[DiscoveredAction]:
        """Order for exploration value and cap at ``max_actions``.

        Non-destructive before destructive, schema-matched before unmatched,
        form controls before buttons before links. Discovery order breaks ties.
        """
        matched_keys = set(matched)
        indexed = list(enumerate(actions))
        indexed.sort(
            key=lambda pair: (
                pair[1].destructive,
                pair[1].key not in matched_keys,
                _rank(pair[1]),
                pair[0],
            )
        )
        return [a for _, a in indexed][: self.max_actions]

    # ------------------------------------------------------------------
    def _to_action(self, element: ElementInfo) -> Optional[DiscoveredAction]:
        tag = element.tag
        label = _label(element)
        action_type: ActionType
        value: Optional[str] = None

        if tag == "textarea":
            action_type = ActionType.FILL
        elif tag == "select":
            real_options = [o for o in element.options if o]
            if not real_options:
                return None
            action_type = ActionType.SELECT
            value = real_options[0]
        elif tag == "input":
            if element.input_type in ("checkbox", "radio"):
                action_type = ActionType.CHECK
            elif element.input_type == "file":
                # needs a fixture file; not something a blind crawl can supply
                return None
            elif element.input_type == "hidden":
                return None
            elif element.input_type in _CLICKABLE_INPUTS:
                action_type = ActionType.CLICK
            elif element.input_type in _FILLABLE_INPUTS:
                action_type = ActionType.FILL
            else:
                return None
        else:
            action_type = ActionType.CLICK

        return DiscoveredAction(
            type=action_type,
            selector=element.selector,
            label=label,
            value=value,
            tag=tag,
            role=element.role,
            destructive=bool(DESTRUCTIVE_LABEL.search(label)),
            visible=element.visible,
            enabled=element.enabled,
        )


def _label(element: ElementInfo) -> str:
    for candidate in (element.aria_label, element.text, element.placeholder, element.name, element.element_id):
        text = " ".join((candidate or "").split())
        if text:
            return text[:100]
    return element.selector


def _rank(action: DiscoveredAction) -> int:
    if action.type in (ActionType.FILL, ActionType.SELECT, ActionType.CHECK, ActionType.UNCHECK):
        return _RANK_FORM
    if action.tag == "button" or action.role == "button" or action.tag == "input":
        return _RANK_BUTTON
    if action.tag == "a" or action.role == "link":
        return _RANK_LINK
    return _RANK_OTHER
