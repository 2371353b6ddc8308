"""Conversation state machine and category specification requirements."""

from __future__ import annotations

from collections import deque
from typing import Iterable, Mapping

from ..errors import InvalidTransition
from .contracts import (
    ClarifyAction,
    CompareAction,
    ConversationState,
    EndAction,
    ProductCategory,
    SearchAction,
)


_TRANSITIONS: Mapping[ConversationState, frozenset[ConversationState]] = {
    ConversationState.INITIAL: frozenset(
        {
            ConversationState.GATHERING_SPECS,
            ConversationState.SEARCHING,
            ConversationState.ENDED,
        }
    ),
    ConversationState.GATHERING_SPECS: frozenset(
        {
            ConversationState.GATHERING_SPECS,
            ConversationState.SEARCHING,
            ConversationState.ENDED,
        }
    ),
    ConversationState.SEARCHING: frozenset(
        {ConversationState.PRESENTING_RESULTS, ConversationState.ENDED}
    ),
    ConversationState.PRESENTING_RESULTS: frozenset(
        {ConversationState.FOLLOW_UP, ConversationState.ENDED}
    ),
    ConversationState.FOLLOW_UP: frozenset(
        {
            ConversationState.FOLLOW_UP,
            ConversationState.GATHERING_SPECS,
            ConversationState.SEARCHING,
            ConversationState.ENDED,
        }
    ),
    ConversationState.ENDED: frozenset(),
}

REQUIRED_SPECIFICATIONS: Mapping[ProductCategory, tuple[str, ...]] = {
    ProductCategory.LAPTOP: ("processor", "ram", "storage", "screen_size"),
    ProductCategory.PHONE: ("model", "storage", "ram", "color"),
    ProductCategory.TABLET: ("model", "storage", "screen_size"),
    ProductCategory.DESKTOP: ("processor", "ram", "storage"),
    ProductCategory.MONITOR: ("screen_size", "resolution", "refresh_rate"),
    ProductCategory.HEADPHONES: ("model", "type"),
    ProductCategory.CAMERA: ("model", "type", "megapixels"),
    ProductCategory.OTHER: (),
}


class ConversationStateMachine:
    """Legal phases and transitions of a shopping conversation."""

    def __init__(
        self,
        transitions: Mapping[ConversationState, Iterable[ConversationState]] | None = None,
    ) -> None:
        source = transitions or _TRANSITIONS
        self._transitions = {state: frozenset(targets) for state, targets in source.items()}

    def can_transition(self, current: ConversationState, target: ConversationState) -> bool:
        return target in self._transitions.get(current, frozenset())

    def transition(
        self, current: ConversationState, target: ConversationState
    ) -> ConversationState:
        """Return ``target`` when the move is legal, otherwise raise."""

        if not self.can_transition(current, target):
            raise InvalidTransition(f"Cannot move from {current.value} to {target.value}")
        return target

    def is_terminal(self, state: ConversationState) -> bool:
        return not self._transitions.get(state)

    def path(
        self, current: ConversationState, target: ConversationState
    ) -> list[ConversationState] | None:
        """Return the shortest chain of states leading to ``target``.

        The chain excludes ``current``; an empty list means no move is
        needed. ``None`` signals that ``target`` is unreachable.
        """

        if current == target and not self.can_transition(current, target):
            return []
        if self.can_transition(current, target):
            return [target]

        queue: deque[tuple[ConversationState, list[ConversationState]]] = deque(
            [(current, [])]
        )
        seen = {current}
        while queue:
            state, chain = queue.popleft()
            for nxt in sorted(self._transitions.get(state, ()), key=lambda item: item.value):
                if nxt in seen:
                    continue
                extended = chain + [nxt]
                if nxt == target:
                    return extended
                seen.add(nxt)
                queue.append((nxt, extended))
        return None


def target_state_for(
    action: SearchAction | ClarifyAction | CompareAction | EndAction,
) -> ConversationState:
    """Return the phase an action drives the conversation into."""

    if isinstance(action, SearchAction):
        return ConversationState.SEARCHING
    if isinstance(action, ClarifyAction):
        return ConversationState.GATHERING_SPECS
    if isinstance(action, CompareAction):
        return ConversationState.PRESENTING_RESULTS
    return ConversationState.ENDED


def required_specifications(category: ProductCategory | None) -> tuple[str, ...]:
    """Return the specification names a category needs before searching."""

    if category is None:
        return ()
    return REQUIRED_SPECIFICATIONS.get(category, ())


def _spec_label(name: str) -> str:
    return " ".join(name.strip().lower().replace("_", " ").replace("-", " ").split())


def missing_specifications(
    category: ProductCategory | None, supplied: Iterable[str]
) -> list[str]:
    """Return required specifications absent from ``supplied``.

    Keys match case-insensitively when either label contains the other once
    underscores and dashes are read as spaces (``screen_size`` matches
    ``Screen Size (inches)``).
    """

    provided = [_spec_label(key) for key in supplied if key and key.strip()]
    missing: list[str] = []
    for spec in required_specifications(category):
        label = _spec_label(spec)
        compact = label.replace(" ", "")
        if any(
            label in given
            or given in label
            or compact in given.replace(" ", "")
            for given in provided
        ):
            continue
        missing.append(spec)
    return missing


__all__ = [
    "ConversationStateMachine",
    "REQUIRED_SPECIFICATIONS",
    "missing_specifications",
    "required_specifications",
    "target_state_for",
]
