"""Checklist item status state machine.

State diagram:
    pending     -> in_progress  (tracker starts the item)
    in_progress -> done         (tracker completes the item)
    in_progress -> pending      (tracker abandons the item)

``done`` is terminal. Invalid transitions raise InvalidTransition.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Optional

from .errors import InvalidTransition


class ItemStatus:
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"

    ALL = frozenset([PENDING, IN_PROGRESS, DONE])

    TERMINAL = frozenset([DONE])


VALID_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    ItemStatus.PENDING: frozenset([ItemStatus.IN_PROGRESS]),
    ItemStatus.IN_PROGRESS: frozenset([
        ItemStatus.DONE,
        ItemStatus.PENDING,
    ]),
    ItemStatus.DONE: frozenset(),
}


def validate_transition(
    from_status: str,
    to_status: str,
    item_id: Optional[str] = None,
) -> None:
    """Raise InvalidTransition unless from_status -> to_status is allowed."""
    allowed = VALID_TRANSITIONS.get(from_status, frozenset())
    if to_status not in allowed:
        raise InvalidTransition(from_status, to_status, item_id)


def can_transition(from_status: str, to_status: str) -> bool:
    """Return True if the transition from_status -> to_status is valid."""
    return to_status in VALID_TRANSITIONS.get(from_status, frozenset())


def is_terminal(status: str) -> bool:
    """Return True if no further transitions are possible from status."""
    return status in ItemStatus.TERMINAL


def available_transitions(from_status: str) -> FrozenSet[str]:
    """Return the set of valid destination statuses from from_status."""
    return VALID_TRANSITIONS.get(from_status, frozenset())
