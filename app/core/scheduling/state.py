"""Batch optimization state machine."""

from enum import Enum
from typing import Set


class BatchState(str, Enum):
    """States of one batch optimization run."""

    PENDING = "pending"
    SCORING = "scoring"
    ASSIGNING = "assigning"
    DONE = "done"


# Valid state transitions. Scoring and assigning alternate once per client.
VALID_TRANSITIONS: dict[BatchState, Set[BatchState]] = {
    BatchState.PENDING: {
        BatchState.SCORING,
        BatchState.DONE,  # Empty batch or cancelled before the first client
    },
    BatchState.SCORING: {
        BatchState.ASSIGNING,
        BatchState.SCORING,  # Scoring failed, move to the next client
        BatchState.DONE,
    },
    BatchState.ASSIGNING: {
        BatchState.SCORING,
        BatchState.DONE,
    },
    BatchState.DONE: set(),  # Terminal state
}


class InvalidTransitionError(RuntimeError):
    """Raised when a batch attempts an invalid state transition."""
    pass


def can_transition(from_state: BatchState, to_state: BatchState) -> bool:
    """Check if a state transition is valid."""
    return to_state in VALID_TRANSITIONS.get(from_state, set())


def is_terminal_state(state: BatchState) -> bool:
    """Check if state is terminal (no further transitions)."""
    return state == BatchState.DONE
