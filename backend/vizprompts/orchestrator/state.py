"""State machine constants and transition logic for a prompt session.

One session governs one run at a time (per media asset or per template):
idle -> previewing -> processing -> success | failed. A failed run returns
to idle once its error has been recorded. Re-projection after an edit is a
nested "updating" flag on success, not a separate state.
"""

from typing import Dict, FrozenSet

# Session states in lifecycle order
SESSION_STATES = {
    "idle": "No asset selected, or the last run failed",
    "previewing": "Asset accepted and validated, not yet analyzed",
    "processing": "Sampling frames and waiting on the inference backend",
    "success": "Projected views available",
    "failed": "Run ended with a typed error",
}

# Allowed transitions; selecting a new asset or template is legal from anywhere
TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "idle": frozenset({"previewing", "processing"}),
    "previewing": frozenset({"previewing", "processing", "idle"}),
    "processing": frozenset({"success", "failed", "previewing", "idle"}),
    "success": frozenset({"previewing", "processing", "idle"}),
    "failed": frozenset({"idle"}),
}

# States in which user edits to the master prompt trigger re-projection
EDITABLE_STATES = {"success"}


class InvalidTransitionError(RuntimeError):
    """Raised on an attempt to move between two states with no edge."""


def can_transition(current: str, target: str) -> bool:
    """Check whether a session may move from current to target.

    Args:
        current: Current session state
        target: Requested next state

    Returns:
        True if the edge exists, False otherwise
    """
    return target in TRANSITIONS.get(current, frozenset())


def is_editable(status: str) -> bool:
    return status in EDITABLE_STATES
