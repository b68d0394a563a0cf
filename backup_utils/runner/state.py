"""
StateMachine - tracks a restore session's phase.

INIT → VALIDATING → RESTORING → COMPLETE
            ↓            ↓
          FAILED       FAILED

A gate failure in VALIDATING goes straight to FAILED; nothing destructive
has happened yet. Any step failure in RESTORING ends in FAILED.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional

from ..errors import InvalidStateTransition


class State(Enum):
    """Restore session states."""
    INIT = auto()
    VALIDATING = auto()
    RESTORING = auto()
    COMPLETE = auto()
    FAILED = auto()


# Valid state transitions
TRANSITIONS: Dict[State, List[State]] = {
    State.INIT: [State.VALIDATING, State.FAILED],
    State.VALIDATING: [State.RESTORING, State.FAILED],
    State.RESTORING: [State.COMPLETE, State.FAILED],
    State.COMPLETE: [],
    State.FAILED: [],
}


@dataclass
class StateEvent:
    """Record of a state transition."""
    from_state: State
    to_state: State
    timestamp: datetime
    duration_ms: int
    metadata: Dict[str, Any] = field(default_factory=dict)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class StateMachine:
    """
    Manages state transitions for one restore session.

    Ensures valid transitions and tracks history.
    """

    def __init__(self, initial_state: State = State.INIT):
        self._state = initial_state
        self._history: List[StateEvent] = []
        self._state_entered_at = _now()
        self._callbacks: Dict[State, List[Callable[[StateEvent], None]]] = {}

    @property
    def state(self) -> State:
        """Get current state."""
        return self._state

    @property
    def history(self) -> List[StateEvent]:
        """Get state transition history."""
        return self._history.copy()

    def can_transition(self, to_state: State) -> bool:
        """Check if transition to target state is valid."""
        return to_state in TRANSITIONS.get(self._state, [])

    def transition(self, to_state: State, metadata: Optional[Dict[str, Any]] = None) -> StateEvent:
        """
        Transition to a new state.

        Args:
            to_state: Target state
            metadata: Optional data about the transition

        Raises:
            InvalidStateTransition: If transition is not valid
        """
        if not self.can_transition(to_state):
            raise InvalidStateTransition(
                f"Invalid transition: {self._state.name} → {to_state.name}. "
                f"Valid transitions: {[s.name for s in TRANSITIONS.get(self._state, [])]}"
            )

        now = _now()
        event = StateEvent(
            from_state=self._state,
            to_state=to_state,
            timestamp=now,
            duration_ms=int((now - self._state_entered_at).total_seconds() * 1000),
            metadata=metadata or {},
        )
        self._history.append(event)
        self._state = to_state
        self._state_entered_at = now

        for callback in self._callbacks.get(to_state, []):
            callback(event)
        return event

    def on_enter(self, state: State, callback: Callable[[StateEvent], None]):
        """Register callback for state entry."""
        self._callbacks.setdefault(state, []).append(callback)

    def is_terminal(self) -> bool:
        """Check if in terminal state (COMPLETE or FAILED)."""
        return self._state in (State.COMPLETE, State.FAILED)

    def format_history(self) -> str:
        """Format history as human-readable string."""
        return '\n'.join(
            f"{event.from_state.name} → {event.to_state.name} ({event.duration_ms}ms)"
            for event in self._history
        )
