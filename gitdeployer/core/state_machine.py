"""Deploy state machine.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- Terminal states (SUCCEEDED, FAILED) cannot be left
- Every transition recorded in an in-memory history
"""

from __future__ import annotations

import logging

from gitdeployer.errors import DeployerError
from gitdeployer.models.states import VALID_TRANSITIONS, DeployState, StateTransition

logger = logging.getLogger(__name__)


class InvalidTransitionError(DeployerError):
    """Raised when a requested state transition is not valid."""


class DeployStateMachine:
    """Tracks the current deploy state and its history."""

    def __init__(self) -> None:
        self._state = DeployState.INIT
        self._history: list[StateTransition] = []

    @property
    def state(self) -> DeployState:
        return self._state

    @property
    def history(self) -> list[StateTransition]:
        return list(self._history)

    @property
    def is_terminal(self) -> bool:
        return not VALID_TRANSITIONS[self._state]

    def can_transition(self, target: DeployState) -> bool:
        return target in VALID_TRANSITIONS.get(self._state, set())

    def transition(self, target: DeployState, detail: str = "") -> StateTransition:
        """Move to ``target`` and record the transition.

        Raises ``InvalidTransitionError`` if the table does not allow it.
        """
        if not self.can_transition(target):
            allowed = sorted(s.value for s in VALID_TRANSITIONS.get(self._state, set()))
            raise InvalidTransitionError(
                f"Cannot transition from {self._state.value} to {target.value}. "
                f"Allowed: {allowed}"
            )
        entry = StateTransition(from_state=self._state, to_state=target, detail=detail)
        self._history.append(entry)
        self._state = target
        logger.debug("Deploy state %s->%s %s", entry.from_state.value, target.value, detail)
        return entry

    def fail(self, detail: str = "") -> StateTransition | None:
        """Move to FAILED unless already terminal."""
        if self.is_terminal:
            return None
        return self.transition(DeployState.FAILED, detail)
