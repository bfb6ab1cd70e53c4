"""Deterministic run state machine.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- INIT as the sole initial state, DONE and FAILED as the only terminal ones
- Every transition recorded, in order, for the run record
"""

from __future__ import annotations

import logging

from alephbuild.models.runs import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    RunState,
    StageTransition,
)

logger = logging.getLogger(__name__)


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class RunStateMachine:
    """Tracks the state of one pipeline run.

    Parameters
    ----------
    run_id:
        Identifier of the run, used in log lines.
    """

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        self._state = RunState.INIT
        self._transitions: list[StageTransition] = []

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    @property
    def transitions(self) -> list[StageTransition]:
        return list(self._transitions)

    def get_available_transitions(self) -> set[RunState]:
        """Return the set of valid target states from the current state."""
        return set(VALID_TRANSITIONS.get(self._state, set()))

    def transition(self, target_state: RunState, detail: str = "") -> StageTransition:
        """Move the run to *target_state*, recording the transition.

        Raises ``InvalidTransitionError`` if the move is not allowed.
        """
        allowed = VALID_TRANSITIONS.get(self._state, set())
        if target_state not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition run {self.run_id} from {self._state.value} "
                f"to {target_state.value}. Allowed: {sorted(s.value for s in allowed)}"
            )

        record = StageTransition(
            from_state=self._state, to_state=target_state, detail=detail
        )
        self._transitions.append(record)
        self._state = target_state

        log = logger.error if target_state == RunState.FAILED else logger.info
        log(
            "Run %s: %s -> %s%s",
            self.run_id,
            record.from_state.value,
            record.to_state.value,
            f" ({detail})" if detail else "",
        )
        return record
