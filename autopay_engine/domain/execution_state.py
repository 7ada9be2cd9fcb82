"""Execution lifecycle states and the transitions allowed between them"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Set

from autopay_engine.domain.exceptions import InvalidTransitionError


class ExecutionState(Enum):
    SCHEDULED = "scheduled"
    GAS_CHECKING = "gas_checking"
    RISK_SCANNING = "risk_scanning"
    PLANNING = "planning"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_TERMINAL = "failed_terminal"

    @property
    def is_final(self) -> bool:
        return not VALID_TRANSITIONS[self]


_FAILURES = {ExecutionState.FAILED_RETRYABLE, ExecutionState.FAILED_TERMINAL}

VALID_TRANSITIONS: Dict[ExecutionState, Set[ExecutionState]] = {
    ExecutionState.SCHEDULED: {ExecutionState.GAS_CHECKING} | _FAILURES,
    ExecutionState.GAS_CHECKING: {ExecutionState.RISK_SCANNING} | _FAILURES,
    ExecutionState.RISK_SCANNING: {ExecutionState.PLANNING} | _FAILURES,
    ExecutionState.PLANNING: {ExecutionState.EXECUTING} | _FAILURES,
    ExecutionState.EXECUTING: {ExecutionState.SUCCEEDED} | _FAILURES,
    # Final states
    ExecutionState.SUCCEEDED: set(),
    ExecutionState.FAILED_RETRYABLE: set(),
    ExecutionState.FAILED_TERMINAL: set(),
}


@dataclass
class StateTransition:
    from_state: ExecutionState
    to_state: ExecutionState
    at: datetime
    reason: str = ""


@dataclass
class ExecutionRun:
    """
    Tracks one attempt at a scheduled run.

    Every state change goes through transition(), which rejects moves the
    table does not allow and keeps the ordered history for logging.
    """

    subscription_id: str
    attempt: int
    scheduled_for: datetime
    state: ExecutionState = ExecutionState.SCHEDULED
    history: List[StateTransition] = field(default_factory=list)

    def transition(self, to_state: ExecutionState, at: datetime, reason: str = "") -> StateTransition:
        if to_state not in VALID_TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Cannot move subscription {self.subscription_id} from {self.state.value} to {to_state.value}"
            )
        change = StateTransition(from_state=self.state, to_state=to_state, at=at, reason=reason)
        self.state = to_state
        self.history.append(change)
        return change

    @property
    def last_reason(self) -> Optional[str]:
        return self.history[-1].reason if self.history else None
