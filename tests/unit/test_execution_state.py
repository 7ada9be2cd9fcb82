"""Unit tests for the execution state machine"""

import pytest
from datetime import datetime, timezone
from autopay_engine.domain.exceptions import InvalidTransitionError
from autopay_engine.domain.execution_state import ExecutionRun, ExecutionState

AT = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

HAPPY_PATH = [
    ExecutionState.GAS_CHECKING,
    ExecutionState.RISK_SCANNING,
    ExecutionState.PLANNING,
    ExecutionState.EXECUTING,
    ExecutionState.SUCCEEDED,
]


def test_happy_path_recorded_in_order():
    run = ExecutionRun("sub-1", attempt=1, scheduled_for=AT)

    for state in HAPPY_PATH:
        run.transition(state, AT)

    assert run.state == ExecutionState.SUCCEEDED
    assert [change.to_state for change in run.history] == HAPPY_PATH
    assert run.history[0].from_state == ExecutionState.SCHEDULED


def test_skipping_a_phase_is_rejected():
    """Test SCHEDULED cannot jump straight to EXECUTING"""
    run = ExecutionRun("sub-1", attempt=1, scheduled_for=AT)

    with pytest.raises(InvalidTransitionError):
        run.transition(ExecutionState.EXECUTING, AT)
    assert run.state == ExecutionState.SCHEDULED
    assert run.history == []


@pytest.mark.parametrize("state", list(ExecutionState)[:5])
def test_any_active_state_can_fail(state: ExecutionState):
    run = ExecutionRun("sub-1", attempt=1, scheduled_for=AT, state=state)

    run.transition(ExecutionState.FAILED_TERMINAL, AT, reason="risk-blocked")

    assert run.last_reason == "risk-blocked"


@pytest.mark.parametrize(
    "final", [ExecutionState.SUCCEEDED, ExecutionState.FAILED_RETRYABLE, ExecutionState.FAILED_TERMINAL]
)
def test_final_states_have_no_exits(final: ExecutionState):
    run = ExecutionRun("sub-1", attempt=1, scheduled_for=AT, state=final)

    assert final.is_final
    with pytest.raises(InvalidTransitionError):
        run.transition(ExecutionState.GAS_CHECKING, AT)
