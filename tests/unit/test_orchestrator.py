"""Unit tests for the execution orchestrator lifecycle"""

import pytest
from datetime import timedelta
from decimal import Decimal
from autopay_engine.config import Settings
from autopay_engine.domain.execution_state import ExecutionState
from autopay_engine.domain.models import StepKind
from autopay_engine.domain.tokens import token_address
from autopay_engine.infrastructure.clients.signals import StaticRiskSignals
from autopay_engine.infrastructure.clients.venues import BRIDGE_VENUES, FeeScheduleQuoter, router_address
from autopay_engine.services.engine import build_engine
from autopay_engine.services.orchestrator import (
    REASON_CANCELLED,
    REASON_INVALID,
    REASON_RETRIES_EXHAUSTED,
    REASON_RISK_BLOCKED,
    REASON_ROUTE_UNAVAILABLE,
)

SCAM_RECEIVER = "0x000000000000000000000000000000000000dEaD"


async def test_successful_run_writes_one_record(autopay, make_subscription, clock):
    """Test happy path: record written, schedule advanced from the scheduled time"""
    subscription = make_subscription()

    outcome = await autopay.orchestrator.execute(subscription.id)

    assert outcome.state == ExecutionState.SUCCEEDED
    record = outcome.record
    assert record.status == "success"
    assert record.output_amount == Decimal("99.9")
    assert [step.kind for step in record.steps] == [StepKind.APPROVE, StepKind.BRIDGE, StepKind.TRANSFER]
    assert record.fallback_used is False
    assert record.retry_count == 0
    assert record.gas_cost_usd == Decimal("15.0005")
    assert record.scheduled_for == subscription.next_run_date

    executions = await autopay.store.list_executions(subscription.id)
    assert [execution.id for execution in executions] == [record.id]
    updated = await autopay.store.get(subscription.id)
    assert updated.next_run_date == subscription.next_run_date + timedelta(days=1)
    assert updated.consecutive_failures == 0


async def test_not_due_is_skipped(autopay, make_subscription, clock):
    subscription = make_subscription(next_run_date=clock.now + timedelta(hours=1))

    assert await autopay.orchestrator.execute(subscription.id) is None
    assert await autopay.store.list_executions(subscription.id) == []


async def test_missing_subscription_is_skipped(autopay):
    assert await autopay.orchestrator.execute("does-not-exist") is None


async def test_step_failure_switches_to_fallback(autopay, make_subscription, chain):
    """Test a reverted bridge moves to the next-best venue, re-quoted from the current position"""
    chain.script_failure(router_address("Socket"))
    subscription = make_subscription()

    outcome = await autopay.orchestrator.execute(subscription.id)

    record = outcome.record
    assert outcome.state == ExecutionState.SUCCEEDED
    assert record.fallback_used is True
    assert record.output_amount == Decimal("99.88")
    bridges = [step for step in record.steps if step.kind == StepKind.BRIDGE]
    assert [bridge.protocol for bridge in bridges] == ["Across"]
    assert record.steps[-1].kind == StepKind.TRANSFER


async def test_transient_failure_defers_with_backoff(autopay, make_subscription, chain, clock):
    """Test a retryable failure writes no record and sets the backoff gate"""
    chain.mark_unavailable("polygon")
    subscription = make_subscription()

    outcome = await autopay.orchestrator.execute(subscription.id)

    assert outcome.state == ExecutionState.FAILED_RETRYABLE
    assert outcome.retry_at == clock.now + timedelta(seconds=30)
    assert await autopay.store.list_executions(subscription.id) == []

    deferred = await autopay.store.get(subscription.id)
    assert deferred.pending_attempts == 1
    assert deferred.next_run_date == subscription.next_run_date
    assert deferred.is_due(clock.now) is False
    assert await autopay.orchestrator.execute(subscription.id) is None


async def test_retries_exhausted_after_max_attempts(autopay, make_subscription, chain, clock):
    chain.mark_unavailable("polygon")
    subscription = make_subscription()

    first = await autopay.orchestrator.execute(subscription.id)
    clock.advance(seconds=31)
    second_started = clock.now
    second = await autopay.orchestrator.execute(subscription.id)
    clock.advance(seconds=61)
    third = await autopay.orchestrator.execute(subscription.id)

    assert first.state == ExecutionState.FAILED_RETRYABLE
    assert second.state == ExecutionState.FAILED_RETRYABLE
    # Backoff doubles: 30s after the first attempt, 60s after the second
    assert second.retry_at == second_started + timedelta(seconds=60)
    assert third.state == ExecutionState.FAILED_TERMINAL
    assert third.reason == REASON_RETRIES_EXHAUSTED
    assert third.record.retry_count == 2

    updated = await autopay.store.get(subscription.id)
    assert updated.pending_attempts == 0
    assert updated.retry_not_before is None
    assert updated.consecutive_failures == 1
    assert updated.is_active is True
    assert updated.next_run_date == subscription.next_run_date + timedelta(days=1)


async def test_recovery_after_transient_failure(autopay, make_subscription, chain, clock):
    chain.mark_unavailable("polygon")
    subscription = make_subscription()
    await autopay.orchestrator.execute(subscription.id)

    chain.mark_available("polygon")
    clock.advance(seconds=31)
    outcome = await autopay.orchestrator.execute(subscription.id)

    assert outcome.state == ExecutionState.SUCCEEDED
    assert outcome.record.retry_count == 1


async def test_retry_resumes_from_settled_position(autopay, make_subscription, chain, clock):
    """Test a transfer revert after the bridge settled: the retry only sends the transfer"""
    chain.script_failure(token_address("polygon", "USDC"))
    subscription = make_subscription()

    first = await autopay.orchestrator.execute(subscription.id)
    deferred = await autopay.store.get(subscription.id)
    clock.advance(seconds=31)
    second = await autopay.orchestrator.execute(subscription.id)

    assert first.state == ExecutionState.FAILED_RETRYABLE
    assert (deferred.progress.chain, deferred.progress.token) == ("polygon", "USDC")
    assert deferred.progress.amount == Decimal("99.9")
    assert [step.kind for step in deferred.progress.steps] == [StepKind.APPROVE, StepKind.BRIDGE]

    assert second.state == ExecutionState.SUCCEEDED
    record = second.record
    assert [step.kind for step in record.steps] == [StepKind.APPROVE, StepKind.BRIDGE, StepKind.TRANSFER]
    assert record.output_amount == Decimal("99.9")
    assert record.retry_count == 1
    assert record.fallback_used is False
    assert record.gas_cost_usd == Decimal("15.0005")
    assert len([payload for payload in chain.simulated if payload.chain == "ethereum"]) == 2
    assert (await autopay.store.get(subscription.id)).progress is None


async def test_exhausted_retries_keep_every_settled_step(autopay, make_subscription, chain, clock):
    """Test the bridge runs once across all attempts and the failure record lists it"""
    chain.script_failure(token_address("polygon", "USDC"), times=100)
    subscription = make_subscription()

    await autopay.orchestrator.execute(subscription.id)
    clock.advance(seconds=31)
    await autopay.orchestrator.execute(subscription.id)
    clock.advance(seconds=61)
    third = await autopay.orchestrator.execute(subscription.id)

    assert third.reason == REASON_RETRIES_EXHAUSTED
    assert [step.kind for step in third.record.steps] == [StepKind.APPROVE, StepKind.BRIDGE]
    bridges = [payload for payload in chain.simulated if payload.to_address.lower() == router_address("Socket").lower()]
    assert len(bridges) == 1


async def test_final_transfer_revert_is_retried_not_rerouted(autopay, make_subscription, chain):
    """Test a destination transfer revert leaves the fallback venues alone"""
    chain.script_failure(token_address("polygon", "USDC"))
    subscription = make_subscription()

    outcome = await autopay.orchestrator.execute(subscription.id)

    assert outcome.state == ExecutionState.FAILED_RETRYABLE
    assert "transfer on polygon" in outcome.reason
    transfers = [payload for payload in chain.simulated if payload.chain == "polygon"]
    assert len(transfers) == 1
    assert (await autopay.store.get(subscription.id)).progress.fallback_used is False


async def test_high_risk_blocks_without_retry(autopay, make_subscription, chain):
    """Test risk-blocked is terminal: no steps simulated, failure counted"""
    subscription = make_subscription(receiver=SCAM_RECEIVER)

    outcome = await autopay.orchestrator.execute(subscription.id)

    assert outcome.state == ExecutionState.FAILED_TERMINAL
    assert outcome.reason == REASON_RISK_BLOCKED
    assert list(outcome.record.steps) == []
    assert "scam" in outcome.record.error
    assert chain.simulated == []
    assert (await autopay.store.get(subscription.id)).consecutive_failures == 1


async def test_consecutive_failures_deactivate(autopay, make_subscription, clock):
    subscription = make_subscription(receiver=SCAM_RECEIVER)

    for _ in range(3):
        outcome = await autopay.orchestrator.execute(subscription.id)
        assert outcome.reason == REASON_RISK_BLOCKED
        clock.advance(days=1)

    updated = await autopay.store.get(subscription.id)
    assert updated.consecutive_failures == 3
    assert updated.is_active is False
    assert len(await autopay.store.list_executions(subscription.id)) == 3


async def test_success_resets_failure_streak(autopay, make_subscription, clock):
    subscription = make_subscription(consecutive_failures=2)

    await autopay.orchestrator.execute(subscription.id)

    assert (await autopay.store.get(subscription.id)).consecutive_failures == 0


async def test_monthly_run_returns_to_anchor_day(autopay, make_subscription, clock):
    """Test a run clamped to Feb 28 schedules Mar 31, not Mar 28"""
    anchor = clock.now.replace(year=2026, month=1, day=31)
    february = clock.now.replace(month=2, day=28)
    subscription = make_subscription(cadence="monthly", schedule_anchor=anchor, next_run_date=february)

    outcome = await autopay.orchestrator.execute(subscription.id)

    assert outcome.state == ExecutionState.SUCCEEDED
    updated = await autopay.store.get(subscription.id)
    assert updated.next_run_date == clock.now.replace(month=3, day=31)
    assert updated.schedule_anchor == anchor


async def test_unsupported_chain_is_terminal(autopay, make_subscription):
    subscription = make_subscription(to_chain="solana")

    outcome = await autopay.orchestrator.execute(subscription.id)

    assert outcome.state == ExecutionState.FAILED_TERMINAL
    assert outcome.reason == REASON_INVALID


async def test_no_venue_is_terminal(test_settings, session_factory, chain, clock, make_subscription):
    engine = build_engine(
        test_settings,
        session_factory,
        chain=chain,
        quoter=FeeScheduleQuoter(disabled=frozenset(BRIDGE_VENUES)),
        clock=clock,
    )
    subscription = make_subscription()

    outcome = await engine.orchestrator.execute(subscription.id)

    assert outcome.reason == REASON_ROUTE_UNAVAILABLE


async def test_blocklist_from_signal_provider(test_settings, session_factory, chain, clock, make_subscription):
    subscription = make_subscription()
    engine = build_engine(
        test_settings,
        session_factory,
        chain=chain,
        signals=StaticRiskSignals(blocklist=[subscription.receiver]),
        clock=clock,
    )

    outcome = await engine.orchestrator.execute(subscription.id)

    assert outcome.reason == REASON_RISK_BLOCKED


async def test_gas_top_up_runs_before_payment(autopay, make_subscription, chain):
    """Test a short wallet is topped up first and the top-up recorded separately"""
    subscription = make_subscription()
    chain.set_balance("ethereum", subscription.owner, Decimal("0.001"))  # $2.40 < $22.50 required

    outcome = await autopay.orchestrator.execute(subscription.id)

    assert outcome.state == ExecutionState.SUCCEEDED
    assert [step.kind for step in outcome.record.top_up_steps] == [StepKind.SWAP]
    assert len(outcome.record.steps) == 3
    # swap gas (9.0) on top of the payment's 15.0005
    assert outcome.record.gas_cost_usd == Decimal("24.0005")


async def test_failed_top_up_is_retryable(autopay, make_subscription, chain):
    subscription = make_subscription()
    chain.set_balance("ethereum", subscription.owner, Decimal("0"))
    chain.script_failure(router_address("1inch"))

    outcome = await autopay.orchestrator.execute(subscription.id)

    assert outcome.state == ExecutionState.FAILED_RETRYABLE
    assert "Gas top-up" in outcome.reason


async def test_cancellation_stops_before_next_step(autopay, make_subscription, chain):
    """Test a subscription cancelled mid-run stops before its next step"""
    subscription = make_subscription()

    async def cancel_on_first_step(payload):
        await autopay.store.deactivate(subscription.id)

    chain.on_simulate = cancel_on_first_step

    outcome = await autopay.orchestrator.execute(subscription.id)

    assert outcome.state == ExecutionState.FAILED_TERMINAL
    assert outcome.reason == REASON_CANCELLED
    assert len(chain.simulated) == 1
    assert [step.kind for step in outcome.record.steps] == [StepKind.APPROVE]

    updated = await autopay.store.get(subscription.id)
    assert updated.is_active is False
    assert updated.consecutive_failures == 0


async def test_cancellation_during_top_up_is_not_a_gas_failure(
    test_settings, session_factory, make_subscription, chain, clock
):
    """Test a cancel between top-up steps ends as cancelled, not as a gas shortfall"""
    settings = test_settings.model_copy(update={"gas_funding_chain": "arbitrum"})
    engine = build_engine(settings, session_factory, chain=chain, clock=clock)
    subscription = make_subscription()
    chain.set_balance("ethereum", subscription.owner, Decimal("0.001"))

    async def cancel_on_first_step(payload):
        await engine.store.deactivate(subscription.id)

    chain.on_simulate = cancel_on_first_step

    outcome = await engine.orchestrator.execute(subscription.id)

    assert outcome.state == ExecutionState.FAILED_TERMINAL
    assert outcome.reason == REASON_CANCELLED
    assert [step.kind for step in outcome.record.top_up_steps] == [StepKind.SWAP]
    assert list(outcome.record.steps) == []
    assert (await engine.store.get(subscription.id)).consecutive_failures == 0


async def test_concurrent_run_is_skipped(autopay, make_subscription, chain):
    """Test a second execute while the first is in flight returns None"""
    subscription = make_subscription()
    nested = []

    async def reenter(payload):
        if not nested:
            nested.append(autopay.orchestrator.is_running(subscription.id))
            nested.append(await autopay.orchestrator.execute(subscription.id))

    chain.on_simulate = reenter

    outcome = await autopay.orchestrator.execute(subscription.id)

    assert outcome.state == ExecutionState.SUCCEEDED
    assert nested == [True, None]
    assert len(await autopay.store.list_executions(subscription.id)) == 1


def test_backoff_doubles(autopay):
    orchestrator = autopay.orchestrator

    assert orchestrator.backoff_delay(1) == timedelta(seconds=30)
    assert orchestrator.backoff_delay(2) == timedelta(seconds=60)
    assert orchestrator.backoff_delay(3) == timedelta(seconds=120)


def test_settings_drive_retry_policy():
    config = Settings(max_execution_attempts=5, retry_backoff_base_seconds=10.0)

    assert config.max_execution_attempts == 5
    assert config.retry_backoff_base_seconds == 10.0
