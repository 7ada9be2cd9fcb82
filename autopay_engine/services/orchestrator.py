"""
Execution orchestrator - runs one scheduled payment through its lifecycle.

Flow per attempt:
1. GAS_CHECKING: estimate gas on the chain holding the funds, ensure the
   payer holds enough, execute the top-up route when it does not
2. RISK_SCANNING: a high level ends the run for good
3. PLANNING: quote the primary route and its fallbacks
4. EXECUTING: simulate each step in order; a reverted step moves to the
   next-best fallback, re-quoted from wherever the funds are now; a revert
   with only the final transfer left is retried, not re-routed

Transient failures defer the run with exponential backoff until the attempt
limit. A deferred run keeps the steps it settled and where they left the
funds; the next attempt plans from that position, and the final record lists
the steps of every attempt. Every final outcome writes exactly one
ExecutionRecord and moves the schedule forward from the scheduled time.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

from autopay_engine.domain.exceptions import (
    DomainException,
    ExecutionCancelled,
    InsufficientGasError,
    RiskBlockedError,
    RouteUnavailableError,
    SimulationFailure,
    ValidationError,
)
from autopay_engine.domain.execution_state import ExecutionRun, ExecutionState
from autopay_engine.domain.gas import GasSufficiencyChecker
from autopay_engine.domain.models import (
    ZERO,
    BridgeStep,
    ExecutionRecord,
    RiskLevel,
    RouteCandidate,
    RoutePlan,
    RouteStep,
    RunProgress,
    Subscription,
)
from autopay_engine.domain.ports import ChainAdapter, SimulationResult, SubscriptionStore
from autopay_engine.domain.risk import RiskScanner
from autopay_engine.domain.routing import RoutePlanner, leg_kind
from autopay_engine.domain.tokens import GAS_UNITS
from autopay_engine.infrastructure.clients.payloads import PayloadError, TokenBook, step_to_payload
from autopay_engine.infrastructure.observability.logging import log_execution, log_transition
from autopay_engine.infrastructure.observability.metrics import (
    fallback_switch_counter,
    gas_top_up_counter,
    record_execution,
    retry_deferred_counter,
    risk_scan_counter,
    state_transition_counter,
)
from autopay_engine.utils.amounts import quantize_gas_usd
from autopay_engine.utils.date_utils import next_run_after, utcnow

logger = logging.getLogger(__name__)

# Short failure codes stored on ExecutionRecord.failure_reason
REASON_RISK_BLOCKED = "risk-blocked"
REASON_CANCELLED = "cancelled"
REASON_RETRIES_EXHAUSTED = "retries-exhausted"
REASON_ROUTE_UNAVAILABLE = "route-unavailable"
REASON_INVALID = "invalid-subscription"


@dataclass
class ExecutionOutcome:
    subscription_id: str
    attempt: int
    state: ExecutionState
    record: Optional[ExecutionRecord] = None
    reason: Optional[str] = None
    retry_at: Optional[datetime] = None


@dataclass
class _Position:
    """Where the payment's funds currently sit"""

    chain: str
    token: str
    amount: Decimal


@dataclass
class _AttemptLedger:
    """Settled work of the run so far, including attempts before this one"""

    position: _Position
    settled: List[RouteStep] = field(default_factory=list)
    top_up: List[RouteStep] = field(default_factory=list)
    gas_cost_usd: Decimal = ZERO
    fallback_used: bool = False

    @classmethod
    def resume(cls, subscription: Subscription) -> "_AttemptLedger":
        progress = subscription.progress
        if progress is None:
            return cls(_Position(subscription.from_chain, subscription.token_symbol, subscription.amount))
        return cls(
            _Position(progress.chain, progress.token, progress.amount),
            settled=list(progress.steps),
            top_up=list(progress.top_up_steps),
            gas_cost_usd=progress.gas_cost_usd,
            fallback_used=progress.fallback_used,
        )

    def charge(self, step: RouteStep, result: SimulationResult) -> None:
        units = GAS_UNITS[step.kind.value]
        self.gas_cost_usd += step.gas_usd * Decimal(result.gas_used) / Decimal(units)

    def settle(self, step: RouteStep, result: SimulationResult) -> None:
        self.settled.append(step)
        self.charge(step, result)
        self.position = _Position(
            step.to_chain if isinstance(step, BridgeStep) else step.chain,
            step.token_out,
            step.amount_out,
        )

    def progress(self) -> Optional[RunProgress]:
        if not self.settled and not self.top_up:
            return None
        return RunProgress(
            chain=self.position.chain,
            token=self.position.token,
            amount=self.position.amount,
            steps=tuple(self.settled),
            top_up_steps=tuple(self.top_up),
            gas_cost_usd=self.gas_cost_usd,
            fallback_used=self.fallback_used,
        )


class ExecutionOrchestrator:
    def __init__(
        self,
        store: SubscriptionStore,
        chain: ChainAdapter,
        planner: RoutePlanner,
        gas_checker: GasSufficiencyChecker,
        risk_scanner: RiskScanner,
        max_attempts: int = 3,
        backoff_base_seconds: float = 30.0,
        consecutive_failure_limit: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._chain = chain
        self._planner = planner
        self._gas = gas_checker
        self._risk = risk_scanner
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base_seconds
        self._failure_limit = consecutive_failure_limit
        self._clock = clock
        self._locks: Dict[str, asyncio.Lock] = {}

    def is_running(self, subscription_id: str) -> bool:
        lock = self._locks.get(subscription_id)
        return lock is not None and lock.locked()

    async def execute(self, subscription_id: str, now: Optional[datetime] = None) -> Optional[ExecutionOutcome]:
        """
        Run one attempt for a due subscription.

        Returns None when the run was skipped: already executing, missing,
        deactivated, or not yet due.
        """
        lock = self._locks.setdefault(subscription_id, asyncio.Lock())
        if lock.locked():
            logger.info("Skipping subscription %s: execution already in progress", subscription_id)
            return None

        async with lock:
            subscription = await self._store.get(subscription_id)
            now = now or self._clock()
            if subscription is None or not subscription.is_due(now):
                return None
            return await self._run_attempt(subscription)

    def backoff_delay(self, attempt: int) -> timedelta:
        return timedelta(seconds=self._backoff_base * (2 ** (attempt - 1)))

    async def _run_attempt(self, subscription: Subscription) -> ExecutionOutcome:
        attempt = subscription.pending_attempts + 1
        run = ExecutionRun(subscription.id, attempt, scheduled_for=subscription.next_run_date)
        ledger = _AttemptLedger.resume(subscription)
        start_time = time.perf_counter()
        if subscription.progress is not None:
            logger.info(
                "Resuming subscription %s from %s %s on %s",
                subscription.id,
                ledger.position.amount,
                ledger.position.token,
                ledger.position.chain,
            )

        try:
            self._advance(run, ExecutionState.GAS_CHECKING)
            await self._ensure_gas(subscription, ledger)

            self._advance(run, ExecutionState.RISK_SCANNING)
            await self._scan(subscription)

            self._advance(run, ExecutionState.PLANNING)
            plan = await self._planner.plan(
                ledger.position.chain,
                subscription.to_chain,
                ledger.position.token,
                subscription.token_symbol,
                ledger.position.amount,
                subscription.receiver,
            )

            self._advance(run, ExecutionState.EXECUTING)
            output = await self._execute_plan(subscription, plan, ledger)

        except ExecutionCancelled as e:
            return await self._terminal(subscription, run, ledger, start_time, REASON_CANCELLED, str(e), counts=False)
        except RiskBlockedError as e:
            return await self._terminal(subscription, run, ledger, start_time, REASON_RISK_BLOCKED, str(e))
        except ValidationError as e:
            return await self._terminal(subscription, run, ledger, start_time, REASON_INVALID, str(e))
        except RouteUnavailableError as e:
            return await self._terminal(subscription, run, ledger, start_time, REASON_ROUTE_UNAVAILABLE, str(e))
        except DomainException as e:
            return await self._retryable(subscription, run, ledger, start_time, e)
        except Exception as e:
            logger.exception("Unexpected error executing subscription %s", subscription.id)
            return await self._retryable(subscription, run, ledger, start_time, e)

        self._advance(run, ExecutionState.SUCCEEDED)
        record = self._record(subscription, run, ledger, "success", output=output)
        await self._store.finalize(
            subscription.id,
            record,
            next_run_date=self._next_run(subscription),
            is_active=True,
            consecutive_failures=0,
        )
        self._report(run, "success", None, ledger, start_time)
        return ExecutionOutcome(subscription.id, attempt, run.state, record=record)

    async def _ensure_gas(self, subscription: Subscription, ledger: _AttemptLedger) -> None:
        """Top up native gas where the funds sit when short. Any failure here is an InsufficientGasError."""
        chain = ledger.position.chain
        try:
            estimate = await self._planner.estimate_gas_usd(
                chain,
                subscription.to_chain,
                ledger.position.token,
                subscription.token_symbol,
            )
            gas_plan = await self._gas.ensure(chain, subscription.owner, estimate)
            if not gas_plan.needed:
                return

            tokens = _token_book(subscription)
            for index, step in enumerate(gas_plan.top_up_steps):
                await self._check_active(subscription.id)
                result = await self._simulate(subscription.owner, step, index, tokens)
                ledger.top_up.append(step)
                ledger.charge(step, result)
            gas_top_up_counter.inc()
        except ExecutionCancelled:
            raise
        except DomainException as e:
            raise InsufficientGasError(f"Gas top-up on {chain} failed: {e}") from e

    async def _scan(self, subscription: Subscription) -> None:
        assessment = await self._risk.scan(
            subscription.from_chain,
            subscription.token_address,
            subscription.receiver,
            subscription.amount,
        )
        risk_scan_counter.labels(level=assessment.risk_level.value).inc()
        if assessment.risk_level == RiskLevel.HIGH:
            raise RiskBlockedError(
                "Risk scan blocked payment: " + "; ".join(assessment.flags),
                flags=assessment.flags,
            )

    async def _execute_plan(self, subscription: Subscription, plan: RoutePlan, ledger: _AttemptLedger) -> Decimal:
        """Simulate steps in order, switching to fallbacks on reverts. Returns the amount delivered."""
        tokens = _token_book(subscription)
        untried = list(plan.fallbacks)
        steps = plan.steps
        index = 0

        while index < len(steps):
            step = steps[index]
            await self._check_active(subscription.id)
            try:
                result = await self._simulate(subscription.owner, step, len(ledger.settled), tokens)
            except SimulationFailure as failure:
                logger.warning("Step %d of subscription %s failed: %s", index, subscription.id, failure)
                position = ledger.position
                if leg_kind(position.chain, plan.to_chain, position.token, plan.token_out) is None:
                    # Only the final transfer is left; every venue would hand back the same step
                    raise
                steps = await self._switch_to_fallback(plan, position, untried, failure)
                ledger.fallback_used = True
                fallback_switch_counter.inc()
                index = 0
                continue

            ledger.settle(step, result)
            index += 1

        return steps[-1].amount_out

    async def _switch_to_fallback(
        self,
        plan: RoutePlan,
        position: _Position,
        untried: List[RouteCandidate],
        failure: SimulationFailure,
    ) -> Tuple[RouteStep, ...]:
        """Fresh steps from the next-best untried venue that can still quote"""
        while untried:
            candidate = untried.pop(0)
            try:
                return await self._planner.requote(
                    position.chain,
                    position.token,
                    position.amount,
                    plan.to_chain,
                    plan.token_out,
                    plan.receiver,
                    candidate.venue,
                )
            except RouteUnavailableError as e:
                logger.warning("Fallback %s unavailable: %s", candidate.venue, e)
        raise SimulationFailure(f"All routes exhausted; last failure: {failure}", step_index=failure.step_index)

    async def _simulate(self, sender: str, step: RouteStep, sequence: int, tokens: TokenBook) -> SimulationResult:
        try:
            payload = step_to_payload(step, sequence, tokens)
        except PayloadError as e:
            raise SimulationFailure(str(e), step_index=sequence) from e

        result = await self._chain.simulate_transaction(sender, payload)
        if not result.success:
            raise SimulationFailure(
                f"{step.kind.value} on {step.chain} via {step.protocol or 'direct'} reverted: {result.revert_reason}",
                step_index=sequence,
            )
        return result

    async def _check_active(self, subscription_id: str) -> None:
        current = await self._store.get(subscription_id)
        if current is None or not current.is_active:
            raise ExecutionCancelled(f"Subscription {subscription_id} was cancelled during execution")

    async def _retryable(
        self,
        subscription: Subscription,
        run: ExecutionRun,
        ledger: _AttemptLedger,
        start_time: float,
        error: Exception,
    ) -> ExecutionOutcome:
        if run.attempt >= self._max_attempts:
            return await self._terminal(
                subscription,
                run,
                ledger,
                start_time,
                REASON_RETRIES_EXHAUSTED,
                f"Failed after {run.attempt} attempts: {error}",
            )

        retry_at = self._clock() + self.backoff_delay(run.attempt)
        self._advance(run, ExecutionState.FAILED_RETRYABLE, reason=str(error))
        await self._store.defer(subscription.id, run.attempt, retry_at, ledger.progress())
        retry_deferred_counter.inc()
        logger.warning(
            "Attempt %d for subscription %s failed, retrying after %s: %s",
            run.attempt,
            subscription.id,
            retry_at.isoformat(),
            error,
        )
        return ExecutionOutcome(subscription.id, run.attempt, run.state, reason=str(error), retry_at=retry_at)

    async def _terminal(
        self,
        subscription: Subscription,
        run: ExecutionRun,
        ledger: _AttemptLedger,
        start_time: float,
        reason: str,
        detail: str,
        counts: bool = True,
    ) -> ExecutionOutcome:
        self._advance(run, ExecutionState.FAILED_TERMINAL, reason=reason)
        record = self._record(subscription, run, ledger, "failed", reason=reason, error=detail)

        failures = subscription.consecutive_failures + 1 if counts else subscription.consecutive_failures
        is_active = reason != REASON_CANCELLED and failures < self._failure_limit
        if counts and not is_active:
            logger.warning(
                "Deactivating subscription %s after %d consecutive failures", subscription.id, failures
            )

        await self._store.finalize(
            subscription.id,
            record,
            next_run_date=self._next_run(subscription),
            is_active=is_active,
            consecutive_failures=failures,
        )
        self._report(run, "failed", reason, ledger, start_time)
        return ExecutionOutcome(subscription.id, run.attempt, run.state, record=record, reason=reason)

    def _next_run(self, subscription: Subscription) -> datetime:
        return next_run_after(
            subscription.next_run_date, subscription.cadence, self._clock(), anchor=subscription.schedule_anchor
        )

    def _record(
        self,
        subscription: Subscription,
        run: ExecutionRun,
        ledger: _AttemptLedger,
        status: str,
        output: Optional[Decimal] = None,
        reason: Optional[str] = None,
        error: Optional[str] = None,
    ) -> ExecutionRecord:
        return ExecutionRecord(
            id=str(uuid.uuid4()),
            subscription_id=subscription.id,
            executed_at=self._clock(),
            scheduled_for=subscription.next_run_date,
            status=status,
            output_amount=output,
            gas_cost_usd=quantize_gas_usd(ledger.gas_cost_usd),
            steps=tuple(ledger.settled),
            fallback_used=ledger.fallback_used,
            retry_count=run.attempt - 1,
            top_up_steps=tuple(ledger.top_up),
            failure_reason=reason,
            error=error,
        )

    def _advance(self, run: ExecutionRun, state: ExecutionState, reason: str = "") -> None:
        change = run.transition(state, self._clock(), reason)
        state_transition_counter.labels(to_state=state.value).inc()
        log_transition(run.subscription_id, run.attempt, change.from_state.value, state.value, reason)

    def _report(self, run: ExecutionRun, status: str, reason: Optional[str], ledger: _AttemptLedger, start_time: float) -> None:
        duration = time.perf_counter() - start_time
        record_execution(status, reason, duration)
        log_execution(run.subscription_id, run.attempt, status, reason, ledger.fallback_used, duration * 1000)


def _token_book(subscription: Subscription) -> TokenBook:
    return {(subscription.from_chain, subscription.token_symbol): subscription.token_address}
