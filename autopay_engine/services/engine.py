"""Wires the engine components together from settings"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.orm import Session

from autopay_engine.config import Settings
from autopay_engine.domain.gas import GasSufficiencyChecker
from autopay_engine.domain.ports import ChainAdapter, RiskSignalProvider, SubscriptionStore, VenueQuoter
from autopay_engine.domain.risk import RiskScanner
from autopay_engine.domain.routing import RoutePlanner
from autopay_engine.infrastructure.clients.chain import HttpChainAdapter
from autopay_engine.infrastructure.clients.guarded import GuardedChainAdapter
from autopay_engine.infrastructure.clients.signals import StaticRiskSignals
from autopay_engine.infrastructure.clients.simulated_chain import SimulatedChainAdapter
from autopay_engine.infrastructure.clients.venues import FeeScheduleQuoter
from autopay_engine.infrastructure.database.repositories import SqlSubscriptionStore
from autopay_engine.services.inspection import ChainInspector
from autopay_engine.services.orchestrator import ExecutionOrchestrator
from autopay_engine.services.quotes import QuoteService
from autopay_engine.services.scheduler import Scheduler
from autopay_engine.utils.date_utils import utcnow


@dataclass
class Engine:
    chain: ChainAdapter
    quoter: VenueQuoter
    planner: RoutePlanner
    gas_checker: GasSufficiencyChecker
    risk_scanner: RiskScanner
    store: SubscriptionStore
    orchestrator: ExecutionOrchestrator
    scheduler: Scheduler
    quotes: QuoteService
    inspector: ChainInspector
    supported_chains: tuple
    clock: Callable[[], datetime] = utcnow


def build_chain_adapter(config: Settings) -> ChainAdapter:
    if config.chain_adapter == "simulated":
        return SimulatedChainAdapter.demo()
    if config.chain_adapter == "http":
        return HttpChainAdapter(base_url=config.chain_api_base, timeout=config.chain_call_timeout_seconds)
    raise ValueError(f"Unknown chain adapter backend: {config.chain_adapter}")


def build_engine(
    config: Settings,
    session_factory: Callable[[], Session],
    chain: Optional[ChainAdapter] = None,
    quoter: Optional[VenueQuoter] = None,
    signals: Optional[RiskSignalProvider] = None,
    clock: Callable[[], datetime] = utcnow,
) -> Engine:
    """Build every component once; callers may pass their own adapters (tests, demos)"""
    guarded = GuardedChainAdapter(chain or build_chain_adapter(config), config.chain_call_timeout_seconds)
    quoter = quoter or FeeScheduleQuoter()
    signals = signals or StaticRiskSignals(config.risk_blocklist, config.risk_watchlist)

    planner = RoutePlanner(
        guarded,
        quoter,
        config.supported_chains,
        max_fallbacks=config.max_fallback_routes,
        max_slippage_bps=config.max_route_slippage_bps,
        clock=clock,
    )
    gas_checker = GasSufficiencyChecker(
        guarded,
        quoter,
        funding_chain=config.gas_funding_chain,
        funding_token=config.gas_funding_token,
    )
    risk_scanner = RiskScanner(guarded, signals, Decimal(config.large_value_threshold))
    store = SqlSubscriptionStore(session_factory)
    orchestrator = ExecutionOrchestrator(
        store,
        guarded,
        planner,
        gas_checker,
        risk_scanner,
        max_attempts=config.max_execution_attempts,
        backoff_base_seconds=config.retry_backoff_base_seconds,
        consecutive_failure_limit=config.consecutive_failure_limit,
        clock=clock,
    )
    scheduler = Scheduler(
        store,
        orchestrator,
        max_parallel=config.max_parallel_executions,
        interval_seconds=config.scheduler_interval_seconds,
        clock=clock,
    )
    return Engine(
        chain=guarded,
        quoter=quoter,
        planner=planner,
        gas_checker=gas_checker,
        risk_scanner=risk_scanner,
        store=store,
        orchestrator=orchestrator,
        scheduler=scheduler,
        quotes=QuoteService(planner),
        inspector=ChainInspector(guarded, config.supported_chains),
        supported_chains=tuple(config.supported_chains),
        clock=clock,
    )
