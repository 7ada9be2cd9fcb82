"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import ClassVar, Optional, Tuple

ZERO = Decimal("0")


@dataclass
class Subscription:
    """Recurring cross-chain payment owned by a payer wallet"""

    id: str
    name: str
    owner: str  # payer wallet address
    token_symbol: str
    token_address: str
    amount: Decimal
    receiver: str
    from_chain: str
    to_chain: str
    cadence: str  # "daily" | "weekly" | "monthly"
    next_run_date: datetime
    is_active: bool = True
    description: Optional[str] = None
    pending_attempts: int = 0
    retry_not_before: Optional[datetime] = None
    consecutive_failures: int = 0
    created_at: Optional[datetime] = None
    schedule_anchor: Optional[datetime] = None  # first run date; monthly runs keep its day
    progress: Optional["RunProgress"] = None

    def is_due(self, now: datetime) -> bool:
        if not self.is_active or self.next_run_date > now:
            return False
        return self.retry_not_before is None or self.retry_not_before <= now


class StepKind(Enum):
    APPROVE = "approve"
    SWAP = "swap"
    BRIDGE = "bridge"
    TRANSFER = "transfer"


@dataclass(frozen=True, kw_only=True)
class RouteStep:
    """One atomic on-chain action. Concrete steps are the subclasses below."""

    kind: ClassVar[StepKind]

    chain: str
    token_in: str
    token_out: str
    amount_in: Decimal
    amount_out: Decimal
    protocol: Optional[str] = None
    fee_bps: int = 0
    gas_usd: Decimal = ZERO


@dataclass(frozen=True, kw_only=True)
class ApproveStep(RouteStep):
    kind: ClassVar[StepKind] = StepKind.APPROVE


@dataclass(frozen=True, kw_only=True)
class SwapStep(RouteStep):
    kind: ClassVar[StepKind] = StepKind.SWAP


@dataclass(frozen=True, kw_only=True)
class BridgeStep(RouteStep):
    kind: ClassVar[StepKind] = StepKind.BRIDGE

    to_chain: str


@dataclass(frozen=True, kw_only=True)
class TransferStep(RouteStep):
    kind: ClassVar[StepKind] = StepKind.TRANSFER

    receiver: str


@dataclass(frozen=True)
class RouteCandidate:
    """A complete step sequence built on a single venue"""

    venue: Optional[str]
    steps: Tuple[RouteStep, ...]

    @property
    def expected_output(self) -> Decimal:
        return self.steps[-1].amount_out

    @property
    def gas_usd(self) -> Decimal:
        return sum((step.gas_usd for step in self.steps), ZERO)


@dataclass(frozen=True)
class RoutePlan:
    """Primary route plus fallbacks ranked by descending expected output"""

    from_chain: str
    to_chain: str
    token_in: str
    token_out: str
    amount_in: Decimal
    receiver: str
    primary: RouteCandidate
    fallbacks: Tuple[RouteCandidate, ...]
    gas_estimate_usd: Decimal
    slippage_bps: int
    quoted_at: datetime
    flags: Tuple[str, ...] = ()

    @property
    def steps(self) -> Tuple[RouteStep, ...]:
        return self.primary.steps

    @property
    def expected_output(self) -> Decimal:
        return self.primary.expected_output

    @property
    def candidates(self) -> Tuple[RouteCandidate, ...]:
        return (self.primary,) + self.fallbacks


@dataclass(frozen=True)
class GasPlan:
    """Outcome of a gas sufficiency check, with an advisory top-up route"""

    chain: str
    wallet: str
    current_balance_usd: Decimal
    required_usd: Decimal
    needed: bool
    top_up_steps: Tuple[RouteStep, ...] = ()
    top_up_input_usd: Optional[Decimal] = None
    funding_chain: Optional[str] = None


class RiskLevel(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]

    def escalate(self, other: "RiskLevel") -> "RiskLevel":
        """Return the more severe of the two levels; never lowers"""
        return other if other.rank > self.rank else self


_RISK_RANK = {RiskLevel.LOW: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2}


@dataclass(frozen=True)
class RiskAssessment:
    """Output of a risk scan"""

    risk_level: RiskLevel
    flags: Tuple[str, ...]
    recommendations: Tuple[str, ...]
    confidence: float


@dataclass(frozen=True)
class ExecutionRecord:
    """Immutable outcome of one scheduled run"""

    id: str
    subscription_id: str
    executed_at: datetime
    scheduled_for: datetime
    status: str  # "success" | "failed"
    output_amount: Optional[Decimal]
    gas_cost_usd: Decimal
    steps: Tuple[RouteStep, ...]
    fallback_used: bool
    retry_count: int
    top_up_steps: Tuple[RouteStep, ...] = field(default_factory=tuple)
    failure_reason: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class RunProgress:
    """
    Work a deferred run already settled, carried into its next attempt.

    The funds sit at (chain, token, amount): the next attempt plans from
    there instead of the subscription's source so no leg is repeated.
    """

    chain: str
    token: str
    amount: Decimal
    steps: Tuple[RouteStep, ...] = ()
    top_up_steps: Tuple[RouteStep, ...] = ()
    gas_cost_usd: Decimal = ZERO
    fallback_used: bool = False
