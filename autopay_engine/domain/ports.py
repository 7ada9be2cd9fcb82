"""
Interfaces for the engine's external collaborators.

The engine never constructs these itself; callers pass concrete
implementations in, so each chain can be backed by a deterministic double.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from autopay_engine.domain.models import ExecutionRecord, RunProgress, Subscription


@dataclass(frozen=True)
class TokenMetadata:
    name: str
    symbol: str
    decimals: int


@dataclass(frozen=True)
class TxPayload:
    """Unsigned transaction for one route step"""

    chain: str
    to_address: str
    data: str
    value: Decimal


@dataclass(frozen=True)
class SimulationResult:
    success: bool
    gas_used: int
    tx_hash: str
    revert_reason: Optional[str] = None


@dataclass(frozen=True)
class VenueQuote:
    venue: str
    amount_out: Decimal
    fee_bps: int
    estimated_seconds: int


@dataclass(frozen=True)
class AddressSignals:
    blocklisted: bool = False
    suspicious_activity: bool = False


class ChainAdapter(ABC):
    """Chain-facing primitives. Implementations raise ChainUnavailableError on transport failures."""

    @abstractmethod
    async def get_native_balance(self, chain: str, address: str) -> Decimal:
        """Native token balance in whole units (ETH, MATIC, ...)"""

    @abstractmethod
    async def get_native_price_usd(self, chain: str) -> Decimal:
        """USD price of the chain's native token"""

    @abstractmethod
    async def get_gas_price_gwei(self, chain: str) -> Decimal:
        """Current gas price in gwei"""

    @abstractmethod
    async def is_contract(self, chain: str, address: str) -> bool:
        """Whether the address has deployed code"""

    @abstractmethod
    async def get_token_metadata(self, chain: str, token_address: str) -> Optional[TokenMetadata]:
        """ERC-20 name/symbol/decimals, or None when the contract cannot be read"""

    @abstractmethod
    async def simulate_transaction(self, sender: str, payload: TxPayload) -> SimulationResult:
        """Dry-run a transaction; success=False means it reverted"""


class VenueQuoter(ABC):
    """Swap and bridge quotes per venue. Returns None when a venue cannot quote."""

    @abstractmethod
    def swap_venues(self, chain: str) -> List[str]:
        pass

    @abstractmethod
    def bridge_venues(self, from_chain: str, to_chain: str) -> List[str]:
        pass

    @abstractmethod
    async def quote_swap(
        self, venue: str, chain: str, token_in: str, token_out: str, amount_in: Decimal
    ) -> Optional[VenueQuote]:
        pass

    @abstractmethod
    async def quote_bridge(
        self,
        venue: str,
        from_chain: str,
        to_chain: str,
        token_in: str,
        token_out: str,
        amount_in: Decimal,
    ) -> Optional[VenueQuote]:
        pass


class RiskSignalProvider(ABC):
    """Address reputation lookups (blocklists, activity monitors)"""

    @abstractmethod
    async def lookup(self, chain: str, address: str) -> AddressSignals:
        pass


class SubscriptionStore(ABC):
    """
    Persistence for subscriptions and their execution history.

    Methods are coroutines so the orchestrator and scheduler can await them
    on the event loop next to chain calls.
    """

    @abstractmethod
    async def create(self, subscription: Subscription) -> Subscription:
        pass

    @abstractmethod
    async def get(self, subscription_id: str) -> Optional[Subscription]:
        pass

    @abstractmethod
    async def list_subscriptions(self) -> List[Subscription]:
        pass

    @abstractmethod
    async def list_due(self, now: datetime) -> List[Subscription]:
        """Active subscriptions whose run date and backoff gate have passed"""

    @abstractmethod
    async def deactivate(self, subscription_id: str) -> Optional[Subscription]:
        pass

    @abstractmethod
    async def defer(
        self,
        subscription_id: str,
        attempts: int,
        retry_not_before: datetime,
        progress: Optional[RunProgress] = None,
    ) -> None:
        """Remember a failed attempt, and whatever it settled, without closing the scheduled run"""

    @abstractmethod
    async def finalize(
        self,
        subscription_id: str,
        record: ExecutionRecord,
        next_run_date: datetime,
        is_active: bool,
        consecutive_failures: int,
    ) -> None:
        """Persist the terminal record and advance the schedule atomically"""

    @abstractmethod
    async def list_executions(self, subscription_id: str, limit: int = 10) -> List[ExecutionRecord]:
        pass
