"""In-memory chain adapter with deterministic facts, for local runs and tests"""

import asyncio
import hashlib
from dataclasses import dataclass
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

from autopay_engine.domain.exceptions import ChainUnavailableError
from autopay_engine.domain.ports import ChainAdapter, SimulationResult, TokenMetadata, TxPayload
from autopay_engine.domain.tokens import GAS_UNITS, TOKEN_ADDRESSES, native_token, reference_price
from autopay_engine.infrastructure.clients.venues import BRIDGE_VENUES, SWAP_VENUES

ZERO = Decimal("0")

DEMO_GAS_PRICES_GWEI: Dict[str, Decimal] = {
    "ethereum": Decimal("25"),
    "base": Decimal("0.1"),
    "arbitrum": Decimal("0.5"),
    "polygon": Decimal("30"),
    "optimism": Decimal("0.2"),
}

DEMO_TOKEN_METADATA: Dict[str, TokenMetadata] = {
    "USDC": TokenMetadata(name="USD Coin", symbol="USDC", decimals=6),
    "USDT": TokenMetadata(name="Tether USD", symbol="USDT", decimals=6),
    "WETH": TokenMetadata(name="Wrapped Ether", symbol="WETH", decimals=18),
    "WBTC": TokenMetadata(name="Wrapped BTC", symbol="WBTC", decimals=8),
}

DEMO_NATIVE_BALANCE = Decimal("0.05")

SimulateHook = Callable[[TxPayload], Awaitable[None]]


@dataclass(frozen=True)
class ChainFacts:
    native_price_usd: Decimal
    gas_price_gwei: Decimal


@dataclass
class ScriptedFailure:
    """Revert the next `remaining` simulations sent to `to_address` (any target when None)"""

    to_address: Optional[str]
    remaining: int
    reason: str


class SimulatedChainAdapter(ChainAdapter):
    def __init__(
        self,
        chains: Dict[str, ChainFacts],
        default_native_balance: Decimal = ZERO,
        latency_seconds: float = 0.0,
    ):
        self._chains = dict(chains)
        self._default_balance = default_native_balance
        self._balances: Dict[Tuple[str, str], Decimal] = {}
        self._contracts: Set[Tuple[str, str]] = set()
        self._tokens: Dict[Tuple[str, str], TokenMetadata] = {}
        self._unavailable: Set[str] = set()
        self._failures: List[ScriptedFailure] = []
        self._nonces: Dict[str, int] = {}
        self.latency_seconds = latency_seconds
        self.on_simulate: Optional[SimulateHook] = None
        self.simulated: List[TxPayload] = []

    @classmethod
    def demo(cls, latency_seconds: float = 0.0) -> "SimulatedChainAdapter":
        """Five chains with well-known tokens and venue routers deployed"""
        chains = {
            chain: ChainFacts(
                native_price_usd=reference_price(native_token(chain)),
                gas_price_gwei=gwei,
            )
            for chain, gwei in DEMO_GAS_PRICES_GWEI.items()
        }
        adapter = cls(chains, default_native_balance=DEMO_NATIVE_BALANCE, latency_seconds=latency_seconds)

        for chain, tokens in TOKEN_ADDRESSES.items():
            for symbol, address in tokens.items():
                adapter.add_token(chain, address, DEMO_TOKEN_METADATA[symbol])
            for venue in list(SWAP_VENUES.values()) + list(BRIDGE_VENUES.values()):
                if chain in venue.chains:
                    adapter.add_contract(chain, venue.router)
        return adapter

    # Fixture setup

    def set_balance(self, chain: str, address: str, amount: Decimal) -> None:
        self._balances[(chain, address.lower())] = amount

    def add_contract(self, chain: str, address: str) -> None:
        self._contracts.add((chain, address.lower()))

    def add_token(self, chain: str, address: str, metadata: TokenMetadata) -> None:
        self.add_contract(chain, address)
        self._tokens[(chain, address.lower())] = metadata

    def set_gas_price(self, chain: str, gwei: Decimal) -> None:
        facts = self._facts(chain)
        self._chains[chain] = ChainFacts(native_price_usd=facts.native_price_usd, gas_price_gwei=gwei)

    def set_native_price(self, chain: str, usd: Decimal) -> None:
        facts = self._facts(chain)
        self._chains[chain] = ChainFacts(native_price_usd=usd, gas_price_gwei=facts.gas_price_gwei)

    def mark_unavailable(self, chain: str) -> None:
        self._unavailable.add(chain)

    def mark_available(self, chain: str) -> None:
        self._unavailable.discard(chain)

    def script_failure(self, to_address: Optional[str] = None, times: int = 1, reason: str = "execution reverted") -> None:
        self._failures.append(ScriptedFailure(to_address.lower() if to_address else None, times, reason))

    # ChainAdapter

    async def get_native_balance(self, chain: str, address: str) -> Decimal:
        await self._enter(chain)
        return self._balances.get((chain, address.lower()), self._default_balance)

    async def get_native_price_usd(self, chain: str) -> Decimal:
        await self._enter(chain)
        return self._facts(chain).native_price_usd

    async def get_gas_price_gwei(self, chain: str) -> Decimal:
        await self._enter(chain)
        return self._facts(chain).gas_price_gwei

    async def is_contract(self, chain: str, address: str) -> bool:
        await self._enter(chain)
        return (chain, address.lower()) in self._contracts

    async def get_token_metadata(self, chain: str, token_address: str) -> Optional[TokenMetadata]:
        await self._enter(chain)
        return self._tokens.get((chain, token_address.lower()))

    async def simulate_transaction(self, sender: str, payload: TxPayload) -> SimulationResult:
        await self._enter(payload.chain)
        self.simulated.append(payload)
        if self.on_simulate is not None:
            await self.on_simulate(payload)

        nonce = self._nonces.get(sender.lower(), 0)
        self._nonces[sender.lower()] = nonce + 1
        tx_hash = _tx_hash(sender, payload, nonce)

        failure = self._take_failure(payload.to_address)
        if failure is not None:
            return SimulationResult(success=False, gas_used=0, tx_hash=tx_hash, revert_reason=failure.reason)
        return SimulationResult(success=True, gas_used=_gas_for(payload), tx_hash=tx_hash)

    async def _enter(self, chain: str) -> None:
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)
        if chain in self._unavailable:
            raise ChainUnavailableError(f"RPC for {chain} is unavailable")

    def _facts(self, chain: str) -> ChainFacts:
        facts = self._chains.get(chain)
        if facts is None:
            raise ChainUnavailableError(f"No RPC configured for chain {chain}")
        return facts

    def _take_failure(self, to_address: str) -> Optional[ScriptedFailure]:
        for failure in self._failures:
            if failure.remaining > 0 and failure.to_address in (None, to_address.lower()):
                failure.remaining -= 1
                return failure
        return None


def _gas_for(payload: TxPayload) -> int:
    """Gas units by step kind, read from the encoded payload's leading field"""
    try:
        kind = bytes.fromhex(payload.data[2:]).decode("utf-8").split("|", 1)[0]
    except ValueError:
        return GAS_UNITS["transfer"]
    return GAS_UNITS.get(kind, GAS_UNITS["transfer"])


def _tx_hash(sender: str, payload: TxPayload, nonce: int) -> str:
    material = f"{sender.lower()}|{payload.chain}|{payload.to_address.lower()}|{payload.data}|{payload.value}|{nonce}"
    return "0x" + hashlib.sha256(material.encode("utf-8")).hexdigest()
