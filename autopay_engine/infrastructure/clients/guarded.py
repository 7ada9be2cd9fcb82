"""Timeout and failure accounting around any ChainAdapter"""

import asyncio
import logging
import time
from decimal import Decimal
from typing import Awaitable, Optional, TypeVar

from autopay_engine.domain.exceptions import ChainUnavailableError
from autopay_engine.domain.ports import ChainAdapter, SimulationResult, TokenMetadata, TxPayload
from autopay_engine.infrastructure.observability.metrics import (
    chain_call_failures_counter,
    chain_call_latency_histogram,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class GuardedChainAdapter(ChainAdapter):
    """
    Bounds every call to the wrapped adapter with a timeout.

    Timeouts and connection-level errors surface as ChainUnavailableError so
    callers only deal with one transient failure type.
    """

    def __init__(self, inner: ChainAdapter, timeout_seconds: float):
        self._inner = inner
        self._timeout = timeout_seconds

    @property
    def inner(self) -> ChainAdapter:
        return self._inner

    async def _call(self, chain: str, operation: str, pending: Awaitable[T]) -> T:
        start_time = time.perf_counter()
        try:
            return await asyncio.wait_for(pending, timeout=self._timeout)
        except asyncio.TimeoutError as e:
            chain_call_failures_counter.labels(chain=chain, operation=operation).inc()
            logger.warning("Chain call %s on %s timed out after %ss", operation, chain, self._timeout)
            raise ChainUnavailableError(f"{operation} on {chain} timed out after {self._timeout}s") from e
        except ChainUnavailableError:
            chain_call_failures_counter.labels(chain=chain, operation=operation).inc()
            raise
        except ConnectionError as e:
            chain_call_failures_counter.labels(chain=chain, operation=operation).inc()
            raise ChainUnavailableError(f"{operation} on {chain} failed: {e}") from e
        finally:
            chain_call_latency_histogram.labels(operation=operation).observe(time.perf_counter() - start_time)

    async def get_native_balance(self, chain: str, address: str) -> Decimal:
        return await self._call(chain, "get_native_balance", self._inner.get_native_balance(chain, address))

    async def get_native_price_usd(self, chain: str) -> Decimal:
        return await self._call(chain, "get_native_price_usd", self._inner.get_native_price_usd(chain))

    async def get_gas_price_gwei(self, chain: str) -> Decimal:
        return await self._call(chain, "get_gas_price_gwei", self._inner.get_gas_price_gwei(chain))

    async def is_contract(self, chain: str, address: str) -> bool:
        return await self._call(chain, "is_contract", self._inner.is_contract(chain, address))

    async def get_token_metadata(self, chain: str, token_address: str) -> Optional[TokenMetadata]:
        return await self._call(chain, "get_token_metadata", self._inner.get_token_metadata(chain, token_address))

    async def simulate_transaction(self, sender: str, payload: TxPayload) -> SimulationResult:
        return await self._call(
            payload.chain, "simulate_transaction", self._inner.simulate_transaction(sender, payload)
        )
