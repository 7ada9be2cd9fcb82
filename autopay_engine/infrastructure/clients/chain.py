"""Chain gateway HTTP client: balances, prices, contract reads, and simulation"""

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import httpx

from autopay_engine.config import settings
from autopay_engine.domain.exceptions import ChainUnavailableError
from autopay_engine.domain.ports import ChainAdapter, SimulationResult, TokenMetadata, TxPayload


class HttpChainAdapter(ChainAdapter):
    """Client for a chain gateway service exposing JSON-RPC facts over REST"""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.chain_api_base
        self.timeout = timeout or settings.chain_call_timeout_seconds
        self._transport = transport

    async def get_native_balance(self, chain: str, address: str) -> Decimal:
        data = await self._get(chain, f"/chains/{chain}/balance/{address}")
        return self._decimal(data, "balance", chain)

    async def get_native_price_usd(self, chain: str) -> Decimal:
        data = await self._get(chain, f"/chains/{chain}/price")
        return self._decimal(data, "priceUSD", chain)

    async def get_gas_price_gwei(self, chain: str) -> Decimal:
        data = await self._get(chain, f"/chains/{chain}/gas-price")
        return self._decimal(data, "gwei", chain)

    async def is_contract(self, chain: str, address: str) -> bool:
        data = await self._get(chain, f"/chains/{chain}/code/{address}")
        return bool(data.get("isContract", False))

    async def get_token_metadata(self, chain: str, token_address: str) -> Optional[TokenMetadata]:
        data = await self._get(chain, f"/chains/{chain}/tokens/{token_address}", allow_missing=True)
        if data is None:
            return None
        try:
            return TokenMetadata(name=data["name"], symbol=data["symbol"], decimals=int(data["decimals"]))
        except (KeyError, ValueError, TypeError) as e:
            raise ChainUnavailableError(f"Invalid token metadata from {chain} gateway: {e}") from e

    async def simulate_transaction(self, sender: str, payload: TxPayload) -> SimulationResult:
        body = {
            "from": sender,
            "to": payload.to_address,
            "data": payload.data,
            "value": str(payload.value),
        }
        data = await self._request(payload.chain, "POST", f"/chains/{payload.chain}/simulate", json=body)
        try:
            return SimulationResult(
                success=bool(data["success"]),
                gas_used=int(data["gasUsed"]),
                tx_hash=data["txHash"],
                revert_reason=data.get("revertReason"),
            )
        except (KeyError, ValueError, TypeError) as e:
            raise ChainUnavailableError(f"Invalid simulation result from {payload.chain} gateway: {e}") from e

    async def _get(self, chain: str, path: str, allow_missing: bool = False) -> Optional[Dict[str, Any]]:
        return await self._request(chain, "GET", path, allow_missing=allow_missing)

    async def _request(
        self,
        chain: str,
        method: str,
        path: str,
        json: Dict[str, Any] | None = None,
        allow_missing: bool = False,
    ) -> Optional[Dict[str, Any]]:
        """
        Raises:
            ChainUnavailableError: On timeout, transport errors, HTTP errors, or invalid response
        """
        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.request(method, path, json=json)
                if allow_missing and response.status_code == 404:
                    return None
                response.raise_for_status()
                return response.json()

            except httpx.TimeoutException as e:
                raise ChainUnavailableError(f"{chain} gateway timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise ChainUnavailableError(f"{chain} gateway error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise ChainUnavailableError(f"{chain} gateway unreachable: {e}") from e
            except ValueError as e:
                raise ChainUnavailableError(f"Invalid response from {chain} gateway: {e}") from e

    @staticmethod
    def _decimal(data: Dict[str, Any], key: str, chain: str) -> Decimal:
        try:
            return Decimal(str(data[key]))
        except (KeyError, InvalidOperation) as e:
            raise ChainUnavailableError(f"Invalid {key} from {chain} gateway") from e
