"""Unit tests for chain adapters: timeout guard and the HTTP gateway client"""

import httpx
import pytest
from decimal import Decimal
from unittest.mock import AsyncMock
from autopay_engine.domain.exceptions import ChainUnavailableError
from autopay_engine.domain.ports import TxPayload
from autopay_engine.infrastructure.clients.chain import HttpChainAdapter
from autopay_engine.infrastructure.clients.guarded import GuardedChainAdapter
from autopay_engine.infrastructure.clients.simulated_chain import SimulatedChainAdapter

WALLET = "0x8ba1f109551bD432803012645Ac136ddd64DBA72"


async def test_guard_times_out_slow_calls():
    """Test a hung adapter surfaces as ChainUnavailableError within the timeout"""
    guarded = GuardedChainAdapter(SimulatedChainAdapter.demo(latency_seconds=1.0), timeout_seconds=0.01)

    with pytest.raises(ChainUnavailableError):
        await guarded.get_native_balance("ethereum", WALLET)


async def test_guard_maps_connection_errors():
    inner = SimulatedChainAdapter.demo()
    inner.get_gas_price_gwei = AsyncMock(side_effect=ConnectionError("connection reset"))
    guarded = GuardedChainAdapter(inner, timeout_seconds=1.0)

    with pytest.raises(ChainUnavailableError):
        await guarded.get_gas_price_gwei("ethereum")


async def test_guard_passes_results_through():
    guarded = GuardedChainAdapter(SimulatedChainAdapter.demo(), timeout_seconds=1.0)

    assert await guarded.get_native_price_usd("polygon") == Decimal("0.8")


async def test_simulated_failures_are_scripted():
    chain = SimulatedChainAdapter.demo()
    chain.script_failure(times=1, reason="out of gas")
    payload = TxPayload(chain="ethereum", to_address=WALLET, data="0x", value=Decimal("0"))

    failed = await chain.simulate_transaction(WALLET, payload)
    passed = await chain.simulate_transaction(WALLET, payload)

    assert failed.success is False
    assert failed.revert_reason == "out of gas"
    assert passed.success is True
    assert failed.tx_hash != passed.tx_hash


def gateway(handler) -> HttpChainAdapter:
    return HttpChainAdapter(base_url="http://gateway.test", timeout=1.0, transport=httpx.MockTransport(handler))


async def test_http_balance_and_price():
    """Test decimal strings from the gateway are parsed exactly"""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == f"/chains/base/balance/{WALLET}":
            return httpx.Response(200, json={"balance": "0.012345678901234567"})
        if request.url.path == "/chains/base/price":
            return httpx.Response(200, json={"priceUSD": "2400.50"})
        return httpx.Response(404)

    adapter = gateway(handler)

    assert await adapter.get_native_balance("base", WALLET) == Decimal("0.012345678901234567")
    assert await adapter.get_native_price_usd("base") == Decimal("2400.50")


async def test_http_unknown_token_is_none():
    adapter = gateway(lambda request: httpx.Response(404, json={"detail": "token not found"}))

    assert await adapter.get_token_metadata("ethereum", WALLET) is None


async def test_http_server_error_is_unavailable():
    adapter = gateway(lambda request: httpx.Response(502))

    with pytest.raises(ChainUnavailableError):
        await adapter.get_gas_price_gwei("ethereum")


async def test_http_transport_error_is_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ChainUnavailableError):
        await gateway(handler).is_contract("ethereum", WALLET)


async def test_http_missing_field_is_unavailable():
    adapter = gateway(lambda request: httpx.Response(200, json={"unexpected": True}))

    with pytest.raises(ChainUnavailableError):
        await adapter.get_gas_price_gwei("ethereum")


async def test_http_simulate_posts_payload():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = request.read()
        return httpx.Response(200, json={"success": True, "gasUsed": 21000, "txHash": "0xabc", "revertReason": None})

    payload = TxPayload(chain="polygon", to_address=WALLET, data="0x7472616e73666572", value=Decimal("1.5"))
    result = await gateway(handler).simulate_transaction(WALLET, payload)

    assert seen["path"] == "/chains/polygon/simulate"
    assert b'"value":"1.5"' in seen["body"].replace(b" ", b"")
    assert result.success is True
    assert result.gas_used == 21000
    assert result.tx_hash == "0xabc"
