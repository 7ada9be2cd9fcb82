"""Unit tests for the assistant tool surface"""

import pytest
from autopay_engine.infrastructure.database.repositories import RouteCacheRepository, SubscriptionRepository
from autopay_engine.services.quotes import route_key
from autopay_engine.tools.registry import TOOLS, ToolContext, UnknownToolError, call_tool, manifest

RECEIVER = "0x742d35Cc6634C0532925a3b844Bc454e4438f44e"

CREATE_ARGS = {
    "name": "Netflix",
    "ownerAddress": "0x8ba1f109551bD432803012645Ac136ddd64DBA72",
    "tokenSymbol": "usdc",
    "amount": "15.99",
    "receiverAddress": RECEIVER,
    "fromChain": "ethereum",
    "toChain": "base",
    "frequency": "monthly",
}


@pytest.fixture
def ctx(autopay, db, clock) -> ToolContext:
    return ToolContext(engine=autopay, db=db, now=clock.now)


def text_of(result: dict) -> str:
    return result["content"][0]["text"]


def test_manifest_lists_every_tool():
    data = manifest()

    assert [tool["name"] for tool in data["tools"]] == list(TOOLS)
    assert {tool["name"] for tool in data["tools"]} == {
        "subscription.create",
        "subscription.list",
        "subscription.cancel",
        "route.quote",
        "gas.ensure",
        "risk.scan",
    }
    assert all(tool["inputSchema"]["type"] == "object" for tool in data["tools"])


async def test_create_then_list_and_cancel(ctx: ToolContext, db):
    """Test the subscription tools share state through the database"""
    created = await call_tool("subscription.create", CREATE_ARGS, ctx)

    assert "isError" not in created
    assert 'Subscription "Netflix" created.' in text_of(created)
    assert "15.99 USDC" in text_of(created)
    assert "Next payment: 2026-04-02" in text_of(created)

    subscription = SubscriptionRepository(db).list_subscriptions()[0]
    assert subscription.token_symbol == "USDC"
    assert subscription.token_address == "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"

    listed = await call_tool("subscription.list", {}, ctx)
    assert "1 subscription(s):" in text_of(listed)
    assert "[active]" in text_of(listed)

    cancelled = await call_tool("subscription.cancel", {"id": subscription.id}, ctx)
    assert "cancelled" in text_of(cancelled)
    assert SubscriptionRepository(db).get(subscription.id).is_active is False


async def test_missing_arguments_reported_as_error(ctx: ToolContext):
    result = await call_tool("subscription.create", {"name": "Gym"}, ctx)

    assert result["isError"] is True
    assert "Missing required fields" in text_of(result)


async def test_cancel_unknown_subscription_is_error(ctx: ToolContext):
    result = await call_tool("subscription.cancel", {"id": "nope"}, ctx)

    assert result["isError"] is True
    assert "not found" in text_of(result)


async def test_route_quote_populates_cache(ctx: ToolContext, db, clock):
    args = {
        "fromChain": "ethereum",
        "toChain": "polygon",
        "tokenIn": "USDC",
        "tokenOut": "USDC",
        "amountIn": "100",
        "receiverAddress": RECEIVER,
    }

    result = await call_tool("route.quote", args, ctx)

    assert "Route ethereum -> polygon: 100 USDC -> 99.9 USDC" in text_of(result)
    assert "Fallback via Across: 99.88 USDC" in text_of(result)
    cached = RouteCacheRepository(db).get_fresh(route_key("ethereum", "polygon", "USDC", "100"), clock.now)
    assert cached["expectedOutput"] == "99.9"


async def test_gas_ensure_tool(ctx: ToolContext):
    result = await call_tool(
        "gas.ensure",
        {"chain": "ethereum", "userAddress": CREATE_ARGS["ownerAddress"], "estimatedGasUSD": "5"},
        ctx,
    )

    assert "Balance is sufficient. No top-up needed." in text_of(result)


async def test_risk_scan_tool(ctx: ToolContext):
    result = await call_tool(
        "risk.scan",
        {
            "tokenAddress": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
            "receiverAddress": RECEIVER,
            "chain": "ethereum",
            "amount": "2500",
        },
        ctx,
    )

    assert "Risk level: MEDIUM" in text_of(result)
    assert "High value transaction" in text_of(result)


async def test_unknown_tool_raises(ctx: ToolContext):
    with pytest.raises(UnknownToolError):
        await call_tool("wallet.drain", {}, ctx)
