"""
Tool surface for assistant clients.

Each tool wraps one engine operation and answers with a text rendering of
its result. Database work runs on a worker thread, off the event loop. Domain failures come back as `isError: true` with the reason in
the text instead of raising.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List

from sqlalchemy.orm import Session

from autopay_engine.domain.exceptions import DomainException, ValidationError
from autopay_engine.domain.tokens import token_address
from autopay_engine.infrastructure.database.repositories import RouteCacheRepository, SubscriptionRepository
from autopay_engine.services.engine import Engine
from autopay_engine.services.subscriptions import (
    NewSubscription,
    cancel_subscription,
    create_subscription,
    list_with_latest,
)
from autopay_engine.tools import rendering

logger = logging.getLogger(__name__)

MANIFEST_NAME = "autopay-engine"
MANIFEST_VERSION = "1.0.0"


@dataclass
class ToolContext:
    engine: Engine
    db: Session
    now: datetime


ToolHandler = Callable[[ToolContext, Dict[str, Any]], Awaitable[str]]


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    input_schema: Dict[str, Any]
    handler: ToolHandler


class UnknownToolError(Exception):
    pass


def _require(arguments: Dict[str, Any], *names: str) -> List[str]:
    missing = [name for name in names if not arguments.get(name)]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    return [str(arguments[name]) for name in names]


async def _subscription_create(ctx: ToolContext, arguments: Dict[str, Any]) -> str:
    name, owner, symbol, amount, receiver, from_chain, to_chain, frequency = _require(
        arguments,
        "name",
        "ownerAddress",
        "tokenSymbol",
        "amount",
        "receiverAddress",
        "fromChain",
        "toChain",
        "frequency",
    )
    address = arguments.get("tokenAddress") or token_address(from_chain, symbol)
    if not address:
        raise ValidationError(f"tokenAddress is required for {symbol} on {from_chain}")

    subscription = await asyncio.to_thread(
        create_subscription,
        SubscriptionRepository(ctx.db),
        NewSubscription(
            name=name,
            description=arguments.get("description"),
            owner=owner,
            token_symbol=symbol,
            token_address=address,
            amount=amount,
            receiver=receiver,
            from_chain=from_chain,
            to_chain=to_chain,
            cadence=frequency,
        ),
        ctx.engine.supported_chains,
        ctx.now,
    )
    return rendering.render_subscription_created(subscription)


async def _subscription_list(ctx: ToolContext, arguments: Dict[str, Any]) -> str:
    subscriptions = await asyncio.to_thread(list_with_latest, SubscriptionRepository(ctx.db))
    return rendering.render_subscription_list(subscriptions)


async def _subscription_cancel(ctx: ToolContext, arguments: Dict[str, Any]) -> str:
    (subscription_id,) = _require(arguments, "id")
    cancelled = await asyncio.to_thread(cancel_subscription, SubscriptionRepository(ctx.db), subscription_id)
    return rendering.render_subscription_cancelled(cancelled)


async def _route_quote(ctx: ToolContext, arguments: Dict[str, Any]) -> str:
    from_chain, to_chain, token_in, token_out, amount_in, receiver = _require(
        arguments, "fromChain", "toChain", "tokenIn", "tokenOut", "amountIn", "receiverAddress"
    )
    quote = await ctx.engine.quotes.quote(from_chain, to_chain, token_in, token_out, amount_in, receiver)
    await asyncio.to_thread(RouteCacheRepository(ctx.db).upsert, quote.key, quote.data, ctx.now)
    return rendering.render_quote(quote.data, quote.plan.steps)


async def _gas_ensure(ctx: ToolContext, arguments: Dict[str, Any]) -> str:
    chain, wallet, estimate = _require(arguments, "chain", "userAddress", "estimatedGasUSD")
    plan = await ctx.engine.gas_checker.ensure(chain, wallet, estimate)
    return rendering.render_gas_plan(plan)


async def _risk_scan(ctx: ToolContext, arguments: Dict[str, Any]) -> str:
    token, receiver, chain, amount = _require(arguments, "tokenAddress", "receiverAddress", "chain", "amount")
    assessment = await ctx.engine.risk_scanner.scan(chain, token, receiver, amount)
    return rendering.render_risk(assessment)


def _schema(properties: Dict[str, Dict[str, Any]], required: List[str]) -> Dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required}


_STRING = {"type": "string"}

TOOLS: Dict[str, Tool] = {
    tool.name: tool
    for tool in (
        Tool(
            name="subscription.create",
            description="Create a recurring payment that runs automatically across chains",
            input_schema=_schema(
                {
                    "name": {"type": "string", "description": "Human-readable name for the subscription"},
                    "description": _STRING,
                    "ownerAddress": {"type": "string", "description": "Payer wallet address"},
                    "tokenSymbol": {"type": "string", "description": "Token symbol (USDC, ETH, ...)"},
                    "tokenAddress": {"type": "string", "description": "Token contract; resolved for well-known tokens"},
                    "amount": {"type": "string", "description": "Amount to send each period"},
                    "receiverAddress": {"type": "string", "description": "Destination wallet address"},
                    "fromChain": {"type": "string", "description": "Source chain"},
                    "toChain": {"type": "string", "description": "Destination chain"},
                    "frequency": {"type": "string", "enum": ["daily", "weekly", "monthly"]},
                },
                ["name", "ownerAddress", "tokenSymbol", "amount", "receiverAddress", "fromChain", "toChain", "frequency"],
            ),
            handler=_subscription_create,
        ),
        Tool(
            name="subscription.list",
            description="List subscriptions with their latest execution",
            input_schema=_schema({}, []),
            handler=_subscription_list,
        ),
        Tool(
            name="subscription.cancel",
            description="Cancel an existing subscription",
            input_schema=_schema({"id": {"type": "string", "description": "Subscription ID"}}, ["id"]),
            handler=_subscription_cancel,
        ),
        Tool(
            name="route.quote",
            description="Best route for a cross-chain payment with ranked fallbacks",
            input_schema=_schema(
                {
                    "fromChain": _STRING,
                    "toChain": _STRING,
                    "tokenIn": _STRING,
                    "tokenOut": _STRING,
                    "amountIn": _STRING,
                    "receiverAddress": _STRING,
                },
                ["fromChain", "toChain", "tokenIn", "tokenOut", "amountIn", "receiverAddress"],
            ),
            handler=_route_quote,
        ),
        Tool(
            name="gas.ensure",
            description="Check native gas balance and plan a top-up when short",
            input_schema=_schema(
                {"chain": _STRING, "userAddress": _STRING, "estimatedGasUSD": _STRING},
                ["chain", "userAddress", "estimatedGasUSD"],
            ),
            handler=_gas_ensure,
        ),
        Tool(
            name="risk.scan",
            description="Scan a payment for security risks before execution",
            input_schema=_schema(
                {"tokenAddress": _STRING, "receiverAddress": _STRING, "chain": _STRING, "amount": _STRING},
                ["tokenAddress", "receiverAddress", "chain", "amount"],
            ),
            handler=_risk_scan,
        ),
    )
}


def manifest() -> Dict[str, Any]:
    return {
        "name": MANIFEST_NAME,
        "version": MANIFEST_VERSION,
        "description": "Recurring cross-chain payment tools",
        "tools": [
            {"name": tool.name, "description": tool.description, "inputSchema": tool.input_schema}
            for tool in TOOLS.values()
        ],
    }


async def call_tool(name: str, arguments: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    """
    Run a tool and wrap its text. Commits on success, rolls back on failure.

    Raises:
        UnknownToolError: No tool registered under that name
    """
    tool = TOOLS.get(name)
    if tool is None:
        raise UnknownToolError(name)

    try:
        text = await tool.handler(ctx, arguments or {})
        await asyncio.to_thread(ctx.db.commit)
    except DomainException as e:
        await asyncio.to_thread(ctx.db.rollback)
        logger.warning("Tool %s failed: %s", name, e)
        return {"content": [{"type": "text", "text": f"{name} failed: {e}"}], "isError": True}

    return {"content": [{"type": "text", "text": text}]}
