"""Route quotes for callers: plan, shape for the wire, and bundle"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List

from autopay_engine.domain.exceptions import ValidationError
from autopay_engine.domain.models import RouteCandidate, RoutePlan
from autopay_engine.domain.routing import RoutePlanner, format_bps
from autopay_engine.domain.step_codec import steps_to_list
from autopay_engine.infrastructure.clients.payloads import PayloadError, steps_to_payloads
from autopay_engine.infrastructure.observability.metrics import route_quote_counter
from autopay_engine.utils.amounts import format_amount, parse_amount


def route_key(from_chain: str, to_chain: str, token_in: str, amount_in: str | Decimal) -> str:
    """Cache key: fromChain-toChain-tokenIn-amountIn with the amount normalized (1500.0 -> 1500)"""
    return f"{from_chain}-{to_chain}-{token_in}-{format_amount(parse_amount(amount_in, 'amountIn'))}"


@dataclass(frozen=True)
class RouteQuote:
    key: str
    plan: RoutePlan
    data: Dict[str, Any]


class QuoteService:
    def __init__(self, planner: RoutePlanner):
        self._planner = planner

    async def quote(
        self,
        from_chain: str,
        to_chain: str,
        token_in: str,
        token_out: str,
        amount_in: str,
        receiver: str,
    ) -> RouteQuote:
        """
        Plan a route and shape it for callers. Caching the result is up to the caller.

        Raises:
            ValidationError, RouteUnavailableError, ChainUnavailableError
        """
        try:
            plan = await self._planner.plan(from_chain, to_chain, token_in, token_out, amount_in, receiver)
            bundle = build_bundle(plan)
        except Exception as e:
            route_quote_counter.labels(outcome=type(e).__name__).inc()
            raise
        route_quote_counter.labels(outcome="ok").inc()

        key = route_key(from_chain, to_chain, token_in, amount_in)
        return RouteQuote(key=key, plan=plan, data=plan_to_dict(plan, key, bundle))


def build_bundle(plan: RoutePlan) -> List[Dict[str, str]]:
    """One unsigned payload per primary step; the same plan always gives the same bundle"""
    try:
        payloads = steps_to_payloads(plan.steps)
    except PayloadError as e:
        raise ValidationError(f"Cannot build transaction bundle: {e}") from e
    return [
        {"chain": payload.chain, "to": payload.to_address, "value": format_amount(payload.value), "tx": payload.data}
        for payload in payloads
    ]


def plan_to_dict(plan: RoutePlan, key: str, bundle: List[Dict[str, str]]) -> Dict[str, Any]:
    return {
        "routeKey": key,
        "fromChain": plan.from_chain,
        "toChain": plan.to_chain,
        "tokenIn": plan.token_in,
        "tokenOut": plan.token_out,
        "amountIn": format_amount(plan.amount_in),
        "receiverAddress": plan.receiver,
        "steps": steps_to_list(plan.steps),
        "expectedOutput": format_amount(plan.expected_output),
        "gasEstimateUSD": str(plan.gas_estimate_usd),
        "risk": {"slippage": format_bps(plan.slippage_bps), "flags": list(plan.flags)},
        "fallbackRoutes": [_fallback_to_dict(candidate) for candidate in plan.fallbacks],
        "bundle": bundle,
        "quotedAt": plan.quoted_at.isoformat(),
    }


def _fallback_to_dict(candidate: RouteCandidate) -> Dict[str, Any]:
    return {
        "via": candidate.venue,
        "estOut": format_amount(candidate.expected_output),
        "steps": steps_to_list(candidate.steps),
    }
