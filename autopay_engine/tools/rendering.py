"""Plain-text renderings of engine results for tool callers"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

from autopay_engine.domain.models import ExecutionRecord, GasPlan, RiskAssessment, RouteStep, Subscription
from autopay_engine.utils.amounts import format_amount


def short_address(address: str) -> str:
    if len(address) <= 12:
        return address
    return f"{address[:6]}...{address[-4:]}"


def render_subscription_created(subscription: Subscription) -> str:
    return "\n".join(
        [
            f'Subscription "{subscription.name}" created.',
            f"ID: {subscription.id}",
            f"Amount: {format_amount(subscription.amount)} {subscription.token_symbol}",
            f"Route: {subscription.from_chain} -> {subscription.to_chain}",
            f"Frequency: {subscription.cadence}",
            f"Next payment: {subscription.next_run_date.date().isoformat()}",
            f"Receiver: {short_address(subscription.receiver)}",
        ]
    )


def render_subscription_list(entries: Sequence[Tuple[Subscription, Optional[ExecutionRecord]]]) -> str:
    if not entries:
        return "No subscriptions found."

    lines = [f"{len(entries)} subscription(s):"]
    for index, (subscription, latest) in enumerate(entries, start=1):
        status = "active" if subscription.is_active else "inactive"
        lines.append(
            f"{index}. {subscription.name} [{status}] {format_amount(subscription.amount)} "
            f"{subscription.token_symbol} {subscription.from_chain} -> {subscription.to_chain}, "
            f"{subscription.cadence}, next {subscription.next_run_date.date().isoformat()}"
        )
        if latest is not None:
            outcome = latest.status if latest.failure_reason is None else f"{latest.status} ({latest.failure_reason})"
            lines.append(f"   last run {latest.executed_at.date().isoformat()}: {outcome}")
    return "\n".join(lines)


def render_subscription_cancelled(subscription: Subscription) -> str:
    return f'Subscription "{subscription.name}" ({subscription.id}) cancelled.'


def render_steps(steps: Sequence[RouteStep]) -> List[str]:
    lines = []
    for index, step in enumerate(steps, start=1):
        venue = f" via {step.protocol}" if step.protocol else ""
        lines.append(
            f"{index}. {step.kind.value} {format_amount(step.amount_in)} {step.token_in} "
            f"-> {format_amount(step.amount_out)} {step.token_out} on {step.chain}{venue}"
        )
    return lines


def render_quote(data: Dict[str, Any], steps: Sequence[RouteStep]) -> str:
    lines = [
        f"Route {data['fromChain']} -> {data['toChain']}: {data['amountIn']} {data['tokenIn']} "
        f"-> {data['expectedOutput']} {data['tokenOut']}",
        *render_steps(steps),
        f"Estimated gas: ${data['gasEstimateUSD']}",
        f"Fees/slippage: {data['risk']['slippage']}",
    ]
    if data["risk"]["flags"]:
        lines.append("Flags: " + "; ".join(data["risk"]["flags"]))
    for fallback in data["fallbackRoutes"]:
        lines.append(f"Fallback via {fallback['via']}: {fallback['estOut']} {data['tokenOut']}")
    return "\n".join(lines)


def render_gas_plan(plan: GasPlan) -> str:
    lines = [
        f"Gas on {plan.chain} for {short_address(plan.wallet)}",
        f"Current balance: ${plan.current_balance_usd}",
        f"Required (with buffer): ${plan.required_usd}",
    ]
    if not plan.needed:
        lines.append("Balance is sufficient. No top-up needed.")
        return "\n".join(lines)

    lines.append(f"Top-up needed: ${plan.top_up_input_usd} from {plan.funding_chain}")
    lines.extend(render_steps(plan.top_up_steps))
    return "\n".join(lines)


def render_risk(assessment: RiskAssessment) -> str:
    lines = [
        f"Risk level: {assessment.risk_level.value.upper()}",
        f"Confidence: {assessment.confidence:.0%}",
    ]
    if assessment.flags:
        lines.append("Flags:")
        lines.extend(f"{index}. {flag}" for index, flag in enumerate(assessment.flags, start=1))
    if assessment.recommendations:
        lines.append("Recommendations:")
        lines.extend(f"{index}. {rec}" for index, rec in enumerate(assessment.recommendations, start=1))
    if not assessment.flags:
        lines.append("No risk flags detected.")
    return "\n".join(lines)
