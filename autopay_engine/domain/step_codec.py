"""
Versioned serialization for route steps.

Persisted history outlives code changes, so every blob carries a schema
version and each step a type tag. Decoders are registered per version.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Tuple, Type

from autopay_engine.domain.exceptions import StepSchemaError
from autopay_engine.domain.models import (
    ApproveStep,
    BridgeStep,
    RouteStep,
    RunProgress,
    StepKind,
    SwapStep,
    TransferStep,
)

STEP_SCHEMA_VERSION = 1

_STEP_TYPES: Dict[str, Type[RouteStep]] = {
    StepKind.APPROVE.value: ApproveStep,
    StepKind.SWAP.value: SwapStep,
    StepKind.BRIDGE.value: BridgeStep,
    StepKind.TRANSFER.value: TransferStep,
}


def step_to_dict(step: RouteStep) -> Dict[str, Any]:
    """Serialize a step to a JSON-safe dict (amounts as decimal strings)"""
    data: Dict[str, Any] = {
        "type": step.kind.value,
        "chain": step.chain,
        "tokenIn": step.token_in,
        "tokenOut": step.token_out,
        "amountIn": str(step.amount_in),
        "amountOut": str(step.amount_out),
        "protocol": step.protocol,
        "feeBps": step.fee_bps,
        "gasUSD": str(step.gas_usd),
    }
    if isinstance(step, BridgeStep):
        data["toChain"] = step.to_chain
    if isinstance(step, TransferStep):
        data["receiver"] = step.receiver
    return data


def encode_steps(steps: Iterable[RouteStep]) -> Dict[str, Any]:
    return {"version": STEP_SCHEMA_VERSION, "steps": [step_to_dict(step) for step in steps]}


def decode_steps(blob: Any) -> Tuple[RouteStep, ...]:
    """
    Decode a persisted step envelope.

    Raises:
        StepSchemaError: Unknown version, unknown step type, or malformed fields
    """
    if not isinstance(blob, dict) or "version" not in blob:
        raise StepSchemaError("Step blob is missing a schema version")

    decoder = _DECODERS.get(blob["version"])
    if decoder is None:
        raise StepSchemaError(f"Unsupported step schema version: {blob['version']}")
    return tuple(decoder(item) for item in blob.get("steps", []))


def _decode_v1(item: Dict[str, Any]) -> RouteStep:
    step_type = _STEP_TYPES.get(item.get("type"))
    if step_type is None:
        raise StepSchemaError(f"Unknown step type: {item.get('type')!r}")

    try:
        kwargs: Dict[str, Any] = {
            "chain": item["chain"],
            "token_in": item["tokenIn"],
            "token_out": item["tokenOut"],
            "amount_in": Decimal(item["amountIn"]),
            "amount_out": Decimal(item["amountOut"]),
            "protocol": item.get("protocol"),
            "fee_bps": int(item.get("feeBps", 0)),
            "gas_usd": Decimal(item.get("gasUSD", "0")),
        }
        if step_type is BridgeStep:
            kwargs["to_chain"] = item["toChain"]
        if step_type is TransferStep:
            kwargs["receiver"] = item["receiver"]
    except (KeyError, InvalidOperation, TypeError, ValueError) as e:
        raise StepSchemaError(f"Malformed {item.get('type')} step: {e}") from e

    return step_type(**kwargs)


_DECODERS: Dict[int, Callable[[Dict[str, Any]], RouteStep]] = {
    1: _decode_v1,
}


def steps_to_list(steps: Iterable[RouteStep]) -> List[Dict[str, Any]]:
    return [step_to_dict(step) for step in steps]


def encode_progress(progress: RunProgress) -> Dict[str, Any]:
    return {
        "version": STEP_SCHEMA_VERSION,
        "position": {"chain": progress.chain, "token": progress.token, "amount": str(progress.amount)},
        "steps": steps_to_list(progress.steps),
        "topUpSteps": steps_to_list(progress.top_up_steps),
        "gasCostUSD": str(progress.gas_cost_usd),
        "fallbackUsed": progress.fallback_used,
    }


def decode_progress(blob: Any) -> RunProgress:
    """
    Decode the carried state of a deferred run.

    Raises:
        StepSchemaError: Unknown version or malformed position
    """
    steps = decode_steps(blob)
    top_up_steps = decode_steps({"version": blob["version"], "steps": blob.get("topUpSteps", [])})
    try:
        position = blob["position"]
        return RunProgress(
            chain=position["chain"],
            token=position["token"],
            amount=Decimal(position["amount"]),
            steps=steps,
            top_up_steps=top_up_steps,
            gas_cost_usd=Decimal(blob.get("gasCostUSD", "0")),
            fallback_used=bool(blob.get("fallbackUsed", False)),
        )
    except (KeyError, InvalidOperation, TypeError) as e:
        raise StepSchemaError(f"Malformed run progress: {e}") from e
