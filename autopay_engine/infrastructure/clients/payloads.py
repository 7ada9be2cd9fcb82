"""Translate route steps into unsigned transaction payloads."""

from typing import Dict, Optional, Sequence, Tuple

from autopay_engine.domain.models import BridgeStep, RouteStep, StepKind, TransferStep
from autopay_engine.domain.ports import TxPayload
from autopay_engine.domain.tokens import is_native, token_address
from autopay_engine.infrastructure.clients.venues import router_address
from autopay_engine.utils.amounts import ZERO, format_amount

# (chain, symbol) -> contract address, for tokens outside the well-known table
TokenBook = Dict[Tuple[str, str], str]


class PayloadError(ValueError):
    """Raised when a step cannot be turned into a transaction payload."""


def steps_to_payloads(
    steps: Sequence[RouteStep], sequence_start: int = 0, tokens: Optional[TokenBook] = None
) -> Tuple[TxPayload, ...]:
    return tuple(step_to_payload(step, sequence_start + index, tokens) for index, step in enumerate(steps))


def step_to_payload(step: RouteStep, sequence: int = 0, tokens: Optional[TokenBook] = None) -> TxPayload:
    to_address = _target_address(step, tokens or {})
    if to_address is None:
        raise PayloadError(f"No contract address for {step.kind.value} step on {step.chain}")

    native_in = is_native(step.chain, step.token_in)
    # Approvals never carry value
    value = step.amount_in if native_in and step.kind != StepKind.APPROVE else ZERO

    return TxPayload(
        chain=step.chain,
        to_address=to_address,
        data=encode_step(step, sequence),
        value=value,
    )


def encode_step(step: RouteStep, sequence: int = 0) -> str:
    """Deterministic hex encoding: the same step always yields the same data"""
    fields = [
        step.kind.value,
        step.chain,
        step.token_in,
        step.token_out,
        format_amount(step.amount_in),
        format_amount(step.amount_out),
        step.protocol or "",
    ]
    if isinstance(step, BridgeStep):
        fields.append(step.to_chain)
    if isinstance(step, TransferStep):
        fields.append(step.receiver)
    fields.append(str(sequence))
    return _to_hex("|".join(fields).encode("utf-8"))


def _target_address(step: RouteStep, tokens: TokenBook) -> Optional[str]:
    if step.kind in (StepKind.SWAP, StepKind.BRIDGE):
        return router_address(step.protocol) if step.protocol else None
    if isinstance(step, TransferStep) and is_native(step.chain, step.token_in):
        return step.receiver
    return tokens.get((step.chain, step.token_in)) or token_address(step.chain, step.token_in)


def _to_hex(data: bytes) -> str:
    return "0x" + data.hex()
