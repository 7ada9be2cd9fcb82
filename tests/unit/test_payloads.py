"""Unit tests for transaction payload encoding and venue quotes"""

import pytest
from decimal import Decimal
from autopay_engine.domain.models import ApproveStep, BridgeStep, SwapStep, TransferStep
from autopay_engine.domain.tokens import token_address
from autopay_engine.infrastructure.clients.payloads import PayloadError, encode_step, step_to_payload, steps_to_payloads
from autopay_engine.infrastructure.clients.venues import FeeScheduleQuoter, router_address

RECEIVER = "0x742d35Cc6634C0532925a3b844Bc454e4438f44e"


def decode(data: str) -> list:
    return bytes.fromhex(data[2:]).decode("utf-8").split("|")


def test_encoding_is_deterministic():
    """Test the same step and sequence always produce the same data"""
    step = BridgeStep(
        chain="ethereum",
        to_chain="polygon",
        token_in="USDC",
        token_out="USDC",
        amount_in=Decimal("100"),
        amount_out=Decimal("99.900000"),
        protocol="Socket",
    )

    assert encode_step(step, 1) == encode_step(step, 1)
    assert encode_step(step, 1) != encode_step(step, 2)
    assert decode(encode_step(step, 1)) == ["bridge", "ethereum", "USDC", "USDC", "100", "99.9", "Socket", "polygon", "1"]


def test_swap_targets_venue_router():
    step = SwapStep(
        chain="ethereum",
        token_in="USDC",
        token_out="ETH",
        amount_in=Decimal("10"),
        amount_out=Decimal("0.004"),
        protocol="1inch",
    )

    payload = step_to_payload(step)

    assert payload.to_address == router_address("1inch")
    assert payload.value == Decimal("0")


def test_approve_targets_token_and_carries_no_value():
    step = ApproveStep(
        chain="ethereum", token_in="USDC", token_out="USDC", amount_in=Decimal("100"), amount_out=Decimal("100")
    )

    payload = step_to_payload(step)

    assert payload.to_address == token_address("ethereum", "USDC")
    assert payload.value == Decimal("0")


def test_native_transfer_sends_value_to_receiver():
    step = TransferStep(
        chain="ethereum",
        token_in="ETH",
        token_out="ETH",
        amount_in=Decimal("0.5"),
        amount_out=Decimal("0.5"),
        receiver=RECEIVER,
    )

    payload = step_to_payload(step)

    assert payload.to_address == RECEIVER
    assert payload.value == Decimal("0.5")


def test_token_book_resolves_unlisted_tokens():
    step = TransferStep(
        chain="base",
        token_in="DEGEN",
        token_out="DEGEN",
        amount_in=Decimal("10"),
        amount_out=Decimal("10"),
        receiver=RECEIVER,
    )
    degen = "0x4ed4E862860beD51a9570b96d89aF5E1B0Efefed"

    with pytest.raises(PayloadError):
        step_to_payload(step)
    assert step_to_payload(step, tokens={("base", "DEGEN"): degen}).to_address == degen


def test_payload_sequence_numbers_follow_step_order():
    steps = [
        ApproveStep(chain="ethereum", token_in="USDC", token_out="USDC", amount_in=Decimal("5"), amount_out=Decimal("5")),
        TransferStep(
            chain="ethereum",
            token_in="USDC",
            token_out="USDC",
            amount_in=Decimal("5"),
            amount_out=Decimal("5"),
            receiver=RECEIVER,
        ),
    ]

    payloads = steps_to_payloads(steps, sequence_start=3)

    assert [decode(payload.data)[-1] for payload in payloads] == ["3", "4"]


async def test_fee_schedule_quote():
    """Test quote = amount * price_in / price_out * (1 - fee), rounded down"""
    quoter = FeeScheduleQuoter()

    quote = await quoter.quote_swap("Uniswap V3", "ethereum", "USDC", "ETH", Decimal("2400"))

    assert quote.amount_out == Decimal("0.997")
    assert quote.fee_bps == 30


async def test_venue_not_on_chain_returns_none():
    quoter = FeeScheduleQuoter()

    assert "Curve" not in quoter.swap_venues("base")
    assert await quoter.quote_swap("Curve", "base", "USDC", "WETH", Decimal("100")) is None
