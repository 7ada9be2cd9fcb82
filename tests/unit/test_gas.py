"""Unit tests for gas sufficiency checks and top-up sizing"""

import pytest
from decimal import Decimal
from autopay_engine.domain.exceptions import ChainUnavailableError, RouteUnavailableError, ValidationError
from autopay_engine.domain.gas import GasSufficiencyChecker, validate_route_prefix
from autopay_engine.domain.models import BridgeStep, StepKind, SwapStep
from autopay_engine.domain.routing import RouteValidationError
from autopay_engine.infrastructure.clients.simulated_chain import SimulatedChainAdapter
from autopay_engine.infrastructure.clients.venues import SWAP_VENUES, FeeScheduleQuoter

WALLET = "0x8ba1f109551bD432803012645Ac136ddd64DBA72"


@pytest.fixture
def chain() -> SimulatedChainAdapter:
    return SimulatedChainAdapter.demo()


@pytest.fixture
def checker(chain: SimulatedChainAdapter) -> GasSufficiencyChecker:
    return GasSufficiencyChecker(chain, FeeScheduleQuoter())


async def test_sufficient_balance_needs_no_top_up(checker: GasSufficiencyChecker):
    """Test 0.05 ETH ($120) easily covers a $10 estimate"""
    plan = await checker.ensure("ethereum", WALLET, "10")

    assert plan.needed is False
    assert plan.current_balance_usd == Decimal("120.00")
    assert plan.required_usd == Decimal("15.00")
    assert plan.top_up_steps == ()


async def test_safety_multiplier_applied(chain: SimulatedChainAdapter, checker: GasSufficiencyChecker):
    """Test $0.10 balance against a $0.10 estimate: 1.5x buffer makes it short"""
    chain.set_balance("polygon", WALLET, Decimal("0.125"))  # 0.125 MATIC * $0.80

    plan = await checker.ensure("polygon", WALLET, "0.10")

    assert plan.needed is True
    assert plan.current_balance_usd == Decimal("0.10")
    assert plan.required_usd == Decimal("0.15")
    assert plan.funding_chain == "ethereum"


async def test_top_up_swaps_then_bridges(chain: SimulatedChainAdapter, checker: GasSufficiencyChecker):
    """Test funding from ethereum USDC: swap to ETH, bridge to MATIC on polygon"""
    chain.set_balance("polygon", WALLET, Decimal("0.125"))

    plan = await checker.ensure("polygon", WALLET, "0.10")

    swap, bridge = plan.top_up_steps
    assert isinstance(swap, SwapStep)
    assert (swap.chain, swap.token_in, swap.token_out) == ("ethereum", "USDC", "ETH")
    assert swap.protocol == "1inch"
    assert isinstance(bridge, BridgeStep)
    assert (bridge.to_chain, bridge.token_in, bridge.token_out) == ("polygon", "ETH", "MATIC")
    assert bridge.amount_in == swap.amount_out


async def test_top_up_delivers_at_least_the_deficit(chain: SimulatedChainAdapter, checker: GasSufficiencyChecker):
    """Test the input is grossed up for fees and rounding"""
    chain.set_balance("polygon", WALLET, Decimal("0.125"))

    plan = await checker.ensure("polygon", WALLET, "0.10")

    delivered_usd = plan.top_up_steps[-1].amount_out * Decimal("0.8")
    assert delivered_usd >= Decimal("0.05")
    assert plan.top_up_input_usd == Decimal("0.06")


async def test_same_chain_top_up_is_swap_only(chain: SimulatedChainAdapter, checker: GasSufficiencyChecker):
    chain.set_balance("ethereum", WALLET, Decimal("0"))

    plan = await checker.ensure("ethereum", WALLET, "10")

    assert plan.needed is True
    assert [step.kind for step in plan.top_up_steps] == [StepKind.SWAP]
    assert plan.top_up_steps[0].amount_out * Decimal("2400") >= Decimal("15")


async def test_funding_chain_override(chain: SimulatedChainAdapter, checker: GasSufficiencyChecker):
    chain.set_balance("base", WALLET, Decimal("0"))

    plan = await checker.ensure("base", WALLET, "1", funding_chain="arbitrum")

    assert plan.funding_chain == "arbitrum"
    assert plan.top_up_steps[0].chain == "arbitrum"
    assert plan.top_up_steps[-1].to_chain == "base"


async def test_no_swap_venue_raises(chain: SimulatedChainAdapter):
    chain.set_balance("ethereum", WALLET, Decimal("0"))
    checker = GasSufficiencyChecker(chain, FeeScheduleQuoter(disabled=frozenset(SWAP_VENUES)))

    with pytest.raises(RouteUnavailableError):
        await checker.ensure("ethereum", WALLET, "10")


async def test_invalid_estimate_rejected(checker: GasSufficiencyChecker):
    with pytest.raises(ValidationError):
        await checker.ensure("ethereum", WALLET, "-1")
    with pytest.raises(ValidationError):
        await checker.ensure("ethereum", WALLET, "ten dollars")


async def test_zero_estimate_is_sufficient(checker: GasSufficiencyChecker):
    plan = await checker.ensure("ethereum", WALLET, "0")

    assert plan.needed is False


async def test_balance_lookup_failure_propagates(chain: SimulatedChainAdapter, checker: GasSufficiencyChecker):
    chain.mark_unavailable("ethereum")

    with pytest.raises(ChainUnavailableError):
        await checker.ensure("ethereum", WALLET, "10")


async def test_zero_native_price_is_a_chain_failure(chain: SimulatedChainAdapter, checker: GasSufficiencyChecker):
    """Test a price feed answering 0 fails the check instead of dividing by it"""
    chain.set_balance("polygon", WALLET, Decimal("0.125"))
    chain.set_native_price("polygon", Decimal("0"))

    with pytest.raises(ChainUnavailableError):
        await checker.ensure("polygon", WALLET, "0.10")


async def test_zero_funding_price_is_a_chain_failure(chain: SimulatedChainAdapter, checker: GasSufficiencyChecker):
    chain.set_balance("polygon", WALLET, Decimal("0.125"))
    chain.set_native_price("ethereum", Decimal("0"))

    with pytest.raises(ChainUnavailableError):
        await checker.ensure("polygon", WALLET, "0.10")


def test_validate_route_prefix_requires_continuity():
    swap = SwapStep(
        chain="ethereum", token_in="USDC", token_out="ETH", amount_in=Decimal("10"), amount_out=Decimal("0.004")
    )
    bridge = BridgeStep(
        chain="ethereum",
        to_chain="polygon",
        token_in="ETH",
        token_out="MATIC",
        amount_in=Decimal("0.005"),
        amount_out=Decimal("12"),
    )

    with pytest.raises(RouteValidationError):
        validate_route_prefix([swap, bridge])
