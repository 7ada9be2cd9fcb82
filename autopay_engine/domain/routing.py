"""Route planning: swap/bridge/transfer sequences with ranked fallback routes"""

import asyncio
import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from autopay_engine.domain.exceptions import (
    ChainUnavailableError,
    RouteUnavailableError,
    ValidationError,
)
from autopay_engine.domain.models import (
    ZERO,
    ApproveStep,
    BridgeStep,
    RouteCandidate,
    RoutePlan,
    RouteStep,
    StepKind,
    SwapStep,
    TransferStep,
)
from autopay_engine.domain.ports import ChainAdapter, VenueQuote, VenueQuoter
from autopay_engine.domain.tokens import GAS_UNITS, is_native
from autopay_engine.utils.amounts import parse_amount, quantize_gas_usd
from autopay_engine.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

GWEI = Decimal("0.000000001")


class RouteValidationError(ValueError):
    """Raised when a built route violates amount continuity rules."""


class RoutePlanner:
    """Builds payment routes and ranks venue alternatives by expected output."""

    def __init__(
        self,
        chain: ChainAdapter,
        quoter: VenueQuoter,
        supported_chains: Sequence[str],
        max_fallbacks: int = 3,
        max_slippage_bps: int = 100,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._chain = chain
        self._quoter = quoter
        self._supported_chains = tuple(supported_chains)
        self._max_fallbacks = max_fallbacks
        self._max_slippage_bps = max_slippage_bps
        self._clock = clock

    async def plan(
        self,
        from_chain: str,
        to_chain: str,
        token_in: str,
        token_out: str,
        amount_in: str | Decimal,
        receiver: str,
    ) -> RoutePlan:
        """
        Plan a payment route.

        Raises:
            ValidationError: Malformed request (checked before any external query)
            RouteUnavailableError: No venue could quote the required leg
            ChainUnavailableError: Gas price lookups failed
        """
        amount = parse_amount(amount_in, "amountIn")
        self._validate_request(from_chain, to_chain, token_in, token_out, receiver)

        unit_costs = await self._gas_unit_costs({from_chain, to_chain})
        leg = leg_kind(from_chain, to_chain, token_in, token_out)

        if leg is None:
            candidates = [
                RouteCandidate(
                    venue=None,
                    steps=(self._transfer_step(to_chain, token_out, amount, receiver, unit_costs),),
                )
            ]
        else:
            venues = self._venues_for(leg, from_chain, to_chain)
            built = await asyncio.gather(
                *(
                    self._build_candidate(
                        leg, venue, from_chain, to_chain, token_in, token_out, amount, receiver, unit_costs
                    )
                    for venue in venues
                )
            )
            candidates = [candidate for candidate in built if candidate is not None]

        if not candidates:
            raise RouteUnavailableError(
                f"No venue could route {token_in} on {from_chain} to {token_out} on {to_chain}"
            )

        # Highest output first; venue name keeps equal quotes in a stable order
        candidates.sort(key=lambda candidate: (-candidate.expected_output, candidate.venue or ""))
        for candidate in candidates:
            validate_route(candidate.steps)

        primary = candidates[0]
        fallbacks = tuple(candidates[1 : 1 + self._max_fallbacks])
        slippage_bps = route_fee_bps(primary.steps)

        flags: List[str] = []
        if slippage_bps > self._max_slippage_bps:
            flags.append(f"High slippage: {format_bps(slippage_bps)}")
        if leg is not None and not fallbacks:
            flags.append("No fallback route available")

        return RoutePlan(
            from_chain=from_chain,
            to_chain=to_chain,
            token_in=token_in,
            token_out=token_out,
            amount_in=amount,
            receiver=receiver,
            primary=primary,
            fallbacks=fallbacks,
            gas_estimate_usd=quantize_gas_usd(primary.gas_usd),
            slippage_bps=slippage_bps,
            quoted_at=self._clock(),
            flags=tuple(flags),
        )

    async def requote(
        self,
        chain: str,
        token: str,
        amount: Decimal,
        to_chain: str,
        token_out: str,
        receiver: str,
        venue: Optional[str],
    ) -> Tuple[RouteStep, ...]:
        """
        Build fresh steps from the current funds position using one venue.

        Used after a step failure: whatever has settled stays settled, the
        remaining path is quoted again rather than replaying stale amounts.
        """
        unit_costs = await self._gas_unit_costs({chain, to_chain})
        leg = leg_kind(chain, to_chain, token, token_out)
        if leg is None:
            return (self._transfer_step(to_chain, token_out, amount, receiver, unit_costs),)

        if venue not in self._venues_for(leg, chain, to_chain):
            raise RouteUnavailableError(f"{venue} cannot serve a {leg.value} from {chain} to {to_chain}")

        candidate = await self._build_candidate(
            leg, venue, chain, to_chain, token, token_out, amount, receiver, unit_costs
        )
        if candidate is None:
            raise RouteUnavailableError(f"{venue} returned no quote for the remaining route")
        validate_route(candidate.steps)
        return candidate.steps

    async def estimate_gas_usd(self, from_chain: str, to_chain: str, token_in: str, token_out: str) -> Decimal:
        """Source-chain gas a route would need, without quoting any venue"""
        unit_costs = await self._gas_unit_costs({from_chain})
        leg = leg_kind(from_chain, to_chain, token_in, token_out)

        kinds: List[str] = []
        if leg is not None:
            if not is_native(from_chain, token_in):
                kinds.append(StepKind.APPROVE.value)
            kinds.append(leg.value)
        if from_chain == to_chain:
            kinds.append(StepKind.TRANSFER.value)

        units = sum(GAS_UNITS[kind] for kind in kinds)
        return quantize_gas_usd(units * unit_costs[from_chain])

    def _validate_request(
        self, from_chain: str, to_chain: str, token_in: str, token_out: str, receiver: str
    ) -> None:
        for name, chain in (("fromChain", from_chain), ("toChain", to_chain)):
            if chain not in self._supported_chains:
                raise ValidationError(f"Unsupported {name}: {chain}")
        if not token_in or not token_out:
            raise ValidationError("tokenIn and tokenOut are required")
        if not receiver:
            raise ValidationError("receiverAddress is required")

    def _venues_for(self, leg: StepKind, from_chain: str, to_chain: str) -> List[str]:
        if leg == StepKind.SWAP:
            return self._quoter.swap_venues(from_chain)
        return self._quoter.bridge_venues(from_chain, to_chain)

    async def _gas_unit_costs(self, chains: Iterable[str]) -> Dict[str, Decimal]:
        """USD cost of one gas unit per chain; price lookups run concurrently"""
        ordered = sorted(chains)
        lookups = await asyncio.gather(
            *(
                asyncio.gather(self._chain.get_gas_price_gwei(chain), self._chain.get_native_price_usd(chain))
                for chain in ordered
            )
        )
        return {chain: gwei * GWEI * price for chain, (gwei, price) in zip(ordered, lookups)}

    async def _build_candidate(
        self,
        leg: StepKind,
        venue: str,
        from_chain: str,
        to_chain: str,
        token_in: str,
        token_out: str,
        amount: Decimal,
        receiver: str,
        unit_costs: Dict[str, Decimal],
    ) -> Optional[RouteCandidate]:
        steps: List[RouteStep] = []
        if not is_native(from_chain, token_in):
            steps.append(
                ApproveStep(
                    chain=from_chain,
                    token_in=token_in,
                    token_out=token_in,
                    amount_in=amount,
                    amount_out=amount,
                    protocol=venue,
                    gas_usd=_step_gas(StepKind.APPROVE, from_chain, unit_costs),
                )
            )

        if leg == StepKind.SWAP:
            quote = await self._quote(
                self._quoter.quote_swap(venue, from_chain, token_in, token_out, amount), venue
            )
            if quote is None:
                return None
            steps.append(
                SwapStep(
                    chain=from_chain,
                    token_in=token_in,
                    token_out=token_out,
                    amount_in=amount,
                    amount_out=quote.amount_out,
                    protocol=venue,
                    fee_bps=quote.fee_bps,
                    gas_usd=_step_gas(StepKind.SWAP, from_chain, unit_costs),
                )
            )
        else:
            quote = await self._quote(
                self._quoter.quote_bridge(venue, from_chain, to_chain, token_in, token_out, amount), venue
            )
            if quote is None:
                return None
            steps.append(
                BridgeStep(
                    chain=from_chain,
                    to_chain=to_chain,
                    token_in=token_in,
                    token_out=token_out,
                    amount_in=amount,
                    amount_out=quote.amount_out,
                    protocol=venue,
                    fee_bps=quote.fee_bps,
                    gas_usd=_step_gas(StepKind.BRIDGE, from_chain, unit_costs),
                )
            )

        if quote.amount_out <= ZERO:
            return None
        steps.append(self._transfer_step(to_chain, token_out, quote.amount_out, receiver, unit_costs))
        return RouteCandidate(venue=venue, steps=tuple(steps))

    async def _quote(self, pending, venue: str) -> Optional[VenueQuote]:
        try:
            return await pending
        except ChainUnavailableError as e:
            logger.warning("Dropping venue %s: quote unavailable (%s)", venue, e)
            return None

    def _transfer_step(
        self, chain: str, token: str, amount: Decimal, receiver: str, unit_costs: Dict[str, Decimal]
    ) -> TransferStep:
        return TransferStep(
            chain=chain,
            token_in=token,
            token_out=token,
            amount_in=amount,
            amount_out=amount,
            receiver=receiver,
            gas_usd=_step_gas(StepKind.TRANSFER, chain, unit_costs),
        )


def validate_route(steps: Sequence[RouteStep]) -> None:
    """
    Check the amount invariants of a step sequence.

    - at least one step, ending in a transfer
    - every amount positive
    - step n output == step n+1 input (same token)
    - within one token denomination amounts never grow
    """
    if not steps:
        raise RouteValidationError("Route must include at least one step.")
    if not isinstance(steps[-1], TransferStep):
        raise RouteValidationError("Route must end with a transfer step.")

    for index, step in enumerate(steps):
        if step.amount_in <= ZERO or step.amount_out <= ZERO:
            raise RouteValidationError(f"Step {index} amounts must be positive.")
        if step.token_in == step.token_out and step.amount_out > step.amount_in:
            raise RouteValidationError(f"Step {index} outputs more than its input.")

    for index, (current, following) in enumerate(zip(steps, steps[1:])):
        if current.amount_out != following.amount_in:
            raise RouteValidationError(f"Step {index} output does not feed step {index + 1}.")
        if current.token_out != following.token_in:
            raise RouteValidationError(f"Step {index} token does not feed step {index + 1}.")


def route_fee_bps(steps: Sequence[RouteStep]) -> int:
    """Compound venue fees of a route, in basis points"""
    kept = Decimal(1)
    for step in steps:
        kept *= Decimal(1) - Decimal(step.fee_bps) / Decimal(10_000)
    return int(((Decimal(1) - kept) * Decimal(10_000)).to_integral_value())


def format_bps(bps: int) -> str:
    return f"{Decimal(bps) / Decimal(100):.2f}%"


def leg_kind(from_chain: str, to_chain: str, token_in: str, token_out: str) -> Optional[StepKind]:
    """Cross-chain or token-changing leg still needed to reach the destination; None when only a transfer remains"""
    if from_chain != to_chain:
        return StepKind.BRIDGE
    if token_in != token_out:
        return StepKind.SWAP
    return None


def _step_gas(kind: StepKind, chain: str, unit_costs: Dict[str, Decimal]) -> Decimal:
    return quantize_gas_usd(GAS_UNITS[kind.value] * unit_costs[chain])
