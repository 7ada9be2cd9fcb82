"""
Gas sufficiency checks.

A wallet needs native gas worth at least the estimate times a fixed safety
multiplier. When it falls short, an advisory top-up route is built: swap the
funding stable token into native gas on the funding chain, then bridge it to
the target chain if the two differ.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from autopay_engine.domain.exceptions import (
    ChainUnavailableError,
    RouteUnavailableError,
    ValidationError,
)
from autopay_engine.domain.models import ZERO, BridgeStep, GasPlan, RouteStep, SwapStep
from autopay_engine.domain.ports import ChainAdapter, VenueQuote, VenueQuoter
from autopay_engine.domain.routing import GWEI, RouteValidationError
from autopay_engine.domain.tokens import GAS_UNITS, native_token
from autopay_engine.utils.amounts import (
    USD_QUANTUM,
    parse_amount,
    quantize_gas_usd,
    quantize_usd,
    quantize_usd_up,
)

logger = logging.getLogger(__name__)

GAS_SAFETY_MULTIPLIER = Decimal("1.5")

# Token amounts round down, so the grossed-up input may need a few cent bumps
MAX_SIZING_ROUNDS = 5


class GasSufficiencyChecker:
    def __init__(
        self,
        chain: ChainAdapter,
        quoter: VenueQuoter,
        funding_chain: str = "ethereum",
        funding_token: str = "USDC",
    ):
        self._chain = chain
        self._quoter = quoter
        self._funding_chain = funding_chain
        self._funding_token = funding_token

    async def ensure(
        self,
        chain: str,
        wallet: str,
        estimated_gas_usd: str | Decimal,
        funding_chain: Optional[str] = None,
    ) -> GasPlan:
        """
        Check whether a wallet holds enough native gas on a chain.

        Args:
            chain: Chain the payment will spend gas on
            wallet: Payer wallet address
            estimated_gas_usd: Gas estimate in USD (decimal string)
            funding_chain: Where top-up funds come from (defaults to settings)

        Returns:
            GasPlan with needed=False, or needed=True with top-up steps

        Raises:
            ValidationError: Negative or non-decimal estimate, missing wallet
            RouteUnavailableError: A top-up is needed but no venue can provide it
            ChainUnavailableError: Chain read failed or returned a non-positive native price
        """
        estimate = parse_amount(estimated_gas_usd, "estimatedGasUSD", allow_zero=True)
        if not wallet:
            raise ValidationError("userAddress is required")

        balance, price = await asyncio.gather(
            self._chain.get_native_balance(chain, wallet),
            self._chain.get_native_price_usd(chain),
        )
        _require_price(chain, price)
        current = balance * price
        required = estimate * GAS_SAFETY_MULTIPLIER

        if current >= required:
            return GasPlan(
                chain=chain,
                wallet=wallet,
                current_balance_usd=quantize_usd(current),
                required_usd=quantize_usd(required),
                needed=False,
            )

        source = funding_chain or self._funding_chain
        deficit = required - current
        steps, input_usd = await self._size_top_up(source, chain, deficit, price)
        logger.info(
            "Gas top-up needed on %s: balance $%s < required $%s, funding $%s from %s",
            chain,
            quantize_usd(current),
            quantize_usd(required),
            input_usd,
            source,
        )
        return GasPlan(
            chain=chain,
            wallet=wallet,
            current_balance_usd=quantize_usd(current),
            required_usd=quantize_usd(required),
            needed=True,
            top_up_steps=steps,
            top_up_input_usd=input_usd,
            funding_chain=source,
        )

    async def _size_top_up(
        self, source: str, target: str, deficit: Decimal, target_price: Decimal
    ) -> Tuple[Tuple[RouteStep, ...], Decimal]:
        """Gross the funding input up until the delivered native gas covers the deficit"""
        gas_price, source_price = await asyncio.gather(
            self._chain.get_gas_price_gwei(source),
            self._chain.get_native_price_usd(source),
        )
        _require_price(source, source_price)
        unit_cost = gas_price * GWEI * source_price

        input_usd = max(quantize_usd_up(deficit), USD_QUANTUM)
        for _ in range(MAX_SIZING_ROUNDS):
            steps = await self._build_top_up(source, target, input_usd, unit_cost)
            delivered = steps[-1].amount_out * target_price
            if delivered >= deficit:
                validate_route_prefix(steps)
                return steps, input_usd
            input_usd = max(quantize_usd_up(input_usd * deficit / delivered), input_usd + USD_QUANTUM)

        raise RouteUnavailableError(f"Could not size a gas top-up covering ${quantize_usd(deficit)} on {target}")

    async def _build_top_up(
        self, source: str, target: str, amount: Decimal, unit_cost: Decimal
    ) -> Tuple[RouteStep, ...]:
        steps: List[RouteStep] = []
        token = self._funding_token
        source_native = native_token(source)

        if token != source_native:
            quote = await self._best_quote(
                self._quoter.swap_venues(source),
                lambda venue: self._quoter.quote_swap(venue, source, token, source_native, amount),
            )
            steps.append(
                SwapStep(
                    chain=source,
                    token_in=token,
                    token_out=source_native,
                    amount_in=amount,
                    amount_out=quote.amount_out,
                    protocol=quote.venue,
                    fee_bps=quote.fee_bps,
                    gas_usd=quantize_gas_usd(GAS_UNITS["swap"] * unit_cost),
                )
            )
            token, amount = source_native, quote.amount_out

        if source != target:
            target_native = native_token(target)
            bridged_token, bridged_amount = token, amount
            quote = await self._best_quote(
                self._quoter.bridge_venues(source, target),
                lambda venue: self._quoter.quote_bridge(
                    venue, source, target, bridged_token, target_native, bridged_amount
                ),
            )
            steps.append(
                BridgeStep(
                    chain=source,
                    to_chain=target,
                    token_in=token,
                    token_out=target_native,
                    amount_in=amount,
                    amount_out=quote.amount_out,
                    protocol=quote.venue,
                    fee_bps=quote.fee_bps,
                    gas_usd=quantize_gas_usd(GAS_UNITS["bridge"] * unit_cost),
                )
            )

        if not steps:
            raise RouteUnavailableError(
                f"{self._funding_token} on {source} is already native gas; nothing to top up from"
            )
        return tuple(steps)

    async def _best_quote(
        self,
        venues: Sequence[str],
        quote: Callable[[str], Awaitable[Optional[VenueQuote]]],
    ) -> VenueQuote:
        results = await asyncio.gather(*(quote(venue) for venue in venues), return_exceptions=True)

        quotes = []
        for venue, result in zip(venues, results):
            if isinstance(result, ChainUnavailableError):
                logger.warning("Dropping venue %s for gas top-up: %s", venue, result)
                continue
            if isinstance(result, BaseException):
                raise result
            if result is not None and result.amount_out > ZERO:
                quotes.append(result)

        if not quotes:
            raise RouteUnavailableError("No venue available for gas top-up")
        return min(quotes, key=lambda q: (-q.amount_out, q.venue))


def _require_price(chain: str, price: Decimal) -> None:
    if price <= ZERO:
        raise ChainUnavailableError(f"Native price feed for {chain} returned {price}")


def validate_route_prefix(steps: Sequence[RouteStep]) -> None:
    """Continuity check for routes that end in the wallet itself (no transfer step)"""
    for index, (current, following) in enumerate(zip(steps, steps[1:])):
        if current.amount_out != following.amount_in or current.token_out != following.token_in:
            raise RouteValidationError(f"Top-up step {index} does not feed step {index + 1}.")
