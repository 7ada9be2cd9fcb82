"""Deterministic venue quotes from a fixed fee schedule and reference prices"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, FrozenSet, List, Optional

from autopay_engine.domain.ports import VenueQuote, VenueQuoter
from autopay_engine.domain.tokens import NATIVE_TOKENS, reference_price
from autopay_engine.utils.amounts import quantize_token

ALL_CHAINS: FrozenSet[str] = frozenset(NATIVE_TOKENS)


@dataclass(frozen=True)
class Venue:
    name: str
    fee_bps: int
    router: str
    chains: FrozenSet[str] = ALL_CHAINS


SWAP_VENUES: Dict[str, Venue] = {
    venue.name: venue
    for venue in (
        Venue("1inch", 10, "0x1111111254EEB25477B68fb85Ed929f73A960582"),
        Venue("Uniswap V3", 30, "0x68b3465833fb72A70ecDF485E0e4C7bD8665Fc45"),
        Venue("Curve", 15, "0x99a58482BD75cbab83b27EC03CA68fF489b5788f", ALL_CHAINS - {"base"}),
        Venue("Balancer", 25, "0xBA12222222228d8Ba445958a75a0704d566BF2C8"),
        Venue("SushiSwap", 35, "0xd9e1cE17f2641f24aE83637ab66a2cca9C378B9F", ALL_CHAINS - {"base"}),
    )
}

BRIDGE_VENUES: Dict[str, Venue] = {
    venue.name: venue
    for venue in (
        Venue("Socket", 10, "0x3a23F943181408EAC424116Af7b7790c94Cb97a5"),
        Venue("Across", 12, "0x5c7BCd6E7De5423a257D81B442095A1a6ced35C5"),
        Venue("Hop Protocol", 30, "0x3666f603Cc164936C1b87e207F36BEBa4AC5f18a"),
        Venue("Stargate", 80, "0x8731d54E9D02c286767d56ac03e8037C07e01e98"),
        Venue("Synapse", 50, "0x7E7A0e201FD38d3ADAA9523Da6C109a07118C96a"),
    )
}

# Average finality per chain in seconds, used for bridge time estimates
CHAIN_FINALITY_SECONDS: Dict[str, int] = {
    "ethereum": 900,
    "base": 120,
    "arbitrum": 600,
    "polygon": 300,
    "optimism": 420,
}

SWAP_SECONDS = 15


def router_address(venue: str) -> Optional[str]:
    terms = SWAP_VENUES.get(venue) or BRIDGE_VENUES.get(venue)
    return terms.router if terms else None


class FeeScheduleQuoter(VenueQuoter):
    """
    Quotes every venue from its fixed fee and the reference price table.

    The same inputs always give the same quote, so plans are reproducible.
    Tokens without a reference price cannot be quoted.
    """

    def __init__(
        self,
        swap_venues: Dict[str, Venue] | None = None,
        bridge_venues: Dict[str, Venue] | None = None,
        disabled: FrozenSet[str] = frozenset(),
    ):
        self._swap_venues = swap_venues or SWAP_VENUES
        self._bridge_venues = bridge_venues or BRIDGE_VENUES
        self._disabled = disabled

    def swap_venues(self, chain: str) -> List[str]:
        return [name for name, venue in self._swap_venues.items() if chain in venue.chains]

    def bridge_venues(self, from_chain: str, to_chain: str) -> List[str]:
        return [
            name
            for name, venue in self._bridge_venues.items()
            if from_chain in venue.chains and to_chain in venue.chains
        ]

    async def quote_swap(
        self, venue: str, chain: str, token_in: str, token_out: str, amount_in: Decimal
    ) -> Optional[VenueQuote]:
        terms = self._swap_venues.get(venue)
        if terms is None or venue in self._disabled or chain not in terms.chains:
            return None
        return self._quote(terms, token_in, token_out, amount_in, SWAP_SECONDS)

    async def quote_bridge(
        self,
        venue: str,
        from_chain: str,
        to_chain: str,
        token_in: str,
        token_out: str,
        amount_in: Decimal,
    ) -> Optional[VenueQuote]:
        terms = self._bridge_venues.get(venue)
        if terms is None or venue in self._disabled:
            return None
        if from_chain not in terms.chains or to_chain not in terms.chains:
            return None
        seconds = (CHAIN_FINALITY_SECONDS.get(from_chain, 600) + CHAIN_FINALITY_SECONDS.get(to_chain, 600)) // 2
        return self._quote(terms, token_in, token_out, amount_in, seconds)

    def _quote(
        self, terms: Venue, token_in: str, token_out: str, amount_in: Decimal, seconds: int
    ) -> Optional[VenueQuote]:
        price_in = reference_price(token_in)
        price_out = reference_price(token_out)
        if price_in is None or price_out is None:
            return None

        converted = amount_in * price_in / price_out
        amount_out = quantize_token(converted * (Decimal(10_000) - terms.fee_bps) / Decimal(10_000))
        return VenueQuote(venue=terms.name, amount_out=amount_out, fee_bps=terms.fee_bps, estimated_seconds=seconds)
