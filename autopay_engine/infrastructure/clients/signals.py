"""Address reputation backed by configured block and watch lists"""

from typing import Iterable

from autopay_engine.domain.ports import AddressSignals, RiskSignalProvider


class StaticRiskSignals(RiskSignalProvider):
    """Case-insensitive lookups against fixed address lists (same lists on every chain)"""

    def __init__(self, blocklist: Iterable[str] = (), watchlist: Iterable[str] = ()):
        self._blocklist = frozenset(address.lower() for address in blocklist)
        self._watchlist = frozenset(address.lower() for address in watchlist)

    async def lookup(self, chain: str, address: str) -> AddressSignals:
        key = address.lower()
        return AddressSignals(
            blocklisted=key in self._blocklist,
            suspicious_activity=key in self._watchlist,
        )
