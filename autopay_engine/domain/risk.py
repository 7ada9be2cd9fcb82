"""
Risk scanning for a single payment.

Rules run in a fixed order and may only raise the running level. Chain facts
are gathered concurrently up front; a lookup that fails is treated as
degraded data and lowers confidence instead of aborting the scan.
"""

import asyncio
import logging
import re
from decimal import Decimal
from typing import Any, List, Optional

from autopay_engine.domain.exceptions import ChainUnavailableError, ValidationError
from autopay_engine.domain.models import RiskAssessment, RiskLevel
from autopay_engine.domain.ports import AddressSignals, ChainAdapter, RiskSignalProvider, TokenMetadata
from autopay_engine.utils.amounts import parse_amount

logger = logging.getLogger(__name__)

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")

SCAM_PREFIXES = ("0x000", "0xdead")
_REPEATED_HEX = re.compile(r"([0-9a-f])\1{7,}")
_DIGITS = "0123456789"
_DIGIT_RUNS = tuple(
    sequence[i : i + 8] for sequence in (_DIGITS, _DIGITS[::-1]) for i in range(len(sequence) - 7)
)

FULL_DATA_CONFIDENCE = 0.9
DEGRADED_BASE_CONFIDENCE = 0.5
DEGRADED_CONFIDENCE_SPAN = 0.2

_UNAVAILABLE = object()


def matches_scam_pattern(address: str) -> bool:
    """Zero or dead prefixes, 8+ repeated hex chars, 8+ ascending/descending digits"""
    lowered = address.lower()
    if lowered.startswith(SCAM_PREFIXES):
        return True
    body = lowered[2:] if lowered.startswith("0x") else lowered
    if _REPEATED_HEX.search(body):
        return True
    return any(run in body for run in _DIGIT_RUNS)


def is_valid_address(address: str) -> bool:
    return bool(address) and ADDRESS_PATTERN.match(address) is not None


class RiskScanner:
    def __init__(
        self,
        chain: ChainAdapter,
        signals: RiskSignalProvider,
        large_value_threshold: Decimal = Decimal("1000"),
    ):
        self._chain = chain
        self._signals = signals
        self._large_value_threshold = large_value_threshold

    async def scan(self, chain: str, token_address: str, receiver: str, amount: str | Decimal) -> RiskAssessment:
        """
        Assess a payment.

        Raises:
            ValidationError: Missing receiver or invalid amount
        """
        value = parse_amount(amount, "amount", allow_zero=True)
        if not receiver:
            raise ValidationError("receiverAddress is required")

        token_well_formed = is_valid_address(token_address)
        lookups = [
            self._chain.is_contract(chain, receiver),
            self._signals.lookup(chain, receiver),
        ]
        if token_well_formed:
            lookups += [
                self._chain.is_contract(chain, token_address),
                self._chain.get_token_metadata(chain, token_address),
            ]

        results = [_live_or_unavailable(result) for result in await asyncio.gather(*lookups, return_exceptions=True)]
        degraded = sum(1 for result in results if result is _UNAVAILABLE)

        receiver_is_contract = results[0]
        signals: Any = results[1]
        token_is_contract: Any = results[2] if token_well_formed else False
        metadata: Optional[TokenMetadata] = results[3] if token_well_formed and results[3] is not _UNAVAILABLE else None

        level = RiskLevel.LOW
        flags: List[str] = []
        recommendations: List[str] = []

        if value > self._large_value_threshold:
            level = level.escalate(RiskLevel.MEDIUM)
            flags.append("High value transaction")
            recommendations.append("Consider splitting into smaller amounts")

        if matches_scam_pattern(receiver):
            level = level.escalate(RiskLevel.HIGH)
            flags.append("Receiver address matches known scam patterns")
            recommendations.append("Do not proceed - potential scam address")

        if not token_well_formed:
            level = level.escalate(RiskLevel.HIGH)
            flags.append("Token address is malformed")
            recommendations.append("Verify token contract address")
        elif token_is_contract is _UNAVAILABLE:
            level = level.escalate(RiskLevel.HIGH)
            flags.append("Token contract could not be verified")
            recommendations.append("Verify token contract address")
        elif not token_is_contract:
            level = level.escalate(RiskLevel.HIGH)
            flags.append("Token address is not a valid contract")
            recommendations.append("Verify token contract address")

        if metadata is None:
            level = level.escalate(RiskLevel.MEDIUM)
            flags.append("Unknown or unverified token")
            recommendations.append("Research token legitimacy before proceeding")

        if receiver_is_contract is True:
            flags.append("Receiver is a smart contract")
            recommendations.append("Ensure contract is trusted and audited")

        if isinstance(signals, AddressSignals):
            if signals.blocklisted:
                level = level.escalate(RiskLevel.HIGH)
                flags.append("Address flagged by security providers")
                recommendations.append("Address appears on security blacklists")
            if signals.suspicious_activity:
                level = level.escalate(RiskLevel.MEDIUM)
                flags.append("Recent suspicious activity detected")
                recommendations.append("Monitor transaction closely")

        if degraded:
            live_fraction = (len(results) - degraded) / len(results)
            confidence = round(DEGRADED_BASE_CONFIDENCE + DEGRADED_CONFIDENCE_SPAN * live_fraction, 2)
            logger.warning("Risk scan on %s ran with %d of %d lookups unavailable", chain, degraded, len(results))
        else:
            confidence = FULL_DATA_CONFIDENCE

        return RiskAssessment(
            risk_level=level,
            flags=tuple(flags),
            recommendations=tuple(recommendations),
            confidence=confidence,
        )


def _live_or_unavailable(result: Any) -> Any:
    if isinstance(result, ChainUnavailableError):
        return _UNAVAILABLE
    if isinstance(result, BaseException):
        raise result
    return result
