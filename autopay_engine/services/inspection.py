"""
Read-only chain inspection for callers: raw transaction dry-runs, gas
analysis for one transaction type, and address profiles.

Nothing here moves funds or touches the database.
"""

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from autopay_engine.domain.exceptions import ValidationError
from autopay_engine.domain.gas import GAS_SAFETY_MULTIPLIER
from autopay_engine.domain.ports import ChainAdapter, SimulationResult, TokenMetadata, TxPayload
from autopay_engine.domain.risk import is_valid_address
from autopay_engine.domain.routing import GWEI
from autopay_engine.domain.tokens import GAS_UNITS
from autopay_engine.utils.amounts import ZERO, parse_amount, quantize_gas_usd, quantize_usd

logger = logging.getLogger(__name__)

# Sender for dry-runs that do not name one
SIMULATION_SENDER = "0x0000000000000000000000000000000000000001"


@dataclass(frozen=True)
class GasAnalysis:
    chain: str
    wallet: str
    transaction_type: str
    balance: Decimal
    balance_usd: Decimal
    gas_price_gwei: Decimal
    gas_limit: int
    gas_cost_native: Decimal
    gas_cost_usd: Decimal
    sufficient: bool


@dataclass(frozen=True)
class AddressProfile:
    chain: str
    address: str
    is_contract: bool
    balance: Decimal
    balance_usd: Decimal
    token: Optional[TokenMetadata]

    @property
    def is_new_address(self) -> bool:
        return self.balance == ZERO

    @property
    def has_activity(self) -> bool:
        return self.balance > ZERO

    @property
    def is_token(self) -> bool:
        return self.token is not None


class ChainInspector:
    def __init__(self, chain: ChainAdapter, supported_chains: Iterable[str]):
        self._chain = chain
        self._supported = tuple(supported_chains)

    async def simulate(
        self,
        chain: str,
        to_address: str,
        data: str = "0x",
        value: str | Decimal = "0",
        sender: Optional[str] = None,
    ) -> SimulationResult:
        """
        Dry-run a raw transaction. A revert comes back as success=False.

        Raises:
            ValidationError: Unsupported chain, malformed address, calldata or value
            ChainUnavailableError: Chain could not be reached
        """
        self._require_chain(chain)
        _require_address(to_address, "toAddress")
        if sender is not None:
            _require_address(sender, "fromAddress")
        if not _is_hex(data):
            raise ValidationError("data must be 0x-prefixed hex")
        payload = TxPayload(
            chain=chain,
            to_address=to_address,
            data=data,
            value=parse_amount(value, "value", allow_zero=True),
        )

        result = await self._chain.simulate_transaction(sender or SIMULATION_SENDER, payload)
        logger.info("Dry-run on %s to %s: success=%s", chain, to_address, result.success)
        return result

    async def analyze_gas(self, chain: str, wallet: str, transaction_type: str = "transfer") -> GasAnalysis:
        """
        Price one transaction of the given type against the wallet's native balance.

        `sufficient` applies the same safety multiplier as the gas checker.

        Raises:
            ValidationError: Unsupported chain, malformed wallet, unknown transaction type
            ChainUnavailableError: Chain could not be reached
        """
        self._require_chain(chain)
        _require_address(wallet, "userAddress")
        gas_limit = GAS_UNITS.get(transaction_type)
        if gas_limit is None:
            raise ValidationError(
                f"Unknown transactionType {transaction_type!r}; expected one of {', '.join(GAS_UNITS)}"
            )

        balance, native_price, gwei = await asyncio.gather(
            self._chain.get_native_balance(chain, wallet),
            self._chain.get_native_price_usd(chain),
            self._chain.get_gas_price_gwei(chain),
        )
        gas_cost_native = gas_limit * gwei * GWEI
        gas_cost_usd = gas_cost_native * native_price
        balance_usd = balance * native_price
        return GasAnalysis(
            chain=chain,
            wallet=wallet,
            transaction_type=transaction_type,
            balance=balance,
            balance_usd=quantize_usd(balance_usd),
            gas_price_gwei=gwei,
            gas_limit=gas_limit,
            gas_cost_native=gas_cost_native,
            gas_cost_usd=quantize_gas_usd(gas_cost_usd),
            sufficient=balance_usd > gas_cost_usd * GAS_SAFETY_MULTIPLIER,
        )

    async def analyze_address(self, chain: str, address: str) -> AddressProfile:
        """
        Contract check, native balance, and token metadata when the address is a token.

        Raises:
            ValidationError: Unsupported chain or malformed address
            ChainUnavailableError: Chain could not be reached
        """
        self._require_chain(chain)
        _require_address(address, "address")

        is_contract, balance, native_price = await asyncio.gather(
            self._chain.is_contract(chain, address),
            self._chain.get_native_balance(chain, address),
            self._chain.get_native_price_usd(chain),
        )
        token = await self._chain.get_token_metadata(chain, address) if is_contract else None
        return AddressProfile(
            chain=chain,
            address=address,
            is_contract=is_contract,
            balance=balance,
            balance_usd=quantize_usd(balance * native_price),
            token=token,
        )

    def _require_chain(self, chain: str) -> None:
        if chain not in self._supported:
            raise ValidationError(f"Unsupported chain: {chain}")


def _require_address(address: str, field: str) -> None:
    if not is_valid_address(address):
        raise ValidationError(f"{field} is not a valid address: {address!r}")


def _is_hex(data: str) -> bool:
    if not data.startswith("0x"):
        return False
    try:
        bytes.fromhex(data[2:])
    except ValueError:
        return False
    return True
