"""Decimal amount helpers. Amounts never pass through float."""

from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_UP, ROUND_UP

from autopay_engine.domain.exceptions import ValidationError

ZERO = Decimal("0")
TOKEN_QUANTUM = Decimal("0.000001")  # 6 decimal places, USDC precision
USD_QUANTUM = Decimal("0.01")
GAS_USD_QUANTUM = Decimal("0.0001")


def parse_amount(value: str | Decimal | int, field: str = "amount", allow_zero: bool = False) -> Decimal:
    """
    Parse a decimal string into a Decimal.

    Raises:
        ValidationError: Not a finite decimal, negative, or zero when not allowed
    """
    if isinstance(value, float):
        raise ValidationError(f"{field} must be a decimal string, not a float")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"{field} is not a valid decimal: {value!r}") from e

    if not amount.is_finite():
        raise ValidationError(f"{field} must be finite")
    if amount < 0 or (amount == 0 and not allow_zero):
        qualifier = "non-negative" if allow_zero else "positive"
        raise ValidationError(f"{field} must be {qualifier}, got {value}")
    return amount


def quantize_token(amount: Decimal) -> Decimal:
    """Round token amounts down so fees never round in the payer's favour"""
    return amount.quantize(TOKEN_QUANTUM, rounding=ROUND_DOWN)


def quantize_usd(amount: Decimal) -> Decimal:
    return amount.quantize(USD_QUANTUM, rounding=ROUND_HALF_UP)


def quantize_usd_up(amount: Decimal) -> Decimal:
    return amount.quantize(USD_QUANTUM, rounding=ROUND_UP)


def quantize_gas_usd(amount: Decimal) -> Decimal:
    return amount.quantize(GAS_USD_QUANTUM, rounding=ROUND_HALF_UP)


def format_amount(amount: Decimal) -> str:
    """Render without exponent notation and without trailing zeros (1500.000000 -> '1500')"""
    normalized = amount.normalize()
    if normalized == normalized.to_integral_value():
        return str(normalized.quantize(Decimal(1)))
    return format(normalized, "f")
