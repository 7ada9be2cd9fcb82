"""Chain and token reference data. Prices are fixed references, not an oracle."""

from decimal import Decimal
from typing import Dict, Optional

NATIVE_TOKENS: Dict[str, str] = {
    "ethereum": "ETH",
    "base": "ETH",
    "arbitrum": "ETH",
    "polygon": "MATIC",
    "optimism": "ETH",
}

TOKEN_ADDRESSES: Dict[str, Dict[str, str]] = {
    "ethereum": {
        "USDC": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
        "USDT": "0xdAC17F958D2ee523a2206206994597C13D831ec7",
        "WETH": "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
        "WBTC": "0x2260FAC5E5542a773Aa44fBCfeDf7C193bc2C599",
    },
    "base": {
        "USDC": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        "WETH": "0x4200000000000000000000000000000000000006",
    },
    "arbitrum": {
        "USDC": "0xaf88d065e77c8cC2239327C5EDb3A432268e5831",
        "USDT": "0xFd086bC7CD5C481DCC9C85ebE478A1C0b69FCbb9",
        "WETH": "0x82aF49447D8a07e3bd95BD0d56f35241523fBab1",
    },
    "polygon": {
        "USDC": "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174",
        "USDT": "0xc2132D05D31c914a87C6611C10748AEb04B58e8F",
        "WETH": "0x7ceB23fD6bC0adD59E62ac25578270cFf1b9f619",
    },
    "optimism": {
        "USDC": "0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85",
        "USDT": "0x94b008aA00579c1307B0EF2c499aD98a8ce58e58",
        "WETH": "0x4200000000000000000000000000000000000006",
    },
}

REFERENCE_PRICES_USD: Dict[str, Decimal] = {
    "USDC": Decimal("1"),
    "USDT": Decimal("1"),
    "DAI": Decimal("1"),
    "ETH": Decimal("2400"),
    "WETH": Decimal("2400"),
    "WBTC": Decimal("43000"),
    "MATIC": Decimal("0.8"),
}

# Gas units per step kind
GAS_UNITS: Dict[str, int] = {
    "transfer": 21_000,
    "approve": 50_000,
    "swap": 150_000,
    "bridge": 200_000,
}


def native_token(chain: str) -> str:
    return NATIVE_TOKENS.get(chain, "ETH")


def is_native(chain: str, token: str) -> bool:
    return token.upper() == native_token(chain)


def token_address(chain: str, symbol: str) -> Optional[str]:
    """Resolve a well-known token symbol to its contract address on a chain"""
    return TOKEN_ADDRESSES.get(chain, {}).get(symbol.upper())


def reference_price(token: str) -> Optional[Decimal]:
    return REFERENCE_PRICES_USD.get(token.upper())
