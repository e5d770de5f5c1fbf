#!/usr/bin/env python3
"""Static registry of supported chains, tokens and protocol contracts.

All lookups key chains by their lowercase name, which is the form recipients
use in their preference documents.
"""

from decimal import Decimal, InvalidOperation, localcontext

from web3 import Web3

from .errors import UnsupportedAsset, UnsupportedChain
from .models import ChainMetadata

CHAINS: dict[int, ChainMetadata] = {
    1: ChainMetadata(chain_id=1, name="Ethereum", explorer_url="https://etherscan.io", native_symbol="ETH"),
    137: ChainMetadata(chain_id=137, name="Polygon", explorer_url="https://polygonscan.com", native_symbol="MATIC"),
}

CHAIN_ID_BY_NAME: dict[str, int] = {meta.key: chain_id for chain_id, meta in CHAINS.items()}

# Chain names recipients use to ask for a shielded direct deposit
PRIVACY_PROTOCOL_CHAINS: frozenset[str] = frozenset({"zkbob", "privacy-protocol"})

TOKEN_ADDRESSES: dict[str, dict[str, str]] = {
    "USDC": {
        "ethereum": "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48",
        "polygon": "0x2791bca1f2de4661ed88a30c99a7a9449aa84174",
    },
    "APE": {"ethereum": "0x4d224452801aced8b2f0aebe155379bb5d594381"},
    "USDT": {
        "ethereum": "0xdac17f958d2ee523a2206206994597c13d831ec7",
        "polygon": "0xc2132d05d31c914a87c6611c10748aeb04b58e8f",
    },
    "WETH": {
        "ethereum": "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2",
        "polygon": "0x7ceb23fd6bc0add59e62ac25578270cff1b9f619",
    },
    "SDAI": {"ethereum": "0x83f20f44975d03b1b09e64809b757c47f942beea"},
}

TOKEN_DECIMALS: dict[str, int] = {
    "ETH": 18,
    "MATIC": 18,
    "USDC": 6,
    "USDT": 6,
    "WETH": 18,
    "APE": 18,
    "SDAI": 18,
}

# Native assets keyed by chain, with their wrapped ERC-20 form
NATIVE_ASSETS: dict[str, str] = {"ethereum": "ETH"}
WRAPPED_NATIVE: dict[str, str] = {"ETH": "WETH"}

# Sentinel the swap aggregator uses for the native asset
NATIVE_TOKEN_SENTINEL = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"

SWAP_AGGREGATOR_SPENDER = "0x1111111254eeb25477b68fb85ed929f73a960582"

BRIDGE_SPOKE_POOLS: dict[str, str] = {
    "ethereum": "0x5c7BCd6E7De5423a257D81B442095A1a6ced35C5",
    "polygon": "0x9295ee1d8C5b022Be115A2AD3c30C72E34e7F096",
}

PRIVACY_DEPOSIT_CONTRACTS: dict[str, str] = {
    "polygon": "0x668c5286ead26fac5fa944887f9d2f20f7ddf289",
}

# Bridge deposit constants
BRIDGE_RELAYER_FEE_PCT = 1
BRIDGE_MAX_COUNT = 2**256 - 1

# Allowance granted to protocol contracts before they pull tokens
APPROVAL_AMOUNT = 10**22


def chain_metadata(chain_id: int) -> ChainMetadata:
    try:
        return CHAINS[chain_id]
    except KeyError:
        raise UnsupportedChain(chain_id) from None


def chain_id_for(chain: str) -> int:
    try:
        return CHAIN_ID_BY_NAME[chain.lower()]
    except KeyError:
        raise UnsupportedChain(chain) from None


def is_privacy_protocol(chain: str) -> bool:
    return chain.lower() in PRIVACY_PROTOCOL_CHAINS


def is_native(symbol: str, chain: str) -> bool:
    return NATIVE_ASSETS.get(chain.lower()) == symbol


def token_address(symbol: str, chain: str) -> str:
    """Checksummed ERC-20 address of ``symbol`` on ``chain``.

    Raises:
        UnsupportedAsset: If the token is not deployed on that chain
    """
    try:
        return Web3.to_checksum_address(TOKEN_ADDRESSES[symbol][chain.lower()])
    except KeyError:
        raise UnsupportedAsset(symbol, chain) from None


def token_decimals(symbol: str) -> int:
    try:
        return TOKEN_DECIMALS[symbol]
    except KeyError:
        raise UnsupportedAsset(symbol, "any chain") from None


def bridge_spoke_pool(chain: str) -> str:
    try:
        return Web3.to_checksum_address(BRIDGE_SPOKE_POOLS[chain.lower()])
    except KeyError:
        raise UnsupportedChain(chain, "no bridge spoke pool") from None


def privacy_deposit_contract(chain: str) -> str:
    try:
        return Web3.to_checksum_address(PRIVACY_DEPOSIT_CONTRACTS[chain.lower()])
    except KeyError:
        raise UnsupportedChain(chain, "no privacy direct deposit contract") from None


def to_base_units(amount: str, decimals: int) -> int:
    """Convert a decimal amount string into integer token base units.

    Args:
        amount: Human readable amount such as '1.25'
        decimals: Token decimals

    Returns:
        Amount scaled by 10**decimals

    Raises:
        ValueError: If the amount is not positive or has more precision
            than the token supports
    """
    try:
        value = Decimal(amount)
    except (InvalidOperation, TypeError):
        raise ValueError(f"Invalid amount: {amount!r}") from None

    if not value.is_finite() or value <= 0:
        raise ValueError(f"Amount must be positive, got {amount!r}")

    with localcontext() as ctx:
        ctx.prec = 80
        scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"Amount {amount} has more than {decimals} decimal places")
    return int(scaled)
