#!/usr/bin/env python3
"""Configuration management for Wallet Hopper.

This module provides type-safe configuration dataclasses with validation
for the payment compliance engine. Configuration is loaded from environment
variables with sensible defaults where appropriate.
"""

import logging
import os
from dataclasses import dataclass, field
from urllib.parse import urlparse

from web3 import Web3

# Get logger for this module
logger = logging.getLogger(__name__)


def _require_http_url(url: str, env_name: str) -> None:
    """Reject empty URLs and URLs without an http(s) scheme."""
    if not url:
        raise ValueError(f"{env_name} is required")

    parsed = urlparse(url)
    if parsed.scheme not in ('http', 'https'):
        raise ValueError(
            f"Invalid {env_name} scheme: {parsed.scheme}. Expected http or https"
        )


def parse_registry_addresses(raw: str) -> dict[int, str]:
    """Parse ``"137:0xabc...,1:0xdef..."`` into a chain id -> address map.

    Args:
        raw: Comma separated ``chain_id:address`` pairs (may be empty)

    Returns:
        Mapping of chain ID to checksummed contract address

    Raises:
        ValueError: If a pair is malformed or an address is invalid
    """
    addresses: dict[int, str] = {}
    for pair in filter(None, (item.strip() for item in raw.split(','))):
        chain_id, sep, address = pair.partition(':')
        if not sep:
            raise ValueError(
                f"Invalid registry entry '{pair}'. Expected chain_id:address"
            )
        try:
            chain = int(chain_id)
        except ValueError:
            raise ValueError(f"Invalid chain id in registry entry '{pair}'") from None
        addresses[chain] = address.strip()
    return addresses


@dataclass(frozen=True, slots=True)
class ChainConfig:
    """Configuration for the chain the payer's wallet is connected to.

    Attributes:
        rpc_url: HTTP(S) RPC endpoint used for reads and signed writes
        pointer_registry_addresses: WalletHopper pointer registry per chain ID
    """

    rpc_url: str
    pointer_registry_addresses: dict[int, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate chain configuration."""
        if not self.rpc_url:
            raise ValueError("RPC URL is required (RPC_URL)")

        parsed = urlparse(self.rpc_url)
        if parsed.scheme not in ('http', 'https', 'ws', 'wss'):
            raise ValueError(
                f"Invalid RPC URL scheme: {parsed.scheme}. "
                "Expected http, https, ws, or wss"
            )

        checksummed: dict[int, str] = {}
        for chain_id, address in self.pointer_registry_addresses.items():
            if not Web3.is_address(address):
                raise ValueError(
                    f"Invalid pointer registry address for chain {chain_id}: {address}"
                )
            checksummed[chain_id] = Web3.to_checksum_address(address)

        # Use object.__setattr__ since dataclass is frozen
        object.__setattr__(self, 'pointer_registry_addresses', checksummed)


@dataclass(frozen=True, slots=True)
class ServiceConfig:
    """Configuration for the off-chain services the engine talks to."""

    preference_lookup_url: str = "http://localhost:3000/api/wallet-meta"
    storage_url: str = "http://localhost:3000/api/store"
    swap_quote_url: str = "https://api.1inch.io/v5.2"
    swap_api_key: str | None = None
    swap_slippage: float = 1.0  # percent
    request_timeout: int = 30  # HTTP request timeout in seconds

    def __post_init__(self) -> None:
        """Validate service configuration."""
        _require_http_url(self.preference_lookup_url, "PREFERENCE_LOOKUP_URL")
        _require_http_url(self.storage_url, "STORAGE_URL")
        _require_http_url(self.swap_quote_url, "SWAP_QUOTE_URL")

        if not 0 < self.swap_slippage <= 50:
            raise ValueError(
                f"Swap slippage must be in (0, 50] percent, got {self.swap_slippage}"
            )

        if self.request_timeout <= 0:
            raise ValueError(f"Request timeout must be positive, got {self.request_timeout}")
        if self.request_timeout > 120:
            raise ValueError(f"Request timeout too long (max 120s), got {self.request_timeout}")


@dataclass(frozen=True, slots=True)
class ConfirmationConfig:
    """Receipt polling policy.

    The default is a fixed 3 second delay with no overall limit. Setting
    ``max_wait`` bounds the total time slept before giving up, and a
    ``backoff_factor`` above 1 grows the delay up to ``max_interval``.
    """

    poll_interval: float = 3.0  # seconds between receipt polls
    backoff_factor: float = 1.0
    max_interval: float = 30.0
    max_wait: float | None = None  # None polls until confirmed

    def __post_init__(self) -> None:
        """Validate confirmation configuration."""
        if self.poll_interval <= 0:
            raise ValueError(f"Polling interval must be positive, got {self.poll_interval}")
        if self.backoff_factor < 1:
            raise ValueError(f"Backoff factor must be >= 1, got {self.backoff_factor}")
        if self.max_interval < self.poll_interval:
            raise ValueError(
                f"Max polling interval ({self.max_interval}) must be >= "
                f"polling interval ({self.poll_interval})"
            )
        if self.max_wait is not None and self.max_wait <= 0:
            raise ValueError(f"Confirmation timeout must be positive, got {self.max_wait}")


@dataclass(frozen=True, slots=True)
class WalletHopperConfig:
    """Main configuration for Wallet Hopper.

    Attributes:
        chain: RPC and contract configuration
        services: Off-chain service endpoints
        confirmation: Receipt polling policy
        local_private_key: Private key of the local signing wallet (optional)
    """

    chain: ChainConfig
    services: ServiceConfig = field(default_factory=ServiceConfig)
    confirmation: ConfirmationConfig = field(default_factory=ConfirmationConfig)
    local_private_key: str | None = None

    def __post_init__(self) -> None:
        """Validate the signing key when one is configured."""
        if self.local_private_key:
            # Basic private key validation (64 hex chars, optionally with 0x prefix)
            key = self.local_private_key.removeprefix('0x')

            if len(key) != 64:
                raise ValueError(
                    f"Invalid private key length. Expected 64 hex characters, got {len(key)}"
                )

            try:
                int(key, 16)
            except ValueError:
                raise ValueError(
                    "Invalid private key format. Must be hexadecimal"
                ) from None

    @classmethod
    def from_env(cls) -> "WalletHopperConfig":
        """Load configuration from environment variables.

        Returns:
            WalletHopperConfig instance with loaded values

        Raises:
            ValueError: If environment variables are missing or invalid
        """
        chain_config = ChainConfig(
            rpc_url=os.environ.get("RPC_URL", "https://polygon-rpc.com"),
            pointer_registry_addresses=parse_registry_addresses(
                os.environ.get("POINTER_REGISTRY_ADDRESSES", "")
            ),
        )

        service_defaults = ServiceConfig()
        service_config = ServiceConfig(
            preference_lookup_url=os.environ.get(
                "PREFERENCE_LOOKUP_URL", service_defaults.preference_lookup_url
            ),
            storage_url=os.environ.get("STORAGE_URL", service_defaults.storage_url),
            swap_quote_url=os.environ.get("SWAP_QUOTE_URL", service_defaults.swap_quote_url),
            swap_api_key=os.environ.get("SWAP_API_KEY") or None,
            swap_slippage=float(os.environ.get("SWAP_SLIPPAGE", "1")),
            request_timeout=int(os.environ.get("REQUEST_TIMEOUT", "30")),
        )

        max_wait = os.environ.get("CONFIRMATION_TIMEOUT")
        confirmation_config = ConfirmationConfig(
            poll_interval=float(os.environ.get("POLL_INTERVAL", "3")),
            backoff_factor=float(os.environ.get("POLL_BACKOFF", "1")),
            max_interval=float(os.environ.get("POLL_MAX_INTERVAL", "30")),
            max_wait=float(max_wait) if max_wait else None,
        )

        return cls(
            chain=chain_config,
            services=service_config,
            confirmation=confirmation_config,
            local_private_key=os.environ.get("LOCAL_PRIVATE_KEY") or None,
        )

    def log_config(self) -> None:
        """Log the configuration in a readable format for debugging."""
        logger.info("=" * 60)
        logger.info("Wallet Hopper Configuration")
        logger.info("=" * 60)

        logger.info("Chain:")
        logger.info(f"  RPC URL: {self.chain.rpc_url}")
        if self.chain.pointer_registry_addresses:
            for chain_id, address in sorted(self.chain.pointer_registry_addresses.items()):
                logger.info(f"  Pointer Registry [{chain_id}]: {address}")
        else:
            logger.info("  Pointer Registry: [NOT CONFIGURED]")

        logger.info("Services:")
        logger.info(f"  Preference Lookup: {self.services.preference_lookup_url}")
        logger.info(f"  Storage: {self.services.storage_url}")
        logger.info(f"  Swap Quotes: {self.services.swap_quote_url}")
        logger.info(f"  Swap Slippage: {self.services.swap_slippage}%")
        logger.info(f"  Request Timeout: {self.services.request_timeout} seconds")

        logger.info("Confirmation Settings:")
        logger.info(f"  Poll Interval: {self.confirmation.poll_interval} seconds")
        logger.info(f"  Backoff Factor: {self.confirmation.backoff_factor}")
        if self.confirmation.max_wait is None:
            logger.info("  Timeout: [UNBOUNDED]")
        else:
            logger.info(f"  Timeout: {self.confirmation.max_wait} seconds")

        logger.info(f"  Local Key: {'[CONFIGURED]' if self.local_private_key else '[NOT SET]'}")
        logger.info("=" * 60)
