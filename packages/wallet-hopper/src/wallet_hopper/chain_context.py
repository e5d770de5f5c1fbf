#!/usr/bin/env python3
"""Wallet and network context resolution.

Resolves the connected chain, payer address and per-chain pointer registry
once per wallet session and shares the result with every caller.
"""

import asyncio
import logging
from typing import TYPE_CHECKING

from web3 import Web3

from . import registry
from .errors import WalletUnavailable
from .models import ChainContext

if TYPE_CHECKING:
    from .utils.wallet import WalletCapability

# Get logger for this module
logger = logging.getLogger(__name__)


class ChainContextResolver:
    """Memoized resolver for the active wallet's ChainContext.

    The cache is keyed by the wallet's session id and holds the in-flight
    resolution task, so concurrent callers share one wallet prompt. A failed
    resolution is evicted and retried on the next call. The cache is dropped
    when the wallet reports a network change.
    """

    def __init__(
        self,
        wallet: "WalletCapability | None",
        pointer_registry_addresses: dict[int, str] | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            wallet: Connected wallet capability (None when no wallet is present)
            pointer_registry_addresses: Pointer registry address per chain ID
        """
        self.wallet = wallet
        self.pointer_registry_addresses: dict[int, str] = dict(pointer_registry_addresses or {})
        self._cache: dict[str, asyncio.Task[ChainContext]] = {}
        self.resolutions = 0

        if subscribe := getattr(wallet, 'subscribe_network_changes', None):
            subscribe(self.on_network_changed)

    async def resolve(self) -> ChainContext:
        """Return the context for the current wallet session.

        A resolution that was invalidated while in flight is not returned;
        the caller resolves again against the fresh cache.

        Raises:
            WalletUnavailable: If no wallet capability is present
            UnsupportedChain: If the wallet is on a chain with no metadata
        """
        if self.wallet is None:
            raise WalletUnavailable("No wallet connected")

        while True:
            key = self.wallet.session_id
            if (task := self._cache.get(key)) is None:
                task = asyncio.ensure_future(self._resolve())
                self._cache[key] = task

            try:
                context = await asyncio.shield(task)
            except Exception:
                # Only evict if nobody replaced the entry in the meantime
                if self._cache.get(key) is task:
                    del self._cache[key]
                raise

            if self._cache.get(key) is task:
                return context
            logger.debug(f"Context for {key} was invalidated while resolving; resolving again")

    async def _resolve(self) -> ChainContext:
        self.resolutions += 1
        chain_id = await self.wallet.get_chain_id()
        chain = registry.chain_metadata(chain_id)

        addresses = await self.wallet.get_addresses()
        if not addresses:
            raise WalletUnavailable("Wallet exposed no accounts")

        contract_address = self.pointer_registry_addresses.get(chain_id)
        if contract_address is None:
            logger.warning(
                f"Pointer registry not deployed on {chain.name} (chain {chain_id}); "
                "preference publication is disabled"
            )

        context = ChainContext(
            chain_id=chain_id,
            chain=chain,
            wallet_address=Web3.to_checksum_address(addresses[0]),
            contract_address=contract_address,
        )
        logger.info(f"Resolved wallet {context.wallet_address} on {chain.name} (chain {chain_id})")
        return context

    def invalidate(self) -> None:
        """Forget every cached context.

        Resolutions still in flight run to completion for the callers already
        waiting on them, who then resolve again.
        """
        self._cache.clear()

    def on_network_changed(self, chain_id: int) -> None:
        """Drop cached contexts that belong to a different chain."""
        stale = [
            key for key, task in self._cache.items()
            if not task.done() or task.cancelled() or task.exception() is not None
            or task.result().chain_id != chain_id
        ]
        for key in stale:
            del self._cache[key]
        if stale:
            logger.info(f"Network changed to chain {chain_id}; cleared {len(stale)} cached context(s)")
