#!/usr/bin/env python3
"""Error taxonomy for Wallet Hopper.

Every failure the engine surfaces to a caller derives from
WalletHopperError, so a UI or CLI can catch one base class and still
branch on the concrete kind.
"""


class WalletHopperError(Exception):
    """Base class for all Wallet Hopper errors."""


class WalletUnavailable(WalletHopperError):
    """Raised when no wallet capability (signing account) is present."""


class UserRejected(WalletHopperError):
    """Raised when the wallet owner declines a request."""


class ProviderError(WalletHopperError):
    """Raised when the wallet or RPC provider fails a request."""


class UnsupportedChain(WalletHopperError):
    """Raised when a chain is unknown or lacks a required contract."""

    def __init__(self, chain: str | int, detail: str = "") -> None:
        self.chain = chain
        message = f"Unsupported chain: {chain}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class UnsupportedAsset(WalletHopperError):
    """Raised when an asset has no known contract on a chain."""

    def __init__(self, symbol: str, chain: str) -> None:
        self.symbol = symbol
        self.chain = chain
        super().__init__(f"Asset {symbol} is not supported on {chain}")


class StorageUnavailable(WalletHopperError):
    """Raised when the preference lookup or durable storage service fails."""


class InvalidDocument(WalletHopperError):
    """Raised when a preference document cannot be parsed or validated."""


class QuoteUnavailable(WalletHopperError):
    """Raised when the swap aggregator cannot produce a transaction."""


class SubmissionRejected(WalletHopperError):
    """Raised when a write call is rejected or reverts at submission time."""

    def __init__(self, stage: str, reason: str) -> None:
        self.stage = stage
        self.reason = reason
        super().__init__(f"{stage} submission rejected: {reason}")


class TransactionReverted(WalletHopperError):
    """Raised when a mined transaction reports a failed status."""

    def __init__(self, tx_hash: str, block_number: int | None = None) -> None:
        self.tx_hash = tx_hash
        self.block_number = block_number
        message = f"Transaction {tx_hash} reverted"
        if block_number is not None:
            message += f" in block {block_number}"
        super().__init__(message)


class UnconfirmedTimeout(WalletHopperError):
    """Raised when a transaction is not confirmed within the polling budget."""

    def __init__(self, tx_hash: str, attempts: int, waited: float) -> None:
        self.tx_hash = tx_hash
        self.attempts = attempts
        self.waited = waited
        super().__init__(
            f"Transaction {tx_hash} not confirmed after {attempts} attempts "
            f"({waited:.0f}s)"
        )


class PollingTransient(WalletHopperError):
    """A receipt poll failed; always retried inside the poller."""
