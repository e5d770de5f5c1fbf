#!/usr/bin/env python3
"""Data models for the Wallet Hopper payment engine.

This module provides immutable data classes for wallet context, recipient
preference documents, payment intents, compliance results, remediation
actions and transaction handles used throughout the engine.
"""

from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from .errors import InvalidDocument, UnsupportedChain


@dataclass(frozen=True, slots=True)
class ChainMetadata:
    """Static description of a supported network.

    Attributes:
        chain_id: EIP-155 chain ID
        name: Display name (e.g. 'Polygon')
        explorer_url: Block explorer base URL without trailing slash
        native_symbol: Symbol of the gas token
    """

    chain_id: int
    name: str
    explorer_url: str
    native_symbol: str

    @property
    def key(self) -> str:
        """Lowercase chain name, as used in preference documents."""
        return self.name.lower()


@dataclass(frozen=True, slots=True)
class ChainContext:
    """Wallet and network context resolved once per wallet session.

    Attributes:
        chain_id: Chain ID reported by the wallet
        chain: Metadata for that chain
        wallet_address: Checksummed payer address
        contract_address: Pointer registry on this chain, None if not deployed
    """

    chain_id: int
    chain: ChainMetadata
    wallet_address: str
    contract_address: str | None = None

    @property
    def chain_name(self) -> str:
        return self.chain.key

    def require_contract(self) -> str:
        """Return the pointer registry address or refuse write access."""
        if self.contract_address is None:
            raise UnsupportedChain(self.chain_id, "pointer registry not deployed")
        return self.contract_address

    def explorer_tx_url(self, tx_hash: str) -> str:
        return f"{self.chain.explorer_url}/tx/{tx_hash}"


@dataclass(frozen=True, slots=True)
class PreferredAsset:
    """One (chain, asset) entry of a recipient's preference list."""

    chain: str
    symbol: str
    address: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"chain": self.chain, "address": self.address, "symbol": self.symbol}


@dataclass(frozen=True, slots=True)
class PreferenceDocument:
    """A recipient's published settlement preferences.

    ``preferred_assets`` is ordered; earlier entries take precedence.
    ``addresses`` keeps first-seen order with duplicates removed.
    """

    timestamp: str
    primary_address: str
    primary_chain: str
    preferred_assets: tuple[PreferredAsset, ...]
    addresses: tuple[str, ...] = ()
    attestations: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "PreferenceDocument":
        """Build a document from its decoded JSON form.

        Raises:
            InvalidDocument: If a required field is missing or mistyped
        """
        if not isinstance(data, dict):
            raise InvalidDocument("Preference document must be a JSON object")

        for key in ("timestamp", "primaryAddress", "primaryChain"):
            if not isinstance(data.get(key), str) or not data[key]:
                raise InvalidDocument(f"Field '{key}' must be a non-empty string")

        raw_assets = data.get("preferredAssets")
        if not isinstance(raw_assets, list):
            raise InvalidDocument("Field 'preferredAssets' must be a list")

        assets: list[PreferredAsset] = []
        for index, entry in enumerate(raw_assets):
            match entry:
                case {"chain": str(chain), "symbol": str(symbol)} if chain and symbol:
                    address = entry.get("address")
                    if address is not None and not isinstance(address, str):
                        raise InvalidDocument(f"preferredAssets[{index}].address must be a string")
                    assets.append(PreferredAsset(chain=chain.lower(), symbol=symbol, address=address))
                case _:
                    raise InvalidDocument(
                        f"preferredAssets[{index}] needs non-empty 'chain' and 'symbol' strings"
                    )

        raw_addresses = data.get("addresses", [])
        if not isinstance(raw_addresses, list) or not all(isinstance(a, str) for a in raw_addresses):
            raise InvalidDocument("Field 'addresses' must be a list of strings")

        attestations = data.get("attestations", {})
        if not isinstance(attestations, dict):
            raise InvalidDocument("Field 'attestations' must be an object")

        return cls(
            timestamp=data["timestamp"],
            primary_address=data["primaryAddress"],
            primary_chain=data["primaryChain"].lower(),
            preferred_assets=tuple(assets),
            addresses=tuple(dict.fromkeys(raw_addresses)),
            attestations=dict(attestations),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire form stored by the durable storage service."""
        return {
            "timestamp": self.timestamp,
            "primaryAddress": self.primary_address,
            "primaryChain": self.primary_chain,
            "preferredAssets": [asset.to_dict() for asset in self.preferred_assets],
            "addresses": list(self.addresses),
            "attestations": dict(self.attestations),
        }

    def with_timestamp(self, timestamp: str) -> "PreferenceDocument":
        return replace(self, timestamp=timestamp)


@dataclass(frozen=True, slots=True)
class PaymentIntent:
    """A payment the payer proposes to make.

    Attributes:
        destination_address: Recipient address (or zk address for privacy deposits)
        asset: Asset symbol the payer intends to send (e.g. 'USDC')
        amount: Human readable decimal amount (e.g. '12.5')
    """

    destination_address: str
    asset: str
    amount: str

    def __post_init__(self) -> None:
        if not self.destination_address:
            raise ValueError("Destination address is required")
        if not self.asset:
            raise ValueError("Asset symbol is required")
        try:
            value = Decimal(self.amount)
        except (InvalidOperation, TypeError):
            raise ValueError(f"Invalid amount: {self.amount!r}") from None
        if not value.is_finite() or value <= 0:
            raise ValueError(f"Amount must be a positive number, got {self.amount!r}")


class ComplianceStatus(Enum):
    COMPLIANT = "compliant"
    NON_COMPLIANT = "non_compliant"
    UNKNOWN = "unknown"


class NonComplianceReason(Enum):
    WRONG_ASSET = "wrong_asset"
    WRONG_CHAIN = "wrong_chain"
    WANTS_PRIVACY_PROTOCOL = "wants_privacy_protocol"


class ActionKind(Enum):
    SWAP = "swap"
    BRIDGE = "bridge"
    PRIVACY_DIRECT_DEPOSIT = "privacy_direct_deposit"


@dataclass(frozen=True, slots=True)
class SwapAction:
    """Swap the payment asset into the recipient's preferred asset, then pay.

    Token fields hold checksummed addresses (or the aggregator's native
    sentinel) and are None when the registry has no deployment for that
    asset on the chain; such an action is refused at execution time.
    ``amount`` is the human readable amount of the source asset.
    """

    chain_id: int
    chain: str
    from_asset: str
    to_asset: str
    from_token: str | None
    to_token: str | None
    amount: str
    spender: str
    recipient: str
    aggregator_quote_url: str
    from_native: bool = False
    to_native: bool = False
    kind: ActionKind = field(default=ActionKind.SWAP, init=False)

    @property
    def description(self) -> str:
        return f"To complete this transaction, swap {self.from_asset} to {self.to_asset}"


@dataclass(frozen=True, slots=True)
class BridgeAction:
    """Bridge the payment to the recipient's preferred chain.

    For a native asset ``origin_token`` is the wrapped token and the
    amount travels as transaction value.
    """

    chain_id: int
    asset: str
    origin_chain: str
    destination_chain: str
    destination_chain_id: int | None
    origin_token: str | None
    amount: str
    relay_contract: str | None
    recipient: str
    native: bool = False
    kind: ActionKind = field(default=ActionKind.BRIDGE, init=False)

    @property
    def description(self) -> str:
        return (
            f"To complete this transaction, bridge from "
            f"{self.origin_chain} to {self.destination_chain}"
        )


@dataclass(frozen=True, slots=True)
class PrivacyDepositAction:
    """Deposit directly into the recipient's shielded privacy-pool account."""

    chain_id: int
    chain: str
    asset: str
    token: str | None
    amount: str
    deposit_contract: str | None
    zk_destination: str
    fallback_user: str
    native: bool = False
    kind: ActionKind = field(default=ActionKind.PRIVACY_DIRECT_DEPOSIT, init=False)

    @property
    def description(self) -> str:
        return "To complete this transaction, complete a zkBob direct deposit"


RemediationAction = SwapAction | BridgeAction | PrivacyDepositAction

ACTION_TEXT: dict[ActionKind, str] = {
    ActionKind.SWAP: "Swap and send",
    ActionKind.BRIDGE: "Bridge and send",
    ActionKind.PRIVACY_DIRECT_DEPOSIT: "Direct deposit",
}


@dataclass(frozen=True, slots=True)
class ComplianceResult:
    """Outcome of checking a payment against recipient preferences.

    A NON_COMPLIANT result always carries exactly one remediation action;
    COMPLIANT and UNKNOWN results never carry one.
    """

    status: ComplianceStatus
    reason: NonComplianceReason | None = None
    action: RemediationAction | None = None

    def __post_init__(self) -> None:
        if self.status is ComplianceStatus.NON_COMPLIANT:
            if self.reason is None or self.action is None:
                raise ValueError("Non-compliant results need a reason and an action")
        elif self.reason is not None or self.action is not None:
            raise ValueError(f"{self.status.value} results carry no reason or action")

    @classmethod
    def compliant(cls) -> "ComplianceResult":
        return cls(ComplianceStatus.COMPLIANT)

    @classmethod
    def unknown(cls) -> "ComplianceResult":
        return cls(ComplianceStatus.UNKNOWN)

    @classmethod
    def non_compliant(
        cls, reason: NonComplianceReason, action: RemediationAction
    ) -> "ComplianceResult":
        return cls(ComplianceStatus.NON_COMPLIANT, reason=reason, action=action)

    @property
    def description(self) -> str:
        match self.status:
            case ComplianceStatus.COMPLIANT:
                return "Proposed transaction confirmed acceptable by recipient"
            case ComplianceStatus.UNKNOWN:
                return "No information was found to confirm the validity of this transaction"
            case _:
                return self.action.description

    @property
    def action_text(self) -> str | None:
        return ACTION_TEXT[self.action.kind] if self.action else None


@dataclass(frozen=True, slots=True)
class TransactionHandle:
    """A submitted write call and where it ended up.

    Attributes:
        hash: Transaction hash (0x prefixed)
        chain_id: Chain the transaction was submitted on
        stage: Pipeline stage that submitted it ('approve', 'swap', ...)
        block_number: Block the receipt was mined in, once confirmed
    """

    hash: str
    chain_id: int
    stage: str
    block_number: int | None = None

    @property
    def confirmed(self) -> bool:
        return self.block_number is not None

    def __str__(self) -> str:
        return f"TransactionHandle({self.stage}, {self.hash[:10]}..., chain={self.chain_id})"


@dataclass(frozen=True, slots=True)
class ContentHandle:
    """Locator returned by the content-addressed storage service."""

    cid: str

    @property
    def locator(self) -> str:
        """String recorded in the on-chain pointer registry."""
        return f"ipfs:{self.cid}"


class PipelineState(Enum):
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    POLLING = "polling"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True, slots=True)
class PipelineEvent:
    """A stage transition a UI can render as a notification.

    ``message`` is user-facing and never contains raw provider error text.
    """

    stage: str
    state: PipelineState
    message: str
    tx_hash: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "state": self.state.value,
            "message": self.message,
            "tx_hash": self.tx_hash,
        }
