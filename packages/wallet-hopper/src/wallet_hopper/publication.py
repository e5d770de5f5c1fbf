#!/usr/bin/env python3
"""Preference document publication.

Persists a recipient's preference document to content-addressed storage and
anchors the returned locator in the on-chain pointer registry.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from .chain_context import ChainContextResolver
from .errors import InvalidDocument
from .models import ContentHandle, PreferenceDocument, PreferredAsset, TransactionHandle
from .preference_store import PreferenceStoreClient
from .transaction_pipeline import ContractCall, Notifier, ReceiptPoller, TransactionPipeline

if TYPE_CHECKING:
    from .utils.wallet import WalletCapability

# Get logger for this module
logger = logging.getLogger(__name__)


def utc_timestamp() -> str:
    """Current time as an ISO-8601 string with millisecond precision, e.g. 2024-05-01T12:00:00.000Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_document(source: str | dict[str, Any]) -> PreferenceDocument:
    """Parse caller supplied document text (or an already decoded mapping).

    Raises:
        InvalidDocument: If the text is not JSON or the document is malformed
    """
    if isinstance(source, str):
        try:
            source = json.loads(source)
        except json.JSONDecodeError as e:
            raise InvalidDocument(f"Invalid JSON: {e.msg} (line {e.lineno})") from e
    return PreferenceDocument.from_dict(source)


@dataclass(frozen=True, slots=True)
class PublicationResult:
    """Where a published document ended up."""

    document: PreferenceDocument
    content_handle: ContentHandle
    transaction: TransactionHandle
    explorer_url: str


class PublicationPipeline:
    """Drafts, stores and anchors preference documents."""

    def __init__(
        self,
        resolver: ChainContextResolver,
        store: PreferenceStoreClient,
        wallet: "WalletCapability",
        poller: ReceiptPoller,
        notifier: Notifier | None = None,
    ) -> None:
        """Initialize the publication pipeline.

        Args:
            resolver: Chain context resolver for the publishing wallet
            store: Preference lookup and storage client
            wallet: Wallet used to submit setPointer (usually a WalletActor)
            poller: Receipt poller for the confirm stage
            notifier: Optional callback for stage events
        """
        self.resolver = resolver
        self.store = store
        self.wallet = wallet
        self.poller = poller
        self.notifier = notifier

    async def draft(self, address: str | None = None) -> PreferenceDocument:
        """Return the document to edit before publishing.

        The currently published document with a fresh timestamp if there is
        one, otherwise a template that accepts ETH on ethereum at ``address``.
        """
        context = await self.resolver.resolve()
        address = address or context.wallet_address

        existing = await self.store.fetch(
            address, blockchain=context.chain_name, token_address=context.contract_address
        )
        if existing is not None:
            logger.info(f"Loaded published preferences for {address}")
            return existing.with_timestamp(utc_timestamp())

        logger.info(f"No published preferences for {address}, using the default template")
        return PreferenceDocument(
            timestamp=utc_timestamp(),
            primary_address=address,
            primary_chain=context.chain_name,
            preferred_assets=(PreferredAsset(chain="ethereum", symbol="ETH", address=address),),
            addresses=(address,),
            attestations={},
        )

    async def publish(self, source: str | dict[str, Any]) -> PublicationResult:
        """Validate, store and anchor a preference document.

        Raises:
            InvalidDocument: Before any storage or chain access
            UnsupportedChain: If no pointer registry is deployed on this chain
            StorageUnavailable: If storing the document fails
            SubmissionRejected: If the setPointer transaction is rejected
        """
        document = parse_document(source)

        context = await self.resolver.resolve()
        registry_address = context.require_contract()

        document = document.with_timestamp(utc_timestamp())
        content = await self.store.publish(document)
        logger.info(f"Successfully stored to IPFS: {content.cid}")

        pipeline = TransactionPipeline(self.wallet, self.poller, context.chain_id, self.notifier)
        handle = await pipeline.execute(ContractCall(
            stage="pointer",
            label="Putting pointer on chain",
            address=registry_address,
            contract_name="WalletHopper",
            function_name="setPointer",
            args=(content.locator,),
        ))

        explorer_url = context.explorer_tx_url(handle.hash)
        logger.info(f"✓ Preferences for {document.primary_address} anchored: {explorer_url}")
        return PublicationResult(
            document=document,
            content_handle=content,
            transaction=handle,
            explorer_url=explorer_url,
        )
