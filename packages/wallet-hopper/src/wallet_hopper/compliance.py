#!/usr/bin/env python3
"""Compliance checking of payment intents against recipient preferences."""

import logging

from . import registry
from .chain_context import ChainContextResolver
from .models import (
    ChainContext,
    ComplianceResult,
    NonComplianceReason,
    PaymentIntent,
    PreferenceDocument,
)
from .preference_store import PreferenceStoreClient
from .remediation import RemediationPlanner

# Get logger for this module
logger = logging.getLogger(__name__)


class ComplianceResolver:
    """Classifies a payment as compliant, non-compliant or unknown.

    Preferred assets are evaluated in order. The first entry on the payer's
    current chain decides between Compliant and a swap. When no entry is on
    the current chain only the first entry is inspected: a privacy-protocol
    entry asks for a direct deposit, anything else for a bridge.
    """

    def __init__(
        self,
        context_resolver: ChainContextResolver,
        store: PreferenceStoreClient,
        planner: RemediationPlanner,
    ) -> None:
        self.context_resolver = context_resolver
        self.store = store
        self.planner = planner

    def check(
        self,
        intent: PaymentIntent,
        document: PreferenceDocument | None,
        context: ChainContext,
    ) -> ComplianceResult:
        """Classify ``intent`` against ``document`` on the context's chain.

        Pure: the same inputs always produce the same result.
        """
        if document is None or not document.preferred_assets:
            return ComplianceResult.unknown()

        current_chain = context.chain_name
        for entry in document.preferred_assets:
            if entry.chain != current_chain:
                continue
            if entry.symbol == intent.asset:
                return ComplianceResult.compliant()
            reason = NonComplianceReason.WRONG_ASSET
            return ComplianceResult.non_compliant(
                reason, self.planner.plan(reason, intent, entry, context)
            )

        # No entry on this chain: only the first entry is considered
        first = document.preferred_assets[0]
        if registry.is_privacy_protocol(first.chain):
            reason = NonComplianceReason.WANTS_PRIVACY_PROTOCOL
        else:
            reason = NonComplianceReason.WRONG_CHAIN
        return ComplianceResult.non_compliant(
            reason, self.planner.plan(reason, intent, first, context)
        )

    async def evaluate(
        self,
        intent: PaymentIntent,
        document: PreferenceDocument | None = None,
    ) -> ComplianceResult:
        """Resolve the wallet context, fetch preferences if needed and check.

        Raises:
            WalletUnavailable / UnsupportedChain: From context resolution
            StorageUnavailable: If the lookup service cannot be reached
        """
        context = await self.context_resolver.resolve()
        if document is None:
            document = await self.store.fetch(intent.destination_address)

        result = self.check(intent, document, context)
        if result.reason is None:
            logger.info(f"Payment of {intent.amount} {intent.asset} on {context.chain.name}: {result.status.value}")
        else:
            logger.info(
                f"Payment of {intent.amount} {intent.asset} on {context.chain.name}: "
                f"{result.status.value} ({result.reason.value}, suggest {result.action.kind.value})"
            )
        return result
