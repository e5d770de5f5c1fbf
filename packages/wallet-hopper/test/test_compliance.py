#!/usr/bin/env python3
"""Tests for ComplianceResolver and RemediationPlanner."""

import pytest
from unittest.mock import AsyncMock, MagicMock
from web3 import Web3

from src.wallet_hopper import registry
from src.wallet_hopper.compliance import ComplianceResolver
from src.wallet_hopper.models import (
    ActionKind,
    BridgeAction,
    ChainContext,
    ComplianceStatus,
    NonComplianceReason,
    PaymentIntent,
    PreferenceDocument,
    PreferredAsset,
    PrivacyDepositAction,
    SwapAction,
)
from src.wallet_hopper.remediation import RemediationPlanner
from src.wallet_hopper.utils.swap_quote import SwapQuoteClient

PAYER = "0x742D35Cc6634C0532925A3B844bC9e7595f0bEB7"
RECIPIENT = "0x85BfE05492aFC3D04Ff3B2ca6771ACF6f853d90d"


def make_context(chain_id: int) -> ChainContext:
    return ChainContext(chain_id=chain_id, chain=registry.chain_metadata(chain_id), wallet_address=PAYER)


def make_document(*entries: tuple[str, str]) -> PreferenceDocument:
    return PreferenceDocument(
        timestamp="2024-05-01T12:00:00.000Z",
        primary_address=RECIPIENT,
        primary_chain=entries[0][0] if entries else "polygon",
        preferred_assets=tuple(PreferredAsset(chain=chain, symbol=symbol) for chain, symbol in entries),
    )


@pytest.fixture
def resolver():
    """ComplianceResolver with a real planner and mocked I/O collaborators."""
    return ComplianceResolver(
        context_resolver=MagicMock(),
        store=MagicMock(),
        planner=RemediationPlanner(SwapQuoteClient("https://api.1inch.io/v5.2/")),
    )


class TestComplianceCheck:
    """Test suite for the pure classification."""

    def test_scenario_compliant(self, resolver):
        """Test USDC on polygon to a recipient preferring USDC on polygon."""
        intent = PaymentIntent(destination_address=RECIPIENT, asset="USDC", amount="10")

        result = resolver.check(intent, make_document(("polygon", "USDC")), make_context(137))

        assert result.status is ComplianceStatus.COMPLIANT
        assert result.action is None

    def test_scenario_wrong_asset(self, resolver):
        """Test ETH on ethereum to a recipient preferring USDC on ethereum."""
        intent = PaymentIntent(destination_address=RECIPIENT, asset="ETH", amount="0.5")

        result = resolver.check(intent, make_document(("ethereum", "USDC")), make_context(1))

        assert result.status is ComplianceStatus.NON_COMPLIANT
        assert result.reason is NonComplianceReason.WRONG_ASSET
        action = result.action
        assert isinstance(action, SwapAction)
        assert (action.from_asset, action.to_asset) == ("ETH", "USDC")
        assert action.from_native and action.from_token == registry.NATIVE_TOKEN_SENTINEL
        assert action.to_token == registry.token_address("USDC", "ethereum")
        assert action.spender == Web3.to_checksum_address(registry.SWAP_AGGREGATOR_SPENDER)
        assert action.aggregator_quote_url == "https://api.1inch.io/v5.2/1/swap"
        assert action.recipient == RECIPIENT
        assert result.description == "To complete this transaction, swap ETH to USDC"
        assert result.action_text == "Swap and send"

    def test_scenario_wrong_chain(self, resolver):
        """Test a payment on ethereum to a recipient preferring polygon."""
        intent = PaymentIntent(destination_address=RECIPIENT, asset="USDC", amount="25")

        result = resolver.check(intent, make_document(("polygon", "USDC")), make_context(1))

        assert result.reason is NonComplianceReason.WRONG_CHAIN
        action = result.action
        assert isinstance(action, BridgeAction)
        assert (action.origin_chain, action.destination_chain) == ("ethereum", "polygon")
        assert action.destination_chain_id == 137
        assert action.relay_contract == registry.bridge_spoke_pool("ethereum")
        assert action.origin_token == registry.token_address("USDC", "ethereum")
        assert not action.native
        assert result.description == "To complete this transaction, bridge from ethereum to polygon"

    def test_bridge_native_uses_wrapped_token(self, resolver):
        """Test that bridging ETH deposits WETH with the amount as value."""
        intent = PaymentIntent(destination_address=RECIPIENT, asset="ETH", amount="1")

        action = resolver.check(intent, make_document(("polygon", "WETH")), make_context(1)).action

        assert action.native
        assert action.origin_token == registry.token_address("WETH", "ethereum")

    @pytest.mark.parametrize("chain_id", [1, 137])
    @pytest.mark.parametrize("asset", ["ETH", "USDC", "APE"])
    def test_scenario_privacy_protocol(self, resolver, chain_id, asset):
        """Test that a privacy-protocol first entry always asks for a direct deposit."""
        intent = PaymentIntent(destination_address=RECIPIENT, asset=asset, amount="1")

        result = resolver.check(intent, make_document(("privacy-protocol", "ETH")), make_context(chain_id))

        assert result.status is ComplianceStatus.NON_COMPLIANT
        assert result.reason is NonComplianceReason.WANTS_PRIVACY_PROTOCOL
        assert isinstance(result.action, PrivacyDepositAction)
        assert result.action.kind is ActionKind.PRIVACY_DIRECT_DEPOSIT
        assert result.action.fallback_user == PAYER

    def test_privacy_uses_entry_address(self, resolver):
        """Test that the entry's address is the zk destination when present."""
        document = PreferenceDocument(
            timestamp="2024-05-01T12:00:00.000Z",
            primary_address=RECIPIENT,
            primary_chain="zkbob",
            preferred_assets=(PreferredAsset(chain="zkbob", symbol="USDC", address="zkbob_polygon:abc"),),
        )
        intent = PaymentIntent(destination_address=RECIPIENT, asset="USDC", amount="1")

        action = resolver.check(intent, document, make_context(137)).action

        assert action.zk_destination == "zkbob_polygon:abc"
        assert action.deposit_contract == registry.privacy_deposit_contract("polygon")
        assert action.token == registry.token_address("USDC", "polygon")

    def test_no_document_is_unknown(self, resolver):
        """Test that a missing document is always Unknown."""
        intent = PaymentIntent(destination_address=RECIPIENT, asset="USDC", amount="1")

        result = resolver.check(intent, None, make_context(137))

        assert result.status is ComplianceStatus.UNKNOWN
        assert result.action is None

    def test_empty_preferences_is_unknown(self, resolver):
        """Test that an empty preference list is Unknown."""
        intent = PaymentIntent(destination_address=RECIPIENT, asset="USDC", amount="1")

        assert resolver.check(intent, make_document(), make_context(137)).status is ComplianceStatus.UNKNOWN

    def test_first_chain_match_wins(self, resolver):
        """Test that the first entry on the current chain decides."""
        intent = PaymentIntent(destination_address=RECIPIENT, asset="USDT", amount="1")
        document = make_document(("ethereum", "ETH"), ("polygon", "USDC"), ("polygon", "USDT"))

        result = resolver.check(intent, document, make_context(137))

        assert result.reason is NonComplianceReason.WRONG_ASSET
        assert result.action.to_asset == "USDC"

    def test_only_first_entry_considered_without_chain_match(self, resolver):
        """Test that a later privacy entry is ignored when the first entry is a chain."""
        intent = PaymentIntent(destination_address=RECIPIENT, asset="USDC", amount="1")
        document = make_document(("ethereum", "USDC"), ("zkbob", "USDC"))

        result = resolver.check(intent, document, make_context(137))

        assert result.reason is NonComplianceReason.WRONG_CHAIN
        assert result.action.destination_chain == "ethereum"

    def test_check_is_pure(self, resolver):
        """Test that repeated checks give equal results without I/O."""
        intent = PaymentIntent(destination_address=RECIPIENT, asset="ETH", amount="0.5")
        document = make_document(("ethereum", "USDC"))
        context = make_context(1)

        assert resolver.check(intent, document, context) == resolver.check(intent, document, context)
        resolver.context_resolver.resolve.assert_not_called()
        resolver.store.fetch.assert_not_called()

    def test_unsupported_tokens_still_plan(self, resolver):
        """Test that planning succeeds for assets the registry does not know."""
        intent = PaymentIntent(destination_address=RECIPIENT, asset="DOGE", amount="1")

        result = resolver.check(intent, make_document(("ethereum", "USDC")), make_context(137))

        assert result.action.origin_token is None
        assert result.action.destination_chain_id == 1


class TestComplianceEvaluate:
    """Test suite for the async evaluation entry point."""

    @pytest.mark.asyncio
    async def test_evaluate_fetches_document(self, resolver):
        """Test that evaluate resolves the context and fetches preferences."""
        resolver.context_resolver.resolve = AsyncMock(return_value=make_context(137))
        resolver.store.fetch = AsyncMock(return_value=make_document(("polygon", "USDC")))
        intent = PaymentIntent(destination_address=RECIPIENT, asset="USDC", amount="1")

        result = await resolver.evaluate(intent)

        assert result.status is ComplianceStatus.COMPLIANT
        resolver.store.fetch.assert_awaited_once_with(RECIPIENT)

    @pytest.mark.asyncio
    async def test_evaluate_unpublished(self, resolver):
        """Test that an unpublished recipient is Unknown."""
        resolver.context_resolver.resolve = AsyncMock(return_value=make_context(137))
        resolver.store.fetch = AsyncMock(return_value=None)
        intent = PaymentIntent(destination_address=RECIPIENT, asset="USDC", amount="1")

        result = await resolver.evaluate(intent)

        assert result.status is ComplianceStatus.UNKNOWN

    @pytest.mark.asyncio
    async def test_evaluate_with_document(self, resolver):
        """Test that a supplied document skips the lookup."""
        resolver.context_resolver.resolve = AsyncMock(return_value=make_context(1))
        resolver.store.fetch = AsyncMock()
        intent = PaymentIntent(destination_address=RECIPIENT, asset="USDC", amount="1")

        result = await resolver.evaluate(intent, make_document(("polygon", "USDC")))

        assert result.reason is NonComplianceReason.WRONG_CHAIN
        resolver.store.fetch.assert_not_called()
