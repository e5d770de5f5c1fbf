#!/usr/bin/env python3
"""Remediation planning and execution.

The planner turns a non-compliance reason into a pure-data action
(SwapAction, BridgeAction or PrivacyDepositAction). The executor runs an
action by dispatching on its kind to a stateless coroutine that drives a
TransactionPipeline.
"""

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from web3 import Web3

from . import registry
from .errors import (
    ProviderError,
    QuoteUnavailable,
    UnsupportedAsset,
    UnsupportedChain,
    WalletHopperError,
    WalletUnavailable,
)
from .models import (
    ActionKind,
    BridgeAction,
    ChainContext,
    NonComplianceReason,
    PaymentIntent,
    PipelineEvent,
    PipelineState,
    PreferredAsset,
    PrivacyDepositAction,
    RemediationAction,
    SwapAction,
    TransactionHandle,
)
from .transaction_pipeline import (
    ContractCall,
    Notifier,
    PipelineStep,
    RawTransaction,
    ReceiptPoller,
    TransactionPipeline,
    notify,
)
from .utils.contract_utility import ContractUtility

if TYPE_CHECKING:
    from .chain_context import ChainContextResolver
    from .utils.swap_quote import SwapQuoteClient
    from .utils.wallet import WalletCapability

# Get logger for this module
logger = logging.getLogger(__name__)


def _optional(lookup: Callable[..., str], *args: Any) -> str | None:
    """Run a registry lookup, mapping 'not deployed' to None."""
    try:
        return lookup(*args)
    except (UnsupportedAsset, UnsupportedChain):
        return None


class RemediationPlanner:
    """Builds the action descriptor for a non-compliant payment.

    Planning never touches the network or the wallet. Contracts the
    registry does not know are left as None and rejected on execution.
    """

    def __init__(self, quote_client: "SwapQuoteClient") -> None:
        self.quote_client = quote_client

    def plan(
        self,
        reason: NonComplianceReason,
        intent: PaymentIntent,
        entry: PreferredAsset,
        context: ChainContext,
    ) -> RemediationAction:
        match reason:
            case NonComplianceReason.WRONG_ASSET:
                return self.plan_swap(intent, entry, context)
            case NonComplianceReason.WRONG_CHAIN:
                return self.plan_bridge(intent, entry, context)
            case NonComplianceReason.WANTS_PRIVACY_PROTOCOL:
                return self.plan_privacy_deposit(intent, entry, context)
        raise ValueError(f"Unknown non-compliance reason: {reason}")

    def _token_or_sentinel(self, symbol: str, chain: str) -> str | None:
        if registry.is_native(symbol, chain):
            return registry.NATIVE_TOKEN_SENTINEL
        return _optional(registry.token_address, symbol, chain)

    def plan_swap(
        self, intent: PaymentIntent, entry: PreferredAsset, context: ChainContext
    ) -> SwapAction:
        chain = context.chain_name
        return SwapAction(
            chain_id=context.chain_id,
            chain=chain,
            from_asset=intent.asset,
            to_asset=entry.symbol,
            from_token=self._token_or_sentinel(intent.asset, chain),
            to_token=self._token_or_sentinel(entry.symbol, chain),
            amount=intent.amount,
            spender=Web3.to_checksum_address(registry.SWAP_AGGREGATOR_SPENDER),
            recipient=intent.destination_address,
            aggregator_quote_url=self.quote_client.quote_url(context.chain_id),
            from_native=registry.is_native(intent.asset, chain),
            to_native=registry.is_native(entry.symbol, chain),
        )

    def plan_bridge(
        self, intent: PaymentIntent, entry: PreferredAsset, context: ChainContext
    ) -> BridgeAction:
        chain = context.chain_name
        native = registry.is_native(intent.asset, chain)
        token_symbol = registry.WRAPPED_NATIVE.get(intent.asset, intent.asset) if native else intent.asset

        destination_chain_id: int | None
        try:
            destination_chain_id = registry.chain_id_for(entry.chain)
        except UnsupportedChain:
            destination_chain_id = None

        return BridgeAction(
            chain_id=context.chain_id,
            asset=intent.asset,
            origin_chain=chain,
            destination_chain=entry.chain,
            destination_chain_id=destination_chain_id,
            origin_token=_optional(registry.token_address, token_symbol, chain),
            amount=intent.amount,
            relay_contract=_optional(registry.bridge_spoke_pool, chain),
            recipient=intent.destination_address,
            native=native,
        )

    def plan_privacy_deposit(
        self, intent: PaymentIntent, entry: PreferredAsset, context: ChainContext
    ) -> PrivacyDepositAction:
        chain = context.chain_name
        return PrivacyDepositAction(
            chain_id=context.chain_id,
            chain=chain,
            asset=intent.asset,
            token=_optional(registry.token_address, intent.asset, chain),
            amount=intent.amount,
            deposit_contract=_optional(registry.privacy_deposit_contract, chain),
            zk_destination=entry.address or intent.destination_address,
            fallback_user=context.wallet_address,
            native=registry.is_native(intent.asset, chain),
        )


@dataclass
class ExecutionContext:
    """Everything an action executor needs for one run."""
    pipeline: TransactionPipeline
    wallet: "WalletCapability"
    chain: ChainContext
    quote_client: "SwapQuoteClient"


def _approval(token: str, spender: str) -> ContractCall:
    return ContractCall(
        stage="approve",
        label="Approving token transfer",
        address=token,
        contract_name="ERC20",
        function_name="approve",
        args=(Web3.to_checksum_address(spender), registry.APPROVAL_AMOUNT),
    )


def _payment(symbol: str, token: str | None, recipient: str, amount: int, native: bool) -> PipelineStep:
    """Plain transfer of ``amount`` base units to ``recipient``."""
    if native:
        return RawTransaction(
            stage="send",
            label="Sending tokens",
            tx={"to": recipient, "value": amount, "data": "0x"},
        )
    if token is None:
        raise ValueError(f"No token address for {symbol}")
    return ContractCall(
        stage="send",
        label="Sending tokens",
        address=token,
        contract_name="ERC20",
        function_name="transfer",
        args=(Web3.to_checksum_address(recipient), amount),
    )


async def _balance_of(ctx: ExecutionContext, token: str, native: bool) -> int:
    owner = ctx.chain.wallet_address
    if native:
        return await ctx.wallet.get_balance(owner)
    abi = ContractUtility.get_contract_abi("ERC20")
    return int(await ctx.wallet.read_contract(token, abi, "balanceOf", [owner]))


def _gas_fee(receipt: dict[str, Any]) -> int:
    return int(receipt.get('gasUsed') or 0) * int(receipt.get('effectiveGasPrice') or 0)


async def execute_swap(ctx: ExecutionContext, action: SwapAction) -> list[TransactionHandle]:
    """Quote, approve, swap, then send what the swap delivered to the recipient."""
    if action.from_token is None:
        raise UnsupportedAsset(action.from_asset, action.chain)
    if action.to_token is None:
        raise UnsupportedAsset(action.to_asset, action.chain)

    amount = registry.to_base_units(action.amount, registry.token_decimals(action.from_asset))

    # Quote before any wallet interaction so a failure leaves nothing half done
    quote = await ctx.quote_client.get_swap(
        action.aggregator_quote_url,
        src=action.from_token,
        dst=action.to_token,
        amount=amount,
        from_address=ctx.chain.wallet_address,
    )
    logger.info(f"Swap quote: {amount} {action.from_asset} -> {quote.to_amount} {action.to_asset}")

    handles: list[TransactionHandle] = []
    if not action.from_native:
        handles.append(await ctx.pipeline.execute(_approval(action.from_token, action.spender)))

    before = await _balance_of(ctx, action.to_token, action.to_native)
    swap = await ctx.pipeline.execute(
        RawTransaction(stage="swap", label="Generating swap transaction", tx=quote.tx)
    )
    handles.append(swap)

    received = await _balance_of(ctx, action.to_token, action.to_native) - before
    if action.to_native:
        # Swap gas was paid from the same balance
        received += _gas_fee(await ctx.wallet.get_transaction_receipt(swap.hash))
    if received <= 0:
        raise ProviderError(f"Swap {swap.hash} delivered no {action.to_asset}")
    if received < quote.to_amount:
        logger.warning(f"Swap delivered {received} {action.to_asset}, quoted {quote.to_amount}")

    send = _payment(action.to_asset, action.to_token, action.recipient, received, action.to_native)
    handles.append(await ctx.pipeline.execute(send))
    return handles


async def execute_bridge(ctx: ExecutionContext, action: BridgeAction) -> list[TransactionHandle]:
    """Approve the spoke pool and deposit towards the destination chain."""
    if action.origin_token is None:
        raise UnsupportedAsset(action.asset, action.origin_chain)
    if action.relay_contract is None:
        raise UnsupportedChain(action.origin_chain, "no bridge spoke pool")
    if action.destination_chain_id is None:
        raise UnsupportedChain(action.destination_chain)

    amount = registry.to_base_units(action.amount, registry.token_decimals(action.asset))

    deposit = ContractCall(
        stage="bridge",
        label="Generating bridge transaction",
        address=action.relay_contract,
        contract_name="SpokePool",
        function_name="deposit",
        args=(
            Web3.to_checksum_address(action.recipient),
            action.origin_token,
            amount,
            action.destination_chain_id,
            registry.BRIDGE_RELAYER_FEE_PCT,
            int(time.time()),  # quoteTimestamp
            b"",
            registry.BRIDGE_MAX_COUNT,
        ),
        value=amount if action.native else 0,
    )
    approve = None if action.native else _approval(action.origin_token, action.relay_contract)
    return await ctx.pipeline.run(deposit, approve=approve)


async def execute_privacy_deposit(
    ctx: ExecutionContext, action: PrivacyDepositAction
) -> list[TransactionHandle]:
    """Approve the deposit contract and make a direct deposit to the zk address."""
    if action.native or action.token is None:
        raise UnsupportedAsset(action.asset, action.chain)
    if action.deposit_contract is None:
        raise UnsupportedChain(action.chain, "no privacy direct deposit contract")

    amount = registry.to_base_units(action.amount, registry.token_decimals(action.asset))

    deposit = ContractCall(
        stage="deposit",
        label="Generating zkBob transaction",
        address=action.deposit_contract,
        contract_name="ZkBobDirectDeposit",
        function_name="directDeposit",
        args=(Web3.to_checksum_address(action.fallback_user), amount, action.zk_destination),
    )
    return await ctx.pipeline.run(deposit, approve=_approval(action.token, action.deposit_contract))


Executor = Callable[[ExecutionContext, Any], Awaitable[list[TransactionHandle]]]

EXECUTORS: dict[ActionKind, Executor] = {
    ActionKind.SWAP: execute_swap,
    ActionKind.BRIDGE: execute_bridge,
    ActionKind.PRIVACY_DIRECT_DEPOSIT: execute_privacy_deposit,
}

# Terminal failures raised before or between pipeline stages; the pipeline
# reports its own submission and confirmation failures
OUTSIDE_PIPELINE_FAILURES = (
    QuoteUnavailable, UnsupportedAsset, UnsupportedChain, ProviderError, WalletUnavailable,
)


class RemediationExecutor:
    """Runs remediation actions and direct payments through a pipeline."""

    def __init__(
        self,
        wallet: "WalletCapability",
        resolver: "ChainContextResolver",
        quote_client: "SwapQuoteClient",
        poller: ReceiptPoller,
        notifier: Notifier | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            wallet: Wallet used for submissions (usually a WalletActor)
            resolver: Chain context resolver
            quote_client: Swap aggregator client
            poller: Receipt poller shared by every pipeline
            notifier: Optional callback for stage events
        """
        self.wallet = wallet
        self.resolver = resolver
        self.quote_client = quote_client
        self.poller = poller
        self.notifier = notifier

    async def _execution_context(self, chain_id: int | None = None) -> ExecutionContext:
        context = await self.resolver.resolve()
        if chain_id is not None and context.chain_id != chain_id:
            raise UnsupportedChain(
                context.chain_id, f"action was planned for chain {chain_id}; re-run the check"
            )
        pipeline = TransactionPipeline(self.wallet, self.poller, context.chain_id, self.notifier)
        return ExecutionContext(
            pipeline=pipeline, wallet=self.wallet, chain=context, quote_client=self.quote_client
        )

    async def _report_failure(self, stage: str, error: WalletHopperError) -> None:
        """Notify a terminal failure that happened outside any pipeline stage."""
        logger.error(f"✗ {stage} failed: {error}")
        match error:
            case QuoteUnavailable():
                message = "Could not get a swap quote"
            case UnsupportedAsset() | UnsupportedChain():
                message = "This payment cannot be made on the current network"
            case WalletUnavailable():
                message = "No wallet connected"
            case _:
                message = f"{stage.capitalize()} failed"
        await notify(self.notifier, PipelineEvent(stage=stage, state=PipelineState.FAILED, message=message))

    async def execute(self, action: RemediationAction) -> list[TransactionHandle]:
        """Run ``action`` to completion.

        Returns:
            Handles of every confirmed transaction, in order

        Raises:
            UnsupportedAsset / UnsupportedChain: If the action cannot run here
            QuoteUnavailable: If a swap quote fails (before any wallet call)
            ProviderError: If a swap delivered nothing or a balance read failed
            SubmissionRejected: If any submission fails
        """
        try:
            ctx = await self._execution_context(action.chain_id)
            logger.info(f"Executing {action.kind.value} remediation on {ctx.chain.chain.name}")
            handles = await EXECUTORS[action.kind](ctx, action)
        except OUTSIDE_PIPELINE_FAILURES as e:
            await self._report_failure(action.kind.value, e)
            raise

        logger.info(f"✓ {action.kind.value} remediation complete ({len(handles)} transaction(s))")
        return handles

    async def send_direct(self, intent: PaymentIntent) -> TransactionHandle:
        """Pay ``intent`` as-is with a plain transfer on the current chain."""
        try:
            ctx = await self._execution_context()
            chain = ctx.chain.chain_name
            native = registry.is_native(intent.asset, chain)
            token = None if native else registry.token_address(intent.asset, chain)
        except OUTSIDE_PIPELINE_FAILURES as e:
            await self._report_failure("send", e)
            raise

        amount = registry.to_base_units(intent.amount, registry.token_decimals(intent.asset))
        step = _payment(intent.asset, token, intent.destination_address, amount, native)
        return await ctx.pipeline.execute(step)
