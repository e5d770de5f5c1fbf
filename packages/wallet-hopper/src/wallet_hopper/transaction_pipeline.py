#!/usr/bin/env python3
"""Multi-stage on-chain transaction execution.

Every remediation action and the preference pointer update run through the
same sequence: optional allowance approval, the primary write call, then
polling for the receipt. Each stage transition is reported to an optional
notifier as a PipelineEvent.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .config import ConfirmationConfig
from .errors import (
    PollingTransient,
    ProviderError,
    SubmissionRejected,
    TransactionReverted,
    UnconfirmedTimeout,
    UserRejected,
)
from .models import PipelineEvent, PipelineState, TransactionHandle
from .utils.contract_utility import ContractUtility
from .utils.wallet import is_not_found

if TYPE_CHECKING:
    from .utils.wallet import WalletCapability

# Get logger for this module
logger = logging.getLogger(__name__)

Notifier = Callable[[PipelineEvent], Any]
Sleeper = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class ContractCall:
    """A contract write to submit through the wallet.

    Attributes:
        stage: Stage name reported in events and handles ('approve', 'bridge', ...)
        label: Human readable name used in notifications
        address: Contract address
        contract_name: ABI file name under contracts/
        function_name: Function to call
        args: Positional call arguments
        value: Native value to attach, in wei
    """

    stage: str
    label: str
    address: str
    contract_name: str
    function_name: str
    args: tuple[Any, ...] = ()
    value: int = 0


@dataclass(frozen=True, slots=True)
class RawTransaction:
    """A prebuilt transaction (e.g. aggregator calldata) to submit as-is."""

    stage: str
    label: str
    tx: dict[str, Any] = field(default_factory=dict)


PipelineStep = ContractCall | RawTransaction


async def notify(notifier: Notifier | None, event: PipelineEvent) -> None:
    """Deliver ``event`` to ``notifier``; a failing notifier is logged, not raised."""
    if notifier is None:
        return
    try:
        result = notifier(event)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.error(f"Notifier failed for {event.stage}/{event.state.value}: {e}", exc_info=True)


class ReceiptPoller:
    """Polls for a transaction receipt until it is mined.

    Any failed poll, including "not yet mined", is retried after a delay.
    The delay starts at ``poll_interval`` and is multiplied by
    ``backoff_factor`` up to ``max_interval``. With ``max_wait`` unset the
    loop never gives up; otherwise UnconfirmedTimeout is raised once the
    total delay reaches ``max_wait``.
    """

    def __init__(
        self,
        reader: "WalletCapability",
        config: ConfirmationConfig | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        """Initialize the poller.

        Args:
            reader: Anything exposing ``get_transaction_receipt``
            config: Polling policy (defaults to fixed 3s, unbounded)
            sleep: Coroutine used to wait between attempts
        """
        self.reader = reader
        self.config = config or ConfirmationConfig()
        self.sleep = sleep
        self.last_attempts = 0
        self._cancel_generation = 0

    def cancel(self) -> None:
        """Abort the waits in progress at their next attempt.

        Waits started afterwards are unaffected.
        """
        self._cancel_generation += 1

    async def wait(self, tx_hash: str) -> dict[str, Any]:
        """Wait for ``tx_hash`` to be mined and return its receipt.

        Raises:
            UnconfirmedTimeout: If ``max_wait`` is set and exhausted
            asyncio.CancelledError: If cancel() was called during the wait
        """
        generation = self._cancel_generation
        attempts = 0
        waited = 0.0
        delay = self.config.poll_interval
        max_wait = self.config.max_wait

        while True:
            if self._cancel_generation != generation:
                logger.info(f"Stopped waiting for {tx_hash}")
                raise asyncio.CancelledError(f"Receipt polling cancelled for {tx_hash}")

            attempts += 1
            self.last_attempts = attempts
            try:
                receipt = await self.reader.get_transaction_receipt(tx_hash)
                if receipt is None:
                    raise PollingTransient(f"No receipt yet for {tx_hash}")
                logger.debug(f"Receipt for {tx_hash} found after {attempts} attempt(s)")
                return receipt
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if is_not_found(e) or isinstance(e, PollingTransient):
                    logger.debug(f"{tx_hash} not mined yet (attempt {attempts})")
                else:
                    logger.warning(f"Receipt poll {attempts} for {tx_hash} failed: {e}")

            if max_wait is not None:
                if waited >= max_wait:
                    raise UnconfirmedTimeout(tx_hash, attempts, waited)
                delay = min(delay, max_wait - waited)

            await self.sleep(delay)
            waited += delay
            delay = min(delay * self.config.backoff_factor, self.config.max_interval)


class TransactionPipeline:
    """Runs approve -> act -> confirm for one action.

    State moves SUBMITTING -> SUBMITTED -> POLLING -> CONFIRMED. A wallet
    rejection or provider error while submitting ends in FAILED and aborts
    the action; nothing is retried.
    """

    def __init__(
        self,
        wallet: "WalletCapability",
        poller: ReceiptPoller,
        chain_id: int,
        notifier: Notifier | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            wallet: Wallet used for submission (usually a WalletActor)
            poller: Receipt poller for the confirm stage
            chain_id: Chain the transactions are submitted on
            notifier: Optional callback receiving each PipelineEvent
        """
        self.wallet = wallet
        self.poller = poller
        self.chain_id = chain_id
        self.notifier = notifier
        self.state: PipelineState | None = None
        self.events: list[PipelineEvent] = []

    async def _emit(
        self, step: PipelineStep, state: PipelineState, message: str, tx_hash: str | None = None
    ) -> None:
        self.state = state
        event = PipelineEvent(stage=step.stage, state=state, message=message, tx_hash=tx_hash)
        self.events.append(event)
        await notify(self.notifier, event)

    async def _submit(self, step: PipelineStep) -> str:
        await self._emit(step, PipelineState.SUBMITTING, f"{step.label}...")
        try:
            match step:
                case ContractCall():
                    abi = ContractUtility.get_contract_abi(step.contract_name)
                    tx_hash = await self.wallet.write_contract(
                        step.address, abi, step.function_name, list(step.args), value=step.value
                    )
                case RawTransaction():
                    tx_hash = await self.wallet.send_transaction(step.tx)
        except (UserRejected, ProviderError) as e:
            logger.error(f"✗ {step.stage} submission failed: {e}", exc_info=True)
            await self._emit(step, PipelineState.FAILED, f"Failed to submit {step.stage} transaction")
            reason = "rejected by wallet" if isinstance(e, UserRejected) else "provider error"
            raise SubmissionRejected(step.stage, reason) from e

        logger.info(f"✓ {step.stage} transaction submitted: {tx_hash}")
        await self._emit(
            step, PipelineState.SUBMITTED,
            f"{step.stage.capitalize()} transaction sent, waiting for success...", tx_hash
        )
        return tx_hash

    async def _confirm(self, step: PipelineStep, tx_hash: str) -> TransactionHandle:
        await self._emit(step, PipelineState.POLLING, f"Waiting for {step.stage} confirmation...", tx_hash)
        try:
            receipt = await self.poller.wait(tx_hash)
        except UnconfirmedTimeout:
            logger.error(f"✗ {step.stage} transaction {tx_hash} not confirmed in time")
            await self._emit(
                step, PipelineState.TIMED_OUT,
                f"{step.stage.capitalize()} transaction not confirmed yet", tx_hash
            )
            raise

        block_number = receipt.get('blockNumber')
        if receipt.get('status', 1) == 0:
            logger.error(f"✗ {step.stage} transaction {tx_hash} reverted in block {block_number}")
            await self._emit(step, PipelineState.FAILED, f"{step.stage.capitalize()} transaction failed", tx_hash)
            raise TransactionReverted(tx_hash, block_number)

        logger.info(f"✓ {step.stage} transaction confirmed in block {block_number}")
        await self._emit(
            step, PipelineState.CONFIRMED,
            f"{step.stage.capitalize()} transaction successful", tx_hash
        )
        return TransactionHandle(
            hash=tx_hash, chain_id=self.chain_id, stage=step.stage, block_number=block_number
        )

    async def execute(self, step: PipelineStep) -> TransactionHandle:
        """Submit one step and wait for its confirmation."""
        tx_hash = await self._submit(step)
        return await self._confirm(step, tx_hash)

    async def run(
        self, act: PipelineStep, approve: ContractCall | None = None
    ) -> list[TransactionHandle]:
        """Run the optional approve stage, then the act stage.

        Returns:
            Handles for every confirmed transaction, in submission order

        Raises:
            SubmissionRejected: If any submission fails (later stages are skipped)
            TransactionReverted: If a mined transaction failed
            UnconfirmedTimeout: If confirmation is bounded and exhausted
        """
        handles: list[TransactionHandle] = []
        if approve is not None:
            handles.append(await self.execute(approve))
        handles.append(await self.execute(act))
        return handles
