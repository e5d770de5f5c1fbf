"""
Wallet capability used by the payment engine.

Defines the interface the engine consumes, a local-key implementation backed
by web3, and an actor that owns a wallet and serializes its write calls so
two remediation pipelines can never race for a nonce.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from web3 import Web3
from web3.exceptions import ContractLogicError, TransactionNotFound, Web3Exception

from ..errors import ProviderError, UserRejected, WalletUnavailable
from .contract_utility import ContractUtility

logger = logging.getLogger(__name__)

# EIP-1193 "user rejected request"
USER_REJECTED_CODE = 4001

NetworkChangeCallback = Callable[[int], None]


class WalletCapability(Protocol):
    """What the engine needs from a connected wallet."""

    @property
    def session_id(self) -> str: ...

    async def get_chain_id(self) -> int: ...

    async def get_addresses(self) -> list[str]: ...

    async def write_contract(
        self,
        address: str,
        abi: list[dict[str, Any]],
        function_name: str,
        args: list[Any],
        value: int = 0,
    ) -> str: ...

    async def send_transaction(self, tx: dict[str, Any]) -> str: ...

    async def read_contract(
        self,
        address: str,
        abi: list[dict[str, Any]],
        function_name: str,
        args: list[Any],
    ) -> Any: ...

    async def get_balance(self, address: str) -> int: ...

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any]: ...


def _classify_error(error: Exception) -> Exception:
    """Map a web3 failure to UserRejected or ProviderError."""
    rpc_response = getattr(error, 'rpc_response', None) or {}
    code = rpc_response.get('error', {}).get('code') if isinstance(rpc_response, dict) else None
    text = str(error).lower()
    if code == USER_REJECTED_CODE or "user rejected" in text or "user denied" in text:
        return UserRejected(str(error))
    return ProviderError(str(error))


class Web3Wallet:
    """
    Wallet backed by a local private key and an HTTP RPC endpoint.

    Writes are signed locally by the web3 signing middleware; reads go
    straight to the RPC node.
    """

    def __init__(self, contract_util: ContractUtility) -> None:
        """
        Initialize the wallet.

        Args:
            contract_util: Contract utility created with a signing secret

        Raises:
            WalletUnavailable: If the utility has no signing account
        """
        if contract_util.account is None:
            raise WalletUnavailable("No signing key configured (LOCAL_PRIVATE_KEY)")

        self.contract_util = contract_util
        self.address: str = contract_util.account.address
        self._network_callbacks: list[NetworkChangeCallback] = []

    @classmethod
    def from_key(cls, rpc_url: str, private_key: str | None) -> "Web3Wallet":
        if not private_key:
            raise WalletUnavailable("No signing key configured (LOCAL_PRIVATE_KEY)")
        return cls(ContractUtility(rpc_url, private_key))

    @property
    def session_id(self) -> str:
        return self.address

    async def get_chain_id(self) -> int:
        try:
            return int(await self.contract_util.w3.eth.chain_id)
        except (Web3Exception, OSError) as e:
            raise ProviderError(f"Could not read chain ID: {e}") from e

    async def get_addresses(self) -> list[str]:
        return [self.address]

    async def write_contract(
        self,
        address: str,
        abi: list[dict[str, Any]],
        function_name: str,
        args: list[Any],
        value: int = 0,
    ) -> str:
        """
        Sign and submit a contract call.

        Returns:
            Transaction hash as a 0x-prefixed hex string

        Raises:
            UserRejected: If the signer declined the request
            ProviderError: If the node rejected or the call reverted in simulation
        """
        contract = self.contract_util.get_contract(address, abi)
        function = getattr(contract.functions, function_name)
        try:
            tx_hash = await function(*args).transact({'from': self.address, 'value': value})
        except (ContractLogicError, Web3Exception, ValueError, OSError) as e:
            raise _classify_error(e) from e
        return Web3.to_hex(tx_hash)

    async def send_transaction(self, tx: dict[str, Any]) -> str:
        """Submit a prebuilt transaction (e.g. aggregator calldata)."""
        params = {
            'from': self.address,
            'to': Web3.to_checksum_address(tx['to']),
            'data': tx.get('data', '0x'),
            'value': int(tx.get('value') or 0),
        }
        try:
            tx_hash = await self.contract_util.w3.eth.send_transaction(params)
        except (Web3Exception, ValueError, OSError) as e:
            raise _classify_error(e) from e
        return Web3.to_hex(tx_hash)

    async def read_contract(
        self,
        address: str,
        abi: list[dict[str, Any]],
        function_name: str,
        args: list[Any],
    ) -> Any:
        """Call a view function.

        Raises:
            ProviderError: If the node could not answer
        """
        contract = self.contract_util.get_contract(address, abi)
        function = getattr(contract.functions, function_name)
        try:
            return await function(*args).call()
        except (Web3Exception, ValueError, OSError) as e:
            raise ProviderError(f"Could not call {function_name} on {address}: {e}") from e

    async def get_balance(self, address: str) -> int:
        """Native balance of ``address`` in wei."""
        try:
            return int(await self.contract_util.w3.eth.get_balance(Web3.to_checksum_address(address)))
        except (Web3Exception, ValueError, OSError) as e:
            raise ProviderError(f"Could not read balance of {address}: {e}") from e

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any]:
        """
        Fetch a receipt.

        Raises:
            TransactionNotFound: While the transaction is not yet mined
        """
        return dict(await self.contract_util.w3.eth.get_transaction_receipt(tx_hash))

    def subscribe_network_changes(self, callback: NetworkChangeCallback) -> None:
        self._network_callbacks.append(callback)

    def notify_network_change(self, chain_id: int) -> None:
        """Tell subscribers the wallet is now on ``chain_id``."""
        logger.info(f"Wallet network changed to chain {chain_id}")
        for callback in self._network_callbacks:
            callback(chain_id)


@dataclass
class WriteRequest:
    """A queued write call for the wallet actor."""
    method: str
    args: tuple[Any, ...]
    kwargs: dict[str, Any] = field(default_factory=dict)


class WalletActor:
    """
    Owns a wallet and executes its write calls one at a time.

    Write requests are queued and handled by a single task, so a second
    submission only reaches the wallet after the first one returned a hash
    or failed. Reads bypass the queue.
    """

    def __init__(self, wallet: WalletCapability) -> None:
        self.wallet = wallet
        self._queue: asyncio.Queue[tuple[WriteRequest, asyncio.Future]] = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self.writes_completed = 0

    @property
    def session_id(self) -> str:
        return self.wallet.session_id

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def get_chain_id(self) -> int:
        return await self.wallet.get_chain_id()

    async def get_addresses(self) -> list[str]:
        return await self.wallet.get_addresses()

    async def read_contract(
        self,
        address: str,
        abi: list[dict[str, Any]],
        function_name: str,
        args: list[Any],
    ) -> Any:
        return await self.wallet.read_contract(address, abi, function_name, args)

    async def get_balance(self, address: str) -> int:
        return await self.wallet.get_balance(address)

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any]:
        return await self.wallet.get_transaction_receipt(tx_hash)

    def subscribe_network_changes(self, callback: NetworkChangeCallback) -> None:
        if subscribe := getattr(self.wallet, 'subscribe_network_changes', None):
            subscribe(callback)

    async def write_contract(
        self,
        address: str,
        abi: list[dict[str, Any]],
        function_name: str,
        args: list[Any],
        value: int = 0,
    ) -> str:
        return await self._submit(
            WriteRequest("write_contract", (address, abi, function_name, args), {'value': value})
        )

    async def send_transaction(self, tx: dict[str, Any]) -> str:
        return await self._submit(WriteRequest("send_transaction", (tx,)))

    async def _submit(self, request: WriteRequest) -> str:
        if not self.is_running:
            self._task = asyncio.create_task(self._run())

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        await self._queue.put((request, future))
        return await future

    async def _run(self) -> None:
        """Process queued writes until stopped."""
        while True:
            request, future = await self._queue.get()
            try:
                if future.cancelled():
                    continue
                logger.debug(f"Wallet actor executing {request.method}")
                result = await getattr(self.wallet, request.method)(*request.args, **request.kwargs)
                future.set_result(result)
                self.writes_completed += 1
            except asyncio.CancelledError:
                if not future.done():
                    future.cancel()
                raise
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
            finally:
                self._queue.task_done()

    async def stop(self) -> None:
        """Stop the actor and cancel any writes still queued."""
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass  # Expected when cancelling

        while not self._queue.empty():
            _, future = self._queue.get_nowait()
            if not future.done():
                future.cancel()
        self._task = None


def is_not_found(error: Exception) -> bool:
    """True if a receipt lookup failed because the transaction is unmined."""
    return isinstance(error, TransactionNotFound)
