"""
Accounts - the signing interface the executor drives

Account (ABC) is what PurchaseExecutor and the step builders talk to; wallet
adapters for other signers implement the same four methods.

PrivateKeyAccount is the reference implementation:
- eth_account local signing, nonce + gasPrice read from chain
- Sync Web3 calls wrapped in asyncio.run_in_executor()
- Waits for the receipt, then for the requested confirmation depth
- Reverted receipt (status 0) raises TRANSACTION_FAILED
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional

from eth_account import Account as EthAccount
from web3 import Web3

from mintflow.abis import topic_hex
from mintflow.config import register_secret
from mintflow.errors import ErrorCode, MintflowError
from mintflow.money import Money
from mintflow.transactions import LogEntry, TransactionRequest, TransactionResponse

if TYPE_CHECKING:
    from mintflow.pricing import PriceService
    from mintflow.providers import ReadEndpointRouter

logger = logging.getLogger("mintflow.account")


class Account(ABC):

    @abstractmethod
    async def get_address(self) -> str:
        ...

    @abstractmethod
    async def get_balance(self, network_id: int) -> Money:
        ...

    @abstractmethod
    async def switch_network(self, network_id: int) -> None:
        ...

    @abstractmethod
    async def send_transaction_with_confirmation(
        self, request: TransactionRequest, confirmations: int = 1
    ) -> TransactionResponse:
        ...


class PrivateKeyAccount(Account):
    """
    Usage:
        account = PrivateKeyAccount(os.getenv("MINTER_PRIVATE_KEY"), router)
        response = await account.send_transaction_with_confirmation(request, 2)
    """

    def __init__(
        self,
        private_key: str,
        router: "ReadEndpointRouter",
        pricing: Optional["PriceService"] = None,
        receipt_timeout: int = 120,
        poll_interval: float = 2.0,
    ):
        try:
            self._signer = EthAccount.from_key(private_key)
        except Exception as e:
            # never echo the key itself
            raise MintflowError(ErrorCode.INVALID_INPUT, f"Invalid private key: {type(e).__name__}") from None
        register_secret(self._signer.key.hex())
        self._router = router
        self._pricing = pricing
        self._receipt_timeout = receipt_timeout
        self._poll_interval = poll_interval
        self._network_id: Optional[int] = None

    @property
    def address(self) -> str:
        return self._signer.address

    @property
    def network_id(self) -> Optional[int]:
        return self._network_id

    async def get_address(self) -> str:
        return self._signer.address

    async def get_balance(self, network_id: int) -> Money:
        raw = await self._router.get_balance(network_id, self._signer.address)
        return await Money.create(raw, network_id, pricing=self._pricing)

    async def switch_network(self, network_id: int) -> None:
        # A local key signs for any chain; just make sure one is reachable
        await self._router.get_connection(network_id)
        if self._network_id != network_id:
            logger.debug(f"Account {self._signer.address[:10]}... switched to network {network_id}")
        self._network_id = network_id

    async def send_transaction_with_confirmation(
        self, request: TransactionRequest, confirmations: int = 1
    ) -> TransactionResponse:
        w3 = await self._router.get_connection(request.chain_id)
        sender = self._signer.address

        def _execute():
            tx = {
                "from": sender,
                "to": Web3.to_checksum_address(request.to),
                "data": request.data,
                "value": request.value,
                "gas": request.gas_limit,
                "nonce": w3.eth.get_transaction_count(sender),
                "gasPrice": w3.eth.gas_price,
                "chainId": request.chain_id,
            }
            signed = self._signer.sign_transaction(tx)
            tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
            receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self._receipt_timeout)

            # Confirmation depth beyond inclusion
            target = receipt["blockNumber"] + max(confirmations, 1) - 1
            deadline = time.monotonic() + self._receipt_timeout
            while w3.eth.block_number < target:
                if time.monotonic() > deadline:
                    raise TimeoutError(f"Timed out waiting for {confirmations} confirmations")
                time.sleep(self._poll_interval)

            return receipt, "0x" + bytes(tx_hash).hex()

        try:
            receipt, tx_hash_hex = await asyncio.get_running_loop().run_in_executor(None, _execute)
        except Exception as e:
            logger.warning(f"TX ERROR [{request.chain_id}]: {type(e).__name__}: {e}")
            raise MintflowError(
                ErrorCode.TRANSACTION_FAILED,
                f"Transaction submission failed: {e}",
                {"networkId": request.chain_id, "to": request.to, "cause": e},
            ) from e

        if receipt["status"] != 1:
            logger.warning(f"TX FAILED [{request.chain_id}]: reverted {tx_hash_hex[:16]}...")
            raise MintflowError(
                ErrorCode.TRANSACTION_FAILED,
                "Transaction reverted",
                {"networkId": request.chain_id, "txHash": tx_hash_hex},
            )

        logs = tuple(
            LogEntry(
                address=str(log["address"]).lower(),
                topics=tuple(topic_hex(t) for t in log["topics"]),
                data=topic_hex(log["data"]),
            )
            for log in receipt.get("logs", [])
        )
        gas_used = receipt.get("gasUsed", 0)
        logger.info(f"TX SUCCESS [{request.chain_id}]: {tx_hash_hex[:16]}... | gas={gas_used}")
        return TransactionResponse(
            tx_hash=tx_hash_hex,
            chain_id=request.chain_id,
            block_number=receipt["blockNumber"],
            gas_used=gas_used,
            status=receipt["status"],
            logs=logs,
        )
