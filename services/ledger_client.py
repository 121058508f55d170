"""
Ledger Client
Settlement-ledger capabilities used by the engine: submit a native value
transfer, wait for its receipt, read historical logs and the signer's pending
sequence number (nonce).
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Union

from eth_account import Account
from eth_utils import to_checksum_address, to_hex
from web3 import AsyncWeb3
from web3.exceptions import TimeExhausted

logger = logging.getLogger(__name__)

RECEIPT_STATUS_SUCCESS = 1

TopicFilter = Sequence[Optional[str]]


@dataclass(frozen=True)
class LedgerReceipt:
    transaction_id: str
    status: int
    block_number: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == RECEIPT_STATUS_SUCCESS


@dataclass(frozen=True)
class LedgerLog:
    topics: List[str]
    data: bytes
    transaction_id: str
    block_number: int
    address: str = ""


class LedgerClient(ABC):
    """Abstract settlement ledger; every call is a suspending network operation"""

    @property
    @abstractmethod
    def signer_address(self) -> str:
        ...

    @abstractmethod
    async def submit_value_transfer(self, to_address: str, amount_wei: int) -> str:
        """Sign and submit a native transfer from the signer; returns the transaction id"""

    @abstractmethod
    async def wait_for_confirmation(self, transaction_id: str, timeout: float) -> LedgerReceipt:
        """Block until a receipt exists; raises TimeoutError when none appears in time"""

    @abstractmethod
    async def get_historical_logs(
        self,
        address: str,
        topics: TopicFilter,
        from_block: Union[int, str] = "earliest",
        to_block: Union[int, str] = "latest",
    ) -> List[LedgerLog]:
        ...

    @abstractmethod
    async def get_pending_sequence_number(self, address: str) -> int:
        ...

    @abstractmethod
    async def get_block_timestamp(self, block_number: int) -> int:
        ...


class Web3LedgerClient(LedgerClient):
    """LedgerClient over an EVM JSON-RPC node using web3.py"""

    def __init__(
        self,
        w3: AsyncWeb3,
        private_key: str,
        chain_id: Optional[int] = None,
        poll_interval: float = 1.0,
    ):
        self.w3 = w3
        self.account = Account.from_key(private_key)
        self.chain_id = chain_id
        self.poll_interval = poll_interval

    @staticmethod
    def address_for_key(private_key: str) -> str:
        return Account.from_key(private_key).address

    @property
    def signer_address(self) -> str:
        return self.account.address

    async def _chain_id(self) -> int:
        if self.chain_id is None:
            return await self.w3.eth.chain_id
        return self.chain_id

    async def _sign_and_send(self, tx: dict) -> str:
        signed = self.account.sign_transaction(tx)
        tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        return to_hex(tx_hash)

    async def submit_value_transfer(self, to_address: str, amount_wei: int) -> str:
        sender = self.signer_address
        tx = {
            "from": sender,
            "to": to_checksum_address(to_address),
            "value": int(amount_wei),
            "nonce": await self.w3.eth.get_transaction_count(sender, "pending"),
            "chainId": await self._chain_id(),
            "gasPrice": await self.w3.eth.gas_price,
        }
        tx["gas"] = await self.w3.eth.estimate_gas(tx)
        tx.pop("from")
        tx_id = await self._sign_and_send(tx)
        logger.info(f"📤 Submitted value transfer {tx_id} (nonce {tx['nonce']})")
        return tx_id

    async def send_contract_transaction(self, function: Any) -> str:
        """Sign and submit a prepared contract function call from the signer"""
        sender = self.signer_address
        tx = await function.build_transaction({
            "from": sender,
            "nonce": await self.w3.eth.get_transaction_count(sender, "pending"),
            "chainId": await self._chain_id(),
        })
        return await self._sign_and_send(tx)

    async def wait_for_confirmation(self, transaction_id: str, timeout: float) -> LedgerReceipt:
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                transaction_id, timeout=timeout, poll_latency=self.poll_interval
            )
        except TimeExhausted as e:
            raise TimeoutError(f"No receipt for {transaction_id} after {timeout:.0f}s") from e
        return LedgerReceipt(
            transaction_id=transaction_id,
            status=int(receipt["status"]),
            block_number=receipt.get("blockNumber"),
        )

    async def get_historical_logs(
        self,
        address: str,
        topics: TopicFilter,
        from_block: Union[int, str] = "earliest",
        to_block: Union[int, str] = "latest",
    ) -> List[LedgerLog]:
        raw_logs = await self.w3.eth.get_logs({
            "address": to_checksum_address(address),
            "topics": list(topics),
            "fromBlock": from_block,
            "toBlock": to_block,
        })
        return [
            LedgerLog(
                topics=[to_hex(topic) for topic in log["topics"]],
                data=bytes(log["data"]),
                transaction_id=to_hex(log["transactionHash"]),
                block_number=int(log["blockNumber"]),
                address=log.get("address", ""),
            )
            for log in raw_logs
        ]

    async def get_pending_sequence_number(self, address: str) -> int:
        return await self.w3.eth.get_transaction_count(to_checksum_address(address), "pending")

    async def get_block_timestamp(self, block_number: int) -> int:
        block = await self.w3.eth.get_block(block_number)
        return int(block["timestamp"])
