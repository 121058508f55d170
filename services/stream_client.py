"""
Stream Client
The keyed data/event service: append-only, owner-scoped entries addressed by
(schema id, publisher, key), plus indexed event emission. Lookups are only
eventually consistent, so callers must decode defensively.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from eth_utils import to_checksum_address
from web3 import AsyncWeb3

from services.ledger_client import Web3LedgerClient
from services.stream_codec import DecodedEntry, RawEncodedEntry, bytes32_from_hex, hex32
from services.identity_hasher import is_zero_hash
from utils.exception_handler import StoreUnavailable

logger = logging.getLogger(__name__)


STREAMS_ABI = [
    {
        "name": "idToSchemaId",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "id", "type": "string"}],
        "outputs": [{"name": "", "type": "bytes32"}],
    },
    {
        "name": "getDataForKey",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "schemaId", "type": "bytes32"},
            {"name": "publisher", "type": "address"},
            {"name": "key", "type": "bytes32"},
        ],
        "outputs": [{"name": "", "type": "bytes"}],
    },
    {
        "name": "getAllPublisherDataForSchema",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "schemaId", "type": "bytes32"},
            {"name": "publisher", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "bytes[]"}],
    },
    {
        "name": "esstores",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {
                "name": "dataStreams",
                "type": "tuple[]",
                "components": [
                    {"name": "id", "type": "bytes32"},
                    {"name": "schemaId", "type": "bytes32"},
                    {"name": "data", "type": "bytes"},
                ],
            }
        ],
        "outputs": [],
    },
    {
        "name": "emitEvents",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {
                "name": "events",
                "type": "tuple[]",
                "components": [
                    {"name": "id", "type": "string"},
                    {"name": "argumentTopics", "type": "bytes32[]"},
                    {"name": "data", "type": "bytes"},
                ],
            }
        ],
        "outputs": [],
    },
]


class StreamClient(ABC):
    """Abstract keyed data/event service"""

    @property
    @abstractmethod
    def protocol_address(self) -> str:
        """Address whose logs carry the emitted events"""

    @abstractmethod
    async def schema_id(self, schema_name: str) -> Optional[str]:
        """Schema id for a registered schema name, or None if not provisioned"""

    @abstractmethod
    async def get_by_key(self, schema_id: str, owner: str, key: str) -> List[DecodedEntry]:
        ...

    @abstractmethod
    async def get_all_for_owner(self, schema_id: str, owner: str) -> List[DecodedEntry]:
        ...

    @abstractmethod
    async def set_entry(self, schema_id: str, key: str, payload: bytes) -> str:
        """Write under the signer's own owner scope; returns a write confirmation id"""

    @abstractmethod
    async def emit_event(self, event_id: str, topics: Sequence[str], payload: bytes) -> str:
        """Submit an event with indexed topics; returns the submission id"""


class Web3StreamClient(StreamClient):
    """StreamClient backed by the data-streams protocol contract"""

    def __init__(
        self,
        w3: AsyncWeb3,
        ledger: Web3LedgerClient,
        contract_address: str,
        write_timeout: float = 120.0,
    ):
        self.ledger = ledger
        self.write_timeout = write_timeout
        self._address = to_checksum_address(contract_address)
        self.contract = w3.eth.contract(address=self._address, abi=STREAMS_ABI)

    @property
    def protocol_address(self) -> str:
        return self._address

    async def schema_id(self, schema_name: str) -> Optional[str]:
        raw = await self.contract.functions.idToSchemaId(schema_name).call()
        schema_id = hex32(raw)
        return None if is_zero_hash(schema_id) else schema_id

    async def get_by_key(self, schema_id: str, owner: str, key: str) -> List[DecodedEntry]:
        data = await self.contract.functions.getDataForKey(
            bytes32_from_hex(schema_id), to_checksum_address(owner), bytes32_from_hex(key)
        ).call()
        return [RawEncodedEntry(bytes(data))] if data else []

    async def get_all_for_owner(self, schema_id: str, owner: str) -> List[DecodedEntry]:
        items = await self.contract.functions.getAllPublisherDataForSchema(
            bytes32_from_hex(schema_id), to_checksum_address(owner)
        ).call()
        return [RawEncodedEntry(bytes(item)) for item in items if item]

    async def set_entry(self, schema_id: str, key: str, payload: bytes) -> str:
        function = self.contract.functions.esstores(
            [(bytes32_from_hex(key), bytes32_from_hex(schema_id), payload)]
        )
        tx_id = await self.ledger.send_contract_transaction(function)
        # The write must be mined before the signer submits anything else
        receipt = await self.ledger.wait_for_confirmation(tx_id, self.write_timeout)
        if not receipt.succeeded:
            raise StoreUnavailable(f"Store write {tx_id} reverted")
        return tx_id

    async def emit_event(self, event_id: str, topics: Sequence[str], payload: bytes) -> str:
        function = self.contract.functions.emitEvents(
            [(event_id, [bytes32_from_hex(topic) for topic in topics], payload)]
        )
        return await self.ledger.send_contract_transaction(function)
