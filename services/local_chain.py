"""
Local Chain
SQLAlchemy-backed stand-ins for the settlement ledger and the keyed data/event
service, used for local development and tests. They keep the same observable
rules as the real network: every signer write consumes one sequence number,
store entries are owner-scoped and upserted by key, and emitted events become
logs filterable by topic position.
"""

import logging
import time
from typing import Callable, Dict, List, Optional, Sequence, Union

from eth_abi import encode
from eth_utils import keccak, to_checksum_address, to_hex
from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from database import managed_session
from models import LedgerLog as LedgerLogRow
from models import LedgerTransaction, LedgerTransactionKind, StreamEntry, StreamSchema
from services.identity_hasher import ZERO_HASH
from services.ledger_client import LedgerClient, LedgerLog, LedgerReceipt, TopicFilter
from services.stream_client import StreamClient
from services.stream_codec import DecodedEntry, TRANSFER_EVENT_SIGNATURE, WrappedEntry, event_topic, hex32, bytes32_from_hex

logger = logging.getLogger(__name__)

LOCAL_STREAMS_ADDRESS = "0x" + "5e" * 20
DEFAULT_EVENT_SIGNATURES = {"TransferConfirmed": TRANSFER_EVENT_SIGNATURE}


def _block_bound(value: Union[int, str], default: int) -> int:
    if isinstance(value, int):
        return value
    if value == "earliest":
        return 0
    if value in ("latest", "pending"):
        return default
    return int(value, 0)


def _topics_match(log_topics: Sequence[str], wanted: TopicFilter) -> bool:
    """Positional match; None in the filter is a wildcard"""
    for position, topic in enumerate(wanted):
        if topic is None:
            continue
        if position >= len(log_topics) or log_topics[position].lower() != topic.lower():
            return False
    return True


class LocalLedger(LedgerClient):
    """Settlement ledger kept in the local chain database"""

    def __init__(
        self,
        session_factory: sessionmaker,
        signer_address: str,
        clock: Callable[[], float] = time.time,
    ):
        self.session_factory = session_factory
        self._signer = to_checksum_address(signer_address)
        self.clock = clock

    @property
    def signer_address(self) -> str:
        return self._signer

    def record_transaction(
        self,
        session,
        kind: LedgerTransactionKind,
        sender: str,
        recipient: Optional[str] = None,
        value: int = 0,
        status: int = 1,
    ) -> LedgerTransaction:
        """Append a transaction using the sender's next sequence number; one block per transaction"""
        sender = sender.lower()
        nonce = session.scalar(
            select(func.count()).select_from(LedgerTransaction).where(LedgerTransaction.sender == sender)
        ) or 0
        block_number = (session.scalar(select(func.max(LedgerTransaction.block_number))) or 0) + 1
        tx = LedgerTransaction(
            tx_hash=to_hex(keccak(text=f"{sender}:{nonce}:{kind.value}:{block_number}")),
            kind=kind.value,
            sender=sender,
            recipient=recipient.lower() if recipient else None,
            value=str(int(value)),
            nonce=nonce,
            status=status,
            block_number=block_number,
            block_timestamp=int(self.clock()),
        )
        session.add(tx)
        session.flush()
        return tx

    async def submit_value_transfer(self, to_address: str, amount_wei: int) -> str:
        with managed_session(self.session_factory) as session:
            tx = self.record_transaction(
                session, LedgerTransactionKind.VALUE_TRANSFER, self._signer, to_address, amount_wei
            )
            logger.info(f"📤 Local value transfer {tx.tx_hash} (nonce {tx.nonce})")
            return tx.tx_hash

    async def wait_for_confirmation(self, transaction_id: str, timeout: float) -> LedgerReceipt:
        with managed_session(self.session_factory) as session:
            tx = session.scalar(select(LedgerTransaction).where(LedgerTransaction.tx_hash == transaction_id))
            if tx is None:
                raise TimeoutError(f"No receipt for {transaction_id} after {timeout:.0f}s")
            return LedgerReceipt(transaction_id=tx.tx_hash, status=tx.status, block_number=tx.block_number)

    async def get_historical_logs(
        self,
        address: str,
        topics: TopicFilter,
        from_block: Union[int, str] = "earliest",
        to_block: Union[int, str] = "latest",
    ) -> List[LedgerLog]:
        with managed_session(self.session_factory) as session:
            head = session.scalar(select(func.max(LedgerTransaction.block_number))) or 0
            lower, upper = _block_bound(from_block, 0), _block_bound(to_block, head)
            rows = session.scalars(
                select(LedgerLogRow)
                .where(LedgerLogRow.address == address.lower())
                .where(LedgerLogRow.block_number >= lower)
                .where(LedgerLogRow.block_number <= upper)
                .order_by(LedgerLogRow.block_number, LedgerLogRow.id)
            ).all()
            return [
                LedgerLog(
                    topics=list(row.topics),
                    data=bytes(row.data),
                    transaction_id=row.tx_hash,
                    block_number=row.block_number,
                    address=to_checksum_address(row.address),
                )
                for row in rows
                if _topics_match(row.topics, topics)
            ]

    async def get_pending_sequence_number(self, address: str) -> int:
        with managed_session(self.session_factory) as session:
            return session.scalar(
                select(func.count()).select_from(LedgerTransaction)
                .where(LedgerTransaction.sender == address.lower())
            ) or 0

    async def get_block_timestamp(self, block_number: int) -> int:
        with managed_session(self.session_factory) as session:
            timestamp = session.scalar(
                select(LedgerTransaction.block_timestamp).where(LedgerTransaction.block_number == block_number)
            )
            if timestamp is None:
                raise ValueError(f"Unknown block {block_number}")
            return int(timestamp)


class LocalStreamStore(StreamClient):
    """Keyed data/event service kept in the local chain database"""

    def __init__(
        self,
        session_factory: sessionmaker,
        ledger: LocalLedger,
        address: str = LOCAL_STREAMS_ADDRESS,
        event_signatures: Optional[Dict[str, str]] = None,
    ):
        self.session_factory = session_factory
        self.ledger = ledger
        self._address = to_checksum_address(address)
        self.event_signatures = dict(event_signatures or DEFAULT_EVENT_SIGNATURES)

    @property
    def protocol_address(self) -> str:
        return self._address

    def register_schema(self, name: str, schema: str) -> str:
        """Register a schema under a name; re-registering returns the existing id"""
        with managed_session(self.session_factory) as session:
            existing = session.scalar(select(StreamSchema).where(StreamSchema.name == name))
            if existing is not None:
                return existing.schema_id
            schema_id = to_hex(keccak(encode(["string", "string", "bytes32"], [name, schema, bytes32_from_hex(ZERO_HASH)])))
            session.add(StreamSchema(schema_id=schema_id, name=name, schema=schema))
            logger.info(f"🗂️ Registered schema {name} -> {schema_id[:12]}...")
            return schema_id

    async def schema_id(self, schema_name: str) -> Optional[str]:
        with managed_session(self.session_factory) as session:
            return session.scalar(select(StreamSchema.schema_id).where(StreamSchema.name == schema_name))

    def _upsert(self, session, schema_id: str, publisher: str, key: str, payload: bytes) -> None:
        publisher, key = publisher.lower(), hex32(key)
        entry = session.scalar(
            select(StreamEntry)
            .where(StreamEntry.schema_id == schema_id)
            .where(StreamEntry.publisher == publisher)
            .where(StreamEntry.data_key == key)
        )
        if entry is None:
            session.add(StreamEntry(schema_id=schema_id, publisher=publisher, data_key=key, data=bytes(payload)))
        else:
            entry.data = bytes(payload)

    def put_entry(self, owner: str, schema_id: str, key: str, payload: bytes) -> str:
        """Write under another publisher's scope, as an external registration service would"""
        with managed_session(self.session_factory) as session:
            self._upsert(session, schema_id, owner, key, payload)
            tx = self.ledger.record_transaction(session, LedgerTransactionKind.STORE_WRITE, owner)
            return tx.tx_hash

    @staticmethod
    def _as_entry(row: StreamEntry) -> WrappedEntry:
        return WrappedEntry(data=bytes(row.data), key=row.data_key, publisher=to_checksum_address(row.publisher))

    async def get_by_key(self, schema_id: str, owner: str, key: str) -> List[DecodedEntry]:
        with managed_session(self.session_factory) as session:
            rows = session.scalars(
                select(StreamEntry)
                .where(StreamEntry.schema_id == schema_id)
                .where(StreamEntry.publisher == owner.lower())
                .where(StreamEntry.data_key == hex32(key))
            ).all()
            return [self._as_entry(row) for row in rows]

    async def get_all_for_owner(self, schema_id: str, owner: str) -> List[DecodedEntry]:
        with managed_session(self.session_factory) as session:
            rows = session.scalars(
                select(StreamEntry)
                .where(StreamEntry.schema_id == schema_id)
                .where(StreamEntry.publisher == owner.lower())
                .order_by(StreamEntry.id)
            ).all()
            return [self._as_entry(row) for row in rows]

    async def set_entry(self, schema_id: str, key: str, payload: bytes) -> str:
        return self.put_entry(self.ledger.signer_address, schema_id, key, payload)

    async def emit_event(self, event_id: str, topics: Sequence[str], payload: bytes) -> str:
        signature = self.event_signatures.get(event_id)
        if signature is None:
            raise ValueError(f"Event {event_id} is not registered")
        with managed_session(self.session_factory) as session:
            tx = self.ledger.record_transaction(
                session, LedgerTransactionKind.EVENT_EMIT, self.ledger.signer_address, self._address
            )
            session.add(LedgerLogRow(
                address=self._address.lower(),
                topics=[event_topic(signature), *[hex32(topic) for topic in topics]],
                data=bytes(payload),
                tx_hash=tx.tx_hash,
                block_number=tx.block_number,
            ))
            return tx.tx_hash
