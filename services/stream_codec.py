"""
Stream Codec
ABI-style encoding/decoding for the records kept in the keyed data service.

Store entries arrive in one of three wire shapes. Each shape is a separate
dataclass tagged by EntryKind and decoded by the function registered for that
tag; there is no runtime property probing.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, ClassVar, Dict, List, Optional, Sequence, Union

from eth_abi import decode, encode
from eth_utils import keccak, to_checksum_address, to_hex

from services.identity_hasher import ZERO_HASH, is_zero_hash
from utils.decimal_precision import from_wei

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40

REGISTRATION_TYPES = ["bytes32", "address", "string", "uint64"]
REGISTRATION_SCHEMA = "bytes32 phoneHash, address walletAddress, string metainfo, uint64 registeredAt"

TRANSFER_RECORD_TYPES = [
    "bytes32", "bytes32", "string", "string", "uint256", "string", "bytes32", "uint64",
]
TRANSFER_RECORD_SCHEMA = (
    "bytes32 fromPhoneHash, bytes32 toPhoneHash, string fromPhone, string toPhone, "
    "uint256 amount, string token, bytes32 txHash, uint64 timestamp"
)

TRANSFER_EVENT_PAYLOAD_TYPES = ["string", "string", "uint256", "string", "bytes32"]
TRANSFER_EVENT_SIGNATURE = "TransferConfirmed(bytes32,bytes32,string,string,uint256,string,bytes32)"


def event_topic(signature: str) -> str:
    """keccak-256 of an event signature as 0x-prefixed hex"""
    return to_hex(keccak(text=signature))


TRANSFER_EVENT_TOPIC = event_topic(TRANSFER_EVENT_SIGNATURE)


class EntryKind(Enum):
    """Wire shapes a store entry can take"""
    STRUCTURED = "structured"      # already-decoded field list
    RAW_ENCODED = "raw_encoded"    # ABI-encoded bytes
    WRAPPED = "wrapped"            # ABI-encoded bytes inside a wrapper carrying key/publisher


@dataclass(frozen=True)
class StructuredEntry:
    fields: Sequence[Any]
    kind: ClassVar[EntryKind] = EntryKind.STRUCTURED


@dataclass(frozen=True)
class RawEncodedEntry:
    data: bytes
    kind: ClassVar[EntryKind] = EntryKind.RAW_ENCODED


@dataclass(frozen=True)
class WrappedEntry:
    data: bytes
    key: Optional[str] = None
    publisher: Optional[str] = None
    kind: ClassVar[EntryKind] = EntryKind.WRAPPED


DecodedEntry = Union[StructuredEntry, RawEncodedEntry, WrappedEntry]


@dataclass(frozen=True)
class Registration:
    """A phone registration written by an external publisher"""
    identity_hash: str
    wallet_address: str
    metadata: str
    registered_at: int
    publisher: Optional[str] = None


@dataclass(frozen=True)
class TransferRecord:
    """Durable history entry for one confirmed settlement"""
    from_identity_hash: str
    to_identity_hash: str
    from_phone: str
    to_phone: str
    amount_wei: int
    token: str
    transaction_id: str
    timestamp: int

    @property
    def amount(self) -> Decimal:
        return from_wei(self.amount_wei)

    @property
    def has_unknown_sender(self) -> bool:
        return is_zero_hash(self.from_identity_hash)


# ---------------------------------------------------------------------------
# Primitive conversions
# ---------------------------------------------------------------------------

def to_bytes(data: Union[bytes, bytearray, str]) -> bytes:
    """Accept raw bytes or 0x-hex text"""
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    text = data[2:] if data.startswith(("0x", "0X")) else data
    return bytes.fromhex(text)


def bytes32_from_hex(value: str) -> bytes:
    raw = to_bytes(value)
    if len(raw) != 32:
        raise ValueError(f"expected 32 bytes, got {len(raw)}")
    return raw


def hex32(value: Union[bytes, bytearray, str]) -> str:
    """Render a bytes32 value (bytes or hex text) as lowercase 0x hex"""
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = value.lower()
    return text if text.startswith("0x") else "0x" + text


def _unwrap(field: Any) -> Any:
    """Structured fields may be bare or wrapped in {'value': ...} up to two levels"""
    for _ in range(2):
        if isinstance(field, dict) and "value" in field:
            field = field["value"]
    return field


def _structured_fields(entry: StructuredEntry, types: List[str]) -> List[Any]:
    values = [_unwrap(field) for field in entry.fields]
    if len(values) < len(types):
        raise ValueError(f"expected {len(types)} fields, got {len(values)}")
    return values[: len(types)]


def _abi_fields(entry: Union[RawEncodedEntry, WrappedEntry], types: List[str]) -> List[Any]:
    return list(decode(types, to_bytes(entry.data)))


_FIELD_DECODERS: Dict[EntryKind, Callable[[Any, List[str]], List[Any]]] = {
    EntryKind.STRUCTURED: _structured_fields,
    EntryKind.RAW_ENCODED: _abi_fields,
    EntryKind.WRAPPED: _abi_fields,
}


def entry_fields(entry: DecodedEntry, types: List[str]) -> List[Any]:
    """Dispatch on the entry's tag; raises on malformed payloads"""
    return _FIELD_DECODERS[entry.kind](entry, types)


# ---------------------------------------------------------------------------
# Registration schema
# ---------------------------------------------------------------------------

def encode_registration(identity_hash: str, wallet_address: str, metadata: str, registered_at: int) -> bytes:
    return encode(
        REGISTRATION_TYPES,
        [bytes32_from_hex(identity_hash), wallet_address, metadata, int(registered_at)],
    )


def decode_registration(entry: DecodedEntry, publisher: Optional[str] = None) -> Optional[Registration]:
    """
    Decode a registration entry. Returns None when the payload cannot be
    decoded or its identity/wallet fields are missing or zero.
    """
    try:
        identity, wallet, metadata, registered_at = entry_fields(entry, REGISTRATION_TYPES)
        identity_hash = hex32(identity) if identity else ""
        wallet_address = str(wallet or "")
        if is_zero_hash(identity_hash) or not wallet_address or wallet_address.lower() == ZERO_ADDRESS:
            return None
        return Registration(
            identity_hash=identity_hash,
            wallet_address=to_checksum_address(wallet_address),
            metadata=str(metadata or ""),
            registered_at=int(registered_at or 0),
            publisher=publisher or (entry.publisher if entry.kind is EntryKind.WRAPPED else None),
        )
    except Exception as e:
        logger.debug(f"Registration entry ({entry.kind.value}) failed to decode: {e}")
        return None


# ---------------------------------------------------------------------------
# Transfer history schema
# ---------------------------------------------------------------------------

def encode_transfer_record(record: TransferRecord) -> bytes:
    return encode(
        TRANSFER_RECORD_TYPES,
        [
            bytes32_from_hex(record.from_identity_hash),
            bytes32_from_hex(record.to_identity_hash),
            record.from_phone,
            record.to_phone,
            int(record.amount_wei),
            record.token,
            bytes32_from_hex(record.transaction_id),
            int(record.timestamp),
        ],
    )


def decode_transfer_record(entry: DecodedEntry) -> Optional[TransferRecord]:
    """Decode a transfer history entry; None when malformed or not intact"""
    try:
        (from_hash, to_hash, from_phone, to_phone,
         amount, token, tx_id, timestamp) = entry_fields(entry, TRANSFER_RECORD_TYPES)
        record = TransferRecord(
            from_identity_hash=hex32(from_hash) if from_hash else ZERO_HASH,
            to_identity_hash=hex32(to_hash) if to_hash else "",
            from_phone=str(from_phone or ""),
            to_phone=str(to_phone or ""),
            amount_wei=int(amount or 0),
            token=str(token or ""),
            transaction_id=hex32(tx_id) if tx_id else "",
            timestamp=int(timestamp or 0),
        )
    except Exception as e:
        logger.debug(f"Transfer entry ({entry.kind.value}) failed to decode: {e}")
        return None

    if is_zero_hash(record.to_identity_hash) or is_zero_hash(record.transaction_id):
        return None
    return record


# ---------------------------------------------------------------------------
# TransferConfirmed event
# ---------------------------------------------------------------------------

def encode_transfer_event(record: TransferRecord) -> bytes:
    return encode(
        TRANSFER_EVENT_PAYLOAD_TYPES,
        [
            record.from_phone,
            record.to_phone,
            int(record.amount_wei),
            record.token,
            bytes32_from_hex(record.transaction_id),
        ],
    )


def decode_transfer_event(topics: Sequence[Any], data: Union[bytes, str], timestamp: int) -> TransferRecord:
    """Rebuild a TransferRecord from a raw log; topics[1]/[2] are the identity hashes"""
    if len(topics) < 3:
        raise ValueError(f"expected 3 topics, got {len(topics)}")
    from_phone, to_phone, amount, token, tx_id = decode(TRANSFER_EVENT_PAYLOAD_TYPES, to_bytes(data))
    return TransferRecord(
        from_identity_hash=hex32(topics[1]),
        to_identity_hash=hex32(topics[2]),
        from_phone=from_phone,
        to_phone=to_phone,
        amount_wei=int(amount),
        token=token,
        transaction_id=hex32(tx_id),
        timestamp=int(timestamp),
    )
