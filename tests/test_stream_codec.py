"""
Tests for store entry decoding across the three wire shapes
"""

from decimal import Decimal

from eth_abi import encode

from services.identity_hasher import ZERO_HASH, hash_phone
from services.stream_codec import (
    TRANSFER_EVENT_TOPIC,
    EntryKind,
    RawEncodedEntry,
    StructuredEntry,
    TransferRecord,
    WrappedEntry,
    decode_registration,
    decode_transfer_event,
    decode_transfer_record,
    encode_registration,
    encode_transfer_event,
    encode_transfer_record,
    event_topic,
)

IDENTITY = hash_phone("+60123456789")
WALLET = "0x" + "aa" * 20
PUBLISHER = "0x" + "0a" * 20
TX_ID = "0x" + "12" * 32


def _record(**overrides):
    values = dict(
        from_identity_hash=ZERO_HASH,
        to_identity_hash=IDENTITY,
        from_phone="",
        to_phone="+60123456789",
        amount_wei=1_500_000_000_000_000_000,
        token="SOMI",
        transaction_id=TX_ID,
        timestamp=1_700_000_000,
    )
    values.update(overrides)
    return TransferRecord(**values)


class TestRegistrationDecoding:

    def test_raw_encoded_entry(self):
        entry = RawEncodedEntry(encode_registration(IDENTITY, WALLET, "meta", 42))
        registration = decode_registration(entry, publisher=PUBLISHER)
        assert registration.identity_hash == IDENTITY
        assert registration.wallet_address.lower() == WALLET
        assert registration.metadata == "meta"
        assert registration.registered_at == 42
        assert registration.publisher == PUBLISHER

    def test_wrapped_entry_carries_its_publisher(self):
        entry = WrappedEntry(encode_registration(IDENTITY, WALLET, "", 1), key=IDENTITY, publisher=PUBLISHER)
        registration = decode_registration(entry)
        assert entry.kind is EntryKind.WRAPPED
        assert registration.publisher == PUBLISHER

    def test_structured_entry_with_nested_value_wrappers(self):
        entry = StructuredEntry([
            {"value": {"value": IDENTITY}},
            {"value": WALLET},
            "meta",
            {"value": 7},
        ])
        registration = decode_registration(entry)
        assert registration.identity_hash == IDENTITY
        assert registration.wallet_address.lower() == WALLET
        assert registration.registered_at == 7
        assert registration.publisher is None

    def test_zero_wallet_is_not_intact(self):
        entry = RawEncodedEntry(encode_registration(IDENTITY, "0x" + "00" * 20, "", 1))
        assert decode_registration(entry) is None

    def test_zero_identity_is_not_intact(self):
        entry = RawEncodedEntry(encode_registration(ZERO_HASH, WALLET, "", 1))
        assert decode_registration(entry) is None

    def test_garbage_bytes_decode_to_none(self):
        assert decode_registration(RawEncodedEntry(b"\x01\x02\x03")) is None

    def test_short_structured_entry_decodes_to_none(self):
        assert decode_registration(StructuredEntry([IDENTITY])) is None


class TestTransferRecordCodec:

    def test_encoded_record_decodes_back(self):
        record = _record()
        decoded = decode_transfer_record(RawEncodedEntry(encode_transfer_record(record)))
        assert decoded == record
        assert decoded.amount == Decimal("1.5")
        assert decoded.has_unknown_sender

    def test_zero_transaction_id_is_rejected(self):
        record = _record(transaction_id=ZERO_HASH)
        assert decode_transfer_record(RawEncodedEntry(encode_transfer_record(record))) is None

    def test_structured_transfer_entry(self):
        entry = StructuredEntry([
            {"value": ZERO_HASH}, {"value": IDENTITY}, "", "+60123456789",
            {"value": 10 ** 18}, "STT", {"value": TX_ID}, 1_700_000_100,
        ])
        decoded = decode_transfer_record(entry)
        assert decoded.token == "STT"
        assert decoded.amount == Decimal("1")
        assert decoded.timestamp == 1_700_000_100

    def test_registration_payload_is_not_a_transfer(self):
        entry = RawEncodedEntry(encode(["uint256"], [5]))
        assert decode_transfer_record(entry) is None


class TestTransferEvent:

    def test_topic_is_keccak_of_signature(self):
        assert TRANSFER_EVENT_TOPIC == event_topic(
            "TransferConfirmed(bytes32,bytes32,string,string,uint256,string,bytes32)"
        )
        assert len(TRANSFER_EVENT_TOPIC) == 66

    def test_event_rebuilds_record_from_topics_and_payload(self):
        sender = hash_phone("+60198765432")
        record = _record(from_identity_hash=sender, from_phone="+60198765432")
        topics = [TRANSFER_EVENT_TOPIC, sender, IDENTITY]
        rebuilt = decode_transfer_event(topics, encode_transfer_event(record), record.timestamp)
        assert rebuilt == record
