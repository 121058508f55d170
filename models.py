"""
Local Chain Database Schema
===========================

Tables backing the local development/test chain: a keyed data store
(schemas and owner-scoped entries) and a settlement ledger (transactions
with per-signer sequence numbers and the event logs they emitted).
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from sqlalchemy import (
    Integer, BigInteger, String, DateTime, LargeBinary, JSON,
    UniqueConstraint, Index, func
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# ============================================================================
# ENUMS
# ============================================================================

class LedgerTransactionKind(Enum):
    """What a ledger transaction did"""
    VALUE_TRANSFER = "value_transfer"
    STORE_WRITE = "store_write"
    EVENT_EMIT = "event_emit"


# ============================================================================
# KEYED DATA STORE
# ============================================================================

class StreamSchema(Base):
    """A registered schema: human-readable name -> schema id"""
    __tablename__ = "stream_schemas"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    schema_id: Mapped[str] = mapped_column(String(66), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    schema: Mapped[str] = mapped_column(String(500), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)


class StreamEntry(Base):
    """Owner-scoped entry addressed by (schema id, publisher, key)"""
    __tablename__ = "stream_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    schema_id: Mapped[str] = mapped_column(String(66), nullable=False)
    publisher: Mapped[str] = mapped_column(String(42), nullable=False)
    data_key: Mapped[str] = mapped_column(String(66), nullable=False)
    data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("schema_id", "publisher", "data_key", name="uq_stream_entry_address"),
        Index("ix_stream_entries_owner", "schema_id", "publisher"),
    )


# ============================================================================
# SETTLEMENT LEDGER
# ============================================================================

class LedgerTransaction(Base):
    """A submitted transaction; each consumes one sequence number of its signer"""
    __tablename__ = "ledger_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tx_hash: Mapped[str] = mapped_column(String(66), nullable=False, unique=True, index=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    sender: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    recipient: Mapped[Optional[str]] = mapped_column(String(42), nullable=True)
    # Wei amounts exceed 64 bits
    value: Mapped[str] = mapped_column(String(80), nullable=False, default="0")
    nonce: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    block_number: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    block_timestamp: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    __table_args__ = (
        UniqueConstraint("sender", "nonce", name="uq_ledger_sender_nonce"),
    )


class LedgerLog(Base):
    """Event log emitted by a transaction; topics[0] is the event signature hash"""
    __tablename__ = "ledger_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    address: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    topics: Mapped[list] = mapped_column(JSON, nullable=False)
    data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    tx_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
