"""
Transfer Recorder
Persists one history entry per confirmed settlement, keyed by the settlement
transaction id. Failures here are soft: the value already moved.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from services.engine_context import EngineContext
from services.stream_codec import TransferRecord, decode_transfer_record, encode_transfer_record

logger = logging.getLogger(__name__)


@dataclass
class RecordResult:
    recorded: bool
    transaction_id: str
    error: Optional[str] = None
    already_recorded: bool = False


class TransferRecorder:
    """Write TransferRecords into the transfer history schema under the signer's scope"""

    def __init__(self, context: EngineContext):
        self.stream = context.stream
        self.signer_address = context.signer_address
        self.schema_name = context.settings.transfer_schema_name

    @staticmethod
    def build_payload(record: TransferRecord) -> bytes:
        return encode_transfer_record(record)

    async def _existing(self, schema_id: str, transaction_id: str) -> Optional[TransferRecord]:
        entries = await self.stream.get_by_key(schema_id, self.signer_address, transaction_id)
        for entry in entries:
            existing = decode_transfer_record(entry)
            if existing is not None and existing.transaction_id == transaction_id.lower():
                return existing
        return None

    async def record(self, record: TransferRecord) -> RecordResult:
        """Never raises; the outcome is reported in the RecordResult"""
        tx_id = record.transaction_id
        try:
            schema_id = await self.stream.schema_id(self.schema_name)
            if not schema_id:
                logger.warning(f"⚠️ {self.schema_name} schema not provisioned; history for {tx_id[:12]}... not recorded")
                return RecordResult(False, tx_id, f"{self.schema_name} schema not found")

            try:
                existing = await self._existing(schema_id, tx_id)
            except Exception as e:
                # Some stores revert on an unknown key; the write below is still keyed by tx id
                logger.debug(f"Existing-record check for {tx_id[:12]}... failed: {e}")
                existing = None
            if existing is not None:
                logger.info(f"♻️ Transfer {tx_id[:12]}... already recorded; skipping duplicate write")
                return RecordResult(True, tx_id, already_recorded=True)

            write_id = await self.stream.set_entry(schema_id, tx_id, self.build_payload(record))
            logger.info(f"📝 Recorded transfer {tx_id[:12]}... (write {write_id[:12]}...)")
            return RecordResult(True, tx_id)
        except Exception as e:
            logger.error(f"❌ Failed to record transfer {tx_id[:12]}...: {e}")
            return RecordResult(False, tx_id, str(e))
