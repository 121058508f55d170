"""
History Aggregator
Rebuilds the transfers touching one identity.

Primary path: bulk-fetch every transfer record under the signer's owner scope
and filter in memory (the store's key is the transaction id, so there is no
identity index). Fallback path, used only when the primary query fails: scan
the ledger's TransferConfirmed logs with the identity in either indexed topic.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from services.engine_context import EngineContext
from services.identity_hasher import is_identity_hash, is_wallet_address, is_zero_hash, same_hash
from services.registry_resolver import RegistryResolver
from services.stream_codec import TRANSFER_EVENT_TOPIC, TransferRecord, decode_transfer_event, decode_transfer_record
from utils.decimal_precision import format_token_amount, from_wei
from utils.exception_handler import InputInvalid
from utils.input_validation import InputValidator

logger = logging.getLogger(__name__)

SENT = "sent"
RECEIVED = "received"


def label_direction(record: TransferRecord, viewer: Optional[str]) -> str:
    """Unknown sender (zero hash) always reads as received"""
    if record.has_unknown_sender:
        return RECEIVED
    if same_hash(record.from_identity_hash, viewer):
        return SENT
    if same_hash(record.to_identity_hash, viewer):
        return RECEIVED
    return SENT


def touches(record: TransferRecord, identity_hash: str) -> bool:
    return same_hash(record.from_identity_hash, identity_hash) or same_hash(record.to_identity_hash, identity_hash)


def _counterparty(record: TransferRecord, direction: str) -> str:
    return record.to_phone if direction == SENT else record.from_phone


def _short_tx(transaction_id: str) -> str:
    return f"{transaction_id[:10]}...{transaction_id[-8:]}"


def _date(timestamp: int) -> str:
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc).strftime("%Y-%m-%d %H:%M UTC")


def format_transaction_history(records: List[TransferRecord], viewer: Optional[str] = None) -> str:
    """Chat-style text listing of the records, numbered from most recent"""
    if not records:
        return "📋 *Transaction History*\n\nNo transactions found."

    lines = ["📋 *Transaction History*\n", f"Found {len(records)} transaction(s)\n"]
    for index, record in enumerate(records, start=1):
        direction = label_direction(record, viewer)
        counterparty = _counterparty(record, direction)
        lines.append(f"{index}. {'📤 Sent' if direction == SENT else '📥 Received'}")
        if counterparty:
            lines.append(f"   {'To' if direction == SENT else 'From'}: {counterparty}")
        lines.append(f"   Amount: *{format_token_amount(record.amount_wei, record.token)}*")
        lines.append(f"   Token: {record.token}")
        lines.append(f"   Tx: {_short_tx(record.transaction_id)}")
        lines.append(f"   Date: {_date(record.timestamp)}")
        lines.append("")
    return "\n".join(lines).rstrip()


def history_as_dicts(records: List[TransferRecord], viewer: Optional[str] = None) -> List[Dict[str, str]]:
    """Structured form of the records for the HTTP API"""
    result = []
    for record in records:
        direction = label_direction(record, viewer)
        result.append({
            "direction": direction,
            "counterparty": _counterparty(record, direction),
            "from_identity_hash": record.from_identity_hash,
            "to_identity_hash": record.to_identity_hash,
            "amount": str(from_wei(record.amount_wei)),
            "token": record.token,
            "transaction_id": record.transaction_id,
            "timestamp": datetime.fromtimestamp(record.timestamp, tz=timezone.utc).isoformat(),
        })
    return result


class HistoryAggregator:
    """Ordered transfer history for an identity hash or a registered wallet"""

    def __init__(self, context: EngineContext, resolver: Optional[RegistryResolver] = None):
        self.context = context
        self.stream = context.stream
        self.ledger = context.ledger
        self.resolver = resolver or RegistryResolver(context)
        self.schema_name = context.settings.transfer_schema_name
        from_block = context.settings.history_log_from_block
        self.from_block = int(from_block) if str(from_block).isdigit() else from_block

    async def _from_store(self, identity_hash: str) -> List[TransferRecord]:
        schema_id = await self.stream.schema_id(self.schema_name)
        if not schema_id:
            raise LookupError(f"{self.schema_name} schema not found")
        entries = await self.stream.get_all_for_owner(schema_id, self.context.signer_address)
        records = []
        for entry in entries:
            record = decode_transfer_record(entry)
            if record is not None and touches(record, identity_hash):
                records.append(record)
        logger.info(f"📚 {len(records)} of {len(entries)} stored transfers touch {identity_hash[:12]}...")
        return records

    async def _from_logs(self, identity_hash: str) -> List[TransferRecord]:
        address = self.stream.protocol_address
        logs = []
        # Identity as sender, then as receiver
        for topics in ([TRANSFER_EVENT_TOPIC, identity_hash, None], [TRANSFER_EVENT_TOPIC, None, identity_hash]):
            logs.extend(await self.ledger.get_historical_logs(address, topics, from_block=self.from_block))

        records: Dict[str, TransferRecord] = {}
        timestamps: Dict[int, int] = {}
        for log in logs:
            try:
                if log.block_number not in timestamps:
                    timestamps[log.block_number] = await self.ledger.get_block_timestamp(log.block_number)
                record = decode_transfer_event(log.topics, log.data, timestamps[log.block_number])
            except Exception as e:
                logger.debug(f"Skipping undecodable log in {log.transaction_id}: {e}")
                continue
            records.setdefault(record.transaction_id, record)
        logger.info(f"📜 Log scan found {len(records)} transfers for {identity_hash[:12]}...")
        return list(records.values())

    async def query(
        self,
        identity_hash: Optional[str] = None,
        wallet_address: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[TransferRecord]:
        """Most recent first, truncated to limit; an unresolvable wallet yields []"""
        _, records = await self.query_with_viewer(identity_hash, wallet_address, limit)
        return records

    async def query_with_viewer(
        self,
        identity_hash: Optional[str] = None,
        wallet_address: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Tuple[Optional[str], List[TransferRecord]]:
        """Records plus the identity they were gathered for, resolving a wallet only once"""
        limit = InputValidator.validate_limit(limit, self.context.settings.history_default_limit)
        if identity_hash is None:
            if not wallet_address:
                raise InputInvalid("Either an identity hash or a wallet address is required")
            identity_hash = await self.resolver.find_identity_for_wallet(wallet_address.strip())
            if identity_hash is None:
                return None, []

        try:
            records = await self._from_store(identity_hash)
        except Exception as e:
            logger.warning(f"⚠️ Stored history unavailable ({e}); falling back to event logs")
            try:
                records = await self._from_logs(identity_hash)
            except Exception as log_error:
                logger.error(f"❌ Event log scan failed for {identity_hash[:12]}...: {log_error}")
                return identity_hash, []

        records.sort(key=lambda r: r.timestamp, reverse=True)
        return identity_hash, records[:limit]

    async def history_for(
        self, target: str, limit: Optional[int] = None
    ) -> Tuple[Optional[str], List[TransferRecord]]:
        """Accepts either form of target"""
        target = (target or "").strip()
        if is_identity_hash(target) and not is_zero_hash(target):
            return await self.query_with_viewer(identity_hash=target.lower(), limit=limit)
        if is_wallet_address(target):
            return await self.query_with_viewer(wallet_address=target, limit=limit)
        raise InputInvalid(f"Not an identity hash or wallet address: {target}")
