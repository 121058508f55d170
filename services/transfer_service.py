"""
Transfer Service
Entry points consumed by the messaging and web layers: send a native-token
transfer to a phone number, and query or render transfer history.

Steps of one transfer run strictly in order: resolve, settle, then (only on
confirmed success) record and notify. Recording and notification failures are
returned as warnings on the receipt, never raised.
"""

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, List, Optional, Tuple, Union

from services.engine_context import EngineContext
from services.history_aggregator import HistoryAggregator, format_transaction_history
from services.identity_hasher import ZERO_HASH, mask_phone
from services.registry_resolver import RegistryResolver
from services.settlement_executor import SettlementExecutor
from services.stream_codec import TransferRecord
from services.transfer_notifier import NotifyResult, TransferNotifier
from services.transfer_recorder import RecordResult, TransferRecorder
from utils.exception_handler import NotRegistered, SettlementReverted, log_transfer_errors
from utils.input_validation import InputValidator

logger = logging.getLogger(__name__)


@dataclass
class TransferReceipt:
    """Successful transfer, plus any bookkeeping warnings"""
    record: TransferRecord
    to_address: str
    recorded: RecordResult
    notified: NotifyResult
    warnings: List[str] = field(default_factory=list)

    @property
    def transaction_id(self) -> str:
        return self.record.transaction_id

    @property
    def message(self) -> str:
        amount = self.record.amount
        lines = [
            "✅ Transfer successful!",
            "",
            f"Sent {amount} {self.record.token} to {self.record.to_phone}",
            f"Wallet: {self.to_address}",
            f"Tx: {self.transaction_id}",
        ]
        for warning in self.warnings:
            lines.append(f"⚠️ {warning}")
        return "\n".join(lines)


class TransferService:
    """Produced interface of the engine"""

    def __init__(
        self,
        context: EngineContext,
        resolver: Optional[RegistryResolver] = None,
        executor: Optional[SettlementExecutor] = None,
        recorder: Optional[TransferRecorder] = None,
        notifier: Optional[TransferNotifier] = None,
        history: Optional[HistoryAggregator] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.context = context
        self.hasher = context.hasher
        self.resolver = resolver or RegistryResolver(context)
        self.executor = executor or SettlementExecutor(context)
        self.recorder = recorder or TransferRecorder(context)
        self.notifier = notifier or TransferNotifier(context)
        self.history = history or HistoryAggregator(context, self.resolver)
        self.clock = clock

    @log_transfer_errors
    async def handle_transfer(
        self,
        to_phone: str,
        amount: Union[str, Decimal],
        token: str,
        from_phone: Optional[str] = None,
    ) -> TransferReceipt:
        """
        Raises InputInvalid, NotRegistered, SettlementReverted or
        SettlementTimeout; anything after a confirmed settlement is soft.
        """
        InputValidator.validate_phone(to_phone)
        InputValidator.validate_token(token, self.context.settings.native_tokens)
        InputValidator.validate_amount(amount)

        to_identifier = self.hasher.normalize(to_phone)
        to_hash = self.hasher.hash(to_identifier)
        from_identifier = self.hasher.normalize(from_phone) if from_phone else ""
        from_hash = self.hasher.hash(from_identifier) if from_identifier else ZERO_HASH

        logger.info(f"🔍 Resolving recipient {mask_phone(to_identifier)} ({to_hash[:12]}...)")
        owners = self.context.candidate_owners
        resolution = await self.resolver.lookup(to_hash, owners)
        if not resolution.found:
            raise NotRegistered(to_identifier, owners_searched=len(owners))

        to_address = resolution.wallet_address
        if to_address.lower() == self.context.signer_address.lower():
            logger.warning(f"⚠️ Recipient wallet {to_address} is the signer's own wallet")

        settlement = await self.executor.execute(to_address, amount, token)
        if not settlement.succeeded:
            raise SettlementReverted(settlement.transaction_id)

        record = TransferRecord(
            from_identity_hash=from_hash,
            to_identity_hash=to_hash,
            from_phone=from_identifier,
            to_phone=to_identifier,
            amount_wei=settlement.amount_wei,
            token=token.strip().upper(),
            transaction_id=settlement.transaction_id.lower(),
            timestamp=int(self.clock()),
        )

        warnings = []
        recorded = await self.recorder.record(record)
        if not recorded.recorded:
            warnings.append("Transfer completed but could not be saved to history.")
        notified = await self.notifier.notify(record, settlement)
        if not notified.emitted:
            warnings.append("Transfer completed but the recipient may not be notified automatically.")

        logger.info(f"✅ Transfer {record.transaction_id[:12]}... complete ({len(warnings)} warning(s))")
        return TransferReceipt(record, to_address, recorded, notified, warnings)

    async def query_history(self, target: str, limit: Optional[int] = None) -> List[TransferRecord]:
        """target is an identity hash or a registered wallet address"""
        _, records = await self.query_history_with_viewer(target, limit)
        return records

    @log_transfer_errors
    async def query_history_with_viewer(
        self, target: str, limit: Optional[int] = None
    ) -> Tuple[Optional[str], List[TransferRecord]]:
        """Records plus the identity they belong to, for direction labelling"""
        limit = InputValidator.validate_limit(limit, self.context.settings.history_default_limit)
        return await self.history.history_for(target, limit)

    @log_transfer_errors
    async def handle_history_request(self, sender_phone: str, limit: Optional[int] = None) -> str:
        """Messaging-layer history: canonicalize the phone, query, render as text"""
        InputValidator.validate_phone(sender_phone, "sender phone")
        limit = InputValidator.validate_limit(limit, self.context.settings.history_default_limit)
        identity_hash = self.hasher.identity_for(sender_phone)

        records = await self.history.query(identity_hash=identity_hash, limit=limit)
        if not records:
            return (
                "📋 *Transaction History*\n\n"
                "No transactions found for your account.\n\n"
                "Start sending or receiving transfers to see your history here!"
            )

        text = format_transaction_history(records, identity_hash)
        if len(records) >= limit:
            link = f"{self.context.settings.webapp_base_url}/transactions/{identity_hash}"
            text = f"{text}\n\n📊 *View All Transactions*\n{link}\n\nView all your transactions on the web!"
        return text
