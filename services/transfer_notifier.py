"""
Transfer Notifier
Emits the TransferConfirmed event for a settled transfer. Only nonce-class
failures are retried, a bounded number of times; a failed notification is a
warning, never a failed transfer.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from services.engine_context import EngineContext
from services.settlement_executor import SettlementResult
from services.stream_codec import TransferRecord, encode_transfer_event

logger = logging.getLogger(__name__)

# Upper bound on pending-nonce polls after the settle delay
MAX_SEQUENCE_CHECKS = 5


@dataclass
class NotifyResult:
    emitted: bool
    attempts: int
    submission_id: Optional[str] = None
    error: Optional[str] = None


class TransferNotifier:
    """Serializes event emission behind the confirmed settlement on the same signer"""

    def __init__(self, context: EngineContext, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.context = context
        self.stream = context.stream
        self.ledger = context.ledger
        self.retry = context.retry
        self.event_id = context.settings.transfer_event_id
        self.settle_delay = context.settings.notify_settle_delay
        self._sleep = sleep

    async def _wait_for_sequence(self, settlement: Optional[SettlementResult]) -> None:
        """Give the ledger a moment and confirm the settlement nonce is no longer pending"""
        if self.settle_delay > 0:
            await self._sleep(self.settle_delay)
        if settlement is None or settlement.sequence_number is None:
            return
        for _ in range(MAX_SEQUENCE_CHECKS):
            try:
                pending = await self.ledger.get_pending_sequence_number(self.ledger.signer_address)
            except Exception as e:
                logger.warning(f"⚠️ Could not re-check signer sequence number: {e}")
                return
            if pending > settlement.sequence_number:
                return
            logger.info(f"⏳ Signer nonce still at {pending}; waiting for settlement to clear")
            if self.settle_delay > 0:
                await self._sleep(self.settle_delay)

    async def notify(self, record: TransferRecord, settlement: Optional[SettlementResult] = None) -> NotifyResult:
        """Never raises; the outcome is reported in the NotifyResult"""
        if settlement is not None and not settlement.succeeded:
            return NotifyResult(False, 0, error="settlement did not succeed")

        await self._wait_for_sequence(settlement)

        topics = [record.from_identity_hash, record.to_identity_hash]
        payload = encode_transfer_event(record)

        async def emit():
            return await self.stream.emit_event(self.event_id, topics, payload)

        outcome = await self.retry.run(
            emit, self.context.notification_policy(), name=f"notify {record.transaction_id[:12]}..."
        )
        if outcome.success:
            logger.info(f"📣 {self.event_id} emitted for {record.transaction_id[:12]}... ({outcome.attempts} attempt(s))")
            return NotifyResult(True, outcome.attempts, submission_id=outcome.result)

        logger.warning(
            f"⚠️ {self.event_id} not emitted for {record.transaction_id[:12]}... "
            f"after {outcome.attempts} attempt(s) ({outcome.gave_up_reason}): {outcome.last_error}"
        )
        return NotifyResult(False, outcome.attempts, error=str(outcome.last_error))
