"""
End-to-end tests for the transfer and history entry points on the local chain
"""

from decimal import Decimal

import pytest
from unittest.mock import AsyncMock, patch

from services.history_aggregator import RECEIVED, label_direction
from services.ledger_client import LedgerReceipt
from services.stream_codec import decode_transfer_record
from services.transfer_service import TransferService
from utils.exception_handler import InputInvalid, NotRegistered, SettlementReverted, SettlementTimeout

from conftest import OWNER, PHONE_A, PHONE_B, SIGNER, WALLET_A, WALLET_B, make_context, register_phone


class TestHandleTransfer:

    @pytest.mark.asyncio
    async def test_register_resolve_settle_record_and_query(self, context):
        identity = register_phone(context, PHONE_A, WALLET_A, owner=OWNER)
        service = TransferService(context)

        assert (await service.resolver.resolve(identity, [OWNER])).lower() == WALLET_A

        receipt = await service.handle_transfer(PHONE_A, "1.5", "SOMI")

        assert receipt.warnings == []
        assert receipt.recorded.recorded
        assert receipt.notified.emitted
        assert receipt.to_address.lower() == WALLET_A

        schema_id = await context.stream.schema_id(context.settings.transfer_schema_name)
        [entry] = await context.stream.get_by_key(schema_id, SIGNER, receipt.transaction_id)
        assert decode_transfer_record(entry).transaction_id == receipt.transaction_id

        history = await service.query_history(identity, limit=10)
        assert len(history) == 1
        assert history[0].amount == Decimal("1.5")
        assert label_direction(history[0], identity) == RECEIVED

    @pytest.mark.asyncio
    async def test_sender_phone_is_hashed_with_the_same_rule(self, context):
        register_phone(context, PHONE_A, WALLET_A)
        service = TransferService(context)

        receipt = await service.handle_transfer(PHONE_A, "1", "SOMI", from_phone="019-876 5432")

        assert receipt.record.from_identity_hash == context.hasher.identity_for(PHONE_B)
        assert receipt.record.from_phone == "+60198765432"
        sent = await service.query_history(context.hasher.identity_for(PHONE_B))
        assert [r.transaction_id for r in sent] == [receipt.transaction_id]

    @pytest.mark.asyncio
    async def test_unregistered_recipient(self, registered_context):
        with pytest.raises(NotRegistered) as excinfo:
            await TransferService(registered_context).handle_transfer(PHONE_B, "1", "SOMI")
        assert excinfo.value.owners_searched == len(registered_context.candidate_owners)

    @pytest.mark.asyncio
    async def test_non_native_token_moves_nothing(self, registered_context):
        service = TransferService(registered_context)
        with patch.object(registered_context.ledger, "submit_value_transfer", new_callable=AsyncMock) as submit:
            with pytest.raises(InputInvalid):
                await service.handle_transfer(PHONE_A, "1", "USDC")
        submit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_decimal_comma_amount_moves_nothing(self, registered_context):
        """'1,5' must not be read as 15 tokens"""
        service = TransferService(registered_context)
        with patch.object(registered_context.ledger, "submit_value_transfer", new_callable=AsyncMock) as submit:
            with pytest.raises(InputInvalid):
                await service.handle_transfer(PHONE_A, "1,5", "SOMI")
        submit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reverted_settlement_is_never_recorded_or_announced(self, registered_context):
        service = TransferService(registered_context)
        reverted = AsyncMock(side_effect=lambda tx_id, timeout: LedgerReceipt(tx_id, status=0, block_number=3))

        with patch.object(registered_context.ledger, "wait_for_confirmation", reverted), \
                patch.object(service.recorder, "record", new_callable=AsyncMock) as record, \
                patch.object(service.notifier, "notify", new_callable=AsyncMock) as notify:
            with pytest.raises(SettlementReverted):
                await service.handle_transfer(PHONE_A, "1", "SOMI")

        assert record.call_count == 0
        assert notify.call_count == 0

    @pytest.mark.asyncio
    async def test_timeout_is_never_recorded(self, registered_context):
        service = TransferService(registered_context)
        with patch.object(registered_context.ledger, "wait_for_confirmation", AsyncMock(side_effect=TimeoutError())), \
                patch.object(service.recorder, "record", new_callable=AsyncMock) as record:
            with pytest.raises(SettlementTimeout):
                await service.handle_transfer(PHONE_A, "1", "SOMI")
        record.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_notification_exhaustion_still_succeeds(self):
        context = make_context(notify_max_attempts=2)
        register_phone(context, PHONE_A, WALLET_A)
        emit = AsyncMock(side_effect=Exception("nonce too low"))

        with patch.object(context.stream, "emit_event", emit):
            receipt = await TransferService(context).handle_transfer(PHONE_A, "1", "SOMI")

        assert emit.await_count == 2
        assert receipt.recorded.recorded
        assert not receipt.notified.emitted
        assert len(receipt.warnings) == 1
        assert "may not be notified" in receipt.message

    @pytest.mark.asyncio
    async def test_recording_failure_still_succeeds(self, registered_context):
        with patch.object(registered_context.stream, "set_entry", AsyncMock(side_effect=ConnectionError("down"))):
            receipt = await TransferService(registered_context).handle_transfer(PHONE_A, "1", "SOMI")

        assert not receipt.recorded.recorded
        assert receipt.notified.emitted
        assert "could not be saved" in receipt.warnings[0]


class TestHistoryRequest:

    @pytest.mark.asyncio
    async def test_no_history_text(self, context):
        text = await TransferService(context).handle_history_request(PHONE_A)
        assert "No transactions found for your account." in text

    @pytest.mark.asyncio
    async def test_view_all_link_when_limit_is_reached(self, context):
        register_phone(context, PHONE_A, WALLET_A)
        register_phone(context, PHONE_B, WALLET_B)
        service = TransferService(context)
        await service.handle_transfer(PHONE_A, "1", "SOMI")
        await service.handle_transfer(PHONE_A, "2", "SOMI")

        identity = context.hasher.identity_for(PHONE_A)
        limited = await service.handle_history_request("+60 12-345 6789", limit=2)
        assert "Found 2 transaction(s)" in limited
        assert f"https://app.example.test/transactions/{identity}" in limited

        full = await service.handle_history_request(PHONE_A, limit=5)
        assert "View All Transactions" not in full

    @pytest.mark.asyncio
    async def test_invalid_limit(self, context):
        with pytest.raises(InputInvalid):
            await TransferService(context).handle_history_request(PHONE_A, limit=0)
