"""
Settlement Executor
Submits a native-token value transfer and blocks until the ledger confirms
it or the confirmation timeout expires. The signer's sequence number must be
observed committed before any follow-up submission from the same signer.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Union

from services.engine_context import EngineContext
from utils.decimal_precision import to_wei
from utils.exception_handler import SettlementTimeout
from utils.input_validation import InputValidator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SettlementResult:
    transaction_id: str
    confirmed: bool
    reverted: bool
    block_number: Optional[int] = None
    sequence_number: Optional[int] = None
    amount_wei: int = 0

    @property
    def succeeded(self) -> bool:
        return self.confirmed and not self.reverted


class SettlementExecutor:
    """Move value from the signer to a resolved wallet"""

    def __init__(self, context: EngineContext):
        self.ledger = context.ledger
        self.native_tokens = context.settings.native_tokens
        self.timeout = context.settings.confirmation_timeout

    async def execute(
        self, to_address: str, amount: Union[str, Decimal], token: str
    ) -> SettlementResult:
        """
        Returns a SettlementResult for confirmed outcomes (success or revert).
        Raises InputInvalid before touching the ledger for a bad token or
        amount, and SettlementTimeout when the outcome cannot be observed.
        """
        symbol = InputValidator.validate_token(token, self.native_tokens)
        value = InputValidator.validate_amount(amount)
        to_address = InputValidator.validate_wallet_address(to_address)
        amount_wei = to_wei(value)

        # Best-effort: the notifier compares against this to wait out the settlement nonce
        sequence_number = None
        try:
            sequence_number = await self.ledger.get_pending_sequence_number(self.ledger.signer_address)
        except Exception as e:
            logger.warning(f"⚠️ Could not read signer sequence number before settlement: {e}")

        logger.info(f"💸 Settling {value} {symbol} to {to_address} (nonce {sequence_number})")
        try:
            transaction_id = await self.ledger.submit_value_transfer(to_address, amount_wei)
        except Exception as e:
            logger.error(f"❌ Settlement submission failed: {e}")
            raise SettlementTimeout(None, str(e)) from e

        try:
            receipt = await self.ledger.wait_for_confirmation(transaction_id, self.timeout)
        except TimeoutError as e:
            logger.error(f"⏰ Settlement {transaction_id} not confirmed within {self.timeout:.0f}s")
            raise SettlementTimeout(transaction_id, "confirmation timed out") from e
        except Exception as e:
            logger.error(f"❌ Transport error while confirming {transaction_id}: {e}")
            raise SettlementTimeout(transaction_id, str(e)) from e

        if not receipt.succeeded:
            logger.error(f"❌ Settlement {transaction_id} reverted in block {receipt.block_number}")
            return SettlementResult(
                transaction_id=transaction_id,
                confirmed=True,
                reverted=True,
                block_number=receipt.block_number,
                sequence_number=sequence_number,
                amount_wei=amount_wei,
            )

        logger.info(f"✅ Settlement {transaction_id} confirmed in block {receipt.block_number}")
        return SettlementResult(
            transaction_id=transaction_id,
            confirmed=True,
            reverted=False,
            block_number=receipt.block_number,
            sequence_number=sequence_number,
            amount_wei=amount_wei,
        )
