"""
Exception Handler Module
Typed failures for transfer settlement and a logging decorator for entry points
"""

import logging
import functools
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class ValidationError(Exception):
    """Custom validation error for input validation failures"""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class TransferError(Exception):
    """Base class for failures that end a transfer or history operation"""

    def __init__(self, message: str, transaction_id: Optional[str] = None):
        self.message = message
        self.transaction_id = transaction_id
        super().__init__(message)


class InputInvalid(ValidationError, TransferError):
    """Malformed amount, unsupported token or missing recipient; no side effects"""

    def __init__(self, message: str):
        TransferError.__init__(self, message)


class NotRegistered(TransferError):
    """No registration matched after every owner and strategy was tried"""

    def __init__(self, phone: str, owners_searched: int = 0):
        self.phone = phone
        self.owners_searched = owners_searched
        super().__init__(
            f"Phone number {phone} is not registered. "
            f"Please register it on the registration website first."
        )


class SettlementReverted(TransferError):
    """The ledger executed the transfer and rolled it back"""

    def __init__(self, transaction_id: str):
        super().__init__(f"Transfer transaction reverted: {transaction_id}", transaction_id)


class SettlementTimeout(TransferError):
    """Confirmation was not observed in time; funds may or may not have moved"""

    def __init__(self, transaction_id: Optional[str], detail: str = ""):
        message = (
            f"Transfer status unknown for {transaction_id or 'unsubmitted transaction'}. "
            f"Please check the transaction before retrying."
        )
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message, transaction_id)


class SchemaNotProvisioned(TransferError):
    """The keyed store has no schema id registered for a configured schema name"""

    def __init__(self, schema_name: str):
        self.schema_name = schema_name
        super().__init__(f"{schema_name} schema not found. Run schema registration first.")


class StoreUnavailable(TransferError):
    """A store or ledger capability call failed (timeout, transport, decode)"""


def log_transfer_errors(func: Callable) -> Callable:
    """
    Decorator for async entry points of the produced interface.
    Logs typed failures at warning level and unexpected ones with traceback,
    then re-raises so the caller still sees the failure.
    """

    @functools.wraps(func)
    async def wrapper(*args, **kwargs) -> Any:
        try:
            return await func(*args, **kwargs)
        except TransferError as e:
            logger.warning(f"{func.__name__} failed: {type(e).__name__}: {e.message}")
            raise
        except Exception as e:
            logger.error(f"Unexpected error in {func.__name__}: {type(e).__name__}: {e}", exc_info=True)
            raise

    return wrapper
