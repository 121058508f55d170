"""
Transfer API Routes
FastAPI routes exposing phone-to-wallet transfers and transaction history
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from services.history_aggregator import history_as_dicts
from services.transfer_service import TransferService
from utils.exception_handler import (
    InputInvalid, NotRegistered, SettlementReverted, SettlementTimeout, TransferError
)
from utils.input_validation import InputValidator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["transfers"])


class TransferRequest(BaseModel):
    to_phone: str = Field(..., description="Recipient phone number")
    amount: str = Field(..., description="Amount in token units, e.g. '1.5'")
    token: str = Field("SOMI", description="Native token symbol")
    from_phone: Optional[str] = Field(None, description="Sender phone number, if known")


def status_for(error: TransferError) -> int:
    """HTTP status for a typed transfer failure"""
    if isinstance(error, InputInvalid):
        return 400
    if isinstance(error, NotRegistered):
        return 404
    if isinstance(error, SettlementReverted):
        return 409
    if isinstance(error, SettlementTimeout):
        return 504
    return 502


def get_transfer_service(request: Request) -> TransferService:
    service = getattr(request.app.state, "transfer_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Transfer engine is not initialized")
    return service


def _raise_http(error: TransferError) -> None:
    status = status_for(error)
    logger.info(f"Transfer API request failed with {status}: {type(error).__name__}")
    detail = {"error": type(error).__name__, "message": error.message}
    if error.transaction_id:
        detail["transaction_id"] = error.transaction_id
    raise HTTPException(status_code=status, detail=detail)


@router.post("/transfer")
async def create_transfer(body: TransferRequest, service: TransferService = Depends(get_transfer_service)):
    """Resolve the recipient phone, settle, record and notify"""
    try:
        receipt = await service.handle_transfer(body.to_phone, body.amount, body.token, body.from_phone)
    except TransferError as e:
        _raise_http(e)

    return {
        "success": True,
        "transaction_id": receipt.transaction_id,
        "to_address": receipt.to_address,
        "amount": str(receipt.record.amount),
        "token": receipt.record.token,
        "recorded": receipt.recorded.recorded,
        "notified": receipt.notified.emitted,
        "warnings": receipt.warnings,
        "message": receipt.message,
    }


@router.get("/transaction-history")
async def transaction_history(
    wallet: Optional[str] = Query(None, description="Registered wallet address"),
    identity: Optional[str] = Query(None, description="Identity hash (0x + 64 hex)"),
    limit: Optional[int] = Query(None, ge=1),
    service: TransferService = Depends(get_transfer_service),
):
    """Transfers touching an identity, most recent first"""
    target = identity or wallet
    if not target:
        raise HTTPException(
            status_code=400,
            detail={"error": "InputInvalid", "message": "Provide either wallet or identity"},
        )
    try:
        if identity:
            target = InputValidator.validate_identity_hash(identity)
        # Wallet queries label against the identity the wallet resolved to
        viewer, records = await service.query_history_with_viewer(target, limit)
    except TransferError as e:
        _raise_http(e)

    return {
        "success": True,
        "count": len(records),
        "transactions": history_as_dicts(records, viewer),
    }
