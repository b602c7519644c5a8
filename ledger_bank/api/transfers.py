"""
Transfer endpoints
"""

from fastapi import APIRouter, Depends

from .dependencies import BankingSystem, get_banking_system, get_current_payload
from .schemas import TransferRequest
from ..tokens import Payload


router = APIRouter()


@router.post("")
def create_transfer(
    request: TransferRequest,
    payload: Payload = Depends(get_current_payload),
    system: BankingSystem = Depends(get_banking_system)
):
    """Move money from one of the caller's accounts to another account"""
    system.guard.authorize_transfer(
        subject=payload.subject,
        from_account_id=request.from_account_id,
        to_account_id=request.to_account_id,
        currency=request.currency
    )
    result = system.transfer_engine.transfer_tx(
        from_account_id=request.from_account_id,
        to_account_id=request.to_account_id,
        amount=request.amount
    )
    return result.to_dict()


@router.get("/{transfer_id}")
def get_transfer(
    transfer_id: int,
    payload: Payload = Depends(get_current_payload),
    system: BankingSystem = Depends(get_banking_system)
):
    """Get a transfer the caller sent or received"""
    transfer = system.ledger.get_transfer(transfer_id)
    system.guard.authorize_transfer_access(payload.subject, transfer)
    return transfer.to_dict()
