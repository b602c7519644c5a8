"""
Account management endpoints
"""

from fastapi import APIRouter, Depends, Query, status

from .dependencies import BankingSystem, get_banking_system, get_current_payload
from .schemas import CreateAccountRequest
from ..tokens import Payload


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_account(
    request: CreateAccountRequest,
    payload: Payload = Depends(get_current_payload),
    system: BankingSystem = Depends(get_banking_system)
):
    """Open an account in the given currency for the caller"""
    account = system.account_manager.create_account(
        owner=payload.subject,
        currency=request.currency
    )
    return account.to_dict()


@router.get("/{account_id}")
def get_account(
    account_id: int,
    payload: Payload = Depends(get_current_payload),
    system: BankingSystem = Depends(get_banking_system)
):
    """Get an account owned by the caller"""
    account = system.guard.authorize_account_access(payload.subject, account_id)
    return account.to_dict()


@router.get("")
def list_accounts(
    page_id: int = Query(..., ge=1),
    page_size: int = Query(..., ge=5, le=10),
    payload: Payload = Depends(get_current_payload),
    system: BankingSystem = Depends(get_banking_system)
):
    """List the caller's accounts one page at a time"""
    accounts = system.account_manager.list_accounts(
        owner=payload.subject,
        limit=page_size,
        offset=(page_id - 1) * page_size
    )
    return [account.to_dict() for account in accounts]


@router.get("/{account_id}/entries")
def list_account_entries(
    account_id: int,
    page_id: int = Query(1, ge=1),
    page_size: int = Query(10, ge=5, le=10),
    payload: Payload = Depends(get_current_payload),
    system: BankingSystem = Depends(get_banking_system)
):
    """Ledger entries of an account owned by the caller"""
    system.guard.authorize_account_access(payload.subject, account_id)
    entries = system.ledger.list_entries(
        account_id,
        limit=page_size,
        offset=(page_id - 1) * page_size
    )
    return [entry.to_dict() for entry in entries]
