"""
Account and money movement endpoints

Handlers are plain functions so FastAPI runs them in its worker threadpool;
the engine blocks on row locks and must not stall the event loop.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query, status

from .dependencies import LedgerSystem, get_actor, get_ledger_system
from .schemas import (
    AccountModel, AmountRequest, BalanceResponse, CreateAccountRequest,
    HistoryResponse, LedgerEntryModel, TransferResponse
)
from ..errors import Forbidden
from ..rbac import Actor


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED, response_model=AccountModel)
def create_account(
    request: Optional[CreateAccountRequest] = None,
    actor: Actor = Depends(get_actor),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Open a zero-balance account for the caller (or any owner, for admins)"""
    owner_id = (request.owner_id if request else None) or actor.user_id
    if owner_id != actor.user_id and not system.rbac_manager.is_elevated(actor):
        raise Forbidden("Cannot open accounts for another owner")
    account = system.accounts.create_account(owner_id, actor_id=actor.user_id)
    return AccountModel.from_account(account)


@router.get("")
def list_accounts(
    owner_id: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """List the caller's accounts (or another owner's, for admins)"""
    accounts = system.queries.list_accounts(actor, owner_id=owner_id)
    return {"accounts": [AccountModel.from_account(a) for a in accounts]}


@router.post("/{account_id}/deposit", response_model=BalanceResponse)
def deposit(
    account_id: str,
    request: AmountRequest,
    actor: Actor = Depends(get_actor),
    system: LedgerSystem = Depends(get_ledger_system)
):
    balance = system.engine.deposit(
        account_id, request.amount, actor, idempotency_key=request.idempotency_key
    )
    return BalanceResponse(account_id=account_id, balance=balance.format())


@router.post("/{account_id}/withdraw", response_model=BalanceResponse)
def withdraw(
    account_id: str,
    request: AmountRequest,
    actor: Actor = Depends(get_actor),
    system: LedgerSystem = Depends(get_ledger_system)
):
    balance = system.engine.withdraw(
        account_id, request.amount, actor, idempotency_key=request.idempotency_key
    )
    return BalanceResponse(account_id=account_id, balance=balance.format())


@router.post("/{from_account_id}/transfer/{to_account_id}", response_model=TransferResponse)
def transfer(
    from_account_id: str,
    to_account_id: str,
    request: AmountRequest,
    actor: Actor = Depends(get_actor),
    system: LedgerSystem = Depends(get_ledger_system)
):
    result = system.engine.transfer(
        from_account_id, to_account_id, request.amount, actor,
        idempotency_key=request.idempotency_key
    )
    return TransferResponse(
        from_account_id=result.from_account_id,
        from_balance=result.from_balance.format(),
        to_account_id=result.to_account_id,
        to_balance=result.to_balance.format()
    )


@router.get("/{account_id}/balance", response_model=BalanceResponse)
def get_balance(
    account_id: str,
    actor: Actor = Depends(get_actor),
    system: LedgerSystem = Depends(get_ledger_system)
):
    balance = system.queries.get_balance(account_id, actor)
    return BalanceResponse(account_id=account_id, balance=balance.format())


@router.get("/{account_id}/history", response_model=HistoryResponse)
def get_history(
    account_id: str,
    limit: Optional[int] = Query(None, ge=1),
    actor: Actor = Depends(get_actor),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Ledger entries for the account, newest first"""
    balance, entries = system.queries.get_statement(account_id, actor, limit=limit)
    return HistoryResponse(
        account_id=account_id,
        balance=balance.format(),
        entries=[LedgerEntryModel.from_entry(e) for e in entries]
    )
