"""
Loan application endpoints
"""

from fastapi import APIRouter, Depends, status

from .dependencies import LedgerSystem, get_actor, get_ledger_system
from .schemas import (
    ApplicationListResponse, ApplicationModel, DecisionRequest,
    LoanApplicationRequest, StatsResponse
)
from ..applications import ApplicationKind
from ..rbac import Actor


router = APIRouter()


@router.post("/apply", status_code=status.HTTP_201_CREATED, response_model=ApplicationModel)
def apply_for_loan(
    request: LoanApplicationRequest,
    actor: Actor = Depends(get_actor),
    system: LedgerSystem = Depends(get_ledger_system)
):
    application = system.applications.submit_loan(
        actor, request.amount, request.tenure, account_id=request.account_id
    )
    return ApplicationModel.from_application(application)


@router.get("/status", response_model=ApplicationListResponse)
def loan_status(
    actor: Actor = Depends(get_actor),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """The caller's loan applications, newest first"""
    applications = system.queries.list_applications(actor, kind=ApplicationKind.LOAN)
    return ApplicationListResponse(
        applications=[ApplicationModel.from_application(a) for a in applications]
    )


@router.get("/admin/all", response_model=ApplicationListResponse)
def all_loans(
    actor: Actor = Depends(get_actor),
    system: LedgerSystem = Depends(get_ledger_system)
):
    applications = system.queries.list_all_applications(actor, kind=ApplicationKind.LOAN)
    return ApplicationListResponse(
        applications=[ApplicationModel.from_application(a) for a in applications]
    )


@router.post("/admin/update", response_model=ApplicationModel)
def decide_loan(
    request: DecisionRequest,
    actor: Actor = Depends(get_actor),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Approve (disburse) or reject a pending loan"""
    application = system.applications.transition(
        request.id, request.action, actor, kind=ApplicationKind.LOAN
    )
    return ApplicationModel.from_application(application)


@router.get("/admin/stats", response_model=StatsResponse)
def loan_stats(
    actor: Actor = Depends(get_actor),
    system: LedgerSystem = Depends(get_ledger_system)
):
    stats = system.queries.application_stats(actor, ApplicationKind.LOAN)
    return StatsResponse(kind=ApplicationKind.LOAN.value, stats=stats)
