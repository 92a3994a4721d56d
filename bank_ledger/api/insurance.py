"""
Insurance application endpoints
"""

from fastapi import APIRouter, Depends, status

from .dependencies import LedgerSystem, get_actor, get_ledger_system
from .schemas import (
    ApplicationListResponse, ApplicationModel, DecisionRequest,
    InsuranceApplicationRequest, StatsResponse
)
from ..applications import ApplicationKind
from ..rbac import Actor


router = APIRouter()


@router.post("/apply", status_code=status.HTTP_201_CREATED, response_model=ApplicationModel)
def apply_for_insurance(
    request: InsuranceApplicationRequest,
    actor: Actor = Depends(get_actor),
    system: LedgerSystem = Depends(get_ledger_system)
):
    application = system.applications.submit_insurance(
        actor, request.type, request.premium, request.coverage,
        duration_months=request.duration if request.duration is not None else 12,
        account_id=request.account_id
    )
    return ApplicationModel.from_application(application)


@router.get("/status", response_model=ApplicationListResponse)
def insurance_status(
    actor: Actor = Depends(get_actor),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """The caller's insurance applications, newest first"""
    applications = system.queries.list_applications(actor, kind=ApplicationKind.INSURANCE)
    return ApplicationListResponse(
        applications=[ApplicationModel.from_application(a) for a in applications]
    )


@router.get("/admin/all", response_model=ApplicationListResponse)
def all_policies(
    actor: Actor = Depends(get_actor),
    system: LedgerSystem = Depends(get_ledger_system)
):
    applications = system.queries.list_all_applications(actor, kind=ApplicationKind.INSURANCE)
    return ApplicationListResponse(
        applications=[ApplicationModel.from_application(a) for a in applications]
    )


@router.post("/admin/update", response_model=ApplicationModel)
def decide_policy(
    request: DecisionRequest,
    actor: Actor = Depends(get_actor),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Activate (collect the premium) or reject a pending policy"""
    application = system.applications.transition(
        request.id, request.action, actor, kind=ApplicationKind.INSURANCE
    )
    return ApplicationModel.from_application(application)


@router.get("/admin/stats", response_model=StatsResponse)
def insurance_stats(
    actor: Actor = Depends(get_actor),
    system: LedgerSystem = Depends(get_ledger_system)
):
    stats = system.queries.application_stats(actor, ApplicationKind.INSURANCE)
    return StatsResponse(kind=ApplicationKind.INSURANCE.value, stats=stats)
