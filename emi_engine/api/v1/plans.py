"""GET/POST /v1/plans - EMI plan catalog"""

from typing import Optional
from fastapi import APIRouter, Depends, Query, Request

from emi_engine.api.v1.schemas import PlanCreateRequest, PlanListResponse, PlanResponse
from emi_engine.api.dependencies import get_emi_service, get_request_id
from emi_engine.api.errors import http_error
from emi_engine.domain.exceptions import DomainException
from emi_engine.domain.models import EmiPlan
from emi_engine.services.applications import EmiService

router = APIRouter()


@router.get("/plans", response_model=PlanListResponse)
def list_plans(
    request: Request,
    amount: Optional[int] = Query(None, gt=0, description="Order amount to price each plan for"),
    service: EmiService = Depends(get_emi_service),
):
    """
    Active EMI plans.

    With an amount, only plans whose bounds admit it are returned, each
    with its calculated monthly EMI and total amount.
    """
    try:
        plans = service.list_plans(amount)
    except DomainException as e:
        raise http_error(e, get_request_id(request))

    return PlanListResponse(plans=[PlanResponse.from_domain(plan, quote) for plan, quote in plans])


@router.post("/plans", response_model=PlanResponse, status_code=201)
def create_plan(
    request_body: PlanCreateRequest,
    request: Request,
    service: EmiService = Depends(get_emi_service),
):
    """Create an EMI plan template"""
    plan = EmiPlan(
        name=request_body.name,
        tenure_months=request_body.tenure_months,
        interest_rate=request_body.interest_rate,
        processing_fee=request_body.processing_fee,
        min_order_amount=request_body.min_order_amount,
        max_order_amount=request_body.max_order_amount,
        is_active=request_body.is_active,
    )
    try:
        service.create_plan(plan)
    except DomainException as e:
        raise http_error(e, get_request_id(request))

    return PlanResponse.from_domain(plan)
