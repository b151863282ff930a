"""EMI application endpoints - apply, approve, schedule and installment settlement"""

import logging
from datetime import datetime
from typing import Callable
from fastapi import APIRouter, Depends, Query, Request

from emi_engine.api.v1.schemas import (
    ApplicationListResponse,
    ApplicationRequest,
    ApplicationResponse,
    PaymentFailureRequest,
    PaymentRequest,
    PenaltySnapshot,
    ScheduleResponse,
    InstallmentSchema,
)
from emi_engine.api.dependencies import (
    get_clock,
    get_eligibility_client,
    get_emi_service,
    get_notification_client,
    get_request_id,
    parse_uuid,
)
from emi_engine.api.errors import http_error
from emi_engine.domain.exceptions import DomainException
from emi_engine.domain.models import PaymentInfo
from emi_engine.infrastructure.clients.eligibility import EligibilityClient
from emi_engine.infrastructure.clients.notifications import NotificationClient
from emi_engine.services.applications import EmiService

router = APIRouter()


@router.post("/applications", response_model=ApplicationResponse, status_code=201)
def apply_for_emi(
    request_body: ApplicationRequest,
    request: Request,
    service: EmiService = Depends(get_emi_service),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Price the order on the chosen plan and open a pending application"""
    plan_id = parse_uuid(request_body.plan_id, "plan")
    try:
        application = service.apply(
            user_id=request_body.user_id,
            order_id=request_body.order_id,
            plan_id=plan_id,
            principal=request_body.principal_amount,
            now=clock(),
        )
    except DomainException as e:
        raise http_error(e, get_request_id(request))

    return ApplicationResponse.from_domain(application)


@router.get("/applications", response_model=ApplicationListResponse)
def list_applications(
    user_id: str = Query(..., description="User identifier"),
    service: EmiService = Depends(get_emi_service),
):
    """Recent applications of a user, newest first"""
    applications = service.list_applications(user_id)
    return ApplicationListResponse(
        user_id=user_id,
        applications=[ApplicationResponse.from_domain(a) for a in applications],
    )


@router.get("/applications/{application_id}", response_model=ApplicationResponse)
def get_application(
    application_id: str,
    request: Request,
    service: EmiService = Depends(get_emi_service),
):
    try:
        application = service.get_application(parse_uuid(application_id, "application"))
    except DomainException as e:
        raise http_error(e, get_request_id(request))
    return ApplicationResponse.from_domain(application)


@router.post("/applications/{application_id}/approve", response_model=ApplicationResponse)
async def approve_application(
    application_id: str,
    request: Request,
    service: EmiService = Depends(get_emi_service),
    eligibility_client: EligibilityClient = Depends(get_eligibility_client),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """
    Run the eligibility check.

    Flow:
    1. Ask the eligibility service about user and principal
    2. Approved within credit limit → schedule generated, status approved
    3. Otherwise → status rejected
    """
    request_id = get_request_id(request)
    try:
        application = await service.approve(parse_uuid(application_id, "application"), eligibility_client, clock())
    except DomainException as e:
        raise http_error(e, request_id)

    return ApplicationResponse.from_domain(application)


@router.post("/applications/{application_id}/disburse", response_model=ApplicationResponse)
def disburse_application(
    application_id: str,
    request: Request,
    service: EmiService = Depends(get_emi_service),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Mark an approved application as disbursed (active)"""
    try:
        application = service.activate(parse_uuid(application_id, "application"), clock())
    except DomainException as e:
        raise http_error(e, get_request_id(request))
    return ApplicationResponse.from_domain(application)


@router.get("/applications/{application_id}/schedule", response_model=ScheduleResponse)
def get_schedule(
    application_id: str,
    request: Request,
    service: EmiService = Depends(get_emi_service),
):
    """Installment schedule in ordinal order"""
    try:
        installments = service.get_schedule(parse_uuid(application_id, "application"))
    except DomainException as e:
        raise http_error(e, get_request_id(request))

    return ScheduleResponse(
        application_id=application_id,
        installments=[InstallmentSchema.from_domain(i) for i in installments],
    )


@router.post(
    "/applications/{application_id}/installments/{installment_number}/payment",
    response_model=ApplicationResponse,
)
def pay_installment(
    application_id: str,
    installment_number: int,
    request_body: PaymentRequest,
    request: Request,
    service: EmiService = Depends(get_emi_service),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Payment confirmation: settle the installment and close its ledger entry"""
    request_id = get_request_id(request)
    payment = PaymentInfo(
        transaction_id=request_body.transaction_id,
        payment_method=request_body.payment_method,
        paid_at=request_body.paid_at or clock(),
    )
    try:
        application = service.record_installment_payment(
            parse_uuid(application_id, "application"), installment_number, payment
        )
    except DomainException as e:
        logging.info(f"Payment rejected: {e}", extra={"request_id": request_id})
        raise http_error(e, request_id)

    return ApplicationResponse.from_domain(application)


@router.post(
    "/applications/{application_id}/installments/{installment_number}/failure",
    response_model=ApplicationResponse,
)
async def report_payment_failure(
    application_id: str,
    installment_number: int,
    request_body: PaymentFailureRequest,
    request: Request,
    service: EmiService = Depends(get_emi_service),
    notification_client: NotificationClient = Depends(get_notification_client),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Auto-debit failed: flag the installment and notify the user once"""
    try:
        application = await service.record_installment_failure(
            parse_uuid(application_id, "application"),
            installment_number,
            request_body.failed_at or clock(),
            notification_client,
        )
    except DomainException as e:
        raise http_error(e, get_request_id(request))

    return ApplicationResponse.from_domain(application)


@router.get(
    "/applications/{application_id}/installments/{installment_number}/penalty",
    response_model=PenaltySnapshot,
)
def get_installment_penalty(
    application_id: str,
    installment_number: int,
    request: Request,
    service: EmiService = Depends(get_emi_service),
):
    """Penalty position of one installment"""
    try:
        entry = service.get_installment_penalty(parse_uuid(application_id, "application"), installment_number)
    except DomainException as e:
        raise http_error(e, get_request_id(request))
    return PenaltySnapshot.from_domain(entry)
