"""Penalty ledger endpoints - snapshot and waiver"""

from datetime import datetime
from typing import Callable
from fastapi import APIRouter, Depends, Request

from emi_engine.api.v1.schemas import PenaltySnapshot, WaiveRequest
from emi_engine.api.dependencies import get_clock, get_emi_service, get_request_id, parse_uuid
from emi_engine.api.errors import http_error
from emi_engine.domain.exceptions import DomainException
from emi_engine.services.applications import EmiService

router = APIRouter()


@router.get("/ledger/{entry_id}", response_model=PenaltySnapshot)
def get_ledger_entry(
    entry_id: str,
    request: Request,
    service: EmiService = Depends(get_emi_service),
):
    try:
        entry = service.get_penalty_snapshot(parse_uuid(entry_id, "ledger entry"))
    except DomainException as e:
        raise http_error(e, get_request_id(request))
    return PenaltySnapshot.from_domain(entry)


@router.post("/ledger/{entry_id}/waive", response_model=PenaltySnapshot)
def waive_ledger_entry(
    entry_id: str,
    request_body: WaiveRequest,
    request: Request,
    service: EmiService = Depends(get_emi_service),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Waive the penalty of an unsettled entry; 409 if already paid or waived"""
    try:
        entry = service.waive_penalty(
            parse_uuid(entry_id, "ledger entry"),
            reason=request_body.reason,
            waived_by=request_body.waived_by,
            now=clock(),
        )
    except DomainException as e:
        raise http_error(e, get_request_id(request))
    return PenaltySnapshot.from_domain(entry)
