"""POST /v1/batch/run - trigger the daily reminder & penalty batch"""

from datetime import datetime
from typing import Callable, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from emi_engine.api.v1.schemas import BatchRunRequest, BatchRunResponse
from emi_engine.api.dependencies import get_clock, get_notification_client
from emi_engine.infrastructure.clients.notifications import NotificationClient
from emi_engine.infrastructure.database.session import get_db
from emi_engine.services.batch import run_daily_batch

router = APIRouter()


@router.post("/batch/run", response_model=BatchRunResponse)
async def run_batch(
    request_body: Optional[BatchRunRequest] = None,
    db: Session = Depends(get_db),
    notification_client: NotificationClient = Depends(get_notification_client),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """
    Run the daily batch now, for an external timer.

    Re-running for the same day is safe: nothing is notified twice and
    penalties recompute to the same values. Returns skipped=true while
    another run is in flight.
    """
    now = (request_body.now if request_body and request_body.now else None) or clock()
    summary = await run_daily_batch(now, db, notification_client)
    return BatchRunResponse.from_domain(summary)
