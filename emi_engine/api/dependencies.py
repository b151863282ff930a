"""Dependency injection for FastAPI endpoints"""

import uuid
from datetime import datetime, timezone
from typing import Callable
from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from emi_engine.infrastructure.clients.eligibility import EligibilityClient
from emi_engine.infrastructure.clients.notifications import NotificationClient
from emi_engine.infrastructure.database.session import get_db
from emi_engine.services.applications import EmiService


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_clock() -> Callable[[], datetime]:
    """Source of "now"; overridden in tests with a synthetic clock"""
    return lambda: datetime.now(timezone.utc)


def get_emi_service(db: Session = Depends(get_db)) -> EmiService:
    return EmiService(db)


def get_eligibility_client() -> EligibilityClient:
    """Provide eligibility service client instance"""
    return EligibilityClient()


def get_notification_client() -> NotificationClient:
    """Provide notification sink client instance"""
    return NotificationClient()


def parse_uuid(value: str, label: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {label} ID format")
