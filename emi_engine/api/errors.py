"""Map domain exceptions to HTTP errors"""

import logging
from fastapi import HTTPException

from emi_engine.domain.exceptions import (
    ConcurrentUpdateError,
    DomainException,
    EligibilityServiceError,
    NotFoundError,
    StateConflictError,
    TransientCollaboratorError,
    ValidationError,
)


def http_error(error: DomainException, request_id: str = "unknown") -> HTTPException:
    """404 unknown, 422 invalid, 409 conflict, 503 collaborator down"""
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, ValidationError):
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, StateConflictError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, EligibilityServiceError):
        logging.error(f"Eligibility service error: {error}", extra={"request_id": request_id})
        return HTTPException(status_code=503, detail="Eligibility service unavailable")
    if isinstance(error, ConcurrentUpdateError):
        logging.warning(f"Concurrent update: {error}", extra={"request_id": request_id})
        return HTTPException(status_code=409, detail="Resource was modified concurrently, retry")
    if isinstance(error, TransientCollaboratorError):
        logging.error(f"Collaborator error: {error}", extra={"request_id": request_id})
        return HTTPException(status_code=503, detail="Downstream service unavailable, retry")

    logging.error(f"Unexpected domain error: {error}", extra={"request_id": request_id})
    return HTTPException(status_code=500, detail="Internal server error")
