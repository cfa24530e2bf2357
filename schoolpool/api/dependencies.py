"""
FastAPI dependencies and error mapping.
"""

from fastapi import HTTPException, Request

from schoolpool.application.container import Services
from schoolpool.domain.errors import (
    ExternalServiceError,
    SchoolPoolError,
    StateConflictError,
    ValidationError,
)


def get_services(request: Request) -> Services:
    return request.app.state.services


def status_for(error: SchoolPoolError) -> int:
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, StateConflictError):
        return 409
    if isinstance(error, ExternalServiceError):
        return 503
    return 500


def to_http(error: SchoolPoolError) -> HTTPException:
    return HTTPException(status_code=status_for(error), detail=error.to_dict())
