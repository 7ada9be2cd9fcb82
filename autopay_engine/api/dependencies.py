"""Dependency injection for FastAPI endpoints"""

import logging

from fastapi import HTTPException, Request

from autopay_engine.domain.exceptions import (
    ChainUnavailableError,
    DomainException,
    RouteUnavailableError,
    SubscriptionNotFoundError,
    ValidationError,
)
from autopay_engine.services.engine import Engine

_STATUS_BY_ERROR = (
    (ValidationError, 422),
    (RouteUnavailableError, 404),
    (SubscriptionNotFoundError, 404),
    (ChainUnavailableError, 503),
)


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_engine(request: Request) -> Engine:
    """Engine components built once at app creation"""
    return request.app.state.engine


def to_http_exception(error: DomainException, request_id: str) -> HTTPException:
    """Map a domain error to its HTTP status; anything unmapped is a generic 500"""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            log = logging.error if status_code >= 500 else logging.warning
            log(f"{error_type.__name__}: {error}", extra={"request_id": request_id})
            detail = "Chain service unavailable" if status_code == 503 else str(error)
            return HTTPException(status_code=status_code, detail=detail)

    logging.error(f"Unexpected domain error: {error}", extra={"request_id": request_id})
    return HTTPException(status_code=500, detail="Internal server error")
