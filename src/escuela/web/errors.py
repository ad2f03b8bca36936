"""Translation of domain errors into HTTP responses."""

from __future__ import annotations

import structlog
from fastapi import Request, status
from fastapi.responses import JSONResponse

from escuela.core.leads import LeadForwardingError, LeadsDisabledError
from escuela.errors import ConflictError, EscuelaError, NotFoundError, ValidationError

logger = structlog.get_logger(__name__)


def status_for_error(exc: EscuelaError) -> int:
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, ConflictError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, LeadForwardingError):
        return status.HTTP_502_BAD_GATEWAY
    if isinstance(exc, LeadsDisabledError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def domain_error_handler(request: Request, exc: EscuelaError) -> JSONResponse:
    status_code = status_for_error(exc)
    if status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=str(exc), status_code=status_code)
    else:
        logger.info("request_rejected", path=request.url.path, error=str(exc), status_code=status_code)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})
