"""Enrollment request endpoints."""

from fastapi import APIRouter, Depends, HTTPException, status

from escuela.core.enrollment import EnrollmentRequest
from escuela.core.services import Services
from escuela.core.users import User
from escuela.web.dependencies import get_services, require_admin, require_authenticated
from escuela.web.schemas import (
    EnrollmentRejection,
    EnrollmentRequestCreate,
    EnrollmentRequestListResponse,
    EnrollmentRequestResponse,
)

router = APIRouter(prefix="/api/enrollment-requests", tags=["enrollment"])

_STATES = ("pendiente", "aceptada", "rechazada")


def _to_response(request: EnrollmentRequest) -> EnrollmentRequestResponse:
    return EnrollmentRequestResponse.model_validate(request.to_dict())


def _listing(requests: list[EnrollmentRequest]) -> EnrollmentRequestListResponse:
    return EnrollmentRequestListResponse(
        requests=[_to_response(r) for r in requests],
        count=len(requests),
    )


@router.post("", response_model=EnrollmentRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_request(
    body: EnrollmentRequestCreate,
    services: Services = Depends(get_services),
    user: User = Depends(require_authenticated),
) -> EnrollmentRequestResponse:
    """Ask to join a course."""
    return _to_response(services.enrollment.create_request(user.id, body.curso_id))


@router.get("", response_model=EnrollmentRequestListResponse)
async def list_requests(
    estado: str | None = None,
    services: Services = Depends(get_services),
    _: User = Depends(require_admin),
) -> EnrollmentRequestListResponse:
    if estado is not None and estado not in _STATES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Estado inválido: {estado}",
        )
    return _listing(services.enrollment.list_requests(estado))


@router.get("/mine", response_model=EnrollmentRequestListResponse)
async def my_requests(
    services: Services = Depends(get_services),
    user: User = Depends(require_authenticated),
) -> EnrollmentRequestListResponse:
    return _listing(services.enrollment.list_student_requests(user.id))


@router.post("/{request_id}/accept", response_model=EnrollmentRequestResponse)
async def accept_request(
    request_id: str,
    services: Services = Depends(get_services),
    admin: User = Depends(require_admin),
) -> EnrollmentRequestResponse:
    """Accept a pending request and enroll the student."""
    return _to_response(services.enrollment.accept_request(request_id, admin.id))


@router.post("/{request_id}/reject", response_model=EnrollmentRequestResponse)
async def reject_request(
    request_id: str,
    body: EnrollmentRejection,
    services: Services = Depends(get_services),
    admin: User = Depends(require_admin),
) -> EnrollmentRequestResponse:
    return _to_response(services.enrollment.reject_request(request_id, admin.id, body.motivo))
