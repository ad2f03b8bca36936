"""Request dependencies: services, caller identity and role gates.

Sign-in happens in the external identity provider; the API trusts the
caller id passed in the `X-User-Id` header and resolves it to a profile.
"""

from __future__ import annotations

import structlog
from fastapi import Depends, Header, HTTPException, Request, status

from escuela.core.services import Services
from escuela.core.users import User

logger = structlog.get_logger(__name__)

USER_ID_HEADER = "X-User-Id"


def get_services(request: Request) -> Services:
    """Services built by the app lifespan."""
    return request.app.state.services


def get_current_user(
    x_user_id: str | None = Header(default=None, alias=USER_ID_HEADER),
    services: Services = Depends(get_services),
) -> User | None:
    """Profile of the caller, or None for anonymous requests."""
    if not x_user_id:
        return None
    return services.users.get_user(x_user_id)


def require_authenticated(user: User | None = Depends(get_current_user)) -> User:
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Debes iniciar sesión",
        )
    if not user.activo:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Tu cuenta está desactivada",
        )
    return user


def require_teacher(user: User = Depends(require_authenticated)) -> User:
    """Profesores and admins."""
    if not user.is_teacher:
        logger.info("access_denied", user_id=user.id, required="profesor")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Se requiere rol de profesor",
        )
    return user


def require_admin(user: User = Depends(require_authenticated)) -> User:
    if not user.is_admin:
        logger.info("access_denied", user_id=user.id, required="admin")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Se requiere rol de administrador",
        )
    return user


def ensure_self_or_teacher(user: User, student_id: str) -> None:
    """Students may only read their own records."""
    if user.id != student_id and not user.is_teacher:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No puedes consultar datos de otro estudiante",
        )


def ensure_unlocked(services: Services, user: User, section_id: str, element_id: str) -> None:
    """Students only reach elements of unlocked sections."""
    if user.is_teacher:
        return
    section = services.sections.require_section(section_id)
    sections = services.sections.get_sections_by_course(section.curso_id)
    access = services.progress.can_access_element(section_id, element_id, user.id, sections)
    if not access.permitido:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=access.mensaje)
