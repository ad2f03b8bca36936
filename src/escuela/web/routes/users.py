"""User endpoints."""

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from escuela.core.services import Services
from escuela.core.users import User
from escuela.web.dependencies import (
    ensure_self_or_teacher,
    get_services,
    require_admin,
    require_authenticated,
)
from escuela.web.schemas import (
    RoleChange,
    UserCreate,
    UserListResponse,
    UserRegister,
    UserResponse,
    UserUpdate,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])

# Fields a user may change on their own profile
_SELF_EDITABLE = {"nombre", "apellido", "foto_perfil"}


def _to_response(user: User) -> UserResponse:
    return UserResponse.model_validate(user.to_dict())


@router.get("", response_model=UserListResponse)
async def list_users(
    rol: str | None = None,
    services: Services = Depends(get_services),
    _: User = Depends(require_admin),
) -> UserListResponse:
    """List all users, optionally filtered by role."""
    users = services.users.get_users_by_role(rol) if rol else services.users.list_users()
    return UserListResponse(users=[_to_response(u) for u in users], count=len(users))


@router.get("/me", response_model=UserResponse)
async def get_me(user: User = Depends(require_authenticated)) -> UserResponse:
    """Profile of the caller."""
    return _to_response(user)


@router.get("/stats")
async def user_stats(
    services: Services = Depends(get_services),
    _: User = Depends(require_admin),
) -> dict[str, int]:
    return services.users.get_user_stats().to_dict()


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: str,
    services: Services = Depends(get_services),
    user: User = Depends(require_authenticated),
) -> UserResponse:
    ensure_self_or_teacher(user, user_id)
    return _to_response(services.users.require_user(user_id))


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    body: UserCreate,
    services: Services = Depends(get_services),
    admin: User = Depends(require_admin),
) -> UserResponse:
    """Create a user with any role."""
    user = services.users.create_user(
        email=body.email,
        nombre=body.nombre,
        apellido=body.apellido,
        rol=body.rol,
        user_id=body.user_id,
    )
    logger.info("user_created_by_admin", user_id=user.id, admin_id=admin.id)
    return _to_response(user)


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(
    body: UserRegister,
    services: Services = Depends(get_services),
) -> UserResponse:
    """Public registration; always creates a student."""
    user = services.users.register_public(
        email=body.email,
        nombre=body.nombre,
        apellido=body.apellido,
        user_id=body.user_id,
    )
    return _to_response(user)


@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    body: UserUpdate,
    services: Services = Depends(get_services),
    user: User = Depends(require_authenticated),
) -> UserResponse:
    """Update a profile. Non-admins may only edit their own name and photo."""
    changes = body.model_dump(exclude_unset=True)
    if not user.is_admin:
        if user.id != user_id or set(changes) - _SELF_EDITABLE:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="No puedes modificar estos datos",
            )
    return _to_response(services.users.update_user(user_id, **changes))


@router.put("/{user_id}/role", response_model=UserResponse)
async def change_role(
    user_id: str,
    body: RoleChange,
    services: Services = Depends(get_services),
    _: User = Depends(require_admin),
) -> UserResponse:
    return _to_response(services.users.change_role(user_id, body.rol))


@router.delete("/{user_id}", response_model=UserResponse)
async def delete_user(
    user_id: str,
    services: Services = Depends(get_services),
    admin: User = Depends(require_admin),
) -> UserResponse:
    """Deactivate a user; profiles are never removed."""
    if user_id == admin.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No puedes desactivar tu propia cuenta",
        )
    return _to_response(services.users.delete_user(user_id))
