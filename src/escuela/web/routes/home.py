"""Home page configuration endpoints."""

from typing import Any

from fastapi import APIRouter, Depends

from escuela.core.services import Services
from escuela.core.users import User
from escuela.web.dependencies import get_services, require_admin
from escuela.web.schemas import HeroUpdate, HomeUpdate

router = APIRouter(prefix="/api/home", tags=["home"])


@router.get("")
async def get_home(services: Services = Depends(get_services)) -> dict[str, Any]:
    """Public home configuration (cached)."""
    return services.home.get_config()


@router.patch("")
async def update_home(
    body: HomeUpdate,
    services: Services = Depends(get_services),
    admin: User = Depends(require_admin),
) -> dict[str, Any]:
    changes = body.model_dump(exclude_none=True)
    return services.home.update_config(changes, admin.id)


@router.put("/hero")
async def update_hero(
    body: HeroUpdate,
    services: Services = Depends(get_services),
    admin: User = Depends(require_admin),
) -> dict[str, Any]:
    return services.home.update_hero(body.model_dump(), admin.id)


@router.put("/courses-section")
async def update_courses_section(
    body: dict[str, Any],
    services: Services = Depends(get_services),
    admin: User = Depends(require_admin),
) -> dict[str, Any]:
    return services.home.update_courses_section(body, admin.id)


@router.post("/reset")
async def reset_home(
    services: Services = Depends(get_services),
    admin: User = Depends(require_admin),
) -> dict[str, Any]:
    """Restore the default home content."""
    return services.home.reset_to_default(admin.id)
