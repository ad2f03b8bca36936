"""Section endpoints, including per-student progress and unlock state."""

from fastapi import APIRouter, Depends, status

from escuela.core.sections import Section
from escuela.core.services import Services
from escuela.core.users import User
from escuela.web.dependencies import (
    ensure_self_or_teacher,
    get_services,
    require_authenticated,
    require_teacher,
)
from escuela.web.schemas import (
    AccessResponse,
    ReorderRequest,
    SectionCreate,
    SectionListResponse,
    SectionProgressResponse,
    SectionResponse,
    SectionStatesResponse,
    SectionUpdate,
)

router = APIRouter(prefix="/api", tags=["sections"])


def _to_response(section: Section) -> SectionResponse:
    return SectionResponse.model_validate(section.to_dict())


@router.get("/courses/{course_id}/sections", response_model=SectionListResponse)
async def list_sections(
    course_id: str,
    services: Services = Depends(get_services),
    _: User = Depends(require_authenticated),
) -> SectionListResponse:
    services.courses.require_course(course_id)
    sections = services.sections.get_sections_by_course(course_id)
    return SectionListResponse(sections=[_to_response(s) for s in sections], count=len(sections))


@router.post(
    "/courses/{course_id}/sections",
    response_model=SectionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_section(
    course_id: str,
    body: SectionCreate,
    services: Services = Depends(get_services),
    _: User = Depends(require_teacher),
) -> SectionResponse:
    section = services.sections.create_section(curso_id=course_id, **body.model_dump())
    return _to_response(section)


@router.put("/courses/{course_id}/sections/order", status_code=status.HTTP_204_NO_CONTENT)
async def reorder_sections(
    course_id: str,
    body: ReorderRequest,
    services: Services = Depends(get_services),
    _: User = Depends(require_teacher),
) -> None:
    services.courses.require_course(course_id)
    services.sections.reorder_sections(body.ids)


@router.get("/sections/{section_id}", response_model=SectionResponse)
async def get_section(
    section_id: str,
    services: Services = Depends(get_services),
    _: User = Depends(require_authenticated),
) -> SectionResponse:
    return _to_response(services.sections.require_section(section_id))


@router.patch("/sections/{section_id}", response_model=SectionResponse)
async def update_section(
    section_id: str,
    body: SectionUpdate,
    services: Services = Depends(get_services),
    _: User = Depends(require_teacher),
) -> SectionResponse:
    section = services.sections.update_section(section_id, **body.model_dump(exclude_unset=True))
    return _to_response(section)


@router.delete("/sections/{section_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_section(
    section_id: str,
    services: Services = Depends(get_services),
    _: User = Depends(require_teacher),
) -> None:
    """Delete a section with its lessons, tasks, exams and progress."""
    services.sections.require_section(section_id)
    services.sections.delete_section(section_id)


@router.put("/sections/{section_id}/elements/order", response_model=SectionResponse)
async def reorder_elements(
    section_id: str,
    body: ReorderRequest,
    services: Services = Depends(get_services),
    _: User = Depends(require_teacher),
) -> SectionResponse:
    return _to_response(services.sections.reorder_elements(section_id, body.ids))


# =============================================================================
# PROGRESS & UNLOCK
# =============================================================================


@router.get(
    "/courses/{course_id}/students/{student_id}/sections",
    response_model=SectionStatesResponse,
)
async def section_states(
    course_id: str,
    student_id: str,
    services: Services = Depends(get_services),
    user: User = Depends(require_authenticated),
) -> SectionStatesResponse:
    """Progress and lock state of every section for a student."""
    ensure_self_or_teacher(user, student_id)
    services.courses.require_course(course_id)
    states = services.progress.get_course_section_states(course_id, student_id)
    return SectionStatesResponse(
        sections=[SectionProgressResponse.model_validate(s.to_dict()) for s in states],
        count=len(states),
    )


@router.get("/sections/{section_id}/elements/{element_id}/access", response_model=AccessResponse)
async def element_access(
    section_id: str,
    element_id: str,
    services: Services = Depends(get_services),
    user: User = Depends(require_authenticated),
) -> AccessResponse:
    """Whether the caller may open an element; teachers always can."""
    if user.is_teacher:
        return AccessResponse(permitido=True)
    section = services.sections.require_section(section_id)
    sections = services.sections.get_sections_by_course(section.curso_id)
    result = services.progress.can_access_element(section_id, element_id, user.id, sections)
    return AccessResponse.model_validate(result.to_dict())


@router.get("/sections/{section_id}/lock-message")
async def lock_message(
    section_id: str,
    services: Services = Depends(get_services),
    user: User = Depends(require_authenticated),
) -> dict[str, str]:
    section = services.sections.require_section(section_id)
    sections = services.sections.get_sections_by_course(section.curso_id)
    return {"mensaje": services.progress.get_lock_message(section_id, user.id, sections)}


@router.post("/courses/{course_id}/students/{student_id}/progress/refresh")
async def refresh_progress(
    course_id: str,
    student_id: str,
    services: Services = Depends(get_services),
    _: User = Depends(require_teacher),
) -> dict[str, int]:
    """Drop the cached progress of a student in every section of a course."""
    services.courses.require_course(course_id)
    return {"invalidados": services.progress.invalidate_course_cache(course_id, student_id)}
