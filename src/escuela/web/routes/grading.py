"""Grade configuration, gradebook and per-student grade endpoints."""

from typing import Any

from fastapi import APIRouter, Depends, status

from escuela.core.grading import GradeScale
from escuela.core.services import Services
from escuela.core.users import User
from escuela.web.dependencies import (
    ensure_self_or_teacher,
    get_services,
    require_authenticated,
    require_teacher,
)
from escuela.web.schemas import (
    GradeConfigCreate,
    GradeConfigUpdate,
    GradeListResponse,
    GradeResponse,
)

router = APIRouter(prefix="/api/courses", tags=["grading"])


@router.post("/{course_id}/grading/config", status_code=status.HTTP_201_CREATED)
async def create_grade_config(
    course_id: str,
    body: GradeConfigCreate,
    services: Services = Depends(get_services),
    _: User = Depends(require_teacher),
) -> dict[str, Any]:
    """Create the course's weights; they must add up to 100."""
    fields = body.model_dump(exclude={"escala"})
    escala = GradeScale(**body.escala.model_dump()) if body.escala else None
    config = services.grading.create_config(course_id, escala=escala, **fields)
    return config.to_dict()


@router.get("/{course_id}/grading/config")
async def get_grade_config(
    course_id: str,
    services: Services = Depends(get_services),
    _: User = Depends(require_authenticated),
) -> dict[str, Any]:
    return services.grading.require_config(course_id).to_dict()


@router.get("/{course_id}/grading/config/default")
async def default_grade_config(
    course_id: str,
    services: Services = Depends(get_services),
    _: User = Depends(require_teacher),
) -> dict[str, Any]:
    """Suggested configuration for a course that has none yet."""
    services.courses.require_course(course_id)
    return services.grading.default_config(course_id).to_dict()


@router.patch("/{course_id}/grading/config")
async def update_grade_config(
    course_id: str,
    body: GradeConfigUpdate,
    services: Services = Depends(get_services),
    _: User = Depends(require_teacher),
) -> dict[str, Any]:
    changes = body.model_dump(exclude_unset=True)
    config = services.grading.update_config(course_id, **changes)
    return config.to_dict()


@router.get("/{course_id}/gradebook")
async def gradebook(
    course_id: str,
    services: Services = Depends(get_services),
    _: User = Depends(require_teacher),
) -> dict[str, Any]:
    return services.grading.get_gradebook(course_id).to_dict()


@router.get("/{course_id}/grading/stats")
async def grading_stats(
    course_id: str,
    services: Services = Depends(get_services),
    _: User = Depends(require_teacher),
) -> dict[str, Any]:
    return services.grading.get_course_stats(course_id).to_dict()


@router.get("/{course_id}/students/{student_id}/grade")
async def student_grade(
    course_id: str,
    student_id: str,
    services: Services = Depends(get_services),
    user: User = Depends(require_authenticated),
) -> dict[str, Any]:
    """Weighted final grade of a student."""
    ensure_self_or_teacher(user, student_id)
    return services.grading.compute_student_grade(student_id, course_id).to_dict()


@router.get("/{course_id}/students/{student_id}/progress")
async def student_progress(
    course_id: str,
    student_id: str,
    services: Services = Depends(get_services),
    user: User = Depends(require_authenticated),
) -> dict[str, Any]:
    ensure_self_or_teacher(user, student_id)
    services.courses.require_course(course_id)
    return services.grading.get_course_progress(student_id, course_id).to_dict()


@router.get("/{course_id}/students/{student_id}/grades", response_model=GradeListResponse)
async def student_grades(
    course_id: str,
    student_id: str,
    services: Services = Depends(get_services),
    user: User = Depends(require_authenticated),
) -> GradeListResponse:
    """Individual grade records of a student in a course."""
    ensure_self_or_teacher(user, student_id)
    grades = services.grades.get_grades_by_student(student_id, course_id)
    return GradeListResponse(
        grades=[GradeResponse.model_validate(g.to_dict()) for g in grades],
        count=len(grades),
        promedio=services.grades.calculate_student_average(student_id, course_id),
    )
