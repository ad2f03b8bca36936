"""Lesson endpoints."""

from typing import Any

from fastapi import APIRouter, Depends, status

from escuela.core.lessons import Lesson
from escuela.core.services import Services
from escuela.core.users import User
from escuela.web.dependencies import (
    ensure_unlocked,
    get_services,
    require_authenticated,
    require_teacher,
)
from escuela.web.schemas import (
    LessonCompletionResponse,
    LessonCreate,
    LessonListResponse,
    LessonResponse,
    LessonUpdate,
    ReorderRequest,
)

router = APIRouter(prefix="/api", tags=["lessons"])


def _to_response(lesson: Lesson) -> LessonResponse:
    return LessonResponse.model_validate(lesson.to_dict())


@router.get("/sections/{section_id}/lessons", response_model=LessonListResponse)
async def list_lessons(
    section_id: str,
    services: Services = Depends(get_services),
    _: User = Depends(require_authenticated),
) -> LessonListResponse:
    services.sections.require_section(section_id)
    lessons = services.lessons.get_lessons_by_section(section_id)
    return LessonListResponse(lessons=[_to_response(lesson) for lesson in lessons], count=len(lessons))


@router.post(
    "/sections/{section_id}/lessons",
    response_model=LessonResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_lesson(
    section_id: str,
    body: LessonCreate,
    services: Services = Depends(get_services),
    _: User = Depends(require_teacher),
) -> LessonResponse:
    lesson = services.lessons.create_lesson(seccion_id=section_id, **body.model_dump())
    return _to_response(lesson)


@router.put("/sections/{section_id}/lessons/order", status_code=status.HTTP_204_NO_CONTENT)
async def reorder_lessons(
    section_id: str,
    body: ReorderRequest,
    services: Services = Depends(get_services),
    _: User = Depends(require_teacher),
) -> None:
    services.sections.require_section(section_id)
    services.lessons.reorder_lessons(body.ids)


@router.get("/lessons/{lesson_id}", response_model=LessonResponse)
async def get_lesson(
    lesson_id: str,
    services: Services = Depends(get_services),
    user: User = Depends(require_authenticated),
) -> LessonResponse:
    lesson = services.lessons.require_lesson(lesson_id)
    ensure_unlocked(services, user, lesson.seccion_id, lesson.id)
    return _to_response(lesson)


@router.patch("/lessons/{lesson_id}", response_model=LessonResponse)
async def update_lesson(
    lesson_id: str,
    body: LessonUpdate,
    services: Services = Depends(get_services),
    _: User = Depends(require_teacher),
) -> LessonResponse:
    lesson = services.lessons.update_lesson(lesson_id, **body.model_dump(exclude_unset=True))
    return _to_response(lesson)


@router.delete("/lessons/{lesson_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_lesson(
    lesson_id: str,
    services: Services = Depends(get_services),
    _: User = Depends(require_teacher),
) -> None:
    services.lessons.require_lesson(lesson_id)
    services.lessons.delete_lesson(lesson_id)


@router.post("/lessons/{lesson_id}/complete", response_model=LessonCompletionResponse)
async def complete_lesson(
    lesson_id: str,
    services: Services = Depends(get_services),
    user: User = Depends(require_authenticated),
) -> LessonCompletionResponse:
    """Mark the lesson as completed by the caller."""
    lesson = services.lessons.require_lesson(lesson_id)
    ensure_unlocked(services, user, lesson.seccion_id, lesson.id)
    mark = services.lessons.mark_completed(user.id, lesson_id)
    return LessonCompletionResponse.model_validate(mark.to_dict())


@router.get("/courses/{course_id}/lessons/stats")
async def lesson_stats(
    course_id: str,
    services: Services = Depends(get_services),
    _: User = Depends(require_teacher),
) -> dict[str, Any]:
    services.courses.require_course(course_id)
    return services.lessons.get_lesson_stats(course_id).to_dict()
