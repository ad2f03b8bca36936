"""Course endpoints."""

from fastapi import APIRouter, Depends, HTTPException, status

from escuela.core.courses import Course
from escuela.core.services import Services
from escuela.core.users import User
from escuela.web.dependencies import (
    get_current_user,
    get_services,
    require_admin,
    require_authenticated,
)
from escuela.web.schemas import (
    CourseCreate,
    CourseListResponse,
    CourseResponse,
    CourseUpdate,
    StudentEnrollment,
)

router = APIRouter(prefix="/api/courses", tags=["courses"])


def _to_response(course: Course) -> CourseResponse:
    return CourseResponse.model_validate(course.to_dict())


def _listing(courses: list[Course]) -> CourseListResponse:
    return CourseListResponse(courses=[_to_response(c) for c in courses], count=len(courses))


@router.get("", response_model=CourseListResponse)
async def list_courses(
    todos: bool = False,
    services: Services = Depends(get_services),
    user: User | None = Depends(get_current_user),
) -> CourseListResponse:
    """List active courses; admins may ask for inactive ones too."""
    if todos and not (user and user.is_admin):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Se requiere rol de administrador",
        )
    courses = services.courses.list_courses()
    if not todos:
        courses = [c for c in courses if c.activo]
    return _listing(courses)


@router.get("/mine", response_model=CourseListResponse)
async def my_courses(
    services: Services = Depends(get_services),
    user: User = Depends(require_authenticated),
) -> CourseListResponse:
    """Courses the caller studies, teaches or (admins) all of them."""
    if user.is_admin:
        return _listing(services.courses.list_courses())
    if user.rol == "profesor":
        return _listing(services.courses.get_courses_by_teacher(user.id))
    return _listing(services.courses.get_courses_by_student(user.id))


@router.get("/stats")
async def course_stats(
    services: Services = Depends(get_services),
    _: User = Depends(require_admin),
) -> dict[str, int]:
    return services.courses.get_course_stats().to_dict()


@router.get("/{course_id}", response_model=CourseResponse)
async def get_course(
    course_id: str,
    services: Services = Depends(get_services),
) -> CourseResponse:
    return _to_response(services.courses.require_course(course_id))


@router.post("", response_model=CourseResponse, status_code=status.HTTP_201_CREATED)
async def create_course(
    body: CourseCreate,
    services: Services = Depends(get_services),
    _: User = Depends(require_admin),
) -> CourseResponse:
    course = services.courses.create_course(**body.model_dump())
    return _to_response(course)


@router.patch("/{course_id}", response_model=CourseResponse)
async def update_course(
    course_id: str,
    body: CourseUpdate,
    services: Services = Depends(get_services),
    _: User = Depends(require_admin),
) -> CourseResponse:
    course = services.courses.update_course(course_id, **body.model_dump(exclude_unset=True))
    return _to_response(course)


@router.delete("/{course_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_course(
    course_id: str,
    services: Services = Depends(get_services),
    _: User = Depends(require_admin),
) -> None:
    services.courses.require_course(course_id)
    services.courses.delete_course(course_id)


@router.post("/{course_id}/students", response_model=CourseResponse)
async def enroll_student(
    course_id: str,
    body: StudentEnrollment,
    services: Services = Depends(get_services),
    _: User = Depends(require_admin),
) -> CourseResponse:
    """Enroll a student directly, without a request."""
    services.courses.enroll_student(course_id, body.estudiante_id)
    return _to_response(services.courses.require_course(course_id))


@router.delete("/{course_id}/students/{student_id}", response_model=CourseResponse)
async def unenroll_student(
    course_id: str,
    student_id: str,
    services: Services = Depends(get_services),
    _: User = Depends(require_admin),
) -> CourseResponse:
    services.courses.unenroll_student(course_id, student_id)
    return _to_response(services.courses.require_course(course_id))
