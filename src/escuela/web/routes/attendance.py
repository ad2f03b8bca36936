"""Attendance endpoints."""

from datetime import date

from fastapi import APIRouter, Depends, status

from escuela.core.attendance import Attendance, AttendanceEntry
from escuela.core.services import Services
from escuela.core.users import User
from escuela.web.dependencies import (
    ensure_self_or_teacher,
    get_services,
    require_authenticated,
    require_teacher,
)
from escuela.web.schemas import (
    AttendanceBulkCreate,
    AttendanceListResponse,
    AttendanceResponse,
    AttendanceStatsResponse,
    StudentAttendanceResponse,
)

router = APIRouter(prefix="/api/courses", tags=["attendance"])


def _records(records: list[Attendance]) -> list[AttendanceResponse]:
    return [AttendanceResponse.model_validate(r.to_dict()) for r in records]


@router.post(
    "/{course_id}/attendance",
    response_model=AttendanceListResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_attendance(
    course_id: str,
    body: AttendanceBulkCreate,
    services: Services = Depends(get_services),
    teacher: User = Depends(require_teacher),
) -> AttendanceListResponse:
    """Record one day for many students; unmarked students get F."""
    services.courses.require_course(course_id)
    records = services.attendance.record_bulk(
        course_id,
        [AttendanceEntry(estudiante_id=r.estudiante_id, estado=r.estado) for r in body.registros],
        body.fecha,
        recorded_by=teacher.id,
    )
    return AttendanceListResponse(records=_records(records), count=len(records))


@router.get("/{course_id}/attendance", response_model=AttendanceListResponse)
async def day_attendance(
    course_id: str,
    fecha: date,
    services: Services = Depends(get_services),
    _: User = Depends(require_teacher),
) -> AttendanceListResponse:
    records = services.attendance.get_day_records(course_id, fecha)
    return AttendanceListResponse(records=_records(records), count=len(records))


@router.get("/{course_id}/attendance/stats", response_model=AttendanceStatsResponse)
async def attendance_stats(
    course_id: str,
    services: Services = Depends(get_services),
    _: User = Depends(require_teacher),
) -> AttendanceStatsResponse:
    services.courses.require_course(course_id)
    return AttendanceStatsResponse.model_validate(services.attendance.get_course_stats(course_id).to_dict())


@router.get("/{course_id}/attendance/{student_id}", response_model=StudentAttendanceResponse)
async def student_attendance(
    course_id: str,
    student_id: str,
    services: Services = Depends(get_services),
    user: User = Depends(require_authenticated),
) -> StudentAttendanceResponse:
    """Records of one student, newest first, with the 0-1 average."""
    ensure_self_or_teacher(user, student_id)
    records = services.attendance.get_student_records(course_id, student_id)
    return StudentAttendanceResponse(
        records=_records(records),
        count=len(records),
        promedio=services.attendance.get_student_average(course_id, student_id),
    )
