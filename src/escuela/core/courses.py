"""Courses and enrollment bookkeeping.

A course keeps the ids of its enrolled students and of its sections. The
reverse references live on the user profiles, so every enrollment or teacher
change updates both sides.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from escuela.core.users import UserService
from escuela.db import collections
from escuela.db.document_store import ArrayRemove, ArrayUnion, DocumentStore
from escuela.errors import NotFoundError, ValidationError
from escuela.utils.dates import parse_datetime, to_iso, utc_now

logger = structlog.get_logger(__name__)


@dataclass
class Course:
    """Top-level enrollment unit containing sections."""

    id: str
    titulo: str
    descripcion: str = ""
    imagen: str = ""
    profesor_id: str = ""
    fecha_creacion: datetime = field(default_factory=utc_now)
    activo: bool = True
    estudiantes: list[str] = field(default_factory=list)
    secciones: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "titulo": self.titulo,
            "descripcion": self.descripcion,
            "imagen": self.imagen,
            "profesor_id": self.profesor_id,
            "fecha_creacion": to_iso(self.fecha_creacion),
            "activo": self.activo,
            "estudiantes": list(self.estudiantes),
            "secciones": list(self.secciones),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Course":
        return cls(
            id=data["id"],
            titulo=data.get("titulo", ""),
            descripcion=data.get("descripcion", ""),
            imagen=data.get("imagen") or "",
            profesor_id=data.get("profesor_id") or "",
            fecha_creacion=parse_datetime(data.get("fecha_creacion")) or utc_now(),
            activo=data.get("activo", True),
            estudiantes=list(data.get("estudiantes") or []),
            secciones=list(data.get("secciones") or []),
        )


@dataclass
class CourseStats:
    total_cursos: int
    cursos_activos: int
    cursos_inactivos: int
    total_estudiantes: int

    def to_dict(self) -> dict[str, int]:
        return {
            "total_cursos": self.total_cursos,
            "cursos_activos": self.cursos_activos,
            "cursos_inactivos": self.cursos_inactivos,
            "total_estudiantes": self.total_estudiantes,
        }


class CourseNotFoundError(NotFoundError):
    """Raised when a course id does not exist."""

    def __init__(self, course_id: str):
        super().__init__("Curso", course_id)


class InvalidCourseError(ValidationError):
    """Raised for invalid course data."""

    pass


_UPDATABLE_FIELDS = {"titulo", "descripcion", "imagen", "profesor_id", "activo"}


class CourseService:
    """CRUD over the cursos collection."""

    def __init__(self, store: DocumentStore, users: UserService):
        self._courses = store.collection(collections.COURSES)
        self._users = users

    def list_courses(self) -> list[Course]:
        return [Course.from_dict(d) for d in self._courses.order_by("titulo").stream()]

    def get_course(self, course_id: str) -> Course | None:
        doc = self._courses.get(course_id)
        return Course.from_dict(doc) if doc else None

    def require_course(self, course_id: str) -> Course:
        course = self.get_course(course_id)
        if course is None:
            raise CourseNotFoundError(course_id)
        return course

    def get_courses_by_teacher(self, teacher_id: str) -> list[Course]:
        docs = self._courses.where("profesor_id", "==", teacher_id).stream()
        return [Course.from_dict(d) for d in docs]

    def get_courses_by_student(self, student_id: str) -> list[Course]:
        docs = self._courses.where("estudiantes", "array_contains", student_id).stream()
        return [Course.from_dict(d) for d in docs]

    def create_course(
        self,
        titulo: str,
        descripcion: str = "",
        imagen: str = "",
        profesor_id: str = "",
        activo: bool = True,
    ) -> Course:
        """Create a course; the teacher (if any) gets it in cursos_asignados."""
        if not titulo.strip():
            raise InvalidCourseError("El título del curso es obligatorio")
        if profesor_id:
            self._users.require_user(profesor_id)

        course = Course(
            id=self._courses.new_id(),
            titulo=titulo.strip(),
            descripcion=descripcion,
            imagen=imagen,
            profesor_id=profesor_id,
            activo=activo,
        )
        self._courses.set(course.id, course.to_dict())

        if profesor_id:
            self._users.assign_course(profesor_id, course.id)

        logger.info("course_created", course_id=course.id, profesor_id=profesor_id or None)
        return course

    def update_course(self, course_id: str, **changes: Any) -> Course:
        """Update course fields.

        Changing profesor_id moves the course from the previous teacher's
        cursos_asignados to the new one's.
        """
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise InvalidCourseError(f"Campos no editables: {', '.join(sorted(unknown))}")

        current = self.require_course(course_id)

        if "profesor_id" in changes:
            new_teacher = changes["profesor_id"] or ""
            if new_teacher:
                self._users.require_user(new_teacher)
            if current.profesor_id and current.profesor_id != new_teacher:
                self._users.remove_course(current.profesor_id, course_id)
            if new_teacher:
                self._users.assign_course(new_teacher, course_id)
            changes["profesor_id"] = new_teacher

        self._courses.update(course_id, changes)
        logger.info("course_updated", course_id=course_id, fields=sorted(changes))
        return self.require_course(course_id)

    def set_active(self, course_id: str, active: bool) -> Course:
        return self.update_course(course_id, activo=active)

    def delete_course(self, course_id: str) -> None:
        """Delete a course and drop it from the teacher and student profiles."""
        course = self.get_course(course_id)
        if course is None:
            return

        if course.profesor_id and self._users.get_user(course.profesor_id):
            self._users.remove_course(course.profesor_id, course_id)

        for student_id in course.estudiantes:
            if self._users.get_user(student_id):
                self._users.unenroll_from_course(student_id, course_id)

        self._courses.delete(course_id)
        logger.info("course_deleted", course_id=course_id, students=len(course.estudiantes))

    def enroll_student(self, course_id: str, student_id: str) -> None:
        """Enroll a student, updating both the course and the profile."""
        self.require_course(course_id)
        self._users.require_user(student_id)
        self._courses.update(course_id, {"estudiantes": ArrayUnion(student_id)})
        self._users.enroll_in_course(student_id, course_id)
        logger.info("student_enrolled", course_id=course_id, student_id=student_id)

    def unenroll_student(self, course_id: str, student_id: str) -> None:
        self.require_course(course_id)
        self._courses.update(course_id, {"estudiantes": ArrayRemove(student_id)})
        if self._users.get_user(student_id):
            self._users.unenroll_from_course(student_id, course_id)
        logger.info("student_unenrolled", course_id=course_id, student_id=student_id)

    def add_section_ref(self, course_id: str, section_id: str) -> None:
        self._courses.update(course_id, {"secciones": ArrayUnion(section_id)})

    def remove_section_ref(self, course_id: str, section_id: str) -> None:
        if self._courses.exists(course_id):
            self._courses.update(course_id, {"secciones": ArrayRemove(section_id)})

    def get_course_stats(self) -> CourseStats:
        courses = self.list_courses()
        return CourseStats(
            total_cursos=len(courses),
            cursos_activos=sum(1 for c in courses if c.activo),
            cursos_inactivos=sum(1 for c in courses if not c.activo),
            total_estudiantes=sum(len(c.estudiantes) for c in courses),
        )
