"""Enrollment requests: a student asks to join a course, an admin answers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

import structlog

from escuela.core.courses import CourseService
from escuela.core.users import UserService
from escuela.db import collections
from escuela.db.document_store import DocumentStore
from escuela.errors import ConflictError, NotFoundError, ValidationError
from escuela.utils.dates import Clock, parse_datetime, to_iso, utc_now

logger = structlog.get_logger(__name__)

RequestState = Literal["pendiente", "aceptada", "rechazada"]


@dataclass
class EnrollmentRequest:
    id: str
    estudiante_id: str
    estudiante_nombre: str
    estudiante_email: str
    curso_id: str
    curso_nombre: str
    fecha_solicitud: datetime = field(default_factory=utc_now)
    estado: RequestState = "pendiente"
    motivo_rechazo: str | None = None
    fecha_respuesta: datetime | None = None
    respondido_por: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "estudiante_id": self.estudiante_id,
            "estudiante_nombre": self.estudiante_nombre,
            "estudiante_email": self.estudiante_email,
            "curso_id": self.curso_id,
            "curso_nombre": self.curso_nombre,
            "fecha_solicitud": to_iso(self.fecha_solicitud),
            "estado": self.estado,
            "motivo_rechazo": self.motivo_rechazo,
            "fecha_respuesta": to_iso(self.fecha_respuesta),
            "respondido_por": self.respondido_por,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EnrollmentRequest":
        return cls(
            id=data["id"],
            estudiante_id=data.get("estudiante_id", ""),
            estudiante_nombre=data.get("estudiante_nombre", ""),
            estudiante_email=data.get("estudiante_email", ""),
            curso_id=data.get("curso_id", ""),
            curso_nombre=data.get("curso_nombre", ""),
            fecha_solicitud=parse_datetime(data.get("fecha_solicitud")) or utc_now(),
            estado=data.get("estado", "pendiente"),
            motivo_rechazo=data.get("motivo_rechazo"),
            fecha_respuesta=parse_datetime(data.get("fecha_respuesta")),
            respondido_por=data.get("respondido_por"),
        )


class EnrollmentRequestNotFoundError(NotFoundError):
    def __init__(self, request_id: str):
        super().__init__("Solicitud", request_id)


class DuplicateRequestError(ConflictError):
    """Raised when the student already has a pending request for the course."""

    pass


class RequestAlreadyAnsweredError(ConflictError):
    pass


class AlreadyEnrolledError(ConflictError):
    pass


class EnrollmentService:
    """Manages the solicitudes-inscripcion collection."""

    def __init__(
        self,
        store: DocumentStore,
        users: UserService,
        courses: CourseService,
        clock: Clock = utc_now,
    ):
        self._requests = store.collection(collections.ENROLLMENT_REQUESTS)
        self._users = users
        self._courses = courses
        self._clock = clock

    def create_request(self, student_id: str, course_id: str) -> EnrollmentRequest:
        """File a request; names are copied so admins can list without joins.

        Raises:
            DuplicateRequestError: A pending request already exists
            AlreadyEnrolledError: The student is already in the course
        """
        student = self._users.require_user(student_id)
        course = self._courses.require_course(course_id)
        if not course.activo:
            raise ValidationError(f"El curso no está activo: {course.titulo}")
        if student_id in course.estudiantes:
            raise AlreadyEnrolledError(f"Ya estás inscrito en el curso: {course.titulo}")
        if self.has_pending_request(student_id, course_id):
            raise DuplicateRequestError(f"Ya existe una solicitud pendiente para el curso: {course.titulo}")

        request = EnrollmentRequest(
            id=self._requests.new_id(),
            estudiante_id=student_id,
            estudiante_nombre=student.nombre_completo,
            estudiante_email=student.email,
            curso_id=course_id,
            curso_nombre=course.titulo,
            fecha_solicitud=self._clock(),
        )
        self._requests.set(request.id, request.to_dict())
        logger.info("enrollment_requested", request_id=request.id, student_id=student_id, course_id=course_id)
        return request

    def get_request(self, request_id: str) -> EnrollmentRequest | None:
        doc = self._requests.get(request_id)
        return EnrollmentRequest.from_dict(doc) if doc else None

    def list_requests(self, estado: RequestState | None = None) -> list[EnrollmentRequest]:
        """All requests, newest first, optionally filtered by state."""
        query = self._requests.order_by("fecha_solicitud", descending=True)
        if estado is not None:
            query = query.where("estado", "==", estado)
        return [EnrollmentRequest.from_dict(d) for d in query.stream()]

    def list_student_requests(self, student_id: str) -> list[EnrollmentRequest]:
        docs = (
            self._requests.where("estudiante_id", "==", student_id)
            .order_by("fecha_solicitud", descending=True)
            .stream()
        )
        return [EnrollmentRequest.from_dict(d) for d in docs]

    def has_pending_request(self, student_id: str, course_id: str) -> bool:
        doc = (
            self._requests.where("estudiante_id", "==", student_id)
            .where("curso_id", "==", course_id)
            .where("estado", "==", "pendiente")
            .first()
        )
        return doc is not None

    def accept_request(self, request_id: str, admin_id: str) -> EnrollmentRequest:
        """Accept a pending request and enroll the student."""
        request = self._require_pending(request_id)
        self._courses.enroll_student(request.curso_id, request.estudiante_id)

        request.estado = "aceptada"
        request.fecha_respuesta = self._clock()
        request.respondido_por = admin_id
        self._requests.update(
            request_id,
            {"estado": "aceptada", "fecha_respuesta": request.fecha_respuesta, "respondido_por": admin_id},
        )
        logger.info("enrollment_accepted", request_id=request_id, admin_id=admin_id)
        return request

    def reject_request(self, request_id: str, admin_id: str, reason: str | None = None) -> EnrollmentRequest:
        request = self._require_pending(request_id)

        request.estado = "rechazada"
        request.motivo_rechazo = reason
        request.fecha_respuesta = self._clock()
        request.respondido_por = admin_id
        self._requests.update(
            request_id,
            {
                "estado": "rechazada",
                "motivo_rechazo": reason,
                "fecha_respuesta": request.fecha_respuesta,
                "respondido_por": admin_id,
            },
        )
        logger.info("enrollment_rejected", request_id=request_id, admin_id=admin_id)
        return request

    def _require_pending(self, request_id: str) -> EnrollmentRequest:
        request = self.get_request(request_id)
        if request is None:
            raise EnrollmentRequestNotFoundError(request_id)
        if request.estado != "pendiente":
            raise RequestAlreadyAnsweredError(f"La solicitud ya fue respondida: {request.estado}")
        return request
