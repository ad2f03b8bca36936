"""Attendance tracking (asistencias).

One record per course, student and day; the record id is
`{course}_{student}_{YYYY-MM-DD}` so recording a day twice overwrites it.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Literal, get_args

import structlog

from escuela.db import collections
from escuela.db.document_store import DocumentStore
from escuela.errors import ValidationError
from escuela.utils.dates import Clock, parse_date, parse_datetime, to_iso, utc_now

logger = structlog.get_logger(__name__)

AttendanceState = Literal["P", "T", "F", "J"]
ATTENDANCE_STATES: tuple[str, ...] = get_args(AttendanceState)

STATE_SCORES: dict[str, float] = {
    "P": 1.0,
    "T": 0.5,
    "F": 0.0,
    "J": 0.75,
}

STATE_LABELS: dict[str, str] = {
    "P": "Presente",
    "T": "Tarde",
    "F": "Falta",
    "J": "Falta Justificada",
}


def state_to_score(state: AttendanceState) -> float:
    """Score of an attendance state (P=1, T=0.5, F=0, J=0.75)."""
    if state not in STATE_SCORES:
        raise InvalidAttendanceError(f"Estado de asistencia inválido: {state}")
    return STATE_SCORES[state]


def state_to_label(state: AttendanceState) -> str:
    if state not in STATE_LABELS:
        raise InvalidAttendanceError(f"Estado de asistencia inválido: {state}")
    return STATE_LABELS[state]


def attendance_id(course_id: str, student_id: str, day: date) -> str:
    return f"{course_id}_{student_id}_{day.isoformat()}"


@dataclass
class Attendance:
    """Attendance of one student in one course on one day."""

    curso_id: str
    estudiante_id: str
    fecha: date
    estado: AttendanceState
    registrado_por: str
    fecha_registro: datetime = field(default_factory=utc_now)

    @property
    def id(self) -> str:
        return attendance_id(self.curso_id, self.estudiante_id, self.fecha)

    @property
    def puntaje(self) -> float:
        return state_to_score(self.estado)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "curso_id": self.curso_id,
            "estudiante_id": self.estudiante_id,
            "fecha": self.fecha.isoformat(),
            "estado": self.estado,
            "puntaje": self.puntaje,
            "registrado_por": self.registrado_por,
            "fecha_registro": to_iso(self.fecha_registro),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Attendance":
        return cls(
            curso_id=data.get("curso_id", ""),
            estudiante_id=data.get("estudiante_id", ""),
            fecha=parse_date(data.get("fecha")) or date.today(),
            estado=data.get("estado", "F"),
            registrado_por=data.get("registrado_por", ""),
            fecha_registro=parse_datetime(data.get("fecha_registro")) or utc_now(),
        )


@dataclass
class AttendanceEntry:
    """One row of the bulk attendance form; estado None means unmarked."""

    estudiante_id: str
    estado: AttendanceState | None = None


@dataclass
class AttendanceStats:
    total_registros: int
    promedio_general: float
    por_estado: dict[str, int]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_registros": self.total_registros,
            "promedio_general": self.promedio_general,
            "por_estado": dict(self.por_estado),
        }


class InvalidAttendanceError(ValidationError):
    pass


class AttendanceService:
    """Bulk recording and reporting over the asistencias collection."""

    def __init__(self, store: DocumentStore, clock: Clock = utc_now):
        self._store = store
        self._attendance = store.collection(collections.ATTENDANCE)
        self._clock = clock

    def record_bulk(
        self,
        course_id: str,
        entries: list[AttendanceEntry],
        day: date | datetime | str,
        recorded_by: str,
    ) -> list[Attendance]:
        """Record a day of attendance for many students in one batch.

        Unmarked students are recorded as `F`.
        """
        fecha = parse_date(day)
        if fecha is None:
            raise InvalidAttendanceError("La fecha de asistencia es obligatoria")
        for entry in entries:
            if entry.estado is not None and entry.estado not in ATTENDANCE_STATES:
                raise InvalidAttendanceError(f"Estado de asistencia inválido: {entry.estado}")

        recorded_at = self._clock()
        records = [
            Attendance(
                curso_id=course_id,
                estudiante_id=entry.estudiante_id,
                fecha=fecha,
                estado=entry.estado or "F",
                registrado_por=recorded_by,
                fecha_registro=recorded_at,
            )
            for entry in entries
        ]

        batch = self._store.batch()
        for record in records:
            batch.set(collections.ATTENDANCE, record.id, record.to_dict(), merge=True)
        batch.commit()

        logger.info("attendance_recorded", course_id=course_id, fecha=fecha.isoformat(), students=len(records))
        return records

    def get_day_records(self, course_id: str, day: date | datetime | str) -> list[Attendance]:
        fecha = parse_date(day)
        docs = (
            self._attendance.where("curso_id", "==", course_id)
            .where("fecha", "==", fecha.isoformat() if fecha else "")
            .stream()
        )
        return [Attendance.from_dict(d) for d in docs]

    def day_exists(self, course_id: str, day: date | datetime | str) -> bool:
        return bool(self.get_day_records(course_id, day))

    def get_student_records(self, course_id: str, student_id: str) -> list[Attendance]:
        """Records of a student in a course, newest first."""
        docs = (
            self._attendance.where("curso_id", "==", course_id)
            .where("estudiante_id", "==", student_id)
            .order_by("fecha", descending=True)
            .stream()
        )
        return [Attendance.from_dict(d) for d in docs]

    def get_student_average(self, course_id: str, student_id: str) -> float:
        """Average score between 0 and 1; 0 without records."""
        records = self.get_student_records(course_id, student_id)
        if not records:
            return 0.0
        return sum(r.puntaje for r in records) / len(records)

    def get_course_records(self, course_id: str) -> dict[str, list[Attendance]]:
        """Course records grouped by student, each list newest first."""
        docs = self._attendance.where("curso_id", "==", course_id).order_by("fecha", descending=True).stream()
        grouped: dict[str, list[Attendance]] = defaultdict(list)
        for doc in docs:
            record = Attendance.from_dict(doc)
            grouped[record.estudiante_id].append(record)
        return dict(grouped)

    def get_course_stats(self, course_id: str) -> AttendanceStats:
        docs = self._attendance.where("curso_id", "==", course_id).stream()
        by_state = {state: 0 for state in ATTENDANCE_STATES}
        total_score = 0.0
        for doc in docs:
            estado = doc.get("estado")
            if estado in by_state:
                by_state[estado] += 1
            total_score += doc.get("puntaje") or 0
        return AttendanceStats(
            total_registros=len(docs),
            promedio_general=total_score / len(docs) if docs else 0.0,
            por_estado=by_state,
        )
