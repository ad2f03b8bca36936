"""Individual grade records (calificaciones).

Each record holds a 0-100 score for one task or exam and the weight it
carries; `puntos_final` is the weighted contribution.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

import structlog

from escuela.db import collections
from escuela.db.document_store import DocumentStore
from escuela.errors import NotFoundError, ValidationError
from escuela.utils.dates import parse_datetime, to_iso, utc_now

logger = structlog.get_logger(__name__)

GradeType = Literal["tarea", "examen"]


def weighted_points(score: float, weight: float) -> float:
    return score * weight / 100


@dataclass
class Grade:
    """A graded task or exam of a student in a course."""

    id: str
    estudiante_id: str
    curso_id: str
    tipo: GradeType
    calificacion: float
    ponderacion: float = 0
    tarea_id: str | None = None
    examen_id: str | None = None
    profesor_id: str = ""
    retroalimentacion: str | None = None
    fecha_calificacion: datetime = field(default_factory=utc_now)

    @property
    def puntos_final(self) -> float:
        return weighted_points(self.calificacion, self.ponderacion)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "estudiante_id": self.estudiante_id,
            "curso_id": self.curso_id,
            "tarea_id": self.tarea_id,
            "examen_id": self.examen_id,
            "tipo": self.tipo,
            "calificacion": self.calificacion,
            "ponderacion": self.ponderacion,
            "puntos_final": self.puntos_final,
            "fecha_calificacion": to_iso(self.fecha_calificacion),
            "retroalimentacion": self.retroalimentacion,
            "profesor_id": self.profesor_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Grade":
        return cls(
            id=data["id"],
            estudiante_id=data.get("estudiante_id", ""),
            curso_id=data.get("curso_id", ""),
            tipo=data.get("tipo", "tarea"),
            calificacion=float(data.get("calificacion") or 0),
            ponderacion=float(data.get("ponderacion") or 0),
            tarea_id=data.get("tarea_id"),
            examen_id=data.get("examen_id"),
            profesor_id=data.get("profesor_id") or "",
            retroalimentacion=data.get("retroalimentacion"),
            fecha_calificacion=parse_datetime(data.get("fecha_calificacion")) or utc_now(),
        )


class GradeNotFoundError(NotFoundError):
    def __init__(self, grade_id: str):
        super().__init__("Calificación", grade_id)


class InvalidGradeError(ValidationError):
    """Raised for scores outside 0-100 or an unknown grade type."""

    pass


def check_score(value: float) -> None:
    if not 0 <= value <= 100:
        raise InvalidGradeError(f"La calificación debe estar entre 0 y 100: {value}")


_UPDATABLE_FIELDS = {"calificacion", "ponderacion", "retroalimentacion", "profesor_id"}


class GradeService:
    """CRUD over the calificaciones collection."""

    def __init__(self, store: DocumentStore):
        self._grades = store.collection(collections.GRADES)

    def create_grade(
        self,
        estudiante_id: str,
        curso_id: str,
        tipo: GradeType,
        calificacion: float,
        ponderacion: float = 0,
        tarea_id: str | None = None,
        examen_id: str | None = None,
        profesor_id: str = "",
        retroalimentacion: str | None = None,
    ) -> Grade:
        if tipo not in ("tarea", "examen"):
            raise InvalidGradeError(f"Tipo de calificación inválido: {tipo}")
        check_score(calificacion)

        grade = Grade(
            id=self._grades.new_id(),
            estudiante_id=estudiante_id,
            curso_id=curso_id,
            tipo=tipo,
            calificacion=calificacion,
            ponderacion=ponderacion,
            tarea_id=tarea_id,
            examen_id=examen_id,
            profesor_id=profesor_id,
            retroalimentacion=retroalimentacion,
        )
        self._grades.set(grade.id, grade.to_dict())
        logger.info("grade_created", grade_id=grade.id, estudiante_id=estudiante_id, tipo=tipo)
        return grade

    def get_grade(self, grade_id: str) -> Grade | None:
        doc = self._grades.get(grade_id)
        return Grade.from_dict(doc) if doc else None

    def get_grades_by_student(self, student_id: str, course_id: str) -> list[Grade]:
        docs = (
            self._grades.where("estudiante_id", "==", student_id)
            .where("curso_id", "==", course_id)
            .stream()
        )
        return [Grade.from_dict(d) for d in docs]

    def get_grades_by_task(self, task_id: str) -> list[Grade]:
        return [Grade.from_dict(d) for d in self._grades.where("tarea_id", "==", task_id).stream()]

    def get_grade_by_student_and_task(self, student_id: str, task_id: str) -> Grade | None:
        doc = (
            self._grades.where("estudiante_id", "==", student_id)
            .where("tarea_id", "==", task_id)
            .where("tipo", "==", "tarea")
            .first()
        )
        return Grade.from_dict(doc) if doc else None

    def update_grade(self, grade_id: str, **changes: Any) -> Grade:
        """Update a grade; `puntos_final` is recomputed from the result."""
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise InvalidGradeError(f"Campos no editables: {', '.join(sorted(unknown))}")
        if "calificacion" in changes:
            check_score(changes["calificacion"])

        current = self.get_grade(grade_id)
        if current is None:
            raise GradeNotFoundError(grade_id)

        for key, value in changes.items():
            setattr(current, key, value)
        current.fecha_calificacion = utc_now()
        self._grades.set(grade_id, current.to_dict())
        logger.info("grade_updated", grade_id=grade_id, fields=sorted(changes))
        return current

    def delete_grade(self, grade_id: str) -> None:
        self._grades.delete(grade_id)
        logger.info("grade_deleted", grade_id=grade_id)

    def calculate_student_average(self, student_id: str, course_id: str) -> float:
        """Weighted average: Σ puntos_final / Σ ponderacion × 100 (0 without weight)."""
        grades = self.get_grades_by_student(student_id, course_id)
        total_weight = sum(g.ponderacion for g in grades)
        if total_weight == 0:
            return 0.0
        return sum(g.puntos_final for g in grades) / total_weight * 100
