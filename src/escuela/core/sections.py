"""Course sections.

A section groups lessons and exams of a course. Its `elementos` list keeps the
display order of the contained items; progressive unlock settings decide
whether a student can open it (see progress_unlock).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

import structlog

from escuela.core.courses import CourseService
from escuela.db import collections
from escuela.db.document_store import DocumentStore
from escuela.errors import NotFoundError, ValidationError
from escuela.utils.validators import validate_percentage

logger = structlog.get_logger(__name__)

ElementType = Literal["leccion", "examen"]

DEFAULT_MIN_PERCENTAGE = 70


@dataclass
class SectionElement:
    """An ordered item (lesson or exam) inside a section."""

    id: str
    tipo: ElementType
    orden: int

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "tipo": self.tipo, "orden": self.orden}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SectionElement":
        return cls(id=data["id"], tipo=data.get("tipo", "leccion"), orden=int(data.get("orden", 0)))


@dataclass
class Section:
    """A section of a course with its unlock rules."""

    id: str
    curso_id: str
    titulo: str
    descripcion: str = ""
    orden: int = 0
    desbloqueo_progresivo: bool = False
    prerequisitos: list[str] = field(default_factory=list)
    requiere_completar_todo: bool = False
    porcentaje_minimo: int | None = DEFAULT_MIN_PERCENTAGE
    elementos: list[SectionElement] = field(default_factory=list)

    def element_ids(self, tipo: ElementType | None = None) -> list[str]:
        return [e.id for e in self.elementos if tipo is None or e.tipo == tipo]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "curso_id": self.curso_id,
            "titulo": self.titulo,
            "descripcion": self.descripcion,
            "orden": self.orden,
            "desbloqueo_progresivo": self.desbloqueo_progresivo,
            "prerequisitos": list(self.prerequisitos),
            "requiere_completar_todo": self.requiere_completar_todo,
            "porcentaje_minimo": self.porcentaje_minimo,
            "elementos": [e.to_dict() for e in self.elementos],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Section":
        return cls(
            id=data["id"],
            curso_id=data.get("curso_id", ""),
            titulo=data.get("titulo", ""),
            descripcion=data.get("descripcion", ""),
            orden=int(data.get("orden", 0)),
            desbloqueo_progresivo=bool(data.get("desbloqueo_progresivo", False)),
            prerequisitos=list(data.get("prerequisitos") or []),
            requiere_completar_todo=bool(data.get("requiere_completar_todo", False)),
            porcentaje_minimo=data.get("porcentaje_minimo"),
            elementos=[SectionElement.from_dict(e) for e in data.get("elementos") or []],
        )


class SectionNotFoundError(NotFoundError):
    """Raised when a section id does not exist."""

    def __init__(self, section_id: str):
        super().__init__("Sección", section_id)


class InvalidSectionError(ValidationError):
    """Raised for invalid section data or unlock settings."""

    pass


_UPDATABLE_FIELDS = {
    "titulo",
    "descripcion",
    "orden",
    "desbloqueo_progresivo",
    "prerequisitos",
    "requiere_completar_todo",
    "porcentaje_minimo",
}


class SectionService:
    """CRUD over the secciones collection."""

    def __init__(self, store: DocumentStore, courses: CourseService):
        self._store = store
        self._sections = store.collection(collections.SECTIONS)
        self._courses = courses

    def get_sections_by_course(self, course_id: str) -> list[Section]:
        docs = self._sections.where("curso_id", "==", course_id).order_by("orden").stream()
        return [Section.from_dict(d) for d in docs]

    def get_section(self, section_id: str) -> Section | None:
        doc = self._sections.get(section_id)
        return Section.from_dict(doc) if doc else None

    def require_section(self, section_id: str) -> Section:
        section = self.get_section(section_id)
        if section is None:
            raise SectionNotFoundError(section_id)
        return section

    def create_section(
        self,
        curso_id: str,
        titulo: str,
        descripcion: str = "",
        orden: int | None = None,
        desbloqueo_progresivo: bool = False,
        prerequisitos: list[str] | None = None,
        requiere_completar_todo: bool = False,
        porcentaje_minimo: int = DEFAULT_MIN_PERCENTAGE,
    ) -> Section:
        """Create a section and append it to the course.

        When `orden` is omitted the section goes after the existing ones.
        """
        self._courses.require_course(curso_id)
        if not titulo.strip():
            raise InvalidSectionError("El título de la sección es obligatorio")
        self._check_unlock_settings(None, curso_id, prerequisitos or [], porcentaje_minimo)

        if orden is None:
            orden = len(self.get_sections_by_course(curso_id))

        section = Section(
            id=self._sections.new_id(),
            curso_id=curso_id,
            titulo=titulo.strip(),
            descripcion=descripcion,
            orden=orden,
            desbloqueo_progresivo=desbloqueo_progresivo,
            prerequisitos=list(prerequisitos or []),
            requiere_completar_todo=requiere_completar_todo,
            porcentaje_minimo=porcentaje_minimo,
        )
        self._sections.set(section.id, section.to_dict())
        self._courses.add_section_ref(curso_id, section.id)

        logger.info("section_created", section_id=section.id, curso_id=curso_id, orden=orden)
        return section

    def update_section(self, section_id: str, **changes: Any) -> Section:
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise InvalidSectionError(f"Campos no editables: {', '.join(sorted(unknown))}")

        current = self.require_section(section_id)
        self._check_unlock_settings(
            section_id,
            current.curso_id,
            changes.get("prerequisitos", current.prerequisitos),
            changes.get("porcentaje_minimo", current.porcentaje_minimo),
        )

        self._sections.update(section_id, changes)
        logger.info("section_updated", section_id=section_id, fields=sorted(changes))
        return self.require_section(section_id)

    def delete_section(self, section_id: str) -> None:
        """Delete a section with its lessons, tasks, submissions, exams and attempts."""
        section = self.get_section(section_id)
        if section is None:
            return

        batch = self._store.batch()
        lessons = self._store.collection(collections.LESSONS)
        tasks = self._store.collection(collections.TASKS)
        submissions = self._store.collection(collections.SUBMISSIONS)
        exams = self._store.collection(collections.EXAMS)
        attempts = self._store.collection(collections.ATTEMPTS)

        lesson_docs = lessons.where("seccion_id", "==", section_id).stream()
        for lesson in lesson_docs:
            for task in tasks.where("leccion_id", "==", lesson["id"]).stream():
                for sub in submissions.where("tarea_id", "==", task["id"]).stream():
                    batch.delete(collections.SUBMISSIONS, sub["id"])
                batch.delete(collections.TASKS, task["id"])
            batch.delete(collections.LESSONS, lesson["id"])

        exam_docs = exams.where("seccion_id", "==", section_id).stream()
        for exam in exam_docs:
            for attempt in attempts.where("examen_id", "==", exam["id"]).stream():
                batch.delete(collections.ATTEMPTS, attempt["id"])
            batch.delete(collections.EXAMS, exam["id"])

        progress = self._store.collection(collections.SECTION_PROGRESS)
        for doc in progress.where("seccion_id", "==", section_id).stream():
            batch.delete(collections.SECTION_PROGRESS, doc["id"])

        # Other sections may list this one as a prerequisite
        for other in self._sections.where("prerequisitos", "array_contains", section_id).stream():
            remaining = [p for p in other.get("prerequisitos", []) if p != section_id]
            batch.update(collections.SECTIONS, other["id"], {"prerequisitos": remaining})

        batch.delete(collections.SECTIONS, section_id)
        batch.commit()

        self._courses.remove_section_ref(section.curso_id, section_id)
        logger.info(
            "section_deleted",
            section_id=section_id,
            lessons=len(lesson_docs),
            exams=len(exam_docs),
        )

    def reorder_sections(self, ordered_ids: list[str]) -> None:
        """Persist a new order; position in the list becomes `orden`."""
        for section_id in ordered_ids:
            if not self._sections.exists(section_id):
                raise SectionNotFoundError(section_id)

        batch = self._store.batch()
        for index, section_id in enumerate(ordered_ids):
            batch.update(collections.SECTIONS, section_id, {"orden": index})
        batch.commit()
        logger.info("sections_reordered", count=len(ordered_ids))

    # -- elements ------------------------------------------------------------

    def add_element(self, section_id: str, element_id: str, tipo: ElementType) -> Section:
        """Append a lesson or exam to the section's element list."""
        if tipo not in ("leccion", "examen"):
            raise InvalidSectionError(f"Tipo de elemento inválido: {tipo}")

        section = self.require_section(section_id)
        if element_id in section.element_ids():
            return section

        section.elementos.append(SectionElement(id=element_id, tipo=tipo, orden=len(section.elementos)))
        self._sections.update(section_id, {"elementos": [e.to_dict() for e in section.elementos]})
        return section

    def remove_element(self, section_id: str, element_id: str) -> Section | None:
        section = self.get_section(section_id)
        if section is None:
            return None

        section.elementos = [e for e in section.elementos if e.id != element_id]
        self._sections.update(section_id, {"elementos": [e.to_dict() for e in section.elementos]})
        return section

    def reorder_elements(self, section_id: str, ordered_ids: list[str]) -> Section:
        section = self.require_section(section_id)
        by_id = {e.id: e for e in section.elementos}
        missing = [eid for eid in ordered_ids if eid not in by_id]
        if missing:
            raise InvalidSectionError(f"Elementos desconocidos: {', '.join(missing)}")

        section.elementos = [
            SectionElement(id=eid, tipo=by_id[eid].tipo, orden=index)
            for index, eid in enumerate(ordered_ids)
        ]
        self._sections.update(section_id, {"elementos": [e.to_dict() for e in section.elementos]})
        return section

    def _check_unlock_settings(
        self,
        section_id: str | None,
        course_id: str,
        prerequisites: list[str],
        min_percentage: int | None,
    ) -> None:
        if min_percentage is not None and not validate_percentage(min_percentage):
            raise InvalidSectionError(f"Porcentaje mínimo fuera de rango: {min_percentage}")
        if section_id is not None and section_id in prerequisites:
            raise InvalidSectionError("Una sección no puede ser prerequisito de sí misma")
        for prereq_id in prerequisites:
            prereq = self.get_section(prereq_id)
            if prereq is None or prereq.curso_id != course_id:
                raise InvalidSectionError(f"Prerequisito inválido: {prereq_id}")
