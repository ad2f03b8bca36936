"""Lessons and per-student lesson completion."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Iterable, Literal, get_args

import structlog

from escuela.core.sections import SectionService
from escuela.db import collections
from escuela.db.document_store import ArrayRemove, ArrayUnion, DocumentStore
from escuela.errors import NotFoundError, ValidationError
from escuela.utils.dates import Clock, parse_datetime, to_iso, utc_now

if TYPE_CHECKING:
    from escuela.core.progress_unlock import ProgressUnlockService

logger = structlog.get_logger(__name__)

LessonType = Literal["texto", "imagen", "pdf", "video"]
LESSON_TYPES: tuple[str, ...] = get_args(LessonType)


@dataclass
class Lesson:
    """A content item of a section."""

    id: str
    seccion_id: str
    titulo: str
    tipo: LessonType = "texto"
    contenido: str = ""
    url_archivo: str | None = None
    url_youtube: str | None = None
    orden: int = 0
    tareas: list[str] = field(default_factory=list)
    fecha_creacion: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "seccion_id": self.seccion_id,
            "titulo": self.titulo,
            "tipo": self.tipo,
            "contenido": self.contenido,
            "url_archivo": self.url_archivo,
            "url_youtube": self.url_youtube,
            "orden": self.orden,
            "tareas": list(self.tareas),
            "fecha_creacion": to_iso(self.fecha_creacion),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Lesson":
        return cls(
            id=data["id"],
            seccion_id=data.get("seccion_id", ""),
            titulo=data.get("titulo", ""),
            tipo=data.get("tipo", "texto"),
            contenido=data.get("contenido", ""),
            url_archivo=data.get("url_archivo"),
            url_youtube=data.get("url_youtube"),
            orden=int(data.get("orden", 0)),
            tareas=list(data.get("tareas") or []),
            fecha_creacion=parse_datetime(data.get("fecha_creacion")) or utc_now(),
        )


@dataclass
class LessonProgress:
    """Completion mark of one lesson by one student."""

    id: str
    leccion_id: str
    estudiante_id: str
    completada: bool = True
    fecha_completado: datetime = field(default_factory=utc_now)

    @staticmethod
    def make_id(student_id: str, lesson_id: str) -> str:
        return f"{student_id}_{lesson_id}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "leccion_id": self.leccion_id,
            "estudiante_id": self.estudiante_id,
            "completada": self.completada,
            "fecha_completado": to_iso(self.fecha_completado),
        }


@dataclass
class LessonStats:
    total: int
    por_tipo: dict[str, int]

    def to_dict(self) -> dict[str, Any]:
        return {"total": self.total, "por_tipo": dict(self.por_tipo)}


class LessonNotFoundError(NotFoundError):
    """Raised when a lesson id does not exist."""

    def __init__(self, lesson_id: str):
        super().__init__("Lección", lesson_id)


class InvalidLessonError(ValidationError):
    pass


_UPDATABLE_FIELDS = {"titulo", "tipo", "contenido", "url_archivo", "url_youtube", "orden"}


class LessonService:
    """CRUD over the lecciones collection plus completion tracking."""

    def __init__(
        self,
        store: DocumentStore,
        sections: SectionService,
        progress: "ProgressUnlockService | None" = None,
        clock: Clock = utc_now,
    ):
        self._store = store
        self._lessons = store.collection(collections.LESSONS)
        self._lesson_progress = store.collection(collections.LESSON_PROGRESS)
        self._sections = sections
        self._progress = progress
        self._clock = clock

    def get_lessons_by_section(self, section_id: str) -> list[Lesson]:
        docs = self._lessons.where("seccion_id", "==", section_id).order_by("orden").stream()
        return [Lesson.from_dict(d) for d in docs]

    def get_lesson(self, lesson_id: str) -> Lesson | None:
        doc = self._lessons.get(lesson_id)
        return Lesson.from_dict(doc) if doc else None

    def require_lesson(self, lesson_id: str) -> Lesson:
        lesson = self.get_lesson(lesson_id)
        if lesson is None:
            raise LessonNotFoundError(lesson_id)
        return lesson

    def get_lessons_by_ids(self, lesson_ids: Iterable[str]) -> list[Lesson]:
        """Load lessons in the given order, skipping unknown ids."""
        docs = self._store.get_all(collections.LESSONS, lesson_ids)
        return [Lesson.from_dict(doc) for doc in docs.values()]

    def create_lesson(
        self,
        seccion_id: str,
        titulo: str,
        tipo: LessonType = "texto",
        contenido: str = "",
        url_archivo: str | None = None,
        url_youtube: str | None = None,
        orden: int | None = None,
    ) -> Lesson:
        """Create a lesson and register it as an element of its section."""
        self._sections.require_section(seccion_id)
        if not titulo.strip():
            raise InvalidLessonError("El título de la lección es obligatorio")
        self._check_type(tipo)

        if orden is None:
            orden = len(self.get_lessons_by_section(seccion_id))

        lesson = Lesson(
            id=self._lessons.new_id(),
            seccion_id=seccion_id,
            titulo=titulo.strip(),
            tipo=tipo,
            contenido=contenido,
            url_archivo=url_archivo,
            url_youtube=url_youtube,
            orden=orden,
        )
        self._lessons.set(lesson.id, lesson.to_dict())
        self._sections.add_element(seccion_id, lesson.id, "leccion")

        logger.info("lesson_created", lesson_id=lesson.id, seccion_id=seccion_id, tipo=tipo)
        return lesson

    def update_lesson(self, lesson_id: str, **changes: Any) -> Lesson:
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise InvalidLessonError(f"Campos no editables: {', '.join(sorted(unknown))}")
        if "tipo" in changes:
            self._check_type(changes["tipo"])

        self.require_lesson(lesson_id)
        self._lessons.update(lesson_id, changes)
        logger.info("lesson_updated", lesson_id=lesson_id, fields=sorted(changes))
        return self.require_lesson(lesson_id)

    def delete_lesson(self, lesson_id: str) -> None:
        """Delete a lesson, its tasks with their submissions, and its completion marks."""
        lesson = self.get_lesson(lesson_id)
        if lesson is None:
            return

        batch = self._store.batch()
        tasks = self._store.collection(collections.TASKS)
        submissions = self._store.collection(collections.SUBMISSIONS)
        for task in tasks.where("leccion_id", "==", lesson_id).stream():
            for sub in submissions.where("tarea_id", "==", task["id"]).stream():
                batch.delete(collections.SUBMISSIONS, sub["id"])
            batch.delete(collections.TASKS, task["id"])
        for mark in self._lesson_progress.where("leccion_id", "==", lesson_id).stream():
            batch.delete(collections.LESSON_PROGRESS, mark["id"])
        batch.delete(collections.LESSONS, lesson_id)
        batch.commit()

        self._sections.remove_element(lesson.seccion_id, lesson_id)
        logger.info("lesson_deleted", lesson_id=lesson_id, tasks=len(lesson.tareas))

    def add_task_ref(self, lesson_id: str, task_id: str) -> None:
        self._lessons.update(lesson_id, {"tareas": ArrayUnion(task_id)})

    def remove_task_ref(self, lesson_id: str, task_id: str) -> None:
        if self._lessons.exists(lesson_id):
            self._lessons.update(lesson_id, {"tareas": ArrayRemove(task_id)})

    def reorder_lessons(self, ordered_ids: list[str]) -> None:
        for lesson_id in ordered_ids:
            if not self._lessons.exists(lesson_id):
                raise LessonNotFoundError(lesson_id)

        batch = self._store.batch()
        for index, lesson_id in enumerate(ordered_ids):
            batch.update(collections.LESSONS, lesson_id, {"orden": index})
        batch.commit()
        logger.info("lessons_reordered", count=len(ordered_ids))

    def get_lesson_stats(self, course_id: str) -> LessonStats:
        """Lesson totals of a course, overall and per type."""
        counts: Counter[str] = Counter()
        for section in self._sections.get_sections_by_course(course_id):
            for lesson in self.get_lessons_by_section(section.id):
                counts[lesson.tipo] += 1
        return LessonStats(
            total=sum(counts.values()),
            por_tipo={tipo: counts.get(tipo, 0) for tipo in LESSON_TYPES},
        )

    # -- completion ----------------------------------------------------------

    def mark_completed(self, student_id: str, lesson_id: str) -> LessonProgress:
        """Record that the student finished the lesson (idempotent)."""
        lesson = self.require_lesson(lesson_id)
        mark = LessonProgress(
            id=LessonProgress.make_id(student_id, lesson_id),
            leccion_id=lesson_id,
            estudiante_id=student_id,
            completada=True,
            fecha_completado=self._clock(),
        )
        self._lesson_progress.set(mark.id, mark.to_dict())
        logger.info("lesson_completed", lesson_id=lesson_id, student_id=student_id)

        if self._progress is not None:
            self._progress.refresh_after_activity(lesson.seccion_id, student_id)
        return mark

    def get_completed_lessons(self, student_id: str) -> list[str]:
        """Ids of the lessons the student has completed."""
        docs = (
            self._lesson_progress.where("estudiante_id", "==", student_id)
            .where("completada", "==", True)
            .stream()
        )
        return [d["leccion_id"] for d in docs]

    def is_completed(self, student_id: str, lesson_id: str) -> bool:
        doc = self._lesson_progress.get(LessonProgress.make_id(student_id, lesson_id))
        return bool(doc and doc.get("completada"))

    @staticmethod
    def _check_type(tipo: str) -> None:
        if tipo not in LESSON_TYPES:
            raise InvalidLessonError(f"Tipo de lección inválido: {tipo}")
