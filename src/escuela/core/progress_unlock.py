"""Section unlock engine.

A section with `desbloqueo_progresivo` opens only when every prerequisite
section reaches its required completion: 100 % when `requiere_completar_todo`
is set, otherwise its `porcentaje_minimo` (70 % when unset).

Completion of a section counts, for one student:
- completed lessons of the section
- submitted tasks belonging to those lessons
- exams of the section with a completed attempt

Results are persisted in the `progreso` collection and reused while younger
than the cache TTL (5 minutes by default). Activity that changes progress
(completing a lesson, submitting a task, finishing an exam) should call
`refresh_student_progress` to force a recompute.

Example:
    engine = ProgressUnlockService(store)
    sections = section_service.get_sections_by_course(course_id)
    if not engine.is_section_unlocked(section_id, student_id, sections):
        print(engine.get_lock_message(section_id, student_id, sections))
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from escuela.config.app_config import UnlockConfig
from escuela.core.sections import Section, SectionNotFoundError
from escuela.db import collections
from escuela.db.document_store import DocumentStore
from escuela.errors import EscuelaError
from escuela.utils.dates import Clock, parse_datetime, to_iso, utc_now

logger = structlog.get_logger(__name__)

COMPLETED_ATTEMPT_STATES = ("finalizado", "tiempo_agotado")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative percentages."""
    return int(math.floor(value + 0.5))


# =============================================================================
# RESULT TYPES
# =============================================================================


@dataclass
class SectionProgress:
    """Completion state of one section for one student."""

    seccion_id: str
    estudiante_id: str
    lecciones_completadas: list[str] = field(default_factory=list)
    tareas_entregadas: list[str] = field(default_factory=list)
    examenes_realizados: list[str] = field(default_factory=list)
    porcentaje_completado: int = 0
    bloqueada: bool = False
    cumple_requisitos: bool = True
    secciones_prerrequisito: list[str] = field(default_factory=list)
    ultima_actualizacion: datetime | None = None

    @property
    def id(self) -> str:
        return progress_id(self.estudiante_id, self.seccion_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "seccion_id": self.seccion_id,
            "estudiante_id": self.estudiante_id,
            "lecciones_completadas": list(self.lecciones_completadas),
            "tareas_entregadas": list(self.tareas_entregadas),
            "examenes_realizados": list(self.examenes_realizados),
            "porcentaje_completado": self.porcentaje_completado,
            "bloqueada": self.bloqueada,
            "cumple_requisitos": self.cumple_requisitos,
            "secciones_prerrequisito": list(self.secciones_prerrequisito),
            "ultima_actualizacion": to_iso(self.ultima_actualizacion) if self.ultima_actualizacion else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SectionProgress":
        return cls(
            seccion_id=data.get("seccion_id", ""),
            estudiante_id=data.get("estudiante_id", ""),
            lecciones_completadas=list(data.get("lecciones_completadas") or []),
            tareas_entregadas=list(data.get("tareas_entregadas") or []),
            examenes_realizados=list(data.get("examenes_realizados") or []),
            porcentaje_completado=int(data.get("porcentaje_completado") or 0),
            bloqueada=bool(data.get("bloqueada", False)),
            cumple_requisitos=bool(data.get("cumple_requisitos", True)),
            secciones_prerrequisito=list(data.get("secciones_prerrequisito") or []),
            ultima_actualizacion=parse_datetime(data.get("ultima_actualizacion")),
        )


@dataclass
class AccessResult:
    permitido: bool
    mensaje: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"permitido": self.permitido, "mensaje": self.mensaje}


def progress_id(student_id: str, section_id: str) -> str:
    return f"{student_id}_{section_id}"


# =============================================================================
# ENGINE
# =============================================================================


class ProgressUnlockService:
    """Computes section completion and decides which sections are unlocked."""

    def __init__(
        self,
        store: DocumentStore,
        config: UnlockConfig | None = None,
        clock: Clock = utc_now,
    ):
        self._store = store
        self._config = config or UnlockConfig()
        self._clock = clock
        self._progress = store.collection(collections.SECTION_PROGRESS)

    @property
    def cache_ttl(self) -> timedelta:
        return timedelta(seconds=self._config.cache_ttl_seconds)

    # -- unlock rules --------------------------------------------------------

    def required_percentage(self, section: Section) -> float:
        """Completion a student needs in `section` for it to count as met."""
        if section.requiere_completar_todo:
            return 100
        if section.porcentaje_minimo is not None:
            return section.porcentaje_minimo
        return self._config.default_min_percentage

    def is_section_unlocked(self, section_id: str, student_id: str, sections: list[Section]) -> bool:
        """Check whether a student can open a section.

        Args:
            section_id: Section to check
            student_id: Student
            sections: All sections of the course (prerequisites are looked up here)

        Returns:
            False for unknown sections; True when the section has no
            progressive unlock or no prerequisites; otherwise True only if
            every prerequisite is met.
        """
        by_id = {s.id: s for s in sections}
        section = by_id.get(section_id)
        if section is None:
            return False
        if not section.desbloqueo_progresivo or not section.prerequisitos:
            return True
        return all(self.is_prerequisite_met(p, student_id, sections) for p in section.prerequisitos)

    def is_prerequisite_met(self, prereq_id: str, student_id: str, sections: list[Section]) -> bool:
        prereq = next((s for s in sections if s.id == prereq_id), None)
        if prereq is None:
            return False
        progress = self.compute_section_progress(prereq_id, student_id)
        return progress.porcentaje_completado >= self.required_percentage(prereq)

    # -- progress ------------------------------------------------------------

    def compute_section_progress(self, section_id: str, student_id: str) -> SectionProgress:
        """Return the student's completion of a section, using the cache when fresh.

        Raises:
            SectionNotFoundError: If the section does not exist
        """
        cached = self._progress.get(progress_id(student_id, section_id))
        if cached is not None:
            updated = parse_datetime(cached.get("ultima_actualizacion")) or _EPOCH
            if self._clock() - updated < self.cache_ttl:
                logger.debug("progress_cache_hit", section_id=section_id, student_id=student_id)
                return SectionProgress.from_dict(cached)

        section_doc = self._store.collection(collections.SECTIONS).get(section_id)
        if section_doc is None:
            raise SectionNotFoundError(section_id)
        section = Section.from_dict(section_doc)

        progress = self._calculate(section, student_id)
        self._save(progress)
        return progress

    def _calculate(self, section: Section, student_id: str) -> SectionProgress:
        progress = SectionProgress(seccion_id=section.id, estudiante_id=student_id)
        if not section.elementos:
            progress.porcentaje_completado = 100
            return progress

        lesson_ids = section.element_ids("leccion")
        exam_ids = section.element_ids("examen")
        task_ids = self._section_task_ids(lesson_ids)

        if lesson_ids:
            marks = (
                self._store.collection(collections.LESSON_PROGRESS)
                .where("estudiante_id", "==", student_id)
                .where("leccion_id", "in", lesson_ids)
                .where("completada", "==", True)
                .stream()
            )
            progress.lecciones_completadas = _unique(m["leccion_id"] for m in marks)

        if task_ids:
            submissions = (
                self._store.collection(collections.SUBMISSIONS)
                .where("estudiante_id", "==", student_id)
                .where("tarea_id", "in", task_ids)
                .stream()
            )
            progress.tareas_entregadas = _unique(s["tarea_id"] for s in submissions)

        if exam_ids:
            attempts = (
                self._store.collection(collections.ATTEMPTS)
                .where("estudiante_id", "==", student_id)
                .where("examen_id", "in", exam_ids)
                .where("estado", "in", list(COMPLETED_ATTEMPT_STATES))
                .stream()
            )
            progress.examenes_realizados = _unique(a["examen_id"] for a in attempts)

        total = len(lesson_ids) + len(task_ids) + len(exam_ids)
        done = (
            len(progress.lecciones_completadas)
            + len(progress.tareas_entregadas)
            + len(progress.examenes_realizados)
        )
        progress.porcentaje_completado = round_half_up(done / total * 100)
        return progress

    def _section_task_ids(self, lesson_ids: list[str]) -> list[str]:
        if not lesson_ids:
            return []
        tasks = self._store.collection(collections.TASKS).where("leccion_id", "in", lesson_ids).stream()
        return [t["id"] for t in tasks if t.get("visible", True)]

    def _save(self, progress: SectionProgress) -> None:
        progress.ultima_actualizacion = self._clock()
        self._progress.set(progress.id, progress.to_dict(), merge=True)
        logger.debug(
            "progress_saved",
            section_id=progress.seccion_id,
            student_id=progress.estudiante_id,
            porcentaje=progress.porcentaje_completado,
        )

    # -- course views --------------------------------------------------------

    def _course_sections(self, course_id: str) -> list[Section]:
        docs = (
            self._store.collection(collections.SECTIONS)
            .where("curso_id", "==", course_id)
            .order_by("orden")
            .stream()
        )
        return [Section.from_dict(d) for d in docs]

    def get_course_section_states(self, course_id: str, student_id: str) -> list[SectionProgress]:
        """Progress and lock state of every section of a course, ordered by `orden`."""
        sections = self._course_sections(course_id)
        states: list[SectionProgress] = []
        for section in sections:
            progress = self.compute_section_progress(section.id, student_id)
            unlocked = self.is_section_unlocked(section.id, student_id, sections)
            progress.bloqueada = not unlocked
            progress.cumple_requisitos = unlocked
            progress.secciones_prerrequisito = list(section.prerequisitos)
            states.append(progress)
        return states

    def can_access_element(
        self,
        section_id: str,
        element_id: str,
        student_id: str,
        sections: list[Section],
    ) -> AccessResult:
        """Elements inherit the lock state of their section."""
        if self.is_section_unlocked(section_id, student_id, sections):
            return AccessResult(permitido=True)

        by_id = {s.id: s for s in sections}
        section = by_id.get(section_id)
        names = [by_id[p].titulo for p in (section.prerequisitos if section else []) if p in by_id]
        logger.info("element_access_denied", section_id=section_id, element_id=element_id, student_id=student_id)
        return AccessResult(
            permitido=False,
            mensaje=f"Debes completar las siguientes secciones primero: {', '.join(names)}",
        )

    def get_lock_message(self, section_id: str, student_id: str, sections: list[Section]) -> str:
        """Explain which prerequisites are pending; empty when nothing is."""
        by_id = {s.id: s for s in sections}
        section = by_id.get(section_id)
        if section is None or not section.prerequisitos:
            return ""

        pending: list[str] = []
        for prereq_id in section.prerequisitos:
            prereq = by_id.get(prereq_id)
            if prereq is None or self.is_prerequisite_met(prereq_id, student_id, sections):
                continue
            progress = self.compute_section_progress(prereq_id, student_id)
            required = self.required_percentage(prereq)
            pending.append(f'"{prereq.titulo}" ({progress.porcentaje_completado}% de {required}% requerido)')

        if not pending:
            return ""
        return "Completa estas secciones para desbloquear:\n" + "\n".join(pending)

    # -- cache control -------------------------------------------------------

    def _invalidate(self, section_id: str, student_id: str) -> None:
        self._progress.set(
            progress_id(student_id, section_id),
            {"seccion_id": section_id, "estudiante_id": student_id, "ultima_actualizacion": _EPOCH},
            merge=True,
        )

    def refresh_student_progress(self, section_id: str, student_id: str) -> SectionProgress:
        """Drop the cached progress and recompute it."""
        self._invalidate(section_id, student_id)
        progress = self.compute_section_progress(section_id, student_id)
        logger.info(
            "progress_refreshed",
            section_id=section_id,
            student_id=student_id,
            porcentaje=progress.porcentaje_completado,
        )
        return progress

    def refresh_after_activity(self, section_id: str, student_id: str) -> None:
        """Refresh progress after student activity; failures are logged, not raised."""
        try:
            self.refresh_student_progress(section_id, student_id)
        except EscuelaError as e:
            logger.warning(
                "progress_refresh_failed",
                section_id=section_id,
                student_id=student_id,
                error=str(e),
            )

    def invalidate_course_cache(self, course_id: str, student_id: str) -> int:
        """Mark every section progress of a course as stale. Returns the count."""
        sections = self._course_sections(course_id)
        batch = self._store.batch()
        for section in sections:
            batch.set(
                collections.SECTION_PROGRESS,
                progress_id(student_id, section.id),
                {"seccion_id": section.id, "estudiante_id": student_id, "ultima_actualizacion": _EPOCH},
                merge=True,
            )
        batch.commit()
        logger.info("progress_cache_invalidated", course_id=course_id, student_id=student_id, sections=len(sections))
        return len(sections)


def _unique(values) -> list[str]:
    return list(dict.fromkeys(values))
