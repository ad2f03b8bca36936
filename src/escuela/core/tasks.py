"""Tasks (tareas) and student submissions (entregas).

Responsibilities:
- Task CRUD, tasks are nested in lessons
- One submission per student and task, inside the submission window
- Grading a submission also writes the student's task grade
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Literal, get_args

import structlog

from escuela.core.grades import GradeService, check_score
from escuela.core.lessons import LessonService
from escuela.db import collections
from escuela.db.document_store import DocumentStore
from escuela.errors import ConflictError, NotFoundError, ValidationError
from escuela.utils.dates import Clock, parse_datetime, to_iso, utc_now

if TYPE_CHECKING:
    from escuela.core.progress_unlock import ProgressUnlockService

logger = structlog.get_logger(__name__)

DeliveryType = Literal["texto", "archivo", "ambos"]
SubmissionState = Literal["pendiente", "entregada", "calificada", "retrasada"]
DELIVERY_TYPES: tuple[str, ...] = get_args(DeliveryType)


# =============================================================================
# RECORDS
# =============================================================================


@dataclass
class Task:
    """A gradable assignment with a submission window."""

    id: str
    leccion_id: str
    titulo: str
    fecha_inicio: datetime
    fecha_fin: datetime
    descripcion: str = ""
    instrucciones: str = ""
    tipo_entrega: DeliveryType = "texto"
    ponderacion: float = 10
    archivos_permitidos: list[str] = field(default_factory=list)
    tamano_maximo: float = 5
    visible: bool = True
    fecha_creacion: datetime = field(default_factory=utc_now)

    def is_overdue(self, now: datetime) -> bool:
        return now > self.fecha_fin

    def is_available(self, now: datetime) -> bool:
        return self.fecha_inicio <= now <= self.fecha_fin

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "leccion_id": self.leccion_id,
            "titulo": self.titulo,
            "descripcion": self.descripcion,
            "instrucciones": self.instrucciones,
            "tipo_entrega": self.tipo_entrega,
            "fecha_inicio": to_iso(self.fecha_inicio),
            "fecha_fin": to_iso(self.fecha_fin),
            "ponderacion": self.ponderacion,
            "archivos_permitidos": list(self.archivos_permitidos),
            "tamano_maximo": self.tamano_maximo,
            "visible": self.visible,
            "fecha_creacion": to_iso(self.fecha_creacion),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        return cls(
            id=data["id"],
            leccion_id=data.get("leccion_id", ""),
            titulo=data.get("titulo", ""),
            fecha_inicio=parse_datetime(data.get("fecha_inicio")) or utc_now(),
            fecha_fin=parse_datetime(data.get("fecha_fin")) or utc_now(),
            descripcion=data.get("descripcion", ""),
            instrucciones=data.get("instrucciones", ""),
            tipo_entrega=data.get("tipo_entrega", "texto"),
            ponderacion=float(data.get("ponderacion") or 0),
            archivos_permitidos=list(data.get("archivos_permitidos") or []),
            tamano_maximo=float(data.get("tamano_maximo") or 5),
            visible=data.get("visible", True),
            fecha_creacion=parse_datetime(data.get("fecha_creacion")) or utc_now(),
        )


@dataclass
class Submission:
    """A student's delivery for a task."""

    id: str
    tarea_id: str
    estudiante_id: str
    fecha_entrega: datetime
    estado: SubmissionState = "entregada"
    contenido_texto: str | None = None
    archivos: list[str] = field(default_factory=list)
    calificacion: float | None = None
    retroalimentacion: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tarea_id": self.tarea_id,
            "estudiante_id": self.estudiante_id,
            "fecha_entrega": to_iso(self.fecha_entrega),
            "contenido_texto": self.contenido_texto,
            "archivos": list(self.archivos),
            "calificacion": self.calificacion,
            "retroalimentacion": self.retroalimentacion,
            "estado": self.estado,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Submission":
        return cls(
            id=data["id"],
            tarea_id=data.get("tarea_id", ""),
            estudiante_id=data.get("estudiante_id", ""),
            fecha_entrega=parse_datetime(data.get("fecha_entrega")) or utc_now(),
            estado=data.get("estado", "entregada"),
            contenido_texto=data.get("contenido_texto"),
            archivos=list(data.get("archivos") or []),
            calificacion=data.get("calificacion"),
            retroalimentacion=data.get("retroalimentacion"),
        )


# =============================================================================
# ERRORS
# =============================================================================


class TaskNotFoundError(NotFoundError):
    def __init__(self, task_id: str):
        super().__init__("Tarea", task_id)


class SubmissionNotFoundError(NotFoundError):
    def __init__(self, submission_id: str):
        super().__init__("Entrega", submission_id)


class InvalidTaskError(ValidationError):
    """Raised for invalid task data (dates, delivery type)."""

    pass


class SubmissionWindowError(ValidationError):
    """Raised when submitting before the task opens."""

    pass


class InvalidSubmissionError(ValidationError):
    pass


class SubmissionAlreadyGradedError(ConflictError):
    """Raised when resubmitting a task that was already graded."""

    pass


# =============================================================================
# SERVICE
# =============================================================================

_UPDATABLE_FIELDS = {
    "titulo",
    "descripcion",
    "instrucciones",
    "tipo_entrega",
    "fecha_inicio",
    "fecha_fin",
    "ponderacion",
    "archivos_permitidos",
    "tamano_maximo",
    "visible",
}


class TaskService:
    """Tasks, submissions and task grading."""

    def __init__(
        self,
        store: DocumentStore,
        lessons: LessonService,
        grades: GradeService,
        progress: "ProgressUnlockService | None" = None,
        clock: Clock = utc_now,
    ):
        self._store = store
        self._tasks = store.collection(collections.TASKS)
        self._submissions = store.collection(collections.SUBMISSIONS)
        self._lessons = lessons
        self._grades = grades
        self._progress = progress
        self._clock = clock

    # -- tasks ---------------------------------------------------------------

    def get_tasks_by_lesson(self, lesson_id: str) -> list[Task]:
        docs = self._tasks.where("leccion_id", "==", lesson_id).order_by("fecha_inicio").stream()
        return [Task.from_dict(d) for d in docs]

    def get_tasks_by_course(self, course_id: str) -> list[Task]:
        """Tasks of every lesson of every section in the course."""
        section_ids = [
            s["id"]
            for s in self._store.collection(collections.SECTIONS).where("curso_id", "==", course_id).stream()
        ]
        if not section_ids:
            return []
        lesson_ids = [
            d["id"]
            for d in self._store.collection(collections.LESSONS).where("seccion_id", "in", section_ids).stream()
        ]
        if not lesson_ids:
            return []
        docs = self._tasks.where("leccion_id", "in", lesson_ids).order_by("fecha_inicio").stream()
        return [Task.from_dict(d) for d in docs]

    def get_task(self, task_id: str) -> Task | None:
        doc = self._tasks.get(task_id)
        return Task.from_dict(doc) if doc else None

    def require_task(self, task_id: str) -> Task:
        task = self.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def create_task(
        self,
        leccion_id: str,
        titulo: str,
        fecha_inicio: datetime,
        fecha_fin: datetime,
        descripcion: str = "",
        instrucciones: str = "",
        tipo_entrega: DeliveryType = "texto",
        ponderacion: float = 10,
        archivos_permitidos: list[str] | None = None,
        tamano_maximo: float = 5,
        visible: bool = True,
    ) -> Task:
        """Create a task and register it in its lesson."""
        self._lessons.require_lesson(leccion_id)
        if not titulo.strip():
            raise InvalidTaskError("El título de la tarea es obligatorio")
        fecha_inicio = parse_datetime(fecha_inicio)
        fecha_fin = parse_datetime(fecha_fin)
        self._check_task_fields(tipo_entrega, fecha_inicio, fecha_fin, ponderacion)

        task = Task(
            id=self._tasks.new_id(),
            leccion_id=leccion_id,
            titulo=titulo.strip(),
            fecha_inicio=fecha_inicio,
            fecha_fin=fecha_fin,
            descripcion=descripcion,
            instrucciones=instrucciones,
            tipo_entrega=tipo_entrega,
            ponderacion=ponderacion,
            archivos_permitidos=list(archivos_permitidos or []),
            tamano_maximo=tamano_maximo,
            visible=visible,
        )
        self._tasks.set(task.id, task.to_dict())
        self._lessons.add_task_ref(leccion_id, task.id)

        logger.info("task_created", task_id=task.id, leccion_id=leccion_id)
        return task

    def update_task(self, task_id: str, **changes: Any) -> Task:
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise InvalidTaskError(f"Campos no editables: {', '.join(sorted(unknown))}")

        current = self.require_task(task_id)
        self._check_task_fields(
            changes.get("tipo_entrega", current.tipo_entrega),
            parse_datetime(changes.get("fecha_inicio")) or current.fecha_inicio,
            parse_datetime(changes.get("fecha_fin")) or current.fecha_fin,
            changes.get("ponderacion", current.ponderacion),
        )

        self._tasks.update(task_id, changes)
        logger.info("task_updated", task_id=task_id, fields=sorted(changes))
        return self.require_task(task_id)

    def delete_task(self, task_id: str) -> None:
        """Delete a task and its submissions, and drop it from the lesson."""
        task = self.get_task(task_id)
        if task is None:
            return

        batch = self._store.batch()
        for sub in self._submissions.where("tarea_id", "==", task_id).stream():
            batch.delete(collections.SUBMISSIONS, sub["id"])
        batch.delete(collections.TASKS, task_id)
        batch.commit()

        self._lessons.remove_task_ref(task.leccion_id, task_id)
        logger.info("task_deleted", task_id=task_id)

    def is_overdue(self, task: Task) -> bool:
        return task.is_overdue(self._clock())

    def is_available(self, task: Task) -> bool:
        return task.is_available(self._clock())

    # -- submissions ---------------------------------------------------------

    def get_submissions_by_task(self, task_id: str) -> list[Submission]:
        docs = self._submissions.where("tarea_id", "==", task_id).order_by("fecha_entrega", descending=True).stream()
        return [Submission.from_dict(d) for d in docs]

    def get_submission(self, submission_id: str) -> Submission | None:
        doc = self._submissions.get(submission_id)
        return Submission.from_dict(doc) if doc else None

    def get_submission_by_student_and_task(self, student_id: str, task_id: str) -> Submission | None:
        doc = (
            self._submissions.where("estudiante_id", "==", student_id)
            .where("tarea_id", "==", task_id)
            .first()
        )
        return Submission.from_dict(doc) if doc else None

    def get_student_tasks(self, course_id: str, student_id: str) -> list[dict[str, Any]]:
        """Visible course tasks with the student's submission (or None)."""
        result = []
        for task in self.get_tasks_by_course(course_id):
            if not task.visible:
                continue
            submission = self.get_submission_by_student_and_task(student_id, task.id)
            result.append({"tarea": task, "entrega": submission})
        return result

    def submit_task(
        self,
        task_id: str,
        student_id: str,
        contenido_texto: str | None = None,
        archivos: list[str] | None = None,
    ) -> Submission:
        """Create or replace the student's submission.

        Submissions after `fecha_fin` are accepted and marked `retrasada`.

        Raises:
            TaskNotFoundError: Unknown task
            SubmissionWindowError: The task has not opened yet
            InvalidSubmissionError: Content does not match the delivery type
            SubmissionAlreadyGradedError: The existing submission is graded
        """
        task = self.require_task(task_id)
        now = self._clock()
        if now < task.fecha_inicio:
            raise SubmissionWindowError(f"La tarea aún no está disponible: {task.titulo}")
        self._check_content(task, contenido_texto, archivos or [])

        existing = self.get_submission_by_student_and_task(student_id, task_id)
        if existing is not None and existing.estado == "calificada":
            raise SubmissionAlreadyGradedError(f"La entrega ya fue calificada: {existing.id}")

        submission = Submission(
            id=existing.id if existing else self._submissions.new_id(),
            tarea_id=task_id,
            estudiante_id=student_id,
            fecha_entrega=now,
            estado="retrasada" if task.is_overdue(now) else "entregada",
            contenido_texto=contenido_texto,
            archivos=list(archivos or []),
        )
        self._submissions.set(submission.id, submission.to_dict())
        logger.info(
            "task_submitted",
            task_id=task_id,
            student_id=student_id,
            estado=submission.estado,
            resubmission=existing is not None,
        )

        self._refresh_progress(task, student_id)
        return submission

    def grade_submission(
        self,
        submission_id: str,
        calificacion: float,
        retroalimentacion: str | None = None,
        profesor_id: str = "",
    ) -> Submission:
        """Grade a submission and upsert the student's task grade.

        Raises:
            SubmissionNotFoundError: Unknown submission
            InvalidGradeError: Score outside 0-100
        """
        check_score(calificacion)
        submission = self.get_submission(submission_id)
        if submission is None:
            raise SubmissionNotFoundError(submission_id)
        task = self.require_task(submission.tarea_id)

        submission.calificacion = calificacion
        submission.retroalimentacion = retroalimentacion
        submission.estado = "calificada"
        self._submissions.update(
            submission_id,
            {"calificacion": calificacion, "retroalimentacion": retroalimentacion, "estado": "calificada"},
        )

        existing = self._grades.get_grade_by_student_and_task(submission.estudiante_id, task.id)
        if existing is not None:
            self._grades.update_grade(
                existing.id,
                calificacion=calificacion,
                ponderacion=task.ponderacion,
                retroalimentacion=retroalimentacion,
                profesor_id=profesor_id,
            )
        else:
            self._grades.create_grade(
                estudiante_id=submission.estudiante_id,
                curso_id=self._course_of(task),
                tipo="tarea",
                calificacion=calificacion,
                ponderacion=task.ponderacion,
                tarea_id=task.id,
                profesor_id=profesor_id,
                retroalimentacion=retroalimentacion,
            )

        logger.info("submission_graded", submission_id=submission_id, calificacion=calificacion)
        self._refresh_progress(task, submission.estudiante_id)
        return submission

    def delete_submission(self, submission_id: str) -> None:
        self._submissions.delete(submission_id)
        logger.info("submission_deleted", submission_id=submission_id)

    # -- helpers -------------------------------------------------------------

    def _course_of(self, task: Task) -> str:
        lesson = self._lessons.require_lesson(task.leccion_id)
        section = self._store.collection(collections.SECTIONS).get(lesson.seccion_id)
        return section.get("curso_id", "") if section else ""

    def _refresh_progress(self, task: Task, student_id: str) -> None:
        if self._progress is None:
            return
        lesson = self._lessons.get_lesson(task.leccion_id)
        if lesson is not None:
            self._progress.refresh_after_activity(lesson.seccion_id, student_id)

    @staticmethod
    def _check_task_fields(
        tipo_entrega: str,
        fecha_inicio: datetime,
        fecha_fin: datetime,
        ponderacion: float,
    ) -> None:
        if tipo_entrega not in DELIVERY_TYPES:
            raise InvalidTaskError(f"Tipo de entrega inválido: {tipo_entrega}")
        if parse_datetime(fecha_fin) < parse_datetime(fecha_inicio):
            raise InvalidTaskError("La fecha de fin debe ser posterior a la de inicio")
        if not 0 <= ponderacion <= 100:
            raise InvalidTaskError(f"Ponderación fuera de rango: {ponderacion}")

    @staticmethod
    def _check_content(task: Task, text: str | None, files: list[str]) -> None:
        has_text = bool(text and text.strip())
        if task.tipo_entrega == "texto" and not has_text:
            raise InvalidSubmissionError("La entrega requiere contenido de texto")
        if task.tipo_entrega == "archivo" and not files:
            raise InvalidSubmissionError("La entrega requiere al menos un archivo")
        if task.tipo_entrega == "ambos" and not (has_text or files):
            raise InvalidSubmissionError("La entrega está vacía")

        allowed = [ext.lower() for ext in task.archivos_permitidos]
        if allowed:
            for name in files:
                if not any(name.lower().endswith(ext) for ext in allowed):
                    raise InvalidSubmissionError(f"Tipo de archivo no permitido: {name}")
