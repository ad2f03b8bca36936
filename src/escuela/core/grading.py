"""Weighted grade engine.

A course's final grade combines four components, each on a 0-100 scale:

    final = tareas × w_tareas + examenes × w_examenes
          + examen_final × w_final + asistencia × w_asistencia   (weights / 100)

- tareas: mean of the student's task grades
- examenes: mean, over practice exams, of the best completed attempt
- examen_final: best completed attempt over the final exams
- asistencia: attendance average (0-1) × 100

Weights come from the course's GradeConfig and must add up to 100.

Example:
    engine = GradingService(...)
    engine.create_config("curso1", ponderacion_tareas=40, ponderacion_examenes=30,
                         ponderacion_examen_final=20, ponderacion_asistencia=10)
    result = engine.compute_student_grade("est1", "curso1")
    print(result.calificacion_final, result.estado)
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

import structlog

from escuela.config.app_config import GradingDefaults
from escuela.core.attendance import AttendanceService
from escuela.core.courses import CourseService
from escuela.core.exams import Attempt, Exam, ExamService
from escuela.core.grades import GradeService
from escuela.core.lessons import LessonService
from escuela.core.progress_unlock import round_half_up
from escuela.core.tasks import TaskService
from escuela.core.users import UserService
from escuela.db import collections
from escuela.db.document_store import DocumentStore
from escuela.errors import ConflictError, NotFoundError, ValidationError
from escuela.utils.dates import Clock, parse_datetime, to_iso, utc_now
from escuela.utils.validators import validate_percentage

logger = structlog.get_logger(__name__)

GradeState = Literal["aprobado", "desaprobado", "en_progreso"]

WEIGHT_FIELDS = (
    "ponderacion_tareas",
    "ponderacion_examenes",
    "ponderacion_examen_final",
    "ponderacion_asistencia",
)


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class GradeScale:
    aprobado: float = 70
    desaprobado: float = 70
    excelente: float = 90
    bueno: float = 75
    regular: float = 60

    def to_dict(self) -> dict[str, float]:
        return {
            "aprobado": self.aprobado,
            "desaprobado": self.desaprobado,
            "excelente": self.excelente,
            "bueno": self.bueno,
            "regular": self.regular,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "GradeScale":
        data = data or {}
        defaults = cls()
        return cls(**{k: float(data.get(k, getattr(defaults, k))) for k in defaults.to_dict()})


@dataclass
class GradeConfig:
    """Grade weights and pass mark of a course."""

    curso_id: str
    ponderacion_tareas: float
    ponderacion_examenes: float
    ponderacion_examen_final: float = 0
    ponderacion_asistencia: float = 0
    nota_minima: float = 70
    escala: GradeScale = field(default_factory=GradeScale)
    fecha_creacion: datetime = field(default_factory=utc_now)
    fecha_modificacion: datetime = field(default_factory=utc_now)

    @property
    def id(self) -> str:
        return self.curso_id

    @property
    def total_weight(self) -> float:
        return sum(getattr(self, name) for name in WEIGHT_FIELDS)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "curso_id": self.curso_id,
            "ponderacion_tareas": self.ponderacion_tareas,
            "ponderacion_examenes": self.ponderacion_examenes,
            "ponderacion_examen_final": self.ponderacion_examen_final,
            "ponderacion_asistencia": self.ponderacion_asistencia,
            "nota_minima": self.nota_minima,
            "escala": self.escala.to_dict(),
            "fecha_creacion": to_iso(self.fecha_creacion),
            "fecha_modificacion": to_iso(self.fecha_modificacion),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GradeConfig":
        return cls(
            curso_id=data.get("curso_id") or data["id"],
            ponderacion_tareas=float(data.get("ponderacion_tareas") or 0),
            ponderacion_examenes=float(data.get("ponderacion_examenes") or 0),
            ponderacion_examen_final=float(data.get("ponderacion_examen_final") or 0),
            ponderacion_asistencia=float(data.get("ponderacion_asistencia") or 0),
            nota_minima=float(data.get("nota_minima") if data.get("nota_minima") is not None else 70),
            escala=GradeScale.from_dict(data.get("escala")),
            fecha_creacion=parse_datetime(data.get("fecha_creacion")) or utc_now(),
            fecha_modificacion=parse_datetime(data.get("fecha_modificacion")) or utc_now(),
        )


# =============================================================================
# RESULTS
# =============================================================================


@dataclass
class GradeComponents:
    """The four component averages, each 0-100."""

    tareas: float
    examenes: float
    examen_final: float
    asistencia: float


@dataclass
class StudentGrade:
    estudiante_id: str
    curso_id: str
    promedio_tareas: float
    promedio_examenes: float
    promedio_examen_final: float
    promedio_asistencia: float
    calificacion_final: float
    estado: GradeState
    fecha_actualizacion: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "estudiante_id": self.estudiante_id,
            "curso_id": self.curso_id,
            "promedio_tareas": self.promedio_tareas,
            "promedio_examenes": self.promedio_examenes,
            "promedio_examen_final": self.promedio_examen_final,
            "promedio_asistencia": self.promedio_asistencia,
            "calificacion_final": self.calificacion_final,
            "estado": self.estado,
            "fecha_actualizacion": to_iso(self.fecha_actualizacion),
        }


@dataclass
class GradebookColumn:
    id: str
    tipo: Literal["tarea", "examen"]
    titulo: str
    orden: int
    puntos_maximos: float = 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tipo": self.tipo,
            "titulo": self.titulo,
            "puntos_maximos": self.puntos_maximos,
            "orden": self.orden,
        }


@dataclass
class GradebookRow:
    estudiante_id: str
    nombre_estudiante: str
    email: str
    tareas: dict[str, float | None]
    examenes: dict[str, float | None]
    promedio_tareas: float
    promedio_examenes: float
    calificacion_examen_final: float
    promedio_asistencia: float
    total_asistencias: int
    calificacion_final: float
    estado: GradeState

    def to_dict(self) -> dict[str, Any]:
        return {
            "estudiante_id": self.estudiante_id,
            "nombre_estudiante": self.nombre_estudiante,
            "email": self.email,
            "tareas": dict(self.tareas),
            "examenes": dict(self.examenes),
            "promedio_tareas": self.promedio_tareas,
            "promedio_examenes": self.promedio_examenes,
            "calificacion_examen_final": self.calificacion_examen_final,
            "promedio_asistencia": self.promedio_asistencia,
            "total_asistencias": self.total_asistencias,
            "calificacion_final": self.calificacion_final,
            "estado": self.estado,
        }


@dataclass
class Gradebook:
    curso_id: str
    curso_titulo: str
    configuracion: GradeConfig
    columnas: list[GradebookColumn]
    estudiantes: list[GradebookRow]

    def to_dict(self) -> dict[str, Any]:
        return {
            "curso_id": self.curso_id,
            "curso_titulo": self.curso_titulo,
            "configuracion": self.configuracion.to_dict(),
            "columnas": [c.to_dict() for c in self.columnas],
            "estudiantes": [r.to_dict() for r in self.estudiantes],
        }


@dataclass
class CourseProgress:
    estudiante_id: str
    curso_id: str
    porcentaje_avance: int
    lecciones_completadas: list[str]
    lecciones_totales: int
    tareas_entregadas: list[str]
    tareas_totales: int
    examenes_realizados: list[str]
    examenes_totales: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "estudiante_id": self.estudiante_id,
            "curso_id": self.curso_id,
            "porcentaje_avance": self.porcentaje_avance,
            "lecciones_completadas": list(self.lecciones_completadas),
            "lecciones_totales": self.lecciones_totales,
            "tareas_entregadas": list(self.tareas_entregadas),
            "tareas_totales": self.tareas_totales,
            "examenes_realizados": list(self.examenes_realizados),
            "examenes_totales": self.examenes_totales,
        }


@dataclass
class CourseGradeStats:
    curso_id: str
    total_estudiantes: int
    estudiantes_aprobados: int
    estudiantes_desaprobados: int
    estudiantes_en_progreso: int
    promedio_general: float
    tasa_aprobacion: float
    distribucion_notas: dict[str, int]

    def to_dict(self) -> dict[str, Any]:
        return {
            "curso_id": self.curso_id,
            "total_estudiantes": self.total_estudiantes,
            "estudiantes_aprobados": self.estudiantes_aprobados,
            "estudiantes_desaprobados": self.estudiantes_desaprobados,
            "estudiantes_en_progreso": self.estudiantes_en_progreso,
            "promedio_general": self.promedio_general,
            "tasa_aprobacion": self.tasa_aprobacion,
            "distribucion_notas": dict(self.distribucion_notas),
        }


# =============================================================================
# ERRORS
# =============================================================================


class GradeConfigNotFoundError(NotFoundError):
    def __init__(self, course_id: str):
        super().__init__("Configuración de calificaciones del curso", course_id)


class GradeConfigExistsError(ConflictError):
    pass


class InvalidWeightsError(ValidationError):
    """Raised when the component weights do not add up to 100."""

    def __init__(self, total: float):
        self.total = total
        super().__init__(f"Las ponderaciones deben sumar 100% (suman {total:g}%)")


# =============================================================================
# PURE HELPERS
# =============================================================================


def round_2(value: float) -> float:
    """Round to 2 decimals with .5 going up."""
    return math.floor(value * 100 + 0.5) / 100


def check_weights(weights: dict[str, float]) -> None:
    """Validate component weights.

    Raises:
        InvalidWeightsError: If a weight is outside 0-100 or the sum is not 100.
    """
    for name in WEIGHT_FIELDS:
        value = weights.get(name, 0)
        if not validate_percentage(value):
            raise ValidationError(f"Ponderación fuera de rango ({name}): {value}")
    total = sum(weights.get(name, 0) for name in WEIGHT_FIELDS)
    if round(total, 6) != 100:
        raise InvalidWeightsError(total)


def weighted_final(components: GradeComponents, config: GradeConfig) -> float:
    """Weighted final grade rounded to 2 decimals."""
    pairs = (
        (components.tareas, config.ponderacion_tareas),
        (components.examenes, config.ponderacion_examenes),
        (components.examen_final, config.ponderacion_examen_final),
        (components.asistencia, config.ponderacion_asistencia),
    )
    return round_2(sum(value * weight / 100 for value, weight in pairs))


def grade_state(final: float, nota_minima: float, has_activity: bool) -> GradeState:
    if final >= nota_minima:
        return "aprobado"
    if not has_activity:
        return "en_progreso"
    return "desaprobado"


def best_attempt_scores(attempts: list[Attempt]) -> dict[str, float]:
    """Best completed-attempt score per exam id."""
    best: dict[str, float] = {}
    for attempt in attempts:
        if not attempt.is_completed or attempt.calificacion is None:
            continue
        score = float(attempt.calificacion)
        if attempt.examen_id not in best or score > best[attempt.examen_id]:
            best[attempt.examen_id] = score
    return best


def grade_distribution(finals: list[float], config: GradeConfig) -> dict[str, int]:
    """Bucket final grades by the configured scale.

    `regular` starts at the pass mark so the buckets never overlap
    `desaprobado`.
    """
    excelente = config.escala.excelente
    bueno = config.escala.bueno
    regular = config.nota_minima
    return {
        "excelente": sum(1 for g in finals if g >= excelente),
        "bueno": sum(1 for g in finals if bueno <= g < excelente),
        "regular": sum(1 for g in finals if regular <= g < bueno),
        "desaprobado": sum(1 for g in finals if g < config.nota_minima),
    }


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


# =============================================================================
# SERVICE
# =============================================================================


class GradingService:
    """Grade configuration, student grades, gradebook and course statistics."""

    def __init__(
        self,
        store: DocumentStore,
        users: UserService,
        courses: CourseService,
        lessons: LessonService,
        tasks: TaskService,
        exams: ExamService,
        grades: GradeService,
        attendance: AttendanceService,
        defaults: GradingDefaults | None = None,
        clock: Clock = utc_now,
    ):
        self._store = store
        self._configs = store.collection(collections.GRADE_CONFIGS)
        self._users = users
        self._courses = courses
        self._lessons = lessons
        self._tasks = tasks
        self._exams = exams
        self._grades = grades
        self._attendance = attendance
        self._defaults = defaults or GradingDefaults()
        self._clock = clock

    # -- configuration -------------------------------------------------------

    def default_config(self, course_id: str) -> GradeConfig:
        """Unsaved config built from the configured defaults."""
        d = self._defaults
        return GradeConfig(
            curso_id=course_id,
            ponderacion_tareas=d.ponderacion_tareas,
            ponderacion_examenes=d.ponderacion_examenes,
            ponderacion_examen_final=d.ponderacion_examen_final,
            ponderacion_asistencia=d.ponderacion_asistencia,
            nota_minima=d.nota_minima,
            escala=GradeScale(
                aprobado=d.nota_minima,
                desaprobado=d.nota_minima,
                excelente=d.excelente,
                bueno=d.bueno,
                regular=d.regular,
            ),
        )

    def create_config(
        self,
        course_id: str,
        ponderacion_tareas: float,
        ponderacion_examenes: float,
        ponderacion_examen_final: float = 0,
        ponderacion_asistencia: float = 0,
        nota_minima: float = 70,
        escala: GradeScale | None = None,
    ) -> GradeConfig:
        """Create the grade configuration of a course.

        Raises:
            CourseNotFoundError: Unknown course
            InvalidWeightsError: Weights do not add up to 100
            GradeConfigExistsError: The course already has one
        """
        self._courses.require_course(course_id)
        check_weights(
            {
                "ponderacion_tareas": ponderacion_tareas,
                "ponderacion_examenes": ponderacion_examenes,
                "ponderacion_examen_final": ponderacion_examen_final,
                "ponderacion_asistencia": ponderacion_asistencia,
            }
        )
        if not validate_percentage(nota_minima):
            raise ValidationError(f"Nota mínima fuera de rango: {nota_minima}")
        if self._configs.exists(course_id):
            raise GradeConfigExistsError(f"El curso ya tiene configuración de calificaciones: {course_id}")

        now = self._clock()
        config = GradeConfig(
            curso_id=course_id,
            ponderacion_tareas=ponderacion_tareas,
            ponderacion_examenes=ponderacion_examenes,
            ponderacion_examen_final=ponderacion_examen_final,
            ponderacion_asistencia=ponderacion_asistencia,
            nota_minima=nota_minima,
            escala=escala or GradeScale(aprobado=nota_minima, desaprobado=nota_minima),
            fecha_creacion=now,
            fecha_modificacion=now,
        )
        self._configs.set(config.id, config.to_dict())
        logger.info("grade_config_created", course_id=course_id, nota_minima=nota_minima)
        return config

    def get_config(self, course_id: str) -> GradeConfig | None:
        doc = self._configs.get(course_id)
        return GradeConfig.from_dict(doc) if doc else None

    def require_config(self, course_id: str) -> GradeConfig:
        config = self.get_config(course_id)
        if config is None:
            raise GradeConfigNotFoundError(course_id)
        return config

    def update_config(self, course_id: str, **changes: Any) -> GradeConfig:
        """Update a config; the merged weights must still add up to 100."""
        allowed = set(WEIGHT_FIELDS) | {"nota_minima", "escala"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"Campos no editables: {', '.join(sorted(unknown))}")

        config = self.require_config(course_id)
        merged = {name: changes.get(name, getattr(config, name)) for name in WEIGHT_FIELDS}
        check_weights(merged)

        for name, value in merged.items():
            setattr(config, name, float(value))
        if "nota_minima" in changes:
            if not validate_percentage(changes["nota_minima"]):
                raise ValidationError(f"Nota mínima fuera de rango: {changes['nota_minima']}")
            config.nota_minima = float(changes["nota_minima"])
        if "escala" in changes:
            escala = changes["escala"]
            config.escala = escala if isinstance(escala, GradeScale) else GradeScale.from_dict(escala)
        config.fecha_modificacion = self._clock()

        self._configs.set(course_id, config.to_dict())
        logger.info("grade_config_updated", course_id=course_id, fields=sorted(changes))
        return config

    # -- student grade -------------------------------------------------------

    def _student_components(
        self,
        student_id: str,
        course_id: str,
        exams: list[Exam],
    ) -> tuple[GradeComponents, int, int]:
        """Component averages plus counts of task grades and practice exams taken."""
        task_scores = [g.calificacion for g in self._grades.get_grades_by_student(student_id, course_id) if g.tipo == "tarea"]

        attempts: list[Attempt] = []
        for exam in exams:
            attempts.extend(self._exams.get_attempts_by_student_and_exam(student_id, exam.id))
        best = best_attempt_scores(attempts)

        final_ids = {e.id for e in exams if e.es_examen_final}
        practice = [score for exam_id, score in best.items() if exam_id not in final_ids]
        finals = [score for exam_id, score in best.items() if exam_id in final_ids]

        components = GradeComponents(
            tareas=_mean(task_scores),
            examenes=_mean(practice),
            examen_final=max(finals) if finals else 0.0,
            asistencia=self._attendance.get_student_average(course_id, student_id) * 100,
        )
        return components, len(task_scores), len(practice)

    def compute_student_grade(
        self,
        student_id: str,
        course_id: str,
        config: GradeConfig | None = None,
        exams: list[Exam] | None = None,
    ) -> StudentGrade:
        """Compute the weighted final grade of a student.

        Raises:
            GradeConfigNotFoundError: The course has no grade configuration
        """
        config = config or self.require_config(course_id)
        if exams is None:
            exams = self._exams.get_exams_by_course(course_id)

        components, task_count, practice_count = self._student_components(student_id, course_id, exams)
        final = weighted_final(components, config)
        return StudentGrade(
            estudiante_id=student_id,
            curso_id=course_id,
            promedio_tareas=components.tareas,
            promedio_examenes=components.examenes,
            promedio_examen_final=components.examen_final,
            promedio_asistencia=components.asistencia,
            calificacion_final=final,
            estado=grade_state(final, config.nota_minima, task_count > 0 or practice_count > 0),
            fecha_actualizacion=self._clock(),
        )

    # -- gradebook -----------------------------------------------------------

    def get_gradebook(self, course_id: str) -> Gradebook:
        """One row per enrolled student with per-item scores and the final grade."""
        config = self.require_config(course_id)
        course = self._courses.require_course(course_id)
        tasks = self._tasks.get_tasks_by_course(course_id)
        exams = self._exams.get_exams_by_course(course_id)

        columns = [GradebookColumn(id=t.id, tipo="tarea", titulo=t.titulo, orden=i) for i, t in enumerate(tasks)]
        columns += [
            GradebookColumn(id=e.id, tipo="examen", titulo=e.titulo, orden=len(tasks) + i) for i, e in enumerate(exams)
        ]

        students = self._users.get_users_by_ids(course.estudiantes)
        rows: list[GradebookRow] = []
        for student_id in course.estudiantes:
            user = students.get(student_id)
            grade = self.compute_student_grade(student_id, course_id, config=config, exams=exams)

            task_grades = {
                g.tarea_id: g.calificacion
                for g in self._grades.get_grades_by_student(student_id, course_id)
                if g.tipo == "tarea" and g.tarea_id
            }
            attempts: list[Attempt] = []
            for exam in exams:
                attempts.extend(self._exams.get_attempts_by_student_and_exam(student_id, exam.id))
            best = best_attempt_scores(attempts)
            records = self._attendance.get_student_records(course_id, student_id)

            rows.append(
                GradebookRow(
                    estudiante_id=student_id,
                    nombre_estudiante=user.nombre_completo if user else student_id,
                    email=user.email if user else "",
                    tareas={t.id: task_grades.get(t.id) for t in tasks},
                    examenes={e.id: best.get(e.id) for e in exams},
                    promedio_tareas=grade.promedio_tareas,
                    promedio_examenes=grade.promedio_examenes,
                    calificacion_examen_final=grade.promedio_examen_final,
                    promedio_asistencia=round_2(grade.promedio_asistencia),
                    total_asistencias=len(records),
                    calificacion_final=grade.calificacion_final,
                    estado=grade.estado,
                )
            )

        logger.info("gradebook_built", course_id=course_id, students=len(rows), columns=len(columns))
        return Gradebook(
            curso_id=course_id,
            curso_titulo=course.titulo or "Sin título",
            configuracion=config,
            columnas=columns,
            estudiantes=rows,
        )

    # -- progress & statistics -----------------------------------------------

    def get_course_progress(self, student_id: str, course_id: str) -> CourseProgress:
        """Share of lessons, visible tasks and visible exams the student has done."""
        lesson_ids: list[str] = []
        for section in self._store.collection(collections.SECTIONS).where("curso_id", "==", course_id).stream():
            lesson_ids.extend(lesson.id for lesson in self._lessons.get_lessons_by_section(section["id"]))

        tasks = [t for t in self._tasks.get_tasks_by_course(course_id) if t.visible]
        exams = [e for e in self._exams.get_exams_by_course(course_id) if e.visible]

        completed = set(self._lessons.get_completed_lessons(student_id))
        lessons_done = [lid for lid in lesson_ids if lid in completed]
        tasks_done = [
            t.id for t in tasks if self._tasks.get_submission_by_student_and_task(student_id, t.id) is not None
        ]
        exams_done = [
            e.id
            for e in exams
            if any(a.is_completed for a in self._exams.get_attempts_by_student_and_exam(student_id, e.id))
        ]

        total = len(lesson_ids) + len(tasks) + len(exams)
        done = len(lessons_done) + len(tasks_done) + len(exams_done)
        return CourseProgress(
            estudiante_id=student_id,
            curso_id=course_id,
            porcentaje_avance=round_half_up(done / total * 100) if total else 0,
            lecciones_completadas=lessons_done,
            lecciones_totales=len(lesson_ids),
            tareas_entregadas=tasks_done,
            tareas_totales=len(tasks),
            examenes_realizados=exams_done,
            examenes_totales=len(exams),
        )

    def get_course_stats(self, course_id: str) -> CourseGradeStats:
        gradebook = self.get_gradebook(course_id)
        rows = gradebook.estudiantes
        total = len(rows)
        approved = sum(1 for r in rows if r.estado == "aprobado")
        finals = [r.calificacion_final for r in rows]

        return CourseGradeStats(
            curso_id=course_id,
            total_estudiantes=total,
            estudiantes_aprobados=approved,
            estudiantes_desaprobados=sum(1 for r in rows if r.estado == "desaprobado"),
            estudiantes_en_progreso=sum(1 for r in rows if r.estado == "en_progreso"),
            promedio_general=round_2(_mean(finals)),
            tasa_aprobacion=round_2(approved / total * 100) if total else 0.0,
            distribucion_notas=grade_distribution(finals, gradebook.configuracion),
        )
