"""Exams, timed attempts and auto-grading.

Responsibilities:
- Exam CRUD, exams are elements of a section
- Attempt lifecycle: start (window, visibility and attempt limit checks),
  finish (auto-grade, time limit), manual grade override
- Student-facing views that hide answers unless `mostrar_respuestas`

Grading is a pure function, see `grade_answers`.
"""

from __future__ import annotations

import random
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Literal, Sequence, get_args

import structlog

from escuela.core.grades import check_score
from escuela.core.sections import SectionService
from escuela.db import collections
from escuela.db.document_store import DocumentStore
from escuela.errors import ConflictError, NotFoundError, ValidationError
from escuela.utils.dates import Clock, parse_datetime, to_iso, utc_now

if TYPE_CHECKING:
    from escuela.core.progress_unlock import ProgressUnlockService

logger = structlog.get_logger(__name__)

QuestionType = Literal["multiple_unica", "multiple_multiple", "verdadero_falso", "corta", "completar"]
AttemptState = Literal["en_progreso", "finalizado", "tiempo_agotado"]
QUESTION_TYPES: tuple[str, ...] = get_args(QuestionType)
COMPLETED_STATES = ("finalizado", "tiempo_agotado")

# Question types compared as single trimmed, case-insensitive strings
_SINGLE_ANSWER_TYPES = ("multiple_unica", "verdadero_falso", "corta", "completar")


# =============================================================================
# RECORDS
# =============================================================================


@dataclass
class AnswerOption:
    id: str
    texto: str
    es_correcta: bool = False

    def to_dict(self, reveal: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "texto": self.texto}
        if reveal:
            data["es_correcta"] = self.es_correcta
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AnswerOption":
        return cls(id=data["id"], texto=data.get("texto", ""), es_correcta=bool(data.get("es_correcta", False)))


@dataclass
class Question:
    """An exam question."""

    id: str
    texto: str
    tipo: QuestionType
    respuesta_correcta: str | list[str]
    puntos: float = 1
    opciones: list[AnswerOption] = field(default_factory=list)
    feedback: str | None = None

    def to_dict(self, reveal: bool = True) -> dict[str, Any]:
        """Serialize; with reveal=False the correct answer is left out."""
        data: dict[str, Any] = {
            "id": self.id,
            "texto": self.texto,
            "tipo": self.tipo,
            "opciones": [o.to_dict(reveal) for o in self.opciones],
            "puntos": self.puntos,
        }
        if reveal:
            data["respuesta_correcta"] = self.respuesta_correcta
            data["feedback"] = self.feedback
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Question":
        return cls(
            id=data["id"],
            texto=data.get("texto", ""),
            tipo=data.get("tipo", "corta"),
            respuesta_correcta=data.get("respuesta_correcta", ""),
            puntos=float(data.get("puntos") or 0),
            opciones=[AnswerOption.from_dict(o) for o in data.get("opciones") or []],
            feedback=data.get("feedback"),
        )


@dataclass
class Answer:
    """A student's answer, graded once the attempt finishes."""

    pregunta_id: str
    respuesta: str | list[str]
    es_correcta: bool | None = None
    puntos_obtenidos: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "pregunta_id": self.pregunta_id,
            "respuesta": self.respuesta,
            "es_correcta": self.es_correcta,
            "puntos_obtenidos": self.puntos_obtenidos,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Answer":
        return cls(
            pregunta_id=data["pregunta_id"],
            respuesta=data.get("respuesta", ""),
            es_correcta=data.get("es_correcta"),
            puntos_obtenidos=data.get("puntos_obtenidos"),
        )


@dataclass
class Exam:
    """A timed, auto-graded question set."""

    id: str
    seccion_id: str
    titulo: str
    fecha_inicio: datetime
    fecha_fin: datetime
    descripcion: str = ""
    duracion_minutos: int = 60
    intentos_permitidos: int = 1
    mostrar_respuestas: bool = False
    mezclar_preguntas: bool = False
    ponderacion: float = 0
    nota_minima: float = 70
    es_examen_final: bool = False
    visible: bool = True
    preguntas: list[Question] = field(default_factory=list)
    fecha_creacion: datetime = field(default_factory=utc_now)

    @property
    def puntos_totales(self) -> float:
        return sum(q.puntos for q in self.preguntas)

    def is_available(self, now: datetime) -> bool:
        return self.fecha_inicio <= now <= self.fecha_fin

    def to_dict(self, reveal: bool = True) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "seccion_id": self.seccion_id,
            "titulo": self.titulo,
            "descripcion": self.descripcion,
            "fecha_inicio": to_iso(self.fecha_inicio),
            "fecha_fin": to_iso(self.fecha_fin),
            "duracion_minutos": self.duracion_minutos,
            "intentos_permitidos": self.intentos_permitidos,
            "mostrar_respuestas": self.mostrar_respuestas,
            "mezclar_preguntas": self.mezclar_preguntas,
            "ponderacion": self.ponderacion,
            "nota_minima": self.nota_minima,
            "es_examen_final": self.es_examen_final,
            "visible": self.visible,
            "preguntas": [q.to_dict(reveal) for q in self.preguntas],
            "fecha_creacion": to_iso(self.fecha_creacion),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Exam":
        return cls(
            id=data["id"],
            seccion_id=data.get("seccion_id", ""),
            titulo=data.get("titulo", ""),
            fecha_inicio=parse_datetime(data.get("fecha_inicio")) or utc_now(),
            fecha_fin=parse_datetime(data.get("fecha_fin")) or utc_now(),
            descripcion=data.get("descripcion", ""),
            duracion_minutos=int(data.get("duracion_minutos") or 0),
            intentos_permitidos=int(data.get("intentos_permitidos") or 1),
            mostrar_respuestas=bool(data.get("mostrar_respuestas", False)),
            mezclar_preguntas=bool(data.get("mezclar_preguntas", False)),
            ponderacion=float(data.get("ponderacion") or 0),
            nota_minima=float(data.get("nota_minima") if data.get("nota_minima") is not None else 70),
            es_examen_final=bool(data.get("es_examen_final", False)),
            visible=data.get("visible") is True,
            preguntas=[Question.from_dict(q) for q in data.get("preguntas") or []],
            fecha_creacion=parse_datetime(data.get("fecha_creacion")) or utc_now(),
        )


@dataclass
class Attempt:
    """One try of a student at an exam."""

    id: str
    examen_id: str
    estudiante_id: str
    numero_intento: int
    fecha_inicio: datetime
    fecha_fin: datetime | None = None
    respuestas: list[Answer] = field(default_factory=list)
    calificacion: float | None = None
    estado: AttemptState = "en_progreso"
    calificacion_modificada_manualmente: bool = False
    fecha_modificacion_calificacion: datetime | None = None

    @property
    def is_completed(self) -> bool:
        return self.estado in COMPLETED_STATES

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "examen_id": self.examen_id,
            "estudiante_id": self.estudiante_id,
            "numero_intento": self.numero_intento,
            "fecha_inicio": to_iso(self.fecha_inicio),
            "fecha_fin": to_iso(self.fecha_fin),
            "respuestas": [a.to_dict() for a in self.respuestas],
            "calificacion": self.calificacion,
            "estado": self.estado,
            "calificacion_modificada_manualmente": self.calificacion_modificada_manualmente,
            "fecha_modificacion_calificacion": to_iso(self.fecha_modificacion_calificacion),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Attempt":
        return cls(
            id=data["id"],
            examen_id=data.get("examen_id", ""),
            estudiante_id=data.get("estudiante_id", ""),
            numero_intento=int(data.get("numero_intento") or 1),
            fecha_inicio=parse_datetime(data.get("fecha_inicio")) or utc_now(),
            fecha_fin=parse_datetime(data.get("fecha_fin")),
            respuestas=[Answer.from_dict(a) for a in data.get("respuestas") or []],
            calificacion=data.get("calificacion"),
            estado=data.get("estado", "en_progreso"),
            calificacion_modificada_manualmente=bool(data.get("calificacion_modificada_manualmente", False)),
            fecha_modificacion_calificacion=parse_datetime(data.get("fecha_modificacion_calificacion")),
        )


@dataclass
class GradingResult:
    respuestas: list[Answer]
    puntos_obtenidos: float
    puntos_totales: float
    calificacion: float


# =============================================================================
# ERRORS
# =============================================================================


class ExamNotFoundError(NotFoundError):
    def __init__(self, exam_id: str):
        super().__init__("Examen", exam_id)


class AttemptNotFoundError(NotFoundError):
    def __init__(self, attempt_id: str):
        super().__init__("Intento", attempt_id)


class InvalidExamError(ValidationError):
    """Raised for invalid exam data or questions."""

    pass


class ExamUnavailableError(ValidationError):
    """Raised when starting an exam that is hidden or outside its window."""

    pass


class AttemptLimitReachedError(ConflictError):
    pass


class AttemptAlreadyFinishedError(ConflictError):
    pass


# =============================================================================
# AUTO-GRADING
# =============================================================================


def _normalize(value: str) -> str:
    return value.strip().lower()


def is_answer_correct(question: Question, answer: str | list[str]) -> bool:
    """Compare one answer against the question's correct answer."""
    expected = question.respuesta_correcta
    if question.tipo in _SINGLE_ANSWER_TYPES:
        if isinstance(answer, str) and isinstance(expected, str):
            return _normalize(answer) == _normalize(expected)
        return False
    if question.tipo == "multiple_multiple":
        if isinstance(answer, list) and isinstance(expected, list):
            return set(answer) == set(expected)
        return False
    return False


def grade_answers(questions: Sequence[Question], answers: Sequence[Answer]) -> GradingResult:
    """Grade answers against the questions.

    Unanswered questions still count towards the total. Answers to unknown
    questions are kept and score 0. When a question is answered more than
    once only the last answer counts.

    Returns:
        GradingResult with graded answers and a 0-100 score (0 when the
        questions carry no points).
    """
    by_id = {q.id: q for q in questions}
    total = sum(q.puntos for q in questions)
    earned = 0.0
    graded: list[Answer] = []

    latest: dict[str, Answer] = {}
    for answer in answers:
        latest[answer.pregunta_id] = answer

    for answer in latest.values():
        question = by_id.get(answer.pregunta_id)
        correct = question is not None and is_answer_correct(question, answer.respuesta)
        points = question.puntos if correct and question is not None else 0
        earned += points
        graded.append(
            Answer(
                pregunta_id=answer.pregunta_id,
                respuesta=answer.respuesta,
                es_correcta=correct,
                puntos_obtenidos=points,
            )
        )

    score = earned / total * 100 if total > 0 else 0.0
    return GradingResult(respuestas=graded, puntos_obtenidos=earned, puntos_totales=total, calificacion=score)


def shuffle_questions(questions: Sequence[Question], rng: random.Random | None = None) -> list[Question]:
    """Return a shuffled copy of the questions."""
    shuffled = list(questions)
    (rng or random).shuffle(shuffled)
    return shuffled


def generate_question_id() -> str:
    return f"pregunta_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def validate_questions(questions: Sequence[Question]) -> None:
    seen: set[str] = set()
    for question in questions:
        if question.id in seen:
            raise InvalidExamError(f"Pregunta duplicada: {question.id}")
        seen.add(question.id)
        if question.tipo not in QUESTION_TYPES:
            raise InvalidExamError(f"Tipo de pregunta inválido: {question.tipo}")
        if question.puntos < 0:
            raise InvalidExamError(f"Puntos negativos en la pregunta {question.id}")
        if question.tipo == "multiple_multiple" and not isinstance(question.respuesta_correcta, list):
            raise InvalidExamError(f"La pregunta {question.id} requiere una lista de respuestas")
        if question.tipo != "multiple_multiple" and not isinstance(question.respuesta_correcta, str):
            raise InvalidExamError(f"La pregunta {question.id} requiere una única respuesta")


# =============================================================================
# SERVICE
# =============================================================================

_UPDATABLE_FIELDS = {
    "titulo",
    "descripcion",
    "fecha_inicio",
    "fecha_fin",
    "duracion_minutos",
    "intentos_permitidos",
    "mostrar_respuestas",
    "mezclar_preguntas",
    "ponderacion",
    "nota_minima",
    "es_examen_final",
    "visible",
    "preguntas",
}


class ExamService:
    """Exam authoring and attempts."""

    def __init__(
        self,
        store: DocumentStore,
        sections: SectionService,
        progress: "ProgressUnlockService | None" = None,
        clock: Clock = utc_now,
    ):
        self._store = store
        self._exams = store.collection(collections.EXAMS)
        self._attempts = store.collection(collections.ATTEMPTS)
        self._sections = sections
        self._progress = progress
        self._clock = clock

    # -- exams ---------------------------------------------------------------

    def create_exam(
        self,
        seccion_id: str,
        titulo: str,
        fecha_inicio: datetime,
        fecha_fin: datetime,
        preguntas: list[Question] | None = None,
        descripcion: str = "",
        duracion_minutos: int = 60,
        intentos_permitidos: int = 1,
        mostrar_respuestas: bool = False,
        mezclar_preguntas: bool = False,
        ponderacion: float = 0,
        nota_minima: float = 70,
        es_examen_final: bool = False,
        visible: bool = True,
    ) -> Exam:
        """Create an exam and register it as an element of its section."""
        self._sections.require_section(seccion_id)
        if not titulo.strip():
            raise InvalidExamError("El título del examen es obligatorio")

        exam = Exam(
            id=self._exams.new_id(),
            seccion_id=seccion_id,
            titulo=titulo.strip(),
            fecha_inicio=parse_datetime(fecha_inicio),
            fecha_fin=parse_datetime(fecha_fin),
            descripcion=descripcion,
            duracion_minutos=duracion_minutos,
            intentos_permitidos=intentos_permitidos,
            mostrar_respuestas=mostrar_respuestas,
            mezclar_preguntas=mezclar_preguntas,
            ponderacion=ponderacion,
            nota_minima=nota_minima,
            es_examen_final=es_examen_final,
            visible=visible,
            preguntas=list(preguntas or []),
        )
        self._check_exam(exam)

        self._exams.set(exam.id, exam.to_dict())
        self._sections.add_element(seccion_id, exam.id, "examen")
        logger.info(
            "exam_created",
            exam_id=exam.id,
            seccion_id=seccion_id,
            preguntas=len(exam.preguntas),
            es_examen_final=es_examen_final,
        )
        return exam

    def get_exam(self, exam_id: str) -> Exam | None:
        doc = self._exams.get(exam_id)
        return Exam.from_dict(doc) if doc else None

    def require_exam(self, exam_id: str) -> Exam:
        exam = self.get_exam(exam_id)
        if exam is None:
            raise ExamNotFoundError(exam_id)
        return exam

    def get_exams_by_section(self, section_id: str) -> list[Exam]:
        """Exams of a section, newest first."""
        docs = (
            self._exams.where("seccion_id", "==", section_id)
            .order_by("fecha_creacion", descending=True)
            .stream()
        )
        return [Exam.from_dict(d) for d in docs]

    def get_exams_by_course(self, course_id: str) -> list[Exam]:
        exams: list[Exam] = []
        for section in self._sections.get_sections_by_course(course_id):
            exams.extend(self.get_exams_by_section(section.id))
        return exams

    def update_exam(self, exam_id: str, **changes: Any) -> Exam:
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise InvalidExamError(f"Campos no editables: {', '.join(sorted(unknown))}")

        exam = self.require_exam(exam_id)
        for key, value in changes.items():
            if key in ("fecha_inicio", "fecha_fin"):
                value = parse_datetime(value)
            elif key == "preguntas":
                value = [q if isinstance(q, Question) else Question.from_dict(q) for q in value]
            setattr(exam, key, value)
        self._check_exam(exam)

        self._exams.set(exam_id, exam.to_dict())
        logger.info("exam_updated", exam_id=exam_id, fields=sorted(changes))
        return exam

    def delete_exam(self, exam_id: str) -> None:
        """Delete an exam with its attempts and drop it from the section."""
        exam = self.get_exam(exam_id)
        if exam is None:
            return

        batch = self._store.batch()
        attempts = self._attempts.where("examen_id", "==", exam_id).stream()
        for attempt in attempts:
            batch.delete(collections.ATTEMPTS, attempt["id"])
        batch.delete(collections.EXAMS, exam_id)
        batch.commit()

        self._sections.remove_element(exam.seccion_id, exam_id)
        logger.info("exam_deleted", exam_id=exam_id, attempts=len(attempts))

    def is_exam_available(self, exam: Exam) -> bool:
        return exam.is_available(self._clock())

    def student_view(self, exam: Exam, rng: random.Random | None = None) -> dict[str, Any]:
        """Exam as shown to a student taking it: no answers, shuffled if configured."""
        data = exam.to_dict(reveal=False)
        if exam.mezclar_preguntas:
            data["preguntas"] = [q.to_dict(reveal=False) for q in shuffle_questions(exam.preguntas, rng)]
        return data

    # -- attempts ------------------------------------------------------------

    def get_attempts_by_student_and_exam(self, student_id: str, exam_id: str) -> list[Attempt]:
        """Attempts of a student, highest attempt number first."""
        docs = (
            self._attempts.where("estudiante_id", "==", student_id)
            .where("examen_id", "==", exam_id)
            .order_by("numero_intento", descending=True)
            .stream()
        )
        return [Attempt.from_dict(d) for d in docs]

    def get_attempt(self, attempt_id: str) -> Attempt | None:
        doc = self._attempts.get(attempt_id)
        return Attempt.from_dict(doc) if doc else None

    def require_attempt(self, attempt_id: str) -> Attempt:
        attempt = self.get_attempt(attempt_id)
        if attempt is None:
            raise AttemptNotFoundError(attempt_id)
        return attempt

    def get_attempts_by_exam(self, exam_id: str) -> list[Attempt]:
        docs = self._attempts.where("examen_id", "==", exam_id).order_by("fecha_inicio", descending=True).stream()
        return [Attempt.from_dict(d) for d in docs]

    def start_attempt(self, exam_id: str, student_id: str) -> Attempt:
        """Start (or resume) an attempt.

        An attempt still `en_progreso` is returned as is.

        Raises:
            ExamNotFoundError: Unknown exam
            ExamUnavailableError: Hidden exam or outside its window
            AttemptLimitReachedError: No attempts left
        """
        exam = self.require_exam(exam_id)
        now = self._clock()
        if not exam.visible:
            raise ExamUnavailableError(f"El examen no está publicado: {exam.titulo}")
        if not exam.is_available(now):
            raise ExamUnavailableError(f"El examen no está disponible en este momento: {exam.titulo}")

        previous = self.get_attempts_by_student_and_exam(student_id, exam_id)
        in_progress = next((a for a in previous if a.estado == "en_progreso"), None)
        if in_progress is not None:
            return in_progress

        completed = [a for a in previous if a.is_completed]
        if len(completed) >= exam.intentos_permitidos:
            raise AttemptLimitReachedError(
                f"Has alcanzado el máximo de intentos ({exam.intentos_permitidos}) para: {exam.titulo}"
            )

        attempt = Attempt(
            id=self._attempts.new_id(),
            examen_id=exam_id,
            estudiante_id=student_id,
            numero_intento=len(previous) + 1,
            fecha_inicio=now,
        )
        self._attempts.set(attempt.id, attempt.to_dict())
        logger.info("attempt_started", attempt_id=attempt.id, exam_id=exam_id, numero=attempt.numero_intento)
        return attempt

    def finish_attempt(self, attempt_id: str, answers: list[Answer]) -> Attempt:
        """Grade and close an attempt.

        The attempt ends as `tiempo_agotado` when finished after the exam's
        duration, otherwise `finalizado`. Answers are graded either way.
        """
        attempt = self.require_attempt(attempt_id)
        if attempt.estado != "en_progreso":
            raise AttemptAlreadyFinishedError(f"El intento ya fue finalizado: {attempt_id}")
        exam = self.require_exam(attempt.examen_id)

        result = grade_answers(exam.preguntas, answers)
        now = self._clock()
        timed_out = exam.duracion_minutos > 0 and now > attempt.fecha_inicio + timedelta(minutes=exam.duracion_minutos)

        attempt.respuestas = result.respuestas
        attempt.calificacion = result.calificacion
        attempt.fecha_fin = now
        attempt.estado = "tiempo_agotado" if timed_out else "finalizado"
        self._attempts.set(attempt_id, attempt.to_dict())

        logger.info(
            "attempt_finished",
            attempt_id=attempt_id,
            exam_id=exam.id,
            calificacion=round(result.calificacion, 2),
            estado=attempt.estado,
        )

        if self._progress is not None:
            self._progress.refresh_after_activity(exam.seccion_id, attempt.estudiante_id)
        return attempt

    def update_attempt_grade(self, attempt_id: str, new_grade: float) -> Attempt:
        """Teacher override of an attempt's score."""
        check_score(new_grade)
        attempt = self.require_attempt(attempt_id)
        attempt.calificacion = new_grade
        attempt.calificacion_modificada_manualmente = True
        attempt.fecha_modificacion_calificacion = self._clock()
        self._attempts.update(
            attempt_id,
            {
                "calificacion": new_grade,
                "calificacion_modificada_manualmente": True,
                "fecha_modificacion_calificacion": attempt.fecha_modificacion_calificacion,
            },
        )
        logger.info("attempt_grade_overridden", attempt_id=attempt_id, calificacion=new_grade)
        return attempt

    def get_attempt_result(self, attempt_id: str) -> dict[str, Any]:
        """Result of an attempt; correct answers only when the exam shows them."""
        attempt = self.require_attempt(attempt_id)
        exam = self.require_exam(attempt.examen_id)
        reveal = exam.mostrar_respuestas
        calificacion = attempt.calificacion or 0
        return {
            "intento": attempt.to_dict(),
            "examen": {"id": exam.id, "titulo": exam.titulo, "nota_minima": exam.nota_minima},
            "aprobado": attempt.is_completed and calificacion >= exam.nota_minima,
            "preguntas": [q.to_dict(reveal) for q in exam.preguntas],
            "mostrar_respuestas": reveal,
        }

    @staticmethod
    def _check_exam(exam: Exam) -> None:
        if exam.fecha_fin < exam.fecha_inicio:
            raise InvalidExamError("La fecha de fin debe ser posterior a la de inicio")
        if exam.intentos_permitidos < 1:
            raise InvalidExamError("Debe permitirse al menos un intento")
        if exam.duracion_minutos < 0:
            raise InvalidExamError("La duración no puede ser negativa")
        if not 0 <= exam.nota_minima <= 100:
            raise InvalidExamError(f"Nota mínima fuera de rango: {exam.nota_minima}")
        validate_questions(exam.preguntas)
