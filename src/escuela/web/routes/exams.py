"""Exam and attempt endpoints.

Teachers get exams with correct answers; students get the student view,
which hides them and shuffles questions when the exam asks for it.
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status

from escuela.core.exams import Answer, AnswerOption, Attempt, Exam, Question, generate_question_id
from escuela.core.services import Services
from escuela.core.users import User
from escuela.web.dependencies import (
    ensure_unlocked,
    get_services,
    require_authenticated,
    require_teacher,
)
from escuela.web.schemas import (
    AttemptFinish,
    AttemptGradeOverride,
    AttemptListResponse,
    AttemptResponse,
    ExamCreate,
    ExamListResponse,
    ExamResponse,
    ExamUpdate,
    QuestionSchema,
)

router = APIRouter(prefix="/api", tags=["exams"])


def _to_question(schema: QuestionSchema) -> Question:
    return Question(
        id=schema.id or generate_question_id(),
        texto=schema.texto,
        tipo=schema.tipo,
        respuesta_correcta=schema.respuesta_correcta,
        puntos=schema.puntos,
        opciones=[AnswerOption(**o.model_dump()) for o in schema.opciones],
        feedback=schema.feedback,
    )


def _exam_for(services: Services, exam: Exam, user: User) -> ExamResponse:
    if user.is_teacher:
        return ExamResponse.model_validate(exam.to_dict())
    return ExamResponse.model_validate(services.exams.student_view(exam))


def _attempt(attempt: Attempt) -> AttemptResponse:
    return AttemptResponse.model_validate(attempt.to_dict())


def _require_visible(exam: Exam, user: User) -> None:
    if not exam.visible and not user.is_teacher:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Examen no encontrado: {exam.id}",
        )


def _require_owner(attempt: Attempt, user: User, allow_teacher: bool = False) -> None:
    if attempt.estudiante_id == user.id or (allow_teacher and user.is_teacher):
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="El intento pertenece a otro estudiante",
    )


# =============================================================================
# EXAMS
# =============================================================================


@router.get("/sections/{section_id}/exams", response_model=ExamListResponse)
async def list_exams(
    section_id: str,
    services: Services = Depends(get_services),
    user: User = Depends(require_authenticated),
) -> ExamListResponse:
    services.sections.require_section(section_id)
    exams = services.exams.get_exams_by_section(section_id)
    if not user.is_teacher:
        exams = [e for e in exams if e.visible]
    return ExamListResponse(exams=[_exam_for(services, e, user) for e in exams], count=len(exams))


@router.post(
    "/sections/{section_id}/exams",
    response_model=ExamResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_exam(
    section_id: str,
    body: ExamCreate,
    services: Services = Depends(get_services),
    _: User = Depends(require_teacher),
) -> ExamResponse:
    fields = body.model_dump(exclude={"preguntas"})
    exam = services.exams.create_exam(
        seccion_id=section_id,
        preguntas=[_to_question(q) for q in body.preguntas],
        **fields,
    )
    return ExamResponse.model_validate(exam.to_dict())


@router.get("/exams/{exam_id}", response_model=ExamResponse)
async def get_exam(
    exam_id: str,
    services: Services = Depends(get_services),
    user: User = Depends(require_authenticated),
) -> ExamResponse:
    exam = services.exams.require_exam(exam_id)
    _require_visible(exam, user)
    return _exam_for(services, exam, user)


@router.patch("/exams/{exam_id}", response_model=ExamResponse)
async def update_exam(
    exam_id: str,
    body: ExamUpdate,
    services: Services = Depends(get_services),
    _: User = Depends(require_teacher),
) -> ExamResponse:
    changes: dict[str, Any] = body.model_dump(exclude_unset=True, exclude={"preguntas"})
    if body.preguntas is not None:
        changes["preguntas"] = [_to_question(q) for q in body.preguntas]
    exam = services.exams.update_exam(exam_id, **changes)
    return ExamResponse.model_validate(exam.to_dict())


@router.delete("/exams/{exam_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_exam(
    exam_id: str,
    services: Services = Depends(get_services),
    _: User = Depends(require_teacher),
) -> None:
    services.exams.require_exam(exam_id)
    services.exams.delete_exam(exam_id)


# =============================================================================
# ATTEMPTS
# =============================================================================


@router.post(
    "/exams/{exam_id}/attempts",
    response_model=AttemptResponse,
    status_code=status.HTTP_201_CREATED,
)
async def start_attempt(
    exam_id: str,
    services: Services = Depends(get_services),
    user: User = Depends(require_authenticated),
) -> AttemptResponse:
    """Start an attempt, or resume the one in progress."""
    exam = services.exams.require_exam(exam_id)
    _require_visible(exam, user)
    ensure_unlocked(services, user, exam.seccion_id, exam.id)
    return _attempt(services.exams.start_attempt(exam_id, user.id))


@router.get("/exams/{exam_id}/attempts", response_model=AttemptListResponse)
async def list_attempts(
    exam_id: str,
    services: Services = Depends(get_services),
    _: User = Depends(require_teacher),
) -> AttemptListResponse:
    services.exams.require_exam(exam_id)
    attempts = services.exams.get_attempts_by_exam(exam_id)
    return AttemptListResponse(attempts=[_attempt(a) for a in attempts], count=len(attempts))


@router.get("/exams/{exam_id}/attempts/me", response_model=AttemptListResponse)
async def my_attempts(
    exam_id: str,
    services: Services = Depends(get_services),
    user: User = Depends(require_authenticated),
) -> AttemptListResponse:
    attempts = services.exams.get_attempts_by_student_and_exam(user.id, exam_id)
    return AttemptListResponse(attempts=[_attempt(a) for a in attempts], count=len(attempts))


@router.post("/attempts/{attempt_id}/finish", response_model=AttemptResponse)
async def finish_attempt(
    attempt_id: str,
    body: AttemptFinish,
    services: Services = Depends(get_services),
    user: User = Depends(require_authenticated),
) -> AttemptResponse:
    """Hand in the answers; the attempt is graded immediately."""
    attempt = services.exams.require_attempt(attempt_id)
    _require_owner(attempt, user)
    exam = services.exams.require_exam(attempt.examen_id)
    ensure_unlocked(services, user, exam.seccion_id, exam.id)
    answers = [Answer(pregunta_id=a.pregunta_id, respuesta=a.respuesta) for a in body.respuestas]
    return _attempt(services.exams.finish_attempt(attempt_id, answers))


@router.get("/attempts/{attempt_id}/result")
async def attempt_result(
    attempt_id: str,
    services: Services = Depends(get_services),
    user: User = Depends(require_authenticated),
) -> dict[str, Any]:
    attempt = services.exams.require_attempt(attempt_id)
    _require_owner(attempt, user, allow_teacher=True)
    return services.exams.get_attempt_result(attempt_id)


@router.put("/attempts/{attempt_id}/grade", response_model=AttemptResponse)
async def override_attempt_grade(
    attempt_id: str,
    body: AttemptGradeOverride,
    services: Services = Depends(get_services),
    _: User = Depends(require_teacher),
) -> AttemptResponse:
    return _attempt(services.exams.update_attempt_grade(attempt_id, body.calificacion))
