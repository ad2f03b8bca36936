"""Task and submission endpoints."""

from fastapi import APIRouter, Depends, HTTPException, status

from escuela.core.services import Services
from escuela.core.tasks import Submission, Task
from escuela.core.users import User
from escuela.web.dependencies import (
    ensure_unlocked,
    get_services,
    require_authenticated,
    require_teacher,
)
from escuela.web.schemas import (
    StudentTaskListResponse,
    StudentTaskResponse,
    SubmissionCreate,
    SubmissionGrade,
    SubmissionListResponse,
    SubmissionResponse,
    TaskCreate,
    TaskListResponse,
    TaskResponse,
    TaskUpdate,
)

router = APIRouter(prefix="/api", tags=["tasks"])


def _task(task: Task) -> TaskResponse:
    return TaskResponse.model_validate(task.to_dict())


def _submission(submission: Submission) -> SubmissionResponse:
    return SubmissionResponse.model_validate(submission.to_dict())


def _require_visible(task: Task, user: User) -> None:
    if not task.visible and not user.is_teacher:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Tarea no encontrada: {task.id}",
        )


# =============================================================================
# TASKS
# =============================================================================


@router.get("/lessons/{lesson_id}/tasks", response_model=TaskListResponse)
async def list_tasks(
    lesson_id: str,
    services: Services = Depends(get_services),
    user: User = Depends(require_authenticated),
) -> TaskListResponse:
    """Tasks of a lesson; students only see visible ones."""
    services.lessons.require_lesson(lesson_id)
    tasks = services.tasks.get_tasks_by_lesson(lesson_id)
    if not user.is_teacher:
        tasks = [t for t in tasks if t.visible]
    return TaskListResponse(tasks=[_task(t) for t in tasks], count=len(tasks))


@router.post(
    "/lessons/{lesson_id}/tasks",
    response_model=TaskResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_task(
    lesson_id: str,
    body: TaskCreate,
    services: Services = Depends(get_services),
    _: User = Depends(require_teacher),
) -> TaskResponse:
    task = services.tasks.create_task(leccion_id=lesson_id, **body.model_dump())
    return _task(task)


@router.get("/courses/{course_id}/tasks", response_model=TaskListResponse)
async def list_course_tasks(
    course_id: str,
    services: Services = Depends(get_services),
    _: User = Depends(require_teacher),
) -> TaskListResponse:
    services.courses.require_course(course_id)
    tasks = services.tasks.get_tasks_by_course(course_id)
    return TaskListResponse(tasks=[_task(t) for t in tasks], count=len(tasks))


@router.get("/courses/{course_id}/my-tasks", response_model=StudentTaskListResponse)
async def my_tasks(
    course_id: str,
    services: Services = Depends(get_services),
    user: User = Depends(require_authenticated),
) -> StudentTaskListResponse:
    """Visible tasks of a course with the caller's submission."""
    services.courses.require_course(course_id)
    items = [
        StudentTaskResponse(
            tarea=_task(item["tarea"]),
            entrega=_submission(item["entrega"]) if item["entrega"] else None,
        )
        for item in services.tasks.get_student_tasks(course_id, user.id)
    ]
    return StudentTaskListResponse(tasks=items, count=len(items))


@router.get("/tasks/{task_id}", response_model=TaskResponse)
async def get_task(
    task_id: str,
    services: Services = Depends(get_services),
    user: User = Depends(require_authenticated),
) -> TaskResponse:
    task = services.tasks.require_task(task_id)
    _require_visible(task, user)
    return _task(task)


@router.patch("/tasks/{task_id}", response_model=TaskResponse)
async def update_task(
    task_id: str,
    body: TaskUpdate,
    services: Services = Depends(get_services),
    _: User = Depends(require_teacher),
) -> TaskResponse:
    task = services.tasks.update_task(task_id, **body.model_dump(exclude_unset=True))
    return _task(task)


@router.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    task_id: str,
    services: Services = Depends(get_services),
    _: User = Depends(require_teacher),
) -> None:
    services.tasks.require_task(task_id)
    services.tasks.delete_task(task_id)


# =============================================================================
# SUBMISSIONS
# =============================================================================


@router.post(
    "/tasks/{task_id}/submissions",
    response_model=SubmissionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_task(
    task_id: str,
    body: SubmissionCreate,
    services: Services = Depends(get_services),
    user: User = Depends(require_authenticated),
) -> SubmissionResponse:
    """Submit (or resubmit) the caller's work for a task."""
    task = services.tasks.require_task(task_id)
    _require_visible(task, user)
    lesson = services.lessons.require_lesson(task.leccion_id)
    ensure_unlocked(services, user, lesson.seccion_id, lesson.id)
    submission = services.tasks.submit_task(
        task_id,
        user.id,
        contenido_texto=body.contenido_texto,
        archivos=body.archivos,
    )
    return _submission(submission)


@router.get("/tasks/{task_id}/submissions", response_model=SubmissionListResponse)
async def list_submissions(
    task_id: str,
    services: Services = Depends(get_services),
    _: User = Depends(require_teacher),
) -> SubmissionListResponse:
    services.tasks.require_task(task_id)
    submissions = services.tasks.get_submissions_by_task(task_id)
    return SubmissionListResponse(
        submissions=[_submission(s) for s in submissions],
        count=len(submissions),
    )


@router.get("/tasks/{task_id}/submissions/me", response_model=SubmissionResponse)
async def my_submission(
    task_id: str,
    services: Services = Depends(get_services),
    user: User = Depends(require_authenticated),
) -> SubmissionResponse:
    submission = services.tasks.get_submission_by_student_and_task(user.id, task_id)
    if submission is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No hay entrega para la tarea: {task_id}",
        )
    return _submission(submission)


@router.post("/submissions/{submission_id}/grade", response_model=SubmissionResponse)
async def grade_submission(
    submission_id: str,
    body: SubmissionGrade,
    services: Services = Depends(get_services),
    teacher: User = Depends(require_teacher),
) -> SubmissionResponse:
    """Grade a submission; also records the student's task grade."""
    submission = services.tasks.grade_submission(
        submission_id,
        body.calificacion,
        retroalimentacion=body.retroalimentacion,
        profesor_id=teacher.id,
    )
    return _submission(submission)


@router.delete("/submissions/{submission_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_submission(
    submission_id: str,
    services: Services = Depends(get_services),
    _: User = Depends(require_teacher),
) -> None:
    services.tasks.delete_submission(submission_id)
