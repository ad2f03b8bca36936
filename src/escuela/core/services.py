"""Service wiring.

Builds every service over a single DocumentStore so the web layer and the
CLI share the same object graph.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from escuela.config.app_config import AppConfig
from escuela.core.attendance import AttendanceService
from escuela.core.courses import CourseService
from escuela.core.enrollment import EnrollmentService
from escuela.core.exams import ExamService
from escuela.core.grades import GradeService
from escuela.core.grading import GradingService
from escuela.core.home_config import HomeConfigService
from escuela.core.leads import LeadForwarder
from escuela.core.lessons import LessonService
from escuela.core.progress_unlock import ProgressUnlockService
from escuela.core.sections import SectionService
from escuela.core.tasks import TaskService
from escuela.core.users import UserService
from escuela.db.document_store import DocumentStore
from escuela.utils.dates import Clock, utc_now

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    store: DocumentStore
    users: UserService
    courses: CourseService
    sections: SectionService
    progress: ProgressUnlockService
    lessons: LessonService
    grades: GradeService
    tasks: TaskService
    exams: ExamService
    attendance: AttendanceService
    grading: GradingService
    enrollment: EnrollmentService
    home: HomeConfigService
    leads: LeadForwarder


def build_services(
    store: DocumentStore,
    config: AppConfig | None = None,
    clock: Clock = utc_now,
) -> Services:
    """Create all services sharing one store and one clock."""
    config = config or AppConfig()

    users = UserService(store)
    courses = CourseService(store, users)
    sections = SectionService(store, courses)
    progress = ProgressUnlockService(store, config.unlock, clock)
    lessons = LessonService(store, sections, progress, clock)
    grades = GradeService(store)
    tasks = TaskService(store, lessons, grades, progress, clock)
    exams = ExamService(store, sections, progress, clock)
    attendance = AttendanceService(store, clock)
    grading = GradingService(
        store,
        users,
        courses,
        lessons,
        tasks,
        exams,
        grades,
        attendance,
        defaults=config.grading,
        clock=clock,
    )

    logger.debug("services_built", data_dir=config.storage.data_dir)
    return Services(
        store=store,
        users=users,
        courses=courses,
        sections=sections,
        progress=progress,
        lessons=lessons,
        grades=grades,
        tasks=tasks,
        exams=exams,
        attendance=attendance,
        grading=grading,
        enrollment=EnrollmentService(store, users, courses, clock),
        home=HomeConfigService(store, config.home, clock),
        leads=LeadForwarder(config.leads),
    )
