"""Route handlers for the Web API."""

from escuela.web.routes.health import router as health_router
from escuela.web.routes.users import router as users_router
from escuela.web.routes.courses import router as courses_router
from escuela.web.routes.sections import router as sections_router
from escuela.web.routes.lessons import router as lessons_router
from escuela.web.routes.tasks import router as tasks_router
from escuela.web.routes.exams import router as exams_router
from escuela.web.routes.attendance import router as attendance_router
from escuela.web.routes.grading import router as grading_router
from escuela.web.routes.enrollment import router as enrollment_router
from escuela.web.routes.home import router as home_router
from escuela.web.routes.contact import router as contact_router

__all__ = [
    "health_router",
    "users_router",
    "courses_router",
    "sections_router",
    "lessons_router",
    "tasks_router",
    "exams_router",
    "attendance_router",
    "grading_router",
    "enrollment_router",
    "home_router",
    "contact_router",
]
