"""Shared fixtures: a tmp_path-backed store, a controllable clock and the
service graph, plus a few users and a course to build on."""

from datetime import datetime, timedelta, timezone

import pytest

from escuela.config.app_config import AppConfig
from escuela.core.services import Services, build_services
from escuela.db.document_store import DocumentStore

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def store(tmp_path) -> DocumentStore:
    return DocumentStore(tmp_path / "db")


@pytest.fixture
def services(store, clock) -> Services:
    return build_services(store, AppConfig(), clock)


@pytest.fixture
def admin(services):
    return services.users.create_user("admin@cavevid.org", "Ana", "Admin", rol="admin", user_id="admin1")


@pytest.fixture
def teacher(services):
    return services.users.create_user("profe@cavevid.org", "Pablo", "Profesor", rol="profesor", user_id="prof1")


@pytest.fixture
def student(services):
    return services.users.create_user("est@cavevid.org", "Eva", "Estudiante", user_id="est1")


@pytest.fixture
def other_student(services):
    return services.users.create_user("est2@cavevid.org", "Luis", "Lopez", user_id="est2")


@pytest.fixture
def course(services, teacher, student):
    """Active course taught by `teacher` with `student` enrolled."""
    created = services.courses.create_course("Vida Cristiana", "Curso básico", profesor_id=teacher.id)
    services.courses.enroll_student(created.id, student.id)
    return services.courses.require_course(created.id)


@pytest.fixture
def section(services, course):
    return services.sections.create_section(course.id, "Introducción")


@pytest.fixture
def open_window(clock) -> tuple[datetime, datetime]:
    """A window that opened an hour ago and closes in a day."""
    return clock.now - timedelta(hours=1), clock.now + timedelta(hours=24)
