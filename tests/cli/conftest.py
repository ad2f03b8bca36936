"""Fixtures for the CLI tests."""

import pytest

from escuela.config.app_config import clear_config_cache, load_app_config
from escuela.core.services import build_services
from escuela.db.document_store import DocumentStore


@pytest.fixture(autouse=True)
def data_dir(tmp_path, monkeypatch):
    """Point the CLI at an empty data directory."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("ESCUELA_DATA_DIR", str(tmp_path / "data"))
    clear_config_cache()
    yield tmp_path / "data"
    clear_config_cache()


@pytest.fixture
def services():
    """Services over the same store the CLI opens."""
    config = load_app_config()
    return build_services(DocumentStore(config.storage.db_path), config)


@pytest.fixture
def graded_course(services):
    teacher = services.users.create_user("prof@cavevid.org", "Pablo", rol="profesor")
    student = services.users.create_user("est@cavevid.org", "Eva", "Estudiante")
    course = services.courses.create_course("Vida Cristiana", profesor_id=teacher.id)
    services.courses.enroll_student(course.id, student.id)
    services.grading.create_config(course.id, ponderacion_tareas=50, ponderacion_examenes=50)
    return course, student
