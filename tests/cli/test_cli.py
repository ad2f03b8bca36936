"""Tests for the escuela CLI."""

from typer.testing import CliRunner

from escuela.cli.commands import app
from escuela.core.home_config import HOME_DOC_ID
from escuela.db import collections

runner = CliRunner()


class TestCreateUser:
    """Tests for escuela create-user."""

    def test_creates_admin(self, services):
        result = runner.invoke(app, ["create-user", "admin@cavevid.org", "Ana", "--rol", "admin", "--id", "admin1"])

        assert result.exit_code == 0
        assert "Usuario creado" in result.output
        assert services.users.require_user("admin1").is_admin

    def test_invalid_email(self):
        result = runner.invoke(app, ["create-user", "sin-arroba", "Ana"])
        assert result.exit_code == 1
        assert "Email inválido" in result.output

    def test_duplicate_email(self):
        runner.invoke(app, ["create-user", "ana@cavevid.org", "Ana"])
        result = runner.invoke(app, ["create-user", "ana@cavevid.org", "Ana"])
        assert result.exit_code == 1


class TestInitHome:
    """Tests for escuela init-home."""

    def test_writes_default(self, services):
        result = runner.invoke(app, ["init-home", "--admin", "admin1"])

        assert result.exit_code == 0
        doc = services.store.collection(collections.HOME_CONFIG).get(HOME_DOC_ID)
        assert doc["actualizado_por"] == "admin1"

    def test_existing_needs_force(self):
        runner.invoke(app, ["init-home"])

        refused = runner.invoke(app, ["init-home"])
        assert refused.exit_code == 1
        assert "--force" in refused.output

        forced = runner.invoke(app, ["init-home", "--force"])
        assert forced.exit_code == 0


class TestReports:
    """Tests for the report commands."""

    def test_gradebook(self, graded_course):
        course, _ = graded_course
        result = runner.invoke(app, ["gradebook", course.id])

        assert result.exit_code == 0
        assert "Vida Cristiana" in result.output
        assert "1 estudiantes" in result.output

    def test_gradebook_without_config(self, services):
        course = services.courses.create_course("Sin configuración")
        result = runner.invoke(app, ["gradebook", course.id])

        assert result.exit_code == 1
        assert "no encontrado" in result.output

    def test_student_grade(self, graded_course):
        course, student = graded_course
        result = runner.invoke(app, ["student-grade", course.id, student.id])

        assert result.exit_code == 0
        assert "en_progreso" in result.output

    def test_course_stats(self, graded_course):
        course, _ = graded_course
        result = runner.invoke(app, ["course-stats", course.id])

        assert result.exit_code == 0
        assert "tasa aprobación" in result.output

    def test_section_status(self, services, graded_course):
        course, student = graded_course
        services.sections.create_section(course.id, "Introducción")
        result = runner.invoke(app, ["section-status", course.id, student.id])

        assert result.exit_code == 0
        assert "Introducción" in result.output
