"""Tests for user profiles and courses."""

import pytest

from escuela.core.courses import CourseNotFoundError, InvalidCourseError
from escuela.core.users import DuplicateEmailError, InvalidUserError, UserNotFoundError


class TestUserService:
    """Tests for UserService."""

    def test_create_user_normalizes_email(self, services):
        user = services.users.create_user("  Maria@CaveVid.org ", "María", "Gómez")
        assert user.email == "maria@cavevid.org"
        assert user.rol == "estudiante"
        assert services.users.get_user_by_email("MARIA@cavevid.org").id == user.id

    def test_duplicate_email_rejected(self, services, student):
        with pytest.raises(DuplicateEmailError):
            services.users.create_user("est@cavevid.org", "Otra")

    def test_invalid_email_and_role(self, services):
        with pytest.raises(InvalidUserError):
            services.users.create_user("no-es-email", "X")
        with pytest.raises(InvalidUserError):
            services.users.create_user("x@cavevid.org", "X", rol="pastor")

    def test_public_registration_is_always_student(self, services):
        user = services.users.register_public("nuevo@cavevid.org", "Nuevo")
        assert user.rol == "estudiante"

    def test_update_rejects_unknown_fields(self, services, student):
        with pytest.raises(InvalidUserError):
            services.users.update_user(student.id, cursos_inscritos=["x"])

    def test_update_missing_user(self, services):
        with pytest.raises(UserNotFoundError):
            services.users.update_user("ghost", nombre="X")

    def test_change_role(self, services, student):
        updated = services.users.change_role(student.id, "profesor")
        assert updated.rol == "profesor"
        assert updated.is_teacher

    def test_delete_is_soft(self, services, student):
        services.users.delete_user(student.id)
        user = services.users.require_user(student.id)
        assert user.activo is False

    def test_get_users_by_ids_ignores_blanks(self, services, student, teacher):
        users = services.users.get_users_by_ids([student.id, "", teacher.id, student.id, "ghost"])
        assert set(users) == {student.id, teacher.id}

    def test_stats(self, services, admin, teacher, student, other_student):
        services.users.delete_user(other_student.id)
        stats = services.users.get_user_stats()
        assert stats.total == 4
        assert stats.estudiantes == 2
        assert stats.profesores == 1
        assert stats.admins == 1
        assert stats.inactivos == 1

    def test_nombre_completo(self, student):
        assert student.nombre_completo == "Eva Estudiante"


class TestCourseService:
    """Tests for CourseService."""

    def test_create_course_assigns_teacher(self, services, course, teacher):
        assert course.id in services.users.require_user(teacher.id).cursos_asignados
        assert course.profesor_id == teacher.id

    def test_blank_title_rejected(self, services):
        with pytest.raises(InvalidCourseError):
            services.courses.create_course("   ")

    def test_unknown_teacher_rejected(self, services):
        with pytest.raises(UserNotFoundError):
            services.courses.create_course("Teología", profesor_id="ghost")

    def test_enrollment_updates_both_sides(self, services, course, student):
        assert student.id in course.estudiantes
        assert course.id in services.users.require_user(student.id).cursos_inscritos
        assert [c.id for c in services.courses.get_courses_by_student(student.id)] == [course.id]

    def test_unenroll_updates_both_sides(self, services, course, student):
        services.courses.unenroll_student(course.id, student.id)
        assert student.id not in services.courses.require_course(course.id).estudiantes
        assert course.id not in services.users.require_user(student.id).cursos_inscritos

    def test_changing_teacher_moves_assignment(self, services, course, teacher):
        nuevo = services.users.create_user("nuevo@cavevid.org", "Nuevo", rol="profesor")
        services.courses.update_course(course.id, profesor_id=nuevo.id)

        assert course.id not in services.users.require_user(teacher.id).cursos_asignados
        assert course.id in services.users.require_user(nuevo.id).cursos_asignados

    def test_update_rejects_unknown_fields(self, services, course):
        with pytest.raises(InvalidCourseError):
            services.courses.update_course(course.id, estudiantes=[])

    def test_delete_course_cleans_profiles(self, services, course, teacher, student):
        services.courses.delete_course(course.id)

        assert services.courses.get_course(course.id) is None
        assert course.id not in services.users.require_user(teacher.id).cursos_asignados
        assert course.id not in services.users.require_user(student.id).cursos_inscritos

    def test_require_missing_course(self, services):
        with pytest.raises(CourseNotFoundError):
            services.courses.require_course("ghost")

    def test_course_stats(self, services, course, other_student):
        inactive = services.courses.create_course("Archivado", activo=False)
        services.courses.enroll_student(inactive.id, other_student.id)

        stats = services.courses.get_course_stats()
        assert stats.total_cursos == 2
        assert stats.cursos_activos == 1
        assert stats.cursos_inactivos == 1
        assert stats.total_estudiantes == 2
