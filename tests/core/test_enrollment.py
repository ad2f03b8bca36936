"""Tests for enrollment requests."""

import pytest

from escuela.core.enrollment import (
    AlreadyEnrolledError,
    DuplicateRequestError,
    EnrollmentRequestNotFoundError,
    RequestAlreadyAnsweredError,
)
from escuela.errors import ValidationError


@pytest.fixture
def request_(services, course, other_student):
    return services.enrollment.create_request(other_student.id, course.id)


class TestEnrollmentService:
    """Tests for EnrollmentService."""

    def test_request_copies_names(self, request_, course, other_student):
        assert request_.estado == "pendiente"
        assert request_.estudiante_nombre == "Luis Lopez"
        assert request_.estudiante_email == other_student.email
        assert request_.curso_nombre == course.titulo

    def test_duplicate_pending_request(self, services, course, other_student, request_):
        with pytest.raises(DuplicateRequestError):
            services.enrollment.create_request(other_student.id, course.id)

    def test_already_enrolled(self, services, course, student):
        with pytest.raises(AlreadyEnrolledError):
            services.enrollment.create_request(student.id, course.id)

    def test_inactive_course(self, services, course, other_student):
        services.courses.set_active(course.id, False)
        with pytest.raises(ValidationError):
            services.enrollment.create_request(other_student.id, course.id)

    def test_accept_enrolls_student(self, services, course, other_student, admin, request_):
        accepted = services.enrollment.accept_request(request_.id, admin.id)

        assert accepted.estado == "aceptada"
        assert accepted.respondido_por == admin.id
        assert other_student.id in services.courses.require_course(course.id).estudiantes
        assert course.id in services.users.require_user(other_student.id).cursos_inscritos

    def test_reject_keeps_reason(self, services, course, other_student, admin, request_):
        rejected = services.enrollment.reject_request(request_.id, admin.id, "Cupo lleno")

        assert rejected.motivo_rechazo == "Cupo lleno"
        assert services.enrollment.get_request(request_.id).estado == "rechazada"
        assert other_student.id not in services.courses.require_course(course.id).estudiantes

    def test_request_answered_once(self, services, admin, request_):
        services.enrollment.reject_request(request_.id, admin.id)
        with pytest.raises(RequestAlreadyAnsweredError):
            services.enrollment.accept_request(request_.id, admin.id)

    def test_new_request_after_rejection(self, services, course, other_student, admin, request_):
        services.enrollment.reject_request(request_.id, admin.id)
        again = services.enrollment.create_request(other_student.id, course.id)
        assert again.id != request_.id

    def test_unknown_request(self, services, admin):
        with pytest.raises(EnrollmentRequestNotFoundError):
            services.enrollment.accept_request("ghost", admin.id)

    def test_list_by_state_newest_first(self, services, course, other_student, admin, clock, request_):
        second_course = services.courses.create_course("Homilética")
        clock.advance(hours=1)
        newer = services.enrollment.create_request(other_student.id, second_course.id)
        services.enrollment.reject_request(request_.id, admin.id)

        assert [r.id for r in services.enrollment.list_requests()] == [newer.id, request_.id]
        assert [r.id for r in services.enrollment.list_requests("pendiente")] == [newer.id]
        assert [r.id for r in services.enrollment.list_student_requests(other_student.id)] == [newer.id, request_.id]
