"""Tests for the FastAPI application."""

from datetime import timedelta

import httpx
import pytest

from escuela.config.app_config import LeadsConfig
from escuela.core.exams import Question
from escuela.core.leads import LeadForwarder


def as_user(user) -> dict[str, str]:
    return {"X-User-Id": user.id}


def iso(clock, **delta) -> str:
    return (clock.now + timedelta(**delta)).isoformat()


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["version"] == "0.1.0"


class TestUsersAPI:
    """Tests for /api/users."""

    def test_me_requires_identity(self, client, services):
        assert client.get("/api/users/me").status_code == 401
        assert client.get("/api/users/me", headers={"X-User-Id": "ghost"}).status_code == 401

    def test_me(self, client, student):
        response = client.get("/api/users/me", headers=as_user(student))
        assert response.status_code == 200
        assert response.json()["email"] == "est@cavevid.org"

    def test_public_register_ignores_role(self, client, services):
        response = client.post(
            "/api/users/register",
            json={"email": "nuevo@cavevid.org", "nombre": "Nuevo", "rol": "admin"},
        )
        assert response.status_code == 201
        assert response.json()["rol"] == "estudiante"

    def test_admin_creates_users(self, client, admin):
        body = {"email": "profe2@cavevid.org", "nombre": "Marcos", "rol": "profesor"}
        response = client.post("/api/users", json=body, headers=as_user(admin))
        assert response.status_code == 201
        assert response.json()["rol"] == "profesor"

        duplicate = client.post("/api/users", json=body, headers=as_user(admin))
        assert duplicate.status_code == 409

    def test_students_cannot_list_users(self, client, student):
        response = client.get("/api/users", headers=as_user(student))
        assert response.status_code == 403
        assert response.json()["detail"] == "Se requiere rol de administrador"

    def test_admin_lists_by_role(self, client, admin, teacher, student):
        response = client.get("/api/users", params={"rol": "profesor"}, headers=as_user(admin))
        assert response.json()["count"] == 1

    def test_students_edit_only_own_name(self, client, student, other_student):
        ok = client.patch(f"/api/users/{student.id}", json={"nombre": "Evita"}, headers=as_user(student))
        assert ok.status_code == 200
        assert ok.json()["nombre"] == "Evita"

        assert client.patch(
            f"/api/users/{student.id}", json={"activo": False}, headers=as_user(student)
        ).status_code == 403
        assert client.patch(
            f"/api/users/{other_student.id}", json={"nombre": "X"}, headers=as_user(student)
        ).status_code == 403

    def test_students_cannot_read_other_profiles(self, client, student, teacher):
        assert client.get(f"/api/users/{teacher.id}", headers=as_user(student)).status_code == 403
        assert client.get(f"/api/users/{student.id}", headers=as_user(teacher)).status_code == 200

    def test_deactivation(self, client, admin, student):
        assert client.delete(f"/api/users/{admin.id}", headers=as_user(admin)).status_code == 400

        response = client.delete(f"/api/users/{student.id}", headers=as_user(admin))
        assert response.json()["activo"] is False
        assert client.get("/api/users/me", headers=as_user(student)).status_code == 403


class TestCoursesAPI:
    """Tests for /api/courses."""

    def test_public_listing_hides_inactive(self, client, services, admin, course):
        services.courses.create_course("Archivado", activo=False)

        assert client.get("/api/courses").json()["count"] == 1
        assert client.get("/api/courses", params={"todos": True}).status_code == 403
        assert client.get("/api/courses", params={"todos": True}, headers=as_user(admin)).json()["count"] == 2

    def test_unknown_course(self, client):
        response = client.get("/api/courses/ghost")
        assert response.status_code == 404
        assert response.json()["detail"] == "Curso no encontrado: ghost"

    def test_only_admins_create(self, client, admin, teacher):
        body = {"titulo": "Homilética", "profesor_id": teacher.id}
        assert client.post("/api/courses", json=body, headers=as_user(teacher)).status_code == 403

        response = client.post("/api/courses", json=body, headers=as_user(admin))
        assert response.status_code == 201
        assert response.json()["profesor_id"] == teacher.id

    def test_mine_depends_on_role(self, client, course, teacher, student, other_student):
        assert client.get("/api/courses/mine", headers=as_user(teacher)).json()["count"] == 1
        assert client.get("/api/courses/mine", headers=as_user(student)).json()["count"] == 1
        assert client.get("/api/courses/mine", headers=as_user(other_student)).json()["count"] == 0

    def test_delete(self, client, admin, course):
        assert client.delete(f"/api/courses/{course.id}", headers=as_user(admin)).status_code == 204
        assert client.get(f"/api/courses/{course.id}").status_code == 404


class TestSectionsAndLessonsAPI:
    """Tests for sections, lessons and the unlock gate."""

    def test_create_section(self, client, course, teacher):
        response = client.post(
            f"/api/courses/{course.id}/sections",
            json={"titulo": "Fundamentos", "porcentaje_minimo": 80},
            headers=as_user(teacher),
        )
        assert response.status_code == 201
        assert response.json()["porcentaje_minimo"] == 80

    def test_reorder_needs_ids(self, client, course, teacher):
        response = client.put(f"/api/courses/{course.id}/sections/order", json={"ids": []}, headers=as_user(teacher))
        assert response.status_code == 422

    def test_locked_lesson_is_forbidden_until_prerequisite_done(self, client, services, course, section, student, teacher):
        first = services.lessons.create_lesson(section.id, "Lectura 1")
        gated = services.sections.create_section(
            course.id, "Avanzado", desbloqueo_progresivo=True, prerequisitos=[section.id]
        )
        locked = services.lessons.create_lesson(gated.id, "Lectura 2")

        denied = client.get(f"/api/lessons/{locked.id}", headers=as_user(student))
        assert denied.status_code == 403
        assert "Introducción" in denied.json()["detail"]
        assert client.get(f"/api/lessons/{locked.id}", headers=as_user(teacher)).status_code == 200

        states = client.get(f"/api/courses/{course.id}/students/{student.id}/sections", headers=as_user(student))
        assert [s["bloqueada"] for s in states.json()["sections"]] == [False, True]

        done = client.post(f"/api/lessons/{first.id}/complete", headers=as_user(student))
        assert done.status_code == 200
        assert done.json()["completada"] is True

        assert client.get(f"/api/lessons/{locked.id}", headers=as_user(student)).status_code == 200

    def test_lock_message(self, client, services, course, section, student):
        services.lessons.create_lesson(section.id, "Lectura 1")
        gated = services.sections.create_section(
            course.id, "Avanzado", desbloqueo_progresivo=True, prerequisitos=[section.id]
        )
        response = client.get(f"/api/sections/{gated.id}/lock-message", headers=as_user(student))
        assert "(0% de 70% requerido)" in response.json()["mensaje"]


class TestLockedSectionElements:
    """Exams and tasks of a locked section are closed to students."""

    @pytest.fixture
    def locked(self, services, course, section, open_window):
        first = services.lessons.create_lesson(section.id, "Lectura 1")
        gated = services.sections.create_section(
            course.id, "Dos", desbloqueo_progresivo=True, prerequisitos=[section.id]
        )
        lesson = services.lessons.create_lesson(gated.id, "Lectura 2")
        task = services.tasks.create_task(lesson.id, "Resumen", *open_window)
        question = Question(id="q1", texto="?", tipo="corta", respuesta_correcta="si")
        exam = services.exams.create_exam(gated.id, "Parcial", *open_window, preguntas=[question])
        return {"first": first, "task": task, "exam": exam}

    def test_exam_start_forbidden(self, client, locked, student, teacher):
        response = client.post(f"/api/exams/{locked['exam'].id}/attempts", headers=as_user(student))
        assert response.status_code == 403
        assert "Introducción" in response.json()["detail"]

        assert client.post(f"/api/exams/{locked['exam'].id}/attempts", headers=as_user(teacher)).status_code == 201

    def test_exam_finish_forbidden(self, client, services, locked, student):
        attempt = services.exams.start_attempt(locked["exam"].id, student.id)
        answers = {"respuestas": [{"pregunta_id": "q1", "respuesta": "si"}]}

        response = client.post(f"/api/attempts/{attempt.id}/finish", json=answers, headers=as_user(student))
        assert response.status_code == 403
        assert services.exams.require_attempt(attempt.id).estado == "en_progreso"

    def test_task_submission_forbidden(self, client, services, locked, student):
        response = client.post(
            f"/api/tasks/{locked['task'].id}/submissions",
            json={"contenido_texto": "Mi resumen"},
            headers=as_user(student),
        )
        assert response.status_code == 403
        assert services.tasks.get_submission_by_student_and_task(student.id, locked["task"].id) is None

    def test_open_after_prerequisite(self, client, locked, student):
        client.post(f"/api/lessons/{locked['first'].id}/complete", headers=as_user(student))

        assert client.post(f"/api/exams/{locked['exam'].id}/attempts", headers=as_user(student)).status_code == 201
        assert client.post(
            f"/api/tasks/{locked['task'].id}/submissions",
            json={"contenido_texto": "Mi resumen"},
            headers=as_user(student),
        ).status_code == 201


class TestTasksAPI:
    """Tests for tasks and submissions."""

    @pytest.fixture
    def lesson(self, services, section):
        return services.lessons.create_lesson(section.id, "Lectura")

    @pytest.fixture
    def task_id(self, client, clock, lesson, teacher):
        response = client.post(
            f"/api/lessons/{lesson.id}/tasks",
            json={"titulo": "Resumen", "fecha_inicio": iso(clock, hours=-1), "fecha_fin": iso(clock, days=1)},
            headers=as_user(teacher),
        )
        assert response.status_code == 201
        return response.json()["id"]

    def test_submit_and_grade(self, client, course, task_id, student, teacher):
        submitted = client.post(
            f"/api/tasks/{task_id}/submissions",
            json={"contenido_texto": "Mi resumen"},
            headers=as_user(student),
        )
        assert submitted.status_code == 201
        assert submitted.json()["estado"] == "entregada"
        submission_id = submitted.json()["id"]

        assert client.post(
            f"/api/submissions/{submission_id}/grade", json={"calificacion": 90}, headers=as_user(student)
        ).status_code == 403

        graded = client.post(
            f"/api/submissions/{submission_id}/grade",
            json={"calificacion": 90, "retroalimentacion": "Muy bien"},
            headers=as_user(teacher),
        )
        assert graded.json()["estado"] == "calificada"

        grades = client.get(f"/api/courses/{course.id}/students/{student.id}/grades", headers=as_user(student))
        assert grades.json()["count"] == 1
        assert grades.json()["promedio"] == pytest.approx(90)

        again = client.post(
            f"/api/tasks/{task_id}/submissions", json={"contenido_texto": "Otra"}, headers=as_user(student)
        )
        assert again.status_code == 409

    def test_empty_submission_rejected(self, client, task_id, student):
        response = client.post(f"/api/tasks/{task_id}/submissions", json={}, headers=as_user(student))
        assert response.status_code == 400

    def test_my_submission_missing(self, client, task_id, student):
        assert client.get(f"/api/tasks/{task_id}/submissions/me", headers=as_user(student)).status_code == 404

    def test_hidden_task_is_not_found_for_students(self, client, clock, lesson, teacher, student):
        response = client.post(
            f"/api/lessons/{lesson.id}/tasks",
            json={
                "titulo": "Borrador",
                "fecha_inicio": iso(clock, hours=-1),
                "fecha_fin": iso(clock, days=1),
                "visible": False,
            },
            headers=as_user(teacher),
        )
        hidden_id = response.json()["id"]

        assert client.get(f"/api/tasks/{hidden_id}", headers=as_user(student)).status_code == 404
        assert client.get(f"/api/tasks/{hidden_id}", headers=as_user(teacher)).status_code == 200
        listing = client.get(f"/api/lessons/{lesson.id}/tasks", headers=as_user(student))
        assert listing.json()["count"] == 0


class TestExamsAPI:
    """Tests for exams and attempts."""

    @pytest.fixture
    def exam(self, client, clock, section, teacher):
        response = client.post(
            f"/api/sections/{section.id}/exams",
            json={
                "titulo": "Parcial",
                "fecha_inicio": iso(clock, hours=-1),
                "fecha_fin": iso(clock, days=1),
                "preguntas": [
                    {"texto": "¿Quién escribió Romanos?", "tipo": "corta", "respuesta_correcta": "Pablo"}
                ],
            },
            headers=as_user(teacher),
        )
        assert response.status_code == 201
        return response.json()

    def test_teacher_sees_answers_students_do_not(self, client, exam, teacher, student):
        assert exam["preguntas"][0]["id"].startswith("pregunta_")
        assert exam["preguntas"][0]["respuesta_correcta"] == "Pablo"

        student_view = client.get(f"/api/exams/{exam['id']}", headers=as_user(student)).json()
        assert "respuesta_correcta" not in student_view["preguntas"][0]

    def test_attempt_flow(self, client, exam, student, other_student, teacher):
        started = client.post(f"/api/exams/{exam['id']}/attempts", headers=as_user(student))
        assert started.status_code == 201
        attempt_id = started.json()["id"]
        answers = {"respuestas": [{"pregunta_id": exam["preguntas"][0]["id"], "respuesta": " pablo "}]}

        assert client.post(
            f"/api/attempts/{attempt_id}/finish", json=answers, headers=as_user(other_student)
        ).status_code == 403

        finished = client.post(f"/api/attempts/{attempt_id}/finish", json=answers, headers=as_user(student))
        assert finished.status_code == 200
        assert finished.json()["estado"] == "finalizado"
        assert finished.json()["calificacion"] == pytest.approx(100)

        result = client.get(f"/api/attempts/{attempt_id}/result", headers=as_user(teacher))
        assert result.json()["aprobado"] is True

        limit = client.post(f"/api/exams/{exam['id']}/attempts", headers=as_user(student))
        assert limit.status_code == 409

    def test_override_requires_teacher(self, client, exam, student, teacher):
        attempt_id = client.post(f"/api/exams/{exam['id']}/attempts", headers=as_user(student)).json()["id"]
        assert client.put(
            f"/api/attempts/{attempt_id}/grade", json={"calificacion": 100}, headers=as_user(student)
        ).status_code == 403

        response = client.put(f"/api/attempts/{attempt_id}/grade", json={"calificacion": 85}, headers=as_user(teacher))
        assert response.json()["calificacion_modificada_manualmente"] is True

    def test_hidden_exam(self, client, exam, teacher, student):
        client.patch(f"/api/exams/{exam['id']}", json={"visible": False}, headers=as_user(teacher))
        assert client.get(f"/api/exams/{exam['id']}", headers=as_user(student)).status_code == 404
        assert client.post(f"/api/exams/{exam['id']}/attempts", headers=as_user(student)).status_code == 404


class TestAttendanceAPI:
    """Tests for attendance endpoints."""

    def test_record_and_report(self, client, course, teacher, student, other_student):
        body = {
            "fecha": "2025-03-10",
            "registros": [{"estudiante_id": student.id, "estado": "T"}, {"estudiante_id": other_student.id}],
        }
        assert client.post(f"/api/courses/{course.id}/attendance", json=body, headers=as_user(student)).status_code == 403

        response = client.post(f"/api/courses/{course.id}/attendance", json=body, headers=as_user(teacher))
        assert response.status_code == 201
        assert [r["estado"] for r in response.json()["records"]] == ["T", "F"]

        day = client.get(
            f"/api/courses/{course.id}/attendance", params={"fecha": "2025-03-10"}, headers=as_user(teacher)
        )
        assert day.json()["count"] == 2

        mine = client.get(f"/api/courses/{course.id}/attendance/{student.id}", headers=as_user(student))
        assert mine.json()["promedio"] == pytest.approx(0.5)

        stats = client.get(f"/api/courses/{course.id}/attendance/stats", headers=as_user(teacher))
        assert stats.json()["por_estado"]["F"] == 1

    def test_invalid_state(self, client, course, teacher, student):
        body = {"fecha": "2025-03-10", "registros": [{"estudiante_id": student.id, "estado": "X"}]}
        response = client.post(f"/api/courses/{course.id}/attendance", json=body, headers=as_user(teacher))
        assert response.status_code == 422


class TestGradingAPI:
    """Tests for grade configuration and grade views."""

    def test_config_lifecycle(self, client, course, teacher, student):
        url = f"/api/courses/{course.id}/grading/config"
        assert client.get(url, headers=as_user(teacher)).status_code == 404

        body = {"ponderacion_tareas": 50, "ponderacion_examenes": 50}
        created = client.post(url, json=body, headers=as_user(teacher))
        assert created.status_code == 201
        assert created.json()["id"] == course.id

        assert client.post(url, json=body, headers=as_user(teacher)).status_code == 409

        invalid = client.patch(url, json={"ponderacion_tareas": 60}, headers=as_user(teacher))
        assert invalid.status_code == 400
        assert "100%" in invalid.json()["detail"]

        updated = client.patch(
            url, json={"ponderacion_tareas": 60, "ponderacion_examenes": 40}, headers=as_user(teacher)
        )
        assert updated.json()["ponderacion_tareas"] == 60

    def test_default_config(self, client, course, teacher):
        response = client.get(f"/api/courses/{course.id}/grading/config/default", headers=as_user(teacher))
        assert response.json()["ponderacion_asistencia"] == 25

    def test_gradebook_and_student_grade(self, client, services, course, teacher, student, other_student):
        services.grading.create_config(course.id, ponderacion_tareas=50, ponderacion_examenes=50)

        gradebook = client.get(f"/api/courses/{course.id}/gradebook", headers=as_user(teacher))
        assert gradebook.status_code == 200
        assert [row["estudiante_id"] for row in gradebook.json()["estudiantes"]] == [student.id]
        assert client.get(f"/api/courses/{course.id}/gradebook", headers=as_user(student)).status_code == 403

        grade = client.get(f"/api/courses/{course.id}/students/{student.id}/grade", headers=as_user(student))
        assert grade.json()["estado"] == "en_progreso"
        assert client.get(
            f"/api/courses/{course.id}/students/{student.id}/grade", headers=as_user(other_student)
        ).status_code == 403

        progress = client.get(f"/api/courses/{course.id}/students/{student.id}/progress", headers=as_user(student))
        assert progress.json()["porcentaje_avance"] == 0


class TestEnrollmentAPI:
    """Tests for enrollment requests."""

    def test_request_and_accept(self, client, services, admin, course, student):
        other = services.courses.create_course("Homilética")

        created = client.post("/api/enrollment-requests", json={"curso_id": other.id}, headers=as_user(student))
        assert created.status_code == 201
        request_id = created.json()["id"]

        duplicate = client.post("/api/enrollment-requests", json={"curso_id": other.id}, headers=as_user(student))
        assert duplicate.status_code == 409

        assert client.get("/api/enrollment-requests", headers=as_user(student)).status_code == 403
        assert client.get(
            "/api/enrollment-requests", params={"estado": "otro"}, headers=as_user(admin)
        ).status_code == 400
        pending = client.get("/api/enrollment-requests", params={"estado": "pendiente"}, headers=as_user(admin))
        assert pending.json()["count"] == 1

        accepted = client.post(f"/api/enrollment-requests/{request_id}/accept", headers=as_user(admin))
        assert accepted.json()["estado"] == "aceptada"
        assert client.get("/api/courses/mine", headers=as_user(student)).json()["count"] == 2

    def test_reject_with_reason(self, client, services, admin, other_student, course):
        request = services.enrollment.create_request(other_student.id, course.id)
        response = client.post(
            f"/api/enrollment-requests/{request.id}/reject",
            json={"motivo": "Cupo lleno"},
            headers=as_user(admin),
        )
        assert response.json()["motivo_rechazo"] == "Cupo lleno"

        mine = client.get("/api/enrollment-requests/mine", headers=as_user(other_student))
        assert mine.json()["requests"][0]["estado"] == "rechazada"


class TestHomeAndContactAPI:
    """Tests for the public home page and the contact form."""

    HERO = {
        "subtitulo1": "¡Bienvenidos!",
        "subtitulo2": "Clases los sábados",
        "titulo": "ESCUELA BÍBLICA",
        "boton_texto": "Inscríbete",
        "boton_link": "#contacto",
    }

    def test_home_is_public(self, client, services):
        response = client.get("/api/home")
        assert response.status_code == 200
        assert response.json()["hero"]["titulo"] == "ESCUELA BÍBLICA CAVEVID"

    def test_only_admins_edit_home(self, client, admin, student):
        assert client.put("/api/home/hero", json=self.HERO, headers=as_user(student)).status_code == 403

        response = client.put("/api/home/hero", json=self.HERO, headers=as_user(admin))
        assert response.json()["hero"] == self.HERO
        assert client.get("/api/home").json()["hero"]["titulo"] == "ESCUELA BÍBLICA"

        reset = client.post("/api/home/reset", headers=as_user(admin))
        assert reset.json()["hero"]["titulo"] == "ESCUELA BÍBLICA CAVEVID"

    def test_contact_disabled_without_webhook(self, client):
        response = client.post("/api/contact", json={"nombre": "Marta", "celular": "0991234567"})
        assert response.status_code == 503

    def test_contact_forwards_lead(self, client, services):
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(request)
            return httpx.Response(200)

        services.leads = LeadForwarder(
            LeadsConfig(webhook_url="https://hooks.example.org/leads"),
            transport=httpx.MockTransport(handler),
        )
        response = client.post(
            "/api/contact",
            json={"nombre": "Marta", "curso": "Básico", "celular": "0991234567"},
        )
        assert response.status_code == 200
        assert response.json()["enviado"] is True
        assert len(received) == 1

    def test_contact_requires_phone(self, client):
        assert client.post("/api/contact", json={"nombre": "Marta"}).status_code == 422
