"""Tests for the weighted grade engine."""

from datetime import date

import pytest

from escuela.core.attendance import AttendanceEntry
from escuela.core.exams import Question
from escuela.core.grading import (
    GradeComponents,
    GradeConfig,
    GradeConfigExistsError,
    GradeConfigNotFoundError,
    InvalidWeightsError,
    check_weights,
    grade_distribution,
    grade_state,
    round_2,
    weighted_final,
)
from escuela.errors import ValidationError

WEIGHTS = {
    "ponderacion_tareas": 40,
    "ponderacion_examenes": 30,
    "ponderacion_examen_final": 20,
    "ponderacion_asistencia": 10,
}


@pytest.fixture
def config(services, course):
    return services.grading.create_config(course.id, **WEIGHTS)


@pytest.fixture
def graded_course(services, course, section, student, teacher, config, open_window):
    """Course where `student` has one task, a practice exam, a final and two days of attendance.

    Task 80, best practice attempt 90, final 70, attendance P+T (75).
    """
    lesson = services.lessons.create_lesson(section.id, "Lectura")
    task = services.tasks.create_task(lesson.id, "Resumen", *open_window)
    submission = services.tasks.submit_task(task.id, student.id, contenido_texto="Listo")
    services.tasks.grade_submission(submission.id, 80, profesor_id=teacher.id)

    question = Question(id="q1", texto="?", tipo="corta", respuesta_correcta="si")
    practice = services.exams.create_exam(
        section.id, "Parcial", *open_window, preguntas=[question], intentos_permitidos=2
    )
    for score in (60, 90):
        attempt = services.exams.start_attempt(practice.id, student.id)
        services.exams.finish_attempt(attempt.id, [])
        services.exams.update_attempt_grade(attempt.id, score)

    final = services.exams.create_exam(section.id, "Final", *open_window, preguntas=[question], es_examen_final=True)
    attempt = services.exams.start_attempt(final.id, student.id)
    services.exams.finish_attempt(attempt.id, [])
    services.exams.update_attempt_grade(attempt.id, 70)

    services.attendance.record_bulk(course.id, [AttendanceEntry(student.id, "P")], date(2025, 3, 10), teacher.id)
    services.attendance.record_bulk(course.id, [AttendanceEntry(student.id, "T")], date(2025, 3, 11), teacher.id)

    return {"task": task, "practice": practice, "final": final, "lesson": lesson}


class TestPureHelpers:
    """Tests for the weight, state and distribution helpers."""

    def test_weights_must_sum_100(self):
        check_weights(WEIGHTS)
        with pytest.raises(InvalidWeightsError) as exc:
            check_weights({**WEIGHTS, "ponderacion_asistencia": 0})
        assert exc.value.total == 90

    def test_weight_out_of_range(self):
        with pytest.raises(ValidationError):
            check_weights({"ponderacion_tareas": 120, "ponderacion_examenes": -20})

    def test_weighted_final(self):
        config = GradeConfig(curso_id="c", **WEIGHTS)
        components = GradeComponents(tareas=80, examenes=90, examen_final=70, asistencia=75)
        assert weighted_final(components, config) == pytest.approx(80.5)

    @pytest.mark.parametrize("value,expected", [(0.125, 0.13), (0.625, 0.63), (69.994, 69.99), (80.5, 80.5)])
    def test_round_2_half_up(self, value, expected):
        assert round_2(value) == pytest.approx(expected)

    def test_weighted_final_rounds_half_up(self):
        config = GradeConfig(
            curso_id="c",
            ponderacion_tareas=10,
            ponderacion_examenes=90,
        )
        components = GradeComponents(tareas=1.25, examenes=0, examen_final=0, asistencia=0)
        assert weighted_final(components, config) == pytest.approx(0.13)

    @pytest.mark.parametrize(
        "final,has_activity,expected",
        [
            (70, False, "aprobado"),
            (69.99, True, "desaprobado"),
            (0, False, "en_progreso"),
        ],
    )
    def test_grade_state(self, final, has_activity, expected):
        assert grade_state(final, 70, has_activity) == expected

    def test_distribution_buckets(self):
        config = GradeConfig(curso_id="c", **WEIGHTS)
        dist = grade_distribution([95, 90, 80, 72, 70, 65, 10], config)
        assert dist == {"excelente": 2, "bueno": 1, "regular": 2, "desaprobado": 2}


class TestGradeConfig:
    """Tests for config CRUD."""

    def test_create_and_get(self, services, course, config):
        stored = services.grading.require_config(course.id)
        assert stored.id == course.id
        assert stored.total_weight == 100
        assert stored.escala.aprobado == 70

    def test_duplicate_rejected(self, services, course, config):
        with pytest.raises(GradeConfigExistsError):
            services.grading.create_config(course.id, **WEIGHTS)

    def test_invalid_weights_rejected(self, services, course):
        with pytest.raises(InvalidWeightsError):
            services.grading.create_config(course.id, ponderacion_tareas=50, ponderacion_examenes=30)

    def test_update_revalidates_merged_weights(self, services, course, config):
        with pytest.raises(InvalidWeightsError):
            services.grading.update_config(course.id, ponderacion_tareas=50)

        updated = services.grading.update_config(
            course.id, ponderacion_tareas=50, ponderacion_asistencia=0, escala={"excelente": 95}
        )
        assert updated.ponderacion_tareas == 50
        assert updated.escala.excelente == 95
        assert updated.escala.bueno == 75

    def test_default_config(self, services, course):
        default = services.grading.default_config(course.id)
        assert default.total_weight == 100
        assert services.grading.get_config(course.id) is None

    def test_missing_config(self, services, course, student):
        with pytest.raises(GradeConfigNotFoundError):
            services.grading.compute_student_grade(student.id, course.id)


class TestStudentGrade:
    """Tests for compute_student_grade."""

    def test_components_and_final(self, services, course, student, graded_course):
        grade = services.grading.compute_student_grade(student.id, course.id)

        assert grade.promedio_tareas == pytest.approx(80)
        assert grade.promedio_examenes == pytest.approx(90)
        assert grade.promedio_examen_final == pytest.approx(70)
        assert grade.promedio_asistencia == pytest.approx(75)
        assert grade.calificacion_final == pytest.approx(80.5)
        assert grade.estado == "aprobado"

    def test_without_activity_is_in_progress(self, services, course, other_student, config):
        services.courses.enroll_student(course.id, other_student.id)
        grade = services.grading.compute_student_grade(other_student.id, course.id)
        assert grade.calificacion_final == 0
        assert grade.estado == "en_progreso"

    def test_section_order_does_not_change_grade(self, services, course, section, student, graded_course):
        before = services.grading.compute_student_grade(student.id, course.id).calificacion_final
        extra = services.sections.create_section(course.id, "Extra")
        services.sections.reorder_sections([extra.id, section.id])
        after = services.grading.compute_student_grade(student.id, course.id).calificacion_final
        assert after == before


class TestGradebook:
    """Tests for the gradebook and course statistics."""

    def test_gradebook_rows(self, services, course, student, other_student, graded_course):
        services.courses.enroll_student(course.id, other_student.id)
        gradebook = services.grading.get_gradebook(course.id)

        assert gradebook.curso_titulo == "Vida Cristiana"
        assert [c.tipo for c in gradebook.columnas] == ["tarea", "examen", "examen"]
        assert [r.estudiante_id for r in gradebook.estudiantes] == [student.id, other_student.id]

        row = gradebook.estudiantes[0]
        assert row.nombre_estudiante == "Eva Estudiante"
        assert row.tareas == {graded_course["task"].id: 80}
        assert row.examenes == {graded_course["practice"].id: 90, graded_course["final"].id: 70}
        assert row.total_asistencias == 2
        assert row.calificacion_final == pytest.approx(80.5)

        empty = gradebook.estudiantes[1]
        assert empty.tareas == {graded_course["task"].id: None}
        assert empty.estado == "en_progreso"

    def test_course_stats(self, services, course, other_student, graded_course):
        services.courses.enroll_student(course.id, other_student.id)
        stats = services.grading.get_course_stats(course.id)

        assert stats.total_estudiantes == 2
        assert stats.estudiantes_aprobados == 1
        assert stats.estudiantes_en_progreso == 1
        assert stats.estudiantes_desaprobados == 0
        assert stats.promedio_general == pytest.approx(40.25)
        assert stats.tasa_aprobacion == pytest.approx(50.0)
        assert stats.distribucion_notas == {"excelente": 0, "bueno": 1, "regular": 0, "desaprobado": 1}

    def test_course_progress(self, services, course, student, graded_course):
        progress = services.grading.get_course_progress(student.id, course.id)

        assert progress.lecciones_totales == 1
        assert progress.tareas_entregadas == [graded_course["task"].id]
        assert set(progress.examenes_realizados) == {graded_course["practice"].id, graded_course["final"].id}
        assert progress.porcentaje_avance == 75

        services.lessons.mark_completed(student.id, graded_course["lesson"].id)
        assert services.grading.get_course_progress(student.id, course.id).porcentaje_avance == 100
