"""Tests for exams, attempts and the auto-grader."""

import random
from datetime import timedelta

import pytest

from escuela.core.exams import (
    Answer,
    AnswerOption,
    AttemptAlreadyFinishedError,
    AttemptLimitReachedError,
    ExamUnavailableError,
    InvalidExamError,
    Question,
    grade_answers,
    is_answer_correct,
)
from escuela.core.grades import InvalidGradeError


def make_questions() -> list[Question]:
    return [
        Question(
            id="q1",
            texto="¿Quién escribió Romanos?",
            tipo="multiple_unica",
            respuesta_correcta="b",
            puntos=2,
            opciones=[AnswerOption("a", "Pedro"), AnswerOption("b", "Pablo", es_correcta=True)],
        ),
        Question(
            id="q2",
            texto="Libros del Pentateuco",
            tipo="multiple_multiple",
            respuesta_correcta=["gen", "exo"],
            puntos=2,
        ),
        Question(id="q3", texto="Jonás fue tragado por un pez", tipo="verdadero_falso", respuesta_correcta="verdadero"),
        Question(id="q4", texto="En el principio era el ___", tipo="completar", respuesta_correcta="Verbo"),
    ]


@pytest.fixture
def exam(services, section, open_window):
    return services.exams.create_exam(
        section.id,
        "Parcial",
        *open_window,
        preguntas=make_questions(),
        duracion_minutos=30,
        intentos_permitidos=2,
    )


class TestAutoGrader:
    """Tests for the pure grading functions."""

    def test_single_answers_ignore_case_and_spaces(self):
        question = make_questions()[3]
        assert is_answer_correct(question, "  verbo ")
        assert not is_answer_correct(question, "Logos")

    def test_multiple_answers_compare_as_sets(self):
        question = make_questions()[1]
        assert is_answer_correct(question, ["exo", "gen"])
        assert not is_answer_correct(question, ["gen"])
        assert not is_answer_correct(question, "gen")

    def test_grade_answers(self):
        answers = [
            Answer("q1", "b"),
            Answer("q2", ["gen"]),
            Answer("q3", "Verdadero"),
            Answer("ghost", "x"),
        ]
        result = grade_answers(make_questions(), answers)

        assert result.puntos_totales == 6
        assert result.puntos_obtenidos == 3
        assert result.calificacion == pytest.approx(50)
        assert [a.es_correcta for a in result.respuestas] == [True, False, True, False]

    def test_repeated_answers_count_once(self):
        questions = [
            Question(id="q1", texto="?", tipo="corta", respuesta_correcta="si"),
            Question(id="q2", texto="?", tipo="corta", respuesta_correcta="no"),
        ]
        result = grade_answers(questions, [Answer("q1", "si"), Answer("q1", "si"), Answer("q1", "si")])

        assert result.puntos_obtenidos == 1
        assert result.calificacion == pytest.approx(50)
        assert len(result.respuestas) == 1

    def test_last_repeated_answer_wins(self):
        questions = [Question(id="q1", texto="?", tipo="corta", respuesta_correcta="si")]
        result = grade_answers(questions, [Answer("q1", "si"), Answer("q1", "no")])

        assert result.calificacion == 0
        assert result.respuestas[0].respuesta == "no"

    def test_no_points_scores_zero(self):
        questions = [Question(id="q", texto="?", tipo="corta", respuesta_correcta="x", puntos=0)]
        assert grade_answers(questions, [Answer("q", "x")]).calificacion == 0


class TestExamAuthoring:
    """Tests for exam CRUD and validation."""

    def test_duplicate_question_ids(self, services, section, open_window):
        questions = make_questions()
        questions[1].id = "q1"
        with pytest.raises(InvalidExamError):
            services.exams.create_exam(section.id, "Mal", *open_window, preguntas=questions)

    def test_multiple_multiple_needs_list(self, services, section, open_window):
        bad = Question(id="q", texto="?", tipo="multiple_multiple", respuesta_correcta="a")
        with pytest.raises(InvalidExamError):
            services.exams.create_exam(section.id, "Mal", *open_window, preguntas=[bad])

    def test_zero_attempts_rejected(self, services, exam):
        with pytest.raises(InvalidExamError):
            services.exams.update_exam(exam.id, intentos_permitidos=0)

    def test_update_questions_from_dicts(self, services, exam):
        updated = services.exams.update_exam(
            exam.id, preguntas=[{"id": "n1", "texto": "?", "tipo": "corta", "respuesta_correcta": "si", "puntos": 1}]
        )
        assert [q.id for q in updated.preguntas] == ["n1"]
        assert services.exams.require_exam(exam.id).puntos_totales == 1

    def test_student_view_hides_answers(self, services, exam):
        view = services.exams.student_view(exam)
        assert all("respuesta_correcta" not in q for q in view["preguntas"])
        assert all("es_correcta" not in o for q in view["preguntas"] for o in q["opciones"])

    def test_student_view_shuffles_when_configured(self, services, exam):
        services.exams.update_exam(exam.id, mezclar_preguntas=True)
        view = services.exams.student_view(services.exams.require_exam(exam.id), random.Random(3))
        assert sorted(q["id"] for q in view["preguntas"]) == ["q1", "q2", "q3", "q4"]

    def test_delete_exam_removes_attempts(self, services, section, exam, student):
        attempt = services.exams.start_attempt(exam.id, student.id)
        services.exams.delete_exam(exam.id)

        assert services.exams.get_attempt(attempt.id) is None
        assert exam.id not in services.sections.require_section(section.id).element_ids()


class TestAttempts:
    """Tests for the attempt lifecycle."""

    def test_finish_grades_attempt(self, services, exam, student):
        attempt = services.exams.start_attempt(exam.id, student.id)
        finished = services.exams.finish_attempt(
            attempt.id,
            [Answer("q1", "b"), Answer("q2", ["gen", "exo"]), Answer("q3", "verdadero"), Answer("q4", "Verbo")],
        )
        assert finished.estado == "finalizado"
        assert finished.calificacion == pytest.approx(100)

        result = services.exams.get_attempt_result(attempt.id)
        assert result["aprobado"] is True
        assert result["mostrar_respuestas"] is False
        assert "respuesta_correcta" not in result["preguntas"][0]

    def test_start_resumes_attempt_in_progress(self, services, exam, student):
        first = services.exams.start_attempt(exam.id, student.id)
        again = services.exams.start_attempt(exam.id, student.id)
        assert again.id == first.id

    def test_attempt_limit(self, services, exam, student):
        for numero in (1, 2):
            attempt = services.exams.start_attempt(exam.id, student.id)
            assert attempt.numero_intento == numero
            services.exams.finish_attempt(attempt.id, [])

        with pytest.raises(AttemptLimitReachedError):
            services.exams.start_attempt(exam.id, student.id)

    def test_finishing_twice_rejected(self, services, exam, student):
        attempt = services.exams.start_attempt(exam.id, student.id)
        services.exams.finish_attempt(attempt.id, [])
        with pytest.raises(AttemptAlreadyFinishedError):
            services.exams.finish_attempt(attempt.id, [])

    def test_late_finish_is_timed_out(self, services, exam, student, clock):
        attempt = services.exams.start_attempt(exam.id, student.id)
        clock.advance(minutes=31)
        finished = services.exams.finish_attempt(attempt.id, [Answer("q1", "b")])

        assert finished.estado == "tiempo_agotado"
        assert finished.calificacion == pytest.approx(100 * 2 / 6)

    def test_hidden_exam_cannot_start(self, services, exam, student):
        services.exams.update_exam(exam.id, visible=False)
        with pytest.raises(ExamUnavailableError):
            services.exams.start_attempt(exam.id, student.id)

    def test_closed_window_cannot_start(self, services, exam, student, clock):
        clock.advance(days=2)
        with pytest.raises(ExamUnavailableError):
            services.exams.start_attempt(exam.id, student.id)

    def test_manual_override(self, services, exam, student):
        attempt = services.exams.start_attempt(exam.id, student.id)
        services.exams.finish_attempt(attempt.id, [])

        overridden = services.exams.update_attempt_grade(attempt.id, 80)
        assert overridden.calificacion_modificada_manualmente is True
        assert services.exams.require_attempt(attempt.id).calificacion == 80

        with pytest.raises(InvalidGradeError):
            services.exams.update_attempt_grade(attempt.id, -1)

    def test_finished_attempt_counts_towards_section(self, services, section, exam, student):
        attempt = services.exams.start_attempt(exam.id, student.id)
        services.exams.finish_attempt(attempt.id, [])

        progress = services.progress.compute_section_progress(section.id, student.id)
        assert progress.examenes_realizados == [exam.id]
        assert progress.porcentaje_completado == 100

    def test_attempts_ordered_newest_first(self, services, exam, student, clock):
        first = services.exams.start_attempt(exam.id, student.id)
        services.exams.finish_attempt(first.id, [])
        clock.advance(minutes=1)
        second = services.exams.start_attempt(exam.id, student.id)

        attempts = services.exams.get_attempts_by_student_and_exam(student.id, exam.id)
        assert [a.id for a in attempts] == [second.id, first.id]
        assert services.exams.get_attempts_by_exam(exam.id)[0].id == second.id


def test_exam_window_boundaries(services, section, clock):
    exam = services.exams.create_exam(section.id, "Final", clock.now, clock.now + timedelta(hours=1))
    assert services.exams.is_exam_available(exam)
    clock.advance(hours=1, seconds=1)
    assert not services.exams.is_exam_available(exam)
