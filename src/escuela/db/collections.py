"""Collection names used by the services.

Names match the ones already present in the school's database.
"""

USERS = "users"
COURSES = "cursos"
SECTIONS = "secciones"
LESSONS = "lecciones"
LESSON_PROGRESS = "progresoLecciones"
TASKS = "tareas"
SUBMISSIONS = "entregas"
EXAMS = "examenes"
ATTEMPTS = "intentos"
GRADES = "calificaciones"
GRADE_CONFIGS = "configuracionCalificaciones"
SECTION_PROGRESS = "progreso"
ATTENDANCE = "asistencias"
ENROLLMENT_REQUESTS = "solicitudes-inscripcion"
HOME_CONFIG = "configuracion-home"
