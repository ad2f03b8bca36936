"""Pydantic schemas for the Web API.

Request bodies and response models for users, courses, sections, lessons,
tasks, exams, attendance, grading, enrollment, home and contact.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


# =============================================================================
# USER SCHEMAS
# =============================================================================


class UserCreate(BaseModel):
    """Request body for creating a user (admin)."""

    email: str = Field(..., min_length=3, max_length=200)
    nombre: str = Field(..., min_length=1, max_length=100)
    apellido: str = Field(default="", max_length=100)
    rol: Literal["admin", "profesor", "estudiante"] = "estudiante"
    user_id: str | None = None


class UserRegister(BaseModel):
    """Request body for public self-registration."""

    email: str = Field(..., min_length=3, max_length=200)
    nombre: str = Field(..., min_length=1, max_length=100)
    apellido: str = Field(default="", max_length=100)
    user_id: str | None = None


class UserUpdate(BaseModel):
    email: str | None = None
    nombre: str | None = None
    apellido: str | None = None
    foto_perfil: str | None = None
    activo: bool | None = None


class RoleChange(BaseModel):
    rol: Literal["admin", "profesor", "estudiante"]


class UserResponse(BaseModel):
    id: str
    email: str
    nombre: str
    apellido: str
    rol: str
    foto_perfil: str | None = None
    fecha_registro: str | None = None
    activo: bool
    cursos_inscritos: list[str]
    cursos_asignados: list[str]


class UserListResponse(BaseModel):
    users: list[UserResponse]
    count: int


# =============================================================================
# COURSE SCHEMAS
# =============================================================================


class CourseCreate(BaseModel):
    titulo: str = Field(..., min_length=1, max_length=200)
    descripcion: str = ""
    imagen: str = ""
    profesor_id: str = ""
    activo: bool = True


class CourseUpdate(BaseModel):
    titulo: str | None = None
    descripcion: str | None = None
    imagen: str | None = None
    profesor_id: str | None = None
    activo: bool | None = None


class CourseResponse(BaseModel):
    id: str
    titulo: str
    descripcion: str
    imagen: str
    profesor_id: str
    fecha_creacion: str | None = None
    activo: bool
    estudiantes: list[str]
    secciones: list[str]


class CourseListResponse(BaseModel):
    courses: list[CourseResponse]
    count: int


class StudentEnrollment(BaseModel):
    estudiante_id: str


# =============================================================================
# SECTION SCHEMAS
# =============================================================================


class SectionCreate(BaseModel):
    """Request body for creating a section; `orden` defaults to the end."""

    titulo: str = Field(..., min_length=1, max_length=200)
    descripcion: str = ""
    orden: int | None = None
    desbloqueo_progresivo: bool = False
    prerequisitos: list[str] = Field(default_factory=list)
    requiere_completar_todo: bool = False
    porcentaje_minimo: int = Field(default=70, ge=0, le=100)


class SectionUpdate(BaseModel):
    titulo: str | None = None
    descripcion: str | None = None
    orden: int | None = None
    desbloqueo_progresivo: bool | None = None
    prerequisitos: list[str] | None = None
    requiere_completar_todo: bool | None = None
    porcentaje_minimo: int | None = Field(default=None, ge=0, le=100)


class SectionElementResponse(BaseModel):
    id: str
    tipo: str
    orden: int


class SectionResponse(BaseModel):
    id: str
    curso_id: str
    titulo: str
    descripcion: str
    orden: int
    desbloqueo_progresivo: bool
    prerequisitos: list[str]
    requiere_completar_todo: bool
    porcentaje_minimo: int | None = None
    elementos: list[SectionElementResponse]


class SectionListResponse(BaseModel):
    sections: list[SectionResponse]
    count: int


class ReorderRequest(BaseModel):
    """Ids in their new order."""

    ids: list[str] = Field(..., min_length=1)


class SectionProgressResponse(BaseModel):
    id: str
    seccion_id: str
    estudiante_id: str
    lecciones_completadas: list[str]
    tareas_entregadas: list[str]
    examenes_realizados: list[str]
    porcentaje_completado: int
    bloqueada: bool
    cumple_requisitos: bool
    secciones_prerrequisito: list[str]
    ultima_actualizacion: str | None = None


class SectionStatesResponse(BaseModel):
    sections: list[SectionProgressResponse]
    count: int


class AccessResponse(BaseModel):
    permitido: bool
    mensaje: str | None = None


# =============================================================================
# LESSON SCHEMAS
# =============================================================================


class LessonCreate(BaseModel):
    titulo: str = Field(..., min_length=1, max_length=200)
    tipo: Literal["texto", "imagen", "pdf", "video"] = "texto"
    contenido: str = ""
    url_archivo: str | None = None
    url_youtube: str | None = None
    orden: int | None = None


class LessonUpdate(BaseModel):
    titulo: str | None = None
    tipo: Literal["texto", "imagen", "pdf", "video"] | None = None
    contenido: str | None = None
    url_archivo: str | None = None
    url_youtube: str | None = None
    orden: int | None = None


class LessonResponse(BaseModel):
    id: str
    seccion_id: str
    titulo: str
    tipo: str
    contenido: str
    url_archivo: str | None = None
    url_youtube: str | None = None
    orden: int
    tareas: list[str]
    fecha_creacion: str | None = None


class LessonListResponse(BaseModel):
    lessons: list[LessonResponse]
    count: int


class LessonCompletionResponse(BaseModel):
    id: str
    leccion_id: str
    estudiante_id: str
    completada: bool
    fecha_completado: str | None = None


# =============================================================================
# TASK SCHEMAS
# =============================================================================


class TaskCreate(BaseModel):
    titulo: str = Field(..., min_length=1, max_length=200)
    fecha_inicio: datetime
    fecha_fin: datetime
    descripcion: str = ""
    instrucciones: str = ""
    tipo_entrega: Literal["texto", "archivo", "ambos"] = "texto"
    ponderacion: float = Field(default=10, ge=0, le=100)
    archivos_permitidos: list[str] = Field(default_factory=list)
    tamano_maximo: float = Field(default=5, gt=0)
    visible: bool = True


class TaskUpdate(BaseModel):
    titulo: str | None = None
    fecha_inicio: datetime | None = None
    fecha_fin: datetime | None = None
    descripcion: str | None = None
    instrucciones: str | None = None
    tipo_entrega: Literal["texto", "archivo", "ambos"] | None = None
    ponderacion: float | None = Field(default=None, ge=0, le=100)
    archivos_permitidos: list[str] | None = None
    tamano_maximo: float | None = None
    visible: bool | None = None


class TaskResponse(BaseModel):
    id: str
    leccion_id: str
    titulo: str
    descripcion: str
    instrucciones: str
    tipo_entrega: str
    fecha_inicio: str | None = None
    fecha_fin: str | None = None
    ponderacion: float
    archivos_permitidos: list[str]
    tamano_maximo: float
    visible: bool
    fecha_creacion: str | None = None


class TaskListResponse(BaseModel):
    tasks: list[TaskResponse]
    count: int


class SubmissionCreate(BaseModel):
    contenido_texto: str | None = None
    archivos: list[str] = Field(default_factory=list)


class SubmissionGrade(BaseModel):
    calificacion: float = Field(..., ge=0, le=100)
    retroalimentacion: str | None = None


class SubmissionResponse(BaseModel):
    id: str
    tarea_id: str
    estudiante_id: str
    fecha_entrega: str | None = None
    contenido_texto: str | None = None
    archivos: list[str]
    calificacion: float | None = None
    retroalimentacion: str | None = None
    estado: str


class SubmissionListResponse(BaseModel):
    submissions: list[SubmissionResponse]
    count: int


class StudentTaskResponse(BaseModel):
    tarea: TaskResponse
    entrega: SubmissionResponse | None = None


class StudentTaskListResponse(BaseModel):
    tasks: list[StudentTaskResponse]
    count: int


class GradeResponse(BaseModel):
    id: str
    estudiante_id: str
    curso_id: str
    tarea_id: str | None = None
    examen_id: str | None = None
    tipo: str
    calificacion: float
    ponderacion: float
    puntos_final: float
    fecha_calificacion: str | None = None
    retroalimentacion: str | None = None
    profesor_id: str


class GradeListResponse(BaseModel):
    grades: list[GradeResponse]
    count: int
    promedio: float


# =============================================================================
# EXAM SCHEMAS
# =============================================================================


class AnswerOptionSchema(BaseModel):
    id: str
    texto: str
    es_correcta: bool = False


class QuestionSchema(BaseModel):
    """A question as authored; `id` is generated when missing."""

    id: str | None = None
    texto: str = Field(..., min_length=1)
    tipo: Literal["multiple_unica", "multiple_multiple", "verdadero_falso", "corta", "completar"]
    respuesta_correcta: str | list[str]
    puntos: float = Field(default=1, gt=0)
    opciones: list[AnswerOptionSchema] = Field(default_factory=list)
    feedback: str | None = None


class ExamCreate(BaseModel):
    titulo: str = Field(..., min_length=1, max_length=200)
    fecha_inicio: datetime
    fecha_fin: datetime
    preguntas: list[QuestionSchema] = Field(default_factory=list)
    descripcion: str = ""
    duracion_minutos: int = Field(default=60, ge=0)
    intentos_permitidos: int = Field(default=1, ge=1)
    mostrar_respuestas: bool = False
    mezclar_preguntas: bool = False
    ponderacion: float = Field(default=0, ge=0, le=100)
    nota_minima: float = Field(default=70, ge=0, le=100)
    es_examen_final: bool = False
    visible: bool = True


class ExamUpdate(BaseModel):
    titulo: str | None = None
    fecha_inicio: datetime | None = None
    fecha_fin: datetime | None = None
    preguntas: list[QuestionSchema] | None = None
    descripcion: str | None = None
    duracion_minutos: int | None = Field(default=None, ge=0)
    intentos_permitidos: int | None = Field(default=None, ge=1)
    mostrar_respuestas: bool | None = None
    mezclar_preguntas: bool | None = None
    ponderacion: float | None = Field(default=None, ge=0, le=100)
    nota_minima: float | None = Field(default=None, ge=0, le=100)
    es_examen_final: bool | None = None
    visible: bool | None = None


class ExamResponse(BaseModel):
    """An exam; questions carry answers only for teachers."""

    id: str
    seccion_id: str
    titulo: str
    descripcion: str
    fecha_inicio: str | None = None
    fecha_fin: str | None = None
    duracion_minutos: int
    intentos_permitidos: int
    mostrar_respuestas: bool
    mezclar_preguntas: bool
    ponderacion: float
    nota_minima: float
    es_examen_final: bool
    visible: bool
    preguntas: list[dict[str, Any]]
    fecha_creacion: str | None = None


class ExamListResponse(BaseModel):
    exams: list[ExamResponse]
    count: int


class AnswerSubmit(BaseModel):
    pregunta_id: str
    respuesta: str | list[str]


class AttemptFinish(BaseModel):
    respuestas: list[AnswerSubmit] = Field(default_factory=list)


class AttemptGradeOverride(BaseModel):
    calificacion: float = Field(..., ge=0, le=100)


class AttemptResponse(BaseModel):
    id: str
    examen_id: str
    estudiante_id: str
    numero_intento: int
    fecha_inicio: str | None = None
    fecha_fin: str | None = None
    respuestas: list[dict[str, Any]]
    calificacion: float | None = None
    estado: str
    calificacion_modificada_manualmente: bool
    fecha_modificacion_calificacion: str | None = None


class AttemptListResponse(BaseModel):
    attempts: list[AttemptResponse]
    count: int


# =============================================================================
# ATTENDANCE SCHEMAS
# =============================================================================


class AttendanceEntrySchema(BaseModel):
    """One row of the bulk form; a missing estado is recorded as F."""

    estudiante_id: str
    estado: Literal["P", "T", "F", "J"] | None = None


class AttendanceBulkCreate(BaseModel):
    fecha: date
    registros: list[AttendanceEntrySchema] = Field(..., min_length=1)


class AttendanceResponse(BaseModel):
    id: str
    curso_id: str
    estudiante_id: str
    fecha: str
    estado: str
    puntaje: float
    registrado_por: str
    fecha_registro: str | None = None


class AttendanceListResponse(BaseModel):
    records: list[AttendanceResponse]
    count: int


class StudentAttendanceResponse(BaseModel):
    records: list[AttendanceResponse]
    count: int
    promedio: float


class AttendanceStatsResponse(BaseModel):
    total_registros: int
    promedio_general: float
    por_estado: dict[str, int]


# =============================================================================
# GRADING SCHEMAS
# =============================================================================


class GradeScaleSchema(BaseModel):
    aprobado: float = Field(default=70, ge=0, le=100)
    desaprobado: float = Field(default=70, ge=0, le=100)
    excelente: float = Field(default=90, ge=0, le=100)
    bueno: float = Field(default=75, ge=0, le=100)
    regular: float = Field(default=60, ge=0, le=100)


class GradeConfigCreate(BaseModel):
    ponderacion_tareas: float = Field(..., ge=0, le=100)
    ponderacion_examenes: float = Field(..., ge=0, le=100)
    ponderacion_examen_final: float = Field(default=0, ge=0, le=100)
    ponderacion_asistencia: float = Field(default=0, ge=0, le=100)
    nota_minima: float = Field(default=70, ge=0, le=100)
    escala: GradeScaleSchema | None = None


class GradeConfigUpdate(BaseModel):
    ponderacion_tareas: float | None = Field(default=None, ge=0, le=100)
    ponderacion_examenes: float | None = Field(default=None, ge=0, le=100)
    ponderacion_examen_final: float | None = Field(default=None, ge=0, le=100)
    ponderacion_asistencia: float | None = Field(default=None, ge=0, le=100)
    nota_minima: float | None = Field(default=None, ge=0, le=100)
    escala: GradeScaleSchema | None = None


# =============================================================================
# ENROLLMENT SCHEMAS
# =============================================================================


class EnrollmentRequestCreate(BaseModel):
    curso_id: str


class EnrollmentRejection(BaseModel):
    motivo: str | None = None


class EnrollmentRequestResponse(BaseModel):
    id: str
    estudiante_id: str
    estudiante_nombre: str
    estudiante_email: str
    curso_id: str
    curso_nombre: str
    fecha_solicitud: str | None = None
    estado: str
    motivo_rechazo: str | None = None
    fecha_respuesta: str | None = None
    respondido_por: str | None = None


class EnrollmentRequestListResponse(BaseModel):
    requests: list[EnrollmentRequestResponse]
    count: int


# =============================================================================
# HOME & CONTACT SCHEMAS
# =============================================================================


class HeroUpdate(BaseModel):
    subtitulo1: str
    subtitulo2: str
    titulo: str
    boton_texto: str
    boton_link: str


class HomeUpdate(BaseModel):
    hero: HeroUpdate | None = None
    seccion_cursos: dict[str, Any] | None = None


class ContactForm(BaseModel):
    nombre: str = Field(..., max_length=200)
    curso: str = Field(default="", max_length=200)
    celular: str = Field(..., max_length=50)
    observacion: str = Field(default="", max_length=2000)


class ContactResponse(BaseModel):
    enviado: bool
    mensaje: str


# =============================================================================
# HEALTH SCHEMAS
# =============================================================================


class HealthResponse(BaseModel):
    status: str
    version: str
    timestamp: str
