"""CLI commands for the school backend.

Commands:
- serve: Run the Web API with uvicorn
- create-user: Create a profile (bootstrap the first admin)
- init-home: Write the default home page configuration
- gradebook: Print a course's gradebook
- student-grade: Print a student's weighted grade
- section-status: Print a student's section progress and locks
- course-stats: Print a course's grade statistics
"""

from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from escuela.config.app_config import load_app_config
from escuela.core.home_config import HOME_DOC_ID
from escuela.core.services import Services, build_services
from escuela.db import collections
from escuela.db.document_store import DocumentStore
from escuela.errors import EscuelaError

app = typer.Typer(
    name="escuela",
    help="Online bible school backend: API server and operator tools.",
    no_args_is_help=True,
)

console = Console()


def _services() -> Services:
    config = load_app_config()
    return build_services(DocumentStore(config.storage.db_path), config)


def _fail(e: Exception) -> NoReturn:
    console.print(f"[red]✗ {e}[/red]")
    raise typer.Exit(code=1)


def _fmt(value: float | None) -> str:
    return "-" if value is None else f"{value:.1f}"


# =============================================================================
# SERVER
# =============================================================================


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", "-p", help="Port"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
) -> None:
    """Run the Web API."""
    import uvicorn

    console.print(f"[green]✓ Escuela API en http://{host}:{port}[/green]")
    uvicorn.run("escuela.web.api:app", host=host, port=port, reload=reload)


# =============================================================================
# ADMINISTRATION
# =============================================================================


@app.command(name="create-user")
def create_user(
    email: str = typer.Argument(..., help="Login email"),
    nombre: str = typer.Argument(..., help="First name"),
    apellido: str = typer.Option("", "--apellido", "-a", help="Last name"),
    rol: str = typer.Option("estudiante", "--rol", "-r", help="admin, profesor or estudiante"),
    user_id: str | None = typer.Option(None, "--id", help="Identity-provider uid"),
) -> None:
    """Create a user profile."""
    try:
        user = _services().users.create_user(email, nombre, apellido, rol=rol, user_id=user_id)
    except EscuelaError as e:
        _fail(e)
    console.print("[green]✓ Usuario creado[/green]")
    console.print(f"  [dim]id:[/dim]  {user.id}")
    console.print(f"  [dim]rol:[/dim] {user.rol}")


@app.command(name="init-home")
def init_home(
    admin_id: str = typer.Option("sistema", "--admin", help="Recorded as the author"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite the current configuration"),
) -> None:
    """Write the default home page configuration."""
    services = _services()
    existing = services.store.collection(collections.HOME_CONFIG).exists(HOME_DOC_ID)
    if existing and not force:
        console.print("[yellow]⚠ La configuración del home ya existe (usa --force para reemplazarla)[/yellow]")
        raise typer.Exit(code=1)
    services.home.initialize(admin_id)
    console.print("[green]✓ Configuración del home inicializada[/green]")


# =============================================================================
# REPORTS
# =============================================================================


@app.command()
def gradebook(
    course_id: str = typer.Argument(..., help="Course id"),
) -> None:
    """Print the gradebook of a course."""
    try:
        book = _services().grading.get_gradebook(course_id)
    except EscuelaError as e:
        _fail(e)

    config = book.configuracion
    console.print(f"\n[bold]{book.curso_titulo}[/bold]")
    console.print(
        f"  [dim]Ponderaciones:[/dim] tareas {config.ponderacion_tareas:g}% · "
        f"exámenes {config.ponderacion_examenes:g}% · final {config.ponderacion_examen_final:g}% · "
        f"asistencia {config.ponderacion_asistencia:g}%  [dim]nota mínima:[/dim] {config.nota_minima:g}\n"
    )

    table = Table(show_header=True, header_style="bold")
    table.add_column("Estudiante")
    table.add_column("Tareas", justify="right")
    table.add_column("Exámenes", justify="right")
    table.add_column("Final", justify="right")
    table.add_column("Asistencia", justify="right")
    table.add_column("Nota", justify="right")
    table.add_column("Estado")

    colors = {"aprobado": "green", "desaprobado": "red", "en_progreso": "yellow"}
    for row in book.estudiantes:
        color = colors.get(row.estado, "white")
        table.add_row(
            row.nombre_estudiante,
            _fmt(row.promedio_tareas),
            _fmt(row.promedio_examenes),
            _fmt(row.calificacion_examen_final),
            _fmt(row.promedio_asistencia),
            f"[bold]{_fmt(row.calificacion_final)}[/bold]",
            f"[{color}]{row.estado}[/{color}]",
        )

    console.print(table)
    console.print(f"[dim]{len(book.estudiantes)} estudiantes[/dim]")


@app.command(name="student-grade")
def student_grade(
    course_id: str = typer.Argument(..., help="Course id"),
    student_id: str = typer.Argument(..., help="Student id"),
) -> None:
    """Print the weighted grade of a student."""
    try:
        grade = _services().grading.compute_student_grade(student_id, course_id)
    except EscuelaError as e:
        _fail(e)

    console.print(f"\n[bold]Calificación de {student_id}[/bold]")
    console.print(f"  [dim]tareas:[/dim]        {_fmt(grade.promedio_tareas)}")
    console.print(f"  [dim]exámenes:[/dim]      {_fmt(grade.promedio_examenes)}")
    console.print(f"  [dim]examen final:[/dim]  {_fmt(grade.promedio_examen_final)}")
    console.print(f"  [dim]asistencia:[/dim]    {_fmt(grade.promedio_asistencia)}")
    console.print(f"  [bold]nota final:[/bold]    {_fmt(grade.calificacion_final)} ({grade.estado})")


@app.command(name="section-status")
def section_status(
    course_id: str = typer.Argument(..., help="Course id"),
    student_id: str = typer.Argument(..., help="Student id"),
) -> None:
    """Print progress and lock state of every section for a student."""
    services = _services()
    try:
        sections = services.sections.get_sections_by_course(course_id)
        states = services.progress.get_course_section_states(course_id, student_id)
    except EscuelaError as e:
        _fail(e)

    titles = {s.id: s.titulo for s in sections}
    table = Table(show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Sección")
    table.add_column("Avance", justify="right")
    table.add_column("Estado")

    for index, state in enumerate(states, start=1):
        status = "[red]🔒 bloqueada[/red]" if state.bloqueada else "[green]disponible[/green]"
        table.add_row(
            str(index),
            titles.get(state.seccion_id, state.seccion_id),
            f"{state.porcentaje_completado}%",
            status,
        )

    console.print(table)


@app.command(name="course-stats")
def course_stats(
    course_id: str = typer.Argument(..., help="Course id"),
) -> None:
    """Print grade statistics of a course."""
    try:
        stats = _services().grading.get_course_stats(course_id)
    except EscuelaError as e:
        _fail(e)

    console.print(f"\n[bold]Estadísticas del curso {course_id}[/bold]")
    console.print(f"  [dim]estudiantes:[/dim]      {stats.total_estudiantes}")
    console.print(f"  [dim]aprobados:[/dim]        {stats.estudiantes_aprobados}")
    console.print(f"  [dim]desaprobados:[/dim]     {stats.estudiantes_desaprobados}")
    console.print(f"  [dim]en progreso:[/dim]      {stats.estudiantes_en_progreso}")
    console.print(f"  [dim]promedio general:[/dim] {stats.promedio_general:.2f}")
    console.print(f"  [dim]tasa aprobación:[/dim]  {stats.tasa_aprobacion:.2f}%")

    table = Table(show_header=True, header_style="bold")
    table.add_column("Rango")
    table.add_column("Estudiantes", justify="right")
    for band, count in stats.distribucion_notas.items():
        table.add_row(band, str(count))
    console.print(table)


if __name__ == "__main__":
    app()
