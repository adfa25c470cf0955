"""CLI commands for the classroom platform.

Gradebook:
- add-assignment: add a grid column
- set-grade / clear-grade: edit one grid cell
- gradebook, risk, analytics: inspect a class instance
- export: write a CSV or JSON export

Knowledge base:
- kb-add, kb-paste, kb-list, kb-delete

Generation and progress:
- generate-lessons: fill lessons without content (streamed progress)
- mind-map: build a course mind map (polled job)
- progress: learner progress through a base class

Server:
- init-db, serve
"""

import asyncio
import mimetypes
from pathlib import Path

import typer
from rich.console import Console

from classroom.client.http_client import BackendError, ClassroomClient
from classroom.core.analytics import calculate_analytics
from classroom.core.export import ExportError, ExportOptions, export_gradebook
from classroom.core.generation_jobs import (
    JobConflictError,
    JobNotFoundError,
    build_progress_update,
    run_mind_map_job,
    start_mind_map_job,
)
from classroom.core.grade_entry import (
    VIEW_MODES,
    GradeEntryError,
    build_grade,
    format_grade_cell,
    parse_grade_cell,
)
from classroom.core.knowledge_base import (
    KnowledgeBaseError,
    KnowledgeBaseIngestor,
    KnowledgeBaseList,
    delete_document,
)
from classroom.core.lesson_generation import stream_generate_all_lessons
from classroom.core.progress_stream import GenerationEvent, GenerationTracker, ProgressEvent
from classroom.core.risk import classify_risk, filter_students
from classroom.db import documents_repository
from classroom.db import gradebook_repository as repo
from classroom.db.database import get_db_path, init_db
from classroom.db.lessons_repository import get_base_class_progress
from classroom.llm.client import LLMClient, LLMError

app = typer.Typer(
    name="classroom",
    help="Gradebook, knowledge base and AI content generation for classes.",
    no_args_is_help=True,
)

console = Console()

RISK_COLORS = {"high": "red", "medium": "yellow", "low": "green"}
TONE_COLORS = {
    "success": "green",
    "info": "blue",
    "warning": "yellow",
    "danger": "red",
    "muted": "dim",
}
STATUS_COLORS = {
    "completed": "green",
    "processing": "blue",
    "queued": "cyan",
    "pending": "dim",
    "error": "red",
}


def _ensure_db() -> None:
    init_db(get_db_path())


def _load_gradebook_or_exit(instance_id: str):
    try:
        return repo.load_gradebook(instance_id)
    except repo.NotFoundError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)


def _check_view_mode(view: str) -> None:
    if view not in VIEW_MODES:
        console.print(f"[red]✗ Unknown view mode: {view} (expected: {', '.join(VIEW_MODES)})[/red]")
        raise typer.Exit(code=1)


def _base_class_or_exit(base_class_id: str) -> dict:
    base_class = repo.get_base_class(base_class_id)
    if base_class is None:
        console.print(f"[red]✗ Base class not found: {base_class_id}[/red]")
        raise typer.Exit(code=1)
    return base_class


# =============================================================================
# DATABASE / SERVER
# =============================================================================


@app.command(name="init-db")
def init_database(
    db: str | None = typer.Option(None, "--db", help="Database file (default: configured path)"),
) -> None:
    """Create the database file and its tables."""
    path = Path(db).expanduser() if db else get_db_path()
    init_db(path)
    console.print(f"[green]✓ Database ready[/green]")
    console.print(f"  [dim]path:[/dim] {path}")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", "-p", help="Port"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
) -> None:
    """Run the Web API with uvicorn."""
    import uvicorn

    console.print(f"[blue]Serving classroom API on http://{host}:{port}[/blue]")
    uvicorn.run("classroom.web.api:app", host=host, port=port, reload=reload)


# =============================================================================
# GRADEBOOK COMMANDS
# =============================================================================


@app.command(name="add-assignment")
def add_assignment(
    instance_id: str = typer.Argument(..., help="Class instance ID"),
    name: str = typer.Argument(..., help="Assignment name"),
    points: float = typer.Option(100.0, "--points", help="Points possible"),
    type: str = typer.Option("homework", "--type", "-t", help="Assignment type"),
    due_date: str | None = typer.Option(None, "--due", help="Due date (ISO)"),
) -> None:
    """Add an assignment column at the end of the grid."""
    _ensure_db()
    if repo.get_class_instance(instance_id) is None:
        console.print(f"[red]✗ Class instance not found: {instance_id}[/red]")
        raise typer.Exit(code=1)

    assignment = repo.create_assignment(
        instance_id, name, points_possible=points, type=type, due_date=due_date
    )
    console.print(f"[green]✓ Assignment created: {assignment.name}[/green]")
    console.print(f"  [dim]id:[/dim]     {assignment.id}")
    console.print(f"  [dim]points:[/dim] {assignment.points_possible:g}")


@app.command(name="set-grade")
def set_grade(
    instance_id: str = typer.Argument(..., help="Class instance ID"),
    student_id: str = typer.Argument(..., help="Student user ID"),
    assignment_id: str = typer.Argument(..., help="Assignment ID"),
    value: str = typer.Argument(..., help="Cell value as typed in the grid"),
    view: str = typer.Option("percentage", "--view", "-v", help="percentage, points or letter"),
) -> None:
    """Enter a grade the way a grid cell is edited.

    An empty value deletes the grade.
    """
    _ensure_db()
    _check_view_mode(view)

    assignment = repo.get_assignment(assignment_id)
    if assignment is None or assignment.class_instance_id != instance_id:
        console.print(f"[red]✗ Assignment not found: {assignment_id}[/red]")
        raise typer.Exit(code=1)

    try:
        entry = parse_grade_cell(value, view, assignment.points_possible)  # type: ignore[arg-type]
        if entry is None:
            deleted = repo.delete_grade(student_id, assignment_id)
            console.print(f"[green]✓ Grade {'deleted' if deleted else 'already empty'}[/green]")
            return
        saved = repo.upsert_grade(build_grade(entry, student_id, assignment_id, instance_id))
    except (GradeEntryError, repo.GradebookError) as e:
        console.print(f"[red]✗ Failed to save grade: {e}[/red]")
        raise typer.Exit(code=1)

    cell = format_grade_cell(saved, assignment.points_possible, view)  # type: ignore[arg-type]
    console.print(f"[green]✓ Grade saved: {cell.display}[/green]")
    if saved.points_earned is not None:
        console.print(
            f"  [dim]points:[/dim]     {saved.points_earned:g}/{assignment.points_possible:g}"
        )
    if saved.percentage is not None:
        console.print(f"  [dim]percentage:[/dim] {saved.percentage:g}%")


@app.command(name="clear-grade")
def clear_grade(
    instance_id: str = typer.Argument(..., help="Class instance ID"),
    student_id: str = typer.Argument(..., help="Student user ID"),
    assignment_id: str = typer.Argument(..., help="Assignment ID"),
) -> None:
    """Delete the grade of one cell."""
    _ensure_db()
    if repo.get_class_instance(instance_id) is None:
        console.print(f"[red]✗ Class instance not found: {instance_id}[/red]")
        raise typer.Exit(code=1)

    if not repo.delete_grade(student_id, assignment_id):
        console.print(f"[yellow]⚠ No grade to delete[/yellow]")
        raise typer.Exit(code=1)
    console.print("[green]✓ Grade deleted[/green]")


@app.command()
def gradebook(
    instance_id: str = typer.Argument(..., help="Class instance ID"),
    view: str = typer.Option("percentage", "--view", "-v", help="percentage, points or letter"),
    filter_by: str = typer.Option("all", "--filter", "-f", help="all, at-risk or excelling"),
    search: str = typer.Option("", "--search", "-s", help="Match student name or email"),
) -> None:
    """Show the student × assignment grid."""
    from rich.table import Table

    _ensure_db()
    _check_view_mode(view)
    data = _load_gradebook_or_exit(instance_id)

    students = filter_students(data.students, filter_by, search)  # type: ignore[arg-type]
    if not students:
        console.print("[yellow]⚠ No students match[/yellow]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Student", style="cyan")
    for assignment in data.assignments:
        table.add_column(f"{assignment.name}\n({assignment.points_possible:g} pts)", justify="center")
    table.add_column("Overall", justify="center")
    table.add_column("Missing", justify="center")

    for student in students:
        cells = []
        for assignment in data.assignments:
            cell = format_grade_cell(
                data.get_grade(student.id, assignment.id), assignment.points_possible, view  # type: ignore[arg-type]
            )
            color = TONE_COLORS.get(cell.tone)
            cells.append(f"[{color}]{cell.display}[/{color}]" if color else cell.display)
        table.add_row(
            student.name,
            *cells,
            f"{student.overall_grade:g}% ({student.grade_letter})",
            str(student.missing_assignments),
        )

    console.print(table)


@app.command()
def risk(
    instance_id: str = typer.Argument(..., help="Class instance ID"),
) -> None:
    """Classify every student by academic risk."""
    from rich.table import Table

    _ensure_db()
    data = _load_gradebook_or_exit(instance_id)

    table = Table(show_header=True, header_style="bold")
    table.add_column("Student", style="cyan")
    table.add_column("Overall", justify="center")
    table.add_column("Missing", justify="center")
    table.add_column("Risk", justify="center")

    for student in data.students:
        level = classify_risk(student.overall_grade, student.missing_assignments)
        color = RISK_COLORS[level]
        table.add_row(
            student.name,
            f"{student.overall_grade:g}%",
            str(student.missing_assignments),
            f"[{color}]{level}[/{color}]",
        )

    console.print(table)


@app.command()
def analytics(
    instance_id: str = typer.Argument(..., help="Class instance ID"),
) -> None:
    """Class overview, grade distribution and averages by assignment type."""
    from rich.panel import Panel
    from rich.table import Table

    _ensure_db()
    result = calculate_analytics(_load_gradebook_or_exit(instance_id))
    overview = result.overview

    header = (
        f"Students: [bold]{overview.total_students}[/bold] | "
        f"Average: [bold]{overview.class_average:g}%[/bold]\n"
        f"Completion: {overview.completion_rate:g}% | Graded: {overview.grading_progress:g}%\n"
        f"At risk: [red]{overview.at_risk_students}[/red] | "
        f"Excelling: [green]{overview.excelling_students}[/green]"
    )
    console.print(Panel(header, title=f"[bold]{instance_id}[/bold]", expand=False))

    table = Table(show_header=True, header_style="bold")
    table.add_column("Grade", style="cyan")
    table.add_column("Students", justify="right")
    table.add_column("%", justify="right")
    for bucket in result.grade_distribution:
        table.add_row(bucket.grade, str(bucket.count), f"{bucket.percentage:g}")
    console.print(table)

    for average in result.assignment_types:
        console.print(f"  [dim]{average.type}:[/dim] {average.average:g}% ({average.count})")


@app.command()
def export(
    instance_id: str = typer.Argument(..., help="Class instance ID"),
    format: str = typer.Option("csv", "--format", "-f", help="csv or json"),
    output: str | None = typer.Option(None, "--output", "-o", help="Output file (default: generated name)"),
    include_analytics: bool = typer.Option(False, "--analytics", help="JSON: include class analytics"),
    include_feedback: bool = typer.Option(False, "--feedback", help="JSON: include grade feedback"),
    include_standards: bool = typer.Option(False, "--standards", help="JSON: include standards"),
) -> None:
    """Export the gradebook to a file."""
    _ensure_db()
    instance = repo.get_class_instance(instance_id)
    if instance is None:
        console.print(f"[red]✗ Class instance not found: {instance_id}[/red]")
        raise typer.Exit(code=1)

    data = _load_gradebook_or_exit(instance_id)
    options = ExportOptions(
        analytics=include_analytics,
        feedback=include_feedback,
        standards=include_standards,
    )
    try:
        filename, _, content = export_gradebook(data, instance["name"], format, options)
    except ExportError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)

    path = Path(output) if output else Path(filename)
    path.write_text(content, encoding="utf-8")
    console.print(f"[green]✓ Gradebook exported[/green]")
    console.print(f"  [dim]file:[/dim]     {path}")
    console.print(f"  [dim]students:[/dim] {len(data.students)}")


# =============================================================================
# KNOWLEDGE BASE COMMANDS
# =============================================================================


def _print_item(item) -> None:
    color = STATUS_COLORS.get(item.status, "white")
    console.print(f"  [dim]id:[/dim]     {item.id}")
    console.print(f"  [dim]type:[/dim]   {item.type}")
    console.print(f"  [dim]status:[/dim] [{color}]{item.status}[/{color}]")
    if item.error_message:
        console.print(f"  [yellow]• {item.error_message}[/yellow]")


@app.command(name="kb-add")
def kb_add(
    base_class_id: str = typer.Argument(..., help="Base class ID"),
    file: str = typer.Argument(..., help="File to add (PDF, text, audio...)"),
    recording: bool = typer.Option(False, "--recording", help="Treat the file as an audio recording"),
    uploaded_by: str | None = typer.Option(None, "--by", help="Uploader user ID"),
) -> None:
    """Upload a file to the knowledge base and process it."""
    _ensure_db()
    file_path = Path(file).expanduser().resolve()
    if not file_path.exists():
        console.print(f"[red]✗ File not found: {file_path}[/red]")
        raise typer.Exit(code=1)

    ingestor = KnowledgeBaseIngestor(_base_class_or_exit(base_class_id), uploaded_by=uploaded_by)
    data = file_path.read_bytes()
    console.print(f"[blue]Adding {file_path.name}...[/blue]")
    try:
        if recording:
            item = ingestor.add_recording(data, mimetypes.guess_type(file_path.name)[0] or "audio/wav")
        else:
            item = ingestor.add_file(file_path.name, data)
    except KnowledgeBaseError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)

    if item.status == "error":
        console.print(f"[red]✗ Processing failed: {item.name}[/red]")
        _print_item(item)
        raise typer.Exit(code=1)
    console.print(f"[green]✓ {item.name}[/green]")
    _print_item(item)


@app.command(name="kb-paste")
def kb_paste(
    base_class_id: str = typer.Argument(..., help="Base class ID"),
    value: str = typer.Argument(..., help="URL (http/https) or text snippet"),
    uploaded_by: str | None = typer.Option(None, "--by", help="Uploader user ID"),
) -> None:
    """Add a URL or a text snippet to the knowledge base."""
    _ensure_db()
    ingestor = KnowledgeBaseIngestor(_base_class_or_exit(base_class_id), uploaded_by=uploaded_by)
    try:
        item = ingestor.add_pasted(value)
    except KnowledgeBaseError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)

    if item.status == "error":
        console.print(f"[red]✗ Processing failed: {item.name}[/red]")
        _print_item(item)
        raise typer.Exit(code=1)
    console.print(f"[green]✓ {item.name}[/green]")
    _print_item(item)


@app.command(name="kb-list")
def kb_list(
    base_class_id: str = typer.Argument(..., help="Base class ID"),
) -> None:
    """List knowledge-base items, newest first."""
    from rich.table import Table

    _ensure_db()
    _base_class_or_exit(base_class_id)
    items = KnowledgeBaseList.from_documents(documents_repository.list_documents(base_class_id))
    if not items.items:
        console.print("[yellow]⚠ Knowledge base is empty[/yellow]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", style="dim", width=36)
    table.add_column("Name", style="cyan")
    table.add_column("Type")
    table.add_column("Status", justify="center")
    table.add_column("Source")

    for item in items.items:
        color = STATUS_COLORS.get(item.status, "white")
        table.add_row(item.id, item.name, item.type, f"[{color}]{item.status}[/{color}]", item.source_info)
    console.print(table)


@app.command(name="kb-delete")
def kb_delete(
    document_id: str = typer.Argument(..., help="Document ID"),
) -> None:
    """Remove a document and its stored file."""
    _ensure_db()
    try:
        delete_document(document_id)
    except KnowledgeBaseError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]✓ Document deleted: {document_id}[/green]")


# =============================================================================
# GENERATION COMMANDS
# =============================================================================


def _print_event(event: GenerationEvent, tracker: GenerationTracker) -> None:
    if isinstance(event, ProgressEvent):
        icon = "[green]✓[/green]" if event.status == "success" else "[red]✗[/red]"
        line = f"  {icon} [{tracker.processed}/{tracker.total_to_process}] {event.lesson_title}"
        if event.error:
            line += f" [dim]({event.error})[/dim]"
        console.print(line)
    elif tracker.message:
        console.print(f"[blue]{tracker.message}[/blue]")


def _print_summary(tracker: GenerationTracker) -> None:
    summary = tracker.summary
    if summary is None:
        return
    color = {"success": "green", "warning": "yellow", "error": "red"}.get(summary.type, "cyan")
    console.print(f"[{color}]{summary.message}[/{color}]")


@app.command(name="generate-lessons")
def generate_lessons(
    base_class_id: str = typer.Argument(..., help="Base class ID"),
    remote: bool = typer.Option(False, "--remote", help="Run through the Web API"),
    api_url: str | None = typer.Option(None, "--api-url", help="API base URL (with --remote)"),
    provider: str | None = typer.Option(None, "--provider", help="LLM provider override"),
    concurrency: int | None = typer.Option(None, "--concurrency", "-c", help="Lessons in parallel"),
) -> None:
    """Generate content for every lesson that has none."""
    if remote:
        try:
            with ClassroomClient(base_url=api_url) as client:
                tracker = client.stream_lesson_generation(base_class_id, on_event=_print_event)
        except BackendError as e:
            console.print(f"[red]✗ {e}[/red]")
            raise typer.Exit(code=1)
        _print_summary(tracker)
        return

    _ensure_db()
    _base_class_or_exit(base_class_id)
    llm = LLMClient(provider=provider) if provider else None  # type: ignore[arg-type]
    tracker = GenerationTracker()

    async def run() -> None:
        async for event in stream_generate_all_lessons(base_class_id, client=llm, concurrency=concurrency):
            if tracker.apply(event):
                _print_event(event, tracker)

    asyncio.run(run())
    tracker.finish_stream()
    _print_summary(tracker)


@app.command(name="mind-map")
def mind_map(
    base_class_id: str = typer.Argument(..., help="Base class ID"),
    regenerate: bool = typer.Option(False, "--regenerate", help="Replace an existing mind map"),
    remote: bool = typer.Option(False, "--remote", help="Run through the Web API and poll"),
    api_url: str | None = typer.Option(None, "--api-url", help="API base URL (with --remote)"),
    interval: float | None = typer.Option(None, "--interval", help="Polling interval in seconds"),
) -> None:
    """Generate the course mind map of a base class."""
    if remote:
        try:
            with ClassroomClient(base_url=api_url) as client:
                job = client.start_mind_map(base_class_id, regenerate=regenerate)
                update = client.poll_job_progress(
                    job["job_id"],
                    interval=interval,
                    on_update=lambda u: console.print(
                        f"  [dim]{u['overall_progress']}%[/dim] {u['detailed_message']}"
                    ),
                )
        except BackendError as e:
            console.print(f"[red]✗ {e}[/red]")
            raise typer.Exit(code=1)
        status = update["status"]
    else:
        _ensure_db()
        base_class = _base_class_or_exit(base_class_id)
        try:
            job = start_mind_map_job(base_class_id, regenerate=regenerate)
            console.print(f"[blue]Generating mind map for {base_class['name']}...[/blue]")
            job = run_mind_map_job(job["id"], base_class["name"])
        except (JobConflictError, JobNotFoundError, LLMError) as e:
            console.print(f"[red]✗ {e}[/red]")
            raise typer.Exit(code=1)
        update = build_progress_update(job).to_dict()
        status = job["status"]

    if status != "completed":
        console.print(f"[red]✗ {update['detailed_message']}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]✓ {update['detailed_message']}[/green]")


@app.command()
def progress(
    base_class_id: str = typer.Argument(..., help="Base class ID"),
    user_id: str = typer.Argument(..., help="Learner user ID"),
) -> None:
    """Show a learner's progress through a base class."""
    _ensure_db()
    _base_class_or_exit(base_class_id)
    result = get_base_class_progress(user_id, base_class_id)

    color = {"completed": "green", "in_progress": "blue"}.get(result.status, "dim")
    console.print(f"[bold]{result.progress_percentage}%[/bold] - [{color}]{result.status}[/{color}]")
    console.print(f"  [dim]lessons:[/dim]     {result.completed_lessons}/{result.total_lessons}")
    console.print(
        f"  [dim]assessments:[/dim] {result.completed_assessments}/{result.total_assessments}"
    )


if __name__ == "__main__":
    app()
