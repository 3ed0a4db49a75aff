"""
Worksheet Grader CLI Application.

Provides a command-line interface for grading student worksheets through
the resilient streaming pipeline.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Annotated, Awaitable, Callable, Optional, TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from worksheet_grader.config import PipelineProfile, Settings, get_settings
from worksheet_grader.grading import GradingPipeline
from worksheet_grader.models import (
    FeedbackReport,
    FeedbackTone,
    GradingContext,
    GradingResult,
    PayloadKind,
    ProgressEvent,
    ProgressSink,
    RawResponse,
    RequestDescriptor,
    ResultSource,
)

# Create Typer app
app = typer.Typer(
    name="worksheet-grader",
    help="Resilient streaming worksheet grading",
    add_completion=False,
)

console = Console()

T = TypeVar("T")

IMAGE_MIME_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
    ".gif": "image/gif",
}


def _configure_logging(settings: Settings, verbose: bool) -> None:
    level = logging.DEBUG if verbose else settings.log_level
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _resolve_settings(profile: Optional[PipelineProfile]) -> Settings:
    settings = get_settings()
    if profile is not None:
        settings = settings.model_copy(update={"pipeline_profile": profile})
    return settings


def _build_request(
    worksheet_file: Path,
    context: GradingContext,
    progress_sink: ProgressSink | None = None,
) -> RequestDescriptor:
    mime_type = IMAGE_MIME_TYPES.get(worksheet_file.suffix.lower())
    if mime_type is not None:
        return RequestDescriptor(
            payload=worksheet_file.read_bytes(),
            payload_kind=PayloadKind.IMAGE,
            mime_type=mime_type,
            context=context,
            progress_sink=progress_sink,
        )
    return RequestDescriptor(
        payload=worksheet_file.read_text(encoding="utf-8"),
        payload_kind=PayloadKind.TEXT,
        context=context,
        progress_sink=progress_sink,
    )


def _run_with_progress(
    worksheet_file: Path,
    context: GradingContext,
    work: Callable[[RequestDescriptor], Awaitable[T]],
) -> T:
    """Run one grading job on a fresh event loop behind a progress spinner."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Waiting for the grading service...", total=None)

        def on_progress(event: ProgressEvent) -> None:
            if event.type == "chunk":
                progress.update(
                    task,
                    description=f"Receiving response... ({event.payload['characters']} characters)",
                )
            elif event.type == "partial_results":
                graded = len(event.payload.get("questions", []))
                progress.update(task, description=f"Grading... ({graded} questions so far)")
            elif event.type == "complete":
                progress.update(task, description="Done")

        request = _build_request(worksheet_file, context, on_progress)
        return asyncio.run(work(request))


@app.command()
def grade(
    worksheet_file: Annotated[Path, typer.Argument(help="Worksheet image or text file")],
    subject: Annotated[str, typer.Option("--subject", "-s", help="Worksheet subject")] = "General",
    grade_level: Annotated[
        str, typer.Option("--grade-level", "-g", help="Student grade level")
    ] = "",
    student: Annotated[str, typer.Option("--student", help="Student name")] = "",
    assignment: Annotated[str, typer.Option("--assignment", help="Assignment name")] = "",
    rubric: Annotated[
        Optional[Path],
        typer.Option("--rubric", "-r", help="Text file holding a grading rubric"),
    ] = None,
    instructions: Annotated[
        Optional[str],
        typer.Option("--instructions", help="Extra grading instructions"),
    ] = None,
    prompt_override: Annotated[
        Optional[str],
        typer.Option("--prompt-override", help="Send this prompt instead of the grading prompt"),
    ] = None,
    profile: Annotated[
        Optional[PipelineProfile],
        typer.Option("--profile", "-p", help="Pipeline tuning profile"),
    ] = None,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the result as JSON"),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show detailed output"),
    ] = False,
) -> None:
    """
    Grade a student worksheet.

    Images are streamed to the model; text worksheets are sent as text.
    If the grading service is unavailable an offline result is shown
    and marked as such.
    """
    settings = _resolve_settings(profile)
    _configure_logging(settings, verbose)

    if not worksheet_file.exists():
        console.print(f"[red]Error:[/red] Worksheet file not found: {worksheet_file}")
        raise typer.Exit(1)

    if rubric is not None and not rubric.exists():
        console.print(f"[red]Error:[/red] Rubric file not found: {rubric}")
        raise typer.Exit(1)

    context = GradingContext(
        subject=subject,
        grade_level=grade_level,
        student_name=student,
        assignment_name=assignment,
        rubric=rubric.read_text(encoding="utf-8") if rubric else None,
        custom_instructions=instructions,
        custom_prompt_override=prompt_override,
    )

    pipeline = GradingPipeline(settings)
    result = _run_with_progress(worksheet_file, context, pipeline.grade_direct)

    if as_json:
        console.print_json(json.dumps(result.model_dump(mode="json", by_alias=True)))
    elif isinstance(result, RawResponse):
        _display_raw(result)
    else:
        _display_results(result, verbose)


@app.command()
def feedback(
    worksheet_file: Annotated[Path, typer.Argument(help="Worksheet image or text file")],
    subject: Annotated[str, typer.Option("--subject", "-s", help="Worksheet subject")] = "General",
    grade_level: Annotated[
        str, typer.Option("--grade-level", "-g", help="Student grade level")
    ] = "",
    student: Annotated[str, typer.Option("--student", help="Student name")] = "",
    tone: Annotated[
        FeedbackTone,
        typer.Option("--tone", "-t", help="Tone of the feedback"),
    ] = FeedbackTone.ENCOURAGING,
    profile: Annotated[
        Optional[PipelineProfile],
        typer.Option("--profile", "-p", help="Pipeline tuning profile"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show detailed output"),
    ] = False,
) -> None:
    """
    Grade a worksheet and write personalized feedback for the student.
    """
    settings = _resolve_settings(profile)
    _configure_logging(settings, verbose)

    if not worksheet_file.exists():
        console.print(f"[red]Error:[/red] Worksheet file not found: {worksheet_file}")
        raise typer.Exit(1)

    context = GradingContext(subject=subject, grade_level=grade_level, student_name=student)
    pipeline = GradingPipeline(settings)

    async def grade_then_write(request: RequestDescriptor) -> tuple[GradingResult, FeedbackReport]:
        result = await pipeline.grade_direct(request)
        assert isinstance(result, GradingResult)
        return result, await pipeline.generate_feedback(result, context, tone)

    result, report = _run_with_progress(worksheet_file, context, grade_then_write)

    _display_results(result, verbose)
    _display_feedback(report)


@app.command()
def health() -> None:
    """
    Check if the grading service is operational.

    Verifies configuration and API connectivity.
    """
    try:
        settings = get_settings()
        tuning = settings.tuning()
        console.print("[bold]Worksheet Grader Health Check[/bold]\n")

        # Check settings
        console.print("[dim]Checking configuration...[/dim]")
        console.print(f"  API Base URL: {settings.zenmux_base_url}")
        console.print(f"  Model: {settings.zenmux_model}")
        console.print(f"  Profile: {settings.pipeline_profile.value}")
        console.print(f"  Min Request Interval: {tuning.min_request_interval_ms} ms")
        console.print(f"  Max Retries: {tuning.max_retries}")

        problem = settings.credential_problem()
        if problem is not None:
            console.print(f"[red]✗ API key problem: {problem.value}[/red]")
            console.print("[yellow]Grading will use offline fallback results[/yellow]")
            raise typer.Exit(1)

        # Check API connectivity
        console.print("\n[dim]Checking API connectivity...[/dim]")
        pipeline = GradingPipeline(settings)

        if asyncio.run(pipeline.health_check()):
            console.print("[green]✓ API is reachable[/green]")
        else:
            console.print("[red]✗ API is not reachable[/red]")
            raise typer.Exit(1)

        console.print("\n[green]All systems operational[/green]")

    except typer.Exit:
        raise
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


def _display_results(result: GradingResult, verbose: bool = False) -> None:
    """Display grading results in a formatted table."""

    # Score summary
    score = result.total_score
    score_color = "green" if score >= 70 else "yellow" if score >= 50 else "red"
    console.print(
        Panel(
            f"[{score_color}][bold]{score}%[/bold][/{score_color}] "
            f"({result.earned_points:g} / {result.possible_points:g} points)",
            title="Final Score",
        )
    )

    if result.is_fallback:
        reason = result.failure_reason.value if result.failure_reason else "unknown"
        console.print(
            f"[yellow]⚠ Grading service unavailable ({reason}); "
            "this is an offline placeholder result[/yellow]"
        )

    table = Table(title="Questions")
    table.add_column("#", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Status")
    if verbose:
        table.add_column("Feedback")

    for q in result.questions:
        status = "✅" if q.is_correct else "◐" if q.partial_credit else "❌"
        row = [str(q.number), f"{q.score:g}/{q.max_score:g}", status]
        if verbose:
            row.append(q.feedback)
        table.add_row(*row)

    console.print(table)

    if verbose:
        for title, values in (
            ("Strengths", result.strengths),
            ("Weaknesses", result.weaknesses),
            ("Common Errors", result.common_errors),
            ("Recommendations", result.recommendations),
        ):
            if values:
                console.print(Panel("\n".join(f"• {v}" for v in values), title=title))


def _display_raw(response: RawResponse) -> None:
    if response.is_fallback:
        console.print("[yellow]⚠ Grading service unavailable; showing placeholder response[/yellow]")
    console.print(Panel(response.custom_prompt_response, title="Response"))


def _display_feedback(report: FeedbackReport) -> None:
    body = "\n\n".join(
        [report.summary, report.praise, report.improvements, report.next_steps, report.encouragement]
    )
    title = "Feedback" if report.source == ResultSource.REMOTE else "Feedback (offline)"
    console.print(Panel(body, title=title))


if __name__ == "__main__":
    app()
