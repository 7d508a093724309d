"""CLI interface for resumeflow using Typer."""

import asyncio
import json
from datetime import timedelta
from pathlib import Path
from typing import Annotated, Any

import typer
import yaml
from rich.console import Console
from rich.table import Table

from ..core.config.loader import load_config
from ..core.errors import PipelineError
from ..core.models.candidate import ParsedCandidateData
from ..core.models.job_posting import JobPosting
from ..core.models.queue import JobHandle
from ..core.orchestrator.pipeline import ResumePipeline
from ..observability.logger import configure_from, get_logger

logger = get_logger(__name__)
console = Console()

app = typer.Typer(
    name="resumeflow",
    help="Résumé parsing and job-matching pipeline",
    add_completion=False,
)

STATE_COLORS = {
    "ANALYZED": "green",
    "PARSED": "cyan",
    "PARSE_FAILED": "red",
    "ANALYSIS_FAILED": "red",
    "PARSE_FAILED_QUOTA": "magenta",
    "ANALYSIS_FAILED_QUOTA": "magenta",
}


def _get_pipeline() -> ResumePipeline:
    """Build the pipeline from config; logging follows the config too."""
    config = load_config()
    configure_from(config)
    return ResumePipeline.from_config(config)


def _read_structured(path: Path) -> dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in (".yaml", ".yml"):
        return yaml.safe_load(text) or {}
    return json.loads(text)


def _print_handle(handle: JobHandle) -> None:
    table = Table(show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Job ID", handle.job_id)
    table.add_row("Kind", str(handle.kind))
    table.add_row("State", str(handle.state))
    table.add_row("Résumé", handle.resume_id or "-")
    table.add_row("Attempt", str(handle.attempt))
    if handle.estimated_seconds is not None:
        table.add_row("Estimated wait", f"~{handle.estimated_seconds}s")
    if handle.last_error:
        table.add_row("Last error", f"[red]{handle.last_error}[/red]")
    if handle.result:
        table.add_row("Result", json.dumps(handle.result))
    console.print(table)


@app.command("add-posting")
def add_posting(
    posting_file: Annotated[
        Path,
        typer.Option("--file", "-f", help="Job posting as YAML or JSON", exists=True, dir_okay=False),
    ],
):
    """Register (or replace) a job posting the analyze stage can score against."""
    pipeline = _get_pipeline()
    try:
        posting = JobPosting.model_validate(_read_structured(posting_file))
    except (ValueError, yaml.YAMLError) as e:
        console.print(f"[red]! Invalid job posting:[/red] {e}")
        raise typer.Exit(code=1)

    pipeline.store.save_job_posting(posting)
    console.print(f"[green]> Job posting saved:[/green] {posting.id} ({posting.level}, {len(posting.required_skills)} skills)")


@app.command()
def submit(
    resume_file: Annotated[
        Path,
        typer.Option("--file", "-f", help="Résumé file (PDF, DOC, DOCX or TXT)", exists=True, dir_okay=False),
    ],
    job_posting_id: Annotated[str | None, typer.Option("--posting", "-p", help="Job posting to analyze against")] = None,
    resume_id: Annotated[str | None, typer.Option("--resume-id", help="Explicit résumé identifier")] = None,
):
    """Register an uploaded résumé and queue it for parsing."""
    pipeline = _get_pipeline()
    try:
        resume, handle = pipeline.submit_upload(resume_file, job_posting_id, resume_id)
    except PipelineError as e:
        console.print(f"[red]! Upload rejected:[/red] {e}")
        raise typer.Exit(code=1)

    console.print(f"[green]> Résumé registered:[/green] {resume.id}")
    _print_handle(handle)


@app.command("submit-profile")
def submit_profile(
    profile_file: Annotated[
        Path,
        typer.Option("--file", "-f", help="Structured profile as YAML or JSON", exists=True, dir_okay=False),
    ],
    job_posting_id: Annotated[str | None, typer.Option("--posting", "-p", help="Job posting to analyze against")] = None,
):
    """Register an already structured profile; it skips the parse stage."""
    pipeline = _get_pipeline()
    try:
        parsed = ParsedCandidateData.model_validate(_read_structured(profile_file))
    except (ValueError, yaml.YAMLError) as e:
        console.print(f"[red]! Invalid profile:[/red] {e}")
        raise typer.Exit(code=1)

    resume, handle = pipeline.submit_profile(parsed, job_posting_id)
    console.print(f"[green]> Résumé registered:[/green] {resume.id}")
    if handle:
        _print_handle(handle)


@app.command()
def work(
    forever: Annotated[bool, typer.Option("--forever", help="Keep polling instead of exiting when idle")] = False,
):
    """Drain the queue with the single AI-bound worker."""
    pipeline = _get_pipeline()
    try:
        pipeline.ai_client.ensure_ready()
    except ValueError as e:
        console.print(f"[red]! {e}[/red]")
        raise typer.Exit(code=1)

    async def run():
        if not forever:
            try:
                return await pipeline.run_until_idle()
            finally:
                pipeline.queue.close()
        await pipeline.start()
        try:
            while True:
                await asyncio.sleep(3600)
        finally:
            await pipeline.stop(drain=True)

    try:
        stats = asyncio.run(run())
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")
        return
    if stats is not None:
        console.print(f"[green]> Queue idle[/green] {stats.model_dump()}")


@app.command()
def stats():
    """Show queue statistics."""
    pipeline = _get_pipeline()
    queue_stats = pipeline.get_queue_stats()

    table = Table(show_header=True, header_style="bold magenta")
    for column in ("Waiting", "Active", "Delayed", "Completed", "Failed", "Quota", "Total"):
        table.add_column(column, justify="right")
    table.add_row(
        str(queue_stats.waiting),
        str(queue_stats.active),
        str(queue_stats.delayed),
        str(queue_stats.completed),
        str(queue_stats.failed),
        str(queue_stats.quota_exhausted),
        str(queue_stats.total),
    )
    console.print(table)


@app.command()
def status(
    resume_id: Annotated[str, typer.Option("--resume-id", "-r", help="Résumé identifier")],
):
    """Show the processing state of a résumé."""
    pipeline = _get_pipeline()
    resume = pipeline.store.load_resume(resume_id)
    if not resume:
        console.print(f"[yellow]No résumé found:[/yellow] {resume_id}")
        raise typer.Exit(code=1)

    color = STATE_COLORS.get(resume.state, "yellow")
    table = Table(show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Résumé", resume.id)
    table.add_row("State", f"[{color}]{resume.state}[/]")
    table.add_row("Parsed", str(resume.is_parsed))
    table.add_row("Analyzed", str(resume.is_analyzed))
    if resume.parse_error:
        table.add_row("Parse error", f"[red]{resume.parse_error}[/red]")
    if resume.analysis_error:
        table.add_row("Analysis error", f"[red]{resume.analysis_error}[/red]")
    if resume.ai_analysis:
        analysis = resume.ai_analysis
        table.add_row("Score", f"{analysis.score} ({analysis.priority})")
        table.add_row("Recommendation", str(analysis.recommendation))
        table.add_row("Summary", analysis.summary)
    console.print(table)

    if resume.ai_analysis and resume.ai_analysis.skills_match:
        skills = Table(show_header=True, header_style="bold magenta")
        skills.add_column("Skill")
        skills.add_column("Matched")
        skills.add_column("Proficiency")
        skills.add_column("Points", justify="right")
        for item in resume.ai_analysis.skills_match:
            skills.add_row(item.skill, "yes" if item.matched else "no", str(item.proficiency), str(item.score))
        console.print(skills)


@app.command()
def job(
    job_id: Annotated[str, typer.Option("--job-id", "-j", help="Queue job identifier")],
    remove: Annotated[bool, typer.Option("--remove", help="Remove the job from the queue")] = False,
):
    """Inspect (or remove) a queued job."""
    pipeline = _get_pipeline()
    if remove:
        if pipeline.remove_job(job_id):
            console.print(f"[green]> Removed[/green] {job_id}")
        else:
            console.print(f"[yellow]Job not found or running:[/yellow] {job_id}")
        return

    handle = pipeline.get_job(job_id)
    if handle is None:
        console.print(f"[yellow]No job found:[/yellow] {job_id}")
        raise typer.Exit(code=1)
    _print_handle(handle)


@app.command()
def reparse(
    resume_id: Annotated[str, typer.Option("--resume-id", "-r", help="Résumé identifier")],
):
    """Queue an explicit re-parse, bypassing the parse cache."""
    pipeline = _get_pipeline()
    try:
        handle = pipeline.reparse(resume_id)
    except PipelineError as e:
        console.print(f"[red]! {e}[/red]")
        raise typer.Exit(code=1)
    _print_handle(handle)


@app.command()
def reanalyze(
    resume_id: Annotated[str, typer.Option("--resume-id", "-r", help="Résumé identifier")],
    job_posting_id: Annotated[str | None, typer.Option("--posting", "-p", help="Override the résumé's job posting")] = None,
):
    """Queue an explicit re-analysis of a parsed résumé."""
    pipeline = _get_pipeline()
    try:
        resume = pipeline.states.get(resume_id)
        posting_id = job_posting_id or resume.job_posting_id
        if not posting_id:
            console.print("[red]! No job posting for this résumé; pass --posting[/red]")
            raise typer.Exit(code=1)
        handle = pipeline.enqueue_analyze(resume_id, posting_id)
    except PipelineError as e:
        console.print(f"[red]! {e}[/red]")
        raise typer.Exit(code=1)
    _print_handle(handle)


@app.command()
def sweep(
    grace_seconds: Annotated[int | None, typer.Option("--grace-seconds", help="Minimum age of a stalled résumé")] = None,
):
    """Re-queue analysis for parsed résumés that never got analyzed."""
    pipeline = _get_pipeline()
    grace = timedelta(seconds=grace_seconds) if grace_seconds is not None else None
    handles = pipeline.sweep_stalled_analyses(grace)
    console.print(f"[green]> Re-queued {len(handles)} analysis job(s)[/green]")


@app.command()
def clean(
    grace_hours: Annotated[float | None, typer.Option("--grace-hours", help="Keep completed jobs this long")] = None,
):
    """Drop old finished jobs from the queue."""
    pipeline = _get_pipeline()
    grace = timedelta(hours=grace_hours) if grace_hours is not None else None
    removed = pipeline.clean_old_jobs(grace)
    console.print(f"[green]> Removed {removed} job(s)[/green]")


if __name__ == "__main__":
    app()
