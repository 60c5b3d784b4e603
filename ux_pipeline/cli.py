"""Typer CLI: run analyses, inspect stored results and token budgets."""

import json
from pathlib import Path

import typer
from pydantic import BaseModel, ValidationError
from rich.console import Console
from rich.table import Table

from ux_pipeline.core.config import Settings, get_config
from ux_pipeline.core.logging import get_flight_logger, setup_logging
from ux_pipeline.pipeline.errors import PipelineError
from ux_pipeline.pipeline.policy import FallbackPolicy
from ux_pipeline.pipeline.progress import PipelineProgress
from ux_pipeline.pipeline.record import AnalysisRecord
from ux_pipeline.pipeline.runner import AnalysisPipeline, AnalysisRequest, PipelineOutcome
from ux_pipeline.repository.analysis_repo import AnalysisRepository

app = typer.Typer(no_args_is_help=True, help="Staged UX analysis pipeline.")


def _get_session_factory():
    from sqlalchemy import create_engine
    from sqlalchemy.orm import sessionmaker

    cfg = get_config()
    engine = create_engine(cfg.database_url, pool_pre_ping=True)
    return sessionmaker(engine, autocommit=False, autoflush=False, expire_on_commit=False)


def _load_settings(config: Path | None, policy: FallbackPolicy | None) -> Settings:
    try:
        settings = get_config(config) if config is not None else get_config()
    except (FileNotFoundError, ValueError) as e:
        typer.secho(f"Invalid configuration: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    if policy is not None:
        settings = settings.model_copy(update={"fallback_policy": policy})
    return settings


def _build_pipeline(settings: Settings, store: bool) -> AnalysisPipeline:
    repo = AnalysisRepository(_get_session_factory()) if store else None
    try:
        return AnalysisPipeline.from_settings(settings, repository=repo)
    except ValueError as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(1)


def _dump_flight_log(label: str, image_id: str) -> None:
    flight = get_flight_logger()
    if flight is None:
        return
    path = flight.dump(label, image_id=image_id)
    typer.echo(f"Flight log written to {path}", err=True)


def _report_failure(image_id: str, error: PipelineError) -> None:
    typer.secho(f"Analysis of {image_id} failed at stage '{error.stage_name}': {error.reason}", fg=typer.colors.RED)
    if error.completed_stages:
        typer.echo(f"Completed stages: {', '.join(error.completed_stages)}")


def _print_outcome(console: Console, image_id: str, outcome: PipelineOutcome) -> None:
    summary = outcome.record.summary
    score = "n/a" if summary.overall_score is None else str(summary.overall_score)
    status = "degraded" if outcome.degraded else "complete"
    console.print(f"[bold]{image_id}[/bold]: {status}, overall score {score}, {outcome.token_usage} tokens")
    table = Table(title=None)
    table.add_column("Stage")
    table.add_column("Model")
    table.add_column("Success")
    table.add_column("Tokens", justify="right")
    for result in outcome.history:
        tokens = "" if result.token_usage is None else str(result.token_usage)
        table.add_row(result.stage_name, result.model_id, "yes" if result.success else "no", tokens)
    console.print(table)
    for warning in outcome.warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")


@app.command()
def analyze(
    image_ref: str = typer.Argument(..., help="Image URL or reference understood by the vision service"),
    image_id: str = typer.Option(..., "--image-id", help="Key the analysis is stored under"),
    context: str = typer.Option("", "--context", help="Free-text focus for the analysis"),
    policy: FallbackPolicy | None = typer.Option(None, "--policy", help="Override fallback policy: hard_fail or degrade"),
    config: Path | None = typer.Option(None, "--config", help="Path to pipeline_config.yml"),
    store: bool = typer.Option(True, "--store/--no-store", help="Persist the consolidated record"),
    as_json: bool = typer.Option(False, "--json", help="Print the consolidated record as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print progress events"),
) -> None:
    """Run the full pipeline for one image."""
    settings = _load_settings(config, policy)
    setup_logging()
    pipeline = _build_pipeline(settings, store)
    console = Console()

    def _echo_progress(progress: PipelineProgress) -> None:
        console.print(f"[{progress.percent:3d}%] {progress.stage}: {progress.message}")

    observers = [_echo_progress] if verbose else []
    try:
        outcome = pipeline.run(image_ref, image_id, context, observers=observers)
    except PipelineError as e:
        _report_failure(image_id, e)
        _dump_flight_log("analysis_failed", image_id)
        raise typer.Exit(1)

    if as_json:
        typer.echo(json.dumps(outcome.record.model_dump(mode="json", by_alias=True), indent=2))
        return
    _print_outcome(console, image_id, outcome)


class _BatchEntry(BaseModel):
    image_ref: str
    image_id: str
    user_context: str = ""


@app.command()
def batch(
    file: Path = typer.Argument(..., help="JSON array of {image_ref, image_id, user_context}"),
    workers: int | None = typer.Option(None, "--workers", help="Concurrent runs (default: max_concurrent_runs)"),
    policy: FallbackPolicy | None = typer.Option(None, "--policy", help="Override fallback policy: hard_fail or degrade"),
    config: Path | None = typer.Option(None, "--config", help="Path to pipeline_config.yml"),
) -> None:
    """Analyze many images concurrently; one failure does not stop the others."""
    if not file.is_file():
        typer.secho(f"Batch file not found: {file}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    try:
        raw = json.loads(file.read_text())
        if not isinstance(raw, list):
            raise ValueError("batch file must contain a JSON array")
        entries = [_BatchEntry.model_validate(item) for item in raw]
    except (ValueError, ValidationError) as e:
        typer.secho(f"Invalid batch file: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    settings = _load_settings(config, policy)
    setup_logging()
    pipeline = _build_pipeline(settings, store=True)
    requests = [AnalysisRequest(e.image_ref, e.image_id, e.user_context) for e in entries]
    results = pipeline.run_many(requests, max_workers=workers)

    table = Table(title=None)
    table.add_column("Image")
    table.add_column("Status")
    table.add_column("Score", justify="right")
    table.add_column("Detail")
    failed = 0
    for item in results:
        if item.ok:
            summary = item.outcome.record.summary
            score = "" if summary.overall_score is None else str(summary.overall_score)
            status = "degraded" if item.outcome.degraded else "ok"
            table.add_row(item.image_id, status, score, f"{len(item.outcome.warnings)} warning(s)")
        else:
            failed += 1
            table.add_row(item.image_id, "failed", "", f"{item.error.stage_name}: {item.error.reason}")
    Console().print(table)
    if failed:
        _dump_flight_log("batch_failed", f"{failed}-of-{len(results)}")
        raise typer.Exit(1)


@app.command()
def show(
    image_id: str = typer.Argument(..., help="Image id the analysis was stored under"),
    as_json: bool = typer.Option(False, "--json", help="Dump the full record as JSON"),
) -> None:
    """Show a stored analysis."""
    repo = AnalysisRepository(_get_session_factory())
    record = repo.get_analysis(image_id)
    if record is None:
        typer.echo(f"No analysis stored for '{image_id}'.", err=True)
        raise typer.Exit(1)
    if as_json:
        typer.echo(json.dumps(record.model_dump(mode="json", by_alias=True), indent=2))
        return
    _print_record(Console(), record)


def _print_record(console: Console, record: AnalysisRecord) -> None:
    summary = record.summary
    console.print(f"[bold]{record.image_id}[/bold] (created {record.created_at.isoformat()})")
    console.print(f"Overall score: {'n/a' if summary.overall_score is None else summary.overall_score}")
    if summary.category_scores is not None:
        scores = summary.category_scores.model_dump()
        console.print("Categories: " + ", ".join(f"{k} {'n/a' if v is None else v}" for k, v in scores.items()))
    table = Table(title="Suggestions")
    table.add_column("Category")
    table.add_column("Title")
    table.add_column("Impact")
    table.add_column("Effort")
    for s in record.suggestions:
        table.add_row(s.category, s.title, s.impact, s.effort)
    console.print(table)
    console.print(f"{len(record.visual_annotations)} annotation(s)")
    for warning in record.metadata.warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")


@app.command()
def budgets(
    config: Path | None = typer.Option(None, "--config", help="Path to pipeline_config.yml"),
) -> None:
    """List the configured per-model token budgets."""
    settings = _load_settings(config, None)
    table = Table(title=None)
    table.add_column("Model")
    table.add_column("Stage 1", justify="right")
    table.add_column("Stage 2", justify="right")
    table.add_column("Stage 3", justify="right")
    table.add_column("Buffer", justify="right")
    table.add_column("Total", justify="right")
    for model_id, budget in sorted(settings.token_budgets.items()):
        table.add_row(
            model_id,
            str(budget.stage1_ceiling),
            str(budget.stage2_ceiling),
            str(budget.stage3_ceiling),
            str(budget.buffer),
            str(budget.total),
        )
    Console().print(table)


if __name__ == "__main__":
    app()
