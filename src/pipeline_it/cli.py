"""Typer CLI for launching and watching pipeline jobs outside a test run."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from pipeline_it.config.loader import load_settings
from pipeline_it.config.models import LaunchConfig, LaunchInfo, Settings
from pipeline_it.errors import PipelineItError
from pipeline_it.launcher.dataflow import DataflowLauncher
from pipeline_it.launcher.operator import PipelineOperator, Result
from pipeline_it.observability.log import configure_logging

console = Console()
app = typer.Typer(name="pipeline-it", help="Pipeline integration-test tooling")

SettingsOption = typer.Option(None, "--settings", help="Settings YAML")


def _load(settings_path: str | None) -> Settings:
    path = Path(settings_path) if settings_path else None
    if path is not None and not path.exists():
        console.print(f"[red]Settings file not found: {path}[/red]")
        raise typer.Exit(1)
    try:
        settings = load_settings(path)
    except PipelineItError as exc:
        console.print(f"[red]Invalid settings:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc
    configure_logging(json_output=settings.log_json)
    return settings


def _launcher(settings: Settings) -> DataflowLauncher:
    if settings.dataflow is None:
        console.print("[red]No 'dataflow' section in settings[/red]")
        raise typer.Exit(1)
    return DataflowLauncher(settings.dataflow)


def _parse_params(params: list[str]) -> dict[str, str]:
    parsed: dict[str, str] = {}
    for item in params:
        key, sep, value = item.partition("=")
        if not sep or not key:
            console.print(f"[red]Expected KEY=VALUE, got:[/red] {escape(item)}")
            raise typer.Exit(2)
        parsed[key] = value
    return parsed


@app.command()
def validate(settings_path: str | None = SettingsOption) -> None:
    """Validate a settings file and print the effective values."""
    settings = _load(settings_path)
    table = Table(title="Settings")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    if settings.dataflow is not None:
        table.add_row("dataflow.project_id", settings.dataflow.project_id)
        table.add_row("dataflow.region", settings.dataflow.region)
        table.add_row("dataflow.endpoint", settings.dataflow.endpoint)
    else:
        table.add_row("dataflow", "(not configured)")
    table.add_row("poll.max_wait_seconds", str(settings.poll.max_wait_seconds))
    table.add_row("poll.interval_seconds", str(settings.poll.interval_seconds))
    table.add_row("pubsub_project_id", settings.pubsub_project_id)
    console.print(table)
    console.print(f"[green]Valid[/green] — {settings_path or '(defaults)'}")


@app.command()
def launch(
    job_name: str = typer.Argument(..., help="Job name (lower-case, dashes)"),
    spec_path: str = typer.Argument(..., help="gs:// path of the template spec"),
    param: list[str] = typer.Option([], "--param", "-p", help="KEY=VALUE parameter"),
    require: list[str] = typer.Option([], "--require", help="Required parameter name"),
    settings_path: str | None = SettingsOption,
) -> None:
    """Launch a Flex Template job and print its id."""
    settings = _load(settings_path)
    try:
        config = LaunchConfig.build(
            job_name,
            spec_path,
            parameters=_parse_params(param),
            required_parameters=tuple(require),
        )
        with _launcher(settings) as launcher:
            info = launcher.launch(config)
    except PipelineItError as exc:
        console.print(f"[red]Launch failed:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc
    console.print(f"[green]Launched[/green] {info.job_name} → job_id={info.job_id}")


@app.command()
def status(
    job_id: str = typer.Argument(..., help="Job id"),
    settings_path: str | None = SettingsOption,
) -> None:
    """Print the current state of a job."""
    settings = _load(settings_path)
    try:
        with _launcher(settings) as launcher:
            state = launcher.get_job_status(job_id)
    except PipelineItError as exc:
        console.print(f"[red]Status lookup failed:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc
    console.print(f"{job_id}: [cyan]{state}[/cyan]")


@app.command()
def wait(
    job_id: str = typer.Argument(..., help="Job id"),
    max_wait: float | None = typer.Option(None, "--max-wait", help="Seconds"),
    interval: float | None = typer.Option(None, "--interval", help="Seconds"),
    settings_path: str | None = SettingsOption,
) -> None:
    """Block until a job reaches a terminal state or the wait runs out."""
    settings = _load(settings_path)
    try:
        with _launcher(settings) as launcher:
            job = LaunchInfo(
                job_id=job_id,
                job_name=job_id,
                project_id=launcher.project_id,
                region=launcher.region,
            )
            poll = settings.poll.for_job(job)
            overrides = {
                k: v
                for k, v in (("max_wait_seconds", max_wait), ("interval_seconds", interval))
                if v is not None
            }
            if overrides:
                poll = poll.model_copy(update=overrides)
            outcome = PipelineOperator(launcher).wait_until_done(poll)
    except PipelineItError as exc:
        console.print(f"[red]Wait failed:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc

    style = "green" if outcome.result is Result.CONDITION_MET else "red"
    console.print(
        f"[{style}]{outcome.result}[/{style}] state={outcome.last_state} "
        f"after {outcome.elapsed_seconds:.0f}s ({outcome.attempts} checks)"
    )
    if outcome.result is not Result.CONDITION_MET:
        raise typer.Exit(1)


@app.command()
def cancel(
    job_id: str = typer.Argument(..., help="Job id"),
    drain: bool = typer.Option(False, "--drain", help="Drain instead of cancel"),
    settings_path: str | None = SettingsOption,
) -> None:
    """Request cancellation (or draining) of a job."""
    settings = _load(settings_path)
    try:
        with _launcher(settings) as launcher:
            if drain:
                launcher.drain_job(job_id)
            else:
                launcher.cancel_job(job_id)
    except PipelineItError as exc:
        console.print(f"[red]{'Drain' if drain else 'Cancel'} failed:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc
    console.print(f"[yellow]{'Drain' if drain else 'Cancel'} requested[/yellow] for {job_id}")


if __name__ == "__main__":
    app()
