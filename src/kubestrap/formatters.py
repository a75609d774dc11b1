"""CLI output formatting helpers."""

from typing import Any

import click
import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .pipeline import PipelineReport, RunState, StepOutcome, StepStatus

console = Console()

_STATUS_STYLE = {
    StepStatus.SUCCEEDED: "[green]✓ succeeded[/green]",
    StepStatus.FAILED: "[red]✗ failed[/red]",
    StepStatus.SKIPPED: "[dim]- skipped[/dim]",
}

_STATE_STYLE = {
    RunState.SUCCEEDED: "[green]Installation succeeded[/green]",
    RunState.PARTIALLY_FAILED: "[yellow]Installation finished with errors[/yellow]",
    RunState.FAILED: "[red]Installation failed[/red]",
}


def print_config_yaml(data: dict[str, Any], sources: dict[str, str] | None = None) -> None:
    """Print config as YAML.

    Args:
        data: Configuration data
        sources: Optional key -> source mapping, printed as trailing comments
    """
    if not sources:
        click.echo(yaml.dump(data, default_flow_style=False, sort_keys=False))
        return

    for key, value in data.items():
        line = yaml.dump({key: value}, default_flow_style=True, sort_keys=False, width=1000).strip()
        line = line[1:-1] if line.startswith("{") else line
        click.echo(f"{line}  # {sources.get(key, 'default')}")


def print_step_progress(step, outcome: StepOutcome | None) -> None:
    """Pipeline on_step callback: one line per step start and finish."""
    if outcome is None:
        click.echo(f"→ {step.name}...")
    elif outcome.status == StepStatus.SUCCEEDED:
        click.echo(f"  ✓ {step.name} ({outcome.elapsed_seconds:.1f}s)")
    elif outcome.status == StepStatus.SKIPPED:
        click.echo(f"  - {step.name} (skipped)")
    else:
        marker = "✗" if step.critical else "⚠"
        click.echo(f"  {marker} {step.name}: {outcome.error.cause}", err=True)


def print_report(report: PipelineReport) -> None:
    """Print the per-step table, the halting failure and non-critical failures."""
    table = Table(title="kubestrap install")
    table.add_column("Step")
    table.add_column("Critical")
    table.add_column("Result")
    table.add_column("Time", justify="right")

    for outcome in report.outcomes:
        table.add_row(
            outcome.name,
            "yes" if outcome.critical else "no",
            _STATUS_STYLE[outcome.status],
            f"{outcome.elapsed_seconds:.1f}s" if outcome.status != StepStatus.SKIPPED else "",
        )

    console.print()
    console.print(table)
    console.print(_STATE_STYLE.get(report.state, report.state.value))

    halting = report.halting_failure
    if halting is not None and halting.error is not None:
        console.print(f"\n[red]Failed step:[/red] {halting.name}")
        console.print(f"[red]Cause:[/red] {escape(str(halting.error.cause))}")
        if halting.error.log_path:
            console.print(f"[dim]Check:[/dim] tail -100 {halting.error.log_path}")
        return

    failures = report.failures
    if failures:
        console.print(f"\n[yellow]{len(failures)} step(s) failed:[/yellow]")
        for outcome in failures:
            cause = outcome.error.cause if outcome.error else "unknown error"
            console.print(f"  ⚠ {escape(outcome.name)}: {escape(str(cause))}")
