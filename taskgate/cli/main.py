"""Main CLI entry point using Typer."""

import json
from pathlib import Path

import anyio
import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from taskgate import __version__
from taskgate.core.config import get_settings, load_project_config
from taskgate.core.errors import ConfigError, PlanningError, PRDError
from taskgate.core.logging import configure_logging
from taskgate.orchestrator.runner import PhaseOrchestrator, PhaseRunResult, git_worktree_provider
from taskgate.pipeline.checks import PrePRCheckOptions, format_command_result, run_pre_pr_checks
from taskgate.prd.parser import parse_prd_file
from taskgate.scheduling.scheduler import Scheduler

app = typer.Typer(
    name="taskgate",
    help="taskgate - plan agent tasks into waves and gate their changes before PR",
    add_completion=True,
    rich_markup_mode="rich",
)

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold blue]taskgate[/bold blue] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        "-d",
        help="Enable debug logging.",
    ),
) -> None:
    """
    taskgate - dependency-aware scheduling and pre-PR safety checks.
    """
    settings = get_settings()
    if debug:
        settings = settings.model_copy(update={"taskgate_debug": True, "taskgate_log_level": "DEBUG"})
    configure_logging(settings, log_to_file=False)


@app.command()
def plan(
    prd: Path = typer.Argument(..., help="Path to the PRD markdown file"),
    as_json: bool = typer.Option(False, "--json", help="Print the plan as JSON"),
) -> None:
    """
    Show the execution waves and overlap groups for a PRD.

    Example:
        taskgate plan docs/prd/checkout.md
    """
    try:
        parsed = parse_prd_file(prd)
        scheduler = Scheduler()
        execution_plan = scheduler.plan(parsed.tasks)
    except (PRDError, PlanningError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1) from e

    if as_json:
        console.print_json(json.dumps(execution_plan.to_dict()))
        return

    console.print(
        Panel(
            f"[bold]{parsed.metadata.feature_name}[/bold] ({parsed.phase_id})\n"
            f"{len(parsed.tasks)} tasks in {execution_plan.total_waves} waves",
            title="[bold blue]Execution Plan[/bold blue]",
            border_style="blue",
        )
    )

    table = Table(title="Waves")
    table.add_column("Wave", style="cyan", justify="right")
    table.add_column("Task", style="green")
    table.add_column("Title")
    table.add_column("Cost ceiling", justify="right")
    table.add_column("Depends on", style="dim")
    for index, wave in enumerate(execution_plan.waves):
        for tid in wave:
            task = parsed.get_task(tid)
            if task is None:
                continue
            table.add_row(
                str(index),
                tid,
                task.title,
                f"${task.cost_ceiling:.2f}",
                ", ".join(task.depends_on) or "-",
            )
    console.print(table)

    overlaps = scheduler.overlaps
    if overlaps is not None and overlaps.has_overlaps:
        console.print("\n[bold yellow]Sequential groups (shared files):[/bold yellow]")
        for group in execution_plan.sequential_groups:
            console.print(f"  {' -> '.join(group)}")
        for overlap in overlaps.overlaps:
            console.print(f"  [dim]{overlap.file}: {', '.join(overlap.task_ids)}[/dim]")


@app.command()
def check(
    worktree: Path = typer.Argument(..., help="Task worktree to check"),
    target: str = typer.Option(..., "--target", "-t", help="Branch to rebase onto"),
    config_path: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Project config (defaults to .taskgate/config.yaml)",
    ),
) -> None:
    """
    Run pre-PR checks (rebase, build, typecheck, diff, boundaries) on a worktree.

    Example:
        taskgate check ../worktrees/1a --target feature/phase-1
    """
    try:
        config = load_project_config(config_path)
    except ConfigError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1) from e

    options = PrePRCheckOptions.from_config(
        config,
        worktree.resolve(),
        target,
        command_timeout=float(get_settings().taskgate_command_timeout),
    )

    async def execute() -> bool:
        result = await run_pre_pr_checks(options)

        for command_result in (result.build, result.typecheck):
            if command_result is not None:
                console.print(format_command_result(command_result))
        if result.typecheck_skipped:
            console.print("[dim]- typecheck skipped (no command configured)[/dim]")

        if result.changed_files:
            console.print(f"\n[bold]Changed files:[/bold] {len(result.changed_files)}")
        if result.caution_files:
            console.print("[bold yellow]Requires review:[/bold yellow]")
            for file in result.caution_files:
                console.print(f"  {file}")

        if result.success:
            console.print("\n[bold green]Pre-PR checks passed[/bold green]")
        else:
            console.print(f"\n[bold red]Pre-PR checks failed:[/bold red] {result.error_message}")
        return result.success

    if not anyio.run(execute):
        raise typer.Exit(1)


STATUS_STYLES = {
    "passed": "green",
    "failed": "red",
    "budget_exceeded": "red",
    "skipped": "yellow",
}


def _print_run_result(result: PhaseRunResult) -> None:
    table = Table(title=f"Phase {result.phase_id}")
    table.add_column("Wave", style="cyan", justify="right")
    table.add_column("Task", style="green")
    table.add_column("Status")
    table.add_column("Cost", justify="right")
    table.add_column("Detail", style="dim")
    for tid in [t for wave in result.plan.waves for t in wave]:
        outcome = result.outcomes[tid]
        style = STATUS_STYLES.get(outcome.status.value, "white")
        table.add_row(
            str(outcome.wave_number),
            tid,
            f"[{style}]{outcome.status.value}[/{style}]",
            f"${outcome.cost.cost:.2f}" if outcome.cost else "-",
            escape(outcome.error or ""),
        )
    console.print(table)
    console.print(f"Total spent: ${result.cost_summary.total_actual:.2f}")

    caution = sorted({f for o in result.outcomes.values() if o.checks for f in o.checks.caution_files})
    if caution:
        console.print("[bold yellow]Requires review:[/bold yellow]")
        for file in caution:
            console.print(f"  {file}")

    if result.halted:
        console.print(f"\n[bold red]Phase halted:[/bold red] {result.halt_reason}")
    elif result.success:
        console.print("\n[bold green]All tasks passed[/bold green]")
    else:
        console.print(
            f"\n[bold red]{len(result.failed_tasks)} failed, "
            f"{len(result.skipped_tasks)} skipped[/bold red]"
        )


@app.command()
def run(
    prd: Path = typer.Argument(..., help="Path to the PRD markdown file"),
    target: str = typer.Option(..., "--target", "-t", help="Branch every task is rebased onto"),
    config_path: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Project config (defaults to .taskgate/config.yaml)",
    ),
    repo: Path = typer.Option(Path("."), "--repo", "-r", help="Repository to branch task worktrees from"),
    worktrees: Path | None = typer.Option(
        None,
        "--worktrees",
        help="Directory for task worktrees (defaults to <repo>/.taskgate/worktrees)",
    ),
    parallel: int | None = typer.Option(
        None,
        "--parallel",
        "-p",
        min=1,
        max=20,
        help="Tasks run concurrently per wave",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
) -> None:
    """
    Run every task of a PRD phase: agent, cost accounting and pre-PR checks.

    Each task gets its own branch and worktree created from the target branch.

    Example:
        taskgate run docs/prd/checkout.md --target feature/phase-1 --parallel 3
    """
    try:
        parsed = parse_prd_file(prd)
        config = load_project_config(config_path)
    except (PRDError, ConfigError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1) from e

    repo_root = repo.resolve()
    orchestrator = PhaseOrchestrator(
        config=config,
        phase_id=parsed.phase_id,
        target_branch=target,
        worktree_provider=git_worktree_provider(
            repo_root,
            (worktrees or repo_root / ".taskgate" / "worktrees").resolve(),
            parsed.phase_id,
            target,
        ),
        max_parallel=parallel,
    )

    try:
        result = anyio.run(orchestrator.run, parsed.tasks)
    except PlanningError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1) from e

    if as_json:
        console.print_json(json.dumps(result.to_dict()))
    else:
        _print_run_result(result)

    if not result.success:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
