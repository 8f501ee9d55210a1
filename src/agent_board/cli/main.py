"""Main CLI for agent-board."""

from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from ..core.config import DEFAULT_CONFIG_PATH, load_config
from ..core.git_operations import workspace_status
from ..core.runner import Runner
from ..core.task import InvalidTransitionError, Task, TaskStatus
from ..sandbox.container_launcher import ContainerLauncher
from ..sandbox.launcher import AgentLaunchError
from ..store.task_store import TaskNotFoundError
from ..utils.rich_logging import setup_logging


console = Console()

STATUS_STYLES = {
    TaskStatus.BACKLOG.value: "dim",
    TaskStatus.IN_PROGRESS.value: "cyan",
    TaskStatus.WAITING.value: "yellow",
    TaskStatus.COMMITTING.value: "magenta",
    TaskStatus.DONE.value: "green",
    TaskStatus.FAILED.value: "red",
    TaskStatus.CANCELLED.value: "dim",
    TaskStatus.ARCHIVED.value: "dim",
}


def _styled_status(status) -> str:
    value = TaskStatus(status).value
    style = STATUS_STYLES.get(value, "white")
    return f"[{style}]{value}[/]"


def _resolve_task_id(runner: Runner, prefix: str) -> str:
    """Accept a full id or any unique prefix of one (usually the short id)."""
    matches = [task_id for task_id in runner.store.task_ids() if task_id.startswith(prefix)]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        raise click.ClickException(f"No task matches '{prefix}'")
    raise click.ClickException(f"'{prefix}' is ambiguous ({len(matches)} tasks)")


def _print_outcome(task: Task) -> None:
    console.print(f"Task [bold]{task.short_id}[/] is {_styled_status(task.status)}")
    if task.result:
        console.print(task.result)


@click.group()
@click.option("--config", "-c", "config_path", default=str(DEFAULT_CONFIG_PATH),
              type=click.Path(dir_okay=False), help="Config file")
@click.pass_context
def cli(ctx, config_path):
    """agent-board - run coding agents on isolated worktrees and merge their work."""
    ctx.ensure_object(dict)
    config = load_config(Path(config_path))
    setup_logging(config.log_level, config.log_file)
    ctx.obj["config"] = config
    ctx.obj["runner"] = Runner(config)


@cli.command()
@click.argument("prompt")
@click.option("--timeout", "-t", type=int, default=None, help="Timeout in minutes")
@click.pass_context
def create(ctx, prompt, timeout):
    """Create a task in the backlog."""
    runner = ctx.obj["runner"]
    timeout = timeout or ctx.obj["config"].task.default_timeout_minutes
    task = runner.store.create_task(prompt, timeout_minutes=timeout)
    console.print(f"[green]✓[/] Created task [bold]{task.short_id}[/] ({task.id})")


@cli.command("list")
@click.option("--all", "-a", "include_archived", is_flag=True, help="Include archived tasks")
@click.pass_context
def list_tasks(ctx, include_archived):
    """List tasks."""
    runner = ctx.obj["runner"]
    tasks = runner.store.list_tasks(include_archived=include_archived)
    if not tasks:
        console.print("[dim]No tasks[/]")
        return

    table = Table()
    table.add_column("ID")
    table.add_column("Status")
    table.add_column("Turns", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Prompt")

    for task in tasks:
        table.add_row(
            task.short_id,
            _styled_status(task.status),
            str(task.turns),
            f"${task.usage.cost_usd:.2f}",
            task.prompt.splitlines()[0][:60] if task.prompt else "",
        )
    console.print(table)


@cli.command()
@click.argument("task_id")
@click.pass_context
def show(ctx, task_id):
    """Show one task in detail."""
    runner = ctx.obj["runner"]
    task = runner.store.get_task(_resolve_task_id(runner, task_id))

    console.print(f"[bold]{task.id}[/] {_styled_status(task.status)}")
    console.print(f"Prompt: {task.prompt}")
    console.print(f"Turns: {task.turns}  Session: {task.session_id or '-'}  Stop: {task.stop_reason or '-'}")
    console.print(
        f"Tokens: {task.usage.input_tokens} in / {task.usage.output_tokens} out  "
        f"Cost: ${task.usage.cost_usd:.4f}"
    )
    if task.branch_name:
        console.print(f"Branch: {task.branch_name}")
    for repo, worktree in task.worktree_paths.items():
        console.print(f"  {repo} -> {worktree}")
    if task.result:
        console.print("\n[bold]Result[/]")
        console.print(task.result)


def _run_lifecycle(ctx, task_id, operation):
    runner = ctx.obj["runner"]
    try:
        task = operation(runner, _resolve_task_id(runner, task_id))
    except (InvalidTransitionError, TaskNotFoundError, AgentLaunchError) as e:
        raise click.ClickException(str(e)) from e
    _print_outcome(task)


@cli.command()
@click.argument("task_id")
@click.option("--prompt", "-p", default=None, help="Prompt for the first turn (defaults to the task prompt)")
@click.pass_context
def run(ctx, task_id, prompt):
    """Run a backlog task until it waits, finishes or fails."""
    _run_lifecycle(ctx, task_id, lambda runner, tid: runner.run(tid, prompt=prompt))


@cli.command()
@click.argument("task_id")
@click.argument("message")
@click.pass_context
def feedback(ctx, task_id, message):
    """Answer a waiting task and run its next turn."""
    _run_lifecycle(
        ctx, task_id, lambda runner, tid: runner.submit_feedback(tid, message, background=False),
    )


@cli.command()
@click.argument("task_id")
@click.pass_context
def resume(ctx, task_id):
    """Resume a failed task on its existing session."""
    _run_lifecycle(ctx, task_id, lambda runner, tid: runner.resume(tid, background=False))


@cli.command()
@click.argument("task_id")
@click.option("--keep-worktrees", is_flag=True, help="Keep the task's worktrees and branch")
@click.pass_context
def retry(ctx, task_id, keep_worktrees):
    """Send a task back to the backlog with a fresh session."""
    _run_lifecycle(ctx, task_id, lambda runner, tid: runner.retry(tid, keep_worktrees=keep_worktrees))


@cli.command()
@click.argument("task_id")
@click.pass_context
def commit(ctx, task_id):
    """Run the commit pipeline for a task in committing."""
    _run_lifecycle(ctx, task_id, lambda runner, tid: runner.commit(tid))


@cli.command()
@click.argument("task_id")
@click.pass_context
def sync(ctx, task_id):
    """Rebase a waiting or failed task onto the latest default branch."""
    _run_lifecycle(ctx, task_id, lambda runner, tid: runner.sync(tid))


@cli.command()
@click.argument("task_id")
@click.pass_context
def cancel(ctx, task_id):
    """Cancel a task, stopping its agent and removing its worktrees."""
    _run_lifecycle(ctx, task_id, lambda runner, tid: runner.cancel(tid))


@cli.command()
@click.argument("task_id")
@click.pass_context
def archive(ctx, task_id):
    """Archive a done or cancelled task."""
    _run_lifecycle(ctx, task_id, lambda runner, tid: runner.archive(tid))


@cli.command()
@click.pass_context
def prune(ctx):
    """Remove worktree directories that belong to no known task."""
    runner = ctx.obj["runner"]
    removed = runner.prune_orphans()
    if not removed:
        console.print("[dim]Nothing to prune[/]")
        return
    for name in removed:
        console.print(f"  Removed {name}")
    console.print(f"[green]✓[/] Pruned {len(removed)} orphaned worktree(s)")


@cli.command()
@click.pass_context
def status(ctx):
    """Show each configured repository's branch position."""
    config = ctx.obj["config"]
    if not config.workspace.repositories:
        console.print("[red]No repositories configured[/]")
        console.print("[yellow]Add a 'workspace.repositories' list to your config[/]")
        return

    table = Table()
    table.add_column("Repository")
    table.add_column("Branch")
    table.add_column("Ahead", justify="right")
    table.add_column("Behind", justify="right")
    table.add_column("Behind default", justify="right")

    for repo in config.workspace.repositories:
        st = workspace_status(repo, config.workspace.default_branch)
        if not st.is_git:
            table.add_row(str(repo), "[dim]not a git repository[/]", "-", "-", "-")
            continue
        table.add_row(
            str(repo),
            st.branch or "[dim]detached[/]",
            str(st.ahead) if st.has_remote else "-",
            str(st.behind) if st.has_remote else "-",
            f"{st.behind_main} ({st.main_branch})",
        )
    console.print(table)


@cli.command()
@click.pass_context
def containers(ctx):
    """List agent containers started by agent-board."""
    runner = ctx.obj["runner"]
    if not isinstance(runner.launcher, ContainerLauncher):
        raise click.ClickException("Configured launcher does not run containers")
    try:
        infos = runner.launcher.list_containers()
    except AgentLaunchError as e:
        raise click.ClickException(str(e)) from e

    if not infos:
        console.print("[dim]No agent containers[/]")
        return

    table = Table()
    table.add_column("Name")
    table.add_column("Task")
    table.add_column("State")
    table.add_column("Created")
    for info in infos:
        table.add_row(
            info.name,
            info.task_id[:8] if info.task_id else "-",
            info.state or info.status,
            info.created_at.strftime("%Y-%m-%d %H:%M:%S") if info.created_at else "-",
        )
    console.print(table)


@cli.group()
def instructions():
    """Workspace instructions (CLAUDE.md) mounted into every agent."""


@instructions.command("show")
@click.pass_context
def show_instructions(ctx):
    """Print the instructions file, creating it if needed."""
    path = ctx.obj["runner"].instructions_file()
    if path is None:
        raise click.ClickException("No instructions file available")
    console.print(f"[dim]{path}[/]")
    click.echo(path.read_text())


@instructions.command("reinit")
@click.pass_context
def reinit_instructions(ctx):
    """Rebuild the instructions file from the template and each repository's CLAUDE.md."""
    try:
        path = ctx.obj["runner"].reinit_instructions()
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    console.print(f"[green]✓[/] Rebuilt {path}")


if __name__ == "__main__":
    cli()
