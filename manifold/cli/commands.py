"""CLI commands for manifold."""

from __future__ import annotations

import asyncio
import shutil
import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from manifold import __version__
from manifold.errors import ManifoldError

app = typer.Typer(
    name="manifold",
    help="manifold - run coding agents side by side in isolated git worktrees",
    no_args_is_help=True,
)
worktrees_app = typer.Typer(help="Manage manifold worktrees of a repository.", no_args_is_help=True)
git_app = typer.Typer(help="Inspect and update a worktree's git state.", no_args_is_help=True)
projects_app = typer.Typer(help="Manage registered projects.", no_args_is_help=True)
app.add_typer(worktrees_app, name="worktrees")
app.add_typer(git_app, name="git")
app.add_typer(projects_app, name="projects")
console = Console()


def version_callback(value: bool) -> None:
    if value:
        console.print(f"manifold v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """manifold entrypoint."""
    del version
    from manifold.config.loader import load_config
    from manifold.utils.helpers import configure_logging

    config = load_config()
    configure_logging(config.log_level, config.log_file or None)


def _run(coro):
    """Run a coroutine, turning manifold and OS errors into a clean exit."""
    try:
        return asyncio.run(coro)
    except (ManifoldError, OSError) as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1)


@app.command()
def status() -> None:
    """Show manifold status."""
    from manifold.agent.runtimes import list_runtimes_with_status
    from manifold.config.loader import get_config_path, load_config

    config_path = get_config_path()
    config = load_config()
    storage = config.storage_dir

    console.print("manifold Status\n")
    console.print(f"Config: {config_path} {'[green]OK[/green]' if config_path.exists() else '[red]NO[/red]'}")
    console.print(f"Storage: {storage} {'[green]OK[/green]' if storage.exists() else '[red]NO[/red]'}")
    console.print(f"Worktrees: {config.worktrees_dir}")
    console.print(f"Default runtime: [cyan]{config.runtimes.default}[/cyan]")
    console.print(f"git: {'[green]found[/green]' if shutil.which('git') else '[red]missing[/red]'}")
    console.print(f"gh: {'[green]found[/green]' if shutil.which('gh') else '[dim]missing[/dim]'}")

    console.print("\nRuntimes:")
    for runtime in list_runtimes_with_status(config):
        state = "[green]installed[/green]" if runtime.installed else "[dim]not found[/dim]"
        args = " ".join(runtime.args)
        console.print(f"  - {runtime.id}: {state} | cmd={runtime.binary} {args}".rstrip())


@app.command("branch-name")
def branch_name(
    repo: Path = typer.Argument(..., help="Repository path."),
    task: str = typer.Argument(..., help="Task description."),
) -> None:
    """Print the branch name a new session for TASK would get."""
    from manifold.git.branch_namer import generate_branch_name

    console.print(_run(generate_branch_name(repo, task)))


@app.command()
def strip() -> None:
    """Read terminal output on stdin and print it without escape sequences."""
    from manifold.agent.chat_adapter import strip_ansi

    console.print(strip_ansi(sys.stdin.read()), markup=False, highlight=False)


# ---------------------------------------------------------------------------
# worktrees
# ---------------------------------------------------------------------------

def _worktree_manager():
    from manifold.config.loader import load_config
    from manifold.git.worktree_manager import WorktreeManager

    return WorktreeManager(load_config().storage_dir)


@worktrees_app.command("list")
def worktrees_list(repo: Path = typer.Argument(..., help="Repository path.")) -> None:
    """List worktrees created by manifold."""
    from manifold.git.worktree_meta import read_worktree_meta

    entries = _run(_worktree_manager().list_worktrees(repo))
    if not entries:
        console.print("[dim]No manifold worktrees.[/dim]")
        return
    table = Table("Branch", "Path", "Runtime", "Task")
    for entry in entries:
        meta = read_worktree_meta(entry.path)
        table.add_row(
            entry.branch,
            entry.path,
            meta.runtime_id if meta else "",
            (meta.task_description or "") if meta else "",
        )
    console.print(table)


@worktrees_app.command("create")
def worktrees_create(
    repo: Path = typer.Argument(..., help="Repository path."),
    base: str = typer.Option("main", "--base", "-b", help="Base branch."),
    task: str = typer.Option("", "--task", "-t", help="Task description used for the branch name."),
    branch: str = typer.Option("", "--branch", help="Explicit branch name."),
    runtime: str = typer.Option("claude", "--runtime", "-r", help="Runtime recorded in the metadata."),
) -> None:
    """Create a worktree on a new branch."""
    from manifold.git.worktree_meta import WorktreeMeta, write_worktree_meta

    repo = repo.expanduser().resolve()
    info = _run(_worktree_manager().create_worktree(repo, base, repo.name, branch or None, task or None))
    write_worktree_meta(info.path, WorktreeMeta(runtime_id=runtime, task_description=task or None))
    console.print(f"[green]OK[/green] {info.branch} -> {info.path}")


@worktrees_app.command("remove")
def worktrees_remove(
    repo: Path = typer.Argument(..., help="Repository path."),
    path: Path = typer.Argument(..., help="Worktree path."),
) -> None:
    """Remove a worktree, its metadata and its manifold branch."""
    _run(_worktree_manager().remove_worktree(repo, path))
    console.print(f"[green]OK[/green] removed {path}")


# ---------------------------------------------------------------------------
# git
# ---------------------------------------------------------------------------

def _git_operations():
    from manifold.config.loader import load_config
    from manifold.git.operations import GitOperationsManager

    config = load_config()
    return GitOperationsManager(
        ai_timeout_s=config.git.ai_generate_timeout_s,
        pr_diff_limit=config.git.pr_diff_limit,
    )


@git_app.command("status")
def git_status(worktree: Path = typer.Argument(Path("."), help="Worktree path.")) -> None:
    """Show conflicted, staged and unstaged paths."""
    detail = _run(_git_operations().get_status_detail(worktree))
    for label, paths, color in (
        ("Conflicts", detail.conflicts, "red"),
        ("Staged", detail.staged, "green"),
        ("Unstaged", detail.unstaged, "yellow"),
    ):
        console.print(f"[{color}]{label}[/{color}] ({len(paths)})")
        for item in paths:
            console.print(f"  {item}")


@git_app.command("ahead-behind")
def git_ahead_behind(
    worktree: Path = typer.Argument(..., help="Worktree path."),
    base: str = typer.Argument("main", help="Base branch."),
) -> None:
    """Show how far a worktree is ahead of / behind its base branch."""
    counts = _run(_git_operations().get_ahead_behind(worktree, base))
    console.print(f"ahead {counts.ahead}, behind {counts.behind}")


@git_app.command("fetch")
def git_fetch(
    repo: Path = typer.Argument(..., help="Repository path."),
    base: str = typer.Argument("main", help="Branch to fast-forward."),
) -> None:
    """Fetch origin and fast-forward the base branch."""
    result = _run(_git_operations().fetch_and_update(repo, base))
    if result.commit_count == 0:
        console.print(f"{result.updated_branch} is up to date")
    else:
        console.print(
            f"[green]OK[/green] {result.updated_branch}: {result.previous_ref[:8]}..{result.current_ref[:8]} "
            f"({result.commit_count} new commits)"
        )


@git_app.command("pr-context")
def git_pr_context(
    worktree: Path = typer.Argument(..., help="Worktree path."),
    base: str = typer.Argument("main", help="Base branch."),
) -> None:
    """Print commits and diff stat relative to the base branch."""
    context = _run(_git_operations().get_pr_context(worktree, base))
    console.print(context.commits or "no commits", markup=False)
    console.print(context.diff_stat, markup=False)


# ---------------------------------------------------------------------------
# projects
# ---------------------------------------------------------------------------

def _project_registry():
    from manifold.config.loader import load_config
    from manifold.session.project_registry import ProjectRegistry

    return ProjectRegistry(load_config().storage_dir)


@projects_app.command("list")
def projects_list() -> None:
    """List registered projects."""
    projects = _project_registry().list_projects()
    if not projects:
        console.print("[dim]No projects registered.[/dim]")
        return
    table = Table("ID", "Name", "Base", "Path")
    for project in projects:
        table.add_row(project.id, project.name, project.base_branch, project.path)
    console.print(table)


@projects_app.command("add")
def projects_add(path: Path = typer.Argument(..., help="Repository path.")) -> None:
    """Register a repository."""
    project = _run(_project_registry().add_project(path))
    console.print(f"[green]OK[/green] {project.name} ({project.base_branch}) id={project.id}")


@projects_app.command("remove")
def projects_remove(project_id: str = typer.Argument(..., help="Project id.")) -> None:
    """Unregister a project (the repository itself is left alone)."""
    if not _project_registry().remove_project(project_id):
        console.print(f"[red]Project not found:[/red] {project_id}")
        raise typer.Exit(1)
    console.print(f"[green]OK[/green] removed {project_id}")
