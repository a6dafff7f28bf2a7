"""Foreman command-line interface."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Optional

import typer

from . import __version__, log
from .commands import autopilot as autopilot_cmd
from .commands import worktree as worktree_cmd

app = typer.Typer(
    help="Keep one coding agent working on every eligible pull request.",
    no_args_is_help=True,
    add_completion=False,
)
worktree_app = typer.Typer(help="Provision and decommission per-branch worktrees.")
app.add_typer(worktree_app, name="worktree")

_REPO_HELP = "Repository whose worktrees are managed (overrides FOREMAN_REPO_PATH)."


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"foreman {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help=f"Log level: {', '.join(log.LEVEL_NAMES)}.",
    ),
    no_color: bool = typer.Option(False, "--no-color", help="Disable coloured output."),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    if log_level is not None:
        log.set_level(log_level)
    if no_color:
        log.set_no_color(True)


@app.command("run")
def run_command(
    repo: Optional[str] = typer.Option(None, "--repo", help=_REPO_HELP),
    start: bool = typer.Option(
        True,
        "--start/--no-start",
        help="Enable the loop if disabled; otherwise wait for `foreman start`.",
    ),
) -> None:
    """Host the reconciliation loop until interrupted."""
    autopilot_cmd.run_autopilot(SimpleNamespace(repo=repo, start=start))


@app.command("start")
def start_command(
    repo: Optional[str] = typer.Option(None, "--repo", help=_REPO_HELP),
) -> None:
    """Enable the autopilot; a running host starts ticking."""
    autopilot_cmd.enable_autopilot(SimpleNamespace(repo=repo))


@app.command("stop")
def stop_command(
    repo: Optional[str] = typer.Option(None, "--repo", help=_REPO_HELP),
) -> None:
    """Disable the autopilot; a running host stops after its current tick."""
    autopilot_cmd.disable_autopilot(SimpleNamespace(repo=repo))


@app.command("poll")
def poll_command(
    repo: Optional[str] = typer.Option(None, "--repo", help=_REPO_HELP),
) -> None:
    """Run a single reconciliation tick."""
    autopilot_cmd.poll_autopilot(SimpleNamespace(repo=repo))


@app.command("status")
def status_command(
    repo: Optional[str] = typer.Option(None, "--repo", help=_REPO_HELP),
) -> None:
    """Show the desired state and the live agent sessions."""
    autopilot_cmd.status_autopilot(SimpleNamespace(repo=repo))


@app.command("set-max")
def set_max_command(
    value: int = typer.Argument(..., help="Maximum parallel agents (1-10)."),
    repo: Optional[str] = typer.Option(None, "--repo", help=_REPO_HELP),
) -> None:
    """Set the maximum number of parallel agents."""
    autopilot_cmd.set_max_parallel(SimpleNamespace(value=value, repo=repo))


@worktree_app.command("create")
def worktree_create_command(
    branch: str = typer.Argument(..., help="Branch to check out."),
    repo: Optional[str] = typer.Option(None, "--repo", help=_REPO_HELP),
) -> None:
    """Create (or reuse) the worktree for a branch."""
    worktree_cmd.create(SimpleNamespace(branch=branch, repo=repo))


@worktree_app.command("list")
def worktree_list_command(
    repo: Optional[str] = typer.Option(None, "--repo", help=_REPO_HELP),
) -> None:
    """List registered worktrees."""
    worktree_cmd.list_worktrees(SimpleNamespace(repo=repo))


@worktree_app.command("cleanup")
def worktree_cleanup_command(
    path: str = typer.Argument(..., help="Worktree directory."),
    branch: str = typer.Argument(..., help="Branch checked out in the worktree."),
    ticket: Optional[str] = typer.Option(
        None, "--ticket", help="Tracker issue to move to done after cleanup."
    ),
    repo: Optional[str] = typer.Option(None, "--repo", help=_REPO_HELP),
) -> None:
    """Remove a merged branch's worktree, local branch and remote branch."""
    worktree_cmd.cleanup(SimpleNamespace(path=path, branch=branch, ticket=ticket, repo=repo))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
