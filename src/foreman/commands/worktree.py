"""Operator commands for provisioning and decommissioning worktrees."""

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

from .. import config, git
from .. import exec as exec_util
from ..cleanup import cleanup_worktree
from ..errors import ServiceFailure
from ..io import die, die_for, say
from ..models import ForemanSettings
from ..prs import build_pr_source
from ..tracker import build_tracker
from ..worktrees import create_worktree


def _settings(args: SimpleNamespace) -> ForemanSettings:
    try:
        settings = config.load_settings(repo_path=getattr(args, "repo", None))
    except ServiceFailure as exc:
        die_for(exc)
    exec_util.configure_default_timeout(settings.command_timeout)
    return settings


def create(args: SimpleNamespace) -> None:
    settings = _settings(args)
    try:
        result = create_worktree(args.branch, settings)
    except ServiceFailure as exc:
        die_for(exc)
    for step in result.steps:
        say(f"{step.step}: exit {step.exit_code}")
    if not result.ok:
        die(result.error or f"failed to create worktree for {args.branch}")
    suffix = " (already existed)" if result.existed else ""
    say(f"{result.path}{suffix}")


def list_worktrees(args: SimpleNamespace) -> None:
    settings = _settings(args)
    try:
        repo_dir = config.require_repo_path(settings)
        worktrees = git.list_worktrees(repo_dir, git_path=settings.git_path)
    except ServiceFailure as exc:
        die_for(exc)
    except RuntimeError as exc:
        die(str(exc))
    for worktree in worktrees:
        say(f"{worktree.path}\t{worktree.branch or '(detached)'}")


def cleanup(args: SimpleNamespace) -> None:
    settings = _settings(args)
    try:
        outcome = cleanup_worktree(
            Path(args.path),
            args.branch,
            settings,
            prs=build_pr_source(settings),
            tracker=build_tracker(settings.linear_api_key),
            ticket=getattr(args, "ticket", None),
        )
    except ServiceFailure as exc:
        die_for(exc)
    for warning in outcome.warnings:
        say(f"warning: {warning}")
    for error in outcome.errors:
        say(f"error: {error}")
    if outcome.rejected:
        die("cleanup rejected by preflight checks; nothing was changed")
    if outcome.partial:
        die("cleanup completed with errors", code=2)
    say(f"cleaned up {args.branch}")
