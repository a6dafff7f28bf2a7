"""Safety-gated worktree decommissioning.

Preflight checks are read-only and fail closed: any violation rejects the
request before anything is touched. The destructive actions that follow are
independent of each other; each failure is collected rather than raised, and
"already absent" conditions become warnings.
"""

from __future__ import annotations

from pathlib import Path

from . import config, git, log
from .errors import IntegrationNotConfiguredError, PreflightViolationError, ServiceFailure
from .models import CleanupOutcome, ForemanSettings
from .ports import IssueTracker, PullRequestSource

_log = log.component("cleanup")


def _verify_merged(
    branch: str, prs: PullRequestSource, *, strict: bool, warnings: list[str]
) -> None:
    unconfigured = "PR host integration not configured, skipping merge verification"
    if prs.configured():
        try:
            candidates = prs.list_prs_for_branch(branch)
        except IntegrationNotConfiguredError:
            candidates = None
        except ServiceFailure as exc:
            raise PreflightViolationError(f"could not verify merge status of {branch}: {exc}") from exc
        if candidates is not None:
            merged = next((pr for pr in candidates if pr.merged_at is not None), None)
            if merged is None:
                raise PreflightViolationError(
                    f"branch {branch} has no merged pull request; refusing to clean up",
                )
            _log.info(f"PR #{merged.number} for {branch} is merged")
            return
    if strict:
        raise PreflightViolationError(
            "PR host integration is not configured; cannot verify merge status",
            recovery_hint="configure FOREMAN_GITHUB_REPO or unset FOREMAN_STRICT_CLEANUP",
        )
    warnings.append(unconfigured)


def run_preflight(
    path: Path,
    branch: str,
    settings: ForemanSettings,
    prs: PullRequestSource,
) -> list[str]:
    """Run the read-only cleanup checks.

    Returns:
        Warnings gathered along the way.

    Raises:
        PreflightViolationError: When any invariant fails.
    """
    warnings: list[str] = []
    if not path.is_dir():
        raise PreflightViolationError(f"worktree directory does not exist: {path}")

    _verify_merged(branch, prs, strict=settings.strict_cleanup, warnings=warnings)

    status = git.working_tree_status(path, git_path=settings.git_path)
    if not status.ok:
        raise PreflightViolationError(f"could not check git status in {path}: {status.detail}")
    if status.stdout.strip():
        raise PreflightViolationError(
            "worktree has uncommitted changes",
            recovery_hint="commit or discard them before cleanup",
        )

    unpushed = git.unpushed_commits(path, branch, git_path=settings.git_path)
    if not unpushed.ok:
        message = "could not check unpushed commits (remote branch may not exist)"
        warnings.append(message)
        _log.debug(f"{message}: {unpushed.detail}")
    elif unpushed.stdout.strip():
        raise PreflightViolationError(
            "branch has unpushed commits",
            recovery_hint="push them before cleanup",
        )
    return warnings


def _remove_worktree(repo_dir: Path, path: Path, git_path: str, outcome: CleanupOutcome) -> None:
    try:
        registered = git.find_worktree(git.list_worktrees(repo_dir, git_path=git_path), path=path)
    except RuntimeError as exc:
        outcome.errors.append(f"failed to list worktrees: {exc}")
        return
    if registered is None:
        outcome.warnings.append("worktree not registered, skipping removal")
        return
    result = git.remove_worktree(repo_dir, path, git_path=git_path)
    if result.ok:
        _log.info(f"removed worktree {path}")
    else:
        outcome.errors.append(f"failed to remove worktree: {result.detail}")


def _delete_local_branch(repo_dir: Path, branch: str, git_path: str, outcome: CleanupOutcome) -> None:
    if not git.local_branch_exists(repo_dir, branch, git_path=git_path):
        outcome.warnings.append("local branch already deleted")
        return
    result = git.delete_local_branch(repo_dir, branch, git_path=git_path)
    if result.ok:
        _log.info(f"deleted local branch {branch}")
    else:
        outcome.errors.append(f"failed to delete local branch: {result.detail}")


def _delete_remote_branch(repo_dir: Path, branch: str, git_path: str, outcome: CleanupOutcome) -> None:
    if git.git_has_remote_branch(repo_dir, branch, git_path=git_path) is False:
        outcome.warnings.append("remote branch already deleted")
        return
    result = git.delete_remote_branch(repo_dir, branch, git_path=git_path)
    if result.ok:
        _log.info(f"deleted remote branch {branch}")
    elif git.is_missing_remote_ref(result.detail):
        outcome.warnings.append("remote branch already deleted")
    else:
        outcome.errors.append(f"failed to delete remote branch: {result.detail}")


def _transition_issue(ticket: str, tracker: IssueTracker, outcome: CleanupOutcome) -> None:
    if not tracker.configured():
        outcome.warnings.append("issue tracker not configured, skipping issue update")
        return
    try:
        tracker.transition_to_done(ticket)
    except ServiceFailure as exc:
        outcome.errors.append(f"failed to move {ticket} to done: {exc}")
        return
    _log.info(f"moved {ticket} to done")


def cleanup_worktree(
    path: Path,
    branch: str,
    settings: ForemanSettings,
    *,
    prs: PullRequestSource,
    tracker: IssueTracker,
    ticket: str | None = None,
) -> CleanupOutcome:
    """Tear down a merged branch's worktree, local branch and remote branch.

    Args:
        path: Worktree directory.
        branch: Branch checked out in the worktree.
        settings: Process settings.
        prs: Pull-request source used for merge verification.
        tracker: Issue tracker used for the optional done transition.
        ticket: Tracker identifier to move to its done state.

    Returns:
        ``CleanupOutcome``; ``rejected`` is set when a preflight check failed.
    """
    repo_dir = config.require_repo_path(settings)
    path = path.expanduser().resolve()
    git_path = settings.git_path
    _log.info(f"cleaning up {branch} at {path}")

    try:
        warnings = run_preflight(path, branch, settings, prs)
    except PreflightViolationError as exc:
        reason = str(exc)
        if exc.recovery_hint:
            reason = f"{reason} ({exc.recovery_hint})"
        _log.error(f"preflight failed: {reason}")
        return CleanupOutcome(errors=[reason], rejected=True)

    outcome = CleanupOutcome(warnings=warnings)
    _remove_worktree(repo_dir, path, git_path, outcome)
    _delete_local_branch(repo_dir, branch, git_path, outcome)
    _delete_remote_branch(repo_dir, branch, git_path, outcome)
    if ticket:
        _transition_issue(ticket, tracker, outcome)

    for warning in outcome.warnings:
        _log.warning(warning)
    if outcome.ok:
        _log.success(f"cleaned up {branch}")
    else:
        _log.error(f"cleanup of {branch} finished with errors: {'; '.join(outcome.errors)}")
    return outcome
