"""Git helper functions used by the worktree provisioner and decommissioner."""

from __future__ import annotations

import re
from pathlib import Path
from urllib.parse import urlparse

from . import exec as exec_util
from .errors import DependencyMissingError
from .models import Worktree

_HEADS_PREFIX = "refs/heads/"


def git_command(args: list[str], *, git_path: str | None = None) -> list[str]:
    """Build a git command using an optional executable path.

    Example:
        >>> git_command(["status"], git_path=" ")
        ['git', 'status']
    """
    resolved = git_path.strip() if isinstance(git_path, str) else ""
    if not resolved:
        resolved = "git"
    return [resolved, *args]


def _run_git(
    args: list[str], *, cwd: Path | None = None, git_path: str | None = None
) -> exec_util.CommandResult:
    argv = git_command(args, git_path=git_path)
    result = exec_util.run_with_runner(exec_util.CommandRequest(argv=tuple(argv), cwd=cwd))
    if result is None:
        raise DependencyMissingError(
            f"missing required command: {argv[0]}",
            recovery_hint="install git or set FOREMAN_GIT_PATH",
        )
    return result


def _in_repo(repo_dir: Path, *args: str) -> list[str]:
    return ["-C", str(repo_dir), *args]


def short_branch_name(ref: str) -> str:
    """Strip the ``refs/heads/`` prefix from a ref name.

    Example:
        >>> short_branch_name("refs/heads/feature/a-1")
        'feature/a-1'
        >>> short_branch_name("main")
        'main'
    """
    if ref.startswith(_HEADS_PREFIX):
        return ref[len(_HEADS_PREFIX) :]
    return ref


def parse_worktree_porcelain(output: str) -> list[Worktree]:
    """Parse ``git worktree list --porcelain`` output.

    Example:
        >>> text = "worktree /r\\nHEAD abc\\nbranch refs/heads/main\\n\\nworktree /w\\nHEAD def\\ndetached\\n"
        >>> [(w.path.as_posix(), w.branch) for w in parse_worktree_porcelain(text)]
        [('/r', 'main'), ('/w', None)]
    """
    worktrees: list[Worktree] = []
    path: str | None = None
    branch: str | None = None
    head: str | None = None

    def flush() -> None:
        if path is not None:
            worktrees.append(Worktree(path=Path(path), branch=branch, head=head))

    for line in output.splitlines():
        if line.startswith("worktree "):
            flush()
            path = line[len("worktree ") :].strip()
            branch = None
            head = None
        elif line.startswith("HEAD "):
            head = line[len("HEAD ") :].strip()
        elif line.startswith("branch "):
            branch = short_branch_name(line[len("branch ") :].strip())
    flush()
    return worktrees


def list_worktrees(repo_dir: Path, *, git_path: str | None = None) -> list[Worktree]:
    """Return the worktrees registered with a repository.

    Raises:
        DependencyMissingError: When git is not installed.
        RuntimeError: When git cannot list the worktrees.
    """
    result = _run_git(_in_repo(repo_dir, "worktree", "list", "--porcelain"), git_path=git_path)
    if not result.ok:
        raise RuntimeError(f"git worktree list failed in {repo_dir}: {result.detail}")
    return parse_worktree_porcelain(result.stdout)


def find_worktree(worktrees: list[Worktree], *, path: Path) -> Worktree | None:
    """Find the worktree registered at ``path`` (compared after resolving)."""
    resolved = path.resolve()
    for worktree in worktrees:
        if worktree.path.resolve() == resolved:
            return worktree
    return None


def git_origin_url(repo_dir: Path, *, git_path: str | None = None) -> str | None:
    """Return the ``origin`` remote URL for a repository, or ``None``."""
    result = _run_git(_in_repo(repo_dir, "remote", "get-url", "origin"), git_path=git_path)
    if not result.ok:
        return None
    origin = result.stdout.strip()
    return origin or None


def github_slug_from_url(value: str) -> str | None:
    """Derive an ``owner/name`` slug from a GitHub remote URL.

    Example:
        >>> github_slug_from_url("git@github.com:acme/widgets.git")
        'acme/widgets'
        >>> github_slug_from_url("https://github.com/acme/widgets")
        'acme/widgets'
        >>> github_slug_from_url("/srv/repos/widgets") is None
        True
    """
    raw = value.strip()
    scp_match = re.match(r"^[^@]+@(?P<host>[^:]+):(?P<path>.+)$", raw)
    if scp_match:
        host = scp_match.group("host").lower()
        path = scp_match.group("path")
    elif "://" in raw:
        parsed = urlparse(raw)
        host = (parsed.hostname or "").lower()
        path = parsed.path or ""
    else:
        return None
    if host != "github.com":
        return None
    path = path.strip("/")
    if path.lower().endswith(".git"):
        path = path[: -len(".git")]
    parts = [part for part in path.split("/") if part]
    if len(parts) != 2:
        return None
    return "/".join(parts)


def git_ref_exists(repo_dir: Path, ref: str, *, git_path: str | None = None) -> bool:
    """Check whether a fully qualified ref exists (``show-ref --verify``)."""
    result = _run_git(
        _in_repo(repo_dir, "show-ref", "--verify", "--quiet", ref), git_path=git_path
    )
    return result.ok


def local_branch_exists(repo_dir: Path, branch: str, *, git_path: str | None = None) -> bool:
    return git_ref_exists(repo_dir, f"{_HEADS_PREFIX}{branch}", git_path=git_path)


def git_has_remote_branch(
    repo_dir: Path, branch: str, *, git_path: str | None = None
) -> bool | None:
    """Check whether a branch exists on ``origin``.

    Returns:
        ``True`` if the branch exists, ``False`` if not, ``None`` on error.
    """
    ref = f"{_HEADS_PREFIX}{branch}"
    result = _run_git(_in_repo(repo_dir, "ls-remote", "--heads", "origin", ref), git_path=git_path)
    if not result.ok:
        return None
    for line in result.stdout.splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[1] == ref:
            return True
    return False


def fetch_all(repo_dir: Path, *, git_path: str | None = None) -> exec_util.CommandResult:
    return _run_git(_in_repo(repo_dir, "fetch", "--all", "--prune"), git_path=git_path)


def fetch_branch(
    repo_dir: Path, branch: str, *, git_path: str | None = None
) -> exec_util.CommandResult:
    return _run_git(_in_repo(repo_dir, "fetch", "origin", branch), git_path=git_path)


def verify_ref(repo_dir: Path, ref: str, *, git_path: str | None = None) -> exec_util.CommandResult:
    """Run ``rev-parse --verify`` for a ref and return the raw result."""
    return _run_git(_in_repo(repo_dir, "rev-parse", "--verify", "--quiet", ref), git_path=git_path)


def add_worktree(
    repo_dir: Path,
    branch: str,
    base_ref: str,
    target_path: Path,
    *,
    git_path: str | None = None,
) -> exec_util.CommandResult:
    """Add a worktree, creating or force-resetting ``branch`` to ``base_ref``."""
    return _run_git(
        _in_repo(repo_dir, "worktree", "add", "-B", branch, str(target_path), base_ref),
        git_path=git_path,
    )


def remove_worktree(
    repo_dir: Path, path: Path, *, git_path: str | None = None
) -> exec_util.CommandResult:
    """Force-remove a worktree registration and its directory."""
    return _run_git(
        _in_repo(repo_dir, "worktree", "remove", "--force", str(path)), git_path=git_path
    )


def delete_local_branch(
    repo_dir: Path, branch: str, *, git_path: str | None = None
) -> exec_util.CommandResult:
    return _run_git(_in_repo(repo_dir, "branch", "-D", branch), git_path=git_path)


def delete_remote_branch(
    repo_dir: Path, branch: str, *, git_path: str | None = None
) -> exec_util.CommandResult:
    return _run_git(_in_repo(repo_dir, "push", "origin", "--delete", branch), git_path=git_path)


def working_tree_status(path: Path, *, git_path: str | None = None) -> exec_util.CommandResult:
    """Return the raw ``git status --porcelain`` result for a worktree."""
    return _run_git(_in_repo(path, "status", "--porcelain"), git_path=git_path)


def unpushed_commits(
    path: Path, branch: str, *, git_path: str | None = None
) -> exec_util.CommandResult:
    """Return the raw ``git log origin/<branch>..<branch> --oneline`` result."""
    return _run_git(
        _in_repo(path, "log", f"origin/{branch}..{branch}", "--oneline"), git_path=git_path
    )


def submodule_update(path: Path, *, git_path: str | None = None) -> exec_util.CommandResult:
    return _run_git(
        _in_repo(path, "submodule", "update", "--init"), git_path=git_path
    )


def is_missing_remote_ref(detail: str) -> bool:
    """Return whether a push failure says the remote ref was already gone.

    Example:
        >>> is_missing_remote_ref("error: unable to delete 'x': remote ref does not exist")
        True
        >>> is_missing_remote_ref("fatal: Authentication failed")
        False
    """
    lowered = detail.lower()
    return "remote ref does not exist" in lowered or "does not exist" in lowered
