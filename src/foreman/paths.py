"""Path helpers for Foreman state files and per-branch worktree directories."""

import re
from pathlib import Path

from platformdirs import user_data_dir

FOREMAN_APP_NAME = "foreman"
AUTOPILOT_STATE_FILENAME = "autopilot.json"
WORKTREES_DIR_SUFFIX = "-worktrees"

_WORKSPACE_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def foreman_data_dir() -> Path:
    """Return the base Foreman data directory.

    Returns:
        Path to the user data directory for Foreman.

    Example:
        >>> isinstance(foreman_data_dir(), Path)
        True
    """
    return Path(user_data_dir(FOREMAN_APP_NAME))


def autopilot_state_path() -> Path:
    """Return the default location of the persisted autopilot config.

    Example:
        >>> autopilot_state_path().name
        'autopilot.json'
    """
    return foreman_data_dir() / AUTOPILOT_STATE_FILENAME


def default_worktrees_dir(repo_path: Path) -> Path:
    """Return the directory that holds worktrees when none is configured.

    Worktrees sit next to the main checkout, never inside it.

    Example:
        >>> default_worktrees_dir(Path("/src/app")).as_posix()
        '/src/app-worktrees'
    """
    return repo_path.parent / f"{repo_path.name}{WORKTREES_DIR_SUFFIX}"


def workspace_dir_name(branch: str) -> str:
    """Map a branch name to its worktree directory name.

    Every character outside ``[A-Za-z0-9._-]`` becomes ``_``.

    Args:
        branch: Branch name, e.g. ``feature/a-273-login``.

    Returns:
        Directory name for the branch's worktree.

    Example:
        >>> workspace_dir_name("feature/a-273-login")
        'feature_a-273-login'
        >>> workspace_dir_name("fix: umlaut")
        'fix__umlaut'
        >>> workspace_dir_name("..")
        '__'
    """
    name = _WORKSPACE_UNSAFE_CHARS.sub("_", branch)
    if name and not name.strip("."):
        # "." and ".." would resolve outside the worktrees directory
        return "_" * len(name)
    return name


def worktree_path(base_dir: Path, branch: str) -> Path:
    """Return the absolute worktree path for a branch under ``base_dir``."""
    return (base_dir / workspace_dir_name(branch)).resolve()


def ensure_dir(path: Path) -> None:
    """Create a directory if it does not exist.

    Args:
        path: Directory path to ensure exists.
    """
    path.mkdir(parents=True, exist_ok=True)
