"""Configuration helpers for Foreman.

This module owns the desired-state store (the persisted ``AutopilotConfig``)
and resolves process settings from the environment.

Example:
    >>> from foreman.config import parse_flag
    >>> parse_flag("yes")
    True
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Mapping

from pydantic import BaseModel, ValidationError

from . import log, paths
from .errors import IoFailedError, ValidationFailedError
from .models import AutopilotConfig, ForemanSettings

_log = log.component("config")

_TRUE_VALUES = {"1", "true", "yes", "on"}

ENV_REPO_PATH = "FOREMAN_REPO_PATH"
ENV_WORKTREE_BASE = "FOREMAN_WORKTREE_BASE"
ENV_BASE_BRANCH = "FOREMAN_BASE_BRANCH"
ENV_GITHUB_REPO = "FOREMAN_GITHUB_REPO"
ENV_LINEAR_API_KEY = "LINEAR_API_KEY"
ENV_AGENT_TEMPLATE_PATH = "FOREMAN_AGENT_TEMPLATE_PATH"
ENV_AGENT_COMMAND = "FOREMAN_AGENT_COMMAND"
ENV_AGENT_STARTUP_DELAY = "FOREMAN_AGENT_STARTUP_DELAY"
ENV_STATE_PATH = "FOREMAN_STATE_PATH"
ENV_GIT_PATH = "FOREMAN_GIT_PATH"
ENV_COMMAND_TIMEOUT = "FOREMAN_COMMAND_TIMEOUT"
ENV_REQUIRE_REMOTE_BRANCH = "FOREMAN_REQUIRE_REMOTE_BRANCH"
ENV_STRICT_CLEANUP = "FOREMAN_STRICT_CLEANUP"

_SETTINGS_ENV = {
    "repo_path": ENV_REPO_PATH,
    "worktree_base": ENV_WORKTREE_BASE,
    "base_branch": ENV_BASE_BRANCH,
    "github_repo": ENV_GITHUB_REPO,
    "linear_api_key": ENV_LINEAR_API_KEY,
    "agent_template_path": ENV_AGENT_TEMPLATE_PATH,
    "agent_command": ENV_AGENT_COMMAND,
    "agent_startup_delay": ENV_AGENT_STARTUP_DELAY,
    "git_path": ENV_GIT_PATH,
    "command_timeout": ENV_COMMAND_TIMEOUT,
}


def parse_flag(value: str | None) -> bool:
    """Interpret an environment flag value.

    Example:
        >>> parse_flag(None), parse_flag("0"), parse_flag(" On ")
        (False, False, True)
    """
    if value is None:
        return False
    return value.strip().lower() in _TRUE_VALUES


def load_json(path: Path) -> dict | None:
    """Load a JSON file if it exists.

    Args:
        path: Path to the JSON file.

    Returns:
        Parsed payload as a dict, or ``None`` if the file does not exist or
        does not hold a JSON object.
    """
    if not path.exists():
        return None
    with path.open("r", encoding="utf-8") as fh:
        payload = json.load(fh)
    if not isinstance(payload, dict):
        return None
    return payload


def write_json(path: Path, payload: dict | BaseModel) -> None:
    """Write a JSON payload to disk, creating parent directories."""
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(by_alias=True)
    paths.ensure_dir(path.parent)
    tmp_path = path.with_name(f".{path.name}.tmp")
    with tmp_path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2)
        fh.write("\n")
    os.replace(tmp_path, path)


def load_autopilot_config(path: Path) -> AutopilotConfig:
    """Load the persisted autopilot config, never failing.

    A missing or unreadable file yields the defaults. Each field that is
    missing, of the wrong type, or out of range is replaced by its default
    while the remaining valid fields are kept.
    """
    try:
        payload = load_json(path)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        _log.debug(f"unreadable state file {path}: {exc}; using defaults")
        return AutopilotConfig()
    if payload is None:
        _log.debug(f"no state file at {path}; using defaults")
        return AutopilotConfig()

    accepted: dict[str, object] = {}
    for name, field_info in AutopilotConfig.model_fields.items():
        key = field_info.alias or name
        if key not in payload:
            continue
        candidate = {key: payload[key]}
        try:
            AutopilotConfig.model_validate(candidate)
        except ValidationError:
            _log.debug(f"ignoring invalid {key}={payload[key]!r} in {path}")
            continue
        accepted.update(candidate)
    return AutopilotConfig.model_validate(accepted)


def save_autopilot_config(path: Path, config: AutopilotConfig) -> None:
    """Persist the autopilot config as ``{enabled, maxParallelAgents, pollIntervalSeconds}``."""
    try:
        write_json(path, config)
    except OSError as exc:
        raise IoFailedError(f"failed to save autopilot config to {path}: {exc}") from exc
    _log.debug(f"saved {config.model_dump(by_alias=True)} to {path}")


def load_settings(
    env: Mapping[str, str] | None = None,
    **overrides: object,
) -> ForemanSettings:
    """Resolve process settings from environment variables.

    Keyword overrides (e.g. from CLI flags) win over the environment when
    they are not ``None``.
    """
    env = os.environ if env is None else env
    payload: dict[str, object] = {}
    for name, variable in _SETTINGS_ENV.items():
        raw = env.get(variable)
        if raw is not None and raw.strip():
            payload[name] = raw
    payload["state_path"] = env.get(ENV_STATE_PATH) or paths.autopilot_state_path()
    payload["require_remote_branch"] = parse_flag(env.get(ENV_REQUIRE_REMOTE_BRANCH))
    payload["strict_cleanup"] = parse_flag(env.get(ENV_STRICT_CLEANUP))
    payload.update({key: value for key, value in overrides.items() if value is not None})
    try:
        return ForemanSettings.model_validate(payload)
    except ValidationError as exc:
        raise ValidationFailedError(f"invalid settings:\n{exc}") from exc


def require_repo_path(settings: ForemanSettings) -> Path:
    """Return the configured repository path or fail with a hint."""
    if settings.repo_path is None:
        raise ValidationFailedError(
            "repository path is not configured",
            recovery_hint=f"set {ENV_REPO_PATH} or pass --repo",
        )
    return settings.repo_path.expanduser().resolve()


def resolve_worktree_base(settings: ForemanSettings) -> Path:
    """Return the absolute directory that holds per-branch worktrees."""
    if settings.worktree_base is not None:
        return settings.worktree_base.expanduser().resolve()
    return paths.default_worktrees_dir(require_repo_path(settings))
