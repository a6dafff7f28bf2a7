"""Pydantic models and value types shared across Foreman."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_PARALLEL_MIN = 1
MAX_PARALLEL_MAX = 10
POLL_INTERVAL_MIN = 5
POLL_INTERVAL_MAX = 60
DEFAULT_MAX_PARALLEL = 3
DEFAULT_POLL_INTERVAL = 10

DEFAULT_BASE_BRANCH = "main"
DEFAULT_AGENT_COMMAND = "claude --dangerously-skip-permissions"
DEFAULT_AGENT_STARTUP_DELAY = 8.0


class AutopilotConfig(BaseModel):
    """Operator-controlled desired state for the reconciliation loop.

    Serialized with the camelCase keys ``enabled``, ``maxParallelAgents`` and
    ``pollIntervalSeconds``.

    Example:
        >>> AutopilotConfig().model_dump(by_alias=True)
        {'enabled': False, 'maxParallelAgents': 3, 'pollIntervalSeconds': 10}
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    enabled: bool = Field(default=False, strict=True)
    max_parallel_agents: int = Field(
        default=DEFAULT_MAX_PARALLEL,
        alias="maxParallelAgents",
        ge=MAX_PARALLEL_MIN,
        le=MAX_PARALLEL_MAX,
        strict=True,
    )
    poll_interval_seconds: int = Field(
        default=DEFAULT_POLL_INTERVAL,
        alias="pollIntervalSeconds",
        ge=POLL_INTERVAL_MIN,
        le=POLL_INTERVAL_MAX,
        strict=True,
    )


class ForemanSettings(BaseModel):
    """Process-level settings resolved once at host start-up.

    Attributes:
        repo_path: Git repository whose worktree registry is managed.
        worktree_base: Directory that directly contains per-branch worktrees.
        base_branch: Branch pull requests target; fallback base for new branches.
        github_repo: ``owner/name`` slug for pull-request queries.
        linear_api_key: Issue-tracker API key.
        agent_template_path: Directory holding ``.claude/agents`` templates.
        agent_command: Command typed into a new agent session.
        agent_startup_delay: Seconds to wait before sending the kick-off prompt.
        state_path: Location of the persisted autopilot config.
        git_path: Git executable.
        command_timeout: Subprocess timeout in seconds (``None`` = unbounded).
        require_remote_branch: Fail provisioning when ``origin/<branch>`` is absent.
        strict_cleanup: Refuse cleanup when merge status cannot be verified.
    """

    model_config = ConfigDict(extra="ignore")

    repo_path: Path | None = None
    worktree_base: Path | None = None
    base_branch: str = DEFAULT_BASE_BRANCH
    github_repo: str | None = None
    linear_api_key: str | None = None
    agent_template_path: Path | None = None
    agent_command: str = DEFAULT_AGENT_COMMAND
    agent_startup_delay: float = Field(default=DEFAULT_AGENT_STARTUP_DELAY, ge=0)
    state_path: Path
    git_path: str = "git"
    command_timeout: float | None = Field(default=None, gt=0)
    require_remote_branch: bool = False
    strict_cleanup: bool = False

    @field_validator(
        "github_repo", "linear_api_key", "repo_path", "worktree_base", mode="before"
    )
    @classmethod
    def normalize_optional_strings(cls, value: object) -> object:
        if isinstance(value, str):
            normalized = value.strip()
            return normalized or None
        return value

    @field_validator("base_branch", "git_path", "agent_command", mode="before")
    @classmethod
    def strip_required_strings(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value


@dataclass(frozen=True)
class PullRequest:
    """Open or historical pull request as reported by the host."""

    number: int
    branch: str
    title: str = ""
    merged_at: datetime | None = None


@dataclass(frozen=True)
class TrackedIssueState:
    type: str
    name: str


@dataclass(frozen=True)
class TrackedIssue:
    identifier: str
    state: TrackedIssueState
    title: str = ""


@dataclass(frozen=True)
class WorkItem:
    """A pull request that may need an agent; identity is the branch."""

    pr_number: int
    branch: str
    title: str
    tracker_identifier: str


@dataclass(frozen=True)
class Worktree:
    path: Path
    branch: str | None = None
    head: str | None = None


@dataclass(frozen=True)
class AgentSession:
    name: str


@dataclass(frozen=True)
class StepResult:
    """One entry in a provisioning results log."""

    step: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""


@dataclass
class ProvisionResult:
    ok: bool
    branch: str
    path: Path
    existed: bool = False
    steps: list[StepResult] = field(default_factory=list)
    error: str | None = None


@dataclass
class CleanupOutcome:
    """Result of a decommission request.

    ``rejected`` means a preflight check failed and nothing was touched;
    errors without ``rejected`` mean a partial failure of the destructive phase.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    rejected: bool = False

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def partial(self) -> bool:
        return bool(self.errors) and not self.rejected


@dataclass(frozen=True)
class ControlResult:
    ok: bool
    error: str | None = None


class AutopilotStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    enabled: bool
    max_parallel_agents: int = Field(alias="maxParallelAgents")
    poll_interval_seconds: int = Field(alias="pollIntervalSeconds")
    running_agents_count: int = Field(alias="runningAgentsCount")
    running_sessions: list[str] = Field(alias="runningSessions")
    is_polling: bool = Field(alias="isPolling")


@dataclass
class TickReport:
    """What one reconciliation tick observed and did."""

    candidates: int = 0
    eligible: list[str] = field(default_factory=list)
    needs_agent: list[str] = field(default_factory=list)
    running_sessions: list[str] = field(default_factory=list)
    available_slots: int = 0
    spawned: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
