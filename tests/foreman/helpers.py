# ruff: noqa: E402

from __future__ import annotations

import sys
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

import foreman.exec as exec_util
from foreman.errors import ExternalServiceError
from foreman.models import (
    AgentSession,
    ForemanSettings,
    PullRequest,
    TrackedIssue,
    TrackedIssueState,
)

MERGED_AT = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)

Handler = Callable[[tuple[str, ...]], "exec_util.CommandResult | None"]


def ok(argv: tuple[str, ...], stdout: str = "") -> exec_util.CommandResult:
    return exec_util.CommandResult(argv=argv, returncode=0, stdout=stdout, stderr="")


def fail(argv: tuple[str, ...], stderr: str = "boom", code: int = 1) -> exec_util.CommandResult:
    return exec_util.CommandResult(argv=argv, returncode=code, stdout="", stderr=stderr)


def git_args(argv: tuple[str, ...]) -> tuple[str, ...]:
    """Strip ``git -C <dir>`` so handlers can match on the subcommand."""
    if len(argv) >= 3 and argv[1] == "-C":
        return argv[3:]
    return argv[1:]


class FakeRunner:
    """Command runner that records requests and answers through a handler.

    Unhandled commands succeed with empty output.
    """

    def __init__(self, handler: Handler | None = None) -> None:
        self.handler = handler
        self.requests: list[exec_util.CommandRequest] = []

    def run(self, request: exec_util.CommandRequest) -> exec_util.CommandResult | None:
        self.requests.append(request)
        if self.handler is not None:
            result = self.handler(request.argv)
            if result is not None:
                return result
        return ok(request.argv)

    @property
    def calls(self) -> list[tuple[str, ...]]:
        return [request.argv for request in self.requests]

    def git_calls(self) -> list[tuple[str, ...]]:
        return [git_args(argv) for argv in self.calls if argv and argv[0] == "git"]

    def ran(self, *prefix: str) -> bool:
        return any(call[: len(prefix)] == prefix for call in self.git_calls())


def porcelain(*entries: tuple[Path, str | None]) -> str:
    blocks = []
    for path, branch in entries:
        lines = [f"worktree {path}", "HEAD 0123456789abcdef"]
        lines.append(f"branch refs/heads/{branch}" if branch else "detached")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks) + "\n"


def make_settings(tmp_path: Path, **overrides: object) -> ForemanSettings:
    repo = tmp_path / "repo"
    repo.mkdir(exist_ok=True)
    data: dict[str, object] = {
        "repo_path": repo,
        "worktree_base": tmp_path / "worktrees",
        "state_path": tmp_path / "state" / "autopilot.json",
        "agent_startup_delay": 0,
    }
    data.update(overrides)
    return ForemanSettings.model_validate(data)


class FakePullRequests:
    def __init__(
        self,
        open_prs: list[PullRequest] | None = None,
        *,
        by_branch: dict[str, list[PullRequest]] | None = None,
        configured: bool = True,
        error: Exception | None = None,
    ) -> None:
        self.open_prs = list(open_prs or [])
        self.by_branch = dict(by_branch or {})
        self._configured = configured
        self.error = error
        self.open_calls: list[str] = []
        self.branch_calls: list[str] = []

    def configured(self) -> bool:
        return self._configured

    def list_open_prs(self, base_branch: str) -> list[PullRequest]:
        self.open_calls.append(base_branch)
        if self.error is not None:
            raise self.error
        return list(self.open_prs)

    def list_prs_for_branch(self, branch: str) -> list[PullRequest]:
        self.branch_calls.append(branch)
        if self.error is not None:
            raise self.error
        return list(self.by_branch.get(branch, []))


def issue(identifier: str, state_type: str = "unstarted", name: str = "Todo") -> TrackedIssue:
    return TrackedIssue(
        identifier=identifier, state=TrackedIssueState(type=state_type, name=name)
    )


class FakeTracker:
    def __init__(
        self,
        issues: dict[str, TrackedIssue] | None = None,
        *,
        configured: bool = True,
        failing: set[str] | None = None,
        transition_error: Exception | None = None,
    ) -> None:
        self.issues = dict(issues or {})
        self._configured = configured
        self.failing = set(failing or ())
        self.transition_error = transition_error
        self.lookups: list[str] = []
        self.transitions: list[str] = []

    def configured(self) -> bool:
        return self._configured

    def get_issue(self, identifier: str) -> TrackedIssue | None:
        self.lookups.append(identifier)
        if identifier in self.failing:
            raise ExternalServiceError(f"lookup failed for {identifier}")
        return self.issues.get(identifier)

    def transition_to_done(self, identifier: str) -> None:
        if self.transition_error is not None:
            raise self.transition_error
        self.transitions.append(identifier)


class FakeSessions:
    """In-memory session backend."""

    def __init__(self, names: list[str] | None = None) -> None:
        self.names: list[str] = list(names or [])
        self.created: list[tuple[str, Path]] = []
        self.keys: list[tuple[str, list[str]]] = []

    def session_exists(self, name: str) -> bool:
        return name in self.names

    def create_session(self, name: str, path: Path) -> None:
        self.names.append(name)
        self.created.append((name, path))

    def send_keys(self, name: str, keys: list[str]) -> None:
        self.keys.append((name, list(keys)))

    def list_all_sessions(self) -> list[AgentSession]:
        return [AgentSession(name=name) for name in self.names]
