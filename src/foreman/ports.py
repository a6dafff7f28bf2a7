"""Typed collaborator ports consumed by the reconciliation loop and cleanup."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from .models import AgentSession, PullRequest, TrackedIssue


class PullRequestSource(Protocol):
    """Pull-request host queries."""

    def configured(self) -> bool: ...

    def list_open_prs(self, base_branch: str) -> list[PullRequest]: ...

    def list_prs_for_branch(self, branch: str) -> list[PullRequest]: ...


class IssueTracker(Protocol):
    """Issue-tracker reads and the terminal transition."""

    def configured(self) -> bool: ...

    def get_issue(self, identifier: str) -> TrackedIssue | None: ...

    def transition_to_done(self, identifier: str) -> None: ...


class SessionBackend(Protocol):
    """Named interactive sessions bound to a working directory."""

    def session_exists(self, name: str) -> bool: ...

    def create_session(self, name: str, path: Path) -> None: ...

    def send_keys(self, name: str, keys: list[str]) -> None: ...

    def list_all_sessions(self) -> list[AgentSession]: ...
