"""Pull-request source backed by the GitHub CLI (``gh``)."""

from __future__ import annotations

import json
import shutil
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from . import exec as exec_util
from . import git, log
from .errors import ExternalServiceError, IntegrationNotConfiguredError
from .models import ForemanSettings, PullRequest

_log = log.component("github")

_GH_TIMEOUT_SECONDS = 20.0
_GH_RETRY_ATTEMPTS = 2
_GH_RETRY_BACKOFF_SECONDS = 0.4
_GH_RETRY_ERROR_MARKERS = (
    "timed out",
    "timeout",
    "temporarily unavailable",
    "connection reset",
    "connection refused",
    "network",
    "rate limit",
    "502",
    "503",
    "504",
)
_GH_LIST_LIMIT = "100"
_OPEN_PR_FIELDS = "number,headRefName,title"
_BRANCH_PR_FIELDS = "number,headRefName,title,mergedAt"


@dataclass(frozen=True)
class GithubClient:
    """Typed command-boundary adapter for GitHub CLI queries."""

    timeout_seconds: float = _GH_TIMEOUT_SECONDS
    retry_attempts: int = _GH_RETRY_ATTEMPTS
    retry_backoff_seconds: float = _GH_RETRY_BACKOFF_SECONDS

    def available(self) -> bool:
        return shutil.which("gh") is not None

    def run(self, cmd: list[str]) -> str:
        attempts = max(int(self.retry_attempts), 1)
        last_error: str | None = None
        for attempt in range(1, attempts + 1):
            result = exec_util.run_with_runner(
                exec_util.CommandRequest(argv=tuple(cmd), timeout_seconds=self.timeout_seconds)
            )
            if result is None:
                raise RuntimeError("missing required command: gh")
            if result.ok:
                return result.stdout
            last_error = result.detail or f"command failed: {' '.join(cmd)}"
            if attempt < attempts and _is_retryable_message(last_error):
                time.sleep(self.retry_backoff_seconds * attempt)
                continue
            raise RuntimeError(last_error)
        raise RuntimeError(last_error or f"command failed: {' '.join(cmd)}")

    def run_json(self, cmd: list[str]) -> object:
        output = self.run(cmd)
        if not output.strip():
            return None
        return json.loads(output)


def _is_retryable_message(message: str) -> bool:
    normalized = message.strip().lower()
    if not normalized:
        return False
    return any(marker in normalized for marker in _GH_RETRY_ERROR_MARKERS)


class GhPullRequest(BaseModel):
    """Subset of ``gh pr list --json`` output."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    number: int
    head_ref_name: str = Field(alias="headRefName")
    title: str = ""
    merged_at: datetime | None = Field(default=None, alias="mergedAt")

    def to_pull_request(self) -> PullRequest:
        return PullRequest(
            number=self.number,
            branch=self.head_ref_name,
            title=self.title,
            merged_at=self.merged_at,
        )


def github_repo_slug(repo_dir: Path | None, *, git_path: str | None = None) -> str | None:
    """Return the GitHub ``owner/name`` slug of a repository's ``origin``."""
    if repo_dir is None:
        return None
    origin = git.git_origin_url(repo_dir, git_path=git_path)
    if not origin:
        return None
    return git.github_slug_from_url(origin)


@dataclass
class GithubPullRequests:
    """``PullRequestSource`` implementation for one GitHub repository."""

    repo: str | None
    client: GithubClient = field(default_factory=GithubClient)

    def configured(self) -> bool:
        return bool(self.repo) and self.client.available()

    def list_open_prs(self, base_branch: str) -> list[PullRequest]:
        return self._list(
            ["--base", base_branch, "--state", "open", "--json", _OPEN_PR_FIELDS],
            context=f"open PRs to {base_branch}",
        )

    def list_prs_for_branch(self, branch: str) -> list[PullRequest]:
        return self._list(
            ["--head", branch, "--state", "all", "--json", _BRANCH_PR_FIELDS],
            context=f"PRs for {branch}",
        )

    def _list(self, args: list[str], *, context: str) -> list[PullRequest]:
        if not self.repo:
            raise IntegrationNotConfiguredError(
                "GitHub repository is not configured",
                recovery_hint="set FOREMAN_GITHUB_REPO or add a GitHub origin remote",
            )
        if not self.client.available():
            raise IntegrationNotConfiguredError(
                "GitHub CLI (gh) is not installed",
                recovery_hint="install gh and run `gh auth login`",
            )
        cmd = ["gh", "pr", "list", "--repo", self.repo, "--limit", _GH_LIST_LIMIT, *args]
        try:
            payload = self.client.run_json(cmd)
        except (RuntimeError, json.JSONDecodeError) as exc:
            raise ExternalServiceError(f"failed to list {context}: {exc}") from exc
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise ExternalServiceError(f"unexpected gh output for {context}")
        try:
            prs = [GhPullRequest.model_validate(item).to_pull_request() for item in payload]
        except ValidationError as exc:
            raise ExternalServiceError(f"invalid gh output for {context}: {exc}") from exc
        _log.debug(f"{len(prs)} {context}")
        return prs


def build_pr_source(settings: ForemanSettings) -> GithubPullRequests:
    """Build the PR source for the configured or origin-derived repository."""
    repo = settings.github_repo
    if repo is None and settings.repo_path is not None:
        repo = github_repo_slug(settings.repo_path.expanduser(), git_path=settings.git_path)
    return GithubPullRequests(repo=repo)
