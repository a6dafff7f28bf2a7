"""Eligibility filter and concurrency gate.

Everything here is computed fresh from live observations on each tick;
nothing is cached between ticks.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from . import log
from .errors import ServiceFailure
from .models import AgentSession, PullRequest, TrackedIssue, WorkItem, Worktree
from .ports import IssueTracker

_log = log.component("autopilot")

_TRACKER_IDENTIFIER = re.compile(r"([A-Z]+-\d+)", re.IGNORECASE)
_SESSION_UNSAFE_CHARS = re.compile(r"[^a-z0-9_-]")

AGENT_SESSION_SUFFIX = "-agent"
EXCLUDED_STATE_TYPES = frozenset({"started", "completed"})


def parse_tracker_identifier(branch: str) -> str | None:
    """Extract the upper-cased tracker identifier embedded in a branch name.

    Example:
        >>> parse_tracker_identifier("feature/a-273-login")
        'A-273'
        >>> parse_tracker_identifier("chore/bump-deps") is None
        True
    """
    match = _TRACKER_IDENTIFIER.search(branch)
    if match is None:
        return None
    return match.group(1).upper()


def agent_session_name(identifier: str) -> str:
    """Derive the agent session name for a tracker identifier.

    Example:
        >>> agent_session_name("A-273")
        'a-273-agent'
    """
    base = _SESSION_UNSAFE_CHARS.sub("-", identifier.lower())
    return f"{base}{AGENT_SESSION_SUFFIX}"


def is_agent_session(name: str) -> bool:
    """Return whether a session name follows the agent naming convention."""
    return name.endswith(AGENT_SESSION_SUFFIX)


def is_eligible_state(issue: TrackedIssue) -> bool:
    """Return whether an issue still needs an agent.

    Issues that are started, completed, or whose state name mentions
    "review" (any case) are not eligible.
    """
    if issue.state.type in EXCLUDED_STATE_TYPES:
        return False
    return "review" not in issue.state.name.lower()


def eligible_work_items(
    prs: Iterable[PullRequest], tracker: IssueTracker
) -> list[WorkItem]:
    """Filter pull requests down to work items whose issue is still open for work.

    A PR without an identifier, an unknown issue, or a failed lookup is
    skipped; a single failure never aborts the filter.
    """
    eligible: list[WorkItem] = []
    for pr in prs:
        identifier = parse_tracker_identifier(pr.branch)
        if identifier is None:
            _log.debug(f"PR #{pr.number} ({pr.branch}): no issue identifier, skipping")
            continue
        try:
            issue = tracker.get_issue(identifier)
        except ServiceFailure as exc:
            _log.warning(f"PR #{pr.number} ({identifier}): issue lookup failed: {exc}")
            continue
        if issue is None:
            _log.debug(f"PR #{pr.number} ({identifier}): issue not found, skipping")
            continue
        if not is_eligible_state(issue):
            _log.debug(
                f"PR #{pr.number} ({identifier}): {issue.state.name or issue.state.type}, skipping"
            )
            continue
        _log.debug(f"PR #{pr.number} ({identifier}): eligible ({issue.state.name})")
        eligible.append(
            WorkItem(
                pr_number=pr.number,
                branch=pr.branch,
                title=pr.title,
                tracker_identifier=identifier,
            )
        )
    return eligible


def needs_agent(items: Iterable[WorkItem], worktrees: Iterable[Worktree]) -> list[WorkItem]:
    """Keep the work items whose branch has no live worktree, in input order."""
    live_branches = {worktree.branch for worktree in worktrees if worktree.branch}
    return [item for item in items if item.branch not in live_branches]


def running_agent_sessions(sessions: Iterable[AgentSession]) -> list[str]:
    return [session.name for session in sessions if is_agent_session(session.name)]


def available_slots(max_parallel_agents: int, running_count: int) -> int:
    """Return how many new agents may start; never negative.

    Example:
        >>> available_slots(3, 1), available_slots(2, 5)
        (2, 0)
    """
    return max(max_parallel_agents - running_count, 0)
