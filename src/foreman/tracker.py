"""Issue-tracker adapters (Linear GraphQL API and a no-op tracker)."""

from __future__ import annotations

import http.client
import json
import urllib.error
import urllib.request
from dataclasses import dataclass

from . import log
from .errors import ExternalServiceError, IntegrationNotConfiguredError
from .models import TrackedIssue, TrackedIssueState

_log = log.component("linear")

LINEAR_API_URL = "https://api.linear.app/graphql"
_DEFAULT_TIMEOUT = 20
_NOT_FOUND_MARKERS = ("entity not found", "not found")

_ISSUE_QUERY = """
query($id: String!) {
  issue(id: $id) {
    identifier
    title
    state { name type }
  }
}
"""

_TEAM_STATES_QUERY = """
query($id: String!) {
  issue(id: $id) {
    id
    team {
      states { nodes { id name type } }
    }
  }
}
"""

_UPDATE_STATE_MUTATION = """
mutation($issueId: String!, $stateId: String!) {
  issueUpdate(id: $issueId, input: { stateId: $stateId }) {
    success
  }
}
"""


class IssueNotFound(ExternalServiceError):
    """The tracker has no issue with the requested identifier."""


def pick_done_state(states: list[dict]) -> dict | None:
    """Pick the terminal workflow state: type ``completed``, else named "done".

    Example:
        >>> pick_done_state([{"name": "Todo", "type": "unstarted"}, {"name": "Shipped", "type": "completed"}])["name"]
        'Shipped'
        >>> pick_done_state([{"name": "Done", "type": "custom"}])["name"]
        'Done'
        >>> pick_done_state([{"name": "Todo", "type": "unstarted"}]) is None
        True
    """
    for state in states:
        if state.get("type") == "completed":
            return state
    for state in states:
        if str(state.get("name") or "").lower() == "done":
            return state
    return None


@dataclass(frozen=True)
class LinearTracker:
    """``IssueTracker`` implementation backed by Linear's GraphQL API."""

    api_key: str | None
    api_url: str = LINEAR_API_URL
    timeout_seconds: float = _DEFAULT_TIMEOUT

    def configured(self) -> bool:
        return bool(self.api_key)

    def get_issue(self, identifier: str) -> TrackedIssue | None:
        try:
            data = self._execute(_ISSUE_QUERY, {"id": identifier})
        except IssueNotFound:
            return None
        issue = data.get("issue")
        if not isinstance(issue, dict):
            return None
        state = issue.get("state") if isinstance(issue.get("state"), dict) else {}
        return TrackedIssue(
            identifier=str(issue.get("identifier") or identifier),
            state=TrackedIssueState(
                type=str(state.get("type") or ""),
                name=str(state.get("name") or ""),
            ),
            title=str(issue.get("title") or ""),
        )

    def transition_to_done(self, identifier: str) -> None:
        data = self._execute(_TEAM_STATES_QUERY, {"id": identifier})
        issue = data.get("issue")
        if not isinstance(issue, dict):
            raise ExternalServiceError(f"issue {identifier} not found")
        team = issue.get("team") or {}
        states = ((team.get("states") or {}).get("nodes")) or []
        done = pick_done_state([state for state in states if isinstance(state, dict)])
        if done is None:
            names = ", ".join(str(state.get("name")) for state in states)
            raise ExternalServiceError(
                f"no done workflow state for {identifier}; available states: {names}"
            )
        _log.debug(f"moving {identifier} to {done.get('name')} ({done.get('type')})")
        result = self._execute(
            _UPDATE_STATE_MUTATION, {"issueId": issue.get("id") or identifier, "stateId": done["id"]}
        )
        if not (result.get("issueUpdate") or {}).get("success"):
            raise ExternalServiceError(f"failed to update issue {identifier}")

    def _execute(self, query: str, variables: dict[str, object]) -> dict:
        if not self.api_key:
            raise IntegrationNotConfiguredError(
                "Linear API key is not configured", recovery_hint="set LINEAR_API_KEY"
            )
        body = json.dumps({"query": query, "variables": variables}).encode("utf-8")
        request = urllib.request.Request(
            self.api_url,
            data=body,
            headers={
                "Authorization": self.api_key,
                "Content-Type": "application/json",
            },
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self.timeout_seconds) as response:
                payload = json.load(response)
        except urllib.error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="ignore") if exc.fp else ""
            raise ExternalServiceError(
                f"Linear request failed ({exc.code} {exc.reason})"
                f"{': ' + detail if detail else ''}"
            ) from exc
        except urllib.error.URLError as exc:
            raise ExternalServiceError(f"Linear request failed: {exc.reason}") from exc
        except (OSError, http.client.HTTPException) as exc:
            # Dropped connections and truncated bodies surface outside URLError.
            raise ExternalServiceError(
                f"Linear request failed: {type(exc).__name__}: {exc}"
            ) from exc
        except ValueError as exc:
            raise ExternalServiceError(f"Linear request returned invalid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise ExternalServiceError("Linear request returned an unexpected payload")
        errors = payload.get("errors")
        if errors:
            first = errors[0] if isinstance(errors, list) and errors else {}
            message = str(first.get("message") if isinstance(first, dict) else first)
            if any(marker in message.lower() for marker in _NOT_FOUND_MARKERS):
                raise IssueNotFound(message)
            raise ExternalServiceError(f"Linear API error: {message}")
        data = payload.get("data")
        return data if isinstance(data, dict) else {}


class NullTracker:
    """Tracker used when no integration is configured."""

    def configured(self) -> bool:
        return False

    def get_issue(self, identifier: str) -> TrackedIssue | None:
        raise IntegrationNotConfiguredError("issue tracker is not configured")

    def transition_to_done(self, identifier: str) -> None:
        raise IntegrationNotConfiguredError("issue tracker is not configured")


def build_tracker(api_key: str | None) -> LinearTracker | NullTracker:
    if api_key:
        return LinearTracker(api_key=api_key)
    return NullTracker()
