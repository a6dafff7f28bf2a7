from __future__ import annotations

import tempfile
from dataclasses import dataclass
from pathlib import Path

import hypothesis
import pytest
from hypothesis import given
from hypothesis import strategies as st

import foreman.exec as exec_util
from foreman.cleanup import cleanup_worktree
from foreman.errors import ExternalServiceError, IntegrationNotConfiguredError
from foreman.models import ForemanSettings, PullRequest
from tests.foreman.helpers import (
    MERGED_AT,
    FakePullRequests,
    FakeRunner,
    FakeTracker,
    fail,
    git_args,
    make_settings,
    ok,
    porcelain,
)

BRANCH = "feature/a-273-login"
DESTRUCTIVE = (
    ("worktree", "remove"),
    ("branch", "-D"),
    ("push", "origin", "--delete"),
)


@dataclass
class GitState:
    """Answers for the git commands cleanup issues."""

    worktree: Path
    repo: Path
    status: str = ""
    status_error: str | None = None
    unpushed: str = ""
    unpushed_error: str | None = None
    registered: bool = True
    local_branch: bool = True
    remote_branch: bool | None = True
    push_error: str | None = None

    def handle(self, argv: tuple[str, ...]) -> exec_util.CommandResult | None:
        args = git_args(argv)
        if args[:1] == ("status",):
            if self.status_error:
                return fail(argv, self.status_error, code=128)
            return ok(argv, self.status)
        if args[:1] == ("log",):
            if self.unpushed_error:
                return fail(argv, self.unpushed_error, code=128)
            return ok(argv, self.unpushed)
        if args[:2] == ("worktree", "list"):
            entries = [(self.repo, "main")]
            if self.registered:
                entries.append((self.worktree, BRANCH))
            return ok(argv, porcelain(*entries))
        if args[:1] == ("show-ref",):
            return ok(argv) if self.local_branch else fail(argv, "", code=1)
        if args[:1] == ("ls-remote",):
            if self.remote_branch is None:
                return fail(argv, "could not read from remote", code=128)
            if self.remote_branch:
                return ok(argv, f"abc123\trefs/heads/{BRANCH}\n")
            return ok(argv)
        if args[:3] == ("push", "origin", "--delete") and self.push_error:
            return fail(argv, self.push_error)
        return None


def _merged_prs(**kwargs: object) -> FakePullRequests:
    merged = PullRequest(number=12, branch=BRANCH, merged_at=MERGED_AT)
    return FakePullRequests(by_branch={BRANCH: [merged]}, **kwargs)


@pytest.fixture
def settings(tmp_path: Path) -> ForemanSettings:
    return make_settings(tmp_path)


@pytest.fixture
def worktree_dir(settings: ForemanSettings) -> Path:
    assert settings.worktree_base is not None
    path = settings.worktree_base / "feature_a-273-login"
    path.mkdir(parents=True)
    return path.resolve()


def _install(
    monkeypatch: pytest.MonkeyPatch, settings: ForemanSettings, worktree: Path, **answers: object
) -> FakeRunner:
    assert settings.repo_path is not None
    state = GitState(worktree=worktree, repo=settings.repo_path, **answers)
    runner = FakeRunner(state.handle)
    monkeypatch.setattr(exec_util, "_DEFAULT_COMMAND_RUNNER", runner)
    return runner


def _touched(runner: FakeRunner) -> list[tuple[str, ...]]:
    return [
        call for call in runner.git_calls() if any(call[: len(p)] == p for p in DESTRUCTIVE)
    ]


def test_merged_clean_branch_is_fully_removed(
    monkeypatch: pytest.MonkeyPatch, settings: ForemanSettings, worktree_dir: Path
) -> None:
    runner = _install(monkeypatch, settings, worktree_dir)
    tracker = FakeTracker()

    outcome = cleanup_worktree(
        worktree_dir, BRANCH, settings, prs=_merged_prs(), tracker=tracker, ticket="A-273"
    )

    assert outcome.ok
    assert outcome.warnings == []
    assert runner.ran("worktree", "remove", "--force", str(worktree_dir))
    assert runner.ran("branch", "-D", BRANCH)
    assert runner.ran("push", "origin", "--delete", BRANCH)
    assert tracker.transitions == ["A-273"]


def test_uncommitted_changes_reject_without_side_effects(
    monkeypatch: pytest.MonkeyPatch, settings: ForemanSettings, worktree_dir: Path
) -> None:
    runner = _install(monkeypatch, settings, worktree_dir, status=" M app.py\n")
    tracker = FakeTracker()

    outcome = cleanup_worktree(
        worktree_dir, BRANCH, settings, prs=_merged_prs(), tracker=tracker, ticket="A-273"
    )

    assert outcome.rejected
    assert not outcome.ok
    assert "uncommitted changes" in outcome.errors[0]
    assert _touched(runner) == []
    assert tracker.transitions == []
    assert worktree_dir.exists()


@hypothesis.settings(deadline=None, max_examples=50)
@given(status=st.text(min_size=1).filter(str.strip))
def test_any_status_output_rejects_without_side_effects(status: str) -> None:
    with tempfile.TemporaryDirectory() as tmp, pytest.MonkeyPatch.context() as monkeypatch:
        settings = make_settings(Path(tmp))
        assert settings.worktree_base is not None
        worktree = settings.worktree_base / "feature_a-273-login"
        worktree.mkdir(parents=True)
        worktree = worktree.resolve()
        runner = _install(monkeypatch, settings, worktree, status=status)

        outcome = cleanup_worktree(
            worktree, BRANCH, settings, prs=_merged_prs(), tracker=FakeTracker()
        )

        assert outcome.rejected
        assert _touched(runner) == []
        assert worktree.exists()


def test_unpushed_commits_reject(
    monkeypatch: pytest.MonkeyPatch, settings: ForemanSettings, worktree_dir: Path
) -> None:
    runner = _install(monkeypatch, settings, worktree_dir, unpushed="abc123 wip\n")

    outcome = cleanup_worktree(
        worktree_dir, BRANCH, settings, prs=_merged_prs(), tracker=FakeTracker()
    )

    assert outcome.rejected
    assert "unpushed commits" in outcome.errors[0]
    assert _touched(runner) == []


def test_status_failure_rejects(
    monkeypatch: pytest.MonkeyPatch, settings: ForemanSettings, worktree_dir: Path
) -> None:
    runner = _install(monkeypatch, settings, worktree_dir, status_error="not a git repository")

    outcome = cleanup_worktree(
        worktree_dir, BRANCH, settings, prs=_merged_prs(), tracker=FakeTracker()
    )

    assert outcome.rejected
    assert _touched(runner) == []


def test_unmerged_branch_rejects(
    monkeypatch: pytest.MonkeyPatch, settings: ForemanSettings, worktree_dir: Path
) -> None:
    runner = _install(monkeypatch, settings, worktree_dir)
    open_pr = PullRequest(number=12, branch=BRANCH)
    prs = FakePullRequests(by_branch={BRANCH: [open_pr]})

    outcome = cleanup_worktree(worktree_dir, BRANCH, settings, prs=prs, tracker=FakeTracker())

    assert outcome.rejected
    assert "no merged pull request" in outcome.errors[0]
    assert prs.branch_calls == [BRANCH]
    assert _touched(runner) == []
    # Merge verification runs before any git inspection.
    assert runner.git_calls() == []


def test_merge_check_error_rejects(
    monkeypatch: pytest.MonkeyPatch, settings: ForemanSettings, worktree_dir: Path
) -> None:
    runner = _install(monkeypatch, settings, worktree_dir)
    prs = FakePullRequests(error=ExternalServiceError("gh: HTTP 502"))

    outcome = cleanup_worktree(worktree_dir, BRANCH, settings, prs=prs, tracker=FakeTracker())

    assert outcome.rejected
    assert "could not verify merge status" in outcome.errors[0]
    assert _touched(runner) == []


def test_unconfigured_pr_host_warns_and_proceeds(
    monkeypatch: pytest.MonkeyPatch, settings: ForemanSettings, worktree_dir: Path
) -> None:
    runner = _install(monkeypatch, settings, worktree_dir)

    outcome = cleanup_worktree(
        worktree_dir,
        BRANCH,
        settings,
        prs=FakePullRequests(configured=False),
        tracker=FakeTracker(),
    )

    assert outcome.ok
    assert any("skipping merge verification" in warning for warning in outcome.warnings)
    assert runner.ran("worktree", "remove")


def test_pr_source_reporting_unconfigured_counts_as_unconfigured(
    monkeypatch: pytest.MonkeyPatch, settings: ForemanSettings, worktree_dir: Path
) -> None:
    _install(monkeypatch, settings, worktree_dir)
    prs = FakePullRequests(error=IntegrationNotConfiguredError("gh is not installed"))

    outcome = cleanup_worktree(worktree_dir, BRANCH, settings, prs=prs, tracker=FakeTracker())

    assert outcome.ok
    assert any("skipping merge verification" in warning for warning in outcome.warnings)


def test_strict_mode_rejects_unverifiable_merge(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    settings = make_settings(tmp_path, strict_cleanup=True)
    assert settings.worktree_base is not None
    worktree = settings.worktree_base / "feature_a-273-login"
    worktree.mkdir(parents=True)
    runner = _install(monkeypatch, settings, worktree.resolve())

    outcome = cleanup_worktree(
        worktree,
        BRANCH,
        settings,
        prs=FakePullRequests(configured=False),
        tracker=FakeTracker(),
    )

    assert outcome.rejected
    assert "FOREMAN_STRICT_CLEANUP" in outcome.errors[0]
    assert _touched(runner) == []


def test_missing_directory_rejects(
    monkeypatch: pytest.MonkeyPatch, settings: ForemanSettings, tmp_path: Path
) -> None:
    runner = _install(monkeypatch, settings, tmp_path / "gone")

    outcome = cleanup_worktree(
        tmp_path / "gone", BRANCH, settings, prs=_merged_prs(), tracker=FakeTracker()
    )

    assert outcome.rejected
    assert "does not exist" in outcome.errors[0]
    assert runner.calls == []


def test_unpushed_check_failure_is_a_warning(
    monkeypatch: pytest.MonkeyPatch, settings: ForemanSettings, worktree_dir: Path
) -> None:
    _install(
        monkeypatch,
        settings,
        worktree_dir,
        unpushed_error="fatal: bad revision 'origin/feature/a-273-login..feature/a-273-login'",
        remote_branch=False,
    )

    outcome = cleanup_worktree(
        worktree_dir, BRANCH, settings, prs=_merged_prs(), tracker=FakeTracker()
    )

    assert outcome.ok
    assert "could not check unpushed commits (remote branch may not exist)" in outcome.warnings


def test_already_absent_resources_are_warnings(
    monkeypatch: pytest.MonkeyPatch, settings: ForemanSettings, worktree_dir: Path
) -> None:
    runner = _install(
        monkeypatch,
        settings,
        worktree_dir,
        registered=False,
        local_branch=False,
        remote_branch=False,
    )

    outcome = cleanup_worktree(
        worktree_dir, BRANCH, settings, prs=_merged_prs(), tracker=FakeTracker()
    )

    assert outcome.ok
    assert outcome.warnings == [
        "worktree not registered, skipping removal",
        "local branch already deleted",
        "remote branch already deleted",
    ]
    assert _touched(runner) == []


def test_remote_ref_vanishing_during_delete_is_a_warning(
    monkeypatch: pytest.MonkeyPatch, settings: ForemanSettings, worktree_dir: Path
) -> None:
    _install(
        monkeypatch,
        settings,
        worktree_dir,
        push_error="error: unable to delete 'feature/a-273-login': remote ref does not exist",
    )

    outcome = cleanup_worktree(
        worktree_dir, BRANCH, settings, prs=_merged_prs(), tracker=FakeTracker()
    )

    assert outcome.ok
    assert outcome.warnings == ["remote branch already deleted"]


def test_remote_delete_failure_is_partial(
    monkeypatch: pytest.MonkeyPatch, settings: ForemanSettings, worktree_dir: Path
) -> None:
    runner = _install(
        monkeypatch, settings, worktree_dir, push_error="fatal: Authentication failed"
    )

    outcome = cleanup_worktree(
        worktree_dir, BRANCH, settings, prs=_merged_prs(), tracker=FakeTracker()
    )

    assert not outcome.ok
    assert outcome.partial
    assert not outcome.rejected
    assert outcome.errors == ["failed to delete remote branch: fatal: Authentication failed"]
    # Earlier destructive steps still ran.
    assert runner.ran("worktree", "remove")
    assert runner.ran("branch", "-D", BRANCH)


def test_unknown_remote_state_still_attempts_delete(
    monkeypatch: pytest.MonkeyPatch, settings: ForemanSettings, worktree_dir: Path
) -> None:
    runner = _install(monkeypatch, settings, worktree_dir, remote_branch=None)

    outcome = cleanup_worktree(
        worktree_dir, BRANCH, settings, prs=_merged_prs(), tracker=FakeTracker()
    )

    assert outcome.ok
    assert runner.ran("push", "origin", "--delete", BRANCH)


def test_tracker_not_configured_is_a_warning(
    monkeypatch: pytest.MonkeyPatch, settings: ForemanSettings, worktree_dir: Path
) -> None:
    _install(monkeypatch, settings, worktree_dir)
    tracker = FakeTracker(configured=False)

    outcome = cleanup_worktree(
        worktree_dir, BRANCH, settings, prs=_merged_prs(), tracker=tracker, ticket="A-273"
    )

    assert outcome.ok
    assert outcome.warnings == ["issue tracker not configured, skipping issue update"]
    assert tracker.transitions == []


def test_tracker_transition_failure_is_partial(
    monkeypatch: pytest.MonkeyPatch, settings: ForemanSettings, worktree_dir: Path
) -> None:
    _install(monkeypatch, settings, worktree_dir)
    tracker = FakeTracker(transition_error=ExternalServiceError("no done state"))

    outcome = cleanup_worktree(
        worktree_dir, BRANCH, settings, prs=_merged_prs(), tracker=tracker, ticket="A-273"
    )

    assert outcome.partial
    assert outcome.errors == ["failed to move A-273 to done: no done state"]


def test_no_ticket_skips_tracker(
    monkeypatch: pytest.MonkeyPatch, settings: ForemanSettings, worktree_dir: Path
) -> None:
    _install(monkeypatch, settings, worktree_dir)
    tracker = FakeTracker(configured=False)

    outcome = cleanup_worktree(worktree_dir, BRANCH, settings, prs=_merged_prs(), tracker=tracker)

    assert outcome.ok
    assert outcome.warnings == []
