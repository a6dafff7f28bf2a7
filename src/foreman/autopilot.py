"""Reconciliation loop that keeps one coding agent running per eligible PR.

The host constructs an ``AutopilotController`` (see ``build_controller``),
calls ``load()`` and then ``resume()``. While running, a daemon thread fires a
tick every ``pollIntervalSeconds``. Each tick observes live state (open PRs,
tracker issues, worktrees, sessions), computes the free agent slots and
spawns agents sequentially. Nothing observed is cached across ticks.

The persisted desired state is shared with other processes (``foreman
set-max``, ``foreman start``, ``foreman stop``). It is re-read before every tick
and merged on every write, and the host calls ``refresh()`` to follow the
``enabled`` flag.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from . import config, git, log, selection, sessions, worktrees
from . import exec as exec_util
from .errors import ServiceFailure
from .models import (
    MAX_PARALLEL_MAX,
    MAX_PARALLEL_MIN,
    AutopilotConfig,
    AutopilotStatus,
    ControlResult,
    ForemanSettings,
    TickReport,
    WorkItem,
)
from .ports import IssueTracker, PullRequestSource, SessionBackend
from .prs import build_pr_source
from .term import TmuxSessions
from .tracker import build_tracker

_log = log.component("autopilot")

_THREAD_NAME = "foreman-autopilot"


class AutopilotController:
    """Owns the desired state, the timer thread and the single-flight guard."""

    def __init__(
        self,
        settings: ForemanSettings,
        *,
        prs: PullRequestSource,
        tracker: IssueTracker,
        sessions: SessionBackend,
        sleep_fn: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings
        self._prs = prs
        self._tracker = tracker
        self._sessions = sessions
        self._sleep_fn = sleep_fn
        self._clock = clock
        self._config = AutopilotConfig()
        self._control_lock = threading.RLock()
        self._tick_lock = threading.Lock()
        self._tick_thread: threading.Thread | None = None
        self._stop_event: threading.Event | None = None
        self._thread: threading.Thread | None = None

    @property
    def config(self) -> AutopilotConfig:
        """Desired state as currently persisted."""
        return self._reload()

    @property
    def running(self) -> bool:
        return self._stop_event is not None

    @property
    def polling(self) -> bool:
        return self._tick_lock.locked()

    def load(self) -> AutopilotConfig:
        """Load the persisted desired state; never fails."""
        loaded = self._reload()
        _log.debug(f"loaded config {loaded.model_dump(by_alias=True)}")
        return loaded

    def resume(self) -> bool:
        """Start the loop if the persisted state says it was enabled."""
        if not self._config.enabled or self.running:
            return False
        _log.info("autopilot was enabled, resuming")
        return self.start().ok

    def refresh(self) -> None:
        """Follow the persisted ``enabled`` flag.

        Another process (``foreman start``/``foreman stop``) may change the
        desired state; the host calls this periodically to arm or disarm the
        loop accordingly.
        """
        with self._control_lock:
            desired = self._reload()
            if desired.enabled == self.running:
                return
            if desired.enabled:
                _log.info("autopilot enabled, starting")
                self._arm()
                return
            _log.info("autopilot disabled, stopping")
            thread = self._disarm()
        self._wait_for(thread)

    def start(self) -> ControlResult:
        with self._control_lock:
            if self.running:
                _log.warning("already running")
                return ControlResult(ok=False, error="already running")
            failure = self._persist(enabled=True)
            if failure is not None:
                return failure
            _log.info(
                f"starting: max {self._config.max_parallel_agents} agents, "
                f"polling every {self._config.poll_interval_seconds}s"
            )
            self._arm()
        return ControlResult(ok=True)

    def stop(self) -> ControlResult:
        """Disarm the timer and wait for an in-flight tick to finish."""
        with self._control_lock:
            if not self.running:
                _log.warning("not running")
                return ControlResult(ok=False, error="not running")
            failure = self._persist(enabled=False)
            if failure is not None:
                return failure
            thread = self._disarm()
        self._wait_for(thread)
        _log.info("stopped")
        return ControlResult(ok=True)

    def shutdown(self) -> None:
        """Stop the loop for host exit, keeping the persisted ``enabled`` flag."""
        with self._control_lock:
            thread = self._disarm()
        self._wait_for(thread)

    def set_enabled(self, enabled: bool) -> ControlResult:
        """Persist ``enabled`` for a host process to pick up.

        Unlike ``start``/``stop`` this never arms or disarms a loop in the
        calling process.
        """
        failure = self._persist(enabled=enabled)
        if failure is not None:
            return failure
        _log.info(f"autopilot {'enabled' if enabled else 'disabled'}")
        return ControlResult(ok=True)

    def set_max_parallel(self, value: object) -> ControlResult:
        if (
            not isinstance(value, int)
            or isinstance(value, bool)
            or not MAX_PARALLEL_MIN <= value <= MAX_PARALLEL_MAX
        ):
            return ControlResult(
                ok=False,
                error=f"max must be between {MAX_PARALLEL_MIN} and {MAX_PARALLEL_MAX}",
            )
        failure = self._persist(max_parallel_agents=value)
        if failure is not None:
            return failure
        _log.info(f"max parallel agents set to {value}")
        return ControlResult(ok=True)

    def get_status(self) -> AutopilotStatus:
        desired = self._reload()
        running = selection.running_agent_sessions(self._sessions.list_all_sessions())
        return AutopilotStatus(
            enabled=desired.enabled,
            max_parallel_agents=desired.max_parallel_agents,
            poll_interval_seconds=desired.poll_interval_seconds,
            running_agents_count=len(running),
            running_sessions=running,
            is_polling=self.polling,
        )

    def poll_once(self) -> TickReport | None:
        """Run one tick unless another is in flight.

        The persisted desired state is re-read first. When it was disabled
        while this controller's loop is armed, the loop is disarmed instead.

        Returns:
            The tick report, or ``None`` when the tick was skipped.
        """
        if not self._tick_lock.acquire(blocking=False):
            _log.debug("tick already in flight, skipping")
            return None
        self._tick_thread = threading.current_thread()
        try:
            with self._control_lock:
                desired = self._reload()
                if self.running and not desired.enabled:
                    _log.info("autopilot disabled, stopping")
                    self._disarm()
                    return None
            report = TickReport()
            _log.debug("tick start")
            try:
                self._tick(report)
            except Exception as exc:  # tick boundary
                _log.error(f"tick failed: {type(exc).__name__}: {exc}")
            _log.debug("tick end")
            return report
        finally:
            self._tick_thread = None
            self._tick_lock.release()

    def spawn_agent(self, item: WorkItem) -> bool:
        """Provision the worktree and agent session for one work item."""
        _log.info(f"spawning agent for PR #{item.pr_number} ({item.branch}): {item.title}")
        try:
            provisioned = worktrees.create_worktree(item.branch, self._settings)
            if not provisioned.ok:
                _log.error(f"PR #{item.pr_number}: worktree failed: {provisioned.error}")
                return False
            spawned = sessions.spawn_agent_session(
                item,
                provisioned.path,
                self._sessions,
                agent_command=self._settings.agent_command,
                startup_delay=self._settings.agent_startup_delay,
                sleep_fn=self._sleep_fn,
            )
        except (ServiceFailure, RuntimeError, OSError) as exc:
            _log.error(f"PR #{item.pr_number}: failed to spawn agent: {exc}")
            return False
        state = "created" if spawned.created else "reused"
        _log.success(f"PR #{item.pr_number}: session {spawned.name} {state}")
        return True

    def _tick(self, report: TickReport) -> None:
        settings = self._settings
        if settings.repo_path is None:
            _log.warning(f"{config.ENV_REPO_PATH} not configured, nothing to do")
            return
        if not self._prs.configured():
            _log.warning("PR source not configured, nothing to do")
            return
        repo_dir = config.require_repo_path(settings)

        prs = self._prs.list_open_prs(settings.base_branch)
        report.candidates = len(prs)
        if not prs:
            _log.info(f"no open PRs to {settings.base_branch}")
            return
        _log.info(f"found {len(prs)} open PRs")

        if not self._tracker.configured():
            _log.warning("issue tracker not configured, cannot check eligibility")
            return
        eligible = selection.eligible_work_items(prs, self._tracker)
        report.eligible = [item.branch for item in eligible]

        live_worktrees = git.list_worktrees(repo_dir, git_path=settings.git_path)
        pending = selection.needs_agent(eligible, live_worktrees)
        report.needs_agent = [item.branch for item in pending]

        running = selection.running_agent_sessions(self._sessions.list_all_sessions())
        report.running_sessions = running
        max_agents = self._config.max_parallel_agents
        slots = selection.available_slots(max_agents, len(running))
        report.available_slots = slots
        _log.info(
            f"{len(eligible)} eligible, {len(pending)} need an agent, "
            f"{len(running)}/{max_agents} agents running"
        )
        if slots <= 0:
            _log.info("max agents reached, waiting for a free slot")
            return

        # One at a time: concurrent `git worktree add` on one repo is unsafe.
        for item in pending[:slots]:
            if self.spawn_agent(item):
                report.spawned.append(item.branch)
            else:
                report.failed.append(item.branch)

    def _reload(self) -> AutopilotConfig:
        with self._control_lock:
            latest = config.load_autopilot_config(self._settings.state_path)
            if latest != self._config:
                _log.debug(f"desired state is now {latest.model_dump(by_alias=True)}")
            self._config = latest
            return latest

    def _persist(self, **changes: object) -> ControlResult | None:
        """Apply ``changes`` on top of the persisted state and save it.

        Fields other processes changed since the last read are kept.
        """
        with self._control_lock:
            updated = self._reload().model_copy(update=changes)
            try:
                config.save_autopilot_config(self._settings.state_path, updated)
            except ServiceFailure as exc:
                _log.error(str(exc))
                return ControlResult(ok=False, error=str(exc))
            self._config = updated
        return None

    def _arm(self) -> None:
        stop_event = threading.Event()
        self._stop_event = stop_event
        self._thread = threading.Thread(
            target=self._run,
            args=(stop_event,),
            name=_THREAD_NAME,
            daemon=True,
        )
        self._thread.start()

    def _disarm(self) -> threading.Thread | None:
        if self._stop_event is not None:
            self._stop_event.set()
        thread = self._thread
        self._stop_event = None
        self._thread = None
        return thread

    def _wait_for(self, thread: threading.Thread | None) -> None:
        current = threading.current_thread()
        if thread is not None and thread is not current:
            thread.join()
        tick_thread = self._tick_thread
        if tick_thread is not None and tick_thread is not current:
            # A tick requested outside the loop thread; wait for it to finish.
            with self._tick_lock:
                pass

    def _run(self, stop_event: threading.Event) -> None:
        next_fire = self._clock()
        while not stop_event.is_set():
            self.poll_once()
            # Read after the tick, which may have picked up a new interval.
            interval = self._config.poll_interval_seconds
            next_fire += interval
            now = self._clock()
            if now > next_fire:
                # Firings that would have overlapped the tick are skipped.
                missed = int((now - next_fire) // interval) + 1
                next_fire += missed * interval
            if stop_event.wait(max(next_fire - now, 0.0)):
                break


def build_controller(settings: ForemanSettings) -> AutopilotController:
    """Wire the controller to the GitHub, Linear and tmux adapters."""
    exec_util.configure_default_timeout(settings.command_timeout)
    return AutopilotController(
        settings,
        prs=build_pr_source(settings),
        tracker=build_tracker(settings.linear_api_key),
        sessions=TmuxSessions(),
    )
