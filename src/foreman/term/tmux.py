"""tmux session backend."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .. import exec as exec_util
from ..errors import DependencyMissingError, ExternalServiceError
from ..models import AgentSession


def session_target(name: str) -> str:
    """Return a target that matches the session name exactly.

    Without the ``=`` prefix tmux also accepts name prefixes and patterns.

    Example:
        >>> session_target("a-1-agent")
        '=a-1-agent'
    """
    return f"={name}"


def window_target(name: str, window_index: int | None = None) -> str:
    """Return an exact-session target for a window or its active pane.

    Example:
        >>> window_target("a-1-agent", 0), window_target("a-1-agent")
        ('=a-1-agent:0', '=a-1-agent:')
    """
    window = "" if window_index is None else str(window_index)
    return f"{session_target(name)}:{window}"


@dataclass(frozen=True)
class TmuxSessions:
    """``SessionBackend`` implementation that drives the ``tmux`` CLI."""

    tmux_path: str = "tmux"

    def _run(self, *args: str) -> exec_util.CommandResult | None:
        return exec_util.run_with_runner(
            exec_util.CommandRequest(argv=(self.tmux_path, *args))
        )

    def _run_checked(self, action: str, *args: str) -> exec_util.CommandResult:
        result = self._run(*args)
        if result is None:
            raise DependencyMissingError(
                f"missing required command: {self.tmux_path}",
                recovery_hint="install tmux",
            )
        if not result.ok:
            raise ExternalServiceError(f"tmux {action} failed: {result.detail}")
        return result

    def session_exists(self, name: str) -> bool:
        result = self._run("has-session", "-t", session_target(name))
        return bool(result and result.ok)

    def create_session(self, name: str, path: Path) -> None:
        self._run_checked("new-session", "new-session", "-d", "-s", name, "-c", str(path))

    def send_keys(self, name: str, keys: list[str]) -> None:
        self._run_checked("send-keys", "send-keys", "-t", window_target(name), *keys)

    def list_all_sessions(self) -> list[AgentSession]:
        result = self._run("list-sessions", "-F", "#{session_name}")
        if result is None or not result.ok:
            # No tmux binary or no server running means no sessions.
            return []
        return [
            AgentSession(name=line.strip())
            for line in result.stdout.splitlines()
            if line.strip()
        ]

    def set_session_option(self, name: str, option: str, value: str) -> bool:
        result = self._run("set-option", "-t", session_target(name), option, value)
        return bool(result and result.ok)

    def rename_window(self, name: str, window_index: int, new_name: str) -> bool:
        result = self._run("rename-window", "-t", window_target(name, window_index), new_name)
        return bool(result and result.ok)
