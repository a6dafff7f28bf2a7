"""Agent session spawning on top of a ``SessionBackend``."""

from __future__ import annotations

import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

from . import log
from .models import WorkItem
from .ports import SessionBackend
from .selection import agent_session_name
from .term import format_session_title

_log = log.component("session")

_PROMPT_IDENTIFIER_UNSAFE = re.compile(r"[^A-Za-z0-9-]")


@runtime_checkable
class SessionDecorator(Protocol):
    """Optional backend capabilities for status line and window titles."""

    def set_session_option(self, name: str, option: str, value: str) -> bool: ...

    def rename_window(self, name: str, window_index: int, new_name: str) -> bool: ...


@dataclass(frozen=True)
class SpawnedSession:
    name: str
    created: bool


def kickoff_prompt(identifier: str) -> str:
    """Return the first instruction typed into a new agent session.

    Example:
        >>> kickoff_prompt("A-273")
        'fix issues/A-273.md and add tests'
        >>> kickoff_prompt("../A-1")
        'fix issues/A-1.md and add tests'
    """
    safe = _PROMPT_IDENTIFIER_UNSAFE.sub("", identifier)
    return f"fix issues/{safe}.md and add tests"


def _decorate(backend: SessionDecorator, name: str, item: WorkItem) -> None:
    identifier = item.tracker_identifier
    backend.set_session_option(name, "status-left", f"[{identifier}] agent ")
    backend.set_session_option(name, "status-left-length", "40")
    backend.rename_window(name, 0, "agent")
    backend.set_session_option(name, "set-titles", "on")
    backend.set_session_option(
        name, "set-titles-string", format_session_title(identifier, item.title)
    )


def spawn_agent_session(
    item: WorkItem,
    worktree_path: Path,
    backend: SessionBackend,
    *,
    agent_command: str,
    startup_delay: float,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> SpawnedSession:
    """Reuse or create the agent session for a work item.

    A new session gets its decorations, the agent command, and (after
    ``startup_delay`` seconds) the kick-off prompt. An existing session is
    left untouched.
    """
    name = agent_session_name(item.tracker_identifier)
    if backend.session_exists(name):
        _log.info(f"reusing session {name}")
        return SpawnedSession(name=name, created=False)

    backend.create_session(name, worktree_path)
    if isinstance(backend, SessionDecorator):
        _decorate(backend, name, item)
    backend.send_keys(name, [agent_command, "C-m"])
    if startup_delay > 0:
        _log.debug(f"waiting {startup_delay:g}s for the agent in {name} to start")
        sleep_fn(startup_delay)
    prompt = kickoff_prompt(item.tracker_identifier)
    backend.send_keys(name, [prompt, "C-m"])
    _log.info(f"session {name} started with prompt: {prompt}")
    return SpawnedSession(name=name, created=True)
