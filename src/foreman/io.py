"""Console output helpers for command results."""

from __future__ import annotations

import json
import sys
from typing import NoReturn

from . import log
from .errors import ServiceFailure


def say(message: str) -> None:
    """Print a normal message to stdout.

    Example:
        >>> say("Hello")
        Hello
    """
    print(message)


def say_json(payload: object) -> None:
    """Print a JSON document to stdout.

    Example:
        >>> say_json({"ok": True})
        {
          "ok": true
        }
    """
    print(json.dumps(payload, indent=2, default=str))


def die(message: str, code: int = 1, *, hint: str | None = None) -> NoReturn:
    """Log an error (and optional recovery hint) and exit.

    Args:
        message: Error message to display.
        code: Exit code to use.
        hint: Optional recovery hint shown on its own line.
    """
    log.error(f"error: {message}")
    if hint:
        log.warning(f"hint: {hint}")
    sys.exit(code)


def die_for(failure: ServiceFailure, code: int = 1) -> NoReturn:
    """Exit with a ``ServiceFailure``'s message and recovery hint."""
    die(str(failure), code, hint=failure.recovery_hint)
