"""Terminal multiplexer integration for agent sessions."""

from __future__ import annotations

from .tmux import TmuxSessions

__all__ = [
    "TmuxSessions",
    "format_session_title",
]


def format_session_title(identifier: str, title: str | None = None) -> str:
    """Return the window title shown for an agent session.

    Example:
        >>> format_session_title("A-273", "Fix login")
        'A-273 - Fix login'
        >>> format_session_title("A-273")
        'A-273'
    """
    if title:
        return f"{identifier} - {title}"
    return identifier
