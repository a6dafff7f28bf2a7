# ruff: noqa: E402

import sys
from pathlib import Path

import pytest
from _pytest.doctest import DoctestModule

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

import foreman.exec as exec_util
import foreman.log as log

DOCTEST_MODULES = {
    ROOT / "src" / "foreman" / "__init__.py",
    ROOT / "src" / "foreman" / "config.py",
    ROOT / "src" / "foreman" / "git.py",
    ROOT / "src" / "foreman" / "io.py",
    ROOT / "src" / "foreman" / "models.py",
    ROOT / "src" / "foreman" / "paths.py",
    ROOT / "src" / "foreman" / "selection.py",
    ROOT / "src" / "foreman" / "sessions.py",
    ROOT / "src" / "foreman" / "term" / "__init__.py",
    ROOT / "src" / "foreman" / "term" / "tmux.py",
    ROOT / "src" / "foreman" / "tracker.py",
}


@pytest.fixture(autouse=True)
def _isolated_environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory
) -> None:
    data_dir = tmp_path_factory.mktemp("foreman-data")
    monkeypatch.setattr("foreman.paths.user_data_dir", lambda _name: str(data_dir))
    for name in (
        "FOREMAN_REPO_PATH",
        "FOREMAN_WORKTREE_BASE",
        "FOREMAN_BASE_BRANCH",
        "FOREMAN_AGENT_TEMPLATE_PATH",
        "FOREMAN_AGENT_COMMAND",
        "FOREMAN_AGENT_STARTUP_DELAY",
        "FOREMAN_GIT_PATH",
        "FOREMAN_LOG_LEVEL",
        "FOREMAN_NO_COLOR",
        "FOREMAN_GITHUB_REPO",
        "FOREMAN_STATE_PATH",
        "FOREMAN_REQUIRE_REMOTE_BRANCH",
        "FOREMAN_STRICT_CLEANUP",
        "FOREMAN_COMMAND_TIMEOUT",
        "LINEAR_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(log, "_configured_level", None)
    monkeypatch.setattr(log, "_no_color_override", None)
    monkeypatch.setattr(exec_util, "_default_timeout_seconds", None)


def pytest_collect_file(
    parent: pytest.Collector, file_path: Path
) -> DoctestModule | None:
    path = file_path if isinstance(file_path, Path) else Path(str(file_path))
    if path in DOCTEST_MODULES:
        return DoctestModule.from_parent(parent, path=path)
    return None
