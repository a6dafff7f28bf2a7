"""Host and control commands for the autopilot loop."""

from __future__ import annotations

import signal
import threading
from dataclasses import asdict
from types import FrameType, SimpleNamespace

from .. import config, log
from ..autopilot import AutopilotController, build_controller
from ..errors import ServiceFailure
from ..io import die, die_for, say, say_json

_HOST_WAKE_SECONDS = 1.0


def _load_controller(args: SimpleNamespace) -> AutopilotController:
    try:
        settings = config.load_settings(repo_path=getattr(args, "repo", None))
        controller = build_controller(settings)
    except ServiceFailure as exc:
        die_for(exc)
    controller.load()
    return controller


def run_autopilot(args: SimpleNamespace) -> None:
    """Host the loop until interrupted.

    Resumes when the persisted state is enabled; otherwise starts the loop
    unless ``args.start`` is false. While hosting, the loop follows the
    persisted ``enabled`` flag, so ``foreman start`` and ``foreman stop``
    from another shell take effect within a second.
    """
    controller = _load_controller(args)
    if not controller.resume():
        if getattr(args, "start", True):
            result = controller.start()
            if not result.ok:
                die(result.error or "failed to start autopilot")
        else:
            log.info("autopilot is disabled; waiting for `foreman start`")

    done = threading.Event()

    def _terminate(signum: int, frame: FrameType | None) -> None:
        done.set()

    previous = signal.signal(signal.SIGTERM, _terminate)
    try:
        while not done.wait(_HOST_WAKE_SECONDS):
            controller.refresh()
    except KeyboardInterrupt:
        pass
    finally:
        signal.signal(signal.SIGTERM, previous)
        log.info("shutting down, waiting for the current tick")
        controller.shutdown()


def poll_autopilot(args: SimpleNamespace) -> None:
    """Run a single reconciliation tick and print its report."""
    controller = _load_controller(args)
    report = controller.poll_once()
    if report is None:
        die("a tick is already in flight")
    say_json(asdict(report))


def status_autopilot(args: SimpleNamespace) -> None:
    controller = _load_controller(args)
    try:
        status = controller.get_status()
    except ServiceFailure as exc:
        die_for(exc)
    say_json(status.model_dump(by_alias=True))


def set_max_parallel(args: SimpleNamespace) -> None:
    controller = _load_controller(args)
    result = controller.set_max_parallel(args.value)
    if not result.ok:
        die(result.error or "invalid value")
    say(f"max parallel agents: {controller.config.max_parallel_agents}")


def enable_autopilot(args: SimpleNamespace) -> None:
    """Persist ``enabled`` so a running host starts ticking."""
    controller = _load_controller(args)
    result = controller.set_enabled(True)
    if not result.ok:
        die(result.error or "failed to enable autopilot")
    say("autopilot enabled")


def disable_autopilot(args: SimpleNamespace) -> None:
    """Persist ``enabled=false`` so a running host stops after its current tick."""
    controller = _load_controller(args)
    result = controller.set_enabled(False)
    if not result.ok:
        die(result.error or "failed to disable autopilot")
    say("autopilot disabled")
