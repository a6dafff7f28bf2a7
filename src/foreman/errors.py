"""Failure contracts shared by the autopilot, provisioning and cleanup code.

Expected domain/policy/runtime failures raise ``ServiceFailure`` subclasses.
Programmer bugs raise normal exceptions.
"""

from __future__ import annotations

from typing import Literal

ServiceFailureCode = Literal[
    "validation_failed",
    "dependency_missing",
    "preflight_violation",
    "external_service_failed",
    "integration_not_configured",
    "io_failed",
]


class ServiceFailure(Exception):
    """Expected failure: validation, policy, or runtime error.

    Use ``raise ServiceFailure(...) from exc`` to chain a causing exception;
    it is available as ``__cause__``. Callers catch ServiceFailure and handle
    it per their interface (the CLI exits non-zero, the loop logs and moves on).
    """

    def __init__(
        self,
        code: ServiceFailureCode,
        message: str,
        *,
        recovery_hint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.recovery_hint = recovery_hint


class ValidationFailedError(ServiceFailure):
    """Invalid input or constraint violation."""

    def __init__(self, message: str, *, recovery_hint: str | None = None) -> None:
        super().__init__("validation_failed", message, recovery_hint=recovery_hint)


class DependencyMissingError(ServiceFailure):
    """Required executable (git, gh, tmux) is missing."""

    def __init__(self, message: str, *, recovery_hint: str | None = None) -> None:
        super().__init__("dependency_missing", message, recovery_hint=recovery_hint)


class PreflightViolationError(ServiceFailure):
    """A cleanup safety invariant failed; nothing was changed."""

    def __init__(self, message: str, *, recovery_hint: str | None = None) -> None:
        super().__init__("preflight_violation", message, recovery_hint=recovery_hint)


class ExternalServiceError(ServiceFailure):
    """Tracker or host API unreachable or returned an error."""

    def __init__(self, message: str, *, recovery_hint: str | None = None) -> None:
        super().__init__("external_service_failed", message, recovery_hint=recovery_hint)


class IntegrationNotConfiguredError(ServiceFailure):
    """Tracker or host integration has no credentials/target configured."""

    def __init__(self, message: str, *, recovery_hint: str | None = None) -> None:
        super().__init__("integration_not_configured", message, recovery_hint=recovery_hint)


class IoFailedError(ServiceFailure):
    """Filesystem operation failed."""

    def __init__(self, message: str, *, recovery_hint: str | None = None) -> None:
        super().__init__("io_failed", message, recovery_hint=recovery_hint)
