"""Per-branch worktree provisioning.

``create_worktree`` is idempotent: when a worktree is already registered at
the branch's deterministic path it returns immediately with ``existed=True``.
Otherwise only the ``worktree-add`` step decides success; every other step is
best-effort and recorded in the returned results log.
"""

from __future__ import annotations

import shutil
from pathlib import Path

from . import config, git, log, paths
from .exec import CommandResult
from .models import ForemanSettings, ProvisionResult, StepResult

_log = log.component("worktree")

ENV_FILENAME = ".env"
AGENT_CONFIG_DIRNAME = ".claude"
PROJECT_MARKER_FILENAME = ".foreman"
COMPLIANCE_AGENT_FILENAME = "foreman-compliance.md"
SUBMODULE_MANIFEST = ".gitmodules"


def _command_step(step: str, result: CommandResult) -> StepResult:
    return StepResult(
        step=step,
        exit_code=result.returncode,
        stdout=result.stdout,
        stderr=result.stderr,
    )


def _note(step: str, message: str) -> StepResult:
    return StepResult(step=step, exit_code=0, stdout=message)


def _failure(step: str, exc: OSError) -> StepResult:
    return StepResult(step=step, exit_code=1, stderr=str(exc))


def create_worktree(branch: str, settings: ForemanSettings) -> ProvisionResult:
    """Provision an isolated worktree for ``branch``.

    Args:
        branch: Branch to check out, e.g. ``feature/a-273-login``.
        settings: Process settings (repository, worktree base, policies).

    Returns:
        ``ProvisionResult`` carrying the ordered step log.
    """
    repo_dir = config.require_repo_path(settings)
    base_dir = config.resolve_worktree_base(settings)
    target = paths.worktree_path(base_dir, branch)
    git_path = settings.git_path

    existing = git.find_worktree(git.list_worktrees(repo_dir, git_path=git_path), path=target)
    if existing is not None:
        _log.debug(f"{branch}: worktree already registered at {target}")
        return ProvisionResult(ok=True, branch=branch, path=target, existed=True)

    steps: list[StepResult] = []
    try:
        paths.ensure_dir(base_dir)
    except OSError as exc:
        return ProvisionResult(
            ok=False,
            branch=branch,
            path=target,
            steps=steps,
            error=f"failed to create worktree base {base_dir}: {exc}",
        )

    steps.append(_command_step("fetch", git.fetch_all(repo_dir, git_path=git_path)))

    verify = git.verify_ref(repo_dir, f"origin/{branch}", git_path=git_path)
    steps.append(_command_step("verify-origin-branch", verify))
    if verify.ok:
        base_ref = f"origin/{branch}"
        steps.append(
            _command_step(
                "fetch-branch-latest", git.fetch_branch(repo_dir, branch, git_path=git_path)
            )
        )
    elif settings.require_remote_branch:
        message = f"branch {branch} does not exist on origin"
        _log.error(f"{message}; refusing to provision")
        return ProvisionResult(ok=False, branch=branch, path=target, steps=steps, error=message)
    else:
        base_ref = settings.base_branch
        _log.warning(f"{branch} does not exist on origin; creating it from {base_ref}")

    add = git.add_worktree(repo_dir, branch, base_ref, target, git_path=git_path)
    steps.append(_command_step("worktree-add", add))
    if not add.ok:
        error = add.detail or "failed to add worktree"
        _log.error(f"{branch}: {error}")
        return ProvisionResult(ok=False, branch=branch, path=target, steps=steps, error=error)

    _log.success(f"{branch}: worktree created at {target} from {base_ref}")
    steps.extend(_copy_support_files(repo_dir, target))
    steps.append(_install_compliance_agent(target, settings.agent_template_path))
    submodules = _init_submodules(target, git_path=git_path)
    if submodules is not None:
        steps.append(submodules)
    return ProvisionResult(ok=True, branch=branch, path=target, steps=steps)


def _copy_support_files(repo_dir: Path, target: Path) -> list[StepResult]:
    steps: list[StepResult] = []

    source_env = repo_dir / ENV_FILENAME
    if source_env.is_file():
        try:
            shutil.copy2(source_env, target / ENV_FILENAME)
        except OSError as exc:
            _log.warning(f"failed to copy {ENV_FILENAME}: {exc}")
            steps.append(_failure("copy-env", exc))
        else:
            steps.append(_note("copy-env", f"copied {ENV_FILENAME}"))
    else:
        steps.append(_note("copy-env", f"no {ENV_FILENAME} to copy"))

    source_agent_config = repo_dir / AGENT_CONFIG_DIRNAME
    if source_agent_config.is_dir():
        try:
            shutil.copytree(
                source_agent_config, target / AGENT_CONFIG_DIRNAME, dirs_exist_ok=True
            )
        except (OSError, shutil.Error) as exc:
            _log.warning(f"failed to copy {AGENT_CONFIG_DIRNAME}/: {exc}")
            steps.append(_failure("copy-agent-config", exc))
        else:
            steps.append(_note("copy-agent-config", f"copied {AGENT_CONFIG_DIRNAME}/"))
    else:
        steps.append(_note("copy-agent-config", f"no {AGENT_CONFIG_DIRNAME}/ to copy"))

    source_marker = repo_dir / PROJECT_MARKER_FILENAME
    target_marker = target / PROJECT_MARKER_FILENAME
    if source_marker.exists() and not (target_marker.exists() or target_marker.is_symlink()):
        try:
            target_marker.symlink_to(source_marker)
        except OSError as exc:
            _log.warning(f"failed to link {PROJECT_MARKER_FILENAME}: {exc}")
            steps.append(_failure("symlink-project-marker", exc))
        else:
            steps.append(_note("symlink-project-marker", f"linked {PROJECT_MARKER_FILENAME}"))
    return steps


def _install_compliance_agent(target: Path, template_dir: Path | None) -> StepResult:
    step = "install-compliance-agent"
    agents_dir = target / AGENT_CONFIG_DIRNAME / "agents"
    destination = agents_dir / COMPLIANCE_AGENT_FILENAME
    if destination.exists():
        return _note(step, "agent already present")
    if template_dir is None:
        return _note(step, "no template location configured")
    source = template_dir.expanduser() / AGENT_CONFIG_DIRNAME / "agents" / COMPLIANCE_AGENT_FILENAME
    if not source.is_file():
        return _note(step, f"no template at {source}")
    try:
        paths.ensure_dir(agents_dir)
        shutil.copy2(source, destination)
    except OSError as exc:
        _log.warning(f"failed to install {COMPLIANCE_AGENT_FILENAME}: {exc}")
        return _failure(step, exc)
    return _note(step, f"installed {COMPLIANCE_AGENT_FILENAME}")


def _init_submodules(target: Path, *, git_path: str) -> StepResult | None:
    if not (target / SUBMODULE_MANIFEST).exists():
        return None
    result = git.submodule_update(target, git_path=git_path)
    if not result.ok:
        _log.warning(f"submodule init failed in {target}: {result.detail}")
    return _command_step("submodule-init", result)
