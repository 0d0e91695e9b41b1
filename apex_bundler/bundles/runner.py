"""Runner for planned bundle build actions.

This module handles:
- Staging bundle trees (copies and symlinks)
- Writing generated files
- Executing tool commands with subprocess
- Capturing tool output to a per-bundle log file
- Enforcing per-action timeouts

Actions run strictly in plan order and are never retried.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TextIO

from apex_bundler.bundles.packaging import ActionKind, BuildAction, BundlePlan

logger = logging.getLogger(__name__)


class BuildExecutionError(Exception):
    """Raised when an action cannot be executed."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "build_error",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code


@dataclass
class BuildResult:
    """Result of running a bundle plan.

    Attributes:
        bundle: Bundle name.
        log_path: Path to the build log file.
        started_at: Start time.
        finished_at: Finish time.
        actions_run: Number of actions executed (or printed, for dry runs).
        outputs: Outputs of the executed actions.
    """

    bundle: str
    log_path: Path
    started_at: datetime
    finished_at: datetime
    actions_run: int = 0
    outputs: list[Path] = field(default_factory=list)


def stage_file(source: Path, dest: Path) -> None:
    """Copy a built file into place, creating parent directories.

    Raises:
        BuildExecutionError: If the copy fails.
    """
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, dest)
    except OSError as e:
        raise BuildExecutionError(
            f"Failed to stage {source} -> {dest}: {e}", code="stage_error"
        ) from e


def run_stage(action: BuildAction) -> None:
    """Recreate a staging directory from scratch and fill it."""
    image_dir = action.outputs[0]
    try:
        if image_dir.exists():
            shutil.rmtree(image_dir)
        image_dir.mkdir(parents=True)
    except OSError as e:
        raise BuildExecutionError(
            f"Failed to prepare {image_dir}: {e}", code="stage_error"
        ) from e

    for copy in action.copies:
        stage_file(copy.source, copy.dest)
    for link in action.symlinks:
        try:
            os.symlink(link.target, link.link)
        except OSError as e:
            raise BuildExecutionError(
                f"Failed to link {link.link} -> {link.target}: {e}", code="stage_error"
            ) from e


def run_write(action: BuildAction) -> None:
    dest = action.outputs[0]
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_text(action.content or "", encoding="utf-8")
    except OSError as e:
        raise BuildExecutionError(f"Failed to write {dest}: {e}", code="stage_error") from e


def run_command(
    action: BuildAction,
    log_file: TextIO,
    cwd: Path | None = None,
    timeout: int | None = None,
) -> int:
    """Run a tool command, appending its output to the log.

    Returns:
        The process exit code.

    Raises:
        BuildExecutionError: On timeout or if the tool cannot be started.
    """
    cmd_str = action.command_line()
    logger.info("Executing %s: %s", action.description, cmd_str)
    log_file.write(f"# Command: {cmd_str}\n")
    log_file.flush()

    env: dict[str, str] | None = None
    if action.env:
        env = dict(os.environ)
        env.update(action.env)

    for output in action.outputs:
        output.parent.mkdir(parents=True, exist_ok=True)

    try:
        result = subprocess.run(
            action.command,
            cwd=cwd,
            stdout=log_file,
            stderr=subprocess.STDOUT,
            timeout=timeout,
            env=env,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        log_file.write(f"\n# TIMEOUT after {timeout} seconds\n")
        message = f"{action.description} timed out after {timeout} seconds"
        logger.error(message)
        raise BuildExecutionError(message, exit_code=-1, code="build_timeout") from e
    except OSError as e:
        message = f"Failed to execute {action.description}: {e}"
        logger.error(message)
        raise BuildExecutionError(message, exit_code=None, code="execution_error") from e

    return result.returncode


def run_plan(
    plan: BundlePlan,
    log_path: Path,
    cwd: Path | None = None,
    timeout: int | None = None,
    dry_run: bool = False,
) -> BuildResult:
    """Execute every action of a bundle plan in order.

    A tool exiting non-zero stops the run with code "tool_failed".

    Args:
        plan: The bundle plan.
        log_path: Log file for tool output.
        cwd: Working directory for tools.
        timeout: Per-action timeout in seconds (None = no timeout).
        dry_run: Log actions instead of executing them.

    Returns:
        BuildResult with execution details.

    Raises:
        BuildExecutionError: If an action fails.
    """
    started_at = datetime.now(timezone.utc)
    outputs: list[Path] = []
    actions_run = 0

    if dry_run:
        for action in plan.actions:
            if action.kind is ActionKind.COMMAND:
                logger.info("[dry-run] %s", action.command_line())
            else:
                logger.info("[dry-run] %s -> %s", action.description, action.outputs[0])
            actions_run += 1
        return BuildResult(
            bundle=plan.bundle,
            log_path=log_path,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            actions_run=actions_run,
        )

    log_path.parent.mkdir(parents=True, exist_ok=True)
    with log_path.open("w") as log_file:
        log_file.write(f"# Bundle: {plan.bundle}\n")
        log_file.write(f"# Started: {started_at.isoformat()}\n")
        log_file.write("# " + "=" * 70 + "\n\n")
        log_file.flush()

        for action in plan.actions:
            match action.kind:
                case ActionKind.STAGE:
                    run_stage(action)
                case ActionKind.WRITE:
                    run_write(action)
                case ActionKind.COPY:
                    stage_file(action.inputs[0], action.outputs[0])
                case ActionKind.COMMAND:
                    exit_code = run_command(action, log_file, cwd=cwd, timeout=timeout)
                    if exit_code != 0:
                        message = f"{action.description} failed with exit code {exit_code}"
                        logger.error("%s. See log: %s", message, log_path)
                        log_file.write(f"\n# Exit code: {exit_code}\n")
                        raise BuildExecutionError(
                            message, exit_code=exit_code, code="tool_failed"
                        )
            actions_run += 1
            outputs += action.outputs

        finished_at = datetime.now(timezone.utc)
        duration = (finished_at - started_at).total_seconds()
        log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
        log_file.write(f"# Duration: {duration:.1f}s\n")

    logger.info("Built %s: %d actions", plan.bundle, actions_run)
    return BuildResult(
        bundle=plan.bundle,
        log_path=log_path,
        started_at=started_at,
        finished_at=finished_at,
        actions_run=actions_run,
        outputs=outputs,
    )


__all__ = [
    "BuildExecutionError",
    "BuildResult",
    "run_command",
    "run_plan",
    "run_stage",
    "run_write",
    "stage_file",
]
