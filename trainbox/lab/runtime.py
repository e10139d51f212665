# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Container runtime invocation.

Wraps the runtime CLI (``docker`` or ``podman``) for the few operations
a launch needs.  Interactive runs inherit the caller's terminal: stdin,
stdout and stderr are not captured, so the user talks to the container
directly while the wall-clock timeout runs.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import time
from dataclasses import dataclass

from trainbox.lab.errors import RuntimeUnavailableError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunStatus:
    """Raw result of an interactive run.

    Attributes:
        exit_code: Process exit status, None if the run never finished.
        timed_out: Killed after exceeding the wall-clock timeout.
        interrupted: Ended by a user interrupt (Ctrl-C) on our side.
        duration_ms: Wall-clock duration.
    """

    exit_code: int | None
    timed_out: bool
    interrupted: bool
    duration_ms: int


class ContainerRuntime:
    """Thin wrapper around the container runtime CLI.

    Args:
        container_command: Runtime command (``docker`` or ``podman``).
    """

    def __init__(self, container_command: str = "docker") -> None:
        self._container_command = container_command

    @property
    def container_command(self) -> str:
        """Get container runtime command."""
        return self._container_command

    def check_available(self) -> None:
        """Verify the runtime is installed and its daemon answers.

        Raises:
            RuntimeUnavailableError: If the command is missing or fails.
        """
        if shutil.which(self._container_command) is None:
            raise RuntimeUnavailableError(
                f"Container runtime not found: {self._container_command}"
            )
        try:
            subprocess.run(
                [self._container_command, "info"],
                check=True,
                capture_output=True,
                text=True,
                timeout=30,
            )
        except subprocess.CalledProcessError as e:
            error_msg = e.stderr.strip() if e.stderr else str(e)
            raise RuntimeUnavailableError(
                f"Container runtime not responding: {error_msg}"
            ) from e
        except subprocess.TimeoutExpired as e:
            raise RuntimeUnavailableError(
                "Container runtime did not answer within 30s"
            ) from e

    def container_exists(self, name: str) -> bool:
        """Check if a container (running or stopped) exists."""
        try:
            subprocess.run(
                [self._container_command, "container", "inspect", name],
                check=True,
                capture_output=True,
                text=True,
            )
            return True
        except (subprocess.CalledProcessError, FileNotFoundError):
            return False

    def kill(self, name: str) -> None:
        """Forcibly stop a container.  Failure is logged."""
        try:
            subprocess.run(
                [self._container_command, "kill", name],
                check=True,
                capture_output=True,
                text=True,
                timeout=30,
            )
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
            logger.warning("Failed to kill container %s: %s", name, e)

    def remove(self, name: str) -> bool:
        """Force-remove a container.

        Returns:
            True if the runtime removed it.  Failure is logged.
        """
        try:
            subprocess.run(
                [self._container_command, "rm", "-f", name],
                check=True,
                capture_output=True,
                text=True,
                timeout=60,
            )
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
            logger.warning("Failed to remove container %s: %s", name, e)
            return False
        return True

    def run_interactive(
        self, args: list[str], container: str, timeout_seconds: int
    ) -> RunStatus:
        """Run a runtime subcommand attached to the caller's terminal.

        On timeout the runtime client is killed and the container is
        killed as well, so the session cannot outlive the limit.

        Args:
            args: Arguments after the runtime command (``run ...`` or
                ``start ...``).
            container: Container name (for the forced kill).
            timeout_seconds: Hard wall-clock limit.

        Returns:
            RunStatus describing how the run ended.
        """
        cmd = [self._container_command, *args]
        logger.debug("Full command: %s", " ".join(cmd))

        start_time = time.time()
        exit_code: int | None = None
        timed_out = False
        interrupted = False

        try:
            result = subprocess.run(cmd, timeout=timeout_seconds)
            exit_code = result.returncode
        except subprocess.TimeoutExpired:
            logger.error(
                "Session %s exceeded %ds, killing container",
                container,
                timeout_seconds,
            )
            self.kill(container)
            timed_out = True
        except KeyboardInterrupt:
            logger.info("Session %s interrupted by user", container)
            interrupted = True

        elapsed = time.time() - start_time
        logger.info(
            "Session %s ended in %.2fs (exit_code=%s)",
            container,
            elapsed,
            exit_code,
        )
        return RunStatus(
            exit_code=exit_code,
            timed_out=timed_out,
            interrupted=interrupted,
            duration_ms=int(elapsed * 1000),
        )
