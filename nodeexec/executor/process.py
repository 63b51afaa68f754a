# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Process spawning, liveness, signal delivery and exit interpretation.

All external commands go through ``CommandRunner`` so tests can replace
the spawn primitive.  Pids only ever reach a shell line after they have
been validated as numeric.
"""

from __future__ import annotations

import logging
import re
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from nodeexec.executor.errors import (
    IntentionalTermination,
    RuntimeInvocationFailure,
)
from nodeexec.executor.types import (
    ExitClassification,
    ExitCode,
    ExitOutcome,
    Signal,
)


logger = logging.getLogger(__name__)

_PID_PATTERN = re.compile(r"^\d+$")

_INTENTIONAL_CODES = {
    ExitCode.FORCE_KILLED: ExitOutcome.FORCE_KILLED,
    ExitCode.TERMINATED: ExitOutcome.TERMINATED,
}


def validate_pid(pid: str | int) -> str:
    """Return ``pid`` as a string after checking it is a positive number.

    Raises:
        ValueError: If ``pid`` is not a decimal number greater than zero.
    """
    text = str(pid).strip()
    if not _PID_PATTERN.fullmatch(text) or int(text) == 0:
        raise ValueError(f"Invalid pid: {pid!r}")
    return text


@dataclass(frozen=True)
class CommandResult:
    """Output of a command that exited with code zero.

    Attributes:
        command: The command that was run.
        exit_code: Always 0.
        stdout: Captured standard output.
        stderr: Captured standard error.
    """

    command: list[str]
    exit_code: int
    stdout: str
    stderr: str

    @property
    def output(self) -> str:
        """Captured stdout followed by stderr."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


class CommandRunner:
    """Runs external commands to completion.

    There is no timeout; a command runs until it exits or is signalled.
    """

    def run(
        self,
        cmd: list[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Run ``cmd`` and capture its output.

        A process killed by a signal is reported with the shell convention
        ``128 + signal`` so that it classifies the same way as a wrapper
        script whose child was killed.

        Args:
            cmd: Command and arguments.
            cwd: Working directory.
            env: Complete environment; None inherits the current one.

        Returns:
            CommandResult for a zero exit.

        Raises:
            IntentionalTermination: If the exit code is 137 or 143.
            RuntimeInvocationFailure: For any other non-zero exit code.
            OSError: If the command cannot be started.
        """
        logger.debug("Running command: %s", " ".join(cmd))
        result = subprocess.run(
            cmd,
            cwd=cwd,
            env=dict(env) if env is not None else None,
            capture_output=True,
            text=True,
        )
        exit_code = result.returncode
        if exit_code < 0:
            exit_code = 128 - exit_code
        stdout = result.stdout or ""
        stderr = result.stderr or ""

        if exit_code in _INTENTIONAL_CODES:
            raise IntentionalTermination(cmd, exit_code, stdout, stderr)
        if exit_code != 0:
            raise RuntimeInvocationFailure(cmd, exit_code, stdout, stderr)
        return CommandResult(cmd, exit_code, stdout, stderr)


class ProcessController:
    """Liveness checks, signal delivery and exit-code classification.

    Signals are delivered with the ``kill`` builtin through ``bash`` as
    the executor's own user; ``user`` arguments are used for logging.
    """

    def __init__(self, runner: CommandRunner | None = None) -> None:
        self._runner = runner or CommandRunner()

    def _kill(self, pid: str, signal: Signal) -> None:
        self._runner.run(["bash", "-c", f"kill -{int(signal)} {pid}"])

    def is_alive(self, pid: str | int) -> bool:
        """Return True if a null signal to ``pid`` succeeds.

        Raises:
            ValueError: If ``pid`` is not numeric.
        """
        pid = validate_pid(pid)
        try:
            self._kill(pid, Signal.NULL)
        except RuntimeInvocationFailure:
            return False
        return True

    def send_signal(self, user: str, pid: str | int, signal: Signal) -> bool:
        """Deliver ``signal`` to ``pid``.

        Returns:
            True if the signal was delivered.  False if the process was
            not alive, or exited between the liveness check and delivery.

        Raises:
            RuntimeInvocationFailure: If delivery failed while the process
                is still alive.
            ValueError: If ``pid`` is not numeric.
        """
        pid = validate_pid(pid)
        logger.debug(
            "Sending signal %s to pid %s as user %s", signal.name, pid, user
        )
        if not self.is_alive(pid):
            return False
        try:
            self._kill(pid, signal)
        except RuntimeInvocationFailure:
            if not self.is_alive(pid):
                logger.debug("Process %s exited before signal delivery", pid)
                return False
            raise
        return True

    def classify_exit(
        self,
        container_id: str,
        exit_code: int,
        output: str = "",
        error: BaseException | None = None,
    ) -> ExitClassification:
        """Interpret the exit code of a container's wrapper process.

        Args:
            container_id: Container the process belonged to.
            exit_code: Exit code of the wrapper.
            output: Captured process output.
            error: The failure raised by the runner, included in the
                diagnostics of a failed launch.

        Returns:
            ExitClassification with diagnostics for the container.
        """
        if exit_code == ExitCode.SUCCESS:
            return ExitClassification(ExitOutcome.SUCCESS, exit_code)

        logger.warning(
            "Exit code from container %s is : %d", container_id, exit_code
        )
        outcome = _INTENTIONAL_CODES.get(exit_code)
        if outcome is not None:
            logger.info("Container %s was killed on request", container_id)
            return ExitClassification(
                outcome,
                exit_code,
                f"Container killed on request. Exit code is {exit_code}",
            )

        logger.warning(
            "Exception from container-launch with container ID: %s "
            "and exit code: %d",
            container_id,
            exit_code,
        )
        if output:
            logger.warning("Container output:\n%s", output)
        reason = str(error) if error is not None else f"Exit code {exit_code}"
        return ExitClassification(
            ExitOutcome.FAILURE,
            exit_code,
            f"Exception from container-launch: \n{reason}\n{output}",
        )

    @staticmethod
    def read_pid_file(path: Path) -> str | None:
        """Return the first numeric line of a pid file.

        Returns:
            The pid, or None if the file does not exist or holds no pid.
        """
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        for line in content.splitlines():
            candidate = line.strip()
            if not candidate:
                continue
            if _PID_PATTERN.fullmatch(candidate):
                return candidate
            logger.debug("Skipping non-numeric line in %s: %s", path, candidate)
        return None

    @staticmethod
    def read_exit_code_file(path: Path) -> int | None:
        """Return the exit code recorded by the wrapper script.

        Returns:
            The exit code, or None if the file is missing or malformed.
        """
        try:
            content = path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        try:
            return int(content)
        except ValueError:
            logger.warning("Malformed exit code file %s: %r", path, content)
            return None
