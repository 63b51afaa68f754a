# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Exceptions raised by the container executor."""

from __future__ import annotations


class ExecutorError(Exception):
    """Base exception for container executor failures."""


class DirectoryInitializationError(ExecutorError):
    """No candidate disk accepted a required directory level.

    Attributes:
        level: Directory level that failed (e.g. ``"app-cache"``).
        subject: What the level was for (e.g. ``"user alice"``).
    """

    def __init__(self, level: str, subject: str) -> None:
        self.level = level
        self.subject = subject
        super().__init__(
            f"Not able to initialize {level} directories in any of the "
            f"configured local directories for {subject}"
        )


class NoAvailableStorageError(ExecutorError):
    """Every candidate disk reported zero free space."""

    def __init__(self, user: str) -> None:
        self.user = user
        super().__init__(f"Not able to find a working directory for {user}")


class InvalidImageError(ExecutorError, ValueError):
    """The container image identifier is empty or malformed."""


class RuntimeInvocationFailure(ExecutorError):
    """A spawned command exited with a non-zero code.

    Attributes:
        command: The command that was run.
        exit_code: Its exit code.
        stdout: Captured standard output.
        stderr: Captured standard error.
    """

    def __init__(
        self,
        command: list[str],
        exit_code: int,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        message = f"Command exited with code {exit_code}: {' '.join(command)}"
        if stderr.strip():
            message += f"\n{stderr.strip()}"
        super().__init__(message)

    @property
    def output(self) -> str:
        """Captured stdout followed by stderr."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


class IntentionalTermination(RuntimeInvocationFailure):
    """The command was killed by SIGKILL or SIGTERM on request."""
