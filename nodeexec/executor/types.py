# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Type definitions for the container executor.

Provides the request and outcome types shared by the allocator, script
builders, process controller and the executor facade, plus the protocols
for collaborators that live outside this package (resource localization
and the container's diagnostics consumer).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from pathlib import Path
from typing import Any, Protocol


class ExitCode(IntEnum):
    """Exit codes with a fixed meaning for container processes.

    ``FORCE_KILLED`` and ``TERMINATED`` are the shell's ``128 + signal``
    codes for SIGKILL and SIGTERM. ``LOST`` is reported when a
    reacquired container left no exit code behind.
    """

    SUCCESS = 0
    FORCE_KILLED = 137
    TERMINATED = 143
    LOST = 154


#: Returned when the wrapper process could not be started at all.
EXIT_NOT_STARTED = -1


class Signal(IntEnum):
    """Signals the executor delivers to container processes."""

    NULL = 0
    QUIT = 3
    KILL = 9
    TERM = 15


class ExitOutcome(Enum):
    """Classification of a container process exit."""

    SUCCESS = "success"
    FORCE_KILLED = "force_killed"
    TERMINATED = "terminated"
    FAILURE = "failure"

    @property
    def intentional(self) -> bool:
        """True when the exit was caused by a kill/terminate request."""
        return self in (ExitOutcome.FORCE_KILLED, ExitOutcome.TERMINATED)


@dataclass(frozen=True)
class ExitClassification:
    """Result of interpreting a container process exit code.

    Attributes:
        outcome: Classified outcome.
        exit_code: The raw exit code.
        diagnostics: Text for the container's diagnostics consumer; empty
            for a successful exit.
    """

    outcome: ExitOutcome
    exit_code: int
    diagnostics: str = ""


@dataclass(frozen=True)
class LaunchContext:
    """What to run inside the container.

    Attributes:
        command: Command tokens, joined with spaces in the launch script.
        environment: Variables exported by the launch script.
        resources: Localized resource path to the link names it is exposed
            under in the working directory.
    """

    command: list[str] = field(default_factory=list)
    environment: dict[str, str] = field(default_factory=dict)
    resources: dict[Path, list[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class ContainerRequest:
    """A request to launch one container.

    Attributes:
        container_id: Container identifier; also the runtime container name.
        app_id: Owning application identifier.
        user: User the container runs for.
        memory_mb: Requested memory in MB.
        launch_context: Command, environment and resources.
        launch_script_path: Launch script staged by the requesting side.
        tokens_path: Credentials file staged by the requesting side.
        flexible: Whether ``-Xmx`` tokens are rewritten to the configured
            heap size.
    """

    container_id: str
    app_id: str
    user: str
    memory_mb: int
    launch_context: LaunchContext
    launch_script_path: Path
    tokens_path: Path
    flexible: bool = False

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> ContainerRequest:
        """Build a request from a parsed YAML/JSON mapping.

        Args:
            raw: Mapping with ``container_id``, ``app_id``, ``user``,
                ``memory_mb``, ``launch_script``, ``tokens`` and an
                optional ``launch_context`` mapping.

        Returns:
            ContainerRequest instance.

        Raises:
            ValueError: If a required key is missing or malformed.
        """
        missing = [
            key
            for key in (
                "container_id",
                "app_id",
                "user",
                "memory_mb",
                "launch_script",
                "tokens",
            )
            if raw.get(key) in (None, "")
        ]
        if missing:
            raise ValueError(
                f"Container request is missing: {', '.join(missing)}"
            )

        ctx = raw.get("launch_context") or {}
        resources = {
            Path(str(path)): [str(name) for name in names]
            for path, names in (ctx.get("resources") or {}).items()
        }
        return cls(
            container_id=str(raw["container_id"]),
            app_id=str(raw["app_id"]),
            user=str(raw["user"]),
            memory_mb=int(raw["memory_mb"]),
            launch_context=LaunchContext(
                command=[str(token) for token in ctx.get("command") or []],
                environment={
                    str(k): str(v)
                    for k, v in (ctx.get("environment") or {}).items()
                },
                resources=resources,
            ),
            launch_script_path=Path(str(raw["launch_script"])),
            tokens_path=Path(str(raw["tokens"])),
            flexible=bool(raw.get("flexible", False)),
        )


@dataclass(frozen=True)
class LocalDirSet:
    """Candidate disks for working storage and logs.

    Order carries no meaning for allocation; both sets must be non-empty.

    Attributes:
        local_dirs: Local disk roots.
        log_dirs: Log roots.
    """

    local_dirs: tuple[Path, ...]
    log_dirs: tuple[Path, ...]

    def __post_init__(self) -> None:
        """Normalize to tuples of paths and validate.

        Raises:
            ValueError: If either set is empty.
        """
        object.__setattr__(
            self, "local_dirs", tuple(Path(d) for d in self.local_dirs)
        )
        object.__setattr__(
            self, "log_dirs", tuple(Path(d) for d in self.log_dirs)
        )
        if not self.local_dirs:
            raise ValueError("At least one local directory is required")
        if not self.log_dirs:
            raise ValueError("At least one log directory is required")


class DiagnosticsCallback(Protocol):
    """Consumer of diagnostics text for a container."""

    def __call__(self, container_id: str, diagnostics: str) -> None: ...


class Localizer(Protocol):
    """Stages a localization's resources into the working directory."""

    def run_localization(self, address: str) -> None: ...


class LocalizerFactory(Protocol):
    """Creates a ``Localizer`` for one localization request."""

    def __call__(
        self,
        user: str,
        app_id: str,
        localization_id: str,
        local_dirs: tuple[Path, ...],
        working_dir: Path,
    ) -> Localizer: ...
