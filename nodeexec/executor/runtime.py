# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Container runtime command assembly.

Builds the single-line ``<runtime> run ...`` invocation embedded in the
session script.  The line is interpreted by bash, so the image name is
validated against a strict grammar before it is used.
"""

from __future__ import annotations

import logging
import re
import shlex
from collections.abc import Iterable
from pathlib import Path

from nodeexec.executor.errors import InvalidImageError
from nodeexec.executor.types import ContainerRequest


logger = logging.getLogger(__name__)

#: Optional ``registry[:port]/``, any number of ``path/`` segments, then
#: ``name[:tag]``.  Every component starts with a word character, so
#: ``..`` never forms a segment.
IMAGE_PATTERN = re.compile(
    r"^(?:\w[\w.-]*(?::\d+)?/)?"
    r"(?:\w[\w.-]*/)*"
    r"\w[\w.-]*(?::[\w.-]+)?$",
    re.ASCII,
)

_QUOTES = re.compile(r"['\"]")

_CONTAINER_ID_PATTERN = re.compile(r"^\w[\w.-]*$", re.ASCII)


def validate_image(name: str | None) -> str:
    """Validate a container image identifier.

    Surrounding (and embedded) quote characters are stripped before
    matching.

    Args:
        name: Image identifier, e.g. ``myregistry:5000/foo/bar:v1``.

    Returns:
        The image name with quotes removed.

    Raises:
        InvalidImageError: If the name is empty or does not match
            ``IMAGE_PATTERN``.
    """
    if not name:
        raise InvalidImageError("Container image must not be empty")
    cleaned = _QUOTES.sub("", name)
    if not IMAGE_PATTERN.fullmatch(cleaned):
        raise InvalidImageError(
            f"Image: {cleaned} is not a proper container image"
        )
    return cleaned


def is_valid_image(name: str | None) -> bool:
    """Return True if ``validate_image`` accepts ``name``."""
    try:
        validate_image(name)
    except InvalidImageError:
        return False
    return True


def compute_memory_limit_mb(
    request: ContainerRequest, static_override: int = 0
) -> int:
    """Memory limit for the container in MB.

    A positive ``static_override`` wins over the requested size.
    """
    if static_override > 0:
        return static_override
    return request.memory_mb


def build_mounts(paths: Iterable[Path | str]) -> list[str]:
    """Bind-mount each host path at the same path inside the container.

    Mappings are shell-quoted where needed; the arguments are joined into
    a shell line.

    Returns:
        ``-v`` arguments, e.g. ``["-v", "/data1:/data1"]``.
    """
    args: list[str] = []
    for path in paths:
        args.extend(["-v", shlex.quote(f"{path}:{path}")])
    return args


def assemble_run_command(
    runtime_binary: str,
    memory_mb: int,
    container_id: str,
    mounts: list[str],
    image: str,
) -> str:
    """Build the runtime ``run`` invocation as one shell line.

    Flag order is fixed: memory limit, unlimited swap, OOM killer
    disabled, removal on exit, host networking, name, mounts, image.

    Args:
        runtime_binary: Container runtime CLI.
        memory_mb: Memory limit in MB.
        container_id: Used as the runtime container name.
        mounts: Output of :func:`build_mounts`.
        image: Validated image name.

    Returns:
        The command line.
    """
    parts = [
        runtime_binary,
        "run",
        f"--memory={memory_mb}m",
        "--memory-swap",
        "-1",
        "--oom-kill-disable",
        "--rm",
        "--net=host",
        "--name",
        container_id,
        *mounts,
        image,
    ]
    command = " ".join(parts)
    logger.debug("Runtime command: %s", command)
    return command


def pid_query_command(runtime_binary: str, container_id: str) -> str:
    """Backquoted command that prints the container's pid in the runtime."""
    return (
        f"`{runtime_binary} inspect --format {{{{.State.Pid}}}} "
        f"{container_id}`"
    )


def validate_container_id(container_id: str) -> str:
    """Check that a container id is safe to embed in a shell line.

    Raises:
        ValueError: If the id is empty, does not start with a word
            character or has characters outside ``[A-Za-z0-9_.-]``.
    """
    if not _CONTAINER_ID_PATTERN.fullmatch(container_id):
        raise ValueError(f"Invalid container id: {container_id!r}")
    return container_id
