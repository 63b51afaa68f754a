# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Launch script serialization.

The launch script runs inside the container (the session script hands it
to ``bash`` through the runtime). Layout::

    #!/bin/bash

    export PWD="..."            # always first when present
    export KEY="value"          # remaining variables, minus exclusions
    cd "$PWD"
    ln -sf "/local/resource" "link"
    exec /bin/bash -c "command tokens"

Values stay inside double quotes so that references such as ``$PWD`` are
expanded by the container's shell. Backslashes and double quotes in values
are escaped.
"""

from __future__ import annotations

import fnmatch
import logging
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path, PurePosixPath
from typing import TextIO

from nodeexec.config import DEFAULT_EXCLUDED_ENV, DEFAULT_REDACT_PATTERNS
from nodeexec.logging import SecretFilter


logger = logging.getLogger(__name__)

PWD_KEY = "PWD"
HEAP_MARKER = "-Xmx"

#: Post-processing step applied to the command tokens.
CommandHook = Callable[[list[str]], list[str]]


def _quote(value: str) -> str:
    # Backslashes first so the quote escapes are not doubled
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class HeapSizeRewriter:
    """Rewrites heap-size tokens of heap-flexible containers.

    Every token containing ``-Xmx`` is replaced by ``-Xmx<heap_mb>m``.

    Attributes:
        heap_mb: Heap size to write.
    """

    def __init__(self, heap_mb: int) -> None:
        self.heap_mb = heap_mb

    def __call__(self, command: list[str]) -> list[str]:
        rewritten = [
            f"{HEAP_MARKER}{self.heap_mb}m" if HEAP_MARKER in token else token
            for token in command
        ]
        if rewritten != command:
            logger.debug("Rewrote heap size to %dm", self.heap_mb)
        return rewritten


class LaunchEnvironmentWriter:
    """Serializes environment, resource links and command to a script.

    Attributes:
        excluded: Variables never exported into the container.
        redact_patterns: Fnmatch patterns of variable names whose values
            are registered with ``SecretFilter`` before the script is
            logged.
        flexible_hook: Applied to the command of heap-flexible containers;
            None disables the rewrite.
    """

    def __init__(
        self,
        excluded: Iterable[str] = DEFAULT_EXCLUDED_ENV,
        redact_patterns: Iterable[str] = DEFAULT_REDACT_PATTERNS,
        flexible_hook: CommandHook | None = None,
    ) -> None:
        self.excluded = frozenset(excluded)
        self.redact_patterns = tuple(redact_patterns)
        self.flexible_hook = flexible_hook

    def render(
        self,
        environment: Mapping[str, str] | None,
        resources: Mapping[Path, list[str]] | None,
        command: list[str],
        *,
        flexible: bool = False,
    ) -> str:
        """Render the launch script.

        Args:
            environment: Container environment.  Not modified.
            resources: Resource path to link names.
            command: Command tokens.
            flexible: Apply ``flexible_hook`` to the command.

        Returns:
            Script content.
        """
        lines = ["#!/bin/bash", ""]

        env = dict(environment or {})
        pwd = env.pop(PWD_KEY, None)
        if pwd is not None:
            lines.append(f"export {PWD_KEY}={_quote(pwd)}")
        for key, value in env.items():
            if key in self.excluded:
                logger.debug("Not exporting excluded variable %s", key)
                continue
            lines.append(f"export {key}={_quote(value)}")

        lines.append(f'cd "${PWD_KEY}"')

        for src, link_names in (resources or {}).items():
            for link_name in link_names:
                parent = PurePosixPath(link_name).parent
                if str(parent) != ".":
                    lines.append(f"mkdir -p {_quote(str(parent))}")
                lines.append(f"ln -sf {_quote(str(src))} {_quote(link_name)}")

        if flexible and self.flexible_hook is not None:
            command = self.flexible_hook(list(command))

        lines.append(f"exec /bin/bash -c {_quote(' '.join(command))}")
        return "\n".join(lines) + "\n"

    def write(
        self,
        out: TextIO,
        environment: Mapping[str, str] | None,
        resources: Mapping[Path, list[str]] | None,
        command: list[str],
        *,
        flexible: bool = False,
    ) -> None:
        """Render the launch script and write it to ``out``.

        Values of variables matching ``redact_patterns`` are redacted
        from log output while the script is written.  The stream is not
        closed.
        """
        logger.info("Writing launch environment")
        script = self.render(environment, resources, command, flexible=flexible)
        secrets = self._secret_values(environment or {})
        for secret in secrets:
            SecretFilter.register_secret(secret)
        try:
            logger.debug("Launch script:\n%s", script)
            out.write(script)
        finally:
            for secret in secrets:
                SecretFilter.unregister_secret(secret)

    def _secret_values(self, environment: Mapping[str, str]) -> list[str]:
        return [
            value
            for key, value in environment.items()
            if value
            and any(
                fnmatch.fnmatchcase(key.upper(), pattern.upper())
                for pattern in self.redact_patterns
            )
        ]
