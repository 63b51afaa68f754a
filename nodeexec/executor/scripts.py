# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Session and wrapper script generation.

Each launch writes two cooperating scripts into the container work dir:

- The **session script** records the pid the runtime reports for the
  container, then runs the runtime command against the staged launch
  script.
- The **wrapper script** runs the session script, records its exit code
  and exits with it.

Pid and exit code files are written as ``<file>.tmp`` and moved into place,
and both scripts are themselves written the same way, so a concurrent
reader sees either nothing or the complete content.
"""

from __future__ import annotations

import logging
import os
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol


logger = logging.getLogger(__name__)

WRAPPER_SCRIPT_NAME = "docker_container_executor.sh"
SESSION_SCRIPT_NAME = "docker_container_executor_session.sh"

EXIT_CODE_FILE_SUFFIX = ".exitcode"
TMP_SUFFIX = ".tmp"


def exit_code_file_for(pid_file: Path) -> Path:
    """Exit code file that belongs to ``pid_file``."""
    return Path(f"{pid_file}{EXIT_CODE_FILE_SUFFIX}")


def write_atomic(path: Path, content: str, mode: int) -> None:
    """Write ``content`` to ``<path>.tmp``, apply ``mode``, rename over path.

    Raises:
        OSError: If writing or renaming fails.  The temp file is removed.
    """
    tmp_path = path.with_name(path.name + TMP_SUFFIX)
    try:
        tmp_path.write_text(content, encoding="utf-8")
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


@dataclass(frozen=True)
class LaunchScripts:
    """Files that make up one launch.

    Attributes:
        session_script: Runs the runtime command and records the pid.
        wrapper_script: Runs the session script and records the exit code.
        pid_file: Receives the runtime-reported container pid.
        exit_code_file: Receives the session script's exit code.
    """

    session_script: Path
    wrapper_script: Path
    pid_file: Path
    exit_code_file: Path


class ScriptBuilder(Protocol):
    """Generates and writes the launch scripts for one script dialect."""

    def build_session_script(
        self,
        runtime_command: str,
        pid_query: str,
        launch_script_path: Path,
        pid_file: Path,
    ) -> str: ...

    def build_wrapper_script(
        self, session_script_path: Path, exit_code_file: Path
    ) -> str: ...

    def write_scripts(
        self,
        container_work_dir: Path,
        *,
        runtime_command: str,
        pid_query: str,
        launch_script_path: Path,
        pid_file: Path,
    ) -> LaunchScripts: ...

    def run_command(
        self, wrapper_script: Path, *, use_setsid: bool = False
    ) -> list[str]: ...


class BashScriptBuilder:
    """Writes the launch scripts as bash scripts.

    Attributes:
        script_mode: Permission mask applied to both scripts.
    """

    def __init__(self, script_mode: int = 0o700) -> None:
        self.script_mode = script_mode

    def build_session_script(
        self,
        runtime_command: str,
        pid_query: str,
        launch_script_path: Path,
        pid_file: Path,
    ) -> str:
        """Render the session script.

        Args:
            runtime_command: Output of ``assemble_run_command``.
            pid_query: Backquoted command printing the container pid.
            launch_script_path: Launch script inside the work dir; the
                runtime runs it with bash.
            pid_file: Where the pid is recorded.
        """
        tmp_pid = shlex.quote(f"{pid_file}{TMP_SUFFIX}")
        pid_path = shlex.quote(str(pid_file))
        lines = [
            "#!/usr/bin/env bash",
            "",
            f"echo {pid_query} > {tmp_pid}",
            f"/bin/mv -f {tmp_pid} {pid_path}",
            f'{runtime_command} bash "{launch_script_path}"',
        ]
        return "\n".join(lines) + "\n"

    def build_wrapper_script(
        self, session_script_path: Path, exit_code_file: Path
    ) -> str:
        """Render the wrapper script."""
        tmp_file = f"{exit_code_file}{TMP_SUFFIX}"
        lines = [
            "#!/usr/bin/env bash",
            f'bash "{session_script_path}"',
            "rc=$?",
            f'echo $rc > "{tmp_file}"',
            f'mv -f "{tmp_file}" "{exit_code_file}"',
            "exit $rc",
        ]
        return "\n".join(lines) + "\n"

    def write_scripts(
        self,
        container_work_dir: Path,
        *,
        runtime_command: str,
        pid_query: str,
        launch_script_path: Path,
        pid_file: Path,
    ) -> LaunchScripts:
        """Write the session and wrapper scripts into the work dir.

        The session script is written first so the wrapper never refers
        to a missing file.

        Returns:
            Paths of the written scripts and the files they produce.

        Raises:
            OSError: If a script cannot be written.
        """
        scripts = LaunchScripts(
            session_script=container_work_dir / SESSION_SCRIPT_NAME,
            wrapper_script=container_work_dir / WRAPPER_SCRIPT_NAME,
            pid_file=pid_file,
            exit_code_file=exit_code_file_for(pid_file),
        )

        write_atomic(
            scripts.session_script,
            self.build_session_script(
                runtime_command, pid_query, launch_script_path, pid_file
            ),
            self.script_mode,
        )
        write_atomic(
            scripts.wrapper_script,
            self.build_wrapper_script(
                scripts.session_script, scripts.exit_code_file
            ),
            self.script_mode,
        )
        logger.debug(
            "Wrote launch scripts %s and %s",
            scripts.session_script,
            scripts.wrapper_script,
        )
        return scripts

    def run_command(
        self, wrapper_script: Path, *, use_setsid: bool = False
    ) -> list[str]:
        """Command that starts the wrapper script.

        With ``use_setsid`` the wrapper leads its own session, so a
        signal to the process group reaches every child.
        """
        cmd = ["bash", str(wrapper_script)]
        if use_setsid:
            cmd.insert(0, "setsid")
        return cmd


_BUILDERS: dict[str, type[BashScriptBuilder]] = {
    "bash": BashScriptBuilder,
}


def get_script_builder(dialect: str, script_mode: int = 0o700) -> ScriptBuilder:
    """Create the script builder registered for ``dialect``.

    Raises:
        ValueError: If no builder is registered under that name.
    """
    try:
        builder_cls = _BUILDERS[dialect]
    except KeyError:
        raise ValueError(
            f"Unknown script dialect {dialect!r}; "
            f"available: {', '.join(sorted(_BUILDERS))}"
        ) from None
    return builder_cls(script_mode=script_mode)
