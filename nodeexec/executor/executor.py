# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Container executor facade.

``ContainerExecutor`` is the entry point the node's container lifecycle
talks to.  It wires the directory allocator, runtime command assembly,
script generation and process control into the executor operations:
localizer start, container launch, signalling, liveness and deletion.

Launch flow:
1. Validate the image and create the container and container-log
   directories on every disk.
2. Stage ``launch_container.sh`` and ``container_tokens`` in the work dir.
3. Write the session and wrapper scripts (skipped, with a ``TERMINATED``
   result, when the container is no longer active).
4. Run the wrapper synchronously and classify its exit code.
"""

from __future__ import annotations

import logging
import os
import shutil
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from nodeexec.config import IMAGE_NAME_ENV, ExecutorConfig
from nodeexec.executor.directories import DirectoryAllocator
from nodeexec.executor.errors import ExecutorError, RuntimeInvocationFailure
from nodeexec.executor.fs import LocalFileSystem
from nodeexec.executor.launch_env import (
    HeapSizeRewriter,
    LaunchEnvironmentWriter,
)
from nodeexec.executor.process import CommandRunner, ProcessController
from nodeexec.executor.runtime import (
    assemble_run_command,
    build_mounts,
    compute_memory_limit_mb,
    pid_query_command,
    validate_container_id,
    validate_image,
)
from nodeexec.executor.scripts import (
    ScriptBuilder,
    exit_code_file_for,
    get_script_builder,
)
from nodeexec.executor.types import (
    EXIT_NOT_STARTED,
    ContainerRequest,
    DiagnosticsCallback,
    ExitCode,
    LocalDirSet,
    LocalizerFactory,
    Signal,
)


if TYPE_CHECKING:
    import random


logger = logging.getLogger(__name__)

CONTAINER_SCRIPT_NAME = "launch_container.sh"
FINAL_TOKENS_FILE_NAME = "container_tokens"
CONTAINER_TMP_DIR_NAME = "tmp"
LOCALIZER_TOKENS_FORMAT = "{}.tokens"


class ContainerExecutor:
    """Runs containers through an external container runtime.

    Thread Safety:
        ``start_localizer`` is serialized by a lock because it moves the
        shared working-directory pointer.  The active-container registry
        has its own lock.  Launches for different containers may run
        concurrently; each blocks its caller until the runtime exits.
    """

    def __init__(
        self,
        config: ExecutorConfig,
        *,
        fs: LocalFileSystem | None = None,
        rng: random.Random | None = None,
        runner: CommandRunner | None = None,
        script_builder: ScriptBuilder | None = None,
        localizer_factory: LocalizerFactory | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize executor.

        Args:
            config: Executor configuration.
            fs: Filesystem handle (default: local disks).
            rng: Random source for working directory selection.
            runner: Spawns external commands.
            script_builder: Overrides the builder selected by
                ``config.script_dialect``.
            localizer_factory: Creates the localizer run by
                ``start_localizer``.
            sleep: Used between liveness polls when reacquiring.
        """
        self._config = config
        self._fs = fs or LocalFileSystem()
        self._allocator = DirectoryAllocator(
            self._fs, config.permissions, rng
        )
        self._runner = runner or CommandRunner()
        self._process = ProcessController(self._runner)
        self._scripts = script_builder or get_script_builder(
            config.script_dialect, config.permissions.launch_script
        )
        self._env_writer = LaunchEnvironmentWriter(
            excluded=config.excluded_env,
            redact_patterns=config.redact_env_patterns,
            flexible_hook=HeapSizeRewriter(config.flexible_heap_mb),
        )
        self._localizer_factory = localizer_factory
        self._sleep = sleep

        # Guards the working-directory pointer during localization
        self._localizer_lock = threading.Lock()
        self._working_dir: Path | None = None

        # Maps container_id -> pid file
        self._active: dict[str, Path] = {}
        self._active_lock = threading.Lock()

    @property
    def allocator(self) -> DirectoryAllocator:
        """Directory allocator used for all directory trees."""
        return self._allocator

    @property
    def process_controller(self) -> ProcessController:
        """Controller used for liveness and signals."""
        return self._process

    @property
    def working_directory(self) -> Path | None:
        """Working directory chosen by the last localization."""
        return self._working_dir

    def init(self) -> None:
        """Check that the executor can run.

        Raises:
            ExecutorError: If the runtime binary does not exist.
        """
        binary = self._config.runtime_binary
        if shutil.which(binary) is None:
            raise ExecutorError(f"Invalid container runtime path: {binary}")
        logger.info("Container executor initialized with runtime %s", binary)

    # ------------------------------------------------------------------
    # Container registry
    # ------------------------------------------------------------------

    def activate_container(self, container_id: str, pid_file: Path) -> None:
        """Mark a container active and assign its pid file."""
        with self._active_lock:
            self._active[container_id] = Path(pid_file)
        logger.debug("Activated container %s", container_id)

    def deactivate_container(self, container_id: str) -> None:
        """Mark a container inactive.  Unknown ids are ignored."""
        with self._active_lock:
            self._active.pop(container_id, None)
        logger.debug("Deactivated container %s", container_id)

    def is_container_active(self, container_id: str) -> bool:
        """Return True if the container has not been deactivated."""
        with self._active_lock:
            return container_id in self._active

    def get_pid_file_path(self, container_id: str) -> Path | None:
        """Pid file of an active container, or None if it is inactive."""
        with self._active_lock:
            return self._active.get(container_id)

    # ------------------------------------------------------------------
    # Localization
    # ------------------------------------------------------------------

    def start_localizer(
        self,
        tokens_path: Path,
        address: str,
        user: str,
        app_id: str,
        localization_id: str,
        dirs: LocalDirSet,
    ) -> None:
        """Prepare directories for an application and run its localizer.

        Creates the user, cache, application and application-log trees,
        picks a working directory, copies the credentials into it as
        ``<localization_id>.tokens`` and runs the localizer there.

        Raises:
            DirectoryInitializationError: If a directory level could not
                be created on any disk.
            NoAvailableStorageError: If no disk has free space.
            ExecutorError: If no localizer factory is configured.
        """
        if self._localizer_factory is None:
            raise ExecutorError("No localizer factory configured")

        with self._localizer_lock:
            self._allocator.create_user_directories(dirs.local_dirs, user)
            self._allocator.create_app_cache_directories(dirs.local_dirs, user)
            self._allocator.create_app_directories(
                dirs.local_dirs, user, app_id
            )
            self._allocator.create_log_directories(
                app_id, None, dirs.log_dirs, user
            )

            app_storage_dir = self._allocator.select_working_directory(
                dirs.local_dirs, user, app_id
            )
            token_dst = app_storage_dir / LOCALIZER_TOKENS_FORMAT.format(
                localization_id
            )
            self._fs.copy(Path(tokens_path), token_dst)
            logger.debug("Copied tokens from %s to %s", tokens_path, token_dst)

            self._working_dir = app_storage_dir
            localizer = self._localizer_factory(
                user, app_id, localization_id, dirs.local_dirs, app_storage_dir
            )
            logger.info(
                "Running localizer %s for app %s in %s",
                localization_id,
                app_id,
                app_storage_dir,
            )
            localizer.run_localization(address)

    # ------------------------------------------------------------------
    # Launch
    # ------------------------------------------------------------------

    def _image_for(self, request: ContainerRequest) -> str:
        return (
            request.launch_context.environment.get(IMAGE_NAME_ENV)
            or self._config.image_name
        )

    def launch_container(
        self,
        request: ContainerRequest,
        container_work_dir: Path,
        dirs: LocalDirSet,
        *,
        on_diagnostics: DiagnosticsCallback | None = None,
    ) -> int:
        """Launch a container and block until it exits.

        Args:
            request: Container to launch.
            container_work_dir: Work dir chosen for the container.
            dirs: Candidate local and log disks.
            on_diagnostics: Receives diagnostics text when the launch
                fails or the container is killed.

        Returns:
            0 on success, 143 when the container was deactivated before
            the runtime started, -1 when the process could not be
            started, otherwise the wrapper's exit code.

        Raises:
            InvalidImageError: If the image name is empty or malformed.
            DirectoryInitializationError: If the container or log
                directories could not be created on any disk.
            OSError: If staging the launch files fails.
        """
        image = validate_image(self._image_for(request))
        container_id = validate_container_id(request.container_id)
        user, app_id = request.user, request.app_id
        work_dir = Path(container_work_dir)
        permissions = self._config.permissions

        self._allocator.create_container_directories(
            dirs.local_dirs, user, app_id, container_id
        )
        self._allocator.create_log_directories(
            app_id, container_id, dirs.log_dirs, user
        )
        self._fs.mkdir(
            work_dir / CONTAINER_TMP_DIR_NAME,
            permissions.app_dir,
            parents=False,
        )

        launch_dst = work_dir / CONTAINER_SCRIPT_NAME
        self._fs.copy(request.launch_script_path, launch_dst)
        self._fs.copy(request.tokens_path, work_dir / FINAL_TOKENS_FILE_NAME)

        memory_mb = compute_memory_limit_mb(
            request, self._config.static_memory_mb
        )
        mounts = build_mounts([*dirs.local_dirs, *dirs.log_dirs, work_dir])
        runtime_command = assemble_run_command(
            self._config.runtime_binary, memory_mb, container_id, mounts, image
        )
        pid_query = pid_query_command(self._config.runtime_binary, container_id)

        pid_file = self.get_pid_file_path(container_id)
        if pid_file is None:
            logger.info(
                "Container %s was marked as inactive. "
                "Returning terminated error",
                container_id,
            )
            return int(ExitCode.TERMINATED)

        scripts = self._scripts.write_scripts(
            work_dir,
            runtime_command=runtime_command,
            pid_query=pid_query,
            launch_script_path=launch_dst,
            pid_file=pid_file,
        )

        try:
            self._fs.set_permission(launch_dst, permissions.launch_script)
            self._fs.set_permission(
                scripts.wrapper_script, permissions.launch_script
            )
            command = self._scripts.run_command(
                scripts.wrapper_script, use_setsid=self._config.use_setsid
            )
            logger.debug(
                "launch_container: %s %s", runtime_command, " ".join(command)
            )
            env = {**os.environ, **request.launch_context.environment}

            if not self.is_container_active(container_id):
                logger.info(
                    "Container %s was marked as inactive. "
                    "Returning terminated error",
                    container_id,
                )
                return int(ExitCode.TERMINATED)

            self._runner.run(command, cwd=work_dir, env=env)
        except RuntimeInvocationFailure as e:
            classification = self._process.classify_exit(
                container_id, e.exit_code, e.output, e
            )
            if on_diagnostics is not None:
                on_diagnostics(container_id, classification.diagnostics)
            return e.exit_code
        except OSError as e:
            logger.warning(
                "Unable to start container %s: %s", container_id, e
            )
            return EXIT_NOT_STARTED

        logger.info("Container %s exited successfully", container_id)
        return int(ExitCode.SUCCESS)

    def write_launch_env(self, out: TextIO, request: ContainerRequest) -> None:
        """Write the launch script for ``request`` to ``out``."""
        ctx = request.launch_context
        self._env_writer.write(
            out,
            ctx.environment,
            ctx.resources,
            ctx.command,
            flexible=request.flexible,
        )

    # ------------------------------------------------------------------
    # Process control
    # ------------------------------------------------------------------

    def signal_container(
        self, user: str, pid: str | int, signal: Signal
    ) -> bool:
        """Deliver a signal to a container process.

        Returns:
            True if the signal was delivered.
        """
        return self._process.send_signal(user, pid, signal)

    def is_container_process_alive(self, user: str, pid: str | int) -> bool:
        """Return True if the container process is alive."""
        return self._process.is_alive(pid)

    def reacquire_container(
        self, user: str, container_id: str, *, poll_interval: float = 1.0
    ) -> int:
        """Wait for a container launched by an earlier executor to exit.

        Polls the pid from the container's pid file until the process is
        gone, then reads the exit code recorded by the wrapper script.

        Returns:
            The recorded exit code; ``LOST`` if none was recorded;
            ``TERMINATED`` if the container was deactivated while waiting.

        Raises:
            ExecutorError: If the container is not active or its pid file
                holds no pid.
        """
        pid_file = self.get_pid_file_path(container_id)
        if pid_file is None:
            raise ExecutorError(f"Container {container_id} is not active")

        pid = self._process.read_pid_file(pid_file)
        if pid is None:
            raise ExecutorError(
                f"Unable to read pid for container {container_id} "
                f"from {pid_file}"
            )

        logger.info(
            "Reacquiring container %s (pid %s) for user %s",
            container_id,
            pid,
            user,
        )
        while self._process.is_alive(pid):
            if not self.is_container_active(container_id):
                logger.info(
                    "Container %s deactivated while reacquiring", container_id
                )
                return int(ExitCode.TERMINATED)
            self._sleep(poll_interval)

        exit_code = self._process.read_exit_code_file(
            exit_code_file_for(pid_file)
        )
        if exit_code is None:
            logger.warning(
                "No exit code recorded for container %s", container_id
            )
            return int(ExitCode.LOST)
        return exit_code

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def _delete(self, path: Path) -> None:
        try:
            deleted = self._fs.delete(path)
        except FileNotFoundError:
            logger.debug("Nothing to delete at %s", path)
            return
        if not deleted:
            logger.warning("delete returned false for path: [%s]", path)

    def delete_as_user(
        self, user: str, subdir: Path | None, *base_dirs: Path
    ) -> None:
        """Recursively delete ``subdir`` under each base directory.

        Without base directories ``subdir`` itself is deleted; with
        ``subdir`` None each base directory is deleted.  Missing paths
        are skipped and incomplete deletes are logged, not retried.
        """
        if not base_dirs:
            if subdir is None:
                logger.warning("Nothing to delete for user %s", user)
                return
            logger.info("Deleting absolute path: %s", subdir)
            self._delete(Path(subdir))
            return

        for base in base_dirs:
            target = Path(base) if subdir is None else Path(base) / subdir
            logger.info("Deleting path: %s", target)
            self._delete(target)
