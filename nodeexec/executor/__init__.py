# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Container executor library.

The executor owns directory allocation across local disks, launch script
generation, the container runtime invocation and process supervision.
Callers describe what to run with a ``ContainerRequest``; the executor
handles how it is staged and started.
"""

from nodeexec.executor.directories import DirectoryAllocator, DiskResult
from nodeexec.executor.errors import (
    DirectoryInitializationError,
    ExecutorError,
    IntentionalTermination,
    InvalidImageError,
    NoAvailableStorageError,
    RuntimeInvocationFailure,
)
from nodeexec.executor.executor import ContainerExecutor
from nodeexec.executor.fs import LocalFileSystem
from nodeexec.executor.launch_env import (
    HeapSizeRewriter,
    LaunchEnvironmentWriter,
)
from nodeexec.executor.process import (
    CommandResult,
    CommandRunner,
    ProcessController,
)
from nodeexec.executor.runtime import validate_image
from nodeexec.executor.scripts import (
    BashScriptBuilder,
    LaunchScripts,
    ScriptBuilder,
    get_script_builder,
)
from nodeexec.executor.types import (
    EXIT_NOT_STARTED,
    ContainerRequest,
    DiagnosticsCallback,
    ExitClassification,
    ExitCode,
    ExitOutcome,
    LaunchContext,
    LocalDirSet,
    Localizer,
    LocalizerFactory,
    Signal,
)


__all__ = [
    # executor
    "ContainerExecutor",
    # types
    "ContainerRequest",
    "DiagnosticsCallback",
    "EXIT_NOT_STARTED",
    "ExitClassification",
    "ExitCode",
    "ExitOutcome",
    "LaunchContext",
    "LocalDirSet",
    "Localizer",
    "LocalizerFactory",
    "Signal",
    # directories
    "DirectoryAllocator",
    "DiskResult",
    "LocalFileSystem",
    # scripts
    "BashScriptBuilder",
    "LaunchScripts",
    "ScriptBuilder",
    "get_script_builder",
    # launch_env
    "HeapSizeRewriter",
    "LaunchEnvironmentWriter",
    # process
    "CommandResult",
    "CommandRunner",
    "ProcessController",
    # runtime
    "validate_image",
    # errors
    "DirectoryInitializationError",
    "ExecutorError",
    "IntentionalTermination",
    "InvalidImageError",
    "NoAvailableStorageError",
    "RuntimeInvocationFailure",
]
