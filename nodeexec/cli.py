# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Command-line entry point for the container executor.

Subcommands:

- ``launch``: stage and run one container described by a request file.
- ``write-env``: write the launch script for a request.
- ``signal``: deliver a signal to a container process.
- ``alive``: check whether a container process is alive.
- ``delete``: recursively delete a path under one or more base dirs.
"""

from __future__ import annotations

import argparse
import getpass
import logging
import sys
from pathlib import Path

import yaml

from nodeexec.config import ConfigError, ExecutorConfig
from nodeexec.executor import (
    ContainerExecutor,
    ContainerRequest,
    ExecutorError,
    LocalDirSet,
    Signal,
)
from nodeexec.logging import configure_logging


logger = logging.getLogger(__name__)


def _load_request(path: Path) -> ContainerRequest:
    """Load a container request from a YAML file.

    Raises:
        ValueError: If the file is not a mapping or misses required keys.
    """
    with open(path) as f:
        raw = yaml.safe_load(f)
    if not isinstance(raw, dict):
        raise ValueError(f"Request file must be a YAML mapping: {path}")
    return ContainerRequest.from_dict(raw)


def _dir_set(args: argparse.Namespace, config: ExecutorConfig) -> LocalDirSet:
    """Disks from the command line, falling back to the config."""
    return LocalDirSet(
        local_dirs=tuple(args.local_dir or config.local_dirs),
        log_dirs=tuple(args.log_dir or config.log_dirs),
    )


def _print_diagnostics(container_id: str, diagnostics: str) -> None:
    print(f"[{container_id}] {diagnostics}", file=sys.stderr)


def cmd_launch(
    args: argparse.Namespace,
    executor: ContainerExecutor,
    config: ExecutorConfig,
) -> int:
    """Handle launch command.

    Args:
        args: Parsed command line arguments.
        executor: Executor to launch with.
        config: Loaded configuration.

    Returns:
        The container's exit code.
    """
    request = _load_request(args.request)
    dirs = _dir_set(args, config)
    pid_file = args.pid_file or (
        args.work_dir / f"{request.container_id}.pid"
    )

    executor.init()
    executor.activate_container(request.container_id, pid_file)
    try:
        exit_code = executor.launch_container(
            request, args.work_dir, dirs, on_diagnostics=_print_diagnostics
        )
    finally:
        executor.deactivate_container(request.container_id)

    logger.info(
        "Container %s finished with exit code %d",
        request.container_id,
        exit_code,
    )
    return exit_code


def cmd_write_env(
    args: argparse.Namespace,
    executor: ContainerExecutor,
    config: ExecutorConfig,
) -> int:
    """Handle write-env command."""
    request = _load_request(args.request)
    if args.output is None:
        executor.write_launch_env(sys.stdout, request)
    else:
        with open(args.output, "w") as f:
            executor.write_launch_env(f, request)
    return 0


def cmd_signal(
    args: argparse.Namespace,
    executor: ContainerExecutor,
    config: ExecutorConfig,
) -> int:
    """Handle signal command.

    Returns:
        0 if the signal was delivered, 1 otherwise.
    """
    delivered = executor.signal_container(
        args.user, args.pid, Signal[args.signal]
    )
    print("delivered" if delivered else "not delivered")
    return 0 if delivered else 1


def cmd_alive(
    args: argparse.Namespace,
    executor: ContainerExecutor,
    config: ExecutorConfig,
) -> int:
    """Handle alive command.

    Returns:
        0 if the process is alive, 1 otherwise.
    """
    alive = executor.is_container_process_alive(args.user, args.pid)
    print("alive" if alive else "not alive")
    return 0 if alive else 1


def cmd_delete(
    args: argparse.Namespace,
    executor: ContainerExecutor,
    config: ExecutorConfig,
) -> int:
    """Handle delete command."""
    executor.delete_as_user(args.user, args.subdir, *args.base_dirs)
    return 0


_COMMANDS = {
    "launch": cmd_launch,
    "write-env": cmd_write_env,
    "signal": cmd_signal,
    "alive": cmd_alive,
    "delete": cmd_delete,
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Per-node container executor",
        epilog="Runs containers through a docker-compatible runtime CLI.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="PATH",
        help="Path to nodeexec.yaml (default: config/nodeexec.yaml)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    launch_parser = subparsers.add_parser(
        "launch",
        help="Launch a container",
        description="Stage and run a container described by a request file",
    )
    launch_parser.add_argument(
        "--request",
        type=Path,
        required=True,
        metavar="PATH",
        help="YAML container request",
    )
    launch_parser.add_argument(
        "--work-dir",
        type=Path,
        required=True,
        metavar="DIR",
        help="Container work directory",
    )
    launch_parser.add_argument(
        "--pid-file",
        type=Path,
        default=None,
        metavar="PATH",
        help="Pid file (default: <work-dir>/<container_id>.pid)",
    )
    launch_parser.add_argument(
        "--local-dir",
        type=Path,
        action="append",
        metavar="DIR",
        help="Local disk root; repeatable (default: from config)",
    )
    launch_parser.add_argument(
        "--log-dir",
        type=Path,
        action="append",
        metavar="DIR",
        help="Log disk root; repeatable (default: from config)",
    )

    env_parser = subparsers.add_parser(
        "write-env",
        help="Write the launch script for a request",
    )
    env_parser.add_argument(
        "--request",
        type=Path,
        required=True,
        metavar="PATH",
        help="YAML container request",
    )
    env_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=None,
        metavar="PATH",
        help="Output file (default: stdout)",
    )

    signal_parser = subparsers.add_parser(
        "signal",
        help="Signal a container process",
    )
    signal_parser.add_argument("pid", help="Process id")
    signal_parser.add_argument(
        "--signal",
        choices=[s.name for s in Signal],
        default=Signal.TERM.name,
        help="Signal to send (default: TERM)",
    )

    alive_parser = subparsers.add_parser(
        "alive",
        help="Check whether a container process is alive",
    )
    alive_parser.add_argument("pid", help="Process id")

    delete_parser = subparsers.add_parser(
        "delete",
        help="Recursively delete a path",
        description=(
            "Delete SUBDIR under each BASE_DIR, or SUBDIR itself when no "
            "base directories are given"
        ),
    )
    delete_parser.add_argument(
        "--subdir",
        type=Path,
        default=None,
        help="Path relative to each base directory",
    )
    delete_parser.add_argument(
        "base_dirs",
        type=Path,
        nargs="*",
        help="Base directories",
    )

    for sub in (signal_parser, alive_parser, delete_parser):
        sub.add_argument(
            "--user",
            default=getpass.getuser(),
            help="User the container runs as (default: current user)",
        )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Args:
        argv: Command-line arguments. If None, uses sys.argv[1:].

    Returns:
        Exit code of the subcommand; 1 on configuration or executor
        errors.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(
        level=logging.DEBUG if args.debug else logging.INFO,
        add_secret_filter=True,
    )

    try:
        config = ExecutorConfig.from_yaml(config_path=args.config)
    except ConfigError as e:
        logger.critical("Configuration error: %s", e)
        return 1

    executor = ContainerExecutor(config)
    try:
        return _COMMANDS[args.command](args, executor, config)
    except (ExecutorError, ValueError, OSError) as e:
        logger.error("%s failed: %s", args.command, e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
