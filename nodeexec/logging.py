# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Centralized logging configuration with secret redaction.

Container environments routinely carry credentials (delegation tokens,
passwords in connection strings).  Values registered with
:class:`SecretFilter` are replaced with ``[REDACTED]`` in every record that
passes through the handler installed by :func:`configure_logging`.

Usage:
    # In entry points
    from nodeexec.logging import configure_logging
    configure_logging(level=logging.INFO)

    # In library modules
    import logging
    logger = logging.getLogger(__name__)
    logger.info("Launching container %s", container_id)
"""

import logging
import re
import threading
from typing import ClassVar


class SecretFilter(logging.Filter):
    """Logging filter that redacts registered secrets from log output.

    Secrets are registered at runtime with :meth:`register_secret`, e.g. by
    the launch environment writer for variables whose names look sensitive.
    Registrations are counted; a secret stays redacted until every
    registration has been undone with :meth:`unregister_secret`.

    Thread Safety:
        The registry is shared by all instances and guarded by a lock.
        ``filter`` reads the compiled pattern without locking.

    Example:
        filter = SecretFilter()
        filter.register_secret("s3cr3t")
        handler.addFilter(filter)
        logger.info("export DB_PASSWORD=s3cr3t")
        # Output: "export DB_PASSWORD=[REDACTED]"
    """

    _secrets: ClassVar[dict[str, int]] = {}
    _pattern: ClassVar[re.Pattern[str] | None] = None
    _lock: ClassVar[threading.Lock] = threading.Lock()

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact registered secrets in the record's message and args.

        Args:
            record: The log record to filter.

        Returns:
            Always True (records are modified, never suppressed).
        """
        pattern = type(self)._pattern
        if pattern is not None:
            record.msg = pattern.sub("[REDACTED]", str(record.msg))
            if record.args:
                record.args = tuple(
                    pattern.sub("[REDACTED]", str(arg))
                    if isinstance(arg, str)
                    else arg
                    for arg in record.args
                )
        return True

    @classmethod
    def register_secret(cls, secret: str) -> None:
        """Register a secret to be redacted from all log output.

        Args:
            secret: The secret string to redact. Empty strings are ignored.
        """
        if not secret:
            return
        with cls._lock:
            count = cls._secrets.get(secret, 0)
            cls._secrets[secret] = count + 1
            if count == 0:
                cls._rebuild_pattern()

    @classmethod
    def unregister_secret(cls, secret: str) -> None:
        """Undo one registration of ``secret``.

        Unknown and empty strings are ignored.
        """
        with cls._lock:
            count = cls._secrets.get(secret, 0)
            if count > 1:
                cls._secrets[secret] = count - 1
            elif count == 1:
                del cls._secrets[secret]
                cls._rebuild_pattern()

    @classmethod
    def registered_count(cls) -> int:
        """Number of distinct secrets currently redacted."""
        with cls._lock:
            return len(cls._secrets)

    @classmethod
    def clear_secrets(cls) -> None:
        """Clear all registered secrets. Primarily for testing."""
        with cls._lock:
            cls._secrets.clear()
            cls._pattern = None

    @classmethod
    def _rebuild_pattern(cls) -> None:
        # Caller holds _lock. Longest first so a secret containing another
        # is fully redacted.
        if cls._secrets:
            escaped = [
                re.escape(s)
                for s in sorted(cls._secrets, key=len, reverse=True)
            ]
            cls._pattern = re.compile("|".join(escaped))
        else:
            cls._pattern = None


def configure_logging(
    level: int = logging.INFO,
    format_string: str | None = None,
    add_secret_filter: bool = True,
) -> None:
    """Configure the root logger for the node agent.

    Args:
        level: The logging level (e.g., logging.INFO, logging.DEBUG).
        format_string: Custom format string. If None, uses default format.
        add_secret_filter: Whether to add the SecretFilter to redact secrets.
    """
    if format_string is None:
        format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(format_string))

    if add_secret_filter:
        handler.addFilter(SecretFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    for existing_handler in root_logger.handlers[:]:
        root_logger.removeHandler(existing_handler)

    root_logger.addHandler(handler)
