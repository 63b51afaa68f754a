# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Configuration for the node agent's container executor.

Configuration is loaded from a YAML file (``config/nodeexec.yaml``) with
support for ``!env`` tags that resolve values from environment variables.
A ``.env`` file is loaded first if present.

Example::

    runtime:
      binary: /usr/bin/docker
      image: !env NODEEXEC_IMAGE
    memory:
      static_container_mb: 0
      flexible_heap_mb: 1024
    permissions:
      user_dir: "0750"
    dirs:
      local: [/data1/nm-local, /data2/nm-local]
      log: [/data1/nm-logs]

Permission masks accept octal strings (``"0750"``) or plain
integers (YAML 1.1 already parses an unquoted ``0750`` as octal).
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, TypeVar, overload

import yaml

from nodeexec.dotenv_loader import load_dotenv_once


logger = logging.getLogger(__name__)

T = TypeVar("T")

_PROJECT_ROOT = Path(__file__).parent.parent
_DEFAULT_CONFIG_PATH = "config/nodeexec.yaml"

_BOOL_TRUTHY = frozenset({"true", "1", "yes", "on"})
_BOOL_FALSY = frozenset({"false", "0", "no", "off"})

#: Environment variable that may carry a per-container image name.
IMAGE_NAME_ENV = "DOCKER_CONTAINER_EXECUTOR_IMAGE_NAME"

#: Variables injected by the node agent that must not leak into containers.
DEFAULT_EXCLUDED_ENV = frozenset(
    {
        IMAGE_NAME_ENV,
        "HADOOP_YARN_HOME",
        "HADOOP_COMMON_HOME",
        "HADOOP_HDFS_HOME",
        "HADOOP_CONF_DIR",
        "JAVA_HOME",
    }
)

#: Variable names whose values are redacted from log output.
DEFAULT_REDACT_PATTERNS = ("*TOKEN*", "*SECRET*", "*PASSWORD*", "*_KEY")


class ConfigError(Exception):
    """Raised for missing or invalid configuration."""


# ---------------------------------------------------------------------------
# YAML tag placeholders
# ---------------------------------------------------------------------------


class _EnvVar:
    """Placeholder for an unresolved ``!env VAR_NAME`` tag."""

    def __init__(self, var_name: str) -> None:
        self.var_name = var_name


def _env_constructor(loader: yaml.SafeLoader, node: yaml.Node) -> _EnvVar:
    """Handle ``!env VAR_NAME`` in YAML."""
    value = loader.construct_scalar(node)
    return _EnvVar(str(value))


def _make_loader() -> type[yaml.SafeLoader]:
    """Create a YAML loader that understands ``!env``."""

    class EnvLoader(yaml.SafeLoader):
        pass

    EnvLoader.add_constructor("!env", _env_constructor)
    return EnvLoader


# ---------------------------------------------------------------------------
# Value resolution
# ---------------------------------------------------------------------------


def _coerce_bool(value: object) -> bool:
    """Coerce a value to bool, handling string representations."""
    if isinstance(value, bool):
        return value
    s = str(value).lower().strip()
    if s in _BOOL_TRUTHY:
        return True
    if s in _BOOL_FALSY:
        return False
    raise ConfigError(f"Cannot convert {value!r} to bool")


def _raw_resolve(value: object) -> str | None:
    """Resolve an ``_EnvVar`` to its string value, or stringify literals.

    Returns None if the value is None or the env var is unset/empty.
    """
    if isinstance(value, _EnvVar):
        return os.environ.get(value.var_name) or None
    if value is None:
        return None
    return str(value)


_MISSING = object()


@overload
def _resolve(value: object, coerce: type[T], *, default: T) -> T: ...


@overload
def _resolve(
    value: object,
    coerce: type[T],
    *,
    required: str,
) -> T: ...


@overload
def _resolve(value: object, coerce: type[T]) -> T | None: ...


def _resolve(
    value: object,
    coerce: type[Any],
    *,
    default: object = _MISSING,
    required: str = "",
) -> Any:
    """Resolve a YAML value, handling ``!env`` tags and type coercion.

    Args:
        value: Raw value from YAML (may be ``_EnvVar``, None, or a
            literal already parsed by PyYAML).
        coerce: Target type (``str``, ``int``, ``bool``, ``Path``).
        default: Default when value is absent.
        required: Human-readable field name.  When set, raises
            ``ConfigError`` if the value is absent.

    Returns:
        The resolved, coerced value, or None when optional and absent.
    """
    if not isinstance(value, _EnvVar) and value is not None:
        if coerce is bool:
            return _coerce_bool(value)
        if isinstance(value, coerce) and not (
            coerce is int and isinstance(value, bool)
        ):
            return value

    resolved = _raw_resolve(value)

    if resolved is None:
        if required:
            if isinstance(value, _EnvVar):
                raise ConfigError(
                    f"Required config '{required}': environment variable "
                    f"'{value.var_name}' is not set"
                )
            raise ConfigError(f"Required config '{required}' is missing")
        if default is not _MISSING:
            return default
        return None

    if coerce is bool:
        return _coerce_bool(resolved)
    if coerce is Path:
        return Path(resolved).expanduser()
    try:
        return coerce(resolved)
    except ValueError as e:
        raise ConfigError(
            f"Cannot convert {resolved!r} to {coerce.__name__}"
        ) from e


def _resolve_mode(value: object, *, default: int, name: str) -> int:
    """Resolve a permission mask given as an octal string or an int."""
    if value is None:
        return default
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    resolved = _raw_resolve(value)
    if resolved is None:
        return default
    try:
        return int(resolved, 8)
    except ValueError as e:
        raise ConfigError(
            f"Config '{name}' is not an octal mode: {resolved!r}"
        ) from e


def _resolve_string_list(value: object, *, name: str) -> list[str]:
    """Resolve a list of strings, handling ``!env`` for each element.

    Raises:
        ConfigError: If value is present but not a list.
    """
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(
            f"Config '{name}' must be a list, got {type(value).__name__}"
        )
    result: list[str] = []
    for item in value:
        resolved = _raw_resolve(item)
        if resolved:
            result.append(resolved)
    return result


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DirectoryPermissions:
    """Permission masks for the directory tree and launch scripts.

    Attributes:
        user_dir: ``$local/usercache/$user``.
        app_cache_dir: ``$local/usercache/$user/appcache``.
        file_cache_dir: ``$local/usercache/$user/filecache``.
        app_dir: ``$local/usercache/$user/appcache/$appId`` and the
            container directories below it.
        log_dir: ``$log/$appId`` and ``$log/$appId/$containerId``.
        launch_script: Session, wrapper and copied launch scripts.
    """

    user_dir: int = 0o750
    app_cache_dir: int = 0o710
    file_cache_dir: int = 0o710
    app_dir: int = 0o710
    log_dir: int = 0o710
    launch_script: int = 0o700

    def __post_init__(self) -> None:
        """Validate that every mask is a permission mode.

        Raises:
            ValueError: If a mask is outside ``0o000``-``0o777``.
        """
        for f in fields(self):
            mode = getattr(self, f.name)
            if not 0 <= mode <= 0o777:
                raise ValueError(
                    f"Invalid permission mask for {f.name}: {mode:o}"
                )


@dataclass(frozen=True)
class ExecutorConfig:
    """Container executor settings.

    Attributes:
        runtime_binary: Path to the container runtime CLI.
        image_name: Default container image (may be empty when every
            request carries its own image variable).
        script_dialect: Name of the launch script builder to use.
        use_setsid: Start the wrapper script in a new session.
        static_memory_mb: Memory limit override for every container;
            ignored when zero or negative.
        flexible_heap_mb: Heap size written into ``-Xmx`` tokens of
            heap-flexible containers.
        permissions: Directory and script permission masks.
        local_dirs: Default local disk roots.
        log_dirs: Default log roots.
        excluded_env: Variables never propagated into the container.
        redact_env_patterns: Fnmatch patterns of variable names whose
            values are redacted from logs.
    """

    runtime_binary: str = "/usr/bin/docker"
    image_name: str = ""
    script_dialect: str = "bash"
    use_setsid: bool = False
    static_memory_mb: int = 0
    flexible_heap_mb: int = 1024
    permissions: DirectoryPermissions = field(
        default_factory=DirectoryPermissions
    )
    local_dirs: tuple[Path, ...] = ()
    log_dirs: tuple[Path, ...] = ()
    excluded_env: frozenset[str] = DEFAULT_EXCLUDED_ENV
    redact_env_patterns: tuple[str, ...] = DEFAULT_REDACT_PATTERNS

    def __post_init__(self) -> None:
        """Validate configuration.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.runtime_binary:
            raise ValueError("Runtime binary cannot be empty")
        if self.flexible_heap_mb < 1:
            raise ValueError(
                f"Flexible heap size must be >= 1 MB: {self.flexible_heap_mb}"
            )

    @classmethod
    def from_yaml(cls, config_path: Path | None = None) -> "ExecutorConfig":
        """Load configuration from a YAML file.

        Args:
            config_path: Path to YAML config file.  Defaults to
                ``config/nodeexec.yaml`` relative to the project root.

        Returns:
            ExecutorConfig instance.

        Raises:
            ConfigError: If the file is missing or values are invalid.
        """
        load_dotenv_once()

        if config_path is None:
            config_path = _PROJECT_ROOT / _DEFAULT_CONFIG_PATH

        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            raw = yaml.load(f, Loader=_make_loader())

        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ConfigError(
                f"Config file must be a YAML mapping: {config_path}"
            )

        config = cls._from_raw(raw)
        logger.info(
            "Executor config loaded: runtime=%s, local_dirs=%d, log_dirs=%d",
            config.runtime_binary,
            len(config.local_dirs),
            len(config.log_dirs),
        )
        return config

    @classmethod
    def _from_raw(cls, raw: dict) -> "ExecutorConfig":
        """Build config from parsed (but unresolved) YAML dict."""
        runtime = raw.get("runtime") or {}
        memory = raw.get("memory") or {}
        perms = raw.get("permissions") or {}
        dirs = raw.get("dirs") or {}
        environment = raw.get("environment") or {}

        defaults = DirectoryPermissions()
        try:
            permissions = DirectoryPermissions(
                **{
                    name: _resolve_mode(
                        perms.get(name),
                        default=getattr(defaults, name),
                        name=f"permissions.{name}",
                    )
                    for name in (f.name for f in fields(DirectoryPermissions))
                }
            )
        except ValueError as e:
            raise ConfigError(str(e)) from e

        excluded = _resolve_string_list(
            environment.get("excluded"), name="environment.excluded"
        )
        redact = _resolve_string_list(
            environment.get("redact_patterns"),
            name="environment.redact_patterns",
        )

        try:
            return cls(
                runtime_binary=_resolve(
                    runtime.get("binary"), str, default="/usr/bin/docker"
                ),
                image_name=_resolve(runtime.get("image"), str, default=""),
                script_dialect=_resolve(
                    runtime.get("script_dialect"), str, default="bash"
                ),
                use_setsid=_resolve(
                    runtime.get("use_setsid"), bool, default=False
                ),
                static_memory_mb=_resolve(
                    memory.get("static_container_mb"), int, default=0
                ),
                flexible_heap_mb=_resolve(
                    memory.get("flexible_heap_mb"), int, default=1024
                ),
                permissions=permissions,
                local_dirs=tuple(
                    Path(d)
                    for d in _resolve_string_list(
                        dirs.get("local"), name="dirs.local"
                    )
                ),
                log_dirs=tuple(
                    Path(d)
                    for d in _resolve_string_list(
                        dirs.get("log"), name="dirs.log"
                    )
                ),
                excluded_env=(
                    frozenset(excluded) if excluded else DEFAULT_EXCLUDED_ENV
                ),
                redact_env_patterns=(
                    tuple(redact) if redact else DEFAULT_REDACT_PATTERNS
                ),
            )
        except ValueError as e:
            raise ConfigError(str(e)) from e
