# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Per-user, per-application and per-container directory trees.

Layout on every local disk::

    $local/usercache/$user/                         # user dir
    $local/usercache/$user/filecache/               # shared file cache
    $local/usercache/$user/appcache/                # app cache
    $local/usercache/$user/appcache/$appId/         # app dir
    $local/usercache/$user/appcache/$appId/$cid/    # container dir

and on every log disk::

    $log/$appId/
    $log/$appId/$cid/

Every level is attempted on all candidate disks.  A disk that fails is
logged and skipped; a level is only fatal when no disk accepted it.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from nodeexec.config import DirectoryPermissions
from nodeexec.executor.errors import (
    DirectoryInitializationError,
    NoAvailableStorageError,
)
from nodeexec.executor.fs import LocalFileSystem


logger = logging.getLogger(__name__)

USERCACHE = "usercache"
APPCACHE = "appcache"
FILECACHE = "filecache"


def user_cache_dir(base: Path, user: str) -> Path:
    """``$base/usercache/$user``."""
    return base / USERCACHE / user


def app_cache_dir(base: Path, user: str) -> Path:
    """``$base/usercache/$user/appcache``."""
    return user_cache_dir(base, user) / APPCACHE


def file_cache_dir(base: Path, user: str) -> Path:
    """``$base/usercache/$user/filecache``."""
    return user_cache_dir(base, user) / FILECACHE


def application_dir(base: Path, user: str, app_id: str) -> Path:
    """``$base/usercache/$user/appcache/$appId``."""
    return app_cache_dir(base, user) / app_id


def container_dir(
    base: Path, user: str, app_id: str, container_id: str
) -> Path:
    """``$base/usercache/$user/appcache/$appId/$containerId``."""
    return application_dir(base, user, app_id) / container_id


@dataclass(frozen=True)
class DiskResult:
    """Outcome of creating one directory level on one disk.

    Attributes:
        path: Directory that was attempted.
        error: Failure cause, or None on success.
    """

    path: Path
    error: OSError | None = None

    @property
    def ok(self) -> bool:
        """True if the directory was created."""
        return self.error is None


class DirectoryAllocator:
    """Creates directory trees across disks and picks working directories.

    Thread Safety:
        Stateless apart from the random source; concurrent calls for
        different containers touch disjoint directories.
    """

    def __init__(
        self,
        fs: LocalFileSystem,
        permissions: DirectoryPermissions | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize allocator.

        Args:
            fs: Filesystem handle.
            permissions: Permission masks for each directory level.
            rng: Random source for working directory selection.
        """
        self._fs = fs
        self._permissions = permissions or DirectoryPermissions()
        self._rng = rng or random.Random()

    def _create_on_each(
        self, paths: Iterable[Path], mode: int, description: str
    ) -> list[DiskResult]:
        results: list[DiskResult] = []
        for path in paths:
            try:
                self._fs.mkdir(path, mode)
            except OSError as e:
                logger.warning(
                    "Unable to create the %s directory %s: %s",
                    description,
                    path,
                    e,
                )
                results.append(DiskResult(path, e))
            else:
                logger.debug("Created/verified directory: %s", path)
                results.append(DiskResult(path))
        return results

    @staticmethod
    def _require_any(
        results: list[DiskResult], level: str, subject: str
    ) -> list[DiskResult]:
        if not any(result.ok for result in results):
            raise DirectoryInitializationError(level, subject)
        return results

    def create_user_directories(
        self, local_dirs: Iterable[Path], user: str
    ) -> list[DiskResult]:
        """Create ``usercache/$user`` on every disk.

        Returns:
            Per-disk results.

        Raises:
            DirectoryInitializationError: If no disk succeeded.
        """
        results = self._create_on_each(
            (user_cache_dir(Path(d), user) for d in local_dirs),
            self._permissions.user_dir,
            "user",
        )
        return self._require_any(results, "user", f"user {user}")

    def create_app_cache_directories(
        self, local_dirs: Iterable[Path], user: str
    ) -> list[DiskResult]:
        """Create ``appcache`` and ``filecache`` for a user on every disk.

        Each of the two levels needs at least one successful disk.

        Returns:
            Per-disk results, app cache first then file cache.

        Raises:
            DirectoryInitializationError: If either level failed
                everywhere.
        """
        logger.info("Initializing user %s", user)
        bases = [Path(d) for d in local_dirs]
        app_results = self._create_on_each(
            (app_cache_dir(b, user) for b in bases),
            self._permissions.app_cache_dir,
            "app cache",
        )
        file_results = self._create_on_each(
            (file_cache_dir(b, user) for b in bases),
            self._permissions.file_cache_dir,
            "file cache",
        )
        self._require_any(app_results, "app-cache", f"user {user}")
        self._require_any(file_results, "file-cache", f"user {user}")
        return app_results + file_results

    def create_app_directories(
        self, local_dirs: Iterable[Path], user: str, app_id: str
    ) -> list[DiskResult]:
        """Create ``appcache/$appId`` on every disk.

        Raises:
            DirectoryInitializationError: If no disk succeeded.
        """
        results = self._create_on_each(
            (application_dir(Path(d), user, app_id) for d in local_dirs),
            self._permissions.app_dir,
            "app",
        )
        return self._require_any(results, "app", f"app {app_id}")

    def create_container_directories(
        self,
        local_dirs: Iterable[Path],
        user: str,
        app_id: str,
        container_id: str,
    ) -> list[DiskResult]:
        """Create ``appcache/$appId/$containerId`` on every disk.

        Raises:
            DirectoryInitializationError: If no disk succeeded.
        """
        results = self._create_on_each(
            (
                container_dir(Path(d), user, app_id, container_id)
                for d in local_dirs
            ),
            self._permissions.app_dir,
            "container",
        )
        return self._require_any(
            results, "container", f"container {container_id}"
        )

    def create_log_directories(
        self,
        app_id: str,
        container_id: str | None,
        log_dirs: Iterable[Path],
        user: str,
    ) -> list[DiskResult]:
        """Create log directories on every log disk.

        Creates ``$log/$appId`` when ``container_id`` is None, otherwise
        ``$log/$appId/$containerId``.

        Raises:
            DirectoryInitializationError: If no log disk succeeded.
        """
        if container_id is None:
            paths = [Path(d) / app_id for d in log_dirs]
            level, subject = "app-log", f"app {app_id}"
        else:
            paths = [Path(d) / app_id / container_id for d in log_dirs]
            level, subject = "container-log", f"container {container_id}"

        logger.debug("Creating %s directories for user %s", level, user)
        results = self._create_on_each(paths, self._permissions.log_dir, level)
        return self._require_any(results, level, subject)

    def select_working_directory(
        self, local_dirs: Iterable[Path], user: str, app_id: str
    ) -> Path:
        """Pick one disk's app dir with probability proportional to free space.

        Disks whose free space cannot be read count as having none.

        Returns:
            ``usercache/$user/appcache/$appId`` on the chosen disk.

        Raises:
            NoAvailableStorageError: If no disk has free space.
        """
        candidates = [
            application_dir(Path(d), user, app_id) for d in local_dirs
        ]

        available: list[int] = []
        for candidate in candidates:
            try:
                space = max(self._fs.free_space(candidate), 0)
            except OSError as e:
                logger.warning(
                    "Unable to get free space for %s: %s", candidate, e
                )
                space = 0
            available.append(space)

        total = sum(available)
        if total <= 0:
            raise NoAvailableStorageError(user)

        position = self._rng.randrange(total)
        cumulative = 0
        for candidate, space in zip(candidates, available, strict=True):
            if space == 0:
                continue
            cumulative += space
            if cumulative > position:
                logger.debug(
                    "Selected working directory %s (%d of %d bytes free)",
                    candidate,
                    space,
                    total,
                )
                return candidate

        # Unreachable: position < total == final cumulative
        raise NoAvailableStorageError(user)
