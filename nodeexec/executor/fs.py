# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Local filesystem handle used by the executor.

A thin wrapper over ``os``/``shutil`` so that directory creation, free
space probing and deletion can be replaced per disk in tests.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
from pathlib import Path


logger = logging.getLogger(__name__)


class LocalFileSystem:
    """Filesystem operations on local disks."""

    def mkdir(self, path: Path, mode: int, *, parents: bool = True) -> None:
        """Create a directory with the given mode.

        The process umask applies to ``mkdir``; if the resulting mode
        differs from ``mode`` it is applied explicitly.

        Raises:
            OSError: If the directory cannot be created.
        """
        if parents:
            path.mkdir(mode=mode, parents=True, exist_ok=True)
        else:
            path.mkdir(mode=mode, exist_ok=True)
        if stat.S_IMODE(path.stat().st_mode) != mode:
            self.set_permission(path, mode)

    def set_permission(self, path: Path, mode: int) -> None:
        """Apply ``mode`` to ``path``."""
        os.chmod(path, mode)

    def free_space(self, path: Path) -> int:
        """Bytes available to unprivileged users on the disk of ``path``.

        Raises:
            OSError: If the free space of the path cannot be read.
        """
        return shutil.disk_usage(path).free

    def copy(self, src: Path, dst: Path) -> None:
        """Copy file contents from ``src`` to ``dst``."""
        shutil.copyfile(src, dst)

    def delete(self, path: Path) -> bool:
        """Recursively delete ``path``.

        Returns:
            True if everything was removed, False if some entries could
            not be deleted.

        Raises:
            FileNotFoundError: If ``path`` does not exist.
        """
        if not os.path.lexists(path):
            raise FileNotFoundError(path)

        if path.is_dir() and not path.is_symlink():
            failures: list[str] = []

            def _record(func: object, failed: str, exc: BaseException) -> None:
                logger.debug("Failed to delete %s: %s", failed, exc)
                failures.append(failed)

            shutil.rmtree(path, onexc=_record)
            return not failures

        try:
            path.unlink()
        except FileNotFoundError:
            raise
        except OSError as e:
            logger.debug("Failed to delete %s: %s", path, e)
            return False
        return True
