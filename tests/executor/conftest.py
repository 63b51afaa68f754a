# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared pytest fixtures for executor tests."""

import errno
from pathlib import Path

import pytest

from nodeexec.executor.fs import LocalFileSystem


def _under(path: Path, root: Path) -> bool:
    return path == root or root in path.parents


class FakeDiskFileSystem(LocalFileSystem):
    """Real filesystem with scripted free space and mkdir failures.

    Attributes:
        free: Free bytes reported for any path under a root.
        unreadable: Roots whose free space cannot be read.
        failing: Roots under which ``mkdir`` raises ``PermissionError``.
    """

    def __init__(self) -> None:
        self.free: dict[Path, int] = {}
        self.unreadable: set[Path] = set()
        self.failing: set[Path] = set()

    def mkdir(self, path: Path, mode: int, *, parents: bool = True) -> None:
        for root in self.failing:
            if _under(path, root):
                raise PermissionError(
                    errno.EACCES, "Permission denied", str(path)
                )
        super().mkdir(path, mode, parents=parents)

    def free_space(self, path: Path) -> int:
        for root in self.unreadable:
            if _under(path, root):
                raise OSError(errno.EIO, "Input/output error", str(path))
        for root, space in self.free.items():
            if _under(path, root):
                return space
        return super().free_space(path)


@pytest.fixture
def fake_fs() -> FakeDiskFileSystem:
    """Filesystem with scripted free space and failures."""
    return FakeDiskFileSystem()
