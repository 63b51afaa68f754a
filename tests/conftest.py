# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared pytest fixtures used across multiple test packages."""

from pathlib import Path

import pytest

from nodeexec.logging import SecretFilter


@pytest.fixture(autouse=True)
def _clear_secrets():
    """Secrets registered by one test must not redact another's output."""
    SecretFilter.clear_secrets()
    yield
    SecretFilter.clear_secrets()


@pytest.fixture
def local_disks(tmp_path: Path) -> list[Path]:
    """Three empty local disk roots."""
    disks = [tmp_path / f"disk{i}" for i in range(1, 4)]
    for disk in disks:
        disk.mkdir()
    return disks


@pytest.fixture
def log_disks(tmp_path: Path) -> list[Path]:
    """Two empty log disk roots."""
    disks = [tmp_path / f"logs{i}" for i in range(1, 3)]
    for disk in disks:
        disk.mkdir()
    return disks
