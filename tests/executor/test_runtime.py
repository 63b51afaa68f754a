# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for runtime command assembly and image validation."""

import shlex
from pathlib import Path

import pytest

from nodeexec.executor.errors import InvalidImageError
from nodeexec.executor.runtime import (
    assemble_run_command,
    build_mounts,
    compute_memory_limit_mb,
    is_valid_image,
    pid_query_command,
    validate_container_id,
    validate_image,
)
from nodeexec.executor.types import ContainerRequest, LaunchContext


def _request(memory_mb: int = 512) -> ContainerRequest:
    return ContainerRequest(
        container_id="container_1",
        app_id="app_1",
        user="alice",
        memory_mb=memory_mb,
        launch_context=LaunchContext(),
        launch_script_path=Path("/priv/launch.sh"),
        tokens_path=Path("/priv/tokens"),
    )


class TestValidateImage:
    """Tests for image name validation."""

    @pytest.mark.parametrize(
        "name",
        [
            "busybox",
            "ubuntu:14.04",
            "myregistry:5000/foo/bar:v1",
            "sequenceiq/hadoop-docker:2.4.1",
            "registry.example.com/team/app",
        ],
    )
    def test_valid(self, name: str) -> None:
        """Well-formed image names are accepted unchanged."""
        assert validate_image(name) == name
        assert is_valid_image(name) is True

    @pytest.mark.parametrize(
        "name",
        [
            "../etc/passwd",
            "foo/../bar",
            "busybox;rm -rf /",
            "busybox && id",
            "$(id)",
            "busy box",
            "busybox\n",
        ],
    )
    def test_invalid(self, name: str) -> None:
        """Traversal and shell metacharacters are rejected."""
        assert is_valid_image(name) is False
        with pytest.raises(InvalidImageError, match="not a proper"):
            validate_image(name)

    @pytest.mark.parametrize("name", ["", None])
    def test_empty(self, name: str | None) -> None:
        """Empty or missing image is rejected."""
        with pytest.raises(InvalidImageError, match="must not be empty"):
            validate_image(name)

    def test_quotes_stripped(self) -> None:
        """Quote characters are removed before matching."""
        assert validate_image("\"busybox\"") == "busybox"
        assert validate_image("'ubuntu:14.04'") == "ubuntu:14.04"

    def test_is_value_error(self) -> None:
        """InvalidImageError can be caught as ValueError."""
        with pytest.raises(ValueError):
            validate_image("bad image")


class TestMemoryLimit:
    """Tests for compute_memory_limit_mb."""

    def test_requested(self) -> None:
        """Requested memory is used without an override."""
        assert compute_memory_limit_mb(_request(512)) == 512

    def test_static_override(self) -> None:
        """A positive override wins."""
        assert compute_memory_limit_mb(_request(512), 2048) == 2048

    def test_non_positive_override_ignored(self) -> None:
        """Zero or negative overrides are ignored."""
        assert compute_memory_limit_mb(_request(512), 0) == 512
        assert compute_memory_limit_mb(_request(512), -1) == 512


class TestRunCommand:
    """Tests for run command assembly."""

    def test_build_mounts(self) -> None:
        """Each path is mounted at the same location."""
        assert build_mounts([Path("/data1"), "/logs"]) == [
            "-v",
            "/data1:/data1",
            "-v",
            "/logs:/logs",
        ]

    def test_build_mounts_quotes_whitespace(self) -> None:
        """Paths with spaces stay one shell word."""
        mounts = build_mounts(["/data disk/1"])

        assert mounts == ["-v", "'/data disk/1:/data disk/1'"]
        command = assemble_run_command(
            "/usr/bin/docker", 512, "container_1", mounts, "busybox"
        )
        assert shlex.split(command)[-2:] == [
            "/data disk/1:/data disk/1",
            "busybox",
        ]

    def test_assemble(self) -> None:
        """Flags appear in fixed order followed by mounts and image."""
        command = assemble_run_command(
            "/usr/bin/docker",
            512,
            "container_1",
            build_mounts(["/data1", "/work"]),
            "busybox",
        )

        assert command == (
            "/usr/bin/docker run --memory=512m --memory-swap -1 "
            "--oom-kill-disable --rm --net=host --name container_1 "
            "-v /data1:/data1 -v /work:/work busybox"
        )

    def test_pid_query(self) -> None:
        """Pid query is a backquoted inspect command."""
        assert pid_query_command("docker", "container_1") == (
            "`docker inspect --format {{.State.Pid}} container_1`"
        )


class TestValidateContainerId:
    """Tests for validate_container_id."""

    def test_valid(self) -> None:
        """Typical container ids pass."""
        cid = "container_1234567890123_0001_01_000001"
        assert validate_container_id(cid) == cid

    @pytest.mark.parametrize("cid", ["", "..", "c1;id", "c 1", "a/b"])
    def test_invalid(self, cid: str) -> None:
        """Ids that are unsafe as names or path components are rejected."""
        with pytest.raises(ValueError, match="Invalid container id"):
            validate_container_id(cid)
