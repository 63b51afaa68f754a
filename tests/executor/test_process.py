# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for process spawning, signals and exit classification."""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from nodeexec.executor.errors import (
    IntentionalTermination,
    RuntimeInvocationFailure,
)
from nodeexec.executor.process import (
    CommandResult,
    CommandRunner,
    ProcessController,
    validate_pid,
)
from nodeexec.executor.types import ExitOutcome, Signal


def _completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(
        args=[], returncode=returncode, stdout=stdout, stderr=stderr
    )


def _failure(code: int) -> RuntimeInvocationFailure:
    return RuntimeInvocationFailure(["bash", "-c", "kill"], code)


class TestCommandRunner:
    """Tests for CommandRunner."""

    @patch("nodeexec.executor.process.subprocess.run")
    def test_success(self, mock_run: MagicMock, tmp_path: Path) -> None:
        """Zero exit returns captured output."""
        mock_run.return_value = _completed(0, "out", "err")

        result = CommandRunner().run(
            ["echo", "hi"], cwd=tmp_path, env={"A": "1"}
        )

        assert result == CommandResult(["echo", "hi"], 0, "out", "err")
        assert result.output == "out\nerr"
        mock_run.assert_called_once_with(
            ["echo", "hi"],
            cwd=tmp_path,
            env={"A": "1"},
            capture_output=True,
            text=True,
        )

    @patch("nodeexec.executor.process.subprocess.run")
    def test_no_timeout(self, mock_run: MagicMock) -> None:
        """Commands run without a timeout."""
        mock_run.return_value = _completed()

        CommandRunner().run(["true"])

        assert "timeout" not in mock_run.call_args.kwargs

    @patch("nodeexec.executor.process.subprocess.run")
    def test_failure(self, mock_run: MagicMock) -> None:
        """Non-zero exit raises RuntimeInvocationFailure with output."""
        mock_run.return_value = _completed(1, "some output", "boom")

        with pytest.raises(RuntimeInvocationFailure) as exc_info:
            CommandRunner().run(["false"])

        assert not isinstance(exc_info.value, IntentionalTermination)
        assert exc_info.value.exit_code == 1
        assert exc_info.value.output == "some output\nboom"

    @pytest.mark.parametrize("code", [137, 143])
    @patch("nodeexec.executor.process.subprocess.run")
    def test_intentional(self, mock_run: MagicMock, code: int) -> None:
        """Kill and terminate codes raise IntentionalTermination."""
        mock_run.return_value = _completed(code)

        with pytest.raises(IntentionalTermination) as exc_info:
            CommandRunner().run(["sleep", "100"])

        assert exc_info.value.exit_code == code

    @patch("nodeexec.executor.process.subprocess.run")
    def test_killed_by_signal(self, mock_run: MagicMock) -> None:
        """A negative return code maps to 128 + signal."""
        mock_run.return_value = _completed(-15)

        with pytest.raises(IntentionalTermination) as exc_info:
            CommandRunner().run(["sleep", "100"])

        assert exc_info.value.exit_code == 143

    @patch("nodeexec.executor.process.subprocess.run")
    def test_spawn_error_propagates(self, mock_run: MagicMock) -> None:
        """OSError from spawning is not wrapped."""
        mock_run.side_effect = FileNotFoundError("no such file")

        with pytest.raises(FileNotFoundError):
            CommandRunner().run(["missing-binary"])


class TestValidatePid:
    """Tests for validate_pid."""

    def test_valid(self) -> None:
        """Numeric pids are returned as strings."""
        assert validate_pid(1234) == "1234"
        assert validate_pid(" 42\n") == "42"

    @pytest.mark.parametrize("pid", ["", "0", "-1", "12;id", "abc", "1 2"])
    def test_invalid(self, pid: str) -> None:
        """Anything but a positive number is rejected."""
        with pytest.raises(ValueError, match="Invalid pid"):
            validate_pid(pid)


class TestProcessControllerSignals:
    """Tests for liveness and signal delivery."""

    def test_is_alive(self) -> None:
        """A successful null signal means alive."""
        runner = MagicMock()
        controller = ProcessController(runner)

        assert controller.is_alive("1234") is True
        runner.run.assert_called_once_with(["bash", "-c", "kill -0 1234"])

    def test_is_not_alive(self) -> None:
        """A failing null signal means not alive."""
        runner = MagicMock()
        runner.run.side_effect = _failure(1)

        assert ProcessController(runner).is_alive(1234) is False

    def test_is_alive_rejects_bad_pid(self) -> None:
        """Non-numeric pids never reach the shell."""
        runner = MagicMock()

        with pytest.raises(ValueError):
            ProcessController(runner).is_alive("1; rm -rf /")
        runner.run.assert_not_called()

    def test_send_signal(self) -> None:
        """Signal is delivered to a live process."""
        runner = MagicMock()

        delivered = ProcessController(runner).send_signal(
            "alice", "1234", Signal.TERM
        )

        assert delivered is True
        assert runner.run.call_args_list[-1].args == (
            ["bash", "-c", "kill -15 1234"],
        )

    def test_send_signal_not_alive(self) -> None:
        """Dead process is a no-op returning False."""
        runner = MagicMock()
        runner.run.side_effect = _failure(1)

        delivered = ProcessController(runner).send_signal(
            "alice", "1234", Signal.KILL
        )

        assert delivered is False
        runner.run.assert_called_once()

    def test_send_signal_race(self) -> None:
        """Process exiting between check and delivery is not an error."""
        runner = MagicMock()
        # alive check ok, delivery fails, second check says dead
        runner.run.side_effect = [None, _failure(1), _failure(1)]

        delivered = ProcessController(runner).send_signal(
            "alice", "1234", Signal.TERM
        )

        assert delivered is False
        assert runner.run.call_count == 3

    def test_send_signal_failure_propagates(self) -> None:
        """Delivery failure to a live process propagates."""
        runner = MagicMock()
        runner.run.side_effect = [None, _failure(1), None]

        with pytest.raises(RuntimeInvocationFailure):
            ProcessController(runner).send_signal(
                "alice", "1234", Signal.QUIT
            )


class TestClassifyExit:
    """Tests for exit code classification."""

    def test_success(self) -> None:
        """Zero is success without diagnostics."""
        result = ProcessController(MagicMock()).classify_exit("c1", 0)

        assert result.outcome is ExitOutcome.SUCCESS
        assert result.diagnostics == ""

    @pytest.mark.parametrize(
        ("code", "outcome"),
        [(137, ExitOutcome.FORCE_KILLED), (143, ExitOutcome.TERMINATED)],
    )
    def test_intentional(self, code: int, outcome: ExitOutcome) -> None:
        """Kill codes are intentional with a kill message only."""
        result = ProcessController(MagicMock()).classify_exit(
            "c1", code, "noisy output"
        )

        assert result.outcome is outcome
        assert result.outcome.intentional
        assert result.diagnostics == (
            f"Container killed on request. Exit code is {code}"
        )
        assert "Exception from container-launch" not in result.diagnostics

    def test_failure(self, caplog) -> None:
        """Other codes are failures carrying the captured output."""
        error = RuntimeInvocationFailure(["bash", "wrapper.sh"], 1)

        result = ProcessController(MagicMock()).classify_exit(
            "c1", 1, "stack trace here", error
        )

        assert result.outcome is ExitOutcome.FAILURE
        assert not result.outcome.intentional
        assert result.exit_code == 1
        assert result.diagnostics.startswith(
            "Exception from container-launch: \n"
        )
        assert str(error) in result.diagnostics
        assert result.diagnostics.endswith("\nstack trace here")
        assert any("stack trace here" in r.getMessage() for r in caplog.records)


class TestPidAndExitCodeFiles:
    """Tests for pid and exit code file readers."""

    def test_read_pid_file(self, tmp_path: Path) -> None:
        """First numeric line is the pid."""
        pid_file = tmp_path / "c1.pid"
        pid_file.write_text("\n4242\n")

        assert ProcessController.read_pid_file(pid_file) == "4242"

    def test_read_pid_file_missing(self, tmp_path: Path) -> None:
        """Missing pid file gives None."""
        assert ProcessController.read_pid_file(tmp_path / "none") is None

    def test_read_pid_file_without_pid(self, tmp_path: Path) -> None:
        """Pid file without a numeric line gives None."""
        pid_file = tmp_path / "c1.pid"
        pid_file.write_text("Error: no such container\n")

        assert ProcessController.read_pid_file(pid_file) is None

    def test_read_exit_code_file(self, tmp_path: Path) -> None:
        """Exit code is parsed from the file."""
        exit_file = tmp_path / "c1.pid.exitcode"
        exit_file.write_text("143\n")

        assert ProcessController.read_exit_code_file(exit_file) == 143

    def test_read_exit_code_file_missing(self, tmp_path: Path) -> None:
        """Missing exit code file gives None."""
        assert ProcessController.read_exit_code_file(tmp_path / "x") is None

    def test_read_exit_code_file_malformed(self, tmp_path: Path) -> None:
        """Malformed content gives None."""
        exit_file = tmp_path / "c1.pid.exitcode"
        exit_file.write_text("garbage")

        assert ProcessController.read_exit_code_file(exit_file) is None
