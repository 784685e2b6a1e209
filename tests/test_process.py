"""Tests for the reader subprocess runner."""

import sys
import time
from unittest.mock import Mock, patch

import pytest

from cdmedia.error_handling import LaunchError
from cdmedia.rip.process import ProcessRunner


def python_args(code: str) -> list[str]:
    return ["-c", code]


@pytest.fixture
def runner():
    return ProcessRunner(grace_period=0.5)


class TestStart:
    def test_missing_executable(self, runner, tmp_path):
        with pytest.raises(LaunchError) as exc_info:
            runner.start(str(tmp_path / "no-such-cdrdao"), ["read-cd"])

        assert exc_info.value.executable.endswith("no-such-cdrdao")
        assert exc_info.value.recoverable is False

    def test_not_executable(self, runner, tmp_path):
        script = tmp_path / "cdrdao"
        script.write_text("#!/bin/sh\necho hi\n")
        script.chmod(0o644)

        with pytest.raises(LaunchError):
            runner.start(str(script), [])

    @patch("cdmedia.rip.process.subprocess.Popen", side_effect=OSError(8, "Exec format error"))
    def test_other_os_errors(self, mock_popen, runner):
        with pytest.raises(LaunchError, match="Exec format error"):
            runner.start("cdrdao", [])


class TestReadLines:
    def test_merges_stderr_and_splits_carriage_returns(self, runner):
        code = (
            "import sys\n"
            "print('Reading toc and track data...')\n"
            "sys.stdout.flush()\n"
            "sys.stderr.write('00:00:05\\r00:00:10\\r\\n')\n"
            "sys.stderr.flush()\n"
            "print('done')\n"
        )
        handle = runner.start(sys.executable, python_args(code))

        lines = list(runner.read_lines(handle))

        assert lines == ["Reading toc and track data...", "00:00:05", "00:00:10", "done"]
        assert runner.wait(handle) == 0

    def test_exit_code(self, runner):
        handle = runner.start(sys.executable, python_args("import sys; sys.exit(3)"))

        assert list(runner.read_lines(handle)) == []
        assert runner.wait(handle) == 3

    def test_not_restartable(self, runner):
        handle = runner.start(sys.executable, python_args("print('x')"))
        list(runner.read_lines(handle))

        with pytest.raises(RuntimeError):
            list(runner.read_lines(handle))
        runner.wait(handle)


class TestCancel:
    def test_terminates_running_process(self, runner):
        code = "import time; print('ready', flush=True); time.sleep(30)"
        handle = runner.start(sys.executable, python_args(code))
        lines = runner.read_lines(handle)
        assert next(lines) == "ready"

        runner.cancel(handle)

        assert list(lines) == []
        assert runner.wait(handle) != 0
        assert handle.cancel_requested

    def test_cancel_is_idempotent(self, runner):
        handle = runner.start(sys.executable, python_args("import time; time.sleep(30)"))
        handle._process = Mock(wraps=handle._process)

        runner.cancel(handle)
        runner.cancel(handle)
        runner.cancel(handle)
        runner.wait(handle)

        assert handle._process.terminate.call_count == 1

    def test_cancel_after_exit_is_noop(self, runner):
        handle = runner.start(sys.executable, python_args("pass"))
        list(runner.read_lines(handle))
        runner.wait(handle)
        handle._process = Mock(wraps=handle._process)

        runner.cancel(handle)

        handle._process.terminate.assert_not_called()

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
    def test_kills_process_ignoring_sigterm(self, runner):
        code = (
            "import signal, time\n"
            "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
            "print('ready', flush=True)\n"
            "time.sleep(30)\n"
        )
        handle = runner.start(sys.executable, python_args(code))
        lines = runner.read_lines(handle)
        assert next(lines) == "ready"

        started = time.monotonic()
        runner.cancel(handle)
        list(lines)
        exit_code = runner.wait(handle, timeout=10)

        assert exit_code == -9
        assert time.monotonic() - started < 10
