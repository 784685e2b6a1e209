"""Subprocess management for the external disc reader."""

import logging
import subprocess
import threading
from collections.abc import Iterator, Sequence

from cdmedia.error_handling import LaunchError

logger = logging.getLogger(__name__)


class ProcessHandle:
    """A running reader process.

    Only the runner touches the underlying ``Popen``; callers go through
    ``ProcessRunner.read_lines``, ``cancel`` and ``wait``.
    """

    def __init__(self, process: subprocess.Popen, executable: str):
        self._process = process
        self.executable = executable
        self._lock = threading.Lock()
        self._cancel_requested = False
        self._lines_consumed = False
        self._kill_timer: threading.Timer | None = None

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    def __str__(self) -> str:
        return f"{self.executable} (pid {self.pid})"


class ProcessRunner:
    """Runs the reader and exposes its output as lines."""

    def __init__(self, grace_period: float = 10.0):
        self.grace_period = grace_period

    def start(self, executable: str, args: Sequence[str]) -> ProcessHandle:
        """Launch the executable with stderr merged into stdout."""
        cmd = [executable, *args]
        logger.debug(f"Launching: {' '.join(cmd)}")
        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                bufsize=1,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise LaunchError(executable, details=str(e), original_error=e) from e
        except OSError as e:
            msg = f"Could not launch {executable}: {e.strerror or e}"
            raise LaunchError(
                executable, message=msg, details=str(e), original_error=e
            ) from e

        handle = ProcessHandle(process, executable)
        logger.info(f"Started {handle}")
        return handle

    def read_lines(self, handle: ProcessHandle) -> Iterator[str]:
        """Yield output lines until the process closes its output.

        Universal newlines turn carriage-return progress updates into
        separate lines. The sequence can only be consumed once.
        """
        if handle._lines_consumed:
            msg = f"Output of {handle} has already been read"
            raise RuntimeError(msg)
        handle._lines_consumed = True

        stream = handle._process.stdout
        if stream is None:
            return
        try:
            for line in stream:
                line = line.rstrip("\n")
                if line.strip():
                    yield line
        finally:
            stream.close()

    def cancel(self, handle: ProcessHandle) -> None:
        """Ask the process to terminate. Repeated calls are no-ops.

        A process that ignores SIGTERM for longer than the grace period is
        killed, which also unblocks a reader waiting in ``read_lines``.
        """
        with handle._lock:
            if handle._cancel_requested:
                return
            handle._cancel_requested = True
            if handle._process.poll() is not None:
                return
            logger.info(f"Terminating {handle}")
            try:
                handle._process.terminate()
            except ProcessLookupError:
                return
            handle._kill_timer = threading.Timer(
                self.grace_period, self._kill_if_alive, args=(handle,)
            )
            handle._kill_timer.daemon = True
            handle._kill_timer.start()

    def _kill_if_alive(self, handle: ProcessHandle) -> None:
        if handle._process.poll() is None:
            logger.warning(
                f"{handle} did not exit within {self.grace_period}s, killing it"
            )
            try:
                handle._process.kill()
            except ProcessLookupError:
                pass

    def wait(self, handle: ProcessHandle, timeout: float | None = None) -> int:
        """Wait for exit and return the exit code."""
        exit_code = handle._process.wait(timeout=timeout)
        if handle._kill_timer is not None:
            handle._kill_timer.cancel()
        logger.debug(f"{handle} exited with code {exit_code}")
        return exit_code
