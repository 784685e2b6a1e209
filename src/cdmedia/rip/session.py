"""Rip session: drives the reader and decides how an import ends."""

import logging
import os
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

from cdmedia.config import CdmediaConfig
from cdmedia.error_handling import (
    AssemblyError,
    CdmediaError,
    CleanupError,
    ConfigurationError,
    LaunchError,
    ToolFatalError,
    UnknownFailure,
    wrap_error,
)
from cdmedia.rip.bundle import BundleAssembler
from cdmedia.rip.cdrdao import build_read_cd_args
from cdmedia.rip.models import (
    Bundle,
    OutcomeStatus,
    RawOutputs,
    RipConfiguration,
    RipOutcome,
    RipProgress,
    SessionState,
)
from cdmedia.rip.parser import (
    CdrdaoOutputParser,
    FatalError,
    LeadoutFound,
    Progress,
    StageChanged,
    ToolEvent,
    TrackListed,
    ToolWarning,
    TrackStarted,
)
from cdmedia.rip.process import ProcessHandle, ProcessRunner

logger = logging.getLogger(__name__)

_TERMINAL_STATES = {
    OutcomeStatus.SUCCEEDED: SessionState.SUCCEEDED,
    OutcomeStatus.FAILED: SessionState.FAILED,
    OutcomeStatus.CANCELLED: SessionState.CANCELLED,
}


@dataclass
class SessionListener:
    """Callbacks a caller registers for one session."""

    on_progress: Callable[[float], None] | None = None
    on_warning: Callable[[str], None] | None = None
    on_complete: Callable[[RipOutcome], None] | None = None


class RipSession:
    """One disc import from validation to a terminal outcome.

    ``run`` executes on a single worker thread and is the only place that
    mutates session state; ``request_cancel`` and ``subscribe`` are safe to
    call from any thread.
    """

    def __init__(
        self,
        rip_config: RipConfiguration,
        config: CdmediaConfig,
        *,
        runner: ProcessRunner | None = None,
        assembler: BundleAssembler | None = None,
        parser: CdrdaoOutputParser | None = None,
    ):
        self.rip_config = rip_config
        self.config = config
        self.runner = runner or ProcessRunner(grace_period=config.cancel_grace_period)
        self.assembler = assembler or BundleAssembler(config)
        self.parser = parser or CdrdaoOutputParser()

        self.state = SessionState.IDLE
        self.progress = 0.0
        self.warnings: list[str] = []
        self.stage: str | None = None
        self.current_track: int | None = None
        self.outcome: RipOutcome | None = None
        self.started_at: float | None = None
        self.finished_at: float | None = None

        self._state_lock = threading.Lock()
        self._cancel_event = threading.Event()
        self._handle: ProcessHandle | None = None
        self._handle_lock = threading.Lock()
        self._terminate_requested = False
        self._fatal_messages: list[str] = []
        self._output_tail: deque[str] = deque(maxlen=config.tool_output_tail)
        self._outputs: RawOutputs | None = None
        self._listeners: list[SessionListener] = []
        self._listeners_lock = threading.Lock()

    def __str__(self) -> str:
        return f"import of {self.rip_config.source_device} into {self.rip_config.destination_bundle_path}"

    @property
    def is_cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def snapshot(self) -> RipProgress:
        """Current progress for status displays."""
        return RipProgress(
            state=self.state,
            percent=self.progress,
            stage=self.stage,
            current_track=self.current_track,
            warnings=list(self.warnings),
        )

    def prepare(self) -> None:
        """Validate the import request (``IDLE`` to ``STARTING``)."""
        if self.state is not SessionState.IDLE:
            msg = f"Session is already {self.state.value}"
            raise RuntimeError(msg)

        device = self.rip_config.source_device
        destination = self.rip_config.destination_bundle_path

        if not device or not device.strip():
            msg = "No source device given"
            raise ConfigurationError(msg, solution="Select the drive holding the disc")
        if destination.suffix != self.config.bundle_extension:
            msg = f"Bundle name {destination.name} must end in {self.config.bundle_extension}"
            raise ConfigurationError(msg)
        if destination.exists() or destination.is_symlink():
            msg = f"{destination} already exists"
            raise ConfigurationError(
                msg, solution="Choose another name or remove the existing bundle"
            )
        parent = destination.parent
        if not parent.is_dir():
            msg = f"Destination folder {parent} does not exist"
            raise ConfigurationError(msg)
        if not os.access(parent, os.W_OK | os.X_OK):
            msg = f"Destination folder {parent} is not writable"
            raise ConfigurationError(msg)

        self._set_state(SessionState.STARTING)

    def subscribe(
        self,
        on_progress: Callable[[float], None] | None = None,
        on_warning: Callable[[str], None] | None = None,
        on_complete: Callable[[RipOutcome], None] | None = None,
    ) -> None:
        """Register callbacks; they run on the session's worker thread.

        Subscribing after the session finished delivers ``on_complete``
        immediately.
        """
        listener = SessionListener(on_progress, on_warning, on_complete)
        with self._listeners_lock:
            outcome = self.outcome
            if outcome is None:
                self._listeners.append(listener)
                return
        self._notify([listener], "on_complete", outcome)

    def request_cancel(self) -> None:
        """Cancel the import. Safe to call repeatedly and from any thread."""
        with self._state_lock:
            if self._cancel_event.is_set():
                return
            if self.state is SessionState.FINALIZING or self.state.is_terminal:
                logger.debug(f"Ignoring cancellation of {self}: already {self.state.value}")
                return
            self._cancel_event.set()
        logger.info(f"Cancellation requested for {self}")
        self._terminate_tool()

    def run(self) -> RipOutcome:
        """Perform the import and return its outcome."""
        self.started_at = time.time()
        if self.state is SessionState.IDLE:
            try:
                self.prepare()
            except ConfigurationError as e:
                return self._finish(OutcomeStatus.FAILED, error=e)

        try:
            return self._execute()
        except Exception as e:
            logger.exception(f"Unexpected error during {self}")
            self._stop_tool()
            return self._abort(OutcomeStatus.FAILED, wrap_error(e))

    def _execute(self) -> RipOutcome:
        if self._cancel_event.is_set():
            return self._abort(OutcomeStatus.CANCELLED)

        destination = self.rip_config.destination_bundle_path
        try:
            self._outputs = self.assembler.create_staging(destination)
        except AssemblyError as e:
            return self._abort(OutcomeStatus.FAILED, e)

        args = build_read_cd_args(self.config, self.rip_config, self._outputs)
        try:
            handle = self.runner.start(self.config.cdrdao_binary, args)
        except LaunchError as e:
            return self._abort(OutcomeStatus.FAILED, e)

        with self._handle_lock:
            self._handle = handle
        self._set_state(SessionState.RUNNING)
        logger.info(
            f"Ripping {self.rip_config.source_device} "
            f"({'with' if self.rip_config.use_error_correction else 'without'} error correction)"
        )
        # A cancel that raced the launch found no process to signal
        if self._cancel_event.is_set():
            self._terminate_tool()

        for line in self.runner.read_lines(handle):
            self._output_tail.append(line)
            logger.debug(f"cdrdao: {line}")
            event = self.parser.classify(line)
            if event is not None:
                self._handle_event(event)

        exit_code = self.runner.wait(handle)

        with self._state_lock:
            cancelled = self._cancel_event.is_set()
            if not cancelled and not self._fatal_messages and exit_code == 0:
                self.state = SessionState.FINALIZING

        if cancelled:
            return self._abort(OutcomeStatus.CANCELLED)
        if self._fatal_messages:
            error = ToolFatalError(
                self._fatal_messages[0],
                details="\n".join(self._fatal_messages[1:]) or None,
            )
            return self._abort(OutcomeStatus.FAILED, error)
        if exit_code != 0:
            error = UnknownFailure(
                self.config.cdrdao_binary,
                exit_code,
                "\n".join(self._output_tail) or None,
            )
            return self._abort(OutcomeStatus.FAILED, error)

        logger.info(f"Read finished, assembling {destination.name}")
        try:
            bundle = self.assembler.finalize(self._outputs, destination)
        except AssemblyError as e:
            return self._abort(OutcomeStatus.FAILED, e)
        return self._finish(OutcomeStatus.SUCCEEDED, bundle=bundle)

    def _handle_event(self, event: ToolEvent) -> None:
        # Subscribers hear nothing further once cancellation is requested
        cancelled = self._cancel_event.is_set()
        if isinstance(event, Progress):
            if event.track is not None:
                self._enter_track(event.track)
            if not cancelled:
                self._report_progress(event.percent)
        elif isinstance(event, TrackStarted):
            self._enter_track(event.index)
        elif isinstance(event, ToolWarning):
            self.warnings.append(event.message)
            logger.warning(f"cdrdao: {event.message}")
            if not cancelled:
                self._notify(self._current_listeners(), "on_warning", event.message)
        elif isinstance(event, FatalError):
            self._fatal_messages.append(event.message)
            logger.error(f"cdrdao: {event.message}")
            self._terminate_tool()
        elif isinstance(event, StageChanged):
            self.stage = event.description
            logger.info(event.description)
        elif isinstance(event, LeadoutFound):
            logger.debug(f"Disc is {event.sector} sectors long")
        elif isinstance(event, TrackListed):
            logger.debug(f"Track {event.number} starts at sector {event.start}")

    def _enter_track(self, number: int) -> None:
        if number == self.current_track:
            return
        self.current_track = number
        logger.info(f"Reading track {number}")

    def _report_progress(self, percent: float) -> None:
        if percent <= self.progress:
            return
        self.progress = percent
        self._notify(self._current_listeners(), "on_progress", percent)

    def _terminate_tool(self) -> None:
        with self._handle_lock:
            if self._handle is None or self._terminate_requested:
                return
            self._terminate_requested = True
            handle = self._handle
        self.runner.cancel(handle)

    def _stop_tool(self) -> None:
        """Make sure the reader is gone before output is touched."""
        if self._handle is None:
            return
        try:
            self._terminate_tool()
            self.runner.wait(self._handle)
        except Exception:
            logger.exception(f"Could not confirm that {self._handle} exited")

    def _abort(self, status: OutcomeStatus, error: CdmediaError | None = None) -> RipOutcome:
        cleanup_error = None
        if self._outputs is not None:
            leftovers = self.assembler.discard(self._outputs)
            if leftovers:
                cleanup_error = CleanupError(leftovers)
        return self._finish(status, error=error, cleanup_error=cleanup_error)

    def _finish(
        self,
        status: OutcomeStatus,
        *,
        error: CdmediaError | None = None,
        bundle: Bundle | None = None,
        cleanup_error: CleanupError | None = None,
    ) -> RipOutcome:
        self.finished_at = time.time()
        if status is OutcomeStatus.SUCCEEDED:
            self._report_progress(100.0)

        outcome = RipOutcome(
            status=status,
            error=error,
            warnings=tuple(self.warnings),
            bundle=bundle,
            cleanup_error=cleanup_error,
            elapsed=self.finished_at - (self.started_at or self.finished_at),
        )

        if status is OutcomeStatus.SUCCEEDED:
            logger.info(
                f"Imported {self.rip_config.destination_bundle_path.name} "
                f"in {outcome.elapsed:.1f}s with {len(outcome.warnings)} warning(s)"
            )
        elif status is OutcomeStatus.CANCELLED:
            logger.info(f"Cancelled {self}")
        else:
            logger.error(f"Failed {self}: {outcome.reason}")
        if cleanup_error:
            logger.warning(f"{cleanup_error.message}: {cleanup_error.details}")

        with self._listeners_lock:
            with self._state_lock:
                self.state = _TERMINAL_STATES[status]
            self.outcome = outcome
            listeners = list(self._listeners)
        self._notify(listeners, "on_complete", outcome)
        return outcome

    def _set_state(self, state: SessionState) -> None:
        with self._state_lock:
            logger.debug(f"{self}: {self.state.value} -> {state.value}")
            self.state = state

    def _current_listeners(self) -> list[SessionListener]:
        with self._listeners_lock:
            return list(self._listeners)

    def _notify(self, listeners: list[SessionListener], name: str, value) -> None:
        for listener in listeners:
            callback = getattr(listener, name)
            if callback is None:
                continue
            try:
                callback(value)
            except Exception:
                logger.exception(f"{name} callback raised")
