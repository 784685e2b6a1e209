"""Caller-facing API for importing discs as bundles."""

import logging
import threading
from collections.abc import Callable
from dataclasses import replace
from pathlib import Path

from cdmedia.config import CdmediaConfig
from cdmedia.error_handling import ConfigurationError, DependencyError, check_dependencies
from cdmedia.rip.bundle import BundleAssembler
from cdmedia.rip.models import RipConfiguration, RipOutcome, RipProgress, SessionState
from cdmedia.rip.process import ProcessRunner
from cdmedia.rip.session import RipSession

logger = logging.getLogger(__name__)


class SessionHandle:
    """Opaque reference to a running import."""

    def __init__(self, session: RipSession):
        self._session = session
        self._thread = threading.Thread(
            target=session.run,
            name=f"cdmedia-rip-{session.rip_config.destination_bundle_path.name}",
            daemon=True,
        )

    def _start(self) -> None:
        self._thread.start()

    @property
    def rip_config(self) -> RipConfiguration:
        return self._session.rip_config

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def progress(self) -> RipProgress:
        return self._session.snapshot()

    @property
    def outcome(self) -> RipOutcome | None:
        return self._session.outcome

    @property
    def is_done(self) -> bool:
        return self._session.outcome is not None

    def wait(self, timeout: float | None = None) -> RipOutcome | None:
        """Block until the import ends; None if ``timeout`` expired first."""
        self._thread.join(timeout)
        return self._session.outcome

    def __str__(self) -> str:
        return str(self._session)


class ImageImporter:
    """Starts and tracks disc imports.

    At most one import may target a given destination at a time.
    """

    def __init__(
        self,
        config: CdmediaConfig | None = None,
        *,
        runner: ProcessRunner | None = None,
        assembler: BundleAssembler | None = None,
    ):
        self.config = config or CdmediaConfig()
        self.runner = runner or ProcessRunner(grace_period=self.config.cancel_grace_period)
        self.assembler = assembler or BundleAssembler(self.config)
        self._active: dict[Path, SessionHandle] = {}
        self._lock = threading.Lock()

    @property
    def active_imports(self) -> list[SessionHandle]:
        with self._lock:
            return list(self._active.values())

    def check_prerequisites(self) -> list[DependencyError]:
        """Report external tools that are missing."""
        errors = check_dependencies(self.config)
        for error in errors:
            logger.warning(error.message)
        return errors

    def begin_import(self, rip_config: RipConfiguration) -> SessionHandle:
        """Validate ``rip_config`` and start ripping in the background.

        A blank ``source_device`` reads from the configured ``optical_drive``.
        Raises ConfigurationError without launching anything when the request
        is invalid or its destination is already claimed by another import.
        """
        if not rip_config.source_device.strip():
            rip_config = replace(rip_config, source_device=self.config.optical_drive)
        key = rip_config.destination_bundle_path.expanduser().absolute()
        session = RipSession(
            rip_config,
            self.config,
            runner=self.runner,
            assembler=self.assembler,
        )

        with self._lock:
            if key in self._active:
                msg = f"An import into {key} is already running"
                raise ConfigurationError(
                    msg, solution="Wait for it to finish or cancel it first"
                )
            session.prepare()
            handle = SessionHandle(session)
            self._active[key] = handle

        session.subscribe(on_complete=lambda outcome: self._release(key, handle))
        logger.info(f"Starting {session}")
        handle._start()
        return handle

    def subscribe(
        self,
        handle: SessionHandle,
        on_progress: Callable[[float], None] | None = None,
        on_warning: Callable[[str], None] | None = None,
        on_complete: Callable[[RipOutcome], None] | None = None,
    ) -> None:
        """Receive progress percentages, warnings and the final outcome."""
        handle._session.subscribe(on_progress, on_warning, on_complete)

    def request_cancel(self, handle: SessionHandle) -> None:
        """Cancel an import; repeated requests have no further effect."""
        handle._session.request_cancel()

    def _release(self, key: Path, handle: SessionHandle) -> None:
        with self._lock:
            if self._active.get(key) is handle:
                del self._active[key]
