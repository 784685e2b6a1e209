"""Data structures shared by the rip pipeline."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from cdmedia.error_handling import CdmediaError, CleanupError


@dataclass(frozen=True)
class RipConfiguration:
    """What to rip and where to publish it.

    Fixed for the lifetime of a session. ``use_error_correction`` makes cdrdao
    verify audio sectors, which roughly halves the read speed.
    """

    source_device: str
    destination_bundle_path: Path
    use_error_correction: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.destination_bundle_path, Path):
            object.__setattr__(
                self, "destination_bundle_path", Path(self.destination_bundle_path)
            )


class SessionState(Enum):
    """Lifecycle of a rip session."""

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    FINALIZING = "finalizing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            SessionState.SUCCEEDED,
            SessionState.FAILED,
            SessionState.CANCELLED,
        )


class OutcomeStatus(Enum):
    """Terminal result reported to the caller."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class RawOutputs:
    """Files the reader writes, all inside one private staging directory."""

    staging_dir: Path
    data_file: Path
    toc_file: Path


@dataclass(frozen=True)
class Bundle:
    """A published disc image bundle."""

    path: Path
    data_file: Path
    cue_sheet: Path
    track_count: int
    size: int  # bytes of sector data

    def __str__(self) -> str:
        return f"{self.path.name}: {self.track_count} tracks, {self.size} bytes"


@dataclass(frozen=True)
class RipOutcome:
    """How a session ended."""

    status: OutcomeStatus
    error: CdmediaError | None = None
    warnings: tuple[str, ...] = ()
    bundle: Bundle | None = None
    cleanup_error: CleanupError | None = None
    elapsed: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status is OutcomeStatus.SUCCEEDED

    @property
    def reason(self) -> str | None:
        """Short failure description for display."""
        return self.error.message if self.error else None

    def __str__(self) -> str:
        if self.status is OutcomeStatus.FAILED and self.error:
            return f"failed: {self.error.message}"
        return self.status.value


@dataclass
class RipProgress:
    """Snapshot of a running session for status displays."""

    state: SessionState
    percent: float = 0.0
    stage: str | None = None
    current_track: int | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def is_indeterminate(self) -> bool:
        """True until the reader has reported any measurable progress."""
        return self.state in (SessionState.IDLE, SessionState.STARTING) or (
            self.state is SessionState.RUNNING and self.percent <= 0.0
        )
