"""Classification of cdrdao output lines into rip events.

cdrdao has no machine-readable output mode, so each recognised line shape
is handled by its own matcher. Supporting another output format means
adding a matcher to ``DEFAULT_MATCHERS``; the session only sees events.

Typical ``read-cd`` output::

    Reading toc and track data...
    Track   Mode    Flags  Start                Length
     1      DATA    4      00:00:00(     0)     52:27:47(236072)
     2      AUDIO   0      52:27:47(236072)     03:15:52( 14677)
    Leadout DATA    4      55:43:24(250749)
    Copying data track 1 (MODE1_RAW): start 00:00:00, length 52:27:47 to "data.bin"...
    00:10:00
    WARNING: Found 4 C2 errors at 01:02:30
    Copying audio tracks 2-2: start 52:27:47, length 03:15:52 to "data.bin"...
    ERROR: Unit not ready, giving up.
"""

import re
from dataclasses import dataclass
from typing import Protocol

from cdmedia.rip.layout import FRAMES_PER_SECOND, SECONDS_PER_MINUTE


@dataclass(frozen=True)
class Progress:
    percent: float
    track: int | None = None  # track being read, when the listing is known


@dataclass(frozen=True)
class TrackStarted:
    index: int


@dataclass(frozen=True)
class ToolWarning:
    message: str


@dataclass(frozen=True)
class FatalError:
    message: str


@dataclass(frozen=True)
class LeadoutFound:
    """Disc length in sectors, taken from the TOC listing."""

    sector: int


@dataclass(frozen=True)
class TrackListed:
    """One row of the track listing printed before reading starts."""

    number: int
    start: int  # first sector


@dataclass(frozen=True)
class StageChanged:
    description: str


ToolEvent = (
    Progress
    | TrackStarted
    | ToolWarning
    | FatalError
    | LeadoutFound
    | TrackListed
    | StageChanged
)


class LineMatcher(Protocol):
    """Turns one recognised line shape into an event."""

    def match(self, line: str, parser: "CdrdaoOutputParser") -> ToolEvent | None: ...


WARNING_PREFIX = re.compile(r"^\s*WARNING:\s*(?P<message>.+?)\s*$")


class FatalMatcher:
    """Errors cdrdao does not recover from.

    A ``WARNING:`` line is never fatal, even when it names a condition
    such as ``Unit not ready`` that cdrdao is still retrying.
    """

    PREFIX = re.compile(r"^\s*ERROR:\s*(?P<message>.+?)\s*$")
    CONDITIONS = re.compile(
        r"no disk|medium not present|unit not ready|device or resource busy"
        r"|cannot open scsi device",
        re.IGNORECASE,
    )

    def match(self, line, parser):
        if m := self.PREFIX.match(line):
            return FatalError(m.group("message"))
        if WARNING_PREFIX.match(line) or WarningMatcher.RETRY.search(line):
            return None
        if self.CONDITIONS.search(line):
            return FatalError(line.strip())
        return None


class WarningMatcher:
    """Anomalies the rip survives, such as retried or corrected sectors."""

    PREFIX = WARNING_PREFIX
    SECTOR_ERRORS = re.compile(
        r"^\s*found\s+\d+\s+(?:c1/c2|c1|c2|l-ec)\s+errors?", re.IGNORECASE
    )
    RETRY = re.compile(r"\bretry(?:ing)?\b|\bstill trying\b", re.IGNORECASE)

    def match(self, line, parser):
        if m := self.PREFIX.match(line):
            return ToolWarning(m.group("message"))
        if self.SECTOR_ERRORS.match(line) or self.RETRY.search(line):
            return ToolWarning(line.strip())
        return None


class LeadoutMatcher:
    PATTERN = re.compile(r"^\s*Leadout\s+\w+\s+\d+\s+\d+:\d{2}:\d{2}\(\s*(?P<sector>\d+)\)")

    def match(self, line, parser):
        if m := self.PATTERN.match(line):
            return LeadoutFound(int(m.group("sector")))
        return None


class TrackListingMatcher:
    """Rows such as `` 2      AUDIO   0      52:27:47(236072)     03:15:52( 14677)``."""

    PATTERN = re.compile(
        r"^\s*(?P<number>\d+)\s+(?:DATA|AUDIO)\s+\d+\s+\d+:\d{2}:\d{2}\(\s*(?P<start>\d+)\)"
    )

    def match(self, line, parser):
        if m := self.PATTERN.match(line):
            return TrackListed(int(m.group("number")), int(m.group("start")))
        return None


class TrackStartMatcher:
    """``Copying data track 1 (...)`` and ``Copying audio tracks 2-13: ...``."""

    PATTERN = re.compile(
        r"^\s*Copying\s+(?:data|audio)\s+tracks?\s+(?P<first>\d+)(?:-(?P<last>\d+))?",
        re.IGNORECASE,
    )

    def match(self, line, parser):
        if m := self.PATTERN.match(line):
            return TrackStarted(int(m.group("first")))
        return None


class StageMatcher:
    STAGES = (
        (re.compile(r"^\s*Reading toc and track data"), "Reading table of contents"),
        (re.compile(r"^\s*Analyzing track (?P<track>\d+)"), "Analyzing track {track}"),
        (re.compile(r"^\s*Reading of toc and track data finished"), "Finishing"),
    )

    def match(self, line, parser):
        for pattern, description in self.STAGES:
            if m := pattern.match(line):
                return StageChanged(description.format(**m.groupdict()))
        return None


class PositionMatcher:
    """Bare ``MM:SS:FF`` lines give the absolute read position."""

    PATTERN = re.compile(r"^\s*(?P<m>\d{1,3}):(?P<s>\d{2}):(?P<f>\d{2})\s*$")

    def match(self, line, parser):
        m = self.PATTERN.match(line)
        if not m or not parser.leadout_sector:
            return None
        sector = (
            int(m.group("m")) * SECONDS_PER_MINUTE + int(m.group("s"))
        ) * FRAMES_PER_SECOND + int(m.group("f"))
        return Progress(
            100.0 * sector / parser.leadout_sector,
            parser.track_at(max(sector - 1, 0)),
        )


class PercentMatcher:
    PATTERN = re.compile(
        r"^\s*(?:progress:?\s*)?(?P<percent>\d{1,3}(?:\.\d+)?)\s*%\s*$", re.IGNORECASE
    )

    def match(self, line, parser):
        if m := self.PATTERN.match(line):
            return Progress(float(m.group("percent")))
        return None


DEFAULT_MATCHERS: tuple[LineMatcher, ...] = (
    FatalMatcher(),
    WarningMatcher(),
    LeadoutMatcher(),
    TrackListingMatcher(),
    TrackStartMatcher(),
    StageMatcher(),
    PositionMatcher(),
    PercentMatcher(),
)


class CdrdaoOutputParser:
    """Classifies reader output one line at a time.

    The state kept is the disc length, the listed track starts and the last
    progress value, so that progress never goes backwards or repeats and
    position lines can be attributed to a track.
    """

    def __init__(self, matchers: tuple[LineMatcher, ...] = DEFAULT_MATCHERS):
        self.matchers = matchers
        self.leadout_sector: int | None = None
        self.track_starts: dict[int, int] = {}
        self.last_percent: float | None = None

    def reset(self) -> None:
        self.leadout_sector = None
        self.track_starts = {}
        self.last_percent = None

    def track_at(self, sector: int) -> int | None:
        """Number of the listed track containing ``sector``."""
        current = None
        for number, start in sorted(self.track_starts.items(), key=lambda item: item[1]):
            if start > sector:
                break
            current = number
        return current

    def classify(self, line: str) -> ToolEvent | None:
        """Return the event for ``line``, or None if it carries nothing."""
        for matcher in self.matchers:
            event = matcher.match(line, self)
            if event is None:
                continue
            if isinstance(event, LeadoutFound):
                self.leadout_sector = event.sector
            elif isinstance(event, TrackListed):
                self.track_starts[event.number] = event.start
            elif isinstance(event, Progress):
                return self._accept_progress(event)
            return event
        return None

    def _accept_progress(self, event: Progress) -> Progress | None:
        percent = min(max(event.percent, 0.0), 100.0)
        if self.last_percent is not None and percent <= self.last_percent:
            return None
        self.last_percent = percent
        return Progress(percent, event.track)
