"""Track layout: reading cdrdao TOC files and writing CUE sheets."""

import logging
import re
import shlex
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

FRAMES_PER_SECOND = 75
SECONDS_PER_MINUTE = 60
SAMPLES_PER_SECTOR = 588  # 16-bit stereo samples in one 2352-byte audio sector

# Bytes per sector as stored in the data file, by cdrdao track mode
SECTOR_SIZES = {
    "AUDIO": 2352,
    "MODE0": 2336,
    "MODE1": 2048,
    "MODE1_RAW": 2352,
    "MODE2": 2336,
    "MODE2_FORM1": 2048,
    "MODE2_FORM2": 2324,
    "MODE2_FORM_MIX": 2336,
    "MODE2_RAW": 2352,
}

# CUE sheet track types for the modes a BINARY file can describe
CUE_MODES = {
    "AUDIO": "AUDIO",
    "MODE1": "MODE1/2048",
    "MODE1_RAW": "MODE1/2352",
    "MODE2": "MODE2/2336",
    "MODE2_FORM_MIX": "MODE2/2336",
    "MODE2_RAW": "MODE2/2352",
}

MSF_PATTERN = re.compile(r"^(\d+):(\d{1,2}):(\d{1,2})$")
QUOTED_PATTERN = re.compile(r'"[^"]*"')


class LayoutError(ValueError):
    """A TOC file that cannot be turned into a CUE sheet."""


def msf_to_sectors(value: str) -> int:
    """Convert ``MM:SS:FF`` to a sector count."""
    m = MSF_PATTERN.match(value)
    if not m:
        msg = f"Invalid MSF value '{value}'"
        raise LayoutError(msg)
    minutes, seconds, frames = (int(g) for g in m.groups())
    if seconds >= SECONDS_PER_MINUTE or frames >= FRAMES_PER_SECOND:
        msg = f"MSF value '{value}' out of range"
        raise LayoutError(msg)
    return (minutes * SECONDS_PER_MINUTE + seconds) * FRAMES_PER_SECOND + frames


def sectors_to_msf(sectors: int) -> str:
    """Convert a sector count to ``MM:SS:FF``."""
    seconds, frames = divmod(sectors, FRAMES_PER_SECOND)
    minutes, seconds = divmod(seconds, SECONDS_PER_MINUTE)
    return f"{minutes:02d}:{seconds:02d}:{frames:02d}"


def _length_to_sectors(value: str) -> int:
    # TOC lengths are either MSF or a count of audio samples
    if value.isdigit():
        return int(value) // SAMPLES_PER_SECTOR
    return msf_to_sectors(value)


@dataclass
class TocTrack:
    """One track as laid out in the data file."""

    number: int
    mode: str
    file_name: str | None = None
    start: int = 0  # first sector in the data file
    length: int = 0  # sectors stored in the data file
    pregap: int = 0  # leading sectors of ``length`` before index 1
    silence: int = 0  # pregap sectors not stored in the file
    postgap: int = 0
    indexes: list[int] = field(default_factory=list)  # relative to index 1
    isrc: str | None = None
    copy_permitted: bool = False
    pre_emphasis: bool = False
    four_channel: bool = False

    @property
    def sector_size(self) -> int:
        return SECTOR_SIZES[self.mode]

    @property
    def cue_mode(self) -> str:
        try:
            return CUE_MODES[self.mode]
        except KeyError:
            msg = f"Track {self.number}: mode {self.mode} has no CUE equivalent"
            raise LayoutError(msg) from None

    @property
    def size(self) -> int:
        return self.length * self.sector_size


@dataclass
class DiscLayout:
    """All tracks of a ripped disc, in file order."""

    tracks: list[TocTrack]
    catalog: str | None = None

    @property
    def expected_size(self) -> int:
        """Bytes the data file must contain."""
        return sum(track.size for track in self.tracks)

    @property
    def sector_count(self) -> int:
        return sum(track.length for track in self.tracks)

    @property
    def file_names(self) -> set[str]:
        """Base names of every data file the TOC refers to."""
        return {Path(t.file_name).name for t in self.tracks if t.file_name}


def _strip_comment(line: str) -> str:
    in_quotes = False
    for i, char in enumerate(line):
        if char == '"':
            in_quotes = not in_quotes
        elif char == "/" and not in_quotes and line[i : i + 2] == "//":
            return line[:i]
    return line


def parse_toc(text: str) -> DiscLayout:
    """Parse the contents of a cdrdao TOC file."""
    tracks: list[TocTrack] = []
    catalog = None
    current: TocTrack | None = None
    file_bytes = 0  # running end of data in the file
    brace_depth = 0

    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = _strip_comment(raw).strip()
        if not line:
            continue

        # CD_TEXT blocks carry no layout information
        if brace_depth or line.startswith("CD_TEXT"):
            unquoted = QUOTED_PATTERN.sub("", line)
            brace_depth += unquoted.count("{") - unquoted.count("}")
            continue

        try:
            words = shlex.split(line)
        except ValueError as e:
            msg = f"Line {lineno}: {e}"
            raise LayoutError(msg) from e
        keyword = words[0]

        if keyword in ("CD_DA", "CD_ROM", "CD_ROM_XA", "CD_I"):
            continue
        if keyword == "CATALOG" and len(words) == 2:
            catalog = words[1]
            continue
        if keyword == "TRACK":
            if len(words) < 2 or words[1] not in SECTOR_SIZES:
                msg = f"Line {lineno}: unsupported track declaration '{line}'"
                raise LayoutError(msg)
            if len(words) > 2:
                msg = f"Line {lineno}: sub-channel data ({words[2]}) cannot be described by a CUE sheet"
                raise LayoutError(msg)
            current = TocTrack(number=len(tracks) + 1, mode=words[1])
            tracks.append(current)
            continue

        if current is None:
            msg = f"Line {lineno}: '{keyword}' outside of a track"
            raise LayoutError(msg)

        if keyword == "NO" and len(words) == 2:
            if words[1] == "COPY":
                current.copy_permitted = False
            elif words[1] == "PRE_EMPHASIS":
                current.pre_emphasis = False
        elif keyword == "COPY":
            current.copy_permitted = True
        elif keyword == "PRE_EMPHASIS":
            current.pre_emphasis = True
        elif keyword in ("TWO_CHANNEL_AUDIO", "FOUR_CHANNEL_AUDIO"):
            current.four_channel = keyword == "FOUR_CHANNEL_AUDIO"
        elif keyword == "ISRC" and len(words) == 2:
            current.isrc = words[1]
        elif keyword in ("DATAFILE", "FILE", "AUDIOFILE"):
            file_bytes = _add_file_data(current, words, file_bytes, lineno)
        elif keyword in ("SILENCE", "ZERO", "PREGAP"):
            gap = _length_to_sectors(words[-1])
            if keyword == "PREGAP" or current.length == 0:
                current.silence += gap
            else:
                current.postgap += gap
        elif keyword == "START":
            current.pregap = msf_to_sectors(words[1]) if len(words) > 1 else current.length
        elif keyword == "INDEX" and len(words) == 2:
            current.indexes.append(msf_to_sectors(words[1]))
        else:
            logger.debug(f"Ignoring TOC line {lineno}: {line}")

    if not tracks:
        msg = "TOC file declares no tracks"
        raise LayoutError(msg)
    position = 0
    for track in tracks:
        track.start = position
        position += track.length
        if track.length <= 0:
            msg = f"Track {track.number} has no data in the image"
            raise LayoutError(msg)
        if track.pregap >= track.length:
            msg = f"Track {track.number} pregap exceeds its length"
            raise LayoutError(msg)

    return DiscLayout(tracks=tracks, catalog=catalog)


def _add_file_data(track: TocTrack, words: list[str], file_bytes: int, lineno: int) -> int:
    """Record a DATAFILE/FILE statement and return the new end of data."""
    args = words[1:]
    if not args:
        msg = f"Line {lineno}: {words[0]} without a file name"
        raise LayoutError(msg)
    name, rest = args[0], args[1:]

    if track.file_name is not None and Path(track.file_name).name != Path(name).name:
        msg = f"Track {track.number} spans several data files"
        raise LayoutError(msg)

    offset = None
    if rest and rest[0].startswith("#"):
        if not rest[0][1:].isdigit():
            msg = f"Line {lineno}: invalid byte offset '{rest[0]}'"
            raise LayoutError(msg)
        offset = int(rest[0][1:])
        rest = rest[1:]

    if words[0] == "DATAFILE":
        start, length = 0, rest[0] if rest else None
    else:
        if not rest:
            msg = f"Line {lineno}: {words[0]} without a start position"
            raise LayoutError(msg)
        start, length = _length_to_sectors(rest[0]), rest[1] if len(rest) > 1 else None

    if length is None:
        msg = f"Line {lineno}: track {track.number} has no explicit length"
        raise LayoutError(msg)

    # FILE starts are absolute in the file unless a byte offset is given;
    # DATAFILE data follows whatever came before it
    if offset is not None:
        base = offset
    elif words[0] == "DATAFILE":
        base = file_bytes
    else:
        base = 0
    data_start = base + start * track.sector_size
    if data_start != file_bytes:
        msg = f"Track {track.number} data is not contiguous in the image (byte {data_start}, expected {file_bytes})"
        raise LayoutError(msg)

    if track.file_name is None:
        track.file_name = name
    sectors = _length_to_sectors(length)
    track.length += sectors
    return data_start + sectors * track.sector_size


def read_toc(path: Path) -> DiscLayout:
    """Read and parse a TOC file written by cdrdao."""
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        msg = f"Cannot read TOC file {path}: {e}"
        raise LayoutError(msg) from e
    return parse_toc(text)


def render_cue(layout: DiscLayout, data_file_name: str) -> str:
    """Describe ``layout`` as a CUE sheet for a single BINARY file."""
    lines = []
    if layout.catalog:
        lines.append(f"CATALOG {layout.catalog}")
    lines.append(f'FILE "{data_file_name}" BINARY')

    for track in layout.tracks:
        lines.append(f"  TRACK {track.number:02d} {track.cue_mode}")

        flags = []
        if track.copy_permitted:
            flags.append("DCP")
        if track.four_channel:
            flags.append("4CH")
        if track.pre_emphasis:
            flags.append("PRE")
        if flags:
            lines.append(f"    FLAGS {' '.join(flags)}")
        if track.isrc:
            lines.append(f"    ISRC {track.isrc}")
        if track.silence:
            lines.append(f"    PREGAP {sectors_to_msf(track.silence)}")

        index_one = track.start + track.pregap
        if track.pregap:
            lines.append(f"    INDEX 00 {sectors_to_msf(track.start)}")
        lines.append(f"    INDEX 01 {sectors_to_msf(index_one)}")
        for number, relative in enumerate(track.indexes, start=2):
            lines.append(f"    INDEX {number:02d} {sectors_to_msf(index_one + relative)}")

        if track.postgap:
            lines.append(f"    POSTGAP {sectors_to_msf(track.postgap)}")

    return "\n".join(lines) + "\n"
