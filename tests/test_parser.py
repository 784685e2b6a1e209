"""Tests for cdrdao output classification."""

import pytest

from cdmedia.rip.parser import (
    CdrdaoOutputParser,
    FatalError,
    FatalMatcher,
    LeadoutFound,
    PercentMatcher,
    PositionMatcher,
    Progress,
    StageChanged,
    ToolWarning,
    TrackListed,
    TrackListingMatcher,
    TrackStarted,
    TrackStartMatcher,
    WarningMatcher,
)
from fake_cdrdao import CLEAN_OUTPUT


@pytest.fixture
def parser():
    return CdrdaoOutputParser()


class TestMatchers:
    """Each matcher recognises its own line shape and nothing else."""

    def test_fatal_prefix(self, parser):
        event = FatalMatcher().match("ERROR: Unit not ready, giving up.", parser)
        assert event == FatalError("Unit not ready, giving up.")

    @pytest.mark.parametrize(
        "line",
        [
            "Cannot open SCSI device '/dev/sr0': Device or resource busy",
            "No disk in drive",
            "Medium not present",
        ],
    )
    def test_fatal_conditions_without_prefix(self, parser, line):
        assert FatalMatcher().match(line, parser) == FatalError(line)

    def test_warning_prefix(self, parser):
        event = WarningMatcher().match("WARNING: Found 4 C2 errors at 01:02:30", parser)
        assert event == ToolWarning("Found 4 C2 errors at 01:02:30")

    def test_sector_error_report(self, parser):
        line = "Found 12 C1/C2 errors at 12:00:03"
        assert WarningMatcher().match(line, parser) == ToolWarning(line)

    def test_retry_notice(self, parser):
        line = "Read error at sector 1234, retrying"
        assert WarningMatcher().match(line, parser) == ToolWarning(line)

    @pytest.mark.parametrize(
        "line",
        [
            "WARNING: Unit not ready, still trying...",
            "Unit not ready, still trying...",
            "Device or resource busy, retrying",
        ],
    )
    def test_recoverable_conditions_are_not_fatal(self, parser, line):
        assert FatalMatcher().match(line, parser) is None
        assert isinstance(WarningMatcher().match(line, parser), ToolWarning)

    def test_track_listing_row(self, parser):
        line = " 2      AUDIO   0      52:27:47(236072)     03:15:52( 14677)"
        assert TrackListingMatcher().match(line, parser) == TrackListed(2, 236072)
        assert TrackListingMatcher().match("Leadout AUDIO   0      55:43:24(250749)", parser) is None

    def test_track_start_data(self, parser):
        line = 'Copying data track 1 (MODE1_RAW): start 00:00:00, length 52:27:47 to "data.bin"...'
        assert TrackStartMatcher().match(line, parser) == TrackStarted(1)

    def test_track_start_audio_range(self, parser):
        line = 'Copying audio tracks 2-13: start 52:27:47, length 12:30:00 to "data.bin"...'
        assert TrackStartMatcher().match(line, parser) == TrackStarted(2)

    def test_position_needs_leadout(self, parser):
        assert PositionMatcher().match("00:00:15", parser) is None

        parser.leadout_sector = 30
        assert PositionMatcher().match("00:00:15", parser) == Progress(50.0)

    def test_position_names_track_from_listing(self, parser):
        parser.leadout_sector = 30
        parser.track_starts = {1: 0, 2: 10, 3: 20}

        assert PositionMatcher().match("00:00:10", parser) == Progress(pytest.approx(100 * 10 / 30), 1)
        assert PositionMatcher().match("00:00:11", parser) == Progress(pytest.approx(100 * 11 / 30), 2)
        assert PositionMatcher().match("00:00:25", parser) == Progress(pytest.approx(100 * 25 / 30), 3)

    def test_percent_line(self, parser):
        assert PercentMatcher().match("Progress: 42.5%", parser) == Progress(42.5)
        assert PercentMatcher().match("17%", parser) == Progress(17.0)
        assert PercentMatcher().match("Copied 17% of something", parser) is None


class TestClassify:
    """Test the parser as the session uses it."""

    def test_unrecognised_lines(self, parser):
        assert parser.classify("Cdrdao version 1.2.4 - (C) Andreas Mueller") is None
        assert parser.classify("Track   Mode    Flags  Start                Length") is None
        assert parser.classify("------------------------------------------------------------") is None

    def test_leadout_sets_disc_length(self, parser):
        event = parser.classify("Leadout AUDIO   0      55:43:24(250749)")

        assert event == LeadoutFound(250749)
        assert parser.leadout_sector == 250749

    def test_full_clean_run(self, parser):
        events = [e for e in map(parser.classify, CLEAN_OUTPUT) if e is not None]

        assert events == [
            StageChanged("Reading table of contents"),
            TrackListed(1, 0),
            TrackListed(2, 10),
            LeadoutFound(30),
            TrackStarted(1),
            Progress(pytest.approx(100 * 5 / 30), 1),
            Progress(pytest.approx(100 * 10 / 30), 1),
            TrackStarted(2),
            Progress(pytest.approx(100 * 20 / 30), 2),
            Progress(100.0, 2),
            StageChanged("Finishing"),
        ]

    def test_progress_is_clamped(self, parser):
        assert parser.classify("250%") == Progress(100.0)

    def test_backwards_and_duplicate_progress_suppressed(self, parser):
        assert parser.classify("40%") == Progress(40.0)
        assert parser.classify("40%") is None
        assert parser.classify("35%") is None
        assert parser.classify("41%") == Progress(41.0)

    def test_error_prefix_wins_over_retry_wording(self, parser):
        event = parser.classify("ERROR: Read failed after retrying")
        assert isinstance(event, FatalError)

    def test_drive_spin_up_is_a_warning(self, parser):
        event = parser.classify("WARNING: Unit not ready, still trying...")
        assert event == ToolWarning("Unit not ready, still trying...")

    def test_reset(self, parser):
        parser.classify("Leadout AUDIO   0      00:00:30(    30)")
        parser.classify(" 1      AUDIO   0      00:00:00(     0)     00:00:30(    30)")
        parser.classify("90%")
        parser.reset()

        assert parser.leadout_sector is None
        assert parser.track_starts == {}
        assert parser.classify("10%") == Progress(10.0)

    def test_custom_matchers(self):
        class DoneMatcher:
            def match(self, line, parser):
                return StageChanged("Done") if line == "done" else None

        parser = CdrdaoOutputParser(matchers=(DoneMatcher(),))

        assert parser.classify("done") == StageChanged("Done")
        assert parser.classify("ERROR: ignored by this parser") is None
