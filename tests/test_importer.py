"""Tests for the background import API."""

import threading
from unittest.mock import Mock, patch

import pytest

from cdmedia.core.importer import ImageImporter
from cdmedia.error_handling import ConfigurationError, DependencyError
from cdmedia.rip.models import OutcomeStatus, RipConfiguration, SessionState
from fake_cdrdao import FakeCdrdaoRunner


class BlockingRunner(FakeCdrdaoRunner):
    """Holds the rip after its first line until released or cancelled."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.reading = threading.Event()
        self.release = threading.Event()
        self.on_line = self._block

    def _block(self, index, line):
        if index == 0:
            self.reading.set()
            self.release.wait(5)

    def cancel(self, handle):
        super().cancel(handle)
        self.release.set()


@pytest.fixture
def runner():
    return BlockingRunner()


@pytest.fixture
def importer(config, runner):
    return ImageImporter(config, runner=runner)


@pytest.fixture
def rip_config(destination):
    return RipConfiguration("/dev/sr0", destination)


class TestBeginImport:
    def test_runs_in_background(self, importer, runner, rip_config, destination):
        handle = importer.begin_import(rip_config)

        assert runner.reading.wait(5)
        assert handle.state is SessionState.RUNNING
        assert not handle.is_done
        assert importer.active_imports == [handle]

        runner.release.set()
        outcome = handle.wait(5)

        assert outcome.status is OutcomeStatus.SUCCEEDED
        assert handle.is_done
        assert handle.progress.percent == 100.0
        assert destination.is_dir()
        assert importer.active_imports == []

    def test_duplicate_destination_rejected(self, importer, runner, rip_config):
        first = importer.begin_import(rip_config)
        assert runner.reading.wait(5)

        with pytest.raises(ConfigurationError, match="already running"):
            importer.begin_import(RipConfiguration("/dev/sr1", rip_config.destination_bundle_path))

        assert len(runner.calls) == 1
        runner.release.set()
        assert first.wait(5).succeeded

    def test_destination_free_again_after_completion(self, importer, runner, rip_config, library):
        runner.release.set()
        importer.begin_import(rip_config).wait(5)

        other = RipConfiguration("/dev/sr0", library / "Second.cdmedia")
        assert importer.begin_import(other).wait(5).succeeded

    def test_invalid_request_raises_before_launch(self, importer, runner, destination):
        destination.mkdir()

        with pytest.raises(ConfigurationError, match="already exists"):
            importer.begin_import(RipConfiguration("/dev/sr0", destination))

        assert runner.calls == []
        assert importer.active_imports == []

    def test_blank_device_uses_configured_drive(self, config, runner, library):
        config.optical_drive = "/dev/sr3"
        importer = ImageImporter(config, runner=runner)
        runner.release.set()

        handle = importer.begin_import(RipConfiguration(" ", library / "Drive.cdmedia"))

        assert handle.wait(5).succeeded
        assert handle.rip_config.source_device == "/dev/sr3"
        assert runner.last_args[runner.last_args.index("--device") + 1] == "/dev/sr3"


class TestControl:
    def test_cancel(self, importer, runner, rip_config, destination, library):
        handle = importer.begin_import(rip_config)
        assert runner.reading.wait(5)

        importer.request_cancel(handle)
        importer.request_cancel(handle)
        outcome = handle.wait(5)

        assert outcome.status is OutcomeStatus.CANCELLED
        assert runner.cancel_calls == 1
        assert not destination.exists()
        assert list(library.iterdir()) == []
        assert importer.active_imports == []

    def test_subscribe(self, importer, runner, rip_config):
        handle = importer.begin_import(rip_config)
        assert runner.reading.wait(5)
        on_progress = Mock()
        on_complete = Mock()

        importer.subscribe(handle, on_progress=on_progress, on_complete=on_complete)
        runner.release.set()
        outcome = handle.wait(5)

        on_complete.assert_called_once_with(outcome)
        assert on_progress.call_args_list[-1].args == (100.0,)

    def test_wait_timeout(self, importer, runner, rip_config):
        handle = importer.begin_import(rip_config)
        assert runner.reading.wait(5)

        assert handle.wait(0.05) is None

        runner.release.set()
        assert handle.wait(5) is not None


class TestPrerequisites:
    @patch("cdmedia.error_handling.shutil.which", return_value=None)
    def test_missing_cdrdao(self, mock_which, importer):
        errors = importer.check_prerequisites()

        assert len(errors) == 1
        assert isinstance(errors[0], DependencyError)
        assert "cdrdao" in errors[0].message
        mock_which.assert_called_once_with("cdrdao")

    @patch("cdmedia.error_handling.shutil.which", return_value="/usr/bin/cdrdao")
    def test_all_present(self, mock_which, importer):
        assert importer.check_prerequisites() == []
