"""Shared test configuration and fixtures."""

import logging

import pytest

from cdmedia.config import CdmediaConfig
from cdmedia.log import cleanup_logging


@pytest.fixture(scope="function", autouse=True)
def cleanup_logging_handlers():
    """Automatically cleanup logging handlers after each test to prevent ResourceWarnings."""
    yield
    cleanup_logging()


@pytest.fixture(scope="function", autouse=True)
def reset_logging():
    """Reset logging configuration after each test."""
    yield
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)
    root_logger.setLevel(logging.WARNING)


@pytest.fixture
def config(tmp_path):
    """Configuration with logs kept inside the test directory."""
    return CdmediaConfig(log_dir=tmp_path / "logs")


@pytest.fixture
def library(tmp_path):
    """Folder that receives bundles."""
    path = tmp_path / "library"
    path.mkdir()
    return path


@pytest.fixture
def destination(library):
    return library / "Test Disc.cdmedia"
