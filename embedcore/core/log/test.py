"""Tests for core logging module."""

import logging
from io import StringIO

import pytest

from .lib import get_logger, parse_level, setup_logging


class TestLogging:
    """Test core logging API."""

    @pytest.mark.unit
    def test_get_logger(self) -> None:
        """Verify logger instance creation."""
        logger = get_logger("test")
        assert logger.name == "test"
        assert isinstance(logger, logging.Logger)

    @pytest.mark.unit
    def test_get_logger_default_name(self) -> None:
        """Verify default logger name."""
        logger = get_logger()
        assert logger.name == "embedcore"

    @pytest.mark.unit
    def test_parse_level_accepts_names_and_numbers(self) -> None:
        """Level names are case-insensitive, numbers pass through."""
        assert parse_level("debug") == logging.DEBUG
        assert parse_level(" Warning ") == logging.WARNING
        assert parse_level(logging.ERROR) == logging.ERROR

    @pytest.mark.unit
    def test_parse_level_unknown_name_falls_back_to_info(self) -> None:
        """Unrecognized level names resolve to INFO."""
        assert parse_level("chatty") == logging.INFO

    @pytest.mark.unit
    def test_setup_logging(self) -> None:
        """Verify logging setup."""
        stream = StringIO()
        setup_logging(level="DEBUG", stream=stream)
        logger = get_logger("test_setup")
        logger.debug("test message")

        # basicConfig is a no-op once logging is configured, so only the
        # API contract is checked here.
        assert logger.level == logging.NOTSET
