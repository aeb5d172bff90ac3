"""
Tests for logging setup.

These tests verify that:
1. Configured level names map onto loguru levels
2. The NOTICE level exists and is tagged in output
3. Standard library records (discord.py, aiohttp) reach loguru sinks
"""

import logging
import sys

import pytest
from loguru import logger

from utils.logging import resolve_level, setup_logging


@pytest.fixture
def restore_logger():
    yield
    logger.remove()
    logger.add(sys.stderr)
    logging.basicConfig(handlers=[], force=True)


class TestResolveLevel:
    """Tests for resolve_level()."""

    @pytest.mark.parametrize("name, expected", [
        ("minimal", "NOTICE"),
        ("verbose", "INFO"),
        ("DEBUG", "DEBUG"),
        (" warn ", "WARNING"),
        ("trace", "TRACE"),
        (None, "INFO"),
        ("loud", "INFO"),
    ])
    def test_mapping(self, name, expected):
        assert resolve_level(name) == expected


class TestSetupLogging:
    """Tests for setup_logging()."""

    def test_notice_and_tags_in_file_sink(self, tmp_path, restore_logger):
        log_file = tmp_path / "gremlin.log"

        assert setup_logging("minimal", str(log_file), pretty=False) == "NOTICE"
        logger.info("hidden at minimal")
        logger.log("NOTICE", "ready")
        logger.warning("careful")

        text = log_file.read_text(encoding="utf-8")
        assert "[NOTE]" in text and "ready" in text
        assert "[WARN]" in text
        assert "hidden at minimal" not in text

    def test_library_records_are_forwarded(self, tmp_path, restore_logger):
        log_file = tmp_path / "gremlin.log"
        setup_logging("verbose", str(log_file), pretty=False)

        logging.getLogger("discord.gateway").warning("gateway hiccup")
        logging.getLogger("discord.client").info("library chatter")

        text = log_file.read_text(encoding="utf-8")
        assert "gateway hiccup" in text
        assert "library chatter" not in text

    def test_debug_lets_library_records_through(self, tmp_path, restore_logger):
        log_file = tmp_path / "gremlin.log"
        setup_logging("debug", str(log_file), pretty=False)

        logging.getLogger("aiohttp.access").debug("GET /api/sounds")

        assert "GET /api/sounds" in log_file.read_text(encoding="utf-8")
