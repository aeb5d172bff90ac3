# Copyright (C) 2026 grodz
#
# This file is part of Button Gremlin.
#
# Button Gremlin is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""Logging setup: loguru sinks with 4-character level names.

Level names are mapped to fixed-width tags for aligned output:
    DEBUG -> DBUG, INFO -> INFO, NOTICE -> NOTE, WARNING -> WARN,
    ERROR -> FAIL, CRITICAL -> CRIT

discord.py and aiohttp log through the standard library; their records are
forwarded into loguru so everything shares one format.
"""

import logging
import sys

from loguru import logger


# User-facing level names -> loguru levels
LOG_LEVEL_MAP = {
    "minimal": "NOTICE",
    "verbose": "INFO",
    "debug": "DEBUG",
    # Raw names (LOG_LEVEL=info, warn, ...)
    "trace": "TRACE",
    "info": "INFO",
    "warn": "WARNING",
    "warning": "WARNING",
    "error": "ERROR",
    "fatal": "CRITICAL",
}

LEVEL_TAGS = {
    "TRACE": "TRCE",
    "DEBUG": "DBUG",
    "INFO": "INFO",
    "NOTICE": "NOTE",
    "SUCCESS": "GOOD",
    "WARNING": "WARN",
    "ERROR": "FAIL",
    "CRITICAL": "CRIT",
}

LIBRARY_LOGGERS = ("discord", "aiohttp")

LOG_FORMAT = "[{time:YYYY-MM-DD HH:mm:ss}] [{extra[tag]}] {name}: {message}"


class InterceptHandler(logging.Handler):
    """Forward standard library log records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip logging module frames so loguru reports the real caller
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _tag(record) -> bool:
    record["extra"]["tag"] = LEVEL_TAGS.get(record["level"].name, record["level"].name[:4])
    return True


def resolve_level(name: str | None) -> str:
    """Map a configured level name to a loguru level. Unknown names fall back to INFO."""
    return LOG_LEVEL_MAP.get((name or "verbose").strip().lower(), "INFO")


def setup_logging(level: str | None = "verbose", destination: str | None = None,
                  pretty: bool = True) -> str:
    """
    Configure loguru for the process.

    Args:
        level: minimal, verbose, debug (or a raw level name)
        destination: Optional file to log to in addition to stderr
        pretty: Colorize stderr output

    Returns:
        The loguru level name that was applied
    """
    resolved = resolve_level(level)

    try:
        logger.level("NOTICE")
    except ValueError:
        logger.level("NOTICE", no=25, color="<cyan><bold>")

    logger.remove()
    logger.add(sys.stderr, level=resolved, format=LOG_FORMAT, filter=_tag, colorize=pretty)
    if destination:
        logger.add(destination, level=resolved, format=LOG_FORMAT, filter=_tag,
                   rotation="10 MB", retention=5, encoding="utf-8")

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    library_level = logging.DEBUG if resolved in ("DEBUG", "TRACE") else logging.WARNING
    for name in LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    return resolved
