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

"""Configuration management for Button Gremlin."""

import asyncio
import copy
import os
import sys
import tempfile
from pathlib import Path
from typing import Any, Callable

import yaml
from loguru import logger


# =============================================================================
# DEFAULT SETTINGS SCHEMA
# =============================================================================
# These defaults are used when settings.yaml is missing or incomplete.
# Environment variables can override any setting (see _apply_env_overrides).
#
# Library Settings:
#   sounds_path            - Folder holding the sound files (metadata/ lives inside)
#   list_page_size         - Sounds shown per page in /list (1-25)
#   max_upload_mb          - Largest accepted upload in megabytes (1-100)
#
# Voice Settings (voice.*):
#   idle_timeout           - Seconds of quiet before auto-disconnect (blank = never)
#
# Web Settings (web.*):
#   enabled                - Start the HTTP API alongside the bot
#   host / port            - Bind address for the HTTP API
#   api_key                - Bearer key required by every /api route (required if enabled)
#   static_path            - Built front-end to serve at / (ignored if missing)
#
# UI Settings (ui.*):
#   brief_auto_delete      - Seconds before auto-deleting simple responses (0 = never)
#
# Logging Settings (logging.*):
#   level                  - Log verbosity: "minimal", "verbose", or "debug"
#   destination            - Optional log file path
# =============================================================================

DEFAULT_IDLE_TIMEOUT = 10

DEFAULT_SETTINGS = {
    "sounds_path": "./sounds",
    "list_page_size": 10,
    "max_upload_mb": 10,
    "voice": {
        "idle_timeout": DEFAULT_IDLE_TIMEOUT,  # seconds, blank to disable
    },
    "web": {
        "enabled": False,
        "host": "0.0.0.0",
        "port": 3000,
        "api_key": "",
        "static_path": "./web/dist",
    },
    # UI behavior
    "ui": {
        "brief_auto_delete": 10,  # seconds, 0 to disable
    },
    # Logging (LOG_LEVEL env var overrides this)
    "logging": {
        "level": "verbose",  # minimal, verbose, debug
        "destination": None,
    },
}

# =============================================================================
# DEFAULT MESSAGES SCHEMA
# =============================================================================
# Bot responses with per-message enable/disable control.
# Each message has two fields:
#   text    - The message template (supports {variables} for formatting)
#   enabled - Whether to show this message (True) or acknowledge silently (False)
#
# The respond() helper in ResponseMixin checks the enabled flag before sending.
# =============================================================================

DEFAULT_MESSAGES = {
    # General
    "pong": {"text": "pong", "enabled": True},
    "guild_only": {"text": "this only works in a server", "enabled": True},

    # Voice
    "not_in_vc": {"text": "hop in a voice channel first", "enabled": True},
    "playing": {"text": "playing **{name}**", "enabled": True},
    "play_failed": {"text": "couldn't play that, check my voice permissions", "enabled": True},
    "disconnected": {"text": "left voice", "enabled": True},
    "not_connected": {"text": "i'm not in a voice channel", "enabled": True},

    # Library
    "sound_not_found": {"text": "no sound called '{name}'", "enabled": True},
    "library_empty": {"text": "no sounds yet, use `/upload` to add some", "enabled": True},
    "invalid_page": {"text": "pick a page between 1 and {pages}", "enabled": True},
    "list_title": {"text": "available sounds", "enabled": True},
    "list_footer": {"text": "page {page} of {pages} • total: {total} sound{plural}", "enabled": True},

    # Upload
    "file_too_large": {"text": "too big, max is {max_mb}MB", "enabled": True},
    "invalid_file_type": {"text": "can't use that file, allowed: {allowed}", "enabled": True},
    "uploaded": {"text": "uploaded **{name}**, play it with `/play {name}`", "enabled": True},
    "upload_failed": {"text": "upload failed, try again", "enabled": True},

    # Errors
    "error_generic": {"text": "something broke, try again", "enabled": True},
}


class ConfigError(Exception):
    """Invalid configuration that should stop startup."""


def parse_idle_timeout(value: Any = DEFAULT_IDLE_TIMEOUT) -> float | None:
    """Parse the idle disconnect timeout.

    Accepts a positive integer, or a string of ASCII digits, of seconds.
    None and "" disable idle disconnect. Anything else is a startup error.

    Returns:
        Timeout in seconds, or None when disabled

    Raises:
        ConfigError: Value is not a positive whole number of seconds
    """
    if value is None or value == "":
        return None

    if isinstance(value, int) and not isinstance(value, bool):
        seconds = value
    elif isinstance(value, str) and value.isascii() and value.isdigit():
        seconds = int(value)
    else:
        raise ConfigError(f"voice idle timeout must be a positive integer, got {value!r}")

    if seconds <= 0:
        raise ConfigError(f"voice idle timeout must be a positive integer, got {value!r}")
    return float(seconds)


def deep_merge(user: dict, defaults: dict) -> dict:
    """Merge user config with defaults, preserving nested structure.

    User values override defaults. For nested dicts, merges recursively.
    Unknown keys (not in defaults) are logged as warnings and ignored.
    """
    result = copy.deepcopy(defaults)
    for key, value in user.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(value, result[key])
        elif key in defaults:
            result[key] = value
        else:
            logger.warning(f"unknown config key: {key}")
    return result


def load_yaml(path: Path, defaults: dict) -> dict:
    """Load YAML file with defaults and error handling.

    If file doesn't exist or is invalid, returns defaults without error.
    Invalid YAML syntax is logged and defaults are used.
    """
    if not path.exists():
        return copy.deepcopy(defaults)

    try:
        with open(path, 'r', encoding='utf-8') as f:
            user = yaml.safe_load(f) or {}

        if not isinstance(user, dict):
            logger.warning(f"{path.name} invalid, using defaults")
            return copy.deepcopy(defaults)

        return deep_merge(user, defaults)

    except yaml.YAMLError:
        logger.opt(exception=True).error(f"failed to parse {path.name}")
        return copy.deepcopy(defaults)


def save_yaml(path: Path, data: dict, header: str = "") -> None:
    """Save YAML atomically with optional header comment.

    Writes to a temp file in the same directory, then renames over path.
    Creates parent directories if they don't exist.
    """
    temp_path = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_fd, temp_path = tempfile.mkstemp(dir=path.parent, suffix='.tmp')
        try:
            f = os.fdopen(temp_fd, 'w', encoding='utf-8')
        except Exception:
            os.close(temp_fd)
            raise
        with f:
            if header:
                f.write(header)
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
        Path(temp_path).replace(path)
    except Exception:
        if temp_path:
            Path(temp_path).unlink(missing_ok=True)
        raise


def _set_nested(settings: dict, dotted_key: str, value: Any) -> bool:
    """Assign settings["a"]["b"] for "a.b". Returns False on a corrupted structure."""
    parts = dotted_key.split(".")
    target = settings
    for part in parts[:-1]:
        target = target.setdefault(part, {})
        if not isinstance(target, dict):
            return False
    target[parts[-1]] = value
    return True


class ConfigManager:
    """Manages bot configuration from settings.yaml and messages.yaml.

    Loads configuration at startup with this priority (highest wins):
    1. DEFAULT_SETTINGS / DEFAULT_MESSAGES (built-in defaults)
    2. settings.yaml / messages.yaml (user customization)
    3. Environment variables (Docker/deployment override)

    Access patterns:
        config_manager.get("key")           # Get setting value
        config_manager.get("web.port")      # Dotted access into sections
        config_manager.msg("key", **vars)   # Get formatted message
        config_manager.is_enabled("key")    # Check if message should show
        config_manager.idle_timeout         # Parsed idle timeout (seconds | None)

    Attributes:
        config_path: Directory containing settings.yaml and messages.yaml
        settings: Loaded settings dict (after validation)
        messages: Loaded messages dict
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = config_path
        self.settings: dict = {}
        self.messages: dict = {}
        self.idle_timeout: float | None = float(DEFAULT_IDLE_TIMEOUT)

    async def load(self) -> None:
        """Load settings and messages from YAML, apply env overrides, validate.

        Generates missing config files with default values and header comments.

        Raises:
            ConfigError: The idle timeout is malformed
        """
        settings_path = self.config_path / "settings.yaml"
        self.settings = await asyncio.to_thread(
            load_yaml, settings_path, DEFAULT_SETTINGS
        )

        if not settings_path.exists():
            header = "# Button Gremlin Settings\n# Edit these values to customize behavior\n\n"
            await asyncio.to_thread(save_yaml, settings_path, DEFAULT_SETTINGS, header)
            logger.debug(f"generated {settings_path.name}")

        messages_path = self.config_path / "messages.yaml"
        self.messages = await asyncio.to_thread(
            load_yaml, messages_path, DEFAULT_MESSAGES
        )

        if not messages_path.exists():
            header = "# Button Gremlin Responses\n# Customize what the bot says here\n\n"
            await asyncio.to_thread(save_yaml, messages_path, DEFAULT_MESSAGES, header)
            logger.debug(f"generated {messages_path.name}")

        self._apply_env_overrides()
        self._validate_settings()

        logger.debug("config loaded")

    def _validate_settings(self) -> None:
        """Validate and clamp settings after loading from all sources.

        Null top-level keys and null keys inside web/ui/logging are restored to
        their defaults. Bounded integers are clamped with a warning. The idle
        timeout is parsed strictly: a bad value raises ConfigError.
        """
        for key in list(self.settings):
            if self.settings[key] is None and key in DEFAULT_SETTINGS:
                self.settings[key] = copy.deepcopy(DEFAULT_SETTINGS[key])
        for section in ("web", "ui", "logging"):
            sect = self.settings.get(section)
            defaults = DEFAULT_SETTINGS.get(section, {})
            if isinstance(sect, dict):
                for key in list(sect):
                    if sect[key] is None and key in defaults:
                        sect[key] = defaults[key]

        validations = {
            "list_page_size": (1, 25),
            "max_upload_mb": (1, 100),
            "web.port": (1, 65535),
            "ui.brief_auto_delete": (0, None),
        }
        for key, (min_val, max_val) in validations.items():
            value = self.get(key)
            try:
                v = int(value)
                if max_val is not None:
                    clamped = max(min_val, min(max_val, v))
                    range_str = f"{min_val}-{max_val}"
                else:
                    clamped = max(min_val, v)
                    range_str = f"{min_val}+"
                if clamped != v:
                    logger.warning(f"{key}={v} out of range, clamped to {clamped} (valid: {range_str})")
                _set_nested(self.settings, key, clamped)
            except (ValueError, TypeError):
                logger.warning(f"{key}={value!r} invalid, using default")
                _set_nested(self.settings, key, _lookup(DEFAULT_SETTINGS, key))

        voice = self.settings.get("voice")
        if not isinstance(voice, dict):
            voice = self.settings["voice"] = dict(DEFAULT_SETTINGS["voice"])
        self.idle_timeout = parse_idle_timeout(voice.get("idle_timeout"))
        if self.idle_timeout is None:
            logger.info("idle disconnect disabled")

    def _apply_env_overrides(self) -> None:
        """Override settings with environment variables.

        The env_map dict maps ENV_VAR_NAME -> (setting_key, converter). Empty
        variables are ignored, except VOICE_IDLE_TIMEOUT_SECONDS where blank
        means "disabled". Invalid values are logged as warnings and ignored.
        """
        def non_negative(env_key: str) -> Callable[[str], int]:
            def validate(x: str) -> int:
                v = int(x)
                if v < 0:
                    logger.warning(f"{env_key}={v} out of range, clamped to 0 (valid: 0+)")
                    return 0
                return v
            return validate

        def flag(x: str) -> bool:
            return x.lower() == "true"

        env_map = {
            "SOUNDS_PATH": ("sounds_path", str),
            "LIST_PAGE_SIZE": ("list_page_size", int),
            "MAX_UPLOAD_MB": ("max_upload_mb", int),
            "WEB_ENABLED": ("web.enabled", flag),
            "WEB_HOST": ("web.host", str),
            "WEB_PORT": ("web.port", int),
            "WEB_API_KEY": ("web.api_key", str),
            "WEB_STATIC_PATH": ("web.static_path", str),
            "LOG_LEVEL": ("logging.level", str),
            "LOG_DESTINATION": ("logging.destination", str),
            "BRIEF_AUTO_DELETE": ("ui.brief_auto_delete", non_negative("BRIEF_AUTO_DELETE")),
        }

        for env_key, (setting_key, converter) in env_map.items():
            if value := os.getenv(env_key):
                try:
                    if _set_nested(self.settings, setting_key, converter(value)):
                        logger.debug(f"{env_key} overrides {setting_key}")
                    else:
                        logger.warning(f"invalid config structure for {setting_key}")
                except (ValueError, TypeError) as e:
                    logger.warning(f"invalid env var {env_key}: {e}")

        # Validated strictly in _validate_settings
        idle = os.getenv("VOICE_IDLE_TIMEOUT_SECONDS")
        if idle is not None:
            _set_nested(self.settings, "voice.idle_timeout", idle)
            logger.debug("VOICE_IDLE_TIMEOUT_SECONDS overrides voice.idle_timeout")

    def get(self, key: str, default=None) -> Any:
        """Get a setting value. Dotted keys ("web.port") reach into sections."""
        value = _lookup(self.settings, key)
        return default if value is None else value

    def msg(self, key: str, **kwargs) -> str:
        """Get formatted message text from messages.yaml.

        Returns the key itself if the message is not found.
        """
        entry = self.messages.get(key, DEFAULT_MESSAGES.get(key, {}))
        template = entry.get("text", key) if isinstance(entry, dict) else entry
        try:
            return template.format(**kwargs)
        except KeyError:
            return template

    def is_enabled(self, key: str) -> bool:
        """Check if a message should be shown to the user."""
        entry = self.messages.get(key, DEFAULT_MESSAGES.get(key, {}))
        return entry.get("enabled", True) if isinstance(entry, dict) else True

    @property
    def sounds_path(self) -> Path:
        return Path(self.get("sounds_path", DEFAULT_SETTINGS["sounds_path"]))


def _lookup(settings: dict, dotted_key: str) -> Any:
    target: Any = settings
    for part in dotted_key.split("."):
        if not isinstance(target, dict):
            return None
        target = target.get(part)
    return target


def validate_configuration() -> None:
    """Validate configuration before bot starts, exit on failure.

    Called in main() before the bot is built. Checks performed:
    - DISCORD_TOKEN is set and has valid format (3 dot-separated sections)
    - Sounds and config directories exist (creates if missing)
    - WEB_API_KEY is set when WEB_ENABLED=true
    - VOICE_IDLE_TIMEOUT_SECONDS, if set, parses

    Also warns (non-fatal) if GUILD_ID is not set.

    On failure: Logs all errors and calls sys.exit(1).
    """
    errors = []

    token = os.getenv("DISCORD_TOKEN")
    if not token:
        errors.append("DISCORD_TOKEN not set - add it to .env or the container environment")
    else:
        parts = token.strip().split(".")
        if len(parts) != 3:
            errors.append(
                "DISCORD_TOKEN format appears invalid.\n"
                "Token should have three dot-separated sections.\n"
                "Get a fresh token from: https://discord.com/developers/applications"
            )
        elif any(not part for part in parts):
            errors.append(
                "DISCORD_TOKEN has empty sections.\n"
                "Get a fresh token from: https://discord.com/developers/applications"
            )

    if not os.getenv("GUILD_ID"):
        logger.warning("GUILD_ID not set - commands may take up to 1 hour to show up")

    sounds_path = Path(os.getenv("SOUNDS_PATH") or DEFAULT_SETTINGS["sounds_path"])
    if not sounds_path.exists():
        try:
            sounds_path.mkdir(parents=True)
            logger.warning(f"created missing sounds directory: {sounds_path}")
        except OSError as e:
            errors.append(f"cannot create sounds directory {sounds_path}: {e}")

    _default_config = Path(__file__).parent.parent / "config"
    config_path = Path(os.getenv("CONFIG_PATH") or str(_default_config))
    if not config_path.exists():
        try:
            config_path.mkdir(parents=True)
            logger.warning(f"created missing config directory: {config_path}")
        except OSError as e:
            errors.append(f"cannot create config directory {config_path}: {e}")

    if os.getenv("WEB_ENABLED", "").lower() == "true" and not os.getenv("WEB_API_KEY"):
        errors.append("WEB_API_KEY is required when WEB_ENABLED=true")

    idle = os.getenv("VOICE_IDLE_TIMEOUT_SECONDS")
    if idle is not None:
        try:
            parse_idle_timeout(idle)
        except ConfigError as e:
            errors.append(f"VOICE_IDLE_TIMEOUT_SECONDS: {e}")

    if errors:
        for error in errors:
            logger.error(error)
        sys.exit(1)
