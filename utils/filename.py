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

"""Filename cleanup for stored sounds and their display names."""

import re


# Matched pairs of brackets and whatever sits between them
_BRACKETED = re.compile(r"[\[\]{}()][^\[\]{}()]*[\[\]{}()]")
_BRACKET_CHARS = re.compile(r"[\[\]{}()]")
_HASHTAG = re.compile(r"#\S+")

# Emoji blocks, variation selectors and zero width joiner
_EMOJI = re.compile(
    "["
    "\U0001F600-\U0001F64F"  # emoticons
    "\U0001F300-\U0001F5FF"  # symbols & pictographs
    "\U0001F680-\U0001F6FF"  # transport & map
    "\U0001F1E0-\U0001F1FF"  # flags
    "\u2600-\u26FF"          # misc symbols
    "\u2700-\u27BF"          # dingbats
    "\U0001F900-\U0001F9FF"  # supplemental symbols
    "\U0001FA00-\U0001FAFF"  # chess, extended-A
    "\uFE00-\uFE0F"          # variation selectors
    "\u200D"                 # zero width joiner
    "]"
)
_DISPLAY_UNSAFE = re.compile(r"[^a-zA-Z0-9 _-]")
_WHITESPACE = re.compile(r"\s+")

_STORAGE_UNSAFE = re.compile(r"[^a-zA-Z0-9_-]")
_REPEATED_UNDERSCORE = re.compile(r"_{2,}")


def normalize_file_name(name: str) -> str:
    """
    Strip a filename down to something readable.

    Removes bracketed text, hashtags and emoji, then keeps only letters,
    digits, spaces, dashes and underscores.

    Example:
        "airhorn (remix) #meme 🔥" -> "airhorn"
    """
    normalized = _BRACKETED.sub("", name)
    normalized = _BRACKET_CHARS.sub("", normalized)
    normalized = _HASHTAG.sub("", normalized)
    normalized = _EMOJI.sub("", normalized)
    normalized = _DISPLAY_UNSAFE.sub("", normalized)
    return _WHITESPACE.sub(" ", normalized).strip()


def validate_file_name(name: str) -> str:
    """Make a name safe for disk: [a-z0-9_-] only, no runs of underscores."""
    sanitized = _STORAGE_UNSAFE.sub("_", name)
    return _REPEATED_UNDERSCORE.sub("_", sanitized).lower()


def display_name_for(stem: str) -> str:
    """Default display name for a stored sound (falls back to the stem)."""
    return normalize_file_name(stem).replace("_", " ").strip() or stem
