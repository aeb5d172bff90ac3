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

"""Per-sound metadata files.

Each sound has a JSON sidecar at sounds/metadata/<name>_meta.json:

    {"displayName": "air horn", "filename": "air_horn.mp3", "tags": ["meme"]}

Missing or unreadable sidecars are recreated from the filename. All writes
go through a temp file and a rename so a crash never leaves half a file.
"""

import json
import os
import tempfile
from pathlib import Path

from loguru import logger

from utils.filename import display_name_for


METADATA_DIR = "metadata"
METADATA_SUFFIX = "_meta.json"


def metadata_path(sounds_path: Path, name: str) -> Path:
    return sounds_path / METADATA_DIR / f"{name}{METADATA_SUFFIX}"


def clean_tags(tags) -> list[str]:
    """Trim, lowercase and dedupe tags, keeping first-seen order."""
    seen = []
    for tag in tags or []:
        tag = str(tag).strip().lower()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


def default_metadata(filename: str) -> dict:
    return {
        "displayName": display_name_for(Path(filename).stem),
        "filename": filename,
        "tags": [],
    }


def load_metadata(sounds_path: Path, name: str) -> dict | None:
    """Read a sidecar. Returns None if it is missing or not valid JSON."""
    path = metadata_path(sounds_path, name)
    if not path.exists():
        return None
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"unreadable metadata for {name}: {e}")
        return None
    if not isinstance(data, dict):
        logger.warning(f"metadata for {name} is not an object, ignoring")
        return None
    return data


def save_metadata(sounds_path: Path, name: str, data: dict) -> None:
    """Write a sidecar atomically (temp file + rename)."""
    path = metadata_path(sounds_path, name)
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
            json.dump(data, f, indent=2)
            f.write("\n")
        Path(temp_path).replace(path)
    except Exception:
        if temp_path:
            Path(temp_path).unlink(missing_ok=True)
        raise


def ensure_metadata(sounds_path: Path, filename: str) -> dict:
    """Load a sound's sidecar, creating or repairing it from the filename."""
    name = Path(filename).stem
    data = load_metadata(sounds_path, name)
    if data is None:
        data = default_metadata(filename)
        save_metadata(sounds_path, name, data)
        logger.debug(f"created metadata for {filename}")
        return data

    repaired = False
    if not data.get("displayName"):
        data["displayName"] = display_name_for(name)
        repaired = True
    if data.get("filename") != filename:
        data["filename"] = filename
        repaired = True
    if not isinstance(data.get("tags"), list):
        data["tags"] = []
        repaired = True
    if repaired:
        save_metadata(sounds_path, name, data)
    return data


def delete_metadata(sounds_path: Path, name: str) -> None:
    metadata_path(sounds_path, name).unlink(missing_ok=True)
