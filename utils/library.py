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

"""Sound library: the audio files under sounds_path and their metadata."""

import asyncio
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from loguru import logger

from utils.filename import validate_file_name
from utils.metadata import clean_tags, delete_metadata, ensure_metadata, save_metadata


# Formats FFmpeg decodes for us (.opus is passed through untouched)
ALLOWED_EXTENSIONS = ('.mp3', '.wav', '.ogg', '.m4a', '.flac', '.webm', '.opus')


class LibraryError(Exception):
    """A library operation could not be completed."""


class SoundNotFoundError(LibraryError):
    """No sound with the requested name."""


class InvalidSoundError(LibraryError):
    """An upload was rejected (bad type or unusable name)."""


@dataclass
class SoundFile:
    """One playable sound.

    name is the file stem and the sound's identity; display_name and tags
    come from its metadata sidecar.
    """
    name: str
    display_name: str
    path: Path
    size: int
    uploaded_at: datetime
    tags: list[str] = field(default_factory=list)


def format_file_size(size: int) -> str:
    """Human readable size: 512 B, 1.50 KB, 2.25 MB."""
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.2f} KB"
    return f"{size / (1024 * 1024):.2f} MB"


def is_allowed_extension(filename: str) -> bool:
    return Path(filename).suffix.lower() in ALLOWED_EXTENSIONS


class SoundLibrary:
    """Manages sound discovery, uploads, deletes and tags.

    Sounds are audio files directly under sounds_path (subfolders and hidden
    files are ignored). Results are cached in memory; scan() refreshes the
    cache from disk and every mutation keeps it in sync.

    Directory structure:
        sounds/
        ├── airhorn.mp3
        ├── sad_trombone.ogg
        └── metadata/
            ├── airhorn_meta.json
            └── sad_trombone_meta.json

    Blocking filesystem work runs in a thread.
    """

    def __init__(self, sounds_path: Path) -> None:
        self.sounds_path = Path(sounds_path)
        self._sounds: dict[str, SoundFile] = {}

    async def scan(self) -> list[SoundFile]:
        """Rescan sounds_path and rebuild the cache."""
        sounds = await asyncio.to_thread(self._scan_sync)
        self._sounds = {sound.name.lower(): sound for sound in sounds}

        count = len(sounds)
        logger.info(f"scanned {count} sound{'' if count == 1 else 's'}")
        return self.list_sounds()

    def _scan_sync(self) -> list[SoundFile]:
        if not self.sounds_path.exists():
            logger.warning(f"sounds path does not exist: {self.sounds_path}")
            return []

        sounds = []
        for path in sorted(self.sounds_path.iterdir(), key=lambda p: p.name.lower()):
            if not path.is_file() or path.name.startswith('.'):
                continue
            if not is_allowed_extension(path.name):
                continue
            try:
                sounds.append(self._load_sound(path))
            except OSError as e:
                logger.warning(f"skipping {path.name}: {e}")
        return sounds

    def _load_sound(self, path: Path) -> SoundFile:
        stat = path.stat()
        meta = ensure_metadata(self.sounds_path, path.name)
        return SoundFile(
            name=path.stem,
            display_name=meta.get("displayName") or path.stem,
            path=path,
            size=stat.st_size,
            uploaded_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            tags=clean_tags(meta.get("tags")),
        )

    def list_sounds(self) -> list[SoundFile]:
        """All sounds, sorted by name."""
        return sorted(self._sounds.values(), key=lambda s: s.name.lower())

    def get(self, name: str) -> SoundFile | None:
        """Look up a sound by name (case-insensitive)."""
        return self._sounds.get(name.strip().lower())

    def require(self, name: str) -> SoundFile:
        if sound := self.get(name):
            return sound
        raise SoundNotFoundError(f"sound '{name}' not found")

    def all_tags(self) -> list[str]:
        return sorted({tag for sound in self._sounds.values() for tag in sound.tags})

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    async def save(self, filename: str, data: bytes) -> SoundFile:
        """
        Store an uploaded sound under a sanitized name.

        An existing sound with the same name is replaced.

        Raises:
            InvalidSoundError: Bad extension or empty name
            LibraryError: Directory not writable or write failed
        """
        source = Path(filename)
        ext = source.suffix.lower()
        if ext not in ALLOWED_EXTENSIONS:
            raise InvalidSoundError(f"unsupported file type: {ext or 'none'}")

        stem = validate_file_name(source.stem).strip('_')
        if not stem:
            raise InvalidSoundError("invalid file name after sanitization")

        sound = await asyncio.to_thread(self._save_sync, stem, ext, data)
        self._sounds[sound.name.lower()] = sound
        logger.info(f"saved sound {sound.name} ({format_file_size(sound.size)})")
        return sound

    def _save_sync(self, stem: str, ext: str, data: bytes) -> SoundFile:
        try:
            self.sounds_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LibraryError(f"cannot create sounds directory: {e}") from e
        if not os.access(self.sounds_path, os.W_OK):
            raise LibraryError("sounds directory is not writable")

        target = self.sounds_path / f"{stem}{ext}"
        temp_path = None
        try:
            temp_fd, temp_path = tempfile.mkstemp(dir=self.sounds_path, suffix='.tmp')
            with os.fdopen(temp_fd, 'wb') as f:
                f.write(data)
            Path(temp_path).replace(target)
        except OSError as e:
            if temp_path:
                Path(temp_path).unlink(missing_ok=True)
            raise LibraryError(f"failed to write {target.name}: {e}") from e

        # Same name, different format: the new upload wins
        previous = self._sounds.get(stem.lower())
        if previous and previous.path != target:
            previous.path.unlink(missing_ok=True)

        return self._load_sound(target)

    async def delete(self, name: str) -> None:
        """
        Remove a sound and its metadata.

        Raises:
            SoundNotFoundError: No such sound
        """
        sound = self.require(name)
        await asyncio.to_thread(self._delete_sync, sound)
        self._sounds.pop(sound.name.lower(), None)
        logger.info(f"deleted sound {sound.name}")

    def _delete_sync(self, sound: SoundFile) -> None:
        try:
            sound.path.unlink(missing_ok=True)
            delete_metadata(self.sounds_path, sound.name)
        except OSError as e:
            raise LibraryError(f"failed to delete {sound.name}: {e}") from e

    async def set_tags(self, name: str, tags: list[str]) -> SoundFile:
        """
        Replace a sound's tags (trimmed, lowercased, deduped).

        Raises:
            SoundNotFoundError: No such sound
        """
        sound = self.require(name)
        cleaned = clean_tags(tags)
        meta = {
            "displayName": sound.display_name,
            "filename": sound.path.name,
            "tags": cleaned,
        }
        await asyncio.to_thread(save_metadata, self.sounds_path, sound.name, meta)
        sound.tags = cleaned
        logger.debug(f"tags for {sound.name}: {cleaned}")
        return sound
