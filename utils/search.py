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

"""Fuzzy search for sounds using RapidFuzz.

Each sound is scored against its name, display name and tags; the best
strategy wins. Used by /play autocomplete.
"""

from rapidfuzz import fuzz
from rapidfuzz.utils import default_process

from utils.library import SoundFile


# Discord autocomplete limit
MAX_CHOICES = 25

# Below this a match is noise
AUTOCOMPLETE_THRESHOLD = 61


def score_sound(query: str, sound: SoundFile) -> float:
    """
    Score how well query matches one sound (0-100, or 101 for an exact name).

    Strategies, best score wins:
    1. WRatio on the display name (general purpose)
    2. partial_ratio on the name (substring like "horn" -> "airhorn")
    3. token_set_ratio on "display name + tags" (word order independence)
    """
    query_processed = default_process(query)
    display = sound.display_name
    tagged = " ".join([display, *sound.tags])

    score_display = fuzz.WRatio(query, display, processor=default_process)

    # Length penalty: if query is longer than the name, the name is just a fragment
    score_partial_raw = fuzz.partial_ratio(query, sound.name, processor=default_process)
    name_len = len(default_process(sound.name))
    if len(query_processed) > name_len:
        score_partial = score_partial_raw * (0.5 + 0.5 * name_len / len(query_processed))
    else:
        score_partial = score_partial_raw

    score_tags = fuzz.token_set_ratio(query, tagged, processor=default_process)
    target_len = len(default_process(tagged))
    length_ratio = min(len(query_processed) / max(target_len, 1), 1.0)
    score_tags *= 0.7 + 0.3 * length_ratio

    score = max(score_display, score_partial, score_tags)

    # Exact name wins ties
    if query_processed in (default_process(sound.name), default_process(display)):
        score += 1
    return score


def fuzzy_search(query: str, sounds: list[SoundFile], max_results: int = MAX_CHOICES) -> list[tuple[SoundFile, float]]:
    """Search sounds, best first. Empty queries return nothing."""
    if not query or not sounds:
        return []

    # No sound name is 100+ chars
    query = query[:100]
    if not default_process(query):
        return []

    results = [(sound, score_sound(query, sound)) for sound in sounds]
    results.sort(key=lambda x: (-x[1], x[0].name))
    return results[:max_results]


def autocomplete_search(query: str, sounds: list[SoundFile], max_results: int = MAX_CHOICES) -> list[SoundFile]:
    """Sounds for the autocomplete dropdown.

    A blank query lists the first sounds alphabetically; otherwise matches at
    AUTOCOMPLETE_THRESHOLD or better, best first.
    """
    if not query or not query.strip():
        return sounds[:max_results]
    results = fuzzy_search(query, sounds, max_results=max_results)
    return [sound for sound, score in results if score >= AUTOCOMPLETE_THRESHOLD]
