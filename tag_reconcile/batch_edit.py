from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from .comparison import ComparisonRegistry
from .models import LocalTrack

logger = logging.getLogger(__name__)

PREVIEW_FILE_LIMIT = 10
PATTERN_FIELDS = ("title", "artist", "album")
CLEANUP_FIELDS = ("title", "artist", "album", "genre", "album_artist", "comment")


@dataclass(slots=True)
class BatchChanges:
    """Values set on every selected file at once.

    Blank text values and non-positive years mean "leave unchanged".
    ``find_pattern`` is a plain substring replaced in title, artist and album.
    """

    album: Optional[str] = None
    album_artist: Optional[str] = None
    genre: Optional[str] = None
    year: Optional[int] = None
    auto_number_tracks: bool = False
    cleanup_tags: bool = False
    find_pattern: str = ""
    replace_pattern: str = ""

    def __post_init__(self) -> None:
        self.album = _clean(self.album)
        self.album_artist = _clean(self.album_artist)
        self.genre = _clean(self.genre)
        if self.year is not None and self.year <= 0:
            self.year = None
        if not (self.find_pattern or "").strip():
            self.find_pattern = ""
        self.replace_pattern = self.replace_pattern or ""

    def field_values(self) -> list[tuple[str, str, object]]:
        """(display name, attribute, value) for every field that will be set."""
        values: list[tuple[str, str, object]] = []
        for name, attr in (("Album", "album"), ("Album Artist", "album_artist"), ("Genre", "genre"), ("Year", "year")):
            value = getattr(self, attr)
            if value is not None:
                values.append((name, attr, value))
        return values

    def is_empty(self) -> bool:
        return not (self.field_values() or self.auto_number_tracks or self.cleanup_tags or self.find_pattern)


@dataclass(slots=True)
class BatchEditResult:
    edited: list[LocalTrack] = field(default_factory=list)
    unchanged: int = 0


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def preview_text(tracks: Sequence[LocalTrack], changes: BatchChanges) -> str:
    lines = [f"Preview of changes for {len(tracks)} files:", ""]
    for name, _, value in changes.field_values():
        lines.append(f"• {name} will be set to: {value}")
    if changes.auto_number_tracks:
        lines.append("• Track numbers will be automatically assigned (1, 2, 3...)")
    if changes.cleanup_tags:
        lines.append("• Empty tags will be removed")
    if changes.find_pattern:
        lines.append(f"• Text pattern '{changes.find_pattern}' will be replaced with '{changes.replace_pattern}'")
    lines.append("")
    lines.append("Affected files:")
    for track in tracks[:PREVIEW_FILE_LIMIT]:
        lines.append(f"• {track.file_name}")
    if len(tracks) > PREVIEW_FILE_LIMIT:
        lines.append(f"... and {len(tracks) - PREVIEW_FILE_LIMIT} more files")
    return "\n".join(lines)


def planned_values(track: LocalTrack, position: int, changes: BatchChanges) -> dict[str, object]:
    """New working values for ``track``, the ``position``-th (1-based) file of the selection.

    Only attributes whose value actually changes are returned.
    """
    values: dict[str, object] = {}
    for _, attr, value in changes.field_values():
        values[attr] = value
    if changes.auto_number_tracks:
        values["track_number"] = position
    if changes.find_pattern:
        for attr in PATTERN_FIELDS:
            current = values.get(attr, getattr(track, attr))
            if current:
                values[attr] = current.replace(changes.find_pattern, changes.replace_pattern)
    if changes.cleanup_tags:
        for attr in CLEANUP_FIELDS:
            current = values.get(attr, getattr(track, attr))
            if isinstance(current, str) and not current.strip():
                values[attr] = None
    return {attr: value for attr, value in values.items() if getattr(track, attr) != value}


def apply_batch(
    tracks: Sequence[LocalTrack],
    changes: BatchChanges,
    registry: ComparisonRegistry,
) -> BatchEditResult:
    """Set ``changes`` on the working values of ``tracks`` in selection order.

    Each edited track gets a "Batch Edit" history entry on its diff engine.
    """
    result = BatchEditResult()
    if changes.is_empty():
        logger.info("No batch changes selected")
        result.unchanged = len(tracks)
        return result
    for position, track in enumerate(tracks, start=1):
        values = planned_values(track, position, changes)
        if not values:
            result.unchanged += 1
            continue
        registry.engine_for(track).apply_edits(values, "Batch Edit")
        result.edited.append(track)
    logger.info("Batch edit changed %d of %d files", len(result.edited), len(tracks))
    return result
