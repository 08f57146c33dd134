from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from threading import Lock
from typing import Callable, Iterator, Optional

from .events import ComparisonUpdated, EventBus, publish
from .match_utils import parse_year
from .models import CandidateRelease, LocalTrack, ReleaseTrack, SourceType, StaleComparisonError, parse_int

logger = logging.getLogger(__name__)

# (display name, LocalTrack attribute) in presentation order.
TRACKED_FIELDS: tuple[tuple[str, str], ...] = (
    ("Title", "title"),
    ("Artist", "artist"),
    ("Album", "album"),
    ("Album Artist", "album_artist"),
    ("Genre", "genre"),
    ("Year", "year"),
    ("Track", "track_number"),
    ("Comment", "comment"),
)
INT_FIELDS = {"year", "track_number"}


def field_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, int):
        return str(value) if value > 0 else ""
    return str(value).strip()


def _pick(*values: object) -> str:
    for value in values:
        text = field_text(value)
        if text:
            return text
    return ""


def _canonical(attribute: str, text: str) -> str:
    """Year and track values in the form ``_apply`` stores, e.g. ``1969-09-26`` -> ``1969``, ``3/12`` -> ``3``."""
    if attribute not in INT_FIELDS or not text:
        return text
    number = parse_year(text) if attribute == "year" else parse_int(text)
    return str(number) if number else text


class ComparisonMode(str, Enum):
    ALL = "all"
    CHANGED_ONLY = "changed"
    MISSING_ONLY = "missing"


class DiffState(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass(slots=True)
class TagSnapshot:
    title: str = ""
    artist: str = ""
    album: str = ""
    album_artist: str = ""
    genre: str = ""
    year: str = ""
    track_number: str = ""
    comment: str = ""

    def value_for(self, attribute: str) -> str:
        return getattr(self, attribute)

    @classmethod
    def from_track(cls, track: LocalTrack) -> "TagSnapshot":
        return cls(**{attr: field_text(getattr(track, attr)) for _, attr in TRACKED_FIELDS})

    @classmethod
    def from_candidate(
        cls,
        candidate: CandidateRelease,
        preserve_from: Optional[LocalTrack] = None,
    ) -> "TagSnapshot":
        """Values a candidate proposes; fields the source does not know are kept from ``preserve_from``."""
        keep = cls.from_track(preserve_from) if preserve_from is not None else cls()
        if candidate.source is SourceType.FINGERPRINT:
            return cls(
                title=_pick(candidate.recording_title, keep.title),
                artist=_pick(candidate.artist, keep.artist),
                album=_pick(candidate.title, keep.album),
                album_artist=_pick(candidate.artist, keep.album_artist),
                genre=keep.genre,
                year=keep.year,
                track_number=keep.track_number,
                comment=keep.comment,
            )
        if candidate.source is SourceType.MARKETPLACE:
            return cls(
                title=keep.title,
                artist=_pick(candidate.artist, keep.artist),
                album=_pick(candidate.title, keep.album),
                album_artist=_pick(candidate.artist, keep.album_artist),
                genre=_pick(candidate.genre, keep.genre),
                year=_pick(candidate.year, keep.year),
                track_number=keep.track_number,
                comment=keep.comment,
            )
        detail = _detail_track(candidate, preserve_from)
        return cls(
            title=_pick(detail.title if detail else None, keep.title),
            artist=_pick(detail.artist if detail else None, candidate.artist, keep.artist),
            album=_pick(candidate.title, keep.album),
            album_artist=_pick(candidate.artist, keep.album_artist),
            genre=keep.genre,
            year=_pick(candidate.year, keep.year),
            track_number=_pick(detail.position if detail else None, keep.track_number),
            comment=keep.comment,
        )


def _detail_track(candidate: CandidateRelease, track: Optional[LocalTrack]) -> Optional[ReleaseTrack]:
    if not candidate.tracks or track is None or not track.track_number:
        return None
    for entry in candidate.tracks:
        if entry.position == track.track_number:
            return entry
    return None


@dataclass(slots=True, eq=False)
class TagFieldDiff:
    field_name: str
    attribute: str
    original_value: str
    new_value: str
    is_accepted: bool = False
    is_rejected: bool = False
    is_changed: bool = field(default=False, init=False)
    is_new: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        self.original_value = _canonical(self.attribute, field_text(self.original_value))
        self.new_value = _canonical(self.attribute, field_text(self.new_value))
        self.is_changed = self.original_value != self.new_value
        self.is_new = not self.original_value and bool(self.new_value)

    @property
    def state(self) -> DiffState:
        if self.is_accepted:
            return DiffState.ACCEPTED
        if self.is_rejected:
            return DiffState.REJECTED
        return DiffState.PENDING

    @property
    def is_pending(self) -> bool:
        return self.state is DiffState.PENDING

    @property
    def is_missing(self) -> bool:
        return not self.original_value and bool(self.new_value)

    @property
    def status(self) -> str:
        if self.is_accepted:
            return "Accepted"
        if self.is_rejected:
            return "Rejected"
        if self.is_new:
            return "New"
        if self.is_changed and not self.new_value:
            return "Removed"
        if self.is_changed:
            return "Changed"
        return "Same"

    def matches(self, mode: ComparisonMode) -> bool:
        if mode is ComparisonMode.CHANGED_ONLY:
            return self.is_changed or self.is_new
        if mode is ComparisonMode.MISSING_ONLY:
            return self.is_missing
        return True


@dataclass(frozen=True, slots=True)
class ChangeHistoryEntry:
    timestamp: datetime
    action: str
    description: str

    def render(self) -> str:
        return f"{self.timestamp:%Y-%m-%d %H:%M:%S} {self.action}: {self.description}"


@dataclass(slots=True)
class TagComparisonSet:
    path: Path
    description: str
    created_at: datetime
    items: list[TagFieldDiff] = field(default_factory=list)

    def __iter__(self) -> Iterator[TagFieldDiff]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def __contains__(self, item: object) -> bool:
        return any(existing is item for existing in self.items)

    def get(self, name: str) -> Optional[TagFieldDiff]:
        for item in self.items:
            if item.field_name == name or item.attribute == name:
                return item
        return None

    def filtered(self, mode: ComparisonMode = ComparisonMode.ALL) -> list[TagFieldDiff]:
        return [item for item in self.items if item.matches(mode)]

    @property
    def changed_count(self) -> int:
        return sum(1 for item in self.items if item.is_changed or item.is_new)

    @property
    def accepted_count(self) -> int:
        return sum(1 for item in self.items if item.is_accepted)

    @property
    def rejected_count(self) -> int:
        return sum(1 for item in self.items if item.is_rejected)

    @property
    def pending_changes(self) -> list[TagFieldDiff]:
        return [item for item in self.items if item.is_pending and (item.is_changed or item.is_new)]


class TagDiffEngine:
    """Field-level review of one track's proposed tag changes.

    The engine owns the track's working values while a comparison is open.
    Each diff item starts Pending and may move once to Accepted or Rejected;
    only :meth:`revert_all_changes` returns items to Pending.
    """

    def __init__(
        self,
        track: LocalTrack,
        *,
        events: Optional[EventBus] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.track = track
        self.events = events
        self._clock = clock
        self.comparison: Optional[TagComparisonSet] = None
        self.history: list[ChangeHistoryEntry] = []

    @property
    def path(self) -> Path:
        return self.track.path

    def update_comparison(self, snapshot: TagSnapshot, description: str = "Unknown") -> TagComparisonSet:
        items = [
            TagFieldDiff(
                field_name=name,
                attribute=attr,
                original_value=field_text(getattr(self.track, attr)),
                new_value=snapshot.value_for(attr),
            )
            for name, attr in TRACKED_FIELDS
        ]
        self.comparison = TagComparisonSet(
            path=self.track.path,
            description=description,
            created_at=self._clock(),
            items=items,
        )
        changed = self.comparison.changed_count
        if changed:
            self._record("Changes Detected", f"Found {changed} potential changes from {description}")
        else:
            self._record("No Changes", f"No differences found from {description}")
        logger.debug("Comparison for %s from %s: %d changes", self.track.path, description, changed)
        publish(self.events, ComparisonUpdated(self.track.path, description))
        return self.comparison

    def accept_change(self, item: TagFieldDiff) -> bool:
        self._check_current(item)
        if not item.is_pending or not self._accept(item):
            return False
        self._notify("accept")
        return True

    def reject_change(self, item: TagFieldDiff) -> bool:
        self._check_current(item)
        if not item.is_pending:
            return False
        self._apply(item.attribute, item.original_value)
        item.is_accepted = False
        item.is_rejected = True
        self._record("Change Rejected", f"{item.field_name}: kept original value '{item.original_value}'")
        self._notify("reject")
        return True

    def accept_all_changes(self) -> int:
        if self.comparison is None:
            return 0
        pending = [item for item in self.comparison if item.is_pending]
        accepted = sum(1 for item in pending if self._accept(item))
        if accepted:
            self._record("Bulk Accept", f"Accepted {accepted} changes")
            self._notify("accept all")
        return accepted

    def revert_all_changes(self) -> int:
        if self.comparison is None:
            return 0
        reverted = 0
        for item in self.comparison:
            if not item.is_pending:
                reverted += 1
            self._apply(item.attribute, item.original_value)
            item.is_accepted = False
            item.is_rejected = False
        self._record("Bulk Revert", f"Reverted {reverted} changes to original values")
        self._notify("revert")
        return reverted

    def apply_edits(self, values: dict[str, object], action: str) -> None:
        """Write values straight to the working tags, bypassing review.

        An open comparison is dropped since its originals no longer match.
        """
        if self.comparison is not None:
            logger.debug("Dropping open comparison for %s before %s", self.track.path, action)
            self.comparison = None
        names = {attr: name for name, attr in TRACKED_FIELDS}
        for attr, value in values.items():
            old = field_text(getattr(self.track, attr))
            setattr(self.track, attr, value)
            self._record(action, f"{names.get(attr, attr)}: '{old}' -> '{field_text(value)}'")
        self._notify(action.lower())

    def filtered(self, mode: ComparisonMode = ComparisonMode.ALL) -> list[TagFieldDiff]:
        if self.comparison is None:
            return []
        return self.comparison.filtered(mode)

    def clear_comparison(self) -> None:
        self.comparison = None

    def status_text(self) -> str:
        if self.comparison is None:
            return "Ready"
        pending = len(self.comparison.pending_changes)
        accepted = self.comparison.accepted_count
        if pending:
            return f"{pending} changes pending"
        if accepted:
            return f"{accepted} changes applied"
        return "No changes"

    def get_comparison_summary(self) -> str:
        if self.comparison is None or not self.comparison.items:
            return "No comparison data available"
        lines = [
            f"Tag comparison for: {self.track.file_name}",
            f"Source: {self.comparison.description}",
            "",
        ]
        for item in self.comparison:
            flags = []
            if item.is_new:
                flags.append("new")
            elif item.is_changed:
                flags.append("changed")
            if item.is_accepted:
                flags.append("accepted")
            if item.is_rejected:
                flags.append("rejected")
            note = f" [{', '.join(flags)}]" if flags else ""
            lines.append(f"{item.field_name:<13} {item.original_value!r} -> {item.new_value!r}{note}")
        lines.append("")
        lines.append(
            f"Summary: {self.comparison.changed_count} changes detected, "
            f"{self.comparison.accepted_count} accepted, {self.comparison.rejected_count} rejected"
        )
        return "\n".join(lines)

    def _check_current(self, item: TagFieldDiff) -> None:
        if self.comparison is None or item not in self.comparison:
            raise StaleComparisonError(f"{item.field_name} does not belong to the current comparison")

    def _accept(self, item: TagFieldDiff) -> bool:
        if not self._apply(item.attribute, item.new_value):
            return False
        item.is_accepted = True
        item.is_rejected = False
        self._record("Change Accepted", f"{item.field_name}: '{item.original_value}' -> '{item.new_value}'")
        return True

    def _apply(self, attribute: str, text: str) -> bool:
        if attribute in INT_FIELDS:
            if not text:
                setattr(self.track, attribute, None)
                return True
            number = parse_int(text)
            if number is None:
                logger.warning("Not applying non-numeric %s %r to %s", attribute, text, self.track.path)
                return False
            setattr(self.track, attribute, number)
            return True
        setattr(self.track, attribute, text or None)
        return True

    def _record(self, action: str, description: str) -> None:
        self.history.append(ChangeHistoryEntry(self._clock(), action, description))

    def _notify(self, action: str) -> None:
        publish(self.events, ComparisonUpdated(self.track.path, action))


class ComparisonRegistry:
    """One :class:`TagDiffEngine` per loaded file, created on first use."""

    def __init__(
        self,
        *,
        events: Optional[EventBus] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.events = events
        self._clock = clock
        self._lock = Lock()
        self._engines: dict[Path, TagDiffEngine] = {}

    def engine_for(self, track: LocalTrack) -> TagDiffEngine:
        with self._lock:
            engine = self._engines.get(track.path)
            if engine is None or engine.track is not track:
                engine = TagDiffEngine(track, events=self.events, clock=self._clock)
                self._engines[track.path] = engine
            return engine

    def get(self, path: Path) -> Optional[TagDiffEngine]:
        with self._lock:
            return self._engines.get(Path(path))

    def discard(self, path: Path) -> None:
        with self._lock:
            self._engines.pop(Path(path), None)

    def engines(self) -> list[TagDiffEngine]:
        with self._lock:
            return list(self._engines.values())
