from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from .match_utils import parse_year


class SourceType(str, Enum):
    CATALOG = "catalog"
    MARKETPLACE = "marketplace"
    FINGERPRINT = "fingerprint"

    @classmethod
    def _missing_(cls, value: object) -> Optional["SourceType"]:
        if not isinstance(value, str):
            return None
        wanted = value.strip().lower()
        for member in cls:
            if wanted in (member.value, _SOURCE_LABELS[member].lower(), _SOURCE_PREFIXES[member].lower()):
                return member
        return None

    @property
    def label(self) -> str:
        return _SOURCE_LABELS[self]

    @property
    def prefix(self) -> str:
        return _SOURCE_PREFIXES[self]


_SOURCE_LABELS = {
    SourceType.CATALOG: "MusicBrainz",
    SourceType.MARKETPLACE: "Discogs",
    SourceType.FINGERPRINT: "Fingerprint",
}

_SOURCE_PREFIXES = {
    SourceType.CATALOG: "MB",
    SourceType.MARKETPLACE: "DC",
    SourceType.FINGERPRINT: "FP",
}


@dataclass(slots=True, eq=False)
class LocalTrack:
    path: Path
    title: Optional[str] = None
    artist: Optional[str] = None
    album: Optional[str] = None
    album_artist: Optional[str] = None
    genre: Optional[str] = None
    comment: Optional[str] = None
    year: Optional[int] = None
    track_number: Optional[int] = None
    duration_seconds: Optional[int] = None
    loaded_track_count: int = 0

    @property
    def file_name(self) -> str:
        return self.path.name

    def has_tags(self) -> bool:
        return any(
            (
                self.title,
                self.artist,
                self.album,
                self.year,
                self.track_number,
            )
        )


@dataclass(frozen=True, slots=True)
class ReleaseTrack:
    title: str
    artist: Optional[str] = None
    position: Optional[int] = None
    length_seconds: Optional[int] = None


@dataclass(frozen=True, slots=True)
class CandidateRelease:
    source: SourceType
    external_id: str
    artist: Optional[str] = None
    title: Optional[str] = None
    date: Optional[str] = None
    track_count: int = 0
    genre: Optional[str] = None
    cover_art_url: Optional[str] = None
    recording_title: Optional[str] = None
    confidence: Optional[float] = None
    tracks: tuple[ReleaseTrack, ...] = field(default_factory=tuple)

    @property
    def year(self) -> Optional[int]:
        return parse_year(self.date)

    def describe(self) -> str:
        if self.source is SourceType.FINGERPRINT:
            text = f"{self.artist or 'Unknown Artist'} - {self.recording_title or 'Unknown Title'}"
            if self.title:
                text += f" [{self.title}]"
            return text
        text = f"{self.artist or 'Unknown Artist'} - {self.title or 'Unknown Album'}"
        if self.date:
            text += f" ({self.date})"
        if self.track_count > 0:
            text += f" [{self.track_count}T]"
        return text


@dataclass(frozen=True, slots=True)
class ScoredCandidate:
    candidate: CandidateRelease
    score: float
    track: LocalTrack

    @property
    def source(self) -> SourceType:
        return self.candidate.source

    @property
    def path(self) -> Path:
        return self.track.path

    @property
    def confidence(self) -> Optional[float]:
        """AcoustID confidence of a fingerprint hit, clamped to [0, 1]; None for text searches."""
        if self.candidate.source is not SourceType.FINGERPRINT or self.candidate.confidence is None:
            return None
        return min(1.0, max(0.0, self.candidate.confidence))

    @property
    def label(self) -> str:
        text = f"{self.source.prefix}: {self.candidate.describe()} [For: {self.track.file_name}]"
        shown = self.confidence if self.confidence is not None else self.score
        if shown > 0:
            text += f" [{shown * 100:.1f}%]"
        return text

    def bind(self, track: LocalTrack) -> "ScoredCandidate":
        return ScoredCandidate(candidate=self.candidate, score=self.score, track=track)


class ProcessingError(Exception):
    """Raised when a single file or query fails but the batch should keep running."""


class SourceUnavailable(ProcessingError):
    """Transport-level failure talking to an external source."""


class ExternalToolError(ProcessingError):
    """The fingerprint tool could not produce a fingerprint."""


class ToolNotFound(ExternalToolError):
    pass


class ToolExecutionFailed(ExternalToolError):
    def __init__(self, message: str, returncode: Optional[int] = None) -> None:
        super().__init__(message)
        self.returncode = returncode


class FingerprintParseError(ExternalToolError):
    pass


class StaleComparisonError(ValueError):
    """A diff item from a superseded comparison set was used."""


def parse_int(value: object) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        cleaned = value.strip()
        if "/" in cleaned:
            cleaned = cleaned.split("/", 1)[0].strip()
        if cleaned.isdigit():
            return int(cleaned)
        return None
    try:
        as_str = str(value).strip()
    except Exception:
        return None
    if as_str.isdigit():
        return int(as_str)
    return None
