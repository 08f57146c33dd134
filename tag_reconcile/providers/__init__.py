"""
External lookup sources.

- MusicBrainz release search (catalog)
- Discogs database search (marketplace)
- AcoustID fingerprint identification via Chromaprint's ``fpcalc``
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Protocol

from ..models import CandidateRelease


class SourceFetcher(Protocol):
    """Text-search source.

    ``search`` returns an empty list when nothing matches and raises
    :class:`~tag_reconcile.models.SourceUnavailable` on transport errors.
    """

    def search(self, query: str) -> list[CandidateRelease]: ...

    def fetch_details(self, external_id: str) -> Optional[CandidateRelease]: ...


class FingerprintIdentifier(Protocol):
    def extract_fingerprint(self, path: Path) -> tuple[int, str]: ...

    def lookup(self, fingerprint: str, duration_seconds: int) -> list[CandidateRelease]: ...


__all__ = ["FingerprintIdentifier", "SourceFetcher"]
