from __future__ import annotations

import logging
import socket
import time
import urllib.error
from typing import Any, Callable, Optional

import musicbrainzngs

from ..config import ProviderSettings
from ..models import CandidateRelease, ReleaseTrack, SourceType, SourceUnavailable, parse_int

logger = logging.getLogger(__name__)

COVER_ART_URL = "https://coverartarchive.org/release/{release_id}/front"


class MusicBrainzFetcher:
    """Release search against the MusicBrainz web service."""

    source = SourceType.CATALOG

    def __init__(self, settings: ProviderSettings, *, search_limit: int = 10) -> None:
        self.settings = settings
        self.search_limit = search_limit
        musicbrainzngs.set_useragent(
            "tag-reconcile",
            "0.1",
            contact=settings.musicbrainz_useragent,
        )
        # Pacing is done by the orchestrator's rate limiter.
        musicbrainzngs.set_rate_limit(False)

    def search(self, query: str) -> list[CandidateRelease]:
        query = query.strip()
        if not query:
            return []
        response = self._run_with_retries(
            lambda: musicbrainzngs.search_releases(query=query, limit=self.search_limit),
            label="MusicBrainz release search",
        )
        try:
            releases = response.get("release-list", []) if response else []
            return [self._parse_release(release) for release in releases]
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Malformed MusicBrainz response for %r: %s", query, exc)
            return []

    def fetch_details(self, external_id: str) -> Optional[CandidateRelease]:
        response = self._run_with_retries(
            lambda: musicbrainzngs.get_release_by_id(
                external_id, includes=["recordings", "artist-credits"]
            ),
            label="MusicBrainz release lookup",
        )
        if not response or "release" not in response:
            return None
        try:
            return self._parse_release(response["release"], with_tracks=True)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Malformed MusicBrainz release %s: %s", external_id, exc)
            return None

    def _parse_release(self, release: dict, with_tracks: bool = False) -> CandidateRelease:
        release_id = release["id"]
        artist = self._artist_from_credit(release)
        tracks: tuple[ReleaseTrack, ...] = ()
        if with_tracks:
            tracks = tuple(self._iter_tracks(release, artist))
        track_count = len(tracks) if tracks else self._track_count(release)
        return CandidateRelease(
            source=SourceType.CATALOG,
            external_id=release_id,
            artist=artist,
            title=release.get("title") or None,
            date=release.get("date") or None,
            track_count=track_count,
            cover_art_url=COVER_ART_URL.format(release_id=release_id),
            tracks=tracks,
        )

    def _iter_tracks(self, release: dict, fallback_artist: Optional[str]):
        for medium in release.get("medium-list", []) or []:
            for track in medium.get("track-list", []) or []:
                recording = track.get("recording") or {}
                length = parse_int(track.get("length") or recording.get("length"))
                yield ReleaseTrack(
                    title=track.get("title") or recording.get("title") or "",
                    artist=self._artist_from_credit(recording) or fallback_artist,
                    position=parse_int(track.get("position") or track.get("number")),
                    length_seconds=length // 1000 if length else None,
                )

    @staticmethod
    def _artist_from_credit(element: dict) -> Optional[str]:
        phrase = element.get("artist-credit-phrase")
        if phrase:
            return phrase
        for credit in element.get("artist-credit", []) or []:
            if isinstance(credit, dict):
                name = credit.get("name") or (credit.get("artist") or {}).get("name")
                if name:
                    return name
        return None

    @staticmethod
    def _track_count(release: dict) -> int:
        direct = parse_int(release.get("medium-track-count") or release.get("track-count"))
        if direct:
            return direct
        total = 0
        for medium in release.get("medium-list", []) or []:
            count = parse_int(medium.get("track-count"))
            if count:
                total += count
            else:
                total += len(medium.get("track-list", []) or [])
        return total

    def _run_with_retries(self, fn: Callable[[], Any], *, label: str) -> Any:
        retries = max(0, int(self.settings.network_retries))
        backoff = max(0.0, float(self.settings.network_retry_backoff_seconds))
        attempts = 1 + retries
        for attempt in range(1, attempts + 1):
            try:
                return fn()
            except musicbrainzngs.ResponseError as exc:
                cause = getattr(exc, "cause", None)
                if getattr(cause, "code", None) == 404:
                    return None
                raise SourceUnavailable(f"{label} failed: {exc}") from exc
            except Exception as exc:
                if not self._is_transient_network_error(exc):
                    raise
                if attempt >= attempts:
                    raise SourceUnavailable(f"{label} failed: {exc}") from exc
                sleep_for = backoff * (2 ** (attempt - 1))
                logger.debug("%s attempt %d failed (%s); retrying in %.2fs", label, attempt, exc, sleep_for)
                if sleep_for:
                    time.sleep(sleep_for)
        return None

    @staticmethod
    def _is_transient_network_error(exc: Exception) -> bool:
        if isinstance(exc, (socket.gaierror, urllib.error.URLError, TimeoutError, ConnectionError)):
            return True
        return isinstance(exc, musicbrainzngs.NetworkError)
