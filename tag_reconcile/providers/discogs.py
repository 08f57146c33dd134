from __future__ import annotations

import json
import logging
import re
import urllib.error
import urllib.parse
import urllib.request
from typing import List, Optional

from ..config import ProviderSettings
from ..models import CandidateRelease, ReleaseTrack, SourceType, SourceUnavailable
from ..match_utils import parse_year

logger = logging.getLogger(__name__)

API_ROOT = "https://api.discogs.com"
TRACK_COUNT_PATTERN = re.compile(r"(\d+)\s*tracks?", re.IGNORECASE)


class _NotFound(Exception):
    pass


class DiscogsFetcher:
    source = SourceType.MARKETPLACE

    def __init__(self, settings: ProviderSettings, *, per_page: int = 10) -> None:
        if not settings.discogs_token:
            raise ValueError("Discogs token required")
        self.token = settings.discogs_token
        self.useragent = settings.discogs_useragent
        self.timeout = settings.request_timeout_seconds
        self.per_page = per_page

    def search(self, query: str) -> list[CandidateRelease]:
        query = query.strip()
        if not query:
            return []
        params = {
            "q": query,
            "type": "release",
            "per_page": self.per_page,
            "token": self.token,
        }
        url = f"{API_ROOT}/database/search?{urllib.parse.urlencode(params)}"
        try:
            data = self._request(url)
        except _NotFound:
            return []
        if not isinstance(data, dict):
            return []
        results = data.get("results") or []
        candidates: list[CandidateRelease] = []
        for result in results:
            if not isinstance(result, dict) or "id" not in result:
                logger.debug("Skipping malformed Discogs result %r", result)
                continue
            candidates.append(self._parse_result(result))
        return candidates

    def fetch_details(self, external_id: str) -> Optional[CandidateRelease]:
        url = f"{API_ROOT}/releases/{urllib.parse.quote(str(external_id))}?token={self.token}"
        try:
            data = self._request(url)
        except _NotFound:
            return None
        if not isinstance(data, dict):
            return None
        tracks = tuple(
            ReleaseTrack(
                title=track.get("title") or "",
                artist=self._join_artists(track.get("artists", [])),
                position=self._parse_position(track.get("position")),
            )
            for track in data.get("tracklist", [])
            if isinstance(track, dict) and track.get("type_", "track") == "track"
        )
        genres = data.get("genres") or data.get("styles") or []
        images = data.get("images") or []
        return CandidateRelease(
            source=SourceType.MARKETPLACE,
            external_id=str(data.get("id", external_id)),
            artist=self._join_artists(data.get("artists", [])),
            title=data.get("title") or None,
            date=str(data["year"]) if data.get("year") else data.get("released"),
            track_count=len(tracks),
            genre=", ".join(genres) or None,
            cover_art_url=images[0].get("uri") if images and isinstance(images[0], dict) else None,
            tracks=tracks,
        )

    def _parse_result(self, result: dict) -> CandidateRelease:
        title = result.get("title") or ""
        year = parse_year(result.get("year"))
        genres = [genre for genre in result.get("genre") or [] if isinstance(genre, str) and genre]
        return CandidateRelease(
            source=SourceType.MARKETPLACE,
            external_id=str(result["id"]),
            artist=self._artist_from_result(result),
            title=self._album_from_title(title) or None,
            date=str(year) if year else None,
            track_count=self._track_count(result),
            genre=", ".join(genres) or None,
            cover_art_url=result.get("cover_image") or result.get("thumb") or None,
        )

    @staticmethod
    def _album_from_title(title: str) -> str:
        # Search results are titled "Artist - Album".
        if " - " in title:
            return title.split(" - ", 1)[1].strip()
        return title.strip()

    def _artist_from_result(self, result: dict) -> Optional[str]:
        basic = result.get("basic_information") or {}
        joined = self._join_artists(basic.get("artists", []))
        if joined:
            return joined
        artist = result.get("artist")
        if isinstance(artist, str) and artist:
            return artist
        if isinstance(artist, list):
            names = [name for name in artist if isinstance(name, str) and name]
            if names:
                return ", ".join(names)
        title = result.get("title") or ""
        if " - " in title:
            head = title.split(" - ", 1)[0].strip()
            if head:
                return head
        return None

    @staticmethod
    def _track_count(result: dict) -> int:
        basic = result.get("basic_information") or {}
        tracklist = basic.get("tracklist")
        if isinstance(tracklist, list):
            return len(tracklist)
        formats = basic.get("formats") or result.get("formats") or []
        for fmt in formats:
            if not isinstance(fmt, dict):
                continue
            for desc in fmt.get("descriptions") or []:
                match = TRACK_COUNT_PATTERN.search(str(desc))
                if match:
                    return int(match.group(1))
        return 0

    def _join_artists(self, artists: List[dict]) -> Optional[str]:
        names = [artist.get("name") for artist in artists if isinstance(artist, dict) and artist.get("name")]
        return self._normalize_artist_string(", ".join(names))

    @staticmethod
    def _normalize_artist_string(value: str) -> Optional[str]:
        if not value:
            return None
        unique: list[str] = []
        for chunk in re.split(r"[;,]+", value):
            # Discogs disambiguates homonyms as "Name (2)".
            base = chunk.split(" (")[0].strip()
            if base and base not in unique:
                unique.append(base)
        return ", ".join(unique) if unique else None

    @staticmethod
    def _parse_position(position: Optional[str]) -> Optional[int]:
        if not position:
            return None
        digits = "".join(ch for ch in position if ch.isdigit())
        return int(digits) if digits else None

    def _request(self, url: str) -> Optional[object]:
        req = urllib.request.Request(url, headers={"User-Agent": self.useragent})
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                return json.load(resp)
        except urllib.error.HTTPError as exc:
            if exc.code == 404:
                raise _NotFound() from exc
            raise SourceUnavailable(f"Discogs HTTP error {exc.code}") from exc
        except urllib.error.URLError as exc:
            raise SourceUnavailable(f"Discogs request failed: {exc.reason}") from exc
        except (TimeoutError, ConnectionError) as exc:
            raise SourceUnavailable(f"Discogs request failed: {exc}") from exc
        except ValueError as exc:
            logger.warning("Discogs returned malformed JSON for %s: %s", url.split("?", 1)[0], exc)
            return None
