from __future__ import annotations

import json
import logging
import re
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Callable, Optional

from ..config import ProviderSettings
from ..models import SourceUnavailable

logger = logging.getLogger(__name__)

ITUNES_SEARCH_URL = "https://itunes.apple.com/search"
DEEZER_SEARCH_URL = "https://api.deezer.com/search/album"
SEARCH_LIMIT = 20
ITUNES_THUMB_SIZE = "100x100"
ITUNES_FULL_SIZE = "600x600"
SEPARATORS = re.compile(r"[-_.,]")


@dataclass(frozen=True, slots=True)
class CoverArtReference:
    """Where a cover image can be downloaded; the image itself is never fetched."""

    source: str
    url: str
    artist: str
    album: str


def _normalize(text: str) -> str:
    return " ".join(SEPARATORS.sub(" ", text).split()).casefold()


def is_good_match(expected: Optional[str], actual: Optional[str]) -> bool:
    """Cover lookups need a close name match, looser than a release score.

    Exact (ignoring case and punctuation) matches, and ``actual`` starting with
    ``expected`` as a whole word ("Lasso" vs "Lasso Deluxe Edition"), are
    good. Multi-word names also match when every expected word appears in
    ``actual``. Single words must otherwise match exactly.
    """
    if not expected or not expected.strip() or not actual or not actual.strip():
        return False
    wanted = _normalize(expected)
    found = _normalize(actual)
    if wanted == found or found.startswith(wanted + " "):
        return True
    wanted_words = wanted.split()
    if len(wanted_words) > 1:
        found_words = set(found.split())
        return all(word in found_words for word in wanted_words)
    return False


class CoverArtFinder:
    """Album cover lookup across the public iTunes and Deezer search APIs.

    Sources are queried in the configured priority order. A failing source is
    logged and skipped; it never fails the whole search.
    """

    def __init__(self, settings: ProviderSettings) -> None:
        self.useragent = settings.cover_art_useragent
        self.timeout = settings.request_timeout_seconds
        self.sources = list(settings.cover_art_sources)
        self._lookups: dict[str, Callable[[str, str], Optional[CoverArtReference]]] = {
            "itunes": self._search_itunes,
            "deezer": self._search_deezer,
        }

    def search(self, artist: str, album: str) -> list[CoverArtReference]:
        if not (artist or "").strip() or not (album or "").strip():
            return []
        found: list[CoverArtReference] = []
        for source in self.sources:
            lookup = self._lookups.get(source)
            if lookup is None:
                logger.debug("Unknown cover art source %r", source)
                continue
            try:
                reference = lookup(artist, album)
            except SourceUnavailable as exc:
                logger.warning("Cover art lookup on %s failed for %s - %s: %s", source, artist, album, exc)
                continue
            if reference is not None:
                found.append(reference)
        logger.debug("Cover art search for %s - %s: %d sources", artist, album, len(found))
        return found

    def best(self, artist: str, album: str) -> Optional[CoverArtReference]:
        found = self.search(artist, album)
        return found[0] if found else None

    def _search_itunes(self, artist: str, album: str) -> Optional[CoverArtReference]:
        params = {"term": f"{artist} {album}", "entity": "album", "limit": SEARCH_LIMIT}
        data = self._request(f"{ITUNES_SEARCH_URL}?{urllib.parse.urlencode(params)}")
        if not isinstance(data, dict):
            return None
        for result in data.get("results") or []:
            if not isinstance(result, dict):
                continue
            artwork = result.get("artworkUrl100")
            found_artist = result.get("artistName") or ""
            found_album = result.get("collectionName") or ""
            if artwork and is_good_match(artist, found_artist) and is_good_match(album, found_album):
                return CoverArtReference(
                    source="itunes",
                    url=artwork.replace(ITUNES_THUMB_SIZE, ITUNES_FULL_SIZE),
                    artist=found_artist,
                    album=found_album,
                )
        return None

    def _search_deezer(self, artist: str, album: str) -> Optional[CoverArtReference]:
        params = {"q": f"{artist} {album}", "limit": SEARCH_LIMIT}
        data = self._request(f"{DEEZER_SEARCH_URL}?{urllib.parse.urlencode(params)}")
        if not isinstance(data, dict):
            return None
        for result in data.get("data") or []:
            if not isinstance(result, dict):
                continue
            cover = result.get("cover_xl")
            artist_info = result.get("artist")
            found_artist = (artist_info.get("name") if isinstance(artist_info, dict) else None) or ""
            found_album = result.get("title") or ""
            if cover and is_good_match(artist, found_artist) and is_good_match(album, found_album):
                return CoverArtReference(source="deezer", url=cover, artist=found_artist, album=found_album)
        return None

    def _request(self, url: str) -> Optional[object]:
        req = urllib.request.Request(url, headers={"User-Agent": self.useragent})
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                return json.load(resp)
        except urllib.error.HTTPError as exc:
            if exc.code == 404:
                return None
            raise SourceUnavailable(f"Cover art HTTP error {exc.code}") from exc
        except urllib.error.URLError as exc:
            raise SourceUnavailable(f"Cover art request failed: {exc.reason}") from exc
        except (TimeoutError, ConnectionError) as exc:
            raise SourceUnavailable(f"Cover art request failed: {exc}") from exc
        except ValueError as exc:
            logger.warning("Cover art service returned malformed JSON for %s: %s", url.split("?", 1)[0], exc)
            return None
