from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from .cache import ResultCache
from .comparison import ComparisonRegistry, TagComparisonSet, TagSnapshot
from .config import MatchingSettings
from .events import ComparisonFocusRequested, EventBus, ResultsUpdated, publish
from .match_utils import normalize
from .models import LocalTrack, ProcessingError, ScoredCandidate, SourceType
from .providers import FingerprintIdentifier, SourceFetcher
from .rate_limit import RateLimiter
from .scoring import best_of, rank_candidates, ranking_key

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BatchSummary:
    source: SourceType
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    empty: int = 0
    skipped: int = 0
    cancelled: bool = False

    def describe(self) -> str:
        text = (
            f"{self.source.label}: {self.succeeded}/{self.total} matched, "
            f"{self.empty} without results, {self.failed} failed, {self.skipped} skipped"
        )
        if self.cancelled:
            text += " (cancelled)"
        return text


def group_tracks(tracks: Sequence[LocalTrack]) -> list[list[LocalTrack]]:
    """Group tracks sharing the same normalized (artist, album), in first-seen order."""
    groups: dict[tuple[str, str], list[LocalTrack]] = {}
    for track in tracks:
        key = (normalize(track.artist or ""), normalize(track.album or ""))
        groups.setdefault(key, []).append(track)
    return list(groups.values())


def build_query(track: LocalTrack) -> str:
    return f"{track.artist or ''} {track.album or ''}".strip()


class BatchQueryOrchestrator:
    """Runs searches against the lookup sources and feeds the result cache.

    Blocking fetcher calls run in the default executor. Every unit of work
    (an album group for text searches, a file for fingerprinting) is isolated:
    failures are logged and counted and the batch moves on.
    """

    def __init__(
        self,
        cache: ResultCache,
        registry: ComparisonRegistry,
        *,
        fetchers: Optional[Mapping[SourceType, SourceFetcher]] = None,
        identifier: Optional[FingerprintIdentifier] = None,
        limiters: Optional[Mapping[SourceType, RateLimiter]] = None,
        events: Optional[EventBus] = None,
        matching: Optional[MatchingSettings] = None,
    ) -> None:
        self.cache = cache
        self.registry = registry
        self.fetchers = dict(fetchers or {})
        self.identifier = identifier
        self.limiters = dict(limiters or {})
        self.events = events
        self.matching = matching or MatchingSettings()

    async def search(
        self,
        tracks: Sequence[LocalTrack],
        source: SourceType,
        cancel_event: Optional[threading.Event] = None,
    ) -> BatchSummary:
        source = SourceType(source)
        if source is SourceType.FINGERPRINT:
            raise ValueError("Fingerprint lookups go through identify()")
        groups = group_tracks(tracks)
        summary = BatchSummary(source=source, total=len(groups))
        fetcher = self.fetchers.get(source)
        if fetcher is None:
            logger.warning("%s is not configured; skipping %d queries", source.label, len(groups))
            summary.skipped = len(groups)
            return summary

        self.cache.clear_by_source(source)
        loop = asyncio.get_running_loop()
        for group in groups:
            if cancel_event is not None and cancel_event.is_set():
                summary.cancelled = True
                break
            representative = group[0]
            query = build_query(representative)
            if not query:
                logger.debug("No artist/album to search for %s", representative.path)
                summary.skipped += 1
                continue
            try:
                await self._throttle(source)
                raw = await loop.run_in_executor(None, fetcher.search, query)
                ranked = rank_candidates(
                    representative,
                    raw,
                    raw_limit=self.matching.raw_limit,
                    keep=self.matching.keep_per_file,
                )
            except ProcessingError as exc:
                logger.warning("%s search for %r failed: %s", source.label, query, exc)
                summary.failed += 1
                continue
            except Exception:
                logger.exception("%s search for %r failed", source.label, query)
                summary.failed += 1
                continue
            if not ranked:
                summary.empty += 1
            else:
                summary.succeeded += 1
            for track in group:
                self._store(track, [item.bind(track) for item in ranked], source)
            logger.debug("%s query %r: %d candidates for %d files", source.label, query, len(ranked), len(group))
        logger.info(summary.describe())
        return summary

    async def identify(
        self,
        tracks: Sequence[LocalTrack],
        auto_apply: bool = True,
        cancel_event: Optional[threading.Event] = None,
    ) -> BatchSummary:
        source = SourceType.FINGERPRINT
        summary = BatchSummary(source=source, total=len(tracks))
        if self.identifier is None:
            logger.warning("Fingerprinting is not configured; skipping %d files", len(tracks))
            summary.skipped = len(tracks)
            return summary

        self.cache.clear_by_source(source)
        loop = asyncio.get_running_loop()
        for track in tracks:
            if cancel_event is not None and cancel_event.is_set():
                summary.cancelled = True
                break
            try:
                duration, fingerprint = await loop.run_in_executor(
                    None, self.identifier.extract_fingerprint, track.path
                )
                await self._throttle(source)
                raw = await loop.run_in_executor(None, self.identifier.lookup, fingerprint, duration)
                ranked = rank_candidates(
                    track,
                    raw,
                    raw_limit=self.matching.raw_limit,
                    keep=self.matching.keep_per_file,
                )
            except ProcessingError as exc:
                logger.warning("Fingerprint identification failed for %s: %s", track.path, exc)
                summary.failed += 1
                continue
            except Exception:
                logger.exception("Fingerprint identification failed for %s", track.path)
                summary.failed += 1
                continue
            self._store(track, ranked, source)
            if not ranked:
                summary.empty += 1
                continue
            summary.succeeded += 1
            if auto_apply:
                best = best_of(ranked, key=ranking_key)
                confidence = ranking_key(best)
                self.apply_candidate(best, description=f"Fingerprint: {confidence * 100:.1f}% match")
        logger.info(summary.describe())
        return summary

    async def run_sources(
        self,
        tracks: Sequence[LocalTrack],
        sources: Sequence[SourceType],
        cancel_event: Optional[threading.Event] = None,
        auto_apply: bool = True,
    ) -> list[BatchSummary]:
        jobs = []
        for source in dict.fromkeys(SourceType(source) for source in sources):
            if source is SourceType.FINGERPRINT:
                jobs.append(self.identify(tracks, auto_apply=auto_apply, cancel_event=cancel_event))
            else:
                jobs.append(self.search(tracks, source, cancel_event=cancel_event))
        return list(await asyncio.gather(*jobs))

    async def load_details(self, scored: ScoredCandidate) -> ScoredCandidate:
        """Replace a cached summary candidate with its full release (tracklist included)."""
        fetcher = self.fetchers.get(scored.source)
        if fetcher is None or scored.candidate.tracks:
            return scored
        loop = asyncio.get_running_loop()
        try:
            await self._throttle(scored.source)
            detailed = await loop.run_in_executor(None, fetcher.fetch_details, scored.candidate.external_id)
        except ProcessingError as exc:
            logger.warning("Could not fetch %s release %s: %s", scored.source.label, scored.candidate.external_id, exc)
            return scored
        except Exception:
            logger.exception("Could not fetch %s release %s", scored.source.label, scored.candidate.external_id)
            return scored
        if detailed is None:
            return scored
        upgraded = ScoredCandidate(candidate=detailed, score=scored.score, track=scored.track)
        entries = [
            upgraded if item.candidate.external_id == scored.candidate.external_id else item
            for item in self.cache.get_results(scored.path)
            if item.source is scored.source
        ]
        self.cache.store_results(scored.path, entries, source=scored.source)
        return upgraded

    def select_best_overall_match(self, track: LocalTrack) -> Optional[ScoredCandidate]:
        """Apply the cached candidate with the highest match score across all sources.

        Fingerprint confidence only orders results within that source; it is
        never compared with the match scores of the text searches.
        """
        best = self.cache.best_for(track.path)
        if best is None:
            return None
        if best.score < self.matching.auto_apply_threshold:
            logger.debug(
                "Best match for %s scored %.3f, below %.2f", track.path, best.score, self.matching.auto_apply_threshold
            )
            return None
        self.apply_candidate(best.bind(track))
        publish(self.events, ComparisonFocusRequested(track.path))
        return best

    def apply_candidate(self, scored: ScoredCandidate, description: Optional[str] = None) -> TagComparisonSet:
        snapshot = TagSnapshot.from_candidate(scored.candidate, preserve_from=scored.track)
        engine = self.registry.engine_for(scored.track)
        return engine.update_comparison(snapshot, description or scored.label)

    async def _throttle(self, source: SourceType) -> None:
        limiter = self.limiters.get(source)
        if limiter is not None:
            await limiter.acquire()

    def _store(self, track: LocalTrack, items: list[ScoredCandidate], source: SourceType) -> None:
        self.cache.store_results(track.path, items, source=source)
        publish(self.events, ResultsUpdated(track.path, source))
