from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional, Sequence

from .match_utils import similarity
from .models import CandidateRelease, LocalTrack, ScoredCandidate

logger = logging.getLogger(__name__)

ARTIST_WEIGHT = 0.35
ALBUM_WEIGHT = 0.30
TRACK_COUNT_WEIGHT = 0.20
YEAR_WEIGHT = 0.10
TITLE_WEIGHT = 0.05

RAW_LIMIT = 5
KEEP_PER_FILE = 3
AUTO_APPLY_THRESHOLD = 0.70


def track_count_credit(expected: int, actual: int) -> float:
    diff = abs(expected - actual)
    if diff == 0:
        return TRACK_COUNT_WEIGHT
    if diff <= 2:
        return TRACK_COUNT_WEIGHT * (1.0 - diff / 3.0)
    if diff <= 5:
        return TRACK_COUNT_WEIGHT * 0.3
    return 0.0


def year_credit(expected: int, actual: int) -> float:
    diff = abs(expected - actual)
    if diff == 0:
        return YEAR_WEIGHT
    if diff <= 2:
        return YEAR_WEIGHT * (1.0 - diff / 3.0)
    return 0.0


def score(track: Optional[LocalTrack], candidate: CandidateRelease) -> float:
    """Weighted similarity between a local file and one candidate release.

    A criterion only counts towards the denominator when both sides carry
    data for it, so missing tags never drag a candidate down. A file without
    any populated tag scores 0 whatever the session size.
    """
    if track is None or not track.has_tags():
        return 0.0
    total = 0.0
    weight = 0.0
    if track.artist and candidate.artist:
        total += ARTIST_WEIGHT * similarity(track.artist, candidate.artist)
        weight += ARTIST_WEIGHT
    if track.album and candidate.title:
        total += ALBUM_WEIGHT * similarity(track.album, candidate.title)
        weight += ALBUM_WEIGHT
    if track.loaded_track_count > 0 and candidate.track_count > 0:
        total += track_count_credit(track.loaded_track_count, candidate.track_count)
        weight += TRACK_COUNT_WEIGHT
    candidate_year = candidate.year
    if track.year and candidate_year:
        total += year_credit(track.year, candidate_year)
        weight += YEAR_WEIGHT
    if track.title and candidate.title:
        total += TITLE_WEIGHT * similarity(track.title, candidate.title)
        weight += TITLE_WEIGHT
    if weight == 0.0:
        return 0.0
    return min(1.0, max(0.0, total / weight))


def ranking_key(item: ScoredCandidate) -> float:
    """Order within one source's results: AcoustID confidence for fingerprint hits, match score otherwise."""
    confidence = item.confidence
    if confidence is not None:
        return confidence
    return item.score


def rank_candidates(
    track: LocalTrack,
    candidates: Sequence[CandidateRelease],
    *,
    raw_limit: int = RAW_LIMIT,
    keep: int = KEEP_PER_FILE,
) -> list[ScoredCandidate]:
    scored = [
        ScoredCandidate(candidate=candidate, score=score(track, candidate), track=track)
        for candidate in list(candidates)[:raw_limit]
    ]
    # sorted() is stable: equal keys keep the order the source returned them in.
    scored.sort(key=ranking_key, reverse=True)
    kept = scored[:keep]
    for item in kept:
        logger.debug("Scored %s for %s: %.3f", item.candidate.external_id, track.path, item.score)
    return kept


def best_of(
    candidates: Iterable[ScoredCandidate],
    key: Callable[[ScoredCandidate], float] = lambda item: item.score,
) -> Optional[ScoredCandidate]:
    best: Optional[ScoredCandidate] = None
    for item in candidates:
        if best is None or key(item) > key(best):
            best = item
    return best
