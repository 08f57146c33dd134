from __future__ import annotations

import logging
from pathlib import Path
from threading import Lock
from typing import Iterable, Optional

from .models import ScoredCandidate, SourceType

logger = logging.getLogger(__name__)


class ResultCache:
    """In-memory, per-session cache of scored candidates keyed by file path.

    Every mutation swaps a whole tuple under one lock, so readers never see a
    partially written candidate list. Storing with ``source`` only replaces
    that source's candidates and keeps the entries of every other source.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._entries: dict[Path, tuple[ScoredCandidate, ...]] = {}

    def get_results(self, path: Path) -> list[ScoredCandidate]:
        with self._lock:
            return list(self._entries.get(Path(path), ()))

    def ranked_results(self, path: Path) -> list[ScoredCandidate]:
        return sorted(self.get_results(path), key=lambda item: item.score, reverse=True)

    def has_results(self, path: Path) -> bool:
        with self._lock:
            return bool(self._entries.get(Path(path)))

    def store_results(
        self,
        path: Path,
        candidates: Iterable[ScoredCandidate],
        source: Optional[SourceType] = None,
    ) -> None:
        key = Path(path)
        fresh = tuple(candidates)
        for item in fresh:
            if item.path != key:
                raise ValueError(f"Candidate for {item.path} cannot be stored under {key}")
            if source is not None and item.source is not source:
                raise ValueError(f"{item.source.value} candidate stored as {source.value}")
        with self._lock:
            if source is None:
                self._entries[key] = fresh
            else:
                kept = tuple(item for item in self._entries.get(key, ()) if item.source is not source)
                self._entries[key] = kept + fresh
        logger.debug("Cached %d candidates for %s (%s)", len(fresh), key, source.value if source else "all")

    def clear_results_for_file(self, path: Path) -> None:
        with self._lock:
            self._entries.pop(Path(path), None)

    def clear_all_results(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_cached_file_paths(self) -> list[Path]:
        with self._lock:
            return list(self._entries.keys())

    def clear_by_source(self, source: SourceType | str) -> int:
        source = SourceType(source)
        removed = 0
        with self._lock:
            for key, items in list(self._entries.items()):
                remaining = tuple(item for item in items if item.source is not source)
                removed += len(items) - len(remaining)
                self._entries[key] = remaining
        if removed:
            logger.debug("Cleared %d cached %s candidates", removed, source.value)
        return removed

    def best_for(self, path: Path) -> Optional[ScoredCandidate]:
        best: Optional[ScoredCandidate] = None
        for item in self.get_results(path):
            if best is None or item.score > best.score:
                best = item
        return best

    def total_count(self) -> int:
        with self._lock:
            return sum(len(items) for items in self._entries.values())
