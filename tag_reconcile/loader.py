from __future__ import annotations

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock
from typing import Callable, Iterable, Optional

from .models import LocalTrack

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

PROGRESS_STEP_FRACTION = 0.05


@dataclass(slots=True)
class LoadReport:
    tracks: list[LocalTrack] = field(default_factory=list)
    total: int = 0
    loaded: int = 0
    failed: int = 0
    duplicates: int = 0
    elapsed: float = 0.0
    workers: int = 1


def sort_key(track: LocalTrack) -> tuple[str, int, str]:
    return ((track.album or "").lower(), track.track_number or 0, track.path.name)


class ParallelLoadRunner:
    """Loads many files through a bounded thread pool.

    Progress is reported at most every ``progress_interval`` seconds or every
    5% of the batch, and always once the last file is done.
    """

    def __init__(
        self,
        load: Callable[[Path], LocalTrack],
        *,
        max_workers: int = 4,
        progress: Optional[ProgressCallback] = None,
        clock: Callable[[], float] = time.monotonic,
        progress_interval: float = 0.05,
        cpu_count: Optional[int] = None,
    ) -> None:
        self._load = load
        self._progress = progress
        self._clock = clock
        self.progress_interval = progress_interval
        cpus = cpu_count if cpu_count is not None else (os.cpu_count() or 1)
        self.workers = max(1, min(max_workers, cpus))

    def run(self, paths: Iterable[Path], *, known: Iterable[Path] = ()) -> LoadReport:
        started = self._clock()
        seen = {Path(path) for path in known}
        pending: list[Path] = []
        duplicates = 0
        for path in paths:
            path = Path(path)
            if path in seen:
                logger.debug("Skipping already loaded file %s", path)
                duplicates += 1
                continue
            seen.add(path)
            pending.append(path)

        report = LoadReport(total=len(pending), duplicates=duplicates, workers=self.workers)
        if not pending:
            report.elapsed = self._clock() - started
            return report

        lock = Lock()
        loaded: list[LocalTrack] = []

        def _load_one(path: Path) -> None:
            track = self._load(path)
            with lock:
                loaded.append(track)

        step = max(1, int(len(pending) * PROGRESS_STEP_FRACTION))
        last_report_at = started
        last_reported = 0
        done = 0
        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            future_map = {executor.submit(_load_one, path): path for path in pending}
            for future in as_completed(future_map):
                done += 1
                try:
                    future.result()
                except Exception as exc:
                    report.failed += 1
                    logger.warning("Failed to load %s: %s", future_map[future], exc)
                now = self._clock()
                if (
                    done == len(pending)
                    or now - last_report_at >= self.progress_interval
                    or done - last_reported >= step
                ):
                    last_report_at = now
                    last_reported = done
                    self._notify(done, len(pending))

        session_total = len(seen) - report.failed
        for track in loaded:
            track.loaded_track_count = session_total
        report.tracks = sorted(loaded, key=sort_key)
        report.loaded = len(loaded)
        report.elapsed = self._clock() - started
        logger.debug(
            "Loaded %d/%d files in %.2fs with %d workers (%d failed, %d duplicates)",
            report.loaded,
            report.total,
            report.elapsed,
            self.workers,
            report.failed,
            report.duplicates,
        )
        return report

    def _notify(self, done: int, total: int) -> None:
        if self._progress is None:
            return
        try:
            self._progress(done, total)
        except Exception:
            logger.exception("Progress callback failed")
