from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Sequence

from .batch_edit import BatchChanges, BatchEditResult, apply_batch
from .cache import ResultCache
from .comparison import ComparisonRegistry
from .config import Settings
from .events import EventBus
from .loader import LoadReport, ParallelLoadRunner, ProgressCallback, sort_key
from .models import LocalTrack, SourceType
from .orchestrator import BatchQueryOrchestrator
from .providers import SourceFetcher
from .providers.coverart import CoverArtFinder, CoverArtReference
from .providers.discogs import DiscogsFetcher
from .providers.fingerprint import AcoustIdIdentifier
from .providers.musicbrainz import MusicBrainzFetcher
from .rate_limit import build_limiters
from .tagging import SaveResult, TagIO

logger = logging.getLogger(__name__)


@dataclass
class TaggingSession:
    settings: Settings
    cache: ResultCache
    events: EventBus
    registry: ComparisonRegistry
    orchestrator: BatchQueryOrchestrator
    tag_io: TagIO
    cover_art: CoverArtFinder
    _tracks: dict[Path, LocalTrack] = field(default_factory=dict)

    @classmethod
    def create(cls, settings: Settings) -> "TaggingSession":
        cache = ResultCache()
        events = EventBus()
        registry = ComparisonRegistry(events=events)
        fetchers: dict[SourceType, SourceFetcher] = {
            SourceType.CATALOG: MusicBrainzFetcher(settings.providers),
        }
        if settings.providers.discogs_token:
            try:
                fetchers[SourceType.MARKETPLACE] = DiscogsFetcher(settings.providers)
            except Exception as exc:
                logger.warning("Failed to initialise Discogs client: %s", exc)
        identifier: Optional[AcoustIdIdentifier] = None
        if settings.providers.acoustid_api_key:
            identifier = AcoustIdIdentifier(settings.providers)
        orchestrator = BatchQueryOrchestrator(
            cache,
            registry,
            fetchers=fetchers,
            identifier=identifier,
            limiters=build_limiters(settings.rate_limits),
            events=events,
            matching=settings.matching,
        )
        return cls(
            settings=settings,
            cache=cache,
            events=events,
            registry=registry,
            orchestrator=orchestrator,
            tag_io=TagIO(),
            cover_art=CoverArtFinder(settings.providers),
        )

    @property
    def tracks(self) -> list[LocalTrack]:
        return sorted(self._tracks.values(), key=sort_key)

    def get_track(self, path: Path) -> Optional[LocalTrack]:
        return self._tracks.get(Path(path))

    def collect_paths(self, inputs: Iterable[Path]) -> list[Path]:
        extensions = {ext.lower() for ext in self.settings.loader.include_extensions}
        paths: list[Path] = []
        for entry in inputs:
            entry = Path(entry).expanduser()
            if entry.is_dir():
                paths.extend(
                    sorted(path for path in entry.rglob("*") if path.is_file() and path.suffix.lower() in extensions)
                )
            elif entry.suffix.lower() in extensions:
                paths.append(entry)
            else:
                logger.debug("Ignoring %s (unsupported extension)", entry)
        return paths

    def load_files(self, inputs: Iterable[Path], progress: Optional[ProgressCallback] = None) -> LoadReport:
        runner = ParallelLoadRunner(
            self.tag_io.load_tags,
            max_workers=self.settings.loader.max_concurrent_operations,
            progress=progress,
            progress_interval=self.settings.loader.progress_interval_seconds,
        )
        report = runner.run(self.collect_paths(inputs), known=self._tracks.keys())
        for track in report.tracks:
            self._tracks[track.path] = track
        self._refresh_track_counts()
        return report

    def remove_track(self, path: Path) -> bool:
        key = Path(path)
        track = self._tracks.pop(key, None)
        self.cache.clear_results_for_file(key)
        self.registry.discard(key)
        if track is not None:
            self._refresh_track_counts()
        return track is not None

    def batch_edit(self, changes: BatchChanges, tracks: Optional[Sequence[LocalTrack]] = None) -> BatchEditResult:
        return apply_batch(self.tracks if tracks is None else tracks, changes, self.registry)

    def find_cover_art(self, track: LocalTrack) -> Optional[CoverArtReference]:
        artist = track.album_artist or track.artist
        if not artist or not track.album:
            logger.debug("No artist/album to look up cover art for %s", track.path)
            return None
        return self.cover_art.best(artist, track.album)

    def save(self, track: LocalTrack) -> SaveResult:
        result = self.tag_io.save_tags(track)
        if result.success:
            engine = self.registry.get(track.path)
            if engine is not None:
                engine.clear_comparison()
        return result

    def _refresh_track_counts(self) -> None:
        total = len(self._tracks)
        for track in self._tracks.values():
            track.loaded_track_count = total
