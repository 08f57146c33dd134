import threading
import unittest
from pathlib import Path

from tag_reconcile.cache import ResultCache
from tag_reconcile.models import CandidateRelease, LocalTrack, ScoredCandidate, SourceType


def _scored(track: LocalTrack, source: SourceType, external_id: str, score: float) -> ScoredCandidate:
    candidate = CandidateRelease(source=source, external_id=external_id, artist="A", title="B")
    return ScoredCandidate(candidate=candidate, score=score, track=track)


class TestResultCache(unittest.TestCase):
    def setUp(self) -> None:
        self.cache = ResultCache()
        self.track = LocalTrack(path=Path("/music/a/01.mp3"), artist="A", album="B")
        self.other = LocalTrack(path=Path("/music/a/02.mp3"), artist="A", album="B")

    def test_unknown_path_returns_empty_list(self) -> None:
        self.assertEqual(self.cache.get_results(Path("/nowhere.mp3")), [])
        self.assertFalse(self.cache.has_results(Path("/nowhere.mp3")))
        self.assertIsNone(self.cache.best_for(Path("/nowhere.mp3")))

    def test_store_then_get_returns_same_items(self) -> None:
        items = [_scored(self.track, SourceType.CATALOG, "r1", 0.9), _scored(self.track, SourceType.CATALOG, "r2", 0.4)]
        self.cache.store_results(self.track.path, items)
        self.assertEqual(self.cache.get_results(self.track.path), items)
        self.assertEqual(self.cache.get_cached_file_paths(), [self.track.path])
        self.assertEqual(self.cache.total_count(), 2)

    def test_store_without_source_replaces_whole_entry(self) -> None:
        self.cache.store_results(self.track.path, [_scored(self.track, SourceType.CATALOG, "r1", 0.9)])
        replacement = [_scored(self.track, SourceType.MARKETPLACE, "d1", 0.5)]
        self.cache.store_results(self.track.path, replacement)
        self.assertEqual(self.cache.get_results(self.track.path), replacement)

    def test_store_with_source_keeps_other_sources(self) -> None:
        catalog = _scored(self.track, SourceType.CATALOG, "r1", 0.9)
        marketplace = _scored(self.track, SourceType.MARKETPLACE, "d1", 0.5)
        self.cache.store_results(self.track.path, [catalog, marketplace])
        fresh = _scored(self.track, SourceType.CATALOG, "r2", 0.7)
        self.cache.store_results(self.track.path, [fresh], source=SourceType.CATALOG)
        self.assertEqual(self.cache.get_results(self.track.path), [marketplace, fresh])

    def test_candidates_for_another_file_are_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.cache.store_results(self.track.path, [_scored(self.other, SourceType.CATALOG, "r1", 0.9)])
        with self.assertRaises(ValueError):
            self.cache.store_results(
                self.track.path, [_scored(self.track, SourceType.CATALOG, "r1", 0.9)], source=SourceType.FINGERPRINT
            )
        self.assertFalse(self.cache.has_results(self.track.path))

    def test_clear_by_source_keeps_other_sources(self) -> None:
        for track in (self.track, self.other):
            self.cache.store_results(
                track.path,
                [
                    _scored(track, SourceType.CATALOG, "r1", 0.9),
                    _scored(track, SourceType.MARKETPLACE, "d1", 0.5),
                    _scored(track, SourceType.FINGERPRINT, "f1", 0.8),
                ],
            )
        removed = self.cache.clear_by_source("Marketplace")
        self.assertEqual(removed, 2)
        for track in (self.track, self.other):
            sources = [item.source for item in self.cache.get_results(track.path)]
            self.assertEqual(sources, [SourceType.CATALOG, SourceType.FINGERPRINT])

    def test_clear_for_file_and_all(self) -> None:
        self.cache.store_results(self.track.path, [_scored(self.track, SourceType.CATALOG, "r1", 0.9)])
        self.cache.store_results(self.other.path, [_scored(self.other, SourceType.CATALOG, "r1", 0.9)])
        self.cache.clear_results_for_file(self.track.path)
        self.assertEqual(self.cache.get_results(self.track.path), [])
        self.assertTrue(self.cache.has_results(self.other.path))
        self.cache.clear_all_results()
        self.assertEqual(self.cache.get_cached_file_paths(), [])

    def test_best_for_and_ranked_results(self) -> None:
        low = _scored(self.track, SourceType.CATALOG, "r1", 0.3)
        high = _scored(self.track, SourceType.FINGERPRINT, "f1", 0.95)
        self.cache.store_results(self.track.path, [low, high])
        self.assertIs(self.cache.best_for(self.track.path), high)
        self.assertEqual(self.cache.ranked_results(self.track.path), [high, low])

    def test_concurrent_store_and_clear_by_source(self) -> None:
        tracks = [LocalTrack(path=Path(f"/music/c/{i:02d}.mp3")) for i in range(20)]
        errors: list[Exception] = []

        def _writer(source: SourceType) -> None:
            try:
                for _ in range(50):
                    for track in tracks:
                        self.cache.store_results(
                            track.path, [_scored(track, source, f"{source.value}-1", 0.5)], source=source
                        )
            except Exception as exc:  # pragma: no cover - surfaced via assertion
                errors.append(exc)

        def _clearer() -> None:
            for _ in range(50):
                self.cache.clear_by_source(SourceType.MARKETPLACE)

        threads = [
            threading.Thread(target=_writer, args=(SourceType.CATALOG,)),
            threading.Thread(target=_writer, args=(SourceType.MARKETPLACE,)),
            threading.Thread(target=_clearer),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        for track in tracks:
            results = self.cache.get_results(track.path)
            catalog = [item for item in results if item.source is SourceType.CATALOG]
            self.assertEqual(len(catalog), 1)
            self.assertTrue(all(item.path == track.path for item in results))
            self.assertLessEqual(len(results), 2)


if __name__ == "__main__":
    unittest.main()
