import unittest
from pathlib import Path

from tag_reconcile.models import CandidateRelease, LocalTrack, SourceType
from tag_reconcile.scoring import (
    TRACK_COUNT_WEIGHT,
    best_of,
    rank_candidates,
    ranking_key,
    score,
    track_count_credit,
)


def _abbey_road_track() -> LocalTrack:
    return LocalTrack(
        path=Path("/music/abbey/01.flac"),
        artist="The Beatles",
        album="Abbey Road",
        year=1969,
        loaded_track_count=17,
    )


def _candidate(external_id: str, **kwargs) -> CandidateRelease:
    kwargs.setdefault("source", SourceType.CATALOG)
    return CandidateRelease(external_id=external_id, **kwargs)


class TestScore(unittest.TestCase):
    def test_exact_release_scores_one(self) -> None:
        candidate = _candidate(
            "a", artist="The Beatles", title="Abbey Road", date="1969-09-26", track_count=17
        )
        self.assertAlmostEqual(score(_abbey_road_track(), candidate), 1.0)

    def test_fuzzy_release_scores_lower(self) -> None:
        track = _abbey_road_track()
        exact = _candidate("a", artist="The Beatles", title="Abbey Road", date="1969-09-26", track_count=17)
        fuzzy = _candidate("b", artist="Beatles", title="Abbey Rd", date="1971", track_count=12)
        fuzzy_score = score(track, fuzzy)
        self.assertLess(fuzzy_score, score(track, exact))
        # 0.35*0.8 + 0.30*0.8 + 0.20*0.3 + 0.10/3 over 0.95
        self.assertAlmostEqual(fuzzy_score, 0.6456, places=3)

    def test_no_populated_fields_scores_zero(self) -> None:
        track = LocalTrack(path=Path("/music/unknown.mp3"))
        self.assertEqual(score(track, _candidate("x", artist="Someone", title="Something")), 0.0)
        self.assertEqual(score(_abbey_road_track(), _candidate("y")), 0.0)
        self.assertEqual(score(None, _candidate("z", artist="A")), 0.0)

    def test_untagged_file_scores_zero_despite_matching_track_count(self) -> None:
        track = LocalTrack(path=Path("/music/untagged/05.mp3"), loaded_track_count=17)
        candidate = _candidate("any", artist="Anyone", title="Anything", track_count=17)
        self.assertEqual(score(track, candidate), 0.0)

        numbered = LocalTrack(path=Path("/music/untagged/06.mp3"), track_number=6, loaded_track_count=17)
        self.assertAlmostEqual(score(numbered, candidate), 1.0)

    def test_score_stays_in_unit_interval(self) -> None:
        track = LocalTrack(path=Path("/m/1.mp3"), artist="X", album="Y", title="Y", year=2000, loaded_track_count=3)
        for candidate in (
            _candidate("1", artist="Q", title="Z", date="1950", track_count=40),
            _candidate("2", artist="X", title="Y", date="2000", track_count=3),
        ):
            value = score(track, candidate)
            self.assertGreaterEqual(value, 0.0)
            self.assertLessEqual(value, 1.0)

    def test_track_count_credit_steps(self) -> None:
        self.assertEqual(track_count_credit(10, 10), TRACK_COUNT_WEIGHT)
        self.assertGreater(track_count_credit(10, 11), track_count_credit(10, 13))
        self.assertAlmostEqual(track_count_credit(10, 15), TRACK_COUNT_WEIGHT * 0.3)
        self.assertEqual(track_count_credit(10, 16), 0.0)


class TestRankCandidates(unittest.TestCase):
    def test_keeps_top_three_of_first_five(self) -> None:
        track = _abbey_road_track()
        candidates = [
            _candidate("c1", artist="Nobody", title="Else"),
            _candidate("c2", artist="The Beatles", title="Abbey Road", date="1969", track_count=17),
            _candidate("c3", artist="Beatles", title="Abbey Rd"),
            _candidate("c4", artist="The Beatles", title="Let It Be"),
            _candidate("c5", artist="The Rolling Stones", title="Sticky Fingers"),
            _candidate("c6", artist="The Beatles", title="Abbey Road", date="1969", track_count=17),
        ]
        ranked = rank_candidates(track, candidates)
        self.assertEqual(len(ranked), 3)
        self.assertEqual(ranked[0].candidate.external_id, "c2")
        self.assertNotIn("c6", [item.candidate.external_id for item in ranked])
        scores = [item.score for item in ranked]
        self.assertEqual(scores, sorted(scores, reverse=True))
        for item in ranked:
            self.assertIs(item.track, track)

    def test_equal_scores_keep_source_order(self) -> None:
        track = _abbey_road_track()
        first = _candidate("first", artist="The Beatles", title="Abbey Road")
        second = _candidate("second", artist="The Beatles", title="Abbey Road")
        ranked = rank_candidates(track, [first, second])
        self.assertEqual([item.candidate.external_id for item in ranked], ["first", "second"])

    def test_fingerprint_candidates_rank_by_confidence(self) -> None:
        track = _abbey_road_track()
        low = _candidate("low", source=SourceType.FINGERPRINT, artist="The Beatles", title="Abbey Road", confidence=0.4)
        high = _candidate("high", source=SourceType.FINGERPRINT, artist="Other", confidence=0.93)
        ranked = rank_candidates(track, [low, high])
        self.assertEqual([item.candidate.external_id for item in ranked], ["high", "low"])
        self.assertAlmostEqual(ranked[0].confidence, 0.93)
        # the stored score is still the weighted match against the file's tags
        self.assertAlmostEqual(ranked[0].score, score(track, high))
        self.assertAlmostEqual(ranked[1].score, 1.0)
        self.assertTrue(ranked[0].label.endswith("[93.0%]"))
        self.assertEqual(best_of(ranked, key=ranking_key).candidate.external_id, "high")
        self.assertEqual(best_of(ranked).candidate.external_id, "low")

    def test_label_contains_score_and_file(self) -> None:
        track = _abbey_road_track()
        ranked = rank_candidates(
            track, [_candidate("a", artist="The Beatles", title="Abbey Road", date="1969-09-26", track_count=17)]
        )
        self.assertEqual(
            ranked[0].label,
            "MB: The Beatles - Abbey Road (1969-09-26) [17T] [For: 01.flac] [100.0%]",
        )

    def test_best_of(self) -> None:
        track = _abbey_road_track()
        ranked = rank_candidates(
            track,
            [_candidate("x", artist="Nobody"), _candidate("y", artist="The Beatles", title="Abbey Road")],
        )
        self.assertEqual(best_of(ranked).candidate.external_id, "y")
        self.assertIsNone(best_of([]))


if __name__ == "__main__":
    unittest.main()
