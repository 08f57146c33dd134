import unittest
from unittest.mock import patch

from tag_reconcile.config import ProviderSettings
from tag_reconcile.models import SourceType, SourceUnavailable
from tag_reconcile.providers.musicbrainz import MusicBrainzFetcher


def _make_stub(search=None, lookup=None):
    class _MBStub:
        class NetworkError(Exception):
            pass

        class ResponseError(Exception):
            def __init__(self, message: str = "", cause=None) -> None:
                super().__init__(message)
                self.cause = cause

        calls = {"search": 0, "lookup": 0}

        @staticmethod
        def set_useragent(*_args, **_kwargs) -> None:
            return None

        @staticmethod
        def set_rate_limit(*_args, **_kwargs) -> None:
            return None

        @staticmethod
        def search_releases(**kwargs):
            _MBStub.calls["search"] += 1
            return search(_MBStub, **kwargs)

        @staticmethod
        def get_release_by_id(release_id, includes=None):
            _MBStub.calls["lookup"] += 1
            return lookup(_MBStub, release_id)

    return _MBStub


def _settings() -> ProviderSettings:
    return ProviderSettings(musicbrainz_useragent="tests@example.com", network_retries=1, network_retry_backoff_seconds=0.0)


RELEASE_LIST = {
    "release-list": [
        {
            "id": "mbid-1",
            "title": "Abbey Road",
            "date": "1969-09-26",
            "artist-credit-phrase": "The Beatles",
            "medium-track-count": "17",
        },
        {
            "id": "mbid-2",
            "title": "Abbey Road (Remastered)",
            "artist-credit": [{"artist": {"name": "The Beatles"}}],
            "medium-list": [{"track-count": 9}, {"track-count": 8}],
        },
    ]
}


class TestMusicBrainzFetcher(unittest.TestCase):
    def test_search_parses_release_list(self) -> None:
        stub = _make_stub(search=lambda _stub, **_kwargs: RELEASE_LIST)
        with patch("tag_reconcile.providers.musicbrainz.musicbrainzngs", stub):
            releases = MusicBrainzFetcher(_settings()).search("The Beatles Abbey Road")
        self.assertEqual([release.external_id for release in releases], ["mbid-1", "mbid-2"])
        first, second = releases
        self.assertEqual(first.source, SourceType.CATALOG)
        self.assertEqual((first.artist, first.title, first.year, first.track_count), ("The Beatles", "Abbey Road", 1969, 17))
        self.assertEqual(first.cover_art_url, "https://coverartarchive.org/release/mbid-1/front")
        self.assertEqual((second.artist, second.track_count), ("The Beatles", 17))

    def test_blank_query_does_not_call_service(self) -> None:
        stub = _make_stub(search=lambda _stub, **_kwargs: RELEASE_LIST)
        with patch("tag_reconcile.providers.musicbrainz.musicbrainzngs", stub):
            self.assertEqual(MusicBrainzFetcher(_settings()).search("   "), [])
        self.assertEqual(stub.calls["search"], 0)

    def test_network_errors_are_retried_then_raised(self) -> None:
        def _search(stub, **_kwargs):
            raise stub.NetworkError("dns")

        stub = _make_stub(search=_search)
        with patch("tag_reconcile.providers.musicbrainz.musicbrainzngs", stub):
            with self.assertRaises(SourceUnavailable):
                MusicBrainzFetcher(_settings()).search("query")
        self.assertEqual(stub.calls["search"], 2)

    def test_transient_error_recovers(self) -> None:
        def _search(stub, **_kwargs):
            if stub.calls["search"] == 1:
                raise stub.NetworkError("timeout")
            return {"release-list": []}

        stub = _make_stub(search=_search)
        with patch("tag_reconcile.providers.musicbrainz.musicbrainzngs", stub):
            self.assertEqual(MusicBrainzFetcher(_settings()).search("query"), [])
        self.assertEqual(stub.calls["search"], 2)

    def test_malformed_response_is_empty(self) -> None:
        stub = _make_stub(search=lambda _stub, **_kwargs: {"release-list": [{"title": "no id"}]})
        with patch("tag_reconcile.providers.musicbrainz.musicbrainzngs", stub):
            with self.assertLogs("tag_reconcile.providers.musicbrainz", level="WARNING"):
                self.assertEqual(MusicBrainzFetcher(_settings()).search("query"), [])

    def test_fetch_details_reads_tracklist(self) -> None:
        release = {
            "release": {
                "id": "mbid-1",
                "title": "Abbey Road",
                "date": "1969",
                "artist-credit-phrase": "The Beatles",
                "medium-list": [
                    {
                        "track-list": [
                            {"position": "1", "length": "259000", "recording": {"title": "Come Together"}},
                            {"position": "2", "recording": {"title": "Something", "artist-credit-phrase": "The Beatles"}},
                        ]
                    }
                ],
            }
        }
        stub = _make_stub(lookup=lambda _stub, _release_id: release)
        with patch("tag_reconcile.providers.musicbrainz.musicbrainzngs", stub):
            detailed = MusicBrainzFetcher(_settings()).fetch_details("mbid-1")
        self.assertEqual(detailed.track_count, 2)
        self.assertEqual([track.title for track in detailed.tracks], ["Come Together", "Something"])
        self.assertEqual(detailed.tracks[0].length_seconds, 259)
        self.assertEqual(detailed.tracks[0].artist, "The Beatles")
        self.assertEqual(detailed.tracks[1].position, 2)

    def test_fetch_details_not_found(self) -> None:
        class _Cause:
            code = 404

        def _lookup(stub, _release_id):
            raise stub.ResponseError("not found", cause=_Cause())

        stub = _make_stub(lookup=_lookup)
        with patch("tag_reconcile.providers.musicbrainz.musicbrainzngs", stub):
            self.assertIsNone(MusicBrainzFetcher(_settings()).fetch_details("missing"))


if __name__ == "__main__":
    unittest.main()
