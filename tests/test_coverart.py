import io
import json
import unittest
import urllib.error
from unittest.mock import patch

from tag_reconcile.config import ProviderSettings
from tag_reconcile.providers.coverart import CoverArtFinder, is_good_match

ITUNES_RESPONSE = {
    "results": [
        {
            "artistName": "Lasso",
            "collectionName": "Lassoed",
            "artworkUrl100": "https://is1.mzstatic.com/lassoed/100x100bb.jpg",
        },
        {
            "artistName": "Lasso",
            "collectionName": "Lasso - Deluxe Edition",
            "artworkUrl100": "https://is1.mzstatic.com/deluxe/100x100bb.jpg",
        },
    ]
}

DEEZER_RESPONSE = {
    "data": [
        {"title": "Other Album", "artist": {"name": "Lasso"}, "cover_xl": "https://e-cdns.deezer.com/other.jpg"},
        {"title": "Lasso", "artist": {"name": "Lasso"}, "cover_xl": "https://e-cdns.deezer.com/lasso.jpg"},
    ]
}


def _response(payload) -> io.BytesIO:
    return io.BytesIO(json.dumps(payload).encode("utf-8"))


def _fake_urlopen(itunes=ITUNES_RESPONSE, deezer=DEEZER_RESPONSE):
    def urlopen(req, timeout=None):
        if "itunes.apple.com" in req.full_url:
            if isinstance(itunes, Exception):
                raise itunes
            return _response(itunes)
        return _response(deezer)

    return urlopen


class TestIsGoodMatch(unittest.TestCase):
    def test_rules(self) -> None:
        self.assertTrue(is_good_match("Abbey Road", "abbey road"))
        self.assertTrue(is_good_match("Lasso", "Lasso - Deluxe Edition"))
        self.assertTrue(is_good_match("Dark Side Moon", "The Dark Side of the Moon"))
        self.assertFalse(is_good_match("Lasso", "Lassoed"))
        self.assertFalse(is_good_match("Dark Side Moon", "Dark Side"))
        self.assertFalse(is_good_match("Lasso", ""))
        self.assertFalse(is_good_match(None, "Lasso"))


class TestCoverArtFinder(unittest.TestCase):
    def test_search_returns_sources_in_priority_order(self) -> None:
        finder = CoverArtFinder(ProviderSettings())
        with patch("urllib.request.urlopen", side_effect=_fake_urlopen()) as urlopen:
            found = finder.search("Lasso", "Lasso")
        self.assertEqual(urlopen.call_count, 2)
        self.assertEqual([ref.source for ref in found], ["itunes", "deezer"])
        self.assertEqual(found[0].url, "https://is1.mzstatic.com/deluxe/600x600bb.jpg")
        self.assertEqual(found[0].album, "Lasso - Deluxe Edition")
        self.assertEqual(found[1].url, "https://e-cdns.deezer.com/lasso.jpg")

    def test_configured_order_and_unknown_sources(self) -> None:
        finder = CoverArtFinder(ProviderSettings(cover_art_sources=["Deezer", "lastfm"]))
        with patch("urllib.request.urlopen", side_effect=_fake_urlopen()) as urlopen:
            best = finder.best("Lasso", "Lasso")
        self.assertEqual(urlopen.call_count, 1)
        self.assertEqual(best.source, "deezer")

    def test_failing_source_is_skipped(self) -> None:
        finder = CoverArtFinder(ProviderSettings())
        error = urllib.error.URLError("offline")
        with patch("urllib.request.urlopen", side_effect=_fake_urlopen(itunes=error)):
            with self.assertLogs("tag_reconcile.providers.coverart", level="WARNING"):
                best = finder.best("Lasso", "Lasso")
        self.assertEqual(best.source, "deezer")

    def test_no_match_and_missing_names(self) -> None:
        finder = CoverArtFinder(ProviderSettings())
        with patch("urllib.request.urlopen", side_effect=_fake_urlopen()) as urlopen:
            self.assertIsNone(finder.best("Pink Floyd", "Animals"))
            self.assertEqual(finder.search("", "Animals"), [])
        self.assertEqual(urlopen.call_count, 2)


if __name__ == "__main__":
    unittest.main()
