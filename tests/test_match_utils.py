import unittest

from tag_reconcile.match_utils import levenshtein, normalize, parse_year, similarity


class TestNormalize(unittest.TestCase):
    def test_normalize_folds_punctuation_and_case(self) -> None:
        self.assertEqual(normalize("  Simon & Garfunkel "), "simon and garfunkel")
        self.assertEqual(normalize("Don't Stop"), "dont stop")
        self.assertEqual(normalize("Jay-Z"), "jay z")

    def test_normalize_collapses_double_spaces(self) -> None:
        self.assertEqual(normalize("Abbey  -  Road"), "abbey road")


class TestLevenshtein(unittest.TestCase):
    def test_known_distances(self) -> None:
        self.assertEqual(levenshtein("kitten", "sitting"), 3)
        self.assertEqual(levenshtein("", "abc"), 3)
        self.assertEqual(levenshtein("abc", ""), 3)
        self.assertEqual(levenshtein("same", "same"), 0)

    def test_symmetric(self) -> None:
        pairs = [("abbey road", "abbey rd"), ("beatles", "the beatles"), ("a", "xyz")]
        for a, b in pairs:
            self.assertEqual(levenshtein(a, b), levenshtein(b, a))


class TestSimilarity(unittest.TestCase):
    def test_equal_strings_score_one(self) -> None:
        self.assertEqual(similarity("Abbey Road", "abbey road"), 1.0)
        self.assertEqual(similarity("Rock & Roll", "rock and roll"), 1.0)

    def test_empty_input_scores_zero(self) -> None:
        self.assertEqual(similarity("", "Abbey Road"), 0.0)
        self.assertEqual(similarity("Abbey Road", None), 0.0)
        self.assertEqual(similarity("  ", "x"), 0.0)

    def test_substring_gets_fixed_credit(self) -> None:
        self.assertEqual(similarity("Beatles", "The Beatles"), 0.8)

    def test_edit_distance_ratio(self) -> None:
        self.assertAlmostEqual(similarity("Abbey Rd", "Abbey Road"), 0.8)

    def test_result_in_unit_interval(self) -> None:
        for a, b in [("abc", "xyz"), ("a", "bcdefgh"), ("Help!", "Revolver")]:
            value = similarity(a, b)
            self.assertGreaterEqual(value, 0.0)
            self.assertLessEqual(value, 1.0)


class TestParseYear(unittest.TestCase):
    def test_parse_year_variants(self) -> None:
        self.assertEqual(parse_year("1969-09-26"), 1969)
        self.assertEqual(parse_year("1971"), 1971)
        self.assertEqual(parse_year(1998), 1998)

    def test_parse_year_rejects_garbage(self) -> None:
        self.assertIsNone(parse_year(None))
        self.assertIsNone(parse_year(""))
        self.assertIsNone(parse_year("69"))
        self.assertIsNone(parse_year("unknown"))
        self.assertIsNone(parse_year(0))
        self.assertIsNone(parse_year("0000"))


if __name__ == "__main__":
    unittest.main()
