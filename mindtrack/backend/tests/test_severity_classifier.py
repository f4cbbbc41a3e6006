import os
import sys
import unittest
from datetime import datetime

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from mindtrack.backend.app import severity_classifier
from mindtrack.backend.app.errors import MissingField, OutOfRange, ValidationError


def vector_with_total(total):
    values = []
    remaining = total
    for _ in range(9):
        step = min(3, remaining)
        values.append(step)
        remaining -= step
    return values


class ClassifyTests(unittest.TestCase):
    def test_band_boundaries(self):
        expected = {
            0: "minimal",
            4: "minimal",
            5: "mild",
            9: "mild",
            10: "moderate",
            14: "moderate",
            15: "severe",
            27: "severe",
        }
        for total, band in expected.items():
            result = severity_classifier.classify(vector_with_total(total))
            self.assertEqual(result.total_score, total)
            self.assertEqual(result.band, band, f"total={total}")

    def test_every_total_maps_to_exactly_one_band(self):
        rules = severity_classifier.default_rules()
        for total in range(0, 28):
            matches = [rule.band for rule in rules.rules if rule.matches(total)]
            self.assertEqual(len(matches), 1, f"total={total}")

    def test_known_fixture_is_mild(self):
        result = severity_classifier.classify([1, 1, 1, 1, 1, 1, 1, 1, 0])
        self.assertEqual(result.total_score, 8)
        self.assertEqual(result.band, "mild")
        self.assertEqual(result.confidence, 0.80)
        self.assertEqual(result.model_version, "1.0")

    def test_confidence_is_static_per_band(self):
        self.assertEqual(severity_classifier.classify([0] * 9).confidence, 0.85)
        self.assertEqual(severity_classifier.classify([2, 2, 2, 2, 2, 0, 0, 0, 0]).confidence, 0.75)
        self.assertEqual(severity_classifier.classify([3] * 9).confidence, 0.90)

    def test_keyed_input(self):
        responses = {f"q{i}_score": 2 for i in range(1, 10)}
        result = severity_classifier.classify(responses)
        self.assertEqual(result.total_score, 18)
        self.assertEqual(result.band, "severe")

    def test_out_of_range_rejected(self):
        for bad in (4, -1):
            responses = [0] * 9
            responses[3] = bad
            with self.assertRaises(OutOfRange) as ctx:
                severity_classifier.classify(responses)
            self.assertEqual(ctx.exception.field, "q4_score")

    def test_missing_key_rejected(self):
        responses = {f"q{i}_score": 1 for i in range(1, 10)}
        del responses["q7_score"]
        with self.assertRaises(MissingField) as ctx:
            severity_classifier.classify(responses)
        self.assertEqual(ctx.exception.field, "q7_score")

    def test_short_list_reports_missing_item(self):
        with self.assertRaises(MissingField):
            severity_classifier.classify([1, 1, 1])

    def test_long_list_rejected(self):
        for responses in ([0] * 9 + [3], [3] * 9 + [99, "junk"]):
            with self.assertRaises(ValidationError) as ctx:
                severity_classifier.classify(responses)
            self.assertEqual(ctx.exception.field, "responses")

    def test_non_integer_rejected(self):
        responses = [1] * 9
        responses[0] = "2"
        with self.assertRaises(ValidationError):
            severity_classifier.classify(responses)

    def test_vector_from_index_keyed_responses(self):
        responses = {str(i): 1 for i in range(9)}
        vector = severity_classifier.vector_from_responses(responses)
        self.assertEqual(sorted(vector), sorted(severity_classifier.RESPONSE_KEYS))
        self.assertEqual(severity_classifier.classify(vector).total_score, 9)

    def test_vector_from_partial_responses_is_incomplete(self):
        vector = severity_classifier.vector_from_responses({"0": 1, "1": 2})
        with self.assertRaises(MissingField):
            severity_classifier.classify(vector)


class RuleStoreTests(unittest.TestCase):
    def test_missing_rules_file_is_created_with_defaults(self):
        import tempfile
        from pathlib import Path

        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "rules" / "severity_rules.json"
            store = severity_classifier.RuleStore(path)
            self.assertEqual(store.rules.rule_for("moderate").min_score, 10)
            self.assertTrue(path.exists())
            reloaded = severity_classifier.load_rules(path)
            self.assertEqual(reloaded.rule_for("severe").confidence, 0.90)

    def test_refresh_only_moves_timestamp(self):
        import tempfile
        from pathlib import Path

        with tempfile.TemporaryDirectory() as tmp:
            store = severity_classifier.RuleStore(Path(tmp) / "severity_rules.json")
            store.rules.last_updated = datetime(2020, 1, 1)
            before = store.rules.to_dict()
            result = store.refresh()
            after = severity_classifier.load_rules(store.path).to_dict()
            self.assertTrue(result["success"])
            self.assertNotEqual(before["last_updated"], after["last_updated"])
            before.pop("last_updated")
            after.pop("last_updated")
            self.assertEqual(before, after)

    def test_failed_refresh_keeps_previous_timestamp(self):
        import tempfile
        from pathlib import Path
        from unittest import mock

        from mindtrack.backend.app.errors import StorageError

        with tempfile.TemporaryDirectory() as tmp:
            store = severity_classifier.RuleStore(Path(tmp) / "severity_rules.json")
            store.rules.last_updated = datetime(2020, 1, 1)
            with mock.patch.object(severity_classifier.os, "replace", side_effect=OSError("read-only")):
                with self.assertRaises(StorageError):
                    store.refresh()
            self.assertEqual(store.rules.last_updated, datetime(2020, 1, 1))


if __name__ == "__main__":
    unittest.main()
