import os
import sys
import unittest
from datetime import date, datetime, timedelta
from unittest import mock

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from mindtrack.backend.app import models
from mindtrack.backend.app.assessment_store import AssessmentStore, serialize_assessment
from mindtrack.backend.app.database import Base
from mindtrack.backend.app.errors import NotFoundError, StorageError, ValidationError
from mindtrack.backend.app.recommendations import recommendations_for
from mindtrack.backend.app.severity_classifier import classify


def phq9_values(**overrides):
    values = {
        "type": "PHQ-9",
        "score": 8,
        "max_score": 27,
        "severity": "mild",
        "responses": {str(i): 1 for i in range(8)} | {"8": 0},
        "notes": "Feeling a bit flat this week.",
    }
    values.update(overrides)
    return values


class AssessmentStoreTests(unittest.TestCase):
    def setUp(self):
        engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
        Base.metadata.create_all(engine)
        SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        self.db = SessionLocal()
        self.db.add_all([
            models.User(id=1, email="owner@example.com", hashed_password="x"),
            models.User(id=2, email="other@example.com", hashed_password="x"),
        ])
        self.db.commit()
        self.store = AssessmentStore(self.db)

    def tearDown(self):
        self.db.close()

    def test_create_derives_recommendations_and_prediction(self):
        prediction = classify([1, 1, 1, 1, 1, 1, 1, 1, 0])
        record = self.store.create(1, phq9_values(), prediction)
        payload = serialize_assessment(record)
        self.assertEqual(payload["recommendations"], recommendations_for("PHQ-9", "mild"))
        self.assertEqual(payload["prediction"]["status"], "mild")
        self.assertEqual(payload["prediction"]["confidence"], 0.80)
        self.assertEqual(payload["percentage_score"], 30)
        self.assertEqual(payload["severity_description"], "Mild symptoms - Consider self-help strategies")

    def test_create_then_list_returns_newest_first(self):
        self.store.create(1, phq9_values(date=datetime.utcnow() - timedelta(days=3)))
        newest = self.store.create(1, phq9_values(date=datetime.utcnow()))
        records, page = self.store.list(1)
        self.assertEqual(records[0].id, newest.id)
        self.assertEqual(page.total, 2)

    def test_out_of_bounds_fields_rejected(self):
        cases = [
            ({"score": 30}, "score"),
            ({"score": -1}, "score"),
            ({"max_score": 0}, "max_score"),
            ({"severity": "critical"}, "severity"),
            ({"type": "BDI"}, "type"),
            ({"notes": "x" * 1001}, "notes"),
            ({"responses": {}}, "responses"),
        ]
        for overrides, field in cases:
            with self.assertRaises(ValidationError) as ctx:
                self.store.create(1, phq9_values(**overrides))
            self.assertIn(field, [item["field"] for item in ctx.exception.errors])
        self.assertEqual(self.db.query(models.AssessmentRecord).count(), 0)

    def test_pagination_flags(self):
        for offset in range(5):
            self.store.create(1, phq9_values(date=datetime(2025, 1, 1) + timedelta(days=offset)))
        first, first_page = self.store.list(1, page=1, limit=2)
        self.assertTrue(first_page.has_next)
        self.assertFalse(first_page.has_prev)
        self.assertEqual(first_page.total_pages, 3)
        last, last_page = self.store.list(1, page=3, limit=2)
        self.assertEqual(len(last), 1)
        self.assertFalse(last_page.has_next)
        self.assertTrue(last_page.has_prev)
        self.assertEqual(first[0].date, datetime(2025, 1, 5))

    def test_filters_by_type_and_date_range(self):
        self.store.create(1, phq9_values(date=datetime(2025, 3, 1, 9, 0)))
        self.store.create(1, phq9_values(type="GAD-7", max_score=21, date=datetime(2025, 3, 2, 23, 30)))
        self.store.create(1, phq9_values(date=datetime(2025, 3, 10)))
        records, _ = self.store.list(1, assessment_type="PHQ-9")
        self.assertEqual(len(records), 2)
        records, _ = self.store.list(1, start_date=date(2025, 3, 2), end_date=date(2025, 3, 2))
        self.assertEqual([r.type for r in records], ["GAD-7"])

    def test_records_are_scoped_to_owner(self):
        record = self.store.create(1, phq9_values())
        with self.assertRaises(NotFoundError):
            self.store.get(2, record.id)
        with self.assertRaises(NotFoundError):
            self.store.update(2, record.id, {"notes": "not mine"})
        with self.assertRaises(NotFoundError):
            self.store.delete(2, record.id)
        records, _ = self.store.list(2)
        self.assertEqual(records, [])
        self.assertEqual(self.store.get(1, record.id).notes, "Feeling a bit flat this week.")

    def test_update_rederives_recommendations_only_for_severity(self):
        record = self.store.create(1, phq9_values())
        self.db.query(models.AssessmentRecord).filter_by(id=record.id).update(
            {"recommendations_json": '["custom"]'}
        )
        self.db.commit()
        updated = self.store.update(1, record.id, {"notes": "Updated notes"})
        self.assertEqual(serialize_assessment(updated)["recommendations"], ["custom"])

        updated = self.store.update(1, record.id, {"severity": "moderate", "score": 12})
        self.assertEqual(
            serialize_assessment(updated)["recommendations"],
            recommendations_for("PHQ-9", "moderate"),
        )

    def test_update_checks_merged_fields(self):
        record = self.store.create(1, phq9_values())
        with self.assertRaises(ValidationError):
            self.store.update(1, record.id, {"score": 28})
        with self.assertRaises(ValidationError):
            self.store.update(1, record.id, {"max_score": 5})
        self.assertEqual(self.store.get(1, record.id).score, 8)

    def test_delete_then_get_is_not_found(self):
        record = self.store.create(1, phq9_values())
        self.store.delete(1, record.id)
        with self.assertRaises(NotFoundError):
            self.store.get(1, record.id)

    def test_stats_summary_groups_by_type(self):
        now = datetime.utcnow()
        self.store.create(1, phq9_values(score=4, severity="minimal", date=now))
        self.store.create(1, phq9_values(score=12, severity="moderate", date=now - timedelta(days=1)))
        self.store.create(1, phq9_values(type="GAD-7", max_score=21, score=7, date=now))
        self.store.create(1, phq9_values(date=now - timedelta(days=90)))
        stats = {item["type"]: item for item in self.store.stats_summary(1, days=30)}
        self.assertEqual(stats["PHQ-9"]["total_assessments"], 2)
        self.assertEqual(stats["PHQ-9"]["avg_score"], 8.0)
        self.assertEqual(stats["PHQ-9"]["severity_breakdown"], {"minimal": 1, "moderate": 1})
        self.assertEqual(stats["GAD-7"]["avg_percentage"], 33.3)

    def test_trends_average_per_day_oldest_first(self):
        day_one = datetime.combine(date.today() - timedelta(days=3), datetime.min.time()).replace(hour=9)
        day_two = day_one + timedelta(days=1)
        self.store.create(1, phq9_values(score=6, severity="mild", date=day_two))
        self.store.create(1, phq9_values(score=3, severity="minimal", date=day_one))
        self.store.create(1, phq9_values(score=12, severity="moderate", date=day_two + timedelta(hours=5)))
        self.store.create(1, phq9_values(type="GAD-7", max_score=21, score=7, date=day_two))
        self.store.create(2, phq9_values(score=27, severity="severe", date=day_two))

        trends = self.store.trends(1, assessment_type="PHQ-9", days=30)
        self.assertEqual([point["date"] for point in trends], [day_one.date().isoformat(), day_two.date().isoformat()])
        self.assertEqual(trends[0]["count"], 1)
        self.assertEqual(trends[1]["avg_score"], 9.0)
        self.assertEqual(trends[1]["avg_percentage"], 33.3)
        self.assertEqual(trends[1]["severities"], ["mild", "moderate"])
        self.assertEqual(len(self.store.trends(1, days=30)[1]["severities"]), 3)
        self.assertEqual(self.store.trends(2, days=1), [])

    def test_purge_user_only_removes_that_users_records(self):
        self.store.create(1, phq9_values())
        self.store.create(1, phq9_values(type="GAD-7", max_score=21))
        kept = self.store.create(2, phq9_values())
        self.assertEqual(self.store.purge_user(1), 2)
        self.db.commit()
        self.assertEqual(self.store.list(1)[1].total, 0)
        self.assertEqual(self.store.get(2, kept.id).id, kept.id)

    def test_database_failure_becomes_storage_error(self):
        with mock.patch.object(self.db, "commit", side_effect=OperationalError("INSERT", {}, Exception("disk I/O error"))):
            with self.assertRaises(StorageError) as ctx:
                self.store.create(1, phq9_values())
        self.assertEqual(ctx.exception.operation, "create_assessment")
        self.assertEqual(ctx.exception.user_id, 1)
        self.assertNotIn("disk", ctx.exception.to_dict()["detail"])


if __name__ == "__main__":
    unittest.main()
