import unittest
from datetime import date

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from mindtrack.backend.app import models
from mindtrack.backend.app.account_store import AccountStore
from mindtrack.backend.app.database import Base
from mindtrack.backend.app.errors import ValidationError


class AccountStoreTests(unittest.TestCase):
    def setUp(self):
        engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
        Base.metadata.create_all(engine)
        self.db = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
        for user_id in (1, 2):
            self.db.add(models.User(id=user_id, email=f"user{user_id}@example.com", hashed_password="x"))
            self.db.add(models.AssessmentRecord(
                user_id=user_id, type="PHQ-9", score=3, max_score=27, severity="minimal", responses_json="{}",
            ))
            self.db.add(models.MoodEntry(
                user_id=user_id, entry_date=date(2025, 5, 1), mood=5, energy=5, anxiety=5, sleep=5,
            ))
        self.db.commit()
        self.store = AccountStore(self.db)

    def tearDown(self):
        self.db.close()

    def test_update_profile_trims_name(self):
        user = self.db.get(models.User, 1)
        self.assertEqual(self.store.update_profile(user, {"name": "  Ada  ", "email": "x@y.z"}).name, "Ada")
        self.assertEqual(user.email, "user1@example.com")
        self.assertIsNone(self.store.update_profile(user, {"name": "   "}).name)
        with self.assertRaises(ValidationError):
            self.store.update_profile(user, {"name": "n" * 101})

    def test_delete_account_cascades_to_own_records_only(self):
        removed = self.store.delete_account(self.db.get(models.User, 1))
        self.assertEqual(removed, {"mood_entries": 1, "assessments": 1})
        self.assertIsNone(self.db.get(models.User, 1))
        self.assertEqual(self.db.query(models.AssessmentRecord).filter_by(user_id=1).count(), 0)
        self.assertEqual(self.db.query(models.MoodEntry).filter_by(user_id=1).count(), 0)
        self.assertEqual(self.db.query(models.AssessmentRecord).filter_by(user_id=2).count(), 1)
        self.assertEqual(self.db.query(models.MoodEntry).filter_by(user_id=2).count(), 1)


if __name__ == "__main__":
    unittest.main()
