from __future__ import annotations

from contextlib import contextmanager
from typing import Dict, Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .assessment_store import AssessmentStore
from .errors import StorageError, ValidationError
from .models import User
from .mood_store import MoodStore

NAME_MAX_LENGTH = 100
PROFILE_FIELDS = ("name",)


class AccountStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    @contextmanager
    def _guard(self, operation: str, user_id: int) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError(str(exc), operation=operation, user_id=user_id) from exc

    def update_profile(self, user: User, patch: dict) -> User:
        changes = {key: value for key, value in patch.items() if key in PROFILE_FIELDS}
        if "name" in changes:
            name = (changes["name"] or "").strip()
            if len(name) > NAME_MAX_LENGTH:
                raise ValidationError(f"Name must be at most {NAME_MAX_LENGTH} characters", field="name")
            changes["name"] = name or None
        with self._guard("update_profile", user.id):
            for key, value in changes.items():
                setattr(user, key, value)
            self.db.commit()
            self.db.refresh(user)
        return user

    def delete_account(self, user: User) -> Dict[str, int]:
        """Remove the user's mood entries, assessments and user row in one transaction."""
        user_id = user.id
        with self._guard("delete_account", user_id):
            moods = MoodStore(self.db).purge_user(user_id)
            assessments = AssessmentStore(self.db).purge_user(user_id)
            self.db.delete(user)
            self.db.commit()
        return {"mood_entries": moods, "assessments": assessments}
