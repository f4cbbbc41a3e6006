from __future__ import annotations

import json
from contextlib import contextmanager
from datetime import date, timedelta
from typing import Dict, Iterator, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import NotFoundError, StorageError, ValidationError
from .models import MoodEntry
from .pagination import PageInfo, paginate

SCORE_FIELDS = ("mood", "energy", "anxiety", "sleep")
SCORE_MIN = 1
SCORE_MAX = 10
NOTES_MAX_LENGTH = 1000
MOOD_FACTORS = (
    "work", "family", "friends", "exercise", "sleep", "weather",
    "health", "finances", "stress", "leisure", "social", "diet",
)
UPDATABLE_FIELDS = SCORE_FIELDS + ("notes", "factors", "location", "tags")


def wellness_score(mood: int, energy: int, anxiety: int, sleep: int, factor_count: int) -> int:
    total = (
        mood / 10 * 25
        + energy / 10 * 20
        + (10 - anxiety) / 10 * 25
        + sleep / 10 * 20
        + factor_count * 2.5
    )
    return int(total + 0.5)


def validate_mood_fields(values: dict, partial: bool = False) -> None:
    errors: List[dict] = []
    for key in SCORE_FIELDS:
        if key not in values or values[key] is None:
            if not partial:
                errors.append({"field": key, "message": f"{key} score is required"})
            continue
        value = values[key]
        if isinstance(value, bool) or not isinstance(value, int) or not SCORE_MIN <= value <= SCORE_MAX:
            errors.append({"field": key, "message": f"{key} score must be between {SCORE_MIN} and {SCORE_MAX}"})
    notes = values.get("notes") or ""
    if len(notes) > NOTES_MAX_LENGTH:
        errors.append({"field": "notes", "message": f"Notes must be at most {NOTES_MAX_LENGTH} characters"})
    unknown = [factor for factor in values.get("factors") or [] if factor not in MOOD_FACTORS]
    if unknown:
        errors.append({"field": "factors", "message": f"Unknown factors: {', '.join(unknown)}"})
    if errors:
        raise ValidationError(errors[0]["message"], field=errors[0]["field"], errors=errors)


def serialize_mood_entry(entry: MoodEntry) -> dict:
    factors = json.loads(entry.factors_json or "[]")
    return {
        "id": entry.id,
        "user_id": entry.user_id,
        "entry_date": entry.entry_date.isoformat(),
        "mood": entry.mood,
        "energy": entry.energy,
        "anxiety": entry.anxiety,
        "sleep": entry.sleep,
        "notes": entry.notes or "",
        "factors": factors,
        "location": entry.location or "",
        "tags": json.loads(entry.tags_json or "[]"),
        "wellness_score": wellness_score(entry.mood, entry.energy, entry.anxiety, entry.sleep, len(factors)),
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
        "updated_at": entry.updated_at.isoformat() if entry.updated_at else None,
    }


class MoodStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    @contextmanager
    def _guard(self, operation: str, user_id: int, record_id: Optional[int] = None) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError(str(exc), operation=operation, user_id=user_id, record_id=record_id) from exc

    def _owned(self, user_id: int, entry_id: int) -> MoodEntry:
        entry = (
            self.db.query(MoodEntry)
            .filter(MoodEntry.id == entry_id, MoodEntry.user_id == user_id)
            .first()
        )
        if entry is None:
            raise NotFoundError("Mood entry not found")
        return entry

    def create(self, user_id: int, values: dict) -> MoodEntry:
        validate_mood_fields(values)
        entry_date = values.get("entry_date") or date.today()
        with self._guard("create_mood_entry", user_id):
            existing = (
                self.db.query(MoodEntry.id)
                .filter(MoodEntry.user_id == user_id, MoodEntry.entry_date == entry_date)
                .first()
            )
            if existing:
                raise ValidationError("A mood entry already exists for this date", field="entry_date")
            entry = MoodEntry(
                user_id=user_id,
                entry_date=entry_date,
                mood=values["mood"],
                energy=values["energy"],
                anxiety=values["anxiety"],
                sleep=values["sleep"],
                notes=(values.get("notes") or "").strip(),
                factors_json=json.dumps(values.get("factors") or []),
                location=(values.get("location") or "").strip(),
                tags_json=json.dumps([tag.strip() for tag in values.get("tags") or []]),
            )
            self.db.add(entry)
            self.db.commit()
            self.db.refresh(entry)
        return entry

    def get(self, user_id: int, entry_id: int) -> MoodEntry:
        with self._guard("get_mood_entry", user_id, entry_id):
            return self._owned(user_id, entry_id)

    def list(
        self,
        user_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[MoodEntry], PageInfo]:
        with self._guard("list_mood_entries", user_id):
            query = self.db.query(MoodEntry).filter(MoodEntry.user_id == user_id)
            if start_date:
                query = query.filter(MoodEntry.entry_date >= start_date)
            if end_date:
                query = query.filter(MoodEntry.entry_date <= end_date)
            query = query.order_by(MoodEntry.entry_date.desc(), MoodEntry.id.desc())
            return paginate(query, page, limit)

    def update(self, user_id: int, entry_id: int, patch: dict) -> MoodEntry:
        changes = {key: value for key, value in patch.items() if key in UPDATABLE_FIELDS}
        validate_mood_fields(changes, partial=True)
        with self._guard("update_mood_entry", user_id, entry_id):
            entry = self._owned(user_id, entry_id)
            for key in SCORE_FIELDS:
                if changes.get(key) is not None:
                    setattr(entry, key, changes[key])
            if "notes" in changes:
                entry.notes = (changes["notes"] or "").strip()
            if "location" in changes:
                entry.location = (changes["location"] or "").strip()
            if "factors" in changes:
                entry.factors_json = json.dumps(changes["factors"] or [])
            if "tags" in changes:
                entry.tags_json = json.dumps([tag.strip() for tag in changes["tags"] or []])
            self.db.commit()
            self.db.refresh(entry)
        return entry

    def delete(self, user_id: int, entry_id: int) -> None:
        with self._guard("delete_mood_entry", user_id, entry_id):
            entry = self._owned(user_id, entry_id)
            self.db.delete(entry)
            self.db.commit()

    def stats_summary(self, user_id: int, days: int = 30) -> dict:
        start = date.today() - timedelta(days=days)
        with self._guard("mood_stats", user_id):
            entries = (
                self.db.query(MoodEntry)
                .filter(MoodEntry.user_id == user_id, MoodEntry.entry_date >= start)
                .all()
            )
        if not entries:
            return {
                "avg_mood": 0,
                "avg_energy": 0,
                "avg_anxiety": 0,
                "avg_sleep": 0,
                "total_entries": 0,
                "most_common_factors": [],
            }

        factor_counts: Dict[str, int] = {}
        for entry in entries:
            for factor in json.loads(entry.factors_json or "[]"):
                factor_counts[factor] = factor_counts.get(factor, 0) + 1
        top_factors = sorted(factor_counts.items(), key=lambda item: (-item[1], item[0]))[:5]

        count = len(entries)
        return {
            "avg_mood": round(sum(e.mood for e in entries) / count, 1),
            "avg_energy": round(sum(e.energy for e in entries) / count, 1),
            "avg_anxiety": round(sum(e.anxiety for e in entries) / count, 1),
            "avg_sleep": round(sum(e.sleep for e in entries) / count, 1),
            "total_entries": count,
            "most_common_factors": [{"factor": name, "count": total} for name, total in top_factors],
        }

    def trends(self, user_id: int, days: int = 30) -> List[dict]:
        start = date.today() - timedelta(days=days)
        with self._guard("mood_trends", user_id):
            entries = (
                self.db.query(MoodEntry)
                .filter(MoodEntry.user_id == user_id, MoodEntry.entry_date >= start)
                .order_by(MoodEntry.entry_date.asc(), MoodEntry.id.asc())
                .all()
            )

        by_day: Dict[date, List[MoodEntry]] = {}
        for entry in entries:
            by_day.setdefault(entry.entry_date, []).append(entry)

        points = []
        for day, items in sorted(by_day.items()):
            count = len(items)
            factors = [json.loads(item.factors_json or "[]") for item in items]
            wellness = [
                wellness_score(item.mood, item.energy, item.anxiety, item.sleep, len(item_factors))
                for item, item_factors in zip(items, factors)
            ]
            points.append({
                "date": day.isoformat(),
                "mood": round(sum(item.mood for item in items) / count, 1),
                "energy": round(sum(item.energy for item in items) / count, 1),
                "anxiety": round(sum(item.anxiety for item in items) / count, 1),
                "sleep": round(sum(item.sleep for item in items) / count, 1),
                "wellness_score": round(sum(wellness) / count, 1),
                "factors": factors,
            })
        return points

    def purge_user(self, user_id: int) -> int:
        # Caller owns the transaction.
        return (
            self.db.query(MoodEntry)
            .filter(MoodEntry.user_id == user_id)
            .delete(synchronize_session=False)
        )
