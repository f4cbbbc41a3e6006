from __future__ import annotations

import json
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterator, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import NotFoundError, StorageError, ValidationError
from .models import AssessmentRecord
from .pagination import PageInfo, paginate
from .recommendations import (
    ASSESSMENT_TYPES,
    percentage_score,
    recommendations_for,
    severity_description,
)
from .severity_classifier import SEVERITY_BANDS, ClassificationResult

NOTES_MAX_LENGTH = 1000
UPDATABLE_FIELDS = ("score", "max_score", "severity", "responses", "notes", "follow_up_date")


def validate_assessment_fields(values: dict) -> None:
    errors: List[dict] = []
    assessment_type = values.get("type")
    score = values.get("score")
    max_score = values.get("max_score")
    severity = values.get("severity")
    notes = values.get("notes") or ""
    responses = values.get("responses")

    if assessment_type not in ASSESSMENT_TYPES:
        errors.append({"field": "type", "message": f"Type must be one of: {', '.join(ASSESSMENT_TYPES)}"})
    if not isinstance(max_score, int) or isinstance(max_score, bool) or max_score < 1:
        errors.append({"field": "max_score", "message": "Max score must be a positive integer"})
        max_score = None
    if not isinstance(score, int) or isinstance(score, bool):
        errors.append({"field": "score", "message": "Score must be an integer"})
    elif score < 0 or (max_score is not None and score > max_score):
        upper = max_score if max_score is not None else "max_score"
        errors.append({"field": "score", "message": f"Score must be between 0 and {upper}"})
    if severity not in SEVERITY_BANDS:
        errors.append({"field": "severity", "message": f"Severity must be one of: {', '.join(SEVERITY_BANDS)}"})
    if len(notes) > NOTES_MAX_LENGTH:
        errors.append({"field": "notes", "message": f"Notes must be at most {NOTES_MAX_LENGTH} characters"})
    if not isinstance(responses, dict) or not responses:
        errors.append({"field": "responses", "message": "Responses are required"})
    elif any(isinstance(value, bool) or not isinstance(value, int) for value in responses.values()):
        errors.append({"field": "responses", "message": "Response values must be integers"})

    if errors:
        raise ValidationError(errors[0]["message"], field=errors[0]["field"], errors=errors)


def serialize_assessment(record: AssessmentRecord) -> dict:
    prediction = None
    if record.prediction_status:
        prediction = {
            "status": record.prediction_status,
            "confidence": record.prediction_confidence,
            "model_version": record.prediction_model_version,
            "predicted_at": record.predicted_at.isoformat() if record.predicted_at else None,
        }
    return {
        "id": record.id,
        "user_id": record.user_id,
        "type": record.type,
        "date": record.date.isoformat(),
        "score": record.score,
        "max_score": record.max_score,
        "severity": record.severity,
        "responses": json.loads(record.responses_json or "{}"),
        "notes": record.notes or "",
        "recommendations": json.loads(record.recommendations_json or "[]"),
        "follow_up_date": record.follow_up_date.isoformat() if record.follow_up_date else None,
        "prediction": prediction,
        "percentage_score": percentage_score(record.score, record.max_score),
        "severity_description": severity_description(record.severity),
        "created_at": record.created_at.isoformat() if record.created_at else None,
        "updated_at": record.updated_at.isoformat() if record.updated_at else None,
    }


class AssessmentStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    @contextmanager
    def _guard(self, operation: str, user_id: int, record_id: Optional[int] = None) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError(str(exc), operation=operation, user_id=user_id, record_id=record_id) from exc

    def _owned(self, user_id: int, record_id: int) -> AssessmentRecord:
        record = (
            self.db.query(AssessmentRecord)
            .filter(AssessmentRecord.id == record_id, AssessmentRecord.user_id == user_id)
            .first()
        )
        if record is None:
            raise NotFoundError("Assessment not found")
        return record

    def create(
        self,
        user_id: int,
        values: dict,
        prediction: Optional[ClassificationResult] = None,
    ) -> AssessmentRecord:
        validate_assessment_fields(values)
        record = AssessmentRecord(
            user_id=user_id,
            type=values["type"],
            date=values.get("date") or datetime.utcnow(),
            score=values["score"],
            max_score=values["max_score"],
            severity=values["severity"],
            responses_json=json.dumps(values["responses"]),
            notes=(values.get("notes") or "").strip(),
            recommendations_json=json.dumps(recommendations_for(values["type"], values["severity"])),
            follow_up_date=values.get("follow_up_date"),
        )
        if prediction is not None:
            record.prediction_status = prediction.band
            record.prediction_confidence = prediction.confidence
            record.prediction_model_version = prediction.model_version
            record.predicted_at = prediction.classified_at
        with self._guard("create_assessment", user_id):
            self.db.add(record)
            self.db.commit()
            self.db.refresh(record)
        return record

    def get(self, user_id: int, record_id: int) -> AssessmentRecord:
        with self._guard("get_assessment", user_id, record_id):
            return self._owned(user_id, record_id)

    def list(
        self,
        user_id: int,
        assessment_type: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[AssessmentRecord], PageInfo]:
        with self._guard("list_assessments", user_id):
            query = self.db.query(AssessmentRecord).filter(AssessmentRecord.user_id == user_id)
            if assessment_type:
                query = query.filter(AssessmentRecord.type == assessment_type)
            if start_date:
                query = query.filter(AssessmentRecord.date >= datetime.combine(start_date, time.min))
            if end_date:
                query = query.filter(AssessmentRecord.date < datetime.combine(end_date + timedelta(days=1), time.min))
            query = query.order_by(AssessmentRecord.date.desc(), AssessmentRecord.id.desc())
            return paginate(query, page, limit)

    def update(self, user_id: int, record_id: int, patch: dict) -> AssessmentRecord:
        with self._guard("update_assessment", user_id, record_id):
            record = self._owned(user_id, record_id)
        changes = {key: value for key, value in patch.items() if key in UPDATABLE_FIELDS}
        merged = {
            "type": record.type,
            "score": changes.get("score", record.score),
            "max_score": changes.get("max_score", record.max_score),
            "severity": changes.get("severity", record.severity),
            "notes": changes.get("notes", record.notes),
            "responses": changes.get("responses", json.loads(record.responses_json or "{}")),
        }
        validate_assessment_fields(merged)

        with self._guard("update_assessment", user_id, record_id):
            for key in ("score", "max_score", "severity", "follow_up_date"):
                if key in changes:
                    setattr(record, key, changes[key])
            if "notes" in changes:
                record.notes = (changes["notes"] or "").strip()
            if "responses" in changes:
                record.responses_json = json.dumps(changes["responses"])
            if "severity" in changes:
                record.recommendations_json = json.dumps(recommendations_for(record.type, record.severity))
            self.db.commit()
            self.db.refresh(record)
        return record

    def delete(self, user_id: int, record_id: int) -> None:
        with self._guard("delete_assessment", user_id, record_id):
            record = self._owned(user_id, record_id)
            self.db.delete(record)
            self.db.commit()

    def stats_summary(self, user_id: int, assessment_type: Optional[str] = None, days: int = 30) -> List[dict]:
        start = datetime.utcnow() - timedelta(days=days)
        with self._guard("assessment_stats", user_id):
            query = self.db.query(AssessmentRecord).filter(
                AssessmentRecord.user_id == user_id,
                AssessmentRecord.date >= start,
            )
            if assessment_type:
                query = query.filter(AssessmentRecord.type == assessment_type)
            records = query.all()

        grouped: Dict[str, List[AssessmentRecord]] = {}
        for record in records:
            grouped.setdefault(record.type, []).append(record)

        stats = []
        for type_name, items in grouped.items():
            severity_counts: Dict[str, int] = {}
            for item in items:
                severity_counts[item.severity] = severity_counts.get(item.severity, 0) + 1
            avg_score = sum(item.score for item in items) / len(items)
            avg_percentage = sum(item.score / item.max_score * 100 for item in items) / len(items)
            stats.append({
                "type": type_name,
                "avg_score": round(avg_score, 1),
                "avg_percentage": round(avg_percentage, 1),
                "total_assessments": len(items),
                "severity_breakdown": severity_counts,
                "latest_assessment": max(item.date for item in items).isoformat(),
            })
        stats.sort(key=lambda item: item["type"])
        return stats

    def trends(self, user_id: int, assessment_type: Optional[str] = None, days: int = 30) -> List[dict]:
        """Per-day averages for charting, oldest day first."""
        start = datetime.utcnow() - timedelta(days=days)
        with self._guard("assessment_trends", user_id):
            query = self.db.query(AssessmentRecord).filter(
                AssessmentRecord.user_id == user_id,
                AssessmentRecord.date >= start,
            )
            if assessment_type:
                query = query.filter(AssessmentRecord.type == assessment_type)
            records = query.order_by(AssessmentRecord.date.asc(), AssessmentRecord.id.asc()).all()

        by_day: Dict[str, List[AssessmentRecord]] = {}
        for record in records:
            by_day.setdefault(record.date.date().isoformat(), []).append(record)
        return [
            {
                "date": day,
                "avg_score": round(sum(item.score for item in items) / len(items), 1),
                "avg_percentage": round(sum(item.score / item.max_score * 100 for item in items) / len(items), 1),
                "count": len(items),
                "severities": [item.severity for item in items],
            }
            for day, items in sorted(by_day.items())
        ]

    def purge_user(self, user_id: int) -> int:
        # Caller owns the transaction.
        return (
            self.db.query(AssessmentRecord)
            .filter(AssessmentRecord.user_id == user_id)
            .delete(synchronize_session=False)
        )
