from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Union

from .errors import MissingField, OutOfRange, StorageError, ValidationError

logger = logging.getLogger(__name__)

SEVERITY_BANDS = ("minimal", "mild", "moderate", "severe")
RESPONSE_KEYS = [f"q{i}_score" for i in range(1, 10)]
ITEM_MIN = 0
ITEM_MAX = 3
RULES_VERSION = "1.0"

ResponseInput = Union[Mapping[str, object], Sequence[object]]


@dataclass
class BandRule:
    band: str
    min_score: int
    max_score: int
    confidence: float

    def matches(self, total: int) -> bool:
        return self.min_score <= total <= self.max_score


@dataclass
class RuleTable:
    rules: List[BandRule]
    version: str = RULES_VERSION
    kind: str = "rule-based"
    features: List[str] = field(default_factory=lambda: list(RESPONSE_KEYS))
    last_updated: datetime = field(default_factory=datetime.utcnow)

    def rule_for(self, band: str) -> BandRule:
        for rule in self.rules:
            if rule.band == band:
                return rule
        raise KeyError(band)

    def to_dict(self) -> dict:
        return {
            "type": self.kind,
            "version": self.version,
            "rules": {
                rule.band: {
                    "min_score": rule.min_score,
                    "max_score": rule.max_score,
                    "confidence": rule.confidence,
                }
                for rule in self.rules
            },
            "features": list(self.features),
            "last_updated": self.last_updated.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "RuleTable":
        rules_payload = payload.get("rules") or {}
        rules = []
        for band in SEVERITY_BANDS:
            item = rules_payload[band]
            rules.append(BandRule(
                band=band,
                min_score=int(item["min_score"]),
                max_score=int(item["max_score"]),
                confidence=float(item["confidence"]),
            ))
        last_updated = payload.get("last_updated")
        return cls(
            rules=rules,
            version=str(payload.get("version", RULES_VERSION)),
            kind=str(payload.get("type", "rule-based")),
            features=list(payload.get("features") or RESPONSE_KEYS),
            last_updated=datetime.fromisoformat(last_updated) if last_updated else datetime.utcnow(),
        )


def default_rules() -> RuleTable:
    return RuleTable(rules=[
        BandRule("minimal", 0, 4, 0.85),
        BandRule("mild", 5, 9, 0.80),
        BandRule("moderate", 10, 14, 0.75),
        BandRule("severe", 15, len(RESPONSE_KEYS) * ITEM_MAX, 0.90),
    ])


@dataclass
class ClassificationResult:
    band: str
    confidence: float
    total_score: int
    model_version: str
    classified_at: datetime

    def to_dict(self) -> dict:
        return {
            "band": self.band,
            "confidence": self.confidence,
            "total_score": self.total_score,
            "model_version": self.model_version,
            "classified_at": self.classified_at.isoformat(),
        }


def normalize_responses(responses: ResponseInput) -> Dict[str, int]:
    if isinstance(responses, Mapping):
        source = responses
    elif isinstance(responses, (list, tuple)):
        if len(responses) > len(RESPONSE_KEYS):
            raise ValidationError(
                f"Expected {len(RESPONSE_KEYS)} scores, got {len(responses)}.",
                field="responses",
            )
        source = {key: value for key, value in zip(RESPONSE_KEYS, responses)}
    else:
        raise ValidationError("Responses must be an object or a list of 9 scores.", field="responses")

    vector: Dict[str, int] = {}
    for key in RESPONSE_KEYS:
        if key not in source or source[key] is None:
            raise MissingField(f"Missing required question: {key}", field=key)
        value = source[key]
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"Score for {key} must be an integer.", field=key)
        if value < ITEM_MIN or value > ITEM_MAX:
            raise OutOfRange(
                f"Invalid score for {key}: must be between {ITEM_MIN} and {ITEM_MAX}",
                field=key,
            )
        vector[key] = value
    return vector


def band_for_score(total: int, rules: Optional[RuleTable] = None) -> BandRule:
    rules = rules or default_rules()
    for rule in rules.rules:
        if rule.matches(total):
            return rule
    if total < rules.rules[0].min_score:
        return rules.rules[0]
    return rules.rules[-1]


def classify(responses: ResponseInput, rules: Optional[RuleTable] = None) -> ClassificationResult:
    rules = rules or default_rules()
    vector = normalize_responses(responses)
    total = sum(vector.values())
    rule = band_for_score(total, rules)
    return ClassificationResult(
        band=rule.band,
        confidence=rule.confidence,
        total_score=total,
        model_version=rules.version,
        classified_at=datetime.utcnow(),
    )


def vector_from_responses(responses: Mapping[str, object]) -> Dict[str, object]:
    vector: Dict[str, object] = {}
    for index, key in enumerate(RESPONSE_KEYS):
        if key in responses:
            vector[key] = responses[key]
        elif str(index) in responses:
            vector[key] = responses[str(index)]
    return vector


def load_rules(path: Path) -> RuleTable:
    if not path.exists():
        rules = default_rules()
        save_rules(rules, path)
        logger.info("Created default severity rules at %s", path)
        return rules
    try:
        with path.open("r", encoding="utf-8") as handle:
            return RuleTable.from_dict(json.load(handle))
    except (OSError, ValueError, KeyError) as exc:
        raise StorageError(f"Unable to read severity rules: {exc}", operation="load_rules") from exc


def save_rules(rules: RuleTable, path: Path) -> None:
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump(rules.to_dict(), handle, indent=2)
        os.replace(tmp_path, path)
    except OSError as exc:
        raise StorageError(f"Unable to write severity rules: {exc}", operation="save_rules") from exc


def refresh_rules(rules: RuleTable, path: Path) -> dict:
    refreshed_at = datetime.utcnow()
    save_rules(replace(rules, last_updated=refreshed_at), path)
    rules.last_updated = refreshed_at
    logger.info("Severity rules refreshed at %s", refreshed_at.isoformat())
    return {
        "success": True,
        "message": "Rule table refreshed; thresholds are fixed and were not refit.",
        "timestamp": refreshed_at.isoformat(),
    }


class RuleStore:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._rules: Optional[RuleTable] = None

    @property
    def rules(self) -> RuleTable:
        if self._rules is None:
            self._rules = load_rules(self.path)
        return self._rules

    def refresh(self) -> dict:
        return refresh_rules(self.rules, self.path)


def rules_stats(rules: RuleTable, severity_distribution: Dict[str, int], total_samples: int) -> dict:
    return {
        "model_type": rules.kind,
        "model_version": rules.version,
        "total_training_samples": total_samples,
        "severity_distribution": severity_distribution,
        "last_updated": rules.last_updated.isoformat(),
        "features": list(rules.features),
    }
