from __future__ import annotations

import json
import logging
import os
import random
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Deque, Dict, List, Optional

from .errors import StorageError
from .severity_classifier import ITEM_MAX, ITEM_MIN, RESPONSE_KEYS, SEVERITY_BANDS, band_for_score

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1000


@dataclass
class TrainingLogEntry:
    id: int
    responses: Dict[str, int]
    total_score: int
    band: str
    recorded_at: datetime

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "responses": dict(self.responses),
            "total_score": self.total_score,
            "band": self.band,
            "recorded_at": self.recorded_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "TrainingLogEntry":
        return cls(
            id=int(payload["id"]),
            responses={key: int(value) for key, value in payload["responses"].items()},
            total_score=int(payload["total_score"]),
            band=str(payload["band"]),
            recorded_at=datetime.fromisoformat(payload["recorded_at"]),
        )


class TrainingLog:
    """Bounded FIFO of classified samples backed by a JSON file.

    Appends are serialized by a single lock that is held through the file
    rewrite, so the file always reflects a complete, ordered snapshot.
    """

    def __init__(self, path: Path, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.path = Path(path)
        self.capacity = capacity
        self._lock = threading.Lock()
        self._entries: Deque[TrainingLogEntry] = deque(maxlen=capacity)
        self._next_id = 1
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
            entries = [TrainingLogEntry.from_dict(item) for item in payload]
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise StorageError(f"Unable to read training log: {exc}", operation="load_training_log") from exc
        self._entries.extend(entries)
        if entries:
            self._next_id = max(entry.id for entry in entries) + 1

    def _write(self, entries: Deque[TrainingLogEntry]) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump([entry.to_dict() for entry in entries], handle, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise StorageError(f"Unable to write training log: {exc}", operation="write_training_log") from exc

    def _commit(self, new_entries: List[TrainingLogEntry]) -> None:
        # Memory only changes once the file holds the new snapshot.
        pending = deque(self._entries, maxlen=self.capacity)
        pending.extend(new_entries)
        self._write(pending)
        self._entries = pending
        self._next_id = new_entries[-1].id + 1

    def record_sample(self, responses: Dict[str, int], total_score: int, band: str) -> TrainingLogEntry:
        with self._lock:
            entry = TrainingLogEntry(
                id=self._next_id,
                responses=dict(responses),
                total_score=total_score,
                band=band,
                recorded_at=datetime.utcnow(),
            )
            self._commit([entry])
            return entry

    def seed(self, count: int, rng: Optional[random.Random] = None) -> int:
        if count < 1:
            return 0
        rng = rng or random.Random()
        now = datetime.utcnow()
        with self._lock:
            samples = []
            for offset in range(count):
                responses = {key: rng.randint(ITEM_MIN, ITEM_MAX) for key in RESPONSE_KEYS}
                total = sum(responses.values())
                samples.append(TrainingLogEntry(
                    id=self._next_id + offset,
                    responses=responses,
                    total_score=total,
                    band=band_for_score(total).band,
                    recorded_at=now - timedelta(seconds=rng.randint(0, 365 * 24 * 3600)),
                ))
            self._commit(samples)
        logger.info("Seeded %d training samples into %s", count, self.path)
        return count

    def entries(self) -> List[TrainingLogEntry]:
        with self._lock:
            return list(self._entries)

    def severity_distribution(self) -> Dict[str, int]:
        counts = {band: 0 for band in SEVERITY_BANDS}
        for entry in self.entries():
            counts[entry.band] = counts.get(entry.band, 0) + 1
        return counts

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
