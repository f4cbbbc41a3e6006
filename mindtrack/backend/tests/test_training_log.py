import json
import random
import threading

import pytest

from mindtrack.backend.app.errors import StorageError
from mindtrack.backend.app.training_log import TrainingLog

SAMPLE = {f"q{i}_score": 1 for i in range(1, 10)}


def test_log_keeps_most_recent_entries(tmp_path):
    log = TrainingLog(tmp_path / "training_log.json", capacity=1000)
    for _ in range(1005):
        log.record_sample(SAMPLE, 9, "mild")

    entries = log.entries()
    assert len(entries) == 1000
    assert entries[0].id == 6
    assert entries[-1].id == 1005

    persisted = json.loads((tmp_path / "training_log.json").read_text())
    assert len(persisted) == 1000
    assert persisted[0]["id"] == 6


def test_ids_continue_after_reload(tmp_path):
    path = tmp_path / "training_log.json"
    log = TrainingLog(path, capacity=3)
    for _ in range(5):
        log.record_sample(SAMPLE, 9, "mild")

    reloaded = TrainingLog(path, capacity=3)
    assert [entry.id for entry in reloaded.entries()] == [3, 4, 5]
    entry = reloaded.record_sample(SAMPLE, 9, "mild")
    assert entry.id == 6


def test_concurrent_appends_are_serialized(tmp_path):
    path = tmp_path / "training_log.json"
    log = TrainingLog(path, capacity=50)

    def worker():
        for _ in range(20):
            log.record_sample(SAMPLE, 9, "mild")

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    ids = [entry.id for entry in log.entries()]
    assert ids == list(range(31, 81))
    persisted = json.loads(path.read_text())
    assert [item["id"] for item in persisted] == ids


def test_seed_matches_band_rules(tmp_path):
    log = TrainingLog(tmp_path / "training_log.json")
    log.seed(200, random.Random(7))
    assert len(log) == 200
    for entry in log.entries():
        assert entry.total_score == sum(entry.responses.values())
        if entry.total_score <= 4:
            assert entry.band == "minimal"
        elif entry.total_score <= 9:
            assert entry.band == "mild"
        elif entry.total_score <= 14:
            assert entry.band == "moderate"
        else:
            assert entry.band == "severe"
    assert sum(log.severity_distribution().values()) == 200


def test_corrupt_file_raises_storage_error(tmp_path):
    path = tmp_path / "training_log.json"
    path.write_text("{not json")
    with pytest.raises(StorageError):
        TrainingLog(path)


def test_unwritable_location_raises_storage_error(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    log = TrainingLog(blocker / "training_log.json")
    with pytest.raises(StorageError):
        log.record_sample(SAMPLE, 9, "mild")
