import os
from pathlib import Path

from mindtrack.backend.app import database


def test_resolve_db_path_stable_across_cwd(monkeypatch):
    expected = Path(database.__file__).resolve().parents[3] / "mindtrack.db"
    monkeypatch.delenv("MINDTRACK_DB_PATH", raising=False)
    monkeypatch.delenv("DB_PATH", raising=False)
    monkeypatch.chdir(Path(database.__file__).resolve().parents[2])
    assert Path(database.resolve_db_path()) == expected


def test_relative_db_path_resolves_against_repo_root(monkeypatch):
    monkeypatch.setenv("MINDTRACK_DB_PATH", os.path.join("var", "mindtrack.db"))
    assert Path(database.resolve_db_path()) == database.REPO_ROOT / "var" / "mindtrack.db"


def test_data_dir_override(monkeypatch, tmp_path):
    monkeypatch.setenv("MINDTRACK_DATA_DIR", str(tmp_path))
    assert database.resolve_data_dir() == tmp_path
    monkeypatch.delenv("MINDTRACK_DATA_DIR")
    assert database.resolve_data_dir() == database.REPO_ROOT / "data"
