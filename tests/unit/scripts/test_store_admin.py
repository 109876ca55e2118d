"""
storekeeper: store_admin subprocess smoke tests

File: tests/unit/scripts/test_store_admin.py

Purpose
- Keep the admin entrypoint executable: `--help`, JSON stats, backups, and a
  failing open reported as exit code 1.
"""

from __future__ import annotations

import json
import os
import sqlite3
import subprocess
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[3]
SRC_PATH = REPO_ROOT / "src"


def _run_script(*args: str) -> subprocess.CompletedProcess[str]:
    env = os.environ.copy()
    existing_pythonpath = env.get("PYTHONPATH")
    src_pythonpath = str(SRC_PATH)
    env["PYTHONPATH"] = (
        src_pythonpath if not existing_pythonpath else f"{src_pythonpath}:{existing_pythonpath}"
    )
    return subprocess.run(
        [sys.executable, "scripts/store_admin.py", *args],
        cwd=REPO_ROOT,
        text=True,
        capture_output=True,
        check=False,
        env=env,
    )


def _render_failure(label: str, completed: subprocess.CompletedProcess[str]) -> str:
    return (
        f"{label} failed with exit code {completed.returncode}\n"
        f"stdout:\n{completed.stdout}\n"
        f"stderr:\n{completed.stderr}\n"
    )


def _seed_store(path: Path) -> None:
    conn = sqlite3.connect(path)
    try:
        conn.execute("CREATE TABLE items (id INTEGER PRIMARY KEY, label TEXT)")
        conn.executemany("INSERT INTO items (label) VALUES (?)", [("a",), ("b",), ("c",)])
        conn.commit()
    finally:
        conn.close()


@pytest.mark.unit
def test_help_smoke() -> None:
    result = _run_script("--help")

    assert result.returncode == 0, _render_failure("store_admin --help", result)
    lowered_output = result.stdout.lower()
    assert "usage" in lowered_output
    assert "--db" in lowered_output
    assert "backup" in lowered_output


@pytest.mark.unit
def test_stats_json_reports_tables(tmp_path: Path) -> None:
    db_path = tmp_path / "inventory.db"
    _seed_store(db_path)

    result = _run_script("--db", str(db_path), "--json", "stats")

    assert result.returncode == 0, _render_failure("store_admin stats", result)
    payload = json.loads(result.stdout)
    assert payload["store"] == str(db_path.resolve())
    tables = {table["name"]: table for table in payload["stats"]["tables"]}
    assert tables["items"]["row_count"] == 3
    assert payload["stats"]["page_size"] > 0


@pytest.mark.unit
def test_history_text_output(tmp_path: Path) -> None:
    db_path = tmp_path / "inventory.db"
    _seed_store(db_path)

    result = _run_script("--db", str(db_path), "history")

    assert result.returncode == 0, _render_failure("store_admin history", result)
    assert "migrations:" in result.stdout


@pytest.mark.unit
def test_backup_writes_named_snapshot(tmp_path: Path) -> None:
    db_path = tmp_path / "inventory.db"
    _seed_store(db_path)

    result = _run_script("--db", str(db_path), "--json", "backup", "--name", "nightly")

    assert result.returncode == 0, _render_failure("store_admin backup", result)
    backup_path = tmp_path / "backups" / "nightly.db"
    assert backup_path.is_file()
    payload = json.loads(result.stdout)
    assert payload["backup"]["path"] == backup_path.resolve().as_posix()

    conn = sqlite3.connect(backup_path)
    try:
        assert conn.execute("SELECT COUNT(*) FROM items").fetchone()[0] == 3
    finally:
        conn.close()


@pytest.mark.unit
def test_missing_store_fails_without_creating_it(tmp_path: Path) -> None:
    db_path = tmp_path / "absent.db"

    result = _run_script("--db", str(db_path), "--json", "stats")

    assert result.returncode == 1
    payload = json.loads(result.stdout)
    assert payload["command"] == "stats"
    assert "unable to open" in payload["error"]
    assert not db_path.exists()
