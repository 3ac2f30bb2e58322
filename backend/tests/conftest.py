"""
backend/tests/conftest.py

Purpose:
    Shared pytest bootstrap for import paths (backend package and the test
    helpers next to this file) plus the in-memory database fixture.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

_THIS_FILE = Path(__file__).resolve()
_TESTS_DIR = _THIS_FILE.parent
_BACKEND_DIR = _THIS_FILE.parents[1]
_REPO_ROOT = _THIS_FILE.parents[2]

for candidate in (str(_TESTS_DIR), str(_BACKEND_DIR), str(_REPO_ROOT)):
    if candidate not in sys.path:
        sys.path.insert(0, candidate)

from fake_mongo import FakeDatabase  # noqa: E402


@pytest.fixture
def fake_db(monkeypatch) -> FakeDatabase:
    """Fresh in-memory database, also installed as the app-wide ``app.database.db``."""
    import app.database as _db

    database = FakeDatabase()
    monkeypatch.setattr(_db, "db", database, raising=False)
    return database
