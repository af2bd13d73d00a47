# ruff: noqa: E402, I001
"""Pytest configuration for test isolation.

Every test that needs a database gets its own file-backed SQLite database
(``db_url`` fixture) built from the ORM metadata; engines are disposed
afterwards so the per-URL cache in ``db.client`` does not leak between tests.

Environment variables read by the package are cleared for each test so a
developer's shell (or a local ``.env``) cannot change behavior under test.
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path

# Make the workspace packages importable without an install: `packages/` for
# `trends_cube`, `libs/db/src` for `db`, and the repo root for `tests.helpers`.
_ROOT = Path(__file__).resolve().parents[1]
sys.path[:0] = [
    p
    for p in [str(_ROOT / "packages"), str(_ROOT / "libs" / "db" / "src"), str(_ROOT)]
    if p not in sys.path
]

import pytest

from db.client import dispose_engines
from tests.helpers.db import bootstrap_sqlite_db


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in ("DATABASE_URL", "TRENDS_CUBE_LOG_LEVEL", "TRENDS_CUBE_BATCH_SIZE"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def db_url(tmp_path: Path) -> Iterator[str]:
    url = bootstrap_sqlite_db(tmp_path / "cube.sqlite3")
    yield url
    dispose_engines()
