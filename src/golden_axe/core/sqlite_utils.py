from __future__ import annotations

import sqlite3
from pathlib import Path

SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA synchronous=FULL;",
    "PRAGMA busy_timeout=5000;",
    "PRAGMA temp_store=MEMORY;",
)


def connect_sqlite(path: Path) -> sqlite3.Connection:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    for pragma in SQLITE_PRAGMAS:
        conn.execute(pragma)
    return conn


def prefix_upper_bound(prefix: bytes) -> bytes:
    """Smallest byte string greater than every key starting with ``prefix``.

    SQLite compares BLOBs with memcmp, so ``key >= prefix AND key < bound``
    is a lexicographic prefix scan.
    """
    trimmed = prefix.rstrip(b"\xff")
    if not trimmed:
        raise ValueError("prefix has no finite upper bound")
    return trimmed[:-1] + bytes([trimmed[-1] + 1])
