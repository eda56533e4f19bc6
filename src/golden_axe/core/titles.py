"""Bidirectional title index persisted in a local sqlite key-value table.

Two key families live side by side in one ``kv`` table:

* ``chat$<chat_id>$<user_id>`` -> title (UTF-8)
* ``title$<chat_id>$<title>`` -> user id (8-byte big-endian)

Both keys of a record are always written and removed in the same
transaction. All access goes through a single-worker executor, so every
store operation is serialized and atomic; nothing is atomic across two
separate calls.
"""

from __future__ import annotations

import asyncio
import html
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from .exceptions import StorageError, TitleAlreadyInUseError
from .sqlite_utils import connect_sqlite, prefix_upper_bound

TITLE_STORE_SCHEMA_VERSION = 1
KEY_SEPARATOR = "$"
CHAT_KEY_FAMILY = "chat"
TITLE_KEY_FAMILY = "title"
USER_ID_BYTES = 8


@dataclass(frozen=True)
class TitleRecord:
    chat_id: int
    user_id: int
    title: str

    def render_html(self) -> str:
        return f"<code>{html.escape(self.title)}: User({self.user_id})</code>"


def chat_key(chat_id: int, user_id: int) -> bytes:
    return f"{CHAT_KEY_FAMILY}${chat_id}${user_id}".encode("utf-8")


def title_key(chat_id: int, title: str) -> bytes:
    return f"{TITLE_KEY_FAMILY}${chat_id}${title}".encode("utf-8")


def chat_prefix(chat_id: int) -> bytes:
    return f"{CHAT_KEY_FAMILY}${chat_id}$".encode("utf-8")


def encode_user_id(user_id: int) -> bytes:
    return int(user_id).to_bytes(USER_ID_BYTES, "big")


def decode_user_id(raw: bytes) -> int:
    if len(raw) != USER_ID_BYTES:
        raise StorageError(f"bad user id value: expected 8 bytes, got {len(raw)}")
    return int.from_bytes(raw, "big")


def decode_title(raw: bytes) -> str:
    try:
        return bytes(raw).decode("utf-8")
    except UnicodeDecodeError as exc:
        raise StorageError(f"title is not valid UTF-8: {exc}") from exc


def parse_chat_entry(key: bytes, value: bytes) -> TitleRecord:
    try:
        text = bytes(key).decode("utf-8")
    except UnicodeDecodeError as exc:
        raise StorageError(f"bad key: {exc}") from exc
    parts = text.split(KEY_SEPARATOR)
    if len(parts) != 3 or parts[0] != CHAT_KEY_FAMILY:
        raise StorageError(f"bad key: {text!r}")
    try:
        chat_id = int(parts[1])
        user_id = int(parts[2])
    except ValueError as exc:
        raise StorageError(f"bad key: {text!r}") from exc
    return TitleRecord(chat_id=chat_id, user_id=user_id, title=decode_title(value))


class TitleStore:
    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="title-store"
        )
        self._connection: Optional[sqlite3.Connection] = None

    @property
    def path(self) -> Path:
        return self._db_path

    async def initialize(self) -> None:
        await self._run(self._ensure_initialized_sync)

    async def close(self) -> None:
        await self._run(self._close_sync)
        self._executor.shutdown(wait=True)

    async def insert_title(self, chat_id: int, user_id: int, title: str) -> TitleRecord:
        """Give ``title`` to ``user_id``, replacing any title they held before.

        Raises `TitleAlreadyInUseError` when another user of the chat already
        holds ``title``; the existing mapping is left untouched.
        """
        if not title:
            raise ValueError("title must be non-empty")
        return await self._run(self._insert_title_sync, chat_id, user_id, title)

    async def get_by_user(self, chat_id: int, user_id: int) -> Optional[TitleRecord]:
        return await self._run(self._get_by_user_sync, chat_id, user_id)

    async def get_by_title(self, chat_id: int, title: str) -> Optional[TitleRecord]:
        return await self._run(self._get_by_title_sync, chat_id, title)

    async def remove_by_user(
        self, chat_id: int, user_id: int
    ) -> Optional[TitleRecord]:
        """Remove the user's record if any; returns what was removed."""
        return await self._run(self._remove_by_user_sync, chat_id, user_id)

    async def remove_by_title(self, chat_id: int, title: str) -> Optional[TitleRecord]:
        return await self._run(self._remove_by_title_sync, chat_id, title)

    async def list_by_chat(self, chat_id: int) -> list[TitleRecord]:
        return await self._run(self._list_by_chat_sync, chat_id)

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, func, *args)
        except sqlite3.Error as exc:
            raise StorageError(f"title store at {self._db_path}: {exc}") from exc

    def _connection_sync(self) -> sqlite3.Connection:
        if self._connection is None:
            self._connection = connect_sqlite(self._db_path)
            self._ensure_schema(self._connection)
        return self._connection

    def _ensure_initialized_sync(self) -> None:
        self._connection_sync()

    def _close_sync(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        with conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_info (
                    version INTEGER NOT NULL
                )
                """
            )
            row = conn.execute(
                "SELECT version FROM schema_info ORDER BY version DESC LIMIT 1"
            ).fetchone()
            if row is None:
                conn.execute(
                    "INSERT INTO schema_info(version) VALUES (?)",
                    (TITLE_STORE_SCHEMA_VERSION,),
                )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key BLOB PRIMARY KEY,
                    value BLOB NOT NULL
                ) WITHOUT ROWID
                """
            )

    def _get_value(self, conn: sqlite3.Connection, key: bytes) -> Optional[bytes]:
        row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        return bytes(row["value"])

    def _put_value(self, conn: sqlite3.Connection, key: bytes, value: bytes) -> None:
        conn.execute(
            """
            INSERT INTO kv(key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            (key, value),
        )

    def _delete_pair(self, conn: sqlite3.Connection, record: TitleRecord) -> None:
        conn.execute(
            "DELETE FROM kv WHERE key IN (?, ?)",
            (
                chat_key(record.chat_id, record.user_id),
                title_key(record.chat_id, record.title),
            ),
        )

    def _lookup_user_sync(
        self, conn: sqlite3.Connection, chat_id: int, user_id: int
    ) -> Optional[TitleRecord]:
        raw = self._get_value(conn, chat_key(chat_id, user_id))
        if raw is None:
            return None
        return TitleRecord(chat_id=chat_id, user_id=user_id, title=decode_title(raw))

    def _lookup_title_sync(
        self, conn: sqlite3.Connection, chat_id: int, title: str
    ) -> Optional[TitleRecord]:
        raw = self._get_value(conn, title_key(chat_id, title))
        if raw is None:
            return None
        return TitleRecord(chat_id=chat_id, user_id=decode_user_id(raw), title=title)

    def _insert_title_sync(self, chat_id: int, user_id: int, title: str) -> TitleRecord:
        conn = self._connection_sync()
        with conn:
            holder = self._lookup_title_sync(conn, chat_id, title)
            if holder is not None and holder.user_id != user_id:
                raise TitleAlreadyInUseError(title, holder_id=holder.user_id)
            previous = self._lookup_user_sync(conn, chat_id, user_id)
            if previous is not None:
                self._delete_pair(conn, previous)
            record = TitleRecord(chat_id=chat_id, user_id=user_id, title=title)
            self._put_value(conn, chat_key(chat_id, user_id), title.encode("utf-8"))
            self._put_value(conn, title_key(chat_id, title), encode_user_id(user_id))
        return record

    def _get_by_user_sync(self, chat_id: int, user_id: int) -> Optional[TitleRecord]:
        return self._lookup_user_sync(self._connection_sync(), chat_id, user_id)

    def _get_by_title_sync(self, chat_id: int, title: str) -> Optional[TitleRecord]:
        return self._lookup_title_sync(self._connection_sync(), chat_id, title)

    def _remove_by_user_sync(self, chat_id: int, user_id: int) -> Optional[TitleRecord]:
        conn = self._connection_sync()
        with conn:
            record = self._lookup_user_sync(conn, chat_id, user_id)
            if record is not None:
                self._delete_pair(conn, record)
        return record

    def _remove_by_title_sync(self, chat_id: int, title: str) -> Optional[TitleRecord]:
        conn = self._connection_sync()
        with conn:
            record = self._lookup_title_sync(conn, chat_id, title)
            if record is not None:
                self._delete_pair(conn, record)
        return record

    def _list_by_chat_sync(self, chat_id: int) -> list[TitleRecord]:
        prefix = chat_prefix(chat_id)
        rows = (
            self._connection_sync()
            .execute(
                "SELECT key, value FROM kv WHERE key >= ? AND key < ? ORDER BY key",
                (prefix, prefix_upper_bound(prefix)),
            )
            .fetchall()
        )
        return [parse_chat_entry(row["key"], row["value"]) for row in rows]
