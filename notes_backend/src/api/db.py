from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import RLock
from typing import Generator, List, Optional

from .models import NoteEntity
from .repositories import Repository, StorageError, UpdateClock, contains_text
from .schemas import NoteCreate, NoteUpdate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Cols:
    table: str = "notes"
    id: str = "id"
    title: str = "title"
    content: str = "content"
    created_at: str = "created_at"
    updated_at: str = "updated_at"


_COLS = _Cols()

# Newest first; later insertions win ties on updated_at
_ORDER_SQL = f"ORDER BY {_COLS.updated_at} DESC, {_COLS.id} DESC"


def _format_dt(value: datetime) -> str:
    # Fixed width so lexical order in SQLite equals chronological order
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_dt(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SQLiteRepository(Repository):
    """
    SQLite repository implementing the Repository interface.

    One connection per call. Writes run inside ``BEGIN IMMEDIATE`` under a
    process-wide lock so read-modify-write updates never interleave.
    """

    def __init__(self, db_path: str) -> None:
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._db_path = db_path
        self._write_lock = RLock()
        self._init_db()
        self._clock = UpdateClock(self._latest_timestamp())

    @contextmanager
    def _conn(self) -> Generator[sqlite3.Connection, None, None]:
        try:
            conn = sqlite3.connect(self._db_path, isolation_level=None, timeout=5.0)
        except sqlite3.Error as exc:
            raise StorageError(f"cannot open {self._db_path}") from exc
        conn.row_factory = sqlite3.Row
        conn.create_function("contains_text", 2, contains_text, deterministic=True)
        try:
            yield conn
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Generator[sqlite3.Connection, None, None]:
        with self._write_lock, self._conn() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def _init_db(self) -> None:
        with self._transaction() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {_COLS.table} (
                    {_COLS.id} INTEGER PRIMARY KEY AUTOINCREMENT,
                    {_COLS.title} TEXT NOT NULL,
                    {_COLS.content} TEXT NOT NULL,
                    {_COLS.created_at} TEXT NOT NULL,
                    {_COLS.updated_at} TEXT NOT NULL
                )
                """
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{_COLS.table}_updated_at ON {_COLS.table}({_COLS.updated_at})"
            )
        logger.debug("Opened note store at %s", self._db_path)

    def _latest_timestamp(self) -> Optional[datetime]:
        with self._conn() as conn:
            row = conn.execute(f"SELECT MAX({_COLS.updated_at}) AS latest FROM {_COLS.table}").fetchone()
        if row is None or row["latest"] is None:
            return None
        return _parse_dt(row["latest"])

    def _row_to_entity(self, row: sqlite3.Row) -> NoteEntity:
        return {
            "id": int(row[_COLS.id]),
            "title": str(row[_COLS.title]),
            "content": str(row[_COLS.content]),
            "created_at": _parse_dt(row[_COLS.created_at]),
            "updated_at": _parse_dt(row[_COLS.updated_at]),
        }

    def _fetch_one(self, conn: sqlite3.Connection, note_id: int) -> Optional[sqlite3.Row]:
        return conn.execute(f"SELECT * FROM {_COLS.table} WHERE {_COLS.id} = ?", (note_id,)).fetchone()

    def list_all(self) -> List[NoteEntity]:
        with self._conn() as conn:
            rows = conn.execute(f"SELECT * FROM {_COLS.table} {_ORDER_SQL}").fetchall()
            return [self._row_to_entity(r) for r in rows]

    def get(self, note_id: int) -> Optional[NoteEntity]:
        with self._conn() as conn:
            row = self._fetch_one(conn, note_id)
            return self._row_to_entity(row) if row else None

    def create(self, data: NoteCreate) -> NoteEntity:
        with self._transaction() as conn:
            now = _format_dt(self._clock.now())
            cur = conn.execute(
                f"""
                INSERT INTO {_COLS.table} ({_COLS.title}, {_COLS.content}, {_COLS.created_at}, {_COLS.updated_at})
                VALUES (?, ?, ?, ?)
                """,
                (data.title, data.content, now, now),
            )
            row = self._fetch_one(conn, cur.lastrowid)
            assert row is not None
            return self._row_to_entity(row)

    def update(self, note_id: int, data: NoteUpdate) -> Optional[NoteEntity]:
        with self._transaction() as conn:
            row = self._fetch_one(conn, note_id)
            if not row:
                return None
            current = self._row_to_entity(row)

            title = data.title if data.title is not None else current["title"]
            content = data.content if data.content is not None else current["content"]
            # Every successful update moves updated_at, even if nothing changed
            updated_at = _format_dt(self._clock.now())
            conn.execute(
                f"""
                UPDATE {_COLS.table}
                SET {_COLS.title} = ?, {_COLS.content} = ?, {_COLS.updated_at} = ?
                WHERE {_COLS.id} = ?
                """,
                (title, content, updated_at, note_id),
            )
            row2 = self._fetch_one(conn, note_id)
            assert row2 is not None
            return self._row_to_entity(row2)

    def delete(self, note_id: int) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(f"DELETE FROM {_COLS.table} WHERE {_COLS.id} = ?", (note_id,))
            return cur.rowcount > 0

    def search(self, term: str) -> List[NoteEntity]:
        with self._conn() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM {_COLS.table}
                WHERE contains_text({_COLS.title}, ?) OR contains_text({_COLS.content}, ?)
                {_ORDER_SQL}
                """,
                (term, term),
            ).fetchall()
            return [self._row_to_entity(r) for r in rows]
