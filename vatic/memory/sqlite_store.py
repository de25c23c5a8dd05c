"""SQLite store for per-job memory entries and per-session conversation turns."""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from loguru import logger

from vatic.config.secrets import SecretsResolver
from vatic.errors import StoreError


@dataclass(frozen=True)
class MemoryEntry:
    """One past run of a job."""

    job_alias: str
    seq: int
    created_at: datetime
    result: str
    summary: str | None = None


@dataclass(frozen=True)
class SessionTurn:
    """One user/assistant exchange within a channel session."""

    seq: int
    created_at: datetime
    user_text: str
    assistant_text: str


class MemoryStore:
    """
    Append-only run history and bounded session windows, keyed by job alias.

    Every write for one alias runs under that alias's lock, so sequences are
    gap-free and monotonic per job while different jobs never wait on each
    other. Results and turns are passed through the secrets resolver's
    redaction before they reach disk.
    """

    def __init__(self, db_path: Path | str, secrets: SecretsResolver | None = None):
        self.db_path = Path(db_path)
        self.secrets = secrets or SecretsResolver()
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._init_db()
        except (OSError, sqlite3.Error) as e:
            raise StoreError(f"cannot open store at {self.db_path}: {e}") from e

    def _init_db(self):
        with self._get_connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS memory_entries (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_alias TEXT NOT NULL,
                    seq INTEGER NOT NULL,
                    created_at TEXT NOT NULL,
                    result TEXT NOT NULL,
                    summary TEXT,
                    UNIQUE (job_alias, seq)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS session_turns (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_alias TEXT NOT NULL,
                    session_key TEXT NOT NULL,
                    seq INTEGER NOT NULL,
                    created_at TEXT NOT NULL,
                    user_text TEXT NOT NULL,
                    assistant_text TEXT NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_turns_session ON session_turns(job_alias, session_key, seq)"
            )
            conn.commit()

    @contextmanager
    def _get_connection(self):
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _lock(self, alias: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(alias)
            if lock is None:
                lock = self._locks[alias] = threading.Lock()
            return lock

    # ------------------------------------------------------------------
    # Memory entries
    # ------------------------------------------------------------------

    def append(self, alias: str, result: str, summary: str | None = None) -> MemoryEntry:
        """Store a run result as the next entry for ``alias``."""
        result = self.secrets.redact(result)
        if summary is not None:
            summary = self.secrets.redact(summary)
        now = datetime.now()
        with self._lock(alias):
            try:
                with self._get_connection() as conn:
                    row = conn.execute(
                        "SELECT COALESCE(MAX(seq), 0) FROM memory_entries WHERE job_alias = ?",
                        (alias,),
                    ).fetchone()
                    seq = row[0] + 1
                    conn.execute(
                        """INSERT INTO memory_entries (job_alias, seq, created_at, result, summary)
                           VALUES (?, ?, ?, ?, ?)""",
                        (alias, seq, now.isoformat(), result, summary),
                    )
                    conn.commit()
            except sqlite3.Error as e:
                raise StoreError(f"[{alias}] cannot append memory entry: {e}") from e
        logger.debug(f"[{alias}] stored memory entry #{seq}")
        return MemoryEntry(alias, seq, now, result, summary)

    def last_sequence(self, alias: str) -> int:
        """Highest sequence stored for ``alias``, 0 when there is none."""
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT COALESCE(MAX(seq), 0) FROM memory_entries WHERE job_alias = ?",
                    (alias,),
                ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"[{alias}] cannot read memory: {e}") from e
        return row[0]

    def recent(self, alias: str, n: int | None = None, upto: int | None = None) -> list[MemoryEntry]:
        """
        Newest-first entries for ``alias``.

        Args:
            n: Maximum number of entries, all when None.
            upto: Ignore entries with a sequence above this snapshot.
        """
        query = "SELECT * FROM memory_entries WHERE job_alias = ?"
        params: list = [alias]
        if upto is not None:
            query += " AND seq <= ?"
            params.append(upto)
        query += " ORDER BY seq DESC"
        if n is not None:
            query += " LIMIT ?"
            params.append(max(n, 0))
        try:
            with self._get_connection() as conn:
                rows = conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"[{alias}] cannot read memory: {e}") from e
        return [_entry(row) for row in rows]

    def nth_from_end(self, alias: str, n: int, upto: int | None = None) -> MemoryEntry | None:
        """The entry ``n`` runs before the newest (``n=0`` is the newest)."""
        if n < 0:
            return None
        query = "SELECT * FROM memory_entries WHERE job_alias = ?"
        params: list = [alias]
        if upto is not None:
            query += " AND seq <= ?"
            params.append(upto)
        query += " ORDER BY seq DESC LIMIT 1 OFFSET ?"
        params.append(n)
        try:
            with self._get_connection() as conn:
                row = conn.execute(query, params).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"[{alias}] cannot read memory: {e}") from e
        return _entry(row) if row else None

    def prune(self, keep: int) -> int:
        """Drop all but the newest ``keep`` entries of every job. Returns rows removed."""
        try:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    """DELETE FROM memory_entries WHERE id IN (
                           SELECT m.id FROM memory_entries m
                           WHERE m.seq <= (
                               SELECT MAX(seq) FROM memory_entries x WHERE x.job_alias = m.job_alias
                           ) - ?
                       )""",
                    (keep,),
                )
                conn.commit()
                removed = cursor.rowcount
        except sqlite3.Error as e:
            raise StoreError(f"cannot prune memory: {e}") from e
        if removed:
            logger.info(f"Pruned {removed} old memory entries (keeping {keep} per job)")
        return removed

    # ------------------------------------------------------------------
    # Session turns
    # ------------------------------------------------------------------

    def session_turns(self, alias: str, session_key: str) -> list[SessionTurn]:
        """Oldest-first turns of one session."""
        try:
            with self._get_connection() as conn:
                rows = conn.execute(
                    """SELECT seq, created_at, user_text, assistant_text FROM session_turns
                       WHERE job_alias = ? AND session_key = ? ORDER BY seq ASC""",
                    (alias, session_key),
                ).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"[{alias}] cannot read session {session_key}: {e}") from e
        return [
            SessionTurn(
                seq=row["seq"],
                created_at=datetime.fromisoformat(row["created_at"]),
                user_text=row["user_text"],
                assistant_text=row["assistant_text"],
            )
            for row in rows
        ]

    def push_turn(
        self,
        alias: str,
        session_key: str,
        user_text: str,
        assistant_text: str,
        context: int,
    ) -> None:
        """Append a turn, then evict the oldest until at most ``context`` remain."""
        user_text = self.secrets.redact(user_text)
        assistant_text = self.secrets.redact(assistant_text)
        with self._lock(alias):
            try:
                with self._get_connection() as conn:
                    if context > 0:
                        row = conn.execute(
                            """SELECT COALESCE(MAX(seq), 0) FROM session_turns
                               WHERE job_alias = ? AND session_key = ?""",
                            (alias, session_key),
                        ).fetchone()
                        conn.execute(
                            """INSERT INTO session_turns
                               (job_alias, session_key, seq, created_at, user_text, assistant_text)
                               VALUES (?, ?, ?, ?, ?, ?)""",
                            (alias, session_key, row[0] + 1, datetime.now().isoformat(),
                             user_text, assistant_text),
                        )
                    conn.execute(
                        """DELETE FROM session_turns WHERE job_alias = ? AND session_key = ?
                           AND seq NOT IN (
                               SELECT seq FROM session_turns
                               WHERE job_alias = ? AND session_key = ?
                               ORDER BY seq DESC LIMIT ?
                           )""",
                        (alias, session_key, alias, session_key, context),
                    )
                    conn.commit()
            except sqlite3.Error as e:
                raise StoreError(f"[{alias}] cannot store session turn: {e}") from e


def _entry(row: sqlite3.Row) -> MemoryEntry:
    return MemoryEntry(
        job_alias=row["job_alias"],
        seq=row["seq"],
        created_at=datetime.fromisoformat(row["created_at"]),
        result=row["result"],
        summary=row["summary"],
    )
