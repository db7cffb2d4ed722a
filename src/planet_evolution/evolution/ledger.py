"""Stage ledger: transactional ``(stage, key) -> completed`` records and leases.

The JSON artifacts stay the payload; the ledger only answers "has this unit of
work been done, or is somebody doing it right now". Leases expire after
``lease_seconds``; a lease held by a dead process on this host is taken over
immediately.
"""

from __future__ import annotations

import logging
import os
import socket
import sqlite3
import time
from contextlib import closing
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class StageLedger:
    """SQLite-backed stage ledger (WAL mode)."""

    def __init__(self, db_path: Path | str, *, lease_seconds: float = 600.0) -> None:
        self.path = Path(db_path)
        self.lease_seconds = lease_seconds
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        con = sqlite3.connect(self.path, timeout=30.0, isolation_level=None)
        con.execute("PRAGMA journal_mode=WAL")
        con.execute("PRAGMA synchronous=NORMAL")
        return con

    def _init_db(self) -> None:
        with closing(self._connect()) as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS completed (
                    stage TEXT NOT NULL,
                    key TEXT NOT NULL,
                    completed_at REAL NOT NULL,
                    detail TEXT NOT NULL DEFAULT '',
                    PRIMARY KEY (stage, key)
                )
                """
            )
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS leases (
                    stage TEXT NOT NULL,
                    key TEXT NOT NULL,
                    owner TEXT NOT NULL,
                    expires_at REAL NOT NULL,
                    PRIMARY KEY (stage, key)
                )
                """
            )

    def is_complete(self, stage: str, key: str) -> bool:
        with closing(self._connect()) as con:
            cur = con.execute("SELECT 1 FROM completed WHERE stage=? AND key=?", (stage, key))
            return cur.fetchone() is not None

    def mark_complete(self, stage: str, key: str, detail: str = "") -> None:
        """Record completion and drop any lease on the same work item."""
        with closing(self._connect()) as con:
            con.execute("BEGIN IMMEDIATE")
            try:
                con.execute(
                    "INSERT OR IGNORE INTO completed(stage, key, completed_at, detail) VALUES(?,?,?,?)",
                    (stage, key, time.time(), detail),
                )
                con.execute("DELETE FROM leases WHERE stage=? AND key=?", (stage, key))
            except sqlite3.Error:
                con.execute("ROLLBACK")
                raise
            con.execute("COMMIT")

    def discard(self, stage: str, key: str) -> None:
        """Forget a completion whose artifact no longer exists on disk."""
        with closing(self._connect()) as con:
            con.execute("DELETE FROM completed WHERE stage=? AND key=?", (stage, key))

    def claim(self, stage: str, key: str, owner: str, *, now: Optional[float] = None) -> bool:
        """Take the lease on ``(stage, key)``.

        Fails when the work is already complete or another owner holds an
        unexpired lease. Re-claiming one's own lease renews it.
        """
        now = time.time() if now is None else now
        with closing(self._connect()) as con:
            con.execute("BEGIN IMMEDIATE")
            try:
                done = con.execute(
                    "SELECT 1 FROM completed WHERE stage=? AND key=?", (stage, key)
                ).fetchone()
                if done is not None:
                    con.execute("ROLLBACK")
                    return False
                row = con.execute(
                    "SELECT owner, expires_at FROM leases WHERE stage=? AND key=?", (stage, key)
                ).fetchone()
                if row is not None and row[0] != owner and row[1] > now and not _holder_is_dead(row[0]):
                    con.execute("ROLLBACK")
                    logger.info("Lease on %s/%s held by %s until %.0f", stage, key, row[0], row[1])
                    return False
                con.execute(
                    "INSERT OR REPLACE INTO leases(stage, key, owner, expires_at) VALUES(?,?,?,?)",
                    (stage, key, owner, now + self.lease_seconds),
                )
            except sqlite3.Error:
                con.execute("ROLLBACK")
                raise
            con.execute("COMMIT")
        return True

    def release(self, stage: str, key: str, owner: str) -> None:
        with closing(self._connect()) as con:
            con.execute("DELETE FROM leases WHERE stage=? AND key=? AND owner=?", (stage, key, owner))

    def lease_owner(self, stage: str, key: str) -> Optional[str]:
        with closing(self._connect()) as con:
            row = con.execute("SELECT owner FROM leases WHERE stage=? AND key=?", (stage, key)).fetchone()
            return row[0] if row else None

    def completed_keys(self, stage: str) -> list[str]:
        with closing(self._connect()) as con:
            rows = con.execute("SELECT key FROM completed WHERE stage=? ORDER BY key", (stage,)).fetchall()
        return [row[0] for row in rows]


def _holder_is_dead(owner: str) -> bool:
    """True when ``owner`` names a process on this host that no longer exists."""
    host, _, rest = owner.partition(":")
    pid_text = rest.partition(":")[0]
    if host != socket.gethostname() or not pid_text.isdigit():
        return False
    pid = int(pid_text)
    if pid == os.getpid():
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return True
    except PermissionError:
        return False
    return False


def work_key(lineage_key: str, generation: int, variant: int | None = None) -> str:
    base = f"{lineage_key}/{generation}"
    return base if variant is None else f"{base}/{variant}"


__all__ = ["StageLedger", "work_key"]
