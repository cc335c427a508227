"""
Event journal for TrustCore.

Append-only SQLite storage for committed ledger events. Each entry is
linked to its predecessor by hash so any rewrite of history is detectable
with `verify_chain`.
"""

import json
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

from .util import canonicalize, sha256_hex

GENESIS_HASH = "0" * 64


def chain_entry_hash(prev_entry_hash: Optional[str], payload_hash: str) -> str:
    """entry_hash = SHA-256(prev_entry_hash || payload_hash)."""
    return sha256_hex((prev_entry_hash or GENESIS_HASH) + payload_hash)


class EventJournal:
    """
    Hash-chained event log backed by SQLite.

    A single connection is shared behind a lock so that ":memory:"
    journals behave like file-backed ones.
    """

    def __init__(self, path: str = ":memory:"):
        self.path = path
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(path, check_same_thread=False)
        if path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._conn.row_factory = sqlite3.Row
        self.init_db()

    @contextmanager
    def _transaction(self):
        """
        Context manager for database transactions.
        Automatically commits on success, rolls back on failure.
        """
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def init_db(self) -> None:
        """
        Initialize schema. Safe to call multiple times.
        """
        with self._transaction() as conn:
            conn.execute("""
            CREATE TABLE IF NOT EXISTS event_log (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                event_sequence INTEGER NOT NULL,
                event_type TEXT NOT NULL,
                subject_id TEXT,
                actor TEXT,
                occurred_at INTEGER NOT NULL,
                payload_hash TEXT NOT NULL,
                prev_entry_hash TEXT,
                entry_hash TEXT NOT NULL,
                event_json TEXT NOT NULL
            );""")
            conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_event_log_type
            ON event_log(event_type);""")
            conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_event_log_subject
            ON event_log(subject_id);""")

    def latest_entry_hash(self) -> Optional[str]:
        """Get the hash of the most recent entry for chain linking."""
        with self._lock:
            cur = self._conn.execute("SELECT entry_hash FROM event_log ORDER BY seq DESC LIMIT 1")
            row = cur.fetchone()
            return row['entry_hash'] if row else None

    def append(self, event: Dict[str, Any]) -> str:
        """
        Append an event dict (as produced by Event.to_dict) to the chain.

        Returns the new entry hash.
        """
        payload = canonicalize(event)
        payload_hash = sha256_hex(payload)
        with self._transaction() as conn:
            prev = self.latest_entry_hash()
            entry_hash = chain_entry_hash(prev, payload_hash)
            conn.execute(
                "INSERT INTO event_log(event_sequence, event_type, subject_id, actor, occurred_at, "
                "payload_hash, prev_entry_hash, entry_hash, event_json) VALUES(?,?,?,?,?,?,?,?,?)",
                (
                    event["sequence"], event["event_type"], event.get("subject_id"), event.get("actor"),
                    event["timestamp"], payload_hash, prev, entry_hash, payload.decode("utf-8"),
                )
            )
        return entry_hash

    def export(
        self,
        event_type: Optional[str] = None,
        subject_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Export journal entries in order, optionally filtered."""
        query = ("SELECT seq, event_sequence, event_type, subject_id, actor, occurred_at, payload_hash, "
                 "prev_entry_hash, entry_hash, event_json FROM event_log")
        clauses, params = [], []
        if event_type:
            clauses.append("event_type=?")
            params.append(event_type)
        if subject_id:
            clauses.append("subject_id=?")
            params.append(subject_id)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY seq ASC"
        with self._lock:
            cur = self._conn.execute(query, params)
            return [dict(row) for row in cur.fetchall()]

    def verify_chain(self) -> Dict[str, Any]:
        """
        Recompute every payload and entry hash.

        Returns {"ok": bool, "entries": n, "broken_at": seq|None, "reason": str|None}.
        """
        prev = None
        rows = self.export()
        for row in rows:
            payload = canonicalize(json.loads(row["event_json"]))
            if sha256_hex(payload) != row["payload_hash"]:
                return {"ok": False, "entries": len(rows), "broken_at": row["seq"], "reason": "payload_hash"}
            if row["prev_entry_hash"] != prev:
                return {"ok": False, "entries": len(rows), "broken_at": row["seq"], "reason": "prev_entry_hash"}
            if chain_entry_hash(prev, row["payload_hash"]) != row["entry_hash"]:
                return {"ok": False, "entries": len(rows), "broken_at": row["seq"], "reason": "entry_hash"}
            prev = row["entry_hash"]
        return {"ok": True, "entries": len(rows), "broken_at": None, "reason": None}

    def stats(self) -> Dict[str, int]:
        """Entry counts per event type, plus the total."""
        with self._lock:
            cur = self._conn.execute(
                "SELECT event_type, COUNT(*) as cnt FROM event_log GROUP BY event_type"
            )
            stats = {row["event_type"]: row["cnt"] for row in cur.fetchall()}
        stats["total"] = sum(stats.values())
        return stats

    def reset(self) -> None:
        """Clear all entries (test isolation)."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM event_log")

    def close(self) -> None:
        with self._lock:
            self._conn.close()
