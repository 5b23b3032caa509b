"""Durable exactly-once journal of terminal swap and transfer results."""

from __future__ import annotations

from pathlib import Path
from typing import Any
import json
import sqlite3

from token_swap_engine.contracts import SwapResult

_SCHEMA = """
CREATE TABLE IF NOT EXISTS settlements (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    kind TEXT NOT NULL,
    settlement_key TEXT NOT NULL,
    owner TEXT NOT NULL,
    outcome TEXT NOT NULL,
    venue TEXT,
    tx_id TEXT,
    result_json TEXT NOT NULL,
    journaled_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    UNIQUE(kind, settlement_key)
);
CREATE INDEX IF NOT EXISTS idx_settlements_owner_seq ON settlements(owner, seq);
"""

_COLUMNS = "seq, kind, owner, outcome, venue, tx_id, result_json, journaled_at"


def settlement_key(result: SwapResult) -> str:
    """A broadcast result is keyed by its transaction, anything earlier by its request."""
    if result.tx_id:
        return f"tx:{result.tx_id}"
    return f"request:{result.request_id}"


class SQLiteSettlementJournal:
    """
    Settlement history in SQLite.

    `(kind, settlement_key)` is unique, so recording the same terminal result
    twice keeps a single row. `recent` serves dashboards newest first;
    `since` tails the journal in insertion order.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(_SCHEMA)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        return conn

    @staticmethod
    def _entry(row: sqlite3.Row) -> dict[str, Any]:
        entry = dict(row)
        entry["result"] = json.loads(entry.pop("result_json"))
        return entry

    def record(self, kind: str, owner: str, result: SwapResult) -> bool:
        """Return True when the result was journaled, False when it was already present."""
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO settlements(kind, settlement_key, owner, outcome, venue, tx_id, result_json) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    kind,
                    settlement_key(result),
                    owner,
                    str(result.outcome),
                    result.venue,
                    result.tx_id,
                    json.dumps(result.to_dict(), default=str),
                ),
            )
            return cursor.rowcount == 1

    def recent(self, owner: str | None = None, limit: int = 100) -> list[dict[str, Any]]:
        """The latest `limit` entries, newest first."""
        where, params = ("WHERE owner = ?", [owner]) if owner is not None else ("", [])
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM settlements {where} ORDER BY seq DESC LIMIT ?",
                [*params, limit],
            ).fetchall()
        return [self._entry(row) for row in rows]

    def since(self, after_seq: int = 0, owner: str | None = None, limit: int = 1000) -> list[dict[str, Any]]:
        """Entries journaled after `after_seq`, oldest first."""
        query = f"SELECT {_COLUMNS} FROM settlements WHERE seq > ?"
        params: list[Any] = [after_seq]
        if owner is not None:
            query += " AND owner = ?"
            params.append(owner)
        with self._connect() as conn:
            rows = conn.execute(query + " ORDER BY seq ASC LIMIT ?", [*params, limit]).fetchall()
        return [self._entry(row) for row in rows]

    def outcome_counts(self, owner: str | None = None) -> dict[str, int]:
        where, params = ("WHERE owner = ?", [owner]) if owner is not None else ("", [])
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT outcome, COUNT(*) FROM settlements {where} GROUP BY outcome", params
            ).fetchall()
        return {row[0]: row[1] for row in rows}
