"""Stake position persistence: in-memory and SQLite."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any
import json
import sqlite3

from token_swap_engine.contracts import StakePosition, now_utc


class PositionStore(ABC):
    """Positions are upserted, never deleted; every change is journaled."""

    @abstractmethod
    def get(self, owner: str) -> StakePosition | None:
        """Return the owner's position or None if they never staked."""

    @abstractmethod
    def save(self, position: StakePosition, operation: str, amount: float, tx_id: str | None = None) -> None:
        """Persist the new position state and append one operation row."""

    @abstractmethod
    def all(self) -> list[StakePosition]:
        """Return every known position."""

    @abstractmethod
    def operations(self, owner: str | None = None) -> list[dict[str, Any]]:
        """Return operation history, oldest first."""


@dataclass(slots=True)
class InMemoryPositionStore(PositionStore):
    _positions: dict[str, StakePosition] = field(default_factory=dict)
    _operations: list[dict[str, Any]] = field(default_factory=list)

    def get(self, owner: str) -> StakePosition | None:
        position = self._positions.get(owner)
        return StakePosition.from_dict(position.to_dict()) if position else None

    def save(self, position: StakePosition, operation: str, amount: float, tx_id: str | None = None) -> None:
        self._positions[position.owner] = StakePosition.from_dict(position.to_dict())
        self._operations.append(
            {
                "owner": position.owner,
                "operation": operation,
                "amount": amount,
                "tx_id": tx_id,
                "staked_after": position.staked_amount,
                "recorded_at": now_utc().isoformat(),
            }
        )

    def all(self) -> list[StakePosition]:
        return [self.get(owner) for owner in sorted(self._positions)]

    def operations(self, owner: str | None = None) -> list[dict[str, Any]]:
        return [dict(row) for row in self._operations if owner is None or row["owner"] == owner]


@dataclass(slots=True)
class SQLitePositionStore(PositionStore):
    """SQLite-backed positions plus an append-only `stake_operations` table."""

    db_path: str | Path

    def __post_init__(self) -> None:
        self.db_path = str(self.db_path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        return conn

    def _init_db(self) -> None:
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS stake_positions (
                    owner TEXT PRIMARY KEY,
                    position_json TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS stake_operations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner TEXT NOT NULL,
                    operation TEXT NOT NULL,
                    amount REAL NOT NULL,
                    tx_id TEXT,
                    staked_after REAL NOT NULL,
                    recorded_at TEXT NOT NULL
                );
                """
            )

    def get(self, owner: str) -> StakePosition | None:
        with self._connect() as conn:
            row = conn.execute("SELECT position_json FROM stake_positions WHERE owner = ?", (owner,)).fetchone()
        if row is None:
            return None
        return StakePosition.from_dict(json.loads(row[0]))

    def save(self, position: StakePosition, operation: str, amount: float, tx_id: str | None = None) -> None:
        payload = json.dumps(position.to_dict(), sort_keys=True)
        recorded_at = now_utc().isoformat()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO stake_positions(owner, position_json, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(owner) DO UPDATE SET position_json = excluded.position_json,
                                                 updated_at = excluded.updated_at
                """,
                (position.owner, payload, position.updated_at.isoformat()),
            )
            conn.execute(
                "INSERT INTO stake_operations(owner, operation, amount, tx_id, staked_after, recorded_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (position.owner, operation, amount, tx_id, position.staked_amount, recorded_at),
            )

    def all(self) -> list[StakePosition]:
        with self._connect() as conn:
            rows = conn.execute("SELECT position_json FROM stake_positions ORDER BY owner").fetchall()
        return [StakePosition.from_dict(json.loads(row[0])) for row in rows]

    def operations(self, owner: str | None = None) -> list[dict[str, Any]]:
        query = "SELECT owner, operation, amount, tx_id, staked_after, recorded_at FROM stake_operations"
        params: list[Any] = []
        if owner is not None:
            query += " WHERE owner = ?"
            params.append(owner)
        query += " ORDER BY id ASC"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        keys = ("owner", "operation", "amount", "tx_id", "staked_after", "recorded_at")
        return [dict(zip(keys, row)) for row in rows]


def fresh_position(owner: str, now: datetime) -> StakePosition:
    return StakePosition(owner=owner, baseline_at=now, created_at=now, updated_at=now)
