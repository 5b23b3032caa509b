"""Tabular views consumed by the rendering layer."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

import pandas as pd

from token_swap_engine.contracts import BalanceSnapshot, now_utc
from token_swap_engine.routing.aggregator import QuoteAggregator
from token_swap_engine.settlement.journal import SQLiteSettlementJournal
from token_swap_engine.staking.ledger import StakingLedger

HISTORY_COLUMNS = [
    "seq",
    "journaled_at",
    "kind",
    "owner",
    "outcome",
    "venue",
    "tx_id",
    "quoted_output",
    "output_amount",
    "reason",
    "message",
    "explorer_url",
]
BALANCE_COLUMNS = ["owner", "asset", "amount", "source", "as_of", "age_s", "stale", "error"]
POSITION_COLUMNS = [
    "owner",
    "staked_amount",
    "unclaimed_reward",
    "pending_reward",
    "total_claimed",
    "baseline_at",
    "updated_at",
]


def settlement_history_frame(journal: SQLiteSettlementJournal, owner: str | None = None, limit: int = 1000) -> pd.DataFrame:
    """The latest `limit` journaled swaps and transfers, newest first."""
    rows = []
    for record in journal.recent(owner=owner, limit=limit):
        payload = record["result"]
        rows.append(
            {
                "seq": record["seq"],
                "journaled_at": record["journaled_at"],
                "kind": record["kind"],
                "owner": record["owner"],
                "outcome": record["outcome"],
                "venue": record["venue"],
                "tx_id": record["tx_id"],
                "quoted_output": payload.get("quoted_output"),
                "output_amount": payload.get("output_amount"),
                "reason": payload.get("reason"),
                "message": payload.get("message"),
                "explorer_url": payload.get("explorer_url"),
            }
        )
    if not rows:
        return pd.DataFrame(columns=HISTORY_COLUMNS)
    return pd.DataFrame(rows, columns=HISTORY_COLUMNS)


def balances_frame(
    readings: dict[str, BalanceSnapshot | Exception],
    owner: str,
    ttl_seconds: float,
    now: datetime | None = None,
) -> pd.DataFrame:
    """
    One row per asset from a reconciliation result.

    Failed reads keep their row with an empty amount and the error text, so a
    missing balance is never shown as zero.
    """
    current = now or now_utc()
    rows: list[dict[str, Any]] = []
    for symbol, reading in readings.items():
        if isinstance(reading, BalanceSnapshot):
            rows.append(
                {
                    "owner": reading.owner,
                    "asset": symbol,
                    "amount": reading.amount,
                    "source": reading.source,
                    "as_of": reading.as_of,
                    "age_s": reading.age_seconds(current),
                    "stale": reading.is_stale(ttl_seconds, now=current),
                    "error": None,
                }
            )
        else:
            rows.append(
                {
                    "owner": owner,
                    "asset": symbol,
                    "amount": None,
                    "source": None,
                    "as_of": None,
                    "age_s": None,
                    "stale": True,
                    "error": str(reading),
                }
            )
    if not rows:
        return pd.DataFrame(columns=BALANCE_COLUMNS)
    return pd.DataFrame(rows, columns=BALANCE_COLUMNS)


def positions_frame(ledger: StakingLedger, now: datetime | None = None) -> pd.DataFrame:
    current = now or ledger.clock()
    rows = [
        {
            "owner": position.owner,
            "staked_amount": position.staked_amount,
            "unclaimed_reward": position.unclaimed_reward,
            "pending_reward": ledger.pending_reward(position.owner, now=current),
            "total_claimed": position.total_claimed,
            "baseline_at": position.baseline_at,
            "updated_at": position.updated_at,
        }
        for position in ledger.positions()
    ]
    if not rows:
        return pd.DataFrame(columns=POSITION_COLUMNS)
    return pd.DataFrame(rows, columns=POSITION_COLUMNS)


def reward_projection_frame(ledger: StakingLedger, amount: float, horizons_days: Iterable[float] = (1, 7, 30, 365)) -> pd.DataFrame:
    """Staking calculator table for a hypothetical stake."""
    return pd.DataFrame([ledger.project(amount, days) for days in horizons_days])


def build_dashboard_payload(
    aggregator: QuoteAggregator,
    journal: SQLiteSettlementJournal | None = None,
    ledger: StakingLedger | None = None,
    owner: str | None = None,
) -> dict[str, Any]:
    """Build all dashboard tables in one payload."""
    payload: dict[str, Any] = {"venues": aggregator.venue_summary()}
    if journal is not None:
        payload["settlement_history"] = settlement_history_frame(journal, owner=owner)
    if ledger is not None:
        payload["stake_positions"] = positions_frame(ledger)
    return payload
