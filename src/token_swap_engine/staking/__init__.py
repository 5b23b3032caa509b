"""Staking ledger, accrual math and position persistence."""

from .accrual import DEFAULT_APY, SECONDS_PER_YEAR, accrued_reward, project_rewards, rate_per_second
from .ledger import StakingLedger
from .store import InMemoryPositionStore, PositionStore, SQLitePositionStore

__all__ = [
    "DEFAULT_APY",
    "SECONDS_PER_YEAR",
    "InMemoryPositionStore",
    "PositionStore",
    "SQLitePositionStore",
    "StakingLedger",
    "accrued_reward",
    "project_rewards",
    "rate_per_second",
]
