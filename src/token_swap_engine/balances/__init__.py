"""Balance read paths and post-trade reconciliation."""

from .read_paths import BalanceReadPath, HTTPReadPath, InMemoryBalanceBook, InMemoryReadPath, build_read_path
from .reconciliation import BalanceReconciler, ReadDecision, plan_read

__all__ = [
    "BalanceReadPath",
    "BalanceReconciler",
    "HTTPReadPath",
    "InMemoryBalanceBook",
    "InMemoryReadPath",
    "ReadDecision",
    "build_read_path",
    "plan_read",
]
