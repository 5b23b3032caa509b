"""Dashboard tables for venues, settlements, balances and stake positions."""

from .views import (
    balances_frame,
    build_dashboard_payload,
    positions_frame,
    reward_projection_frame,
    settlement_history_frame,
)

__all__ = [
    "balances_frame",
    "build_dashboard_payload",
    "positions_frame",
    "reward_projection_frame",
    "settlement_history_frame",
]
