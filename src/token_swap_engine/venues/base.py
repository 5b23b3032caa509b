"""Uniform venue adapter interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
import math
from typing import Any

from token_swap_engine.contracts import Confirmation, Quote, SwapRequest, UnsignedTx
from token_swap_engine.errors import VenueUnavailable


class VenueAdapter(ABC):
    """
    Translate between normalized engine types and one liquidity source.

    Adapters hold no trade history and never touch venue liveness state.
    Failures are raised as `NoLiquidity`, `VenueUnavailable` or
    `QuoteExpired` and classified by the caller.
    """

    name: str

    @abstractmethod
    async def quote(self, request: SwapRequest) -> Quote:
        """Return a usable quote or raise NoLiquidity / VenueUnavailable."""

    @abstractmethod
    async def build_transaction(self, quote: Quote, request: SwapRequest) -> UnsignedTx:
        """Return an unsigned transaction or raise QuoteExpired / VenueUnavailable."""

    @abstractmethod
    async def verify(self, tx_id: str) -> Confirmation:
        """Return the post-trade status of a broadcast transaction."""

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        return None


def require_positive_amount(value: Any, field_name: str, venue: str) -> float:
    """Coerce a venue-reported amount, rejecting anything not strictly positive."""
    if value is None or isinstance(value, bool):
        raise VenueUnavailable(f"{venue}: missing {field_name}")
    try:
        amount = float(value)
    except (TypeError, ValueError) as exc:
        raise VenueUnavailable(f"{venue}: non-numeric {field_name}={value!r}") from exc
    if not math.isfinite(amount) or amount <= 0.0:
        raise VenueUnavailable(f"{venue}: unusable {field_name}={value!r}")
    return amount

