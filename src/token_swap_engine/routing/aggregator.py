"""Priority-ordered quote aggregation across unreliable venues."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Callable

import pandas as pd

from token_swap_engine.config import RoutingConfig, VenueConfig
from token_swap_engine.contracts import Liveness, Quote, SwapRequest, VenueFailure, now_utc
from token_swap_engine.errors import InvalidRequest, NoLiquidity, NoRouteAvailable, VenueUnavailable
from token_swap_engine.venues.base import VenueAdapter
from token_swap_engine.venues.factory import build_venue_adapter

from .liveness import CooldownPolicy, InMemoryLivenessStore, LivenessObservation, LivenessStore, liveness_frame

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class VenueRegistration:
    """A venue as the aggregator sees it: rank, capabilities and adapter."""

    name: str
    priority: int
    adapter: VenueAdapter
    supports_quote: bool = True
    supports_execution: bool = True


def registrations_from_config(configs: list[VenueConfig], transport=None) -> list[VenueRegistration]:
    """Build one registration per configured venue, keeping configured priorities."""
    return [
        VenueRegistration(
            name=config.name,
            priority=config.priority,
            adapter=build_venue_adapter(config, transport=transport),
            supports_quote=config.supports_quote,
            supports_execution=config.supports_execution,
        )
        for config in configs
    ]


def validate_swap_request(request: SwapRequest) -> None:
    """Reject caller errors before any venue is contacted."""
    if not request.input_amount > 0:
        raise InvalidRequest(f"Input amount must be positive, got {request.input_amount}.")
    if request.input_asset.symbol == request.output_asset.symbol:
        raise InvalidRequest("Input and output assets must differ.")
    if not 0 <= request.max_slippage_bps <= 10_000:
        raise InvalidRequest(f"Slippage must be within 0..10000 bps, got {request.max_slippage_bps}.")
    if request.input_amount < request.input_asset.min_amount:
        raise InvalidRequest(
            f"Minimum swap is {request.input_asset.min_amount} {request.input_asset.symbol}, "
            f"got {request.input_amount}."
        )
    if not request.requester:
        raise InvalidRequest("Requester wallet address is required.")


class QuoteAggregator:
    """
    Produce at most one usable quote per request.

    Venues are tried in ascending priority and the first success wins;
    liquidity existence dominates price, so later venues are never consulted
    once one answers.
    """

    def __init__(
        self,
        venues: list[VenueRegistration],
        config: RoutingConfig | None = None,
        store: LivenessStore | None = None,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.config = config or RoutingConfig()
        self.store = store or InMemoryLivenessStore()
        self.clock = clock
        self.cooldown = CooldownPolicy(
            base_seconds=self.config.cooldown_base_seconds,
            max_seconds=self.config.cooldown_max_seconds,
        )
        self._venues = sorted(venues, key=lambda v: v.priority)

    @property
    def venues(self) -> list[VenueRegistration]:
        return list(self._venues)

    def venue(self, name: str) -> VenueRegistration:
        for registration in self._venues:
            if registration.name == name:
                return registration
        raise KeyError(f"Unknown venue: {name}")

    def _observe(self, venue: str, state: Liveness, reason: str = "") -> None:
        self.store.record(LivenessObservation(venue=venue, state=state, observed_at=self.clock(), reason=reason))

    def report(self, venue: str, state: Liveness, reason: str = "") -> None:
        """Record an outcome observed outside quoting, e.g. a failed build."""
        self.venue(venue)
        self._observe(venue, state, reason)

    async def get_quote(self, request: SwapRequest, require_execution: bool = False) -> Quote:
        validate_swap_request(request)
        failures: list[VenueFailure] = []
        for registration in self._venues:
            if not registration.supports_quote:
                continue
            if require_execution and not registration.supports_execution:
                continue
            remaining = self.store.cooldown_remaining(registration.name, self.cooldown, now=self.clock())
            if remaining > 0:
                failures.append(
                    VenueFailure(
                        venue=registration.name,
                        liveness=Liveness.DEAD,
                        reason=f"cooling down ({remaining:.0f}s left)",
                    )
                )
                continue
            try:
                quote = await asyncio.wait_for(
                    registration.adapter.quote(request),
                    timeout=self.config.quote_timeout_seconds,
                )
            except asyncio.TimeoutError:
                reason = f"quote timeout after {self.config.quote_timeout_seconds}s"
                self._observe(registration.name, Liveness.DEAD, reason)
                failures.append(VenueFailure(venue=registration.name, liveness=Liveness.DEAD, reason=reason))
                continue
            except NoLiquidity as exc:
                self._observe(registration.name, Liveness.DEGRADED, str(exc))
                failures.append(VenueFailure(venue=registration.name, liveness=Liveness.DEGRADED, reason=str(exc)))
                continue
            except VenueUnavailable as exc:
                self._observe(registration.name, Liveness.DEAD, str(exc))
                failures.append(VenueFailure(venue=registration.name, liveness=Liveness.DEAD, reason=str(exc)))
                continue
            except Exception as exc:
                # Adapter bug or unexpected shape: treat like an outage, never as a quote.
                reason = f"{exc.__class__.__name__}: {exc}"
                logger.exception("Venue %s raised unexpectedly while quoting", registration.name)
                self._observe(registration.name, Liveness.DEAD, reason)
                failures.append(VenueFailure(venue=registration.name, liveness=Liveness.DEAD, reason=reason))
                continue

            if quote.is_expired(self.clock()):
                reason = "quote already expired on arrival"
                self._observe(registration.name, Liveness.DEGRADED, reason)
                failures.append(VenueFailure(venue=registration.name, liveness=Liveness.DEGRADED, reason=reason))
                continue

            self._observe(registration.name, Liveness.LIVE)
            logger.info(
                "Route found via %s: %s %s -> %.9g %s",
                registration.name,
                request.input_amount,
                request.input_asset.symbol,
                quote.estimated_output,
                request.output_asset.symbol,
            )
            return quote

        logger.warning("No route for %s -> %s: %s", request.input_asset.symbol, request.output_asset.symbol,
                       [f.to_dict() for f in failures])
        raise NoRouteAvailable(failures, manual_venues=self.config.manual_venues)

    def venue_summary(self) -> pd.DataFrame:
        """Configured venues joined with their latest liveness observation."""
        frame = liveness_frame(self.store, self.cooldown, now=self.clock())
        config_rows = pd.DataFrame(
            [
                {
                    "venue": v.name,
                    "priority": v.priority,
                    "supports_quote": v.supports_quote,
                    "supports_execution": v.supports_execution,
                }
                for v in self._venues
            ],
            columns=["venue", "priority", "supports_quote", "supports_execution"],
        )
        merged = config_rows.merge(frame, on="venue", how="left")
        merged["state"] = merged["state"].fillna(str(Liveness.UNKNOWN))
        return merged.sort_values("priority").reset_index(drop=True)

    async def close(self) -> None:
        for registration in self._venues:
            await registration.adapter.close()
