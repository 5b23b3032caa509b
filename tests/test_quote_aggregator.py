from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from token_swap_engine.config import RoutingConfig
from token_swap_engine.contracts import Asset, Liveness, Quote, SwapRequest, expiry_from_now
from token_swap_engine.errors import InvalidRequest, NoLiquidity, NoRouteAvailable, VenueUnavailable
from token_swap_engine.routing import (
    CooldownPolicy,
    InMemoryLivenessStore,
    LivenessObservation,
    QuoteAggregator,
    VenueRegistration,
)
from token_swap_engine.venues import VenueAdapter

SOL = Asset(symbol="SOL", address="sol-mint", decimals=9, min_amount=0.0000434)
GOLD = Asset(symbol="GOLD", address="gold-mint", decimals=9, min_amount=1.0)


class Clock:
    def __init__(self) -> None:
        self.now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class ScriptedVenue(VenueAdapter):
    """Answers quotes from a fixed output, an exception, or a slow sleep."""

    def __init__(self, name: str, output: float | None = None, error: Exception | None = None, delay: float = 0.0,
                 clock=None, ttl_seconds: float = 30.0) -> None:
        self.name = name
        self.output = output
        self.error = error
        self.delay = delay
        self.clock = clock
        self.ttl_seconds = ttl_seconds
        self.calls = 0

    async def quote(self, request: SwapRequest) -> Quote:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        now = self.clock() if self.clock else None
        return Quote(
            venue=self.name,
            input_asset=request.input_asset,
            input_amount=request.input_amount,
            output_asset=request.output_asset,
            estimated_output=self.output,
            min_output_amount=request.min_output(self.output),
            price_impact_bps=0.0,
            expires_at=expiry_from_now(self.ttl_seconds, now),
        )

    async def build_transaction(self, quote, request):
        raise AssertionError("aggregator never builds")

    async def verify(self, tx_id):
        raise AssertionError("aggregator never verifies")


def _request(amount: float = 1.5) -> SwapRequest:
    return SwapRequest(input_asset=SOL, input_amount=amount, output_asset=GOLD, requester="wallet-1")


def _aggregator(venues: list[VenueAdapter], clock=None, **routing) -> QuoteAggregator:
    registrations = [VenueRegistration(name=v.name, priority=(i + 1) * 10, adapter=v) for i, v in enumerate(venues)]
    config = RoutingConfig(quote_timeout_seconds=0.05, manual_venues=["https://jup.ag"], **routing)
    kwargs = {"clock": clock} if clock else {}
    return QuoteAggregator(registrations, config=config, **kwargs)


def test_first_success_wins_over_better_price() -> None:
    a = ScriptedVenue("A", output=10.0)
    b = ScriptedVenue("B", output=99.0)
    aggregator = _aggregator([a, b])
    quote = asyncio.run(aggregator.get_quote(_request()))
    assert quote.venue == "A"
    assert quote.estimated_output == 10.0
    assert b.calls == 0
    assert aggregator.store.state("A") == Liveness.LIVE


def test_priority_order_and_failure_classification() -> None:
    dead = ScriptedVenue("dead", error=VenueUnavailable("HTTP 503"))
    dry = ScriptedVenue("dry", error=NoLiquidity("no route"))
    slow = ScriptedVenue("slow", output=1.0, delay=1.0)
    good = ScriptedVenue("good", output=34.2)
    aggregator = _aggregator([dead, dry, slow, good])
    quote = asyncio.run(aggregator.get_quote(_request()))
    assert quote.venue == "good"
    assert [dead.calls, dry.calls, slow.calls, good.calls] == [1, 1, 1, 1]
    assert aggregator.store.state("dead") == Liveness.DEAD
    assert aggregator.store.state("dry") == Liveness.DEGRADED
    assert aggregator.store.state("slow") == Liveness.DEAD
    assert aggregator.store.state("good") == Liveness.LIVE


def test_registrations_sorted_by_priority() -> None:
    late = ScriptedVenue("late", output=1.0)
    early = ScriptedVenue("early", output=2.0)
    aggregator = QuoteAggregator(
        [VenueRegistration("late", 50, late), VenueRegistration("early", 5, early)],
        config=RoutingConfig(quote_timeout_seconds=0.05),
    )
    assert [v.name for v in aggregator.venues] == ["early", "late"]
    assert asyncio.run(aggregator.get_quote(_request())).venue == "early"


def test_no_route_lists_every_reason_and_manual_venues() -> None:
    aggregator = _aggregator(
        [
            ScriptedVenue("A", error=VenueUnavailable("timeout")),
            ScriptedVenue("B", error=NoLiquidity("no pool")),
            ScriptedVenue("C", error=RuntimeError("adapter bug")),
        ]
    )
    with pytest.raises(NoRouteAvailable) as excinfo:
        asyncio.run(aggregator.get_quote(_request()))
    failures = {f.venue: f for f in excinfo.value.failures}
    assert set(failures) == {"A", "B", "C"}
    assert failures["B"].liveness == Liveness.DEGRADED
    assert failures["C"].liveness == Liveness.DEAD
    assert "adapter bug" in failures["C"].reason
    assert excinfo.value.manual_venues == ["https://jup.ag"]


@pytest.mark.parametrize(
    "request_kwargs",
    [
        {"input_amount": 0},
        {"input_amount": -1.0},
        {"input_amount": 0.00001},
        {"output_asset": SOL},
        {"max_slippage_bps": 20_000},
        {"requester": ""},
    ],
)
def test_invalid_request_contacts_no_venue(request_kwargs) -> None:
    venue = ScriptedVenue("A", output=1.0)
    aggregator = _aggregator([venue])
    base = {"input_asset": SOL, "input_amount": 1.5, "output_asset": GOLD, "requester": "wallet-1"}
    base.update(request_kwargs)
    with pytest.raises(InvalidRequest):
        asyncio.run(aggregator.get_quote(SwapRequest(**base)))
    assert venue.calls == 0


def test_dead_venue_skipped_during_cooldown_then_retried() -> None:
    clock = Clock()
    flaky = ScriptedVenue("flaky", error=VenueUnavailable("down"))
    backup = ScriptedVenue("backup", output=5.0, clock=clock)
    aggregator = _aggregator([flaky, backup], clock=clock)

    asyncio.run(aggregator.get_quote(_request()))
    assert flaky.calls == 1

    clock.advance(30)
    asyncio.run(aggregator.get_quote(_request()))
    assert flaky.calls == 1

    clock.advance(31)
    flaky.error = None
    flaky.output = 7.0
    flaky.clock = clock
    quote = asyncio.run(aggregator.get_quote(_request()))
    assert flaky.calls == 2
    assert quote.venue == "flaky"


def test_quote_expired_on_arrival_is_degraded() -> None:
    stale = ScriptedVenue("stale", output=3.0, ttl_seconds=-1.0)
    fresh = ScriptedVenue("fresh", output=2.0)
    aggregator = _aggregator([stale, fresh])
    quote = asyncio.run(aggregator.get_quote(_request()))
    assert quote.venue == "fresh"
    assert aggregator.store.state("stale") == Liveness.DEGRADED


def test_quote_only_venue_skipped_when_execution_required() -> None:
    viewer = ScriptedVenue("viewer", output=9.0)
    executor = ScriptedVenue("executor", output=8.0)
    aggregator = QuoteAggregator(
        [
            VenueRegistration("viewer", 1, viewer, supports_execution=False),
            VenueRegistration("executor", 2, executor),
        ],
        config=RoutingConfig(quote_timeout_seconds=0.05),
    )
    assert asyncio.run(aggregator.get_quote(_request())).venue == "viewer"
    assert asyncio.run(aggregator.get_quote(_request(), require_execution=True)).venue == "executor"


def test_cooldown_policy_and_store() -> None:
    policy = CooldownPolicy(base_seconds=60, max_seconds=600)
    assert [policy.window_seconds(n) for n in range(0, 7)] == [0.0, 60, 120, 240, 480, 600, 600]

    store = InMemoryLivenessStore(max_history=3)
    t0 = datetime(2025, 1, 1, tzinfo=timezone.utc)
    store.record(LivenessObservation("v", Liveness.LIVE, t0))
    for i in range(3):
        store.record(LivenessObservation("v", Liveness.DEAD, t0 + timedelta(seconds=i)))
    assert len(store.history("v")) == 3
    assert store.consecutive_failures("v") == 3
    assert store.cooldown_remaining("v", policy, now=t0 + timedelta(seconds=2)) == 240
    assert store.state("unknown-venue") == Liveness.UNKNOWN


def test_venue_summary_frame() -> None:
    aggregator = _aggregator([ScriptedVenue("A", error=VenueUnavailable("down")), ScriptedVenue("B", output=1.0)])
    frame = aggregator.venue_summary()
    assert list(frame["state"]) == ["unknown", "unknown"]
    asyncio.run(aggregator.get_quote(_request()))
    frame = aggregator.venue_summary()
    assert list(frame["venue"]) == ["A", "B"]
    assert list(frame["state"]) == ["dead", "live"]
