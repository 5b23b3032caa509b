from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import timedelta

import pytest

from token_swap_engine.balances import BalanceReconciler, InMemoryBalanceBook, InMemoryReadPath
from token_swap_engine.config import ConfirmationConfig, PreflightConfig, RoutingConfig, VenueConfig
from token_swap_engine.contracts import (
    Asset,
    BalanceSnapshot,
    FailureReason,
    Liveness,
    SignedTx,
    SwapOutcome,
    SwapRequest,
    SwapStage,
    TransferRequest,
    now_utc,
)
from token_swap_engine.errors import QuoteExpired, ReadFailure
from token_swap_engine.monitoring import AlertRouter, AlertSeverity, AlertSink
from token_swap_engine.routing import QuoteAggregator, VenueRegistration
from token_swap_engine.settlement import (
    OwnerSerializer,
    PaperSigner,
    PaperTransferBuilder,
    PaperTransport,
    Signer,
    SQLiteSettlementJournal,
    SwapOrchestrator,
)
from token_swap_engine.venues import PaperVenueAdapter, VenueAdapter

SOL = Asset(symbol="SOL", address="sol-mint", decimals=9, min_amount=0.0000434)
GOLD = Asset(symbol="GOLD", address="gold-mint", decimals=9, min_amount=1.0)
EXPLORER = "https://solscan.io/tx/{tx_id}"


class SlowVenue(VenueAdapter):
    def __init__(self, name: str) -> None:
        self.name = name
        self.calls = 0

    async def quote(self, request):
        self.calls += 1
        await asyncio.sleep(5)

    async def build_transaction(self, quote, request):
        raise AssertionError("never reached")

    async def verify(self, tx_id):
        raise AssertionError("never reached")


class ExpiringPaperVenue(PaperVenueAdapter):
    """Paper venue whose first `expire_builds` builds report an expired quote."""

    def __init__(self, config, transport, expire_builds: int) -> None:
        super().__init__(config, transport=transport)
        self.expire_builds = expire_builds
        self.builds = 0

    async def build_transaction(self, quote, request):
        self.builds += 1
        if self.expire_builds > 0:
            self.expire_builds -= 1
            raise QuoteExpired(f"{self.name}: quote expired")
        return await super().build_transaction(quote, request)


class RecordingPaperVenue(PaperVenueAdapter):
    def __init__(self, config, transport) -> None:
        super().__init__(config, transport=transport)
        self.quote_ids: list[str] = []
        self.built_quote_ids: list[str] = []

    async def quote(self, request):
        quote = await super().quote(request)
        self.quote_ids.append(quote.quote_id)
        return quote

    async def build_transaction(self, quote, request):
        self.built_quote_ids.append(quote.quote_id)
        return await super().build_transaction(quote, request)


class GarbledStatusVenue(PaperVenueAdapter):
    """Paper venue whose status endpoint answers with bytes that are not UTF-8."""

    def __init__(self, config, transport) -> None:
        super().__init__(config, transport=transport)
        self.polls = 0

    async def verify(self, tx_id):
        self.polls += 1
        raise UnicodeDecodeError("utf-8", b"\xff\xfe", 0, 1, "invalid start byte")


class JumpOnceClock:
    """Reads `jump_seconds` ahead on its first call, then follows wall time."""

    def __init__(self, jump_seconds: float) -> None:
        self.jump_seconds = jump_seconds

    def __call__(self):
        now = now_utc()
        if self.jump_seconds:
            now += timedelta(seconds=self.jump_seconds)
            self.jump_seconds = 0
        return now


class HangingSigner(Signer):
    async def sign(self, unsigned):
        await asyncio.sleep(5)


class AbandonedSigner(Signer):
    def __init__(self) -> None:
        self.started = False
        self.cancelled = False

    async def sign(self, unsigned):
        self.started = True
        try:
            await asyncio.sleep(5)
        except asyncio.CancelledError:
            self.cancelled = True
            raise


class SlowSigner(Signer):
    def __init__(self) -> None:
        self.active = 0
        self.max_active = 0

    async def sign(self, unsigned):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        await asyncio.sleep(0.02)
        self.active -= 1
        return SignedTx(payload=unsigned.payload, venue=unsigned.venue)


class RecordingSink(AlertSink):
    def __init__(self) -> None:
        self.events = []

    def send(self, event) -> None:
        self.events.append(event)


@dataclass
class Rig:
    book: InMemoryBalanceBook
    transport: PaperTransport
    aggregator: QuoteAggregator
    read_path: InMemoryReadPath
    reconciler: BalanceReconciler
    alerts: RecordingSink
    orchestrator: SwapOrchestrator


def _book(sol_balance: float = 10.0) -> InMemoryBalanceBook:
    return InMemoryBalanceBook({"wallet-1": {"SOL": sol_balance}, "wallet-2": {"SOL": sol_balance}})


def _paper_config(name: str = "B", rate: float = 22.8) -> VenueConfig:
    return VenueConfig(name=name, kind="paper", priority=20, paper_rate=rate)


def _rig(
    venues=None,
    transport: PaperTransport | None = None,
    signer: Signer | None = None,
    journal: SQLiteSettlementJournal | None = None,
    confirmation_timeout: float = 1.0,
) -> Rig:
    transport = transport or PaperTransport(_book())
    book = transport.book
    if venues is None:
        venues = [
            VenueRegistration("A", 10, SlowVenue("A")),
            VenueRegistration("B", 20, PaperVenueAdapter(_paper_config(), transport=transport)),
        ]
    aggregator = QuoteAggregator(
        venues,
        config=RoutingConfig(quote_timeout_seconds=0.05, manual_venues=["https://pump.fun", "https://jup.ag"]),
    )
    read_path = InMemoryReadPath(book, name="paper-book")
    reconciler = BalanceReconciler([read_path])
    alerts = RecordingSink()
    orchestrator = SwapOrchestrator(
        aggregator=aggregator,
        signer=signer or PaperSigner(),
        transport=transport,
        reconciler=reconciler,
        confirmation=ConfirmationConfig(
            timeout_seconds=confirmation_timeout,
            initial_delay_seconds=0.01,
            max_delay_seconds=0.02,
        ),
        serializer=OwnerSerializer(),
        journal=journal,
        alert_router=AlertRouter([alerts]),
        transfer_builder=PaperTransferBuilder(),
        explorer_tx_url=EXPLORER,
    )
    return Rig(book, transport, aggregator, read_path, reconciler, alerts, orchestrator)


def _request(owner: str = "wallet-1", amount: float = 1.5) -> SwapRequest:
    return SwapRequest(input_asset=SOL, input_amount=amount, output_asset=GOLD, requester=owner, max_slippage_bps=50)


def test_swap_falls_through_timed_out_venue() -> None:
    rig = _rig()
    result = asyncio.run(rig.orchestrator.swap(_request()))

    assert result.outcome == SwapOutcome.SUCCESS
    assert result.succeeded
    assert result.venue == "B"
    assert result.output_amount == pytest.approx(34.2)
    assert result.quoted_output == pytest.approx(34.2)
    assert result.reason is None
    assert result.explorer_url == EXPLORER.format(tx_id=result.tx_id)
    assert result.stage_history == [
        SwapStage.QUOTING,
        SwapStage.BUILDING,
        SwapStage.AWAITING_SIGNATURE,
        SwapStage.BROADCASTING,
        SwapStage.CONFIRMING,
        SwapStage.TERMINAL,
    ]
    assert rig.aggregator.store.state("A") == Liveness.DEAD
    assert rig.reconciler.reconciliations == 1
    assert result.balances["SOL"].amount == pytest.approx(8.5)
    assert result.balances["GOLD"].amount == pytest.approx(34.2)
    assert rig.alerts.events[-1].severity == AlertSeverity.INFO


def test_expired_quote_is_requoted_once() -> None:
    transport = PaperTransport(_book())
    venue = ExpiringPaperVenue(_paper_config(), transport, expire_builds=1)
    rig = _rig(venues=[VenueRegistration("B", 20, venue)], transport=transport)
    result = asyncio.run(rig.orchestrator.swap(_request()))

    assert result.outcome == SwapOutcome.SUCCESS
    assert venue.quotes_served == 2
    assert venue.builds == 2
    assert result.stage_history.count(SwapStage.QUOTING) == 2


def test_second_expiry_fails_without_broadcast() -> None:
    transport = PaperTransport(_book())
    venue = ExpiringPaperVenue(_paper_config(), transport, expire_builds=5)
    rig = _rig(venues=[VenueRegistration("B", 20, venue)], transport=transport)
    result = asyncio.run(rig.orchestrator.swap(_request()))

    assert result.outcome == SwapOutcome.FAILED
    assert result.reason == FailureReason.QUOTE_EXPIRED
    assert venue.quotes_served == 2
    assert rig.transport.broadcasts == 0
    assert rig.reconciler.reconciliations == 1


def test_no_route_reports_every_venue_and_manual_alternatives() -> None:
    rig = _rig(
        venues=[
            VenueRegistration("A", 10, SlowVenue("A")),
            VenueRegistration("dry", 20, PaperVenueAdapter(_paper_config("dry", rate=0.0))),
        ]
    )
    result = asyncio.run(rig.orchestrator.swap(_request()))

    assert result.outcome == SwapOutcome.FAILED
    assert result.reason == FailureReason.NO_ROUTE_AVAILABLE
    assert [f.venue for f in result.venue_failures] == ["A", "dry"]
    assert result.manual_venues == ["https://pump.fun", "https://jup.ag"]
    assert "https://pump.fun" in result.message
    assert result.output_amount is None
    assert rig.reconciler.reconciliations == 1
    assert rig.alerts.events[-1].severity == AlertSeverity.WARNING


def test_invalid_request_still_reconciles() -> None:
    rig = _rig()
    result = asyncio.run(rig.orchestrator.swap(_request(amount=0.0)))
    assert result.outcome == SwapOutcome.FAILED
    assert result.reason == FailureReason.INVALID_REQUEST
    assert rig.aggregator.venue("A").adapter.calls == 0
    assert rig.reconciler.reconciliations == 1


def test_signer_rejection_is_user_cancelled() -> None:
    rig = _rig(signer=PaperSigner(reject=True))
    result = asyncio.run(rig.orchestrator.swap(_request()))
    assert result.outcome == SwapOutcome.FAILED
    assert result.reason == FailureReason.USER_CANCELLED
    assert rig.transport.broadcasts == 0
    assert rig.book.get("wallet-1", "SOL") == 10.0


def test_cancel_while_awaiting_signature() -> None:
    rig = _rig(signer=HangingSigner())

    async def scenario():
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.02, cancel.set)
        return await rig.orchestrator.swap(_request(), cancel=cancel)

    result = asyncio.run(scenario())
    assert result.outcome == SwapOutcome.FAILED
    assert result.reason == FailureReason.USER_CANCELLED
    assert result.stage_history[-2] == SwapStage.AWAITING_SIGNATURE
    assert rig.transport.broadcasts == 0
    # Cancellation is a clean stop, not an operator alert.
    assert rig.alerts.events == []


def test_network_rejection_is_verbatim() -> None:
    transport = PaperTransport(_book(), reject_reason="Transaction simulation failed: insufficient lamports")
    rig = _rig(transport=transport)
    result = asyncio.run(rig.orchestrator.swap(_request()))
    assert result.outcome == SwapOutcome.FAILED
    assert result.reason == FailureReason.NETWORK_REJECTED
    assert result.message == "Transaction simulation failed: insufficient lamports"
    assert result.tx_id is None


def test_onchain_failure_is_transaction_failed() -> None:
    rig = _rig(transport=PaperTransport(_book(sol_balance=1.0)))
    result = asyncio.run(rig.orchestrator.swap(_request(amount=1.5)))
    assert result.outcome == SwapOutcome.FAILED
    assert result.reason == FailureReason.TRANSACTION_FAILED
    assert result.tx_id is not None
    assert rig.book.get("wallet-1", "SOL") == 1.0


def test_confirmation_timeout_is_partial_unknown_and_reconciles_both_assets() -> None:
    transport = PaperTransport(_book(), pending_polls=10_000)
    rig = _rig(transport=transport, confirmation_timeout=0.1)
    result = asyncio.run(rig.orchestrator.swap(_request()))

    assert result.outcome == SwapOutcome.PARTIAL_UNKNOWN
    assert result.reason == FailureReason.CONFIRMATION_TIMEOUT
    assert result.tx_id is not None
    assert result.output_amount is None
    assert rig.reconciler.reconciliations == 1
    assert set(result.balances) == {"SOL", "GOLD"}
    assert all(isinstance(reading, BalanceSnapshot) for reading in result.balances.values())
    assert rig.alerts.events[-1].severity == AlertSeverity.WARNING


def test_failed_balance_reads_are_reported_not_zeroed() -> None:
    rig = _rig()
    rig.read_path.available = False
    result = asyncio.run(rig.orchestrator.swap(_request()))
    assert result.outcome == SwapOutcome.SUCCESS
    assert isinstance(result.balances["SOL"], ReadFailure)
    assert "paper-book" in str(result.balances["GOLD"])


def test_swaps_for_one_owner_are_serialized() -> None:
    signer = SlowSigner()
    rig = _rig(signer=signer)

    async def scenario():
        return await asyncio.gather(rig.orchestrator.swap(_request()), rig.orchestrator.swap(_request()))

    results = asyncio.run(scenario())
    assert all(r.succeeded for r in results)
    assert signer.max_active == 1
    assert rig.book.get("wallet-1", "SOL") == pytest.approx(7.0)


def test_swaps_for_different_owners_run_in_parallel() -> None:
    signer = SlowSigner()
    rig = _rig(signer=signer)

    async def scenario():
        return await asyncio.gather(
            rig.orchestrator.swap(_request("wallet-1")),
            rig.orchestrator.swap(_request("wallet-2")),
        )

    results = asyncio.run(scenario())
    assert all(r.succeeded for r in results)
    assert signer.max_active == 2


def test_results_are_journaled_once(tmp_path) -> None:
    journal = SQLiteSettlementJournal(tmp_path / "journal.db")
    rig = _rig(journal=journal)
    result = asyncio.run(rig.orchestrator.swap(_request()))
    assert not journal.record(kind="swap", owner="wallet-1", result=result)
    rows = journal.recent(owner="wallet-1")
    assert len(rows) == 1
    assert rows[0]["outcome"] == "success"
    assert rows[0]["tx_id"] == result.tx_id
    assert rows[0]["result"]["quoted_output"] == pytest.approx(34.2)


def test_transfer_settles_same_asset() -> None:
    rig = _rig()
    rig.book.credit("wallet-1", "GOLD", 10.0)
    request = TransferRequest(asset=GOLD, amount=4.0, source="wallet-1", destination="treasury", owner="wallet-1")
    result = asyncio.run(rig.orchestrator.transfer(request))
    assert result.succeeded
    assert result.venue == "paper-transfer"
    assert rig.book.get("wallet-1", "GOLD") == pytest.approx(6.0)
    assert rig.book.get("treasury", "GOLD") == pytest.approx(4.0)
    assert list(result.balances) == ["GOLD"]


def test_transfer_rejects_non_positive_amount() -> None:
    rig = _rig()
    request = TransferRequest(asset=GOLD, amount=0.0, source="wallet-1", destination="treasury", owner="wallet-1")
    result = asyncio.run(rig.orchestrator.transfer(request))
    assert result.outcome == SwapOutcome.FAILED
    assert result.reason == FailureReason.INVALID_REQUEST
    assert rig.transport.broadcasts == 0


def test_quote_expired_locally_is_never_built() -> None:
    transport = PaperTransport(_book())
    venue = RecordingPaperVenue(VenueConfig(name="B", kind="paper", paper_rate=22.8, quote_ttl_seconds=5), transport)
    rig = _rig(venues=[VenueRegistration("B", 20, venue)], transport=transport)
    rig.orchestrator.clock = JumpOnceClock(jump_seconds=10)
    result = asyncio.run(rig.orchestrator.swap(_request()))

    assert result.outcome == SwapOutcome.SUCCESS
    assert len(venue.quote_ids) == 2
    assert venue.built_quote_ids == [venue.quote_ids[1]]
    assert result.stage_history.count(SwapStage.QUOTING) == 2


def test_unexpected_status_error_ends_partial_unknown_and_reconciles() -> None:
    transport = PaperTransport(_book())
    venue = GarbledStatusVenue(_paper_config(), transport)
    rig = _rig(venues=[VenueRegistration("B", 20, venue)], transport=transport, confirmation_timeout=0.1)
    result = asyncio.run(rig.orchestrator.swap(_request()))

    assert result.outcome == SwapOutcome.PARTIAL_UNKNOWN
    assert result.reason == FailureReason.CONFIRMATION_TIMEOUT
    assert result.tx_id is not None
    assert venue.polls >= 1
    assert rig.transport.broadcasts == 1
    assert rig.reconciler.reconciliations == 1
    assert set(result.balances) == {"SOL", "GOLD"}
    assert result.balances["SOL"].amount == pytest.approx(8.5)
    assert result.stage_history[-1] == SwapStage.TERMINAL
    assert rig.alerts.events[-1].severity == AlertSeverity.WARNING


def test_cancelled_caller_does_not_leave_signer_running() -> None:
    signer = AbandonedSigner()
    rig = _rig(signer=signer)

    async def scenario():
        task = asyncio.ensure_future(rig.orchestrator.swap(_request(), cancel=asyncio.Event()))
        while not signer.started:
            await asyncio.sleep(0.005)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return signer.cancelled

    assert asyncio.run(scenario())
    assert rig.transport.broadcasts == 0
    assert not rig.orchestrator.serializer.is_busy("wallet-1")


def test_swap_refuses_when_balance_cannot_cover_fee_reserve() -> None:
    rig = _rig(transport=PaperTransport(_book(sol_balance=1.5)))
    rig.orchestrator.preflight = PreflightConfig(enabled=True, fee_buffers={"SOL": 0.00214928})
    result = asyncio.run(rig.orchestrator.swap(_request(amount=1.5)))

    assert result.outcome == SwapOutcome.FAILED
    assert result.reason == FailureReason.INVALID_REQUEST
    assert result.message.startswith("Insufficient SOL balance. Need 1.502149 SOL")
    assert rig.transport.broadcasts == 0
    assert rig.book.get("wallet-1", "SOL") == 1.5
    assert rig.reconciler.reconciliations == 1

    funded = _rig()
    funded.orchestrator.preflight = PreflightConfig(enabled=True, fee_buffers={"SOL": 0.00214928})
    assert asyncio.run(funded.orchestrator.swap(_request(amount=1.5))).succeeded


def test_balance_check_is_skipped_when_reads_fail() -> None:
    rig = _rig()
    rig.orchestrator.preflight = PreflightConfig(enabled=True)
    rig.read_path.available = False
    result = asyncio.run(rig.orchestrator.swap(_request()))
    assert result.succeeded
    assert rig.transport.broadcasts == 1
