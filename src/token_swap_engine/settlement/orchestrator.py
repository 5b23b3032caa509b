"""End-to-end swap and transfer settlement."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Awaitable, Callable

from token_swap_engine.balances.reconciliation import BalanceReconciler
from token_swap_engine.config import ConfirmationConfig, PreflightConfig
from token_swap_engine.contracts import (
    Asset,
    Confirmation,
    FailureReason,
    Liveness,
    Quote,
    SwapOutcome,
    SwapRequest,
    SwapResult,
    SwapStage,
    TransferRequest,
    TxStatus,
    UnsignedTx,
    VenueFailure,
    now_utc,
)
from token_swap_engine.errors import (
    ConfirmationTimeout,
    InvalidRequest,
    NetworkRejected,
    NoRouteAvailable,
    QuoteExpired,
    ReadFailure,
    SwapEngineError,
    UserCancelled,
    UserRejected,
)
from token_swap_engine.monitoring.alerting import AlertRouter
from token_swap_engine.routing.aggregator import QuoteAggregator

from .collaborators import Signer, Transport, TransferBuilder
from .confirmation import BackoffSchedule, wait_for_confirmation
from .journal import SQLiteSettlementJournal
from .serializer import OwnerSerializer

logger = logging.getLogger(__name__)

PARTIAL_UNKNOWN_MESSAGE = "Status unknown, check your balance before retrying."


@dataclass(slots=True)
class _Broadcasted:
    tx_id: str
    venue: str
    poll: Callable[[str], Awaitable[Confirmation]]
    quoted_output: float | None = None


class _Terminal(Exception):
    """Internal short-circuit carrying a failed terminal state."""

    def __init__(self, reason: FailureReason, message: str, **extra) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.extra = extra


class SwapOrchestrator:
    """
    Drive Quoting -> Building -> AwaitingSignature -> Broadcasting -> Confirming.

    Every attempt ends in exactly one terminal SwapResult, after which both
    involved balances are reconciled once. Requests for the same owner are
    serialized; broadcast is the point of no return for cancellation.
    """

    def __init__(
        self,
        aggregator: QuoteAggregator,
        signer: Signer,
        transport: Transport,
        reconciler: BalanceReconciler,
        confirmation: ConfirmationConfig | None = None,
        preflight: PreflightConfig | None = None,
        serializer: OwnerSerializer | None = None,
        journal: SQLiteSettlementJournal | None = None,
        alert_router: AlertRouter | None = None,
        transfer_builder: TransferBuilder | None = None,
        explorer_tx_url: str | None = None,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.aggregator = aggregator
        self.signer = signer
        self.transport = transport
        self.reconciler = reconciler
        self.confirmation = confirmation or ConfirmationConfig()
        self.schedule = BackoffSchedule.from_config(self.confirmation)
        self.preflight = preflight or PreflightConfig()
        self.serializer = serializer or OwnerSerializer()
        self.journal = journal
        self.alert_router = alert_router or AlertRouter.with_logging()
        self.transfer_builder = transfer_builder
        self.explorer_tx_url = explorer_tx_url
        self.clock = clock

    # -- public entry points -------------------------------------------------

    async def swap(self, request: SwapRequest, cancel: asyncio.Event | None = None) -> SwapResult:
        """Execute one swap for `request.requester`, waiting behind any in-flight action."""
        async with self.serializer.hold(request.requester):
            stages: list[SwapStage] = []
            assets = [request.input_asset, request.output_asset]
            try:
                broadcasted = await self._quote_build_broadcast(request, cancel, stages)
            except _Terminal as term:
                result = self._failed(request.request_id, term, stages)
                return await self._finish(result, request.requester, assets, kind="swap")
            return await self._run_past_point_of_no_return(
                broadcasted, request.request_id, request.requester, assets, stages, kind="swap"
            )

    async def transfer(
        self,
        request: TransferRequest,
        cancel: asyncio.Event | None = None,
        serialize: bool = True,
    ) -> SwapResult:
        """
        Settle a same-asset transfer through the same sign/broadcast/confirm path.

        Callers that already hold the owner's serializer slot pass
        `serialize=False`.
        """
        if not serialize:
            return await self._transfer(request, cancel)
        async with self.serializer.hold(request.owner):
            return await self._transfer(request, cancel)

    # -- swap stages ---------------------------------------------------------

    async def _quote_build_broadcast(
        self,
        request: SwapRequest,
        cancel: asyncio.Event | None,
        stages: list[SwapStage],
    ) -> _Broadcasted:
        requoted = False
        while True:
            quote = await self._quote(request, stages)
            if not requoted:
                await self._check_funds(request)
            stages.append(SwapStage.BUILDING)
            try:
                unsigned = await self._build(quote, request)
            except QuoteExpired as exc:
                if requoted:
                    raise _Terminal(
                        FailureReason.QUOTE_EXPIRED,
                        f"Quote expired twice; please request a new quote. ({exc})",
                        venue=quote.venue,
                        quoted_output=quote.estimated_output,
                    ) from exc
                logger.info("Quote from %s expired before build; re-quoting once", quote.venue)
                requoted = True
                continue
            break

        tx_id = await self._sign_and_broadcast(unsigned, cancel, stages, venue=quote.venue)
        adapter = self.aggregator.venue(quote.venue).adapter
        return _Broadcasted(tx_id=tx_id, venue=quote.venue, poll=adapter.verify, quoted_output=quote.estimated_output)

    async def _quote(self, request: SwapRequest, stages: list[SwapStage]) -> Quote:
        stages.append(SwapStage.QUOTING)
        try:
            return await self.aggregator.get_quote(request, require_execution=True)
        except InvalidRequest as exc:
            raise _Terminal(FailureReason.INVALID_REQUEST, str(exc)) from exc
        except NoRouteAvailable as exc:
            manual = ", ".join(exc.manual_venues)
            message = "No venue could quote this trade right now."
            if manual:
                message += f" You can try a manual swap on: {manual}."
            raise _Terminal(
                FailureReason.NO_ROUTE_AVAILABLE,
                message,
                venue_failures=exc.failures,
                manual_venues=exc.manual_venues,
            ) from exc

    async def _check_funds(self, request: SwapRequest) -> None:
        """Refuse to build when the input balance cannot cover amount plus fee reserve."""
        if not self.preflight.enabled:
            return
        asset = request.input_asset
        required = request.input_amount + self.preflight.fee_buffers.get(asset.symbol, 0.0)
        try:
            snapshot = await self.reconciler.get_balance(request.requester, asset, force=True)
        except ReadFailure as exc:
            logger.warning("Pre-build balance check skipped for %s: %s", request.requester, exc)
            return
        if snapshot.amount < required:
            raise _Terminal(
                FailureReason.INVALID_REQUEST,
                f"Insufficient {asset.symbol} balance. Need {required:.6f} {asset.symbol} "
                f"but only have {snapshot.amount:.6f} {asset.symbol}.",
            )

    async def _build(self, quote: Quote, request: SwapRequest) -> UnsignedTx:
        if quote.is_expired(self.clock()):
            raise QuoteExpired(f"quote {quote.quote_id} from {quote.venue} expired at {quote.expires_at.isoformat()}")
        registration = self.aggregator.venue(quote.venue)
        try:
            return await registration.adapter.build_transaction(quote, request)
        except QuoteExpired:
            raise
        except Exception as exc:
            reason = str(exc) or exc.__class__.__name__
            self.aggregator.report(quote.venue, Liveness.DEAD, f"build failed: {reason}")
            raise _Terminal(
                FailureReason.NO_ROUTE_AVAILABLE,
                f"{quote.venue} could not build the transaction. Please try again.",
                venue=quote.venue,
                quoted_output=quote.estimated_output,
                venue_failures=[VenueFailure(venue=quote.venue, liveness=Liveness.DEAD, reason=reason)],
                manual_venues=self.aggregator.config.manual_venues,
            ) from exc

    # -- shared settlement path ----------------------------------------------

    async def _await_signature(self, unsigned: UnsignedTx, cancel: asyncio.Event | None):
        if cancel is None:
            return await self.signer.sign(unsigned)
        if cancel.is_set():
            raise UserCancelled("Cancelled before signing.")
        sign_task = asyncio.ensure_future(self.signer.sign(unsigned))
        cancel_task = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait({sign_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_task.cancel()
            if not sign_task.done():
                sign_task.cancel()
                await asyncio.gather(sign_task, return_exceptions=True)
        if sign_task in done:
            return sign_task.result()
        raise UserCancelled("Cancelled while awaiting signature.")

    async def _sign_and_broadcast(
        self,
        unsigned: UnsignedTx,
        cancel: asyncio.Event | None,
        stages: list[SwapStage],
        venue: str | None = None,
    ) -> str:
        stages.append(SwapStage.AWAITING_SIGNATURE)
        try:
            signed = await self._await_signature(unsigned, cancel)
        except (UserCancelled, UserRejected) as exc:
            raise _Terminal(FailureReason.USER_CANCELLED, "Cancelled by user.", venue=venue) from exc
        except Exception as exc:
            raise _Terminal(FailureReason.TRANSPORT_FAILURE, f"Signing failed: {exc}", venue=venue) from exc
        if cancel is not None and cancel.is_set():
            raise _Terminal(FailureReason.USER_CANCELLED, "Cancelled by user.", venue=venue)

        stages.append(SwapStage.BROADCASTING)
        try:
            return await self.transport.broadcast(signed)
        except NetworkRejected as exc:
            raise _Terminal(FailureReason.NETWORK_REJECTED, str(exc), venue=venue) from exc
        except Exception as exc:
            raise _Terminal(FailureReason.TRANSPORT_FAILURE, f"Broadcast failed: {exc}", venue=venue) from exc

    async def _run_past_point_of_no_return(
        self,
        broadcasted: _Broadcasted,
        request_id: str,
        owner: str,
        assets: list[Asset],
        stages: list[SwapStage],
        kind: str,
    ) -> SwapResult:
        task = asyncio.ensure_future(self._confirm_and_finish(broadcasted, request_id, owner, assets, stages, kind))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            logger.warning("Caller cancelled after broadcast of %s; finishing settlement first", broadcasted.tx_id)
            await task
            raise

    async def _confirm_and_finish(
        self,
        broadcasted: _Broadcasted,
        request_id: str,
        owner: str,
        assets: list[Asset],
        stages: list[SwapStage],
        kind: str,
    ) -> SwapResult:
        stages.append(SwapStage.CONFIRMING)
        common = dict(
            request_id=request_id,
            venue=broadcasted.venue,
            tx_id=broadcasted.tx_id,
            quoted_output=broadcasted.quoted_output,
        )
        try:
            confirmation = await wait_for_confirmation(
                broadcasted.tx_id,
                broadcasted.poll,
                self.schedule,
                self.confirmation.timeout_seconds,
            )
        except ConfirmationTimeout as exc:
            logger.warning("%s", exc)
            result = SwapResult(
                outcome=SwapOutcome.PARTIAL_UNKNOWN,
                reason=FailureReason.CONFIRMATION_TIMEOUT,
                message=PARTIAL_UNKNOWN_MESSAGE,
                **common,
            )
        else:
            if confirmation.status == TxStatus.CONFIRMED:
                result = SwapResult(
                    outcome=SwapOutcome.SUCCESS,
                    output_amount=confirmation.output_amount,
                    message="Settled.",
                    **common,
                )
            else:
                result = SwapResult(
                    outcome=SwapOutcome.FAILED,
                    reason=FailureReason.TRANSACTION_FAILED,
                    message=f"Transaction failed on-chain: {confirmation.detail or 'no detail'}",
                    **common,
                )
        result.stage_history = list(stages)
        return await self._finish(result, owner, assets, kind=kind)

    # -- transfers -----------------------------------------------------------

    async def _poll_transport(self, tx_id: str) -> Confirmation:
        return Confirmation(status=await self.transport.get_status(tx_id))

    async def _transfer(self, request: TransferRequest, cancel: asyncio.Event | None) -> SwapResult:
        stages: list[SwapStage] = []
        assets = [request.asset]
        builder_name = self.transfer_builder.name if self.transfer_builder else None
        try:
            if not request.amount > 0:
                raise _Terminal(FailureReason.INVALID_REQUEST, f"Transfer amount must be positive, got {request.amount}.")
            if self.transfer_builder is None:
                raise _Terminal(FailureReason.TRANSPORT_FAILURE, "No transfer builder configured.")
            stages.append(SwapStage.BUILDING)
            try:
                unsigned = await self.transfer_builder.build_transfer(request)
            except SwapEngineError as exc:
                raise _Terminal(FailureReason.TRANSPORT_FAILURE, f"Could not build transfer: {exc}") from exc
            tx_id = await self._sign_and_broadcast(unsigned, cancel, stages, venue=builder_name)
        except _Terminal as term:
            result = self._failed(request.request_id, term, stages)
            return await self._finish(result, request.owner, assets, kind="transfer")
        broadcasted = _Broadcasted(tx_id=tx_id, venue=builder_name or "transfer", poll=self._poll_transport)
        return await self._run_past_point_of_no_return(
            broadcasted, request.request_id, request.owner, assets, stages, kind="transfer"
        )

    # -- terminal handling ---------------------------------------------------

    def _failed(self, request_id: str, term: _Terminal, stages: list[SwapStage]) -> SwapResult:
        return SwapResult(
            outcome=SwapOutcome.FAILED,
            request_id=request_id,
            reason=term.reason,
            message=term.message,
            venue=term.extra.get("venue"),
            quoted_output=term.extra.get("quoted_output"),
            venue_failures=list(term.extra.get("venue_failures", [])),
            manual_venues=list(term.extra.get("manual_venues", [])),
            stage_history=list(stages),
        )

    async def _finish(self, result: SwapResult, owner: str, assets: list[Asset], kind: str) -> SwapResult:
        result.stage_history.append(SwapStage.TERMINAL)
        result.balances = dict(await self.reconciler.reconcile(owner, assets, force=True))
        result.finished_at = self.clock()
        if result.tx_id and self.explorer_tx_url:
            result.explorer_url = self.explorer_tx_url.format(tx_id=result.tx_id)
        if self.journal is not None:
            self.journal.record(kind=kind, owner=owner, result=result)
        self.alert_router.notify_result(result, owner, kind)
        return result
