"""Paper venue with a fixed exchange rate for demos and tests."""

from __future__ import annotations

from datetime import datetime
import json
from typing import TYPE_CHECKING, Callable
from uuid import uuid4

from token_swap_engine.config import VenueConfig
from token_swap_engine.contracts import (
    Confirmation,
    Quote,
    SwapRequest,
    TxStatus,
    UnsignedTx,
    expiry_from_now,
    now_utc,
)
from token_swap_engine.errors import NoLiquidity, QuoteExpired, VenueUnavailable
from .base import VenueAdapter

if TYPE_CHECKING:
    from token_swap_engine.settlement.collaborators import PaperTransport


class PaperVenueAdapter(VenueAdapter):
    """
    Deterministic venue quoting `amount * rate` less its price impact.

    Transactions are JSON documents settled by a `PaperTransport`, which is
    also the source of truth for `verify`.
    """

    def __init__(
        self,
        config: VenueConfig,
        transport: PaperTransport | None = None,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.config = config
        self.name = config.name
        self.transport = transport
        self.clock = clock
        self.quotes_served = 0

    async def quote(self, request: SwapRequest) -> Quote:
        if self.config.paper_rate <= 0:
            raise NoLiquidity(f"{self.name}: no pool for {request.input_asset.symbol}/{request.output_asset.symbol}")
        if request.input_amount > self.config.paper_liquidity:
            raise NoLiquidity(f"{self.name}: insufficient liquidity for {request.input_amount}")
        impact = self.config.paper_price_impact_bps
        estimated = request.input_amount * self.config.paper_rate * (1.0 - impact / 10_000.0)
        self.quotes_served += 1
        quote_id = f"paper-{uuid4().hex}"
        return Quote(
            venue=self.name,
            input_asset=request.input_asset,
            input_amount=request.input_amount,
            output_asset=request.output_asset,
            estimated_output=estimated,
            min_output_amount=request.min_output(estimated),
            price_impact_bps=impact,
            expires_at=expiry_from_now(self.config.quote_ttl_seconds, self.clock()),
            payload={"rate": self.config.paper_rate},
            quote_id=quote_id,
        )

    async def build_transaction(self, quote: Quote, request: SwapRequest) -> UnsignedTx:
        if quote.is_expired(self.clock()):
            raise QuoteExpired(f"{self.name}: quote {quote.quote_id} expired")
        if not self.config.supports_execution:
            raise VenueUnavailable(f"{self.name}: venue does not support direct execution")
        document = {
            "kind": "swap",
            "venue": self.name,
            "quote_id": quote.quote_id,
            "owner": request.requester,
            "input_asset": quote.input_asset.symbol,
            "input_amount": quote.input_amount,
            "output_asset": quote.output_asset.symbol,
            "output_amount": quote.estimated_output,
            "min_output_amount": quote.min_output_amount,
        }
        return UnsignedTx(
            payload=json.dumps(document, sort_keys=True).encode("utf-8"),
            venue=self.name,
            description=f"paper swap {quote.input_amount} {quote.input_asset.symbol} -> {quote.output_asset.symbol}",
            metadata={"quote_id": quote.quote_id},
        )

    async def verify(self, tx_id: str) -> Confirmation:
        if self.transport is None:
            raise VenueUnavailable(f"{self.name}: no paper transport attached")
        status = await self.transport.get_status(tx_id)
        if status != TxStatus.CONFIRMED:
            return Confirmation(status=status)
        document = self.transport.document(tx_id)
        return Confirmation(status=status, output_amount=float(document.get("output_amount", 0.0)) or None)
