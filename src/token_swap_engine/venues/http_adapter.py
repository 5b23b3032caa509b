"""Template adapter for venues exposing JSON quote/build/status endpoints."""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from datetime import datetime
from typing import Any, Callable

import aiohttp

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
from token_swap_engine.payloads import dig

from .base import VenueAdapter, require_positive_amount

logger = logging.getLogger(__name__)

_CONFIRMED = {"confirmed", "finalized", "success", "succeeded", "settled"}
_FAILED = {"failed", "error", "reverted", "dropped", "rejected"}


class HTTPVenueAdapter(VenueAdapter):
    """
    Generic JSON-over-HTTP venue.

    Quote endpoint: GET `quote_url` with input_asset, output_asset, amount,
    slippage_bps. Build endpoint: POST `build_url` with the opaque quote
    payload and the requester. Status endpoint: GET `status_url` with tx_id.
    Response fields are located through `VenueConfig.fields`.
    """

    def __init__(
        self,
        config: VenueConfig,
        session: aiohttp.ClientSession | None = None,
        status_fallback: Callable[[str], Any] | None = None,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.config = config
        self.name = config.name
        self.fields = config.fields
        self.status_fallback = status_fallback
        self.clock = clock
        self._session = session
        self._owns_session = session is None

    def _client(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={"Accept": "application/json", **self.config.extra_headers})
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    def _classify_error(self, message: str) -> Exception:
        lowered = message.lower()
        if "expired" in lowered:
            return QuoteExpired(f"{self.name}: {message}")
        if any(marker in lowered for marker in self.fields.no_liquidity_markers):
            return NoLiquidity(f"{self.name}: {message}")
        return VenueUnavailable(f"{self.name}: {message}")

    async def _request_json(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> Any:
        timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
        try:
            async with self._client().request(
                method.upper(), url, params=params, json=payload, timeout=timeout
            ) as response:
                status = response.status
                text = await response.text()
        except asyncio.TimeoutError as exc:
            raise VenueUnavailable(f"{self.name}: timeout after {self.config.timeout_seconds}s") from exc
        except aiohttp.ClientError as exc:
            raise VenueUnavailable(f"{self.name}: {exc.__class__.__name__}: {exc}") from exc
        except UnicodeDecodeError as exc:
            raise VenueUnavailable(f"{self.name}: undecodable response body") from exc

        try:
            body = json.loads(text) if text else {}
        except ValueError as exc:
            if status >= 400:
                raise self._classify_error(f"HTTP {status}: {text[:200]}") from exc
            raise VenueUnavailable(f"{self.name}: malformed JSON response") from exc

        if status >= 400:
            error = dig(body, self.fields.error) if isinstance(body, dict) else None
            raise self._classify_error(f"HTTP {status}: {error or text[:200]}")
        return body

    def parse_quote(self, body: Any, request: SwapRequest) -> Quote:
        if not isinstance(body, dict):
            raise VenueUnavailable(f"{self.name}: unexpected quote shape {type(body).__name__}")
        error = dig(body, self.fields.error)
        if error:
            raise self._classify_error(str(error))

        raw_output = require_positive_amount(dig(body, self.fields.output_amount), self.fields.output_amount, self.name)
        if self.config.amounts_in_base_units:
            estimated = request.output_asset.from_base_units(int(raw_output))
            estimated = require_positive_amount(estimated, self.fields.output_amount, self.name)
        else:
            estimated = raw_output

        impact_raw = dig(body, self.fields.price_impact)
        try:
            # Venues report impact in percent.
            impact_bps = float(impact_raw) * 100.0 if impact_raw is not None else 0.0
        except (TypeError, ValueError) as exc:
            raise VenueUnavailable(f"{self.name}: non-numeric price impact {impact_raw!r}") from exc

        venue_payload = dig(body, self.fields.quote_payload)
        if not isinstance(venue_payload, dict):
            raise VenueUnavailable(f"{self.name}: quote payload missing")

        return Quote(
            venue=self.name,
            input_asset=request.input_asset,
            input_amount=request.input_amount,
            output_asset=request.output_asset,
            estimated_output=estimated,
            min_output_amount=request.min_output(estimated),
            price_impact_bps=impact_bps,
            expires_at=expiry_from_now(self.config.quote_ttl_seconds, self.clock()),
            payload=venue_payload,
        )

    async def quote(self, request: SwapRequest) -> Quote:
        if not self.config.quote_url:
            raise VenueUnavailable(f"{self.name}: no quote endpoint configured")
        amount: int | float = request.input_amount
        if self.config.amounts_in_base_units:
            amount = request.input_asset.to_base_units(request.input_amount)
        params = {
            "input_asset": request.input_asset.address,
            "output_asset": request.output_asset.address,
            "amount": str(amount),
            "slippage_bps": str(request.max_slippage_bps),
        }
        body = await self._request_json("GET", self.config.quote_url, params=params)
        quote = self.parse_quote(body, request)
        logger.debug("%s quoted %s %s -> %s %s", self.name, quote.input_amount, quote.input_asset.symbol,
                      quote.estimated_output, quote.output_asset.symbol)
        return quote

    def parse_transaction(self, body: Any, quote: Quote) -> UnsignedTx:
        if not isinstance(body, dict):
            raise VenueUnavailable(f"{self.name}: unexpected build shape {type(body).__name__}")
        error = dig(body, self.fields.error)
        if error:
            raise self._classify_error(str(error))
        encoded = dig(body, self.fields.transaction)
        if not isinstance(encoded, str) or not encoded:
            raise VenueUnavailable(f"{self.name}: transaction missing from build response")
        try:
            raw = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise VenueUnavailable(f"{self.name}: transaction is not valid base64") from exc
        return UnsignedTx(
            payload=raw,
            venue=self.name,
            description=f"swap {quote.input_amount} {quote.input_asset.symbol} -> {quote.output_asset.symbol}",
            metadata={"quote_id": quote.quote_id, "min_output_amount": quote.min_output_amount},
        )

    async def build_transaction(self, quote: Quote, request: SwapRequest) -> UnsignedTx:
        if quote.is_expired(self.clock()):
            raise QuoteExpired(f"{self.name}: quote {quote.quote_id} expired at {quote.expires_at.isoformat()}")
        if not self.config.supports_execution or not self.config.build_url:
            raise VenueUnavailable(f"{self.name}: venue does not support direct execution")
        min_output: int | float = quote.min_output_amount
        if self.config.amounts_in_base_units:
            min_output = quote.output_asset.to_base_units(quote.min_output_amount)
        payload = {
            "quote": quote.payload,
            "requester": request.requester,
            "min_output": str(min_output),
            "slippage_bps": request.max_slippage_bps,
        }
        body = await self._request_json("POST", self.config.build_url, payload=payload)
        return self.parse_transaction(body, quote)

    def parse_status(self, body: Any) -> Confirmation:
        if not isinstance(body, dict):
            raise VenueUnavailable(f"{self.name}: unexpected status shape {type(body).__name__}")
        status = str(dig(body, self.fields.status) or "").lower()
        settled = dig(body, self.fields.settled_output)
        output = None
        if settled is not None:
            try:
                output = float(settled)
            except (TypeError, ValueError):
                output = None
        if status in _CONFIRMED:
            return Confirmation(status=TxStatus.CONFIRMED, output_amount=output)
        if status in _FAILED:
            return Confirmation(status=TxStatus.FAILED, detail=str(dig(body, self.fields.error) or status))
        return Confirmation(status=TxStatus.PENDING)

    async def verify(self, tx_id: str) -> Confirmation:
        if self.config.status_url:
            body = await self._request_json("GET", self.config.status_url, params={"tx_id": tx_id})
            return self.parse_status(body)
        if self.status_fallback is not None:
            status = await self.status_fallback(tx_id)
            return Confirmation(status=TxStatus(status))
        raise VenueUnavailable(f"{self.name}: no status endpoint configured")

    async def health_check(self) -> bool:
        if not self.config.health_url:
            return True
        try:
            await self._request_json("GET", self.config.health_url)
            return True
        except (VenueUnavailable, NoLiquidity, QuoteExpired):
            return False
