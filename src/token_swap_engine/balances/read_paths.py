"""Typed balance read paths behind one interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
from collections import defaultdict
import json

import aiohttp

from token_swap_engine.config import ReadPathConfig
from token_swap_engine.contracts import Asset
from token_swap_engine.errors import ReadPathUnavailable
from token_swap_engine.payloads import dig


class BalanceReadPath(ABC):
    """One independent source of (owner, asset) balances."""

    name: str

    @abstractmethod
    async def read_balance(self, owner: str, asset: Asset) -> float:
        """Return the balance or raise ReadPathUnavailable."""

    async def close(self) -> None:
        return None


class HTTPReadPath(BalanceReadPath):
    """
    Read balances from a JSON endpoint.

    `url` may contain `{owner}`, `{asset}` and `{address}` placeholders; the
    amount is located via the dotted `amount_field`.
    """

    def __init__(self, config: ReadPathConfig, session: aiohttp.ClientSession | None = None) -> None:
        if not config.url:
            raise ValueError(f"Read path '{config.name}' requires a url.")
        self.config = config
        self.name = config.name
        self._session = session
        self._owns_session = session is None

    def _client(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={"Accept": "application/json"})
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    def parse_amount(self, body: object) -> float:
        raw = dig(body, self.config.amount_field)
        if raw is None or isinstance(raw, bool):
            raise ReadPathUnavailable(f"{self.name}: field '{self.config.amount_field}' missing")
        try:
            amount = float(raw)
        except (TypeError, ValueError) as exc:
            raise ReadPathUnavailable(f"{self.name}: non-numeric balance {raw!r}") from exc
        if amount < 0:
            raise ReadPathUnavailable(f"{self.name}: negative balance {raw!r}")
        return amount

    async def read_balance(self, owner: str, asset: Asset) -> float:
        url = str(self.config.url).format(owner=owner, asset=asset.symbol, address=asset.address)
        timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
        try:
            async with self._client().get(url, timeout=timeout) as response:
                if response.status >= 400:
                    raise ReadPathUnavailable(f"{self.name}: HTTP {response.status}")
                text = await response.text()
        except asyncio.TimeoutError as exc:
            raise ReadPathUnavailable(f"{self.name}: timeout after {self.config.timeout_seconds}s") from exc
        except aiohttp.ClientError as exc:
            raise ReadPathUnavailable(f"{self.name}: {exc.__class__.__name__}: {exc}") from exc
        except UnicodeDecodeError as exc:
            raise ReadPathUnavailable(f"{self.name}: undecodable response body") from exc
        try:
            body = json.loads(text)
        except ValueError as exc:
            raise ReadPathUnavailable(f"{self.name}: malformed JSON response") from exc
        return self.parse_amount(body)


class InMemoryBalanceBook:
    """Balances held in process; the paper transport settles against it."""

    def __init__(self, balances: dict[str, dict[str, float]] | None = None) -> None:
        self._balances: dict[str, dict[str, float]] = defaultdict(dict)
        for owner, rows in (balances or {}).items():
            self._balances[owner].update(rows)

    def get(self, owner: str, symbol: str) -> float:
        return float(self._balances[owner].get(symbol, 0.0))

    def credit(self, owner: str, symbol: str, amount: float) -> None:
        self._balances[owner][symbol] = self.get(owner, symbol) + amount

    def debit(self, owner: str, symbol: str, amount: float) -> None:
        current = self.get(owner, symbol)
        if amount > current + 1e-12:
            raise ValueError(f"insufficient {symbol} for {owner}: {current} < {amount}")
        self._balances[owner][symbol] = current - amount


class InMemoryReadPath(BalanceReadPath):
    """Read path over an `InMemoryBalanceBook`; `available` toggles outages."""

    def __init__(self, book: InMemoryBalanceBook, name: str = "memory") -> None:
        self.book = book
        self.name = name
        self.available = True
        self.reads = 0

    async def read_balance(self, owner: str, asset: Asset) -> float:
        self.reads += 1
        if not self.available:
            raise ReadPathUnavailable(f"{self.name}: offline")
        return self.book.get(owner, asset.symbol)


def build_read_path(config: ReadPathConfig, book: InMemoryBalanceBook | None = None) -> BalanceReadPath:
    """Factory for configured read paths."""
    kind = config.kind.lower()
    if kind == "http":
        return HTTPReadPath(config)
    if kind == "memory":
        if book is None:
            raise ValueError(f"Read path '{config.name}' of kind 'memory' requires a balance book.")
        return InMemoryReadPath(book, name=config.name)
    raise ValueError(f"Unsupported read path kind: {config.kind}")
