"""Authoritative balance reads with ordered fallback and rate limiting."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
import logging
from typing import Callable, Iterable

from token_swap_engine.config import BalanceConfig
from token_swap_engine.contracts import Asset, BalanceSnapshot, now_utc
from token_swap_engine.errors import ReadFailure

from .read_paths import BalanceReadPath

logger = logging.getLogger(__name__)


class ReadDecision(StrEnum):
    READ = "read"
    REUSE_LAST = "reuse_last"


def plan_read(
    last_attempt_at: datetime | None,
    now: datetime,
    rate_limit_seconds: float,
    force: bool = False,
) -> ReadDecision:
    """Decide whether a balance request may hit the read paths."""
    if force or last_attempt_at is None:
        return ReadDecision.READ
    if (now - last_attempt_at).total_seconds() >= rate_limit_seconds:
        return ReadDecision.READ
    return ReadDecision.REUSE_LAST


@dataclass(slots=True)
class _LastRead:
    attempted_at: datetime
    snapshot: BalanceSnapshot | None
    failure: ReadFailure | None


class BalanceReconciler:
    """
    Resolve (owner, asset) balances from an ordered list of read paths.

    The first path that answers produces the whole snapshot; paths are never
    blended. When every path fails a ReadFailure is raised, never a cached or
    placeholder figure. Repeated requests inside the rate-limit window reuse
    the previous outcome unless a refresh is forced.
    """

    def __init__(
        self,
        read_paths: list[BalanceReadPath],
        config: BalanceConfig | None = None,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        if not read_paths:
            raise ValueError("At least one balance read path is required.")
        self.read_paths = list(read_paths)
        if len(self.read_paths) == 1:
            logger.warning("Balance read path %s has no fallback; an outage fails every read", self.read_paths[0].name)
        self.config = config or BalanceConfig()
        self.clock = clock
        self._last: dict[tuple[str, str], _LastRead] = {}
        self._refresh_requested: set[tuple[str, str]] = set()
        self.reconciliations = 0

    def request_refresh(self, owner: str, asset: Asset) -> None:
        """Arm a one-shot rate-limit bypass for the next read of (owner, asset)."""
        self._refresh_requested.add((owner, asset.symbol))

    def is_stale(self, snapshot: BalanceSnapshot) -> bool:
        return snapshot.is_stale(self.config.staleness_ttl_seconds, now=self.clock())

    async def _read_through(self, owner: str, asset: Asset) -> BalanceSnapshot:
        errors: dict[str, str] = {}
        for path in self.read_paths:
            try:
                amount = await path.read_balance(owner, asset)
            except Exception as exc:
                errors[path.name] = str(exc) or exc.__class__.__name__
                logger.info("Read path %s failed for %s/%s: %s", path.name, owner, asset.symbol, errors[path.name])
                continue
            return BalanceSnapshot(
                asset=asset.symbol,
                owner=owner,
                amount=amount,
                as_of=self.clock(),
                source=path.name,
            )
        raise ReadFailure(owner, asset.symbol, errors)

    async def get_balance(self, owner: str, asset: Asset, force: bool = False) -> BalanceSnapshot:
        key = (owner, asset.symbol)
        if key in self._refresh_requested:
            self._refresh_requested.discard(key)
            force = True
        last = self._last.get(key)
        decision = plan_read(
            last.attempted_at if last else None,
            self.clock(),
            self.config.rate_limit_seconds,
            force=force,
        )
        if decision == ReadDecision.REUSE_LAST and last is not None:
            if last.snapshot is not None:
                return last.snapshot
            if last.failure is not None:
                raise ReadFailure(last.failure.owner, last.failure.asset, last.failure.errors)

        attempted_at = self.clock()
        try:
            snapshot = await self._read_through(owner, asset)
        except ReadFailure as exc:
            self._last[key] = _LastRead(attempted_at=attempted_at, snapshot=None, failure=exc)
            logger.warning("%s", exc)
            raise
        self._last[key] = _LastRead(attempted_at=attempted_at, snapshot=snapshot, failure=None)
        return snapshot

    async def reconcile(
        self,
        owner: str,
        assets: Iterable[Asset],
        force: bool = True,
    ) -> dict[str, BalanceSnapshot | ReadFailure]:
        """Refresh several balances at once; failures are returned, not raised."""
        unique: dict[str, Asset] = {asset.symbol: asset for asset in assets}
        self.reconciliations += 1
        results = await asyncio.gather(
            *(self.get_balance(owner, asset, force=force) for asset in unique.values()),
            return_exceptions=True,
        )
        out: dict[str, BalanceSnapshot | ReadFailure] = {}
        for symbol, result in zip(unique.keys(), results):
            if isinstance(result, (BalanceSnapshot, ReadFailure)):
                out[symbol] = result
            else:
                raise result
        return out

    async def close(self) -> None:
        for path in self.read_paths:
            await path.close()
