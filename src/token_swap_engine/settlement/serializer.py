"""Per-owner serialization of state-changing operations."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator


class OwnerSerializer:
    """
    One asyncio lock per owner.

    A second swap/stake/unstake/claim for the same owner waits until the first
    reaches a terminal state; different owners never contend.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._waiting: dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, owner: str) -> AsyncIterator[None]:
        lock = self._locks[owner]
        self._waiting[owner] += 1
        try:
            async with lock:
                yield
        finally:
            self._waiting[owner] -= 1
            if self._waiting[owner] == 0:
                self._waiting.pop(owner, None)
                if not lock.locked():
                    self._locks.pop(owner, None)

    def is_busy(self, owner: str) -> bool:
        lock = self._locks.get(owner)
        return bool(lock and lock.locked())
