"""Bounded async confirmation polling."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import random
from typing import Awaitable, Callable, Iterator

from token_swap_engine.config import ConfirmationConfig
from token_swap_engine.contracts import Confirmation, TxStatus
from token_swap_engine.errors import ConfirmationTimeout, SwapEngineError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BackoffSchedule:
    initial_delay_seconds: float = 0.5
    max_delay_seconds: float = 5.0
    backoff_multiplier: float = 2.0
    jitter_seconds: float = 0.0

    @staticmethod
    def from_config(config: ConfirmationConfig) -> "BackoffSchedule":
        return BackoffSchedule(
            initial_delay_seconds=config.initial_delay_seconds,
            max_delay_seconds=config.max_delay_seconds,
            backoff_multiplier=config.backoff_multiplier,
        )

    def delays(self) -> Iterator[float]:
        attempt = 0
        while True:
            delay = min(
                self.initial_delay_seconds * (self.backoff_multiplier**attempt),
                self.max_delay_seconds,
            )
            if self.jitter_seconds:
                delay += random.uniform(0.0, self.jitter_seconds)
            yield delay
            attempt += 1


async def wait_for_confirmation(
    tx_id: str,
    poll: Callable[[str], Awaitable[Confirmation]],
    schedule: BackoffSchedule,
    timeout_seconds: float,
) -> Confirmation:
    """
    Poll until the transaction leaves Pending or the timeout elapses.

    Any poll error counts as "still pending"; the broadcast transaction may
    still land. Raises ConfirmationTimeout when the deadline passes without a
    Confirmed or Failed verdict.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_seconds
    polls = 0
    last_error: str | None = None
    for delay in schedule.delays():
        remaining = deadline - loop.time()
        if remaining <= 0:
            break
        polls += 1
        try:
            confirmation = await asyncio.wait_for(poll(tx_id), timeout=remaining)
        except asyncio.TimeoutError:
            break
        except SwapEngineError as exc:
            last_error = str(exc)
            logger.debug("Status poll %d for %s failed: %s", polls, tx_id, exc)
        except Exception as exc:
            last_error = f"{exc.__class__.__name__}: {exc}"
            logger.warning("Status poll %d for %s raised %s", polls, tx_id, last_error)
        else:
            if confirmation.status != TxStatus.PENDING:
                return confirmation
        remaining = deadline - loop.time()
        if remaining <= 0:
            break
        await asyncio.sleep(min(delay, remaining))

    detail = f"still pending after {timeout_seconds}s ({polls} polls)"
    if last_error:
        detail += f"; last poll error: {last_error}"
    raise ConfirmationTimeout(f"{tx_id}: {detail}")
