"""Append-only venue liveness observations and cool-down policy."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime

import pandas as pd

from token_swap_engine.contracts import Liveness, now_utc


@dataclass(frozen=True, slots=True)
class LivenessObservation:
    venue: str
    state: Liveness
    observed_at: datetime
    reason: str = ""


@dataclass(slots=True)
class CooldownPolicy:
    """Exponential back-off for venues observed Dead."""

    base_seconds: float = 60.0
    max_seconds: float = 600.0

    def window_seconds(self, consecutive_failures: int) -> float:
        if consecutive_failures <= 0:
            return 0.0
        return min(self.base_seconds * (2 ** (consecutive_failures - 1)), self.max_seconds)


class LivenessStore(ABC):
    """
    Shared liveness hints keyed by venue name.

    Writers only append the latest observation; readers tolerate stale reads,
    so implementations need no locking.
    """

    @abstractmethod
    def record(self, observation: LivenessObservation) -> None:
        """Append one observation."""

    @abstractmethod
    def history(self, venue: str) -> list[LivenessObservation]:
        """Observations for venue, oldest first."""

    def latest(self, venue: str) -> LivenessObservation | None:
        rows = self.history(venue)
        return rows[-1] if rows else None

    def state(self, venue: str) -> Liveness:
        last = self.latest(venue)
        return last.state if last else Liveness.UNKNOWN

    def consecutive_failures(self, venue: str) -> int:
        count = 0
        for row in reversed(self.history(venue)):
            if row.state != Liveness.DEAD:
                break
            count += 1
        return count

    def cooldown_remaining(self, venue: str, policy: CooldownPolicy, now: datetime | None = None) -> float:
        """Seconds the venue should still be skipped; 0 when it may be tried."""
        last = self.latest(venue)
        if last is None or last.state != Liveness.DEAD:
            return 0.0
        window = policy.window_seconds(self.consecutive_failures(venue))
        elapsed = ((now or now_utc()) - last.observed_at).total_seconds()
        return max(0.0, window - elapsed)

    @abstractmethod
    def venues(self) -> list[str]:
        """Venue names with at least one observation."""


@dataclass(slots=True)
class InMemoryLivenessStore(LivenessStore):
    max_history: int = 200
    _rows: dict[str, list[LivenessObservation]] = field(default_factory=lambda: defaultdict(list))

    def record(self, observation: LivenessObservation) -> None:
        rows = self._rows[observation.venue]
        rows.append(observation)
        if len(rows) > self.max_history:
            del rows[: len(rows) - self.max_history]

    def history(self, venue: str) -> list[LivenessObservation]:
        return list(self._rows.get(venue, []))

    def venues(self) -> list[str]:
        return sorted(self._rows.keys())


def liveness_frame(store: LivenessStore, policy: CooldownPolicy, now: datetime | None = None) -> pd.DataFrame:
    """Latest state per venue for diagnostic display."""
    current = now or now_utc()
    rows = []
    for venue in store.venues():
        last = store.latest(venue)
        if last is None:
            continue
        rows.append(
            {
                "venue": venue,
                "state": str(last.state),
                "observed_at": last.observed_at,
                "reason": last.reason,
                "consecutive_failures": store.consecutive_failures(venue),
                "cooldown_remaining_s": store.cooldown_remaining(venue, policy, now=current),
            }
        )
    columns = ["venue", "state", "observed_at", "reason", "consecutive_failures", "cooldown_remaining_s"]
    if not rows:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame(rows, columns=columns)
