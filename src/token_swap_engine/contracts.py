"""Contracts shared by venue adapters, settlement, balances and staking."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from enum import StrEnum
from typing import Any
from uuid import uuid4


def now_utc() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class Liveness(StrEnum):
    UNKNOWN = "unknown"
    LIVE = "live"
    DEGRADED = "degraded"
    DEAD = "dead"


class TxStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class SwapOutcome(StrEnum):
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL_UNKNOWN = "partial_unknown"


class SwapStage(StrEnum):
    QUOTING = "quoting"
    BUILDING = "building"
    AWAITING_SIGNATURE = "awaiting_signature"
    BROADCASTING = "broadcasting"
    CONFIRMING = "confirming"
    TERMINAL = "terminal"


class FailureReason(StrEnum):
    INVALID_REQUEST = "invalid_request"
    NO_ROUTE_AVAILABLE = "no_route_available"
    QUOTE_EXPIRED = "quote_expired"
    USER_CANCELLED = "user_cancelled"
    NETWORK_REJECTED = "network_rejected"
    TRANSPORT_FAILURE = "transport_failure"
    CONFIRMATION_TIMEOUT = "confirmation_timeout"
    TRANSACTION_FAILED = "transaction_failed"


@dataclass(frozen=True, slots=True)
class Asset:
    """Tradable asset loaded from static configuration."""

    symbol: str
    address: str
    decimals: int
    min_amount: float = 0.0

    def to_base_units(self, amount: float) -> int:
        return int(amount * (10**self.decimals))

    def from_base_units(self, units: int | str) -> float:
        return int(units) / (10**self.decimals)


@dataclass(slots=True)
class SwapRequest:
    """Caller intent to exchange `input_amount` of one asset for another."""

    input_asset: Asset
    input_amount: float
    output_asset: Asset
    requester: str
    max_slippage_bps: int = 50
    request_id: str = field(default_factory=lambda: uuid4().hex)

    def min_output(self, estimated_output: float) -> float:
        return estimated_output * (1.0 - self.max_slippage_bps / 10_000.0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "input_asset": self.input_asset.symbol,
            "input_amount": self.input_amount,
            "output_asset": self.output_asset.symbol,
            "requester": self.requester,
            "max_slippage_bps": self.max_slippage_bps,
        }


@dataclass(slots=True)
class Quote:
    """Venue estimate for one SwapRequest, valid until `expires_at`."""

    venue: str
    input_asset: Asset
    input_amount: float
    output_asset: Asset
    estimated_output: float
    min_output_amount: float
    price_impact_bps: float
    expires_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)
    quote_id: str = field(default_factory=lambda: uuid4().hex)
    quoted_at: datetime = field(default_factory=now_utc)

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or now_utc()) >= self.expires_at

    def seconds_left(self, now: datetime | None = None) -> float:
        return (self.expires_at - (now or now_utc())).total_seconds()


@dataclass(slots=True)
class UnsignedTx:
    """Ready-to-sign artifact produced by a venue or transfer builder."""

    payload: bytes
    venue: str
    description: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class SignedTx:
    payload: bytes
    venue: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class Confirmation:
    """Post-trade verification outcome reported by a venue."""

    status: TxStatus
    output_amount: float | None = None
    detail: str | None = None


@dataclass(slots=True)
class TransferRequest:
    """Same-asset movement between an owner and a counterparty account."""

    asset: Asset
    amount: float
    source: str
    destination: str
    owner: str
    memo: str = ""
    request_id: str = field(default_factory=lambda: uuid4().hex)


@dataclass(slots=True)
class BalanceSnapshot:
    """Balance read from exactly one read path at one point in time."""

    asset: str
    owner: str
    amount: float
    as_of: datetime
    source: str

    def age_seconds(self, now: datetime | None = None) -> float:
        return ((now or now_utc()) - self.as_of).total_seconds()

    def is_stale(self, ttl_seconds: float, now: datetime | None = None) -> bool:
        return self.age_seconds(now) > ttl_seconds

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["as_of"] = self.as_of.isoformat()
        return data


@dataclass(slots=True)
class VenueFailure:
    """Why one venue could not serve a quote."""

    venue: str
    liveness: Liveness
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"venue": self.venue, "liveness": str(self.liveness), "reason": self.reason}


@dataclass(slots=True)
class SwapResult:
    """Terminal result of one swap or transfer attempt."""

    outcome: SwapOutcome
    request_id: str
    venue: str | None = None
    tx_id: str | None = None
    output_amount: float | None = None
    quoted_output: float | None = None
    reason: FailureReason | None = None
    message: str = ""
    venue_failures: list[VenueFailure] = field(default_factory=list)
    manual_venues: list[str] = field(default_factory=list)
    stage_history: list[SwapStage] = field(default_factory=list)
    balances: dict[str, BalanceSnapshot | Exception] = field(default_factory=dict)
    explorer_url: str | None = None
    finished_at: datetime = field(default_factory=now_utc)

    @property
    def succeeded(self) -> bool:
        return self.outcome == SwapOutcome.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        balances: dict[str, Any] = {}
        for symbol, reading in self.balances.items():
            if isinstance(reading, BalanceSnapshot):
                balances[symbol] = reading.to_dict()
            else:
                balances[symbol] = {"error": str(reading)}
        return {
            "outcome": str(self.outcome),
            "request_id": self.request_id,
            "venue": self.venue,
            "tx_id": self.tx_id,
            "output_amount": self.output_amount,
            "quoted_output": self.quoted_output,
            "reason": str(self.reason) if self.reason else None,
            "message": self.message,
            "venue_failures": [failure.to_dict() for failure in self.venue_failures],
            "manual_venues": list(self.manual_venues),
            "stage_history": [str(stage) for stage in self.stage_history],
            "balances": balances,
            "explorer_url": self.explorer_url,
            "finished_at": self.finished_at.isoformat(),
        }


@dataclass(slots=True)
class StakePosition:
    """
    Ledger entry for one owner's staked principal.

    `unclaimed_reward` only holds reward materialized at a baseline reset;
    reward accrued since `baseline_at` is always computed on read.
    """

    owner: str
    staked_amount: float = 0.0
    unclaimed_reward: float = 0.0
    baseline_at: datetime = field(default_factory=now_utc)
    total_claimed: float = 0.0
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner": self.owner,
            "staked_amount": self.staked_amount,
            "unclaimed_reward": self.unclaimed_reward,
            "baseline_at": self.baseline_at.isoformat(),
            "total_claimed": self.total_claimed,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "StakePosition":
        data = payload.copy()
        for key in ("baseline_at", "created_at", "updated_at"):
            data[key] = datetime.fromisoformat(str(data[key]))
        return StakePosition(**data)


def expiry_from_now(seconds: float, now: datetime | None = None) -> datetime:
    return (now or now_utc()) + timedelta(seconds=seconds)
