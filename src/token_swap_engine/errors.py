"""Error taxonomy for routing, settlement, balances and staking."""

from __future__ import annotations

from .contracts import VenueFailure


class SwapEngineError(Exception):
    """Base class for all engine errors."""


class InvalidRequest(SwapEngineError, ValueError):
    """Caller error; rejected before any external call and never retried."""


class InsufficientBalance(InvalidRequest):
    """Requested amount exceeds the freshly read available balance."""


class InsufficientStake(InvalidRequest):
    """Requested unstake amount exceeds the staked principal."""


class NoLiquidity(SwapEngineError):
    """Venue answered but has no route for the pair or amount."""


class VenueUnavailable(SwapEngineError):
    """Venue timed out, errored, or returned a malformed response."""


class QuoteExpired(SwapEngineError):
    """Quote passed its expiry before the transaction could be built."""


class NoRouteAvailable(SwapEngineError):
    """Every configured venue failed to produce a usable quote."""

    def __init__(self, failures: list[VenueFailure], manual_venues: list[str] | None = None) -> None:
        self.failures = list(failures)
        self.manual_venues = list(manual_venues or [])
        detail = "; ".join(f"{f.venue}: {f.reason}" for f in self.failures) or "no venues configured"
        super().__init__(f"No route available ({detail})")


class UserRejected(SwapEngineError):
    """Signer reports that the user declined to sign."""


class UserCancelled(SwapEngineError):
    """User cancelled the operation before broadcast."""


class NetworkRejected(SwapEngineError):
    """Transport refused the signed transaction (fees, funds, preflight)."""


class TransportFailure(SwapEngineError):
    """Transport could not be reached or failed without a verdict."""


class ConfirmationTimeout(SwapEngineError):
    """Transaction stayed pending past the confirmation timeout."""


class ReadFailure(SwapEngineError):
    """Every balance read path failed for one (owner, asset)."""

    def __init__(self, owner: str, asset: str, errors: dict[str, str]) -> None:
        self.owner = owner
        self.asset = asset
        self.errors = dict(errors)
        detail = "; ".join(f"{path}: {err}" for path, err in self.errors.items()) or "no read paths configured"
        super().__init__(f"Balance unknown for {owner}/{asset} ({detail})")


class ReadPathUnavailable(SwapEngineError):
    """A single balance read path failed; the reconciler falls back."""
