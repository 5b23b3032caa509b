"""Quote aggregation and venue liveness tracking."""

from .aggregator import QuoteAggregator, VenueRegistration, registrations_from_config, validate_swap_request
from .liveness import CooldownPolicy, InMemoryLivenessStore, LivenessObservation, LivenessStore, liveness_frame

__all__ = [
    "CooldownPolicy",
    "InMemoryLivenessStore",
    "LivenessObservation",
    "LivenessStore",
    "QuoteAggregator",
    "VenueRegistration",
    "liveness_frame",
    "registrations_from_config",
    "validate_swap_request",
]
