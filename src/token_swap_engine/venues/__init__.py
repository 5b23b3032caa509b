"""Venue adapters: HTTP template, paper venue and factory."""

from .base import VenueAdapter, require_positive_amount
from .factory import build_venue_adapter
from .http_adapter import HTTPVenueAdapter
from .paper import PaperVenueAdapter

__all__ = [
    "HTTPVenueAdapter",
    "PaperVenueAdapter",
    "VenueAdapter",
    "build_venue_adapter",
    "require_positive_amount",
]
