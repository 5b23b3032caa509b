"""Build venue adapters from configuration."""

from __future__ import annotations

from typing import TYPE_CHECKING

import aiohttp

from token_swap_engine.config import VenueConfig

from .base import VenueAdapter
from .http_adapter import HTTPVenueAdapter
from .paper import PaperVenueAdapter

if TYPE_CHECKING:
    from token_swap_engine.settlement.collaborators import Transport


def build_venue_adapter(
    config: VenueConfig,
    transport: Transport | None = None,
    session: aiohttp.ClientSession | None = None,
) -> VenueAdapter:
    """Factory for configured venue adapters."""
    kind = config.kind.lower()
    if kind == "http":
        status_fallback = transport.get_status if transport is not None else None
        return HTTPVenueAdapter(config, session=session, status_fallback=status_fallback)
    if kind == "paper":
        return PaperVenueAdapter(config, transport=transport)
    raise ValueError(f"Unsupported venue kind: {config.kind}")
