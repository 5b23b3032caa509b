"""Token swap routing and settlement engine package."""

from .config import (
    AssetConfig,
    BalanceConfig,
    ConfirmationConfig,
    EngineConfig,
    PreflightConfig,
    ReadPathConfig,
    ResponseFieldMap,
    RoutingConfig,
    StakingConfig,
    VenueConfig,
)

__all__ = [
    "AssetConfig",
    "BalanceConfig",
    "ConfirmationConfig",
    "EngineConfig",
    "PreflightConfig",
    "ReadPathConfig",
    "ResponseFieldMap",
    "RoutingConfig",
    "StakingConfig",
    "VenueConfig",
]
