"""Engine configuration objects and helpers."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .contracts import Asset


@dataclass(slots=True)
class AssetConfig:
    symbol: str
    address: str
    decimals: int = 9
    min_amount: float = 0.0

    def to_asset(self) -> Asset:
        return Asset(symbol=self.symbol, address=self.address, decimals=self.decimals, min_amount=self.min_amount)


@dataclass(slots=True)
class ResponseFieldMap:
    """Dotted paths into a venue's JSON responses."""

    output_amount: str = "outAmount"
    price_impact: str = "priceImpactPct"
    quote_payload: str = ""
    transaction: str = "swapTransaction"
    status: str = "status"
    settled_output: str = "outputAmount"
    error: str = "error"
    no_liquidity_markers: tuple[str, ...] = ("no route", "no liquidity", "insufficient liquidity", "not tradable")


@dataclass(slots=True)
class VenueConfig:
    name: str
    kind: str = "http"
    priority: int = 100
    supports_quote: bool = True
    supports_execution: bool = True
    quote_url: str | None = None
    build_url: str | None = None
    status_url: str | None = None
    health_url: str | None = None
    timeout_seconds: float = 6.0
    quote_ttl_seconds: float = 30.0
    amounts_in_base_units: bool = True
    fields: ResponseFieldMap = field(default_factory=ResponseFieldMap)
    extra_headers: dict[str, str] = field(default_factory=dict)
    # Paper venue parameters.
    paper_rate: float = 0.0
    paper_liquidity: float = float("inf")
    paper_price_impact_bps: float = 0.0

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "VenueConfig":
        data = payload.copy()
        fields_raw = dict(data.pop("fields", {}) or {})
        if "no_liquidity_markers" in fields_raw:
            fields_raw["no_liquidity_markers"] = tuple(fields_raw["no_liquidity_markers"])
        if "paper_liquidity" in data:
            data["paper_liquidity"] = float(data["paper_liquidity"])
        return VenueConfig(fields=ResponseFieldMap(**fields_raw), **data)


@dataclass(slots=True)
class RoutingConfig:
    quote_timeout_seconds: float = 6.0
    cooldown_base_seconds: float = 60.0
    cooldown_max_seconds: float = 600.0
    manual_venues: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ConfirmationConfig:
    timeout_seconds: float = 45.0
    initial_delay_seconds: float = 0.5
    max_delay_seconds: float = 5.0
    backoff_multiplier: float = 2.0


@dataclass(slots=True)
class PreflightConfig:
    """Balance check before a swap is built; `fee_buffers` maps asset symbol to its fee reserve."""

    enabled: bool = False
    fee_buffers: dict[str, float] = field(default_factory=dict)


@dataclass(slots=True)
class ReadPathConfig:
    name: str
    kind: str = "http"
    url: str | None = None
    amount_field: str = "balance"
    timeout_seconds: float = 5.0


@dataclass(slots=True)
class BalanceConfig:
    rate_limit_seconds: float = 5.0
    staleness_ttl_seconds: float = 30.0
    read_paths: list[ReadPathConfig] = field(default_factory=list)


@dataclass(slots=True)
class StakingConfig:
    apy: float = 0.085
    stake_asset: str = "GOLD"
    treasury_account: str = ""


@dataclass(slots=True)
class EngineConfig:
    assets: list[AssetConfig] = field(default_factory=list)
    venues: list[VenueConfig] = field(default_factory=list)
    routing: RoutingConfig = field(default_factory=RoutingConfig)
    confirmation: ConfirmationConfig = field(default_factory=ConfirmationConfig)
    preflight: PreflightConfig = field(default_factory=PreflightConfig)
    balances: BalanceConfig = field(default_factory=BalanceConfig)
    staking: StakingConfig = field(default_factory=StakingConfig)
    journal_path: str = "outputs/settlement_journal.db"
    explorer_tx_url: str = "https://solscan.io/tx/{tx_id}"

    def asset(self, symbol: str) -> Asset:
        for item in self.assets:
            if item.symbol == symbol:
                return item.to_asset()
        raise KeyError(f"Unknown asset: {symbol}")

    def asset_map(self) -> dict[str, Asset]:
        return {item.symbol: item.to_asset() for item in self.assets}

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        for venue in out["venues"]:
            venue["fields"]["no_liquidity_markers"] = list(venue["fields"]["no_liquidity_markers"])
        return out

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "EngineConfig":
        balances_raw = dict(payload.get("balances", {}) or {})
        read_paths = [ReadPathConfig(**row) for row in balances_raw.pop("read_paths", []) or []]
        return EngineConfig(
            assets=[AssetConfig(**row) for row in payload.get("assets", []) or []],
            venues=[VenueConfig.from_dict(row) for row in payload.get("venues", []) or []],
            routing=RoutingConfig(**payload.get("routing", {})),
            confirmation=ConfirmationConfig(**payload.get("confirmation", {})),
            preflight=PreflightConfig(**payload.get("preflight", {})),
            balances=BalanceConfig(read_paths=read_paths, **balances_raw),
            staking=StakingConfig(**payload.get("staking", {})),
            journal_path=payload.get("journal_path", "outputs/settlement_journal.db"),
            explorer_tx_url=payload.get("explorer_tx_url", "https://solscan.io/tx/{tx_id}"),
        )


def load_config(path: str | Path) -> EngineConfig:
    """Load engine configuration from YAML."""
    file_path = Path(path)
    with file_path.open("r", encoding="utf-8") as handle:
        payload = yaml.safe_load(handle) or {}
    return EngineConfig.from_dict(payload)


def save_config(config: EngineConfig, path: str | Path) -> None:
    """Persist engine configuration to YAML."""
    file_path = Path(path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    with file_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(config.to_dict(), handle, sort_keys=False)
