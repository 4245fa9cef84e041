"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .errors import InvalidConfiguration
from .models import BPS

logger = logging.getLogger(__name__)

VENUE_KINDS = ("vault", "lending")
VENUE_SOURCES = ("memory", "rpc")

MIN_MULTIPLIER = 1.0
MAX_MULTIPLIER = 3.0

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StrategyConfig:
    account: str = "0xSTRATEGY"
    asset: str = "USDC"
    decimals: int = 6


@dataclass(frozen=True)
class LeverageConfig:
    enabled: bool = False
    multiplier: float = 1.0
    max_multiplier: float = MAX_MULTIPLIER
    target_health_factor: float = 1.7
    min_health_factor: float = 1.1
    health_factor_band: float = 0.1
    borrow_fraction_bps: int = 6000
    max_loops: int = 10
    rate_mode: int = 2


@dataclass(frozen=True)
class AllocationConfig:
    min_weight_bps: int = 1000
    baseline_weight_bps: int = 5000
    rebalance_interval_hours: float = 24.0
    apy_spread_threshold_bps: int = 100
    drift_tolerance_bps: int = 500
    min_rebalance_amount: int = 0


@dataclass(frozen=True)
class VenueConfig:
    name: str = ""
    kind: str = "vault"
    source: str = "memory"
    address: str = ""
    # In-memory simulation parameters
    deposit_cap: int | None = None
    initial_assets: int = 0
    apy: float = 0.0
    borrow_apy: float = 0.0
    ltv_bps: int = 8000
    liquidation_threshold_bps: int = 8500


@dataclass(frozen=True)
class GatewayConfig:
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30


@dataclass(frozen=True)
class KeeperConfig:
    check_interval_minutes: int = 15


@dataclass(frozen=True)
class TelegramConfig:
    enabled: bool = False
    alert_bot_token: str = ""
    log_bot_token: str = ""
    chat_id: str = ""


@dataclass(frozen=True)
class NotificationsConfig:
    telegram: TelegramConfig = field(default_factory=TelegramConfig)


@dataclass(frozen=True)
class AppConfig:
    strategy: StrategyConfig = field(default_factory=StrategyConfig)
    leverage: LeverageConfig = field(default_factory=LeverageConfig)
    allocation: AllocationConfig = field(default_factory=AllocationConfig)
    venues: tuple[VenueConfig, ...] = ()
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    keeper: KeeperConfig = field(default_factory=KeeperConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)

    @property
    def lending_venue(self) -> VenueConfig | None:
        for venue in self.venues:
            if venue.kind == "lending":
                return venue
        return None


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_strategy(raw: dict[str, Any]) -> StrategyConfig:
    return StrategyConfig(
        account=str(raw.get("account", StrategyConfig.account)),
        asset=str(raw.get("asset", StrategyConfig.asset)),
        decimals=int(raw.get("decimals", StrategyConfig.decimals)),
    )


def _build_leverage(raw: dict[str, Any]) -> LeverageConfig:
    return LeverageConfig(
        enabled=bool(raw.get("enabled", False)),
        multiplier=float(raw.get("multiplier", 1.0)),
        max_multiplier=float(raw.get("max_multiplier", MAX_MULTIPLIER)),
        target_health_factor=float(raw.get("target_health_factor", 1.7)),
        min_health_factor=float(raw.get("min_health_factor", 1.1)),
        health_factor_band=float(raw.get("health_factor_band", 0.1)),
        borrow_fraction_bps=int(raw.get("borrow_fraction_bps", 6000)),
        max_loops=int(raw.get("max_loops", 10)),
        rate_mode=int(raw.get("rate_mode", 2)),
    )


def _build_allocation(raw: dict[str, Any]) -> AllocationConfig:
    return AllocationConfig(
        min_weight_bps=int(raw.get("min_weight_bps", 1000)),
        baseline_weight_bps=int(raw.get("baseline_weight_bps", 5000)),
        rebalance_interval_hours=float(raw.get("rebalance_interval_hours", 24.0)),
        apy_spread_threshold_bps=int(raw.get("apy_spread_threshold_bps", 100)),
        drift_tolerance_bps=int(raw.get("drift_tolerance_bps", 500)),
        min_rebalance_amount=int(raw.get("min_rebalance_amount", 0)),
    )


def _build_venues(raw: list[dict[str, Any]]) -> tuple[VenueConfig, ...]:
    venues: list[VenueConfig] = []
    for v in raw:
        cap = v.get("deposit_cap")
        venues.append(
            VenueConfig(
                name=v.get("name", ""),
                kind=v.get("kind", "vault"),
                source=v.get("source", "memory"),
                address=v.get("address", ""),
                deposit_cap=int(cap) if cap is not None else None,
                initial_assets=int(v.get("initial_assets", 0)),
                apy=float(v.get("apy", 0.0)),
                borrow_apy=float(v.get("borrow_apy", 0.0)),
                ltv_bps=int(v.get("ltv_bps", 8000)),
                liquidation_threshold_bps=int(v.get("liquidation_threshold_bps", 8500)),
            )
        )
    return tuple(venues)


def _build_gateway(raw: dict[str, Any]) -> GatewayConfig:
    return GatewayConfig(
        rpc_endpoints=tuple(raw.get("rpc_endpoints", [])),
        rpc_timeout=int(raw.get("rpc_timeout", 30)),
    )


def _build_keeper(raw: dict[str, Any]) -> KeeperConfig:
    return KeeperConfig(
        check_interval_minutes=int(raw.get("check_interval_minutes", 15)),
    )


def _build_notifications(raw: dict[str, Any]) -> NotificationsConfig:
    tg = raw.get("telegram", {})
    return NotificationsConfig(
        telegram=TelegramConfig(
            enabled=bool(tg.get("enabled", False)),
            alert_bot_token=tg.get("alert_bot_token", ""),
            log_bot_token=tg.get("log_bot_token", ""),
            chat_id=str(tg.get("chat_id", "")),
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from this package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        strategy=_build_strategy(raw.get("strategy", {})),
        leverage=_build_leverage(raw.get("leverage", {})),
        allocation=_build_allocation(raw.get("allocation", {})),
        venues=_build_venues(raw.get("venues", [])),
        gateway=_build_gateway(raw.get("gateway", {})),
        keeper=_build_keeper(raw.get("keeper", {})),
        notifications=_build_notifications(raw.get("notifications", {})),
    )

    validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _is_zero_address(address: str) -> bool:
    digits = address.lower().removeprefix("0x")
    return not digits or set(digits) <= {"0"}


def validate_leverage(cfg: LeverageConfig) -> None:
    """Raise on leverage settings the controller must never run with."""
    if not MIN_MULTIPLIER <= cfg.max_multiplier <= MAX_MULTIPLIER:
        raise InvalidConfiguration(
            f"max_multiplier must be within {MIN_MULTIPLIER}-{MAX_MULTIPLIER}"
        )
    if not MIN_MULTIPLIER <= cfg.multiplier <= cfg.max_multiplier:
        raise InvalidConfiguration(
            f"Leverage multiplier {cfg.multiplier} outside "
            f"{MIN_MULTIPLIER}-{cfg.max_multiplier}"
        )
    if cfg.min_health_factor <= 1.0:
        raise InvalidConfiguration("min_health_factor must be above 1.0")
    if cfg.target_health_factor <= cfg.min_health_factor:
        raise InvalidConfiguration(
            "target_health_factor must be above min_health_factor"
        )
    if cfg.health_factor_band < 0:
        raise InvalidConfiguration("health_factor_band must not be negative")
    if not 0 < cfg.borrow_fraction_bps < BPS:
        raise InvalidConfiguration("borrow_fraction_bps must be within 1-9999")
    if cfg.max_loops < 1:
        raise InvalidConfiguration("max_loops must be at least 1")


def validate(cfg: AppConfig) -> None:
    """Raise ``InvalidConfiguration`` on invalid configuration."""
    if not cfg.venues:
        raise InvalidConfiguration("At least one venue must be configured")

    names = [v.name for v in cfg.venues]
    if any(not name for name in names):
        raise InvalidConfiguration("Every venue needs a name")
    if len(set(names)) != len(names):
        raise InvalidConfiguration("Venue names must be unique")

    for venue in cfg.venues:
        if venue.kind not in VENUE_KINDS:
            raise InvalidConfiguration(
                f"Venue '{venue.name}' has unknown kind '{venue.kind}'"
            )
        if venue.source not in VENUE_SOURCES:
            raise InvalidConfiguration(
                f"Venue '{venue.name}' has unknown source '{venue.source}'"
            )
        if venue.source == "rpc":
            if _is_zero_address(venue.address):
                raise InvalidConfiguration(f"Venue '{venue.name}' has no address")
            if not cfg.gateway.rpc_endpoints:
                raise InvalidConfiguration(
                    f"Venue '{venue.name}' uses rpc but no gateway endpoints are set"
                )
        if venue.kind == "lending" and not (
            0 < venue.ltv_bps < venue.liquidation_threshold_bps <= BPS
        ):
            raise InvalidConfiguration(
                f"Venue '{venue.name}' needs 0 < ltv_bps < liquidation_threshold_bps"
            )

    if sum(1 for v in cfg.venues if v.kind == "lending") > 1:
        raise InvalidConfiguration("At most one lending venue is supported")

    alloc = cfg.allocation
    if alloc.min_weight_bps < 0 or len(cfg.venues) * alloc.min_weight_bps > BPS:
        raise InvalidConfiguration(
            f"{len(cfg.venues)} venues x {alloc.min_weight_bps} bps floor "
            f"exceeds {BPS} bps"
        )
    if not 0 <= alloc.baseline_weight_bps <= BPS:
        raise InvalidConfiguration("baseline_weight_bps must be within 0-10000")

    validate_leverage(cfg.leverage)
