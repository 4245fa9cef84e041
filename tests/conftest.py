"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from yield_allocator.config import (
    AllocationConfig,
    AppConfig,
    GatewayConfig,
    KeeperConfig,
    LeverageConfig,
    NotificationsConfig,
    StrategyConfig,
    TelegramConfig,
    VenueConfig,
)
from yield_allocator.core import AllocationEngine, LeverageController, YieldStrategy
from yield_allocator.venues import (
    InMemoryLendingPool,
    InMemoryVault,
    LeveragedVenue,
    VaultVenue,
)

ACCOUNT = "0xSTRATEGY"
UNIT = 10**6  # one USDC
T0 = 1_700_000_000.0


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = T0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def leverage_config() -> LeverageConfig:
    return LeverageConfig(
        enabled=True,
        multiplier=2.0,
        target_health_factor=1.7,
        min_health_factor=1.1,
        health_factor_band=0.1,
        borrow_fraction_bps=6000,
        max_loops=10,
    )


@pytest.fixture()
def allocation_config() -> AllocationConfig:
    return AllocationConfig(
        min_weight_bps=1000,
        baseline_weight_bps=5000,
        rebalance_interval_hours=24.0,
        apy_spread_threshold_bps=100,
        drift_tolerance_bps=500,
    )


@pytest.fixture()
def sample_app_config() -> AppConfig:
    return AppConfig(
        strategy=StrategyConfig(account=ACCOUNT, asset="USDC", decimals=6),
        leverage=LeverageConfig(enabled=True, multiplier=2.0),
        allocation=AllocationConfig(),
        venues=(
            VenueConfig(
                name="aave-loop",
                kind="lending",
                initial_assets=1_000_000 * UNIT,
                apy=0.04,
                borrow_apy=0.03,
            ),
            VenueConfig(name="morpho", kind="vault", apy=0.06),
            VenueConfig(name="euler", kind="vault", apy=0.05),
        ),
        gateway=GatewayConfig(
            rpc_endpoints=("https://rpc1.example.com", "https://rpc2.example.com"),
            rpc_timeout=10,
        ),
        keeper=KeeperConfig(check_interval_minutes=5),
        notifications=NotificationsConfig(
            telegram=TelegramConfig(
                enabled=True,
                alert_bot_token="fake-alert-token",
                log_bot_token="fake-log-token",
                chat_id="12345",
            ),
        ),
    )


# ---------------------------------------------------------------------------
# Venue fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def pool() -> InMemoryLendingPool:
    return InMemoryLendingPool(
        ltv_bps=8000, liquidation_threshold_bps=8500, cash=1_000_000 * UNIT
    )


@pytest.fixture()
def controller(
    pool: InMemoryLendingPool, leverage_config: LeverageConfig
) -> LeverageController:
    return LeverageController(pool, ACCOUNT, leverage_config)


@pytest.fixture()
def vaults() -> list[InMemoryVault]:
    return [InMemoryVault(), InMemoryVault(), InMemoryVault()]


@pytest.fixture()
def engine(
    vaults: list[InMemoryVault],
    allocation_config: AllocationConfig,
    clock: FakeClock,
) -> AllocationEngine:
    venues = [VaultVenue(f"vault-{i}", v, ACCOUNT) for i, v in enumerate(vaults)]
    return AllocationEngine(venues, allocation_config, clock=clock)


@pytest.fixture()
def strategy(
    controller: LeverageController,
    allocation_config: AllocationConfig,
    clock: FakeClock,
) -> YieldStrategy:
    """Leveraged lending position plus two plain vaults."""
    venues = [
        LeveragedVenue("lending", controller),
        VaultVenue("vault-a", InMemoryVault(), ACCOUNT),
        VaultVenue("vault-b", InMemoryVault(), ACCOUNT),
    ]
    allocation = AllocationEngine(venues, allocation_config, clock=clock)
    return YieldStrategy(allocation, controller, clock=clock)


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    strategy:
      account: "0xSTRATEGY"
      asset: USDC
      decimals: 6
    leverage:
      enabled: true
      multiplier: 2.0
      target_health_factor: 1.7
      min_health_factor: 1.1
    allocation:
      min_weight_bps: 1000
      rebalance_interval_hours: 12
    venues:
      - name: aave-loop
        kind: lending
        initial_assets: 1000000000000
        ltv_bps: 8000
        liquidation_threshold_bps: 8500
      - name: morpho
        kind: vault
        apy: 0.06
      - name: euler
        kind: vault
        deposit_cap: 5000000000
    gateway:
      rpc_endpoints: ["https://rpc.example.com"]
      rpc_timeout: 10
    keeper:
      check_interval_minutes: 5
    notifications:
      telegram:
        enabled: true
        alert_bot_token: "tok1"
        log_bot_token: "tok2"
        chat_id: "999"
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
