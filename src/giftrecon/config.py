from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .application.fetching import DEFAULT_WINDOWS
from .adapters.error_classifier import DEFAULT_RANGE_PATTERNS
from .domain.value_types import WatermarkPolicy


@dataclass(frozen=True)
class ReconcileConfig:
    """Configuration for one reconciliation pass."""

    contract_address: str
    rewind_blocks: int = 12              # reorg protection
    confirmations: int = 3
    block_window: int = 2_000            # max span scanned per pass
    backoff_windows: tuple[int, ...] = DEFAULT_WINDOWS
    backoff_s: float = 1.0
    guard_ttl_s: int = 14 * 86_400
    watermark_policy: WatermarkPolicy = "strict"
    genesis_timestamp: int = 1695768288
    block_time_s: float = 2.0
    budget_s: float = 55.0


@dataclass(frozen=True)
class MaterializeConfig:
    """Configuration for one materialization pass."""

    lookback_s: int = 3_600
    max_entries: int = 1_000
    token_decimals: int = 18
    hourly_ttl_s: int = 86_400
    daily_ttl_s: int = 30 * 86_400
    budget_s: float = 55.0


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    analytics_enabled: bool = Field(False, alias="FEATURE_ANALYTICS")
    analytics_version: str = Field("v1", alias="ANALYTICS_VERSION")
    internal_api_secret: str | None = Field(None, alias="INTERNAL_API_SECRET")
    scheduler_signing_key: str | None = Field(None, alias="SCHEDULER_SIGNING_KEY")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    redis_url: str = Field("redis://localhost:6379/0", alias="REDIS_URL")
    key_prefix: str = Field("ga:v1:", alias="ANALYTICS_KEY_PREFIX")
    rpc_url: str = Field("https://sepolia.base.org", alias="RPC_URL")
    rpc_timeout_s: int = Field(20, alias="RPC_TIMEOUT_S")
    escrow_contract_address: str = Field(
        "0x46175CfC233500DA803841DEef7f2816e7A129E0", alias="ESCROW_CONTRACT_ADDRESS"
    )

    rewind_blocks: int = Field(12, alias="ANALYTICS_REWIND_BLOCKS")
    block_window: int = Field(2000, alias="ANALYTICS_BLOCK_WINDOW")
    confirmations: int = Field(3, alias="ANALYTICS_CONFIRMATIONS")
    event_ttl_days: int = Field(14, alias="ANALYTICS_EVENT_TTL_DAYS")
    watermark_policy: WatermarkPolicy = Field("strict", alias="ANALYTICS_WATERMARK_POLICY")
    backoff_s: float = Field(1.0, alias="ANALYTICS_BACKOFF_S")
    range_error_patterns: str | None = Field(None, alias="ANALYTICS_RANGE_ERROR_PATTERNS")  # comma list
    pass_budget_s: float = Field(55.0, alias="ANALYTICS_PASS_BUDGET_S")
    genesis_timestamp: int = Field(1695768288, alias="ANALYTICS_GENESIS_TIMESTAMP")
    block_time_s: float = Field(2.0, alias="ANALYTICS_BLOCK_TIME_S")

    token_decimals: int = Field(18, alias="ANALYTICS_TOKEN_DECIMALS")
    materialize_lookback_s: int = Field(3600, alias="ANALYTICS_MATERIALIZE_LOOKBACK_S")
    materialize_max_entries: int = Field(1000, alias="ANALYTICS_MATERIALIZE_MAX_ENTRIES")

    def range_patterns(self) -> tuple[str, ...]:
        if not self.range_error_patterns:
            return DEFAULT_RANGE_PATTERNS
        return tuple(p.strip() for p in self.range_error_patterns.split(",") if p.strip())

    def reconcile_config(self) -> ReconcileConfig:
        return ReconcileConfig(
            contract_address=self.escrow_contract_address,
            rewind_blocks=self.rewind_blocks,
            confirmations=self.confirmations,
            block_window=self.block_window,
            backoff_s=self.backoff_s,
            guard_ttl_s=self.event_ttl_days * 86_400,
            watermark_policy=self.watermark_policy,
            genesis_timestamp=self.genesis_timestamp,
            block_time_s=self.block_time_s,
            budget_s=self.pass_budget_s,
        )

    def materialize_config(self) -> MaterializeConfig:
        return MaterializeConfig(
            lookback_s=self.materialize_lookback_s,
            max_entries=self.materialize_max_entries,
            token_decimals=self.token_decimals,
            budget_s=self.pass_budget_s,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()
