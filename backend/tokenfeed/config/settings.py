from __future__ import annotations

from pydantic import BaseModel, Field, AliasChoices
from pydantic_settings import BaseSettings, SettingsConfigDict


class RetrySettings(BaseModel):
    max_retries: int = 4
    base_delay_ms: int = 250
    jitter_ms: int = 100


class RateLimitSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TOKENFEED_",
        env_file=("../.env", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )
    dexscreener: int = Field(
        default=280,
        validation_alias=AliasChoices("DEXSCREENER_RPM", "TOKENFEED_DEXSCREENER_RPM"),
    )
    gecko: int = Field(
        default=120,
        validation_alias=AliasChoices("GECKO_RPM", "TOKENFEED_GECKO_RPM"),
    )
    jupiter: int = Field(
        default=200,
        validation_alias=AliasChoices("JUPITER_RPM", "TOKENFEED_JUPITER_RPM"),
    )


class AlertSettings(BaseSettings):
    """Spike and delta thresholds, reserved for push alerts."""

    model_config = SettingsConfigDict(
        env_prefix="TOKENFEED_",
        env_file=("../.env", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )
    spike_pct: float = Field(
        default=30.0,
        validation_alias=AliasChoices("WS_VOLUME_SPIKE_PCT", "TOKENFEED_WS_VOLUME_SPIKE_PCT"),
    )
    price_delta_pct: float = Field(
        default=1.0,
        validation_alias=AliasChoices("WS_PRICE_DELTA_PCT", "TOKENFEED_WS_PRICE_DELTA_PCT"),
    )


class ProviderSettings(BaseModel):
    dexscreener_base_url: str = "https://api.dexscreener.com/latest/dex"
    gecko_base_url: str = "https://api.geckoterminal.com/api/v2/networks/solana"
    jupiter_base_url: str = "https://price.jup.ag/v4/price"
    default_search: str = "solana"
    jupiter_batch_size: int = 100


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TOKENFEED_",
        env_file=("../.env", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    port: int = Field(
        default=8080,
        validation_alias=AliasChoices("PORT", "TOKENFEED_PORT"),
    )
    redis_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("REDIS_URL", "TOKENFEED_REDIS_URL"),
    )
    cache_ttl_seconds: int = Field(
        default=30,
        validation_alias=AliasChoices("CACHE_TTL_SECONDS", "TOKENFEED_CACHE_TTL_SECONDS"),
    )
    poll_interval_ms: int = Field(
        default=5000,
        validation_alias=AliasChoices("POLL_INTERVAL_MS", "TOKENFEED_POLL_INTERVAL_MS"),
    )
    upstream_timeout_seconds: float = 8.0
    enrichment_timeout_seconds: float = 7.0
    log_level: str = "INFO"
    log_format: str = "console"

    retry: RetrySettings = Field(default_factory=RetrySettings)
    rpm: RateLimitSettings = Field(default_factory=RateLimitSettings)
    alerts: AlertSettings = Field(default_factory=AlertSettings)
    providers: ProviderSettings = Field(default_factory=ProviderSettings)


settings = Settings()
