"""Pydantic settings for the leverage engine.

Every buffer the planners apply is a setting rather than a constant: the
values below are the empirically chosen defaults, and picking different ones
is a risk-policy decision.
"""

import json
from decimal import Decimal
from functools import lru_cache
from typing import Annotated, Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables (prefix ``LEVERAGE_``)."""

    model_config = SettingsConfigDict(
        env_prefix="LEVERAGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Flash-loan open path
    swap_slippage_bps: int = Field(default=200, ge=0, le=5000, description="Buffer added to the flash amount for swap slippage")

    # Close path
    close_flash_buffer_bps: int = Field(default=500, ge=0, le=5000, description="Buffer added to the debt when sizing the close flash loan")
    close_swap_margin_bps: int = Field(default=200, ge=0, le=5000, description="Safety margin on the swap output that repays the flash loan")
    full_close_tolerance_bps: int = Field(default=200, ge=0, le=1000, description="Requested repay within this band of on-chain debt is a full close")
    withdraw_cap_bps: int = Field(default=9990, ge=1, le=10000, description="Maximum share of on-chain supply a single plan withdraws")

    # Risk bounds
    max_leverage_safety_factor: Decimal = Field(default=Decimal("0.95"), gt=0, le=1)
    max_leverage_fallback: Decimal = Field(default=Decimal("10"), ge=1)
    max_withdraw_safety_factor: Decimal = Field(default=Decimal("0.95"), gt=0, le=1)

    # Iterative loop planner
    loop_effective_ltv: Decimal = Field(default=Decimal("0.72"), gt=0, lt=1)
    loop_safety_factor: Decimal = Field(default=Decimal("0.95"), gt=0, le=1)
    loop_convergence_factor: Decimal = Field(default=Decimal("0.98"), gt=0, le=1)
    loop_max_iterations: int = Field(default=8, ge=1, le=64)
    min_borrow_raw: int = Field(default=1000, ge=0, description="Borrows below this many minor units end the loop")

    # Snapshot freshness and provider calls
    max_snapshot_age_seconds: int = Field(default=60, ge=1, le=3600)
    provider_timeout_seconds: float = Field(default=10.0, gt=0, le=120)

    # Lending market indexer (GraphQL)
    lending_api_url: str = Field(
        default="https://api.lending.example/graphql",
        description="GraphQL endpoint serving positions and market params",
    )
    lending_api_rate_limit: int = Field(default=100, ge=1)
    lending_api_rate_window: int = Field(default=60, ge=1)

    # Swap aggregator (REST)
    aggregator_api_url: str = Field(
        default="https://api.aggregator.example",
        description="Base URL of the swap quote aggregator",
    )
    aggregator_partner: Optional[str] = Field(default=None, description="Partner id forwarded with quote requests")
    aggregator_rate_limit: int = Field(default=50, ge=1)
    aggregator_rate_window: int = Field(default=60, ge=1)

    # Flash-loan facility, keyed by coin type
    flash_loan_default_fee_bps: int = Field(default=6, ge=0, le=10000)
    flash_loan_fee_bps: Annotated[Dict[str, int], NoDecode] = Field(default_factory=dict)
    flash_loan_max_amounts: Annotated[Dict[str, int], NoDecode] = Field(default_factory=dict)

    @field_validator("flash_loan_fee_bps", "flash_loan_max_amounts", mode="before")
    @classmethod
    def parse_coin_map(cls, v):
        """Parse ``coin=value`` pairs (comma separated) or a JSON object."""
        if isinstance(v, str):
            text = v.strip()
            if not text:
                return {}
            if text.startswith("{"):
                return json.loads(text)
            result = {}
            for pair in text.split(","):
                if not pair.strip():
                    continue
                coin, _, value = pair.strip().rpartition("=")
                if not coin:
                    raise ValueError(f"Expected coin=value, got {pair!r}")
                result[coin.strip()] = int(value)
            return result
        return v or {}

    @field_validator("flash_loan_fee_bps")
    @classmethod
    def check_fee_rates(cls, v: Dict[str, int]) -> Dict[str, int]:
        for coin, bps in v.items():
            if not 0 <= bps <= 10000:
                raise ValueError(f"Flash-loan fee for {coin} out of range: {bps}")
        return v

    @field_validator("flash_loan_max_amounts")
    @classmethod
    def check_max_amounts(cls, v: Dict[str, int]) -> Dict[str, int]:
        for coin, amount in v.items():
            if amount < 0:
                raise ValueError(f"Flash-loan capacity for {coin} must not be negative")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
