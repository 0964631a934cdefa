"""Core module - models, errors and constants."""

from .constants import BPS_DENOMINATOR, INFINITY, MAX_DECIMALS
from .errors import (
    PlanRejection,
    PlanningError,
    InvalidAmount,
    LeverageOutOfRange,
    InsufficientPrincipal,
    NoLiquidity,
    InsufficientCollateral,
    StaleMarketData,
    IterationLimitReached,
    ProviderTimeout,
)

__all__ = [
    "BPS_DENOMINATOR",
    "INFINITY",
    "MAX_DECIMALS",
    "PlanRejection",
    "PlanningError",
    "InvalidAmount",
    "LeverageOutOfRange",
    "InsufficientPrincipal",
    "NoLiquidity",
    "InsufficientCollateral",
    "StaleMarketData",
    "IterationLimitReached",
    "ProviderTimeout",
]
