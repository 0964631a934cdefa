"""Core data models for the leverage engine."""

from .amount import Asset, TokenAmount
from .market import MarketRate, MarketParams, PositionState
from .plan import (
    FlashLoanQuote,
    Leg,
    LegType,
    Plan,
    PlanKind,
    PlanResult,
    PlanStatus,
    SwapQuote,
)
from .request import (
    ClosePositionRequest,
    LeverageTarget,
    LoopRequest,
    OpenPositionRequest,
    PlanningSnapshot,
    PositionBounds,
)

__all__ = [
    "Asset",
    "TokenAmount",
    "MarketRate",
    "MarketParams",
    "PositionState",
    "FlashLoanQuote",
    "Leg",
    "LegType",
    "Plan",
    "PlanKind",
    "PlanResult",
    "PlanStatus",
    "SwapQuote",
    "ClosePositionRequest",
    "LeverageTarget",
    "LoopRequest",
    "OpenPositionRequest",
    "PlanningSnapshot",
    "PositionBounds",
]
