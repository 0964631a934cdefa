"""Typed planning errors.

Every reason a plan can be refused has its own exception class carrying a
``PlanRejection`` code. Planners raise these; the engine facade turns them
into ``PlanResult`` objects so callers never see a generic exception for a
rejected request.
"""

from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


class PlanRejection(Enum):
    """Machine-readable rejection reasons."""

    INVALID_AMOUNT = "invalid_amount"
    LEVERAGE_OUT_OF_RANGE = "leverage_out_of_range"
    INSUFFICIENT_PRINCIPAL = "insufficient_principal"
    NO_LIQUIDITY = "no_liquidity"
    INSUFFICIENT_COLLATERAL = "insufficient_collateral"
    STALE_MARKET_DATA = "stale_market_data"
    ITERATION_LIMIT_REACHED = "iteration_limit_reached"
    PROVIDER_TIMEOUT = "provider_timeout"


class PlanningError(Exception):
    """Base class for all planning failures."""

    reason: PlanRejection = PlanRejection.INVALID_AMOUNT

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def to_dict(self) -> dict:
        """Serialize for logging / hand-off to the UI layer."""
        return {
            "reason": self.reason.value,
            "message": self.message,
            "context": {k: str(v) for k, v in self.context.items()},
        }


class InvalidAmount(PlanningError):
    """Malformed, negative or otherwise unusable numeric input."""

    reason = PlanRejection.INVALID_AMOUNT


class LeverageOutOfRange(PlanningError):
    """Requested leverage is <= 1 or above the computed maximum."""

    reason = PlanRejection.LEVERAGE_OUT_OF_RANGE


class InsufficientPrincipal(PlanningError):
    """Principal cannot cover the cost of the flash loan."""

    reason = PlanRejection.INSUFFICIENT_PRINCIPAL


class NoLiquidity(PlanningError):
    """No swap quotes, no flash-loan capacity or not enough market liquidity."""

    reason = PlanRejection.NO_LIQUIDITY


class InsufficientCollateral(PlanningError):
    """Close plan cannot produce enough output to repay the flash loan."""

    reason = PlanRejection.INSUFFICIENT_COLLATERAL


class StaleMarketData(PlanningError):
    """Snapshot is older than the configured maximum age."""

    reason = PlanRejection.STALE_MARKET_DATA


class ProviderTimeout(PlanningError):
    """A quote or state provider did not answer in time."""

    reason = PlanRejection.PROVIDER_TIMEOUT


class IterationLimitReached(PlanningError):
    """
    Loop planner hit its iteration cap before converging.

    Not fatal: the accumulated plan is still usable, but the caller must be
    told which leverage was actually achieved.
    """

    reason = PlanRejection.ITERATION_LIMIT_REACHED

    def __init__(
        self,
        achieved_leverage: Decimal,
        target_leverage: Decimal,
        iterations: int,
        message: Optional[str] = None,
    ):
        super().__init__(
            message
            or f"Loop stopped after {iterations} iterations at "
            f"{achieved_leverage:.4f}x (target {target_leverage}x)",
            achieved_leverage=achieved_leverage,
            target_leverage=target_leverage,
            iterations=iterations,
        )
        self.achieved_leverage = achieved_leverage
        self.target_leverage = target_leverage
        self.iterations = iterations


class PlanOrderError(Exception):
    """Leg sequence violates dependency order (a planner bug, not user input)."""
