"""Planning requests, snapshots and derived bounds."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from src.core.errors import InvalidAmount
from src.core.models.amount import Asset, TokenAmount
from src.core.models.market import MarketParams, PositionState


def _to_decimal(value: Any, name: str) -> Decimal:
    """Accept Decimal, int or str; floats go through str() to stay exact."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise InvalidAmount(f"Invalid {name}: {value!r}") from e


@dataclass(frozen=True)
class LeverageTarget:
    """
    Desired multiplier L = total collateral value / equity value.

    L >= 1 always; the upper bound depends on the market and is checked by
    the planners, not here.
    """

    value: Decimal

    def __post_init__(self):
        object.__setattr__(self, "value", _to_decimal(self.value, "leverage"))
        if not self.value.is_finite() or self.value < 1:
            raise InvalidAmount(f"Leverage must be >= 1, got {self.value}")

    @property
    def borrowed_ratio(self) -> Decimal:
        """Share of equity that is borrowed: L - 1."""
        return self.value - 1


@dataclass(frozen=True)
class OpenPositionRequest:
    """Open (or add to) a leveraged position using a flash loan."""

    account: str
    deposit_asset: Asset
    loan_asset: Asset
    deposit_amount: TokenAmount
    target_leverage: Decimal

    def __post_init__(self):
        object.__setattr__(
            self, "target_leverage", _to_decimal(self.target_leverage, "target_leverage")
        )
        if self.deposit_amount.decimals != self.deposit_asset.decimals:
            raise InvalidAmount(
                f"Deposit amount precision {self.deposit_amount.decimals} does not match "
                f"{self.deposit_asset.symbol} ({self.deposit_asset.decimals})"
            )
        if self.deposit_amount.is_zero:
            raise InvalidAmount("Deposit amount must be greater than zero")


@dataclass(frozen=True)
class ClosePositionRequest:
    """
    Fully or partially unwind a leveraged position.

    ``repay_amount`` is the caller's intent only; the planner re-reads the
    on-chain debt and may substitute it.
    """

    account: str
    collateral_asset: Asset
    debt_asset: Asset
    repay_amount: Optional[TokenAmount] = None
    unwind_fraction: Decimal = Decimal("1")

    def __post_init__(self):
        fraction = _to_decimal(self.unwind_fraction, "unwind_fraction")
        if not Decimal("0") < fraction <= Decimal("1"):
            raise InvalidAmount(f"Unwind fraction must be in (0, 1], got {fraction}")
        object.__setattr__(self, "unwind_fraction", fraction)
        if self.repay_amount is not None and self.repay_amount.decimals != self.debt_asset.decimals:
            raise InvalidAmount(
                f"Repay amount precision does not match {self.debt_asset.symbol}"
            )


@dataclass(frozen=True)
class LoopRequest:
    """Reach a target leverage with borrow/resupply cycles on one asset."""

    account: str
    asset: Asset
    deposit_amount: TokenAmount
    target_leverage: Decimal

    def __post_init__(self):
        object.__setattr__(
            self, "target_leverage", _to_decimal(self.target_leverage, "target_leverage")
        )
        if self.deposit_amount.decimals != self.asset.decimals:
            raise InvalidAmount(f"Deposit amount precision does not match {self.asset.symbol}")
        if self.deposit_amount.is_zero:
            raise InvalidAmount("Deposit amount must be greater than zero")


@dataclass(frozen=True)
class PlanningSnapshot:
    """
    Everything a planner needs, read once per request.

    ``position`` is None when the account has nothing open in this market.
    Flash-loan fields are None for the loop planner.
    """

    collateral: MarketParams
    debt: MarketParams
    position: Optional[PositionState] = None
    flash_fee_bps: Optional[int] = None
    flash_max_amount: Optional[TokenAmount] = None
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def oldest_update(self) -> datetime:
        stamps = [self.collateral.updated_at, self.debt.updated_at]
        if self.position is not None:
            stamps.append(self.position.updated_at)
        return min(stamps)

    @property
    def requires_oracle_refresh(self) -> bool:
        return self.collateral.requires_oracle_refresh or self.debt.requires_oracle_refresh

    @property
    def price_feed_ids(self) -> list:
        feeds = []
        for params in (self.collateral, self.debt):
            if params.price_feed_id and params.price_feed_id not in feeds:
                feeds.append(params.price_feed_id)
        return feeds

    def position_or_empty(self) -> PositionState:
        if self.position is not None:
            return self.position
        return PositionState.empty(self.collateral, self.debt)


@dataclass(frozen=True)
class PositionBounds:
    """Risk bounds for a position, used before planning."""

    max_leverage: Decimal
    max_borrow_value: Decimal       # Quote currency
    max_withdraw: TokenAmount       # Collateral units
    health_factor: Decimal
    current_ltv: Decimal

    def to_dict(self) -> dict:
        return {
            "max_leverage": str(self.max_leverage),
            "max_borrow_value": str(self.max_borrow_value),
            "max_withdraw": self.max_withdraw.to_dict(),
            "health_factor": str(self.health_factor),
            "current_ltv": str(self.current_ltv),
        }
