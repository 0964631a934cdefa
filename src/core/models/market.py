"""Market and position snapshot models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from src.core.errors import InvalidAmount
from src.core.models.amount import Asset, TokenAmount


def _utcnow() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


def _check_threshold(value: Decimal, name: str) -> None:
    if not Decimal("0") < value <= Decimal("1"):
        raise InvalidAmount(f"{name} must be in (0, 1], got {value}")


@dataclass(frozen=True)
class MarketRate:
    """
    Lending rates as dimensionless ratios (0.05 = 5%).

    APY above 1.0 is legitimate for high-yield pools and is not rejected.
    """

    supply_apy: Decimal = Decimal("0")
    borrow_apy: Decimal = Decimal("0")
    reward_apr: Optional[Decimal] = None
    updated_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        for name in ("supply_apy", "borrow_apy", "reward_apr"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise InvalidAmount(f"{name} must be non-negative, got {value}")


@dataclass(frozen=True)
class MarketParams:
    """Lending-market parameters for one asset."""

    asset: Asset
    max_ltv: Decimal
    liquidation_threshold: Decimal
    available_liquidity: TokenAmount
    price: Decimal                          # Quote currency per whole token
    rates: MarketRate = field(default_factory=MarketRate)
    price_feed_id: Optional[str] = None     # Set when the market needs an oracle refresh
    updated_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        _check_threshold(self.liquidation_threshold, "liquidation_threshold")
        if self.max_ltv < 0:
            raise InvalidAmount(f"max_ltv must be non-negative, got {self.max_ltv}")
        if self.price <= 0:
            raise InvalidAmount(f"Price for {self.asset.symbol} must be positive")

    @property
    def requires_oracle_refresh(self) -> bool:
        return bool(self.price_feed_id)

    def to_dict(self) -> dict:
        return {
            "asset": self.asset.to_dict(),
            "max_ltv": str(self.max_ltv),
            "liquidation_threshold": str(self.liquidation_threshold),
            "available_liquidity": self.available_liquidity.to_dict(),
            "price": str(self.price),
            "supply_apy": str(self.rates.supply_apy),
            "borrow_apy": str(self.rates.borrow_apy),
            "price_feed_id": self.price_feed_id,
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class PositionState:
    """
    Collateral and debt of one account in one lending market.

    Values are derived from amounts and prices on access, never stored.

    For a SUI/USDC loop:
    - collateral_asset = SUI, collateral_price = SUI price in USD
    - debt_asset = USDC, debt_price ~ 1.0
    """

    collateral_asset: Asset
    collateral_amount: TokenAmount
    collateral_price: Decimal
    debt_asset: Asset
    debt_amount: TokenAmount
    debt_price: Decimal
    liquidation_threshold: Decimal
    updated_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        _check_threshold(self.liquidation_threshold, "liquidation_threshold")

    @classmethod
    def empty(
        cls,
        collateral: MarketParams,
        debt: MarketParams,
    ) -> "PositionState":
        """Zero position priced from current market params."""
        return cls(
            collateral_asset=collateral.asset,
            collateral_amount=TokenAmount.zero(collateral.asset.decimals),
            collateral_price=collateral.price,
            debt_asset=debt.asset,
            debt_amount=TokenAmount.zero(debt.asset.decimals),
            debt_price=debt.price,
            liquidation_threshold=collateral.liquidation_threshold,
            updated_at=min(collateral.updated_at, debt.updated_at),
        )

    @property
    def collateral_value(self) -> Decimal:
        """Collateral value in quote currency (estimation only)."""
        return self.collateral_amount.to_decimal() * self.collateral_price

    @property
    def debt_value(self) -> Decimal:
        """Debt value in quote currency (estimation only)."""
        return self.debt_amount.to_decimal() * self.debt_price

    @property
    def equity_value(self) -> Decimal:
        return self.collateral_value - self.debt_value

    @property
    def has_debt(self) -> bool:
        return not self.debt_amount.is_zero

    def to_dict(self) -> dict:
        return {
            "collateral_asset": self.collateral_asset.symbol,
            "collateral_amount": self.collateral_amount.to_dict(),
            "collateral_price": str(self.collateral_price),
            "debt_asset": self.debt_asset.symbol,
            "debt_amount": self.debt_amount.to_dict(),
            "debt_price": str(self.debt_price),
            "liquidation_threshold": str(self.liquidation_threshold),
            "collateral_value": str(self.collateral_value),
            "debt_value": str(self.debt_value),
            "updated_at": self.updated_at.isoformat(),
        }
