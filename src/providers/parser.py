"""Lending indexer response parser.

Converts GraphQL responses into MarketParams / PositionState. Raw amounts
stay integers end to end; they are never routed through Decimal or float.
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from src.core.errors import InvalidAmount, StaleMarketData
from src.core.models import Asset, MarketParams, MarketRate, PositionState, TokenAmount


class LendingParser:
    """Parser for lending indexer responses."""

    @staticmethod
    def parse_decimal(value: Any, default: Optional[Decimal] = Decimal("0")) -> Optional[Decimal]:
        """Parse a value to Decimal, falling back to ``default`` when missing."""
        if value is None or value == "":
            return default
        if isinstance(value, Decimal):
            return value
        try:
            return Decimal(str(value))
        except (InvalidOperation, ValueError) as e:
            raise InvalidAmount(f"Not a decimal: {value!r}") from e

    @staticmethod
    def parse_raw_amount(value: Any) -> int:
        """Parse a raw minor-unit amount; fractional or negative values are rejected."""
        if value is None or value == "":
            return 0
        if isinstance(value, bool):
            raise InvalidAmount(f"Not an amount: {value!r}")
        if isinstance(value, int):
            raw = value
        else:
            text = str(value).strip()
            if not (text.isascii() and text.isdigit()):
                raise InvalidAmount(f"Not a raw integer amount: {value!r}")
            raw = int(text)
        if raw < 0:
            raise InvalidAmount(f"Amount must not be negative: {value!r}")
        return raw

    @staticmethod
    def parse_timestamp(value: Any) -> Optional[datetime]:
        """Parse timestamp to an aware datetime, or None when missing or malformed."""
        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, int) and not isinstance(value, bool):
            parsed = datetime.fromtimestamp(value, tz=timezone.utc)
        elif isinstance(value, str) and value.strip():
            try:
                parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
            except ValueError:
                try:
                    parsed = datetime.fromtimestamp(int(value), tz=timezone.utc)
                except (ValueError, OSError, OverflowError):
                    return None
        else:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    @classmethod
    def require_timestamp(cls, value: Any, what: str) -> datetime:
        """Timestamp that feeds the freshness check; missing ones are never treated as fresh."""
        parsed = cls.parse_timestamp(value)
        if parsed is None:
            raise StaleMarketData(f"{what} has no usable updatedAt: {value!r}", updated_at=value)
        return parsed

    @classmethod
    def parse_reserve(cls, data: Dict[str, Any], asset: Asset) -> MarketParams:
        """Parse reserve data to MarketParams.

        Args:
            data: ``reserve`` object from the indexer
            asset: Asset the reserve was requested for

        Returns:
            MarketParams for the asset
        """
        decimals = data.get("decimals")
        if decimals is not None and int(decimals) != asset.decimals:
            raise InvalidAmount(
                f"Indexer reports {decimals} decimals for {asset.symbol}, expected {asset.decimals}"
            )

        updated_at = cls.require_timestamp(data.get("updatedAt"), f"Reserve {asset.symbol}")
        rates = MarketRate(
            supply_apy=cls.parse_decimal(data.get("supplyApy")),
            borrow_apy=cls.parse_decimal(data.get("borrowApy")),
            reward_apr=cls.parse_decimal(data.get("rewardApr"), default=None),
            updated_at=updated_at,
        )

        return MarketParams(
            asset=asset,
            max_ltv=cls.parse_decimal(data.get("maxLtv")),
            liquidation_threshold=cls.parse_decimal(data.get("liquidationThreshold")),
            available_liquidity=asset.amount(cls.parse_raw_amount(data.get("availableLiquidity"))),
            price=cls.parse_decimal(data.get("price")),
            rates=rates,
            price_feed_id=data.get("priceFeedId") or None,
            updated_at=updated_at,
        )

    @classmethod
    def parse_position(
        cls,
        data: Optional[Dict[str, Any]],
        collateral_asset: Asset,
        debt_asset: Asset,
    ) -> Optional[PositionState]:
        """Parse position data to PositionState.

        Returns:
            PositionState, or None when the account holds nothing
        """
        if not data:
            return None

        collateral_raw = cls.parse_raw_amount(data.get("collateralAmount"))
        debt_raw = cls.parse_raw_amount(data.get("debtAmount"))
        if collateral_raw == 0 and debt_raw == 0:
            return None

        collateral_reserve = data.get("collateralReserve") or {}
        debt_reserve = data.get("debtReserve") or {}

        return PositionState(
            collateral_asset=collateral_asset,
            collateral_amount=TokenAmount(collateral_raw, collateral_asset.decimals),
            collateral_price=cls.parse_decimal(collateral_reserve.get("price")),
            debt_asset=debt_asset,
            debt_amount=TokenAmount(debt_raw, debt_asset.decimals),
            debt_price=cls.parse_decimal(debt_reserve.get("price")),
            liquidation_threshold=cls.parse_decimal(collateral_reserve.get("liquidationThreshold")),
            updated_at=cls.require_timestamp(data.get("updatedAt"), "Position"),
        )
