"""Risk calculation utilities for leveraged positions.

Everything here works on Decimal ratios and is used for bounds, validation
and display. Nothing returned by this module is fed into a Leg amount
without going through ``src.engine.amounts``.
"""

from decimal import Decimal
from typing import Optional

from src.core.constants import DEFAULT_MAX_LEVERAGE_FALLBACK, INFINITY
from src.core.models import MarketParams, PositionBounds, PositionState, TokenAmount
from src.engine.amounts import bps_of, convert_amount, div_ratio, mul_ratio

ZERO = Decimal("0")
ONE = Decimal("1")


class RiskCalculator:
    """
    Calculator for position risk metrics.

    Handles health factor, LTV, leverage bounds, liquidation price and
    max borrow / withdraw calculations.
    """

    @staticmethod
    def health_factor(
        collateral_value: Decimal,
        debt_value: Decimal,
        liquidation_threshold: Decimal,
    ) -> Decimal:
        """
        Calculate health factor.

        HF = (Collateral Value * Liquidation Threshold) / Debt Value

        Args:
            collateral_value: Collateral value in quote currency
            debt_value: Debt value in quote currency
            liquidation_threshold: e.g. 0.8

        Returns:
            Health factor (< 1.0 means liquidatable), Infinity without debt
        """
        if debt_value == 0:
            return INFINITY

        return (collateral_value * liquidation_threshold) / debt_value

    @staticmethod
    def current_ltv(debt_value: Decimal, collateral_value: Decimal) -> Decimal:
        """LTV = Debt Value / Collateral Value (0 without collateral)."""
        if collateral_value == 0:
            return ZERO
        return debt_value / collateral_value

    @staticmethod
    def ltv_from_leverage(leverage: Decimal) -> Decimal:
        """
        LTV implied by a leverage multiplier.

        LTV = (L - 1) / L; exactly 1x means nothing borrowed.
        """
        if leverage <= 1:
            return ZERO
        return (leverage - 1) / leverage

    @staticmethod
    def health_factor_from_leverage(max_ltv: Decimal, leverage: Decimal) -> Decimal:
        """HF = max_ltv / LTV(L); Infinity at 1x."""
        ltv = RiskCalculator.ltv_from_leverage(leverage)
        if ltv == 0:
            return INFINITY
        return max_ltv / ltv

    @staticmethod
    def theoretical_max_leverage(max_ltv: Decimal) -> Decimal:
        """
        Leverage ceiling implied by the market LTV.

        Looping deposits D and borrows D * LTV each round:
        D * (1 + LTV + LTV^2 + ...) = D / (1 - LTV)
        """
        if max_ltv >= 1:
            return INFINITY
        return ONE / (ONE - max_ltv)

    @staticmethod
    def max_leverage(
        max_ltv: Decimal,
        safety_factor: Decimal = Decimal("0.95"),
        fallback: Decimal = DEFAULT_MAX_LEVERAGE_FALLBACK,
    ) -> Decimal:
        """
        Usable leverage ceiling: 1 / (1 - max_ltv) scaled by a safety factor.

        A max LTV of 1 or more is a broken market input; it is clamped to the
        fallback ceiling instead of dividing by zero.
        """
        if max_ltv >= 1:
            return fallback
        if max_ltv <= 0:
            return ONE

        return max(ONE, RiskCalculator.theoretical_max_leverage(max_ltv) * safety_factor)

    @staticmethod
    def liquidation_price(
        borrowed_value: Decimal,
        collateral_amount: Decimal,
        liquidation_threshold: Decimal,
    ) -> Decimal:
        """
        Calculate the collateral price at which the position gets liquidated.

        At liquidation: collateral_amount * liq_price * threshold = borrowed
        liq_price = borrowed / (collateral_amount * threshold)

        Args:
            borrowed_value: Debt in quote currency
            collateral_amount: Collateral in whole tokens
            liquidation_threshold: Liquidation threshold

        Returns:
            Liquidation price in quote currency per collateral token
        """
        if collateral_amount == 0 or liquidation_threshold == 0:
            return ZERO

        return borrowed_value / (collateral_amount * liquidation_threshold)

    @staticmethod
    def net_apy(
        supply_apy: Decimal,
        borrow_apy: Decimal,
        leverage: Decimal,
        reward_apr: Optional[Decimal] = None,
    ) -> Decimal:
        """
        Blended return on equity for a leveraged position (display only).

        Net APY = (supply_apy + reward_apr) * leverage - borrow_apy * (leverage - 1)

        Example at 3x with 4% supply and 2% borrow:
        - 3 * 4% = 12% earned on exposure
        - 2 * 2% = 4% paid on debt
        - Net = 8% on equity
        """
        income = supply_apy + (reward_apr or ZERO)
        if leverage <= 1:
            return income

        return (income * leverage) - (borrow_apy * (leverage - 1))

    @staticmethod
    def leverage(collateral_value: Decimal, debt_value: Decimal) -> Decimal:
        """
        Leverage = Collateral Value / Equity Value.

        1 without debt, Infinity once equity is gone.
        """
        if debt_value == 0:
            return ONE
        equity = collateral_value - debt_value
        if equity <= 0:
            return INFINITY
        return collateral_value / equity

    @staticmethod
    def max_borrow(
        collateral_value: Decimal,
        max_ltv: Decimal,
        debt_value: Decimal = ZERO,
        safety_factor: Decimal = ONE,
    ) -> Decimal:
        """
        Remaining borrow headroom in quote currency.

        headroom = collateral * max_ltv * safety - debt, floored at 0
        """
        headroom = collateral_value * max_ltv * safety_factor - debt_value
        return max(ZERO, headroom)

    @staticmethod
    def max_withdraw(
        position: PositionState,
        max_ltv: Decimal,
        safety_factor: Decimal = Decimal("0.95"),
        cap_bps: int = 9990,
    ) -> TokenAmount:
        """
        Largest collateral withdrawal that keeps the position borrowable.

        Without debt everything but a dust margin (``cap_bps`` of supply) can
        leave. With debt only the excess collateral value over the debt,
        scaled by ``safety_factor``, can leave, still capped at ``cap_bps``.
        """
        supplied = position.collateral_amount.raw
        decimals = position.collateral_amount.decimals
        cap = bps_of(supplied, cap_bps)

        if not position.has_debt:
            return TokenAmount(cap, decimals)

        if max_ltv <= 0 or position.collateral_price <= 0:
            return TokenAmount.zero(decimals)

        # Borrowing power (collateral * max_ltv) minus debt, as collateral units
        debt_raw_in_collateral = convert_amount(
            position.debt_amount.raw,
            position.debt_price,
            position.debt_amount.decimals,
            position.collateral_price,
            decimals,
            round_up=True,
        )
        required = div_ratio(debt_raw_in_collateral, max_ltv, round_up=True)
        excess = supplied - required
        if excess <= 0:
            return TokenAmount.zero(decimals)

        return TokenAmount(min(mul_ratio(excess, safety_factor), cap), decimals)

    @staticmethod
    def bounds(
        position: PositionState,
        collateral: MarketParams,
        safety_factor: Decimal = Decimal("0.95"),
        fallback: Decimal = DEFAULT_MAX_LEVERAGE_FALLBACK,
        withdraw_safety_factor: Decimal = Decimal("0.95"),
        cap_bps: int = 9990,
    ) -> PositionBounds:
        """Max leverage, max borrow and max withdraw for a position."""
        return PositionBounds(
            max_leverage=RiskCalculator.max_leverage(collateral.max_ltv, safety_factor, fallback),
            max_borrow_value=RiskCalculator.max_borrow(
                position.collateral_value, collateral.max_ltv, position.debt_value
            ),
            max_withdraw=RiskCalculator.max_withdraw(
                position, collateral.max_ltv, withdraw_safety_factor, cap_bps
            ),
            health_factor=RiskCalculator.health_factor(
                position.collateral_value,
                position.debt_value,
                position.liquidation_threshold,
            ),
            current_ltv=RiskCalculator.current_ltv(
                position.debt_value, position.collateral_value
            ),
        )
