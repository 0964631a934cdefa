"""Iterative borrow/resupply loop planner.

Fallback path when no flash loan is available: supply the deposit, then
repeatedly borrow against it and supply the borrowed amount again until the
target leverage is (nearly) reached.

Each round borrows the remaining headroom at the effective LTV ``r``, so the
supplied amount follows E * (1 + r + r^2 + ... + r^n) and approaches
E / (1 - r). Synchronous and pure: no I/O happens here.
"""

import logging
from decimal import Decimal
from typing import List, Optional

from config.settings import Settings, get_settings
from src.core.errors import InvalidAmount, LeverageOutOfRange
from src.core.models import (
    Leg,
    LegType,
    LoopRequest,
    MarketParams,
    Plan,
    PlanKind,
    PlanStatus,
    PositionState,
)
from src.engine.amounts import mul_ratio
from src.engine.risk import RiskCalculator

logger = logging.getLogger(__name__)


class IterativeLoopPlanner:
    """Bounded state machine producing supply/borrow pairs on one asset."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    @property
    def borrow_ratio(self) -> Decimal:
        """Effective LTV actually borrowed each round (0.72 * 0.95 by default)."""
        return self.settings.loop_effective_ltv * self.settings.loop_safety_factor

    def max_leverage(self) -> Decimal:
        return RiskCalculator.max_leverage(
            self.settings.loop_effective_ltv,
            self.settings.max_leverage_safety_factor,
            self.settings.max_leverage_fallback,
        )

    def plan(
        self,
        request: LoopRequest,
        params: MarketParams,
        max_iterations: Optional[int] = None,
    ) -> Plan:
        """
        Plan a loop toward ``request.target_leverage``.

        Stops when the supplied amount reaches target * convergence factor,
        when the next borrow falls below ``min_borrow_raw``, or after
        ``max_iterations`` rounds. An unconverged plan is still returned with
        status ITERATION_LIMIT_REACHED and its achieved leverage.

        Raises:
            LeverageOutOfRange: target <= 1 or above the loop maximum
        """
        if not params.asset.same_as(request.asset):
            raise InvalidAmount(f"Market params for {params.asset.symbol} do not match {request.asset.symbol}")

        target = request.target_leverage
        max_leverage = self.max_leverage()
        if target <= 1 or target > max_leverage:
            raise LeverageOutOfRange(
                f"Loop leverage {target}x outside (1, {max_leverage:.4f}]",
                target=target,
                max_leverage=max_leverage,
            )

        cap = max_iterations if max_iterations is not None else self.settings.loop_max_iterations
        asset = request.asset
        equity = request.deposit_amount.raw
        ratio = self.borrow_ratio
        # Supplied amount at which the loop counts as converged
        ceiling = mul_ratio(equity, target * self.settings.loop_convergence_factor)

        legs: List[Leg] = []
        if params.requires_oracle_refresh:
            legs.append(
                Leg(
                    LegType.ORACLE_REFRESH,
                    asset,
                    None,
                    note="refresh price feeds",
                    metadata={"price_feeds": params.price_feed_id},
                )
            )
        legs.append(Leg(LegType.SUPPLY, asset, asset.amount(equity), note="initial deposit"))

        supplied = equity
        borrowed = 0
        iterations = 0
        stalled = False

        while iterations < cap and supplied < ceiling:
            headroom = mul_ratio(supplied, ratio) - borrowed
            borrow = min(headroom, ceiling - supplied)
            if borrow < self.settings.min_borrow_raw or borrow <= 0:
                logger.debug(f"Loop stalled: next borrow {borrow} below minimum")
                stalled = True
                break

            iterations += 1
            borrowed += borrow
            supplied += borrow
            legs.append(Leg(LegType.BORROW, asset, asset.amount(borrow), metadata={"iteration": iterations}))
            legs.append(Leg(LegType.SUPPLY, asset, asset.amount(borrow), metadata={"iteration": iterations}))
            logger.debug(f"Loop iteration {iterations}: borrow {borrow}, supplied {supplied}")

        leverage = Decimal(supplied) / Decimal(equity)
        converged = supplied >= ceiling

        status = PlanStatus.OK
        warnings = ()
        if not converged:
            status = PlanStatus.ITERATION_LIMIT_REACHED
            reason = "next borrow below minimum" if stalled else f"iteration cap {cap} reached"
            warnings = (f"Loop stopped at {leverage:.4f}x of target {target}x ({reason})",)
            logger.warning(warnings[0])

        projected = PositionState(
            collateral_asset=asset,
            collateral_amount=asset.amount(supplied),
            collateral_price=params.price,
            debt_asset=asset,
            debt_amount=asset.amount(borrowed),
            debt_price=params.price,
            liquidation_threshold=params.liquidation_threshold,
            updated_at=params.updated_at,
        )

        logger.info(
            f"Planned loop {equity} {asset.symbol}: {iterations} iterations, "
            f"{leverage:.4f}x (target {target}x)"
        )

        return Plan(
            kind=PlanKind.LOOP,
            legs=tuple(legs),
            projected_position=projected,
            leverage=leverage,
            health_factor=RiskCalculator.health_factor(
                projected.collateral_value,
                projected.debt_value,
                params.liquidation_threshold,
            ),
            target_leverage=target,
            net_apy=RiskCalculator.net_apy(
                params.rates.supply_apy,
                params.rates.borrow_apy,
                leverage,
                params.rates.reward_apr,
            ),
            status=status,
            warnings=warnings,
        )
