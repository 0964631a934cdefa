"""Safety checks run on every plan before it can be handed off."""

import logging
from decimal import Decimal
from typing import Optional

from config.settings import Settings, get_settings
from src.core.errors import (
    InsufficientCollateral,
    InsufficientPrincipal,
    LeverageOutOfRange,
    PlanOrderError,
)
from src.core.models import LegType, Plan, PlanKind, PlanningSnapshot, TokenAmount
from src.engine.amounts import convert_amount
from src.engine.risk import RiskCalculator

logger = logging.getLogger(__name__)

# Legs that spend or create funds inside the flash-loan window
_FLASH_FUNDED = (
    LegType.SWAP,
    LegType.SUPPLY,
    LegType.BORROW,
    LegType.REPAY,
    LegType.WITHDRAW,
)

# Legs that read the oracle price on-chain
_PRICE_SENSITIVE = (LegType.SUPPLY, LegType.BORROW, LegType.WITHDRAW)


class SafetyValidator:
    """
    Accepts or rejects plans.

    User-facing failures raise ``PlanningError`` subclasses. A leg sequence
    in the wrong order raises ``PlanOrderError``: that is a planner bug and
    is not converted into a rejection.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def max_leverage(self, max_ltv: Decimal) -> Decimal:
        return RiskCalculator.max_leverage(
            max_ltv,
            self.settings.max_leverage_safety_factor,
            self.settings.max_leverage_fallback,
        )

    # ========== ECONOMIC CHECKS ==========

    def check_leverage(self, plan: Plan, max_ltv: Decimal) -> None:
        max_leverage = self.max_leverage(max_ltv)
        if plan.leverage > max_leverage:
            raise LeverageOutOfRange(
                f"Projected leverage {plan.leverage:.4f}x above maximum {max_leverage:.4f}x",
                leverage=plan.leverage,
                max_leverage=max_leverage,
            )

    def check_principal(self, plan: Plan, snapshot: PlanningSnapshot, principal: TokenAmount) -> None:
        """Principal must be worth more than the flash-loan fee."""
        if plan.flash_loan is None:
            return
        fee = plan.flash_loan.fee
        collateral = snapshot.collateral
        debt = snapshot.debt
        if collateral.asset.same_as(debt.asset):
            fee_in_deposit = fee
        else:
            fee_in_deposit = convert_amount(
                fee,
                debt.price,
                debt.asset.decimals,
                collateral.price,
                collateral.asset.decimals,
                round_up=True,
            )
        if principal.raw <= fee_in_deposit:
            raise InsufficientPrincipal(
                f"Principal {principal.raw} does not cover flash-loan fee {fee_in_deposit}",
                principal=principal.raw,
                fee=fee_in_deposit,
            )

    def check_close_output(self, plan: Plan) -> None:
        """Swap output must repay the flash loan plus fee."""
        if plan.flash_loan is None or plan.swap_quote is None:
            return
        out = plan.swap_quote.amount_out
        owed = plan.flash_loan.total_repayment
        if out < owed:
            raise InsufficientCollateral(
                f"Swap output {out} below flash repayment {owed}",
                swap_out=out,
                total_repayment=owed,
            )

    def check_health(self, plan: Plan) -> None:
        """A position left with debt must stay above liquidation."""
        if plan.projected_position.has_debt and plan.health_factor < 1:
            raise InsufficientCollateral(
                f"Remaining position would have health factor {plan.health_factor:.4f}",
                health_factor=plan.health_factor,
            )

    # ========== STRUCTURE ==========

    def validate_order(self, plan: Plan) -> None:
        """
        Check leg dependencies.

        - flash-borrow is the first leg, flash-repay comes after every leg
          that uses the borrowed funds, and each needs the other
        - opens swap before they supply
        - every borrow happens before the flash repay
        - closes repay before they withdraw and withdraw before they swap
        - an oracle refresh precedes anything that reads the price
        """
        flash_borrow = plan.index_of(LegType.FLASH_BORROW)
        flash_repay = plan.index_of(LegType.FLASH_REPAY)

        if (flash_borrow == -1) != (flash_repay == -1):
            raise PlanOrderError(f"Plan {plan.plan_id}: flash borrow and repay must come in pairs")

        if flash_borrow != -1:
            if flash_borrow != 0:
                raise PlanOrderError(f"Plan {plan.plan_id}: flash borrow must be the first leg")
            if len(plan.legs_of(LegType.FLASH_REPAY)) != 1 or len(plan.legs_of(LegType.FLASH_BORROW)) != 1:
                raise PlanOrderError(f"Plan {plan.plan_id}: expected exactly one flash loan")
            for kind in _FLASH_FUNDED:
                if plan.last_index_of(kind) > flash_repay:
                    raise PlanOrderError(
                        f"Plan {plan.plan_id}: {kind.value} after flash repay"
                    )
            borrow = plan.last_index_of(LegType.BORROW)
            if borrow != -1 and borrow > flash_repay:
                raise PlanOrderError(f"Plan {plan.plan_id}: borrow must precede flash repay")

        swap = plan.index_of(LegType.SWAP)
        if plan.kind == PlanKind.OPEN and swap != -1:
            supply = plan.index_of(LegType.SUPPLY)
            if supply != -1 and supply < swap:
                raise PlanOrderError(f"Plan {plan.plan_id}: swap must precede supply")

        if plan.kind == PlanKind.CLOSE:
            repay = plan.index_of(LegType.REPAY)
            withdraw = plan.index_of(LegType.WITHDRAW)
            if repay != -1 and withdraw != -1 and withdraw < repay:
                raise PlanOrderError(f"Plan {plan.plan_id}: repay must precede withdraw")
            if swap != -1 and withdraw != -1 and swap < withdraw:
                raise PlanOrderError(f"Plan {plan.plan_id}: withdraw must precede swap")

        if plan.kind == PlanKind.LOOP:
            supply = plan.index_of(LegType.SUPPLY)
            borrow = plan.index_of(LegType.BORROW)
            if borrow != -1 and (supply == -1 or borrow < supply):
                raise PlanOrderError(f"Plan {plan.plan_id}: loop must supply before borrowing")

        refresh = plan.index_of(LegType.ORACLE_REFRESH)
        if refresh != -1:
            for kind in _PRICE_SENSITIVE:
                first = plan.index_of(kind)
                if first != -1 and first < refresh:
                    raise PlanOrderError(
                        f"Plan {plan.plan_id}: oracle refresh must precede {kind.value}"
                    )

    # ========== ENTRY POINT ==========

    def accept(
        self,
        plan: Plan,
        snapshot: Optional[PlanningSnapshot] = None,
        principal: Optional[TokenAmount] = None,
    ) -> Plan:
        """
        Run every check that applies to ``plan`` and return a validated copy.

        Loop plans are bounded by the configured loop LTV; flash-loan plans
        by the collateral market's max LTV from ``snapshot``.
        """
        self.validate_order(plan)

        if plan.kind == PlanKind.LOOP or snapshot is None:
            max_ltv = self.settings.loop_effective_ltv
        else:
            max_ltv = snapshot.collateral.max_ltv

        if plan.kind == PlanKind.OPEN:
            if snapshot is not None and principal is not None:
                self.check_principal(plan, snapshot, principal)
            self.check_leverage(plan, max_ltv)
        elif plan.kind == PlanKind.CLOSE:
            self.check_close_output(plan)
            self.check_health(plan)
            if plan.projected_position.has_debt:
                self.check_leverage(plan, max_ltv)
        else:
            self.check_leverage(plan, max_ltv)

        logger.debug(f"Plan {plan.plan_id} ({plan.kind.value}) passed validation")
        return plan.mark_validated()
