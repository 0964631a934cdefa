"""Flash-loan leg planner.

Turns an open or close request plus a fresh snapshot into an ordered list of
legs that must execute inside one atomic transaction:

Open:  flash-borrow -> [oracle refresh] -> [swap] -> supply -> borrow
       -> flash-repay -> transfer dust
Close: flash-borrow -> [oracle refresh] -> repay -> withdraw -> swap
       -> flash-repay -> transfer collateral -> transfer dust

Same-asset positions (opened without a swap or built by the loop planner)
skip the swap on both paths.
"""

import logging
from decimal import Decimal
from typing import List, Optional

from config.settings import Settings, get_settings
from src.core.errors import (
    InsufficientCollateral,
    InvalidAmount,
    LeverageOutOfRange,
    NoLiquidity,
)
from src.core.models import (
    Asset,
    ClosePositionRequest,
    FlashLoanQuote,
    Leg,
    LegType,
    MarketParams,
    OpenPositionRequest,
    Plan,
    PlanKind,
    PlanningSnapshot,
    PositionState,
    SwapQuote,
    TokenAmount,
)
from src.engine.amounts import (
    apply_bps_buffer,
    bps_of,
    convert_amount,
    mul_ratio,
    quote_flash_loan,
)
from src.engine.quotes import QuoteResolver
from src.engine.risk import RiskCalculator

logger = logging.getLogger(__name__)


def oracle_refresh_leg(snapshot: PlanningSnapshot) -> Optional[Leg]:
    """Refresh leg for markets that publish a price feed, None otherwise."""
    if not snapshot.requires_oracle_refresh:
        return None
    feeds = snapshot.price_feed_ids
    return Leg(
        kind=LegType.ORACLE_REFRESH,
        asset=snapshot.collateral.asset,
        amount=None,
        note="refresh price feeds",
        metadata={"price_feeds": ",".join(feeds)},
    )


def project_position(
    base: PositionState,
    collateral: MarketParams,
    debt: MarketParams,
    collateral_raw: int,
    debt_raw: int,
) -> PositionState:
    """Position after the plan, priced at current market prices."""
    return PositionState(
        collateral_asset=collateral.asset,
        collateral_amount=TokenAmount(collateral_raw, collateral.asset.decimals),
        collateral_price=collateral.price,
        debt_asset=debt.asset,
        debt_amount=TokenAmount(debt_raw, debt.asset.decimals),
        debt_price=debt.price,
        liquidation_threshold=collateral.liquidation_threshold,
        updated_at=base.updated_at,
    )


class LegPlanner:
    """
    Plans flash-loan backed opens and closes.

    Planning is deterministic for a given snapshot and quote set. The only
    I/O is the swap quote lookup through ``QuoteResolver``.
    """

    def __init__(self, resolver: QuoteResolver, settings: Optional[Settings] = None):
        self.resolver = resolver
        self.settings = settings or get_settings()

    # ========== HELPERS ==========

    @staticmethod
    def _check_assets(snapshot: PlanningSnapshot, collateral: Asset, debt: Asset) -> None:
        if not snapshot.collateral.asset.same_as(collateral):
            raise InvalidAmount(
                f"Snapshot collateral {snapshot.collateral.asset.symbol} does not match {collateral.symbol}"
            )
        if not snapshot.debt.asset.same_as(debt):
            raise InvalidAmount(
                f"Snapshot debt {snapshot.debt.asset.symbol} does not match {debt.symbol}"
            )

    def ensure_leverage_in_range(self, target: Decimal, max_ltv: Decimal) -> Decimal:
        """
        Reject targets at or below 1x or above the market's safe maximum.

        Returns:
            The computed maximum leverage
        """
        max_leverage = RiskCalculator.max_leverage(
            max_ltv,
            self.settings.max_leverage_safety_factor,
            self.settings.max_leverage_fallback,
        )
        if target <= 1 or target > max_leverage:
            raise LeverageOutOfRange(
                f"Leverage {target}x outside (1, {max_leverage:.4f}]",
                target=target,
                max_leverage=max_leverage,
            )
        return max_leverage

    def _flash_quote(self, snapshot: PlanningSnapshot, asset: Asset, amount: int) -> FlashLoanQuote:
        capacity = snapshot.flash_max_amount
        if capacity is None or capacity.raw < amount:
            available = capacity.raw if capacity is not None else 0
            raise NoLiquidity(
                f"Flash loan of {amount} {asset.symbol} exceeds capacity {available}",
                requested=amount,
                available=available,
            )
        fee_bps = snapshot.flash_fee_bps
        if fee_bps is None:
            fee_bps = self.settings.flash_loan_default_fee_bps
        return quote_flash_loan(asset, amount, fee_bps)

    def _metrics(self, position: PositionState, collateral: MarketParams, debt: MarketParams) -> dict:
        leverage = RiskCalculator.leverage(position.collateral_value, position.debt_value)
        health_factor = RiskCalculator.health_factor(
            position.collateral_value,
            position.debt_value,
            position.liquidation_threshold,
        )
        liquidation_price = None
        net_apy = None
        if leverage.is_finite():
            net_apy = RiskCalculator.net_apy(
                collateral.rates.supply_apy,
                debt.rates.borrow_apy,
                leverage,
                collateral.rates.reward_apr,
            )
        if position.has_debt and not collateral.asset.same_as(debt.asset):
            liquidation_price = RiskCalculator.liquidation_price(
                position.debt_value,
                position.collateral_amount.to_decimal(),
                position.liquidation_threshold,
            )
        return {
            "leverage": leverage,
            "health_factor": health_factor,
            "liquidation_price": liquidation_price,
            "net_apy": net_apy,
        }

    # ========== OPEN ==========

    def flash_amount_for(self, snapshot: PlanningSnapshot, request: OpenPositionRequest) -> int:
        """
        Loan-asset amount to flash-borrow for ``request``.

        E * (L - 1) in deposit units, converted to loan units at market
        prices and grown by the slippage buffer. Rounded up at each step.
        Same-asset opens involve no swap, so they take no buffer.
        """
        equity = request.deposit_amount.raw
        borrowed_in_deposit = mul_ratio(equity, request.target_leverage - 1, round_up=True)
        if request.deposit_asset.same_as(request.loan_asset):
            return borrowed_in_deposit
        base = convert_amount(
            borrowed_in_deposit,
            snapshot.collateral.price,
            request.deposit_asset.decimals,
            snapshot.debt.price,
            request.loan_asset.decimals,
            round_up=True,
        )
        return apply_bps_buffer(base, self.settings.swap_slippage_bps)

    async def plan_open(self, snapshot: PlanningSnapshot, request: OpenPositionRequest) -> Plan:
        """Build an open (or add-to) plan.

        Raises:
            LeverageOutOfRange: target <= 1 or above the market maximum
            NoLiquidity: flash capacity, market liquidity or swap route missing
        """
        self._check_assets(snapshot, request.deposit_asset, request.loan_asset)
        target = request.target_leverage
        self.ensure_leverage_in_range(target, snapshot.collateral.max_ltv)

        deposit_asset = request.deposit_asset
        loan_asset = request.loan_asset
        same_asset = deposit_asset.same_as(loan_asset)
        equity = request.deposit_amount.raw

        flash_amount = self.flash_amount_for(snapshot, request)
        flash = self._flash_quote(snapshot, loan_asset, flash_amount)
        borrow_amount = flash.total_repayment

        liquidity = snapshot.debt.available_liquidity.raw
        if liquidity < borrow_amount:
            raise NoLiquidity(
                f"Market liquidity {liquidity} {loan_asset.symbol} cannot cover borrow {borrow_amount}",
                requested=borrow_amount,
                available=liquidity,
            )

        swap_quote = None
        if same_asset:
            swap_out = flash_amount
        else:
            swap_quote = await self.resolver.best_quote(flash_amount, loan_asset, deposit_asset)
            swap_out = swap_quote.amount_out

        total_deposit = equity + swap_out

        legs: List[Leg] = [
            Leg(LegType.FLASH_BORROW, loan_asset, loan_asset.amount(flash_amount)),
        ]
        refresh = oracle_refresh_leg(snapshot)
        if refresh is not None:
            legs.append(refresh)
        if swap_quote is not None:
            legs.append(
                Leg(
                    LegType.SWAP,
                    loan_asset,
                    loan_asset.amount(flash_amount),
                    asset_out=deposit_asset,
                    min_amount_out=deposit_asset.amount(
                        bps_of(swap_out, 10_000 - self.settings.swap_slippage_bps)
                    ),
                    metadata={"expected_out": swap_out, "source": swap_quote.source},
                )
            )
        legs.extend([
            Leg(
                LegType.SUPPLY,
                deposit_asset,
                deposit_asset.amount(total_deposit),
                note="principal + swap output",
            ),
            Leg(LegType.BORROW, loan_asset, loan_asset.amount(borrow_amount)),
            Leg(LegType.FLASH_REPAY, loan_asset, loan_asset.amount(flash.total_repayment)),
            Leg(
                LegType.TRANSFER,
                loan_asset,
                None,
                note="return remaining dust",
                metadata={"projected_dust": borrow_amount - flash.total_repayment},
            ),
        ])

        base = snapshot.position_or_empty()
        projected = project_position(
            base,
            snapshot.collateral,
            snapshot.debt,
            base.collateral_amount.raw + total_deposit,
            base.debt_amount.raw + borrow_amount,
        )
        metrics = self._metrics(projected, snapshot.collateral, snapshot.debt)

        logger.info(
            f"Planned open {equity} {deposit_asset.symbol} at {target}x: "
            f"flash {flash_amount} {loan_asset.symbol} (fee {flash.fee}), "
            f"supply {total_deposit}, projected {metrics['leverage']:.4f}x"
        )
        for i, leg in enumerate(legs):
            logger.debug(f"  leg {i}: {leg.kind.value} {leg.amount.raw if leg.amount else 'all'} {leg.asset.symbol}")

        return Plan(
            kind=PlanKind.OPEN,
            legs=tuple(legs),
            projected_position=projected,
            target_leverage=target,
            flash_loan=flash,
            swap_quote=swap_quote,
            **metrics,
        )

    # ========== CLOSE ==========

    def resolve_repay_amount(self, debt: int, request: ClosePositionRequest) -> int:
        """
        Debt to repay for ``request`` against on-chain ``debt``.

        A requested amount within the full-close tolerance band of the debt
        becomes the exact debt; anything above it is capped. Without a
        request the unwind fraction of the debt is repaid (rounded up).
        """
        if request.repay_amount is None:
            return min(mul_ratio(debt, request.unwind_fraction, round_up=True), debt)

        requested = request.repay_amount.raw
        if requested == 0:
            raise InvalidAmount("Repay amount must be greater than zero")

        tolerance = self.settings.full_close_tolerance_bps
        lower = debt * (10_000 - tolerance)
        upper = debt * (10_000 + tolerance)
        if lower <= requested * 10_000 <= upper:
            if requested != debt:
                logger.info(f"Repay {requested} within tolerance of on-chain debt {debt}, repaying full debt")
            return debt
        if requested > debt:
            logger.info(f"Repay {requested} above on-chain debt {debt}, capping")
            return debt
        return requested

    def _withdraw_amount(self, collateral: int, debt: int, repay: int, request: ClosePositionRequest) -> int:
        cap = bps_of(collateral, self.settings.withdraw_cap_bps)
        if request.repay_amount is not None and request.unwind_fraction == 1 and repay < debt:
            # Partial repay by amount: unwind collateral in the same proportion
            share = collateral * repay // debt
        else:
            share = mul_ratio(collateral, request.unwind_fraction)
        return min(share, cap)

    def _plan_withdraw_only(self, snapshot: PlanningSnapshot, request: ClosePositionRequest) -> Plan:
        position = snapshot.position
        collateral_asset = request.collateral_asset
        withdraw = min(
            mul_ratio(position.collateral_amount.raw, request.unwind_fraction),
            bps_of(position.collateral_amount.raw, self.settings.withdraw_cap_bps),
        )
        if withdraw == 0:
            raise InsufficientCollateral(f"Nothing to withdraw from {collateral_asset.symbol} position")

        legs: List[Leg] = []
        refresh = oracle_refresh_leg(snapshot)
        if refresh is not None:
            legs.append(refresh)
        legs.extend([
            Leg(LegType.WITHDRAW, collateral_asset, collateral_asset.amount(withdraw)),
            Leg(
                LegType.TRANSFER,
                collateral_asset,
                None,
                note="return withdrawn collateral",
                metadata={"projected": withdraw},
            ),
        ])

        projected = project_position(
            position,
            snapshot.collateral,
            snapshot.debt,
            position.collateral_amount.raw - withdraw,
            0,
        )
        metrics = self._metrics(projected, snapshot.collateral, snapshot.debt)
        logger.info(f"Planned withdraw-only close of {withdraw} {collateral_asset.symbol} (no debt)")

        return Plan(
            kind=PlanKind.CLOSE,
            legs=tuple(legs),
            projected_position=projected,
            target_leverage=Decimal("1"),
            **metrics,
        )

    def _plan_same_asset_close(
        self,
        snapshot: PlanningSnapshot,
        request: ClosePositionRequest,
        repay: int,
        withdraw: int,
    ) -> Plan:
        """
        Unwind a loop-style position whose collateral and debt are one asset.

        Withdrawn collateral repays the flash loan directly, so there is no
        swap and no buffer on the flash amount.
        """
        position = snapshot.position
        asset = request.collateral_asset

        flash = self._flash_quote(snapshot, asset, repay)
        owed = flash.total_repayment - (flash.amount - repay)
        if withdraw < owed:
            raise InsufficientCollateral(
                f"Withdrawing {withdraw} {asset.symbol} cannot cover flash repayment {flash.total_repayment}",
                withdraw=withdraw,
                total_repayment=flash.total_repayment,
            )
        keep = withdraw - owed

        legs: List[Leg] = [
            Leg(LegType.FLASH_BORROW, asset, asset.amount(flash.amount)),
        ]
        refresh = oracle_refresh_leg(snapshot)
        if refresh is not None:
            legs.append(refresh)
        legs.extend([
            Leg(LegType.REPAY, asset, asset.amount(repay)),
            Leg(LegType.WITHDRAW, asset, asset.amount(withdraw)),
            Leg(LegType.FLASH_REPAY, asset, asset.amount(flash.total_repayment)),
            Leg(
                LegType.TRANSFER,
                asset,
                None,
                note="return withdrawn collateral net of flash repayment",
                metadata={"projected": keep},
            ),
        ])

        projected = project_position(
            position,
            snapshot.collateral,
            snapshot.debt,
            position.collateral_amount.raw - withdraw,
            position.debt_amount.raw - repay,
        )
        metrics = self._metrics(projected, snapshot.collateral, snapshot.debt)
        target = Decimal("1") if not projected.has_debt else metrics["leverage"]

        logger.info(
            f"Planned same-asset close for {request.account}: repay {repay} {asset.symbol}, "
            f"withdraw {withdraw}, keep {keep}"
        )

        return Plan(
            kind=PlanKind.CLOSE,
            legs=tuple(legs),
            projected_position=projected,
            target_leverage=target,
            flash_loan=flash,
            **metrics,
        )

    async def _close_swap(
        self,
        withdraw: int,
        total_repayment: int,
        collateral_asset: Asset,
        debt_asset: Asset,
    ) -> SwapQuote:
        """
        Smallest swap of withdrawn collateral that still repays the flash loan.

        The full withdrawn amount is quoted first; if even that cannot repay,
        the close is impossible. Otherwise the input is scaled down to hit the
        repayment plus a margin and re-quoted, falling back to the full swap
        when the smaller route no longer covers the repayment.
        """
        full = await self.resolver.best_quote(withdraw, collateral_asset, debt_asset)
        if full.amount_out < total_repayment:
            raise InsufficientCollateral(
                f"Swapping all {withdraw} {collateral_asset.symbol} yields {full.amount_out} "
                f"{debt_asset.symbol}, below flash repayment {total_repayment}",
                swap_out=full.amount_out,
                total_repayment=total_repayment,
            )

        target_out = apply_bps_buffer(total_repayment, self.settings.close_swap_margin_bps)
        swap_in = min(-(-target_out * full.amount_in // full.amount_out), withdraw)
        if swap_in >= withdraw:
            return full

        try:
            partial = await self.resolver.best_quote(swap_in, collateral_asset, debt_asset)
        except NoLiquidity:
            logger.warning(f"No route for partial swap of {swap_in} {collateral_asset.symbol}, swapping all")
            return full

        if partial.amount_out < total_repayment:
            logger.warning(
                f"Partial swap of {swap_in} yields {partial.amount_out} < {total_repayment}, swapping all"
            )
            return full
        return partial

    async def plan_close(self, snapshot: PlanningSnapshot, request: ClosePositionRequest) -> Plan:
        """Build a full or partial unwind plan.

        Raises:
            InvalidAmount: no position to close
            NoLiquidity: flash capacity or swap route missing
            InsufficientCollateral: withdrawn collateral cannot repay the flash loan
        """
        self._check_assets(snapshot, request.collateral_asset, request.debt_asset)
        position = snapshot.position
        if position is None or (position.collateral_amount.is_zero and not position.has_debt):
            raise InvalidAmount(f"No open position for {request.account}")

        if not position.has_debt:
            return self._plan_withdraw_only(snapshot, request)

        collateral_asset = request.collateral_asset
        debt_asset = request.debt_asset
        collateral = position.collateral_amount.raw
        debt = position.debt_amount.raw

        repay = self.resolve_repay_amount(debt, request)
        withdraw = self._withdraw_amount(collateral, debt, repay, request)
        if withdraw == 0:
            raise InsufficientCollateral(
                f"No {collateral_asset.symbol} collateral to unwind",
                collateral=collateral,
            )

        if collateral_asset.same_as(debt_asset):
            return self._plan_same_asset_close(snapshot, request, repay, withdraw)

        flash_amount = apply_bps_buffer(repay, self.settings.close_flash_buffer_bps)
        flash = self._flash_quote(snapshot, debt_asset, flash_amount)
        total_repayment = flash.total_repayment

        swap = await self._close_swap(withdraw, total_repayment, collateral_asset, debt_asset)
        swap_in = swap.amount_in
        keep = withdraw - swap_in
        dust = flash_amount + swap.amount_out - repay - total_repayment

        legs: List[Leg] = [
            Leg(LegType.FLASH_BORROW, debt_asset, debt_asset.amount(flash_amount)),
        ]
        refresh = oracle_refresh_leg(snapshot)
        if refresh is not None:
            legs.append(refresh)
        legs.extend([
            Leg(LegType.REPAY, debt_asset, debt_asset.amount(repay)),
            Leg(LegType.WITHDRAW, collateral_asset, collateral_asset.amount(withdraw)),
            Leg(
                LegType.SWAP,
                collateral_asset,
                collateral_asset.amount(swap_in),
                asset_out=debt_asset,
                min_amount_out=debt_asset.amount(total_repayment),
                metadata={"expected_out": swap.amount_out, "source": swap.source},
            ),
            Leg(LegType.FLASH_REPAY, debt_asset, debt_asset.amount(total_repayment)),
            Leg(
                LegType.TRANSFER,
                collateral_asset,
                None,
                note="return unswapped collateral",
                metadata={"projected": keep},
            ),
            Leg(
                LegType.TRANSFER,
                debt_asset,
                None,
                note="return remaining dust",
                metadata={"projected_dust": dust},
            ),
        ])

        projected = project_position(
            position,
            snapshot.collateral,
            snapshot.debt,
            collateral - withdraw,
            debt - repay,
        )
        metrics = self._metrics(projected, snapshot.collateral, snapshot.debt)
        target = Decimal("1") if not projected.has_debt else metrics["leverage"]

        logger.info(
            f"Planned close for {request.account}: repay {repay}/{debt} {debt_asset.symbol}, "
            f"withdraw {withdraw} {collateral_asset.symbol}, swap {swap_in} -> {swap.amount_out}"
        )

        return Plan(
            kind=PlanKind.CLOSE,
            legs=tuple(legs),
            projected_position=projected,
            target_leverage=target,
            flash_loan=flash,
            swap_quote=swap,
            **metrics,
        )
