"""Leverage engine facade.

Fetches a fresh snapshot per request, routes to the flash-loan or loop
planner, validates, and returns typed ``PlanResult`` objects. Every
``PlanningError`` (timeouts and stale data included) becomes a rejected
result; any other provider exception is logged and re-raised.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Optional, TypeVar

from config.settings import Settings, get_settings
from src.core.errors import (
    IterationLimitReached,
    PlanningError,
    ProviderTimeout,
    StaleMarketData,
)
from src.core.models import (
    Asset,
    ClosePositionRequest,
    LegType,
    LoopRequest,
    OpenPositionRequest,
    Plan,
    PlanResult,
    PlanStatus,
    PlanningSnapshot,
    PositionBounds,
)
from src.engine.loop_planner import IterativeLoopPlanner
from src.engine.planner import LegPlanner
from src.engine.quotes import QuoteResolver
from src.engine.risk import RiskCalculator
from src.engine.validator import SafetyValidator
from src.providers.base import (
    FlashLoanProvider,
    LendingMarketProvider,
    SwapQuoteProvider,
    TransactionConsumer,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LeverageEngine:
    """
    Entry point for planning leveraged positions.

    Example:
        engine = LeverageEngine(lending, quotes, flash_loans)
        result = await engine.plan_open(request)
        if result.is_valid:
            receipt = await engine.submit(result.plan, consumer)
    """

    def __init__(
        self,
        lending: LendingMarketProvider,
        quotes: SwapQuoteProvider,
        flash_loans: FlashLoanProvider,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.lending = lending
        self.quotes = quotes
        self.flash_loans = flash_loans
        self.resolver = QuoteResolver(quotes, timeout=self.settings.provider_timeout_seconds)
        self.planner = LegPlanner(self.resolver, self.settings)
        self.loop_planner = IterativeLoopPlanner(self.settings)
        self.validator = SafetyValidator(self.settings)

    # ========== SNAPSHOT ==========

    async def _call(self, awaitable: Awaitable[T], what: str) -> T:
        """Await a provider call with the configured timeout."""
        timeout = self.settings.provider_timeout_seconds
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ProviderTimeout(f"{what} timed out after {timeout}s") from e

    def _check_fresh(self, snapshot: PlanningSnapshot) -> None:
        age = (datetime.now(timezone.utc) - snapshot.oldest_update).total_seconds()
        if age > self.settings.max_snapshot_age_seconds:
            raise StaleMarketData(
                f"Market data is {age:.0f}s old (max {self.settings.max_snapshot_age_seconds}s)",
                age_seconds=round(age),
            )

    async def fetch_snapshot(
        self,
        account: str,
        collateral_asset: Asset,
        debt_asset: Asset,
        include_flash_loan: bool = True,
    ) -> PlanningSnapshot:
        """
        Read position, market params and flash-loan terms concurrently.

        Raises:
            ProviderTimeout: any read exceeded ``provider_timeout_seconds``
            StaleMarketData: oldest input older than ``max_snapshot_age_seconds``
        """
        reads = [
            self._call(
                self.lending.get_position(account, collateral_asset, debt_asset),
                f"Position read for {account}",
            ),
            self._call(
                self.lending.get_market_params(collateral_asset),
                f"Market params for {collateral_asset.symbol}",
            ),
            self._call(
                self.lending.get_market_params(debt_asset),
                f"Market params for {debt_asset.symbol}",
            ),
        ]
        if include_flash_loan:
            reads.append(
                self._call(
                    self.flash_loans.fee_rate_bps(debt_asset),
                    f"Flash-loan fee for {debt_asset.symbol}",
                )
            )
            reads.append(
                self._call(
                    self.flash_loans.max_loan_amount(debt_asset),
                    f"Flash-loan capacity for {debt_asset.symbol}",
                )
            )

        try:
            results = await asyncio.gather(*reads)
        except PlanningError:
            raise
        except Exception as e:
            logger.error(f"Snapshot read failed for {account}: {e}")
            raise

        position, collateral, debt = results[:3]
        fee_bps, max_amount = (results[3], results[4]) if include_flash_loan else (None, None)

        snapshot = PlanningSnapshot(
            collateral=collateral,
            debt=debt,
            position=position,
            flash_fee_bps=fee_bps,
            flash_max_amount=max_amount,
        )
        self._check_fresh(snapshot)
        return snapshot

    async def bounds(self, account: str, collateral_asset: Asset, debt_asset: Asset) -> PositionBounds:
        """Max leverage, borrow headroom and max withdraw for an account."""
        snapshot = await self.fetch_snapshot(
            account, collateral_asset, debt_asset, include_flash_loan=False
        )
        return RiskCalculator.bounds(
            snapshot.position_or_empty(),
            snapshot.collateral,
            self.settings.max_leverage_safety_factor,
            self.settings.max_leverage_fallback,
            self.settings.max_withdraw_safety_factor,
            self.settings.withdraw_cap_bps,
        )

    # ========== PLANNING ==========

    def _loop_result(self, plan: Plan) -> PlanResult:
        if plan.status != PlanStatus.ITERATION_LIMIT_REACHED:
            return PlanResult.accepted(plan)
        iterations = len(plan.legs_of(LegType.BORROW))
        error = IterationLimitReached(
            achieved_leverage=plan.leverage,
            target_leverage=plan.target_leverage,
            iterations=iterations,
        )
        return PlanResult.accepted(plan, error=error)

    async def plan_open(self, request: OpenPositionRequest) -> PlanResult:
        """Plan opening a leveraged position with a flash loan.

        Same-asset requests fall back to the iterative loop when the
        flash-loan facility has no capacity.
        """
        try:
            snapshot = await self.fetch_snapshot(
                request.account, request.deposit_asset, request.loan_asset
            )

            capacity = snapshot.flash_max_amount
            no_flash = capacity is None or capacity.is_zero
            if no_flash and request.deposit_asset.same_as(request.loan_asset):
                logger.warning(
                    f"No flash-loan capacity for {request.loan_asset.symbol}, falling back to loop"
                )
                loop_request = LoopRequest(
                    account=request.account,
                    asset=request.deposit_asset,
                    deposit_amount=request.deposit_amount,
                    target_leverage=request.target_leverage,
                )
                plan = self.loop_planner.plan(loop_request, snapshot.collateral)
                plan = self.validator.accept(plan, snapshot)
                return self._loop_result(plan)

            plan = await self.planner.plan_open(snapshot, request)
            plan = self.validator.accept(plan, snapshot, principal=request.deposit_amount)
            logger.info(f"Accepted open plan {plan.plan_id} at {plan.leverage:.4f}x")
            return PlanResult.accepted(plan)

        except PlanningError as e:
            logger.warning(f"Open rejected for {request.account}: {e.reason.value}: {e}")
            return PlanResult.rejected(e)

    async def plan_close(self, request: ClosePositionRequest) -> PlanResult:
        """Plan a full or partial unwind of an existing position."""
        try:
            snapshot = await self.fetch_snapshot(
                request.account, request.collateral_asset, request.debt_asset
            )
            plan = await self.planner.plan_close(snapshot, request)
            plan = self.validator.accept(plan, snapshot)
            logger.info(f"Accepted close plan {plan.plan_id}")
            return PlanResult.accepted(plan)

        except PlanningError as e:
            logger.warning(f"Close rejected for {request.account}: {e.reason.value}: {e}")
            return PlanResult.rejected(e)

    async def plan_loop(self, request: LoopRequest) -> PlanResult:
        """Plan a borrow/resupply loop without a flash loan."""
        try:
            params = await self._call(
                self.lending.get_market_params(request.asset),
                f"Market params for {request.asset.symbol}",
            )
            snapshot = PlanningSnapshot(collateral=params, debt=params)
            self._check_fresh(snapshot)

            plan = self.loop_planner.plan(request, params)
            plan = self.validator.accept(plan, snapshot)
            return self._loop_result(plan)

        except PlanningError as e:
            logger.warning(f"Loop rejected for {request.account}: {e.reason.value}: {e}")
            return PlanResult.rejected(e)

    # ========== HAND-OFF ==========

    async def submit(self, plan: Plan, consumer: TransactionConsumer) -> str:
        """
        Hand a validated plan to the transaction consumer.

        Raises:
            ValueError: plan has not been validated
        """
        if not plan.validated:
            raise ValueError(f"Plan {plan.plan_id} has not been validated")

        try:
            receipt = await consumer.consume(plan)
        except Exception as e:
            logger.error(f"Transaction consumer failed for plan {plan.plan_id}: {e}")
            raise

        logger.info(f"Plan {plan.plan_id} submitted: {receipt}")
        return receipt
