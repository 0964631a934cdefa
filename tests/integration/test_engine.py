"""Integration tests for the LeverageEngine facade."""

import asyncio
import pytest
import pytest_asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from config.settings import Settings
from src.core.errors import IterationLimitReached
from src.core.models import (
    ClosePositionRequest,
    LegType,
    LoopRequest,
    OpenPositionRequest,
    PlanKind,
    PlanStatus,
)
from src.engine.service import LeverageEngine
from src.providers.base import TransactionConsumer
from tests.factories import (
    SUI,
    USDC,
    PriceQuoteProvider,
    StaticFlashLoanProvider,
    StaticLendingProvider,
    make_params,
    make_position,
)


ACCOUNT = "0x7d2f4a9c"


class SlowLendingProvider(StaticLendingProvider):
    """Position reads that never finish within the timeout."""

    async def get_position(self, account, collateral_asset, debt_asset):
        await asyncio.sleep(5)
        return self.position


class TestLeverageEngine:
    """Integration tests for LeverageEngine."""

    @pytest.fixture
    def markets(self, sui_params, usdc_params):
        return {SUI.coin_type: sui_params, USDC.coin_type: usdc_params}

    @pytest.fixture
    def position(self):
        """1000 SUI supplied against 1000 USDC borrowed."""
        return make_position(SUI, 10**12, USDC, 10**9)

    @pytest.fixture
    def engine(self, settings, markets, position):
        return LeverageEngine(
            StaticLendingProvider(markets, position),
            PriceQuoteProvider(),
            StaticFlashLoanProvider(),
            settings,
        )

    @pytest.fixture
    def open_request(self):
        return OpenPositionRequest(
            account=ACCOUNT,
            deposit_asset=SUI,
            loan_asset=USDC,
            deposit_amount=SUI.amount(100 * 10**9),
            target_leverage=Decimal("2"),
        )

    @pytest.mark.asyncio
    async def test_open_accepted(self, engine, open_request):
        result = await engine.plan_open(open_request)

        assert result.status == PlanStatus.OK
        assert result.is_valid
        assert result.error is None

        plan = result.plan
        assert plan.validated
        assert plan.kind == PlanKind.OPEN
        assert plan.legs[0].kind == LegType.FLASH_BORROW
        assert plan.flash_loan.amount == 204_000_000
        assert plan.flash_loan.fee == 122_400
        assert Decimal("1.9") < plan.leverage < Decimal("2.1")
        assert plan.health_factor > 1

    @pytest.mark.asyncio
    async def test_open_out_of_range_rejected(self, engine, open_request):
        result = await engine.plan_open(replace(open_request, target_leverage=Decimal("5")))

        assert result.status == PlanStatus.REJECTED
        assert result.plan is None
        assert not result.is_valid
        assert result.reason == "leverage_out_of_range"

    @pytest.mark.asyncio
    async def test_same_asset_falls_back_to_loop(self, settings, markets):
        engine = LeverageEngine(
            StaticLendingProvider(markets),
            PriceQuoteProvider(),
            StaticFlashLoanProvider(capacity=0),
            settings,
        )
        request = OpenPositionRequest(
            account=ACCOUNT,
            deposit_asset=USDC,
            loan_asset=USDC,
            deposit_amount=USDC.amount(100_000_000),
            target_leverage=Decimal("2"),
        )

        result = await engine.plan_open(request)

        assert result.status == PlanStatus.OK
        assert result.plan.kind == PlanKind.LOOP
        assert result.plan.flash_loan is None
        assert result.plan.leverage == Decimal("1.96")
        assert [leg.amount.raw for leg in result.plan.legs_of(LegType.BORROW)] == [68_400_000, 27_600_000]

    @pytest.mark.asyncio
    async def test_close_accepted(self, engine):
        result = await engine.plan_close(ClosePositionRequest(ACCOUNT, SUI, USDC))

        assert result.status == PlanStatus.OK
        plan = result.plan
        assert plan.validated
        assert plan.kind == PlanKind.CLOSE
        assert plan.legs_of(LegType.REPAY)[0].amount.raw == 10**9
        assert plan.projected_position.debt_amount.is_zero
        assert plan.leverage == 1
        assert plan.swap_quote.amount_out >= plan.flash_loan.total_repayment

    @pytest.mark.asyncio
    async def test_close_looped_position(self, settings, markets):
        """A same-asset position unwinds without any swap route."""
        position = make_position(USDC, 196_000_000, USDC, 96_000_000)
        quotes = PriceQuoteProvider(fee_bps=[])
        engine = LeverageEngine(
            StaticLendingProvider(markets, position),
            quotes,
            StaticFlashLoanProvider(),
            settings,
        )

        result = await engine.plan_close(ClosePositionRequest(ACCOUNT, USDC, USDC))

        assert result.status == PlanStatus.OK
        assert result.plan.validated
        assert LegType.SWAP not in result.plan.leg_kinds
        assert result.plan.projected_position.debt_amount.is_zero
        assert quotes.calls == []

    @pytest.mark.asyncio
    async def test_close_without_position_rejected(self, settings, markets):
        engine = LeverageEngine(
            StaticLendingProvider(markets),
            PriceQuoteProvider(),
            StaticFlashLoanProvider(),
            settings,
        )
        result = await engine.plan_close(ClosePositionRequest(ACCOUNT, SUI, USDC))

        assert result.status == PlanStatus.REJECTED
        assert result.reason == "invalid_amount"

    @pytest.mark.asyncio
    async def test_loop_iteration_limit(self, markets):
        settings = Settings(_env_file=None, loop_max_iterations=4)
        engine = LeverageEngine(
            StaticLendingProvider(markets),
            PriceQuoteProvider(),
            StaticFlashLoanProvider(),
            settings,
        )
        request = LoopRequest(ACCOUNT, USDC, USDC.amount(100_000_000), Decimal("3"))

        result = await engine.plan_loop(request)

        assert result.status == PlanStatus.ITERATION_LIMIT_REACHED
        assert result.is_valid
        assert result.plan.validated
        assert result.achieved_leverage == Decimal("2.69075873")
        assert isinstance(result.error, IterationLimitReached)
        assert result.error.iterations == 4
        assert result.reason == "iteration_limit_reached"

    @pytest.mark.asyncio
    async def test_stale_market_data_rejected(self, settings, usdc_params, open_request):
        stale = make_params(SUI)
        stale = replace(stale, updated_at=datetime.now(timezone.utc) - timedelta(minutes=10))
        engine = LeverageEngine(
            StaticLendingProvider({SUI.coin_type: stale, USDC.coin_type: usdc_params}),
            PriceQuoteProvider(),
            StaticFlashLoanProvider(),
            settings,
        )

        result = await engine.plan_open(open_request)

        assert result.status == PlanStatus.REJECTED
        assert result.reason == "stale_market_data"

    @pytest.mark.asyncio
    async def test_provider_timeout_rejected(self, markets, open_request):
        settings = Settings(_env_file=None, provider_timeout_seconds=0.05)
        engine = LeverageEngine(
            SlowLendingProvider(markets),
            PriceQuoteProvider(),
            StaticFlashLoanProvider(),
            settings,
        )

        result = await engine.plan_open(open_request)

        assert result.status == PlanStatus.REJECTED
        assert result.reason == "provider_timeout"

    @pytest.mark.asyncio
    async def test_provider_failure_propagates(self, settings, markets, open_request):
        lending = MagicMock(spec=StaticLendingProvider)
        lending.get_position = AsyncMock(side_effect=ConnectionError("indexer down"))
        lending.get_market_params = AsyncMock(return_value=markets[SUI.coin_type])
        engine = LeverageEngine(lending, PriceQuoteProvider(), StaticFlashLoanProvider(), settings)

        with pytest.raises(ConnectionError):
            await engine.plan_open(open_request)

    @pytest.mark.asyncio
    async def test_bounds(self, engine):
        bounds = await engine.bounds(ACCOUNT, SUI, USDC)

        assert bounds.max_leverage == Decimal("3.8")
        assert bounds.health_factor == Decimal("1.6")
        assert bounds.current_ltv == Decimal("0.5")
        assert bounds.max_borrow_value == Decimal("500")
        assert bounds.max_withdraw.raw == 316_666_666_666


class TestSubmit:
    """Tests for handing plans to the transaction consumer."""

    @pytest.fixture
    def engine(self, settings, sui_params, usdc_params):
        return LeverageEngine(
            StaticLendingProvider({SUI.coin_type: sui_params, USDC.coin_type: usdc_params}),
            PriceQuoteProvider(),
            StaticFlashLoanProvider(),
            settings,
        )

    @pytest.fixture
    def consumer(self):
        consumer = MagicMock(spec=TransactionConsumer)
        consumer.consume = AsyncMock(return_value="0xdigest")
        return consumer

    @pytest_asyncio.fixture
    async def validated_plan(self, engine):
        request = OpenPositionRequest(ACCOUNT, SUI, USDC, SUI.amount(10 * 10**9), Decimal("1.5"))
        result = await engine.plan_open(request)
        return result.plan

    @pytest.mark.asyncio
    async def test_submit_validated(self, engine, consumer, validated_plan):
        receipt = await engine.submit(validated_plan, consumer)

        assert receipt == "0xdigest"
        consumer.consume.assert_awaited_once_with(validated_plan)

    @pytest.mark.asyncio
    async def test_submit_unvalidated_raises(self, engine, consumer, validated_plan):
        with pytest.raises(ValueError):
            await engine.submit(replace(validated_plan, validated=False), consumer)
        consumer.consume.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_consumer_error_propagates(self, engine, consumer, validated_plan):
        consumer.consume.side_effect = RuntimeError("rejected by node")
        with pytest.raises(RuntimeError):
            await engine.submit(validated_plan, consumer)
