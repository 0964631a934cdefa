"""Unit tests for the concrete providers and the indexer parser."""

import pytest
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, patch

from src.core.errors import InvalidAmount, StaleMarketData
from src.core.models import MarketParams, PositionState
from src.providers.aggregator import AggregatorQuoteClient
from src.providers.flash_loan import ConfiguredFlashLoanProvider
from src.providers.lending_graphql import GraphQLLendingClient
from src.providers.parser import LendingParser
from src.providers.queries import LendingQueries
from tests.factories import SUI, USDC


@pytest.fixture
def reserve_data():
    """Sample reserve response from the lending indexer."""
    return {
        "coinType": SUI.coin_type,
        "symbol": "SUI",
        "decimals": 9,
        "price": "2.0512",
        "maxLtv": "0.75",
        "liquidationThreshold": "0.8",
        "availableLiquidity": "125000000000000",
        "supplyApy": "0.0312",
        "borrowApy": "0.0456",
        "rewardApr": None,
        "priceFeedId": "0x2cab9b151ca1721624b09b421cc57d0bb26a1feb5da1f821492204b098ec35c9",
        "updatedAt": "2024-06-01T12:00:00Z",
    }


@pytest.fixture
def position_data():
    """Sample position response (1000 SUI against 1000 USDC)."""
    return {
        "collateralAmount": "1000000000000",
        "debtAmount": "1000000000",
        "updatedAt": 1717243200,
        "collateralReserve": {"price": "2", "liquidationThreshold": "0.8"},
        "debtReserve": {"price": "1"},
    }


class TestLendingParser:
    """Tests for LendingParser."""

    def test_parse_raw_amount(self):
        assert LendingParser.parse_raw_amount("1000000000000000000000") == 10**21
        assert LendingParser.parse_raw_amount(42) == 42
        assert LendingParser.parse_raw_amount(None) == 0

    @pytest.mark.parametrize("value", ["1.5", "-3", "1e9", True])
    def test_parse_raw_amount_rejects(self, value):
        with pytest.raises(InvalidAmount):
            LendingParser.parse_raw_amount(value)

    def test_parse_decimal(self):
        assert LendingParser.parse_decimal("0.123") == Decimal("0.123")
        assert LendingParser.parse_decimal(None) == Decimal("0")
        assert LendingParser.parse_decimal(None, default=None) is None

    def test_parse_decimal_invalid(self):
        with pytest.raises(InvalidAmount):
            LendingParser.parse_decimal("invalid")

    def test_parse_timestamp(self):
        assert LendingParser.parse_timestamp(1717243200) == datetime(2024, 6, 1, 12, tzinfo=timezone.utc)
        assert LendingParser.parse_timestamp("2024-06-01T12:00:00Z").tzinfo is not None
        assert LendingParser.parse_timestamp("2024-06-01T12:00:00").tzinfo == timezone.utc

    @pytest.mark.parametrize("value", [None, "", "yesterday", True])
    def test_parse_timestamp_unusable(self, value):
        assert LendingParser.parse_timestamp(value) is None

    @pytest.mark.parametrize("value", [None, "not-a-date"])
    def test_reserve_without_timestamp_is_stale(self, reserve_data, value):
        reserve_data["updatedAt"] = value
        with pytest.raises(StaleMarketData):
            LendingParser.parse_reserve(reserve_data, SUI)

    def test_position_without_timestamp_is_stale(self, position_data):
        del position_data["updatedAt"]
        with pytest.raises(StaleMarketData):
            LendingParser.parse_position(position_data, SUI, USDC)

    def test_parse_reserve(self, reserve_data):
        params = LendingParser.parse_reserve(reserve_data, SUI)

        assert isinstance(params, MarketParams)
        assert params.asset == SUI
        assert params.price == Decimal("2.0512")
        assert params.max_ltv == Decimal("0.75")
        assert params.available_liquidity.raw == 125_000_000_000_000
        assert params.rates.borrow_apy == Decimal("0.0456")
        assert params.rates.reward_apr is None
        assert params.requires_oracle_refresh

    def test_parse_reserve_decimals_mismatch(self, reserve_data):
        reserve_data["decimals"] = 18
        with pytest.raises(InvalidAmount):
            LendingParser.parse_reserve(reserve_data, SUI)

    def test_parse_position(self, position_data):
        position = LendingParser.parse_position(position_data, SUI, USDC)

        assert isinstance(position, PositionState)
        assert position.collateral_amount.raw == 10**12
        assert position.debt_amount.raw == 10**9
        assert position.collateral_value == Decimal("2000")
        assert position.debt_value == Decimal("1000")

    def test_parse_empty_position(self, position_data):
        position_data["collateralAmount"] = "0"
        position_data["debtAmount"] = "0"
        assert LendingParser.parse_position(position_data, SUI, USDC) is None
        assert LendingParser.parse_position(None, SUI, USDC) is None


class TestGraphQLLendingClient:
    """Tests for GraphQLLendingClient."""

    @pytest.fixture
    def client(self, settings):
        return GraphQLLendingClient(settings)

    @pytest.mark.asyncio
    async def test_get_market_params(self, client, reserve_data):
        with patch.object(client, "_execute", new_callable=AsyncMock) as mock_execute:
            mock_execute.return_value = {"reserve": reserve_data}

            params = await client.get_market_params(SUI)

            assert params.liquidation_threshold == Decimal("0.8")
            mock_execute.assert_awaited_once_with(
                LendingQueries.RESERVE_QUERY, {"coinType": SUI.coin_type}
            )

    @pytest.mark.asyncio
    async def test_missing_reserve_raises(self, client):
        with patch.object(client, "_execute", new_callable=AsyncMock) as mock_execute:
            mock_execute.return_value = {"reserve": None}

            with pytest.raises(LookupError):
                await client.get_market_params(SUI)

    @pytest.mark.asyncio
    async def test_reserve_without_timestamp_rejected(self, client, reserve_data):
        del reserve_data["updatedAt"]
        with patch.object(client, "_execute", new_callable=AsyncMock) as mock_execute:
            mock_execute.return_value = {"reserve": reserve_data}

            with pytest.raises(StaleMarketData):
                await client.get_market_params(SUI)

    @pytest.mark.asyncio
    async def test_get_position(self, client, position_data):
        with patch.object(client, "_execute", new_callable=AsyncMock) as mock_execute:
            mock_execute.return_value = {"position": position_data}

            position = await client.get_position("0xabc", SUI, USDC)

            assert position.debt_amount.raw == 10**9
            variables = mock_execute.call_args[0][1]
            assert variables["account"] == "0xabc"
            assert variables["debtCoinType"] == USDC.coin_type

    @pytest.mark.asyncio
    async def test_no_position(self, client):
        with patch.object(client, "_execute", new_callable=AsyncMock) as mock_execute:
            mock_execute.return_value = {"position": None}
            assert await client.get_position("0xabc", SUI, USDC) is None

    @pytest.mark.asyncio
    async def test_transport_error_propagates(self, client):
        with patch.object(client, "_execute", new_callable=AsyncMock) as mock_execute:
            mock_execute.side_effect = ConnectionError("indexer down")

            with pytest.raises(ConnectionError):
                await client.get_position("0xabc", SUI, USDC)


class TestAggregatorQuoteClient:
    """Tests for AggregatorQuoteClient."""

    @pytest.fixture
    def client(self, settings):
        return AggregatorQuoteClient(settings)

    @pytest.mark.asyncio
    async def test_parses_routes(self, client):
        routes = [
            {"provider": "cetus", "amountIn": "1000000", "amountOut": "487000000"},
            {"provider": "bluefin", "amountIn": "1000000", "amountOut": "480000000", "simulatedAmountOut": "489000000"},
        ]
        with patch.object(client, "_fetch", new_callable=AsyncMock) as mock_fetch:
            mock_fetch.return_value = routes

            quotes = await client.quote(1_000_000, USDC, SUI)

            assert [q.amount_out for q in quotes] == [487_000_000, 489_000_000]
            assert quotes[1].source == "bluefin"
            params = mock_fetch.call_args[0][0]
            assert params["amountIn"] == "1000000"
            assert params["coinTypeIn"] == USDC.coin_type
            assert "partner" not in params

    @pytest.mark.asyncio
    async def test_wrapped_response_and_partner(self, settings):
        client = AggregatorQuoteClient(settings.model_copy(update={"aggregator_partner": "0xpartner"}))
        with patch.object(client, "_fetch", new_callable=AsyncMock) as mock_fetch:
            mock_fetch.return_value = {"quotes": [{"provider": "a", "amountOut": "5"}]}

            quotes = await client.quote(10, USDC, SUI)

            assert quotes[0].amount_in == 10
            assert mock_fetch.call_args[0][0]["partner"] == "0xpartner"

    @pytest.mark.asyncio
    async def test_skips_malformed_route(self, client):
        with patch.object(client, "_fetch", new_callable=AsyncMock) as mock_fetch:
            mock_fetch.return_value = [
                {"provider": "bad", "amountOut": "1.5"},
                {"provider": "good", "amountOut": "7"},
            ]
            quotes = await client.quote(10, USDC, SUI)
            assert [q.source for q in quotes] == ["good"]

    @pytest.mark.asyncio
    async def test_http_error_propagates(self, client):
        with patch.object(client, "_fetch", new_callable=AsyncMock) as mock_fetch:
            mock_fetch.side_effect = RuntimeError("503")
            with pytest.raises(RuntimeError):
                await client.quote(10, USDC, SUI)

    def test_quote_url(self, settings):
        client = AggregatorQuoteClient(settings.model_copy(update={"aggregator_api_url": "https://agg.example/"}))
        assert client._quote_url() == "https://agg.example/quote"


class TestConfiguredFlashLoanProvider:
    """Tests for ConfiguredFlashLoanProvider."""

    @pytest.mark.asyncio
    async def test_configured_terms(self, settings):
        provider = ConfiguredFlashLoanProvider(
            settings,
            fee_bps={USDC.coin_type: 9},
            max_amounts={USDC.coin_type: 5 * 10**12},
        )
        assert await provider.fee_rate_bps(USDC) == 9
        assert (await provider.max_loan_amount(USDC)).raw == 5 * 10**12

    @pytest.mark.asyncio
    async def test_defaults(self, settings):
        provider = ConfiguredFlashLoanProvider(settings)
        assert await provider.fee_rate_bps(SUI) == 6
        assert (await provider.max_loan_amount(SUI)).is_zero

    @pytest.mark.asyncio
    async def test_settings_maps(self, settings):
        configured = settings.model_copy(update={"flash_loan_max_amounts": {SUI.coin_type: 10**15}})
        provider = ConfiguredFlashLoanProvider(configured)
        assert (await provider.max_loan_amount(SUI)).raw == 10**15

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"fee_bps": {"x": -1}},
            {"fee_bps": {"x": 10_001}},
            {"max_amounts": {"x": -5}},
            {"max_amounts": {"x": 1.5}},
        ],
    )
    def test_invalid_configuration(self, settings, kwargs):
        with pytest.raises(InvalidAmount):
            ConfiguredFlashLoanProvider(settings, **kwargs)
