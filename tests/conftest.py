"""Pytest configuration and fixtures."""

import pytest

from config.settings import Settings
from src.core.models import MarketParams
from tests.factories import SUI, USDC, PriceQuoteProvider, make_params


@pytest.fixture
def settings() -> Settings:
    """Default settings without reading a .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def no_slippage_settings() -> Settings:
    """Settings with the open-path slippage buffer disabled."""
    return Settings(_env_file=None, swap_slippage_bps=0)


@pytest.fixture
def quote_provider() -> PriceQuoteProvider:
    return PriceQuoteProvider()


@pytest.fixture
def sui_params() -> MarketParams:
    return make_params(SUI, max_ltv="0.75", liquidation_threshold="0.8")


@pytest.fixture
def usdc_params() -> MarketParams:
    return make_params(USDC, max_ltv="0.8", liquidation_threshold="0.85")
