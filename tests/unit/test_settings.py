"""Unit tests for configuration loading."""

import pytest
from decimal import Decimal

from pydantic import ValidationError

from config.settings import Settings, get_settings


class TestSettingsDefaults:
    """Tests for default buffer values."""

    def test_defaults(self, settings):
        assert settings.swap_slippage_bps == 200
        assert settings.close_flash_buffer_bps == 500
        assert settings.close_swap_margin_bps == 200
        assert settings.full_close_tolerance_bps == 200
        assert settings.withdraw_cap_bps == 9990
        assert settings.max_leverage_safety_factor == Decimal("0.95")
        assert settings.loop_effective_ltv == Decimal("0.72")
        assert settings.loop_max_iterations == 8
        assert settings.min_borrow_raw == 1000
        assert settings.max_snapshot_age_seconds == 60
        assert settings.flash_loan_default_fee_bps == 6
        assert settings.flash_loan_fee_bps == {}

    def test_get_settings_cached(self):
        get_settings.cache_clear()
        assert get_settings() is get_settings()
        get_settings.cache_clear()


class TestSettingsEnvironment:
    """Tests for environment overrides."""

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("LEVERAGE_SWAP_SLIPPAGE_BPS", "150")
        monkeypatch.setenv("LEVERAGE_LOOP_EFFECTIVE_LTV", "0.65")
        settings = Settings(_env_file=None)

        assert settings.swap_slippage_bps == 150
        assert settings.loop_effective_ltv == Decimal("0.65")

    def test_coin_map_pairs(self, monkeypatch):
        monkeypatch.setenv("LEVERAGE_FLASH_LOAN_FEE_BPS", "0x2::sui::SUI=9, 0xusdc::usdc::USDC=5")
        settings = Settings(_env_file=None)

        assert settings.flash_loan_fee_bps == {"0x2::sui::SUI": 9, "0xusdc::usdc::USDC": 5}

    def test_coin_map_json(self, monkeypatch):
        monkeypatch.setenv("LEVERAGE_FLASH_LOAN_MAX_AMOUNTS", '{"0x2::sui::SUI": 1000000000000}')
        settings = Settings(_env_file=None)

        assert settings.flash_loan_max_amounts == {"0x2::sui::SUI": 1_000_000_000_000}

    def test_empty_coin_map(self, monkeypatch):
        monkeypatch.setenv("LEVERAGE_FLASH_LOAN_FEE_BPS", "")
        assert Settings(_env_file=None).flash_loan_fee_bps == {}


class TestSettingsValidation:
    """Tests for rejected configurations."""

    def test_malformed_pair(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, flash_loan_fee_bps="no-equals-sign")

    def test_fee_out_of_range(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, flash_loan_fee_bps={"0x2::sui::SUI": 20_000})

    def test_negative_capacity(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, flash_loan_max_amounts={"0x2::sui::SUI": -1})

    @pytest.mark.parametrize(
        "field,value",
        [
            ("loop_effective_ltv", "1"),
            ("loop_max_iterations", 0),
            ("max_leverage_safety_factor", "1.5"),
            ("withdraw_cap_bps", 10_001),
            ("provider_timeout_seconds", 0),
        ],
    )
    def test_bounds(self, field, value):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **{field: value})
