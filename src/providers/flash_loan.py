"""Flash-loan provider backed by explicit configuration."""

import logging
from typing import Dict, Optional

from config.settings import Settings, get_settings
from src.core.constants import BPS_DENOMINATOR
from src.core.errors import InvalidAmount
from src.core.models import Asset, TokenAmount
from src.providers.base import FlashLoanProvider

logger = logging.getLogger(__name__)


class ConfiguredFlashLoanProvider(FlashLoanProvider):
    """
    Fee rates and capacities keyed by coin type.

    Assets without a configured fee use ``flash_loan_default_fee_bps``;
    assets without a configured capacity cannot be flash-borrowed (capacity
    zero), which sends same-asset opens to the loop planner.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        fee_bps: Optional[Dict[str, int]] = None,
        max_amounts: Optional[Dict[str, int]] = None,
    ):
        self.settings = settings or get_settings()
        self._fee_bps = dict(self.settings.flash_loan_fee_bps)
        self._fee_bps.update(fee_bps or {})
        self._max_amounts = dict(self.settings.flash_loan_max_amounts)
        self._max_amounts.update(max_amounts or {})

        for coin, bps in self._fee_bps.items():
            if isinstance(bps, bool) or not isinstance(bps, int) or not 0 <= bps <= BPS_DENOMINATOR:
                raise InvalidAmount(f"Flash-loan fee for {coin} out of range: {bps!r}")
        for coin, amount in self._max_amounts.items():
            if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
                raise InvalidAmount(f"Flash-loan capacity for {coin} invalid: {amount!r}")

    async def fee_rate_bps(self, asset: Asset) -> int:
        return self._fee_bps.get(asset.coin_type, self.settings.flash_loan_default_fee_bps)

    async def max_loan_amount(self, asset: Asset) -> TokenAmount:
        amount = self._max_amounts.get(asset.coin_type, 0)
        if amount == 0:
            logger.debug(f"No flash-loan capacity configured for {asset.symbol}")
        return asset.amount(amount)
