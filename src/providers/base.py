"""Provider interfaces consumed by the leverage engine.

The engine never talks to a chain, an indexer or a swap venue directly; it
depends on these abstract classes only. Concrete clients live next to this
module, test doubles in ``tests/conftest.py``.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from src.core.models import Asset, MarketParams, Plan, PositionState, SwapQuote, TokenAmount


class LendingMarketProvider(ABC):
    """Read-only access to lending-market state."""

    @abstractmethod
    async def get_position(
        self,
        account: str,
        collateral_asset: Asset,
        debt_asset: Asset,
    ) -> Optional[PositionState]:
        """Fetch the account's collateral and debt in one market.

        Args:
            account: Account / wallet address
            collateral_asset: Supplied asset
            debt_asset: Borrowed asset

        Returns:
            PositionState, or None when the account has nothing open
        """
        ...

    @abstractmethod
    async def get_market_params(self, asset: Asset) -> MarketParams:
        """Fetch LTV, liquidation threshold, liquidity, price and rates for an asset."""
        ...

    async def close(self) -> None:
        """Close any open connections and clean up resources."""
        return None


class SwapQuoteProvider(ABC):
    """Source of swap routes."""

    @abstractmethod
    async def quote(
        self,
        amount_in: int,
        asset_in: Asset,
        asset_out: Asset,
    ) -> List[SwapQuote]:
        """Quote swapping ``amount_in`` minor units of ``asset_in``.

        Returns:
            Zero or more candidate routes; an empty list means no liquidity
        """
        ...

    async def close(self) -> None:
        """Close any open connections and clean up resources."""
        return None


class FlashLoanProvider(ABC):
    """Flash-loan facility terms."""

    @abstractmethod
    async def fee_rate_bps(self, asset: Asset) -> int:
        """Fee charged on a flash loan of ``asset``, in basis points."""
        ...

    @abstractmethod
    async def max_loan_amount(self, asset: Asset) -> TokenAmount:
        """Largest flash loan of ``asset`` currently available."""
        ...


class TransactionConsumer(ABC):
    """Assembles a validated plan into one atomic transaction and executes it."""

    @abstractmethod
    async def consume(self, plan: Plan) -> str:
        """Execute the plan's legs in order, all or nothing.

        Returns:
            Opaque receipt (e.g. transaction digest)
        """
        ...
