"""GraphQL lending indexer client implementing LendingMarketProvider."""

import logging
from typing import Any, Dict, Optional

from aiolimiter import AsyncLimiter
from gql import Client, gql
from gql.transport.aiohttp import AIOHTTPTransport

from config.settings import Settings, get_settings
from src.core.models import Asset, MarketParams, PositionState
from src.providers.base import LendingMarketProvider
from src.providers.parser import LendingParser
from src.providers.queries import LendingQueries

logger = logging.getLogger(__name__)


class GraphQLLendingClient(LendingMarketProvider):
    """Reads positions and reserve parameters from a GraphQL indexer."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._rate_limiter = AsyncLimiter(
            self.settings.lending_api_rate_limit,
            self.settings.lending_api_rate_window,
        )
        self._parser = LendingParser()

    async def _execute(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        """Execute a GraphQL query with rate limiting."""
        async with self._rate_limiter:
            transport = AIOHTTPTransport(url=self.settings.lending_api_url)
            client = Client(transport=transport, fetch_schema_from_transport=False)
            async with client as session:
                result = await session.execute(gql(query), variable_values=variables)
                return result

    async def get_market_params(self, asset: Asset) -> MarketParams:
        """Fetch reserve parameters for ``asset``."""
        try:
            result = await self._execute(
                LendingQueries.RESERVE_QUERY,
                {"coinType": asset.coin_type},
            )
            reserve = result.get("reserve")
            if not reserve:
                raise LookupError(f"No reserve for {asset.symbol} ({asset.coin_type})")
            return self._parser.parse_reserve(reserve, asset)

        except Exception as e:
            logger.error(f"Failed to fetch reserve {asset.symbol}: {e}")
            raise

    async def get_position(
        self,
        account: str,
        collateral_asset: Asset,
        debt_asset: Asset,
    ) -> Optional[PositionState]:
        """Fetch the account's position in a collateral/debt pair."""
        try:
            result = await self._execute(
                LendingQueries.POSITION_QUERY,
                {
                    "account": account,
                    "collateralCoinType": collateral_asset.coin_type,
                    "debtCoinType": debt_asset.coin_type,
                },
            )
            position = self._parser.parse_position(
                result.get("position"), collateral_asset, debt_asset
            )
            if position is None:
                logger.debug(f"No {collateral_asset.symbol}/{debt_asset.symbol} position for {account}")
            return position

        except Exception as e:
            logger.error(f"Failed to fetch position for {account}: {e}")
            raise
