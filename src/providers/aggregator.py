"""Swap aggregator REST client implementing SwapQuoteProvider."""

import logging
from typing import Any, Dict, List, Optional

import aiohttp
from aiolimiter import AsyncLimiter

from config.settings import Settings, get_settings
from src.core.errors import InvalidAmount
from src.core.models import Asset, SwapQuote
from src.providers.base import SwapQuoteProvider
from src.providers.parser import LendingParser

logger = logging.getLogger(__name__)


class AggregatorQuoteClient(SwapQuoteProvider):
    """
    Fetches candidate routes from a meta-aggregator.

    ``GET {aggregator_api_url}/quote`` returns a JSON list of routes (or an
    object with a ``quotes`` list). When a route carries a simulated output
    it is preferred over the advertised one.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._rate_limiter = AsyncLimiter(
            self.settings.aggregator_rate_limit,
            self.settings.aggregator_rate_window,
        )
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.settings.provider_timeout_seconds)
            )
        return self._session

    async def close(self) -> None:
        """Close the session."""
        if self._session and not self._session.closed:
            await self._session.close()

    def _quote_url(self) -> str:
        return self.settings.aggregator_api_url.rstrip("/") + "/quote"

    async def _fetch(self, params: Dict[str, str]) -> Any:
        """GET the quote endpoint with rate limiting."""
        async with self._rate_limiter:
            session = await self._get_session()
            async with session.get(self._quote_url(), params=params) as resp:
                resp.raise_for_status()
                return await resp.json()

    def _parse_route(self, route: Dict[str, Any], amount_in: int, asset_in: Asset, asset_out: Asset) -> SwapQuote:
        out = route.get("simulatedAmountOut") or route.get("amountOut")
        return SwapQuote(
            amount_in=LendingParser.parse_raw_amount(route.get("amountIn", amount_in)),
            amount_out=LendingParser.parse_raw_amount(out),
            asset_in=asset_in,
            asset_out=asset_out,
            source=str(route.get("provider") or route.get("source") or ""),
        )

    async def quote(self, amount_in: int, asset_in: Asset, asset_out: Asset) -> List[SwapQuote]:
        """Quote ``amount_in`` minor units of ``asset_in`` into ``asset_out``."""
        params = {
            "amountIn": str(amount_in),
            "coinTypeIn": asset_in.coin_type,
            "coinTypeOut": asset_out.coin_type,
        }
        if self.settings.aggregator_partner:
            params["partner"] = self.settings.aggregator_partner

        try:
            data = await self._fetch(params)
        except Exception as e:
            logger.error(f"Failed to fetch {asset_in.symbol}->{asset_out.symbol} quotes: {e}")
            raise

        routes = data.get("quotes", []) if isinstance(data, dict) else data
        quotes = []
        for route in routes or []:
            try:
                quotes.append(self._parse_route(route, amount_in, asset_in, asset_out))
            except InvalidAmount as e:
                logger.warning(f"Skipping malformed route {route.get('provider', 'unknown')}: {e}")
                continue

        logger.debug(f"{len(quotes)} routes for {amount_in} {asset_in.symbol}->{asset_out.symbol}")
        return quotes
