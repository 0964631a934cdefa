"""Swap quote resolution.

Providers return zero or more candidate routes; the planner only ever sees
the single best one.
"""

import asyncio
import logging
from typing import Iterable, Optional

from src.core.errors import InvalidAmount, NoLiquidity, ProviderTimeout
from src.core.models import Asset, SwapQuote
from src.providers.base import SwapQuoteProvider

logger = logging.getLogger(__name__)


def select_best_quote(quotes: Iterable[SwapQuote]) -> Optional[SwapQuote]:
    """
    Pick the route with the largest output.

    Only a strictly greater output replaces the current best, so the first
    quote seen wins a tie.
    """
    best = None
    for quote in quotes:
        if best is None or quote.amount_out > best.amount_out:
            best = quote
    return best


class QuoteResolver:
    """Fetches quotes with a timeout and reduces them to the best route."""

    def __init__(self, provider: SwapQuoteProvider, timeout: float = 10.0):
        self.provider = provider
        self.timeout = timeout

    async def best_quote(self, amount_in: int, asset_in: Asset, asset_out: Asset) -> SwapQuote:
        """
        Best quote for swapping ``amount_in`` of ``asset_in``.

        Raises:
            InvalidAmount: amount_in is not positive
            ProviderTimeout: provider did not answer within ``timeout``
            NoLiquidity: no route, or every route outputs nothing
        """
        if amount_in <= 0:
            raise InvalidAmount(f"Swap input must be positive, got {amount_in}")

        try:
            quotes = await asyncio.wait_for(
                self.provider.quote(amount_in, asset_in, asset_out),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise ProviderTimeout(
                f"Swap quote {asset_in.symbol}->{asset_out.symbol} timed out after {self.timeout}s",
                amount_in=amount_in,
            ) from e

        best = select_best_quote(quotes or [])
        if best is None or best.amount_out <= 0:
            raise NoLiquidity(
                f"No swap route for {asset_in.symbol}->{asset_out.symbol}",
                amount_in=amount_in,
            )

        logger.debug(
            f"Best of {len(quotes)} quotes for {amount_in} {asset_in.symbol}: "
            f"{best.amount_out} {asset_out.symbol} via {best.source or 'unknown'}"
        )
        return best
