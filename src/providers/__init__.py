"""Provider interfaces and concrete clients.

Provides the abstract collaborators the engine depends on plus clients for
a GraphQL lending indexer, a REST swap aggregator and a configured
flash-loan facility.
"""

from src.providers.base import (
    FlashLoanProvider,
    LendingMarketProvider,
    SwapQuoteProvider,
    TransactionConsumer,
)
from src.providers.aggregator import AggregatorQuoteClient
from src.providers.flash_loan import ConfiguredFlashLoanProvider
from src.providers.lending_graphql import GraphQLLendingClient

__all__ = [
    "FlashLoanProvider",
    "LendingMarketProvider",
    "SwapQuoteProvider",
    "TransactionConsumer",
    "AggregatorQuoteClient",
    "ConfiguredFlashLoanProvider",
    "GraphQLLendingClient",
]
