"""GraphQL queries for the lending market indexer.

Amounts are returned as raw minor-unit integers encoded as strings; prices,
LTVs and rates as decimal strings.
"""


class LendingQueries:
    """GraphQL query definitions for the lending indexer."""

    # Market parameters for a single reserve
    RESERVE_QUERY = """
    query GetReserve($coinType: String!) {
        reserve(coinType: $coinType) {
            coinType
            symbol
            decimals
            price
            maxLtv
            liquidationThreshold
            availableLiquidity
            supplyApy
            borrowApy
            rewardApr
            priceFeedId
            updatedAt
        }
    }
    """

    # One account's collateral and debt in a collateral/debt pair
    POSITION_QUERY = """
    query GetPosition($account: String!, $collateralCoinType: String!, $debtCoinType: String!) {
        position(
            account: $account
            collateralCoinType: $collateralCoinType
            debtCoinType: $debtCoinType
        ) {
            collateralAmount
            debtAmount
            updatedAt
            collateralReserve {
                price
                liquidationThreshold
            }
            debtReserve {
                price
            }
        }
    }
    """
