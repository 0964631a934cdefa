"""Constants shared by the amount math and the planners."""

from decimal import Decimal

# Basis points denominator (1 bps = 0.01%)
BPS_DENOMINATOR = 10_000

# Largest token precision accepted for an Asset / TokenAmount
MAX_DECIMALS = 36

# Health factor / leverage sentinel for positions without debt
INFINITY = Decimal("Infinity")

# Requested repay within this band of on-chain debt means "close it all"
# (see Settings.full_close_tolerance_bps for the configurable width)
DEFAULT_FULL_CLOSE_TOLERANCE_BPS = 200

# Fallback ceiling when a market reports max LTV >= 1
DEFAULT_MAX_LEVERAGE_FALLBACK = Decimal("10")
