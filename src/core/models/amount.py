"""Asset and TokenAmount models."""

from dataclasses import dataclass
from decimal import Decimal

from src.core.constants import MAX_DECIMALS
from src.core.errors import InvalidAmount


@dataclass(frozen=True)
class Asset:
    """
    A token that can be supplied, borrowed, swapped or flash-borrowed.

    ``coin_type`` is the opaque on-chain identifier (e.g.
    ``0x2::sui::SUI``); two assets are the same when it matches.
    """

    symbol: str
    coin_type: str
    decimals: int

    def __post_init__(self):
        if not 0 <= self.decimals <= MAX_DECIMALS:
            raise InvalidAmount(
                f"Unsupported decimals for {self.symbol}: {self.decimals}",
                decimals=self.decimals,
            )

    def same_as(self, other: "Asset") -> bool:
        return self.coin_type == other.coin_type

    def amount(self, raw: int) -> "TokenAmount":
        """Wrap a raw minor-unit integer in this asset's precision."""
        return TokenAmount(raw, self.decimals)

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "coin_type": self.coin_type,
            "decimals": self.decimals,
        }


@dataclass(frozen=True)
class TokenAmount:
    """
    Unsigned integer amount in minor units.

    Never holds a float. ``to_decimal`` exists for display and estimation
    only; leg amounts are always taken from ``raw``.
    """

    raw: int
    decimals: int

    def __post_init__(self):
        if isinstance(self.raw, bool) or not isinstance(self.raw, int):
            raise InvalidAmount(f"Amount must be an integer, got {self.raw!r}")
        if self.raw < 0:
            raise InvalidAmount(f"Amount must not be negative: {self.raw}")
        if not 0 <= self.decimals <= MAX_DECIMALS:
            raise InvalidAmount(f"Unsupported decimals: {self.decimals}")

    @classmethod
    def zero(cls, decimals: int) -> "TokenAmount":
        return cls(0, decimals)

    @property
    def is_zero(self) -> bool:
        return self.raw == 0

    def _check_compatible(self, other: "TokenAmount") -> None:
        if self.decimals != other.decimals:
            raise InvalidAmount(
                f"Cannot combine amounts with {self.decimals} and {other.decimals} decimals"
            )

    def __add__(self, other: "TokenAmount") -> "TokenAmount":
        self._check_compatible(other)
        return TokenAmount(self.raw + other.raw, self.decimals)

    def __sub__(self, other: "TokenAmount") -> "TokenAmount":
        self._check_compatible(other)
        if other.raw > self.raw:
            raise InvalidAmount(f"Subtraction underflow: {self.raw} - {other.raw}")
        return TokenAmount(self.raw - other.raw, self.decimals)

    def to_decimal(self) -> Decimal:
        """Human-unit value (exact Decimal)."""
        return Decimal(self.raw).scaleb(-self.decimals)

    def to_dict(self) -> dict:
        return {"raw": str(self.raw), "decimals": self.decimals}
