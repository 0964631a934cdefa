"""Leg, Plan and PlanResult models."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from src.core.errors import PlanningError
from src.core.models.amount import Asset, TokenAmount
from src.core.models.market import PositionState


def _utcnow() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


class LegType(Enum):
    """Kinds of atomic steps a plan can contain."""

    SUPPLY = "supply"
    BORROW = "borrow"
    SWAP = "swap"
    REPAY = "repay"
    WITHDRAW = "withdraw"
    FLASH_BORROW = "flash_borrow"
    FLASH_REPAY = "flash_repay"
    ORACLE_REFRESH = "oracle_refresh"
    TRANSFER = "transfer"


class PlanKind(Enum):
    """What a plan does to the position."""

    OPEN = "open"
    CLOSE = "close"
    LOOP = "loop"


class PlanStatus(Enum):
    """Outcome of a planning request."""

    OK = "ok"
    ITERATION_LIMIT_REACHED = "iteration_limit_reached"
    REJECTED = "rejected"


@dataclass(frozen=True)
class SwapQuote:
    """One candidate route returned by a swap quote provider."""

    amount_in: int
    amount_out: int
    asset_in: Asset
    asset_out: Asset
    source: str = ""

    def to_dict(self) -> dict:
        return {
            "amount_in": str(self.amount_in),
            "amount_out": str(self.amount_out),
            "asset_in": self.asset_in.symbol,
            "asset_out": self.asset_out.symbol,
            "source": self.source,
        }


@dataclass(frozen=True)
class FlashLoanQuote:
    """
    Terms of a flash loan.

    ``fee`` is always ceil(amount * fee_rate_bps / 10_000); under-paying by
    a single unit reverts the whole transaction.
    """

    asset: Asset
    amount: int
    fee_rate_bps: int
    fee: int

    @property
    def total_repayment(self) -> int:
        return self.amount + self.fee

    def to_dict(self) -> dict:
        return {
            "asset": self.asset.symbol,
            "amount": str(self.amount),
            "fee_rate_bps": self.fee_rate_bps,
            "fee": str(self.fee),
            "total_repayment": str(self.total_repayment),
        }


@dataclass(frozen=True)
class Leg:
    """
    One atomic step of a plan.

    ``amount=None`` means "all available" (e.g. settling dust back to the
    account). Swap legs also carry the output asset and the expected output.
    """

    kind: LegType
    asset: Asset
    amount: Optional[TokenAmount]
    asset_out: Optional[Asset] = None
    min_amount_out: Optional[TokenAmount] = None
    note: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_all_available(self) -> bool:
        return self.amount is None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "asset": self.asset.symbol,
            "amount": self.amount.to_dict() if self.amount else "all",
            "asset_out": self.asset_out.symbol if self.asset_out else None,
            "min_amount_out": self.min_amount_out.to_dict() if self.min_amount_out else None,
            "note": self.note,
            "metadata": {k: str(v) for k, v in self.metadata.items()},
        }


@dataclass(frozen=True)
class Plan:
    """
    Ordered legs plus the projected result of executing them.

    Built fresh for each request and never mutated; validation produces a
    copy with ``validated=True``.
    """

    kind: PlanKind
    legs: Tuple[Leg, ...]
    projected_position: PositionState
    leverage: Decimal
    health_factor: Decimal
    target_leverage: Decimal
    liquidation_price: Optional[Decimal] = None
    net_apy: Optional[Decimal] = None
    flash_loan: Optional[FlashLoanQuote] = None
    swap_quote: Optional[SwapQuote] = None
    status: PlanStatus = PlanStatus.OK
    warnings: Tuple[str, ...] = ()
    validated: bool = False
    plan_id: str = field(default_factory=lambda: uuid4().hex)
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def leg_kinds(self) -> List[LegType]:
        return [leg.kind for leg in self.legs]

    def legs_of(self, kind: LegType) -> List[Leg]:
        return [leg for leg in self.legs if leg.kind == kind]

    def index_of(self, kind: LegType) -> int:
        """Index of the first leg of ``kind``, or -1."""
        for i, leg in enumerate(self.legs):
            if leg.kind == kind:
                return i
        return -1

    def last_index_of(self, kind: LegType) -> int:
        """Index of the last leg of ``kind``, or -1."""
        for i in range(len(self.legs) - 1, -1, -1):
            if self.legs[i].kind == kind:
                return i
        return -1

    def mark_validated(self) -> "Plan":
        return replace(self, validated=True)

    def to_dict(self) -> dict:
        """Serialize for logging and for the transaction consumer."""
        return {
            "plan_id": self.plan_id,
            "kind": self.kind.value,
            "status": self.status.value,
            "legs": [leg.to_dict() for leg in self.legs],
            "projected_position": self.projected_position.to_dict(),
            "leverage": str(self.leverage),
            "target_leverage": str(self.target_leverage),
            "health_factor": str(self.health_factor),
            "liquidation_price": str(self.liquidation_price) if self.liquidation_price is not None else None,
            "net_apy": str(self.net_apy) if self.net_apy is not None else None,
            "flash_loan": self.flash_loan.to_dict() if self.flash_loan else None,
            "swap_quote": self.swap_quote.to_dict() if self.swap_quote else None,
            "warnings": list(self.warnings),
            "validated": self.validated,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class PlanResult:
    """Typed result of a planning request."""

    status: PlanStatus
    plan: Optional[Plan] = None
    error: Optional[PlanningError] = None

    @classmethod
    def accepted(cls, plan: Plan, error: Optional[PlanningError] = None) -> "PlanResult":
        return cls(status=plan.status, plan=plan, error=error)

    @classmethod
    def rejected(cls, error: PlanningError) -> "PlanResult":
        return cls(status=PlanStatus.REJECTED, error=error)

    @property
    def is_valid(self) -> bool:
        """A usable plan is present (possibly partial, see ``status``)."""
        return self.plan is not None and self.status != PlanStatus.REJECTED

    @property
    def achieved_leverage(self) -> Optional[Decimal]:
        return self.plan.leverage if self.plan else None

    @property
    def reason(self) -> Optional[str]:
        return self.error.reason.value if self.error else None
