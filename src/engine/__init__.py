"""Leverage planning engine components."""

from .risk import RiskCalculator
from .quotes import QuoteResolver, select_best_quote
from .planner import LegPlanner
from .loop_planner import IterativeLoopPlanner
from .validator import SafetyValidator
from .service import LeverageEngine

__all__ = [
    "RiskCalculator",
    "QuoteResolver",
    "select_best_quote",
    "LegPlanner",
    "IterativeLoopPlanner",
    "SafetyValidator",
    "LeverageEngine",
]
