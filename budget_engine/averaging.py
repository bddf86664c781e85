"""Choose the divisor used when averaging a category's historical spend.

A category that shows up in most of the months that have any data at all is
treated as a regular expense: its silent months count as zero spend and the
total is divided by the full analysis window.  A category that only shows up
occasionally is divided by the number of months it actually appeared in, so
rare purchases are not deflated by months in which they simply did not
happen.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from . import config

logger = logging.getLogger(__name__)

STRATEGY_DENSE = 'dense'
STRATEGY_SPARSE = 'sparse'
STRATEGY_EMPTY = 'empty'
STRATEGY_FALLBACK = 'fallback'

PATTERN_REGULAR = 'REGULAR'
PATTERN_MOSTLY_REGULAR = 'MOSTLY_REGULAR'
PATTERN_SEMI_REGULAR = 'SEMI_REGULAR'
PATTERN_IRREGULAR = 'IRREGULAR'


@dataclass(frozen=True)
class SpendingPatternAnalysis:
    pattern_type: str
    confidence: int
    coverage_percentage: int
    months_present: int
    total_months_with_data: int
    category_months: List[int] = field(default_factory=list)
    all_data_months: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class AveragingStrategy:
    """Chosen divisor plus both candidates, for audit and testing."""
    denominator: int
    strategy: str
    dense_denominator: int
    sparse_denominator: int
    analysis: SpendingPatternAnalysis
    reasoning: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'denominator': self.denominator,
            'strategy': self.strategy,
            'dense_denominator': self.dense_denominator,
            'sparse_denominator': self.sparse_denominator,
            'pattern_type': self.analysis.pattern_type,
            'coverage_percentage': self.analysis.coverage_percentage,
            'reasoning': self.reasoning,
        }


def dense_cutoff(months_with_data: int, threshold: float = config.DENSE_THRESHOLD) -> int:
    """Minimum number of months a category needs to count as dense."""
    return math.ceil(months_with_data * threshold)


def analyze_spending_pattern(category_months: Iterable[int], all_data_months: Iterable[int]) -> SpendingPatternAnalysis:
    category = sorted(set(category_months))
    all_data = sorted(set(all_data_months))
    coverage = (len(category) / len(all_data) * 100) if all_data else 0.0

    if all_data and len(category) == len(all_data):
        pattern_type, confidence = PATTERN_REGULAR, 95
    elif coverage >= 80:
        pattern_type, confidence = PATTERN_MOSTLY_REGULAR, 80
    elif coverage >= 50:
        pattern_type, confidence = PATTERN_SEMI_REGULAR, 60
    else:
        pattern_type, confidence = PATTERN_IRREGULAR, 40

    return SpendingPatternAnalysis(
        pattern_type=pattern_type,
        confidence=confidence,
        coverage_percentage=int(round(coverage)),
        months_present=len(category),
        total_months_with_data=len(all_data),
        category_months=category,
        all_data_months=all_data,
    )


def get_averaging_strategy(
    category_months: Iterable[int],
    all_data_months: Iterable[int],
    months_to_analyze: int = config.MONTHS_TO_ANALYZE,
    dense_threshold: float = config.DENSE_THRESHOLD,
) -> AveragingStrategy:
    """Pick the averaging denominator for one category.

    Args:
        category_months: Months (1-12) in which the category had non-patterned spend.
        all_data_months: Months in which any non-patterned transaction exists.
        months_to_analyze: Length of the analysis window.
        dense_threshold: Share of ``all_data_months`` a category must cover to be dense.

    Returns:
        An :class:`AveragingStrategy`.  ``dense_denominator`` is always the
        window length and ``sparse_denominator`` the months present; the
        chosen one is ``denominator``.
    """
    category = set(category_months or ())
    all_data = set(all_data_months or ())
    analysis = analyze_spending_pattern(category, all_data)
    present = len(category)

    if not category:
        logger.warning("No category months provided, using 1 to avoid division by zero")
        denominator, strategy = 1, STRATEGY_EMPTY
    elif not all_data or months_to_analyze <= 0:
        logger.warning("Invalid data months or requested months, falling back to months present")
        denominator, strategy = present, STRATEGY_FALLBACK
    elif present >= dense_cutoff(len(all_data), dense_threshold):
        denominator, strategy = months_to_analyze, STRATEGY_DENSE
    else:
        denominator, strategy = present, STRATEGY_SPARSE

    return AveragingStrategy(
        denominator=denominator,
        strategy=strategy,
        dense_denominator=months_to_analyze,
        sparse_denominator=present,
        analysis=analysis,
        reasoning=_reasoning(analysis, strategy, denominator),
    )


def _reasoning(analysis: SpendingPatternAnalysis, strategy: str, denominator: int) -> str:
    if strategy == STRATEGY_EMPTY:
        return 'No months with data for this category. Using 1 to avoid division by zero.'
    if strategy == STRATEGY_FALLBACK:
        return f'No overall data months to compare against. Using actual months present ({denominator}).'
    if strategy == STRATEGY_DENSE:
        return (
            f'Regular expense ({analysis.coverage_percentage}% coverage of months with data). '
            f'Averaging over the full analysis window ({denominator} months).'
        )
    return (
        f'Occasional expense ({analysis.coverage_percentage}% coverage of months with data). '
        f'Using actual months present ({denominator}) to avoid over-averaging.'
    )
