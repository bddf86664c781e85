"""Monthly base averages of non-patterned spend per category key."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, Optional, Sequence, Set

import pandas as pd

from . import config
from .averaging import AveragingStrategy, get_averaging_strategy
from .classifier import KeyedTransaction
from .models import CategoryKey

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CategoryAverage:
    key: CategoryKey
    average: int
    total: float
    transaction_count: int
    months_present: frozenset
    strategy: AveragingStrategy
    category_name: Optional[str] = None
    sub_category_name: Optional[str] = None

    @property
    def label(self) -> str:
        name = self.category_name or self.key.category_id
        if self.key.sub_category_id is None:
            return name
        return f"{name} → {self.sub_category_name or self.key.sub_category_id}"


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (2.5 -> 3)."""
    return int(Decimal(repr(float(value))).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def months_with_data(items: Iterable[KeyedTransaction]) -> Set[int]:
    """Calendar months that contain at least one of ``items``."""
    return {item.month for item in items}


def _to_frame(items: Sequence[KeyedTransaction]) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                'key': item.key,
                'month': item.month,
                'amount': item.amount,
                'category_name': item.category_name,
                'sub_category_name': item.sub_category_name,
            }
            for item in items
        ],
        columns=['key', 'month', 'amount', 'category_name', 'sub_category_name'],
    )


def _first_name(series: pd.Series) -> Optional[str]:
    clean = series.dropna()
    if clean.empty:
        return None
    return str(clean.iloc[0])


def calculate_category_averages(
    non_patterned: Sequence[KeyedTransaction],
    months_to_analyze: int = config.MONTHS_TO_ANALYZE,
    only: Optional[CategoryKey] = None,
) -> Dict[CategoryKey, CategoryAverage]:
    """Average the non-patterned spend of every category key.

    Months with data are always taken from the whole of ``non_patterned``
    so that restricting the result to a single key with ``only`` yields
    exactly the value the unrestricted call produces for that key.

    Args:
        non_patterned: Keyed transactions not explained by any pattern.
        months_to_analyze: Length of the analysis window in months.
        only: Restrict the output to this category key.

    Returns:
        Mapping of category key to :class:`CategoryAverage`, in first-seen order.
    """
    averages: Dict[CategoryKey, CategoryAverage] = {}
    if not non_patterned:
        return averages

    all_months = months_with_data(non_patterned)
    items = [item for item in non_patterned if only is None or item.key == only]
    if not items:
        return averages
    frame = _to_frame(items)

    for key, group in frame.groupby('key', sort=False):
        months_present = frozenset(int(month) for month in group['month'].unique())
        strategy = get_averaging_strategy(months_present, all_months, months_to_analyze)
        total = float(sum(group['amount'].tolist()))
        average = round_half_up(total / strategy.denominator)

        entry = CategoryAverage(
            key=key,
            average=average,
            total=total,
            transaction_count=len(group),
            months_present=months_present,
            strategy=strategy,
            category_name=_first_name(group['category_name']),
            sub_category_name=_first_name(group['sub_category_name']),
        )
        averages[key] = entry
        logger.info(
            "%s: %s/month average (%d transactions, strategy: %s)",
            entry.label, average, entry.transaction_count, strategy.strategy,
        )

    return averages
