"""Project base averages and approved patterns onto a twelve-month budget."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .averager import CategoryAverage
from .classifier import key_patterns
from .models import (
    BUDGET_FIXED,
    BUDGET_VARIABLE,
    MONTHLY,
    MONTHS,
    CategoryBudget,
    CategoryKey,
    EditHistoryEntry,
    MonthlyAmount,
    Pattern,
    ScheduleBuilder,
)
from .recurrence import occurs_in_month

logger = logging.getLogger(__name__)

Breakdown = Dict[int, Dict[str, List[Dict[str, Any]]]]


@dataclass(frozen=True)
class Projection:
    """Computed budget values for one category key, before persistence."""
    key: CategoryKey
    budget_type: str
    base_average: int
    fixed_amount: float = 0.0
    monthly_amounts: Tuple[MonthlyAmount, ...] = ()
    patterns: Tuple[Pattern, ...] = ()
    label: Optional[str] = None

    def amount_for_month(self, month: int) -> float:
        if self.budget_type == BUDGET_FIXED:
            return self.fixed_amount
        for entry in self.monthly_amounts:
            if entry.month == month:
                return entry.amount
        return 0.0

    def patterns_in_month(self, month: int) -> List[Pattern]:
        if self.budget_type == BUDGET_FIXED:
            return [pattern for pattern in self.patterns if pattern.recurrence == MONTHLY]
        return [pattern for pattern in self.patterns if occurs_in_month(pattern, month)]


def empty_breakdown() -> Breakdown:
    return {month: {'income': [], 'expenses': [], 'patterns': []} for month in MONTHS}


def approved_for_key(keyed: Sequence[Tuple[CategoryKey, Pattern]], key: CategoryKey) -> List[Pattern]:
    """Approved patterns of already keyed ``(key, pattern)`` pairs that target ``key``."""
    return [pattern for pattern_key, pattern in keyed if pattern_key == key and pattern.is_approved]


def patterns_for_key(patterns: Sequence[Pattern], key: CategoryKey) -> List[Pattern]:
    """Approved patterns whose matcher targets ``key``."""
    return approved_for_key(key_patterns(patterns), key)


def project_category_budget(
    key: CategoryKey,
    average: int,
    patterns: Sequence[Pattern],
    label: Optional[str] = None,
) -> Projection:
    """Compute the budget of one category key.

    With only monthly patterns the budget is fixed: the base average plus
    every monthly pattern amount.  Any non-monthly pattern makes it variable:
    each month gets the base average plus the patterns recurring in it.
    """
    patterns = tuple(patterns)
    has_variable_patterns = any(pattern.recurrence != MONTHLY for pattern in patterns)

    if not has_variable_patterns:
        fixed_amount = average + sum(
            pattern.average_amount for pattern in patterns if pattern.recurrence == MONTHLY
        )
        return Projection(
            key=key,
            budget_type=BUDGET_FIXED,
            base_average=average,
            fixed_amount=fixed_amount,
            patterns=patterns,
            label=label,
        )

    builder = ScheduleBuilder(base=average)
    for month in MONTHS:
        for pattern in patterns:
            if occurs_in_month(pattern, month):
                builder = builder.add(month, pattern.average_amount)
    return Projection(
        key=key,
        budget_type=BUDGET_VARIABLE,
        base_average=average,
        monthly_amounts=builder.build(),
        patterns=patterns,
        label=label,
    )


def add_to_breakdown(breakdown: Breakdown, projection: Projection) -> None:
    """Record the lines and pattern contributions of ``projection`` per month."""
    line_kind = 'income' if projection.key.is_income else 'expenses'
    for month in MONTHS:
        breakdown[month][line_kind].append({
            'category': str(projection.key),
            'label': projection.label or str(projection.key),
            'budget_type': projection.budget_type,
            'base_average': projection.base_average,
            'amount': projection.amount_for_month(month),
        })
        for pattern in projection.patterns_in_month(month):
            breakdown[month]['patterns'].append({
                'pattern': pattern.display_name,
                'amount': pattern.average_amount,
                'type': pattern.recurrence,
                'category': str(projection.key),
            })


def category_keys(
    averages: Mapping[CategoryKey, CategoryAverage],
    keyed: Sequence[Tuple[CategoryKey, Pattern]],
) -> List[CategoryKey]:
    """Union of keys with history and keys targeted by approved patterns, in stable order."""
    keys: Dict[CategoryKey, None] = dict.fromkeys(averages)
    for pattern_key, pattern in keyed:
        if pattern.is_approved:
            keys.setdefault(pattern_key, None)
    return list(keys)


def project_budgets(
    averages: Mapping[CategoryKey, CategoryAverage],
    patterns: Sequence[Pattern],
) -> Tuple[List[Projection], Breakdown]:
    """Project every category key found in ``averages`` or ``patterns``."""
    projections: List[Projection] = []
    breakdown = empty_breakdown()
    keyed = key_patterns(patterns)
    keys = category_keys(averages, keyed)
    logger.info("Found %d unique categories to process", len(keys))

    for key in keys:
        entry = averages.get(key)
        projection = project_category_budget(
            key,
            entry.average if entry is not None else 0,
            approved_for_key(keyed, key),
            label=entry.label if entry is not None else None,
        )
        projections.append(projection)
        add_to_breakdown(breakdown, projection)
    return projections, breakdown


def apply_projection(
    existing: Optional[CategoryBudget],
    projection: Projection,
    user_id: str,
    entry: Optional[EditHistoryEntry] = None,
) -> CategoryBudget:
    """Return the budget record holding ``projection``.

    The edit history of ``existing`` is kept and ``entry`` appended when given.
    """
    history = existing.edit_history if existing is not None else ()
    if entry is not None:
        history = history + (entry,)
    return CategoryBudget(
        user_id=user_id,
        category_id=projection.key.category_id,
        sub_category_id=projection.key.sub_category_id,
        budget_type=projection.budget_type,
        fixed_amount=projection.fixed_amount,
        monthly_amounts=projection.monthly_amounts,
        edit_history=history,
        is_manually_edited=existing.is_manually_edited if existing is not None else False,
    )


def recalculation_entry(
    existing: Optional[CategoryBudget],
    projection: Projection,
    edit_type: str,
    reason: str,
    when: datetime,
) -> EditHistoryEntry:
    previous = None
    if existing is not None and existing.budget_type == BUDGET_FIXED:
        previous = existing.fixed_amount
    new = projection.fixed_amount if projection.budget_type == BUDGET_FIXED else None
    return EditHistoryEntry(
        date=when,
        edit_type=edit_type,
        reason=reason,
        previous_amount=previous,
        new_amount=new,
    )
