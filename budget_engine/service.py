"""Recompute-all and exclusion-triggered recompute entry points.

Both entry points run the same pipeline: classify the analysis window
against the approved patterns, average the unexplained spend, project the
twelve-month budget and upsert it.  They differ only in scope, so the
single-category path always stores exactly what the full recompute would
store for that category.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, Optional, Tuple

from . import config
from .averager import calculate_category_averages
from .classifier import ClassificationResult, analysis_window, classify_transactions
from .db import BudgetStore
from .models import (
    BUDGET_FIXED,
    EDIT_RECALCULATION,
    EDIT_SMART_RECALCULATION,
    CategoryBudget,
    CategoryKey,
    category_key,
)
from .projector import (
    Breakdown,
    Projection,
    apply_projection,
    patterns_for_key,
    project_budgets,
    project_category_budget,
    recalculation_entry,
)

logger = logging.getLogger(__name__)

MAX_REASON_LENGTH = 200


@dataclass
class RecomputeResult:
    updated_count: int
    per_month_breakdown: Breakdown
    patterns_used: int
    reference_month: Tuple[int, int]
    window: Tuple[date, date]
    ambiguous_matches: int = 0
    skipped_records: int = 0

    def patterns_for_month(self, month: int) -> int:
        return len(self.per_month_breakdown.get(month, {}).get('patterns', []))


@dataclass
class RecalculationResult:
    base_average: int
    transaction_count: int
    patterns_count: int
    months_analyzed: int
    budget_type: str
    budget: CategoryBudget
    recalculated_amount: Optional[float] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'baseAverage': self.base_average,
            'transactionCount': self.transaction_count,
            'patternsCount': self.patterns_count,
            'monthsAnalyzed': self.months_analyzed,
            'budgetType': self.budget_type,
            'budget': self.budget.to_dict(),
        }
        if self.recalculated_amount is not None:
            data['recalculatedAmount'] = self.recalculated_amount
        return data


class BudgetCalculationService:
    """Pattern-aware budget recalculation backed by a :class:`BudgetStore`.

    Callers are expected to run at most one recompute per user at a time.
    """

    def __init__(self, store: BudgetStore, clock: Callable[[], datetime] = datetime.now):
        self.store = store
        self.clock = clock

    def reference_month(self, target_year: int, target_month: Optional[int] = None) -> Tuple[int, int]:
        """Month whose preceding months form the analysis window.

        Defaults to the current month for the current year and to January
        for any other year.
        """
        if target_month is None:
            now = self.clock()
            target_month = now.month if target_year == now.year else 1
        return target_year, target_month

    def _analyze(
        self,
        user_id: str,
        reference: Tuple[int, int],
        months_to_analyze: int,
        patterns: list,
    ) -> Tuple[ClassificationResult, Tuple[date, date]]:
        start, end = analysis_window(reference[0], reference[1], months_to_analyze)
        transactions = self.store.fetch_transactions(user_id, start, end)
        logger.info("Found %d transactions for analysis between %s and %s", len(transactions), start, end)
        return classify_transactions(transactions, patterns), (start, end)

    def _save(
        self,
        user_id: str,
        projection: Projection,
        edit_type: str,
        reason: str,
        always_record: bool,
    ) -> CategoryBudget:
        key = projection.key
        existing = self.store.fetch_category_budget(user_id, key.category_id, key.sub_category_id)
        budget = apply_projection(existing, projection, user_id)
        if always_record or not budget.same_values(existing):
            entry = recalculation_entry(existing, projection, edit_type, reason[:MAX_REASON_LENGTH], self.clock())
            budget = apply_projection(existing, projection, user_id, entry)
        self.store.upsert_category_budget(budget)
        return budget

    def recompute_all(
        self,
        user_id: str,
        target_year: int,
        months_to_analyze: int = config.MONTHS_TO_ANALYZE,
        target_month: Optional[int] = None,
    ) -> RecomputeResult:
        """Recalculate the budget of every category key with history or patterns.

        Store failures propagate as :class:`~budget_engine.exceptions.StoreError`.
        Records that cannot be grouped are skipped and logged.
        """
        reference = self.reference_month(target_year, target_month)
        logger.info(
            "Calculating pattern-aware budgets for %s using %d months of history before %d-%02d",
            target_year, months_to_analyze, reference[0], reference[1],
        )

        patterns = self.store.fetch_active_patterns(user_id)
        logger.info("Found %d active patterns", len(patterns))

        classification, window = self._analyze(user_id, reference, months_to_analyze, patterns)
        averages = calculate_category_averages(classification.non_patterned, months_to_analyze)
        projections, breakdown = project_budgets(averages, patterns)

        updated = 0
        for projection in projections:
            reason = (
                f"Automatic recalculation: base {projection.base_average} "
                f"+ {len(projection.patterns)} patterns from {months_to_analyze} months of history"
            )
            self._save(user_id, projection, EDIT_RECALCULATION, reason, always_record=False)
            updated += 1

        logger.info("Completed budget calculation: updated %d category budgets", updated)
        return RecomputeResult(
            updated_count=updated,
            per_month_breakdown=breakdown,
            patterns_used=len(patterns),
            reference_month=reference,
            window=window,
            ambiguous_matches=len(classification.ambiguous),
            skipped_records=classification.skipped,
        )

    def recompute_one(
        self,
        user_id: str,
        category_id: Any,
        sub_category_id: Any = None,
        months_to_analyze: int = config.MONTHS_TO_ANALYZE,
        reason: str = '',
    ) -> RecalculationResult:
        """Recalculate one category key after the user excluded transactions.

        Uses the current month as reference, like :meth:`recompute_all` does
        for the current year, and appends a ``smart_recalculation`` entry to
        the budget's edit history.
        """
        key: CategoryKey = category_key(category_id, sub_category_id)
        now = self.clock()
        reference = (now.year, now.month)
        logger.info("Recalculating budget with exclusions for %s", key)

        patterns = self.store.fetch_active_patterns(user_id)
        category_patterns = patterns_for_key(patterns, key)
        logger.info("Found %d patterns for %s", len(category_patterns), key)

        classification, _ = self._analyze(user_id, reference, months_to_analyze, patterns)
        averages = calculate_category_averages(classification.non_patterned, months_to_analyze, only=key)
        entry = averages.get(key)
        base_average = entry.average if entry is not None else 0
        transaction_count = entry.transaction_count if entry is not None else 0

        projection = project_category_budget(
            key, base_average, category_patterns, label=entry.label if entry is not None else None
        )
        audit = (
            f"Recalculated: base {base_average} from {transaction_count} transactions "
            f"+ {len(category_patterns)} patterns"
        )
        if reason:
            audit = f"{audit}. {reason}"
        budget = self._save(user_id, projection, EDIT_SMART_RECALCULATION, audit, always_record=True)

        result = RecalculationResult(
            base_average=base_average,
            transaction_count=transaction_count,
            patterns_count=len(category_patterns),
            months_analyzed=months_to_analyze,
            budget_type=budget.budget_type,
            budget=budget,
        )
        if budget.budget_type == BUDGET_FIXED:
            result.recalculated_amount = budget.fixed_amount
        if entry is not None:
            result.extra['strategy'] = entry.strategy.to_dict()
        return result
