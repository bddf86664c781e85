#!/usr/bin/env python3
"""Recompute category budgets for one user and print a summary."""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from budget_engine import config
from budget_engine.db import BudgetStore
from budget_engine.service import BudgetCalculationService


def main(
    user_id: str,
    year: int,
    months: int = config.MONTHS_TO_ANALYZE,
    month: Optional[int] = None,
    category: Optional[str] = None,
    sub_category: Optional[str] = None,
    reason: str = '',
    db_path: Optional[str] = None,
) -> None:
    store = BudgetStore(db_path)
    store.init_db()
    service = BudgetCalculationService(store)

    if category:
        result = service.recompute_one(user_id, category, sub_category, months, reason=reason)
        print(json.dumps(result.to_dict(), indent=2))
        return

    result = service.recompute_all(user_id, year, months, target_month=month)
    start, end = result.window
    print(f"Analyzed {start} to {end} ({months} months)")
    print(f"Updated budgets: {result.updated_count}")
    print(f"Patterns used: {result.patterns_used}")
    if result.ambiguous_matches:
        print(f"Transactions matching several patterns: {result.ambiguous_matches}")
    if result.skipped_records:
        print(f"Skipped uncategorized records: {result.skipped_records}")

    print("\nPer-month totals:")
    for month_number, lines in result.per_month_breakdown.items():
        income = sum(line['amount'] for line in lines['income'])
        expenses = sum(line['amount'] for line in lines['expenses'])
        print(
            f"  {month_number:>2}: income {income:>10.2f}  expenses {expenses:>10.2f}"
            f"  patterns {result.patterns_for_month(month_number)}"
        )


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Recompute pattern-aware category budgets.')
    parser.add_argument('--user', required=True, help='User whose budgets are recomputed')
    parser.add_argument('--year', type=int, default=datetime.now().year, help='Budget year')
    parser.add_argument('--month', type=int, default=None, help='Reference month (defaults to the current one)')
    parser.add_argument('--months', type=int, default=config.MONTHS_TO_ANALYZE, help='Months of history to analyze')
    parser.add_argument('--category', help='Only recompute this category')
    parser.add_argument('--sub-category', help='Subcategory of --category')
    parser.add_argument('--reason', default='', help='Reason recorded in the edit history')
    parser.add_argument('--db', default=None, help='Database path (defaults to BUDGET_ENGINE_DB_PATH)')
    parser.add_argument('--log-level', default=None, help='Logging level')
    args = parser.parse_args()
    config.configure_logging(args.log_level)
    main(
        args.user,
        args.year,
        months=args.months,
        month=args.month,
        category=args.category,
        sub_category=args.sub_category,
        reason=args.reason,
        db_path=args.db,
    )
