import sqlite3
from datetime import date, datetime

import pandas as pd
import pytest

from budget_engine.db import BudgetStore
from budget_engine.exceptions import StoreError
from budget_engine.models import (
    AmountRange,
    CategoryBudget,
    EditHistoryEntry,
    MonthlyAmount,
    Pattern,
    PatternMatcher,
    ResolvedRef,
    to_reference,
)


def _build_store(tmp_path):
    store = BudgetStore(tmp_path / "budgets.db")
    store.init_db()
    store.add_category('cat-dining', 'Dining', 'Expense', [('sub-rest', 'Restaurants')])
    return store


def _build_pattern(pattern_id, created_at, status='approved', active=True):
    return Pattern(
        pattern_id=pattern_id,
        recurrence='quarterly',
        matcher=PatternMatcher('water', AmountRange(80, 100), 'cat-dining', 'sub-rest'),
        average_amount=90,
        scheduled_months=(2, 5),
        approval_status=status,
        is_active=active,
        created_at=created_at,
    )


def test_transactions_round_trip_with_populated_references(tmp_path):
    store = _build_store(tmp_path)
    inserted = store.insert_transactions('u1', pd.DataFrame([
        {'id': 't1', 'category_id': 'cat-dining', 'sub_category_id': 'sub-rest', 'amount': -42.5,
         'processed_date': '2025-01-14', 'description': 'Corner Bistro'},
        {'id': 't2', 'category_id': 'cat-dining', 'sub_category_id': 'sub-rest', 'amount': None,
         'processed_date': '2025-01-15', 'description': 'No amount'},
        {'id': 't3', 'category_id': None, 'sub_category_id': None, 'amount': -5.0,
         'processed_date': '2025-01-16', 'description': 'Uncategorized'},
        {'id': 't4', 'category_id': 'cat-dining', 'sub_category_id': 'sub-rest', 'amount': -9.0,
         'processed_date': '2025-03-01', 'description': 'Outside window'},
    ]))

    transactions = store.fetch_transactions('u1', date(2025, 1, 1), date(2025, 2, 28))

    assert inserted == 3
    assert [txn.id for txn in transactions] == ['t1']
    txn = transactions[0]
    assert txn.amount == -42.5
    assert txn.processed_date == date(2025, 1, 14)
    assert to_reference(txn.category) == ResolvedRef('cat-dining', 'Dining', 'Expense')
    assert txn.category_type == 'Expense'


def test_excluded_transactions_are_not_returned(tmp_path):
    store = _build_store(tmp_path)
    store.insert_transactions('u1', pd.DataFrame([
        {'id': 't1', 'category_id': 'cat-dining', 'sub_category_id': 'sub-rest', 'amount': -42.5,
         'processed_date': '2025-01-14', 'description': 'Corner Bistro'},
    ]))

    assert store.set_transaction_exclusion('t1')
    assert store.fetch_transactions('u1', date(2025, 1, 1), date(2025, 1, 31)) == []
    assert not store.set_transaction_exclusion('missing')


def test_active_patterns_are_ordered_newest_first(tmp_path):
    store = _build_store(tmp_path)
    store.insert_pattern('u1', _build_pattern('b-old', datetime(2024, 1, 1)))
    store.insert_pattern('u1', _build_pattern('z-new', datetime(2025, 1, 1)))
    store.insert_pattern('u1', _build_pattern('a-new', datetime(2025, 1, 1)))
    store.insert_pattern('u1', _build_pattern('pending', datetime(2025, 6, 1), status='pending'))
    store.insert_pattern('u1', _build_pattern('inactive', datetime(2025, 6, 1), active=False))

    patterns = store.fetch_active_patterns('u1')

    assert [pattern.pattern_id for pattern in patterns] == ['a-new', 'z-new', 'b-old']
    assert patterns[0].scheduled_months == (2, 5)
    assert patterns[0].matcher.amount_range == AmountRange(80, 100)
    assert patterns[0].display_name == 'water (Dining → Restaurants)'


def test_budget_upsert_replaces_row(tmp_path):
    store = _build_store(tmp_path)
    fixed = CategoryBudget(user_id='u1', category_id='cat-dining', sub_category_id='sub-rest', fixed_amount=500)
    store.upsert_category_budget(fixed)
    assert store.fetch_category_budget('u1', 'cat-dining', 'sub-rest') == fixed

    variable = CategoryBudget(
        user_id='u1',
        category_id='cat-dining',
        sub_category_id='sub-rest',
        budget_type='variable',
        monthly_amounts=tuple(MonthlyAmount(month, 100.0 + month) for month in range(1, 13)),
        edit_history=(EditHistoryEntry(datetime(2025, 7, 1), 'recalculation', 'auto', 500, None),),
    )
    store.upsert_category_budget(variable)

    budgets = store.fetch_category_budgets('u1')
    assert budgets == [variable]


def test_income_budget_uses_blank_subcategory(tmp_path):
    store = _build_store(tmp_path)
    income = CategoryBudget(user_id='u1', category_id='cat-income', fixed_amount=3000)
    store.upsert_category_budget(income)

    assert store.fetch_category_budget('u1', 'cat-income', None) == income


def test_database_errors_become_store_errors(tmp_path):
    store = BudgetStore(tmp_path / "missing.db")
    # no schema: every query fails
    with pytest.raises(StoreError):
        store.fetch_transactions('u1', date(2025, 1, 1), date(2025, 1, 31))
    with pytest.raises(StoreError):
        store.upsert_category_budget(CategoryBudget(user_id='u1', category_id='c', fixed_amount=1))


def test_store_error_keeps_original_cause(tmp_path):
    store = BudgetStore(tmp_path / "missing.db")
    with pytest.raises(StoreError) as excinfo:
        store.fetch_category_budgets('u1')
    assert isinstance(excinfo.value.__cause__, sqlite3.Error)
