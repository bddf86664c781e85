from datetime import date, datetime

import pytest

from budget_engine.classifier import analysis_window, classify_transactions, key_transaction, matches_transaction
from budget_engine.exceptions import MissingIdentifier
from budget_engine.models import AmountRange, CategoryKey, Pattern, PatternMatcher, Transaction

EXPENSE = {'_id': 'cat-dining', 'name': 'Dining', 'type': 'Expense'}
RESTAURANTS = {'_id': 'sub-rest', 'name': 'Restaurants'}


def _build_txn(txn_id, description, amount, day, category=EXPENSE, sub_category=RESTAURANTS, **kwargs):
    return Transaction(
        id=txn_id,
        category=category,
        sub_category=sub_category,
        amount=amount,
        processed_date=day,
        description=description,
        **kwargs,
    )


def _build_pattern(pattern_id, description, low, high, category='cat-dining', sub_category='sub-rest'):
    return Pattern(
        pattern_id=pattern_id,
        recurrence='monthly',
        matcher=PatternMatcher(description, AmountRange(low, high), category, sub_category),
        average_amount=(low + high) / 2,
        scheduled_months=(1,),
        created_at=datetime(2025, 1, 1),
    )


def test_analysis_window_covers_full_previous_months():
    start, end = analysis_window(2025, 7, 6)
    assert start == date(2025, 1, 1)
    assert end == date(2025, 6, 30)


def test_analysis_window_crosses_year_boundary():
    start, end = analysis_window(2025, 2, 3)
    assert start == date(2024, 11, 1)
    assert end == date(2025, 1, 31)


def test_analysis_window_rejects_non_positive_length():
    with pytest.raises(ValueError):
        analysis_window(2025, 2, 0)


def test_pattern_matches_on_description_amount_and_category():
    pattern = _build_pattern('p1', 'Netflix', 10, 20)
    txn = _build_txn('t1', 'NETFLIX.COM 866-579', -15.49, date(2025, 1, 12))

    assert matches_transaction(pattern, txn)
    assert not matches_transaction(pattern, _build_txn('t2', 'NETFLIX.COM', -25.00, date(2025, 1, 12)))
    assert not matches_transaction(
        pattern, _build_txn('t3', 'NETFLIX.COM', -15.49, date(2025, 1, 12), sub_category='sub-other')
    )


def test_pattern_without_subcategory_matches_any_subcategory():
    pattern = _build_pattern('p1', 'payroll', 1000, 5000, category='cat-income', sub_category=None)
    txn = _build_txn('t1', 'ACME PAYROLL', 2500, date(2025, 1, 31), category='cat-income', sub_category=None)

    assert matches_transaction(pattern, txn)


def test_classify_splits_patterned_from_non_patterned():
    patterns = [_build_pattern('p1', 'netflix', 10, 20)]
    transactions = [
        _build_txn('t1', 'Netflix.com', -15.49, date(2025, 1, 12)),
        _build_txn('t2', 'Corner Bistro', -42.00, date(2025, 1, 14)),
    ]

    result = classify_transactions(transactions, patterns)

    assert [item.transaction.id for item in result.patterned] == ['t1']
    assert [item.transaction.id for item in result.non_patterned] == ['t2']
    assert result.pattern_for_transaction == {'t1': 'p1'}
    assert result.non_patterned[0].key == CategoryKey('cat-dining', 'sub-rest')
    assert result.non_patterned[0].category_name == 'Dining'


def test_first_matching_pattern_wins_and_ambiguity_is_reported():
    patterns = [
        _build_pattern('p-new', 'netflix', 10, 20),
        _build_pattern('p-old', 'netflix.com', 15, 16),
    ]
    txn = _build_txn('t1', 'Netflix.com', -15.49, date(2025, 1, 12))

    result = classify_transactions([txn], patterns)

    assert len(result.patterned) == 1
    assert result.non_patterned == []
    assert result.pattern_for_transaction['t1'] == 'p-new'
    assert result.ambiguous == {'t1': ('p-new', 'p-old')}


def test_unapproved_patterns_are_ignored():
    pending = Pattern(
        pattern_id='p1',
        recurrence='monthly',
        matcher=PatternMatcher('netflix', AmountRange(10, 20), 'cat-dining', 'sub-rest'),
        average_amount=15,
        scheduled_months=(1,),
        approval_status='pending',
    )
    txn = _build_txn('t1', 'Netflix.com', -15.49, date(2025, 1, 12))

    result = classify_transactions([txn], [pending])

    assert result.patterned == []
    assert len(result.non_patterned) == 1


def test_excluded_and_unkeyable_transactions_are_dropped():
    transactions = [
        _build_txn('t1', 'Corner Bistro', -42.00, date(2025, 1, 14), exclude_from_budget=True),
        _build_txn('t2', 'Corner Bistro', -42.00, date(2025, 1, 14), category=None),
        _build_txn('t3', 'Corner Bistro', -42.00, date(2025, 1, 14), sub_category=None),
        _build_txn('t4', 'Corner Bistro', -42.00, date(2025, 1, 14), category='{"_id": "broken"'),
        _build_txn('t5', 'Corner Bistro', -42.00, date(2025, 1, 14)),
    ]

    result = classify_transactions(transactions, [])

    assert [item.transaction.id for item in result.non_patterned] == ['t5']
    assert result.skipped == 3


def test_expense_without_subcategory_is_missing_identifier():
    txn = _build_txn('t1', 'Corner Bistro', -42.00, date(2025, 1, 14), sub_category=None)
    with pytest.raises(MissingIdentifier):
        key_transaction(txn)


def test_income_is_keyed_on_category_alone():
    income = {'_id': 'cat-income', 'name': 'Salary', 'type': 'Income'}
    txn = _build_txn('t1', 'ACME PAYROLL', 2500, date(2025, 1, 31), category=income, sub_category=None)

    keyed = key_transaction(txn)

    assert keyed.key == CategoryKey('cat-income')
    assert keyed.key.is_income
    assert keyed.amount == 2500


def test_object_id_strings_resolve_to_same_key():
    txn = _build_txn(
        't1', 'Corner Bistro', -42.00, date(2025, 1, 14),
        category="ObjectId('cat-dining')", sub_category='sub-rest', category_type='Expense',
    )
    assert key_transaction(txn).key == CategoryKey('cat-dining', 'sub-rest')


def test_blank_descriptions_never_match():
    pattern = _build_pattern('p1', 'netflix', 10, 20)
    blank_txn = _build_txn('t1', '', -15.49, date(2025, 1, 12))
    blank_pattern = _build_pattern('p2', '   ', 10, 20)

    assert not matches_transaction(pattern, blank_txn)
    assert not matches_transaction(blank_pattern, _build_txn('t2', 'Netflix.com', -15.49, date(2025, 1, 12)))

    result = classify_transactions([blank_txn], [pattern, blank_pattern])
    assert result.patterned == []
    assert len(result.non_patterned) == 1


@pytest.mark.parametrize('category', ['cat-unknown', {'_id': 'cat-unknown', 'name': 'Mystery'}])
def test_untyped_category_without_subcategory_is_not_keyed_as_income(category):
    txn = _build_txn('t1', 'Corner Bistro', -80.00, date(2025, 1, 14), category=category, sub_category=None)

    with pytest.raises(MissingIdentifier):
        key_transaction(txn)

    result = classify_transactions([txn], [])
    assert result.non_patterned == []
    assert result.skipped == 1
