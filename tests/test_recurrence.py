import logging

import pytest

from budget_engine.models import AmountRange, Pattern, PatternMatcher
from budget_engine.recurrence import check_pattern_match, month_difference, occurs_in_month


def _build_pattern(recurrence, scheduled_months=(), pattern_id='p1'):
    return Pattern(
        pattern_id=pattern_id,
        recurrence=recurrence,
        matcher=PatternMatcher('netflix', AmountRange(10, 20), 'cat-1', 'sub-1'),
        average_amount=15.0,
        scheduled_months=tuple(scheduled_months),
    )


def _months_matching(pattern):
    return {month for month in range(1, 13) if occurs_in_month(pattern, month)}


def test_monthly_pattern_occurs_every_month():
    pattern = _build_pattern('monthly', [4])
    assert _months_matching(pattern) == set(range(1, 13))


def test_monthly_pattern_without_schedule_still_occurs_every_month():
    assert _months_matching(_build_pattern('monthly')) == set(range(1, 13))


def test_bi_monthly_pattern_occurs_in_odd_months():
    pattern = _build_pattern('bi-monthly', [1, 3])
    assert _months_matching(pattern) == {1, 3, 5, 7, 9, 11}


def test_quarterly_pattern_steps_of_three():
    pattern = _build_pattern('quarterly', [2])
    assert _months_matching(pattern) == {2, 5, 8, 11}


def test_yearly_pattern_only_in_observed_month():
    pattern = _build_pattern('yearly', [6])
    assert _months_matching(pattern) == {6}


def test_observed_month_always_matches():
    # 4 is not on the quarterly cycle of 2 but was observed
    pattern = _build_pattern('quarterly', [2, 4])
    assert occurs_in_month(pattern, 4)
    assert occurs_in_month(pattern, 7)


def test_unknown_recurrence_class_never_recurs(caplog):
    pattern = _build_pattern('weekly', [1])
    with caplog.at_level(logging.WARNING):
        assert not occurs_in_month(pattern, 2)
    assert 'unknown recurrence class' in caplog.text
    # an observed month still wins
    assert occurs_in_month(pattern, 1)


@pytest.mark.parametrize('recurrence', ['bi-monthly', 'quarterly', 'yearly'])
def test_empty_schedule_never_recurs(recurrence):
    assert _months_matching(_build_pattern(recurrence)) == set()


def test_month_difference_wraps_at_year_end():
    assert month_difference(3, 1) == 2
    assert month_difference(2, 12) == 2
    assert month_difference(1, 3) == 10


def test_month_difference_rejects_invalid_months():
    with pytest.raises(ValueError):
        month_difference(13, 1)
    with pytest.raises(ValueError):
        month_difference(1, 0)


def test_check_pattern_match_reports_base_month():
    result = check_pattern_match('quarterly', [2], 11)
    assert result.matches
    assert result.base_month == 2
    assert result.months_from_base == 9
    assert 'divisible by 3' in result.reasoning


def test_check_pattern_match_invalid_input_is_a_non_match():
    assert not check_pattern_match('bi-monthly', [1], 0).matches
    invalid = check_pattern_match('bi-monthly', [1, 14], 3)
    assert not invalid.matches
    assert 'Invalid scheduled months' in invalid.reasoning
    assert not check_pattern_match('quarterly', [], 3).matches
