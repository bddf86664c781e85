"""Decide whether a recurring pattern falls in a given calendar month."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Sequence

from .models import ALL_RECURRENCE_CLASSES, BI_MONTHLY, MONTHLY, MONTHS, QUARTERLY, YEARLY, Pattern

logger = logging.getLogger(__name__)

RECURRENCE_INTERVALS: Dict[str, int] = {
    MONTHLY: 1,
    BI_MONTHLY: 2,
    QUARTERLY: 3,
    YEARLY: 12,
}

RECURRENCE_DESCRIPTIONS: Dict[str, str] = {
    MONTHLY: 'Every month',
    BI_MONTHLY: 'Every 2 months',
    QUARTERLY: 'Every 3 months (quarterly)',
    YEARLY: 'Once per year',
}


@dataclass(frozen=True)
class MatchResult:
    matches: bool
    reasoning: str
    base_month: Optional[int] = None
    months_from_base: Optional[int] = None


def _is_month(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value in MONTHS


def month_difference(target_month: int, base_month: int) -> int:
    """Months from ``base_month`` forward to ``target_month``, wrapping at year end.

    >>> month_difference(3, 1)
    2
    >>> month_difference(2, 12)
    2
    >>> month_difference(1, 3)
    10
    """
    if not _is_month(target_month):
        raise ValueError(f"Invalid target month: {target_month}. Must be integer between 1-12.")
    if not _is_month(base_month):
        raise ValueError(f"Invalid base month: {base_month}. Must be integer between 1-12.")
    return (target_month - base_month + 12) % 12


def _invalid_input(recurrence: str, scheduled_months: Sequence[int], target_month: int) -> Optional[MatchResult]:
    if not _is_month(target_month):
        return MatchResult(False, f"Invalid target month: {target_month}. Must be integer between 1-12.")
    if recurrence == MONTHLY:
        return None
    if not scheduled_months:
        return MatchResult(False, f"No scheduled months provided for {recurrence} pattern matching")
    invalid = [month for month in scheduled_months if not _is_month(month)]
    if invalid:
        return MatchResult(
            False,
            f"Invalid scheduled months: {invalid}. All must be integers between 1-12.",
        )
    return None


def _cycle_match(interval: int, label: str, scheduled_months: Iterable[int], target_month: int) -> MatchResult:
    ordered = sorted(scheduled_months)
    for base in ordered:
        difference = month_difference(target_month, base)
        if difference % interval == 0:
            return MatchResult(
                True,
                f"{label} pattern match: month {target_month} is {difference} months "
                f"from base month {base} (divisible by {interval})",
                base_month=base,
                months_from_base=difference,
            )
    differences = ', '.join(str(month_difference(target_month, base)) for base in ordered)
    return MatchResult(
        False,
        f"No {label.lower()} pattern match for month {target_month} from scheduled months "
        f"{ordered}. Checked differences: {differences}",
    )


def check_pattern_match(recurrence: str, scheduled_months: Sequence[int], target_month: int) -> MatchResult:
    """Match ``target_month`` against a recurrence class and its observed months.

    Invalid input is reported as a non-match with the reason attached, never raised.
    """
    invalid = _invalid_input(recurrence, scheduled_months, target_month)
    if invalid is not None:
        return invalid

    if recurrence == MONTHLY:
        return MatchResult(True, f"Monthly pattern: occurs every month, including month {target_month}")
    if recurrence == BI_MONTHLY:
        return _cycle_match(2, 'Bi-monthly', scheduled_months, target_month)
    if recurrence == QUARTERLY:
        return _cycle_match(3, 'Quarterly', scheduled_months, target_month)
    if recurrence == YEARLY:
        ordered = sorted(scheduled_months)
        if target_month in ordered:
            return MatchResult(
                True,
                f"Yearly pattern match: month {target_month} is explicitly scheduled in {ordered}",
                base_month=target_month,
                months_from_base=0,
            )
        return MatchResult(
            False,
            f"Yearly pattern mismatch: month {target_month} not found in scheduled months {ordered}",
        )
    return MatchResult(
        False,
        f"Unknown pattern type: {recurrence}. Supported types: {', '.join(ALL_RECURRENCE_CLASSES)}",
    )


def occurs_in_month(pattern: Pattern, target_month: int) -> bool:
    """Return True when ``pattern`` is expected to occur in ``target_month``.

    A month the pattern was actually observed in always matches.  Otherwise
    monthly patterns match every month, bi-monthly and quarterly patterns
    match months reachable from an observed month in steps of 2 or 3, and
    yearly patterns only match their observed months.  Unknown recurrence
    classes and non-monthly patterns with an empty schedule never match.
    """
    scheduled = tuple(pattern.scheduled_months or ())
    if target_month in scheduled:
        return True

    if pattern.recurrence not in RECURRENCE_INTERVALS:
        logger.warning(
            "Pattern %s has unknown recurrence class %r; treating as never recurring",
            pattern.pattern_id, pattern.recurrence,
        )
        return False
    if pattern.recurrence == MONTHLY:
        return True
    if not scheduled:
        logger.debug("Pattern %s has no scheduled months, skipping", pattern.pattern_id)
        return False

    result = check_pattern_match(pattern.recurrence, scheduled, target_month)
    logger.debug("Pattern %s month %s: %s", pattern.pattern_id, target_month, result.reasoning)
    return result.matches
