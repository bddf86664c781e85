"""Split historical transactions into pattern-explained and unexplained sets.

Pattern amounts are projected separately, so any transaction an approved
pattern already explains must be kept out of the base average.  Patterns
are tried in the order they are given (the store returns newest first, with
the pattern id as tie-break); the first pattern that matches claims the
transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from dateutil.relativedelta import relativedelta

from .exceptions import MalformedReferenceShape, MissingIdentifier
from .models import (
    CATEGORY_INCOME,
    CategoryKey,
    Pattern,
    Transaction,
    category_key,
    reference_name,
    reference_type,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KeyedTransaction:
    """A transaction with its category references already normalized."""
    key: CategoryKey
    transaction: Transaction
    category_name: Optional[str] = None
    sub_category_name: Optional[str] = None

    @property
    def month(self) -> int:
        return self.transaction.processed_date.month

    @property
    def amount(self) -> float:
        return abs(self.transaction.amount)


@dataclass
class ClassificationResult:
    patterned: List[KeyedTransaction] = field(default_factory=list)
    non_patterned: List[KeyedTransaction] = field(default_factory=list)
    pattern_for_transaction: Dict[str, str] = field(default_factory=dict)
    ambiguous: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    skipped: int = 0


def analysis_window(year: int, month: int, months_to_analyze: int) -> Tuple[date, date]:
    """Return the inclusive ``(start, end)`` dates of the history to analyze.

    The window covers the ``months_to_analyze`` full calendar months ending
    with the month before ``(year, month)``.
    """
    if months_to_analyze <= 0:
        raise ValueError(f"months_to_analyze must be positive, got {months_to_analyze}")
    period_start = date(year, month, 1)
    end = period_start - timedelta(days=1)
    start = period_start - relativedelta(months=months_to_analyze)
    return start, end


def normalize_description(text: Optional[str]) -> str:
    return (text or '').strip().lower()


def matches_transaction(pattern: Pattern, transaction: Transaction) -> bool:
    """True when ``transaction`` is explained by ``pattern``.

    Amount (absolute) must be inside the pattern's inclusive range, the
    category must match (and the subcategory, when the pattern names one),
    and one description must contain the other after normalization.  A
    blank description on either side never matches.
    """
    matcher = pattern.matcher
    if not matcher.amount_range.contains(abs(transaction.amount)):
        return False

    try:
        pattern_key = category_key(matcher.category, matcher.sub_category)
        txn_key = category_key(transaction.category, transaction.sub_category)
    except (MissingIdentifier, MalformedReferenceShape):
        return False
    if txn_key.category_id != pattern_key.category_id:
        return False
    if pattern_key.sub_category_id is not None and txn_key.sub_category_id != pattern_key.sub_category_id:
        return False

    txn_desc = normalize_description(transaction.description)
    pattern_desc = normalize_description(matcher.description)
    if not txn_desc or not pattern_desc:
        return False
    return pattern_desc in txn_desc or txn_desc in pattern_desc


def key_transaction(transaction: Transaction) -> KeyedTransaction:
    """Resolve the category key of ``transaction``.

    Transactions with a subcategory are keyed on both ids.  Without one, only
    income transactions can be keyed, on the category alone.  Raises
    :class:`MissingIdentifier` or :class:`MalformedReferenceShape` for
    records that cannot be grouped.
    """
    key = category_key(transaction.category, transaction.sub_category)
    category_type = transaction.category_type or reference_type(transaction.category)
    if key.sub_category_id is None and category_type != CATEGORY_INCOME:
        raise MissingIdentifier(
            f"Transaction {transaction.id} has no subcategory and category type {category_type!r} is not income"
        )
    return KeyedTransaction(
        key=key,
        transaction=transaction,
        category_name=reference_name(transaction.category),
        sub_category_name=reference_name(transaction.sub_category),
    )


def key_patterns(patterns: Iterable[Pattern]) -> List[Tuple[CategoryKey, Pattern]]:
    """Resolve each pattern's category key, skipping patterns that cannot be keyed."""
    keyed: List[Tuple[CategoryKey, Pattern]] = []
    for pattern in patterns:
        try:
            keyed.append((category_key(pattern.matcher.category, pattern.matcher.sub_category), pattern))
        except (MissingIdentifier, MalformedReferenceShape) as exc:
            logger.warning("Skipping pattern %s: %s", pattern.pattern_id, exc)
    return keyed


def classify_transactions(transactions: Iterable[Transaction], patterns: Sequence[Pattern]) -> ClassificationResult:
    """Partition ``transactions`` into patterned and non-patterned sets.

    Excluded and uncategorized transactions are dropped.  Only approved,
    active patterns are considered.  A transaction matched by several
    patterns goes to the first one and is reported in ``ambiguous``.
    """
    result = ClassificationResult()
    active = [pattern for pattern in patterns if pattern.is_approved]

    for transaction in transactions:
        if transaction.exclude_from_budget:
            continue
        try:
            keyed = key_transaction(transaction)
        except (MissingIdentifier, MalformedReferenceShape) as exc:
            logger.warning("Skipping transaction %s: %s", transaction.id, exc)
            result.skipped += 1
            continue

        matched = [pattern.pattern_id for pattern in active if matches_transaction(pattern, transaction)]
        if not matched:
            result.non_patterned.append(keyed)
            continue

        result.patterned.append(keyed)
        result.pattern_for_transaction[transaction.id] = matched[0]
        if len(matched) > 1:
            result.ambiguous[transaction.id] = tuple(matched)
            logger.warning(
                "Transaction %s matches %d patterns %s; counting it once under %s",
                transaction.id, len(matched), matched, matched[0],
            )

    logger.info(
        "Found %d patterned transactions, %d non-patterned transactions",
        len(result.patterned), len(result.non_patterned),
    )
    return result
