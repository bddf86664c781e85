"""Domain records shared by every stage of the budget projection pipeline.

Transactions and patterns come from external stores and may carry their
category references in more than one shape (a bare id, an ``ObjectId('...')``
string, or a populated ``{'_id': ..., 'name': ...}`` object).  Those shapes
are wrapped in the :class:`RawId` / :class:`ResolvedRef` union by
:func:`to_reference` and reduced to a :class:`CategoryKey` before any
grouping happens.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from .exceptions import InvalidBudgetShape, MalformedReferenceShape, MissingIdentifier

MONTHLY = 'monthly'
BI_MONTHLY = 'bi-monthly'
QUARTERLY = 'quarterly'
YEARLY = 'yearly'
ALL_RECURRENCE_CLASSES = (MONTHLY, BI_MONTHLY, QUARTERLY, YEARLY)

APPROVAL_PENDING = 'pending'
APPROVAL_APPROVED = 'approved'
APPROVAL_REJECTED = 'rejected'

BUDGET_FIXED = 'fixed'
BUDGET_VARIABLE = 'variable'

EDIT_RECALCULATION = 'recalculation'
EDIT_SMART_RECALCULATION = 'smart_recalculation'
EDIT_MANUAL = 'manual'

CATEGORY_EXPENSE = 'Expense'
CATEGORY_INCOME = 'Income'

MONTHS: Tuple[int, ...] = tuple(range(1, 13))

_OBJECT_ID_PATTERN = re.compile(r"ObjectId\(['\"]([^'\"]+)['\"]\)")


@dataclass(frozen=True)
class RawId:
    """A reference that only carries the identifier."""
    id: str


@dataclass(frozen=True)
class ResolvedRef:
    """A populated reference carrying the identifier plus display data."""
    id: str
    name: Optional[str] = None
    type: Optional[str] = None


Reference = Union[RawId, ResolvedRef]


def to_reference(value: Any) -> Optional[Reference]:
    """Wrap any supported reference shape in the ``RawId``/``ResolvedRef`` union.

    ``None`` and blank strings mean "no reference".  Anything that cannot be
    reduced to a plain identifier raises :class:`MalformedReferenceShape`.
    """
    if value is None:
        return None
    if isinstance(value, (RawId, ResolvedRef)):
        return value
    if isinstance(value, Mapping):
        ident = value.get('_id', value.get('id'))
        if ident is None or isinstance(ident, Mapping):
            raise MalformedReferenceShape(f"Reference object has no usable id: {value!r}")
        inner = to_reference(ident)
        if inner is None:
            raise MalformedReferenceShape(f"Reference object has a blank id: {value!r}")
        return ResolvedRef(id=inner.id, name=value.get('name'), type=value.get('type'))
    if isinstance(value, bool):
        raise MalformedReferenceShape(f"Boolean is not a reference: {value!r}")
    if isinstance(value, int):
        return RawId(str(value))
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if '{' in text or 'ObjectId(' in text:
            match = _OBJECT_ID_PATTERN.search(text)
            if not match:
                raise MalformedReferenceShape(f"Could not extract an id from {text!r}")
            return RawId(match.group(1))
        return RawId(text)
    raise MalformedReferenceShape(f"Unsupported reference type {type(value).__name__}: {value!r}")


def resolve_reference(value: Any) -> Optional[str]:
    """Return the plain identifier behind ``value`` (``None`` when absent)."""
    ref = to_reference(value)
    return ref.id if ref is not None else None


def reference_name(value: Any) -> Optional[str]:
    """Display name of a populated reference, ``None`` for bare ids."""
    try:
        ref = to_reference(value)
    except MalformedReferenceShape:
        return None
    return ref.name if isinstance(ref, ResolvedRef) else None


def reference_type(value: Any) -> Optional[str]:
    try:
        ref = to_reference(value)
    except MalformedReferenceShape:
        return None
    return ref.type if isinstance(ref, ResolvedRef) else None


@dataclass(frozen=True)
class CategoryKey:
    """Aggregation unit: a category plus its subcategory (``None`` for income)."""
    category_id: str
    sub_category_id: Optional[str] = None

    @property
    def is_income(self) -> bool:
        return self.sub_category_id is None

    def __str__(self) -> str:
        return f"{self.category_id}/{self.sub_category_id or '-'}"


def category_key(category: Any, sub_category: Any = None) -> CategoryKey:
    """Build a :class:`CategoryKey` from raw reference values.

    Raises :class:`MissingIdentifier` when there is no category and
    :class:`MalformedReferenceShape` when a reference cannot be read.
    """
    category_id = resolve_reference(category)
    if category_id is None:
        raise MissingIdentifier("Record has no category reference")
    return CategoryKey(category_id, resolve_reference(sub_category))


@dataclass(frozen=True)
class Transaction:
    """A categorized bank/credit-card transaction (read-only to the engine).

    ``category`` and ``sub_category`` accept any reference shape understood
    by :func:`to_reference`.
    """
    id: str
    category: Any
    sub_category: Any
    amount: float
    processed_date: date
    description: str = ''
    exclude_from_budget: bool = False
    category_type: Optional[str] = None


@dataclass(frozen=True)
class AmountRange:
    min: float
    max: float

    def contains(self, amount: float) -> bool:
        return self.min <= amount <= self.max


@dataclass(frozen=True)
class PatternMatcher:
    """Criteria deciding whether a transaction is explained by a pattern."""
    description: str
    amount_range: AmountRange
    category: Any
    sub_category: Any = None


@dataclass(frozen=True)
class Pattern:
    """A recurring charge or credit inferred from transaction history."""
    pattern_id: str
    recurrence: str
    matcher: PatternMatcher
    average_amount: float
    scheduled_months: Tuple[int, ...] = ()
    approval_status: str = APPROVAL_APPROVED
    is_active: bool = True
    created_at: Optional[datetime] = None

    @property
    def is_approved(self) -> bool:
        return self.is_active and self.approval_status == APPROVAL_APPROVED

    @property
    def display_name(self) -> str:
        category_name = reference_name(self.matcher.category) or 'Unknown'
        sub_name = reference_name(self.matcher.sub_category)
        suffix = f" → {sub_name}" if sub_name else ''
        return f"{self.matcher.description} ({category_name}{suffix})"


@dataclass(frozen=True)
class MonthlyAmount:
    month: int
    amount: float


@dataclass(frozen=True)
class EditHistoryEntry:
    """One change to a budget, automatic or user triggered."""
    date: datetime
    edit_type: str
    reason: str = ''
    previous_amount: Optional[float] = None
    new_amount: Optional[float] = None
    month: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'date': self.date.isoformat(),
            'edit_type': self.edit_type,
            'reason': self.reason,
            'previous_amount': self.previous_amount,
            'new_amount': self.new_amount,
            'month': self.month,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'EditHistoryEntry':
        raw_date = data.get('date')
        when = datetime.fromisoformat(raw_date) if isinstance(raw_date, str) else raw_date
        return cls(
            date=when,
            edit_type=data.get('edit_type', EDIT_MANUAL),
            reason=data.get('reason') or '',
            previous_amount=data.get('previous_amount'),
            new_amount=data.get('new_amount'),
            month=data.get('month'),
        )


def _validate_schedule(monthly_amounts: Tuple[MonthlyAmount, ...]) -> None:
    months = [entry.month for entry in monthly_amounts]
    if tuple(months) != MONTHS:
        raise InvalidBudgetShape(
            f"Variable budget must list months 1-12 exactly once in order, got {months}"
        )


@dataclass(frozen=True)
class CategoryBudget:
    """Twelve-month budget for one (user, category, subcategory)."""
    user_id: str
    category_id: str
    sub_category_id: Optional[str] = None
    budget_type: str = BUDGET_FIXED
    fixed_amount: float = 0.0
    monthly_amounts: Tuple[MonthlyAmount, ...] = ()
    edit_history: Tuple[EditHistoryEntry, ...] = ()
    is_manually_edited: bool = False

    def __post_init__(self) -> None:
        if self.budget_type == BUDGET_VARIABLE:
            _validate_schedule(self.monthly_amounts)
        elif self.budget_type == BUDGET_FIXED:
            if self.monthly_amounts:
                raise InvalidBudgetShape("Fixed budget cannot carry monthly amounts")
        else:
            raise InvalidBudgetShape(f"Unknown budget type {self.budget_type!r}")

    @property
    def key(self) -> CategoryKey:
        return CategoryKey(self.category_id, self.sub_category_id)

    def amount_for_month(self, month: int) -> float:
        if self.budget_type == BUDGET_FIXED:
            return self.fixed_amount
        for entry in self.monthly_amounts:
            if entry.month == month:
                return entry.amount
        return 0.0

    def same_values(self, other: Optional['CategoryBudget']) -> bool:
        """True when ``other`` holds the same mode and amounts."""
        if other is None:
            return False
        return (
            self.budget_type == other.budget_type
            and self.fixed_amount == other.fixed_amount
            and self.monthly_amounts == other.monthly_amounts
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'user_id': self.user_id,
            'category_id': self.category_id,
            'sub_category_id': self.sub_category_id,
            'budget_type': self.budget_type,
            'fixed_amount': self.fixed_amount,
            'monthly_amounts': [
                {'month': entry.month, 'amount': entry.amount} for entry in self.monthly_amounts
            ],
            'edit_history': [entry.to_dict() for entry in self.edit_history],
            'is_manually_edited': self.is_manually_edited,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'CategoryBudget':
        monthly = tuple(
            MonthlyAmount(int(item['month']), float(item['amount']))
            for item in data.get('monthly_amounts') or []
        )
        history = tuple(EditHistoryEntry.from_dict(item) for item in data.get('edit_history') or [])
        return cls(
            user_id=str(data['user_id']),
            category_id=str(data['category_id']),
            sub_category_id=data.get('sub_category_id') or None,
            budget_type=data.get('budget_type', BUDGET_FIXED),
            fixed_amount=float(data.get('fixed_amount') or 0.0),
            monthly_amounts=monthly,
            edit_history=history,
            is_manually_edited=bool(data.get('is_manually_edited', False)),
        )


@dataclass(frozen=True)
class ScheduleBuilder:
    """Immutable accumulator of per-month contributions on top of a base amount."""
    base: float = 0.0
    contributions: Tuple[Tuple[int, float], ...] = field(default=())

    def add(self, month: int, amount: float) -> 'ScheduleBuilder':
        if month not in MONTHS:
            raise ValueError(f"Month must be between 1 and 12, got {month}")
        return replace(self, contributions=self.contributions + ((month, amount),))

    def total_for(self, month: int) -> float:
        return self.base + sum(amount for m, amount in self.contributions if m == month)

    def build(self) -> Tuple[MonthlyAmount, ...]:
        return tuple(MonthlyAmount(month, self.total_for(month)) for month in MONTHS)
