"""Exception types raised by the budget engine.

Only :class:`StoreError` escapes the public recompute entry points. The
record-level errors are raised by the reference helpers and caught by the
pipeline, which logs and skips the offending record.
"""

from __future__ import annotations


class BudgetEngineError(Exception):
    """Base class for all budget engine errors."""


class MissingIdentifier(BudgetEngineError):
    """A transaction or pattern lacks the category fields needed for grouping."""


class MalformedReferenceShape(BudgetEngineError):
    """A category/subcategory reference could not be reduced to a plain id."""


class InvalidBudgetShape(BudgetEngineError):
    """A variable budget schedule does not cover exactly months 1-12."""


class StoreError(BudgetEngineError):
    """The transaction, pattern or budget store failed."""
