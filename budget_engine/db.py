"""SQLite-backed transaction, pattern and category budget store."""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence, Tuple, Union

import pandas as pd

from . import config
from .exceptions import StoreError
from .models import (
    APPROVAL_APPROVED,
    AmountRange,
    CategoryBudget,
    EditHistoryEntry,
    MonthlyAmount,
    Pattern,
    PatternMatcher,
    Transaction,
    resolve_reference,
)

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;

CREATE TABLE IF NOT EXISTS categories (
    id TEXT PRIMARY KEY,
    name TEXT,
    type TEXT
);

CREATE TABLE IF NOT EXISTS sub_categories (
    id TEXT PRIMARY KEY,
    name TEXT,
    category_id TEXT
);

CREATE TABLE IF NOT EXISTS transactions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    category_id TEXT,
    sub_category_id TEXT,
    amount REAL NOT NULL,
    processed_date TEXT NOT NULL,
    description TEXT,
    exclude_from_budget INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS ix_txn_user_date ON transactions (user_id, processed_date);
CREATE INDEX IF NOT EXISTS ix_txn_category ON transactions (category_id, sub_category_id);

CREATE TABLE IF NOT EXISTS transaction_patterns (
    pattern_id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    description TEXT NOT NULL,
    amount_min REAL NOT NULL,
    amount_max REAL NOT NULL,
    category_id TEXT,
    sub_category_id TEXT,
    recurrence_pattern TEXT NOT NULL,
    scheduled_months TEXT NOT NULL DEFAULT '[]',
    average_amount REAL NOT NULL,
    approval_status TEXT NOT NULL DEFAULT 'pending',
    is_active INTEGER NOT NULL DEFAULT 0,
    created_at TEXT
);

CREATE INDEX IF NOT EXISTS ix_pattern_user_status ON transaction_patterns (user_id, approval_status, is_active);

CREATE TABLE IF NOT EXISTS category_budgets (
    user_id TEXT NOT NULL,
    category_id TEXT NOT NULL,
    sub_category_id TEXT NOT NULL DEFAULT '',
    budget_type TEXT NOT NULL DEFAULT 'fixed',
    fixed_amount REAL NOT NULL DEFAULT 0,
    monthly_amounts TEXT NOT NULL DEFAULT '[]',
    edit_history TEXT NOT NULL DEFAULT '[]',
    is_manually_edited INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT,
    PRIMARY KEY (user_id, category_id, sub_category_id)
);
"""

TRANSACTIONS_SQL = """
SELECT t.id, t.category_id, c.name AS category_name, c.type AS category_type,
       t.sub_category_id, s.name AS sub_category_name,
       t.amount, t.processed_date, t.description, t.exclude_from_budget
FROM transactions t
LEFT JOIN categories c ON c.id = t.category_id
LEFT JOIN sub_categories s ON s.id = t.sub_category_id
WHERE t.user_id = ?
  AND t.processed_date >= ?
  AND t.processed_date <= ?
  AND t.category_id IS NOT NULL AND t.category_id != ''
  AND t.exclude_from_budget = 0
ORDER BY t.processed_date ASC, t.id ASC
"""

# Newest pattern first, pattern id as tie-break: the classifier's match order.
ACTIVE_PATTERNS_SQL = """
SELECT p.*, c.name AS category_name, c.type AS category_type, s.name AS sub_category_name
FROM transaction_patterns p
LEFT JOIN categories c ON c.id = p.category_id
LEFT JOIN sub_categories s ON s.id = p.sub_category_id
WHERE p.user_id = ? AND p.approval_status = ? AND p.is_active = 1
ORDER BY p.created_at DESC, p.pattern_id ASC
"""

BUDGET_COLUMNS = (
    "user_id, category_id, sub_category_id, budget_type, fixed_amount, "
    "monthly_amounts, edit_history, is_manually_edited, updated_at"
)

UPSERT_BUDGET_SQL = f"""
INSERT INTO category_budgets ({BUDGET_COLUMNS})
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (user_id, category_id, sub_category_id) DO UPDATE SET
    budget_type = excluded.budget_type,
    fixed_amount = excluded.fixed_amount,
    monthly_amounts = excluded.monthly_amounts,
    edit_history = excluded.edit_history,
    is_manually_edited = excluded.is_manually_edited,
    updated_at = excluded.updated_at
"""

DateLike = Union[date, datetime, str]


def _to_iso_date(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    ts = pd.to_datetime(value, errors='coerce')
    if pd.isna(ts):
        return None
    return ts.date().isoformat()


def _none_if_blank(value: Any) -> Any:
    """Convert pandas NA and empty strings to ``None``."""
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped if stripped else None
    if pd.isna(value):
        return None
    return value


def _reference(ident: Any, name: Any = None, kind: Any = None) -> Any:
    """Populated reference when display data was joined, bare id otherwise."""
    ident = _none_if_blank(ident)
    if ident is None:
        return None
    name = _none_if_blank(name)
    if name is None:
        return str(ident)
    return {'_id': str(ident), 'name': name, 'type': _none_if_blank(kind)}


class BudgetStore:
    """Reads transactions and patterns, and persists category budgets."""

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        self.db_path = Path(db_path) if db_path is not None else config.DB_PATH

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(str(self.db_path))
        except sqlite3.Error as exc:
            raise StoreError(f"Could not open database {self.db_path}: {exc}") from exc
        try:
            yield conn
        except (sqlite3.Error, pd.errors.DatabaseError) as exc:
            raise StoreError(str(exc)) from exc
        finally:
            conn.close()

    def init_db(self) -> None:
        with self.connect() as conn:
            conn.executescript(SCHEMA_SQL)
            conn.commit()

    # ------------------------------------------------------------------
    # Reference data and ingestion-side helpers
    # ------------------------------------------------------------------

    def add_category(self, category_id: str, name: str, category_type: str, sub_categories: Sequence[Tuple[str, str]] = ()) -> None:
        with self.connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO categories (id, name, type) VALUES (?, ?, ?)",
                (category_id, name, category_type),
            )
            conn.executemany(
                "INSERT OR REPLACE INTO sub_categories (id, name, category_id) VALUES (?, ?, ?)",
                [(sub_id, sub_name, category_id) for sub_id, sub_name in sub_categories],
            )
            conn.commit()

    def insert_transactions(self, user_id: str, df: pd.DataFrame) -> int:
        """Insert transactions, skipping rows without an amount or date.

        Expected columns: ``id``, ``category_id``, ``sub_category_id``,
        ``amount``, ``processed_date``, ``description`` and optionally
        ``exclude_from_budget``.  Returns the number of rows written.
        """
        if df.empty:
            return 0

        records: List[Tuple] = []
        for _, row in df.iterrows():
            amount = _none_if_blank(row.get('amount'))
            processed = _to_iso_date(row.get('processed_date'))
            if amount is None or processed is None:
                logger.warning("Skipping transaction %s without amount or date", row.get('id'))
                continue
            records.append((
                str(row['id']),
                user_id,
                _none_if_blank(row.get('category_id')),
                _none_if_blank(row.get('sub_category_id')),
                float(amount),
                processed,
                _none_if_blank(row.get('description')) or '',
                int(bool(_none_if_blank(row.get('exclude_from_budget')) or False)),
            ))

        with self.connect() as conn:
            before = conn.total_changes
            conn.executemany(
                "INSERT OR REPLACE INTO transactions (id, user_id, category_id, sub_category_id, "
                "amount, processed_date, description, exclude_from_budget) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                records,
            )
            conn.commit()
            return conn.total_changes - before

    def set_transaction_exclusion(self, transaction_id: str, excluded: bool = True) -> bool:
        """Flip the "excluded from budget calculation" flag of one transaction."""
        with self.connect() as conn:
            cursor = conn.execute(
                "UPDATE transactions SET exclude_from_budget = ? WHERE id = ?",
                (int(excluded), transaction_id),
            )
            conn.commit()
            return cursor.rowcount > 0

    def insert_pattern(self, user_id: str, pattern: Pattern) -> None:
        matcher = pattern.matcher
        created = pattern.created_at or datetime.now()
        with self.connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO transaction_patterns (pattern_id, user_id, description, amount_min, "
                "amount_max, category_id, sub_category_id, recurrence_pattern, scheduled_months, "
                "average_amount, approval_status, is_active, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    pattern.pattern_id,
                    user_id,
                    matcher.description,
                    matcher.amount_range.min,
                    matcher.amount_range.max,
                    resolve_reference(matcher.category),
                    resolve_reference(matcher.sub_category),
                    pattern.recurrence,
                    json.dumps(list(pattern.scheduled_months)),
                    pattern.average_amount,
                    pattern.approval_status,
                    int(pattern.is_active),
                    created.isoformat(),
                ),
            )
            conn.commit()

    # ------------------------------------------------------------------
    # Engine inputs
    # ------------------------------------------------------------------

    def fetch_transactions(self, user_id: str, start: DateLike, end: DateLike) -> List[Transaction]:
        """Categorized, non-excluded transactions of ``user_id`` between ``start`` and ``end``."""
        with self.connect() as conn:
            df = pd.read_sql_query(
                TRANSACTIONS_SQL, conn, params=[user_id, _to_iso_date(start), _to_iso_date(end)]
            )
        if df.empty:
            return []
        df['processed_date'] = pd.to_datetime(df['processed_date'])
        return [
            Transaction(
                id=str(row['id']),
                category=_reference(row['category_id'], row['category_name'], row['category_type']),
                sub_category=_reference(row['sub_category_id'], row['sub_category_name']),
                amount=float(row['amount']),
                processed_date=row['processed_date'].date(),
                description=_none_if_blank(row['description']) or '',
                exclude_from_budget=bool(row['exclude_from_budget']),
                category_type=_none_if_blank(row['category_type']),
            )
            for _, row in df.iterrows()
        ]

    def fetch_active_patterns(self, user_id: str) -> List[Pattern]:
        """Approved, active patterns of ``user_id``, newest first."""
        with self.connect() as conn:
            df = pd.read_sql_query(ACTIVE_PATTERNS_SQL, conn, params=[user_id, APPROVAL_APPROVED])
        patterns: List[Pattern] = []
        for _, row in df.iterrows():
            created = _none_if_blank(row['created_at'])
            patterns.append(Pattern(
                pattern_id=str(row['pattern_id']),
                recurrence=row['recurrence_pattern'],
                matcher=PatternMatcher(
                    description=row['description'],
                    amount_range=AmountRange(float(row['amount_min']), float(row['amount_max'])),
                    category=_reference(row['category_id'], row['category_name'], row['category_type']),
                    sub_category=_reference(row['sub_category_id'], row['sub_category_name']),
                ),
                average_amount=float(row['average_amount']),
                scheduled_months=tuple(int(month) for month in json.loads(row['scheduled_months'] or '[]')),
                approval_status=row['approval_status'],
                is_active=bool(row['is_active']),
                created_at=datetime.fromisoformat(created) if created else None,
            ))
        return patterns

    # ------------------------------------------------------------------
    # Category budgets
    # ------------------------------------------------------------------

    @staticmethod
    def _budget_from_row(row: sqlite3.Row) -> CategoryBudget:
        return CategoryBudget(
            user_id=row['user_id'],
            category_id=row['category_id'],
            sub_category_id=row['sub_category_id'] or None,
            budget_type=row['budget_type'],
            fixed_amount=float(row['fixed_amount']),
            monthly_amounts=tuple(
                MonthlyAmount(int(item['month']), float(item['amount']))
                for item in json.loads(row['monthly_amounts'])
            ),
            edit_history=tuple(EditHistoryEntry.from_dict(item) for item in json.loads(row['edit_history'])),
            is_manually_edited=bool(row['is_manually_edited']),
        )

    def fetch_category_budget(self, user_id: str, category_id: str, sub_category_id: Optional[str]) -> Optional[CategoryBudget]:
        with self.connect() as conn:
            conn.row_factory = sqlite3.Row
            row = conn.execute(
                f"SELECT {BUDGET_COLUMNS} FROM category_budgets "
                "WHERE user_id = ? AND category_id = ? AND sub_category_id = ?",
                (user_id, category_id, sub_category_id or ''),
            ).fetchone()
        return self._budget_from_row(row) if row is not None else None

    def fetch_category_budgets(self, user_id: str) -> List[CategoryBudget]:
        with self.connect() as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(
                f"SELECT {BUDGET_COLUMNS} FROM category_budgets WHERE user_id = ? "
                "ORDER BY category_id, sub_category_id",
                (user_id,),
            ).fetchall()
        return [self._budget_from_row(row) for row in rows]

    def upsert_category_budget(self, budget: CategoryBudget) -> None:
        """Write ``budget`` in a single transaction; the previous row survives a failure."""
        data = budget.to_dict()
        params = (
            budget.user_id,
            budget.category_id,
            budget.sub_category_id or '',
            budget.budget_type,
            budget.fixed_amount,
            json.dumps(data['monthly_amounts']),
            json.dumps(data['edit_history']),
            int(budget.is_manually_edited),
            datetime.now().isoformat(),
        )
        with self.connect() as conn:
            with conn:
                conn.execute(UPSERT_BUDGET_SQL, params)
