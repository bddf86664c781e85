"""Top‑level package for the pattern-aware budget engine.

The engine turns a user's transaction history and approved recurring
patterns into a twelve-month budget per category.  The primary modules are:

* ``classifier`` – splits transactions into pattern-explained and unexplained sets
* ``averaging`` – picks the divisor used to average a category's history
* ``averager`` – computes the base monthly average per category key
* ``recurrence`` – decides whether a pattern falls in a calendar month
* ``projector`` – builds fixed or variable budgets from averages and patterns
* ``service`` – recompute-all and exclusion-triggered recompute entry points
* ``db`` – the SQLite store for transactions, patterns and budgets

To recompute budgets from the command line you can execute:

```bash
python scripts/recompute_budgets.py --user demo --year 2025
```
"""

from .db import BudgetStore
from .service import BudgetCalculationService, RecalculationResult, RecomputeResult

__all__ = ["BudgetStore", "BudgetCalculationService", "RecalculationResult", "RecomputeResult"]
