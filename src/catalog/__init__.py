"""Quiz catalog module.

Provides:
- Modules ordered globally, quizzes ordered within their module
- Creation at the next free order
- Deletion and reordering that keep orders dense (1..N)
"""

from .models import CATALOG_TABLES_CQL, Module, Quiz


__all__ = [
    "CATALOG_TABLES_CQL",
    "Module",
    "Quiz",
]
