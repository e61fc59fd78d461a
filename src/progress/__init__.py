"""Sequential progression module.

Provides:
- Per-user progress records with module and quiz unlock state
- Quiz completion with forward unlock propagation
- Consistency repair after catalog changes
"""

from .engine import ProgressEngine
from .models import (
    PROGRESS_TABLES_CQL,
    CompletedModule,
    ModuleProgress,
    ModuleStatus,
    Progress,
    QuizAttempt,
    QuizCompletion,
)
from .repair import RepairService, RepairSummary


__all__ = [
    "PROGRESS_TABLES_CQL",
    "CompletedModule",
    "ModuleProgress",
    "ModuleStatus",
    "Progress",
    "ProgressEngine",
    "QuizAttempt",
    "QuizCompletion",
    "RepairService",
    "RepairSummary",
]
