"""Database models for sequential progression.

Cassandra table definitions for:
- User progress: global unlock state, one row per user
- Module progress: per-module unlock and completion state
- Quiz completions: aggregated attempt results per quiz
- Quiz attempts: append-only attempt history

Architecture: every table is partitioned by user_id, so one user's
progress is a single partition that is rewritten in one logged batch.
"""

from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class ModuleStatus(str, Enum):
    """Per-user module status."""

    LOCKED = "locked"
    UNLOCKED = "unlocked"
    IN_PROGRESS = "in_progress"  # At least one attempt recorded
    COMPLETED = "completed"  # Every quiz passed at least once


# ==============================================================================
# Helper Functions
# ==============================================================================


def ensure_utc_aware(dt: datetime | None) -> datetime | None:
    """Ensure datetime is UTC-aware (Cassandra returns naive datetimes)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def round_half_up(value: Decimal) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

# Global progress: one row per user
USER_PROGRESS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.user_progress (
    user_id UUID PRIMARY KEY,
    current_module_id UUID,
    unlocked_modules SET<UUID>,
    completed_modules MAP<UUID, TIMESTAMP>,
    created_at TIMESTAMP,
    updated_at TIMESTAMP
)
"""

# Module entries: partition = user, one row per touched module
MODULE_PROGRESS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.module_progress (
    user_id UUID,
    module_id UUID,
    status TEXT,
    current_quiz_id UUID,
    unlocked_quizzes SET<UUID>,
    completion_percentage INT,
    started_at TIMESTAMP,
    completed_at TIMESTAMP,
    PRIMARY KEY ((user_id), module_id)
)
"""

# Completion records: partition = user, clustered by module then quiz
QUIZ_COMPLETIONS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.quiz_completions (
    user_id UUID,
    module_id UUID,
    quiz_id UUID,
    score DECIMAL,
    best_score DECIMAL,
    attempts INT,
    passed BOOLEAN,
    ever_passed BOOLEAN,
    completed_at TIMESTAMP,
    PRIMARY KEY ((user_id), module_id, quiz_id)
)
"""

# Attempt history: newest first
QUIZ_ATTEMPTS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.quiz_attempts (
    user_id UUID,
    attempted_at TIMESTAMP,
    attempt_id UUID,
    quiz_id UUID,
    module_id UUID,
    attempt_number INT,
    score DECIMAL,
    passed BOOLEAN,
    PRIMARY KEY ((user_id), attempted_at, attempt_id)
) WITH CLUSTERING ORDER BY (attempted_at DESC, attempt_id ASC)
"""

# All CQL statements for table setup
PROGRESS_TABLES_CQL = [
    USER_PROGRESS_TABLE_CQL,
    MODULE_PROGRESS_TABLE_CQL,
    QUIZ_COMPLETIONS_TABLE_CQL,
    QUIZ_ATTEMPTS_TABLE_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


class QuizCompletion:
    """Aggregated attempt results for one quiz.

    ``passed`` reflects the latest attempt only; ``ever_passed`` is sticky
    and never reverts to False once set.

    Attributes:
        quiz_id: Quiz UUID
        score: Latest attempt score (0-100)
        best_score: Highest score ever reached
        attempts: Number of attempts (starts at 1)
        passed: Whether the latest attempt passed
        ever_passed: Whether any attempt passed
        completed_at: Timestamp of the latest attempt
    """

    def __init__(
        self,
        quiz_id: UUID,
        score: Decimal,
        best_score: Decimal | None = None,
        attempts: int = 1,
        passed: bool = False,
        ever_passed: bool | None = None,
        completed_at: datetime | None = None,
    ):
        self.quiz_id = quiz_id
        self.score = Decimal(score)
        self.best_score = Decimal(best_score) if best_score is not None else self.score
        self.attempts = attempts
        self.passed = passed
        self.ever_passed = passed if ever_passed is None else ever_passed
        self.completed_at = ensure_utc_aware(completed_at) or datetime.now(UTC)

    def record_attempt(self, score: Decimal, has_passed: bool) -> None:
        """Fold a repeat attempt into the record."""
        self.attempts += 1
        self.score = Decimal(score)
        self.best_score = max(self.best_score, self.score)
        self.passed = has_passed
        self.ever_passed = self.ever_passed or has_passed
        self.completed_at = datetime.now(UTC)

    @classmethod
    def from_row(cls, row: Any) -> "QuizCompletion":
        """Create QuizCompletion instance from Cassandra row."""
        return cls(
            quiz_id=row.quiz_id,
            score=row.score or Decimal(0),
            best_score=row.best_score,
            attempts=row.attempts or 1,
            passed=bool(row.passed),
            ever_passed=bool(row.ever_passed),
            completed_at=row.completed_at,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "quiz_id": self.quiz_id,
            "score": self.score,
            "best_score": self.best_score,
            "attempts": self.attempts,
            "passed": self.passed,
            "ever_passed": self.ever_passed,
            "completed_at": self.completed_at,
        }

    def __repr__(self) -> str:
        return (
            f"<QuizCompletion quiz={self.quiz_id} best={self.best_score} "
            f"attempts={self.attempts} ever_passed={self.ever_passed}>"
        )


class ModuleProgress:
    """Per-user state of one module.

    Attributes:
        module_id: Module UUID
        status: locked, unlocked, in_progress or completed
        current_quiz_id: Quiz the learner is working on
        unlocked_quizzes: Quizzes the learner may open
        completed_quizzes: Completion records keyed by quiz
        completion_percentage: Share of quizzes ever passed (0-100)
        started_at: First attempt timestamp
        completed_at: Module completion timestamp
    """

    def __init__(
        self,
        module_id: UUID,
        status: str = ModuleStatus.UNLOCKED.value,
        current_quiz_id: UUID | None = None,
        unlocked_quizzes: set[UUID] | None = None,
        completed_quizzes: dict[UUID, QuizCompletion] | None = None,
        completion_percentage: int = 0,
        started_at: datetime | None = None,
        completed_at: datetime | None = None,
    ):
        self.module_id = module_id
        self.status = status
        self.current_quiz_id = current_quiz_id
        self.unlocked_quizzes = set(unlocked_quizzes or ())
        self.completed_quizzes = dict(completed_quizzes or {})
        self.completion_percentage = completion_percentage
        self.started_at = ensure_utc_aware(started_at)
        self.completed_at = ensure_utc_aware(completed_at)

    @property
    def is_completed(self) -> bool:
        """Check if module is completed."""
        return self.status == ModuleStatus.COMPLETED.value

    @property
    def is_locked(self) -> bool:
        """Check if module is locked."""
        return self.status == ModuleStatus.LOCKED.value

    def unlock_quiz(self, quiz_id: UUID, make_current: bool = True) -> None:
        """Add a quiz to the unlocked set and optionally point at it."""
        self.unlocked_quizzes.add(quiz_id)
        if make_current:
            self.current_quiz_id = quiz_id

    @classmethod
    def from_row(
        cls, row: Any, completions: list[QuizCompletion] | None = None
    ) -> "ModuleProgress":
        """Create ModuleProgress instance from Cassandra row."""
        return cls(
            module_id=row.module_id,
            status=row.status or ModuleStatus.UNLOCKED.value,
            current_quiz_id=row.current_quiz_id,
            unlocked_quizzes=row.unlocked_quizzes,
            completed_quizzes={c.quiz_id: c for c in completions or []},
            completion_percentage=row.completion_percentage or 0,
            started_at=row.started_at,
            completed_at=row.completed_at,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "module_id": self.module_id,
            "status": self.status,
            "current_quiz_id": self.current_quiz_id,
            "unlocked_quizzes": sorted(self.unlocked_quizzes, key=str),
            "completed_quizzes": [c.to_dict() for c in self.completed_quizzes.values()],
            "completion_percentage": self.completion_percentage,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }

    def __repr__(self) -> str:
        return (
            f"<ModuleProgress module={self.module_id} {self.status} "
            f"{self.completion_percentage}%>"
        )


class CompletedModule:
    """Entry in the user's completed-modules list."""

    def __init__(self, module_id: UUID, completed_at: datetime | None = None):
        self.module_id = module_id
        self.completed_at = ensure_utc_aware(completed_at) or datetime.now(UTC)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"module_id": self.module_id, "completed_at": self.completed_at}

    def __repr__(self) -> str:
        return f"<CompletedModule module={self.module_id}>"


class Progress:
    """The single progression record of a user.

    Owns its module entries and completion records; catalog modules and
    quizzes are referenced by ID only.

    Attributes:
        user_id: Owner UUID
        current_module_id: Most advanced module the user is working in
        unlocked_modules: Modules the user may open
        completed_modules: Completed modules in completion order
        module_progress: Module entries keyed by module
        created_at: Creation timestamp
        updated_at: Last update timestamp
    """

    def __init__(
        self,
        user_id: UUID,
        current_module_id: UUID | None = None,
        unlocked_modules: set[UUID] | None = None,
        completed_modules: list[CompletedModule] | None = None,
        module_progress: dict[UUID, ModuleProgress] | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ):
        self.user_id = user_id
        self.current_module_id = current_module_id
        self.unlocked_modules = set(unlocked_modules or ())
        self.completed_modules = list(completed_modules or [])
        self.module_progress = dict(module_progress or {})
        self.created_at = ensure_utc_aware(created_at) or datetime.now(UTC)
        self.updated_at = ensure_utc_aware(updated_at)

    # ==========================================================================
    # Membership Tests
    # ==========================================================================

    def is_module_unlocked(self, module_id: UUID) -> bool:
        """Check if module is in the unlocked set."""
        return module_id in self.unlocked_modules

    def is_quiz_unlocked(self, quiz_id: UUID) -> bool:
        """Check if quiz is unlocked in any module entry."""
        return any(
            quiz_id in entry.unlocked_quizzes for entry in self.module_progress.values()
        )

    def is_quiz_unlocked_by_order(self, quiz_id: UUID, quiz_order: int) -> bool:
        """Authoritative access check: the first quiz of a module is never gated."""
        if quiz_order == 1:
            return True
        return self.is_quiz_unlocked(quiz_id)

    def is_module_completed(self, module_id: UUID) -> bool:
        """Check if module is in the completed list."""
        return any(c.module_id == module_id for c in self.completed_modules)

    # ==========================================================================
    # Module Entries
    # ==========================================================================

    def get_module_progress(self, module_id: UUID) -> ModuleProgress | None:
        """Get the entry of a module, if the user touched it."""
        return self.module_progress.get(module_id)

    def get_or_create_module_progress(self, module_id: UUID) -> ModuleProgress:
        """Get the entry of a module, creating an unlocked one if missing."""
        entry = self.module_progress.get(module_id)
        if entry is None:
            entry = ModuleProgress(module_id=module_id)
            self.module_progress[module_id] = entry
        return entry

    def mark_module_completed(self, module_id: UUID) -> bool:
        """Append module to the completed list once.

        Returns:
            True if the module was newly added
        """
        if self.is_module_completed(module_id):
            return False
        self.completed_modules.append(CompletedModule(module_id))
        return True

    def forget_module(self, module_id: UUID) -> None:
        """Drop every reference to a module."""
        self.unlocked_modules.discard(module_id)
        self.completed_modules = [
            c for c in self.completed_modules if c.module_id != module_id
        ]
        self.module_progress.pop(module_id, None)
        if self.current_module_id == module_id:
            self.current_module_id = None

    def calculate_module_final_score(self, module_id: UUID) -> int:
        """Mean best score across the module's completion records, rounded."""
        entry = self.module_progress.get(module_id)
        if not entry or not entry.completed_quizzes:
            return 0
        total = sum(c.best_score for c in entry.completed_quizzes.values())
        return round_half_up(total / len(entry.completed_quizzes))

    # ==========================================================================
    # Serialization
    # ==========================================================================

    @classmethod
    def from_rows(
        cls,
        row: Any,
        module_rows: list[Any],
        completion_rows: list[Any],
    ) -> "Progress":
        """Assemble Progress from its partition rows."""
        completions: dict[UUID, list[QuizCompletion]] = {}
        for completion_row in completion_rows:
            completions.setdefault(completion_row.module_id, []).append(
                QuizCompletion.from_row(completion_row)
            )

        module_progress = {
            module_row.module_id: ModuleProgress.from_row(
                module_row, completions.get(module_row.module_id)
            )
            for module_row in module_rows
        }

        completed_modules = sorted(
            (
                CompletedModule(module_id, completed_at)
                for module_id, completed_at in (row.completed_modules or {}).items()
            ),
            key=lambda c: c.completed_at,
        )

        return cls(
            user_id=row.user_id,
            current_module_id=row.current_module_id,
            unlocked_modules=row.unlocked_modules,
            completed_modules=completed_modules,
            module_progress=module_progress,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "user_id": self.user_id,
            "global_progress": {
                "current_module_id": self.current_module_id,
                "unlocked_modules": sorted(self.unlocked_modules, key=str),
                "completed_modules": [c.to_dict() for c in self.completed_modules],
            },
            "module_progress": [m.to_dict() for m in self.module_progress.values()],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def __repr__(self) -> str:
        return (
            f"<Progress user={self.user_id} current={self.current_module_id} "
            f"modules={len(self.module_progress)}>"
        )


class QuizAttempt:
    """One submitted attempt, kept for history only.

    Attributes:
        user_id: User UUID
        quiz_id: Quiz UUID
        module_id: Owning module UUID
        attempt_number: Attempt count at submission time
        score: Submitted score
        passed: Whether the attempt met the passing score
        attempted_at: Submission timestamp
    """

    def __init__(
        self,
        user_id: UUID,
        quiz_id: UUID,
        module_id: UUID,
        attempt_number: int,
        score: Decimal,
        passed: bool,
        attempted_at: datetime | None = None,
        attempt_id: UUID | None = None,
    ):
        self.attempt_id = attempt_id or uuid4()
        self.user_id = user_id
        self.quiz_id = quiz_id
        self.module_id = module_id
        self.attempt_number = attempt_number
        self.score = Decimal(score)
        self.passed = passed
        self.attempted_at = ensure_utc_aware(attempted_at) or datetime.now(UTC)

    @classmethod
    def from_row(cls, row: Any) -> "QuizAttempt":
        """Create QuizAttempt instance from Cassandra row."""
        return cls(
            attempt_id=row.attempt_id,
            user_id=row.user_id,
            quiz_id=row.quiz_id,
            module_id=row.module_id,
            attempt_number=row.attempt_number or 1,
            score=row.score or Decimal(0),
            passed=bool(row.passed),
            attempted_at=row.attempted_at,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "attempt_id": self.attempt_id,
            "quiz_id": self.quiz_id,
            "module_id": self.module_id,
            "attempt_number": self.attempt_number,
            "score": self.score,
            "passed": self.passed,
            "attempted_at": self.attempted_at,
        }

    def __repr__(self) -> str:
        return (
            f"<QuizAttempt quiz={self.quiz_id} #{self.attempt_number} "
            f"score={self.score} passed={self.passed}>"
        )
