"""Sequential progression service layer.

Business logic for:
- Progress record lifecycle (lazy creation with default access)
- Quiz access checks and attempt recording
- Module scores and re-normalization
- Attempt history
"""

from decimal import Decimal
from typing import Any
from uuid import UUID

import structlog

from src.catalog.models import Quiz

from .engine import (
    CompletionOutcome,
    ProgressEngine,
    ProgressError,
    ProgressModuleNotFoundError,
    ProgressNotFoundError,
    ProgressValidationError,
    QuizNotFoundError,
)
from .models import ModuleProgress, Progress, QuizAttempt
from .repository import DEFAULT_ATTEMPTS_LIMIT, ProgressRepository


logger = structlog.get_logger(__name__)

__all__ = [
    "ProgressError",
    "ProgressModuleNotFoundError",
    "ProgressNotFoundError",
    "ProgressService",
    "ProgressValidationError",
    "QuizNotFoundError",
]


# ==============================================================================
# Progress Service
# ==============================================================================


class ProgressService:
    """Service for per-user sequential progression."""

    def __init__(
        self,
        repository: ProgressRepository,
        engine: ProgressEngine,
        attempts_limit: int = DEFAULT_ATTEMPTS_LIMIT,
    ):
        self.repository = repository
        self.engine = engine
        self.attempts_limit = attempts_limit

    @property
    def catalog(self) -> Any:
        """Catalog reader used by the engine."""
        return self.engine.catalog

    # ==========================================================================
    # Record Lifecycle
    # ==========================================================================

    async def get_or_create_progress(self, user_id: UUID) -> Progress:
        """Load the user's record, creating it on first access.

        Default access (module 1 and its first quiz) is asserted on every
        load and persisted only when it changed something.
        """
        progress = await self.repository.get(user_id)
        created = progress is None
        if created:
            progress = Progress(user_id=user_id)

        changed = await self.engine.ensure_default_access(progress)
        if created or changed:
            await self.repository.save(progress)

        if created:
            logger.info("progress_created", user_id=str(user_id))
        return progress

    async def ensure_default_access(self, user_id: UUID) -> bool:
        """Assert default access for an existing record.

        Raises:
            ProgressNotFoundError: If the user has no record
        """
        progress = await self.get_progress(user_id)
        changed = await self.engine.ensure_default_access(progress)
        if changed:
            await self.repository.save(progress)
        return changed

    async def get_progress(self, user_id: UUID) -> Progress:
        """Load an existing record.

        Raises:
            ProgressNotFoundError: If the user has no record
        """
        progress = await self.repository.get(user_id)
        if progress is None:
            raise ProgressNotFoundError
        return progress

    async def delete_progress(self, user_id: UUID) -> None:
        """Remove a user's record and attempt history.

        Raises:
            ProgressNotFoundError: If the user has no record
        """
        await self.get_progress(user_id)
        await self.repository.delete(user_id)

    # ==========================================================================
    # Quizzes
    # ==========================================================================

    async def check_quiz_access(
        self, user_id: UUID, quiz_id: UUID
    ) -> tuple[bool, Quiz]:
        """Check whether the user may open a quiz.

        Returns:
            Tuple of (unlocked, quiz)

        Raises:
            QuizNotFoundError: If the quiz doesn't exist
        """
        quiz = await self.catalog.get_quiz(quiz_id)
        if not quiz:
            raise QuizNotFoundError

        progress = await self.get_or_create_progress(user_id)
        unlocked = progress.is_quiz_unlocked_by_order(quiz.id, quiz.order)

        logger.debug(
            "quiz_access_checked",
            quiz_id=str(quiz_id),
            order=quiz.order,
            unlocked=unlocked,
        )
        return unlocked, quiz

    async def complete_quiz(
        self, user_id: UUID, quiz_id: UUID, score: Decimal
    ) -> tuple[Progress, CompletionOutcome]:
        """Record a scored attempt, persist the record and log the attempt.

        Raises:
            QuizNotFoundError: If the quiz doesn't exist
            ProgressModuleNotFoundError: If the quiz's module doesn't exist
        """
        progress = await self.get_or_create_progress(user_id)
        outcome = await self.engine.complete_quiz(progress, quiz_id, score)
        await self.repository.save(progress)

        await self.repository.add_attempt(
            QuizAttempt(
                user_id=user_id,
                quiz_id=outcome.quiz_id,
                module_id=outcome.module_id,
                attempt_number=outcome.attempts,
                score=outcome.score,
                passed=outcome.passed,
            )
        )
        return progress, outcome

    async def list_attempts(
        self, user_id: UUID, quiz_id: UUID | None = None
    ) -> list[QuizAttempt]:
        """Newest-first attempt history."""
        return await self.repository.list_attempts(
            user_id, quiz_id=quiz_id, limit=self.attempts_limit
        )

    # ==========================================================================
    # Modules
    # ==========================================================================

    async def get_module_progress(
        self, user_id: UUID, module_id: UUID
    ) -> tuple[ModuleProgress | None, bool, int]:
        """Get a module entry with its unlock state and final score.

        Returns:
            Tuple of (entry or None, unlocked, final_score)

        Raises:
            ProgressModuleNotFoundError: If the module doesn't exist
        """
        module = await self.catalog.get_module(module_id)
        if not module:
            raise ProgressModuleNotFoundError

        progress = await self.get_or_create_progress(user_id)
        return (
            progress.get_module_progress(module_id),
            progress.is_module_unlocked(module_id),
            progress.calculate_module_final_score(module_id),
        )

    async def recalculate_module(self, user_id: UUID, module_id: UUID) -> int:
        """Re-normalize one module entry against the catalog.

        Raises:
            ProgressNotFoundError: If the user has no record or no entry
        """
        progress = await self.get_progress(user_id)
        before = progress.to_dict()

        percentage = await self.engine.recalculate_completion_percentage(
            progress, module_id
        )
        if percentage is None:
            msg = "Module progress not found"
            raise ProgressNotFoundError(msg)

        if progress.to_dict() != before:
            await self.repository.save(progress)
        return percentage
