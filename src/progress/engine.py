"""Sequential progression state machine.

Decides which modules and quizzes a user may open, folds quiz attempts
into the user's Progress record and propagates unlocks forward:

- Passing a quiz unlocks the next quiz (by order) of the same module
- Passing the last quiz completes the module once every quiz was passed
  at least once, and unlocks the next module (by order)
- Failing never unlocks anything

The engine mutates an in-memory Progress; loading and persisting is the
caller's job. Catalog lookups go through any object exposing the catalog
read queries (``get_quiz``, ``get_module``, ``find_module_by_order``,
``find_quizzes_by_module``, ``find_quiz_by_module_and_order``).
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

import structlog

from .models import (
    ModuleProgress,
    ModuleStatus,
    Progress,
    QuizCompletion,
    round_half_up,
)


logger = structlog.get_logger(__name__)


# ==============================================================================
# Custom Exceptions
# ==============================================================================


class ProgressError(Exception):
    """Base progress error."""

    def __init__(self, message: str, code: str = "progress_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class QuizNotFoundError(ProgressError):
    """Referenced quiz does not exist."""

    def __init__(self, message: str = "Quiz not found"):
        super().__init__(message, "quiz_not_found")


class ProgressModuleNotFoundError(ProgressError):
    """Referenced module does not exist."""

    def __init__(self, message: str = "Module not found"):
        super().__init__(message, "module_not_found")


class ProgressNotFoundError(ProgressError):
    """User has no progress record."""

    def __init__(self, message: str = "Progress not found"):
        super().__init__(message, "progress_not_found")


class ProgressValidationError(ProgressError):
    """Malformed input to a progress operation."""

    def __init__(self, message: str = "Invalid progress input"):
        super().__init__(message, "validation_failed")


# ==============================================================================
# Results
# ==============================================================================


@dataclass
class CompletionOutcome:
    """What a single quiz attempt changed."""

    quiz_id: UUID
    module_id: UUID
    score: Decimal
    passing_score: int
    passed: bool
    attempts: int
    completion_percentage: int
    unlocked_quiz_id: UUID | None = None
    module_completed: bool = False
    unlocked_module_id: UUID | None = None
    curriculum_completed: bool = False


# ==============================================================================
# Progress Engine
# ==============================================================================


class ProgressEngine:
    """Applies progression rules to a user's Progress record."""

    def __init__(self, catalog: Any, default_passing_score: int = 70):
        self.catalog = catalog
        self.default_passing_score = default_passing_score

    # ==========================================================================
    # Default Access
    # ==========================================================================

    async def ensure_default_access(self, progress: Progress) -> bool:
        """Guarantee module 1 and its first quiz are accessible.

        Idempotent. Does nothing when the catalog has no module 1.

        Returns:
            True if the record changed and needs saving
        """
        first_module = await self.catalog.find_module_by_order(1)
        if not first_module:
            return False

        changed = False

        if first_module.id not in progress.unlocked_modules:
            progress.unlocked_modules.add(first_module.id)
            changed = True

        if progress.current_module_id is None:
            progress.current_module_id = first_module.id
            changed = True

        entry = progress.get_module_progress(first_module.id)
        if entry is None:
            entry = progress.get_or_create_module_progress(first_module.id)
            changed = True

        if entry.is_locked:
            entry.status = ModuleStatus.UNLOCKED.value
            changed = True

        first_quiz = await self.catalog.find_quiz_by_module_and_order(
            first_module.id, 1
        )
        if first_quiz and first_quiz.id not in entry.unlocked_quizzes:
            entry.unlock_quiz(first_quiz.id, make_current=entry.current_quiz_id is None)
            changed = True

        if changed:
            logger.info(
                "default_access_granted",
                user_id=str(progress.user_id),
                module_id=str(first_module.id),
            )
        return changed

    # ==========================================================================
    # Quiz Completion
    # ==========================================================================

    async def complete_quiz(
        self, progress: Progress, quiz_id: UUID, score: Decimal | float | int
    ) -> CompletionOutcome:
        """Fold a scored attempt into the record and propagate unlocks.

        Raises:
            QuizNotFoundError: If the quiz doesn't exist (record untouched)
            ProgressModuleNotFoundError: If the quiz's module doesn't exist
            ProgressValidationError: If the score is outside 0-100
        """
        quiz = await self.catalog.get_quiz(quiz_id)
        if not quiz:
            raise QuizNotFoundError
        module = await self.catalog.get_module(quiz.module_id)
        if not module:
            raise ProgressModuleNotFoundError

        score = Decimal(str(score))
        if not Decimal(0) <= score <= Decimal(100):
            msg = "Score must be between 0 and 100"
            raise ProgressValidationError(msg)

        passing_score = (
            quiz.passing_score
            if quiz.passing_score is not None
            else self.default_passing_score
        )
        has_passed = score >= passing_score

        entry = progress.get_module_progress(module.id)
        if entry is None:
            entry = progress.get_or_create_module_progress(module.id)
            entry.unlock_quiz(quiz.id)
        if entry.status in (ModuleStatus.LOCKED.value, ModuleStatus.UNLOCKED.value):
            entry.status = ModuleStatus.IN_PROGRESS.value
        if entry.started_at is None:
            entry.started_at = datetime.now(UTC)

        completion = entry.completed_quizzes.get(quiz.id)
        if completion is None:
            completion = QuizCompletion(quiz_id=quiz.id, score=score, passed=has_passed)
            entry.completed_quizzes[quiz.id] = completion
        else:
            completion.record_attempt(score, has_passed)

        quizzes = await self.catalog.find_quizzes_by_module(module.id)
        self.refresh_module_progress(entry, quizzes)

        outcome = CompletionOutcome(
            quiz_id=quiz.id,
            module_id=module.id,
            score=score,
            passing_score=passing_score,
            passed=has_passed,
            attempts=completion.attempts,
            completion_percentage=entry.completion_percentage,
        )

        logger.info(
            "quiz_completed",
            user_id=str(progress.user_id),
            quiz_id=str(quiz.id),
            module_id=str(module.id),
            score=str(score),
            passed=has_passed,
            attempts=completion.attempts,
        )

        if not has_passed:
            return outcome

        next_quiz = await self.catalog.find_quiz_by_module_and_order(
            module.id, quiz.order + 1
        )
        if next_quiz:
            entry.unlock_quiz(next_quiz.id)
            outcome.unlocked_quiz_id = next_quiz.id
            logger.info(
                "quiz_unlocked",
                user_id=str(progress.user_id),
                quiz_id=str(next_quiz.id),
                module_id=str(module.id),
            )
            return outcome

        if not self.is_fully_passed(entry, quizzes):
            logger.info(
                "module_not_fully_passed",
                user_id=str(progress.user_id),
                module_id=str(module.id),
                completion_percentage=entry.completion_percentage,
            )
            return outcome

        await self._complete_module(progress, entry, module, outcome)
        return outcome

    async def _complete_module(
        self,
        progress: Progress,
        entry: ModuleProgress,
        module: Any,
        outcome: CompletionOutcome,
    ) -> None:
        """Mark a fully passed module completed and unlock its successor."""
        entry.status = ModuleStatus.COMPLETED.value
        if entry.completed_at is None:
            entry.completed_at = datetime.now(UTC)
        progress.mark_module_completed(module.id)
        outcome.module_completed = True

        logger.info(
            "module_completed",
            user_id=str(progress.user_id),
            module_id=str(module.id),
            final_score=progress.calculate_module_final_score(module.id),
        )

        next_module = await self.catalog.find_module_by_order(module.order + 1)
        if not next_module:
            outcome.curriculum_completed = True
            logger.info("curriculum_completed", user_id=str(progress.user_id))
            return

        progress.unlocked_modules.add(next_module.id)
        if not await self._is_further_along(progress, next_module.order):
            progress.current_module_id = next_module.id
        outcome.unlocked_module_id = next_module.id

        first_quiz = await self.catalog.find_quiz_by_module_and_order(
            next_module.id, 1
        )
        if first_quiz:
            next_entry = progress.get_or_create_module_progress(next_module.id)
            if next_entry.is_locked:
                next_entry.status = ModuleStatus.UNLOCKED.value
            # Re-completing a module must not rewind a learner already inside it
            next_entry.unlock_quiz(
                first_quiz.id, make_current=next_entry.current_quiz_id is None
            )

        logger.info(
            "module_unlocked",
            user_id=str(progress.user_id),
            module_id=str(next_module.id),
            order=next_module.order,
        )

    async def _is_further_along(self, progress: Progress, order: int) -> bool:
        """Whether the current module sits past ``order`` in the catalog."""
        if progress.current_module_id is None:
            return False
        current = await self.catalog.get_module(progress.current_module_id)
        return current is not None and current.order > order

    # ==========================================================================
    # Module Status
    # ==========================================================================

    @staticmethod
    def is_fully_passed(entry: ModuleProgress, quizzes: list[Any]) -> bool:
        """Every live quiz of the module was passed at least once."""
        passed = sum(1 for c in entry.completed_quizzes.values() if c.ever_passed)
        return passed >= len(quizzes)

    @staticmethod
    def refresh_module_progress(entry: ModuleProgress, quizzes: list[Any]) -> int:
        """Re-normalize a module entry against the module's live quizzes.

        Prunes completions and unlocked quizzes referencing deleted quizzes,
        re-points a dangling current quiz to the last live quiz, and
        recomputes the completion percentage. Shared by quiz completion and
        every repair path.

        Returns:
            The recomputed completion percentage
        """
        live_ids = {q.id for q in quizzes}

        stale = [qid for qid in entry.completed_quizzes if qid not in live_ids]
        for quiz_id in stale:
            del entry.completed_quizzes[quiz_id]
        stale_unlocked = entry.unlocked_quizzes - live_ids
        entry.unlocked_quizzes -= stale_unlocked

        if stale or stale_unlocked:
            logger.info(
                "stale_reference_pruned",
                module_id=str(entry.module_id),
                completions=len(stale),
                unlocked=len(stale_unlocked),
            )

        if entry.current_quiz_id is not None and entry.current_quiz_id not in live_ids:
            last_quiz = max(quizzes, key=lambda q: q.order) if quizzes else None
            entry.current_quiz_id = last_quiz.id if last_quiz else None

        if quizzes:
            passed = sum(1 for c in entry.completed_quizzes.values() if c.ever_passed)
            entry.completion_percentage = min(
                100, round_half_up(Decimal(100 * passed) / len(quizzes))
            )
        else:
            entry.completion_percentage = 0

        return entry.completion_percentage

    async def recalculate_completion_percentage(
        self, progress: Progress, module_id: UUID
    ) -> int | None:
        """Re-normalize one module entry against the current catalog.

        Returns:
            The recomputed percentage, or None if the user has no entry
        """
        entry = progress.get_module_progress(module_id)
        if entry is None:
            return None
        quizzes = await self.catalog.find_quizzes_by_module(module_id)
        return self.refresh_module_progress(entry, quizzes)

