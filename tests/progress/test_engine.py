"""Tests for the progression state machine.

Covers:
- ensure_default_access idempotence
- Order-1 quizzes are never gated
- Completion records (sticky ever_passed, monotonic best_score)
- Forward unlock only on a passing attempt
- Module completion requires every quiz passed
- Completion percentage and final score rounding
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from src.progress.engine import (
    ProgressEngine,
    ProgressValidationError,
    QuizNotFoundError,
)
from src.progress.models import ModuleProgress, ModuleStatus, Progress, QuizCompletion


@pytest.fixture
def progress(user_id) -> Progress:
    """Fresh, empty progress record."""
    return Progress(user_id=user_id)


class TestEnsureDefaultAccess:
    """Tests for default access seeding."""

    @pytest.mark.asyncio
    async def test_no_modules_is_noop(self, engine, progress) -> None:
        """Without a module 1 nothing changes."""
        changed = await engine.ensure_default_access(progress)
        assert changed is False
        assert progress.unlocked_modules == set()
        assert progress.module_progress == {}

    @pytest.mark.asyncio
    async def test_unlocks_first_module_and_quiz(
        self, engine, catalog, progress
    ) -> None:
        """Module 1 and its order-1 quiz become accessible."""
        module = catalog.add_module()
        quiz = catalog.add_quiz(module)

        changed = await engine.ensure_default_access(progress)

        assert changed is True
        assert progress.is_module_unlocked(module.id)
        assert progress.current_module_id == module.id
        entry = progress.get_module_progress(module.id)
        assert entry.status == ModuleStatus.UNLOCKED.value
        assert quiz.id in entry.unlocked_quizzes
        assert entry.current_quiz_id == quiz.id

    @pytest.mark.asyncio
    async def test_idempotent(self, engine, catalog, progress) -> None:
        """Second call changes nothing."""
        module = catalog.add_module()
        catalog.add_quiz(module)

        assert await engine.ensure_default_access(progress) is True
        snapshot = progress.to_dict()

        assert await engine.ensure_default_access(progress) is False
        assert progress.to_dict() == snapshot
        assert len(progress.module_progress) == 1

    @pytest.mark.asyncio
    async def test_unlocks_locked_first_module_entry(
        self, engine, catalog, progress
    ) -> None:
        """A locked entry for module 1 is unlocked."""
        module = catalog.add_module()
        progress.module_progress[module.id] = ModuleProgress(
            module_id=module.id, status=ModuleStatus.LOCKED.value
        )

        assert await engine.ensure_default_access(progress) is True
        assert progress.module_progress[module.id].status == "unlocked"


class TestQuizAccess:
    """Tests for access checks."""

    def test_order_one_always_unlocked(self, progress) -> None:
        """First quiz of any module is open regardless of stored state."""
        quiz_id = uuid4()
        assert progress.is_quiz_unlocked(quiz_id) is False
        assert progress.is_quiz_unlocked_by_order(quiz_id, 1) is True

    def test_later_quiz_requires_membership(self, progress) -> None:
        """Other quizzes follow the unlocked set."""
        module_id, quiz_id = uuid4(), uuid4()
        assert progress.is_quiz_unlocked_by_order(quiz_id, 2) is False

        progress.get_or_create_module_progress(module_id).unlock_quiz(quiz_id)
        assert progress.is_quiz_unlocked_by_order(quiz_id, 2) is True


class TestCompleteQuiz:
    """Tests for attempt recording and unlock propagation."""

    @pytest.mark.asyncio
    async def test_unknown_quiz_raises_without_mutation(
        self, engine, catalog, progress
    ) -> None:
        """NotFound leaves the record untouched."""
        catalog.add_module()
        snapshot = progress.to_dict()

        with pytest.raises(QuizNotFoundError):
            await engine.complete_quiz(progress, uuid4(), 90)

        assert progress.to_dict() == snapshot

    @pytest.mark.asyncio
    async def test_score_out_of_range(self, engine, catalog, progress) -> None:
        """Scores outside 0-100 are rejected."""
        quiz = catalog.add_quiz(catalog.add_module())
        with pytest.raises(ProgressValidationError):
            await engine.complete_quiz(progress, quiz.id, 120)

    @pytest.mark.asyncio
    async def test_first_attempt_record(self, engine, catalog, progress) -> None:
        """First attempt seeds score, best score and both pass flags."""
        module = catalog.add_module()
        quiz = catalog.add_quiz(module)

        outcome = await engine.complete_quiz(progress, quiz.id, 80)

        completion = progress.get_module_progress(module.id).completed_quizzes[quiz.id]
        assert completion.attempts == 1
        assert completion.score == Decimal(80)
        assert completion.best_score == Decimal(80)
        assert completion.passed is True
        assert completion.ever_passed is True
        assert outcome.passed is True

    @pytest.mark.asyncio
    async def test_ever_passed_is_sticky(self, engine, catalog, progress) -> None:
        """A later failure resets passed but never ever_passed."""
        module = catalog.add_module()
        quiz = catalog.add_quiz(module)

        await engine.complete_quiz(progress, quiz.id, 90)
        await engine.complete_quiz(progress, quiz.id, 20)

        completion = progress.get_module_progress(module.id).completed_quizzes[quiz.id]
        assert completion.passed is False
        assert completion.ever_passed is True
        assert completion.attempts == 2

    @pytest.mark.asyncio
    async def test_best_score_non_decreasing(self, engine, catalog, progress) -> None:
        """best_score keeps the maximum while score tracks the latest."""
        module = catalog.add_module()
        quiz = catalog.add_quiz(module)
        entry_best = []

        for score in (50, 85, 60, 85.5, 10):
            await engine.complete_quiz(progress, quiz.id, score)
            completion = progress.get_module_progress(module.id).completed_quizzes[
                quiz.id
            ]
            entry_best.append(completion.best_score)

        assert entry_best == sorted(entry_best)
        assert completion.best_score == Decimal("85.5")
        assert completion.score == Decimal(10)
        assert completion.attempts == 5

    @pytest.mark.asyncio
    async def test_failing_does_not_unlock_next_quiz(
        self, engine, catalog, progress
    ) -> None:
        """Score below the passing score keeps the next quiz locked."""
        module = catalog.add_module()
        q1 = catalog.add_quiz(module, passing_score=70)
        q2 = catalog.add_quiz(module)
        await engine.ensure_default_access(progress)

        outcome = await engine.complete_quiz(progress, q1.id, 50)

        entry = progress.get_module_progress(module.id)
        assert q2.id not in entry.unlocked_quizzes
        assert entry.current_quiz_id == q1.id
        assert outcome.unlocked_quiz_id is None

    @pytest.mark.asyncio
    async def test_passing_unlocks_next_quiz(self, engine, catalog, progress) -> None:
        """Passing adds the next quiz and points at it."""
        module = catalog.add_module()
        q1 = catalog.add_quiz(module, passing_score=70)
        q2 = catalog.add_quiz(module)
        await engine.ensure_default_access(progress)

        await engine.complete_quiz(progress, q1.id, 50)
        outcome = await engine.complete_quiz(progress, q1.id, 80)

        entry = progress.get_module_progress(module.id)
        assert q2.id in entry.unlocked_quizzes
        assert entry.current_quiz_id == q2.id
        assert outcome.unlocked_quiz_id == q2.id

    @pytest.mark.asyncio
    async def test_passing_twice_does_not_duplicate(
        self, engine, catalog, progress
    ) -> None:
        """Unlocked quizzes behave as a set."""
        module = catalog.add_module()
        q1 = catalog.add_quiz(module)
        catalog.add_quiz(module)

        await engine.complete_quiz(progress, q1.id, 90)
        await engine.complete_quiz(progress, q1.id, 95)

        assert len(progress.get_module_progress(module.id).unlocked_quizzes) == 2

    @pytest.mark.asyncio
    async def test_exact_passing_score_passes(self, engine, catalog, progress) -> None:
        """score == passing_score counts as a pass."""
        quiz = catalog.add_quiz(catalog.add_module(), passing_score=60)
        outcome = await engine.complete_quiz(progress, quiz.id, 60)
        assert outcome.passed is True

    @pytest.mark.asyncio
    async def test_default_passing_score(self, catalog, progress) -> None:
        """Quizzes without a passing score use the engine default."""
        quiz = catalog.add_quiz(catalog.add_module())
        engine = ProgressEngine(catalog=catalog, default_passing_score=50)

        outcome = await engine.complete_quiz(progress, quiz.id, 55)

        assert outcome.passing_score == 50
        assert outcome.passed is True

    @pytest.mark.asyncio
    async def test_first_attempt_marks_in_progress(
        self, engine, catalog, progress
    ) -> None:
        """An unlocked module moves to in_progress and gets started_at."""
        module = catalog.add_module()
        q1 = catalog.add_quiz(module)
        catalog.add_quiz(module)
        await engine.ensure_default_access(progress)

        await engine.complete_quiz(progress, q1.id, 10)

        entry = progress.get_module_progress(module.id)
        assert entry.status == ModuleStatus.IN_PROGRESS.value
        assert entry.started_at is not None


class TestModuleCompletion:
    """Tests for module completion and next-module unlock."""

    @pytest.mark.asyncio
    async def test_all_passed_completes_and_unlocks_next(
        self, engine, catalog, progress
    ) -> None:
        """Passing every quiz completes the module and opens the next."""
        m1 = catalog.add_module()
        q1 = catalog.add_quiz(m1)
        q2 = catalog.add_quiz(m1)
        m2 = catalog.add_module()
        m2_q1 = catalog.add_quiz(m2)
        await engine.ensure_default_access(progress)

        await engine.complete_quiz(progress, q1.id, 90)
        outcome = await engine.complete_quiz(progress, q2.id, 75)

        entry = progress.get_module_progress(m1.id)
        assert entry.status == ModuleStatus.COMPLETED.value
        assert entry.completed_at is not None
        assert progress.is_module_completed(m1.id)
        assert progress.is_module_unlocked(m2.id)
        assert progress.current_module_id == m2.id
        next_entry = progress.get_module_progress(m2.id)
        assert m2_q1.id in next_entry.unlocked_quizzes
        assert next_entry.current_quiz_id == m2_q1.id
        assert outcome.module_completed is True
        assert outcome.unlocked_module_id == m2.id

    @pytest.mark.asyncio
    async def test_attempted_but_not_passed_blocks_completion(
        self, engine, catalog, progress
    ) -> None:
        """A failed quiz keeps the module open even when all were attempted."""
        m1 = catalog.add_module()
        q1 = catalog.add_quiz(m1)
        q2 = catalog.add_quiz(m1, passing_score=100)
        m2 = catalog.add_module()
        await engine.ensure_default_access(progress)

        await engine.complete_quiz(progress, q1.id, 90)
        await engine.complete_quiz(progress, q2.id, 40)

        entry = progress.get_module_progress(m1.id)
        assert entry.status != ModuleStatus.COMPLETED.value
        assert not progress.is_module_completed(m1.id)
        assert not progress.is_module_unlocked(m2.id)

    @pytest.mark.asyncio
    async def test_last_quiz_passed_with_earlier_failure(
        self, engine, catalog, progress
    ) -> None:
        """Passing the last quiz is not enough while an earlier one never passed."""
        m1 = catalog.add_module()
        q1 = catalog.add_quiz(m1)
        q2 = catalog.add_quiz(m1)
        m2 = catalog.add_module()

        await engine.complete_quiz(progress, q1.id, 30)
        outcome = await engine.complete_quiz(progress, q2.id, 95)

        assert outcome.module_completed is False
        assert not progress.is_module_unlocked(m2.id)
        assert progress.get_module_progress(m1.id).completion_percentage == 50

    @pytest.mark.asyncio
    async def test_completed_modules_recorded_once(
        self, engine, catalog, progress
    ) -> None:
        """Re-passing the last quiz does not duplicate the completed entry."""
        m1 = catalog.add_module()
        q1 = catalog.add_quiz(m1)
        catalog.add_module()

        await engine.complete_quiz(progress, q1.id, 90)
        await engine.complete_quiz(progress, q1.id, 95)

        assert [c.module_id for c in progress.completed_modules] == [m1.id]

    @pytest.mark.asyncio
    async def test_repassing_completed_module_keeps_position(
        self, engine, catalog, progress
    ) -> None:
        """Re-completing an early module does not rewind the learner."""
        m1 = catalog.add_module()
        m1_q1 = catalog.add_quiz(m1)
        m2 = catalog.add_module()
        m2_quizzes = [catalog.add_quiz(m2) for _ in range(3)]
        m3 = catalog.add_module()
        catalog.add_quiz(m3)

        for quiz in [m1_q1, *m2_quizzes]:
            await engine.complete_quiz(progress, quiz.id, 90)
        m2_entry = progress.get_module_progress(m2.id)
        position = m2_entry.current_quiz_id
        assert progress.current_module_id == m3.id

        outcome = await engine.complete_quiz(progress, m1_q1.id, 95)

        assert outcome.module_completed is True
        assert progress.current_module_id == m3.id
        assert m2_entry.current_quiz_id == position
        assert m2_entry.current_quiz_id != m2_quizzes[0].id
        assert m2_entry.status == ModuleStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_last_module_completes_curriculum(
        self, engine, catalog, progress
    ) -> None:
        """No next module is not an error."""
        m1 = catalog.add_module()
        q1 = catalog.add_quiz(m1)

        outcome = await engine.complete_quiz(progress, q1.id, 100)

        assert outcome.module_completed is True
        assert outcome.curriculum_completed is True
        assert outcome.unlocked_module_id is None
        assert progress.unlocked_modules == set()

    @pytest.mark.asyncio
    async def test_next_module_without_quizzes(
        self, engine, catalog, progress
    ) -> None:
        """A quiz-less next module is unlocked without a module entry."""
        m1 = catalog.add_module()
        q1 = catalog.add_quiz(m1)
        m2 = catalog.add_module()

        await engine.complete_quiz(progress, q1.id, 100)

        assert progress.is_module_unlocked(m2.id)
        assert progress.get_module_progress(m2.id) is None

    @pytest.mark.asyncio
    async def test_completed_module_stays_completed_on_failure(
        self, engine, catalog, progress
    ) -> None:
        """Failing a retake of a completed module keeps it completed."""
        m1 = catalog.add_module()
        q1 = catalog.add_quiz(m1)

        await engine.complete_quiz(progress, q1.id, 100)
        await engine.complete_quiz(progress, q1.id, 0)

        entry = progress.get_module_progress(m1.id)
        assert entry.status == ModuleStatus.COMPLETED.value
        assert entry.completion_percentage == 100


class TestRefreshModuleProgress:
    """Tests for the shared module re-normalization."""

    def test_zero_quizzes_is_zero_percent(self) -> None:
        """Empty modules report 0 rather than dividing by zero."""
        entry = ModuleProgress(module_id=uuid4(), completion_percentage=50)
        assert ProgressEngine.refresh_module_progress(entry, []) == 0

    @pytest.mark.asyncio
    async def test_rounds_half_up(self, catalog) -> None:
        """1 of 3 passed is 33, 2 of 3 is 67."""
        module = catalog.add_module()
        quizzes = [catalog.add_quiz(module) for _ in range(3)]
        entry = ModuleProgress(module_id=module.id)
        entry.completed_quizzes[quizzes[0].id] = QuizCompletion(
            quizzes[0].id, Decimal(90), passed=True
        )
        assert ProgressEngine.refresh_module_progress(entry, quizzes) == 33

        entry.completed_quizzes[quizzes[1].id] = QuizCompletion(
            quizzes[1].id, Decimal(90), passed=True
        )
        assert ProgressEngine.refresh_module_progress(entry, quizzes) == 67

    @pytest.mark.asyncio
    async def test_prunes_stale_references(self, catalog) -> None:
        """Deleted quizzes are dropped and current_quiz falls back to the last."""
        module = catalog.add_module()
        q1 = catalog.add_quiz(module)
        q2 = catalog.add_quiz(module)
        gone = uuid4()

        entry = ModuleProgress(
            module_id=module.id,
            current_quiz_id=gone,
            unlocked_quizzes={q1.id, gone},
            completed_quizzes={
                q1.id: QuizCompletion(q1.id, Decimal(80), passed=True),
                gone: QuizCompletion(gone, Decimal(80), passed=True),
            },
        )

        percentage = ProgressEngine.refresh_module_progress(entry, [q1, q2])

        assert set(entry.completed_quizzes) == {q1.id}
        assert entry.unlocked_quizzes == {q1.id}
        assert entry.current_quiz_id == q2.id
        assert percentage == 50

    def test_never_exceeds_hundred(self) -> None:
        """Percentage is capped even with more records than quizzes."""
        quiz_id = uuid4()

        class _Quiz:
            id = quiz_id
            order = 1

        entry = ModuleProgress(
            module_id=uuid4(),
            completed_quizzes={quiz_id: QuizCompletion(quiz_id, Decimal(90), passed=True)},
        )
        assert ProgressEngine.refresh_module_progress(entry, [_Quiz()]) == 100

    @pytest.mark.asyncio
    async def test_recalculate_without_entry(self, engine, progress) -> None:
        """Returns None when the user never touched the module."""
        assert await engine.recalculate_completion_percentage(progress, uuid4()) is None


class TestFinalScore:
    """Tests for the module final score."""

    def test_no_completions(self, progress) -> None:
        """Zero when nothing was attempted."""
        assert progress.calculate_module_final_score(uuid4()) == 0

    def test_mean_of_best_scores(self, progress) -> None:
        """Mean of best scores rounded half up."""
        module_id = uuid4()
        entry = progress.get_or_create_module_progress(module_id)
        for best in (Decimal(70), Decimal(81)):
            quiz_id = uuid4()
            entry.completed_quizzes[quiz_id] = QuizCompletion(
                quiz_id, Decimal(0), best_score=best
            )

        assert progress.calculate_module_final_score(module_id) == 76
