"""Tests for progress consistency repair."""

from decimal import Decimal
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from src.progress.models import ModuleStatus, Progress, QuizCompletion


async def _seed_progress(progress_service, user_id):
    """Create a user record through the normal path."""
    return await progress_service.get_or_create_progress(user_id)


class TestRepairAfterModuleDeletion:
    """Tests for module deletion fallout."""

    @pytest.mark.asyncio
    async def test_current_module_repointed_to_freed_slot(
        self, catalog, engine, repository, repair_service, progress_service, user_id
    ) -> None:
        """Deleting module 2 of 3 moves current to the renumbered module 3."""
        m1 = catalog.add_module("One")
        q1 = catalog.add_quiz(m1)
        m2 = catalog.add_module("Two")
        m2_q1 = catalog.add_quiz(m2)
        m3 = catalog.add_module("Three")
        catalog.add_quiz(m3)

        await progress_service.complete_quiz(user_id, q1.id, 100)
        await progress_service.complete_quiz(user_id, m2_q1.id, 10)
        stored = repository.records[user_id]
        assert stored.current_module_id == m2.id

        catalog.remove_module(m2)
        summary = await repair_service.repair_after_module_deletion(m2.id, 2)

        assert m3.order == 2
        assert summary.scanned == 1
        assert summary.repaired == 1
        progress = repository.records[user_id]
        assert progress.current_module_id == m3.id
        assert m2.id not in progress.unlocked_modules
        assert progress.get_module_progress(m2.id) is None
        assert m1.id in progress.unlocked_modules
        assert progress.is_module_completed(m1.id)
        assert progress.get_module_progress(m1.id).is_completed

    @pytest.mark.asyncio
    async def test_last_module_deleted_falls_back_to_previous(
        self, catalog, repository, repair_service, progress_service, user_id
    ) -> None:
        """Deleting the last module moves current to the new last module."""
        m1 = catalog.add_module()
        q1 = catalog.add_quiz(m1)
        m2 = catalog.add_module()
        catalog.add_quiz(m2)

        await progress_service.complete_quiz(user_id, q1.id, 100)
        catalog.remove_module(m2)
        await repair_service.repair_after_module_deletion(m2.id, 2)

        assert repository.records[user_id].current_module_id == m1.id

    @pytest.mark.asyncio
    async def test_unrelated_current_module_untouched(
        self, catalog, repository, repair_service, progress_service, user_id
    ) -> None:
        """Users who never reached the deleted module keep their current."""
        m1 = catalog.add_module()
        catalog.add_quiz(m1)
        m2 = catalog.add_module()

        await _seed_progress(progress_service, user_id)
        catalog.remove_module(m2)
        summary = await repair_service.repair_after_module_deletion(m2.id, 2)

        assert summary.repaired == 0
        assert repository.records[user_id].current_module_id == m1.id


class TestRepairAfterQuizDeletion:
    """Tests for quiz deletion fallout."""

    @pytest.mark.asyncio
    async def test_stale_completion_pruned_and_percentage_recomputed(
        self, catalog, repository, repair_service, progress_service, user_id
    ) -> None:
        """Completion of a deleted quiz is removed."""
        module = catalog.add_module()
        q1 = catalog.add_quiz(module)
        q2 = catalog.add_quiz(module)
        q3 = catalog.add_quiz(module)

        await progress_service.complete_quiz(user_id, q1.id, 90)
        await progress_service.complete_quiz(user_id, q2.id, 90)
        assert repository.records[user_id].module_progress[
            module.id
        ].completion_percentage == 67

        catalog.remove_quiz(q2)
        summary = await repair_service.repair_after_quiz_deletion(module.id)

        assert summary.repaired == 1
        entry = repository.records[user_id].get_module_progress(module.id)
        assert set(entry.completed_quizzes) == {q1.id}
        assert q2.id not in entry.unlocked_quizzes
        assert entry.completion_percentage == 50
        assert q3.order == 2

    @pytest.mark.asyncio
    async def test_dangling_current_quiz_repointed(
        self, catalog, repository, repair_service, progress_service, user_id
    ) -> None:
        """A current quiz that was deleted moves to the last live quiz."""
        module = catalog.add_module()
        q1 = catalog.add_quiz(module)
        q2 = catalog.add_quiz(module)

        await progress_service.complete_quiz(user_id, q1.id, 90)
        assert repository.records[user_id].module_progress[
            module.id
        ].current_quiz_id == q2.id

        catalog.remove_quiz(q2)
        await repair_service.repair_after_quiz_deletion(module.id)

        entry = repository.records[user_id].get_module_progress(module.id)
        assert entry.current_quiz_id == q1.id
        assert entry.completion_percentage == 100


class TestRepairSystem:
    """Tests for the full-system repair."""

    @pytest.mark.asyncio
    async def test_second_run_is_noop(
        self, catalog, repository, repair_service, progress_service, user_id
    ) -> None:
        """Repairs are idempotent."""
        m1 = catalog.add_module()
        q1 = catalog.add_quiz(m1)
        m2 = catalog.add_module()
        catalog.add_quiz(m2)
        catalog.add_module()
        await progress_service.complete_quiz(user_id, q1.id, 100)

        first = await repair_service.repair_system()
        saves = repository.save_count
        second = await repair_service.repair_system()

        assert first.scanned == 1
        assert second.scanned == 1
        assert second.repaired == 0
        assert repository.save_count == saves

    @pytest.mark.asyncio
    async def test_synthesizes_missing_entries(
        self, catalog, repository, repair_service, progress_service, user_id
    ) -> None:
        """Untouched modules get locked entries pointing at their first quiz."""
        m1 = catalog.add_module()
        catalog.add_quiz(m1)
        m2 = catalog.add_module()
        m2_q1 = catalog.add_quiz(m2)

        await _seed_progress(progress_service, user_id)
        await repair_service.repair_system()

        entry = repository.records[user_id].get_module_progress(m2.id)
        assert entry.status == ModuleStatus.LOCKED.value
        assert entry.current_quiz_id == m2_q1.id
        assert entry.unlocked_quizzes == set()

    @pytest.mark.asyncio
    async def test_prunes_deleted_modules_and_restores_current(
        self, catalog, repository, repair_service, user_id
    ) -> None:
        """References to vanished modules go; current falls back to unlocked."""
        m1 = catalog.add_module()
        q1 = catalog.add_quiz(m1)
        m2 = catalog.add_module()
        ghost = uuid4()

        progress = Progress(
            user_id=user_id,
            current_module_id=ghost,
            unlocked_modules={m1.id, m2.id, ghost},
        )
        entry = progress.get_or_create_module_progress(ghost)
        entry.completed_quizzes[q1.id] = QuizCompletion(q1.id, Decimal(90))
        progress.mark_module_completed(ghost)
        repository.records[user_id] = progress

        summary = await repair_service.repair_system()

        assert summary.repaired == 1
        repaired = repository.records[user_id]
        assert ghost not in repaired.unlocked_modules
        assert repaired.get_module_progress(ghost) is None
        assert not repaired.is_module_completed(ghost)
        assert repaired.current_module_id == m2.id

    @pytest.mark.asyncio
    async def test_restores_first_module_unlock(
        self, catalog, repository, repair_service, user_id
    ) -> None:
        """Module 1 is always unlocked after repair."""
        m1 = catalog.add_module()
        q1 = catalog.add_quiz(m1)
        repository.records[user_id] = Progress(user_id=user_id)

        await repair_service.repair_system()

        repaired = repository.records[user_id]
        assert m1.id in repaired.unlocked_modules
        assert repaired.current_module_id == m1.id
        entry = repaired.get_module_progress(m1.id)
        assert entry.status == ModuleStatus.UNLOCKED.value
        assert q1.id in entry.unlocked_quizzes

    @pytest.mark.asyncio
    async def test_single_user_scope(
        self, catalog, repository, repair_service, user_id
    ) -> None:
        """Only the requested user is scanned."""
        catalog.add_module()
        other_id = uuid4()
        repository.records[user_id] = Progress(user_id=user_id)
        repository.records[other_id] = Progress(user_id=other_id)

        summary = await repair_service.repair_system(user_id=user_id)

        assert summary.scanned == 1
        assert repository.records[other_id].unlocked_modules == set()

    @pytest.mark.asyncio
    async def test_failures_are_counted_not_raised(
        self, catalog, repository, repair_service, user_id
    ) -> None:
        """A failing record does not abort the batch."""
        catalog.add_module()
        broken_id = uuid4()
        repository.records[user_id] = Progress(user_id=user_id)
        repository.records[broken_id] = Progress(user_id=broken_id)
        repository.fail_for.add(broken_id)

        summary = await repair_service.repair_system()

        assert summary.failed == 1
        assert summary.scanned == 1
        assert summary.repaired == 1

    @pytest.mark.asyncio
    async def test_empty_catalog_prunes_everything(
        self, repository, repair_service, user_id
    ) -> None:
        """With no modules left every module reference is dropped."""
        ghost = uuid4()
        repository.records[user_id] = Progress(
            user_id=user_id, current_module_id=ghost, unlocked_modules={ghost}
        )

        await repair_service.repair_system()

        repaired = repository.records[user_id]
        assert repaired.unlocked_modules == set()
        assert repaired.current_module_id is None

    @pytest.mark.asyncio
    async def test_missing_user_is_skipped(self, catalog, repair_service) -> None:
        """Unknown users are not scanned."""
        catalog.add_module()
        summary = await repair_service.repair_system(user_id=uuid4())
        assert summary.scanned == 0
        assert summary.repaired == 0


class TestRepairScanFailures:
    """Tests for repairs whose catalog or user scan fails."""

    @pytest.mark.asyncio
    async def test_user_listing_failure_after_module_deletion(
        self, catalog, repository, repair_service
    ) -> None:
        """A failed user scan is reported, not raised."""
        catalog.add_module()
        repository.list_user_ids = AsyncMock(side_effect=ConnectionError("down"))

        summary = await repair_service.repair_after_module_deletion(uuid4(), 2)

        assert summary.failed == 1
        assert summary.scanned == 0

    @pytest.mark.asyncio
    async def test_catalog_failure_after_quiz_deletion(
        self, catalog, repair_service
    ) -> None:
        """A failed catalog read is reported, not raised."""
        catalog.find_quizzes_by_module = AsyncMock(side_effect=ConnectionError("down"))

        summary = await repair_service.repair_after_quiz_deletion(uuid4())

        assert summary.failed == 1
        assert summary.repaired == 0

    @pytest.mark.asyncio
    async def test_catalog_failure_during_system_repair(
        self, catalog, repository, repair_service, user_id
    ) -> None:
        """No record is touched when the module scan fails."""
        repository.records[user_id] = Progress(user_id=user_id)
        catalog.find_modules_ordered_by = AsyncMock(side_effect=ConnectionError("down"))

        summary = await repair_service.repair_system()

        assert summary.failed == 1
        assert repository.records[user_id].unlocked_modules == set()
