"""Progress consistency repair.

Re-derives users' progress records against the current catalog after
structural changes (module or quiz deletion, quiz reordering) or on
demand. Every repair is idempotent: a record is saved only when the
repair actually changed it, so a second run reports zero changes.

Per-user failures are logged and counted; they never abort the batch.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from uuid import UUID

import structlog

from src.core.context import RequestContext

from .engine import ProgressEngine
from .models import ModuleProgress, ModuleStatus, Progress


logger = structlog.get_logger(__name__)


@dataclass
class RepairSummary:
    """Outcome of a repair run."""

    scanned: int = 0
    repaired: int = 0
    failed: int = 0


class RepairService:
    """Heals progress records after catalog changes."""

    def __init__(
        self,
        repository: Any,
        catalog: Any,
        engine: ProgressEngine,
        concurrency: int = 4,
    ):
        self.repository = repository
        self.catalog = catalog
        self.engine = engine
        self.concurrency = concurrency

    # ==========================================================================
    # Structural Change Repairs
    # ==========================================================================

    async def repair_after_module_deletion(
        self, deleted_module_id: UUID, deleted_order: int
    ) -> RepairSummary:
        """Drop a deleted module from every record.

        Must run after the remaining modules were renumbered: a current
        module pointing at the deleted one moves to the module now holding
        the freed order slot, or the previous slot when the deleted module
        was last.
        """
        try:
            modules = await self.catalog.find_modules_ordered_by()
            user_ids = await self.repository.list_user_ids()
        except Exception as e:
            return self._aborted("module_deletion", e)

        by_order = {m.order: m for m in modules}
        replacement = by_order.get(deleted_order) or by_order.get(deleted_order - 1)
        first_module = by_order.get(1)

        def apply(progress: Progress) -> None:
            was_current = progress.current_module_id == deleted_module_id
            progress.forget_module(deleted_module_id)
            if was_current:
                progress.current_module_id = replacement.id if replacement else None
            if first_module:
                progress.unlocked_modules.add(first_module.id)

        summary = await self._repair_users(user_ids, apply)
        logger.info(
            "module_deletion_repaired",
            module_id=str(deleted_module_id),
            order=deleted_order,
            scanned=summary.scanned,
            repaired=summary.repaired,
            failed=summary.failed,
        )
        return summary

    async def repair_after_quiz_deletion(self, module_id: UUID) -> RepairSummary:
        """Re-normalize every record's entry for the quiz's module."""
        try:
            quizzes = await self.catalog.find_quizzes_by_module(module_id)
            user_ids = await self.repository.list_user_ids()
        except Exception as e:
            return self._aborted("quiz_deletion", e)

        def apply(progress: Progress) -> None:
            entry = progress.get_module_progress(module_id)
            if entry is not None:
                self.engine.refresh_module_progress(entry, quizzes)

        summary = await self._repair_users(user_ids, apply)
        logger.info(
            "quiz_deletion_repaired",
            module_id=str(module_id),
            scanned=summary.scanned,
            repaired=summary.repaired,
            failed=summary.failed,
        )
        return summary

    # ==========================================================================
    # Full-System Repair
    # ==========================================================================

    async def repair_system(self, user_id: UUID | None = None) -> RepairSummary:
        """Re-derive records against the whole catalog.

        Args:
            user_id: Repair only this user's record (all users if None)
        """
        try:
            modules = await self.catalog.find_modules_ordered_by()
            quizzes_by_module = {
                module.id: await self.catalog.find_quizzes_by_module(module.id)
                for module in modules
            }
            user_ids = [user_id] if user_id else await self.repository.list_user_ids()
        except Exception as e:
            return self._aborted("system", e)

        def apply(progress: Progress) -> None:
            self.normalize(progress, modules, quizzes_by_module)

        summary = await self._repair_users(user_ids, apply)
        logger.info(
            "system_repaired",
            user_id=str(user_id) if user_id else None,
            modules=len(modules),
            scanned=summary.scanned,
            repaired=summary.repaired,
            failed=summary.failed,
        )
        return summary

    def normalize(
        self,
        progress: Progress,
        modules: list[Any],
        quizzes_by_module: dict[UUID, list[Any]],
    ) -> None:
        """Bring one record in line with the catalog (modules sorted by order)."""
        live_ids = {m.id for m in modules}
        referenced = (
            progress.unlocked_modules
            | set(progress.module_progress)
            | {c.module_id for c in progress.completed_modules}
        )
        for module_id in referenced - live_ids:
            current = progress.current_module_id
            progress.forget_module(module_id)
            progress.current_module_id = current
            logger.info(
                "stale_reference_pruned",
                user_id=str(progress.user_id),
                module_id=str(module_id),
            )

        first_module = next((m for m in modules if m.order == 1), None)
        if first_module:
            progress.unlocked_modules.add(first_module.id)

        if progress.current_module_id not in progress.unlocked_modules:
            unlocked = [m for m in modules if m.id in progress.unlocked_modules]
            if unlocked:
                progress.current_module_id = unlocked[-1].id
            else:
                progress.current_module_id = first_module.id if first_module else None

        for module in modules:
            quizzes = quizzes_by_module.get(module.id, [])
            entry = progress.get_module_progress(module.id)
            if entry is None:
                progress.module_progress[module.id] = self._synthesize_entry(
                    progress, module, quizzes
                )
            else:
                self.engine.refresh_module_progress(entry, quizzes)

    @staticmethod
    def _synthesize_entry(
        progress: Progress, module: Any, quizzes: list[Any]
    ) -> ModuleProgress:
        """Entry for a module the user never touched."""
        is_unlocked = module.order == 1 or progress.is_module_unlocked(module.id)
        first_quiz = next((q for q in quizzes if q.order == 1), None)

        entry = ModuleProgress(
            module_id=module.id,
            status=(
                ModuleStatus.UNLOCKED.value if is_unlocked else ModuleStatus.LOCKED.value
            ),
            current_quiz_id=first_quiz.id if first_quiz else None,
        )
        if is_unlocked and first_quiz:
            entry.unlocked_quizzes.add(first_quiz.id)
        return entry

    # ==========================================================================
    # Batch Runner
    # ==========================================================================

    @staticmethod
    def _aborted(repair: str, error: Exception) -> RepairSummary:
        """Summary for a repair whose catalog or user scan failed."""
        logger.exception("progress_repair_aborted", repair=repair, error=str(error))
        return RepairSummary(failed=1)

    async def _repair_users(
        self, user_ids: list[UUID], apply: Callable[[Progress], None]
    ) -> RepairSummary:
        """Apply a repair to each user's record with bounded parallelism."""
        summary = RepairSummary()
        semaphore = asyncio.Semaphore(self.concurrency)

        async def repair_one(user_id: UUID) -> None:
            async with semaphore:
                with RequestContext(user_id=user_id):
                    try:
                        progress = await self.repository.get(user_id)
                        if progress is None:
                            return
                        summary.scanned += 1

                        before = progress.to_dict()
                        apply(progress)
                        if progress.to_dict() == before:
                            return

                        await self.repository.save(progress)
                        summary.repaired += 1
                        logger.info("progress_repaired")
                    except Exception as e:
                        summary.failed += 1
                        logger.exception("progress_repair_failed", error=str(e))

        await asyncio.gather(*(repair_one(uid) for uid in user_ids))
        return summary
