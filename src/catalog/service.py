"""Quiz catalog service layer.

Business logic for:
- Ordered read queries over modules and quizzes (used by progression)
- Module and quiz creation at the next free order
- Deletion with order compaction (dense 1..N sequences)
- Manual quiz reordering
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID

import structlog

from .models import Module, Quiz
from .schemas import (
    CreateModuleRequest,
    CreateQuizRequest,
    ModuleResponse,
    QuizResponse,
)


if TYPE_CHECKING:
    from cassandra.cluster import Session

logger = structlog.get_logger(__name__)


# ==============================================================================
# Custom Exceptions
# ==============================================================================


class CatalogError(Exception):
    """Base catalog error."""

    def __init__(self, message: str, code: str = "catalog_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class CatalogModuleNotFoundError(CatalogError):
    """Module does not exist."""

    def __init__(self, message: str = "Module not found"):
        super().__init__(message, "module_not_found")


class CatalogQuizNotFoundError(CatalogError):
    """Quiz does not exist."""

    def __init__(self, message: str = "Quiz not found"):
        super().__init__(message, "quiz_not_found")


class InvalidReorderError(CatalogError):
    """Reorder payload does not match the module's quizzes."""

    def __init__(self, message: str = "Quiz order does not match module quizzes"):
        super().__init__(message, "invalid_reorder")


# ==============================================================================
# Catalog Service
# ==============================================================================


class CatalogService:
    """Service for modules and quizzes ordered by position."""

    def __init__(self, session: "Session", keyspace: str):
        """Initialize with Cassandra session."""
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient execution."""
        # Modules
        self._get_module_by_id = self.session.prepare(
            f"SELECT * FROM {self.keyspace}.modules WHERE id = ?"
        )
        self._get_all_modules = self.session.prepare(
            f"SELECT * FROM {self.keyspace}.modules"
        )
        self._insert_module = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.modules
            (id, title, description, category, image_url, order_index, quiz_ids,
             created_by, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """)
        self._update_module_order = self.session.prepare(
            f"UPDATE {self.keyspace}.modules SET order_index = ?, updated_at = ? WHERE id = ?"
        )
        self._append_module_quiz = self.session.prepare(
            f"UPDATE {self.keyspace}.modules SET quiz_ids = quiz_ids + ?, updated_at = ? WHERE id = ?"
        )
        self._remove_module_quiz = self.session.prepare(
            f"UPDATE {self.keyspace}.modules SET quiz_ids = quiz_ids - ?, updated_at = ? WHERE id = ?"
        )
        self._delete_module = self.session.prepare(
            f"DELETE FROM {self.keyspace}.modules WHERE id = ?"
        )

        # Quizzes
        self._get_quiz_by_id = self.session.prepare(
            f"SELECT * FROM {self.keyspace}.quizzes WHERE id = ?"
        )
        self._insert_quiz = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.quizzes
            (id, module_id, title, description, order_index, passing_score,
             created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """)
        self._update_quiz_order = self.session.prepare(
            f"UPDATE {self.keyspace}.quizzes SET order_index = ?, updated_at = ? WHERE id = ?"
        )
        self._delete_quiz = self.session.prepare(
            f"DELETE FROM {self.keyspace}.quizzes WHERE id = ?"
        )

        # Quizzes by module (lookup)
        self._get_module_quiz_ids = self.session.prepare(
            f"SELECT quiz_id FROM {self.keyspace}.quizzes_by_module WHERE module_id = ?"
        )
        self._upsert_quiz_by_module = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.quizzes_by_module
            (module_id, quiz_id, order_index)
            VALUES (?, ?, ?)
        """)
        self._delete_quiz_by_module = self.session.prepare(
            f"DELETE FROM {self.keyspace}.quizzes_by_module WHERE module_id = ? AND quiz_id = ?"
        )
        self._delete_all_quizzes_by_module = self.session.prepare(
            f"DELETE FROM {self.keyspace}.quizzes_by_module WHERE module_id = ?"
        )

    # ==========================================================================
    # Read Queries
    # ==========================================================================

    async def get_module(self, module_id: UUID) -> Module | None:
        """Get module by ID."""
        result = await self.session.aexecute(self._get_module_by_id, [module_id])
        row = result.one()
        return Module.from_row(row) if row else None

    async def get_quiz(self, quiz_id: UUID) -> Quiz | None:
        """Get quiz by ID."""
        result = await self.session.aexecute(self._get_quiz_by_id, [quiz_id])
        row = result.one()
        return Quiz.from_row(row) if row else None

    async def find_modules_ordered_by(self, ascending: bool = True) -> list[Module]:
        """Get every module sorted by curriculum order."""
        rows = await self.session.aexecute(self._get_all_modules)
        modules = [Module.from_row(row) for row in rows]
        modules.sort(key=lambda m: m.order, reverse=not ascending)
        return modules

    async def find_module_by_order(self, order: int) -> Module | None:
        """Get the module occupying an order slot."""
        for module in await self.find_modules_ordered_by():
            if module.order == order:
                return module
        return None

    async def find_quizzes_by_module(self, module_id: UUID) -> list[Quiz]:
        """Get all quizzes of a module sorted by order."""
        rows = await self.session.aexecute(self._get_module_quiz_ids, [module_id])

        quizzes = []
        for row in rows:
            quiz = await self.get_quiz(row.quiz_id)
            if quiz:
                quizzes.append(quiz)

        quizzes.sort(key=lambda q: q.order)
        return quizzes

    async def find_quiz_by_module_and_order(
        self, module_id: UUID, order: int
    ) -> Quiz | None:
        """Get the quiz occupying an order slot inside a module."""
        for quiz in await self.find_quizzes_by_module(module_id):
            if quiz.order == order:
                return quiz
        return None

    # ==========================================================================
    # Creation
    # ==========================================================================

    async def create_module(
        self, data: CreateModuleRequest, creator_id: UUID | None
    ) -> Module:
        """Create a module at the end of the curriculum."""
        modules = await self.find_modules_ordered_by()
        next_order = (modules[-1].order + 1) if modules else 1

        module = Module(
            order=next_order,
            title=data.title,
            description=data.description,
            category=data.category,
            image_url=data.image_url,
            created_by=creator_id,
        )

        await self.session.aexecute(
            self._insert_module,
            [
                module.id,
                module.title,
                module.description,
                module.category,
                module.image_url,
                module.order,
                module.quiz_ids,
                module.created_by,
                module.created_at,
                module.updated_at,
            ],
        )

        logger.info("module_created", module_id=str(module.id), order=module.order)
        return module

    async def create_quiz(self, module_id: UUID, data: CreateQuizRequest) -> Quiz:
        """Create a quiz at the end of a module.

        Raises:
            CatalogModuleNotFoundError: If the module doesn't exist
        """
        module = await self.get_module(module_id)
        if not module:
            raise CatalogModuleNotFoundError

        quizzes = await self.find_quizzes_by_module(module_id)
        next_order = (quizzes[-1].order + 1) if quizzes else 1

        quiz = Quiz(
            module_id=module_id,
            order=next_order,
            title=data.title,
            description=data.description,
            passing_score=data.passing_score,
        )

        await self.session.aexecute(
            self._insert_quiz,
            [
                quiz.id,
                quiz.module_id,
                quiz.title,
                quiz.description,
                quiz.order,
                quiz.passing_score,
                quiz.created_at,
                quiz.updated_at,
            ],
        )
        await self.session.aexecute(
            self._upsert_quiz_by_module, [module_id, quiz.id, quiz.order]
        )
        await self.session.aexecute(
            self._append_module_quiz, [[quiz.id], datetime.now(UTC), module_id]
        )

        logger.info(
            "quiz_created",
            quiz_id=str(quiz.id),
            module_id=str(module_id),
            order=quiz.order,
        )
        return quiz

    # ==========================================================================
    # Deletion and Order Compaction
    # ==========================================================================

    async def delete_module(self, module_id: UUID) -> tuple[Module, int]:
        """Delete a module and all of its quizzes, then close the order gap.

        Returns:
            Tuple of (deleted module, modules renumbered); the module's
            ``order`` is the freed slot

        Raises:
            CatalogModuleNotFoundError: If the module doesn't exist
        """
        module = await self.get_module(module_id)
        if not module:
            raise CatalogModuleNotFoundError

        quizzes = await self.find_quizzes_by_module(module_id)
        for quiz in quizzes:
            await self.session.aexecute(self._delete_quiz, [quiz.id])
        await self.session.aexecute(self._delete_all_quizzes_by_module, [module_id])
        await self.session.aexecute(self._delete_module, [module_id])

        logger.info(
            "module_deleted",
            module_id=str(module_id),
            order=module.order,
            quizzes_deleted=len(quizzes),
        )

        reordered = await self.reorder_modules_after_deletion(module.order)
        return module, reordered

    async def delete_quiz(self, quiz_id: UUID) -> tuple[Quiz, int]:
        """Delete a quiz, detach it from its module and close the order gap.

        Returns:
            Tuple of (deleted quiz, quizzes renumbered)

        Raises:
            CatalogQuizNotFoundError: If the quiz doesn't exist
        """
        quiz = await self.get_quiz(quiz_id)
        if not quiz:
            raise CatalogQuizNotFoundError

        await self.session.aexecute(self._delete_quiz, [quiz_id])
        await self.session.aexecute(
            self._delete_quiz_by_module, [quiz.module_id, quiz_id]
        )
        await self.session.aexecute(
            self._remove_module_quiz, [[quiz_id], datetime.now(UTC), quiz.module_id]
        )

        logger.info(
            "quiz_deleted",
            quiz_id=str(quiz_id),
            module_id=str(quiz.module_id),
            order=quiz.order,
        )

        reordered = await self.reorder_quizzes_after_deletion(
            quiz.module_id, quiz.order
        )
        return quiz, reordered

    async def reorder_modules_after_deletion(self, deleted_order: int) -> int:
        """Shift every module after a freed slot down to keep orders dense.

        Returns:
            Number of modules renumbered
        """
        modules = [
            m for m in await self.find_modules_ordered_by() if m.order > deleted_order
        ]

        now = datetime.now(UTC)
        for index, module in enumerate(modules):
            new_order = deleted_order + index
            await self.session.aexecute(
                self._update_module_order, [new_order, now, module.id]
            )
            logger.debug(
                "module_reordered",
                module_id=str(module.id),
                from_order=module.order,
                to_order=new_order,
            )

        logger.info(
            "modules_reordered_after_deletion",
            deleted_order=deleted_order,
            count=len(modules),
        )
        return len(modules)

    async def reorder_quizzes_after_deletion(
        self, module_id: UUID, deleted_order: int
    ) -> int:
        """Shift every quiz after a freed slot down inside its module.

        Returns:
            Number of quizzes renumbered
        """
        quizzes = [
            q
            for q in await self.find_quizzes_by_module(module_id)
            if q.order > deleted_order
        ]

        for index, quiz in enumerate(quizzes):
            await self._set_quiz_order(quiz, deleted_order + index)

        logger.info(
            "quizzes_reordered_after_deletion",
            module_id=str(module_id),
            deleted_order=deleted_order,
            count=len(quizzes),
        )
        return len(quizzes)

    async def reorder_quizzes(self, module_id: UUID, quiz_ids: list[UUID]) -> int:
        """Assign orders 1..N to a module's quizzes following ``quiz_ids``.

        Raises:
            CatalogModuleNotFoundError: If the module doesn't exist
            InvalidReorderError: If ``quiz_ids`` is not a permutation of the
                module's quizzes
        """
        if not isinstance(quiz_ids, list):
            msg = "Quiz order must be a list of quiz IDs"
            raise InvalidReorderError(msg)

        module = await self.get_module(module_id)
        if not module:
            raise CatalogModuleNotFoundError

        quizzes = {q.id: q for q in await self.find_quizzes_by_module(module_id)}
        if len(quiz_ids) != len(quizzes) or set(quiz_ids) != set(quizzes):
            raise InvalidReorderError

        changed = 0
        for position, quiz_id in enumerate(quiz_ids, start=1):
            quiz = quizzes[quiz_id]
            if quiz.order != position:
                await self._set_quiz_order(quiz, position)
                changed += 1

        logger.info("quizzes_reordered", module_id=str(module_id), changed=changed)
        return changed

    async def _set_quiz_order(self, quiz: Quiz, order: int) -> None:
        """Persist a quiz's new order in both quiz tables."""
        await self.session.aexecute(
            self._update_quiz_order, [order, datetime.now(UTC), quiz.id]
        )
        await self.session.aexecute(
            self._upsert_quiz_by_module, [quiz.module_id, quiz.id, order]
        )
        quiz.order = order

    # ==========================================================================
    # Response Helpers
    # ==========================================================================

    def to_module_response(self, module: Module) -> ModuleResponse:
        """Convert Module to response schema."""
        return ModuleResponse(**module.to_dict())

    def to_quiz_response(self, quiz: Quiz) -> QuizResponse:
        """Convert Quiz to response schema."""
        return QuizResponse(**quiz.to_dict())
