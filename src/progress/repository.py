"""Cassandra persistence for Progress records.

A user's progress spans four tables sharing the ``user_id`` partition
key. Saving rewrites the partition in one logged batch: current rows are
upserted and rows for entries that disappeared from the record (pruned
completions, forgotten modules) are deleted.
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID

import structlog
from cassandra.query import BatchStatement, BatchType

from .models import Progress, QuizAttempt


if TYPE_CHECKING:
    from cassandra.cluster import Session

logger = structlog.get_logger(__name__)

DEFAULT_ATTEMPTS_LIMIT = 100


class ProgressRepository:
    """Load and store Progress records."""

    def __init__(self, session: "Session", keyspace: str):
        """Initialize with Cassandra session."""
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient execution."""
        # Reads
        self._get_user_progress = self.session.prepare(
            f"SELECT * FROM {self.keyspace}.user_progress WHERE user_id = ?"
        )
        self._get_module_progress = self.session.prepare(
            f"SELECT * FROM {self.keyspace}.module_progress WHERE user_id = ?"
        )
        self._get_quiz_completions = self.session.prepare(
            f"SELECT * FROM {self.keyspace}.quiz_completions WHERE user_id = ?"
        )
        self._get_module_keys = self.session.prepare(
            f"SELECT module_id FROM {self.keyspace}.module_progress WHERE user_id = ?"
        )
        self._get_completion_keys = self.session.prepare(f"""
            SELECT module_id, quiz_id FROM {self.keyspace}.quiz_completions
            WHERE user_id = ?
        """)
        self._list_user_ids = self.session.prepare(
            f"SELECT user_id FROM {self.keyspace}.user_progress"
        )

        # Writes
        self._upsert_user_progress = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.user_progress
            (user_id, current_module_id, unlocked_modules, completed_modules,
             created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """)
        self._upsert_module_progress = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.module_progress
            (user_id, module_id, status, current_quiz_id, unlocked_quizzes,
             completion_percentage, started_at, completed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """)
        self._upsert_quiz_completion = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.quiz_completions
            (user_id, module_id, quiz_id, score, best_score, attempts, passed,
             ever_passed, completed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """)
        self._delete_module_progress = self.session.prepare(f"""
            DELETE FROM {self.keyspace}.module_progress
            WHERE user_id = ? AND module_id = ?
        """)
        self._delete_quiz_completion = self.session.prepare(f"""
            DELETE FROM {self.keyspace}.quiz_completions
            WHERE user_id = ? AND module_id = ? AND quiz_id = ?
        """)

        # Whole-partition deletes
        self._delete_user_progress = self.session.prepare(
            f"DELETE FROM {self.keyspace}.user_progress WHERE user_id = ?"
        )
        self._delete_all_module_progress = self.session.prepare(
            f"DELETE FROM {self.keyspace}.module_progress WHERE user_id = ?"
        )
        self._delete_all_quiz_completions = self.session.prepare(
            f"DELETE FROM {self.keyspace}.quiz_completions WHERE user_id = ?"
        )
        self._delete_all_quiz_attempts = self.session.prepare(
            f"DELETE FROM {self.keyspace}.quiz_attempts WHERE user_id = ?"
        )

        # Attempt history
        self._insert_quiz_attempt = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.quiz_attempts
            (user_id, attempted_at, attempt_id, quiz_id, module_id,
             attempt_number, score, passed)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """)
        self._get_quiz_attempts = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.quiz_attempts
            WHERE user_id = ?
            LIMIT ?
        """)

    # ==========================================================================
    # Progress Records
    # ==========================================================================

    async def get(self, user_id: UUID) -> Progress | None:
        """Load a user's progress record."""
        result = await self.session.aexecute(self._get_user_progress, [user_id])
        row = result.one()
        if not row:
            return None

        module_rows = await self.session.aexecute(self._get_module_progress, [user_id])
        completion_rows = await self.session.aexecute(
            self._get_quiz_completions, [user_id]
        )
        return Progress.from_rows(row, list(module_rows), list(completion_rows))

    async def save(self, progress: Progress) -> None:
        """Persist a progress record as one logged batch."""
        user_id = progress.user_id
        progress.updated_at = datetime.now(UTC)

        stored_modules = {
            row.module_id
            for row in await self.session.aexecute(self._get_module_keys, [user_id])
        }
        stored_completions = {
            (row.module_id, row.quiz_id)
            for row in await self.session.aexecute(
                self._get_completion_keys, [user_id]
            )
        }

        current_completions = {
            (entry.module_id, quiz_id)
            for entry in progress.module_progress.values()
            for quiz_id in entry.completed_quizzes
        }

        batch = BatchStatement(batch_type=BatchType.LOGGED)

        for module_id in stored_modules - set(progress.module_progress):
            batch.add(self._delete_module_progress, [user_id, module_id])
        for module_id, quiz_id in stored_completions - current_completions:
            batch.add(self._delete_quiz_completion, [user_id, module_id, quiz_id])

        batch.add(
            self._upsert_user_progress,
            [
                user_id,
                progress.current_module_id,
                progress.unlocked_modules,
                {c.module_id: c.completed_at for c in progress.completed_modules},
                progress.created_at,
                progress.updated_at,
            ],
        )

        for entry in progress.module_progress.values():
            batch.add(
                self._upsert_module_progress,
                [
                    user_id,
                    entry.module_id,
                    entry.status,
                    entry.current_quiz_id,
                    entry.unlocked_quizzes,
                    entry.completion_percentage,
                    entry.started_at,
                    entry.completed_at,
                ],
            )
            for completion in entry.completed_quizzes.values():
                batch.add(
                    self._upsert_quiz_completion,
                    [
                        user_id,
                        entry.module_id,
                        completion.quiz_id,
                        completion.score,
                        completion.best_score,
                        completion.attempts,
                        completion.passed,
                        completion.ever_passed,
                        completion.completed_at,
                    ],
                )

        await self.session.aexecute(batch)

        logger.debug(
            "progress_saved",
            user_id=str(user_id),
            modules=len(progress.module_progress),
            completions=len(current_completions),
        )

    async def delete(self, user_id: UUID) -> None:
        """Drop every row of a user's progress, attempt history included."""
        batch = BatchStatement(batch_type=BatchType.LOGGED)
        batch.add(self._delete_user_progress, [user_id])
        batch.add(self._delete_all_module_progress, [user_id])
        batch.add(self._delete_all_quiz_completions, [user_id])
        batch.add(self._delete_all_quiz_attempts, [user_id])
        await self.session.aexecute(batch)

        logger.info("progress_deleted", user_id=str(user_id))

    async def list_user_ids(self) -> list[UUID]:
        """Every user that has a progress record."""
        rows = await self.session.aexecute(self._list_user_ids)
        return [row.user_id for row in rows]

    # ==========================================================================
    # Attempt History
    # ==========================================================================

    async def add_attempt(self, attempt: QuizAttempt) -> None:
        """Append an attempt to the user's history."""
        await self.session.aexecute(
            self._insert_quiz_attempt,
            [
                attempt.user_id,
                attempt.attempted_at,
                attempt.attempt_id,
                attempt.quiz_id,
                attempt.module_id,
                attempt.attempt_number,
                attempt.score,
                attempt.passed,
            ],
        )

    async def list_attempts(
        self,
        user_id: UUID,
        quiz_id: UUID | None = None,
        limit: int = DEFAULT_ATTEMPTS_LIMIT,
    ) -> list[QuizAttempt]:
        """Newest-first attempt history, optionally for one quiz."""
        rows = await self.session.aexecute(self._get_quiz_attempts, [user_id, limit])
        attempts = [QuizAttempt.from_row(row) for row in rows]
        if quiz_id is not None:
            attempts = [a for a in attempts if a.quiz_id == quiz_id]
        return attempts
