"""Shared test fixtures.

In-memory stand-ins for the Cassandra-backed catalog and progress
repository, plus an HTTP client whose app state is wired to them.
"""

import copy
import os
import tempfile
from collections.abc import Iterator
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient

from src.catalog.models import Module, Quiz
from src.progress.engine import ProgressEngine
from src.progress.models import Progress, QuizAttempt
from src.progress.repair import RepairService
from src.progress.service import ProgressService


os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="stepwise-logs-"))
os.environ.setdefault("LOG_LEVEL", "WARNING")


# ==============================================================================
# In-Memory Collaborators
# ==============================================================================


class InMemoryCatalog:
    """Catalog reader over plain dicts, with order-compacting deletes."""

    def __init__(self) -> None:
        self.modules: dict[UUID, Module] = {}
        self.quizzes: dict[UUID, Quiz] = {}

    def add_module(self, title: str = "Module") -> Module:
        module = Module(order=len(self.modules) + 1, title=title)
        self.modules[module.id] = module
        return module

    def add_quiz(
        self, module: Module, passing_score: int | None = None, title: str = "Quiz"
    ) -> Quiz:
        order = sum(1 for q in self.quizzes.values() if q.module_id == module.id) + 1
        quiz = Quiz(
            module_id=module.id,
            order=order,
            title=title,
            passing_score=passing_score,
        )
        self.quizzes[quiz.id] = quiz
        module.quiz_ids.append(quiz.id)
        return quiz

    def remove_module(self, module: Module) -> None:
        del self.modules[module.id]
        for quiz_id in list(module.quiz_ids):
            self.quizzes.pop(quiz_id, None)
        for other in self.modules.values():
            if other.order > module.order:
                other.order -= 1

    def remove_quiz(self, quiz: Quiz) -> None:
        del self.quizzes[quiz.id]
        self.modules[quiz.module_id].quiz_ids.remove(quiz.id)
        for other in self.quizzes.values():
            if other.module_id == quiz.module_id and other.order > quiz.order:
                other.order -= 1

    async def get_module(self, module_id: UUID) -> Module | None:
        return self.modules.get(module_id)

    async def get_quiz(self, quiz_id: UUID) -> Quiz | None:
        return self.quizzes.get(quiz_id)

    async def find_modules_ordered_by(self, ascending: bool = True) -> list[Module]:
        return sorted(
            self.modules.values(), key=lambda m: m.order, reverse=not ascending
        )

    async def find_module_by_order(self, order: int) -> Module | None:
        return next((m for m in self.modules.values() if m.order == order), None)

    async def find_quizzes_by_module(self, module_id: UUID) -> list[Quiz]:
        return sorted(
            (q for q in self.quizzes.values() if q.module_id == module_id),
            key=lambda q: q.order,
        )

    async def find_quiz_by_module_and_order(
        self, module_id: UUID, order: int
    ) -> Quiz | None:
        for quiz in await self.find_quizzes_by_module(module_id):
            if quiz.order == order:
                return quiz
        return None


class InMemoryProgressRepository:
    """Progress repository storing deep copies, counting saves."""

    def __init__(self) -> None:
        self.records: dict[UUID, Progress] = {}
        self.attempts: list[QuizAttempt] = []
        self.save_count = 0
        self.fail_for: set[UUID] = set()

    async def get(self, user_id: UUID) -> Progress | None:
        if user_id in self.fail_for:
            msg = "storage unavailable"
            raise RuntimeError(msg)
        record = self.records.get(user_id)
        return copy.deepcopy(record) if record else None

    async def save(self, progress: Progress) -> None:
        self.save_count += 1
        self.records[progress.user_id] = copy.deepcopy(progress)

    async def delete(self, user_id: UUID) -> None:
        self.records.pop(user_id, None)
        self.attempts = [a for a in self.attempts if a.user_id != user_id]

    async def list_user_ids(self) -> list[UUID]:
        return list(self.records)

    async def add_attempt(self, attempt: QuizAttempt) -> None:
        self.attempts.append(attempt)

    async def list_attempts(
        self, user_id: UUID, quiz_id: UUID | None = None, limit: int = 100
    ) -> list[QuizAttempt]:
        attempts = [
            a
            for a in reversed(self.attempts)
            if a.user_id == user_id and (quiz_id is None or a.quiz_id == quiz_id)
        ]
        return attempts[:limit]


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture
def catalog() -> InMemoryCatalog:
    """Empty in-memory catalog."""
    return InMemoryCatalog()


@pytest.fixture
def repository() -> InMemoryProgressRepository:
    """Empty in-memory progress repository."""
    return InMemoryProgressRepository()


@pytest.fixture
def engine(catalog: InMemoryCatalog) -> ProgressEngine:
    """Progress engine over the in-memory catalog."""
    return ProgressEngine(catalog=catalog, default_passing_score=70)


@pytest.fixture
def progress_service(
    repository: InMemoryProgressRepository, engine: ProgressEngine
) -> ProgressService:
    """Progress service over in-memory collaborators."""
    return ProgressService(repository=repository, engine=engine)


@pytest.fixture
def repair_service(
    repository: InMemoryProgressRepository,
    catalog: InMemoryCatalog,
    engine: ProgressEngine,
) -> RepairService:
    """Repair service over in-memory collaborators."""
    return RepairService(
        repository=repository, catalog=catalog, engine=engine, concurrency=2
    )


@pytest.fixture
def user_id() -> UUID:
    """Test user ID."""
    return uuid4()


@pytest.fixture
def client(
    progress_service: ProgressService,
    repair_service: RepairService,
    catalog: InMemoryCatalog,
) -> Iterator[TestClient]:
    """HTTP client with services wired to in-memory collaborators.

    The client is not entered as a context manager, so the lifespan (and
    its Cassandra connection) never runs.
    """
    from src.main import app

    app.state.progress_service = progress_service
    app.state.repair_service = repair_service
    app.state.catalog_service = catalog
    yield TestClient(app)
    for name in ("progress_service", "repair_service", "catalog_service"):
        if hasattr(app.state, name):
            delattr(app.state, name)
