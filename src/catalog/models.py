"""Database models for the quiz catalog.

Cassandra table definitions for:
- Modules: curriculum units, ordered globally by ``order_index`` (1..N)
- Quizzes: gradable units, ordered by ``order_index`` within their module
- Lookup table: quizzes_by_module for per-module listing

``order`` is a CQL reserved word, so ordering columns are named
``order_index``; entities expose them as ``order``.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4


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


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

MODULE_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.modules (
    id UUID PRIMARY KEY,
    title TEXT,
    description TEXT,
    category TEXT,
    image_url TEXT,
    order_index INT,
    quiz_ids LIST<UUID>,
    created_by UUID,
    created_at TIMESTAMP,
    updated_at TIMESTAMP
)
"""

QUIZ_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.quizzes (
    id UUID PRIMARY KEY,
    module_id UUID,
    title TEXT,
    description TEXT,
    order_index INT,
    passing_score INT,
    created_at TIMESTAMP,
    updated_at TIMESTAMP
)
"""

# Lookup: quizzes per module (partition = module)
QUIZZES_BY_MODULE_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.quizzes_by_module (
    module_id UUID,
    quiz_id UUID,
    order_index INT,
    PRIMARY KEY (module_id, quiz_id)
)
"""

CATALOG_TABLES_CQL = [
    MODULE_TABLE_CQL,
    QUIZ_TABLE_CQL,
    QUIZZES_BY_MODULE_TABLE_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


class Module:
    """Module entity: top-level curriculum unit containing ordered quizzes.

    Attributes:
        id: Unique identifier (UUID)
        title: Module title
        description: Module description
        category: Free-form category label
        image_url: Cover image URL (hosted externally)
        order: Position in the curriculum (dense sequence starting at 1)
        quiz_ids: Quiz references belonging to this module
        created_by: User who created the module
        created_at: Creation timestamp
        updated_at: Last update timestamp
    """

    def __init__(
        self,
        order: int,
        id: UUID | None = None,
        title: str = "",
        description: str | None = None,
        category: str | None = None,
        image_url: str | None = None,
        quiz_ids: list[UUID] | None = None,
        created_by: UUID | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ):
        self.id = id or uuid4()
        self.order = order
        self.title = title.strip()
        self.description = description
        self.category = category
        self.image_url = image_url
        self.quiz_ids = list(quiz_ids or [])
        self.created_by = created_by
        self.created_at = ensure_utc_aware(created_at) or datetime.now(UTC)
        self.updated_at = ensure_utc_aware(updated_at)

    @property
    def total_quizzes(self) -> int:
        """Number of quizzes referenced by this module."""
        return len(self.quiz_ids)

    @classmethod
    def from_row(cls, row: Any) -> "Module":
        """Create Module instance from Cassandra row."""
        return cls(
            id=row.id,
            order=row.order_index,
            title=row.title or "",
            description=row.description,
            category=row.category,
            image_url=row.image_url,
            quiz_ids=row.quiz_ids,
            created_by=row.created_by,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "order": self.order,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "image_url": self.image_url,
            "quiz_ids": self.quiz_ids,
            "total_quizzes": self.total_quizzes,
            "created_by": self.created_by,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def __repr__(self) -> str:
        return f"<Module #{self.order} {self.title}>"


class Quiz:
    """Quiz entity: gradable unit owned by exactly one module.

    Attributes:
        id: Unique identifier (UUID)
        module_id: Owning module
        title: Quiz title
        description: Quiz description
        order: Position inside the module (dense sequence starting at 1)
        passing_score: Percentage threshold to pass (None = platform default)
        created_at: Creation timestamp
        updated_at: Last update timestamp
    """

    def __init__(
        self,
        module_id: UUID,
        order: int,
        id: UUID | None = None,
        title: str = "",
        description: str | None = None,
        passing_score: int | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ):
        self.id = id or uuid4()
        self.module_id = module_id
        self.order = order
        self.title = title.strip()
        self.description = description
        self.passing_score = passing_score
        self.created_at = ensure_utc_aware(created_at) or datetime.now(UTC)
        self.updated_at = ensure_utc_aware(updated_at)

    @classmethod
    def from_row(cls, row: Any) -> "Quiz":
        """Create Quiz instance from Cassandra row."""
        return cls(
            id=row.id,
            module_id=row.module_id,
            order=row.order_index,
            title=row.title or "",
            description=row.description,
            passing_score=row.passing_score,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "module_id": self.module_id,
            "order": self.order,
            "title": self.title,
            "description": self.description,
            "passing_score": self.passing_score,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def __repr__(self) -> str:
        return f"<Quiz #{self.order} {self.title} module={self.module_id}>"
