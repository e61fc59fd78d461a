"""Pydantic schemas for the quiz catalog.

Request and response models for:
- Modules: creation and listing
- Quizzes: creation, listing and reordering
- Structural deletions (with progress repair outcome)
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ==============================================================================
# Module Schemas
# ==============================================================================


class CreateModuleRequest(BaseModel):
    """Module creation request. The module is appended at the next order."""

    title: str = Field(..., min_length=3, max_length=200, description="Module title")
    description: str | None = Field(
        None, max_length=5000, description="Module description"
    )
    category: str | None = Field(None, max_length=100, description="Category label")
    image_url: str | None = Field(None, max_length=500, description="Cover image URL")


class ModuleResponse(BaseModel):
    """Module response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order: int
    title: str
    description: str | None = None
    category: str | None = None
    image_url: str | None = None
    quiz_ids: list[UUID] = Field(default_factory=list)
    total_quizzes: int = 0
    created_by: UUID | None = None
    created_at: datetime
    updated_at: datetime | None = None


class ModuleListResponse(BaseModel):
    """Modules ordered by curriculum position."""

    items: list[ModuleResponse]
    total: int


# ==============================================================================
# Quiz Schemas
# ==============================================================================


class CreateQuizRequest(BaseModel):
    """Quiz creation request. The quiz is appended at the module's next order."""

    title: str = Field(..., min_length=3, max_length=200, description="Quiz title")
    description: str | None = Field(
        None, max_length=500, description="Quiz description"
    )
    passing_score: int | None = Field(
        None, ge=0, le=100, description="Passing percentage (None = default 70)"
    )


class QuizResponse(BaseModel):
    """Quiz response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    module_id: UUID
    order: int
    title: str
    description: str | None = None
    passing_score: int | None = None
    created_at: datetime
    updated_at: datetime | None = None


class QuizListResponse(BaseModel):
    """Quizzes of a module ordered by position."""

    items: list[QuizResponse]
    total: int


class ReorderQuizzesRequest(BaseModel):
    """New quiz order for a module: every quiz ID exactly once."""

    quiz_ids: list[UUID] = Field(..., min_length=1, description="Quiz IDs in order")

    @field_validator("quiz_ids")
    @classmethod
    def validate_unique(cls, v: list[UUID]) -> list[UUID]:
        if len(set(v)) != len(v):
            msg = "Quiz IDs must not repeat"
            raise ValueError(msg)
        return v


# ==============================================================================
# Structural Change Schemas
# ==============================================================================


class StructuralChangeResponse(BaseModel):
    """Outcome of a deletion or reorder, including progress repair."""

    success: bool = True
    message: str
    reordered: int = Field(0, description="Siblings whose order was shifted")
    progress_records_repaired: int = Field(
        0, description="Progress records changed by the follow-up repair"
    )
