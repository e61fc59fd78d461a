"""Pydantic schemas for sequential progression.

Request and response models for:
- Progress record queries
- Quiz access checks and completion
- Attempt history
- Admin repair operations
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .engine import CompletionOutcome
from .models import (
    CompletedModule,
    ModuleProgress,
    ModuleStatus,
    Progress,
    QuizAttempt,
    QuizCompletion,
)
from .repair import RepairSummary


# ==============================================================================
# Progress Record Schemas
# ==============================================================================


class QuizCompletionResponse(BaseModel):
    """Aggregated results of one quiz."""

    model_config = ConfigDict(from_attributes=True)

    quiz_id: UUID
    score: Decimal = Field(description="Latest attempt score")
    best_score: Decimal = Field(description="Highest score reached")
    attempts: int
    passed: bool = Field(description="Latest attempt passed")
    ever_passed: bool = Field(description="Any attempt passed")
    completed_at: datetime | None = None

    @classmethod
    def from_entity(cls, entity: QuizCompletion) -> "QuizCompletionResponse":
        """Create response from entity."""
        return cls(**entity.to_dict())


class ModuleProgressResponse(BaseModel):
    """Per-user module state."""

    module_id: UUID
    status: ModuleStatus
    current_quiz_id: UUID | None = None
    unlocked_quizzes: list[UUID] = Field(default_factory=list)
    completed_quizzes: list[QuizCompletionResponse] = Field(default_factory=list)
    completion_percentage: int = Field(0, ge=0, le=100)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_entity(cls, entity: ModuleProgress) -> "ModuleProgressResponse":
        """Create response from entity."""
        return cls(
            module_id=entity.module_id,
            status=ModuleStatus(entity.status),
            current_quiz_id=entity.current_quiz_id,
            unlocked_quizzes=sorted(entity.unlocked_quizzes, key=str),
            completed_quizzes=[
                QuizCompletionResponse.from_entity(c)
                for c in entity.completed_quizzes.values()
            ],
            completion_percentage=entity.completion_percentage,
            started_at=entity.started_at,
            completed_at=entity.completed_at,
        )


class CompletedModuleResponse(BaseModel):
    """Completed module entry."""

    module_id: UUID
    completed_at: datetime

    @classmethod
    def from_entity(cls, entity: CompletedModule) -> "CompletedModuleResponse":
        """Create response from entity."""
        return cls(module_id=entity.module_id, completed_at=entity.completed_at)


class GlobalProgressResponse(BaseModel):
    """Curriculum-wide unlock state."""

    current_module_id: UUID | None = None
    unlocked_modules: list[UUID] = Field(default_factory=list)
    completed_modules: list[CompletedModuleResponse] = Field(default_factory=list)


class ProgressResponse(BaseModel):
    """A user's full progress record."""

    user_id: UUID
    global_progress: GlobalProgressResponse
    module_progress: list[ModuleProgressResponse]
    created_at: datetime
    updated_at: datetime | None = None

    @classmethod
    def from_entity(cls, entity: Progress) -> "ProgressResponse":
        """Create response from entity."""
        return cls(
            user_id=entity.user_id,
            global_progress=GlobalProgressResponse(
                current_module_id=entity.current_module_id,
                unlocked_modules=sorted(entity.unlocked_modules, key=str),
                completed_modules=[
                    CompletedModuleResponse.from_entity(c)
                    for c in entity.completed_modules
                ],
            ),
            module_progress=[
                ModuleProgressResponse.from_entity(m)
                for m in entity.module_progress.values()
            ],
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )


class ModuleProgressDetailResponse(BaseModel):
    """Module entry with final score (mean best score)."""

    module_id: UUID
    unlocked: bool
    final_score: int = Field(0, ge=0, le=100)
    progress: ModuleProgressResponse | None = None


class RecalculateResponse(BaseModel):
    """Result of re-normalizing a module entry."""

    module_id: UUID
    completion_percentage: int = Field(ge=0, le=100)


# ==============================================================================
# Quiz Schemas
# ==============================================================================


class QuizAccessResponse(BaseModel):
    """Quiz access check result."""

    quiz_id: UUID
    module_id: UUID
    order: int
    unlocked: bool


class CompleteQuizRequest(BaseModel):
    """Scored quiz attempt."""

    score: Decimal = Field(..., ge=0, le=100, description="Score percentage (0-100)")


class CompleteQuizResponse(BaseModel):
    """What a quiz attempt changed."""

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

    @classmethod
    def from_outcome(cls, outcome: CompletionOutcome) -> "CompleteQuizResponse":
        """Create response from engine outcome."""
        return cls(
            quiz_id=outcome.quiz_id,
            module_id=outcome.module_id,
            score=outcome.score,
            passing_score=outcome.passing_score,
            passed=outcome.passed,
            attempts=outcome.attempts,
            completion_percentage=outcome.completion_percentage,
            unlocked_quiz_id=outcome.unlocked_quiz_id,
            module_completed=outcome.module_completed,
            unlocked_module_id=outcome.unlocked_module_id,
            curriculum_completed=outcome.curriculum_completed,
        )


class QuizAttemptResponse(BaseModel):
    """One submitted attempt."""

    attempt_id: UUID
    quiz_id: UUID
    module_id: UUID
    attempt_number: int
    score: Decimal
    passed: bool
    attempted_at: datetime

    @classmethod
    def from_entity(cls, entity: QuizAttempt) -> "QuizAttemptResponse":
        """Create response from entity."""
        return cls(**entity.to_dict())


class QuizAttemptListResponse(BaseModel):
    """Attempt history, newest first."""

    items: list[QuizAttemptResponse]
    total: int


# ==============================================================================
# Admin Schemas
# ==============================================================================


class RepairSystemRequest(BaseModel):
    """Full repair, optionally for a single user."""

    user_id: UUID | None = Field(None, description="Repair only this user")


class RepairSummaryResponse(BaseModel):
    """Repair run outcome."""

    success: bool
    message: str
    scanned: int
    repaired: int
    failed: int

    @classmethod
    def from_summary(cls, summary: RepairSummary) -> "RepairSummaryResponse":
        """Create response from repair summary."""
        return cls(
            success=summary.failed == 0,
            message=f"System repair complete. Fixed {summary.repaired} progress records.",
            scanned=summary.scanned,
            repaired=summary.repaired,
            failed=summary.failed,
        )
