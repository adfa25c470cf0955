"""Pydantic schemas for the classroom Web API.

Request bodies for grade cells, assignments, settings and knowledge-base
input, plus the small response wrappers the routes return.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field


# =============================================================================
# GRADEBOOK SCHEMAS
# =============================================================================


class GradeCellRequest(BaseModel):
    """An edited grid cell."""

    value: str = Field(..., max_length=50)
    view_mode: Literal["percentage", "points", "letter"] = "percentage"
    graded_by: str | None = None


class GradeResponse(BaseModel):
    """A stored grade row, or nothing when the cell was cleared."""

    deleted: bool = False
    grade: dict[str, Any] | None = None
    display: str = "-"


class GradebookSettingsUpdate(BaseModel):
    grading_scale: Literal["percentage", "points", "letter"] | None = None
    show_points: bool | None = None
    show_percentages: bool | None = None
    allow_late_submissions: bool | None = None
    late_penalty: float | None = Field(default=None, ge=0, le=100)


class RiskEntry(BaseModel):
    student_id: str
    name: str
    overall_grade: float
    missing_assignments: int
    risk: Literal["high", "medium", "low"]


class RiskResponse(BaseModel):
    students: list[RiskEntry]
    count: int


# =============================================================================
# ASSIGNMENT SCHEMAS
# =============================================================================


class AssignmentCreate(BaseModel):
    """Request body for creating an assignment."""

    class_instance_id: str
    name: str = Field(..., min_length=1, max_length=200)
    points_possible: float = Field(default=100.0, gt=0)
    type: str = Field(default="homework", max_length=50)
    category: str = Field(default="", max_length=100)
    description: str = Field(default="", max_length=2000)
    due_date: str | None = None
    standard_ids: list[str] = Field(default_factory=list)


class AssignmentUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    points_possible: float | None = Field(default=None, gt=0)
    type: str | None = Field(default=None, max_length=50)
    category: str | None = Field(default=None, max_length=100)
    description: str | None = Field(default=None, max_length=2000)
    due_date: str | None = None
    order_index: int | None = Field(default=None, ge=0)
    standard_ids: list[str] | None = None


class AssignmentListResponse(BaseModel):
    assignments: list[dict[str, Any]]
    count: int


# =============================================================================
# KNOWLEDGE BASE SCHEMAS
# =============================================================================


class PasteRequest(BaseModel):
    """A pasted URL or text snippet."""

    value: str = Field(..., min_length=1, max_length=200_000)
    uploaded_by: str | None = None


class DocumentListResponse(BaseModel):
    documents: list[dict[str, Any]]
    count: int


# =============================================================================
# GENERATION SCHEMAS
# =============================================================================


class MindMapRequest(BaseModel):
    regenerate: bool = False


class JobResponse(BaseModel):
    job_id: str
    status: str


# =============================================================================
# HEALTH
# =============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
