"""Gradebook endpoints: grid, cell entry, settings, export, analytics, risk."""

from typing import Literal

import structlog
from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import Response

from classroom.core.analytics import calculate_analytics
from classroom.core.export import ExportError, ExportOptions, export_gradebook
from classroom.core.grade_entry import (
    GradeEntryError,
    build_grade,
    format_grade_cell,
    parse_grade_cell,
)
from classroom.core.risk import classify_risk, filter_students
from classroom.db import gradebook_repository as repo
from classroom.web.schemas import (
    GradebookSettingsUpdate,
    GradeCellRequest,
    GradeResponse,
    RiskEntry,
    RiskResponse,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/teach/gradebook", tags=["gradebook"])


def _load(instance_id: str):
    try:
        return repo.load_gradebook(instance_id)
    except repo.NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


def _instance(instance_id: str) -> dict:
    instance = repo.get_class_instance(instance_id)
    if instance is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Class instance '{instance_id}' not found",
        )
    return instance


@router.get("/{instance_id}")
def get_gradebook(
    instance_id: str,
    filter_by: Literal["all", "at-risk", "excelling"] = "all",
    search: str = "",
) -> dict:
    """Students, assignments, grades, standards and settings of a class."""
    data = _load(instance_id)
    payload = data.to_dict()
    payload["students"] = [s.to_dict() for s in filter_students(data.students, filter_by, search)]
    return payload


@router.put("/{instance_id}/grades/{student_id}/{assignment_id}", response_model=GradeResponse)
def set_grade_cell(
    instance_id: str,
    student_id: str,
    assignment_id: str,
    request: GradeCellRequest,
) -> GradeResponse:
    """Save an edited cell; an empty value deletes the grade."""
    _instance(instance_id)
    assignment = repo.get_assignment(assignment_id)
    if assignment is None or assignment.class_instance_id != instance_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Assignment '{assignment_id}' not found",
        )

    try:
        entry = parse_grade_cell(request.value, request.view_mode, assignment.points_possible)
    except GradeEntryError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if entry is None:
        repo.delete_grade(student_id, assignment_id)
        return GradeResponse(deleted=True)

    grade = build_grade(entry, student_id, assignment_id, instance_id, graded_by=request.graded_by)
    try:
        saved = repo.upsert_grade(grade)
    except repo.GradebookError as e:
        logger.error("grade_save_failed", student_id=student_id, assignment_id=assignment_id, error=str(e))
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    cell = format_grade_cell(saved, assignment.points_possible, request.view_mode)
    return GradeResponse(grade=saved.to_dict(), display=cell.display)


@router.delete(
    "/{instance_id}/grades/{student_id}/{assignment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def clear_grade_cell(instance_id: str, student_id: str, assignment_id: str) -> None:
    """Delete the grade of a cell."""
    _instance(instance_id)
    if not repo.delete_grade(student_id, assignment_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No grade for student '{student_id}' on assignment '{assignment_id}'",
        )


@router.get("/{instance_id}/settings")
def get_settings(instance_id: str) -> dict:
    _instance(instance_id)
    return repo.get_gradebook_settings(instance_id)


@router.put("/{instance_id}/settings")
def update_settings(instance_id: str, request: GradebookSettingsUpdate) -> dict:
    """Merge the given fields into the stored settings."""
    _instance(instance_id)
    current = repo.get_gradebook_settings(instance_id)
    current.update(request.model_dump(exclude_none=True))
    return repo.upsert_gradebook_settings(instance_id, current)


@router.get("/{instance_id}/export")
def export(
    instance_id: str,
    format: str = Query(default="csv"),
    include_analytics: bool = False,
    include_feedback: bool = False,
    include_standards: bool = False,
) -> Response:
    """Download the gradebook as CSV or JSON."""
    instance = _instance(instance_id)
    data = _load(instance_id)
    options = ExportOptions(
        analytics=include_analytics,
        feedback=include_feedback,
        standards=include_standards,
    )
    try:
        filename, media_type, content = export_gradebook(data, instance["name"], format, options)
    except ExportError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/{instance_id}/analytics")
def analytics(instance_id: str) -> dict:
    return calculate_analytics(_load(instance_id)).to_dict()


@router.get("/{instance_id}/risk", response_model=RiskResponse)
def risk(instance_id: str) -> RiskResponse:
    """Risk level of every student in the class."""
    data = _load(instance_id)
    students = [
        RiskEntry(
            student_id=s.id,
            name=s.name,
            overall_grade=s.overall_grade,
            missing_assignments=s.missing_assignments,
            risk=classify_risk(s.overall_grade, s.missing_assignments),
        )
        for s in data.students
    ]
    return RiskResponse(students=students, count=len(students))
