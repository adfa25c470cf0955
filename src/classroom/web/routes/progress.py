"""Learner progress endpoints."""

from dataclasses import asdict

from fastapi import APIRouter, HTTPException, status

from classroom.db.gradebook_repository import get_base_class
from classroom.db.lessons_repository import get_base_class_progress

router = APIRouter(prefix="/api/progress", tags=["progress"])


@router.get("/base-classes/{base_class_id}/users/{user_id}")
def base_class_progress(base_class_id: str, user_id: str) -> dict:
    """Lesson/assessment completion blended into one percentage."""
    if get_base_class(base_class_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Base class '{base_class_id}' not found",
        )
    return asdict(get_base_class_progress(user_id, base_class_id))
