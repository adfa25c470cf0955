"""Assignment endpoints."""

from fastapi import APIRouter, HTTPException, status

from classroom.db import gradebook_repository as repo
from classroom.web.schemas import AssignmentCreate, AssignmentListResponse, AssignmentUpdate

router = APIRouter(prefix="/api/teach/assignments", tags=["assignments"])


@router.get("", response_model=AssignmentListResponse)
def list_assignments(class_instance_id: str) -> AssignmentListResponse:
    """List the assignments of a class instance in column order."""
    assignments = [a.to_dict() for a in repo.list_assignments(class_instance_id)]
    return AssignmentListResponse(assignments=assignments, count=len(assignments))


@router.post("", status_code=status.HTTP_201_CREATED)
def create_assignment(request: AssignmentCreate) -> dict:
    """Create an assignment at the end of the grid."""
    if repo.get_class_instance(request.class_instance_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Class instance '{request.class_instance_id}' not found",
        )
    fields = request.model_dump()
    standard_ids = fields.pop("standard_ids")

    assignment = repo.create_assignment(**fields)
    if standard_ids:
        try:
            assignment = repo.link_assignment_to_standards(assignment.id, standard_ids)
        except repo.NotFoundError as e:
            repo.delete_assignment(assignment.id)
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return assignment.to_dict()


@router.patch("/{assignment_id}")
def update_assignment(assignment_id: str, request: AssignmentUpdate) -> dict:
    """Update assignment fields; order_index moves the column, standard_ids relinks."""
    updates = request.model_dump(exclude_unset=True)
    new_index = updates.pop("order_index", None)
    standard_ids = updates.pop("standard_ids", None)

    try:
        assignment = repo.update_assignment(assignment_id, **updates)
        if standard_ids is not None:
            assignment = repo.link_assignment_to_standards(assignment_id, standard_ids)
        if new_index is not None:
            repo.reorder_assignment(assignment_id, new_index)
            assignment = repo.get_assignment(assignment_id)
    except repo.NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except repo.GradebookError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return assignment.to_dict()


@router.delete("/{assignment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_assignment(assignment_id: str) -> None:
    """Delete an assignment and its grades."""
    if not repo.delete_assignment(assignment_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Assignment '{assignment_id}' not found",
        )
