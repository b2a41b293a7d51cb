from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Request, Response, status

from ..dispatcher import TaskDispatcher
from ..schemas.task import ErrorResponse, TaskPage, TaskRecord

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


def get_dispatcher(request: Request) -> TaskDispatcher:
    """Dependency returning the dispatcher built at app creation."""
    return request.app.state.dispatcher


@router.get("/tasks", response_model=TaskPage, responses=ERROR_RESPONSES)
def list_tasks(
    user_id: Optional[str] = None,
    limit: Optional[str] = None,
    order: Optional[str] = None,
    cursor: Optional[str] = None,
    dispatcher: TaskDispatcher = Depends(get_dispatcher),
):
    """List a user's live tasks, most recent first unless ``order=asc``."""
    return dispatcher.list_tasks({"user_id": user_id, "limit": limit, "order": order, "cursor": cursor})


@router.post("/tasks", response_model=TaskRecord, status_code=status.HTTP_201_CREATED, responses=ERROR_RESPONSES)
def create_task(
    body: Any = Body(...),
    dispatcher: TaskDispatcher = Depends(get_dispatcher),
):
    """Create a task for ``body.user_id``; the server assigns times and expiry."""
    return dispatcher.create(body)


@router.get("/tasks/{task_id}", response_model=TaskRecord, responses=ERROR_RESPONSES)
def get_task(task_id: str, dispatcher: TaskDispatcher = Depends(get_dispatcher)):
    return dispatcher.read(task_id)


@router.patch("/tasks/{task_id}", response_model=TaskRecord, responses=ERROR_RESPONSES)
def update_task(
    task_id: str,
    body: Any = Body(...),
    dispatcher: TaskDispatcher = Depends(get_dispatcher),
):
    """Partially update a task's payload fields. ``null`` removes a field."""
    return dispatcher.update(task_id, body)


@router.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT, responses=ERROR_RESPONSES)
def delete_task(task_id: str, dispatcher: TaskDispatcher = Depends(get_dispatcher)):
    """Delete a task. Deleting a missing or expired task also succeeds."""
    dispatcher.delete(task_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
