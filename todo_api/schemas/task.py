from pydantic import BaseModel, ConfigDict
from typing import List, Optional


class TaskRecord(BaseModel):
    """Stored task: the reserved fields plus any payload fields."""
    model_config = ConfigDict(extra="allow")

    task_id: str
    user_id: str
    created_time: float
    expires_at: Optional[float] = None


class TaskPage(BaseModel):
    """One page of a user's tasks."""
    items: List[TaskRecord]
    next_cursor: Optional[str] = None


class ErrorResponse(BaseModel):
    kind: str
    message: str


class HealthResponse(BaseModel):
    status: str
    live_tasks: int
