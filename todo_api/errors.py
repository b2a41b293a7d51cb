"""
Task store error hierarchy.

Every error carries a machine-readable ``kind`` that the dispatcher turns into
a response code:

    TaskStoreError
    ├── ValidationError   : malformed or missing fields, never retried
    ├── NotFoundError     : absent or expired task
    ├── ConflictError     : duplicate task_id on create
    └── RetryableError    : store timeout or unavailability
"""

from typing import Any, Dict


class TaskStoreError(Exception):
    """Base error for task store and dispatcher failures."""

    kind = "error"

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context: Dict[str, Any] = context
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the error body returned to clients."""
        return {"kind": self.kind, "message": self.message}

    def __repr__(self) -> str:
        parts = [f"{self.__class__.__name__}: {self.message}"]
        parts.extend(f"{k}={v}" for k, v in self.context.items())
        return " | ".join(parts)


class ValidationError(TaskStoreError):
    kind = "validation"


class NotFoundError(TaskStoreError):
    kind = "not_found"


class ConflictError(TaskStoreError):
    kind = "conflict"


class RetryableError(TaskStoreError):
    """Transient failure. Reads and deletes may be retried as-is."""

    kind = "retryable"


STATUS_BY_KIND = {
    ValidationError.kind: 400,
    NotFoundError.kind: 404,
    ConflictError.kind: 409,
    RetryableError.kind: 503,
}


def status_for(error: TaskStoreError) -> int:
    return STATUS_BY_KIND.get(error.kind, 500)
