from sqlmodel import SQLModel, Field
from sqlalchemy import JSON, Column, Index
from typing import Any, Dict, Optional

KEY_FIELDS = ("task_id", "user_id", "created_time")
RESERVED_FIELDS = KEY_FIELDS + ("expires_at",)


class Task(SQLModel, table=True):
    """Task record.

    The primary key serves point lookups; ``ix_tasks_user_created`` is the
    per-user timeline index and is written in the same transaction as the row.
    Payload fields are opaque to storage and kept in one JSON column.
    """
    __tablename__ = "tasks"
    __table_args__ = (
        Index("ix_tasks_user_created", "user_id", "created_time"),
        Index("ix_tasks_expires_at", "expires_at"),
    )

    task_id: str = Field(primary_key=True)
    user_id: str = Field(nullable=False)
    created_time: float = Field(nullable=False)
    expires_at: Optional[float] = Field(default=None)
    payload: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))

    def is_live(self, now: float) -> bool:
        return self.expires_at is None or now < self.expires_at

    def to_record(self) -> Dict[str, Any]:
        """Flatten into the wire shape: payload fields plus the reserved fields."""
        record = dict(self.payload or {})
        record.update(
            task_id=self.task_id,
            user_id=self.user_id,
            created_time=self.created_time,
            expires_at=self.expires_at,
        )
        return record
