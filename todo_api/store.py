import base64
import binascii
import json
import logging
import math
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

from sqlalchemy import and_, func, or_
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlmodel import Session, select

from .errors import ConflictError, NotFoundError, RetryableError, ValidationError
from .lifecycle import LifecyclePolicy
from .models import RESERVED_FIELDS, Task

logger = logging.getLogger(__name__)

ORDERS = ("asc", "desc")
DEFAULT_PAGE_LIMIT = 25
MAX_PAGE_LIMIT = 100


@dataclass
class TaskPage:
    """One page of a per-user listing."""
    items: List[Dict[str, Any]] = field(default_factory=list)
    next_cursor: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"items": self.items, "next_cursor": self.next_cursor}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _require_str(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required and must be a non-empty string", field=name)
    return value


def _check_json(payload: Dict[str, Any]) -> None:
    try:
        json.dumps(payload, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Task payload is not JSON serializable: {exc}") from exc


def _row_from_record(task: Mapping[str, Any]) -> Task:
    if not isinstance(task, Mapping):
        raise ValidationError("Task must be an object")

    task_id = _require_str(task.get("task_id"), "task_id")
    user_id = _require_str(task.get("user_id"), "user_id")
    created_time = task.get("created_time")
    if not _is_number(created_time):
        raise ValidationError("created_time is required and must be a number", field="created_time")
    expires_at = task.get("expires_at")
    if expires_at is not None and not _is_number(expires_at):
        raise ValidationError("expires_at must be a number", field="expires_at")

    payload = {k: v for k, v in task.items() if k not in RESERVED_FIELDS}
    _check_json(payload)
    return Task(
        task_id=task_id,
        user_id=user_id,
        created_time=float(created_time),
        expires_at=float(expires_at) if expires_at is not None else None,
        payload=payload,
    )


def encode_cursor(user_id: str, order: str, created_time: float, task_id: str) -> str:
    """Opaque continuation token: the last key of a page, bound to user and order."""
    raw = json.dumps({"u": user_id, "o": order, "t": created_time, "k": task_id}, separators=(",", ":"))
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def decode_cursor(cursor: str, user_id: str, order: str) -> Tuple[float, str]:
    if not isinstance(cursor, str) or not cursor:
        raise ValidationError("Malformed cursor", field="cursor")
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
        created_time, task_id = data["t"], data["k"]
        cursor_user, cursor_order = data["u"], data["o"]
    except (binascii.Error, ValueError, KeyError, TypeError, UnicodeError) as exc:
        raise ValidationError("Malformed cursor", field="cursor") from exc

    if not _is_number(created_time) or not isinstance(task_id, str):
        raise ValidationError("Malformed cursor", field="cursor")
    if cursor_user != user_id or cursor_order != order:
        raise ValidationError("Cursor does not belong to this listing", field="cursor")
    return float(created_time), task_id


class TaskStore:
    """
    Task records keyed by ``task_id`` with a per-user timeline ordered by
    ``created_time``.

    Both access paths live in one table (primary key plus a composite index),
    so every write lands on both in a single transaction. Expiration is a read
    predicate: a record whose ``expires_at`` has passed is absent from every
    read path whether or not it has been purged yet.

    Storage timeouts and lost connections surface as ``RetryableError``.
    """

    def __init__(self, engine: Engine, clock: Callable[[], float] = time.time):
        self._engine = engine
        self._clock = clock

    @staticmethod
    def _live(now: float):
        return or_(Task.expires_at.is_(None), Task.expires_at > now)

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        session = Session(self._engine, expire_on_commit=False)
        try:
            yield session
        except (OperationalError, PoolTimeoutError) as exc:
            logger.warning("Task store %s failed: %s", operation, exc)
            raise RetryableError(f"Task store unavailable during {operation}", operation=operation) from exc
        except DBAPIError as exc:
            if not exc.connection_invalidated:
                raise
            logger.warning("Task store %s lost its connection: %s", operation, exc)
            raise RetryableError(f"Task store unavailable during {operation}", operation=operation) from exc
        finally:
            session.close()

    def put(self, task: Mapping[str, Any]) -> Dict[str, Any]:
        """Insert a new task. Not an upsert: a live task with the same id is a conflict."""
        row = _row_from_record(task)
        now = self._clock()

        with self._session("put") as session:
            existing = session.get(Task, row.task_id, with_for_update=True)
            if existing is not None:
                if existing.is_live(now):
                    raise ConflictError(f"Task {row.task_id} already exists", task_id=row.task_id)
                # Expired but not yet purged; logically absent, so the id is free.
                session.delete(existing)
                session.flush()
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                raise ConflictError(f"Task {row.task_id} already exists", task_id=row.task_id) from exc

        logger.debug("Task stored task_id=%s user_id=%s expires_at=%s", row.task_id, row.user_id, row.expires_at)
        return row.to_record()

    def get(self, task_id: str) -> Dict[str, Any]:
        task_id = _require_str(task_id, "task_id")
        now = self._clock()
        with self._session("get") as session:
            row = session.get(Task, task_id)
            if row is None or not row.is_live(now):
                raise NotFoundError(f"Task {task_id} not found", task_id=task_id)
            return row.to_record()

    def update(self, task_id: str, patch: Mapping[str, Any]) -> Dict[str, Any]:
        """Merge ``patch`` into the payload. A ``None`` value removes the field."""
        task_id = _require_str(task_id, "task_id")
        if not isinstance(patch, Mapping):
            raise ValidationError("Patch must be an object")
        now = self._clock()

        with self._session("update") as session:
            row = session.get(Task, task_id, with_for_update=True)
            if row is None or not row.is_live(now):
                raise NotFoundError(f"Task {task_id} not found", task_id=task_id)

            current = row.to_record()
            for name in RESERVED_FIELDS:
                if name in patch and patch[name] != current[name]:
                    raise ValidationError(f"{name} cannot be changed", field=name)

            payload = dict(row.payload or {})
            for name, value in patch.items():
                if name in RESERVED_FIELDS:
                    continue
                if value is None:
                    payload.pop(name, None)
                else:
                    payload[name] = value
            _check_json(payload)

            row.payload = payload
            session.add(row)
            session.commit()
            record = row.to_record()

        logger.debug("Task updated task_id=%s fields=%s", task_id, sorted(patch))
        return record

    def delete(self, task_id: str) -> bool:
        """Remove a task from both access paths. Returns False if nothing was stored."""
        task_id = _require_str(task_id, "task_id")
        with self._session("delete") as session:
            row = session.get(Task, task_id, with_for_update=True)
            if row is None:
                return False
            session.delete(row)
            session.commit()
        logger.debug("Task deleted task_id=%s", task_id)
        return True

    def list_by_user(
        self,
        user_id: str,
        order: str = "desc",
        limit: int = DEFAULT_PAGE_LIMIT,
        cursor: Optional[str] = None,
    ) -> TaskPage:
        """One page of ``user_id``'s live tasks ordered by ``(created_time, task_id)``."""
        user_id = _require_str(user_id, "user_id")
        if order not in ORDERS:
            raise ValidationError("order must be 'asc' or 'desc'", field="order")
        if not isinstance(limit, int) or isinstance(limit, bool) or not 1 <= limit <= MAX_PAGE_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_LIMIT}", field="limit")

        query = select(Task).where(Task.user_id == user_id).where(self._live(self._clock()))
        if cursor is not None:
            after_time, after_id = decode_cursor(cursor, user_id, order)
            if order == "desc":
                query = query.where(or_(
                    Task.created_time < after_time,
                    and_(Task.created_time == after_time, Task.task_id < after_id),
                ))
            else:
                query = query.where(or_(
                    Task.created_time > after_time,
                    and_(Task.created_time == after_time, Task.task_id > after_id),
                ))

        if order == "desc":
            query = query.order_by(Task.created_time.desc(), Task.task_id.desc())
        else:
            query = query.order_by(Task.created_time.asc(), Task.task_id.asc())

        with self._session("list_by_user") as session:
            rows = session.exec(query.limit(limit + 1)).all()
            items = [row.to_record() for row in rows[:limit]]

        next_cursor = None
        if len(rows) > limit:
            last = rows[limit - 1]
            next_cursor = encode_cursor(user_id, order, last.created_time, last.task_id)
        return TaskPage(items=items, next_cursor=next_cursor)

    def iter_user_tasks(
        self,
        user_id: str,
        order: str = "desc",
        page_size: int = DEFAULT_PAGE_LIMIT,
    ) -> Iterator[Dict[str, Any]]:
        """Lazily walk every page of a user's timeline. Each call starts over."""
        cursor = None
        while True:
            page = self.list_by_user(user_id, order=order, limit=page_size, cursor=cursor)
            yield from page.items
            if page.next_cursor is None:
                return
            cursor = page.next_cursor

    def count_live(self) -> int:
        with self._session("count_live") as session:
            query = select(func.count()).select_from(Task).where(self._live(self._clock()))
            return int(session.exec(query).one())

    def purge_expired(self, limit: int = 500) -> int:
        """Physically delete up to ``limit`` expired rows. Reads never depend on this."""
        now = self._clock()
        with self._session("purge_expired") as session:
            query = (
                select(Task)
                .where(Task.expires_at.is_not(None))
                .where(Task.expires_at <= now)
                .limit(limit)
                .with_for_update(skip_locked=True)
            )
            rows = session.exec(query).all()
            for row in rows:
                session.delete(row)
            session.commit()

        if rows:
            logger.info("Purged %d expired tasks", len(rows))
        return len(rows)

    def reissue_lifetimes(self, policy: LifecyclePolicy, batch_size: int = 500) -> int:
        """Recompute ``expires_at`` for live tasks after a retention change.

        Tasks that have already expired stay expired.
        """
        touched = 0
        last_id = ""
        while True:
            with self._session("reissue_lifetimes") as session:
                query = (
                    select(Task)
                    .where(self._live(self._clock()))
                    .where(Task.task_id > last_id)
                    .order_by(Task.task_id)
                    .limit(batch_size)
                    .with_for_update()
                )
                rows = session.exec(query).all()
                if not rows:
                    break
                for row in rows:
                    row.expires_at = policy.expires_at(row.created_time, row.user_id)
                    session.add(row)
                session.commit()
                last_id = rows[-1].task_id
            touched += len(rows)

        logger.info("Reissued lifetimes for %d tasks with %r", touched, policy)
        return touched
