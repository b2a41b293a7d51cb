"""
Request dispatcher.

Maps one inbound operation (method + target + body) onto one ``TaskStore``
call and shapes the outcome. Both transports (the FastAPI routes and the
serverless handler) go through here, so validation and error codes are the
same whichever one a client hits.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import unquote
from uuid import uuid4

from .errors import NotFoundError, RetryableError, TaskStoreError, ValidationError, status_for
from .lifecycle import LifecyclePolicy
from .store import DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT, ORDERS, TaskStore

logger = logging.getLogger(__name__)

_TASK_PATH = re.compile(r"^/tasks/(?P<task_id>[^/]+)$")

CREATE_RESERVED = ("created_time", "expires_at")


@dataclass
class DispatchRequest:
    method: str
    path: str
    query: Dict[str, str] = field(default_factory=dict)
    body: Any = None


@dataclass
class DispatchResponse:
    status_code: int
    body: Optional[Dict[str, Any]] = None


def error_response(error: TaskStoreError) -> DispatchResponse:
    return DispatchResponse(status_for(error), error.to_dict())


def _method_not_allowed(method: str, path: str) -> DispatchResponse:
    return DispatchResponse(405, ValidationError(f"Method {method} not allowed on {path}").to_dict())


def _require_object(body: Any) -> Dict[str, Any]:
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _require_id(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required and must be a non-empty string", field=name)
    return value


def _parse_limit(raw: Any) -> int:
    if raw is None or raw == "":
        return DEFAULT_PAGE_LIMIT
    if isinstance(raw, bool):
        raise ValidationError("limit must be an integer", field="limit")
    try:
        limit = int(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationError("limit must be an integer", field="limit") from exc
    if not 1 <= limit <= MAX_PAGE_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_LIMIT}", field="limit")
    return limit


class TaskDispatcher:
    """Validates requests and turns them into task store calls."""

    def __init__(
        self,
        store: TaskStore,
        policy: LifecyclePolicy,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] = lambda: str(uuid4()),
    ):
        self.store = store
        self.policy = policy
        self._clock = clock
        self._id_factory = id_factory

    def create(self, body: Any) -> Dict[str, Any]:
        body = _require_object(body)
        user_id = _require_id(body.get("user_id"), "user_id")
        for name in CREATE_RESERVED:
            if name in body:
                raise ValidationError(f"{name} is assigned by the server", field=name)

        task_id = body.get("task_id")
        if task_id is None:
            task_id = self._id_factory()
        task_id = _require_id(task_id, "task_id")
        if "/" in task_id:
            # Ids are addressed as a single path segment.
            raise ValidationError("task_id must not contain '/'", field="task_id")

        created_time = self._clock()
        record = dict(body)
        record.update(
            task_id=task_id,
            user_id=user_id,
            created_time=created_time,
            expires_at=self.policy.expires_at(created_time, user_id),
        )

        try:
            return self.store.put(record)
        except RetryableError:
            # The write may or may not have landed. Only report success if the
            # exact record is readable; never replay the put.
            stored = self._find_created(record)
            if stored is None:
                raise
            logger.info("Create of task_id=%s confirmed after a transient failure", task_id)
            return stored

    def _find_created(self, record: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            stored = self.store.get(record["task_id"])
        except (NotFoundError, RetryableError):
            return None
        if stored["user_id"] != record["user_id"] or stored["created_time"] != record["created_time"]:
            return None
        return stored

    def read(self, task_id: Any) -> Dict[str, Any]:
        return self.store.get(_require_id(task_id, "task_id"))

    def update(self, task_id: Any, body: Any) -> Dict[str, Any]:
        task_id = _require_id(task_id, "task_id")
        return self.store.update(task_id, _require_object(body))

    def delete(self, task_id: Any) -> None:
        self.store.delete(_require_id(task_id, "task_id"))

    def list_tasks(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        user_id = _require_id(params.get("user_id"), "user_id")
        limit = _parse_limit(params.get("limit"))
        order = params.get("order") or "desc"
        if order not in ORDERS:
            raise ValidationError("order must be 'asc' or 'desc'", field="order")
        cursor = params.get("cursor") or None
        page = self.store.list_by_user(user_id, order=order, limit=limit, cursor=cursor)
        return page.to_dict()

    def dispatch(self, request: DispatchRequest) -> DispatchResponse:
        """Route a transport-neutral request and convert errors into responses."""
        method = request.method.upper()
        path = request.path.rstrip("/") or "/"
        try:
            if path == "/tasks":
                if method == "POST":
                    return DispatchResponse(201, self.create(request.body))
                if method == "GET":
                    return DispatchResponse(200, self.list_tasks(request.query))
                return _method_not_allowed(method, path)

            match = _TASK_PATH.match(path)
            if match is None:
                raise NotFoundError(f"No route for {path}")
            task_id = unquote(match.group("task_id"))
            if method == "GET":
                return DispatchResponse(200, self.read(task_id))
            if method == "PATCH":
                return DispatchResponse(200, self.update(task_id, request.body))
            if method == "DELETE":
                self.delete(task_id)
                return DispatchResponse(204)
            return _method_not_allowed(method, path)
        except TaskStoreError as exc:
            return error_response(exc)
