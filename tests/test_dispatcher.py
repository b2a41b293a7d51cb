# tests/test_dispatcher.py

import pytest

from todo_api.dispatcher import DispatchRequest, TaskDispatcher
from todo_api.errors import ConflictError, NotFoundError, RetryableError, ValidationError
from todo_api.lifecycle import PerTenantRetentionPolicy, RetentionPolicy

from .conftest import DAY
from .fakes import FlakyPut


def test_create_read_list_then_expire(dispatcher, clock) -> None:
    created = dispatcher.create({"user_id": "u1", "title": "buy milk"})

    assert created["task_id"]
    assert created["user_id"] == "u1"
    assert created["title"] == "buy milk"
    assert created["created_time"] == clock()
    assert created["expires_at"] == clock() + 86400

    assert dispatcher.read(created["task_id"]) == created
    page = dispatcher.list_tasks({"user_id": "u1"})
    assert page == {"items": [created], "next_cursor": None}

    clock.set(created["expires_at"])
    with pytest.raises(NotFoundError):
        dispatcher.read(created["task_id"])
    assert dispatcher.list_tasks({"user_id": "u1"})["items"] == []


def test_create_uses_supplied_task_id(dispatcher) -> None:
    created = dispatcher.create({"user_id": "u1", "task_id": "mine", "title": "x"})
    assert created["task_id"] == "mine"

    with pytest.raises(ConflictError):
        dispatcher.create({"user_id": "u1", "task_id": "mine", "title": "y"})
    assert dispatcher.read("mine")["title"] == "x"


def test_generated_ids_are_unique(dispatcher) -> None:
    ids = {dispatcher.create({"user_id": "u1"})["task_id"] for _ in range(5)}
    assert len(ids) == 5


@pytest.mark.parametrize(
    "body",
    [
        None,
        [],
        "title",
        {},
        {"user_id": ""},
        {"user_id": 7},
        {"user_id": "u1", "task_id": ""},
        {"user_id": "u1", "task_id": 12},
        {"user_id": "u1", "task_id": "x/y"},
        {"user_id": "u1", "created_time": 1},
        {"user_id": "u1", "expires_at": 1},
    ],
)
def test_create_rejects_malformed_body(dispatcher, store, body) -> None:
    with pytest.raises(ValidationError):
        dispatcher.create(body)
    assert store.count_live() == 0


def test_create_confirms_write_after_ambiguous_failure(dispatcher, store) -> None:
    flaky = FlakyPut(store.put, land=True)
    store.put = flaky

    created = dispatcher.create({"user_id": "u1", "task_id": "t1", "title": "x"})

    assert flaky.calls == 1
    assert created["task_id"] == "t1"
    assert created["title"] == "x"


def test_create_reports_retryable_when_write_did_not_land(dispatcher, store) -> None:
    flaky = FlakyPut(store.put, land=False)
    store.put = flaky

    with pytest.raises(RetryableError):
        dispatcher.create({"user_id": "u1", "task_id": "t1"})
    assert flaky.calls == 1


def test_create_does_not_claim_someone_elses_record(dispatcher, store, make_task) -> None:
    store.put(make_task(task_id="t1", user_id="u2", created_time=1.0))
    store.put = FlakyPut(store.put, land=False)

    with pytest.raises(RetryableError):
        dispatcher.create({"user_id": "u1", "task_id": "t1"})


def test_update_and_delete(dispatcher) -> None:
    created = dispatcher.create({"user_id": "u1", "title": "a"})
    task_id = created["task_id"]

    updated = dispatcher.update(task_id, {"title": "b", "status": "done"})
    assert updated["title"] == "b"
    assert updated["status"] == "done"

    with pytest.raises(ValidationError):
        dispatcher.update(task_id, "not an object")
    with pytest.raises(ValidationError):
        dispatcher.update(task_id, {"user_id": "u2"})

    dispatcher.delete(task_id)
    dispatcher.delete(task_id)
    with pytest.raises(NotFoundError):
        dispatcher.update(task_id, {"title": "c"})


@pytest.mark.parametrize(
    "params",
    [
        {},
        {"user_id": ""},
        {"user_id": "u1", "limit": "abc"},
        {"user_id": "u1", "limit": "0"},
        {"user_id": "u1", "limit": "101"},
        {"user_id": "u1", "order": "sideways"},
        {"user_id": "u1", "cursor": "garbage"},
    ],
)
def test_list_rejects_bad_parameters(dispatcher, params) -> None:
    with pytest.raises(ValidationError):
        dispatcher.list_tasks(params)


def test_list_paginates_with_string_parameters(dispatcher, clock) -> None:
    for n in range(3):
        dispatcher.create({"user_id": "u1", "n": n})
        clock.advance(1)

    first = dispatcher.list_tasks({"user_id": "u1", "limit": "2", "order": "asc"})
    second = dispatcher.list_tasks({"user_id": "u1", "limit": "2", "order": "asc", "cursor": first["next_cursor"]})

    assert [t["n"] for t in first["items"]] == [0, 1]
    assert [t["n"] for t in second["items"]] == [2]
    assert second["next_cursor"] is None


def test_per_tenant_policy_is_applied_at_create(store, clock) -> None:
    policy = PerTenantRetentionPolicy(RetentionPolicy(DAY), {"vip": 7 * DAY})
    dispatcher = TaskDispatcher(store, policy, clock=clock)

    assert dispatcher.create({"user_id": "vip"})["expires_at"] == clock() + 7 * DAY
    assert dispatcher.create({"user_id": "u1"})["expires_at"] == clock() + DAY


def test_dispatch_routes_crud(dispatcher) -> None:
    created = dispatcher.dispatch(DispatchRequest("POST", "/tasks", body={"user_id": "u1", "title": "a"}))
    assert created.status_code == 201
    task_id = created.body["task_id"]

    got = dispatcher.dispatch(DispatchRequest("GET", f"/tasks/{task_id}"))
    assert got.status_code == 200
    assert got.body == created.body

    patched = dispatcher.dispatch(DispatchRequest("patch", f"/tasks/{task_id}/", body={"title": "b"}))
    assert patched.status_code == 200
    assert patched.body["title"] == "b"

    listed = dispatcher.dispatch(DispatchRequest("GET", "/tasks", query={"user_id": "u1"}))
    assert listed.status_code == 200
    assert [t["task_id"] for t in listed.body["items"]] == [task_id]

    for _ in range(2):
        deleted = dispatcher.dispatch(DispatchRequest("DELETE", f"/tasks/{task_id}"))
        assert deleted.status_code == 204
        assert deleted.body is None


def test_dispatch_decodes_task_id_from_path(dispatcher) -> None:
    dispatcher.create({"user_id": "u1", "task_id": "a b%", "title": "spaced"})

    got = dispatcher.dispatch(DispatchRequest("GET", "/tasks/a%20b%25"))
    assert got.status_code == 200
    assert got.body["task_id"] == "a b%"


def test_dispatch_maps_errors_to_status_codes(dispatcher) -> None:
    missing = dispatcher.dispatch(DispatchRequest("GET", "/tasks/nope"))
    assert missing.status_code == 404
    assert missing.body["kind"] == "not_found"

    invalid = dispatcher.dispatch(DispatchRequest("POST", "/tasks", body={"title": "no owner"}))
    assert invalid.status_code == 400
    assert invalid.body["kind"] == "validation"

    dispatcher.dispatch(DispatchRequest("POST", "/tasks", body={"user_id": "u1", "task_id": "dup"}))
    conflict = dispatcher.dispatch(DispatchRequest("POST", "/tasks", body={"user_id": "u1", "task_id": "dup"}))
    assert conflict.status_code == 409
    assert conflict.body["kind"] == "conflict"

    unknown = dispatcher.dispatch(DispatchRequest("GET", "/projects"))
    assert unknown.status_code == 404

    not_allowed = dispatcher.dispatch(DispatchRequest("PUT", "/tasks/dup", body={}))
    assert not_allowed.status_code == 405
    assert not_allowed.body["kind"] == "validation"


def test_dispatch_maps_store_outage_to_retryable(dispatcher, store) -> None:
    def unavailable(*args, **kwargs):
        raise RetryableError("Task store unavailable during get")

    store.get = unavailable
    response = dispatcher.dispatch(DispatchRequest("GET", "/tasks/t1"))

    assert response.status_code == 503
    assert response.body == {"kind": "retryable", "message": "Task store unavailable during get"}
