# tests/test_store_reducer.py
"""The transition function in isolation: no storage, no network."""
import itertools

from workbench.schemas import ApiResponse, Collection, Environment, RequestBody, RequestConfig
from workbench.store import (
    AddCollection,
    AddRequestToCollection,
    AddToHistory,
    ApiState,
    DeleteRequestFromCollection,
    LoadData,
    PermanentDeleteCollection,
    RenameCollection,
    SetActiveEnvironment,
    SetCurrentRequest,
    SetLoading,
    SetResponse,
    UpdateCollection,
    UpdateCurrentRequest,
    UpdateRequestInCollection,
    reduce,
)


def state_with_collection():
    col = Collection(id="c1", name="API", updated_at="2020-01-01T00:00:00.000Z")
    return ApiState(collections=[col])


def test_add_rename_delete_collection():
    state = reduce(ApiState(), AddCollection(Collection(id="c1", name="API")))
    state = reduce(state, RenameCollection("c1", "Renamed", at="2026-10-19T00:00:00.000Z"))
    assert state.collections[0].name == "Renamed"
    assert state.collections[0].updated_at == "2026-10-19T00:00:00.000Z"

    state = reduce(state, PermanentDeleteCollection("c1"))
    assert state.collections == []


def test_update_collection_replaces_by_id():
    state = state_with_collection()
    state = reduce(state, UpdateCollection(Collection(id="c1", name="Other", description="d")))
    assert state.collections[0].description == "d"


def test_set_current_request_resets_modified():
    req = RequestConfig(id="r1")
    state = reduce(ApiState(is_request_modified=True), SetCurrentRequest(req))
    assert state.current_request == req
    assert state.is_request_modified is False


def test_update_current_request_merges_and_marks_modified():
    state = reduce(ApiState(), SetCurrentRequest(RequestConfig(id="r1", url="a")))
    state = reduce(state, UpdateCurrentRequest({"url": "https://api.test", "method": "POST"}))
    assert state.current_request.url == "https://api.test"
    assert state.current_request.method == "POST"
    assert state.current_request.id == "r1"
    assert state.is_request_modified is True


def test_update_current_request_without_selection_is_noop():
    state = ApiState()
    assert reduce(state, UpdateCurrentRequest({"url": "x"})) is state


def test_update_current_request_coerces_nested_dicts():
    state = reduce(ApiState(), SetCurrentRequest(RequestConfig(id="r1")))
    state = reduce(state, UpdateCurrentRequest({
        "body": {"type": "raw", "content": "hi"},
        "auth": {"type": "bearer", "bearer": {"token": "t"}},
    }))
    assert isinstance(state.current_request.body, RequestBody)
    assert state.current_request.body.content == "hi"
    assert state.current_request.auth.bearer.token == "t"


def test_invalid_update_current_request_is_noop():
    state = reduce(ApiState(), SetCurrentRequest(RequestConfig(id="r1")))
    assert reduce(state, UpdateCurrentRequest({"method": "FETCH"})) is state


def test_save_appends_then_updates_in_place():
    state = state_with_collection()
    req = RequestConfig(id="r1", name="first")
    state = reduce(state, AddRequestToCollection("c1", req, at="2026-10-19T00:00:00.000Z"))
    state = reduce(state, AddRequestToCollection("c1", req.model_copy(update={"name": "second"})))

    requests = state.collections[0].requests
    assert [r.name for r in requests] == ["second"]
    assert requests[0].collection_id == "c1"
    assert state.collections[0].updated_at != "2020-01-01T00:00:00.000Z"

    state = reduce(state, UpdateRequestInCollection("c1", RequestConfig(id="r2", name="other")))
    assert [r.id for r in state.collections[0].requests] == ["r1", "r2"]


def test_save_clears_modified_when_ids_match():
    state = state_with_collection()
    state = reduce(state, SetCurrentRequest(RequestConfig(id="r1", name="draft")))
    state = reduce(state, UpdateCurrentRequest({"name": "edited"}))
    assert state.is_request_modified is True

    state = reduce(state, AddRequestToCollection("c1", state.current_request))
    assert state.is_request_modified is False
    assert state.current_request.collection_id == "c1"
    assert state.current_request.name == "edited"


def test_save_of_other_request_keeps_modified_flag():
    state = state_with_collection()
    state = reduce(state, SetCurrentRequest(RequestConfig(id="r1")))
    state = reduce(state, UpdateCurrentRequest({"name": "edited"}))
    state = reduce(state, AddRequestToCollection("c1", RequestConfig(id="r2")))
    assert state.is_request_modified is True
    assert state.current_request.collection_id is None


def test_save_into_unknown_collection_changes_nothing():
    state = state_with_collection()
    state = reduce(state, AddRequestToCollection("nope", RequestConfig(id="r1")))
    assert state.collections[0].requests == []


def test_delete_request_keeps_current_selection():
    state = state_with_collection()
    req = RequestConfig(id="r1")
    state = reduce(state, AddRequestToCollection("c1", req))
    state = reduce(state, SetCurrentRequest(state.collections[0].requests[0]))
    state = reduce(state, DeleteRequestFromCollection("c1", "r1"))
    assert state.collections[0].requests == []
    assert state.current_request.id == "r1"


def test_history_is_prepended(history_item):
    first, second = history_item("first"), history_item("second")
    state = reduce(ApiState(), AddToHistory(first))
    state = reduce(state, AddToHistory(second))
    assert state.history == [second, first]
    state = reduce(state, AddToHistory(history_item("third"), limit=2))
    assert [h.request.name for h in state.history] == ["third", "second"]


def test_simple_setters():
    env = Environment(name="dev")
    resp = ApiResponse(status=204)
    state = reduce(ApiState(), SetActiveEnvironment(env))
    state = reduce(state, SetLoading(True))
    state = reduce(state, SetResponse(resp))
    assert state.active_environment is env
    assert state.is_loading is True
    assert state.response is resp


def test_load_data_replace_clears_selection_and_response():
    state = state_with_collection()
    state = reduce(state, SetCurrentRequest(RequestConfig(id="r1")))
    state = reduce(state, SetResponse(ApiResponse(status=200)))

    state = reduce(state, LoadData(collections=[Collection(id="x", name="Imported")], replace_existing=True))
    assert [c.name for c in state.collections] == ["Imported"]
    assert state.current_request is None
    assert state.response is None


def test_load_data_merge_keeps_selection():
    counter = itertools.count(1)
    state = state_with_collection()
    state = reduce(state, SetCurrentRequest(RequestConfig(id="r1")))

    state = reduce(state, LoadData(
        collections=[Collection(id="x", name="API")],
        replace_existing=False,
        id_factory=lambda: f"id-{next(counter)}",
    ))
    assert [(c.id, c.name) for c in state.collections] == [("c1", "API"), ("id-1", "API (1)")]
    assert state.current_request.id == "r1"


def test_unknown_action_returns_state_unchanged():
    state = ApiState()
    assert reduce(state, object()) is state
