# workbench/store.py
"""
Application state engine.

State changes go through a closed set of actions processed by `reduce`, a
pure function that never fails: actions that do not apply (unknown ids,
editing with nothing selected) leave the state as it was. Timestamps and id
generators travel on the actions so reduce stays deterministic.

ApiStore owns the one live ApiState. It runs reduce, then persists every
domain whose value changed and notifies subscribers. Network sends and file
import/export are ApiStore methods as well.
"""

import asyncio
import dataclasses
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from .api_client import ApiClient
from .errors import InvalidImportError, RequestFailed, StorageError
from .importer import merge_snapshot, parse_snapshot, snapshot_lists
from .monitoring import logger
from .schemas import (
    ApiResponse,
    Collection,
    Environment,
    Header,
    ImportSnapshot,
    RequestBody,
    RequestConfig,
    RequestHistory,
    new_id,
    now_iso,
)
from .storage import StorageManager

UNSAVED_CHANGES_PROMPT = "You have unsaved changes. Do you want to discard them and continue?"


@dataclass(frozen=True)
class ApiState:
    collections: List[Collection] = field(default_factory=list)
    current_request: Optional[RequestConfig] = None
    is_request_modified: bool = False
    history: List[RequestHistory] = field(default_factory=list)
    environments: List[Environment] = field(default_factory=list)
    active_environment: Optional[Environment] = None
    is_loading: bool = False
    response: Optional[ApiResponse] = None


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class SetCollections:
    collections: List[Collection]


@dataclass(frozen=True)
class AddCollection:
    collection: Collection


@dataclass(frozen=True)
class UpdateCollection:
    collection: Collection


@dataclass(frozen=True)
class RenameCollection:
    collection_id: str
    name: str
    at: str = field(default_factory=now_iso)


@dataclass(frozen=True)
class PermanentDeleteCollection:
    collection_id: str


@dataclass(frozen=True)
class SetCurrentRequest:
    request: Optional[RequestConfig]


@dataclass(frozen=True)
class UpdateCurrentRequest:
    changes: Dict[str, Any]


@dataclass(frozen=True)
class AddRequestToCollection:
    collection_id: str
    request: RequestConfig
    at: str = field(default_factory=now_iso)


@dataclass(frozen=True)
class UpdateRequestInCollection:
    collection_id: str
    request: RequestConfig
    at: str = field(default_factory=now_iso)


@dataclass(frozen=True)
class DeleteRequestFromCollection:
    collection_id: str
    request_id: str


@dataclass(frozen=True)
class SetHistory:
    history: List[RequestHistory]


@dataclass(frozen=True)
class AddToHistory:
    item: RequestHistory
    limit: Optional[int] = None  # newest `limit` entries are kept


@dataclass(frozen=True)
class SetEnvironments:
    environments: List[Environment]


@dataclass(frozen=True)
class SetActiveEnvironment:
    environment: Optional[Environment]


@dataclass(frozen=True)
class SetLoading:
    loading: bool


@dataclass(frozen=True)
class SetResponse:
    response: Optional[ApiResponse]


@dataclass(frozen=True)
class LoadData:
    collections: List[Collection] = field(default_factory=list)
    history: List[RequestHistory] = field(default_factory=list)
    environments: List[Environment] = field(default_factory=list)
    replace_existing: bool = False
    id_factory: Callable[[], str] = new_id


Action = Union[
    SetCollections, AddCollection, UpdateCollection, RenameCollection, PermanentDeleteCollection,
    SetCurrentRequest, UpdateCurrentRequest, AddRequestToCollection, UpdateRequestInCollection,
    DeleteRequestFromCollection, SetHistory, AddToHistory, SetEnvironments, SetActiveEnvironment,
    SetLoading, SetResponse, LoadData,
]


# ---------------------------------------------------------------------------
# Reducer
# ---------------------------------------------------------------------------
def _upsert_request(state: ApiState, collection_id: str, request: RequestConfig, at: str) -> ApiState:
    saved = request.model_copy(update={"collection_id": collection_id})

    collections = []
    for c in state.collections:
        if c.id != collection_id:
            collections.append(c)
            continue
        if any(r.id == saved.id for r in c.requests):
            requests = [saved if r.id == saved.id else r for r in c.requests]
        else:
            requests = c.requests + [saved]
        collections.append(c.model_copy(update={"requests": requests, "updated_at": at}))

    changes: Dict[str, Any] = {"collections": collections}
    if state.current_request is not None and state.current_request.id == saved.id:
        changes["current_request"] = saved
        changes["is_request_modified"] = False
    return dataclasses.replace(state, **changes)


def reduce(state: ApiState, action: Action) -> ApiState:
    if isinstance(action, SetCollections):
        return dataclasses.replace(state, collections=list(action.collections))

    if isinstance(action, AddCollection):
        return dataclasses.replace(state, collections=state.collections + [action.collection])

    if isinstance(action, UpdateCollection):
        return dataclasses.replace(state, collections=[
            action.collection if c.id == action.collection.id else c for c in state.collections
        ])

    if isinstance(action, RenameCollection):
        return dataclasses.replace(state, collections=[
            c.model_copy(update={"name": action.name, "updated_at": action.at})
            if c.id == action.collection_id else c
            for c in state.collections
        ])

    if isinstance(action, PermanentDeleteCollection):
        return dataclasses.replace(state, collections=[
            c for c in state.collections if c.id != action.collection_id
        ])

    if isinstance(action, SetCurrentRequest):
        return dataclasses.replace(state, current_request=action.request, is_request_modified=False)

    if isinstance(action, UpdateCurrentRequest):
        if state.current_request is None:
            return state
        try:
            updated = RequestConfig.model_validate({**state.current_request.model_dump(), **action.changes})
        except ValidationError:
            return state
        return dataclasses.replace(state, current_request=updated, is_request_modified=True)

    if isinstance(action, (AddRequestToCollection, UpdateRequestInCollection)):
        return _upsert_request(state, action.collection_id, action.request, action.at)

    if isinstance(action, DeleteRequestFromCollection):
        # current_request is left alone even when it is the deleted one
        return dataclasses.replace(state, collections=[
            c.model_copy(update={"requests": [r for r in c.requests if r.id != action.request_id]})
            if c.id == action.collection_id else c
            for c in state.collections
        ])

    if isinstance(action, SetHistory):
        return dataclasses.replace(state, history=list(action.history))

    if isinstance(action, AddToHistory):
        history = [action.item] + state.history
        if action.limit is not None:
            history = history[:action.limit]
        return dataclasses.replace(state, history=history)

    if isinstance(action, SetEnvironments):
        return dataclasses.replace(state, environments=list(action.environments))

    if isinstance(action, SetActiveEnvironment):
        return dataclasses.replace(state, active_environment=action.environment)

    if isinstance(action, SetLoading):
        return dataclasses.replace(state, is_loading=action.loading)

    if isinstance(action, SetResponse):
        return dataclasses.replace(state, response=action.response)

    if isinstance(action, LoadData):
        collections, history, environments = merge_snapshot(
            state.collections, state.history, state.environments,
            action.collections, action.history, action.environments,
            action.replace_existing, id_factory=action.id_factory,
        )
        changes: Dict[str, Any] = {
            "collections": collections,
            "history": history,
            "environments": environments,
        }
        if action.replace_existing:
            changes["current_request"] = None
            changes["response"] = None
        return dataclasses.replace(state, **changes)

    return state


# ---------------------------------------------------------------------------
# Store owner
# ---------------------------------------------------------------------------
def create_default_request() -> RequestConfig:
    return RequestConfig(
        id=new_id(),
        name="New Request",
        method="GET",
        url="",
        headers=[],
        body=RequestBody(type="none", content=""),
        created_at=now_iso(),
        updated_at=now_iso(),
    )


def sample_collection() -> Collection:
    collection_id = new_id()
    return Collection(
        id=collection_id,
        name="My API Collection",
        description="Sample collection for testing",
        requests=[
            RequestConfig(
                name="Get Users",
                method="GET",
                url="https://jsonplaceholder.typicode.com/users",
                collection_id=collection_id,
            ),
            RequestConfig(
                name="Create User",
                method="POST",
                url="https://jsonplaceholder.typicode.com/users",
                headers=[Header(key="Content-Type", value="application/json")],
                body=RequestBody(
                    type="json",
                    content='{\n  "name": "John Doe",\n  "email": "john@example.com"\n}',
                ),
                collection_id=collection_id,
            ),
        ],
    )


Listener = Callable[[ApiState], None]


class ApiStore:
    """
    Owner of the live ApiState.

    Consumers read `state` or subscribe; they never mutate it. `confirm` is
    the UI prompt collaborator used before discarding unsaved edits.
    """

    def __init__(self, storage: Optional[StorageManager] = None, client: Optional[ApiClient] = None,
                 confirm: Optional[Callable[[str], bool]] = None):
        self.storage = storage if storage is not None else StorageManager()
        self.client = client if client is not None else ApiClient()
        self.confirm = confirm
        self._state = ApiState()
        self._listeners: List[Listener] = []

    @property
    def state(self) -> ApiState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, action: Action) -> ApiState:
        prev = self._state
        self._state = reduce(prev, action)
        self._persist(prev, self._state)
        for listener in list(self._listeners):
            listener(self._state)
        return self._state

    def _persist(self, prev: ApiState, state: ApiState):
        if state.collections is not prev.collections:
            self.storage.save_collections(state.collections)

        if state.history is not prev.history:
            try:
                self.storage.save_history(state.history)
            except StorageError:
                logger.exception("History could not be persisted")

        if state.environments is not prev.environments:
            self.storage.save_environments(state.environments)

        if state.active_environment is not prev.active_environment:
            env = state.active_environment
            self.storage.set_active_environment(env.id if env is not None else None)

    # -- loading ---------------------------------------------------------------
    def load(self, seed_sample: bool = True) -> ApiState:
        """Populate the store from storage, seeding a sample collection on first run."""
        collections = self.storage.get_collections()
        history = self.storage.get_history()
        environments = self.storage.get_environments()
        active_id = self.storage.get_active_environment()

        if not collections and seed_sample:
            collections = [sample_collection()]
        else:
            collections = [
                c.model_copy(update={
                    "requests": [r if r.collection_id else r.model_copy(update={"collection_id": c.id})
                                 for r in c.requests],
                })
                for c in collections
            ]
        self.dispatch(SetCollections(collections))
        self.dispatch(SetHistory(history))
        self.dispatch(SetEnvironments(environments))

        if active_id:
            active = next((e for e in environments if e.id == active_id), None)
            if active is not None:
                self.dispatch(SetActiveEnvironment(active))
        return self._state

    # -- requests ----------------------------------------------------------------
    def create_default_request(self) -> RequestConfig:
        return create_default_request()

    def new_request(self) -> RequestConfig:
        request = create_default_request()
        self.dispatch(SetCurrentRequest(request))
        self.dispatch(SetResponse(None))
        return request

    def update_current_request(self, **changes) -> ApiState:
        """Apply a partial edit. Raises pydantic.ValidationError and changes nothing when the result is invalid."""
        current = self._state.current_request
        if current is not None:
            RequestConfig.model_validate({**current.model_dump(), **changes})
        return self.dispatch(UpdateCurrentRequest(changes))

    def find_request_collection(self, request_id: str) -> Optional[Collection]:
        for collection in self._state.collections:
            if any(r.id == request_id for r in collection.requests):
                return collection
        return None

    def get_request_response(self, request_id: str) -> Optional[ApiResponse]:
        for item in self._state.history:
            if item.request.id == request_id:
                return item.response
        return None

    def select_request(self, request: RequestConfig, confirm: Optional[Callable[[str], bool]] = None) -> bool:
        """Make `request` current, asking first when the open one has unsaved edits."""
        if self._state.is_request_modified:
            ask = confirm or self.confirm
            if ask is None or not ask(UNSAVED_CHANGES_PROMPT):
                return False
        self.dispatch(SetCurrentRequest(request))
        self.dispatch(SetResponse(self.get_request_response(request.id)))
        return True

    # -- collections -------------------------------------------------------------
    def create_collection(self, name: str, description: Optional[str] = None) -> str:
        collection = Collection(id=new_id(), name=name, description=description)
        self.dispatch(AddCollection(collection))
        return collection.id

    def rename_collection(self, collection_id: str, name: str) -> ApiState:
        return self.dispatch(RenameCollection(collection_id, name))

    def delete_collection(self, collection_id: str) -> ApiState:
        return self.dispatch(PermanentDeleteCollection(collection_id))

    def save_request_to_collection(self, collection_id: str, request: RequestConfig) -> ApiState:
        collection = next((c for c in self._state.collections if c.id == collection_id), None)
        if collection is not None and any(r.id == request.id for r in collection.requests):
            return self.dispatch(UpdateRequestInCollection(collection_id, request))
        return self.dispatch(AddRequestToCollection(collection_id, request))

    def update_request_in_collection(self, collection_id: str, request: RequestConfig) -> ApiState:
        return self.dispatch(UpdateRequestInCollection(collection_id, request))

    def delete_request_from_collection(self, collection_id: str, request_id: str) -> ApiState:
        return self.dispatch(DeleteRequestFromCollection(collection_id, request_id))

    # -- environments --------------------------------------------------------------
    def set_environments(self, environments: List[Environment]) -> ApiState:
        state = self.dispatch(SetEnvironments(environments))
        active = state.active_environment
        if active is not None:
            # keep the active environment in step with its edited copy
            refreshed = next((e for e in environments if e.id == active.id), None)
            state = self.dispatch(SetActiveEnvironment(refreshed))
        return state

    def set_active_environment(self, environment_id: Optional[str]) -> ApiState:
        env = None
        if environment_id is not None:
            env = next((e for e in self._state.environments if e.id == environment_id), None)
        return self.dispatch(SetActiveEnvironment(env))

    def clear_history(self) -> ApiState:
        state = self.dispatch(SetHistory([]))
        self.storage.clear_history()
        return state

    # -- sending ---------------------------------------------------------------------
    async def send_request(self) -> Optional[ApiResponse]:
        """
        Send the current request with the active environment.

        A successful send is recorded in history. A failed one leaves the
        error envelope (status 0) as the response and records nothing.
        """
        request = self._state.current_request
        if request is None:
            return None

        self.dispatch(SetLoading(True))
        self.dispatch(SetResponse(None))
        try:
            response = await self.client.send_request(request, self._state.active_environment)
            self.dispatch(SetResponse(response))
            self.dispatch(AddToHistory(RequestHistory(
                id=new_id(),
                request=request.model_copy(deep=True),
                response=response,
                timestamp=now_iso(),
            ), limit=self.storage.get_settings().max_history_items))
            return response
        except RequestFailed as e:
            self.dispatch(SetResponse(e.response))
            return e.response
        finally:
            self.dispatch(SetLoading(False))

    def send_request_sync(self) -> Optional[ApiResponse]:
        return asyncio.run(self.send_request())

    # -- import / export -----------------------------------------------------------------
    def load_collections_from_data(self, data: Any, replace_existing: bool) -> ApiState:
        """Apply an export payload (dict, JSON text or parsed snapshot). Invalid input changes nothing."""
        snapshot = data if isinstance(data, ImportSnapshot) else parse_snapshot(data)
        collections, history, environments = snapshot_lists(snapshot)
        return self.dispatch(LoadData(
            collections=collections,
            history=history,
            environments=environments,
            replace_existing=replace_existing,
        ))

    def import_file(self, path: str, replace_existing: bool = False) -> ApiState:
        try:
            with open(path, "r", encoding="utf-8") as f:
                text = f.read()
        except OSError as e:
            raise InvalidImportError(f"Could not read {path}: {e}") from e
        return self.load_collections_from_data(text, replace_existing)

    def export_file(self, path: str):
        snapshot = self.storage.export_data()
        with open(path, "w", encoding="utf-8") as f:
            f.write(snapshot.model_dump_json(by_alias=True, indent=2))
