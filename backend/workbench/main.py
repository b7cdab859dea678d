from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from typing import Dict, Any, List, Optional

from . import config
from . import db as dbmod
from .errors import InvalidImportError
from .monitoring import logger
from .schemas import Environment, RequestConfig
from .store import ApiStore

app = FastAPI(title="API Workbench Backend", version="0.4.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

dbmod.init_db()

# the single owner of application state for this process
store = ApiStore()
store.load()


@app.exception_handler(InvalidImportError)
async def invalid_import_handler(request: Request, exc: InvalidImportError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content={"detail": exc.errors(include_url=False, include_context=False)})


def dump(model) -> Any:
    return model.to_json_dict() if model is not None else None


def state_payload() -> Dict[str, Any]:
    s = store.state
    return {
        "collections": [c.to_json_dict() for c in s.collections],
        "currentRequest": dump(s.current_request),
        "isRequestModified": s.is_request_modified,
        "history": [h.to_json_dict() for h in s.history],
        "environments": [e.to_json_dict() for e in s.environments],
        "activeEnvironment": dump(s.active_environment),
        "isLoading": s.is_loading,
        "response": dump(s.response),
    }


def require_collection(collection_id: str):
    collection = next((c for c in store.state.collections if c.id == collection_id), None)
    if collection is None:
        raise HTTPException(status_code=404, detail="Collection not found")
    return collection


class SelectRequest(BaseModel):
    request: Dict[str, Any]
    discard_changes: bool = False


class SaveToCollection(BaseModel):
    request: Optional[Dict[str, Any]] = None  # defaults to the current request


class SaveCollection(BaseModel):
    name: str
    description: Optional[str] = None


class SaveEnvs(BaseModel):
    environments: List[Dict[str, Any]] = []


class ActiveEnv(BaseModel):
    environment_id: Optional[str] = None


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/state")
def get_state():
    return state_payload()


@app.post("/requests/new")
def new_request():
    return dump(store.new_request())


@app.put("/requests/current")
def select_request(payload: SelectRequest):
    request = RequestConfig.model_validate(payload.request)
    selected = store.select_request(request, confirm=lambda _msg: payload.discard_changes)
    return {"selected": selected, "state": state_payload()}


@app.patch("/requests/current")
def update_current_request(partial: Dict[str, Any]):
    current = store.state.current_request
    if current is None:
        raise HTTPException(status_code=409, detail="No request selected")
    # validate the camelCase partial against the full model, keep only what was sent
    merged = RequestConfig.model_validate({**current.to_json_dict(), **partial})
    sent = {name for name, f in RequestConfig.model_fields.items() if f.alias in partial or name in partial}
    store.update_current_request(**{name: getattr(merged, name) for name in sent})
    return state_payload()


@app.post("/send")
async def send():
    if store.state.current_request is None:
        raise HTTPException(status_code=409, detail="No request selected")
    response = await store.send_request()
    return {"ok": response is not None and response.status != 0, "response": dump(response)}


@app.get("/collections")
def list_collections():
    return [c.to_json_dict() for c in store.state.collections]


@app.post("/collections")
def create_collection(payload: SaveCollection):
    return {"id": store.create_collection(payload.name, payload.description)}


@app.patch("/collections/{collection_id}")
def rename_collection(collection_id: str, payload: SaveCollection):
    require_collection(collection_id)
    store.rename_collection(collection_id, payload.name)
    return dump(require_collection(collection_id))


@app.delete("/collections/{collection_id}")
def delete_collection(collection_id: str):
    require_collection(collection_id)
    store.delete_collection(collection_id)
    return {"deleted": collection_id}


@app.post("/collections/{collection_id}/requests")
def save_request(collection_id: str, payload: SaveToCollection):
    require_collection(collection_id)
    if payload.request is not None:
        request = RequestConfig.model_validate(payload.request)
    elif store.state.current_request is not None:
        request = store.state.current_request
    else:
        raise HTTPException(status_code=409, detail="No request selected")
    store.save_request_to_collection(collection_id, request)
    return dump(require_collection(collection_id))


@app.delete("/collections/{collection_id}/requests/{request_id}")
def delete_request(collection_id: str, request_id: str):
    require_collection(collection_id)
    store.delete_request_from_collection(collection_id, request_id)
    return dump(require_collection(collection_id))


@app.get("/history")
def get_history():
    return [h.to_json_dict() for h in store.state.history]


@app.delete("/history")
def clear_history():
    store.clear_history()
    return {"cleared": True}


@app.get("/environments")
def list_envs():
    return [e.to_json_dict() for e in store.state.environments]


@app.put("/environments")
def save_envs(payload: SaveEnvs):
    envs = [Environment.model_validate(e) for e in payload.environments]
    store.set_environments(envs)
    return [e.to_json_dict() for e in store.state.environments]


@app.put("/environments/active")
def set_active_env(payload: ActiveEnv):
    store.set_active_environment(payload.environment_id)
    return {"activeEnvironment": dump(store.state.active_environment)}


@app.get("/settings")
def get_settings():
    return store.storage.get_settings().to_json_dict()


@app.put("/settings")
def save_settings(partial: Dict[str, Any]):
    store.storage.save_settings(partial)
    return store.storage.get_settings().to_json_dict()


@app.get("/storage/usage")
def storage_usage():
    return store.storage.get_storage_usage().model_dump()


@app.get("/export")
def export_data():
    return store.storage.export_data().to_json_dict()


@app.post("/import")
def import_data(payload: Dict[str, Any], replace: bool = False):
    store.load_collections_from_data(payload, replace_existing=replace)
    logger.info("Imported data", extra={"replace": replace})
    return state_payload()


def run():
    import uvicorn

    uvicorn.run("workbench.main:app", host="127.0.0.1", port=8000)
