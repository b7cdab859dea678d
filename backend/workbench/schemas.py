# workbench/schemas.py
import uuid
import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

HttpMethod = Literal["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]
HTTP_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]

BodyType = Literal["none", "json", "form", "raw"]
AuthType = Literal["none", "bearer", "basic", "apikey", "oauth2"]


def new_id() -> str:
    return str(uuid.uuid4())


def now_iso() -> str:
    """UTC timestamp shaped like JavaScript's Date.toISOString()."""
    now = datetime.datetime.now(datetime.timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class CamelModel(BaseModel):
    # snake_case in Python, camelCase in storage and export files
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class Header(CamelModel):
    id: str = Field(default_factory=new_id)
    key: str = ""
    value: str = ""
    enabled: bool = True


class RequestBody(CamelModel):
    type: BodyType = "none"
    content: str = ""


class BearerAuth(CamelModel):
    token: str = ""


class BasicAuth(CamelModel):
    username: str = ""
    password: str = ""


class ApiKeyAuth(CamelModel):
    key: str = ""
    value: str = ""
    add_to: Literal["header", "query"] = "header"


class OAuth2Auth(CamelModel):
    access_token: str = ""
    token_type: str = "Bearer"


class AuthConfig(CamelModel):
    # only the payload matching `type` is consulted
    type: AuthType = "none"
    bearer: Optional[BearerAuth] = None
    basic: Optional[BasicAuth] = None
    apikey: Optional[ApiKeyAuth] = None
    oauth2: Optional[OAuth2Auth] = None


class RequestConfig(CamelModel):
    id: str = Field(default_factory=new_id)
    name: str = "New Request"
    method: HttpMethod = "GET"
    url: str = ""
    headers: List[Header] = Field(default_factory=list)
    body: RequestBody = Field(default_factory=RequestBody)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    created_at: str = Field(default_factory=now_iso)
    updated_at: str = Field(default_factory=now_iso)
    collection_id: Optional[str] = None


class Folder(CamelModel):
    id: str = Field(default_factory=new_id)
    name: str = ""
    requests: List[RequestConfig] = Field(default_factory=list)
    created_at: str = Field(default_factory=now_iso)


class Collection(CamelModel):
    id: str = Field(default_factory=new_id)
    name: str
    description: Optional[str] = None
    requests: List[RequestConfig] = Field(default_factory=list)
    folders: List[Folder] = Field(default_factory=list)
    created_at: str = Field(default_factory=now_iso)
    updated_at: str = Field(default_factory=now_iso)


class Environment(CamelModel):
    id: str = Field(default_factory=new_id)
    name: str
    variables: Dict[str, str] = Field(default_factory=dict)
    is_active: bool = False


class ApiResponse(CamelModel):
    status: int
    status_text: str = ""
    headers: Dict[str, str] = Field(default_factory=dict)
    data: Any = None
    response_time: int = 0
    size: int = 0


class RequestHistory(CamelModel):
    id: str = Field(default_factory=new_id)
    request: RequestConfig
    response: ApiResponse
    timestamp: str = Field(default_factory=now_iso)


class AppSettings(CamelModel):
    max_history_items: int = 50
    max_history_age: int = 30  # days
    auto_cleanup: bool = True
    max_response_size: int = 1024 * 1024  # bytes


class StorageUsage(BaseModel):
    used: int
    total: int
    percentage: float


class ExportSnapshot(CamelModel):
    collections: List[Collection] = Field(default_factory=list)
    environments: List[Environment] = Field(default_factory=list)
    history: List[RequestHistory] = Field(default_factory=list)
    settings: AppSettings = Field(default_factory=AppSettings)
    exported_at: str = Field(default_factory=now_iso)


class ImportSnapshot(CamelModel):
    """Incoming export file. Absent fields stay None so callers can tell them apart from empty."""

    collections: Optional[List[Collection]] = None
    environments: Optional[List[Environment]] = None
    history: Optional[List[RequestHistory]] = None
    settings: Optional[Dict[str, Any]] = None
    exported_at: Optional[str] = None
