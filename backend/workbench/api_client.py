# workbench/api_client.py
import re
import json
import time
import base64
from typing import Any, Dict, Optional

import httpx

from .errors import RequestFailed
from .monitoring import logger
from .schemas import ApiResponse, AuthConfig, Environment, RequestConfig

_VAR_PATTERN = re.compile(r"\{\{([^{}]+)\}\}")


def apply_vars(s: Any, vars_: Dict[str, str]) -> Any:
    """Replace {{name}} tokens with environment values; unknown tokens stay as written."""
    if not isinstance(s, str) or not vars_:
        return s
    return _VAR_PATTERN.sub(lambda m: str(vars_[m.group(1)]) if m.group(1) in vars_ else m.group(0), s)


def _set_header(headers: Dict[str, str], name: str, value: str):
    # header names are case-insensitive on the wire; the last writer wins
    for existing in [k for k in headers if k.lower() == name.lower()]:
        del headers[existing]
    headers[name] = value


def auth_headers(auth: AuthConfig, vars_: Dict[str, str]) -> Dict[str, str]:
    out: Dict[str, str] = {}

    if auth.type == "bearer":
        if auth.bearer and auth.bearer.token:
            out["Authorization"] = f"Bearer {apply_vars(auth.bearer.token, vars_)}"

    elif auth.type == "basic":
        if auth.basic and auth.basic.username and auth.basic.password:
            credentials = base64.b64encode(f"{auth.basic.username}:{auth.basic.password}".encode("utf-8"))
            out["Authorization"] = f"Basic {credentials.decode('ascii')}"

    elif auth.type == "apikey":
        apikey = auth.apikey
        if apikey and apikey.key and apikey.value and apikey.add_to == "header":
            out[apikey.key] = apply_vars(apikey.value, vars_)

    elif auth.type == "oauth2":
        if auth.oauth2 and auth.oauth2.access_token:
            token_type = auth.oauth2.token_type or "Bearer"
            out["Authorization"] = f"{token_type} {auth.oauth2.access_token}"

    return out


def auth_query_params(auth: AuthConfig, vars_: Dict[str, str]) -> Dict[str, str]:
    apikey = auth.apikey
    if auth.type == "apikey" and apikey and apikey.key and apikey.value and apikey.add_to == "query":
        return {apikey.key: apply_vars(apikey.value, vars_)}
    return {}


def build_request(request: RequestConfig, environment: Optional[Environment] = None) -> Dict[str, Any]:
    """
    Resolve a RequestConfig into the arguments of the outbound call:
    method, url, headers and body content (None when no body is sent).
    """
    vars_ = environment.variables if environment else {}

    url = apply_vars(request.url, vars_)
    query = auth_query_params(request.auth, vars_)
    if query:
        url = str(httpx.URL(url).copy_merge_params(query))

    headers: Dict[str, str] = {}
    for h in request.headers:
        if h.enabled and h.key and h.value:
            _set_header(headers, h.key, apply_vars(h.value, vars_))

    for name, value in auth_headers(request.auth, vars_).items():
        _set_header(headers, name, value)

    content = None
    if request.method != "GET" and request.body.type != "none":
        if request.body.type == "json":
            _set_header(headers, "Content-Type", "application/json")
            content = apply_vars(request.body.content, vars_)
        else:
            # form and raw bodies go out exactly as typed
            content = request.body.content

    return {"method": request.method, "url": url, "headers": headers, "content": content}


def decode_body(r: httpx.Response) -> Any:
    content_type = (r.headers.get("content-type", "") or "").lower()
    if "application/json" in content_type:
        try:
            return r.json()
        except ValueError:
            return r.text
    return r.text


def body_size(data: Any) -> int:
    return len(json.dumps(data, separators=(",", ":"), ensure_ascii=False).encode("utf-8"))


class ApiClient:
    """
    Sends RequestConfigs over HTTP. Requests run to completion: there is no
    timeout and no retry. `transport` is handed to httpx (tests use MockTransport).
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None, follow_redirects: bool = True):
        self.transport = transport
        self.follow_redirects = follow_redirects

    async def send_request(self, request: RequestConfig, environment: Optional[Environment] = None) -> ApiResponse:
        start = time.time()
        try:
            prepared = build_request(request, environment)
            async with httpx.AsyncClient(
                timeout=None, follow_redirects=self.follow_redirects, transport=self.transport
            ) as client:
                r = await client.request(
                    method=prepared["method"],
                    url=prepared["url"],
                    headers=prepared["headers"],
                    content=prepared["content"],
                )
            response_time = int((time.time() - start) * 1000)

            data = decode_body(r)
            return ApiResponse(
                status=r.status_code,
                status_text=r.reason_phrase,
                headers=dict(r.headers),
                data=data,
                response_time=response_time,
                size=body_size(data),
            )
        except Exception as e:
            response_time = int((time.time() - start) * 1000)
            logger.warning("Request %s %s failed: %s", request.method, request.url, e)
            envelope = ApiResponse(
                status=0,
                status_text="Network Error",
                headers={},
                data={"error": str(e) or type(e).__name__},
                response_time=response_time,
                size=0,
            )
            raise RequestFailed(envelope, cause=e) from e
