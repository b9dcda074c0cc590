# flowprobe/request_builder.py
"""
Turns a rendered HTTP/SSE step into a transport request.

Body precedence, in order (later ones win):
    body -> json -> graphql -> trpc -> form -> formData
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlencode, urlsplit

import httpx

from flowprobe.auth import build_ssl_context, get_auth_header
from flowprobe.cookies import set_cookie
from flowprobe.files import try_file
from flowprobe.models import HTTPStep, SSEStep, StepFile
from flowprobe.transports.base import HTTPRequest, SSERequest

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


# ==================== Helpers ====================

def _json_bytes(value: Any) -> bytes:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _find_header(headers: Mapping[str, str], name: str) -> Optional[str]:
    for key in headers:
        if key.lower() == name.lower():
            return key
    return None


def _set_header(headers: Dict[str, str], name: str, value: str) -> None:
    existing = _find_header(headers, name)
    if existing is not None:
        del headers[existing]
    headers[name] = value


def _drop_header(headers: Dict[str, str], name: str) -> None:
    existing = _find_header(headers, name)
    if existing is not None:
        del headers[existing]


def is_absolute_url(url: str) -> bool:
    parts = urlsplit(url)
    return bool(parts.scheme) and bool(parts.netloc or parts.path)


def prefix_base_url(url: str, base_url: Optional[str]) -> str:
    if base_url and not is_absolute_url(url):
        return base_url + url
    return url


def append_query(url: str, query: str) -> str:
    if not query:
        return url
    if url.endswith(("?", "&")):
        return url + query
    return url + ("&" if urlsplit(url).query else "?") + query


# ==================== Query strings ====================

def _text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


def _object_param(param: Any) -> List[str]:
    if not isinstance(param, Mapping):
        raise TypeError(f"query parameter block must be a mapping, got {type(param).__name__}")
    parts = []
    for key, value in param.items():
        if isinstance(value, (list, tuple)):
            parts.extend(f"{key}[]={_text(v)}" for v in value)
        else:
            parts.append(f"{key}={_text(value)}")
    return parts


def _pair_param(param: Any) -> List[str]:
    key, value = param
    return [f"{key}[]={_text(value)}"]


def params_to_string(params: Any) -> str:
    """
    Serialize query parameters.

    >>> params_to_string({"fruits": ["apple", "banana"]})
    'fruits[]=apple&fruits[]=banana'
    >>> params_to_string([{"fruits": "apple"}, {"other": "test"}])
    'fruits=apple&other=test'
    >>> params_to_string([["fruits", "apple"], ["fruits", "banana"]])
    'fruits[]=apple&fruits[]=banana'
    """
    try:
        parts: List[str] = []
        if isinstance(params, list):
            for param in params:
                if isinstance(param, (list, tuple)):
                    parts.extend(_pair_param(param))
                else:
                    parts.extend(_object_param(param))
        else:
            parts.extend(_object_param(params))
        return "&".join(parts)
    except (TypeError, ValueError):
        logger.debug("Custom query serialization failed, falling back to urlencode")
        if isinstance(params, str):
            return params.lstrip("?")
        return urlencode(params, doseq=True)


# ==================== tRPC ====================

def _single_entry(block: Mapping[str, Any]) -> Tuple[str, Any]:
    if len(block) != 1:
        raise ValueError(f"a tRPC call names exactly one procedure, got {list(block)}")
    return next(iter(block.items()))


def apply_trpc(step: HTTPStep, url: str, method: str, params: Any, content: Optional[bytes]):
    """Rewrite method, URL, params and body for a tRPC query or mutation."""
    trpc = step.trpc
    if trpc.query is not None:
        method = "GET"
        if isinstance(trpc.query, list):
            calls = [_single_entry(q) for q in trpc.query]
            procedures = ",".join(name for name, _ in calls)
            url = url + "/" + procedures.replace("/", ".")
            params = {
                "batch": "1",
                "input": json.dumps({str(i): data for i, (_, data) in enumerate(calls)}, separators=(",", ":")),
            }
        else:
            procedure, data = _single_entry(trpc.query)
            url = url + "/" + procedure.replace("/", ".")
            params = {"input": json.dumps(data, separators=(",", ":"))}

    if trpc.mutation is not None:
        procedure, data = _single_entry(trpc.mutation)
        method = "POST"
        url = url + "/" + procedure
        content = _json_bytes(data)

    return url, method, params, content


# ==================== Builders ====================

def build_http_request(
    step: HTTPStep,
    *,
    cookies: Optional[httpx.Cookies] = None,
    base_url: Optional[str] = None,
    reject_unauthorized: bool = False,
    http2: bool = False,
    workflow_path: Optional[str] = None,
) -> HTTPRequest:
    headers: Dict[str, str] = dict(step.headers or {})
    method = step.method.upper()
    url = prefix_base_url(step.url, base_url)
    params = step.params
    content: Optional[bytes] = None
    form_fields: Optional[Dict[str, str]] = None
    files: Optional[Dict[str, Tuple[str, bytes]]] = None

    if step.body is not None:
        content = try_file(step.body, workflow_path)

    if step.json_ is not None:
        if _find_header(headers, "Content-Type") is None:
            headers["Content-Type"] = JSON_CONTENT_TYPE
        content = _json_bytes(step.json_)

    if step.graphql is not None:
        method = "POST"
        _set_header(headers, "Content-Type", JSON_CONTENT_TYPE)
        content = _json_bytes({"query": step.graphql.query, "variables": step.graphql.variables})

    if step.trpc is not None:
        url, method, params, content = apply_trpc(step, url, method, params, content)

    if step.form is not None:
        _set_header(headers, "Content-Type", FORM_CONTENT_TYPE)
        content = urlencode({k: _text(v) for k, v in step.form.items()}).encode("ascii")

    if step.form_data is not None:
        _drop_header(headers, "Content-Type")
        content = None
        form_fields, files = {}, {}
        for field_name, value in step.form_data.items():
            if isinstance(value, StepFile):
                files[field_name] = (Path(value.file).name, try_file(value, workflow_path))
            else:
                form_fields[field_name] = _text(value)

    if params is not None:
        url = append_query(url, params_to_string(params))

    certificate = None
    if step.auth is not None:
        auth_header = get_auth_header(step.auth)
        if auth_header:
            _set_header(headers, "Authorization", auth_header)
        certificate = step.auth.certificate

    if cookies is not None and step.cookies:
        for name, value in step.cookies.items():
            set_cookie(cookies, name, value, url)

    return HTTPRequest(
        method=method,
        url=url,
        headers=headers,
        content=content,
        form_fields=form_fields,
        files=files,
        follow_redirects=step.follow_redirects,
        timeout_ms=step.timeout,
        retries=step.retries,
        verify=build_ssl_context(reject_unauthorized, certificate, workflow_path),
        http2=http2,
        cookies=cookies,
    )


def build_sse_request(
    step: SSEStep,
    *,
    base_url: Optional[str] = None,
    reject_unauthorized: bool = False,
) -> SSERequest:
    headers: Dict[str, str] = dict(step.headers or {})
    url = prefix_base_url(step.url, base_url)
    if step.params is not None:
        url = append_query(url, params_to_string(step.params))

    auth_header = get_auth_header(step.auth)
    if auth_header:
        _set_header(headers, "Authorization", auth_header)

    return SSERequest(
        url=url,
        headers=headers,
        verify=build_ssl_context(reject_unauthorized),
    )
