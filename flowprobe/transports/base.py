# flowprobe/transports/base.py
"""
Transport capability interfaces.

The step executor only talks to these abstractions. Default
implementations live next to this module; tests and embedders can inject
their own through ``WorkflowOptions.transports``.
"""

from __future__ import annotations

import ssl
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple, Union

import httpx

from flowprobe.auth import TLSCredentials


# ==================== HTTP ====================

@dataclass
class HTTPRequest:
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    content: Optional[bytes] = None
    # multipart/form-data: text fields and (filename, bytes) files
    form_fields: Optional[Dict[str, str]] = None
    files: Optional[Dict[str, Tuple[str, bytes]]] = None
    follow_redirects: bool = True
    timeout_ms: Optional[float] = None
    retries: int = 0
    verify: Union[ssl.SSLContext, bool] = False
    http2: bool = False
    cookies: Optional[httpx.Cookies] = None

    @property
    def body(self) -> Any:
        if self.content is not None:
            return self.content
        if self.form_fields or self.files:
            return {"fields": dict(self.form_fields or {}), "files": sorted(self.files or {})}
        return None


@dataclass(frozen=True)
class CertificateInfo:
    valid: bool
    signed: bool
    valid_until: datetime
    days_until_expiration: int


@dataclass(frozen=True)
class HTTPResponse:
    url: str
    status: int
    reason: str
    http_version: str
    headers: Dict[str, str]
    body: bytes
    timings: Dict[str, float] = field(default_factory=dict)
    redirect_urls: List[str] = field(default_factory=list)
    request_headers: Dict[str, str] = field(default_factory=dict)
    request_size: int = 0
    response_size: int = 0
    certificate: Optional[CertificateInfo] = None

    @property
    def content_type(self) -> Optional[str]:
        value = self.headers.get("content-type")
        return value.split(";")[0].strip() if value else None

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class HTTPTransport(ABC):
    """Issue one HTTP request and report its wire-level facts."""

    @abstractmethod
    async def send(self, request: HTTPRequest) -> HTTPResponse:
        pass


# ==================== gRPC ====================

@dataclass
class GrpcRequest:
    protos: List[str]
    host: str
    service: str
    method: str
    data: Any = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    tls: Optional[TLSCredentials] = None
    timeout_ms: Optional[float] = None


@dataclass(frozen=True)
class GrpcResponse:
    data: Any
    status: int
    status_text: str
    size: int
    metadata: Dict[str, Any] = field(default_factory=dict)


class GrpcTransport(ABC):
    """Invoke one gRPC method described by proto files."""

    @abstractmethod
    async def call(self, request: GrpcRequest) -> GrpcResponse:
        pass


# ==================== Server-sent events ====================

@dataclass
class SSERequest:
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    verify: Union[ssl.SSLContext, bool] = False


class SSETransport(ABC):
    """Subscribe to an event stream and yield message payloads."""

    @abstractmethod
    def subscribe(self, request: SSERequest) -> AsyncIterator[str]:
        pass


@dataclass
class Transports:
    http: Optional[HTTPTransport] = None
    grpc: Optional[GrpcTransport] = None
    sse: Optional[SSETransport] = None
