# flowprobe/transports/http.py
"""
HTTP transport backed by httpx.

Besides the response itself it records:
* per-phase timings through the httpcore ``trace`` extension
* the peer certificate of TLS connections
* approximate wire sizes of request and response (start line + headers + body)
* the redirect chain

Retries follow the usual pattern: transport errors and 5xx responses are
retried with a linear backoff until the step's retry budget is used.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
from cryptography import x509
from cryptography.x509.oid import NameOID

from flowprobe.errors import TransportError
from flowprobe.settings import get_settings
from flowprobe.transports.base import CertificateInfo, HTTPRequest, HTTPResponse, HTTPTransport

logger = logging.getLogger(__name__)


# ==================== Timings ====================

class PhaseTimer:
    """Collects httpcore trace events and turns them into phase durations (ms)."""

    def __init__(self):
        self.marks: Dict[str, float] = {}

    async def trace(self, event_name: str, info: Dict[str, Any]) -> None:
        # "http11.send_request_headers.started" -> "send_request_headers.started"
        _, _, key = event_name.partition(".")
        self.marks[key] = time.perf_counter()

    def _span(self, start: str, end: str) -> Optional[float]:
        if start in self.marks and end in self.marks:
            return round((self.marks[end] - self.marks[start]) * 1000, 3)
        return None

    def phases(self, total_ms: float) -> Dict[str, float]:
        spans = {
            "tcp": self._span("connect_tcp.started", "connect_tcp.complete"),
            "tls": self._span("start_tls.started", "start_tls.complete"),
            "request": self._span("send_request_headers.started", "send_request_body.complete"),
            "firstByte": self._span("send_request_body.complete", "receive_response_headers.complete"),
            "download": self._span("receive_response_body.started", "receive_response_body.complete"),
        }
        out = {k: v for k, v in spans.items() if v is not None}
        out["total"] = round(total_ms, 3)
        return out


# ==================== Certificates ====================

def _common_name(name: x509.Name) -> Optional[str]:
    attrs = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    return str(attrs[0].value) if attrs else None


def certificate_info(der: bytes, now: Optional[datetime] = None) -> CertificateInfo:
    """Facts about a DER encoded peer certificate."""
    cert = x509.load_der_x509_certificate(der)
    now = now or datetime.now(timezone.utc)
    valid_until = cert.not_valid_after_utc
    return CertificateInfo(
        valid=valid_until > now,
        signed=_common_name(cert.issuer) != _common_name(cert.subject),
        valid_until=valid_until,
        days_until_expiration=round((valid_until - now).total_seconds() / 86400),
    )


def _peer_certificate(response: httpx.Response) -> Optional[CertificateInfo]:
    stream = response.extensions.get("network_stream")
    if stream is None:
        return None
    ssl_object = stream.get_extra_info("ssl_object")
    if ssl_object is None:
        return None
    der = ssl_object.getpeercert(binary_form=True)
    if not der:
        return None
    try:
        return certificate_info(der)
    except ValueError:
        logger.debug("Could not parse peer certificate", exc_info=True)
        return None


# ==================== Sizes ====================

def _header_block_size(raw_headers) -> int:
    return sum(len(k) + len(v) + 4 for k, v in raw_headers) + 2


def _request_size(request: httpx.Request) -> int:
    start_line = f"{request.method} {request.url.raw_path.decode('ascii', 'replace')} HTTP/1.1\r\n"
    body = int(request.headers.get("content-length") or 0)
    return len(start_line) + _header_block_size(request.headers.raw) + body


def _response_size(response: httpx.Response) -> int:
    start_line = f"{response.http_version} {response.status_code} {response.reason_phrase}\r\n"
    return len(start_line) + _header_block_size(response.headers.raw) + response.num_bytes_downloaded


def _flat_headers(headers: httpx.Headers) -> Dict[str, str]:
    return {k: ", ".join(headers.get_list(k)) for k in headers.keys()}


# ==================== Transport ====================

class HttpxTransport(HTTPTransport):
    """Default HTTP transport. One short-lived client per request."""

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        backoff_s: Optional[float] = None,
    ):
        self._transport = transport
        self.backoff_s = get_settings().retry_backoff_s if backoff_s is None else backoff_s

    async def send(self, request: HTTPRequest) -> HTTPResponse:
        retries = max(0, int(request.retries or 0))

        for attempt in range(retries + 1):
            try:
                response = await self._send_once(request)
            except httpx.HTTPError as e:
                if attempt < retries:
                    logger.warning(f"⚠️ {request.method} {request.url} failed ({e!r}), retrying")
                    await asyncio.sleep(self.backoff_s * (attempt + 1))
                    continue
                raise TransportError("http", f"{type(e).__name__}: {e}") from e

            if response.status >= 500 and attempt < retries:
                logger.warning(f"⚠️ {request.method} {request.url} -> {response.status}, retrying")
                await asyncio.sleep(self.backoff_s * (attempt + 1))
                continue
            return response

        raise TransportError("http", "retry budget exhausted")

    async def _send_once(self, request: HTTPRequest) -> HTTPResponse:
        timer = PhaseTimer()
        certificate: Dict[str, Optional[CertificateInfo]] = {"peer": None}

        async def on_response(response: httpx.Response) -> None:
            peer = _peer_certificate(response)
            if peer is not None:
                certificate["peer"] = peer

        timeout_ms = request.timeout_ms or get_settings().default_http_timeout_ms
        timeout = httpx.Timeout(timeout_ms / 1000 if timeout_ms else None)

        client_kwargs: Dict[str, Any] = {
            "verify": request.verify,
            "http2": request.http2,
            "timeout": timeout,
            "cookies": request.cookies,
            "event_hooks": {"response": [on_response]},
        }
        if self._transport is not None:
            client_kwargs["transport"] = self._transport

        # text fields travel as filename-less parts so the body is always multipart
        multipart = None
        if request.form_fields or request.files:
            multipart = {k: (None, v.encode("utf-8")) for k, v in (request.form_fields or {}).items()}
            multipart.update(request.files or {})

        async with httpx.AsyncClient(**client_kwargs) as client:
            built = client.build_request(
                request.method.upper(),
                request.url,
                headers=request.headers,
                content=request.content,
                files=multipart,
                extensions={"trace": timer.trace},
            )
            t0 = time.perf_counter()
            response = await client.send(built, follow_redirects=request.follow_redirects)
            total_ms = (time.perf_counter() - t0) * 1000

            if request.cookies is not None:
                request.cookies.update(client.cookies)

        hops = list(response.history) + [response]
        redirect_urls = [str(r.url) for r in hops[1:]] if response.history else []

        return HTTPResponse(
            url=str(response.url),
            status=response.status_code,
            reason=response.reason_phrase,
            http_version=response.http_version,
            headers=_flat_headers(response.headers),
            body=response.content,
            timings=timer.phases(total_ms),
            redirect_urls=redirect_urls,
            request_headers=_flat_headers(response.request.headers),
            request_size=sum(_request_size(r.request) for r in hops),
            response_size=sum(_response_size(r) for r in hops),
            certificate=certificate["peer"],
        )
