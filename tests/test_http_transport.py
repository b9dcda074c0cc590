"""Tests for the httpx-backed HTTP transport, driven through httpx.MockTransport."""

from datetime import datetime, timedelta, timezone

import httpx
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from flowprobe.errors import TransportError
from flowprobe.transports.base import HTTPRequest
from flowprobe.transports.http import HttpxTransport, certificate_info


def _transport(handler) -> HttpxTransport:
    return HttpxTransport(transport=httpx.MockTransport(handler), backoff_s=0)


class TestSend:
    @pytest.mark.asyncio
    async def test_response_facts(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["x-trace"] == "1"
            return httpx.Response(201, json={"ok": True}, headers={"X-Served-By": "mock"})

        response = await _transport(handler).send(
            HTTPRequest(method="post", url="http://api.test/items", headers={"X-Trace": "1"}, content=b"{}")
        )

        assert response.status == 201
        assert response.reason == "Created"
        assert response.headers["x-served-by"] == "mock"
        assert response.content_type == "application/json"
        assert response.body == b'{"ok":true}'
        assert response.timings["total"] >= 0
        assert response.request_size > 0
        assert response.response_size > len(response.body)
        assert response.redirect_urls == []
        assert response.certificate is None

    @pytest.mark.asyncio
    async def test_redirect_chain(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/old":
                return httpx.Response(302, headers={"Location": "http://api.test/new"})
            return httpx.Response(200, text="moved")

        response = await _transport(handler).send(HTTPRequest(method="GET", url="http://api.test/old"))

        assert response.status == 200
        assert response.url == "http://api.test/new"
        assert response.redirect_urls == ["http://api.test/new"]

    @pytest.mark.asyncio
    async def test_redirects_not_followed_when_disabled(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(302, headers={"Location": "http://api.test/new"})

        response = await _transport(handler).send(
            HTTPRequest(method="GET", url="http://api.test/old", follow_redirects=False)
        )
        assert response.status == 302

    @pytest.mark.asyncio
    async def test_cookies_round_trip_through_jar(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers.get("cookie"))
            return httpx.Response(200, headers={"Set-Cookie": "session=abc; Path=/"})

        jar = httpx.Cookies()
        jar.set("theme", "dark", domain="api.test", path="/")

        await _transport(handler).send(HTTPRequest(method="GET", url="http://api.test/login", cookies=jar))

        assert seen == ["theme=dark"]
        assert jar.get("session") == "abc"

    @pytest.mark.asyncio
    async def test_multipart_body(self) -> None:
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["type"] = request.headers["content-type"]
            captured["body"] = request.content
            return httpx.Response(200)

        await _transport(handler).send(
            HTTPRequest(
                method="POST",
                url="http://api.test/upload",
                form_fields={"title": "me"},
                files={"avatar": ("avatar.png", b"\x89PNG")},
            )
        )

        assert captured["type"].startswith("multipart/form-data")
        assert b'name="title"' in captured["body"]
        assert b'filename="avatar.png"' in captured["body"]


class TestRetries:
    @pytest.mark.asyncio
    async def test_server_errors_are_retried(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503 if len(calls) < 3 else 200)

        response = await _transport(handler).send(HTTPRequest(method="GET", url="http://api.test/", retries=2))

        assert response.status == 200
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_last_server_error_is_returned(self) -> None:
        response = await _transport(lambda r: httpx.Response(500)).send(
            HTTPRequest(method="GET", url="http://api.test/", retries=1)
        )
        assert response.status == 500

    @pytest.mark.asyncio
    async def test_connection_failure_raises_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransportError) as exc:
            await _transport(handler).send(HTTPRequest(method="GET", url="http://api.test/", retries=1))
        assert "connection refused" in str(exc.value)


class TestCertificateInfo:
    def _self_signed(self, days: int) -> bytes:
        key = ec.generate_private_key(ec.SECP256R1())
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "api.test")])
        now = datetime.now(timezone.utc)
        cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(days=1))
            .not_valid_after(now + timedelta(days=days))
            .sign(key, hashes.SHA256())
        )
        return cert.public_bytes(serialization.Encoding.DER)

    def test_self_signed_certificate(self) -> None:
        info = certificate_info(self._self_signed(90))
        assert info.valid is True
        assert info.signed is False
        assert 89 <= info.days_until_expiration <= 90

    def test_expired_certificate(self) -> None:
        der = self._self_signed(10)
        info = certificate_info(der, now=datetime.now(timezone.utc) + timedelta(days=20))
        assert info.valid is False
        assert info.days_until_expiration < 0
