"""Tests for capture extraction and check evaluation."""

import hashlib
import json
from datetime import datetime, timezone

import httpx

from flowprobe.captures import extract_grpc_captures, extract_http_captures, jsonpath_first
from flowprobe.checks import evaluate_grpc_checks, evaluate_http_checks, evaluate_sse_message
from flowprobe.models import GrpcStepCapture, GrpcStepCheck, HTTPStepCapture, HTTPStepCheck, SSEMessageCheck
from flowprobe.schemas import SchemaValidator
from flowprobe.transports.base import CertificateInfo, GrpcResponse

from tests.fakes import make_response

JSON_BODY = json.dumps({"user": {"id": 7, "name": "Ada"}, "tags": ["a", "b"]}).encode()
HTML_BODY = b"<html><body><h1 class='title'>Hello <b>there</b></h1><p id='n'>42</p></body></html>"
XML_BODY = b"<?xml version='1.0'?><root><item>first</item><item>second</item></root>"


def _captures(**specs):
    return {name: HTTPStepCapture(**spec) for name, spec in specs.items()}


class TestHTTPCaptures:
    def test_jsonpath_first_match(self) -> None:
        response = make_response(body=JSON_BODY, headers={"Content-Type": "application/json"})
        values = extract_http_captures(_captures(uid={"jsonpath": "$.user.id"}, tag={"jsonpath": "$.tags[*]"}), response)
        assert values == {"uid": 7, "tag": "a"}

    def test_jsonpath_on_non_json_is_absent(self) -> None:
        response = make_response(body=b"not json")
        values = extract_http_captures(_captures(uid={"jsonpath": "$.user.id"}), response)
        assert values == {"uid": None}

    def test_xpath_text_of_first_match(self) -> None:
        response = make_response(body=XML_BODY)
        values = extract_http_captures(_captures(item={"xpath": "/root/item"}), response)
        assert values["item"] == "first"

    def test_header_selector_regex_body(self) -> None:
        response = make_response(body=HTML_BODY, headers={"X-Request-Id": "req-1"})
        values = extract_http_captures(
            _captures(
                rid={"header": "x-request-id"},
                title={"selector": "h1.title"},
                num={"regex": r"<p id='n'>(\d+)</p>"},
                raw={"body": True},
                missing={"selector": "table"},
            ),
            response,
        )
        assert values["rid"] == "req-1"
        assert values["title"] == "Hello <b>there</b>"
        assert values["num"] == "42"
        assert values["raw"] == HTML_BODY.decode()
        assert "missing" in values and values["missing"] is None

    def test_cookie_capture(self) -> None:
        jar = httpx.Cookies()
        jar.set("session", "abc", domain="api.test", path="/")
        response = make_response(url="http://api.test/login")
        values = extract_http_captures(_captures(sid={"cookie": "session"}), response, jar)
        assert values == {"sid": "abc"}

    def test_regex_without_group_is_absent(self) -> None:
        response = make_response(body=b"token=xyz")
        assert extract_http_captures(_captures(t={"regex": "token=\\w+"}), response) == {"t": None}


class TestGrpcCaptures:
    def test_jsonpath(self) -> None:
        data = {"user": {"id": "u1"}}
        assert extract_grpc_captures({"uid": GrpcStepCapture(jsonpath="$.user.id")}, data) == {"uid": "u1"}

    def test_invalid_expression_is_absent(self) -> None:
        assert jsonpath_first({"a": 1}, "$[[[") is None


class TestHTTPChecks:
    def _evaluate(self, check: dict, response, captures=None, cookies=None, co2=0.0):
        return evaluate_http_checks(
            HTTPStepCheck.model_validate(check),
            response,
            captures=captures or {},
            cookies=cookies,
            validator=SchemaValidator(),
            co2=co2,
        )

    def test_mirrors_declared_keys(self) -> None:
        response = make_response(
            status=201,
            reason="Created",
            body=JSON_BODY,
            headers={"Content-Type": "application/json; charset=utf-8"},
        )
        result = self._evaluate(
            {
                "status": [{"gte": 200}, {"lt": 300}],
                "statusText": "Created",
                "headers": {"Content-Type": "/json/"},
                "jsonpath": {"$.user.name": "Ada", "$.tags.length": [{"isDefined": False}]},
                "json": {"user": {"id": 7, "name": "Ada"}, "tags": ["a", "b"]},
            },
            response,
        )
        assert result.passed is True
        assert set(result.headers) == {"Content-Type"}
        assert set(result.jsonpath) == {"$.user.name", "$.tags.length"}
        assert result.xpath is None

    def test_failed_leaf_fails_step(self) -> None:
        result = self._evaluate({"status": 200}, make_response(status=500))
        assert result.status.passed is False
        assert result.passed is False

    def test_body_is_trimmed(self) -> None:
        result = self._evaluate({"body": "pong"}, make_response(body=b"  pong\n"))
        assert result.body.passed is True

    def test_json_parse_failure_records_raw_body(self) -> None:
        result = self._evaluate({"json": {"a": 1}}, make_response(body=b"<html/>"))
        assert result.json.passed is False
        assert result.json.actual == "<html/>"

    def test_schema_uses_json_content_type_convention(self) -> None:
        schema = {"type": "object", "required": ["user"]}
        json_response = make_response(body=JSON_BODY, headers={"Content-Type": "application/json"})
        text_response = make_response(body=JSON_BODY, headers={"Content-Type": "text/plain"})
        assert self._evaluate({"schema": schema}, json_response).schema.passed is True
        assert self._evaluate({"schema": schema}, text_response).schema.passed is False

    def test_hashes_sizes_and_co2(self) -> None:
        body = b"hello"
        response = make_response(body=body, request_size=80, response_size=120)
        result = self._evaluate(
            {
                "sha256": hashlib.sha256(body).hexdigest(),
                "md5": hashlib.md5(body).hexdigest(),
                "size": 120,
                "requestSize": [{"lt": 100}],
                "bodySize": 5,
                "co2": [{"gt": 0}],
            },
            response,
            co2=0.5,
        )
        assert result.passed is True

    def test_performance_and_redirects(self) -> None:
        response = make_response(redirect_urls=["http://api.test/final"])
        result = self._evaluate(
            {
                "performance": {"total": [{"lt": 100}], "firstByte": [{"lte": 5}]},
                "redirected": True,
                "redirects": ["http://api.test/final"],
            },
            response,
        )
        assert result.passed is True

    def test_ssl_skipped_without_certificate(self) -> None:
        result = self._evaluate({"ssl": {"valid": True}}, make_response())
        assert result.ssl is None
        assert result.passed is True

    def test_ssl_evaluated_with_certificate(self) -> None:
        cert = CertificateInfo(
            valid=True,
            signed=True,
            valid_until=datetime(2030, 1, 1, tzinfo=timezone.utc),
            days_until_expiration=400,
        )
        result = self._evaluate(
            {"ssl": {"valid": True, "signed": True, "daysUntilExpiration": [{"gt": 30}]}},
            make_response(certificate=cert),
        )
        assert set(result.ssl) == {"valid", "signed", "daysUntilExpiration"}
        assert result.passed is True

    def test_captures_and_cookies(self) -> None:
        jar = httpx.Cookies()
        jar.set("theme", "dark", domain="api.test", path="/")
        result = self._evaluate(
            {"captures": {"uid": 7}, "cookies": {"theme": "dark", "absent": [{"isDefined": False}]}},
            make_response(url="http://api.test/"),
            captures={"uid": 7},
            cookies=jar,
        )
        assert result.passed is True

    def test_selectors_and_xpath(self) -> None:
        result = self._evaluate(
            {"selectors": {"p#n": "42"}, "xpath": {"//p": "42"}},
            make_response(body=HTML_BODY),
        )
        assert result.passed is True


class TestGrpcChecks:
    def test_checks(self) -> None:
        response = GrpcResponse(data={"id": "u1", "roles": ["admin"]}, status=0, status_text="OK", size=24)
        result = evaluate_grpc_checks(
            GrpcStepCheck.model_validate(
                {
                    "json": {"id": "u1", "roles": ["admin"]},
                    "jsonpath": {"$.roles[0]": "admin"},
                    "schema": {"type": "object"},
                    "performance": {"total": [{"lt": 1000}]},
                    "size": 24,
                }
            ),
            response,
            captures={},
            validator=SchemaValidator(),
            duration_ms=12.0,
            co2=0.0,
        )
        assert result.passed is True
        assert set(result.performance) == {"total"}


class TestSSEMessages:
    def test_body_match(self) -> None:
        check = SSEMessageCheck(id="hello", body="/^hi/")
        assert evaluate_sse_message(check, "hi there", SchemaValidator()).passed is True

    def test_json_and_jsonpath(self) -> None:
        check = SSEMessageCheck(id="m", jsonpath={"$.type": "update"})
        result = evaluate_sse_message(check, '{"type": "update"}', SchemaValidator())
        assert result.passed is True
        assert result.actual["$.type"].passed is True

    def test_non_json_message_does_not_satisfy_json_checks(self) -> None:
        check = SSEMessageCheck(id="m", json={"a": 1})
        result = evaluate_sse_message(check, "ping", SchemaValidator())
        assert result.passed is False
        assert result.actual is None
