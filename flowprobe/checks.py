# flowprobe/checks.py
"""
Check evaluation: map a declared check block onto matcher results.

The result mirrors the check block key for key (one entry per header,
JSONPath expression, selector, ...). Keys that were not declared stay None
and never influence `passed`.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any, Dict, Mapping, Optional

import httpx

from flowprobe.captures import jsonpath_first, parse_json_body, selector_html, xpath_first
from flowprobe.cookies import get_cookie
from flowprobe.matcher import check_result
from flowprobe.models import GrpcStepCheck, HTTPStepCheck, SSEMessageCheck
from flowprobe.results import CheckResult, StepCheckResult
from flowprobe.schemas import SchemaValidator
from flowprobe.transports.base import GrpcResponse, HTTPResponse

logger = logging.getLogger(__name__)


def _schema_result(validator: SchemaValidator, schema: Dict[str, Any], sample: Any) -> CheckResult:
    passed, error = validator.validate(sample, schema)
    if error:
        logger.debug(f"Schema check failed: {error}")
    return CheckResult(expected=schema, actual=sample, passed=passed)


def _jsonpath_results(expectations: Mapping[str, Any], data: Any) -> Dict[str, CheckResult]:
    return {path: check_result(jsonpath_first(data, path), expected) for path, expected in expectations.items()}


# ==================== HTTP ====================

def evaluate_http_checks(
    check: HTTPStepCheck,
    response: HTTPResponse,
    *,
    captures: Mapping[str, Any],
    cookies: Optional[httpx.Cookies],
    validator: SchemaValidator,
    co2: float,
) -> StepCheckResult:
    body = response.text
    results: Dict[str, Any] = {}

    if check.headers is not None:
        results["headers"] = {
            name: check_result(response.headers.get(name.lower()), expected)
            for name, expected in check.headers.items()
        }

    if check.body is not None:
        results["body"] = check_result(body.strip(), check.body)

    if check.json_ is not None:
        try:
            results["json"] = check_result(parse_json_body(body), check.json_)
        except ValueError:
            results["json"] = CheckResult(expected=check.json_, actual=body, passed=False)

    if check.schema_ is not None:
        content_type = response.headers.get("content-type") or ""
        if "json" in content_type:
            try:
                results["schema"] = _schema_result(validator, check.schema_, parse_json_body(body))
            except ValueError:
                results["schema"] = CheckResult(expected=check.schema_, actual=body, passed=False)
        else:
            results["schema"] = _schema_result(validator, check.schema_, body)

    if check.jsonpath is not None:
        try:
            results["jsonpath"] = _jsonpath_results(check.jsonpath, parse_json_body(body))
        except ValueError:
            results["jsonpath"] = {
                path: CheckResult(expected=expected, actual=body, passed=False)
                for path, expected in check.jsonpath.items()
            }

    if check.xpath is not None:
        results["xpath"] = {path: check_result(xpath_first(body, path), expected) for path, expected in check.xpath.items()}

    if check.selectors is not None:
        results["selectors"] = {
            selector: check_result(selector_html(body, selector), expected)
            for selector, expected in check.selectors.items()
        }

    if check.cookies is not None:
        results["cookies"] = {
            name: check_result(get_cookie(cookies, name, response.url) if cookies is not None else None, expected)
            for name, expected in check.cookies.items()
        }

    if check.captures is not None:
        results["captures"] = {name: check_result(captures.get(name), expected) for name, expected in check.captures.items()}

    if check.status is not None:
        results["status"] = check_result(response.status, check.status)

    if check.status_text is not None:
        results["status_text"] = check_result(response.reason, check.status_text)

    if check.redirected is not None:
        results["redirected"] = check_result(bool(response.redirect_urls), check.redirected)

    if check.redirects is not None:
        results["redirects"] = check_result(list(response.redirect_urls), check.redirects)

    if check.sha256 is not None:
        results["sha256"] = check_result(hashlib.sha256(response.body).hexdigest(), check.sha256)

    if check.md5 is not None:
        results["md5"] = check_result(hashlib.md5(response.body).hexdigest(), check.md5)

    if check.performance is not None:
        results["performance"] = {
            metric: check_result(response.timings.get(metric), expected)
            for metric, expected in check.performance.items()
        }

    # no certificate (plain HTTP or no handshake info): not applicable
    if check.ssl is not None and response.certificate is not None:
        cert = response.certificate
        ssl_results = {}
        if check.ssl.valid is not None:
            ssl_results["valid"] = check_result(cert.valid, check.ssl.valid)
        if check.ssl.signed is not None:
            ssl_results["signed"] = check_result(cert.signed, check.ssl.signed)
        if check.ssl.days_until_expiration is not None:
            ssl_results["daysUntilExpiration"] = check_result(cert.days_until_expiration, check.ssl.days_until_expiration)
        results["ssl"] = ssl_results

    if check.size is not None:
        results["size"] = check_result(response.response_size, check.size)

    if check.request_size is not None:
        results["request_size"] = check_result(response.request_size, check.request_size)

    if check.body_size is not None:
        results["body_size"] = check_result(len(response.body), check.body_size)

    if check.co2 is not None:
        results["co2"] = check_result(co2, check.co2)

    return StepCheckResult(**results)


# ==================== gRPC ====================

def evaluate_grpc_checks(
    check: GrpcStepCheck,
    response: GrpcResponse,
    *,
    captures: Mapping[str, Any],
    validator: SchemaValidator,
    duration_ms: float,
    co2: float,
) -> StepCheckResult:
    data = response.data
    results: Dict[str, Any] = {}

    if check.json_ is not None:
        results["json"] = check_result(data, check.json_)

    if check.schema_ is not None:
        results["schema"] = _schema_result(validator, check.schema_, data)

    if check.jsonpath is not None:
        results["jsonpath"] = _jsonpath_results(check.jsonpath, data)

    if check.captures is not None:
        results["captures"] = {name: check_result(captures.get(name), expected) for name, expected in check.captures.items()}

    if check.performance is not None and check.performance.get("total") is not None:
        results["performance"] = {"total": check_result(duration_ms, check.performance["total"])}

    if check.size is not None:
        results["size"] = check_result(response.size, check.size)

    if check.co2 is not None:
        results["co2"] = check_result(co2, check.co2)

    return StepCheckResult(**results)


# ==================== Server-sent events ====================

def pending_message_result(check: SSEMessageCheck) -> CheckResult:
    """Placeholder for a message check no event has satisfied yet."""
    return CheckResult(expected=check.expected, actual=None, passed=False)


def evaluate_sse_message(check: SSEMessageCheck, data: str, validator: SchemaValidator) -> CheckResult:
    """
    Evaluate one incoming event against one message check.

    Every declared kind is tried; the last passing one wins. A message that
    is not JSON simply fails the json, schema and jsonpath kinds.
    """
    outcome = pending_message_result(check)

    if check.body is not None:
        result = check_result(data, check.body)
        outcome = result if result.passed else outcome

    needs_json = check.json_ is not None or check.schema_ is not None or check.jsonpath is not None
    if not needs_json:
        return outcome

    try:
        sample = parse_json_body(data)
    except ValueError:
        logger.debug(f"SSE message for check {check.id!r} is not JSON")
        return outcome

    if check.json_ is not None:
        result = check_result(sample, check.json_)
        outcome = result if result.passed else outcome

    if check.schema_ is not None:
        result = _schema_result(validator, check.schema_, sample)
        outcome = result if result.passed else outcome

    if check.jsonpath is not None:
        leaves = _jsonpath_results(check.jsonpath, sample)
        passed = all(leaf.passed for leaf in leaves.values())
        if passed:
            outcome = CheckResult(expected=check.jsonpath, actual=leaves, passed=True)

    return outcome
