# flowprobe/captures.py
"""
Capture extraction: pull named values out of a response.

Extraction never raises. A capture whose parse or match fails is still
stored, with the value None, so later templates see it as absent.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Mapping, Optional

import httpx
from bs4 import BeautifulSoup
from jsonpath_ng.ext import parse as parse_jsonpath
from lxml import etree

from flowprobe.cookies import get_cookie
from flowprobe.models import GrpcStepCapture, HTTPStepCapture
from flowprobe.transports.base import HTTPResponse

logger = logging.getLogger(__name__)


# ==================== Selectors ====================

def jsonpath_first(data: Any, expression: str) -> Any:
    """Value of the first JSONPath match, or None."""
    try:
        matches = parse_jsonpath(expression).find(data)
    except Exception as e:
        logger.debug(f"JSONPath {expression!r} failed: {e}")
        return None
    return matches[0].value if matches else None


def _parse_markup(body: str):
    try:
        return etree.fromstring(body.encode("utf-8"))
    except etree.XMLSyntaxError:
        return etree.HTML(body)


def xpath_first(body: str, expression: str) -> Any:
    """Text of the first XPath match, or None."""
    try:
        document = _parse_markup(body)
        if document is None:
            return None
        result = document.xpath(expression)
    except (etree.LxmlError, ValueError) as e:
        logger.debug(f"XPath {expression!r} failed: {e}")
        return None

    if isinstance(result, list):
        if not result:
            return None
        first = result[0]
    else:
        first = result

    if isinstance(first, etree._Element):
        return first.text
    if isinstance(first, (bool, float)):
        return first
    return str(first)


def selector_html(body: str, selector: str) -> Optional[str]:
    """Inner HTML of the first element matching a CSS selector, or None."""
    try:
        element = BeautifulSoup(body, "lxml").select_one(selector)
    except Exception as e:
        logger.debug(f"Selector {selector!r} failed: {e}")
        return None
    return element.decode_contents() if element is not None else None


def regex_group(body: str, pattern: str) -> Optional[str]:
    try:
        m = re.search(pattern, body)
    except re.error as e:
        logger.debug(f"Regex {pattern!r} failed: {e}")
        return None
    if m is None or m.re.groups < 1:
        return None
    return m.group(1)


def parse_json_body(body: str) -> Any:
    """Parsed JSON body; raises ValueError when the body is not JSON."""
    return json.loads(body)


# ==================== Extraction ====================

def _extract_http(capture: HTTPStepCapture, response: HTTPResponse, body: str, cookies: Optional[httpx.Cookies]) -> Any:
    kind = capture.kind
    if kind == "jsonpath":
        try:
            return jsonpath_first(parse_json_body(body), capture.jsonpath)
        except ValueError:
            return None
    if kind == "xpath":
        return xpath_first(body, capture.xpath)
    if kind == "header":
        return response.headers.get(capture.header.lower())
    if kind == "selector":
        return selector_html(body, capture.selector)
    if kind == "cookie":
        return get_cookie(cookies, capture.cookie, response.url) if cookies is not None else None
    if kind == "regex":
        return regex_group(body, capture.regex)
    if kind == "body":
        return body if capture.body else None
    return None


def extract_http_captures(
    captures: Optional[Mapping[str, HTTPStepCapture]],
    response: HTTPResponse,
    cookies: Optional[httpx.Cookies] = None,
) -> Dict[str, Any]:
    """Capture name -> extracted value for an HTTP response."""
    if not captures:
        return {}
    body = response.text
    return {name: _extract_http(capture, response, body, cookies) for name, capture in captures.items()}


def extract_grpc_captures(captures: Optional[Mapping[str, GrpcStepCapture]], data: Any) -> Dict[str, Any]:
    """Capture name -> extracted value for a gRPC response payload."""
    if not captures:
        return {}
    return {name: jsonpath_first(data, capture.jsonpath) for name, capture in captures.items()}
