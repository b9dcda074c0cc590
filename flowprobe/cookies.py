# flowprobe/cookies.py
"""
Helpers over the per-test cookie jar (`httpx.Cookies`).

Seeding and lookups go through the jar's own cookiejar policy, so a seeded
cookie is stored exactly like one set by a server for the same URL
(including dotless hosts such as ``localhost``, kept as ``localhost.local``).
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx


def set_cookie(jar: httpx.Cookies, name: str, value: str, url: str) -> None:
    """Seed a cookie as if `url` had answered with a Set-Cookie header."""
    response = httpx.Response(
        200,
        headers={"set-cookie": f"{name}={value}; Path=/"},
        request=httpx.Request("GET", url),
    )
    jar.extract_cookies(response)


def cookie_header(jar: httpx.Cookies, url: str) -> Optional[str]:
    """The Cookie header the jar would send to `url`."""
    request = httpx.Request("GET", url)
    jar.set_cookie_header(request)
    return request.headers.get("cookie")


def get_cookie(jar: httpx.Cookies, name: str, url: str) -> Optional[str]:
    """Value of the cookie `name` that would be sent to `url`."""
    header = cookie_header(jar, url)
    if not header:
        return None
    for part in header.split(";"):
        key, _, value = part.strip().partition("=")
        if key == name:
            return value
    return None


def serialize(jar: httpx.Cookies) -> List[Dict[str, Any]]:
    return [
        {
            "key": c.name,
            "value": c.value,
            "domain": c.domain,
            "path": c.path,
            "secure": c.secure,
            "expires": c.expires,
        }
        for c in jar.jar
    ]
