# flowprobe/transports/sse.py
"""Server-sent events transport backed by httpx-sse."""

from __future__ import annotations

import logging
from typing import AsyncIterator, Optional

import httpx
from httpx_sse import SSEError, aconnect_sse

from flowprobe.errors import TransportError
from flowprobe.transports.base import SSERequest, SSETransport

logger = logging.getLogger(__name__)


class HttpxSSETransport(SSETransport):
    """
    Yields the data of every `message` event until the stream ends.
    The caller bounds the listen time and closes the iterator.
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport

    async def subscribe(self, request: SSERequest) -> AsyncIterator[str]:
        client_kwargs = {"verify": request.verify, "timeout": httpx.Timeout(None)}
        if self._transport is not None:
            client_kwargs["transport"] = self._transport

        try:
            async with httpx.AsyncClient(**client_kwargs) as client:
                async with aconnect_sse(client, "GET", request.url, headers=request.headers) as source:
                    source.response.raise_for_status()
                    logger.debug(f"SSE stream opened: {request.url}")
                    async for event in source.aiter_sse():
                        if event.event == "message":
                            yield event.data
        except (httpx.HTTPError, SSEError) as e:
            raise TransportError("sse", f"{type(e).__name__}: {e}") from e
