# flowprobe/events.py
"""
Lifecycle notifications.

Observers register a single callback that receives ``{"event": name, ...}``
dicts. Notifications never influence control flow: a failing callback is
logged and ignored.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

EventCallback = Callable[[Dict[str, Any]], None]

HTTP_REQUEST = "step:http_request"
HTTP_RESPONSE = "step:http_response"
GRPC_REQUEST = "step:grpc_request"
GRPC_RESPONSE = "step:grpc_response"
SSE_REQUEST = "step:sse_request"
STEP_ERROR = "step:error"
STEP_RESULT = "step:result"
TEST_RESULT = "test:result"
WORKFLOW_RESULT = "workflow:result"


class EventEmitter:
    def __init__(self, callback: Optional[EventCallback] = None):
        self._callback = callback

    def emit(self, event: str, **data: Any) -> None:
        """Emit lifecycle event"""
        if self._callback:
            try:
                self._callback({"event": event, **data})
            except Exception:
                logger.debug("on_event callback failed", exc_info=True)
