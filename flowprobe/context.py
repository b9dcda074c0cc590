# flowprobe/context.py
"""State shared by the executor: one RunContext per workflow, one TestContext per test."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from flowprobe.events import EventEmitter
from flowprobe.models import WorkflowConfig
from flowprobe.schemas import SchemaValidator
from flowprobe.settings import Settings, get_settings
from flowprobe.templating import build_context
from flowprobe.transports.base import Transports


@dataclass
class RunContext:
    """Read-only view of the prepared workflow."""
    config: WorkflowConfig
    env: Dict[str, Any]
    transports: Transports
    validator: SchemaValidator
    events: EventEmitter = field(default_factory=EventEmitter)
    secrets: Dict[str, Any] = field(default_factory=dict)
    path: Optional[str] = None
    settings: Settings = field(default_factory=get_settings)


@dataclass
class TestContext:
    """Mutable state owned by one test execution: captures, cookies, test data row."""
    __test__ = False

    env: Dict[str, Any] = field(default_factory=dict)
    captures: Dict[str, Any] = field(default_factory=dict)
    cookies: httpx.Cookies = field(default_factory=httpx.Cookies)
    testdata: Dict[str, Any] = field(default_factory=dict)

    def template_context(self, secrets: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return build_context(self.captures, self.env, secrets, self.testdata)
