"""Shared fixtures: run-context builders wired to in-memory transports."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from flowprobe.context import RunContext, TestContext
from flowprobe.events import EventEmitter
from flowprobe.models import WorkflowConfig
from flowprobe.schemas import SchemaValidator
from flowprobe.settings import Settings
from flowprobe.transports.base import Transports

from tests.fakes import FakeHTTPTransport


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def events() -> List[Dict[str, Any]]:
    return []


@pytest.fixture
def make_run(settings, events):
    def factory(
        transports: Optional[Transports] = None,
        config: Optional[WorkflowConfig] = None,
        env: Optional[Dict[str, Any]] = None,
        secrets: Optional[Dict[str, Any]] = None,
        schemas: Optional[Dict[str, Any]] = None,
        path: Optional[str] = None,
    ) -> RunContext:
        return RunContext(
            config=config or WorkflowConfig(),
            env=env or {},
            transports=transports or Transports(http=FakeHTTPTransport()),
            validator=SchemaValidator(schemas),
            events=EventEmitter(events.append),
            secrets=secrets or {},
            path=path,
            settings=settings,
        )
    return factory


@pytest.fixture
def ctx() -> TestContext:
    return TestContext(env={"base": "http://api.test"})
