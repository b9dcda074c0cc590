# flowprobe/engine.py
"""
Workflow orchestrator.

Preparation (once per run):
  1. env = workflow env + caller overrides, rendered once
  2. components and config rendered against {env, secrets}
  3. named schemas registered with the schema validator
  4. tests from `include` files merged in
  5. the document validated into typed models

Tests then run under a semaphore:
    concurrency = explicit override, else config.concurrency,
                  else FLOWPROBE_MAX_CONCURRENCY, else one per test
A bound of 1 runs tests strictly one at a time.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union
from urllib.parse import urlsplit
from urllib.request import url2pathname

import jsonref
import yaml
from pydantic import ValidationError

from flowprobe import events
from flowprobe.context import RunContext
from flowprobe.errors import IncludeError, WorkflowValidationError
from flowprobe.events import EventCallback, EventEmitter
from flowprobe.files import resolve_path
from flowprobe.models import Workflow
from flowprobe.results import TestResult, WorkflowResult
from flowprobe.runner import TestRunner
from flowprobe.schemas import SchemaValidator
from flowprobe.settings import get_settings
from flowprobe.templating import build_context, render
from flowprobe.transports.base import Transports

logger = logging.getLogger(__name__)


@dataclass
class WorkflowOptions:
    path: Optional[str] = None
    secrets: Dict[str, Any] = field(default_factory=dict)
    env: Dict[str, Any] = field(default_factory=dict)
    concurrency: Optional[int] = None
    on_event: Optional[EventCallback] = None
    transports: Optional[Transports] = None


# ==================== YAML loading ====================

def _yaml_loader(uri: str) -> Any:
    parts = urlsplit(uri)
    if parts.scheme not in ("", "file"):
        return jsonref.jsonloader(uri)
    path = url2pathname(parts.path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise IncludeError(path, e) from e


def load_workflow_yaml(text: str, path: Optional[str] = None) -> Dict[str, Any]:
    """Parse a YAML workflow and inline every `$ref` (local pointers and external files)."""
    try:
        document = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise WorkflowValidationError(f"Invalid YAML: {e}") from e
    if not isinstance(document, dict):
        raise WorkflowValidationError("A workflow document must be a mapping")

    base_uri = Path(path).expanduser().resolve().as_uri() if path else ""
    try:
        return jsonref.replace_refs(document, base_uri=base_uri, loader=_yaml_loader, proxies=False, lazy_load=False)
    except jsonref.JsonRefError as e:
        cause = e.cause if isinstance(e.cause, IncludeError) else e
        raise IncludeError(str(e.reference.get("$ref", e.uri)), cause) from e


def load_workflow_file(path: str) -> Dict[str, Any]:
    try:
        text = Path(path).expanduser().read_text(encoding="utf-8")
    except OSError as e:
        raise IncludeError(path, e) from e
    return load_workflow_yaml(text, path)


# ==================== Engine ====================

class WorkflowEngine:
    """Runs workflows. One engine can run many workflows with the same options."""

    def __init__(self, options: Optional[WorkflowOptions] = None):
        self.options = options or WorkflowOptions()
        self.settings = get_settings()
        self.events = EventEmitter(self.options.on_event)

    def _prepare(self, document: Dict[str, Any]) -> Dict[str, Any]:
        opts = self.options
        prepared = dict(document)

        env = {**(prepared.get("env") or {}), **opts.env}
        env = render(env, build_context(env=env, secrets=opts.secrets))
        prepared["env"] = env

        context = build_context(env=env, secrets=opts.secrets)
        if prepared.get("components"):
            prepared["components"] = render(prepared["components"], context)
        if prepared.get("config"):
            prepared["config"] = render(prepared["config"], context)

        tests = dict(prepared.get("tests") or {})
        for include in prepared.get("include") or []:
            included_path = str(resolve_path(include, opts.path))
            included = load_workflow_file(included_path)
            logger.info(f"📎 Included {len(included.get('tests') or {})} tests from {include}")
            tests.update(included.get("tests") or {})
        prepared["tests"] = tests
        return prepared

    def _validate(self, document: Dict[str, Any]) -> Workflow:
        try:
            return Workflow.model_validate(document)
        except ValidationError as e:
            raise WorkflowValidationError(f"Invalid workflow: {e.error_count()} error(s)\n{e}", errors=e.errors()) from e

    def _concurrency(self, workflow: Workflow) -> int:
        configured = workflow.config.concurrency if workflow.config else None
        bound = self.options.concurrency or configured or self.settings.max_concurrency or len(workflow.tests)
        return 1 if bound <= 0 else bound

    # ==================== Public API ====================

    def run(self, workflow: Union[Workflow, Dict[str, Any]]) -> WorkflowResult:
        """Synchronous wrapper for run_async"""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop and loop.is_running():
            raise RuntimeError("run() called inside running loop; use await run_async()")

        return asyncio.run(self.run_async(workflow))

    async def run_async(self, workflow: Union[Workflow, Dict[str, Any]]) -> WorkflowResult:
        """Execute every test of a workflow and aggregate the results."""
        timestamp = datetime.now(timezone.utc)
        t0 = time.perf_counter()

        if isinstance(workflow, Workflow):
            document = workflow.model_dump(by_alias=True, exclude_unset=True)
        else:
            document = workflow
        model = self._validate(self._prepare(document))

        components = model.components.schemas if model.components else {}
        run = RunContext(
            config=model.config,
            env=model.env,
            transports=self.options.transports or Transports(),
            validator=SchemaValidator(components),
            events=self.events,
            secrets=dict(self.options.secrets),
            path=self.options.path,
            settings=self.settings,
        )
        runner = TestRunner(run)

        concurrency = self._concurrency(model)
        logger.info(f"🚀 Workflow '{model.name}': {len(model.tests)} tests, concurrency {concurrency}")
        sem = asyncio.Semaphore(concurrency)

        async def bounded_test(test_id: str, test) -> TestResult:
            async with sem:
                return await runner.run_test(test_id, test)

        tasks = [asyncio.create_task(bounded_test(test_id, test)) for test_id, test in model.tests.items()]
        try:
            tests = await asyncio.gather(*tasks)
        except BaseException:
            # a fatal error in one test stops the others before it propagates
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        result = WorkflowResult(
            name=model.name,
            timestamp=timestamp,
            tests=list(tests),
            duration=round((time.perf_counter() - t0) * 1000, 3),
            path=self.options.path,
        )
        icon = "✅" if result.passed else "❌"
        logger.info(f"{icon} Workflow '{model.name}' finished in {result.duration:.0f}ms")
        self.events.emit(events.WORKFLOW_RESULT, result=result)
        return result

    async def run_yaml_async(self, text: str) -> WorkflowResult:
        return await self.run_async(load_workflow_yaml(text, self.options.path))

    async def run_file_async(self, path: str) -> WorkflowResult:
        if self.options.path is None:
            self.options.path = path
        return await self.run_async(load_workflow_file(path))

    def run_file(self, path: str) -> WorkflowResult:
        if self.options.path is None:
            self.options.path = path
        return self.run(load_workflow_file(path))


# ==================== Module-level helpers ====================

async def run_workflow(workflow: Union[Workflow, Dict[str, Any]], options: Optional[WorkflowOptions] = None) -> WorkflowResult:
    return await WorkflowEngine(options).run_async(workflow)


async def run_from_yaml(text: str, options: Optional[WorkflowOptions] = None) -> WorkflowResult:
    return await WorkflowEngine(options).run_yaml_async(text)


async def run_from_file(path: str, options: Optional[WorkflowOptions] = None) -> WorkflowResult:
    return await WorkflowEngine(options).run_file_async(path)
