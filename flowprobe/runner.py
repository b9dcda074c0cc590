# flowprobe/runner.py
"""
Test runner: executes the steps of one test strictly in order.

Each test owns its capture store, cookie jar and sampled test data row.
Nothing is shared between tests, so tests can run concurrently.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import List, Optional

from flowprobe import events
from flowprobe.context import RunContext, TestContext
from flowprobe.executor import StepExecutor
from flowprobe.models import Test
from flowprobe.results import StepResult, TestResult
from flowprobe.templating import build_context, render
from flowprobe.testdata import sample_row

logger = logging.getLogger(__name__)


class TestRunner:
    __test__ = False

    def __init__(self, run: RunContext, executor: Optional[StepExecutor] = None):
        self.run = run
        self.executor = executor or StepExecutor(run)

    def _context(self, test: Test) -> TestContext:
        testdata = sample_row(test.testdata, self.run.path)
        test_env = render(dict(test.env), build_context(env=self.run.env, secrets=self.run.secrets, testdata=testdata))
        return TestContext(env={**self.run.env, **test_env}, testdata=testdata)

    async def run_test(self, test_id: str, test: Test) -> TestResult:
        timestamp = datetime.now(timezone.utc)
        t0 = time.perf_counter()
        ctx = self._context(test)
        logger.info(f"▶️ Running test '{test.name or test_id}' ({len(test.steps)} steps)")

        steps: List[StepResult] = []
        previous: Optional[StepResult] = None
        for step in test.steps:
            previous = await self.executor.execute(test_id, test, step, ctx, previous)
            steps.append(previous)

        result = TestResult(
            id=test_id,
            name=test.name,
            timestamp=timestamp,
            steps=steps,
            duration=round((time.perf_counter() - t0) * 1000, 3),
        )
        icon = "✅" if result.passed else "❌"
        logger.info(f"{icon} Test '{test.name or test_id}' finished in {result.duration:.0f}ms")
        self.run.events.emit(events.TEST_RESULT, test_id=test_id, result=result)
        return result
