# flowprobe/executor.py
"""
Step executor.

A step ends in exactly one of four states:
    SKIPPED_PRIOR_FAILURE  previous step failed and continueOnFail is off
    SKIPPED_CONDITION      the `if` guard evaluated false
    ERRORED                anything raised while rendering, sending or checking
    COMPLETED              passed = AND of every check leaf

Exceptions never leave `execute`; they become an ERRORED result so the
remaining steps of the test still run.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from flowprobe import events
from flowprobe.auth import get_tls_credentials
from flowprobe.captures import extract_grpc_captures, extract_http_captures
from flowprobe.checks import (
    evaluate_grpc_checks,
    evaluate_http_checks,
    evaluate_sse_message,
    pending_message_result,
)
from flowprobe.context import RunContext, TestContext
from flowprobe.cookies import serialize
from flowprobe.files import resolve_path
from flowprobe.metrics import co2_per_byte, parse_duration
from flowprobe.models import GrpcStep, HTTPConfig, HTTPStep, SSEStep, Step, Test, WorkflowConfig
from flowprobe.request_builder import build_http_request, build_sse_request
from flowprobe.results import CheckResult, StepCheckResult, StepResult, StepStatus, StepType
from flowprobe.templating import check_condition, render
from flowprobe.transports import default_grpc, default_http, default_sse
from flowprobe.transports.base import GrpcRequest

logger = logging.getLogger(__name__)

PRIOR_FAILURE_MESSAGE = "Step was skipped because previous one failed"
CONDITION_MESSAGE = "Step was skipped because the condition was unmet"


def effective_continue_on_fail(step: Step, test: Test, config: Optional[WorkflowConfig]) -> bool:
    """Most specific declaration wins: step, then test, then workflow config. Defaults to True."""
    for value in (step.continue_on_fail, test.continue_on_fail, config.continue_on_fail if config else None):
        if value is not None:
            return value
    return True


def _as_list(value) -> List[str]:
    if value is None:
        return []
    return list(value) if isinstance(value, list) else [value]


class _Outcome:
    """Facts collected while a step runs; turned into a StepResult at the end."""

    def __init__(self):
        self.type: Optional[StepType] = None
        self.checks: Optional[StepCheckResult] = None
        self.request: Optional[Dict[str, Any]] = None
        self.response: Optional[Dict[str, Any]] = None
        self.response_time = 0.0
        self.co2 = 0.0
        self.bytes_sent = 0
        self.bytes_received = 0


class StepExecutor:
    def __init__(self, run: RunContext):
        self.run = run
        self.config = run.config or WorkflowConfig()
        self.settings = run.settings

    # ==================== Transports ====================

    def _http(self):
        if self.run.transports.http is None:
            self.run.transports.http = default_http()
        return self.run.transports.http

    def _grpc(self):
        if self.run.transports.grpc is None:
            self.run.transports.grpc = default_grpc()
        return self.run.transports.grpc

    def _sse(self):
        if self.run.transports.sse is None:
            self.run.transports.sse = default_sse()
        return self.run.transports.sse

    def _http_config(self) -> Tuple[Optional[str], bool, bool]:
        http_cfg = self.config.http or HTTPConfig()
        reject = http_cfg.reject_unauthorized
        http2 = http_cfg.http2
        return (
            http_cfg.base_url,
            self.settings.reject_unauthorized if reject is None else reject,
            self.settings.http2 if http2 is None else http2,
        )

    # ==================== Entry point ====================

    async def execute(
        self,
        test_id: str,
        test: Test,
        step: Step,
        ctx: TestContext,
        previous: Optional[StepResult] = None,
    ) -> StepResult:
        timestamp = datetime.now(timezone.utc)
        t0 = time.perf_counter()
        outcome = _Outcome()
        status = StepStatus.COMPLETED
        passed = True
        error_message: Optional[str] = None

        if previous is not None and not previous.passed and not effective_continue_on_fail(step, test, self.config):
            status, passed, error_message = StepStatus.SKIPPED_PRIOR_FAILURE, False, PRIOR_FAILURE_MESSAGE
            logger.info(f"⏭️ [{test_id}] {step.name or step.id or 'step'} skipped: previous step failed")
        else:
            try:
                template_context = ctx.template_context(self.run.secrets)
                if step.if_ is not None and not check_condition(step.if_, template_context):
                    status, error_message = StepStatus.SKIPPED_CONDITION, CONDITION_MESSAGE
                    logger.info(f"⏭️ [{test_id}] {step.name or step.id or 'step'} skipped: condition unmet")
                else:
                    rendered = self._render(step, template_context)
                    await self._dispatch(test_id, rendered, ctx, outcome)
                    passed = outcome.checks.passed if outcome.checks is not None else True
            except Exception as e:
                status, passed, error_message = StepStatus.ERRORED, False, str(e) or type(e).__name__
                logger.error(f"❌ [{test_id}] {step.name or step.id or 'step'} errored: {error_message}")
                self.run.events.emit(events.STEP_ERROR, test_id=test_id, step_id=step.id, error=error_message)

        result = StepResult(
            test_id=test_id,
            status=status,
            passed=passed,
            timestamp=timestamp,
            type=outcome.type,
            id=step.id,
            name=step.name,
            checks=outcome.checks,
            captures=dict(ctx.captures) or None,
            cookies=serialize(ctx.cookies) or None,
            error_message=error_message,
            duration=round((time.perf_counter() - t0) * 1000, 3),
            response_time=outcome.response_time,
            co2=outcome.co2,
            bytes_sent=outcome.bytes_sent,
            bytes_received=outcome.bytes_received,
            request=outcome.request,
            response=outcome.response,
        )
        self.run.events.emit(events.STEP_RESULT, test_id=test_id, result=result)
        return result

    def _render(self, step: Step, template_context: Dict[str, Any]) -> Step:
        raw = step.model_dump(by_alias=True, exclude_unset=True)
        raw.pop("if", None)
        return Step.model_validate(render(raw, template_context))

    async def _dispatch(self, test_id: str, step: Step, ctx: TestContext, outcome: _Outcome) -> None:
        if step.http is not None:
            outcome.type = StepType.HTTP
            await self._run_http(test_id, step, step.http, ctx, outcome)
        elif step.grpc is not None:
            outcome.type = StepType.GRPC
            await self._run_grpc(test_id, step, step.grpc, ctx, outcome)
        elif step.sse is not None:
            outcome.type = StepType.SSE
            await self._run_sse(test_id, step, step.sse, outcome)

        if step.delay is not None:
            if outcome.type is None:
                outcome.type = StepType.DELAY
            delay_ms = parse_duration(step.delay)
            logger.debug(f"[{test_id}] sleeping {delay_ms:.0f}ms")
            await asyncio.sleep(delay_ms / 1000)

    # ==================== HTTP ====================

    async def _run_http(self, test_id: str, step: Step, http: HTTPStep, ctx: TestContext, outcome: _Outcome) -> None:
        base_url, reject_unauthorized, http2 = self._http_config()
        request = build_http_request(
            http,
            cookies=ctx.cookies,
            base_url=base_url,
            reject_unauthorized=reject_unauthorized,
            http2=http2,
            workflow_path=self.run.path,
        )
        self.run.events.emit(events.HTTP_REQUEST, test_id=test_id, step_id=step.id, request=request)

        response = await self._http().send(request)
        self.run.events.emit(events.HTTP_RESPONSE, test_id=test_id, step_id=step.id, response=response)
        logger.debug(f"[{test_id}] {request.method} {request.url} -> {response.status}")

        ctx.captures.update(extract_http_captures(http.captures, response, ctx.cookies))
        co2 = co2_per_byte(len(response.body))

        if http.check is not None:
            outcome.checks = evaluate_http_checks(
                http.check,
                response,
                captures=ctx.captures,
                cookies=ctx.cookies,
                validator=self.run.validator,
                co2=co2,
            )

        outcome.request = {
            "method": request.method,
            "url": request.url,
            "headers": dict(response.request_headers or request.headers),
            "body": request.body,
            "size": response.request_size,
        }
        outcome.response = {
            "protocol": f"{response.http_version}",
            "status": response.status,
            "statusText": response.reason,
            "duration": response.timings.get("total", 0.0),
            "headers": response.headers,
            "contentType": response.content_type,
            "timings": response.timings,
            "body": response.text,
            "co2": co2,
            "size": response.response_size,
            "bodySize": len(response.body),
            "redirects": response.redirect_urls,
            "ssl": response.certificate,
        }
        outcome.response_time = response.timings.get("total", 0.0)
        outcome.co2 = co2
        outcome.bytes_sent = response.request_size
        outcome.bytes_received = response.response_size

    # ==================== gRPC ====================

    async def _run_grpc(self, test_id: str, step: Step, grpc_step: GrpcStep, ctx: TestContext, outcome: _Outcome) -> None:
        declared = _as_list(self.config.grpc.proto if self.config.grpc else None) + _as_list(grpc_step.proto)
        protos = [str(resolve_path(p, self.run.path)) for p in declared]
        tls = get_tls_credentials(grpc_step.auth.tls if grpc_step.auth else None, self.run.path)

        request = GrpcRequest(
            protos=protos,
            host=grpc_step.host,
            service=grpc_step.service,
            method=grpc_step.method,
            data=grpc_step.data,
            metadata=dict(grpc_step.metadata or {}),
            tls=tls,
            timeout_ms=grpc_step.timeout,
        )
        self.run.events.emit(events.GRPC_REQUEST, test_id=test_id, step_id=step.id, request=request)

        t0 = time.perf_counter()
        response = await self._grpc().call(request)
        duration_ms = round((time.perf_counter() - t0) * 1000, 3)
        self.run.events.emit(events.GRPC_RESPONSE, test_id=test_id, step_id=step.id, response=response)

        ctx.captures.update(extract_grpc_captures(grpc_step.captures, response.data))
        co2 = co2_per_byte(response.size)

        if grpc_step.check is not None:
            outcome.checks = evaluate_grpc_checks(
                grpc_step.check,
                response,
                captures=ctx.captures,
                validator=self.run.validator,
                duration_ms=duration_ms,
                co2=co2,
            )

        outcome.request = {
            "proto": protos,
            "host": request.host,
            "service": request.service,
            "method": request.method,
            "metadata": request.metadata,
            "data": request.data,
        }
        outcome.response = {
            "body": response.data,
            "duration": duration_ms,
            "co2": co2,
            "size": response.size,
            "status": response.status,
            "statusText": response.status_text,
            "metadata": response.metadata,
        }
        outcome.response_time = duration_ms
        outcome.co2 = co2
        outcome.bytes_received = response.size

    # ==================== Server-sent events ====================

    async def _run_sse(self, test_id: str, step: Step, sse: SSEStep, outcome: _Outcome) -> None:
        base_url, reject_unauthorized, _ = self._http_config()
        request = build_sse_request(sse, base_url=base_url, reject_unauthorized=reject_unauthorized)
        timeout_ms = parse_duration(sse.timeout, default_ms=self.settings.sse_timeout_ms)
        self.run.events.emit(events.SSE_REQUEST, test_id=test_id, step_id=step.id, request=request)

        message_checks = sse.check.messages if sse.check is not None else []
        results: Dict[str, CheckResult] = {c.id: pending_message_result(c) for c in message_checks}
        messages: List[str] = []

        async def listen() -> None:
            async for data in self._sse().subscribe(request):
                messages.append(data)
                for message_check in message_checks:
                    if results[message_check.id].passed:
                        continue
                    result = evaluate_sse_message(message_check, data, self.run.validator)
                    if result.passed:
                        results[message_check.id] = result

        t0 = time.perf_counter()
        try:
            await asyncio.wait_for(listen(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            logger.debug(f"[{test_id}] SSE listen window of {timeout_ms:.0f}ms elapsed")
        duration_ms = round((time.perf_counter() - t0) * 1000, 3)

        buffer = "\n".join(messages).encode("utf-8")
        co2 = co2_per_byte(len(buffer))

        if sse.check is not None:
            outcome.checks = StepCheckResult(messages=results)

        outcome.request = {"url": request.url, "headers": request.headers, "size": 0}
        outcome.response = {
            "contentType": "text/event-stream",
            "body": buffer.decode("utf-8"),
            "size": len(buffer),
            "bodySize": len(buffer),
            "co2": co2,
            "duration": duration_ms,
        }
        outcome.response_time = duration_ms
        outcome.co2 = co2
        outcome.bytes_received = len(buffer)
