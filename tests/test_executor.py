"""Tests for the step executor and the test runner."""

import json

import pytest

from flowprobe.errors import TransportError
from flowprobe.executor import StepExecutor, effective_continue_on_fail
from flowprobe.models import Step, Test, WorkflowConfig
from flowprobe.results import StepStatus, StepType
from flowprobe.runner import TestRunner
from flowprobe.transports.base import GrpcResponse, Transports

from tests.fakes import FakeGrpcTransport, FakeHTTPTransport, FakeSSETransport, make_response


def _test(*steps, **extra) -> Test:
    return Test.model_validate({"steps": list(steps), **extra})


def _failing_then_ok(request):
    if request.url.endswith("/a"):
        return make_response(status=500, url=request.url)
    return make_response(url=request.url)


class TestContinueOnFail:
    def test_most_specific_wins(self) -> None:
        step = Step.model_validate({"continueOnFail": True})
        test = _test(continueOnFail=False)
        assert effective_continue_on_fail(step, test, WorkflowConfig(continueOnFail=False)) is True
        assert effective_continue_on_fail(Step(), test, None) is False
        assert effective_continue_on_fail(Step(), _test(), WorkflowConfig(continueOnFail=False)) is False
        assert effective_continue_on_fail(Step(), _test(), None) is True

    @pytest.mark.asyncio
    async def test_prior_failure_cascades(self, make_run) -> None:
        http = FakeHTTPTransport(_failing_then_ok)
        run = make_run(transports=Transports(http=http))
        test = _test(
            {"name": "A", "http": {"url": "http://api.test/a", "check": {"status": 200}}},
            {"name": "B", "http": {"url": "http://api.test/b"}},
            {"name": "C", "http": {"url": "http://api.test/c"}},
            continueOnFail=False,
        )

        result = await TestRunner(run).run_test("t1", test)

        statuses = [s.status for s in result.steps]
        assert statuses == [StepStatus.COMPLETED, StepStatus.SKIPPED_PRIOR_FAILURE, StepStatus.SKIPPED_PRIOR_FAILURE]
        assert [s.passed for s in result.steps] == [False, False, False]
        assert len(http.requests) == 1
        assert result.passed is False

    @pytest.mark.asyncio
    async def test_default_keeps_going(self, make_run) -> None:
        http = FakeHTTPTransport(_failing_then_ok)
        run = make_run(transports=Transports(http=http))
        test = _test(
            {"http": {"url": "http://api.test/a", "check": {"status": 200}}},
            {"http": {"url": "http://api.test/b", "check": {"status": 200}}},
        )

        result = await TestRunner(run).run_test("t1", test)

        assert [s.passed for s in result.steps] == [False, True]
        assert len(http.requests) == 2

    @pytest.mark.asyncio
    async def test_step_override_runs_despite_test_setting(self, make_run) -> None:
        http = FakeHTTPTransport(_failing_then_ok)
        run = make_run(transports=Transports(http=http))
        test = _test(
            {"http": {"url": "http://api.test/a", "check": {"status": 200}}},
            {"continueOnFail": True, "http": {"url": "http://api.test/b"}},
            continueOnFail=False,
        )

        result = await TestRunner(run).run_test("t1", test)

        assert result.steps[1].status is StepStatus.COMPLETED
        assert len(http.requests) == 2


class TestConditions:
    @pytest.mark.asyncio
    async def test_unmet_condition_skips_without_failing(self, make_run, ctx) -> None:
        http = FakeHTTPTransport()
        executor = StepExecutor(make_run(transports=Transports(http=http)))
        step = Step.model_validate({"if": "${{ captures.enabled }}", "http": {"url": "http://api.test/x"}})

        result = await executor.execute("t1", _test(), step, ctx)

        assert result.status is StepStatus.SKIPPED_CONDITION
        assert result.passed is True
        assert result.skipped is True
        assert http.requests == []

    @pytest.mark.asyncio
    async def test_met_condition_runs(self, make_run, ctx) -> None:
        http = FakeHTTPTransport()
        executor = StepExecutor(make_run(transports=Transports(http=http)))
        ctx.captures["enabled"] = True
        step = Step.model_validate({"if": "captures.enabled", "http": {"url": "http://api.test/x"}})

        result = await executor.execute("t1", _test(), step, ctx)

        assert result.status is StepStatus.COMPLETED
        assert len(http.requests) == 1


class TestErrors:
    @pytest.mark.asyncio
    async def test_transport_error_is_isolated(self, make_run, events) -> None:
        def handler(request):
            if request.url.endswith("/boom"):
                raise TransportError("http", "connection refused")
            return make_response(url=request.url)

        run = make_run(transports=Transports(http=FakeHTTPTransport(handler)))
        test = _test(
            {"id": "boom", "http": {"url": "http://api.test/boom"}},
            {"id": "after", "http": {"url": "http://api.test/ok", "check": {"status": 200}}},
        )

        result = await TestRunner(run).run_test("t1", test)

        boom, after = result.steps
        assert boom.status is StepStatus.ERRORED
        assert boom.errored is True
        assert boom.passed is False
        assert "connection refused" in boom.error_message
        assert after.passed is True
        assert any(e["event"] == "step:error" and e["step_id"] == "boom" for e in events)

    @pytest.mark.asyncio
    async def test_render_error_becomes_errored_step(self, make_run, ctx) -> None:
        executor = StepExecutor(make_run())
        step = Step.model_validate({"http": {"url": "http://api.test/${{ captures.id | nosuchfilter }}"}})

        result = await executor.execute("t1", _test(), step, ctx)

        assert result.status is StepStatus.ERRORED
        assert result.passed is False


class TestCaptures:
    @pytest.mark.asyncio
    async def test_capture_visible_to_next_step(self, make_run) -> None:
        def handler(request):
            if request.url.endswith("/users"):
                return make_response(status=201, body=json.dumps({"id": 7}).encode(), url=request.url)
            return make_response(url=request.url)

        http = FakeHTTPTransport(handler)
        run = make_run(transports=Transports(http=http), env={"base": "http://api.test"})
        test = _test(
            {
                "http": {
                    "url": "${{ env.base }}/users",
                    "method": "POST",
                    "json": {"name": "ada"},
                    "captures": {"uid": {"jsonpath": "$.id"}},
                    "check": {"captures": {"uid": 7}},
                }
            },
            {"http": {"url": "${{ env.base }}/users/${{ captures.uid }}"}},
        )

        result = await TestRunner(run).run_test("t1", test)

        assert http.requests[1].url == "http://api.test/users/7"
        assert result.steps[0].captures == {"uid": 7}
        assert result.passed is True

    @pytest.mark.asyncio
    async def test_testdata_row_visible(self, make_run) -> None:
        http = FakeHTTPTransport()
        run = make_run(transports=Transports(http=http))
        test = _test(
            {"http": {"url": "http://api.test/login?user=${{ testdata.user }}"}},
            testdata={"content": "user\nada\n"},
        )

        await TestRunner(run).run_test("t1", test)

        assert http.requests[0].url == "http://api.test/login?user=ada"


class TestMetricsAndEvents:
    @pytest.mark.asyncio
    async def test_http_metrics(self, make_run, ctx, events) -> None:
        http = FakeHTTPTransport(lambda r: make_response(body=b"x" * 100, request_size=40, response_size=180, url=r.url))
        executor = StepExecutor(make_run(transports=Transports(http=http)))
        step = Step.model_validate({"id": "s", "http": {"url": "http://api.test/"}})

        result = await executor.execute("t1", _test(), step, ctx)

        assert result.type is StepType.HTTP
        assert result.bytes_sent == 40
        assert result.bytes_received == 180
        assert result.co2 > 0
        assert result.response_time == 12.5
        names = [e["event"] for e in events]
        assert names == ["step:http_request", "step:http_response", "step:result"]

    @pytest.mark.asyncio
    async def test_delay_step(self, make_run, ctx) -> None:
        executor = StepExecutor(make_run())
        result = await executor.execute("t1", _test(), Step(delay="10ms"), ctx)
        assert result.type is StepType.DELAY
        assert result.passed is True
        assert result.duration >= 9


class TestGrpcStep:
    @pytest.mark.asyncio
    async def test_call_captures_and_checks(self, make_run, ctx, tmp_path) -> None:
        grpc = FakeGrpcTransport(GrpcResponse(data={"user": {"id": "u1"}}, status=0, status_text="OK", size=30))
        run = make_run(
            transports=Transports(grpc=grpc),
            config=WorkflowConfig.model_validate({"grpc": {"proto": "protos/common.proto"}}),
            path=str(tmp_path / "flow.yml"),
        )
        step = Step.model_validate(
            {
                "grpc": {
                    "host": "localhost:50051",
                    "service": "users.Users",
                    "method": "Get",
                    "proto": "protos/users.proto",
                    "data": {"id": "u1"},
                    "captures": {"uid": {"jsonpath": "$.user.id"}},
                    "timeout": 1500,
                    "check": {"jsonpath": {"$.user.id": "u1"}, "size": [{"gt": 0}]},
                }
            }
        )

        result = await StepExecutor(run).execute("t1", _test(), step, ctx)

        assert result.type is StepType.GRPC
        assert result.passed is True
        assert ctx.captures["uid"] == "u1"
        assert grpc.requests[0].protos == [
            str(tmp_path.resolve() / "protos" / "common.proto"),
            str(tmp_path.resolve() / "protos" / "users.proto"),
        ]
        assert result.bytes_received == 30
        assert grpc.requests[0].timeout_ms == 1500


class TestSSEStep:
    @pytest.mark.asyncio
    async def test_messages_checked_until_timeout(self, make_run, ctx) -> None:
        sse = FakeSSETransport(["ping", '{"type": "update", "n": 1}', '{"type": "update", "n": 2}'])
        executor = StepExecutor(make_run(transports=Transports(sse=sse)))
        step = Step.model_validate(
            {
                "sse": {
                    "url": "http://api.test/events",
                    "timeout": 50,
                    "check": {
                        "messages": [
                            {"id": "first-update", "jsonpath": {"$.type": "update"}},
                            {"id": "never", "body": "goodbye"},
                        ]
                    },
                }
            }
        )

        result = await executor.execute("t1", _test(), step, ctx)

        messages = result.checks.messages
        assert messages["first-update"].passed is True
        assert messages["first-update"].actual["$.type"].actual == "update"
        assert messages["never"].passed is False
        assert result.passed is False
        assert result.status is StepStatus.COMPLETED
        assert result.bytes_received == len("\n".join(sse.messages).encode())

    @pytest.mark.asyncio
    async def test_stream_end_finalizes(self, make_run, ctx) -> None:
        sse = FakeSSETransport(["hello"], hold_open=False)
        executor = StepExecutor(make_run(transports=Transports(sse=sse)))
        step = Step.model_validate(
            {"sse": {"url": "http://api.test/events", "timeout": 5000, "check": {"messages": [{"id": "hi", "body": "hello"}]}}}
        )

        result = await executor.execute("t1", _test(), step, ctx)

        assert result.passed is True
        assert result.duration < 5000


class TestRenderedValues:
    @pytest.mark.asyncio
    async def test_numeric_capture_in_header(self, make_run) -> None:
        def handler(request):
            if request.url.endswith("/users"):
                return make_response(status=201, body=b'{"id": 7, "admin": false}', url=request.url)
            return make_response(url=request.url)

        http = FakeHTTPTransport(handler)
        test = _test(
            {
                "http": {
                    "url": "http://api.test/users",
                    "captures": {"uid": {"jsonpath": "$.id"}, "admin": {"jsonpath": "$.admin"}},
                }
            },
            {
                "http": {
                    "url": "http://api.test/profile",
                    "headers": {"X-User-Id": "${{ captures.uid }}", "X-Admin": "${{ captures.admin }}"},
                    "auth": {"basic": {"username": "${{ captures.uid }}", "password": "pw"}},
                }
            },
        )

        result = await TestRunner(make_run(transports=Transports(http=http))).run_test("t1", test)

        assert [s.status for s in result.steps] == [StepStatus.COMPLETED, StepStatus.COMPLETED]
        headers = http.requests[1].headers
        assert headers["X-User-Id"] == "7"
        assert headers["X-Admin"] == "false"
        assert headers["Authorization"] == "Basic Nzpwdw=="

    @pytest.mark.asyncio
    async def test_capture_is_absent_before_it_is_taken(self, make_run) -> None:
        def handler(request):
            if request.url.endswith("/users"):
                return make_response(status=201, body=b'{"id": 7}', url=request.url)
            return make_response(url=request.url)

        http = FakeHTTPTransport(handler)
        test = _test(
            {"http": {"url": "http://api.test/early", "headers": {"X-User-Id": "${{ captures.uid }}"}}},
            {"http": {"url": "http://api.test/users", "captures": {"uid": {"jsonpath": "$.id"}}}},
            {"http": {"url": "http://api.test/late", "headers": {"X-User-Id": "${{ captures.uid }}"}}},
        )

        result = await TestRunner(make_run(transports=Transports(http=http))).run_test("t1", test)

        early, _, late = http.requests
        assert result.steps[0].status is StepStatus.COMPLETED
        assert result.steps[0].captures is None
        assert early.headers["X-User-Id"] == ""
        assert late.headers["X-User-Id"] == "7"
