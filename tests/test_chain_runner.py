"""Tests for sequential chained-call execution."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List

import httpx
import pytest

from mockchain.config import Settings
from mockchain.service.chain import (
    ChainRunner,
    Executed,
    Failed,
    Skipped,
    build_root_context,
)
from mockchain.service.dispatch import ExternalFetcher
from mockchain.service.plan import build_plan
from mockchain.service.request_log import NEXT_CALL_MARKER, RequestLogWriter
from mockchain.service.stateful import StatefulRequestHandler


class RecordingHandler:
    """Stands in for the stateful handler and records every request it receives."""

    def __init__(self, responses=None, fail_on=None):
        self.requests = []
        self.responses = list(responses or [])
        self.fail_on = fail_on or set()

    async def __call__(self, request, capture):
        self.requests.append(request)
        if len(self.requests) in self.fail_on:
            raise RuntimeError("handler exploded")
        status, body = self.responses.pop(0) if self.responses else (200, {"ok": True})
        capture.status(status).json(body)


class FakeFetcher:
    def __init__(self, status=200, body=None):
        self.calls: List[Dict[str, Any]] = []
        self.status = status
        self.body = body if body is not None else {"ok": True}

    async def fetch(self, method, url, *, headers=None, body=None):
        self.calls.append({"method": method, "url": url, "headers": headers, "body": body})
        return {"status": self.status, "headers": {}, "body": self.body}


def _root(**overrides):
    params = dict(
        method="POST",
        path="/ws1/pj1/users",
        headers={"authorization": "A", "content-length": "20", "host": "mock"},
        body={"id": 42, "name": "alice"},
        status=201,
        response_body={"data": {"id": 42}},
        workspace="ws1",
        project="pj1",
        log_id=99,
    )
    params.update(overrides)
    return build_root_context(**params)


def _runner(store, **kwargs):
    kwargs.setdefault("settings", Settings())
    return ChainRunner(store, **kwargs)


class TestSequencing:
    @pytest.mark.asyncio
    async def test_skip_resets_prev_but_keeps_history(self, memory_store, make_project):
        fx = make_project()
        fx.stateful("POST", "/orders")
        handler = RecordingHandler(responses=[(201, {"data": {"id": 1}}), (201, {"data": {"id": 2}})])
        runner = _runner(memory_store, invoke_handler=handler)
        plan = build_plan(
            [
                {"target_endpoint": "/ws1/pj1/orders", "method": "POST", "body": {"n": 1}},
                {"target_endpoint": "/ws1/pj1/orders", "method": "POST", "condition": False},
                {
                    "target_endpoint": "/ws1/pj1/orders",
                    "method": "POST",
                    "body": {
                        "from_prev": "{{prev.body.data.id}}",
                        "from_first": "{{1.response.body.data.id}}",
                    },
                },
            ]
        )
        result = await runner.run_plan(plan, _root())

        assert [type(r) for r in result.results] == [Executed, Skipped, Executed]
        assert result.results[1].reason == "condition_false"
        assert len(result.history) == 2
        assert handler.requests[1].body == {"from_prev": "", "from_first": 1}

    @pytest.mark.asyncio
    async def test_failure_isolated(self, memory_store, make_project):
        fx = make_project()
        fx.stateful("POST", "/orders")
        handler = RecordingHandler(fail_on={2})
        writer = RequestLogWriter(memory_store)
        runner = _runner(memory_store, invoke_handler=handler, log_writer=writer)
        plan = build_plan([{"target_endpoint": "/ws1/pj1/orders", "method": "POST"}] * 3)

        result = await runner.run_plan(plan, _root())

        assert [type(r) for r in result.results] == [Executed, Failed, Executed]
        assert "handler exploded" in result.results[1].error
        assert len(handler.requests) == 3
        count, logs = memory_store.list_request_logs()
        assert count == 2

    @pytest.mark.asyncio
    async def test_condition_sees_previous_status(self, memory_store, make_project):
        make_project().stateful("GET", "/orders")
        handler = RecordingHandler(responses=[(404, {"message": "nope"})])
        runner = _runner(memory_store, invoke_handler=handler)
        plan = build_plan(
            [
                {"target_endpoint": "/ws1/pj1/orders"},
                {"target_endpoint": "/ws1/pj1/orders", "condition": 200},
                {"target_endpoint": "/ws1/pj1/orders", "condition": 201},
            ]
        )
        result = await runner.run_plan(plan, _root())
        # step 2 sees prev 404, step 3 sees no prev and falls back to the root status 201
        assert [type(r) for r in result.results] == [Executed, Skipped, Executed]

    @pytest.mark.asyncio
    async def test_history_is_seeded_from_root(self, memory_store):
        fetcher = FakeFetcher()
        runner = _runner(memory_store, fetcher=fetcher)
        root = _root()
        root["history"] = [{"res": {"status": 200, "body": {"token": "t-1"}}}]
        plan = build_plan([{"target_endpoint": "http://x/y", "method": "POST", "body": {"t": "{{1.res.body.token}}"}}])

        result = await runner.run_plan(plan, root)

        assert fetcher.calls[0]["body"] == {"t": "t-1"}
        assert len(result.history) == 2

    @pytest.mark.asyncio
    async def test_plan_truncated_to_max_steps(self, memory_store):
        fetcher = FakeFetcher()
        runner = _runner(memory_store, fetcher=fetcher, settings=Settings(chain_max_steps=2))
        plan = build_plan([{"target_endpoint": "http://x/y"}] * 5)
        result = await runner.run_plan(plan, _root())
        assert len(result.results) == 2
        assert len(fetcher.calls) == 2


class TestSuppression:
    @pytest.mark.asyncio
    async def test_option_suppresses_whole_plan(self, memory_store):
        fetcher = FakeFetcher()
        runner = _runner(memory_store, fetcher=fetcher)
        result = await runner.run_plan(
            build_plan([{"target_endpoint": "http://x/y"}]), _root(), suppress_next_calls=True
        )
        assert result.suppressed
        assert result.results == []
        assert fetcher.calls == []

    @pytest.mark.asyncio
    async def test_root_flag_suppresses_whole_plan(self, memory_store):
        fetcher = FakeFetcher()
        runner = _runner(memory_store, fetcher=fetcher)
        root = _root()
        root["flags"] = {"suppressNextCalls": True}
        result = await runner.run_plan(build_plan([{"target_endpoint": "http://x/y"}]), root)
        assert result.suppressed
        assert fetcher.calls == []

    @pytest.mark.asyncio
    async def test_internal_dispatch_always_suppresses(self, memory_store, make_project):
        make_project().stateful("PUT", "/orders")
        handler = RecordingHandler()
        runner = _runner(memory_store, invoke_handler=handler)
        plan = build_plan(
            [
                {
                    "target_endpoint": "/ws1/pj1/orders/5",
                    "method": "PUT",
                    "headers": {"x-suppress-next-calls": "false"},
                    "body": {"flags": {"suppressNextCalls": False}},
                }
            ]
        )
        await runner.run_plan(plan, _root())
        (request,) = handler.requests
        assert request.flags.is_next_call is True
        assert request.flags.suppress_next_calls is True


class TestInternalDispatch:
    @pytest.mark.asyncio
    async def test_request_shape(self, memory_store, make_project):
        fx = make_project()
        stateful = fx.stateful("PUT", "/orders")
        handler = RecordingHandler()
        runner = _runner(memory_store, invoke_handler=handler)
        plan = build_plan(
            [
                {
                    "target_endpoint": "/ws1/pj1/orders/{{root.request.body.id}}",
                    "method": "PUT",
                    "headers": {"Authorization": "B"},
                    "body": {"name": "{{root.request.body.name}}"},
                }
            ]
        )
        await runner.run_plan(plan, _root(), user={"id": 7})

        (request,) = handler.requests
        assert request.method == "PUT"
        assert request.original_url == "/ws1/pj1/orders/42"
        assert request.base_url == "/ws1/pj1"
        assert request.body == {"name": "alice"}
        assert request.headers["authorization"] == "B"
        assert "content-length" not in request.headers
        assert "host" not in request.headers
        assert request.headers["x-mock-user-id"] == "7"
        assert request.universal.stateful_id == stateful.id
        assert request.universal.stateless_id == stateful.endpoint_id
        assert request.universal.project_id == fx.project.id
        assert request.universal.base_path == "/orders"
        assert request.universal.id_in_url == "42"

    @pytest.mark.asyncio
    async def test_delete_infers_id_from_previous_body(self, memory_store, make_project):
        fx = make_project()
        fx.stateful("POST", "/orders")
        fx.stateful("DELETE", "/orders")
        handler = RecordingHandler(responses=[(201, {"data": {"id": 11}}), (200, {})])
        runner = _runner(memory_store, invoke_handler=handler)
        plan = build_plan(
            [
                {"target_endpoint": "/ws1/pj1/orders", "method": "POST"},
                {"target_endpoint": "/ws1/pj1/orders/:id", "method": "DELETE"},
            ]
        )
        await runner.run_plan(plan, _root())
        assert handler.requests[1].original_url == "/ws1/pj1/orders/11"
        assert handler.requests[1].universal.id_in_url == "11"

    @pytest.mark.asyncio
    async def test_unresolved_target_is_skipped(self, memory_store, make_project):
        make_project()
        handler = RecordingHandler()
        runner = _runner(memory_store, invoke_handler=handler)
        result = await runner.run_plan(
            build_plan([{"target_endpoint": "/ws1/pj1/missing"}, {"target_endpoint": "/bad"}]),
            _root(),
        )
        assert [r.reason for r in result.results] == ["target_unresolved", "target_unresolved"]
        assert handler.requests == []

    @pytest.mark.asyncio
    async def test_timeout_fails_step(self, memory_store, make_project):
        make_project().stateful("GET", "/orders")

        async def slow_handler(request, capture):
            await asyncio.sleep(1)
            capture.status(200).json({})

        runner = _runner(memory_store, invoke_handler=slow_handler)
        result = await runner.run_plan(
            build_plan([{"target_endpoint": "/ws1/pj1/orders", "timeoutMs": 10}]), _root()
        )
        assert isinstance(result.results[0], Failed)
        assert result.results[0].error == "timeout"

    @pytest.mark.asyncio
    async def test_end_to_end_with_stateful_handler(self, memory_store, make_project):
        fx = make_project()
        fx.stateful("POST", "/orders", items=[])
        fx.stateful("GET", "/orders")
        writer = RequestLogWriter(memory_store)
        runner = _runner(memory_store, log_writer=writer)
        handler = StatefulRequestHandler(memory_store, chain_runner=runner, log_writer=writer)
        runner.bind_handler(handler.handle)
        plan = build_plan(
            [
                {
                    "name": "create",
                    "target_endpoint": "/ws1/pj1/orders",
                    "method": "POST",
                    "body": {"user": "{{root.request.body.name}}", "ref": "{{root.request.body.id}}"},
                },
                {"name": "fetch", "target_endpoint": "/ws1/pj1/orders/{{1.response.body.data.id}}"},
            ]
        )

        result = await runner.run_plan(plan, _root())

        assert [r.status for r in result.executed] == [201, 200]
        assert result.history[1]["res"]["body"]["data"] == {"user": "alice", "ref": 42, "id": 1}
        assert fx.items("/orders") == [{"user": "alice", "ref": 42, "id": 1}]
        # chained requests are logged by the runner only
        count, logs = memory_store.list_request_logs()
        assert count == 2

    @pytest.mark.asyncio
    async def test_target_names_match_regardless_of_case(self, memory_store, make_project):
        fx = make_project()
        fx.stateful("GET", "/users", items=[{"id": 1}])
        runner = _runner(memory_store)
        handler = StatefulRequestHandler(memory_store, chain_runner=runner)
        runner.bind_handler(handler.handle)

        result = await runner.run_plan(build_plan([{"target_endpoint": "/WS1/PJ1/users"}]), _root())

        (step,) = result.results
        assert isinstance(step, Executed)
        assert step.status == 200
        assert step.body["data"] == [{"id": 1}]


class TestExternalDispatch:
    @pytest.mark.asyncio
    async def test_headers_body_and_user(self, memory_store):
        fetcher = FakeFetcher(status=202, body={"accepted": True})
        runner = _runner(memory_store, fetcher=fetcher)
        plan = build_plan(
            [
                {
                    "target_endpoint": "http://x/y",
                    "method": "POST",
                    "headers": {"Authorization": "B"},
                    "body": {"id": "{{root.request.body.id}}", "label": "order {{root.request.body.id}}"},
                }
            ]
        )
        result = await runner.run_plan(plan, _root(), user={"id": 3})

        (call,) = fetcher.calls
        assert call["method"] == "POST"
        assert call["url"] == "http://x/y"
        assert call["body"] == {"id": 42, "label": "order 42"}
        assert call["headers"] == {
            "authorization": "B",
            "content-type": "application/json",
            "x-mock-user-id": "3",
        }
        assert result.history[0]["res"] == {"status": 202, "body": {"accepted": True}}

    @pytest.mark.asyncio
    async def test_external_step_over_httpx(self, memory_store):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, text="plain text")

        fetcher = ExternalFetcher(transport=httpx.MockTransport(handler))
        runner = _runner(memory_store, fetcher=fetcher)
        result = await runner.run_plan(
            build_plan([{"target_endpoint": "http://x/y", "method": "POST", "body": {"a": 1}}]),
            _root(),
        )
        assert seen["body"] == {"a": 1}
        assert result.executed[0].body == "plain text"

    @pytest.mark.asyncio
    async def test_external_log_row(self, memory_store, make_project):
        fx = make_project()
        fetcher = FakeFetcher(body="ok")
        writer = RequestLogWriter(memory_store)
        runner = _runner(memory_store, fetcher=fetcher, log_writer=writer)
        root = _root(project_id=fx.project.id)
        plan = build_plan(
            [
                {"name": "hook", "target_endpoint": "http://x/hook", "method": "POST"},
                {"target_endpoint": "http://x/quiet", "log": {"persist": False}},
                {"target_endpoint": "http://x/anon", "auth": {"mode": "none"}},
            ]
        )
        await runner.run_plan(plan, root, user={"id": 5})

        count, logs = memory_store.list_request_logs()
        assert count == 2
        anon, hook = logs
        assert hook.request_path == "http://x/hook"
        assert hook.endpoint_id is None
        assert hook.stateful_endpoint_id is None
        assert hook.project_id == fx.project.id
        assert hook.user_id == "5"
        assert hook.ip_address is None
        assert hook.response_body == {"data": "ok"}
        assert hook.request_headers[NEXT_CALL_MARKER] == {
            "parent_log_id": 99,
            "next_call_name": "hook",
            "is_nextcall": True,
        }
        assert anon.user_id is None

    @pytest.mark.asyncio
    async def test_prev_headers_are_response_headers(self, memory_store):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content) if request.content else None)
            return httpx.Response(200, json={"ok": True}, headers={"X-Token": "T"})

        fetcher = ExternalFetcher(transport=httpx.MockTransport(handler))
        runner = _runner(memory_store, fetcher=fetcher)
        plan = build_plan(
            [
                {"target_endpoint": "http://x/login", "method": "POST", "body": {"u": 1}},
                {
                    "target_endpoint": "http://x/use",
                    "method": "POST",
                    "headers": {"X-Sent": "s"},
                    "body": {"t": "{{prev.headers.x-token}}"},
                },
            ]
        )
        result = await runner.run_plan(plan, _root())

        assert bodies[1] == {"t": "T"}
        second = result.executed[1]
        assert second.prev["headers"]["x-token"] == "T"
        assert second.prev["request"]["headers"]["x-sent"] == "s"
        assert result.history[0]["response"]["headers"]["x-token"] == "T"
