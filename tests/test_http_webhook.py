"""Tests for HttpWebhookInvoker."""

import json

import httpx
import pytest

from chatflow.adapters import HttpWebhookInvoker
from chatflow.config import RuntimeConfig
from chatflow.runtime.flow_runtime import FlowRuntime
from chatflow.schemas import ExecutionStatus


def _invoker(handler) -> HttpWebhookInvoker:
    return HttpWebhookInvoker(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


class TestHttpWebhookInvoker:
    @pytest.mark.asyncio
    async def test_timeout_from_runtime_config(self):
        invoker = HttpWebhookInvoker.from_config(RuntimeConfig(webhook_timeout=4.5))

        client = invoker._get_client()

        assert client.timeout.read == 4.5
        await invoker.aclose()

    @pytest.mark.asyncio
    async def test_post_json_with_idempotency_key(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        result = await _invoker(handler).invoke(
            "https://hooks.example.com/lead",
            headers={"Authorization": "Bearer t"},
            payload={"contact": "c1"},
            idempotency_key="e1:hook:0",
        )

        assert result.success
        assert result.status_code == 200
        assert result.body == {"ok": True}
        request = seen[0]
        assert request.method == "POST"
        assert json.loads(request.content) == {"contact": "c1"}
        assert request.headers["Authorization"] == "Bearer t"
        assert request.headers["Idempotency-Key"] == "e1:hook:0"

    @pytest.mark.asyncio
    async def test_get_sends_no_body(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        result = await _invoker(handler).invoke(
            "https://hooks.example.com/ping", method="get", payload={"ignored": True}
        )

        assert result.success
        assert seen[0].method == "GET"
        assert seen[0].content == b""

    @pytest.mark.asyncio
    async def test_non_2xx_is_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="oops")

        result = await _invoker(handler).invoke("https://hooks.example.com/lead", payload={})

        assert not result.success
        assert result.status_code == 500
        assert result.error == "Webhook returned HTTP 500"
        assert result.body == "oops"

    @pytest.mark.asyncio
    async def test_transport_error_is_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        result = await _invoker(handler).invoke("https://hooks.example.com/lead", payload={})

        assert not result.success
        assert result.status_code is None
        assert "Network error" in result.error

    @pytest.mark.asyncio
    async def test_timeout_is_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        result = await _invoker(handler).invoke("https://hooks.example.com/lead", payload={})

        assert not result.success
        assert result.error == "Webhook request timed out"


class TestWebhookNode:
    @pytest.mark.asyncio
    async def test_flow_webhook_payload(self, contacts, sender, scheduler, clock, graph_builder):

        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(201)

        runtime = FlowRuntime(
            contacts, sender, _invoker(handler), scheduler=scheduler, clock=clock
        )
        graph = graph_builder(
            {
                "start": ("trigger_message", {}),
                "hook": ("action_webhook", {"url": "https://hooks.example.com/lead"}),
            },
            [("start", "hook")],
        )
        await runtime.activate("f1", "Hook", graph)
        execution = await runtime.create_execution("f1", "c1")

        execution = await runtime.step(execution.id)

        assert execution.status == ExecutionStatus.COMPLETED
        payload = seen[0]
        assert payload["event"] == "flow_webhook"
        assert payload["execution_id"] == execution.id
        assert payload["node_id"] == "hook"
        assert payload["contact"] == {"id": "c1", "name": "Maria Silva", "phone": "5511999990000"}

    @pytest.mark.asyncio
    async def test_custom_body_is_rendered(self, contacts, sender, scheduler, clock, graph_builder):

        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200)

        runtime = FlowRuntime(
            contacts, sender, _invoker(handler), scheduler=scheduler, clock=clock
        )
        graph = graph_builder(
            {
                "start": ("trigger_message", {}),
                "hook": (
                    "action_webhook",
                    {
                        "url": "https://hooks.example.com/lead",
                        "requestBody": {"name": "{{nome}}", "city": "{{city}}"},
                    },
                ),
            },
            [("start", "hook")],
        )
        await runtime.activate("f1", "Hook", graph)
        execution = await runtime.create_execution("f1", "c1")

        await runtime.step(execution.id)

        assert seen == [{"name": "Maria Silva", "city": "Recife"}]
