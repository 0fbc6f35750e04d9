"""Tests for the asyncio wake-up scheduler."""

import asyncio
from datetime import timedelta

import pytest

from chatflow.runtime.flow_runtime import FlowRuntime
from chatflow.runtime.scheduler import AsyncioScheduler
from chatflow.schemas import ExecutionStatus


class TestAsyncioScheduler:
    @pytest.mark.asyncio
    async def test_past_resume_at_fires_immediately(self, clock):
        woken = asyncio.Event()
        received = []

        async def callback(execution_id: str):
            received.append(execution_id)
            woken.set()

        scheduler = AsyncioScheduler(callback, clock=clock)
        scheduler.schedule("e1", clock.now - timedelta(minutes=5))

        await asyncio.wait_for(woken.wait(), timeout=2)
        assert received == ["e1"]
        assert scheduler.pending() == []

    @pytest.mark.asyncio
    async def test_cancel(self, clock):
        received = []

        async def callback(execution_id: str):
            received.append(execution_id)

        scheduler = AsyncioScheduler(callback, clock=clock)
        scheduler.schedule("e1", clock.now + timedelta(hours=1))

        assert scheduler.pending() == ["e1"]
        assert scheduler.cancel("e1") is True
        assert scheduler.cancel("e1") is False
        assert scheduler.pending() == []
        assert received == []

    @pytest.mark.asyncio
    async def test_reschedule_replaces_timer(self, clock):
        scheduler = AsyncioScheduler(clock=clock)
        scheduler.schedule("e1", clock.now + timedelta(hours=1))
        scheduler.schedule("e1", clock.now + timedelta(hours=2))

        assert scheduler.pending() == ["e1"]
        scheduler.close()
        assert scheduler.pending() == []

    @pytest.mark.asyncio
    async def test_callback_error_is_logged(self, clock, caplog):
        done = asyncio.Event()

        async def callback(execution_id: str):
            done.set()
            raise RuntimeError("boom")

        scheduler = AsyncioScheduler(callback, clock=clock)
        scheduler.schedule("e1", clock.now)

        await asyncio.wait_for(done.wait(), timeout=2)
        await asyncio.sleep(0)
        assert "Wake-up for e1 failed" in caplog.text


class TestDelayWakeUp:
    @pytest.mark.asyncio
    async def test_real_timer_resumes_execution(self, contacts, sender, graph_builder):

        runtime = FlowRuntime(contacts, sender)
        graph = graph_builder(
            {
                "start": ("trigger_message", {}),
                "wait": ("action_delay", {"amount": 0.05, "unit": "seconds"}),
                "bye": ("action_send_text", {"message": "Later"}),
            },
            [("start", "wait"), ("wait", "bye")],
        )
        await runtime.activate("f1", "Delay", graph)
        execution = await runtime.create_execution("f1", "c1")

        execution = await runtime.step(execution.id)
        assert execution.status == ExecutionStatus.WAITING

        for _ in range(100):
            await asyncio.sleep(0.02)
            execution = await runtime.execution_store.get(execution.id)
            if execution.status == ExecutionStatus.COMPLETED:
                break

        assert execution.status == ExecutionStatus.COMPLETED
        assert sender.texts("c1") == ["Later"]
