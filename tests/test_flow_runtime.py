"""Tests for FlowRuntime activation, trigger matching and event routing."""

import asyncio

import pytest

from chatflow.runtime.event_bus import EventBus, FlowEvent, FlowEventType
from chatflow.runtime.flow_runtime import FlowRuntime
from chatflow.schemas import ExecutionStatus
from chatflow.storage import FlowNotActiveError


def _message(text, contact_id="c1"):
    return FlowEvent(type=FlowEventType.MESSAGE_RECEIVED, contact_id=contact_id, data={"text": text})


def _click(button_id, contact_id="c1", execution_id=None, text=""):
    return FlowEvent(
        type=FlowEventType.BUTTON_CLICKED,
        contact_id=contact_id,
        execution_id=execution_id,
        data={"button_id": button_id, "button_text": text},
    )


@pytest.fixture
def keyword_flow(graph_builder):
    return graph_builder(
        {
            "start": ("trigger_keyword", {"keywords": ["promo"]}),
            "reply": ("action_send_text", {"message": "Promo for {{first_name}}"}),
        },
        [("start", "reply")],
    )


@pytest.fixture
def button_flow(graph_builder):
    return graph_builder(
        {
            "start": ("trigger_message", {}),
            "offer": (
                "action_send_buttons",
                {"body": "Want it?", "buttons": [{"id": "btn_0", "text": "Yes"}]},
            ),
            "ask": (
                "condition_button",
                {"conditions": [{"buttonText": "Yes", "output": "btn_0"}]},
            ),
            "thanks": ("action_send_text", {"message": "Thanks"}),
        },
        [("start", "offer"), ("offer", "ask"), ("ask", "thanks", "btn_0")],
    )


class TestActivation:
    @pytest.mark.asyncio
    async def test_activate_valid_graph(self, runtime, keyword_flow):
        result = await runtime.activate("promo", "Promo", keyword_flow)

        assert result.is_valid
        flow = await runtime.flow_store.get_active("promo")
        assert flow.version == 1
        assert flow.start_node_id == "reply"

    @pytest.mark.asyncio
    async def test_invalid_graph_not_activated(self, runtime, graph_builder):
        graph = graph_builder({"start": ("trigger_message", {})}, [])

        result = await runtime.activate("broken", "Broken", graph)

        assert not result.is_valid
        with pytest.raises(FlowNotActiveError):
            await runtime.flow_store.get_active("broken")

    @pytest.mark.asyncio
    async def test_invalid_edit_keeps_previous_version(self, runtime, keyword_flow, graph_builder):
        await runtime.activate("promo", "Promo", keyword_flow)

        broken = graph_builder({"start": ("trigger_keyword", {"keywords": ["promo"]})}, [])
        result = await runtime.activate("promo", "Promo", broken)

        assert not result.is_valid
        assert (await runtime.flow_store.get_active("promo")).version == 1

    @pytest.mark.asyncio
    async def test_republish_bumps_version(self, runtime, keyword_flow):
        await runtime.activate("promo", "Promo", keyword_flow)
        await runtime.activate("promo", "Promo", keyword_flow)

        assert (await runtime.flow_store.get_active("promo")).version == 2

    @pytest.mark.asyncio
    async def test_deactivate(self, runtime, keyword_flow):
        await runtime.activate("promo", "Promo", keyword_flow)

        assert await runtime.deactivate("promo")
        assert not await runtime.deactivate("promo")
        with pytest.raises(FlowNotActiveError):
            await runtime.create_execution("promo", "c1")


class TestTriggerMatching:
    @pytest.mark.asyncio
    async def test_keyword_message_starts_and_steps(self, runtime, sender, keyword_flow):
        await runtime.activate("promo", "Promo", keyword_flow)

        started = await runtime.handle_event(_message("Quero a PROMO"))

        assert len(started) == 1
        assert started[0].status == ExecutionStatus.COMPLETED
        assert started[0].trigger_data["data"]["text"] == "Quero a PROMO"
        assert sender.texts() == ["Promo for Maria"]

    @pytest.mark.asyncio
    async def test_non_matching_message(self, runtime, sender, keyword_flow):
        await runtime.activate("promo", "Promo", keyword_flow)

        assert await runtime.handle_event(_message("hello")) == []
        assert sender.texts() == []

    @pytest.mark.asyncio
    async def test_every_matching_flow_starts(self, runtime, sender, keyword_flow, graph_builder):
        catch_all = graph_builder(
            {
                "start": ("trigger_message", {}),
                "log": ("action_add_tag", {"tag": "talked"}),
            },
            [("start", "log")],
        )
        await runtime.activate("promo", "Promo", keyword_flow)
        await runtime.activate("all", "All", catch_all)

        started = await runtime.handle_event(_message("promo"))

        assert {e.flow_id for e in started} == {"promo", "all"}

    @pytest.mark.asyncio
    async def test_contact_created_trigger(self, runtime, contacts, graph_builder):
        graph = graph_builder(
            {
                "start": ("trigger_contact_created", {}),
                "tag": ("action_add_tag", {"tag": "new"}),
            },
            [("start", "tag")],
        )
        await runtime.activate("onboard", "Onboard", graph)

        await runtime.handle_event(FlowEvent(type=FlowEventType.CONTACT_CREATED, contact_id="c1"))

        assert (await contacts.get_contact("c1")).has_tag("new")

    @pytest.mark.asyncio
    async def test_webhook_trigger(self, runtime, contacts, graph_builder):
        graph = graph_builder(
            {
                "start": ("trigger_webhook", {"webhookId": "crm"}),
                "field": ("action_update_field", {"field": "source", "value": "crm"}),
            },
            [("start", "field")],
        )
        await runtime.activate("crm-sync", "CRM", graph)

        await runtime.handle_event(
            FlowEvent(
                type=FlowEventType.WEBHOOK_RECEIVED,
                contact_id="c1",
                data={"source_id": "crm", "payload": {}},
            )
        )

        assert (await contacts.get_contact("c1")).get_field("source") == "crm"

    @pytest.mark.asyncio
    async def test_opted_out_contact_never_starts(self, runtime, sender, keyword_flow):
        await runtime.activate("promo", "Promo", keyword_flow)
        await runtime.cancel_all("c1")

        assert await runtime.handle_event(_message("promo")) == []
        assert sender.texts() == []

    @pytest.mark.asyncio
    async def test_unknown_contact_and_missing_contact_id(self, runtime, keyword_flow):
        await runtime.activate("promo", "Promo", keyword_flow)

        assert await runtime.handle_event(_message("promo", contact_id="ghost")) == []
        assert await runtime.handle_event(_message("promo", contact_id=None)) == []

    @pytest.mark.asyncio
    async def test_lifecycle_events_are_not_routed(self, runtime, keyword_flow):
        await runtime.activate("promo", "Promo", keyword_flow)

        event = FlowEvent(type=FlowEventType.EXECUTION_COMPLETED, contact_id="c1")
        assert await runtime.handle_event(event) == []


class TestButtonRouting:
    @pytest.mark.asyncio
    async def test_click_resumes_waiting_execution(self, runtime, sender, button_flow):
        await runtime.activate("offer", "Offer", button_flow)
        [waiting] = await runtime.handle_event(_message("hi"))
        assert waiting.status == ExecutionStatus.WAITING

        [resumed] = await runtime.handle_event(_click("btn_0"))

        assert resumed.id == waiting.id
        assert resumed.status == ExecutionStatus.COMPLETED
        assert sender.texts() == ["Thanks"]

    @pytest.mark.asyncio
    async def test_click_aimed_at_execution(self, runtime, button_flow):
        await runtime.activate("offer", "Offer", button_flow)
        [first] = await runtime.handle_event(_message("hi"))
        [second] = await runtime.handle_event(_message("hi again"))

        [resumed] = await runtime.handle_event(_click("btn_0", execution_id=second.id))

        assert resumed.id == second.id
        assert (await runtime.execution_store.get(first.id)).status == ExecutionStatus.WAITING

    @pytest.mark.asyncio
    async def test_consumed_click_does_not_start_button_flows(
        self, runtime, sender, button_flow, graph_builder
    ):
        on_click = graph_builder(
            {
                "start": ("trigger_button_click", {}),
                "reply": ("action_send_text", {"message": "Clicked"}),
            },
            [("start", "reply")],
        )
        await runtime.activate("offer", "Offer", button_flow)
        await runtime.activate("on-click", "On click", on_click)
        await runtime.handle_event(_message("hi"))

        await runtime.handle_event(_click("btn_0"))
        assert sender.texts() == ["Thanks"]

        # Nothing is waiting any more, so this click starts the button flow
        await runtime.handle_event(_click("btn_0"))
        assert sender.texts() == ["Thanks", "Clicked"]

    @pytest.mark.asyncio
    async def test_unmapped_click_falls_through_to_triggers(self, runtime, button_flow):
        await runtime.activate("offer", "Offer", button_flow)
        [waiting] = await runtime.handle_event(_message("hi"))

        assert await runtime.handle_event(_click("btn_7")) == []
        assert (await runtime.execution_store.get(waiting.id)).status == ExecutionStatus.WAITING


class TestBusSubscription:
    @pytest.mark.asyncio
    async def test_events_from_bus_are_handled(self, runtime, bus, sender, keyword_flow):
        runtime.subscribe()
        await runtime.activate("promo", "Promo", keyword_flow)

        await bus.emit_message_received(contact_id="c1", text="promo")
        await asyncio.sleep(0)

        assert sender.texts() == ["Promo for Maria"]

    @pytest.mark.asyncio
    async def test_saturated_bus_with_lifecycle_subscriber(
        self, contacts, sender, scheduler, clock, keyword_flow
    ):
        bus = EventBus(max_concurrent_handlers=2)
        runtime = FlowRuntime(contacts, sender, scheduler=scheduler, event_bus=bus, clock=clock)
        runtime.subscribe()
        await runtime.activate("promo", "Promo", keyword_flow)

        seen = []

        async def record(event):
            seen.append(event.type)

        bus.subscribe(
            [
                FlowEventType.EXECUTION_STARTED,
                FlowEventType.NODE_EXECUTED,
                FlowEventType.EXECUTION_COMPLETED,
            ],
            record,
        )

        await asyncio.wait_for(
            asyncio.gather(
                bus.emit_message_received(contact_id="c1", text="promo"),
                bus.emit_message_received(contact_id="c2", text="promo"),
            ),
            timeout=2,
        )

        assert sorted(sender.texts()) == ["Promo for Joao", "Promo for Maria"]
        assert seen.count(FlowEventType.EXECUTION_COMPLETED) == 2

    def test_subscribe_needs_a_bus(self, contacts, sender):
        with pytest.raises(ValueError, match="No event bus"):
            FlowRuntime(contacts, sender).subscribe()


class TestTimers:
    @pytest.mark.asyncio
    async def test_rearm_timers(self, runtime, scheduler, graph_builder):
        graph = graph_builder(
            {
                "start": ("trigger_message", {}),
                "wait": ("action_delay", {"amount": 2, "unit": "days"}),
                "later": ("action_send_text", {"message": "Later"}),
            },
            [("start", "wait"), ("wait", "later")],
        )
        await runtime.activate("drip", "Drip", graph)
        [execution] = await runtime.handle_event(_message("hi"))
        scheduler.scheduled.clear()

        assert await runtime.rearm_timers() == 1
        assert scheduler.scheduled[execution.id] == execution.resume_at
