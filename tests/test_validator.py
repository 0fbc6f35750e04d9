"""Tests for flow validation."""

import pytest
from pydantic import ValidationError

from chatflow.graph import FlowGraph, validate, validate_graph


class TestStructure:
    """Trigger count, connectivity and edge references."""

    def test_minimal_flow_is_valid(self, graph_builder):
        graph = graph_builder(
            {
                "start": ("trigger_message", {}),
                "hello": ("action_send_text", {"message": "Hi"}),
            },
            [("start", "hello")],
        )

        result = validate_graph(graph)

        assert result.is_valid
        assert result.errors == []
        assert result.error == ""

    def test_no_trigger(self, graph_builder):
        graph = graph_builder({"hello": ("action_send_text", {"message": "Hi"})}, [])

        result = validate_graph(graph)

        assert not result.is_valid
        assert "Flow needs a trigger" in result.errors

    def test_two_triggers(self, graph_builder):
        graph = graph_builder(
            {
                "t1": ("trigger_message", {}),
                "t2": ("trigger_contact_created", {}),
                "hello": ("action_send_text", {"message": "Hi"}),
            },
            [("t1", "hello"), ("t2", "hello")],
        )

        result = validate_graph(graph)

        assert any("exactly one trigger, found 2" in e for e in result.errors)

    def test_trigger_without_outgoing_edge(self, graph_builder):
        graph = graph_builder({"start": ("trigger_message", {})}, [])

        result = validate_graph(graph)

        assert result.errors == ['Trigger "start" is not connected to any node']

    def test_node_without_incoming_edge(self, graph_builder):
        graph = graph_builder(
            {
                "start": ("trigger_message", {}),
                "hello": ("action_send_text", {"message": "Hi"}),
                "orphan": ("action_send_text", {"message": "Lost"}),
            },
            [("start", "hello")],
        )

        result = validate_graph(graph)

        assert result.errors == ['Node "orphan" is not connected (no incoming edge)']

    def test_edge_to_missing_node(self, graph_builder):
        graph = graph_builder(
            {
                "start": ("trigger_message", {}),
                "hello": ("action_send_text", {"message": "Hi"}),
            },
            [("start", "hello"), ("hello", "ghost")],
        )

        result = validate_graph(graph)

        assert "Edge 'e1' references missing target 'ghost'" in result.errors

    def test_duplicate_node_ids(self, graph_builder):
        graph = FlowGraph.from_dict(
            {
                "nodes": [
                    {"id": "start", "type": "trigger_message"},
                    {"id": "a", "type": "action_send_text", "config": {"message": "1"}},
                    {"id": "a", "type": "action_send_text", "config": {"message": "2"}},
                ],
                "edges": [{"source": "start", "target": "a"}],
            }
        )

        result = validate_graph(graph)

        assert "Duplicate node ID 'a'" in result.errors

    def test_errors_are_collected_not_short_circuited(self, graph_builder):
        graph = graph_builder(
            {
                "hello": ("action_send_text", {"message": ""}),
                "wait": ("action_delay", {"amount": 0, "unit": "hours"}),
            },
            [],
        )

        result = validate_graph(graph)

        assert "Flow needs a trigger" in result.errors
        assert 'Action "hello" needs a message' in result.errors
        assert 'Delay "wait" needs a positive amount' in result.errors
        assert len(result.errors) == 5  # plus two unconnected nodes

    def test_validate_accepts_node_and_edge_lists(self, graph_builder):
        graph = graph_builder(
            {"start": ("trigger_message", {}), "end": ("action_end", {})},
            [("start", "end")],
        )

        assert validate(graph.nodes, graph.edges).is_valid

    def test_unknown_node_type_is_rejected_on_parse(self):
        with pytest.raises(ValidationError, match="Unknown node type 'action_teleport'"):
            FlowGraph.from_dict({"nodes": [{"id": "x", "type": "action_teleport"}]})


class TestBranches:
    """Wiring of binary and button conditions."""

    def test_binary_condition_needs_both_paths(self, graph_builder):
        graph = graph_builder(
            {
                "start": ("trigger_message", {}),
                "vip": ("condition_tag", {"tag": "vip"}),
                "yes": ("action_send_text", {"message": "A"}),
            },
            [("start", "vip"), ("vip", "yes", "true")],
        )

        result = validate_graph(graph)

        assert result.errors == ['Condition "vip" is missing its "false" path']

    def test_button_condition_needs_every_branch_wired(self, graph_builder):
        graph = graph_builder(
            {
                "start": ("trigger_message", {}),
                "ask": (
                    "condition_button",
                    {
                        "conditions": [
                            {"buttonText": "Yes", "output": "btn_0"},
                            {"buttonText": "No", "output": "btn_1"},
                        ]
                    },
                ),
                "yes": ("action_send_text", {"message": "Great"}),
            },
            [("start", "ask"), ("ask", "yes", "btn_0")],
        )

        result = validate_graph(graph)

        assert result.errors == ['Condition "ask" has no path for button "btn_1"']

    def test_button_condition_needs_a_branch(self, graph_builder):
        graph = graph_builder(
            {
                "start": ("trigger_message", {}),
                "ask": ("condition_button", {"conditions": []}),
            },
            [("start", "ask")],
        )

        result = validate_graph(graph)

        assert result.errors == ['Condition "ask" needs at least one button branch']


class TestFanOut:
    """Several edges leaving one output."""

    def _graph(self, graph_builder):
        return graph_builder(
            {
                "start": ("trigger_message", {}),
                "a": ("action_send_text", {"message": "A"}),
                "b": ("action_send_text", {"message": "B"}),
                "c": ("action_send_text", {"message": "C"}),
            },
            [("start", "a"), ("a", "b"), ("a", "c")],
        )

    def test_fan_out_is_an_error_by_default(self, graph_builder):
        result = validate_graph(self._graph(graph_builder))

        assert result.errors == ['Node "a" has 2 outgoing edges; only one is allowed']

    def test_fan_out_allowed_on_request(self, graph_builder):
        assert validate_graph(self._graph(graph_builder), allow_fan_out=True).is_valid

    def test_duplicate_branch_handle(self, graph_builder):
        graph = graph_builder(
            {
                "start": ("trigger_message", {}),
                "vip": ("condition_tag", {"tag": "vip"}),
                "a": ("action_send_text", {"message": "A"}),
                "b": ("action_send_text", {"message": "B"}),
            },
            [("start", "vip"), ("vip", "a", "true"), ("vip", "b", "true"), ("vip", "b", "false")],
        )

        result = validate_graph(graph)

        assert result.errors == [
            'Condition "vip" has 2 edges on output "true"; only one is allowed'
        ]


class TestRequiredConfig:
    """Per-type configuration rules."""

    @pytest.mark.parametrize(
        "node_type,config,expected",
        [
            ("action_send_text", {"message": "  "}, 'Action "n" needs a message'),
            ("action_send_template", {}, 'Action "n" needs a template'),
            ("action_send_media", {"mediaUrl": ""}, 'Action "n" needs a media URL'),
            ("action_send_buttons", {"buttons": []}, 'Action "n" needs a message body'),
            ("action_add_tag", {}, 'Action "n" needs a tag'),
            ("action_remove_tag", {"tag": ""}, 'Action "n" needs a tag'),
            ("action_update_field", {"value": 1}, 'Action "n" needs a field name'),
            ("action_webhook", {"method": "POST"}, 'Action "n" needs a webhook URL'),
            ("action_delay", {"unit": "hours"}, 'Delay "n" needs a positive amount'),
            ("action_delay", {"amount": 2}, 'Delay "n" needs a unit'),
            ("condition_field", {"operator": "equals"}, 'Condition "n" needs a field name'),
            (
                "condition_time",
                {"timeRange": {"start": "9:00", "end": "25:00"}},
                'Condition "n" needs a time range in HH:MM format',
            ),
            ("condition_day", {"days": []}, 'Condition "n" needs at least one day'),
            ("condition_day", {"days": [1, 7]}, 'Condition "n" has days outside 0-6'),
        ],
    )
    def test_missing_config(self, graph_builder, node_type, config, expected):
        handles = {"condition_field", "condition_time", "condition_day"}
        edges = [("start", "n")]
        if node_type in handles:
            edges += [("n", "done", "true"), ("n", "done", "false")]
        else:
            edges += [("n", "done")]
        graph = graph_builder(
            {
                "start": ("trigger_message", {}),
                "n": (node_type, config),
                "done": ("action_end", {}),
            },
            edges,
        )

        result = validate_graph(graph)

        assert result.errors == [expected]

    def test_unknown_delay_unit_is_invalid_configuration(self, graph_builder):
        graph = graph_builder(
            {
                "start": ("trigger_message", {}),
                "wait": ("action_delay", {"amount": 2, "unit": "weeks"}),
            },
            [("start", "wait")],
        )

        result = validate_graph(graph)

        assert result.errors == ['Delay "wait" has invalid configuration: unit']

    def test_unknown_operator_is_invalid_configuration(self, graph_builder):
        graph = graph_builder(
            {
                "start": ("trigger_message", {}),
                "f": ("condition_field", {"field": "city", "operator": "regex"}),
                "done": ("action_end", {}),
            },
            [("start", "f"), ("f", "done", "true"), ("f", "done", "false")],
        )

        result = validate_graph(graph)

        assert result.errors == ['Condition "f" has invalid configuration: operator']

    def test_keyword_trigger_needs_keywords(self, graph_builder):
        graph = graph_builder(
            {
                "start": ("trigger_keyword", {"keywords": ["", " "]}),
                "hello": ("action_send_text", {"message": "Hi"}),
            },
            [("start", "hello")],
        )

        result = validate_graph(graph)

        assert result.errors == ['Trigger "start" needs at least one keyword']

    def test_label_is_used_in_messages(self):
        graph = FlowGraph.from_dict(
            {
                "nodes": [
                    {"id": "start", "type": "trigger_message"},
                    {
                        "id": "n1",
                        "data": {"type": "action_send_text", "label": "Welcome", "config": {}},
                    },
                ],
                "edges": [{"source": "start", "target": "n1"}],
            }
        )

        result = validate_graph(graph)

        assert result.errors == ['Action "Welcome" needs a message']

    def test_revalidation_after_edit(self, graph_builder):
        graph = graph_builder(
            {
                "start": ("trigger_message", {}),
                "hello": ("action_send_text", {"message": "Hi"}),
            },
            [("start", "hello")],
        )
        assert validate_graph(graph).is_valid

        graph.nodes[1].config["message"] = ""

        assert not validate_graph(graph).is_valid
