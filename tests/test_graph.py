from datetime import datetime, timedelta

import pytest

from hvacflow.engine.document import InvalidGraphDocument
from hvacflow.engine.errors import (
    CyclicPulseGraph,
    GraphConstructionError,
    TypeMismatch,
    UnknownNodeType,
    UnknownSocket,
)
from hvacflow.engine.graph import Graph
from hvacflow.engine.nodes import (
    BranchNode,
    ConstantNode,
    EmailNode,
    TriggerNode,
    create_node,
)
from hvacflow.engine.sockets import EXEC, STRING, SocketTypeRegistry, default_registry

from helpers import Join, Recorder


def test_registry_register_is_idempotent():
    registry = SocketTypeRegistry()
    first = registry.register("Text")
    assert registry.register("text") is first
    assert "TEXT" in registry
    assert registry.names() == ["text"]


def test_registry_get_unknown_raises():
    with pytest.raises(UnknownSocket):
        default_registry.get("temperature")


def test_default_registry_empty_values():
    assert default_registry.get("text").empty_value() == ""
    assert default_registry.get("string").empty_value() == ""
    assert default_registry.get("json").empty_value() is None
    assert default_registry.get("number").empty_value() is None
    assert default_registry.get("boolean").empty_value() is False
    assert EXEC.is_pulse and not STRING.is_pulse


def test_connect_rejects_type_mismatch():
    graph = Graph()
    graph.add_node(ConstantNode("flag", {"socketType": "boolean", "value": True}))
    graph.add_node(EmailNode("mail"))
    with pytest.raises(TypeMismatch) as excinfo:
        graph.connect("flag", "value", "mail", "recipient")
    assert excinfo.value.detail["source_type"] == "boolean"
    assert excinfo.value.detail["target_type"] == "string"


def test_exec_only_connects_to_exec():
    graph = Graph()
    graph.add_node(TriggerNode("start"))
    graph.add_node(EmailNode("mail"))
    with pytest.raises(TypeMismatch):
        graph.connect("start", "exec", "mail", "subject")


def test_connect_rejects_unknown_socket_and_node():
    graph = Graph()
    graph.add_node(TriggerNode("start"))
    graph.add_node(EmailNode("mail"))
    with pytest.raises(UnknownSocket):
        graph.connect("start", "nope", "mail", "exec")
    with pytest.raises(UnknownSocket):
        graph.connect("start", "exec", "ghost", "exec")


def test_input_accepts_single_connection_output_fans_out():
    graph = Graph()
    graph.add_node(ConstantNode("to", {"value": "tech@example.com"}))
    graph.add_node(ConstantNode("other", {"value": "office@example.com"}))
    graph.add_node(EmailNode("a"))
    graph.add_node(EmailNode("b"))
    graph.connect("to", "value", "a", "recipient")
    graph.connect("to", "value", "b", "recipient")
    with pytest.raises(GraphConstructionError):
        graph.connect("other", "value", "a", "recipient")
    assert [c.target for c in graph.outgoing("to", "value")] == ["a", "b"]


def test_duplicate_node_id_rejected():
    graph = Graph()
    graph.add_node(TriggerNode("start"))
    with pytest.raises(GraphConstructionError):
        graph.add_node(TriggerNode("start"))


def test_pulse_cycle_rejected_at_construction():
    graph = Graph()
    for node_id in ("a", "b", "c"):
        graph.add_node(Recorder(node_id))
    graph.connect("a", "exec", "b", "exec")
    graph.connect("b", "exec", "c", "exec")
    with pytest.raises(CyclicPulseGraph):
        graph.connect("c", "exec", "a", "exec")


def test_pulse_self_loop_rejected():
    graph = Graph()
    graph.add_node(Join("j"))
    with pytest.raises(CyclicPulseGraph):
        graph.connect("j", "exec", "j", "left")


def test_data_self_wiring_allowed_at_construction():
    graph = Graph()
    graph.add_node(Recorder("r"))
    graph.connect("r", "seen", "r", "value")
    assert graph.incoming("r", "value").source == "r"


def test_frozen_graph_rejects_edits():
    graph = Graph()
    graph.add_node(TriggerNode("start"))
    graph.freeze()
    with pytest.raises(GraphConstructionError):
        graph.add_node(TriggerNode("other"))


def test_default_triggers_prefer_trigger_nodes():
    graph = Graph()
    graph.add_node(Recorder("r"))
    graph.add_node(TriggerNode("start"))
    assert graph.triggers == ["start"]


def test_default_triggers_fall_back_to_pulse_roots():
    graph = Graph()
    graph.add_node(Recorder("a"))
    graph.add_node(Recorder("b"))
    graph.add_node(ConstantNode("c"))
    graph.connect("a", "exec", "b", "exec")
    assert graph.triggers == ["a"]


def test_add_trigger_requires_pulse_output():
    graph = Graph()
    graph.add_node(ConstantNode("c"))
    with pytest.raises(GraphConstructionError):
        graph.add_trigger("c")


def test_create_node_unknown_type():
    with pytest.raises(UnknownNodeType):
        create_node("FaxNode", "n1")


def test_branch_declares_two_pulse_outputs():
    node = BranchNode("b")
    assert node.pulse_outputs == ["true", "false"]
    assert node.data_inputs == ["condition"]


def test_from_document_builds_graph():
    document = {
        "nodes": [
            {"id": "start", "type": "Trigger", "data": {"kind": "manual"}},
            {"id": "to", "type": "Constant", "data": {"value": "a@example.com"}},
            {"id": "mail", "type": "EmailNode", "data": {"subject": "Hi", "body": "Body"}},
        ],
        "connections": [
            {"source": "start", "sourceOutput": "exec", "target": "mail", "targetInput": "exec"},
            {"source": "to", "sourceOutput": "value", "target": "mail", "targetInput": "recipient"},
        ],
    }
    graph = Graph.from_document(document)
    assert graph.triggers == ["start"]
    assert graph.incoming("mail", "recipient").source == "to"
    assert graph.to_document()["nodes"][2]["type"] == "EmailNode"


def test_from_document_rejects_schema_errors():
    with pytest.raises(InvalidGraphDocument) as excinfo:
        Graph.from_document({"nodes": [{"id": "n1"}]})
    assert any("'type' is a required property" in e for e in excinfo.value.errors)


def test_from_document_rejects_unknown_type():
    with pytest.raises(UnknownNodeType):
        Graph.from_document({"nodes": [{"id": "n1", "type": "FaxNode"}]})


def test_module_register_adds_custom_socket_type():
    from hvacflow.engine import sockets

    pressure = sockets.register("pressure")
    assert default_registry.get("pressure") is pressure
    assert pressure.empty_value() is None


def test_trigger_kind_defaults_to_manual():
    assert TriggerNode("t", {"kind": "webhook"}).kind == "webhook"
    assert TriggerNode("t", {"kind": "carrier-pigeon"}).kind == "manual"


def test_event_trigger_matches_type_and_nested_conditions():
    trigger = TriggerNode(
        "t",
        {
            "kind": "event",
            "eventType": "device.alarm",
            "conditions": {"device.status": "fault", "severity": 2},
        },
    )
    alarm = {"device": {"status": "fault"}, "severity": 2}
    assert trigger.accepts_event("device.alarm", alarm)
    assert not trigger.accepts_event("device.service_due", alarm)
    assert not trigger.accepts_event("device.alarm", {"device": {"status": "ok"}, "severity": 2})
    assert not trigger.accepts_event("device.alarm", {"severity": 2})
    assert not TriggerNode("m", {"kind": "manual"}).accepts_event("device.alarm", alarm)


def test_schedule_trigger_due_after_interval():
    now = datetime(2024, 3, 4, 12, 0)
    assert TriggerNode("s", {"kind": "schedule"}).schedule_due(now)
    recent = TriggerNode("s", {"kind": "schedule", "lastExecuted": "2024-03-04T11:30:00"})
    assert not recent.schedule_due(now)
    assert recent.schedule_due(now + timedelta(minutes=30))
    custom = TriggerNode(
        "s", {"kind": "schedule", "lastExecuted": "2024-03-04T11:30:00Z", "intervalMinutes": 15}
    )
    assert custom.schedule_due(now)
    assert not TriggerNode("e", {"kind": "event"}).schedule_due(now)
