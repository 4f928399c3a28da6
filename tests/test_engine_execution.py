import asyncio

import pytest

from hvacflow.engine.controlflow import ControlFlowExecutor
from hvacflow.engine.dataflow import DataflowEvaluator
from hvacflow.engine.errors import CyclicDependency, NotProducible
from hvacflow.engine.graph import Graph
from hvacflow.engine.nodes import (
    BranchNode,
    ConstantNode,
    CreateTaskNode,
    TriggerNode,
    VariableNode,
)
from hvacflow.engine.run import ExecutionRun, NodeStatus, RunState
from hvacflow.service.actions import NodeResult

from helpers import (
    BrokenSource,
    CountingSource,
    DoubleForward,
    FakeDispatcher,
    Failing,
    Join,
    PassThrough,
    Recorder,
    SplitSource,
)


def _chain(graph, *node_ids):
    for source, target in zip(node_ids, node_ids[1:]):
        graph.connect(source, "exec", target, "exec")


async def test_producer_memoized_across_three_consumers():
    graph = Graph()
    source = graph.add_node(CountingSource("src", {"value": "filter due"}))
    graph.add_node(TriggerNode("start"))
    for node_id in ("r1", "r2", "r3"):
        graph.add_node(Recorder(node_id))
        graph.connect("src", "value", node_id, "value")
    _chain(graph, "start", "r1", "r2", "r3")

    run = await ControlFlowExecutor(graph).execute("start")

    assert run.state == RunState.COMPLETED
    assert source.calls == 1
    assert [run.output(n, "seen") for n in ("r1", "r2", "r3")] == ["filter due"] * 3


async def test_memo_is_per_run():
    graph = Graph()
    source = graph.add_node(CountingSource("src"))
    graph.add_node(TriggerNode("start"))
    graph.add_node(Recorder("r"))
    graph.connect("src", "value", "r", "value")
    _chain(graph, "start", "r")
    executor = ControlFlowExecutor(graph)

    await executor.execute("start")
    await executor.execute("start")

    assert source.calls == 2


async def test_two_output_producer_runs_once():
    graph = Graph()
    source = graph.add_node(SplitSource("boiler"))
    graph.add_node(TriggerNode("start"))
    graph.add_node(Recorder("supply_log"))
    graph.add_node(Recorder("return_log"))
    graph.connect("boiler", "supply", "supply_log", "value")
    graph.connect("boiler", "return", "return_log", "value")
    _chain(graph, "start", "supply_log", "return_log")

    run = await ControlFlowExecutor(graph).execute("start")

    assert source.calls == 1
    assert run.output("supply_log", "seen") == "55C"
    assert run.output("return_log", "seen") == "40C"
    assert run.status_of("boiler") == NodeStatus.COMPLETED


async def test_direct_self_wiring_fails_run_with_cyclic_dependency():
    graph = Graph()
    graph.add_node(TriggerNode("start"))
    graph.add_node(Recorder("r"))
    graph.connect("r", "seen", "r", "value")
    _chain(graph, "start", "r")

    run = await ControlFlowExecutor(graph).execute("start")

    assert run.state == RunState.FAILED
    assert "cyclic data dependency" in run.error
    assert run.status_of("r") == NodeStatus.FAILED


async def test_transitive_data_cycle_fails_run():
    graph = Graph()
    graph.add_node(TriggerNode("start"))
    graph.add_node(PassThrough("p1"))
    graph.add_node(PassThrough("p2"))
    graph.add_node(Recorder("r"))
    graph.connect("p1", "value", "p2", "value")
    graph.connect("p2", "value", "p1", "value")
    graph.connect("p2", "value", "r", "value")
    _chain(graph, "start", "r")

    run = await ControlFlowExecutor(graph).execute("start")

    assert run.state == RunState.FAILED
    assert "p2" in run.error and "p1" in run.error


async def test_evaluator_raises_cyclic_dependency_directly():
    graph = Graph()
    graph.add_node(PassThrough("p"))
    graph.connect("p", "value", "p", "value")
    evaluator = DataflowEvaluator(graph, ExecutionRun(trigger_id="p"))

    with pytest.raises(CyclicDependency) as excinfo:
        await evaluator.resolve_output("p", "value")
    assert excinfo.value.node_id == "p"


async def test_unrun_runnable_output_is_not_producible():
    graph = Graph()
    graph.add_node(Recorder("r"))
    evaluator = DataflowEvaluator(graph, ExecutionRun(trigger_id="r"))

    with pytest.raises(NotProducible):
        await evaluator.resolve_output("r", "seen")


async def test_consumer_of_unrun_node_fails_only_itself():
    graph = Graph()
    graph.add_node(TriggerNode("start"))
    graph.add_node(Recorder("idle"))
    graph.add_node(Recorder("reader"))
    graph.connect("idle", "seen", "reader", "value")
    _chain(graph, "start", "reader")

    run = await ControlFlowExecutor(graph).execute("start")

    assert run.state == RunState.COMPLETED
    assert run.status_of("reader") == NodeStatus.FAILED
    assert "cannot produce" in run.failed_nodes["reader"]


async def test_failed_producer_yields_empty_value():
    graph = Graph()
    graph.add_node(TriggerNode("start"))
    graph.add_node(BrokenSource("sensor"))
    graph.add_node(Recorder("r"))
    graph.connect("sensor", "value", "r", "value")
    _chain(graph, "start", "r")

    run = await ControlFlowExecutor(graph).execute("start")

    assert run.status_of("sensor") == NodeStatus.FAILED
    assert run.status_of("r") == NodeStatus.COMPLETED
    assert run.output("r", "seen") == ""


async def test_failing_branch_does_not_block_sibling():
    graph = Graph()
    graph.add_node(TriggerNode("start"))
    graph.add_node(Failing("bad"))
    graph.add_node(Recorder("after_bad"))
    graph.add_node(Recorder("good", {"value": "ok"}))
    graph.connect("start", "exec", "bad", "exec")
    graph.connect("start", "exec", "good", "exec")
    graph.connect("bad", "exec", "after_bad", "exec")

    run = await ControlFlowExecutor(graph).execute("start")

    assert run.state == RunState.COMPLETED
    assert run.failed_nodes == {"bad": "compressor fault"}
    assert run.status_of("good") == NodeStatus.COMPLETED
    assert run.status_of("after_bad") == NodeStatus.WAITING
    assert run.output("bad", "seen") == ""


async def test_siblings_follow_connection_order():
    graph = Graph()
    graph.add_node(TriggerNode("start"))
    for node_id in ("first", "second", "nested"):
        graph.add_node(Recorder(node_id))
    graph.connect("start", "exec", "first", "exec")
    graph.connect("start", "exec", "second", "exec")
    graph.connect("first", "exec", "nested", "exec")

    run = await ControlFlowExecutor(graph).execute("start")

    completed = [e.node_id for e in run.log if e.status == NodeStatus.COMPLETED]
    assert completed == ["start", "first", "nested", "second"]


async def test_each_node_runs_once_and_steps_are_bounded():
    graph = Graph()
    graph.add_node(TriggerNode("start"))
    graph.add_node(Recorder("a"))
    graph.add_node(Recorder("b"))
    graph.add_node(Join("join"))
    graph.add_node(Recorder("end"))
    graph.connect("start", "exec", "a", "exec")
    graph.connect("start", "exec", "b", "exec")
    graph.connect("a", "exec", "join", "left")
    graph.connect("b", "exec", "join", "right")
    graph.connect("join", "exec", "end", "exec")

    run = await ControlFlowExecutor(graph).execute("start")

    assert run.state == RunState.COMPLETED
    assert run.steps == len(graph.nodes)
    runs_of_join = [e for e in run.log if e.node_id == "join" and e.status == NodeStatus.RUNNING]
    assert len(runs_of_join) == 1


async def test_second_forward_fails_node():
    graph = Graph()
    graph.add_node(TriggerNode("start"))
    graph.add_node(DoubleForward("twice"))
    graph.add_node(Recorder("next"))
    _chain(graph, "start", "twice", "next")

    run = await ControlFlowExecutor(graph).execute("start")

    assert run.status_of("twice") == NodeStatus.FAILED
    assert "forwarded more than once" in run.failed_nodes["twice"]
    assert run.status_of("next") == NodeStatus.WAITING


async def test_branch_forwards_only_selected_path():
    graph = Graph()
    graph.add_node(TriggerNode("start"))
    graph.add_node(ConstantNode("flag", {"socketType": "boolean", "value": True}))
    graph.add_node(BranchNode("branch"))
    graph.add_node(Recorder("yes"))
    graph.add_node(Recorder("no"))
    graph.connect("flag", "value", "branch", "condition")
    graph.connect("start", "exec", "branch", "exec")
    graph.connect("branch", "true", "yes", "exec")
    graph.connect("branch", "false", "no", "exec")

    run = await ControlFlowExecutor(graph).execute()

    assert run.status_of("yes") == NodeStatus.COMPLETED
    assert run.status_of("no") == NodeStatus.WAITING


async def test_concurrent_runs_do_not_share_state():
    graph = Graph()
    graph.add_node(TriggerNode("start"))
    graph.add_node(VariableNode("customer", {"name": "customer", "socketType": "string"}))
    graph.add_node(Recorder("r"))
    graph.connect("customer", "value", "r", "value")
    _chain(graph, "start", "r")
    executor = ControlFlowExecutor(graph)

    first, second = await asyncio.gather(
        executor.execute("start", {"customer": "Kowalski"}),
        executor.execute("start", {"customer": "Nowak"}),
    )

    assert first.id != second.id
    assert first.output("r", "seen") == "Kowalski"
    assert second.output("r", "seen") == "Nowak"


async def test_action_node_dispatches_and_exposes_outputs():
    dispatcher = FakeDispatcher(
        {"CreateTaskNode": NodeResult(success=True, payload={"taskId": "t-1", "status": "pending"})}
    )
    graph = Graph()
    graph.add_node(TriggerNode("start"))
    graph.add_node(CreateTaskNode("task", {"description": "Replace filter"}))
    graph.add_node(Recorder("r"))
    graph.connect("task", "taskId", "r", "value")
    _chain(graph, "start", "task", "r")

    run = await ControlFlowExecutor(graph, dispatcher=dispatcher).execute("start")

    assert dispatcher.calls == [
        ("CreateTaskNode", {"description": "Replace filter", "assignee": "", "dueDate": ""})
    ]
    assert run.output("r", "seen") == "t-1"


async def test_failed_action_marks_node_and_empties_outputs():
    dispatcher = FakeDispatcher(
        {
            "CreateTaskNode": NodeResult(
                success=False,
                error="missing required fields: description",
                error_code="validation_error",
                status_code=400,
            )
        }
    )
    graph = Graph()
    graph.add_node(TriggerNode("start"))
    graph.add_node(CreateTaskNode("task"))
    graph.add_node(Recorder("r"))
    graph.connect("task", "taskId", "r", "value")
    graph.connect("start", "exec", "task", "exec")
    graph.connect("start", "exec", "r", "exec")

    run = await ControlFlowExecutor(graph, dispatcher=dispatcher).execute("start")

    assert run.node_states["task"].error_code == "validation_error"
    assert run.status_of("r") == NodeStatus.COMPLETED
    assert run.output("r", "seen") == ""


async def test_step_limit_fails_run():
    graph = Graph()
    graph.add_node(TriggerNode("start"))
    graph.add_node(Recorder("a"))
    graph.add_node(Recorder("b"))
    _chain(graph, "start", "a", "b")

    run = await ControlFlowExecutor(graph, max_steps=2).execute("start")

    assert run.state == RunState.FAILED
    assert "exceeded 2 steps" in run.error
