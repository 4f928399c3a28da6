from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from hvacflow.engine.dataflow import DataflowEvaluator
from hvacflow.engine.errors import (
    CyclicDependency,
    GraphConstructionError,
    MultipleForward,
    NodeActionError,
    RunError,
    UnknownSocket,
)
from hvacflow.engine.graph import Graph
from hvacflow.engine.nodes import ActionDispatcher, Runnable
from hvacflow.engine.run import ExecutionRun, NodeStatus, RunState
from hvacflow.logging import get_logger, log_execution_trace

logger = get_logger(__name__)


class StepLimitExceeded(RunError):
    def __init__(self, limit: int) -> None:
        super().__init__(f"run exceeded {limit} steps", {"limit": limit})


class ControlFlowExecutor:
    """Walks pulse connections from a trigger, one node at a time.

    Before a node runs, its data inputs are pulled through the dataflow
    evaluator with the node marked in progress. Forwarded pulse outputs are
    followed depth-first in connection order. A node that fails halts only
    its own branch; a cyclic data dependency fails the whole run.
    """

    def __init__(
        self,
        graph: Graph,
        *,
        dispatcher: Optional[ActionDispatcher] = None,
        max_steps: Optional[int] = None,
    ) -> None:
        self.graph = graph.freeze()
        self.dispatcher = dispatcher
        self.max_steps = max_steps

    async def execute(
        self,
        trigger_id: Optional[str] = None,
        variables: Optional[Dict[str, Any]] = None,
    ) -> ExecutionRun:
        trigger = trigger_id or self._default_trigger()
        if not self.graph.has_node(trigger):
            raise UnknownSocket(f"unknown trigger node {trigger!r}", {"node_id": trigger})

        run = ExecutionRun(trigger_id=trigger, variables=dict(variables or {}))
        evaluator = DataflowEvaluator(self.graph, run, dispatcher=self.dispatcher)
        run.state = RunState.RUNNING
        run.started_at = datetime.utcnow()
        logger.info(
            "run_started",
            run_id=run.id,
            trigger_id=trigger,
            trigger_kind=getattr(self.graph.node(trigger), "kind", None),
        )

        try:
            await self._walk(run, evaluator, trigger)
        except (CyclicDependency, StepLimitExceeded) as exc:
            run.state = RunState.FAILED
            run.error = exc.message
            logger.error("run_failed", run_id=run.id, error=exc.message, detail=exc.detail)
        else:
            run.state = RunState.COMPLETED
        run.finished_at = datetime.utcnow()

        logger.info(
            "run_completed" if run.state == RunState.COMPLETED else "run_aborted",
            run_id=run.id,
            steps=run.steps,
            failed_nodes=list(run.failed_nodes),
        )
        log_execution_trace(run.id, [entry.to_dict() for entry in run.log], logger=logger)
        return run

    def _default_trigger(self) -> str:
        triggers = self.graph.triggers
        if not triggers:
            raise GraphConstructionError("graph has no trigger to start from")
        return triggers[0]

    async def _walk(self, run: ExecutionRun, evaluator: DataflowEvaluator, trigger: str) -> None:
        stack: List[Tuple[str, Optional[str]]] = [(trigger, None)]
        while stack:
            node_id, pulse_input = stack.pop()
            successors = await self._visit(run, evaluator, node_id, pulse_input)
            # reversed so the first connection is visited first
            stack.extend(reversed(successors))

    async def _visit(
        self,
        run: ExecutionRun,
        evaluator: DataflowEvaluator,
        node_id: str,
        pulse_input: Optional[str],
    ) -> List[Tuple[str, Optional[str]]]:
        if node_id in run.visited:
            logger.debug("node_skipped", run_id=run.id, node_id=node_id)
            return []
        run.visited.add(node_id)
        run.steps += 1
        if self.max_steps is not None and run.steps > self.max_steps:
            raise StepLimitExceeded(self.max_steps)

        node = self.graph.node(node_id)
        if not isinstance(node, Runnable):
            run.mark(node_id, NodeStatus.FAILED, f"node {node_id} cannot receive a pulse")
            return []

        run.mark(node_id, NodeStatus.RUNNING)
        logger.info("node_started", run_id=run.id, node_id=node_id, node_type=node.type_tag)

        forwarded: List[str] = []

        def forward(output_name: str) -> None:
            if output_name not in node.pulse_outputs:
                raise UnknownSocket(
                    f"node {node_id} has no pulse output {output_name!r}",
                    {"node_id": node_id, "output": output_name},
                )
            forwarded.append(output_name)
            if len(forwarded) > 1:
                raise MultipleForward(node_id, forwarded)

        ctx = None
        try:
            run.in_progress.append(node_id)
            try:
                inputs = await evaluator.fetch_inputs(node)
            finally:
                run.in_progress.remove(node_id)
            ctx = evaluator.context_for(node, inputs)
            await node.run(pulse_input, forward, ctx)
            if len(forwarded) > 1:
                raise MultipleForward(node_id, forwarded)
        except CyclicDependency:
            run.mark(node_id, NodeStatus.FAILED, "cyclic data dependency")
            raise
        except Exception as exc:
            message = getattr(exc, "message", None) or str(exc) or type(exc).__name__
            error_code = exc.error_code if isinstance(exc, NodeActionError) else None
            for name, value in node.empty_outputs().items():
                run.store_output(node_id, name, value)
            run.mark(node_id, NodeStatus.FAILED, message, error_code)
            logger.warning(
                "node_failed",
                run_id=run.id,
                node_id=node_id,
                node_type=node.type_tag,
                error=message,
                error_code=error_code,
            )
            return []

        produced = ctx.outputs if ctx is not None else {}
        for name, value in node.empty_outputs().items():
            run.store_output(node_id, name, produced.get(name, value))
        run.mark(node_id, NodeStatus.COMPLETED)
        logger.info("node_completed", run_id=run.id, node_id=node_id, forwarded=forwarded)

        successors: List[Tuple[str, Optional[str]]] = []
        for output_name in forwarded:
            for conn in self.graph.outgoing(node_id, output_name):
                successors.append((conn.target, conn.target_input))
        return successors
