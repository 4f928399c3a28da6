from __future__ import annotations

from typing import Any, Dict, Optional

from hvacflow.engine.errors import CyclicDependency, NotProducible
from hvacflow.engine.graph import Graph
from hvacflow.engine.nodes import ActionDispatcher, Node, NodeContext, Producer
from hvacflow.engine.run import ExecutionRun, NodeStatus
from hvacflow.logging import get_logger

logger = get_logger(__name__)


class DataflowEvaluator:
    """Pull-based resolution of data inputs, memoized on the run.

    Resolving an output walks upstream through producers on demand. A producer
    runs at most once per run no matter how many of its outputs are read or
    how many consumers read them. Re-entering a node that is still resolving
    raises ``CyclicDependency``, which the executor treats as fatal for the run.
    """

    def __init__(
        self,
        graph: Graph,
        run: ExecutionRun,
        *,
        dispatcher: Optional[ActionDispatcher] = None,
    ) -> None:
        self.graph = graph
        self.run = run
        self.dispatcher = dispatcher

    def context_for(self, node: Node, inputs: Dict[str, Any]) -> NodeContext:
        return NodeContext(
            node_id=node.id,
            run_id=self.run.id,
            inputs=inputs,
            variables=self.run.variables,
            dispatcher=self.dispatcher,
        )

    async def fetch_inputs(self, node: Node) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        for name in node.data_inputs:
            conn = self.graph.incoming(node.id, name)
            if conn is None:
                values[name] = node.default_input(name)
            else:
                values[name] = await self.resolve_output(conn.source, conn.source_output)
        return values

    async def resolve_output(self, node_id: str, output_name: str) -> Any:
        run = self.run
        if run.has_output(node_id, output_name):
            return run.output(node_id, output_name)
        if node_id in run.in_progress:
            raise CyclicDependency(node_id, run.in_progress)

        node = self.graph.node(node_id)
        socket = node.output_socket(output_name)
        status = run.status_of(node_id)
        if status == NodeStatus.FAILED:
            return socket.empty_value()

        if isinstance(node, Producer):
            if node_id in run.produced:
                # produce() already ran this run and did not publish this output
                return socket.empty_value()
            run.in_progress.append(node_id)
            try:
                inputs = await self.fetch_inputs(node)
                ctx = self.context_for(node, inputs)
                run.produced.add(node_id)
                try:
                    value = await node.produce(output_name, ctx)
                except CyclicDependency:
                    raise
                except Exception as exc:
                    run.mark(node_id, NodeStatus.FAILED, str(exc))
                    logger.warning(
                        "producer_failed",
                        run_id=run.id,
                        node_id=node_id,
                        output=output_name,
                        error=str(exc),
                    )
                    return socket.empty_value()
            finally:
                run.in_progress.remove(node_id)
            ctx.outputs[output_name] = value
            for name in node.data_outputs:
                if not run.has_output(node_id, name):
                    empty = node.output_socket(name).empty_value()
                    run.store_output(node_id, name, ctx.outputs.get(name, empty))
            if status == NodeStatus.WAITING:
                run.mark(node_id, NodeStatus.COMPLETED)
            logger.debug("node_produced", run_id=run.id, node_id=node_id, output=output_name)
            return value

        if status == NodeStatus.COMPLETED:
            # ran but never set this output
            return socket.empty_value()
        raise NotProducible(node_id, output_name, "node has not run in this execution")
