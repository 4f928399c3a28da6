"""Node model for automation graphs.

A node declares ordered, typed input and output sockets and implements zero,
one or both capabilities:

- ``Producer``: ``produce(output_name, ctx)`` computes a data output on demand.
  The dataflow evaluator calls it at most once per run for each node, asking
  for the first output a consumer needs; a node with several data outputs
  publishes the others with ``ctx.set_output``.
- ``Runnable``: ``run(pulse_input, forward, ctx)`` performs the node's action
  when an execution pulse arrives and calls ``forward(output)`` at most once to
  continue along one of its pulse outputs.

Nodes are stateless across runs. Everything a run produces (statuses, outputs)
lives on the ``ExecutionRun``, so one graph can serve concurrent runs.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import (
    Any,
    Callable,
    ClassVar,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Type,
    runtime_checkable,
)

from hvacflow.engine.errors import (
    NodeActionError,
    NotProducible,
    UnknownNodeType,
    UnknownSocket,
)
from hvacflow.engine.sockets import (
    BOOLEAN,
    EXEC,
    JSON,
    STRING,
    TEXT,
    SocketType,
    default_registry,
)

Forward = Callable[[str], None]


class ActionOutcome(Protocol):
    success: bool
    payload: Dict[str, Any]
    error: Optional[str]
    error_code: Optional[str]
    status_code: int


class ActionDispatcher(Protocol):
    async def dispatch(self, node_type: str, node_data: Dict[str, Any]) -> ActionOutcome: ...


@dataclass
class NodeContext:
    """What a node sees while it runs or produces within one run."""

    node_id: str
    run_id: str
    inputs: Dict[str, Any]
    variables: Mapping[str, Any]
    dispatcher: Optional[ActionDispatcher] = None
    outputs: Dict[str, Any] = field(default_factory=dict)

    def set_output(self, name: str, value: Any) -> None:
        self.outputs[name] = value

    async def dispatch(self, node_type: str, payload: Dict[str, Any]) -> ActionOutcome:
        if self.dispatcher is None:
            raise NodeActionError("no action dispatcher configured for this run")
        return await self.dispatcher.dispatch(node_type, payload)


@runtime_checkable
class Producer(Protocol):
    async def produce(self, output_name: str, ctx: NodeContext) -> Any: ...


@runtime_checkable
class Runnable(Protocol):
    async def run(
        self, pulse_input: Optional[str], forward: Forward, ctx: NodeContext
    ) -> None: ...


class Node:
    """Base node: identity, configuration data and socket declarations."""

    type_tag: ClassVar[str] = ""

    def __init__(self, node_id: str, data: Optional[Dict[str, Any]] = None) -> None:
        if not isinstance(node_id, str) or not node_id:
            raise ValueError("node id must be a non-empty string")
        self.id = node_id
        self.data: Dict[str, Any] = dict(data or {})
        self._inputs: Dict[str, SocketType] = dict(self.declare_inputs())
        self._outputs: Dict[str, SocketType] = dict(self.declare_outputs())

    def declare_inputs(self) -> Dict[str, SocketType]:
        return {}

    def declare_outputs(self) -> Dict[str, SocketType]:
        return {}

    @property
    def inputs(self) -> Mapping[str, SocketType]:
        return MappingProxyType(self._inputs)

    @property
    def outputs(self) -> Mapping[str, SocketType]:
        return MappingProxyType(self._outputs)

    def input_socket(self, name: str) -> SocketType:
        try:
            return self._inputs[name]
        except KeyError:
            raise UnknownSocket(
                f"node {self.id} has no input {name!r}",
                {"node_id": self.id, "input": name},
            ) from None

    def output_socket(self, name: str) -> SocketType:
        try:
            return self._outputs[name]
        except KeyError:
            raise UnknownSocket(
                f"node {self.id} has no output {name!r}",
                {"node_id": self.id, "output": name},
            ) from None

    @property
    def data_inputs(self) -> List[str]:
        return [name for name, socket in self._inputs.items() if not socket.is_pulse]

    @property
    def data_outputs(self) -> List[str]:
        return [name for name, socket in self._outputs.items() if not socket.is_pulse]

    @property
    def pulse_outputs(self) -> List[str]:
        return [name for name, socket in self._outputs.items() if socket.is_pulse]

    @property
    def pulse_inputs(self) -> List[str]:
        return [name for name, socket in self._inputs.items() if socket.is_pulse]

    def default_input(self, name: str) -> Any:
        """Value of an unconnected input: configured data, else the empty value."""
        socket = self.input_socket(name)
        if name in self.data and self.data[name] is not None:
            return self.data[name]
        return socket.empty_value()

    def empty_outputs(self) -> Dict[str, Any]:
        return {name: self._outputs[name].empty_value() for name in self.data_outputs}

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id!r}>"


NODE_TYPES: Dict[str, Type[Node]] = {}


def register_node_type(cls: Type[Node]) -> Type[Node]:
    if not cls.type_tag:
        raise ValueError(f"{cls.__name__} must define type_tag")
    NODE_TYPES[cls.type_tag] = cls
    return cls


def create_node(type_tag: str, node_id: str, data: Optional[Dict[str, Any]] = None) -> Node:
    cls = NODE_TYPES.get(type_tag)
    if cls is None:
        raise UnknownNodeType(
            f"unknown node type {type_tag!r}", {"node_type": type_tag, "node_id": node_id}
        )
    return cls(node_id, data)


_TEMPLATE_VAR = re.compile(r"\{\{([^}]+)\}\}")


def render_template(text: Any, variables: Mapping[str, Any]) -> Any:
    """Replace ``{{name}}`` placeholders with run variables; unknown names stay."""
    if not isinstance(text, str):
        return text

    def _sub(match: "re.Match[str]") -> str:
        key = match.group(1).strip()
        value = variables.get(key)
        return str(value) if value is not None else match.group(0)

    return _TEMPLATE_VAR.sub(_sub, text)


# ---------------------------------------------------------------------------
# Structural nodes
# ---------------------------------------------------------------------------


_MISSING = object()


def nested_value(data: Mapping[str, Any], path: str) -> Any:
    """Look up a dot-separated path such as ``device.status``."""
    current: Any = data
    for key in path.split("."):
        if not isinstance(current, Mapping) or key not in current:
            return _MISSING
        current = current[key]
    return current


@register_node_type
class TriggerNode(Node):
    """Entry point of a run. ``kind`` records how the workflow is started.

    Event triggers carry ``eventType`` and optional ``conditions`` (dot paths
    into the event data mapped to the values they must equal). Schedule
    triggers carry ``schedule`` and ``lastExecuted`` and fire at most once per
    ``intervalMinutes`` (one hour unless configured).
    """

    type_tag = "Trigger"
    KINDS = ("manual", "schedule", "event", "webhook")
    DEFAULT_INTERVAL = timedelta(hours=1)

    def declare_outputs(self) -> Dict[str, SocketType]:
        return {"exec": EXEC}

    @property
    def kind(self) -> str:
        kind = self.data.get("kind", "manual")
        return kind if kind in self.KINDS else "manual"

    def accepts_event(self, event_type: str, event_data: Mapping[str, Any]) -> bool:
        if self.kind != "event" or self.data.get("eventType") != event_type:
            return False
        conditions = self.data.get("conditions") or {}
        return all(
            nested_value(event_data, path) == expected for path, expected in conditions.items()
        )

    def schedule_due(self, now: datetime) -> bool:
        if self.kind != "schedule":
            return False
        last = self.data.get("lastExecuted")
        if not last:
            return True
        try:
            last_executed = datetime.fromisoformat(str(last).replace("Z", "+00:00"))
        except ValueError:
            return True
        if last_executed.tzinfo is not None:
            last_executed = last_executed.astimezone(timezone.utc).replace(tzinfo=None)
        minutes = self.data.get("intervalMinutes")
        interval = timedelta(minutes=minutes) if minutes else self.DEFAULT_INTERVAL
        return now - last_executed >= interval

    async def run(self, pulse_input: Optional[str], forward: Forward, ctx: NodeContext) -> None:
        forward("exec")


@register_node_type
class ConstantNode(Node):
    type_tag = "Constant"

    def declare_outputs(self) -> Dict[str, SocketType]:
        return {"value": default_registry.get(self.data.get("socketType", "string"))}

    async def produce(self, output_name: str, ctx: NodeContext) -> Any:
        if output_name != "value":
            raise NotProducible(self.id, output_name)
        return self.data.get("value", self._outputs["value"].empty_value())


@register_node_type
class VariableNode(Node):
    """Reads a run variable (the values a workflow execution was started with)."""

    type_tag = "Variable"

    def declare_outputs(self) -> Dict[str, SocketType]:
        return {"value": default_registry.get(self.data.get("socketType", "json"))}

    async def produce(self, output_name: str, ctx: NodeContext) -> Any:
        if output_name != "value":
            raise NotProducible(self.id, output_name)
        name = self.data.get("name")
        if not name:
            raise NotProducible(self.id, output_name, "variable name not configured")
        value = ctx.variables.get(name)
        return self._outputs["value"].empty_value() if value is None else value


@register_node_type
class BranchNode(Node):
    type_tag = "Branch"

    def declare_inputs(self) -> Dict[str, SocketType]:
        return {"exec": EXEC, "condition": BOOLEAN}

    def declare_outputs(self) -> Dict[str, SocketType]:
        return {"true": EXEC, "false": EXEC}

    async def run(self, pulse_input: Optional[str], forward: Forward, ctx: NodeContext) -> None:
        forward("true" if ctx.inputs.get("condition") else "false")


# ---------------------------------------------------------------------------
# Action nodes: each sends its resolved inputs through the action dispatcher
# ---------------------------------------------------------------------------


class ActionNode(Node):
    """Runnable node whose effect is performed by a dispatcher action."""

    action_tag: ClassVar[str] = ""
    data_sockets: ClassVar[Dict[str, SocketType]] = {}
    result_sockets: ClassVar[Dict[str, SocketType]] = {"status": STRING}

    def declare_inputs(self) -> Dict[str, SocketType]:
        return {"exec": EXEC, **self.data_sockets}

    def declare_outputs(self) -> Dict[str, SocketType]:
        return {"exec": EXEC, **self.result_sockets}

    def build_payload(self, ctx: NodeContext) -> Dict[str, Any]:
        payload = {k: v for k, v in self.data.items() if k not in self._inputs}
        payload.update(ctx.inputs)
        return payload

    def apply_result(self, payload: Dict[str, Any], ctx: NodeContext) -> None:
        ctx.set_output("status", "Success")

    async def run(self, pulse_input: Optional[str], forward: Forward, ctx: NodeContext) -> None:
        result = await ctx.dispatch(self.action_tag or self.type_tag, self.build_payload(ctx))
        if not result.success:
            raise NodeActionError(
                result.error or "action failed",
                error_code=result.error_code or "server_error",
                status_code=result.status_code,
            )
        self.apply_result(result.payload, ctx)
        forward("exec")


@register_node_type
class EmailNode(ActionNode):
    type_tag = "EmailNode"
    data_sockets = {"recipient": STRING, "subject": STRING, "body": STRING}


@register_node_type
class CreateTaskNode(ActionNode):
    type_tag = "CreateTaskNode"
    data_sockets = {"description": STRING, "assignee": STRING, "dueDate": STRING}
    result_sockets = {"taskId": STRING, "status": STRING}

    def apply_result(self, payload: Dict[str, Any], ctx: NodeContext) -> None:
        ctx.set_output("taskId", payload.get("taskId", ""))
        ctx.set_output("status", payload.get("status", ""))


@register_node_type
class UpdateRecordNode(ActionNode):
    type_tag = "UpdateRecordNode"
    data_sockets = {"entityId": STRING, "updates": JSON}


@register_node_type
class UpdateContractNode(UpdateRecordNode):
    type_tag = "UpdateContractNode"
    data_sockets = {"contractId": STRING, "updates": JSON}


@register_node_type
class DataConditionNode(ActionNode):
    type_tag = "DataConditionNode"
    data_sockets = {
        "dataSource": STRING,
        "field": STRING,
        "operator": STRING,
        "value": JSON,
    }
    result_sockets = {"result": BOOLEAN, "status": STRING}

    def apply_result(self, payload: Dict[str, Any], ctx: NodeContext) -> None:
        ctx.set_output("result", bool(payload.get("result")))
        ctx.set_output("status", "Success")


@register_node_type
class TimeConditionNode(ActionNode):
    type_tag = "TimeConditionNode"
    data_sockets = {"referenceDate": STRING}
    result_sockets = {"result": BOOLEAN}

    def build_payload(self, ctx: NodeContext) -> Dict[str, Any]:
        payload = super().build_payload(ctx)
        # empty string means "now"
        if not payload.get("referenceDate"):
            payload.pop("referenceDate", None)
        return payload

    def apply_result(self, payload: Dict[str, Any], ctx: NodeContext) -> None:
        ctx.set_output("result", bool(payload.get("result")))


@register_node_type
class AiAnalysisNode(ActionNode):
    type_tag = "AiAnalysisNode"
    data_sockets = {"inputData": JSON, "prompt": TEXT}
    result_sockets = {"result": JSON, "success": BOOLEAN}

    def build_payload(self, ctx: NodeContext) -> Dict[str, Any]:
        payload = super().build_payload(ctx)
        payload["prompt"] = render_template(payload.get("prompt"), ctx.variables)
        if isinstance(payload.get("inputData"), str):
            payload["inputData"] = render_template(payload["inputData"], ctx.variables)
        return payload

    def apply_result(self, payload: Dict[str, Any], ctx: NodeContext) -> None:
        ctx.set_output("result", payload.get("result"))
        ctx.set_output("success", True)


@register_node_type
class DynamicLinkNode(ActionNode):
    type_tag = "DynamicLinkNode"
    data_sockets = {"resourceId": STRING, "title": STRING}
    result_sockets = {"url": STRING, "token": STRING, "success": BOOLEAN}

    def build_payload(self, ctx: NodeContext) -> Dict[str, Any]:
        payload = super().build_payload(ctx)
        if not payload.get("resourceId"):
            payload.pop("resourceId", None)
        return payload

    def apply_result(self, payload: Dict[str, Any], ctx: NodeContext) -> None:
        ctx.set_output("url", payload.get("fullUrl") or payload.get("url", ""))
        ctx.set_output("token", payload.get("token", ""))
        ctx.set_output("success", True)


@register_node_type
class MCPCommandNode(ActionNode):
    type_tag = "MCPCommandNode"
    data_sockets = {"command": STRING, "args": JSON}
    result_sockets = {"result": JSON}

    def apply_result(self, payload: Dict[str, Any], ctx: NodeContext) -> None:
        ctx.set_output("result", payload.get("result"))
