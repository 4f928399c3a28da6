from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Tuple

from hvacflow.engine.document import validate_document
from hvacflow.engine.errors import (
    CyclicPulseGraph,
    GraphConstructionError,
    TypeMismatch,
    UnknownSocket,
)
from hvacflow.engine.nodes import Node, TriggerNode, create_node
from hvacflow.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Connection:
    source: str
    source_output: str
    target: str
    target_input: str
    id: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "source": self.source,
            "sourceOutput": self.source_output,
            "target": self.target,
            "targetInput": self.target_input,
        }


class Graph:
    """Nodes, typed connections and designated triggers.

    Every check that can be made without running happens in ``connect``:
    socket existence, type compatibility, one connection per input and an
    acyclic pulse subgraph. Data cycles are only detected during resolution.
    Once frozen (a run has started) the graph rejects further edits.
    """

    def __init__(self) -> None:
        self._nodes: Dict[str, Node] = {}
        self._connections: List[Connection] = []
        self._incoming: Dict[Tuple[str, str], Connection] = {}
        self._outgoing: Dict[Tuple[str, str], List[Connection]] = {}
        self._pulse_successors: Dict[str, Set[str]] = {}
        self._triggers: List[str] = []
        self._frozen = False
        self._lock = threading.Lock()

    # -- construction ----------------------------------------------------

    def add_node(self, node: Node) -> Node:
        with self._lock:
            self._ensure_mutable()
            if node.id in self._nodes:
                raise GraphConstructionError(
                    f"duplicate node id {node.id!r}", {"node_id": node.id}
                )
            self._nodes[node.id] = node
            self._pulse_successors.setdefault(node.id, set())
            return node

    def connect(
        self,
        source: str,
        source_output: str,
        target: str,
        target_input: str,
        *,
        connection_id: Optional[str] = None,
    ) -> Connection:
        with self._lock:
            self._ensure_mutable()
            source_node = self._require_node(source)
            target_node = self._require_node(target)
            out_type = source_node.output_socket(source_output)
            in_type = target_node.input_socket(target_input)
            if not out_type.is_compatible(in_type):
                raise TypeMismatch(
                    out_type.name,
                    in_type.name,
                    source=source,
                    source_output=source_output,
                    target=target,
                    target_input=target_input,
                )
            if (target, target_input) in self._incoming:
                raise GraphConstructionError(
                    f"input {target_input!r} of node {target} is already connected",
                    {"target": target, "target_input": target_input},
                )
            if out_type.is_pulse and self._reaches(target, source):
                raise CyclicPulseGraph(source, target)
            conn = Connection(
                source=source,
                source_output=source_output,
                target=target,
                target_input=target_input,
                id=connection_id or str(uuid.uuid4()),
            )
            self._connections.append(conn)
            self._incoming[(target, target_input)] = conn
            self._outgoing.setdefault((source, source_output), []).append(conn)
            if out_type.is_pulse:
                self._pulse_successors[source].add(target)
            return conn

    def add_trigger(self, node_id: str) -> None:
        with self._lock:
            self._ensure_mutable()
            node = self._require_node(node_id)
            if not node.pulse_outputs:
                raise GraphConstructionError(
                    f"node {node_id} has no pulse output and cannot be a trigger",
                    {"node_id": node_id},
                )
            if node_id not in self._triggers:
                self._triggers.append(node_id)

    def freeze(self) -> "Graph":
        with self._lock:
            self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def _ensure_mutable(self) -> None:
        if self._frozen:
            raise GraphConstructionError("graph is frozen; it cannot change once a run starts")

    def _require_node(self, node_id: str) -> Node:
        node = self._nodes.get(node_id)
        if node is None:
            raise UnknownSocket(f"unknown node {node_id!r}", {"node_id": node_id})
        return node

    def _reaches(self, start: str, goal: str) -> bool:
        stack = [start]
        seen: Set[str] = set()
        while stack:
            current = stack.pop()
            if current == goal:
                return True
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self._pulse_successors.get(current, ()))
        return False

    # -- queries ---------------------------------------------------------

    def node(self, node_id: str) -> Node:
        return self._require_node(node_id)

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    @property
    def nodes(self) -> List[Node]:
        return list(self._nodes.values())

    @property
    def connections(self) -> List[Connection]:
        return list(self._connections)

    def incoming(self, node_id: str, input_name: str) -> Optional[Connection]:
        return self._incoming.get((node_id, input_name))

    def outgoing(self, node_id: str, output_name: str) -> List[Connection]:
        return list(self._outgoing.get((node_id, output_name), ()))

    @property
    def triggers(self) -> List[str]:
        """Designated triggers, else Trigger nodes, else pulse roots."""
        if self._triggers:
            return list(self._triggers)
        explicit = [n.id for n in self._nodes.values() if isinstance(n, TriggerNode)]
        if explicit:
            return explicit
        roots = []
        for node in self._nodes.values():
            if not node.pulse_outputs:
                continue
            if any(self._incoming.get((node.id, name)) for name in node.pulse_inputs):
                continue
            roots.append(node.id)
        return roots

    # -- documents -------------------------------------------------------

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Graph":
        """Build a graph from a stored ``{nodes, connections, triggers}`` document."""
        validate_document(document)
        graph = cls()
        for item in document.get("nodes", []):
            graph.add_node(create_node(item["type"], item["id"], item.get("data") or {}))
        for item in document.get("connections", []):
            graph.connect(
                item["source"],
                item["sourceOutput"],
                item["target"],
                item["targetInput"],
                connection_id=item.get("id"),
            )
        for trigger_id in document.get("triggers", []) or []:
            graph.add_trigger(trigger_id)
        logger.debug(
            "graph_built",
            nodes=len(graph._nodes),
            connections=len(graph._connections),
            triggers=graph.triggers,
        )
        return graph

    def to_document(self) -> Dict[str, Any]:
        return {
            "nodes": [
                {"id": n.id, "type": n.type_tag, "data": dict(n.data)} for n in self._nodes.values()
            ],
            "connections": [c.to_dict() for c in self._connections],
            "triggers": list(self._triggers),
        }

