from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class NodeStatus(str, Enum):
    WAITING = "waiting"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class NodeState:
    status: NodeStatus = NodeStatus.WAITING
    error: Optional[str] = None
    error_code: Optional[str] = None


@dataclass
class LogEntry:
    node_id: str
    status: NodeStatus
    timestamp: datetime
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "error": self.error,
        }


@dataclass
class ExecutionRun:
    """State of a single traversal from one trigger.

    The run owns everything that changes while a graph executes: node
    statuses, the per-node output memo and the execution log. Graphs and
    nodes stay untouched, so concurrent runs never see each other's values.
    """

    trigger_id: str
    variables: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: RunState = RunState.IDLE
    node_states: Dict[str, NodeState] = field(default_factory=dict)
    outputs: Dict[Tuple[str, str], Any] = field(default_factory=dict)
    in_progress: List[str] = field(default_factory=list)
    produced: Set[str] = field(default_factory=set)
    visited: Set[str] = field(default_factory=set)
    log: List[LogEntry] = field(default_factory=list)
    steps: int = 0
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def status_of(self, node_id: str) -> NodeStatus:
        state = self.node_states.get(node_id)
        return state.status if state else NodeStatus.WAITING

    def mark(
        self,
        node_id: str,
        status: NodeStatus,
        error: Optional[str] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.node_states[node_id] = NodeState(status=status, error=error, error_code=error_code)
        self.log.append(
            LogEntry(node_id=node_id, status=status, timestamp=datetime.utcnow(), error=error)
        )

    def has_output(self, node_id: str, output_name: str) -> bool:
        return (node_id, output_name) in self.outputs

    def output(self, node_id: str, output_name: str) -> Any:
        return self.outputs.get((node_id, output_name))

    def store_output(self, node_id: str, output_name: str, value: Any) -> None:
        self.outputs[(node_id, output_name)] = value

    def node_outputs(self, node_id: str) -> Dict[str, Any]:
        return {name: value for (nid, name), value in self.outputs.items() if nid == node_id}

    @property
    def failed_nodes(self) -> Dict[str, Optional[str]]:
        return {
            node_id: state.error
            for node_id, state in self.node_states.items()
            if state.status == NodeStatus.FAILED
        }

    @property
    def executed_nodes(self) -> List[str]:
        return [
            node_id
            for node_id, state in self.node_states.items()
            if state.status in (NodeStatus.COMPLETED, NodeStatus.FAILED)
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.id,
            "trigger_id": self.trigger_id,
            "state": self.state.value,
            "error": self.error,
            "steps": self.steps,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "nodes": {
                node_id: {"status": state.status.value, "error": state.error}
                for node_id, state in self.node_states.items()
            },
            "log": [entry.to_dict() for entry in self.log],
        }
