from __future__ import annotations

from typing import Any, Dict, Optional, Sequence


class EngineError(Exception):
    """Base class for automation engine failures."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class GraphConstructionError(EngineError):
    """Graph rejected before any run starts."""


class TypeMismatch(GraphConstructionError):
    def __init__(self, source_type: str, target_type: str, **detail: Any) -> None:
        super().__init__(
            f"cannot connect {source_type} output to {target_type} input",
            {"source_type": source_type, "target_type": target_type, **detail},
        )


class CyclicPulseGraph(GraphConstructionError):
    def __init__(self, source: str, target: str) -> None:
        super().__init__(
            f"pulse connection {source} -> {target} would create a cycle",
            {"source": source, "target": target},
        )


class UnknownSocket(GraphConstructionError):
    pass


class UnknownNodeType(GraphConstructionError):
    pass


class RunError(EngineError):
    """Failure raised while a run is in progress."""


class CyclicDependency(RunError):
    def __init__(self, node_id: str, path: Sequence[str]) -> None:
        chain = " -> ".join([*path, node_id])
        super().__init__(
            f"cyclic data dependency: {chain}",
            {"node_id": node_id, "path": list(path)},
        )
        self.node_id = node_id
        self.path = list(path)


class NotProducible(RunError):
    def __init__(self, node_id: str, output_name: str, reason: str = "") -> None:
        message = f"node {node_id} cannot produce output {output_name!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, {"node_id": node_id, "output": output_name})


class MultipleForward(RunError):
    def __init__(self, node_id: str, outputs: Sequence[str]) -> None:
        super().__init__(
            f"node {node_id} forwarded more than once ({', '.join(outputs)})",
            {"node_id": node_id, "outputs": list(outputs)},
        )


class NodeActionError(RunError):
    """A node's action reported failure."""

    def __init__(
        self,
        message: str,
        *,
        error_code: str = "server_error",
        status_code: int = 500,
        detail: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, detail)
        self.error_code = error_code
        self.status_code = status_code


__all__ = [
    "EngineError",
    "GraphConstructionError",
    "TypeMismatch",
    "CyclicPulseGraph",
    "UnknownSocket",
    "UnknownNodeType",
    "RunError",
    "CyclicDependency",
    "NotProducible",
    "MultipleForward",
    "NodeActionError",
]
