from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Dict, List

from hvacflow.engine.errors import UnknownSocket


@dataclass(frozen=True)
class SocketType:
    """A typed plug kind. Two sockets connect only if their names match."""

    name: str

    @property
    def is_pulse(self) -> bool:
        return self.name == EXEC_SOCKET_NAME

    def is_compatible(self, other: "SocketType") -> bool:
        return self.name == other.name

    def empty_value(self) -> Any:
        return _EMPTY_VALUES.get(self.name)


EXEC_SOCKET_NAME = "exec"

# Value a data socket resolves to when its producer failed or never ran
_EMPTY_VALUES: Dict[str, Any] = {
    "text": "",
    "string": "",
    "json": None,
    "number": None,
    "boolean": False,
}


class SocketTypeRegistry:
    """Named socket types; registering an existing name returns the same type."""

    def __init__(self) -> None:
        self._types: Dict[str, SocketType] = {}
        self._lock = threading.Lock()

    def register(self, type_name: str) -> SocketType:
        if not isinstance(type_name, str) or not type_name.strip():
            raise ValueError("socket type name must be a non-empty string")
        key = type_name.strip().lower()
        with self._lock:
            existing = self._types.get(key)
            if existing is None:
                existing = SocketType(key)
                self._types[key] = existing
            return existing

    def get(self, type_name: str) -> SocketType:
        socket = self._types.get((type_name or "").strip().lower())
        if socket is None:
            raise UnknownSocket(
                f"unknown socket type {type_name!r}", {"socket_type": type_name}
            )
        return socket

    def names(self) -> List[str]:
        return sorted(self._types)

    def __contains__(self, type_name: object) -> bool:
        return isinstance(type_name, str) and type_name.strip().lower() in self._types


default_registry = SocketTypeRegistry()

EXEC = default_registry.register(EXEC_SOCKET_NAME)
TEXT = default_registry.register("text")
JSON = default_registry.register("json")
BOOLEAN = default_registry.register("boolean")
NUMBER = default_registry.register("number")
STRING = default_registry.register("string")


def register(type_name: str) -> SocketType:
    return default_registry.register(type_name)
