from __future__ import annotations

from typing import Any, Dict, List

from jsonschema import Draft202012Validator

from hvacflow.engine.errors import GraphConstructionError


_WORKFLOW_DOCUMENT_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "properties": {
        "nodes": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string", "minLength": 1},
                    "type": {"type": "string", "minLength": 1},
                    "data": {"type": "object"},
                    "position": {"type": "object"},
                },
                "required": ["id", "type"],
            },
        },
        "connections": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string"},
                    "source": {"type": "string", "minLength": 1},
                    "sourceOutput": {"type": "string", "minLength": 1},
                    "target": {"type": "string", "minLength": 1},
                    "targetInput": {"type": "string", "minLength": 1},
                },
                "required": ["source", "sourceOutput", "target", "targetInput"],
            },
        },
        "triggers": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["nodes"],
    "additionalProperties": True,
}


class InvalidGraphDocument(GraphConstructionError):
    def __init__(self, message: str, errors: List[str]):
        super().__init__(message, {"errors": errors})
        self.errors = errors


def validate_document(document: Any) -> None:
    """Check a stored workflow graph document before it is built."""
    validator = Draft202012Validator(_WORKFLOW_DOCUMENT_SCHEMA)
    errors = sorted(validator.iter_errors(document), key=lambda e: [str(p) for p in e.path])
    if errors:
        messages = []
        for err in errors:
            location = "/".join(str(p) for p in err.path)
            messages.append(f"{location}: {err.message}" if location else err.message)
        raise InvalidGraphDocument("workflow graph validation failed", messages)
