from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Maximum nested JSON depth accepted in node data and workflow variables
MAX_JSON_DEPTH = 20
MAX_ARRAY_ITEMS = 1000


def _validate_json_depth(obj: Any, max_depth: int = MAX_JSON_DEPTH, current_depth: int = 0) -> None:
    """Reject deeply nested or oversized JSON payloads."""
    if current_depth > max_depth:
        raise ValueError(f"JSON nesting depth exceeds maximum of {max_depth}")

    if isinstance(obj, dict):
        for value in obj.values():
            _validate_json_depth(value, max_depth, current_depth + 1)
    elif isinstance(obj, list):
        if len(obj) > MAX_ARRAY_ITEMS:
            raise ValueError(f"Array length {len(obj)} exceeds maximum of {MAX_ARRAY_ITEMS}")
        for item in obj:
            _validate_json_depth(item, max_depth, current_depth + 1)


_VALID_ERROR_CODES = frozenset({
    "validation_error",
    "unsupported_operator",
    "unauthorized",
    "not_found",
    "conflict",
    "downstream_error",
    "server_error",
})


class ErrorBody(BaseModel):
    """JSON body of every error response."""

    error: str
    code: str = Field(..., description="Stable error code")
    details: Optional[Any] = None

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class _CamelPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, serialize_by_alias=True)


class ExecuteNodeRequest(_CamelPayload):
    node_id: str = Field(..., min_length=1, alias="nodeId", description="Node type tag")
    node_data: Dict[str, Any] = Field(default_factory=dict, alias="nodeData")

    @field_validator("node_data")
    @classmethod
    def _check_depth(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        _validate_json_depth(value)
        return value


class WorkflowCreateRequest(_CamelPayload):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    graph: Dict[str, Any]
    is_active: bool = Field(default=True, alias="isActive")

    @field_validator("graph")
    @classmethod
    def _check_depth(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        _validate_json_depth(value)
        return value


class WorkflowResponse(_CamelPayload):
    id: str
    name: str
    description: Optional[str] = None
    graph: Dict[str, Any]
    is_active: bool = Field(alias="isActive")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")


class WorkflowExecuteRequest(_CamelPayload):
    workflow_id: str = Field(..., min_length=1, alias="workflowId")
    variables: Dict[str, Any] = Field(default_factory=dict)
    trigger_id: Optional[str] = Field(default=None, alias="triggerId")

    @field_validator("variables")
    @classmethod
    def _check_depth(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        _validate_json_depth(value)
        return value


class ExecutionResponse(_CamelPayload):
    execution_id: str = Field(alias="executionId")
    workflow_id: str = Field(alias="workflowId")
    status: str
    started_at: datetime = Field(alias="startedAt")
    completed_at: Optional[datetime] = Field(default=None, alias="completedAt")
    error_message: Optional[str] = Field(default=None, alias="errorMessage")
    run_ids: List[str] = Field(default_factory=list, alias="runIds")


class NodeExecutionResponse(_CamelPayload):
    execution_id: str = Field(alias="executionId")
    run_id: str = Field(alias="runId")
    node_id: str = Field(alias="nodeId")
    status: str
    timestamp: datetime
    error_message: Optional[str] = Field(default=None, alias="errorMessage")


class NotificationResponse(_CamelPayload):
    id: str
    workflow_id: str = Field(alias="workflowId")
    workflow_name: str = Field(alias="workflowName")
    execution_id: str = Field(alias="executionId")
    message: str
    type: str
    created_at: datetime = Field(alias="createdAt")
    read: bool


class DynamicLinkResponse(_CamelPayload):
    token: str
    link_type: str = Field(alias="linkType")
    title: str
    is_active: bool = Field(alias="isActive")
    expires_at: datetime = Field(alias="expiresAt")


class WorkflowUpdateRequest(_CamelPayload):
    id: str = Field(..., min_length=1)
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    graph: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = Field(default=None, alias="isActive")

    @field_validator("graph")
    @classmethod
    def _check_depth(cls, value: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if value is not None:
            _validate_json_depth(value)
        return value


class EventTriggerRequest(_CamelPayload):
    event_type: str = Field(..., min_length=1, max_length=200, alias="eventType")
    event_data: Dict[str, Any] = Field(default_factory=dict, alias="eventData")

    @field_validator("event_data")
    @classmethod
    def _check_depth(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        _validate_json_depth(value)
        return value


class LinkCreateRequest(_CamelPayload):
    link_type: str = Field(..., min_length=1, alias="linkType")
    title: str = Field(..., min_length=1, max_length=500)
    resource_id: Optional[str] = Field(default=None, alias="resourceId")
    description: Optional[str] = Field(default=None, max_length=2000)
    expires_in_days: Optional[int] = Field(default=None, ge=1, le=3650, alias="expiresInDays")
    password: Optional[str] = Field(default=None, min_length=1, max_length=256)
    custom_slug: Optional[str] = Field(default=None, alias="customSlug")
    metadata: Optional[Dict[str, Any]] = None


class LinkCreatedResponse(_CamelPayload):
    token: str
    url: str
    full_url: str = Field(alias="fullUrl")
    expires_at: datetime = Field(alias="expiresAt")


class LinkAccessRequest(_CamelPayload):
    password: Optional[str] = None


class SharedLinkResponse(_CamelPayload):
    token: str
    link_type: str = Field(alias="linkType")
    title: str
    description: Optional[str] = None
    resource_id: Optional[str] = Field(default=None, alias="resourceId")
    expires_at: datetime = Field(alias="expiresAt")
    access_count: int = Field(alias="accessCount")
    metadata: Optional[Dict[str, Any]] = None
