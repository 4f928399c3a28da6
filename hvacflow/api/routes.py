from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Path, Query

from hvacflow.api.schemas import (
    DynamicLinkResponse,
    EventTriggerRequest,
    ExecuteNodeRequest,
    ExecutionResponse,
    LinkAccessRequest,
    LinkCreatedResponse,
    LinkCreateRequest,
    NodeExecutionResponse,
    NotificationResponse,
    SharedLinkResponse,
    WorkflowCreateRequest,
    WorkflowExecuteRequest,
    WorkflowResponse,
    WorkflowUpdateRequest,
)
from hvacflow.logging import get_logger
from hvacflow.service.errors import NotFoundError, ServiceError, ValidationError
from hvacflow.service.runtime import get_runtime
from hvacflow.storage.models import Workflow

logger = get_logger(__name__)

router = APIRouter(prefix="/api")


def _workflow_response(workflow: Workflow) -> WorkflowResponse:
    return WorkflowResponse(
        id=workflow.id,
        name=workflow.name,
        description=workflow.description,
        graph=workflow.graph,
        is_active=workflow.is_active,
        created_at=workflow.created_at,
        updated_at=workflow.updated_at,
    )


@router.post("/automation/execute", tags=["automation"])
async def execute_node(body: ExecuteNodeRequest) -> Dict[str, Any]:
    """Run a single node action by type tag, outside of any workflow."""
    runtime = get_runtime()
    result = await runtime.dispatcher.dispatch(body.node_id, body.node_data)
    if not result.success:
        raise ServiceError(
            result.error or "node execution failed",
            status_code=result.status_code,
            error_code=result.error_code,
            detail=result.detail,
        )
    return {"success": True, **result.payload}


@router.post(
    "/automation/workflows",
    response_model=WorkflowResponse,
    status_code=201,
    tags=["workflows"],
)
async def create_workflow(body: WorkflowCreateRequest) -> WorkflowResponse:
    runtime = get_runtime()
    workflow = runtime.workflows.save_workflow(
        body.name,
        body.graph,
        description=body.description,
        is_active=body.is_active,
    )
    return _workflow_response(workflow)


@router.get(
    "/automation/workflows",
    response_model=List[WorkflowResponse],
    tags=["workflows"],
)
async def list_workflows(
    active_only: bool = Query(False, alias="activeOnly"),
) -> List[WorkflowResponse]:
    runtime = get_runtime()
    return [_workflow_response(w) for w in runtime.workflows.list_workflows(active_only=active_only)]


@router.put(
    "/automation/workflows",
    response_model=WorkflowResponse,
    tags=["workflows"],
)
async def update_workflow(body: WorkflowUpdateRequest) -> WorkflowResponse:
    runtime = get_runtime()
    workflow = runtime.workflows.update_workflow(
        body.id,
        name=body.name,
        description=body.description,
        graph=body.graph,
        is_active=body.is_active,
    )
    return _workflow_response(workflow)


@router.post("/automation/workflows/execute", tags=["workflows"])
async def execute_workflow(body: WorkflowExecuteRequest) -> Dict[str, Any]:
    runtime = get_runtime()
    result = await runtime.workflows.execute(
        body.workflow_id, body.variables, trigger_id=body.trigger_id
    )
    return result.to_dict()


@router.get(
    "/automation/workflows/executions",
    response_model=List[ExecutionResponse],
    tags=["workflows"],
)
async def list_executions(
    workflow_id: Optional[str] = Query(None, alias="workflowId"),
    limit: int = Query(50, ge=1, le=500),
) -> List[ExecutionResponse]:
    runtime = get_runtime()
    return [
        ExecutionResponse(
            execution_id=e.execution_id,
            workflow_id=e.workflow_id,
            status=e.status,
            started_at=e.started_at,
            completed_at=e.completed_at,
            error_message=e.error_message,
            run_ids=e.run_ids,
        )
        for e in runtime.store.list_executions(workflow_id=workflow_id, limit=limit)
    ]


@router.delete("/automation/workflows/executions", tags=["workflows"])
async def delete_execution(
    execution_id: str = Query(..., alias="executionId", min_length=1),
) -> Dict[str, Any]:
    runtime = get_runtime()
    runtime.workflows.delete_execution(execution_id)
    return {"success": True}


@router.get(
    "/automation/workflows/executions/nodes",
    response_model=List[NodeExecutionResponse],
    tags=["workflows"],
)
async def list_node_executions(
    execution_id: str = Query(..., alias="executionId", min_length=1),
) -> List[NodeExecutionResponse]:
    runtime = get_runtime()
    if not runtime.store.get_execution(execution_id):
        raise NotFoundError("execution not found", detail={"execution_id": execution_id})
    return [
        NodeExecutionResponse(
            execution_id=n.execution_id,
            run_id=n.run_id,
            node_id=n.node_id,
            status=n.status,
            timestamp=n.timestamp,
            error_message=n.error_message,
        )
        for n in runtime.store.list_node_executions(execution_id)
    ]


@router.get(
    "/automation/workflows/{workflow_id}",
    response_model=WorkflowResponse,
    tags=["workflows"],
)
async def get_workflow(workflow_id: str = Path(..., min_length=1)) -> WorkflowResponse:
    runtime = get_runtime()
    return _workflow_response(runtime.workflows.get_workflow(workflow_id))


@router.get(
    "/automation/notifications",
    response_model=List[NotificationResponse],
    tags=["automation"],
)
async def list_notifications(
    unread_only: bool = Query(False, alias="unreadOnly"),
    limit: int = Query(50, ge=1, le=500),
) -> List[NotificationResponse]:
    runtime = get_runtime()
    return [
        NotificationResponse(
            id=n.id,
            workflow_id=n.workflow_id,
            workflow_name=n.workflow_name,
            execution_id=n.execution_id,
            message=n.message,
            type=n.type,
            created_at=n.created_at,
            read=n.read,
        )
        for n in runtime.store.list_notifications(unread_only=unread_only, limit=limit)
    ]


@router.post(
    "/dynamic-links/{token}/deactivate",
    response_model=DynamicLinkResponse,
    tags=["links"],
)
async def deactivate_link(token: str = Path(..., min_length=1)) -> DynamicLinkResponse:
    runtime = get_runtime()
    link = runtime.links.deactivate(token)
    return DynamicLinkResponse(
        token=link.token,
        link_type=link.link_type,
        title=link.title,
        is_active=link.is_active,
        expires_at=link.expires_at,
    )


@router.patch("/automation/notifications", tags=["automation"])
async def mark_notifications_read(
    notification_id: Optional[str] = Query(None, alias="id", min_length=1),
    mark_all: bool = Query(False, alias="markAll"),
) -> Dict[str, Any]:
    runtime = get_runtime()
    if mark_all:
        count = runtime.workflows.mark_all_notifications_read()
        return {"success": True, "message": "All notifications marked as read", "updated": count}
    if not notification_id:
        raise ValidationError("Notification ID is required")
    runtime.workflows.mark_notification_read(notification_id)
    return {"success": True, "message": "Notification marked as read"}


@router.delete("/automation/notifications", tags=["automation"])
async def delete_notification(
    notification_id: str = Query(..., alias="id", min_length=1),
) -> Dict[str, Any]:
    runtime = get_runtime()
    runtime.workflows.delete_notification(notification_id)
    return {"success": True, "message": "Notification deleted"}


@router.post("/automation/triggers/events", tags=["automation"])
async def trigger_event(body: EventTriggerRequest) -> Dict[str, Any]:
    """Start the active workflows listening for this event type."""
    runtime = get_runtime()
    results = await runtime.workflows.process_event(body.event_type, body.event_data)
    return {"success": True, "executions": [r.to_dict() for r in results]}


@router.post("/automation/triggers/schedule", tags=["automation"])
async def run_due_schedules() -> Dict[str, Any]:
    """Run every schedule trigger that is due; meant to be called by a periodic job."""
    runtime = get_runtime()
    results = await runtime.workflows.process_schedules()
    return {"success": True, "executions": [r.to_dict() for r in results]}


@router.post(
    "/dynamic-links",
    response_model=LinkCreatedResponse,
    status_code=201,
    tags=["links"],
)
async def create_link(body: LinkCreateRequest) -> LinkCreatedResponse:
    runtime = get_runtime()
    link = runtime.links.create_link(
        link_type=body.link_type,
        title=body.title,
        description=body.description,
        expires_in_days=body.expires_in_days,
        password=body.password,
        resource_id=body.resource_id,
        custom_slug=body.custom_slug,
        metadata=body.metadata,
    )
    path = runtime.links.link_path(link.token)
    return LinkCreatedResponse(
        token=link.token,
        url=path,
        full_url=runtime.links.full_url(path),
        expires_at=link.expires_at,
    )


@router.post(
    "/share/{token}",
    response_model=SharedLinkResponse,
    tags=["links"],
)
async def open_shared_link(
    token: str = Path(..., min_length=1),
    body: Optional[LinkAccessRequest] = None,
) -> SharedLinkResponse:
    """Resolve a shared link for a visitor, checking expiry and password."""
    runtime = get_runtime()
    link = runtime.links.open_link(token, password=body.password if body else None)
    return SharedLinkResponse(
        token=link.token,
        link_type=link.link_type,
        title=link.title,
        description=link.description,
        resource_id=link.resource_id,
        expires_at=link.expires_at,
        access_count=link.access_count,
        metadata=link.metadata,
    )
