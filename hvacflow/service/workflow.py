from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from hvacflow.engine.controlflow import ControlFlowExecutor
from hvacflow.engine.errors import GraphConstructionError
from hvacflow.engine.graph import Graph
from hvacflow.engine.nodes import ActionDispatcher, TriggerNode
from hvacflow.engine.run import ExecutionRun, NodeStatus, RunState
from hvacflow.logging import execution_context, get_logger
from hvacflow.service.errors import (
    ConflictError,
    NotFoundError,
    ServiceError,
    ValidationError,
)
from hvacflow.storage.memory import MemoryStore
from hvacflow.storage.models import (
    NodeExecution,
    Notification,
    Workflow,
    WorkflowExecution,
)

logger = get_logger(__name__)

# execution log vocabulary used by the CRM history views
_NODE_LOG_STATUS = {
    NodeStatus.RUNNING: "started",
    NodeStatus.COMPLETED: "completed",
    NodeStatus.FAILED: "failed",
}


@dataclass
class WorkflowExecutionResult:
    execution_id: str
    workflow_id: str
    success: bool
    started_at: datetime
    finished_at: datetime
    runs: List[ExecutionRun] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "executionId": self.execution_id,
            "workflowId": self.workflow_id,
            "startTime": self.started_at.isoformat(),
            "endTime": self.finished_at.isoformat(),
            "runs": [run.to_dict() for run in self.runs],
            "error": self.error,
        }


class WorkflowService:
    """Stores workflow documents and runs them through the engine.

    Each execution gets one execution record (started, then completed or
    failed), one node-execution record per log entry of every run, and a
    success or error notification.
    """

    def __init__(
        self,
        store: MemoryStore,
        dispatcher: ActionDispatcher,
        *,
        max_run_steps: Optional[int] = None,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.max_run_steps = max_run_steps

    def save_workflow(
        self,
        name: str,
        graph: Dict[str, Any],
        *,
        description: Optional[str] = None,
        is_active: bool = True,
    ) -> Workflow:
        if not name or not name.strip():
            raise ValidationError("workflow name is required")
        # rejects invalid documents before anything is stored
        Graph.from_document(graph)
        workflow = self.store.create_workflow(
            Workflow.new(name.strip(), graph, description=description, is_active=is_active)
        )
        logger.info("workflow_saved", workflow_id=workflow.id, nodes=len(graph.get("nodes", [])))
        return workflow

    def update_workflow(
        self,
        workflow_id: str,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        graph: Optional[Dict[str, Any]] = None,
        is_active: Optional[bool] = None,
    ) -> Workflow:
        self.get_workflow(workflow_id)
        changes: Dict[str, Any] = {}
        if name is not None:
            if not name.strip():
                raise ValidationError("workflow name is required")
            changes["name"] = name.strip()
        if description is not None:
            changes["description"] = description
        if graph is not None:
            Graph.from_document(graph)
            changes["graph"] = graph
        if is_active is not None:
            changes["is_active"] = is_active
        workflow = self.store.update_workflow(workflow_id, **changes)
        logger.info("workflow_updated", workflow_id=workflow_id, fields=sorted(changes))
        return workflow

    def set_active(self, workflow_id: str, is_active: bool) -> Workflow:
        return self.update_workflow(workflow_id, is_active=is_active)

    def get_workflow(self, workflow_id: str) -> Workflow:
        workflow = self.store.get_workflow(workflow_id)
        if not workflow:
            raise NotFoundError("workflow not found", detail={"workflow_id": workflow_id})
        return workflow

    def list_workflows(self, *, active_only: bool = False) -> List[Workflow]:
        return self.store.list_workflows(active_only=active_only)

    async def execute(
        self,
        workflow_id: str,
        variables: Optional[Dict[str, Any]] = None,
        *,
        trigger_id: Optional[str] = None,
    ) -> WorkflowExecutionResult:
        workflow = self.get_workflow(workflow_id)
        if not workflow.is_active:
            raise ConflictError("workflow is not active", detail={"workflow_id": workflow_id})

        execution = self.store.create_execution(
            WorkflowExecution(
                execution_id=str(uuid.uuid4()),
                workflow_id=workflow_id,
                status="started",
                started_at=datetime.utcnow(),
                variables=dict(variables or {}),
            )
        )
        logger.info(
            "workflow_execution_started",
            workflow_id=workflow_id,
            execution_id=execution.execution_id,
        )

        runs: List[ExecutionRun] = []
        error: Optional[str] = None
        try:
            graph = Graph.from_document(workflow.graph)
            triggers = [trigger_id] if trigger_id else graph.triggers
            if not triggers:
                raise ValidationError("No start nodes found in workflow")
            executor = ControlFlowExecutor(
                graph, dispatcher=self.dispatcher, max_steps=self.max_run_steps
            )
            with execution_context(
                workflow_id=workflow_id, execution_id=execution.execution_id
            ):
                for trigger in triggers:
                    run = await executor.execute(trigger, variables)
                    runs.append(run)
                    self._record_nodes(execution, run)
        except (GraphConstructionError, ValidationError) as exc:
            error = exc.message

        if error is None:
            aborted = [run for run in runs if run.state == RunState.FAILED]
            failed_nodes = {nid: err for run in runs for nid, err in run.failed_nodes.items()}
            if aborted:
                error = aborted[0].error
            elif failed_nodes:
                error = "; ".join(f"{nid}: {err}" for nid, err in failed_nodes.items())

        finished = datetime.utcnow()
        success = error is None
        self.store.update_execution(
            execution.execution_id,
            status="completed" if success else "failed",
            completed_at=finished,
            error_message=error,
            run_ids=[run.id for run in runs],
        )
        self._notify(workflow, execution.execution_id, error)
        logger.info(
            "workflow_execution_finished",
            workflow_id=workflow_id,
            execution_id=execution.execution_id,
            success=success,
            runs=len(runs),
        )
        return WorkflowExecutionResult(
            execution_id=execution.execution_id,
            workflow_id=workflow_id,
            success=success,
            started_at=execution.started_at,
            finished_at=finished,
            runs=runs,
            error=error,
        )

    # -- triggers --------------------------------------------------------

    async def process_event(
        self, event_type: str, event_data: Optional[Dict[str, Any]] = None
    ) -> List[WorkflowExecutionResult]:
        """Start every active workflow whose event trigger accepts this event.

        The event data becomes the run variables. A workflow that cannot run
        is logged and skipped so the remaining workflows still fire.
        """
        data = dict(event_data or {})
        results: List[WorkflowExecutionResult] = []
        for workflow, trigger in self._triggers_of_kind("event"):
            if not trigger.accepts_event(event_type, data):
                continue
            result = await self._fire(workflow, trigger, data)
            if result is not None:
                results.append(result)
        logger.info("event_processed", event_type=event_type, executions=len(results))
        return results

    async def process_schedules(
        self, now: Optional[datetime] = None
    ) -> List[WorkflowExecutionResult]:
        """Run the schedule triggers that are due and stamp their ``lastExecuted``."""
        now = now or datetime.utcnow()
        results: List[WorkflowExecutionResult] = []
        for workflow, trigger in self._triggers_of_kind("schedule"):
            if not trigger.schedule_due(now):
                continue
            result = await self._fire(workflow, trigger, {})
            if result is None:
                continue
            results.append(result)
            self._stamp_last_executed(workflow.id, trigger.id, now)
        logger.info("schedules_processed", executions=len(results))
        return results

    def _triggers_of_kind(self, kind: str) -> List[Tuple[Workflow, TriggerNode]]:
        matches: List[Tuple[Workflow, TriggerNode]] = []
        for workflow in self.store.list_workflows(active_only=True):
            try:
                graph = Graph.from_document(workflow.graph)
            except GraphConstructionError as exc:
                logger.warning("workflow_unloadable", workflow_id=workflow.id, error=exc.message)
                continue
            for node in graph.nodes:
                if isinstance(node, TriggerNode) and node.kind == kind:
                    matches.append((workflow, node))
        return matches

    async def _fire(
        self, workflow: Workflow, trigger: TriggerNode, variables: Dict[str, Any]
    ) -> Optional[WorkflowExecutionResult]:
        try:
            return await self.execute(workflow.id, variables, trigger_id=trigger.id)
        except ServiceError as exc:
            logger.warning(
                "trigger_fire_failed",
                workflow_id=workflow.id,
                trigger_id=trigger.id,
                error=exc.message,
            )
            return None

    def _stamp_last_executed(self, workflow_id: str, trigger_id: str, now: datetime) -> None:
        workflow = self.store.get_workflow(workflow_id)
        if not workflow:
            return
        graph = copy.deepcopy(workflow.graph)
        for item in graph.get("nodes", []):
            if item.get("id") == trigger_id:
                item.setdefault("data", {})["lastExecuted"] = now.isoformat()
        self.store.update_workflow(workflow_id, graph=graph)

    # -- execution history and notifications -----------------------------

    def delete_execution(self, execution_id: str) -> None:
        if not self.store.delete_execution(execution_id):
            raise NotFoundError("execution not found", detail={"execution_id": execution_id})
        logger.info("workflow_execution_deleted", execution_id=execution_id)

    def mark_notification_read(self, notification_id: str) -> Notification:
        notification = self.store.update_notification(notification_id, read=True)
        if not notification:
            raise NotFoundError(
                "notification not found", detail={"notification_id": notification_id}
            )
        return notification

    def mark_all_notifications_read(self) -> int:
        return self.store.mark_all_notifications_read()

    def delete_notification(self, notification_id: str) -> None:
        if not self.store.delete_notification(notification_id):
            raise NotFoundError(
                "notification not found", detail={"notification_id": notification_id}
            )

    def _record_nodes(self, execution: WorkflowExecution, run: ExecutionRun) -> None:
        self.store.add_node_executions(
            NodeExecution(
                execution_id=execution.execution_id,
                workflow_id=execution.workflow_id,
                run_id=run.id,
                node_id=entry.node_id,
                status=_NODE_LOG_STATUS.get(entry.status, entry.status.value),
                timestamp=entry.timestamp,
                error_message=entry.error,
            )
            for entry in run.log
        )

    def _notify(self, workflow: Workflow, execution_id: str, error: Optional[str]) -> None:
        if error is None:
            message = f'Workflow "{workflow.name}" completed successfully'
        else:
            message = f'Workflow "{workflow.name}" failed: {error}'
        self.store.create_notification(
            Notification(
                id=str(uuid.uuid4()),
                workflow_id=workflow.id,
                workflow_name=workflow.name,
                execution_id=execution_id,
                message=message,
                type="success" if error is None else "error",
            )
        )
