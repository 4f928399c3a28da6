from __future__ import annotations

import copy
import threading
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from hvacflow.logging import get_logger
from hvacflow.storage.errors import ConstraintViolation, RecordStoreError
from hvacflow.storage.models import (
    DynamicLink,
    NodeExecution,
    Notification,
    Task,
    Workflow,
    WorkflowExecution,
)


class MemoryStore:
    """In-memory backing store for workflows, execution logs and CRM records.

    Records are plain dicts grouped by collection name, standing in for the
    hosted relational store the CRM pages write to.
    """

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.records: Dict[str, List[Dict[str, Any]]] = {}
        self.workflows: Dict[str, Workflow] = {}
        self.executions: Dict[str, WorkflowExecution] = {}
        self.node_executions: Dict[str, List[NodeExecution]] = {}
        self.tasks: Dict[str, Task] = {}
        self.dynamic_links: Dict[str, DynamicLink] = {}
        self.notifications: List[Notification] = []
        # RLock so helpers can nest acquisitions
        self._data_lock = threading.RLock()

    # -- records ---------------------------------------------------------

    def seed_records(self, collection: str, rows: Iterable[Dict[str, Any]]) -> None:
        with self._data_lock:
            self.records.setdefault(collection, []).extend(dict(r) for r in rows)

    def query_records(
        self,
        collection: str,
        *,
        fields: Optional[Sequence[str]] = None,
        filters: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Return copies of matching records, projected onto ``fields``.

        Unknown collections yield an empty list.
        """
        if not isinstance(collection, str) or not collection:
            raise RecordStoreError(
                "collection name must be a non-empty string",
                detail={"collection": collection},
            )
        if limit is not None and limit < 0:
            raise RecordStoreError("limit must be non-negative", detail={"limit": limit})
        with self._data_lock:
            rows = self.records.get(collection, [])
            matched: List[Dict[str, Any]] = []
            for row in rows:
                if filters and any(row.get(k) != v for k, v in filters.items()):
                    continue
                if fields:
                    matched.append({f: copy.deepcopy(row.get(f)) for f in fields})
                else:
                    matched.append(copy.deepcopy(row))
                if limit is not None and len(matched) >= limit:
                    break
            return matched

    # -- workflows -------------------------------------------------------

    def create_workflow(self, workflow: Workflow) -> Workflow:
        with self._data_lock:
            if workflow.id in self.workflows:
                raise ConstraintViolation(
                    "workflow already exists", detail={"workflow_id": workflow.id}
                )
            self.workflows[workflow.id] = workflow
            return workflow

    def update_workflow(self, workflow_id: str, **changes: Any) -> Optional[Workflow]:
        with self._data_lock:
            current = self.workflows.get(workflow_id)
            if not current:
                return None
            updated = replace(current, updated_at=datetime.utcnow(), **changes)
            self.workflows[workflow_id] = updated
            return updated

    def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        with self._data_lock:
            return self.workflows.get(workflow_id)

    def list_workflows(self, *, active_only: bool = False) -> List[Workflow]:
        with self._data_lock:
            items = list(self.workflows.values())
        if active_only:
            items = [w for w in items if w.is_active]
        return sorted(items, key=lambda w: w.created_at)

    # -- execution logs --------------------------------------------------

    def create_execution(self, execution: WorkflowExecution) -> WorkflowExecution:
        with self._data_lock:
            self.executions[execution.execution_id] = execution
            self.node_executions.setdefault(execution.execution_id, [])
            return execution

    def update_execution(self, execution_id: str, **changes: Any) -> WorkflowExecution:
        with self._data_lock:
            current = self.executions.get(execution_id)
            if not current:
                raise RecordStoreError(
                    "execution not found", detail={"execution_id": execution_id}
                )
            updated = replace(current, **changes)
            self.executions[execution_id] = updated
            return updated

    def get_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        with self._data_lock:
            return self.executions.get(execution_id)

    def list_executions(
        self, *, workflow_id: Optional[str] = None, limit: int = 50
    ) -> List[WorkflowExecution]:
        with self._data_lock:
            items = list(self.executions.values())
        if workflow_id:
            items = [e for e in items if e.workflow_id == workflow_id]
        items.sort(key=lambda e: e.started_at, reverse=True)
        return items[:limit]

    def delete_execution(self, execution_id: str) -> bool:
        with self._data_lock:
            if execution_id not in self.executions:
                return False
            # node logs go first, they reference the execution
            self.node_executions.pop(execution_id, None)
            del self.executions[execution_id]
            return True

    def add_node_executions(self, records: Iterable[NodeExecution]) -> None:
        with self._data_lock:
            for record in records:
                self.node_executions.setdefault(record.execution_id, []).append(record)

    def list_node_executions(self, execution_id: str) -> List[NodeExecution]:
        with self._data_lock:
            return list(self.node_executions.get(execution_id, []))

    # -- tasks -----------------------------------------------------------

    def create_task(self, description: str) -> Task:
        task = Task(id=str(uuid.uuid4()), description=description)
        with self._data_lock:
            self.tasks[task.id] = task
        return task

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._data_lock:
            return self.tasks.get(task_id)

    # -- dynamic links ---------------------------------------------------

    def create_dynamic_link(self, link: DynamicLink) -> DynamicLink:
        with self._data_lock:
            if link.token in self.dynamic_links:
                raise ConstraintViolation(
                    "dynamic link token already in use", detail={"token": link.token}
                )
            self.dynamic_links[link.token] = link
            return link

    def get_dynamic_link(self, token: str) -> Optional[DynamicLink]:
        with self._data_lock:
            return self.dynamic_links.get(token)

    def update_dynamic_link(self, token: str, **changes: Any) -> Optional[DynamicLink]:
        with self._data_lock:
            current = self.dynamic_links.get(token)
            if not current:
                return None
            updated = replace(current, **changes)
            self.dynamic_links[token] = updated
            return updated

    # -- notifications ---------------------------------------------------

    def create_notification(self, notification: Notification) -> Notification:
        with self._data_lock:
            self.notifications.append(notification)
            return notification

    def list_notifications(
        self, *, unread_only: bool = False, limit: int = 50
    ) -> List[Notification]:
        with self._data_lock:
            items = list(self.notifications)
        if unread_only:
            items = [n for n in items if not n.read]
        items.sort(key=lambda n: n.created_at, reverse=True)
        return items[:limit]

    def update_notification(self, notification_id: str, **changes: Any) -> Optional[Notification]:
        with self._data_lock:
            for index, current in enumerate(self.notifications):
                if current.id == notification_id:
                    updated = replace(current, **changes)
                    self.notifications[index] = updated
                    return updated
            return None

    def mark_all_notifications_read(self) -> int:
        with self._data_lock:
            unread = [i for i, n in enumerate(self.notifications) if not n.read]
            for index in unread:
                self.notifications[index] = replace(self.notifications[index], read=True)
            return len(unread)

    def delete_notification(self, notification_id: str) -> bool:
        with self._data_lock:
            remaining = [n for n in self.notifications if n.id != notification_id]
            deleted = len(remaining) != len(self.notifications)
            self.notifications = remaining
            return deleted
