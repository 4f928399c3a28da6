from __future__ import annotations

from typing import Optional

from hvacflow.logging import get_logger
from hvacflow.storage.errors import RecordStoreError
from hvacflow.storage.memory import MemoryStore
from hvacflow.storage.models import Task
from hvacflow.service.errors import DownstreamError

logger = get_logger(__name__)


class TaskTracker:
    """Creates follow-up tasks in the CRM task list."""

    def __init__(self, store: MemoryStore) -> None:
        self.store = store

    def create_task(
        self,
        description: str,
        *,
        assignee: Optional[str] = None,
        due_date: Optional[str] = None,
    ) -> Task:
        # assignee and due date are accepted from workflows but the task list
        # only records the description
        try:
            task = self.store.create_task(description)
        except RecordStoreError as exc:
            raise DownstreamError("failed to create task", detail=exc.detail) from exc
        logger.info(
            "task_created",
            task_id=task.id,
            assignee=assignee,
            due_date=due_date,
        )
        return task
