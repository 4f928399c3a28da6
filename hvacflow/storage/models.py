from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional


@dataclass
class Workflow:
    id: str
    name: str
    graph: Dict[str, Any]
    description: Optional[str] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def new(
        cls,
        name: str,
        graph: Dict[str, Any],
        *,
        description: Optional[str] = None,
        is_active: bool = True,
    ) -> "Workflow":
        return cls(
            id=str(uuid.uuid4()),
            name=name,
            graph=graph,
            description=description,
            is_active=is_active,
        )


@dataclass
class WorkflowExecution:
    execution_id: str
    workflow_id: str
    status: str  # started | completed | failed
    started_at: datetime
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    variables: Dict[str, Any] = field(default_factory=dict)
    run_ids: List[str] = field(default_factory=list)


@dataclass
class NodeExecution:
    execution_id: str
    workflow_id: str
    run_id: str
    node_id: str
    status: str
    timestamp: datetime
    error_message: Optional[str] = None


@dataclass
class Task:
    id: str
    description: str
    status: str = "pending"
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class DynamicLink:
    id: str
    token: str
    link_type: str
    title: str
    expires_at: datetime
    resource_id: Optional[str] = None
    description: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    is_active: bool = True
    access_count: int = 0
    last_accessed_at: Optional[datetime] = None
    password_hash: Optional[str] = None
    metadata: Dict[str, Any] | None = None
    custom_slug: Optional[str] = None

    @property
    def password_protected(self) -> bool:
        return self.password_hash is not None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.utcnow()) >= self.expires_at

    @classmethod
    def new(
        cls,
        link_type: str,
        title: str,
        *,
        expires_in_days: int,
        token: Optional[str] = None,
        **kwargs: Any,
    ) -> "DynamicLink":
        now = datetime.utcnow()
        return cls(
            id=str(uuid.uuid4()),
            token=token or str(uuid.uuid4()),
            link_type=link_type,
            title=title,
            created_at=now,
            expires_at=now + timedelta(days=expires_in_days),
            **kwargs,
        )


@dataclass
class Notification:
    id: str
    workflow_id: str
    workflow_name: str
    execution_id: str
    message: str
    type: str  # success | error
    created_at: datetime = field(default_factory=datetime.utcnow)
    read: bool = False
