"""Node action dispatcher.

Every node type that performs a side effect has exactly one handler here,
registered under its type tag together with the pydantic model its
configuration must satisfy. ``dispatch`` never raises: validation problems,
collaborator failures and unexpected exceptions all come back as a failed
``NodeResult`` carrying a stable error code and HTTP status.
"""

from __future__ import annotations

import operator as _op
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Type, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from hvacflow.logging import get_logger, sanitize_error_message
from hvacflow.service.ai import AIService
from hvacflow.service.email import EmailService
from hvacflow.service.errors import (
    DownstreamError,
    ServerError,
    ServiceError,
    UnsupportedOperatorError,
    ValidationError,
)
from hvacflow.service.links import LinkService
from hvacflow.service.tasks import TaskTracker
from hvacflow.service.time_conditions import evaluate_time_condition, parse_reference
from hvacflow.storage.errors import RecordStoreError
from hvacflow.storage.memory import MemoryStore

logger = get_logger(__name__)


@dataclass
class NodeResult:
    success: bool
    payload: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    error_code: Optional[str] = None
    status_code: int = 200
    detail: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, exc: ServiceError) -> "NodeResult":
        return cls(
            success=False,
            error=exc.message,
            error_code=exc.error_code,
            status_code=exc.status_code,
            detail=exc.detail,
        )


# -- input schemas ---------------------------------------------------------


class _ActionInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class EmailInput(_ActionInput):
    recipient: str = Field(min_length=1)
    subject: str = Field(min_length=1)
    body: str = Field(min_length=1)


class TaskInput(_ActionInput):
    description: str = Field(min_length=1)
    assignee: Optional[str] = None
    due_date: Optional[str] = Field(default=None, alias="dueDate")


class RecordUpdateInput(_ActionInput):
    entity_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("entityId", "contractId", "entity_id"),
    )
    updates: Dict[str, Any] = Field(min_length=1)


class ConditionInput(_ActionInput):
    data_source: str = Field(min_length=1, alias="dataSource")
    field: str = Field(min_length=1)
    operator: str = Field(min_length=1)
    value: Any = None


class LinkInput(_ActionInput):
    link_type: str = Field(min_length=1, alias="linkType")
    title: str = Field(min_length=1)
    description: Optional[str] = None
    expires_in_days: Optional[int] = Field(default=None, alias="expiresInDays")
    password_protected: bool = Field(default=False, alias="passwordProtected")
    password: Optional[str] = None
    resource_id: Optional[str] = Field(default=None, alias="resourceId")
    custom_slug: Optional[str] = Field(default=None, alias="customSlug")


class CommandInput(_ActionInput):
    command: str = Field(min_length=1)
    type: str = Field(min_length=1)
    args: Any = None


class AnalysisInput(_ActionInput):
    input_data: Any = Field(default=None, alias="inputData")
    prompt: str = Field(min_length=1)


class TimeConditionInput(_ActionInput):
    condition_type: str = Field(min_length=1, alias="conditionType")
    time: Optional[str] = None
    day_of_week: Union[int, str, None] = Field(default=None, alias="dayOfWeek")
    date: Optional[str] = None
    reference_date: Optional[str] = Field(default=None, alias="referenceDate")


# -- comparison ------------------------------------------------------------

COMPARISON_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "=": _op.eq,
    "!=": _op.ne,
    ">": _op.gt,
    "<": _op.lt,
    ">=": _op.ge,
    "<=": _op.le,
}
NULL_OPERATORS = ("is null", "is not null")


def check_operator(operator: str) -> None:
    if operator not in COMPARISON_OPERATORS and operator not in NULL_OPERATORS:
        raise UnsupportedOperatorError(
            f"Unsupported operator: {operator}",
            detail={"allowed": [*COMPARISON_OPERATORS, *NULL_OPERATORS]},
        )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def compare_values(field_value: Any, operator: str, value: Any) -> bool:
    """Apply a condition operator to a stored field value and a literal."""
    check_operator(operator)
    if operator == "is null":
        return field_value is None
    if operator == "is not null":
        return field_value is not None
    if _is_number(field_value) and isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            pass
    fn = COMPARISON_OPERATORS[operator]
    if operator in ("=", "!="):
        return bool(fn(field_value, value))
    if field_value is None or value is None:
        return False
    if _is_number(value) and isinstance(field_value, str):
        # text columns holding numbers still order numerically
        try:
            field_value = float(field_value)
        except ValueError:
            pass
    try:
        return bool(fn(field_value, value))
    except TypeError as exc:
        raise ValidationError(
            f"cannot compare {type(field_value).__name__} with {type(value).__name__}",
            detail={"operator": operator},
        ) from exc


def _describe_validation_error(exc: PydanticValidationError) -> Tuple[str, List[Dict[str, Any]]]:
    missing: List[str] = []
    invalid: List[str] = []
    errors: List[Dict[str, Any]] = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ())) or "nodeData"
        errors.append({"field": loc, "message": err.get("msg", "")})
        if err.get("type") in ("missing", "string_too_short", "too_short"):
            missing.append(loc)
        else:
            invalid.append(loc)
    if missing and not invalid:
        return f"missing required fields: {', '.join(missing)}", errors
    return f"invalid fields: {', '.join(missing + invalid)}", errors


Handler = Callable[[Any], Awaitable[Dict[str, Any]]]


class NodeActionDispatcher:
    """Routes a node type tag to its handler and validation schema."""

    def __init__(
        self,
        *,
        store: MemoryStore,
        email: EmailService,
        tasks: TaskTracker,
        links: LinkService,
        ai: AIService,
    ) -> None:
        self.store = store
        self.email = email
        self.tasks = tasks
        self.links = links
        self.ai = ai
        self._handlers: Dict[str, Tuple[Type[BaseModel], Handler]] = {
            "EmailNode": (EmailInput, self._send_email),
            "CreateTaskNode": (TaskInput, self._create_task),
            "UpdateRecordNode": (RecordUpdateInput, self._update_record),
            "UpdateContractNode": (RecordUpdateInput, self._update_record),
            "DataConditionNode": (ConditionInput, self._evaluate_condition),
            "DynamicLinkNode": (LinkInput, self._issue_link),
            "MCPCommandNode": (CommandInput, self._run_command),
            "AiAnalysisNode": (AnalysisInput, self._analyze),
            "TimeConditionNode": (TimeConditionInput, self._evaluate_time),
        }

    @property
    def node_types(self) -> List[str]:
        return list(self._handlers)

    async def dispatch(self, node_type: str, node_data: Optional[Dict[str, Any]]) -> NodeResult:
        try:
            entry = self._handlers.get(node_type)
            if entry is None:
                raise ValidationError(
                    f"Unknown node type: {node_type}", detail={"node_type": node_type}
                )
            schema, handler = entry
            try:
                params = schema.model_validate(node_data if node_data is not None else {})
            except PydanticValidationError as exc:
                message, errors = _describe_validation_error(exc)
                raise ValidationError(message, detail={"errors": errors}) from exc
            payload = await handler(params)
        except ServiceError as exc:
            logger.warning(
                "action_failed",
                node_type=node_type,
                error=exc.message,
                error_code=exc.error_code,
                status_code=exc.status_code,
            )
            return NodeResult.failure(exc)
        except Exception as exc:
            logger.error(
                "action_crashed",
                node_type=node_type,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return NodeResult.failure(
                ServerError(sanitize_error_message(str(exc) or type(exc).__name__))
            )
        logger.info("action_completed", node_type=node_type)
        return NodeResult(success=True, payload=payload)

    # -- handlers --------------------------------------------------------

    async def _send_email(self, params: EmailInput) -> Dict[str, Any]:
        await self.email.send(params.recipient, params.subject, params.body)
        return {"message": "Email sent"}

    async def _create_task(self, params: TaskInput) -> Dict[str, Any]:
        task = self.tasks.create_task(
            params.description, assignee=params.assignee, due_date=params.due_date
        )
        return {"taskId": task.id, "status": task.status}

    async def _update_record(self, params: RecordUpdateInput) -> Dict[str, Any]:
        # intent is logged only; nothing is written to the record store
        logger.info(
            "record_update_requested",
            entity_id=params.entity_id,
            fields=sorted(params.updates),
        )
        return {"message": f"Contract {params.entity_id} update initiated"}

    async def _evaluate_condition(self, params: ConditionInput) -> Dict[str, Any]:
        check_operator(params.operator)
        try:
            rows = self.store.query_records(
                params.data_source, fields=[params.field], limit=1
            )
        except RecordStoreError as exc:
            raise DownstreamError(exc.message, detail=exc.detail) from exc
        if not rows:
            return {"result": False}
        field_value = rows[0].get(params.field)
        return {"result": compare_values(field_value, params.operator, params.value)}

    async def _issue_link(self, params: LinkInput) -> Dict[str, Any]:
        link = self.links.create_link(
            link_type=params.link_type,
            title=params.title,
            description=params.description,
            expires_in_days=params.expires_in_days,
            password=params.password if params.password_protected else None,
            resource_id=params.resource_id,
            custom_slug=params.custom_slug,
            created_by="automation",
            metadata={"createdBy": "automation", "nodeId": "DynamicLinkNode"},
        )
        url = self.links.link_path(link.token)
        return {
            "message": "Dynamic link created successfully",
            "token": link.token,
            "url": url,
            "fullUrl": self.links.full_url(url),
            "expiresAt": link.expires_at.isoformat(),
        }

    async def _run_command(self, params: CommandInput) -> Dict[str, Any]:
        # placeholder: the command is echoed back, not executed
        logger.info("remote_command_requested", command=params.command, command_type=params.type)
        return {
            "message": "MCP command executed successfully",
            "result": {
                "command": params.command,
                "type": params.type,
                "status": "completed",
                "timestamp": datetime.utcnow().isoformat(),
            },
        }

    async def _analyze(self, params: AnalysisInput) -> Dict[str, Any]:
        return await self.ai.analyze(params.prompt, params.input_data)

    async def _evaluate_time(self, params: TimeConditionInput) -> Dict[str, Any]:
        reference = parse_reference(params.reference_date)
        result, description = evaluate_time_condition(
            params.condition_type,
            reference,
            time=params.time,
            day_of_week=params.day_of_week,
            target_date=params.date,
        )
        return {
            "result": result,
            "condition": description,
            "referenceDate": reference.isoformat(),
            "timestamp": datetime.utcnow().isoformat(),
        }
