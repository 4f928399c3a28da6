from datetime import datetime, timedelta

import httpx
import pytest

from hvacflow.service.actions import compare_values
from hvacflow.service.ai import AIService
from hvacflow.service.errors import DownstreamError, UnsupportedOperatorError, ValidationError


@pytest.fixture
def dispatcher(runtime):
    runtime.store.seed_records(
        "devices",
        [
            {"id": "d1", "temperature": 21, "status": "ok", "serial": None},
            {"id": "d2", "temperature": 35, "status": "alarm", "serial": "X-2"},
        ],
    )
    return runtime.dispatcher


async def test_unknown_node_type_is_validation_error(dispatcher):
    result = await dispatcher.dispatch("FaxNode", {})
    assert not result.success
    assert result.status_code == 400
    assert result.error_code == "validation_error"
    assert result.error == "Unknown node type: FaxNode"


async def test_email_requires_all_fields(dispatcher):
    result = await dispatcher.dispatch("EmailNode", {"recipient": "tech@example.com"})
    assert result.status_code == 400
    assert result.error_code == "validation_error"
    assert "subject" in result.error and "body" in result.error


async def test_email_rejects_empty_strings(dispatcher):
    result = await dispatcher.dispatch(
        "EmailNode", {"recipient": "", "subject": "Service", "body": "Visit"}
    )
    assert result.status_code == 400
    assert "recipient" in result.error


async def test_email_sent_in_dev_mode(dispatcher, runtime):
    result = await dispatcher.dispatch(
        "EmailNode",
        {"recipient": "tech@example.com", "subject": "Service", "body": "Visit at 9"},
    )
    assert result.success
    assert result.payload == {"message": "Email sent"}
    assert runtime.email.outbox[-1]["to"] == "tech@example.com"


async def test_email_failure_surfaces_as_downstream_error(dispatcher, runtime, monkeypatch):
    calls = []

    def _fail(to_email, subject, body):
        calls.append(to_email)
        raise DownstreamError("could not connect to mail server")

    monkeypatch.setattr(runtime.email, "_send_email", _fail)
    result = await dispatcher.dispatch(
        "EmailNode", {"recipient": "tech@example.com", "subject": "s", "body": "b"}
    )
    assert result.status_code == 500
    assert result.error_code == "downstream_error"
    assert len(calls) == 1


async def test_task_requires_description(dispatcher):
    result = await dispatcher.dispatch("CreateTaskNode", {"assignee": "anna"})
    assert result.status_code == 400
    assert result.error == "missing required fields: description"


async def test_task_created(dispatcher, runtime):
    result = await dispatcher.dispatch(
        "CreateTaskNode",
        {"description": "Inspect boiler", "assignee": "anna", "dueDate": "2024-05-01"},
    )
    assert result.success
    assert result.payload["status"] == "pending"
    assert runtime.store.get_task(result.payload["taskId"]).description == "Inspect boiler"


async def test_unexpected_exception_is_server_error(dispatcher, runtime, monkeypatch):
    def _boom(*args, **kwargs):
        raise RuntimeError("task list unavailable")

    monkeypatch.setattr(runtime.tasks, "create_task", _boom)
    result = await dispatcher.dispatch("CreateTaskNode", {"description": "x"})
    assert result.status_code == 500
    assert result.error_code == "server_error"


async def test_update_contract_logs_intent_only(dispatcher):
    result = await dispatcher.dispatch(
        "UpdateContractNode", {"contractId": "c-7", "updates": {"status": "renewed"}}
    )
    assert result.success
    assert result.payload["message"] == "Contract c-7 update initiated"


async def test_update_record_requires_updates(dispatcher):
    result = await dispatcher.dispatch("UpdateRecordNode", {"entityId": "c-7"})
    assert result.status_code == 400


@pytest.mark.parametrize(
    "operator,field,value,expected",
    [
        ("=", "temperature", 21, True),
        ("=", "temperature", "21", True),
        ("!=", "temperature", 21, False),
        (">", "temperature", 20, True),
        ("<", "temperature", 20, False),
        (">=", "temperature", 21, True),
        ("<=", "temperature", 20, False),
        ("is null", "serial", None, True),
        ("is not null", "serial", None, False),
        ("=", "status", "ok", True),
    ],
)
async def test_condition_truth_table(dispatcher, operator, field, value, expected):
    result = await dispatcher.dispatch(
        "DataConditionNode",
        {"dataSource": "devices", "field": field, "operator": operator, "value": value},
    )
    assert result.success
    assert result.payload == {"result": expected}


async def test_condition_on_empty_collection_is_false(dispatcher):
    result = await dispatcher.dispatch(
        "DataConditionNode",
        {"dataSource": "contracts", "field": "value", "operator": "is null"},
    )
    assert result.success
    assert result.payload == {"result": False}


async def test_condition_unsupported_operator(dispatcher):
    result = await dispatcher.dispatch(
        "DataConditionNode",
        {"dataSource": "devices", "field": "status", "operator": "like", "value": "o%"},
    )
    assert result.status_code == 400
    assert result.error_code == "unsupported_operator"
    assert result.error == "Unsupported operator: like"


async def test_condition_requires_fields(dispatcher):
    result = await dispatcher.dispatch("DataConditionNode", {"dataSource": "devices"})
    assert result.status_code == 400
    assert "field" in result.error and "operator" in result.error


def test_compare_values_rejects_incomparable_types():
    with pytest.raises(ValidationError):
        compare_values("ok", ">", 5)
    with pytest.raises(UnsupportedOperatorError):
        compare_values(1, "~", 1)
    assert compare_values(None, ">", 3) is False


def test_compare_values_orders_numeric_text_fields():
    assert compare_values("5", ">", 3) is True
    assert compare_values("2.5", "<=", 2) is False
    assert compare_values("5", "=", 5) is False


async def test_link_defaults_to_fourteen_days(dispatcher, runtime):
    before = datetime.utcnow()
    result = await dispatcher.dispatch(
        "DynamicLinkNode", {"linkType": "offer", "title": "Heat pump offer"}
    )
    assert result.success
    payload = result.payload
    assert payload["url"] == f"/share/{payload['token']}"
    assert payload["fullUrl"] == f"https://crm.example.com/share/{payload['token']}"
    link = runtime.store.get_dynamic_link(payload["token"])
    assert link.expires_at - before >= timedelta(days=14)
    assert link.expires_at - before < timedelta(days=14, minutes=1)
    assert link.metadata["createdBy"] == "automation"


async def test_link_password_used_only_when_protected(dispatcher, runtime):
    unprotected = await dispatcher.dispatch(
        "DynamicLinkNode",
        {"linkType": "report", "title": "Report", "password": "s3cret"},
    )
    assert runtime.store.get_dynamic_link(unprotected.payload["token"]).password_hash is None

    protected = await dispatcher.dispatch(
        "DynamicLinkNode",
        {
            "linkType": "report",
            "title": "Report",
            "password": "s3cret",
            "passwordProtected": True,
            "expiresInDays": 3,
        },
    )
    token = protected.payload["token"]
    link = runtime.store.get_dynamic_link(token)
    assert link.password_hash and link.password_hash != "s3cret"
    assert runtime.links.verify_password(token, "s3cret")
    assert not runtime.links.verify_password(token, "wrong")


async def test_link_requires_type_and_title(dispatcher):
    result = await dispatcher.dispatch("DynamicLinkNode", {"title": "x"})
    assert result.status_code == 400
    assert "linkType" in result.error


async def test_link_rejects_unknown_type(dispatcher):
    result = await dispatcher.dispatch("DynamicLinkNode", {"linkType": "fax", "title": "x"})
    assert result.status_code == 400


async def test_duplicate_custom_slug_conflicts(dispatcher):
    data = {"linkType": "form", "title": "Survey", "customSlug": "spring-survey"}
    first = await dispatcher.dispatch("DynamicLinkNode", data)
    second = await dispatcher.dispatch("DynamicLinkNode", data)
    assert first.success and first.payload["token"] == "spring-survey"
    assert second.status_code == 409
    assert second.error_code == "conflict"


async def test_remote_command_echoes(dispatcher):
    result = await dispatcher.dispatch(
        "MCPCommandNode", {"command": "sync", "type": "inventory", "args": {"full": True}}
    )
    assert result.success
    assert result.payload["result"]["command"] == "sync"
    assert result.payload["result"]["type"] == "inventory"
    assert result.payload["result"]["status"] == "completed"
    assert "timestamp" in result.payload["result"]


async def test_remote_command_requires_type(dispatcher):
    result = await dispatcher.dispatch("MCPCommandNode", {"command": "sync"})
    assert result.status_code == 400


@pytest.mark.parametrize(
    "data,expected",
    [
        ({"conditionType": "businessHours", "referenceDate": "2024-03-04T10:00:00"}, True),
        ({"conditionType": "businessHours", "referenceDate": "2024-03-04T18:00:00"}, False),
        ({"conditionType": "weekend", "referenceDate": "2024-03-09T10:00:00"}, True),
        (
            {"conditionType": "dayOfWeek", "dayOfWeek": "monday", "referenceDate": "2024-03-04T08:00:00"},
            True,
        ),
        (
            {"conditionType": "timeOfDay", "time": "08:30", "referenceDate": "2024-03-04T08:30:00"},
            True,
        ),
        (
            {"conditionType": "specificDate", "date": "2024-03-05", "referenceDate": "2024-03-04T08:30:00"},
            False,
        ),
    ],
)
async def test_time_conditions(dispatcher, data, expected):
    result = await dispatcher.dispatch("TimeConditionNode", data)
    assert result.success
    assert result.payload["result"] is expected


async def test_time_condition_unsupported_type(dispatcher):
    result = await dispatcher.dispatch("TimeConditionNode", {"conditionType": "fullMoon"})
    assert result.error_code == "unsupported_operator"


async def test_ai_local_summary(dispatcher):
    result = await dispatcher.dispatch(
        "AiAnalysisNode", {"inputData": {"temp": 21, "status": "ok"}, "prompt": "Check unit"}
    )
    assert result.success
    assert result.payload["result"]["fields"] == ["status", "temp"]


async def test_ai_remote_endpoint():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"result": {"risk": "low"}})

    service = AIService(
        base_url="https://ai.example.com/analyze",
        api_key="k",
        transport=httpx.MockTransport(handler),
    )
    try:
        result = await service.analyze("Assess", {"temp": 21})
    finally:
        await service.close()
    assert result == {"result": {"risk": "low"}}
    assert seen[0].headers["Authorization"] == "Bearer k"


async def test_ai_remote_failure_is_downstream_error():
    service = AIService(
        base_url="https://ai.example.com/analyze",
        transport=httpx.MockTransport(lambda request: httpx.Response(503)),
    )
    try:
        with pytest.raises(DownstreamError):
            await service.analyze("Assess", {})
    finally:
        await service.close()
