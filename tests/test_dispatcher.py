from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from crm_mcp_server.dispatcher import ToolDispatcher
from crm_mcp_server.errors import CRMAPIError
from crm_mcp_server.observability import AuditLogger, InMemoryMetrics
from crm_mcp_server.rate_limits import RateLimitConfig, RateLimiter
from crm_mcp_server.responses import success_response
from crm_mcp_server.schemas import SCHEMAS
from crm_mcp_server.tools import build_handlers
from crm_mcp_server.workspace import WorkspaceResolver


def make_dispatcher(
    client: AsyncMock,
    default_workspace: str | None = None,
    limits: dict[str, RateLimitConfig] | None = None,
    **kwargs,
) -> ToolDispatcher:
    return ToolDispatcher(
        rate_limiter=RateLimiter(limits=limits, clock=lambda: 0.0),
        handlers=build_handlers(client),
        schemas=SCHEMAS,
        workspace_resolver=WorkspaceResolver(default_workspace),
        **kwargs,
    )


@pytest.fixture
def client() -> AsyncMock:
    return AsyncMock()


@pytest.mark.asyncio
async def test_create_task_end_to_end(client: AsyncMock) -> None:
    client.create_task.return_value = {"id": "t1"}
    dispatcher = make_dispatcher(client)

    result = await dispatcher.dispatch("create_task", {"name": "Follow up", "workspaceId": "ws1"})

    client.create_task.assert_awaited_once_with("ws1", {"name": "Follow up"})
    assert "isError" not in result.to_dict()
    assert dispatcher.rate_limiter.get_status("create_task").tokens == 29


@pytest.mark.asyncio
async def test_create_task_end_to_end_with_default_workspace(client: AsyncMock) -> None:
    client.create_task.return_value = {"id": "t1", "name": "Follow up"}
    dispatcher = make_dispatcher(client, default_workspace="ws1")

    result = await dispatcher.dispatch("create_task", {"name": "Follow up"})

    client.create_task.assert_awaited_once_with("ws1", {"name": "Follow up"})
    assert result.is_error is False
    assert json.loads(result.text) == {"id": "t1", "name": "Follow up"}


@pytest.mark.asyncio
async def test_explicit_workspace_overrides_default(client: AsyncMock) -> None:
    client.get_contact_properties.return_value = []
    dispatcher = make_dispatcher(client, default_workspace="ws1")

    await dispatcher.dispatch("get_contact_properties", {"workspaceId": "ws2"})

    client.get_contact_properties.assert_awaited_once_with("ws2")


@pytest.mark.asyncio
async def test_update_note_with_no_fields_sends_empty_update(client: AsyncMock) -> None:
    client.update_note.return_value = {"id": "n1"}
    dispatcher = make_dispatcher(client)

    result = await dispatcher.dispatch("update_note", {"noteId": "n1"})

    client.update_note.assert_awaited_once_with("n1", {})
    assert result.is_error is False


@pytest.mark.asyncio
async def test_exempt_tool_runs_without_any_workspace(client: AsyncMock) -> None:
    client.retrieve_notes.return_value = []
    dispatcher = make_dispatcher(client, default_workspace=None)

    result = await dispatcher.dispatch("retrieve_notes", {"contactId": "c1"})

    assert result.is_error is False
    client.retrieve_notes.assert_awaited_once_with("c1")


@pytest.mark.asyncio
async def test_missing_workspace_is_an_error_and_skips_handler(client: AsyncMock) -> None:
    dispatcher = make_dispatcher(client, default_workspace=None)

    result = await dispatcher.dispatch("retrieve_all_tasks", {})

    assert result.is_error is True
    assert result.text.startswith("workspaceId is required")
    client.retrieve_all_tasks.assert_not_awaited()


@pytest.mark.asyncio
async def test_unknown_tool(client: AsyncMock) -> None:
    result = await make_dispatcher(client).dispatch("delete_everything", {})
    assert result.is_error is True
    assert result.text == "Unknown tool: delete_everything"


@pytest.mark.asyncio
async def test_rate_limit_short_circuits_everything(client: AsyncMock) -> None:
    schemas = MagicMock(wraps=SCHEMAS)
    resolver = MagicMock(wraps=WorkspaceResolver("ws1"))
    dispatcher = ToolDispatcher(
        rate_limiter=RateLimiter(limits={"create_task": RateLimitConfig(1, 60_000)}, clock=lambda: 0.0),
        handlers=build_handlers(client),
        schemas=schemas,
        workspace_resolver=resolver,
    )
    client.create_task.return_value = {"id": "t1"}
    await dispatcher.dispatch("create_task", {"name": "first"})
    schemas.reset_mock()
    resolver.reset_mock()

    result = await dispatcher.dispatch("create_task", {"name": "second"})

    assert result.is_error is True
    message, details = result.text.split("\n\nDetails: ")
    assert message == "Rate limit exceeded. Please try again in 60 seconds."
    assert json.loads(details) == {"retryAfter": 60, "limit": {"capacity": 1, "windowMs": 60_000}}
    assert result.metadata["retryAfterSeconds"] == 60
    assert client.create_task.await_count == 1
    schemas.get.assert_not_called()
    resolver.resolve.assert_not_called()


@pytest.mark.asyncio
async def test_rate_limit_applies_before_validation(client: AsyncMock) -> None:
    dispatcher = make_dispatcher(client, limits={"create_note": RateLimitConfig(1, 60_000)})

    first = await dispatcher.dispatch("create_note", {})
    second = await dispatcher.dispatch("create_note", {})

    assert first.text.startswith("Validation failed:")
    assert second.text.startswith("Rate limit exceeded.")


@pytest.mark.asyncio
async def test_missing_schema_is_internal_error(client: AsyncMock) -> None:
    schemas = {k: v for k, v in SCHEMAS.items() if k != "retrieve_notes"}
    dispatcher = ToolDispatcher(
        rate_limiter=RateLimiter(),
        handlers=build_handlers(client),
        schemas=schemas,
        workspace_resolver=WorkspaceResolver("ws1"),
    )

    result = await dispatcher.dispatch("retrieve_notes", {"contactId": "c1"})

    assert result.is_error is True
    assert "No validation schema" in result.text
    client.retrieve_notes.assert_not_awaited()


@pytest.mark.asyncio
async def test_validation_failure_lists_fields_and_skips_handler(client: AsyncMock) -> None:
    dispatcher = make_dispatcher(client, default_workspace="ws1")

    result = await dispatcher.dispatch("create_task", {"dueDate": "tomorrow"})

    assert result.is_error is True
    lines = result.text.splitlines()
    assert lines[0] == "Validation failed:"
    assert any(line.startswith("- name:") for line in lines)
    assert any(line.startswith("- dueDate:") for line in lines)
    client.create_task.assert_not_awaited()


@pytest.mark.asyncio
async def test_none_arguments_are_validated_as_empty(client: AsyncMock) -> None:
    client.get_contact_properties.return_value = []
    dispatcher = make_dispatcher(client, default_workspace="ws1")

    result = await dispatcher.dispatch("get_contact_properties", None)

    assert result.is_error is False


@pytest.mark.asyncio
async def test_unexpected_handler_exception_is_generic_envelope(client: AsyncMock) -> None:
    client.retrieve_notes.side_effect = RuntimeError("secret internals")
    dispatcher = make_dispatcher(client, include_tracebacks=False)

    result = await dispatcher.dispatch("retrieve_notes", {"contactId": "c1"})

    assert result.is_error is True
    assert result.text == "An unexpected error occurred while executing retrieve_notes"
    assert "secret" not in result.text


@pytest.mark.asyncio
async def test_api_error_from_handler_becomes_api_envelope(client: AsyncMock) -> None:
    client.retrieve_notes.side_effect = CRMAPIError("API request failed with status 404", 404)

    result = await make_dispatcher(client).dispatch("retrieve_notes", {"contactId": "c1"})

    assert result.is_error is True
    assert result.text.startswith("API Error: API request failed with status 404")


@pytest.mark.asyncio
async def test_api_error_escaping_a_custom_handler() -> None:
    handler = MagicMock()
    handler.execute = AsyncMock(side_effect=CRMAPIError("upstream down", 503))
    dispatcher = ToolDispatcher(
        rate_limiter=RateLimiter(),
        handlers={"retrieve_notes": handler},
        schemas=SCHEMAS,
        workspace_resolver=WorkspaceResolver(None),
    )

    result = await dispatcher.dispatch("retrieve_notes", {"contactId": "c1"})

    assert result.text.startswith("API Error: upstream down")


@pytest.mark.asyncio
async def test_oauth_token_reaches_handler_context() -> None:
    handler = MagicMock()
    handler.execute = AsyncMock(return_value=success_response({"ok": True}))
    dispatcher = ToolDispatcher(
        rate_limiter=RateLimiter(),
        handlers={"create_task": handler},
        schemas=SCHEMAS,
        workspace_resolver=WorkspaceResolver("ws1"),
    )

    await dispatcher.dispatch("create_task", {"name": "x"}, oauth_token="tok")

    _, context = handler.execute.await_args.args
    assert context.workspace_id == "ws1"
    assert context.oauth_token == "tok"


@pytest.mark.asyncio
async def test_metrics_and_audit_are_recorded(client: AsyncMock, tmp_path) -> None:
    client.retrieve_notes.return_value = []
    metrics = InMemoryMetrics()
    audit_path = tmp_path / "audit.log"
    dispatcher = make_dispatcher(client, metrics=metrics, audit=AuditLogger(str(audit_path)))

    await dispatcher.dispatch("retrieve_notes", {"contactId": "c1"})
    await dispatcher.dispatch("retrieve_notes", {})

    snapshot = metrics.snapshot()["retrieve_notes"]
    assert snapshot["calls"] == 2
    assert snapshot["errors"] == 1
    entries = [json.loads(line) for line in audit_path.read_text().splitlines()]
    assert [e["status"] for e in entries] == ["ok", "validation_error"]
    assert entries[1]["error_code"] == "VALIDATION_ERROR"
    assert entries[0]["correlation_id"].startswith("req_")


@pytest.mark.asyncio
async def test_create_note_runs_without_workspace(client: AsyncMock) -> None:
    client.create_note.return_value = {"id": "n1"}
    dispatcher = make_dispatcher(client, default_workspace=None)

    result = await dispatcher.dispatch("create_note", {"contactId": "c1", "title": "Call", "content": "Body"})

    assert result.is_error is False
    client.create_note.assert_awaited_once_with("c1", {"title": "Call", "content": "Body"})


@pytest.mark.asyncio
async def test_audit_records_resolved_workspace(client: AsyncMock, tmp_path) -> None:
    client.create_task.return_value = {"id": "t1"}
    client.update_task.return_value = {"id": "t1"}
    audit_path = tmp_path / "audit.log"
    dispatcher = make_dispatcher(client, default_workspace="wsdef", audit=AuditLogger(str(audit_path)))

    await dispatcher.dispatch("create_task", {"name": "x"})
    await dispatcher.dispatch("update_task", {"taskId": "t1", "status": "completed"})

    entries = [json.loads(line) for line in audit_path.read_text().splitlines()]
    assert entries[0]["workspace"] == "wsdef"
    assert entries[0]["status"] == "ok"
    assert entries[1]["workspace"] == ""
    assert entries[1]["status"] == "ok"
