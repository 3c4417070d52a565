from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from crm_mcp_server.errors import CRMAPIError, InvalidIdentifierError
from crm_mcp_server.schemas import validate_arguments
from crm_mcp_server.tools import DESCRIPTIONS, CRMToolHandler, ToolContext, ToolName, build_handlers, tool_definitions
from crm_mcp_server.tools.notes import CreateNoteHandler, UpdateNoteHandler
from crm_mcp_server.tools.tasks import CreateTaskHandler, RetrieveAllTasksHandler


@pytest.fixture
def client() -> AsyncMock:
    return AsyncMock()


def test_registry_covers_every_tool(client: AsyncMock) -> None:
    handlers = build_handlers(client)
    assert set(handlers) == set(ToolName)
    assert handlers["create_task"] is handlers[ToolName.CREATE_TASK]
    assert set(DESCRIPTIONS) == set(ToolName)


def test_tool_definitions_use_camel_case_schemas() -> None:
    tools = {tool.name: tool for tool in tool_definitions()}
    assert len(tools) == 9
    create_note = tools["create_note"].inputSchema
    assert set(create_note["required"]) == {"contactId", "title", "content"}
    assert "workspaceId" in tools["create_task"].inputSchema["properties"]
    assert "workspaceId" not in tools["update_task"].inputSchema["properties"]


@pytest.mark.asyncio
async def test_create_note_posts_title_and_content(client: AsyncMock) -> None:
    client.create_note.return_value = {"id": "n1"}
    params = validate_arguments("create_note", {"contactId": "c1", "title": "Call", "content": "Body"})

    result = await CreateNoteHandler(client).execute(params, ToolContext())

    client.create_note.assert_awaited_once_with("c1", {"title": "Call", "content": "Body"})
    assert result.is_error is False
    assert json.loads(result.text) == {"id": "n1"}


@pytest.mark.asyncio
async def test_update_note_sends_only_supplied_fields(client: AsyncMock) -> None:
    client.update_note.return_value = {"id": "n1"}
    params = validate_arguments("update_note", {"noteId": "n1", "content": "New body"})

    await UpdateNoteHandler(client).execute(params, ToolContext())

    client.update_note.assert_awaited_once_with("n1", {"content": "New body"})


@pytest.mark.asyncio
async def test_create_task_uses_resolved_workspace(client: AsyncMock) -> None:
    client.create_task.return_value = {"id": "t1"}
    params = validate_arguments("create_task", {"name": "Follow up", "assignedTo": "u1"})

    await CreateTaskHandler(client).execute(params, ToolContext(workspace_id="ws1"))

    client.create_task.assert_awaited_once_with("ws1", {"name": "Follow up", "assignedTo": "u1"})


@pytest.mark.asyncio
async def test_retrieve_tasks_passes_pagination(client: AsyncMock) -> None:
    client.retrieve_all_tasks.return_value = {"tasks": []}
    params = validate_arguments("retrieve_all_tasks", {"workspaceId": "ignored", "page": 3})

    await RetrieveAllTasksHandler(client).execute(params, ToolContext(workspace_id="ws1"))

    client.retrieve_all_tasks.assert_awaited_once_with("ws1", {"page": 3, "limit": 20})


@pytest.mark.asyncio
async def test_api_error_becomes_error_envelope_with_status(client: AsyncMock) -> None:
    client.create_task.side_effect = CRMAPIError("API request failed with status 422", 422, {"message": "bad"})
    params = validate_arguments("create_task", {"name": "x"})

    result = await CreateTaskHandler(client).execute(params, ToolContext(workspace_id="ws1"))

    assert result.is_error is True
    message, details = result.text.split("\n\nDetails: ")
    assert message == "API Error: API request failed with status 422"
    assert json.loads(details) == {"statusCode": 422}


@pytest.mark.asyncio
async def test_api_error_without_status_has_no_details(client: AsyncMock) -> None:
    client.create_task.side_effect = CRMAPIError("No response received from API server")
    params = validate_arguments("create_task", {"name": "x"})

    result = await CreateTaskHandler(client).execute(params, ToolContext(workspace_id="ws1"))

    assert result.text == "API Error: No response received from API server"


@pytest.mark.asyncio
async def test_invalid_identifier_becomes_error_envelope(client: AsyncMock) -> None:
    client.create_note.side_effect = InvalidIdentifierError("Invalid contact ID format")
    params = validate_arguments("create_note", {"contactId": "a/b", "title": "t", "content": "c"})

    result = await CreateNoteHandler(client).execute(params, ToolContext())

    assert result.is_error is True
    assert result.text == "Invalid contact ID format"


@pytest.mark.asyncio
async def test_unexpected_errors_propagate(client: AsyncMock) -> None:
    client.create_note.side_effect = RuntimeError("boom")
    params = validate_arguments("create_note", {"contactId": "c1", "title": "t", "content": "c"})

    with pytest.raises(RuntimeError):
        await CreateNoteHandler(client).execute(params, ToolContext())


def test_handler_base_is_abstract(client: AsyncMock) -> None:
    with pytest.raises(TypeError):
        CRMToolHandler(client)
