from __future__ import annotations

from types import MappingProxyType
from typing import List, Mapping

from mcp import types

from ..crm_client import CRMClient
from ..schemas import SCHEMAS
from .base import CRMToolHandler, ToolHandler, ToolName
from .contacts import GetContactPropertiesHandler, RetrieveAllContactsHandler, SearchContactsHandler
from .notes import CreateNoteHandler, RetrieveNotesHandler, UpdateNoteHandler
from .tasks import CreateTaskHandler, RetrieveAllTasksHandler, UpdateTaskHandler

HANDLER_CLASSES: tuple[type[CRMToolHandler], ...] = (
    GetContactPropertiesHandler,
    SearchContactsHandler,
    RetrieveAllContactsHandler,
    CreateNoteHandler,
    RetrieveNotesHandler,
    UpdateNoteHandler,
    CreateTaskHandler,
    UpdateTaskHandler,
    RetrieveAllTasksHandler,
)

DESCRIPTIONS: Mapping[ToolName, str] = MappingProxyType({
    ToolName.GET_CONTACT_PROPERTIES: (
        "Retrieves all contact properties (fields) available in a CRM workspace. Use this to discover "
        "what properties you can filter and sort by when searching contacts."
    ),
    ToolName.SEARCH_CONTACTS: (
        "Search and filter contacts in a CRM workspace. Supports complex filtering with AND/OR logic, "
        "sorting by multiple properties, and cursor-based pagination."
    ),
    ToolName.RETRIEVE_ALL_CONTACTS: (
        "Retrieve contacts from a CRM workspace with optional free-text search, sorting and "
        "cursor-based pagination."
    ),
    ToolName.CREATE_NOTE: "Create a note on a contact to document an interaction.",
    ToolName.RETRIEVE_NOTES: "Retrieve all notes attached to a contact.",
    ToolName.UPDATE_NOTE: "Update the title and/or content of an existing note.",
    ToolName.CREATE_TASK: (
        "Create a task in a CRM workspace, optionally assigned to a user, linked to a contact, "
        "with a due date and reminder."
    ),
    ToolName.UPDATE_TASK: "Update an existing task's name, assignee, dates or status.",
    ToolName.RETRIEVE_ALL_TASKS: "Retrieve tasks from a CRM workspace with page-based pagination.",
})


def build_handlers(client: CRMClient) -> Mapping[str, ToolHandler]:
    """Static tool -> handler table, built once at startup."""
    return MappingProxyType({cls.name: cls(client) for cls in HANDLER_CLASSES})


def tool_definitions() -> List[types.Tool]:
    return [
        types.Tool(
            name=tool.value,
            description=DESCRIPTIONS[tool],
            inputSchema=SCHEMAS[tool.value].model_json_schema(by_alias=True),
        )
        for tool in ToolName
    ]
