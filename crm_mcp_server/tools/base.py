from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, Protocol, TypeVar

from ..crm_client import CRMClient
from ..errors import CRMAPIError, InvalidIdentifierError
from ..responses import ToolResult, error_response, success_response
from ..schemas import ToolInput

logger = logging.getLogger("crm_mcp_server.tools")

InputT = TypeVar("InputT", bound=ToolInput)


class ToolName(str, Enum):
    GET_CONTACT_PROPERTIES = "get_contact_properties"
    SEARCH_CONTACTS = "search_contacts"
    RETRIEVE_ALL_CONTACTS = "retrieve_all_contacts"
    CREATE_NOTE = "create_note"
    RETRIEVE_NOTES = "retrieve_notes"
    UPDATE_NOTE = "update_note"
    CREATE_TASK = "create_task"
    UPDATE_TASK = "update_task"
    RETRIEVE_ALL_TASKS = "retrieve_all_tasks"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ToolContext:
    """Per-request context; workspace_id is empty for tools not scoped to a workspace."""

    workspace_id: str = ""
    oauth_token: Optional[str] = None


class ToolHandler(Protocol):
    async def execute(self, params: Any, context: ToolContext) -> ToolResult:
        ...


class CRMToolHandler(ABC, Generic[InputT]):
    """
    Base for handlers backed by one CRM call.

    Expected failures (upstream errors, bad identifiers) become error envelopes;
    anything else propagates to the dispatcher.
    """

    name: ToolName
    action: str = "execute"

    def __init__(self, client: CRMClient) -> None:
        self.client = client

    @abstractmethod
    async def call(self, params: InputT, context: ToolContext) -> Any:
        ...

    async def execute(self, params: InputT, context: ToolContext) -> ToolResult:
        try:
            data = await self.call(params, context)
        except CRMAPIError as exc:
            logger.error(
                "Failed to %s: %s",
                self.action,
                exc,
                extra={"tool": str(self.name), "workspace": context.workspace_id},
            )
            return api_error_response(exc)
        except InvalidIdentifierError as exc:
            logger.warning("Rejected identifier for %s: %s", self.name, exc, extra={"tool": str(self.name)})
            return error_response(str(exc))
        logger.info("Successfully completed %s", self.action, extra={"tool": str(self.name), "workspace": context.workspace_id})
        return success_response(data)


def api_error_response(exc: CRMAPIError) -> ToolResult:
    details = {"statusCode": exc.status_code} if exc.status_code else None
    return error_response(f"API Error: {exc}", details)
