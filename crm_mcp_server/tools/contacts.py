from __future__ import annotations

from typing import Any

from ..schemas import GetContactPropertiesInput, RetrieveAllContactsInput, SearchContactsInput
from .base import CRMToolHandler, ToolContext, ToolName, logger


class GetContactPropertiesHandler(CRMToolHandler[GetContactPropertiesInput]):
    name = ToolName.GET_CONTACT_PROPERTIES
    action = "fetch contact properties"

    async def call(self, params: GetContactPropertiesInput, context: ToolContext) -> Any:
        logger.info("Fetching contact properties", extra={"tool": str(self.name), "workspace": context.workspace_id})
        return await self.client.get_contact_properties(context.workspace_id)


class SearchContactsHandler(CRMToolHandler[SearchContactsInput]):
    name = ToolName.SEARCH_CONTACTS
    action = "search contacts"

    async def call(self, params: SearchContactsInput, context: ToolContext) -> Any:
        search = params.payload("workspace_id")
        logger.info(
            "Searching contacts (filter=%s, limit=%d)",
            params.filter is not None,
            params.limit,
            extra={"tool": str(self.name), "workspace": context.workspace_id},
        )
        return await self.client.search_contacts(context.workspace_id, search)


class RetrieveAllContactsHandler(CRMToolHandler[RetrieveAllContactsInput]):
    name = ToolName.RETRIEVE_ALL_CONTACTS
    action = "retrieve contacts"

    async def call(self, params: RetrieveAllContactsInput, context: ToolContext) -> Any:
        query = params.payload("workspace_id")
        logger.info(
            "Retrieving contacts (limit=%d)",
            params.limit,
            extra={"tool": str(self.name), "workspace": context.workspace_id},
        )
        return await self.client.retrieve_all_contacts(context.workspace_id, query)
