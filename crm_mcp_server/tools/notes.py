from __future__ import annotations

from typing import Any

from ..schemas import CreateNoteInput, RetrieveNotesInput, UpdateNoteInput
from .base import CRMToolHandler, ToolContext, ToolName, logger


class CreateNoteHandler(CRMToolHandler[CreateNoteInput]):
    name = ToolName.CREATE_NOTE
    action = "create note"

    async def call(self, params: CreateNoteInput, context: ToolContext) -> Any:
        logger.info(
            "Creating note (title_length=%d, content_length=%d)",
            len(params.title),
            len(params.content),
            extra={"tool": str(self.name)},
        )
        return await self.client.create_note(params.contact_id, params.payload("contact_id"))


class RetrieveNotesHandler(CRMToolHandler[RetrieveNotesInput]):
    name = ToolName.RETRIEVE_NOTES
    action = "retrieve notes"

    async def call(self, params: RetrieveNotesInput, context: ToolContext) -> Any:
        return await self.client.retrieve_notes(params.contact_id)


class UpdateNoteHandler(CRMToolHandler[UpdateNoteInput]):
    name = ToolName.UPDATE_NOTE
    action = "update note"

    async def call(self, params: UpdateNoteInput, context: ToolContext) -> Any:
        # Only fields the caller supplied are sent; an empty update is allowed.
        update = params.payload("note_id")
        logger.info("Updating note (fields=%s)", sorted(update), extra={"tool": str(self.name)})
        return await self.client.update_note(params.note_id, update)
