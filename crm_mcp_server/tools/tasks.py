from __future__ import annotations

from typing import Any

from ..schemas import CreateTaskInput, RetrieveAllTasksInput, UpdateTaskInput
from .base import CRMToolHandler, ToolContext, ToolName, logger


class CreateTaskHandler(CRMToolHandler[CreateTaskInput]):
    name = ToolName.CREATE_TASK
    action = "create task"

    async def call(self, params: CreateTaskInput, context: ToolContext) -> Any:
        task = params.payload("workspace_id")
        logger.info(
            "Creating task (fields=%s)",
            sorted(task),
            extra={"tool": str(self.name), "workspace": context.workspace_id},
        )
        return await self.client.create_task(context.workspace_id, task)


class UpdateTaskHandler(CRMToolHandler[UpdateTaskInput]):
    name = ToolName.UPDATE_TASK
    action = "update task"

    async def call(self, params: UpdateTaskInput, context: ToolContext) -> Any:
        update = params.payload("task_id")
        logger.info("Updating task (fields=%s)", sorted(update), extra={"tool": str(self.name)})
        return await self.client.update_task(params.task_id, update)


class RetrieveAllTasksHandler(CRMToolHandler[RetrieveAllTasksInput]):
    name = ToolName.RETRIEVE_ALL_TASKS
    action = "retrieve tasks"

    async def call(self, params: RetrieveAllTasksInput, context: ToolContext) -> Any:
        query = params.payload("workspace_id")
        logger.info(
            "Retrieving tasks (page=%d, limit=%d)",
            params.page,
            params.limit,
            extra={"tool": str(self.name), "workspace": context.workspace_id},
        )
        return await self.client.retrieve_all_tasks(context.workspace_id, query)
