"""Tool input schemas.

One pydantic model per tool. Clients send camelCase keys; handlers read the
snake_case attributes. Unknown keys are dropped, every violation is reported.
"""
from __future__ import annotations

import re
from types import MappingProxyType
from typing import Annotated, Any, List, Literal, Mapping, Optional, Type

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, StringConstraints, ValidationError
from pydantic.alias_generators import to_camel

from .errors import FieldError, ToolValidationError

_ISO_DATETIME = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?Z$")


def _check_datetime(value: str) -> str:
    if not _ISO_DATETIME.match(value):
        raise ValueError("Invalid datetime, expected ISO 8601 UTC format like 2024-01-31T09:00:00Z")
    return value


# Strings are stripped before the length check, so whitespace-only values fail min_length.
Title = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=500)]
Body = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=10000)]
Assignee = Annotated[str, StringConstraints(strip_whitespace=True, max_length=200)]
DateTime = Annotated[str, AfterValidator(_check_datetime)]
# Numeric fields are strict integers: JSON numbers only, no "5" strings and no fractions.
PageSize = Annotated[int, Field(strict=True, ge=1, le=100)]


class ToolInput(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def payload(self, *exclude: str) -> dict[str, Any]:
        """Wire representation: camelCase keys, omitted optionals left out."""
        return self.model_dump(by_alias=True, exclude_none=True, exclude=set(exclude))


class WorkspaceInput(ToolInput):
    workspace_id: Optional[str] = Field(
        default=None,
        description="Workspace identifier. Optional when DEFAULT_WORKSPACE_ID is configured.",
    )


class GetContactPropertiesInput(WorkspaceInput):
    pass


class FilterPredicate(ToolInput):
    property: str
    operator: str
    value: str
    data_type: str


class ContactFilter(ToolInput):
    type: Literal["and", "or"]
    predicates: List[FilterPredicate]


class SortOption(ToolInput):
    property: str
    order: Literal["asc", "dsc"]


class SearchContactsInput(WorkspaceInput):
    filter: Optional[ContactFilter] = None
    limit: PageSize = 10
    sort: Optional[List[SortOption]] = None
    search_after: Optional[str] = None
    search_before: Optional[str] = None


class RetrieveAllContactsInput(WorkspaceInput):
    search_text: Optional[str] = None
    sort: Optional[str] = None
    order: Optional[Annotated[int, Field(strict=True, ge=-1, le=1)]] = None
    search_after: Optional[str] = None
    search_before: Optional[str] = None
    limit: PageSize = 20


class CreateNoteInput(ToolInput):
    contact_id: str
    title: Title
    content: Body


class RetrieveNotesInput(ToolInput):
    contact_id: str


class UpdateNoteInput(ToolInput):
    note_id: str
    title: Optional[Title] = None
    content: Optional[Body] = None


class CreateTaskInput(WorkspaceInput):
    name: Title
    assigned_to: Optional[Assignee] = None
    due_date: Optional[DateTime] = None
    reminder: Optional[DateTime] = None
    contact_id: Optional[str] = None


class UpdateTaskInput(ToolInput):
    task_id: str
    name: Optional[Title] = None
    assigned_to: Optional[Assignee] = None
    due_date: Optional[DateTime] = None
    reminder: Optional[DateTime] = None
    status: Optional[Literal["not_started", "in_progress", "completed"]] = None


class RetrieveAllTasksInput(WorkspaceInput):
    page: Annotated[int, Field(strict=True, ge=1)] = 1
    limit: PageSize = 20


SCHEMAS: Mapping[str, Type[ToolInput]] = MappingProxyType({
    "get_contact_properties": GetContactPropertiesInput,
    "search_contacts": SearchContactsInput,
    "retrieve_all_contacts": RetrieveAllContactsInput,
    "create_note": CreateNoteInput,
    "retrieve_notes": RetrieveNotesInput,
    "update_note": UpdateNoteInput,
    "create_task": CreateTaskInput,
    "update_task": UpdateTaskInput,
    "retrieve_all_tasks": RetrieveAllTasksInput,
})


def field_errors(exc: ValidationError) -> List[FieldError]:
    return [
        FieldError(path=".".join(str(part) for part in err["loc"]), message=err["msg"])
        for err in exc.errors()
    ]


def validate_arguments(
    tool_name: str,
    raw_args: Optional[Mapping[str, Any]],
    schema: Optional[Type[ToolInput]] = None,
) -> ToolInput:
    model = schema or SCHEMAS[tool_name]
    try:
        return model.model_validate({} if raw_args is None else raw_args)
    except ValidationError as exc:
        raise ToolValidationError(tool_name, field_errors(exc)) from exc
