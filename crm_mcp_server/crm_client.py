from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Mapping, Optional
from urllib.parse import quote

import httpx

from .errors import CRMAPIError, InvalidIdentifierError
from .observability import sanitize_log_data
from .trace_context import get_propagation_headers

logger = logging.getLogger("crm_mcp_server.crm_client")

USER_AGENT = "CRM-MCP-Server/1.0.0"

_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,100}$")
_IDEMPOTENT_METHODS = frozenset({"GET", "HEAD"})


def validate_id(value: Any, id_type: str = "ID") -> str:
    """
    Sanitise an identifier before it is interpolated into a URL path.

    Returns the URL-encoded id; raises InvalidIdentifierError otherwise.
    """
    if not value or not isinstance(value, str):
        raise InvalidIdentifierError(f"{id_type} is required and must be a string")
    if not _ID_PATTERN.match(value):
        raise InvalidIdentifierError(
            f"Invalid {id_type} format. Must contain only alphanumeric characters, "
            "hyphens, and underscores (max 100 chars)"
        )
    return quote(value, safe="")


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text or None


class CRMClient:
    """Async client for the CRM REST API. Every failure surfaces as CRMAPIError."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        retries: int = 2,
        backoff_base: float = 0.3,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retries = retries
        self.backoff_base = backoff_base
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            follow_redirects=False,
        )
        self._headers = {
            "x-api-key": api_key,
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        }

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        json: Optional[Mapping[str, Any]] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        method = method.upper()
        url = f"{self.base_url}/{path.lstrip('/')}"
        headers = {**self._headers, **get_propagation_headers()}
        query = {k: v for k, v in (params or {}).items() if v is not None} or None
        attempts = self.retries + 1 if method in _IDEMPOTENT_METHODS else 1

        logger.debug(
            "CRM request %s %s",
            method,
            path,
            extra={"correlation_id": headers.get("X-Request-ID", "")},
        )
        for attempt in range(attempts):
            try:
                response = await self.http_client.request(
                    method,
                    url,
                    json=dict(json) if json is not None else None,
                    params=query,
                    headers=headers,
                    timeout=self.timeout,
                )
            except httpx.TimeoutException:
                error = CRMAPIError(f"Request to CRM API timed out after {self.timeout:g}s")
            except httpx.RequestError as exc:
                logger.warning("CRM request %s %s failed: %s", method, path, type(exc).__name__)
                error = CRMAPIError("No response received from API server")
            else:
                if response.is_success:
                    if not response.content:
                        return None
                    try:
                        return response.json()
                    except ValueError as exc:
                        raise CRMAPIError(
                            "CRM API returned a non-JSON response",
                            response.status_code,
                            response.text,
                        ) from exc
                body = _response_body(response)
                error = CRMAPIError(
                    f"API request failed with status {response.status_code}",
                    response.status_code,
                    body,
                )
                logger.warning(
                    "CRM API error %s on %s %s: %s",
                    response.status_code,
                    method,
                    path,
                    sanitize_log_data(body),
                )
                if response.status_code < 500:
                    raise error

            if attempt + 1 < attempts:
                await asyncio.sleep(self.backoff_base * (2**attempt))
        raise error

    async def get_contact_properties(self, workspace_id: str) -> Any:
        ws = validate_id(workspace_id, "workspace ID")
        return await self.request("GET", f"/workspaces/{ws}/contact-properties")

    async def search_contacts(self, workspace_id: str, search: Mapping[str, Any]) -> Any:
        ws = validate_id(workspace_id, "workspace ID")
        return await self.request("POST", f"/workspaces/{ws}/contacts/search", json=search)

    async def retrieve_all_contacts(self, workspace_id: str, params: Mapping[str, Any]) -> Any:
        ws = validate_id(workspace_id, "workspace ID")
        return await self.request("GET", f"/workspaces/{ws}/contacts", params=params)

    async def create_note(self, contact_id: str, note: Mapping[str, Any]) -> Any:
        cid = validate_id(contact_id, "contact ID")
        return await self.request("POST", f"/contacts/{cid}/notes", json=note)

    async def retrieve_notes(self, contact_id: str) -> Any:
        cid = validate_id(contact_id, "contact ID")
        return await self.request("GET", f"/contacts/{cid}/notes")

    async def update_note(self, note_id: str, note: Mapping[str, Any]) -> Any:
        nid = validate_id(note_id, "note ID")
        return await self.request("PATCH", f"/notes/{nid}", json=note)

    async def create_task(self, workspace_id: str, task: Mapping[str, Any]) -> Any:
        ws = validate_id(workspace_id, "workspace ID")
        return await self.request("POST", f"/workspaces/{ws}/tasks", json=task)

    async def update_task(self, task_id: str, task: Mapping[str, Any]) -> Any:
        tid = validate_id(task_id, "task ID")
        return await self.request("PATCH", f"/tasks/{tid}", json=task)

    async def retrieve_all_tasks(self, workspace_id: str, params: Mapping[str, Any]) -> Any:
        ws = validate_id(workspace_id, "workspace ID")
        return await self.request("GET", f"/workspaces/{ws}/tasks", params=params)
