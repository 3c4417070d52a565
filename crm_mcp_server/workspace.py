from __future__ import annotations

from dataclasses import dataclass
from typing import Any, FrozenSet, Mapping, Optional

from .errors import WorkspaceResolutionError

# Tools scoped to a contact, note or task id instead of a workspace.
# Extend together with the tool registry when adding tools.
WORKSPACE_EXEMPT_TOOLS: FrozenSet[str] = frozenset({
    "create_note",
    "retrieve_notes",
    "update_note",
    "update_task",
})


class WorkspaceResolver:
    def __init__(self, default_workspace_id: Optional[str] = None) -> None:
        self.default_workspace_id = (default_workspace_id or "").strip() or None

    def resolve(self, explicit_id: Optional[str] = None) -> str:
        """
        Explicit id wins, then the configured default. Never returns an empty string.
        """
        workspace_id = (explicit_id or "").strip() or self.default_workspace_id
        if not workspace_id:
            raise WorkspaceResolutionError(
                "workspaceId is required. Either provide it as a parameter "
                "or set DEFAULT_WORKSPACE_ID in your environment."
            )
        return workspace_id


@dataclass(frozen=True)
class OAuthContext:
    workspace_id: Optional[str] = None
    token: Optional[str] = None


def extract_oauth_context(meta: Any) -> Optional[OAuthContext]:
    """Read ``oauthContext`` from MCP request metadata, if a client sent one."""
    if meta is None:
        return None
    if hasattr(meta, "model_dump"):
        meta = meta.model_dump(by_alias=True)
    if not isinstance(meta, Mapping):
        return None
    raw = meta.get("oauthContext")
    if not isinstance(raw, Mapping):
        return None
    return OAuthContext(
        workspace_id=raw.get("workspaceId") or None,
        token=raw.get("accessToken") or None,
    )
