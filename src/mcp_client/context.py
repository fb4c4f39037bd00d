from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from mcp_client.types import RequestId

if TYPE_CHECKING:
    from mcp_client.client import Client


@dataclass
class RequestContext:
    """What a handler for a server-initiated request gets to see."""

    request_id: RequestId
    method: str
    params: dict[str, Any] | None
    session: Client

    @property
    def meta(self) -> dict[str, Any] | None:
        if self.params is None:
            return None
        return self.params.get("_meta")
