"""Object store protocol and its error types.

The controller only ever needs get, delete, delete-by-selector and list.
Not-found is reported as a distinct exception so callers can treat it as
"already satisfied" without inspecting status codes.
"""

from __future__ import annotations

import builtins
from typing import Any, Protocol, runtime_checkable

from cluster_cleaner.models.cluster import ResourceKind

BACKGROUND = "Background"


class StoreError(Exception):
    """A store call failed for a reason other than the object being absent."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class NotFoundError(StoreError):
    """The requested object does not exist."""

    def __init__(self, kind: ResourceKind, namespace: str, name: str) -> None:
        super().__init__(f"{kind.kind} {namespace}/{name} not found", status=404)
        self.kind = kind
        self.namespace = namespace
        self.name = name


@runtime_checkable
class ObjectStore(Protocol):
    """Minimal interface the controller needs from the API server."""

    async def get(self, kind: ResourceKind, namespace: str, name: str) -> dict[str, Any]: ...

    async def delete(
        self,
        kind: ResourceKind,
        namespace: str,
        name: str,
        propagation: str = BACKGROUND,
    ) -> None: ...

    async def delete_by_selector(
        self,
        kind: ResourceKind,
        namespace: str,
        label_selector: str,
        propagation: str = BACKGROUND,
    ) -> None: ...

    async def list(self, kind: ResourceKind, namespace: str = "") -> tuple[builtins.list[dict[str, Any]], str]: ...
