from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol, runtime_checkable

from notesync.models import RemotePath


@runtime_checkable
class RemoteTree(Protocol):
    """Remote store seen by the sync engine. Implemented by ``RedisTreeClient``."""

    def ping(self) -> bool:
        ...

    def write_leaf(self, path: RemotePath, value: Any) -> None:
        ...

    def update_children(self, path: RemotePath, values: Mapping[str, Any]) -> None:
        ...

    def read_subtree(self, path: RemotePath) -> Optional[Any]:
        ...

    def exists(self, path: RemotePath) -> bool:
        ...

    def delete_leaf(self, path: RemotePath) -> None:
        ...
