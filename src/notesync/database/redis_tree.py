import json
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional

import redis

from notesync.errors import NetworkError, RemotePermissionError
from notesync.models import RemotePath

logger = logging.getLogger(__name__)

_GLOB_SPECIAL = "\\*?[]"


def _escape_glob(text: str) -> str:
    return "".join("\\" + ch if ch in _GLOB_SPECIAL else ch for ch in text)


@contextmanager
def translate_errors(operation: str, path: RemotePath) -> Iterator[None]:
    """Map redis-py exceptions onto the retryable/non-retryable taxonomy."""
    try:
        yield
    except (redis.exceptions.NoPermissionError, redis.exceptions.AuthenticationError) as e:
        raise RemotePermissionError(f"{operation} {path}: {e}") from e
    except (redis.exceptions.ConnectionError, redis.exceptions.TimeoutError) as e:
        raise NetworkError(f"{operation} {path} failed: {e}") from e
    except redis.exceptions.ResponseError as e:
        if "NOPERM" in str(e).upper():
            raise RemotePermissionError(f"{operation} {path}: {e}") from e
        raise NetworkError(f"{operation} {path} failed: {e}") from e
    except redis.exceptions.RedisError as e:
        raise NetworkError(f"{operation} {path} failed: {e}") from e


class RedisTreeClient:
    """Path-addressed tree on top of plain Redis string keys.

    Every leaf lives under its own key ``{prefix}{path}`` holding a JSON
    value. Subtrees are assembled by scanning the ``{path}/`` key space, so
    there is no list or transaction primitive: callers overwrite whole leaves.
    """

    def __init__(self, client: "redis.Redis", key_prefix: str = "", scan_count: int = 500) -> None:
        self.client = client
        self.key_prefix = key_prefix
        self.scan_count = scan_count

    def _key(self, path: RemotePath) -> str:
        return f"{self.key_prefix}{path}"

    def _descendant_keys(self, path: RemotePath) -> List[str]:
        pattern = _escape_glob(self._key(path)) + "/*"
        return list(self.client.scan_iter(match=pattern, count=self.scan_count))

    @staticmethod
    def _loads(raw: Any) -> Any:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            return raw

    # ------------------------------------------------------------------
    # Tree operations
    # ------------------------------------------------------------------
    def ping(self) -> bool:
        with translate_errors("ping", RemotePath(())):
            return bool(self.client.ping())

    def write_leaf(self, path: RemotePath, value: Any) -> None:
        """Overwrite the node at ``path``; anything below it is replaced."""
        payload = json.dumps(value, sort_keys=True)
        with translate_errors("write", path):
            stale = self._descendant_keys(path)
            if stale:
                self.client.delete(*stale)
            self.client.set(self._key(path), payload)
        logger.debug("Wrote remote leaf %s", path)

    def update_children(self, path: RemotePath, values: Mapping[str, Any]) -> None:
        """Overwrite several direct children of ``path``, leaving siblings alone."""
        if not values:
            return
        payload = {self._key(path.child(k)): json.dumps(v, sort_keys=True) for k, v in values.items()}
        with translate_errors("update", path):
            self.client.mset(payload)

    def read_subtree(self, path: RemotePath) -> Optional[Any]:
        """Return the value at ``path``: a leaf value, a nested dict, or ``None``."""
        with translate_errors("read", path):
            raw_leaf = self.client.get(self._key(path))
            keys = self._descendant_keys(path)
            raw_values = self.client.mget(keys) if keys else []

        tree: Dict[str, Any] = {}
        base = self._key(path) + "/"
        for key, raw in zip(keys, raw_values):
            if raw is None:
                continue  # removed between SCAN and MGET
            if isinstance(key, bytes):
                key = key.decode("utf-8")
            parts = key[len(base):].split("/")
            node = tree
            for part in parts[:-1]:
                child = node.get(part)
                if not isinstance(child, dict):
                    child = {}
                    node[part] = child
                node = child
            node[parts[-1]] = self._loads(raw)

        if raw_leaf is not None:
            leaf = self._loads(raw_leaf)
            if not tree:
                return leaf
            if isinstance(leaf, dict):
                return {**leaf, **tree}
        return tree or None

    def exists(self, path: RemotePath) -> bool:
        with translate_errors("read", path):
            if self.client.exists(self._key(path)):
                return True
            pattern = _escape_glob(self._key(path)) + "/*"
            for _ in self.client.scan_iter(match=pattern, count=self.scan_count):
                return True
        return False

    def delete_leaf(self, path: RemotePath) -> None:
        """Remove the node at ``path`` and everything below it."""
        with translate_errors("delete", path):
            keys = self._descendant_keys(path)
            self.client.delete(self._key(path), *keys)
        logger.debug("Deleted remote node %s", path)

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "RedisTreeClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
