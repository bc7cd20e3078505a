"""Shared doubles: a dict-backed Redis, a failure-injecting tree and a switchable network."""

from __future__ import annotations

import re
from collections import Counter
from typing import Dict, List

import pytest

from notesync.app import NoteSyncApp
from notesync.config import SyncSettings
from notesync.database import LocalStore, RedisTreeClient
from notesync.errors import NetworkError


def _glob_to_regex(pattern: str) -> "re.Pattern[str]":
    out = []
    i = 0
    while i < len(pattern):
        ch = pattern[i]
        if ch == "\\" and i + 1 < len(pattern):
            out.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        if ch == "*":
            out.append(".*")
        elif ch == "?":
            out.append(".")
        else:
            out.append(re.escape(ch))
        i += 1
    return re.compile("^" + "".join(out) + "$", re.DOTALL)


class FakeRedis:
    """Just enough of ``redis.Redis`` (``decode_responses=True``) for the tree client."""

    def __init__(self) -> None:
        self.data: Dict[str, str] = {}
        self.closed = False

    def ping(self) -> bool:
        return True

    def get(self, key: str):
        return self.data.get(key)

    def set(self, key: str, value: str) -> bool:
        self.data[key] = value
        return True

    def mget(self, keys: List[str]):
        return [self.data.get(k) for k in keys]

    def mset(self, mapping: Dict[str, str]) -> bool:
        self.data.update(mapping)
        return True

    def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
        return removed

    def exists(self, *keys: str) -> int:
        return sum(1 for k in keys if k in self.data)

    def scan_iter(self, match: str = "*", count: int = 10):
        regex = _glob_to_regex(match)
        for key in list(self.data):
            if regex.match(key):
                yield key

    def close(self) -> None:
        self.closed = True


class FlakyTree(RedisTreeClient):
    """In-memory remote tree; ``fail()`` queues errors for the next calls of an operation."""

    def __init__(self) -> None:
        super().__init__(FakeRedis(), key_prefix="test:")
        self.failures: Dict[str, list] = {}
        self.calls: Counter = Counter()

    def fail(self, operation: str, error: Exception = None, times: int = 1) -> None:
        error = error or NetworkError(f"injected {operation} failure")
        self.failures.setdefault(operation, []).extend([error] * times)

    def _check(self, operation: str) -> None:
        self.calls[operation] += 1
        queue = self.failures.get(operation)
        if queue:
            raise queue.pop(0)

    def ping(self) -> bool:
        self._check("ping")
        return super().ping()

    def write_leaf(self, path, value) -> None:
        self._check("write")
        super().write_leaf(path, value)

    def update_children(self, path, values) -> None:
        self._check("update")
        super().update_children(path, values)

    def read_subtree(self, path):
        self._check("read")
        return super().read_subtree(path)

    def exists(self, path) -> bool:
        self._check("exists")
        return super().exists(path)

    def delete_leaf(self, path) -> None:
        self._check("delete")
        super().delete_leaf(path)

    def keys(self) -> List[str]:
        return sorted(k[len(self.key_prefix):] for k in self.client.data)


class SwitchableNetwork:
    def __init__(self, online: bool = True) -> None:
        self.online = online

    def is_connected(self) -> bool:
        return self.online


@pytest.fixture
def tree() -> FlakyTree:
    return FlakyTree()


@pytest.fixture
def network() -> SwitchableNetwork:
    return SwitchableNetwork()


@pytest.fixture
def store(tmp_path):
    with LocalStore(tmp_path / "notes.db") as local:
        yield local


def make_app(tmp_path, name: str, tree, network) -> NoteSyncApp:
    settings = SyncSettings(db_path=tmp_path / name / "notes.db", sync_interval=0.05, retry_delay=0.0)
    return NoteSyncApp(
        settings=settings,
        store=LocalStore(settings.db_path),
        tree=tree,
        connectivity=network,
    )


@pytest.fixture
def app_context(tmp_path, tree, network):
    app = make_app(tmp_path, "device-a", tree, network)
    yield app
    app.close()


@pytest.fixture
def other_device(tmp_path, tree, network):
    app = make_app(tmp_path, "device-b", tree, network)
    yield app
    app.close()
