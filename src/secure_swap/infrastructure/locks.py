"""Per-key asyncio locks.

Serializes work on one trade id inside a process while letting different
ids proceed concurrently. Entries are reference-counted and dropped once
nobody holds or waits on them, so the table does not grow with every id
ever seen.

The lock is reentrant for the task that holds it: a lifecycle transition
holds the trade's lock across its whole settlement and calls into the store,
which takes the same lock around each write.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class _Entry:
    __slots__ = ("lock", "owner", "depth", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.owner: asyncio.Task | None = None
        self.depth = 0
        self.users = 0


class KeyedLock:
    """A family of asyncio locks addressed by string key."""

    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _Entry()

        task = asyncio.current_task()
        if entry.owner is not None and entry.owner is task:
            entry.depth += 1
            try:
                yield
            finally:
                entry.depth -= 1
            return

        entry.users += 1
        try:
            async with entry.lock:
                entry.owner = task
                entry.depth = 1
                try:
                    yield
                finally:
                    entry.owner = None
                    entry.depth = 0
        finally:
            entry.users -= 1
            if entry.users == 0:
                self._entries.pop(key, None)

    def locked(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        return len(self._entries)
