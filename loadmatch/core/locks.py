"""
Per-entity locking for check-then-write sequences on matches.

The active-match invariant (one DriverAccepted/Confirmed match per load and
per driver) is a read followed by a write. KeyedLock serialises those
sequences for the loads and drivers involved.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class _Entry:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.holders = 0


class KeyedLock:
    """
    Registry of named locks, acquired in a stable order.

    An entry lives only while some thread holds or waits on its key.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    def _checkout(self, key: str) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            entry.holders += 1
            return entry

    def _checkin(self, key: str, entry: _Entry) -> None:
        with self._guard:
            entry.holders -= 1
            if entry.holders == 0:
                del self._entries[key]

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        """
        Hold every lock named in keys for the duration of the block.

        Keys are de-duplicated and sorted so two callers asking for the same
        set can never deadlock.
        """
        ordered = sorted(set(keys))
        checked_out: list[tuple[str, _Entry]] = []
        acquired: list[_Entry] = []
        try:
            for key in ordered:
                entry = self._checkout(key)
                checked_out.append((key, entry))
                entry.lock.acquire()
                acquired.append(entry)
            yield
        finally:
            for entry in reversed(acquired):
                entry.lock.release()
            for key, entry in reversed(checked_out):
                self._checkin(key, entry)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


def load_key(load_id: str) -> str:
    return f"load:{load_id}"


def driver_key(driver_id: str) -> str:
    return f"driver:{driver_id}"
