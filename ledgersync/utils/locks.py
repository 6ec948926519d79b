"""In-process keyed locks.

Used to serialize account resolve-or-create per matching key and credential
refresh per connection. Locks are created lazily and never removed; the key
space is bounded by the number of accounts and connections a process touches.
"""

import threading
from contextlib import ExitStack, contextmanager
from typing import Hashable, Iterable, Iterator


class KeyedLock:
    """A family of mutexes addressed by key."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[Hashable, threading.Lock] = {}

    def _lock_for(self, key: Hashable) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        """Hold the lock for a single key."""
        with self._lock_for(key):
            yield

    @contextmanager
    def hold_many(self, keys: Iterable[Hashable]) -> Iterator[None]:
        """Hold the locks for several keys.

        Keys are acquired in sorted order so two callers sharing any subset
        of keys cannot deadlock.
        """
        ordered = sorted(set(keys), key=repr)
        with ExitStack() as stack:
            for key in ordered:
                stack.enter_context(self._lock_for(key))
            yield
