"""
Async, coroutine-safe registries for node registrations and subscriptions.

Each registry owns a dictionary of immutable entries keyed by handle and guards it with
its own `asyncio.Lock`. The lock is held only for dictionary mutation and copying; no
network I/O ever happens under it, so readers polling cached values are never blocked
behind a slow server call.

Key Classes:
    BaseRegistry: Generic keyed registry with add/remove/get/snapshot/clear.
    NodeRegistry: Registered-node entries keyed by server-issued handle.
    SubscriptionRegistry: Subscription entries keyed by local handle, with cached-value updates.
    HandleGenerator: Unique subscription handle source.
    RegistrySnapshot: Immutable copy of registry contents taken under a single lock acquisition.
"""

import abc
import asyncio
import dataclasses
import itertools
import logging
import sys
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from typing_extensions import override  # pragma: no cover
elif sys.version_info >= (3, 12):
    from typing import override  # pragma: no cover
else:
    from typing_extensions import override  # pragma: no cover

from opcua_mcp._exceptions import (
    RegisteredNodeNotFoundError,
    RegistryItemNotFoundError,
    SubscriptionNotFoundError,
)
from opcua_mcp.client import CachedValue

from ._models import RegisteredNode, Subscription

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RegistrySnapshot(Generic[T]):
    """Atomic snapshot of registry items.

    Attributes:
        items: Copy of the registry items, keyed by handle, in insertion order.
    """

    items: dict[str, T]

    def values(self) -> list[T]:
        return list(self.items.values())

    def __len__(self) -> int:
        return len(self.items)


class BaseRegistry(abc.ABC, Generic[T]):
    """
    Generic, coroutine-safe keyed registry of immutable entries.

    Subclasses name the not-found error raised for unknown handles via `_not_found`.
    """

    def __init__(self) -> None:
        self._items: dict[str, T] = {}
        self._lock = asyncio.Lock()

    @abc.abstractmethod
    def _not_found(self, handle: str) -> RegistryItemNotFoundError:
        """Return the error raised when `handle` is unknown."""
        pass  # pragma: no cover

    async def add(self, handle: str, item: T) -> None:
        """Insert or replace the entry for `handle`."""
        async with self._lock:
            self._items[handle] = item

    async def get(self, handle: str) -> T:
        """
        Retrieve an entry by handle.

        Raises:
            RegistryItemNotFoundError: If the handle is unknown.
        """
        async with self._lock:
            if handle not in self._items:
                raise self._not_found(handle)
            return self._items[handle]

    async def remove(self, handle: str) -> T:
        """
        Remove and return the entry for `handle`.

        Raises:
            RegistryItemNotFoundError: If the handle is unknown.
        """
        async with self._lock:
            if handle not in self._items:
                raise self._not_found(handle)
            return self._items.pop(handle)

    async def contains(self, handle: str) -> bool:
        async with self._lock:
            return handle in self._items

    async def snapshot(self) -> RegistrySnapshot[T]:
        """Return a consistent copy of all entries."""
        async with self._lock:
            return RegistrySnapshot(items=self._items.copy())

    async def clear(self) -> int:
        """Remove every entry and return how many were removed."""
        async with self._lock:
            count = len(self._items)
            self._items.clear()
        if count:
            _LOGGER.debug(f"[{self.__class__.__name__}] cleared {count} entries")
        return count


class NodeRegistry(BaseRegistry[RegisteredNode]):
    """Registry of server-side node registrations keyed by registered handle."""

    @override
    def _not_found(self, handle: str) -> RegistryItemNotFoundError:
        return RegisteredNodeNotFoundError(handle)


class SubscriptionRegistry(BaseRegistry[Subscription]):
    """Registry of live subscriptions keyed by subscription handle."""

    @override
    def _not_found(self, handle: str) -> RegistryItemNotFoundError:
        return SubscriptionNotFoundError(handle)

    async def update_value(self, handle: str, value: CachedValue) -> bool:
        """
        Replace the cached value of a subscription.

        Notifications can trail an unsubscribe, so an unknown handle is ignored.

        Returns:
            bool: True if the subscription exists and was updated.
        """
        async with self._lock:
            entry = self._items.get(handle)
            if entry is None:
                return False
            self._items[handle] = dataclasses.replace(entry, latest_value=value)
            return True

    async def seed_value(self, handle: str, value: CachedValue) -> bool:
        """
        Set the cached value only if no notification has been stored yet.

        Returns:
            bool: True if the seed value was stored.
        """
        async with self._lock:
            entry = self._items.get(handle)
            if entry is None or entry.latest_value is not None:
                return False
            self._items[handle] = dataclasses.replace(entry, latest_value=value)
            return True

    async def targeting(self, target: str) -> list[Subscription]:
        """Return the subscriptions whose target is the registered handle `target`."""
        async with self._lock:
            return [
                entry
                for entry in self._items.values()
                if entry.is_registered_target and entry.target == target
            ]


class HandleGenerator:
    """
    Source of unique subscription handles.

    A handle combines a monotonic clock reading with a per-generator sequence number, so
    handles issued within the same clock tick still differ.

    Example:
        >>> generator = HandleGenerator()
        >>> generator.next()  # doctest: +SKIP
        'sub_1c9f3a2b4d5e_1'
    """

    def __init__(self, prefix: str = "sub") -> None:
        self._prefix = prefix
        self._sequence = itertools.count(1)

    def next(self) -> str:
        return f"{self._prefix}_{time.monotonic_ns():x}_{next(self._sequence)}"
