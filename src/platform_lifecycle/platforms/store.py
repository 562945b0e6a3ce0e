"""Persistence and application-binding interfaces used by the manager.

The real storage engine lives outside this package; the in-memory
implementations back the standalone server and the test suite.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Protocol, runtime_checkable

from platform_lifecycle.errors import PlatformExistsError, PlatformNotFoundError
from platform_lifecycle.platforms.record import Platform


@runtime_checkable
class PlatformStore(Protocol):
    """Keyed storage of platform records (one record per name)."""

    async def get(self, name: str) -> Platform | None:
        ...

    async def insert(self, platform: Platform) -> None:
        """Store a new record; raises PlatformExistsError on duplicates."""
        ...

    async def save(self, platform: Platform) -> None:
        """Replace an existing record as a whole."""
        ...

    async def delete(self, name: str) -> None:
        ...

    async def list_all(self) -> list[Platform]:
        ...


@runtime_checkable
class ApplicationBindings(Protocol):
    """Read-only view of which applications were built against a platform."""

    async def apps_for_platform(self, name: str) -> list[str]:
        ...


class InMemoryPlatformStore:
    def __init__(self) -> None:
        self._records: dict[str, Platform] = {}

    async def get(self, name: str) -> Platform | None:
        return self._records.get(name)

    async def insert(self, platform: Platform) -> None:
        if platform.name in self._records:
            msg = f"Platform '{platform.name}' already exists"
            raise PlatformExistsError(msg)
        self._records[platform.name] = platform

    async def save(self, platform: Platform) -> None:
        if platform.name not in self._records:
            raise PlatformNotFoundError(platform.name)
        self._records[platform.name] = platform

    async def delete(self, name: str) -> None:
        if self._records.pop(name, None) is None:
            raise PlatformNotFoundError(name)

    async def list_all(self) -> list[Platform]:
        return sorted(self._records.values(), key=lambda p: p.name)


class InMemoryApplicationBindings:
    def __init__(self, bindings: dict[str, str] | None = None) -> None:
        self._apps: dict[str, set[str]] = defaultdict(set)
        for app, platform in (bindings or {}).items():
            self.bind(app, platform)

    def bind(self, app: str, platform: str) -> None:
        for apps in self._apps.values():
            apps.discard(app)
        self._apps[platform].add(app)

    def unbind(self, app: str) -> None:
        for apps in self._apps.values():
            apps.discard(app)

    async def apps_for_platform(self, name: str) -> list[str]:
        return sorted(self._apps.get(name, ()))
