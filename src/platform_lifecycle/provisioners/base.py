"""Provisioner protocol for backend-agnostic platform build/teardown."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from platform_lifecycle.platforms.record import Recipe
from platform_lifecycle.progress.channel import OutputSink


@dataclass(frozen=True, slots=True)
class PlatformOptions:
    """Arguments for one provisioner call.

    ``rebuild`` selects the build path on update; when it is False only the
    enable/disable path runs and ``recipe`` is None.
    """

    name: str
    output: OutputSink
    recipe: Recipe | None = None
    disabled: bool = False
    rebuild: bool = True


@runtime_checkable
class Provisioner(Protocol):
    """Builds and removes platform images on a deployment substrate.

    Calls may run for as long as an image build takes.  All progress goes
    through ``options.output``; on failure the explanation is written there as
    an error message before ``ProvisionerError`` is raised.
    """

    async def create(self, options: PlatformOptions) -> None:
        """Build the platform image for the first time."""
        ...

    async def update(self, options: PlatformOptions) -> None:
        """Rebuild (``options.rebuild``) and/or apply the enable/disable flag."""
        ...

    async def remove(self, name: str) -> None:
        """Delete the platform image."""
        ...

    async def health(self) -> dict[str, Any]:
        """Return backend-specific health information."""
        ...
