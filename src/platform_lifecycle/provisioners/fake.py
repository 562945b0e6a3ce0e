"""No-op provisioner that records calls instead of building images."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog

from platform_lifecycle.config.models import FakeProvisionerConfig
from platform_lifecycle.errors import ProvisionerError
from platform_lifecycle.provisioners.base import PlatformOptions

logger = structlog.get_logger()


@dataclass
class FakePlatform:
    name: str
    version: int = 0
    disabled: bool = False
    dockerfile: str = ""


@dataclass
class _Calls:
    create: int = 0
    update: int = 0
    build: int = 0
    remove: int = 0


@dataclass
class FakeProvisioner:
    """In-memory provisioner for local development and tests.

    ``fail_on`` names make create/update/remove fail after writing the error
    to the sink, the way a real backend would.
    """

    fail_on: set[str] = field(default_factory=set)
    build_output: list[str] = field(default_factory=list)
    platforms: dict[str, FakePlatform] = field(default_factory=dict)
    calls: _Calls = field(default_factory=_Calls)

    @classmethod
    def from_config(cls, config: FakeProvisionerConfig | None = None) -> FakeProvisioner:
        cfg = config or FakeProvisionerConfig()
        return cls(fail_on=set(cfg.fail_on), build_output=list(cfg.build_output))

    async def create(self, options: PlatformOptions) -> None:
        self.calls.create += 1
        await self._build(options)
        self.platforms[options.name] = FakePlatform(
            name=options.name,
            version=1,
            disabled=options.disabled,
            dockerfile=_describe(options),
        )

    async def update(self, options: PlatformOptions) -> None:
        self.calls.update += 1
        platform = self.platforms.get(options.name)
        if platform is None:
            msg = f"Platform '{options.name}' is not provisioned"
            await options.output.error(msg)
            raise ProvisionerError(msg)
        if options.rebuild:
            await self._build(options)
            platform.version += 1
            platform.dockerfile = _describe(options)
        platform.disabled = options.disabled

    async def remove(self, name: str) -> None:
        self.calls.remove += 1
        if name in self.fail_on:
            msg = f"Failed to remove platform '{name}'"
            raise ProvisionerError(msg)
        if self.platforms.pop(name, None) is None:
            msg = f"Platform '{name}' is not provisioned"
            raise ProvisionerError(msg)

    async def health(self) -> dict[str, Any]:
        return {"type": "fake", "status": "running", "platforms": len(self.platforms)}

    async def _build(self, options: PlatformOptions) -> None:
        self.calls.build += 1
        for line in self.build_output:
            await options.output.write(line)
        if options.name in self.fail_on:
            msg = f"Failed to build platform '{options.name}'"
            await options.output.error(msg)
            logger.info("fake_provisioner.build_failed", platform=options.name)
            raise ProvisionerError(msg)

    def reset(self) -> None:
        self.platforms.clear()
        self.calls = _Calls()


def _describe(options: PlatformOptions) -> str:
    return options.recipe.describe() if options.recipe is not None else ""
