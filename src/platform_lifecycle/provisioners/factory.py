"""Provisioner factory and the single-active-backend dispatcher."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog

from platform_lifecycle.config.models import (
    ProvisionerConfig,
    ProvisionerType,
    ServiceConfig,
)
from platform_lifecycle.provisioners.base import PlatformOptions, Provisioner
from platform_lifecycle.provisioners.docker import DockerProvisioner
from platform_lifecycle.provisioners.fake import FakeProvisioner

logger = structlog.get_logger()

_PROVISIONER_REGISTRY: dict[ProvisionerType, Callable[[ProvisionerConfig], Provisioner]] = {
    ProvisionerType.DOCKER: lambda cfg: DockerProvisioner(cfg.docker),
    ProvisionerType.FAKE: lambda cfg: FakeProvisioner.from_config(cfg.fake),
}


def create_provisioner(config: ProvisionerConfig) -> Provisioner:
    """Create a provisioner backend from configuration.

    Adding a backend = one class + one entry in ``_PROVISIONER_REGISTRY``.
    """
    build = _PROVISIONER_REGISTRY.get(config.type)
    if build is None:
        msg = f"Unsupported provisioner type: {config.type}"
        raise ValueError(msg)
    return build(config)


class ProvisionerDispatcher:
    """Routes every call to the single active provisioner.

    Several backends may be registered (one per deployment pool); exactly one
    is active for this service and there is no broadcast to the others.
    """

    def __init__(self, provisioners: dict[str, Provisioner], active: str) -> None:
        if active not in provisioners:
            msg = f"Unknown provisioner '{active}', registered: {sorted(provisioners)}"
            raise ValueError(msg)
        self._provisioners = dict(provisioners)
        self._active = active

    @property
    def active_name(self) -> str:
        return self._active

    @property
    def active(self) -> Provisioner:
        return self._provisioners[self._active]

    @property
    def names(self) -> list[str]:
        return sorted(self._provisioners)

    def get(self, name: str) -> Provisioner:
        try:
            return self._provisioners[name]
        except KeyError:
            msg = f"Unknown provisioner '{name}', registered: {self.names}"
            raise ValueError(msg) from None

    def activate(self, name: str) -> None:
        self.get(name)
        logger.info("provisioner.activated", provisioner=name, previous=self._active)
        self._active = name

    async def create(self, options: PlatformOptions) -> None:
        await self.active.create(options)

    async def update(self, options: PlatformOptions) -> None:
        await self.active.update(options)

    async def remove(self, name: str) -> None:
        await self.active.remove(name)

    async def health(self) -> dict[str, Any]:
        result = await self.active.health()
        return {"provisioner": self._active, **result}

    async def close(self) -> None:
        for name, provisioner in self._provisioners.items():
            close = getattr(provisioner, "close", None)
            if close is not None:
                await close()
                logger.debug("provisioner.closed", provisioner=name)


def create_dispatcher(config: ServiceConfig) -> ProvisionerDispatcher:
    """Build every configured provisioner and activate the configured one."""
    provisioners = {p.name: create_provisioner(p) for p in config.provisioners}
    assert config.active_provisioner is not None
    return ProvisionerDispatcher(provisioners, config.active_provisioner)
