"""Health probes for service components."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import structlog

from platform_lifecycle.provisioners.base import Provisioner

logger = structlog.get_logger()


class Status(StrEnum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class ComponentHealth:
    name: str
    status: Status = Status.UNKNOWN
    detail: str = ""


@dataclass
class ServiceHealth:
    components: list[ComponentHealth] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return all(c.status == Status.HEALTHY for c in self.components)

    @property
    def summary(self) -> dict[str, str]:
        return {c.name: c.status.value for c in self.components}

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "components": [
                {"name": c.name, "status": c.status.value, "detail": c.detail}
                for c in self.components
            ],
        }


async def check_provisioner(provisioner: Provisioner) -> ComponentHealth:
    """Probe the active provisioner backend."""
    try:
        info = await provisioner.health()
    except Exception as exc:
        logger.warning("health.provisioner_probe_failed", error=str(exc))
        return ComponentHealth(
            name="provisioner", status=Status.UNHEALTHY, detail=str(exc)
        )
    name = str(info.get("provisioner") or info.get("type") or "provisioner")
    if info.get("status") == "error":
        return ComponentHealth(
            name="provisioner",
            status=Status.UNHEALTHY,
            detail=f"{name}: {info.get('error', 'unavailable')}",
        )
    return ComponentHealth(name="provisioner", status=Status.HEALTHY, detail=name)


async def check_service_health(provisioner: Provisioner) -> ServiceHealth:
    """Run all health checks and return the aggregated result."""
    return ServiceHealth(components=[await check_provisioner(provisioner)])
