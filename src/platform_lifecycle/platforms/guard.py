"""Application binding guard for disable/remove."""

from __future__ import annotations

import structlog

from platform_lifecycle.config.models import BindingPolicy
from platform_lifecycle.errors import PlatformInUseError
from platform_lifecycle.platforms.store import ApplicationBindings
from platform_lifecycle.progress.channel import OutputSink

logger = structlog.get_logger()


class ApplicationBindingGuard:
    """Reports (or, under the strict policy, refuses) impact on bound apps.

    Bound applications are never modified; they keep running on the image
    they were built from.
    """

    def __init__(
        self,
        bindings: ApplicationBindings,
        policy: BindingPolicy = BindingPolicy.ADVISORY,
    ) -> None:
        self._bindings = bindings
        self._policy = policy

    @property
    def policy(self) -> BindingPolicy:
        return self._policy

    async def check(self, name: str, action: str, output: OutputSink) -> list[str]:
        """Inspect bindings before *action* ("disable" or "remove") on *name*.

        Returns the bound application names.  Raises PlatformInUseError when
        the policy is strict and any application is bound.
        """
        apps = await self._bindings.apps_for_platform(name)
        if not apps:
            return apps

        listing = ", ".join(apps)
        if self._policy == BindingPolicy.STRICT:
            logger.warning(
                "guard.blocked", platform=name, action=action, apps=apps
            )
            msg = (
                f"Cannot {action} platform '{name}': "
                f"{len(apps)} application(s) still bound ({listing})"
            )
            raise PlatformInUseError(msg)

        logger.info("guard.advisory", platform=name, action=action, apps=apps)
        await output.write(
            f"Warning: {len(apps)} application(s) built on platform '{name}' "
            f"will keep running but cannot be rebuilt on it after {action}: "
            f"{listing}\n"
        )
        return apps
