"""Platform lifecycle manager: add, update and remove orchestration.

Every mutating operation runs in two steps:

1. ``prepare_*`` validates the request and claims the platform name.  All
   validation, not-found and conflict errors surface here, before any
   progress stream is opened or any provisioner is called.
2. ``execute`` calls the provisioner with the caller's output sink and, only
   if it succeeds, commits the record to the store in a single write.

At most one mutating operation per platform name is in flight; a concurrent
request for the same name is rejected, not queued.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

import structlog

from platform_lifecycle.errors import (
    OperationInProgressError,
    PlatformDisabledError,
    PlatformError,
    PlatformNotFoundError,
    ProvisionerError,
)
from platform_lifecycle.platforms.guard import ApplicationBindingGuard
from platform_lifecycle.platforms.record import (
    Platform,
    Recipe,
    validate_create,
    validate_name,
    validate_update,
)
from platform_lifecycle.platforms.store import PlatformStore
from platform_lifecycle.progress.channel import OutputSink, ProgressBuffer
from platform_lifecycle.provisioners.base import PlatformOptions, Provisioner

logger = structlog.get_logger()


class OperationKind(StrEnum):
    ADD = "add"
    UPDATE = "update"
    REMOVE = "remove"


@dataclass
class BuildOperation:
    """A validated, claimed lifecycle operation waiting to be executed."""

    kind: OperationKind
    name: str
    recipe: Recipe | None = None
    disabled: bool = False
    rebuild: bool = False
    existing: Platform | None = None
    released: bool = field(default=False, repr=False)


class PlatformManager:
    """Orchestrates platform lifecycle operations against one provisioner."""

    def __init__(
        self,
        store: PlatformStore,
        provisioner: Provisioner,
        guard: ApplicationBindingGuard,
    ) -> None:
        self._store = store
        self._provisioner = provisioner
        self._guard = guard
        self._inflight: set[str] = set()

    @property
    def provisioner(self) -> Provisioner:
        return self._provisioner

    def in_flight(self, name: str) -> bool:
        return name in self._inflight

    # -- Reads -----------------------------------------------------------------

    async def get(self, name: str) -> Platform:
        platform = await self._store.get(name)
        if platform is None:
            raise PlatformNotFoundError(name)
        return platform

    async def list_platforms(self, *, enabled_only: bool = False) -> list[Platform]:
        platforms = await self._store.list_all()
        if enabled_only:
            return [p for p in platforms if not p.disabled]
        return platforms

    async def resolve_for_build(self, name: str) -> Platform:
        """Return the platform a new application build may target."""
        platform = await self.get(name)
        if platform.disabled:
            msg = f"Platform '{name}' is disabled and cannot be used for new builds"
            raise PlatformDisabledError(msg)
        return platform

    # -- Prepare ---------------------------------------------------------------

    async def prepare_add(self, name: str | None, recipe: Recipe | None) -> BuildOperation:
        validate_name(name)
        assert name is not None
        op = self._claim(BuildOperation(OperationKind.ADD, name))
        try:
            existing = await self._store.get(name)
            op.recipe = validate_create(name, recipe, exists=existing is not None)
            op.rebuild = True
        except BaseException:
            self.release(op)
            raise
        return op

    async def prepare_update(
        self,
        name: str,
        recipe: Recipe | None = None,
        disabled: bool | None = None,
    ) -> BuildOperation:
        op = self._claim(BuildOperation(OperationKind.UPDATE, name))
        try:
            existing = await self.get(name)
            plan = validate_update(existing, recipe, disabled)
            op.existing = existing
            op.recipe = plan.recipe
            op.disabled = plan.disabled
            op.rebuild = plan.rebuild
        except BaseException:
            self.release(op)
            raise
        return op

    async def prepare_remove(self, name: str) -> BuildOperation:
        op = self._claim(BuildOperation(OperationKind.REMOVE, name))
        try:
            op.existing = await self.get(name)
        except BaseException:
            self.release(op)
            raise
        return op

    def _claim(self, op: BuildOperation) -> BuildOperation:
        if op.name in self._inflight:
            msg = f"Another operation on platform '{op.name}' is already in progress"
            raise OperationInProgressError(msg)
        self._inflight.add(op.name)
        return op

    def release(self, op: BuildOperation) -> None:
        """Give up the claim on the platform name; safe to call twice."""
        if op.released:
            return
        op.released = True
        self._inflight.discard(op.name)

    # -- Execute ---------------------------------------------------------------

    async def execute(self, op: BuildOperation, output: OutputSink) -> Platform | None:
        """Run a prepared operation; returns the committed record (None on remove).

        Failures are written to *output* as exactly one error message and then
        re-raised.
        """
        if op.released:
            msg = f"Operation {op.kind} on '{op.name}' was already executed or released"
            raise RuntimeError(msg)
        log = logger.bind(operation=str(op.kind), platform=op.name)
        try:
            if op.kind == OperationKind.ADD:
                return await self._run_add(op, output)
            if op.kind == OperationKind.UPDATE:
                return await self._run_update(op, output)
            await self._run_remove(op, output)
            return None
        except PlatformError as exc:
            log.warning("platform.operation_failed", error=exc.message, code=exc.code)
            if not output.has_error:
                await output.error(exc.message)
            raise
        except Exception as exc:
            log.exception("platform.operation_crashed")
            message = f"Unexpected failure during {op.kind} of platform '{op.name}': {exc}"
            if not output.has_error:
                await output.error(message)
            raise ProvisionerError(message) from exc
        finally:
            self.release(op)

    async def _run_add(self, op: BuildOperation, output: OutputSink) -> Platform:
        assert op.recipe is not None
        await self._provisioner.create(
            PlatformOptions(name=op.name, output=output, recipe=op.recipe)
        )
        platform = Platform(name=op.name, recipe=op.recipe)
        await self._store.insert(platform)
        logger.info("platform.added", platform=op.name, recipe=op.recipe.describe())
        return platform

    async def _run_update(self, op: BuildOperation, output: OutputSink) -> Platform:
        existing = op.existing
        assert existing is not None
        if op.disabled and not existing.disabled:
            await self._guard.check(op.name, "disable", output)

        await self._provisioner.update(
            PlatformOptions(
                name=op.name,
                output=output,
                recipe=op.recipe,
                disabled=op.disabled,
                rebuild=op.rebuild,
            )
        )

        if op.rebuild:
            assert op.recipe is not None
            updated = existing.rebuilt(op.recipe, disabled=op.disabled)
        else:
            updated = existing.with_disabled(op.disabled)
        if updated is not existing:
            await self._store.save(updated)
        logger.info(
            "platform.updated",
            platform=op.name,
            rebuilt=op.rebuild,
            disabled=updated.disabled,
            version=updated.version,
        )
        return updated

    async def _run_remove(self, op: BuildOperation, output: OutputSink) -> None:
        await self._guard.check(op.name, "remove", output)
        await self._provisioner.remove(op.name)
        await self._store.delete(op.name)
        logger.info("platform.removed", platform=op.name)

    # -- One-shot helpers --------------------------------------------------------

    async def add(
        self,
        name: str | None,
        recipe: Recipe | None,
        output: OutputSink | None = None,
    ) -> Platform:
        op = await self.prepare_add(name, recipe)
        platform = await self.execute(op, output or ProgressBuffer())
        assert platform is not None
        return platform

    async def update(
        self,
        name: str,
        recipe: Recipe | None = None,
        disabled: bool | None = None,
        output: OutputSink | None = None,
    ) -> Platform:
        op = await self.prepare_update(name, recipe, disabled)
        platform = await self.execute(op, output or ProgressBuffer())
        assert platform is not None
        return platform

    async def remove(self, name: str, output: OutputSink | None = None) -> None:
        op = await self.prepare_remove(name)
        await self.execute(op, output or ProgressBuffer())
