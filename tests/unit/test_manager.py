"""Unit tests for PlatformManager orchestration."""

from __future__ import annotations

import asyncio

import pytest

from platform_lifecycle.config.models import BindingPolicy
from platform_lifecycle.errors import (
    InvalidNameError,
    InvalidRecipeError,
    NotFoundError,
    OperationInProgressError,
    PlatformDisabledError,
    PlatformExistsError,
    PlatformInUseError,
    PlatformNotFoundError,
    ProvisionerError,
    ValidationError,
)
from platform_lifecycle.platforms.guard import ApplicationBindingGuard
from platform_lifecycle.platforms.manager import OperationKind, PlatformManager
from platform_lifecycle.platforms.record import Recipe
from platform_lifecycle.platforms.store import (
    InMemoryApplicationBindings,
    InMemoryPlatformStore,
)
from platform_lifecycle.progress.channel import ProgressBuffer
from platform_lifecycle.provisioners.base import PlatformOptions
from platform_lifecycle.provisioners.fake import FakeProvisioner

URL = "http://localhost/Dockerfile"


def _make_manager(
    provisioner: object | None = None,
    bindings: dict[str, str] | None = None,
    policy: BindingPolicy = BindingPolicy.ADVISORY,
) -> tuple[PlatformManager, InMemoryPlatformStore]:
    store = InMemoryPlatformStore()
    guard = ApplicationBindingGuard(InMemoryApplicationBindings(bindings), policy)
    manager = PlatformManager(
        store=store,
        provisioner=provisioner if provisioner is not None else FakeProvisioner(),
        guard=guard,
    )
    return manager, store


class _BlockingProvisioner(FakeProvisioner):
    """Holds create() open until released so overlap can be observed."""

    def __init__(self) -> None:
        super().__init__()
        self.started = asyncio.Event()
        self.proceed = asyncio.Event()

    async def create(self, options: PlatformOptions) -> None:
        self.started.set()
        await self.proceed.wait()
        await super().create(options)


class _CrashingProvisioner(FakeProvisioner):
    async def create(self, options: PlatformOptions) -> None:
        raise RuntimeError("socket closed")


@pytest.mark.asyncio
class TestAdd:
    async def test_add_with_url(self):
        provisioner = FakeProvisioner()
        manager, store = _make_manager(provisioner)
        output = ProgressBuffer()
        platform = await manager.add("test", Recipe(dockerfile_url=URL), output)

        assert platform.name == "test"
        assert platform.disabled is False
        assert platform.version == 1
        assert await store.get("test") == platform
        assert provisioner.calls.create == 1
        assert provisioner.platforms["test"].dockerfile == URL
        assert output.messages == []

    async def test_add_with_inline_content(self):
        provisioner = FakeProvisioner()
        manager, _ = _make_manager(provisioner)
        recipe = Recipe(dockerfile_content=b"FROM base/java\nRUN true\n")
        platform = await manager.add("java", recipe)
        assert platform.recipe.dockerfile_content == recipe.dockerfile_content
        assert provisioner.calls.build == 1

    async def test_build_output_is_forwarded(self):
        provisioner = FakeProvisioner(build_output=["step 1\n", "step 2\n"])
        manager, _ = _make_manager(provisioner)
        output = ProgressBuffer()
        await manager.add("test", Recipe(dockerfile_url=URL), output)
        assert output.text == "step 1\nstep 2\n"

    async def test_both_recipe_forms_never_reach_provisioner(self):
        provisioner = FakeProvisioner()
        manager, store = _make_manager(provisioner)
        with pytest.raises(ValidationError):
            await manager.add("test", Recipe.from_fields(URL, b"FROM base/java"))
        assert provisioner.calls.create == 0
        assert await store.list_all() == []

    async def test_missing_recipe(self):
        provisioner = FakeProvisioner()
        manager, _ = _make_manager(provisioner)
        with pytest.raises(InvalidRecipeError):
            await manager.add("test", None)
        assert provisioner.calls.create == 0
        assert not manager.in_flight("test")

    async def test_missing_name(self):
        manager, _ = _make_manager()
        with pytest.raises(InvalidNameError):
            await manager.add("", Recipe(dockerfile_url=URL))

    async def test_duplicate_name(self):
        provisioner = FakeProvisioner()
        manager, _ = _make_manager(provisioner)
        await manager.add("test", Recipe(dockerfile_url=URL))
        with pytest.raises(PlatformExistsError):
            await manager.add("test", Recipe(dockerfile_url=URL))
        assert provisioner.calls.create == 1

    async def test_provisioner_failure_leaves_no_record(self):
        provisioner = FakeProvisioner(fail_on={"broken"})
        manager, store = _make_manager(provisioner)
        output = ProgressBuffer()
        with pytest.raises(ProvisionerError):
            await manager.add("broken", Recipe(dockerfile_url=URL), output)
        assert await store.get("broken") is None
        assert len(output.errors) == 1
        assert not manager.in_flight("broken")

    async def test_unexpected_exception_is_wrapped(self):
        manager, store = _make_manager(_CrashingProvisioner())
        output = ProgressBuffer()
        with pytest.raises(ProvisionerError, match="socket closed"):
            await manager.add("test", Recipe(dockerfile_url=URL), output)
        assert len(output.errors) == 1
        assert await store.get("test") is None


@pytest.mark.asyncio
class TestUpdate:
    async def _added(self, provisioner: FakeProvisioner | None = None, **kwargs):
        provisioner = provisioner or FakeProvisioner()
        manager, store = _make_manager(provisioner, **kwargs)
        await manager.add("wat", Recipe(dockerfile_url=URL))
        return manager, store, provisioner

    async def test_disable_only_does_not_rebuild(self):
        manager, store, provisioner = await self._added()
        platform = await manager.update("wat", disabled=True)
        assert platform.disabled is True
        assert platform.version == 1
        assert provisioner.calls.build == 1
        assert provisioner.platforms["wat"].disabled is True
        assert (await store.get("wat")).disabled is True

    async def test_disable_with_recipe_rebuilds(self):
        manager, _, provisioner = await self._added()
        recipe = Recipe(dockerfile_content=b"FROM base/ruby")
        platform = await manager.update("wat", recipe, disabled=True)
        assert platform.disabled is True
        assert platform.version == 2
        assert provisioner.calls.build == 2
        assert provisioner.platforms["wat"].version == 2

    async def test_enable_without_recipe(self):
        manager, _, provisioner = await self._added()
        await manager.update("wat", disabled=True)
        platform = await manager.update("wat", disabled=False)
        assert platform.disabled is False
        assert provisioner.calls.build == 1

    async def test_repeated_disable_is_idempotent(self):
        manager, store, _ = await self._added()
        first = await manager.update("wat", disabled=True)
        second = await manager.update("wat", disabled=True)
        assert second == first
        assert await store.get("wat") == first

    async def test_empty_dockerfile_and_no_flag(self):
        manager, _, provisioner = await self._added()
        recipe = Recipe.from_fields("", None)
        platform = await manager.update("wat", recipe, None)
        assert platform.disabled is False
        assert platform.version == 1
        assert provisioner.calls.build == 1

    async def test_unknown_platform(self):
        provisioner = FakeProvisioner()
        manager, _ = _make_manager(provisioner)
        with pytest.raises(PlatformNotFoundError):
            await manager.update("ghost", Recipe(dockerfile_url=URL))
        assert provisioner.calls.update == 0
        assert not manager.in_flight("ghost")

    async def test_failed_rebuild_keeps_record(self):
        manager, store, provisioner = await self._added()
        before = await store.get("wat")
        provisioner.fail_on.add("wat")
        output = ProgressBuffer()
        with pytest.raises(ProvisionerError):
            await manager.update("wat", Recipe(dockerfile_url="http://other"), True, output)
        assert await store.get("wat") == before
        assert len(output.errors) == 1

    async def test_disable_with_bound_apps_warns(self):
        manager, store, _ = await self._added(bindings={"web": "wat"})
        output = ProgressBuffer()
        await manager.update("wat", disabled=True, output=output)
        assert "web" in output.text
        assert not output.has_error
        assert (await store.get("wat")).disabled

    async def test_disable_with_bound_apps_strict(self):
        manager, store, provisioner = await self._added(
            bindings={"web": "wat"}, policy=BindingPolicy.STRICT
        )
        output = ProgressBuffer()
        with pytest.raises(PlatformInUseError):
            await manager.update("wat", disabled=True, output=output)
        assert len(output.errors) == 1
        assert provisioner.calls.update == 0
        assert not (await store.get("wat")).disabled

    async def test_rebuild_of_disabled_platform_does_not_warn_again(self):
        manager, _, _ = await self._added(bindings={"web": "wat"})
        await manager.update("wat", disabled=True)
        output = ProgressBuffer()
        await manager.update("wat", Recipe(dockerfile_url=URL), True, output)
        assert output.text == ""


@pytest.mark.asyncio
class TestRemove:
    async def test_remove(self):
        provisioner = FakeProvisioner()
        manager, store = _make_manager(provisioner)
        await manager.add("test", Recipe(dockerfile_url=URL))
        await manager.remove("test")
        assert await store.get("test") is None
        assert "test" not in provisioner.platforms

    async def test_second_remove_is_not_found(self):
        manager, _ = _make_manager()
        await manager.add("test", Recipe(dockerfile_url=URL))
        await manager.remove("test")
        with pytest.raises(NotFoundError):
            await manager.remove("test")

    async def test_add_remove_add_round_trip(self):
        manager, store = _make_manager()
        await manager.add("test", Recipe(dockerfile_url=URL))
        await manager.remove("test")
        recipe_b = Recipe(dockerfile_content=b"FROM base/java")
        platform = await manager.add("test", recipe_b)
        assert platform.version == 1
        assert platform.recipe == recipe_b
        assert [p.name for p in await store.list_all()] == ["test"]

    async def test_remove_failure_keeps_record(self):
        provisioner = FakeProvisioner()
        manager, store = _make_manager(provisioner)
        await manager.add("test", Recipe(dockerfile_url=URL))
        provisioner.fail_on.add("test")
        output = ProgressBuffer()
        with pytest.raises(ProvisionerError):
            await manager.remove("test", output)
        assert await store.get("test") is not None
        assert len(output.errors) == 1

    async def test_remove_with_bound_apps_warns(self):
        manager, store = _make_manager(bindings={"web": "test"})
        await manager.add("test", Recipe(dockerfile_url=URL))
        output = ProgressBuffer()
        await manager.remove("test", output)
        assert "after remove" in output.text
        assert await store.get("test") is None


@pytest.mark.asyncio
class TestConcurrency:
    async def test_second_operation_on_same_name_is_rejected(self):
        provisioner = _BlockingProvisioner()
        manager, store = _make_manager(provisioner)
        op = await manager.prepare_add("test", Recipe(dockerfile_url=URL))
        task = asyncio.create_task(manager.execute(op, ProgressBuffer()))
        await provisioner.started.wait()

        assert manager.in_flight("test")
        with pytest.raises(OperationInProgressError):
            await manager.prepare_add("test", Recipe(dockerfile_url=URL))

        provisioner.proceed.set()
        await task
        assert not manager.in_flight("test")
        assert (await store.get("test")).version == 1

    async def test_other_names_proceed(self):
        manager, _ = _make_manager()
        op = await manager.prepare_add("one", Recipe(dockerfile_url=URL))
        other = await manager.prepare_add("two", Recipe(dockerfile_url=URL))
        assert manager.in_flight("one")
        assert manager.in_flight("two")
        manager.release(op)
        manager.release(other)

    async def test_release_is_idempotent(self):
        manager, _ = _make_manager()
        op = await manager.prepare_add("one", Recipe(dockerfile_url=URL))
        manager.release(op)
        manager.release(op)
        assert not manager.in_flight("one")

    async def test_released_operation_cannot_execute(self):
        manager, _ = _make_manager()
        op = await manager.prepare_add("one", Recipe(dockerfile_url=URL))
        assert op.kind == OperationKind.ADD
        manager.release(op)
        with pytest.raises(RuntimeError):
            await manager.execute(op, ProgressBuffer())


@pytest.mark.asyncio
class TestReads:
    async def test_get_unknown(self):
        manager, _ = _make_manager()
        with pytest.raises(PlatformNotFoundError):
            await manager.get("ghost")

    async def test_list_enabled_only(self):
        manager, _ = _make_manager()
        await manager.add("go", Recipe(dockerfile_url=URL))
        await manager.add("python", Recipe(dockerfile_url=URL))
        await manager.update("go", disabled=True)
        assert [p.name for p in await manager.list_platforms()] == ["go", "python"]
        enabled = await manager.list_platforms(enabled_only=True)
        assert [p.name for p in enabled] == ["python"]

    async def test_resolve_for_build_rejects_disabled(self):
        manager, _ = _make_manager()
        await manager.add("go", Recipe(dockerfile_url=URL))
        assert (await manager.resolve_for_build("go")).name == "go"
        await manager.update("go", disabled=True)
        with pytest.raises(PlatformDisabledError):
            await manager.resolve_for_build("go")
