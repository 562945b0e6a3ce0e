"""Platform record and its validity rules."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime

from platform_lifecycle.errors import (
    InvalidNameError,
    InvalidRecipeError,
    PlatformExistsError,
)

NAME_PATTERN = re.compile(r"^[a-z][a-z0-9-]{0,39}$")


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class Recipe:
    """Build input for a platform: a Dockerfile URL or inline Dockerfile content."""

    dockerfile_url: str | None = None
    dockerfile_content: bytes | None = None

    def __post_init__(self) -> None:
        if self.dockerfile_url and self.dockerfile_content:
            msg = "Provide either a Dockerfile URL or Dockerfile content, not both"
            raise InvalidRecipeError(msg)
        if not self.dockerfile_url and not self.dockerfile_content:
            msg = "A recipe needs a Dockerfile URL or Dockerfile content"
            raise InvalidRecipeError(msg)

    @classmethod
    def from_fields(
        cls,
        dockerfile_url: str | None = None,
        dockerfile_content: bytes | None = None,
    ) -> Recipe | None:
        """Normalize request fields; empty values mean "not supplied"."""
        url = (dockerfile_url or "").strip() or None
        content = dockerfile_content or None
        if url is None and content is None:
            return None
        return cls(dockerfile_url=url, dockerfile_content=content)

    def describe(self) -> str:
        if self.dockerfile_url:
            return self.dockerfile_url
        return f"inline Dockerfile ({len(self.dockerfile_content or b'')} bytes)"


@dataclass(frozen=True, slots=True)
class Platform:
    """A named, versioned base build template."""

    name: str
    recipe: Recipe
    disabled: bool = False
    version: int = 1
    last_built_at: datetime = field(default_factory=_utcnow)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def rebuilt(self, recipe: Recipe, *, disabled: bool) -> Platform:
        now = _utcnow()
        return replace(
            self,
            recipe=recipe,
            disabled=disabled,
            version=self.version + 1,
            last_built_at=now,
            updated_at=now,
        )

    def with_disabled(self, disabled: bool) -> Platform:
        if disabled == self.disabled:
            return self
        return replace(self, disabled=disabled, updated_at=_utcnow())

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "disabled": self.disabled,
            "version": self.version,
            "dockerfile": self.recipe.dockerfile_url or "",
            "inline": self.recipe.dockerfile_content is not None,
            "last_built_at": self.last_built_at.isoformat(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class UpdatePlan:
    """What an update will do once the provisioner step succeeds."""

    recipe: Recipe | None
    disabled: bool
    rebuild: bool


def validate_name(name: str | None) -> str:
    if not name:
        msg = "Platform name is required"
        raise InvalidNameError(msg)
    if not NAME_PATTERN.match(name):
        msg = (
            f"Invalid platform name '{name}': use at most 40 characters, "
            "lower case letters, numbers or dashes, starting with a letter"
        )
        raise InvalidNameError(msg)
    return name


def validate_create(name: str | None, recipe: Recipe | None, *, exists: bool) -> Recipe:
    """Check an add request; returns the recipe to build."""
    validate_name(name)
    if exists:
        msg = f"Platform '{name}' already exists"
        raise PlatformExistsError(msg)
    if recipe is None:
        msg = "Dockerfile URL or Dockerfile content is required to add a platform"
        raise InvalidRecipeError(msg)
    return recipe


def validate_update(
    existing: Platform,
    recipe: Recipe | None,
    disabled: bool | None,
) -> UpdatePlan:
    """Resolve an update against the current record.

    ``recipe`` and ``disabled`` are independent: a recipe always triggers a
    rebuild whatever the flag says, and an omitted flag keeps the current
    enabled/disabled state.
    """
    target_disabled = existing.disabled if disabled is None else disabled
    return UpdatePlan(
        recipe=recipe,
        disabled=target_disabled,
        rebuild=recipe is not None,
    )
