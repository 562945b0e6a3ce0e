"""Pydantic configuration models for the platform lifecycle service."""

from __future__ import annotations

from enum import StrEnum
from typing import Self

from pydantic import BaseModel, Field, SecretStr, model_validator


class ProvisionerType(StrEnum):
    """Supported provisioner backends."""

    DOCKER = "docker"
    FAKE = "fake"


class BindingPolicy(StrEnum):
    """How disable/remove reacts to applications bound to the platform."""

    ADVISORY = "advisory"
    STRICT = "strict"


class DockerConfig(BaseModel):
    """Docker Engine API settings for the image-building provisioner."""

    # unix:///path/to/docker.sock or tcp://host:port
    host: str = "unix:///var/run/docker.sock"
    api_version: str | None = None
    # Images are tagged <registry>/<namespace>/<platform name>.
    registry: str | None = None
    namespace: str = "platforms"
    push: bool = False
    registry_username: str | None = None
    registry_password: SecretStr | None = None
    pull: bool = True
    no_cache: bool = False
    # Builds may run for minutes; None disables the read timeout.
    build_timeout_seconds: float | None = Field(default=None, gt=0)
    connect_timeout_seconds: float = Field(default=10.0, gt=0)
    ready_max_attempts: int = Field(default=5, ge=1)
    ready_max_wait_seconds: float = Field(default=10.0, gt=0)

    @model_validator(mode="after")
    def check_push_requirements(self) -> Self:
        if self.push and not self.registry:
            msg = "registry is required when push is enabled"
            raise ValueError(msg)
        if self.registry_username and self.registry_password is None:
            msg = "registry_password is required when registry_username is set"
            raise ValueError(msg)
        return self

    @property
    def uses_unix_socket(self) -> bool:
        return self.host.startswith("unix://")


class FakeProvisionerConfig(BaseModel):
    """Settings for the no-op provisioner (local development and tests)."""

    # Platform names whose builds/removals fail, for exercising error paths.
    fail_on: list[str] = Field(default_factory=list)
    build_output: list[str] = Field(default_factory=list)


class ProvisionerConfig(BaseModel):
    """One registered provisioner backend."""

    name: str = Field(min_length=1)
    type: ProvisionerType = ProvisionerType.FAKE
    docker: DockerConfig | None = None
    fake: FakeProvisionerConfig | None = None

    @model_validator(mode="after")
    def check_backend_config(self) -> Self:
        if self.type == ProvisionerType.DOCKER and self.docker is None:
            self.docker = DockerConfig()
        if self.type == ProvisionerType.FAKE and self.fake is None:
            self.fake = FakeProvisionerConfig()
        return self


class StreamConfig(BaseModel):
    """Progress channel tuning."""

    # 0 = unbounded
    queue_size: int = Field(default=256, ge=0)
    write_timeout_seconds: float | None = Field(default=30.0, gt=0)


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = Field(default=8080, ge=1, le=65535)


class LoggingConfig(BaseModel):
    level: str = "info"
    json_output: bool = False


class ServiceConfig(BaseModel):
    """Top-level configuration for the lifecycle service."""

    provisioners: list[ProvisionerConfig] = Field(
        default_factory=lambda: [ProvisionerConfig(name="fake")], min_length=1
    )
    active_provisioner: str | None = None
    binding_policy: BindingPolicy = BindingPolicy.ADVISORY
    stream: StreamConfig = Field(default_factory=StreamConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def check_active_provisioner(self) -> Self:
        names = [p.name for p in self.provisioners]
        if len(set(names)) != len(names):
            msg = f"Provisioner names must be unique, got {names}"
            raise ValueError(msg)
        if self.active_provisioner is None:
            self.active_provisioner = names[0]
        elif self.active_provisioner not in names:
            msg = (
                f"active_provisioner '{self.active_provisioner}' is not one of "
                f"the registered provisioners {names}"
            )
            raise ValueError(msg)
        return self
