"""Docker provisioner: builds platform images through the Docker Engine API."""

from __future__ import annotations

import base64
import io
import json
import tarfile
from typing import Any

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from platform_lifecycle.config.models import DockerConfig
from platform_lifecycle.errors import ProvisionerError
from platform_lifecycle.platforms.record import Recipe
from platform_lifecycle.provisioners.base import PlatformOptions

logger = structlog.get_logger()


def _build_client(config: DockerConfig) -> httpx.AsyncClient:
    timeout = httpx.Timeout(
        config.build_timeout_seconds, connect=config.connect_timeout_seconds
    )
    transport: httpx.AsyncHTTPTransport | None = None
    if config.uses_unix_socket:
        transport = httpx.AsyncHTTPTransport(uds=config.host.removeprefix("unix://"))
        base_url = "http://docker"
    else:
        base_url = config.host.replace("tcp://", "http://", 1)
    if config.api_version:
        base_url = f"{base_url.rstrip('/')}/v{config.api_version}"
    return httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout)


def dockerfile_archive(content: bytes) -> bytes:
    """Wrap inline Dockerfile content in the tar build context the daemon expects."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        info = tarfile.TarInfo(name="Dockerfile")
        info.size = len(content)
        info.mode = 0o644
        tar.addfile(info, io.BytesIO(content))
    return buf.getvalue()


class DockerProvisioner:
    """Builds, pushes and removes platform images on a Docker daemon."""

    def __init__(
        self,
        config: DockerConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or DockerConfig()
        self._client = client or _build_client(self._config)

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> DockerProvisioner:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    def image_name(self, name: str) -> str:
        parts = [self._config.registry, self._config.namespace, name]
        return "/".join(p.strip("/") for p in parts if p)

    # -- Health ----------------------------------------------------------------

    async def wait_until_ready(self) -> None:
        """Block until the Docker daemon answers pings."""

        @retry(
            retry=retry_if_exception_type(httpx.HTTPError),
            stop=stop_after_attempt(self._config.ready_max_attempts),
            wait=wait_exponential(
                multiplier=0.5, max=self._config.ready_max_wait_seconds
            ),
            reraise=True,
        )
        async def _ping() -> None:
            resp = await self._client.get("/_ping")
            resp.raise_for_status()

        await _ping()
        logger.debug("docker.ready", host=self._config.host)

    async def health(self) -> dict[str, Any]:
        try:
            resp = await self._client.get("/_ping")
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            return {"type": "docker", "status": "error", "error": str(exc)}
        return {"type": "docker", "status": "running", "host": self._config.host}

    # -- Provisioner protocol --------------------------------------------------

    async def create(self, options: PlatformOptions) -> None:
        await self._build_and_push(options)
        logger.info(
            "docker_provisioner.created",
            platform=options.name,
            image=self.image_name(options.name),
        )

    async def update(self, options: PlatformOptions) -> None:
        if options.rebuild:
            await self._build_and_push(options)
            logger.info(
                "docker_provisioner.rebuilt",
                platform=options.name,
                image=self.image_name(options.name),
            )
        # Images carry no enabled/disabled state; the flag lives on the record.
        logger.info(
            "docker_provisioner.flag_applied",
            platform=options.name,
            disabled=options.disabled,
        )

    async def remove(self, name: str) -> None:
        image = f"{self.image_name(name)}:latest"
        try:
            resp = await self._client.delete(f"/images/{image}", params={"force": "1"})
        except httpx.HTTPError as exc:
            msg = f"Failed to remove image {image}: {exc}"
            raise ProvisionerError(msg) from exc
        if resp.status_code == 404:
            logger.info("docker_provisioner.image_already_removed", image=image)
            return
        if resp.status_code >= 300:
            msg = (
                f"Failed to remove image {image}: "
                f"{resp.status_code} {_daemon_message(resp.text)}"
            )
            raise ProvisionerError(msg)
        logger.info("docker_provisioner.removed", platform=name, image=image)

    # -- Internals -------------------------------------------------------------

    async def _build_and_push(self, options: PlatformOptions) -> None:
        if options.recipe is None:
            msg = f"No recipe to build platform '{options.name}'"
            await options.output.error(msg)
            raise ProvisionerError(msg)
        try:
            await self.wait_until_ready()
        except httpx.HTTPError as exc:
            await self._fail(options, f"Docker daemon unavailable: {exc}", exc)
        await self._build(options, options.recipe)
        if self._config.push:
            await self._push(options)

    async def _build(self, options: PlatformOptions, recipe: Recipe) -> None:
        image = self.image_name(options.name)
        params: dict[str, str] = {"t": f"{image}:latest", "rm": "1", "forcerm": "1"}
        if self._config.pull:
            params["pull"] = "1"
        if self._config.no_cache:
            params["nocache"] = "1"
        content: bytes | None = None
        headers: dict[str, str] = {}
        if recipe.dockerfile_url:
            params["remote"] = recipe.dockerfile_url
        else:
            content = dockerfile_archive(recipe.dockerfile_content or b"")
            headers["Content-Type"] = "application/x-tar"

        logger.info("docker_provisioner.build_started", platform=options.name, image=image)
        await self._stream(
            options,
            "POST",
            "/build",
            params=params,
            content=content,
            headers=headers,
            action="build",
        )

    async def _push(self, options: PlatformOptions) -> None:
        image = self.image_name(options.name)
        await options.output.write(f"Pushing {image}:latest\n")
        await self._stream(
            options,
            "POST",
            f"/images/{image}/push",
            params={"tag": "latest"},
            headers={"X-Registry-Auth": self._registry_auth()},
            action="push",
        )

    async def _stream(
        self,
        options: PlatformOptions,
        method: str,
        url: str,
        *,
        action: str,
        params: dict[str, str] | None = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Relay the daemon's JSON-lines progress into the output sink."""
        try:
            async with self._client.stream(
                method, url, params=params, content=content, headers=headers
            ) as resp:
                if resp.status_code >= 300:
                    body = (await resp.aread()).decode("utf-8", errors="replace")
                    await self._fail(
                        options,
                        f"Failed to {action} platform '{options.name}': "
                        f"{resp.status_code} {_daemon_message(body)}",
                    )
                async for line in resp.aiter_lines():
                    await self._relay(options, line, action)
        except httpx.HTTPError as exc:
            await self._fail(
                options, f"Failed to {action} platform '{options.name}': {exc}", exc
            )

    async def _relay(self, options: PlatformOptions, line: str, action: str) -> None:
        if not line.strip():
            return
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            await options.output.write(line + "\n")
            return
        if not isinstance(data, dict):
            await options.output.write(line + "\n")
            return
        if data.get("error"):
            await self._fail(
                options,
                f"Failed to {action} platform '{options.name}': {data['error']}",
            )
        if "stream" in data:
            await options.output.write(data["stream"])
        elif "status" in data:
            text = data["status"]
            if data.get("id"):
                text = f"{data['id']}: {text}"
            await options.output.write(text + "\n")

    async def _fail(
        self,
        options: PlatformOptions,
        message: str,
        cause: BaseException | None = None,
    ) -> None:
        logger.error("docker_provisioner.failed", platform=options.name, error=message)
        await options.output.error(message)
        raise ProvisionerError(message) from cause

    def _registry_auth(self) -> str:
        auth: dict[str, str] = {}
        if self._config.registry_username and self._config.registry_password:
            auth = {
                "username": self._config.registry_username,
                "password": self._config.registry_password.get_secret_value(),
                "serveraddress": self._config.registry or "",
            }
        return base64.urlsafe_b64encode(json.dumps(auth).encode()).decode()


def _daemon_message(body: str) -> str:
    """Extract the daemon's error message from a JSON error body."""
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        return body.strip()
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return body.strip()
