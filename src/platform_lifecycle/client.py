"""Async HTTP client for the platform lifecycle API."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import httpx
import structlog

from platform_lifecycle.errors import PlatformError, error_from_response
from platform_lifecycle.progress.codec import ProgressDecoder, ProgressMessage

logger = structlog.get_logger()

DEFAULT_SERVER = "http://127.0.0.1:8080"


class PlatformClient:
    """Thin async wrapper around the platform lifecycle REST API.

    Mutating calls are async generators yielding progress messages as the
    server streams them.  Errors raised before the stream opens come back as
    typed ``PlatformError`` subclasses.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_SERVER,
        *,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout, connect=10.0),
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> PlatformClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # -- Mutations -------------------------------------------------------------

    def add(
        self,
        name: str,
        *,
        dockerfile: str | None = None,
        dockerfile_content: bytes | None = None,
    ) -> AsyncIterator[ProgressMessage]:
        data = {"name": name}
        if dockerfile:
            data["dockerfile"] = dockerfile
        files = None
        if dockerfile_content is not None:
            files = {"dockerfile_content": ("Dockerfile", dockerfile_content)}
        return self._stream("POST", "/platforms/add", data=data, files=files)

    def update(
        self,
        name: str,
        *,
        dockerfile: str | None = None,
        dockerfile_content: bytes | None = None,
        disabled: bool | None = None,
    ) -> AsyncIterator[ProgressMessage]:
        params = {}
        if disabled is not None:
            params["disabled"] = "true" if disabled else "false"
        data = {"dockerfile": dockerfile or ""}
        files = None
        if dockerfile_content is not None:
            files = {"dockerfile_content": ("Dockerfile", dockerfile_content)}
        return self._stream(
            "PUT", f"/platforms/{name}", params=params, data=data, files=files
        )

    def remove(self, name: str) -> AsyncIterator[ProgressMessage]:
        return self._stream("DELETE", f"/platforms/{name}")

    # -- Reads -----------------------------------------------------------------

    async def list_platforms(self, *, enabled_only: bool = False) -> list[dict[str, Any]]:
        params = {"enabled_only": "true"} if enabled_only else {}
        resp = await self._client.get("/platforms", params=params)
        self._raise_for_error(resp)
        return resp.json()  # type: ignore[no-any-return]

    async def info(self, name: str) -> dict[str, Any]:
        resp = await self._client.get(f"/platforms/{name}")
        self._raise_for_error(resp)
        return resp.json()  # type: ignore[no-any-return]

    # -- Internals -------------------------------------------------------------

    async def _stream(
        self, method: str, url: str, **kwargs: Any
    ) -> AsyncIterator[ProgressMessage]:
        async with self._client.stream(method, url, **kwargs) as resp:
            if resp.status_code >= 400:
                await resp.aread()
                self._raise_for_error(resp)
            decoder = ProgressDecoder()
            async for chunk in resp.aiter_bytes():
                for message in decoder.feed(chunk):
                    yield message
            for message in decoder.flush():
                yield message

    @staticmethod
    def _raise_for_error(resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return
        try:
            body = resp.json()
        except ValueError:
            body = {"error": {"message": resp.text.strip()}}
        if not isinstance(body, dict):
            body = {}
        exc: PlatformError = error_from_response(body, resp.status_code)
        logger.debug(
            "client.request_failed",
            url=str(resp.request.url),
            status=resp.status_code,
            code=exc.code,
        )
        raise exc
