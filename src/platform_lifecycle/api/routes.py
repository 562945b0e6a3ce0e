"""HTTP routes for platform lifecycle operations.

Endpoints:
- POST   /platforms/add     - add a platform (multipart form)
- PUT    /platforms/{name}  - change recipe and/or enable/disable
- DELETE /platforms/{name}  - remove a platform
- GET    /platforms         - list platforms
- GET    /platforms/{name}  - platform details

Mutating endpoints validate first (errors become JSON responses with a
4xx status) and then stream newline-delimited progress messages while the
operation runs.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from typing import Any
from urllib.parse import parse_qsl

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from starlette.datastructures import UploadFile

from platform_lifecycle.api.runner import BackgroundOperations
from platform_lifecycle.config.models import ServiceConfig
from platform_lifecycle.errors import InvalidFlagError, PlatformError
from platform_lifecycle.platforms.manager import BuildOperation, PlatformManager
from platform_lifecycle.platforms.record import Recipe
from platform_lifecycle.progress.channel import ProgressChannel
from platform_lifecycle.progress.codec import ProgressMessage, encode

logger = structlog.get_logger()

router = APIRouter(prefix="/platforms", tags=["platforms"])

STREAM_MEDIA_TYPE = "application/x-json-stream"
ADD_SUCCESS_TRAILER = b"\nOK!\n"
TRUNCATED_STREAM_ERROR = (
    "Progress stream truncated: client too slow to read; the operation "
    "continues on the server, check the platform state for its outcome"
)

_STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
}

_TRUE_VALUES = {"true", "1", "yes"}
_FALSE_VALUES = {"false", "0", "no"}


def get_manager(request: Request) -> PlatformManager:
    return request.app.state.manager  # type: ignore[no-any-return]


# -- Request parsing -----------------------------------------------------------


async def read_form(request: Request) -> Mapping[str, Any]:
    """Parse a multipart or url-encoded form.

    Clients sometimes send url-encoded bodies labelled ``multipart/form-data``
    without a boundary; those are parsed as url-encoded.
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data") and "boundary=" not in content_type:
        body = (await request.body()).decode("utf-8", errors="replace")
        return dict(parse_qsl(body, keep_blank_values=True))
    return await request.form()


async def _form_bytes(value: Any) -> bytes | None:
    if value is None:
        return None
    if isinstance(value, UploadFile):
        return await value.read()
    return str(value).encode()


def _form_str(value: Any) -> str | None:
    if value is None or isinstance(value, UploadFile):
        return None
    return str(value)


def parse_disabled(raw: str | None) -> bool | None:
    """Tri-state flag: absent/empty keeps the current value."""
    if raw is None or not raw.strip():
        return None
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    msg = f"Invalid value for 'disabled': {raw!r} (expected 'true' or 'false')"
    raise InvalidFlagError(msg)


# -- Streaming -----------------------------------------------------------------


async def _run_operation(
    manager: PlatformManager, op: BuildOperation, channel: ProgressChannel
) -> None:
    try:
        await manager.execute(op, channel)
    except PlatformError as exc:
        # Already written to the channel as the terminating error message.
        logger.debug("api.operation_failed", platform=op.name, code=exc.code)
    finally:
        await channel.close()


def stream_operation(
    request: Request,
    op: BuildOperation,
    *,
    success_trailer: bytes = b"",
) -> StreamingResponse:
    """Run *op* in the background and stream its progress to the client."""
    config: ServiceConfig = request.app.state.config
    operations: BackgroundOperations = request.app.state.operations
    manager = get_manager(request)

    channel = ProgressChannel(
        queue_size=config.stream.queue_size,
        write_timeout=config.stream.write_timeout_seconds,
        label=f"{op.kind}:{op.name}",
    )
    operations.spawn(
        _run_operation(manager, op, channel), name=f"platform-{op.kind}-{op.name}"
    )

    async def body() -> AsyncIterator[bytes]:
        try:
            async for chunk in channel.encoded():
                yield chunk
            if channel.detached:
                # Output was dropped, so the outcome is unknown to this client.
                yield encode(ProgressMessage(error=TRUNCATED_STREAM_ERROR))
            elif success_trailer and not channel.has_error:
                yield success_trailer
        finally:
            if not channel.closed:
                channel.detach()

    return StreamingResponse(body(), media_type=STREAM_MEDIA_TYPE, headers=_STREAM_HEADERS)


# -- Routes --------------------------------------------------------------------


@router.post("/add")
async def platform_add(
    request: Request, manager: PlatformManager = Depends(get_manager)
) -> StreamingResponse:
    form = await read_form(request)
    recipe = Recipe.from_fields(
        _form_str(form.get("dockerfile")),
        await _form_bytes(form.get("dockerfile_content")),
    )
    op = await manager.prepare_add(_form_str(form.get("name")), recipe)
    logger.info("api.platform_add", platform=op.name)
    return stream_operation(request, op, success_trailer=ADD_SUCCESS_TRAILER)


@router.put("/{name}")
async def platform_update(
    name: str, request: Request, manager: PlatformManager = Depends(get_manager)
) -> StreamingResponse:
    form = await read_form(request)
    raw_disabled = request.query_params.get("disabled")
    if raw_disabled is None:
        raw_disabled = _form_str(form.get("disabled"))
    disabled = parse_disabled(raw_disabled)
    recipe = Recipe.from_fields(
        _form_str(form.get("dockerfile")),
        await _form_bytes(form.get("dockerfile_content")),
    )
    op = await manager.prepare_update(name, recipe, disabled)
    logger.info(
        "api.platform_update",
        platform=name,
        rebuild=op.rebuild,
        disabled=op.disabled,
    )
    return stream_operation(request, op)


@router.delete("/{name}")
async def platform_remove(
    name: str, request: Request, manager: PlatformManager = Depends(get_manager)
) -> StreamingResponse:
    op = await manager.prepare_remove(name)
    logger.info("api.platform_remove", platform=name)
    return stream_operation(request, op)


@router.get("")
async def platform_list(
    enabled_only: bool = False, manager: PlatformManager = Depends(get_manager)
) -> list[dict[str, object]]:
    platforms = await manager.list_platforms(enabled_only=enabled_only)
    return [p.to_dict() for p in platforms]


@router.get("/{name}")
async def platform_info(
    name: str, manager: PlatformManager = Depends(get_manager)
) -> dict[str, object]:
    platform = await manager.get(name)
    return platform.to_dict()
