"""Producer-consumer channel between a running operation and its client.

The lifecycle operation (producer) writes progress as it happens; the
transport (consumer) drains the channel in arrival order and forwards each
message to the wire immediately.  There is no explicit end-of-stream
message: closing the channel ends iteration, the same way a closed
connection ends the stream for the remote reader.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Protocol, runtime_checkable

import structlog

from platform_lifecycle.progress.codec import ProgressMessage, encode

logger = structlog.get_logger()


@runtime_checkable
class OutputSink(Protocol):
    """Where operations and provisioners report progress."""

    @property
    def has_error(self) -> bool:
        """True once an error message has been written."""
        ...

    async def write(self, message: str) -> None:
        """Report informational output."""
        ...

    async def error(self, error: str) -> None:
        """Report a failure explanation."""
        ...


class ProgressChannel:
    """Ordered, optionally bounded channel of progress messages.

    Parameters
    ----------
    queue_size:
        Maximum number of undelivered messages; ``0`` means unbounded.
    write_timeout:
        Seconds a producer may block on a full queue before the consumer is
        considered gone.  ``None`` waits forever.
    label:
        Included in log events (usually ``"<operation>:<platform>"``).
    """

    def __init__(
        self,
        *,
        queue_size: int = 0,
        write_timeout: float | None = 30.0,
        label: str = "",
    ) -> None:
        self._queue: asyncio.Queue[ProgressMessage | None] = asyncio.Queue(
            maxsize=queue_size
        )
        self._write_timeout = write_timeout
        self._label = label
        self._closed = False
        self._detached = False
        self._has_error = False
        self._dropped = 0

    @property
    def has_error(self) -> bool:
        return self._has_error

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def detached(self) -> bool:
        return self._detached

    @property
    def dropped(self) -> int:
        """Messages discarded after the consumer went away."""
        return self._dropped

    # -- Producer side -----------------------------------------------------------

    async def write(self, message: str) -> None:
        await self._put(ProgressMessage(message=message))

    async def error(self, error: str) -> None:
        self._has_error = True
        await self._put(ProgressMessage(error=error))

    async def close(self) -> None:
        """End the stream; pending messages are still delivered."""
        if self._closed:
            return
        self._closed = True
        if self._detached:
            return
        await self._enqueue(None)

    async def _put(self, item: ProgressMessage) -> None:
        if self._closed:
            msg = f"Progress channel {self._label!r} is closed"
            raise RuntimeError(msg)
        if self._detached:
            self._dropped += 1
            return
        if not await self._enqueue(item):
            self._dropped += 1

    async def _enqueue(self, item: ProgressMessage | None) -> bool:
        try:
            if self._write_timeout is None:
                await self._queue.put(item)
            else:
                await asyncio.wait_for(
                    self._queue.put(item), timeout=self._write_timeout
                )
        except TimeoutError:
            logger.warning(
                "progress.consumer_detached",
                channel=self._label,
                reason="write_timeout",
                timeout=self._write_timeout,
            )
            self._detach()
            return False
        return True

    # -- Consumer side -----------------------------------------------------------

    def detach(self) -> None:
        """Called by the transport when the client has gone away."""
        if self._detached:
            return
        logger.info("progress.consumer_detached", channel=self._label, reason="client")
        self._detach()

    def _detach(self) -> None:
        self._detached = True
        while not self._queue.empty():
            self._queue.get_nowait()
            self._dropped += 1
        # Wake up a reader that may still be waiting.
        self._queue.put_nowait(None)

    def __aiter__(self) -> AsyncIterator[ProgressMessage]:
        return self

    async def __anext__(self) -> ProgressMessage:
        item = await self._queue.get()
        if item is None:
            raise StopAsyncIteration
        return item

    async def encoded(self) -> AsyncIterator[bytes]:
        """Yield each message in wire form as soon as it is written."""
        async for message in self:
            yield encode(message)


class ProgressBuffer:
    """In-memory sink for callers that do not stream (CLI, tests, scripts)."""

    def __init__(self) -> None:
        self.messages: list[ProgressMessage] = []

    @property
    def has_error(self) -> bool:
        return any(m.is_error for m in self.messages)

    @property
    def errors(self) -> list[str]:
        return [m.error for m in self.messages if m.is_error]

    @property
    def text(self) -> str:
        return "".join(m.message for m in self.messages if not m.is_error)

    async def write(self, message: str) -> None:
        self.messages.append(ProgressMessage(message=message))

    async def error(self, error: str) -> None:
        self.messages.append(ProgressMessage(error=error))
