"""Unit tests for the progress channel and buffer sinks."""

from __future__ import annotations

import asyncio

import pytest

from platform_lifecycle.progress.channel import (
    OutputSink,
    ProgressBuffer,
    ProgressChannel,
)
from platform_lifecycle.progress.codec import ProgressDecoder, ProgressMessage


async def _drain(channel: ProgressChannel) -> list[ProgressMessage]:
    return [m async for m in channel]


@pytest.mark.asyncio
class TestProgressChannel:
    async def test_preserves_arrival_order(self):
        channel = ProgressChannel()

        async def produce() -> None:
            for i in range(3):
                await channel.write(f"step {i}\n")
            await channel.error("failed at step 3")
            await channel.close()

        producer = asyncio.create_task(produce())
        messages = await _drain(channel)
        await producer

        assert [m.message for m in messages[:3]] == ["step 0\n", "step 1\n", "step 2\n"]
        assert messages[3] == ProgressMessage(error="failed at step 3")
        assert channel.has_error

    async def test_empty_message_is_delivered(self):
        channel = ProgressChannel()
        await channel.write("")
        await channel.close()
        assert await _drain(channel) == [ProgressMessage(message="")]

    async def test_write_after_close_raises(self):
        channel = ProgressChannel(label="add:python")
        await channel.close()
        with pytest.raises(RuntimeError, match="closed"):
            await channel.write("late")

    async def test_close_is_idempotent(self):
        channel = ProgressChannel()
        await channel.close()
        await channel.close()
        assert await _drain(channel) == []

    async def test_producer_waits_for_consumer(self):
        channel = ProgressChannel(queue_size=1, write_timeout=None)

        async def produce() -> None:
            for i in range(3):
                await channel.write(str(i))
            await channel.close()

        producer = asyncio.create_task(produce())
        await asyncio.sleep(0.01)
        assert not producer.done()

        messages = await _drain(channel)
        await producer
        assert [m.message for m in messages] == ["0", "1", "2"]

    async def test_write_timeout_detaches_consumer(self):
        channel = ProgressChannel(queue_size=1, write_timeout=0.01)
        await channel.write("a")
        await channel.write("b")  # blocks on the full queue, then times out
        assert channel.detached

        await channel.write("c")
        await channel.close()
        assert channel.dropped == 3
        assert await _drain(channel) == []

    async def test_client_detach_drops_later_writes(self):
        channel = ProgressChannel()
        await channel.write("first")
        first = await channel.__anext__()
        assert first.message == "first"

        channel.detach()
        await channel.write("nobody is listening")
        await channel.error("still nobody")
        await channel.close()

        assert channel.detached
        assert channel.dropped == 2
        assert channel.has_error

    async def test_encoded_stream_decodes_back(self):
        channel = ProgressChannel()
        await channel.write("hello\n")
        await channel.error("boom")
        await channel.close()

        decoder = ProgressDecoder()
        out: list[ProgressMessage] = []
        async for chunk in channel.encoded():
            out.extend(decoder.feed(chunk))
        assert out == [ProgressMessage(message="hello\n"), ProgressMessage(error="boom")]

    async def test_satisfies_output_sink(self):
        assert isinstance(ProgressChannel(), OutputSink)


@pytest.mark.asyncio
class TestProgressBuffer:
    async def test_collects_text_and_errors(self):
        buf = ProgressBuffer()
        await buf.write("Step 1\n")
        await buf.write("Step 2\n")
        await buf.error("oops")

        assert buf.text == "Step 1\nStep 2\n"
        assert buf.errors == ["oops"]
        assert buf.has_error

    async def test_satisfies_output_sink(self):
        assert isinstance(ProgressBuffer(), OutputSink)
