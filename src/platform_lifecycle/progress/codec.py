"""Newline-delimited JSON codec for progress messages.

Wire format: one JSON object per line, ``{"Message": "...", "Error": "..."}``.
Exactly one of the two fields is meaningful per message; an empty message is
valid and acts as a delimiter.
"""

from __future__ import annotations

import json
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ProgressMessage:
    """One unit of the streamed status protocol."""

    message: str = ""
    error: str = ""

    def __post_init__(self) -> None:
        if self.message and self.error:
            msg = "A progress message carries either text or an error, not both"
            raise ValueError(msg)

    @property
    def is_error(self) -> bool:
        return bool(self.error)

    def to_dict(self) -> dict[str, str]:
        return {"Message": self.message, "Error": self.error}


def encode(message: ProgressMessage) -> bytes:
    """Encode a message as a single newline-terminated line."""
    return json.dumps(message.to_dict()).encode() + b"\n"


def decode_line(line: str) -> ProgressMessage | None:
    """Decode one line; returns None for blank lines.

    Lines that are not JSON objects (plain text trailers such as ``OK!``)
    decode as informational messages.
    """
    stripped = line.strip()
    if not stripped:
        return None
    try:
        data = json.loads(stripped)
    except json.JSONDecodeError:
        return ProgressMessage(message=stripped)
    if not isinstance(data, dict):
        return ProgressMessage(message=stripped)
    error = data.get("Error") or ""
    if error:
        return ProgressMessage(error=str(error))
    return ProgressMessage(message=str(data.get("Message") or ""))


class ProgressDecoder:
    """Incremental decoder that tolerates partial reads.

    Feed raw chunks as they arrive; complete lines are decoded immediately and
    the unterminated tail is kept until the next chunk (or ``flush``).
    """

    def __init__(self) -> None:
        self._buffer = b""

    def feed(self, chunk: bytes) -> list[ProgressMessage]:
        self._buffer += chunk
        messages: list[ProgressMessage] = []
        while True:
            idx = self._buffer.find(b"\n")
            if idx < 0:
                break
            line, self._buffer = self._buffer[:idx], self._buffer[idx + 1 :]
            decoded = decode_line(line.decode("utf-8", errors="replace"))
            if decoded is not None:
                messages.append(decoded)
        return messages

    def flush(self) -> list[ProgressMessage]:
        """Decode whatever remains once the connection has closed."""
        tail, self._buffer = self._buffer, b""
        decoded = decode_line(tail.decode("utf-8", errors="replace"))
        return [decoded] if decoded is not None else []
