"""Progress streaming: wire codec and the operation-to-client channel."""

from platform_lifecycle.progress.channel import (
    OutputSink,
    ProgressBuffer,
    ProgressChannel,
)
from platform_lifecycle.progress.codec import (
    ProgressDecoder,
    ProgressMessage,
    decode_line,
    encode,
)

__all__ = [
    "OutputSink",
    "ProgressBuffer",
    "ProgressChannel",
    "ProgressDecoder",
    "ProgressMessage",
    "decode_line",
    "encode",
]
