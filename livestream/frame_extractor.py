import logging
import os
import select
from typing import Optional, TYPE_CHECKING

from livestream.errors import BufferOverflowError, ChannelClosedError, OperationError

if TYPE_CHECKING:  # pragma: no cover
    from livestream.frame_channel import FrameChannel

logger = logging.getLogger(__name__)

JPEG_START = b"\xff\xd8"
JPEG_END = b"\xff\xd9"

DEFAULT_CHUNK_SIZE = 4096
DEFAULT_MAX_BUFFER_SIZE = 2 * 1024 * 1024


class FrameExtractor:
    """
    Carves the MJPEG byte stream coming out of a FrameChannel into JPEG frames.

    Each read() call does at most one bounded wait and at most one chunk read,
    then hands back one complete frame if the buffer holds one. The buffer
    belongs to a single streaming session; reset() between sessions.
    """

    def __init__(
            self,
            channel: "FrameChannel",
            chunk_size: int = DEFAULT_CHUNK_SIZE,
            max_buffer_size: int = DEFAULT_MAX_BUFFER_SIZE,
    ):
        self._channel = channel
        self.chunk_size = chunk_size
        self.max_buffer_size = max_buffer_size
        self._buffer = bytearray()

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def reset(self) -> None:
        self._buffer.clear()

    def read(self, timeout: float) -> Optional[bytes]:
        # A previous chunk may already have carried more than one frame.
        frame = self._take_frame()
        if frame is not None:
            return frame

        fd = self._channel.fileno()

        try:
            readable, _, _ = select.select([fd], [], [], timeout)
        except (OSError, ValueError) as e:
            self.reset()
            raise OperationError(f"Waiting on frame channel failed: {e}") from e

        if not readable:
            return None

        try:
            chunk = os.read(fd, self.chunk_size)
        except BlockingIOError:
            return None
        except OSError as e:
            self.reset()
            raise OperationError(f"Reading frame channel failed: {e}") from e

        if not chunk:
            self.reset()
            raise ChannelClosedError("Producer closed the frame channel")

        self._buffer += chunk

        frame = self._take_frame()
        if frame is not None:
            return frame

        # Only a buffer with no complete frame left in it counts against the limit.
        if len(self._buffer) > self.max_buffer_size:
            size = len(self._buffer)
            self.reset()
            raise BufferOverflowError(
                f"No complete frame in {size} buffered bytes (limit {self.max_buffer_size})"
            )

        return None

    def _take_frame(self) -> Optional[bytes]:
        start = self._buffer.find(JPEG_START)
        if start < 0:
            return None

        end = self._buffer.find(JPEG_END, start + len(JPEG_START))
        if end < 0:
            return None

        end += len(JPEG_END)
        frame = bytes(self._buffer[start:end])
        del self._buffer[:end]
        return frame
