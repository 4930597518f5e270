import errno
import io
import logging
import os
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple

from PIL import Image, ImageDraw, ImageFont

from livestream.producer_base import Producer

logger = logging.getLogger(__name__)


def render_placeholder_frame(
        size: Tuple[int, int],
        frame_number: int,
        label: str = "NO CAMERA",
) -> bytes:
    """Render one JPEG frame with a label, timestamp and frame counter."""
    image = Image.new("RGB", size, (16, 16, 16))
    draw = ImageDraw.Draw(image)
    font = ImageFont.load_default()

    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    lines = [label, timestamp, f"frame {frame_number}"]

    y = size[1] // 3
    for text in lines:
        bbox = draw.textbbox((0, 0), text, font=font)
        x = max(0, (size[0] - (bbox[2] - bbox[0])) // 2)
        draw.text((x, y), text, fill=(0, 255, 0), font=font)
        y += (bbox[3] - bbox[1]) + 12

    out = io.BytesIO()
    image.save(out, format="JPEG", quality=70)
    return out.getvalue()


class MockProducer(Producer):
    """
    Development stand-in for the ffmpeg producer.

    Writes placeholder JPEG frames into the frame channel from a daemon thread,
    so the whole livestream path can run on a host without a webcam.
    """

    def __init__(
            self,
            channel_path: Path | str,
            resolution: Tuple[int, int] = (640, 480),
            frame_rate: int = 24,
            join_timeout: float = 2.0,
    ):
        self.channel_path = Path(channel_path)
        self.resolution = resolution
        self.frame_rate = frame_rate
        self.join_timeout = join_timeout
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self.frames_written = 0

    def verify_configuration(self) -> None:
        logger.info("Mock producer in use; skipping webcam checks")

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop_event.clear()
        self.frames_written = 0
        self._thread = threading.Thread(target=self._run, name="MockProducer", daemon=True)
        self._thread.start()
        logger.info("Mock producer started")

    def stop(self) -> None:
        thread = self._thread
        if thread is None:
            return
        try:
            self._stop_event.set()
            thread.join(timeout=self.join_timeout)
            if thread.is_alive():
                # Still blocked in a write; closing the read end will break it out.
                logger.warning("Mock producer did not stop within %ss", self.join_timeout)
        finally:
            self._thread = None
        logger.info("Mock producer stopped")

    def is_running(self) -> bool:
        return self._thread is not None

    # ---------- Worker ----------

    def _open_writer(self) -> Optional[int]:
        while not self._stop_event.is_set():
            try:
                fd = os.open(self.channel_path, os.O_WRONLY | os.O_NONBLOCK)
            except OSError as e:
                if e.errno not in (errno.ENXIO, errno.ENOENT):
                    logger.error("Mock producer cannot open %s: %s", self.channel_path, e)
                    return None
                # No reader yet
                self._stop_event.wait(0.05)
                continue
            # Whole-frame writes; a non-blocking fd could split frames.
            os.set_blocking(fd, True)
            return fd
        return None

    def _run(self) -> None:
        fd = self._open_writer()
        if fd is None:
            return

        interval = 1.0 / self.frame_rate
        try:
            while not self._stop_event.is_set():
                started = time.monotonic()
                frame = render_placeholder_frame(self.resolution, self.frames_written)
                try:
                    os.write(fd, frame)
                except BrokenPipeError:
                    logger.info("Mock producer: reader went away")
                    break
                self.frames_written += 1
                self._stop_event.wait(max(0.0, interval - (time.monotonic() - started)))
        except OSError as e:
            logger.error("Mock producer write failed: %s", e)
        finally:
            os.close(fd)
