import time
from pathlib import Path
from typing import Callable

from livestream.frame_channel import FrameChannel
from livestream.livestream import Livestream
from tests.fakes.fake_producer import FakeProducer


def wait_for(
        condition: Callable[[], bool],
        timeout: float = 5.0,
        interval: float = 0.02,
):
    """
    Wait until condition() returns True or timeout is reached.

    Raises AssertionError on timeout.
    """
    deadline = time.monotonic() + timeout

    while time.monotonic() < deadline:
        if condition():
            return
        time.sleep(interval)

    raise AssertionError("Condition not met before timeout")


def jpeg(payload: bytes) -> bytes:
    return b"\xff\xd8" + payload + b"\xff\xd9"


def make_livestream(tmp_path: Path, producer: FakeProducer | None = None) -> Livestream:
    return Livestream(
        producer=producer or FakeProducer(),
        channel=FrameChannel(tmp_path / "CAMOUT"),
        read_timeout=0.05,
        frame_poll_interval=0.01,
    )
