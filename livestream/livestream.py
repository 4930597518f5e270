"""
Livestream facade

The only thing the web layer touches. Composes the producer, the frame
channel, the frame extractor and the arbitrator.

Goals:
- Exactly one viewer streams at a time, never during a meeting
- Producer and channel open with the first viewer and close with the last
- A preempted viewer unwinds through stop() like any other disconnect
- Every wait is bounded; frame delivery never holds the arbitration lock
"""

import logging
import threading
from typing import Iterator, Optional

from livestream.arbitrator import CancellationToken, StreamArbitrator
from livestream.config import LivestreamConfig
from livestream.errors import ConfigurationError, OperationError, StreamBusyError
from livestream.ffmpeg_producer import FFmpegProducer
from livestream.frame_channel import FrameChannel
from livestream.frame_extractor import FrameExtractor
from livestream.health import HealthCode, HealthLevel, HealthStatus
from livestream.mock_producer import MockProducer
from livestream.producer_base import Producer

logger = logging.getLogger(__name__)


class Livestream:
    def __init__(
            self,
            producer: Producer,
            channel: FrameChannel,
            extractor: Optional[FrameExtractor] = None,
            read_timeout: float = 0.5,
            frame_poll_interval: float = 0.1,
    ):
        self.producer = producer
        self.channel = channel
        self.extractor = extractor or FrameExtractor(channel)
        self.read_timeout = read_timeout
        self.frame_poll_interval = frame_poll_interval

        self._arbitrator = StreamArbitrator(
            on_first_viewer=self._open_session,
            on_last_viewer=self._close_session,
        )

        # Health
        self._health_lock = threading.Lock()
        self._health_status = HealthStatus.ok()

    # ---------- Startup ----------

    def verify_configuration(self) -> None:
        try:
            self.producer.verify_configuration()
        except ConfigurationError as e:
            self._set_configuration_error(str(e), code=HealthCode.CAMERA_NOT_DETECTED)
            raise
        logger.info("Livestream configuration verified")

    # ---------- Public API ----------

    def start(self, expected_viewers: int = 1) -> CancellationToken:
        """
        Claim the livestream for the calling thread.

        Returns the token the caller must watch (via frames()) and hand back
        to stop(). Raises MeetingInProgressError or StreamBusyError when the
        stream cannot be granted, ConfigurationError or OperationError when
        the producer or channel cannot be brought up.
        """
        if expected_viewers < 1:
            raise ValueError(f"expected_viewers must be >= 1 (got {expected_viewers})")
        if expected_viewers > StreamArbitrator.MAX_VIEWERS:
            raise StreamBusyError(
                f"Only {StreamArbitrator.MAX_VIEWERS} livestream viewer is supported (asked for {expected_viewers})"
            )
        return self._arbitrator.request_start()

    def stop(self, token: Optional[CancellationToken] = None, remaining_viewers: int = 0) -> None:
        """Release the livestream. Safe to call repeatedly."""
        if not self._arbitrator.request_stop(token):
            return

        viewers = self._arbitrator.snapshot().active_viewer_count
        if viewers != remaining_viewers:
            logger.warning("Livestream stop expected %d remaining viewers, have %d",
                           remaining_viewers, viewers)

    def next_frame(self) -> Optional[bytes]:
        if not self.is_active():
            return None
        try:
            return self.extractor.read(self.read_timeout)
        except OperationError as e:
            self._set_stream_error(str(e))
            raise

    def is_active(self) -> bool:
        return self._arbitrator.is_streaming

    def frames(self, token: CancellationToken) -> Iterator[bytes]:
        """
        Yield frames until the stream ends or the token is cancelled.

        Raises ForceStopError on cancellation. The caller still owns cleanup
        and must call stop(token) when the iteration ends, however it ends.
        """
        while True:
            token.raise_if_cancelled()

            frame = self.next_frame()
            if frame:
                yield frame
                continue

            if not self.is_active():
                logger.warning("Livestream reported off, ending frame loop")
                return

            # Interruptible sleep
            token.wait(self.frame_poll_interval)

    # ---------- Preemption ----------

    def begin_meeting(self, reason: str = "Meet session started.") -> bool:
        return self._arbitrator.force_preempt(reason)

    def end_meeting(self) -> None:
        self._arbitrator.release_meeting()

    def force_off(self, reason: str = "Forced stop") -> bool:
        return self._arbitrator.force_stop(reason)

    def shutdown(self) -> None:
        self._arbitrator.force_stop("Shutting down")
        # Tear down on behalf of the owner; its own later stop() is then ignored.
        self._arbitrator.request_stop()

    # ---------- Status ----------

    def get_status(self) -> dict:
        state = self._arbitrator.snapshot()
        return {
            "streaming": state.active_viewer_count > 0,
            "viewers": state.active_viewer_count,
            "meeting_active": state.meeting_active,
            "producer_running": self.producer.is_running(),
            "channel_open": self.channel.is_open,
        }

    def get_health(self) -> HealthStatus:
        with self._health_lock:
            return self._health_status

    # ---------- Session hooks (session lock held) ----------

    def _open_session(self) -> None:
        self.extractor.reset()
        failing = HealthCode.CHANNEL_UNAVAILABLE
        try:
            self.channel.ensure_open()
            failing = HealthCode.PRODUCER_MISSING
            self.producer.start()
        except ConfigurationError as e:
            self._release_resources()
            self._set_configuration_error(str(e), code=failing)
            raise
        except OperationError as e:
            self._release_resources()
            self._set_stream_error(str(e))
            raise
        except Exception as e:
            self._release_resources()
            self._set_stream_error(str(e))
            raise OperationError(f"Unexpected livestream start error: {e}") from e

        self._mark_ok()
        logger.info("Livestream session open")

    def _close_session(self) -> None:
        try:
            self.producer.stop()
        except OperationError as e:
            self._set_stream_error(str(e))
            raise
        finally:
            self.channel.close()
            self.extractor.reset()
            logger.info("Livestream session closed")

    def _release_resources(self) -> None:
        try:
            self.producer.stop()
        except Exception as e:
            logger.error("Producer cleanup after failed start also failed: %s", e)
        finally:
            self.channel.close()
            self.extractor.reset()

    # ---------- Health helpers ----------

    def _mark_ok(self) -> None:
        with self._health_lock:
            if not self._health_status.recoverable:
                return
            self._health_status = HealthStatus.ok()

    def _set_configuration_error(self, message: str, *, code: HealthCode) -> None:
        with self._health_lock:
            self._health_status = HealthStatus.error(
                code=code,
                message=message,
                instructions=[
                    "Check that the webcam is plugged in",
                    "Check that ffmpeg and v4l2-utils are installed",
                    "Restart the service once fixed",
                ],
                recoverable=False,
            )

    def _set_stream_error(self, message: str) -> None:
        with self._health_lock:
            if self._health_status.level == HealthLevel.ERROR and not self._health_status.recoverable:
                return
            self._health_status = HealthStatus.error(
                code=HealthCode.STREAM_FAILED,
                message=message,
                instructions=["Reload the page to retry the livestream"],
            )


def build_livestream(config: LivestreamConfig) -> Livestream:
    channel = FrameChannel(config.channel_path)

    if config.mock_camera:
        producer: Producer = MockProducer(
            channel_path=config.channel_path,
            resolution=config.resolution,
            frame_rate=config.frame_rate,
            join_timeout=config.kill_timeout,
        )
    else:
        producer = FFmpegProducer(
            channel_path=config.channel_path,
            device_name=config.device_name,
            resolution=config.resolution,
            frame_rate=config.frame_rate,
            ffmpeg_path=config.ffmpeg_path,
            terminate_timeout=config.terminate_timeout,
            kill_timeout=config.kill_timeout,
        )

    extractor = FrameExtractor(
        channel,
        chunk_size=config.read_chunk_size,
        max_buffer_size=config.max_buffer_size,
    )

    return Livestream(
        producer=producer,
        channel=channel,
        extractor=extractor,
        read_timeout=config.read_timeout,
        frame_poll_interval=config.frame_poll_interval,
    )
