import logging
import threading
from abc import ABC, abstractmethod
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from livestream.livestream import Livestream

logger = logging.getLogger(__name__)


class MeetView(ABC):
    """Whatever puts the video meeting on screen (kiosk browser, etc)."""

    @abstractmethod
    def start_session(self, meeting_url: str) -> None:
        pass

    @abstractmethod
    def stop_session(self) -> None:
        pass


class NullMeetView(MeetView):
    """Tracks the meeting flag only; nothing is launched."""

    def __init__(self):
        self.active = False

    def start_session(self, meeting_url: str) -> None:
        logger.info("MeetView: starting meeting session at %s", meeting_url)
        self.active = True

    def stop_session(self) -> None:
        logger.info("MeetView: stopping meeting session")
        self.active = False


class MeetingCoordinator:
    """
    Starts and ends video meetings on background threads.

    Starting a meeting preempts the livestream before returning, so a caller
    that gets a reply knows no viewer can (re)claim the camera. The meeting
    flag is released in a finally block when the meeting ends, even if the
    view fails to stop.
    """

    def __init__(
            self,
            livestream: "Livestream",
            view: Optional[MeetView] = None,
            meeting_url: str = "",
    ):
        self._livestream = livestream
        self.view = view or NullMeetView()
        self.meeting_url = meeting_url
        self._active = False
        self._lock = threading.Lock()

    def is_active(self) -> bool:
        with self._lock:
            return self._active

    def start_meeting(self) -> threading.Thread:
        if self._livestream.begin_meeting("Meet session started."):
            logger.warning("Livestream preempted by meeting start")

        with self._lock:
            self._active = True

        thread = threading.Thread(target=self._start_worker, name="MeetingStart", daemon=True)
        thread.start()
        return thread

    def end_meeting(self) -> threading.Thread:
        thread = threading.Thread(target=self._end_worker, name="MeetingEnd", daemon=True)
        thread.start()
        return thread

    # ---------- Workers ----------

    def _start_worker(self) -> None:
        try:
            self.view.start_session(self.meeting_url)
            logger.info("Meeting session initiated as background task")
        except Exception as e:
            logger.error("Meeting failed to start (background task): %s", e)

    def _end_worker(self) -> None:
        try:
            self.view.stop_session()
            logger.info("Meeting terminated in background")
        except Exception as e:
            logger.error("Meeting failed to terminate (background task): %s", e)
        finally:
            with self._lock:
                self._active = False
            self._livestream.end_meeting()
