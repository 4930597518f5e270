"""
Stream arbitration

Single authoritative owner of who may stream.

Policy:
- At most one viewer streams at a time; a second request is rejected, not queued
- No streaming while a meeting holds the camera
- A meeting starting mid-stream cancels the viewer's token; the viewer's own
  thread then unwinds through request_stop(), so teardown runs exactly once
- Session open/close hooks run under a separate session lock, never under the
  state lock; preemption and status reads never wait on a slow teardown
"""

import copy
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from livestream.errors import ForceStopError, MeetingInProgressError, StreamBusyError

logger = logging.getLogger(__name__)


class CancellationToken:
    """Handed to the thread serving a stream; cancelled to make it stop."""

    def __init__(self):
        self.owner_name = threading.current_thread().name
        self.reason: Optional[str] = None
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str) -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to `timeout`; return True early if cancelled."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ForceStopError(self.reason or "Livestream cancelled")

    def __repr__(self) -> str:
        return f"CancellationToken(owner={self.owner_name!r}, cancelled={self.cancelled})"


@dataclass
class StreamState:
    active_viewer_count: int = 0
    meeting_active: bool = False
    owner: Optional[CancellationToken] = None


class StreamArbitrator:
    MAX_VIEWERS = 1

    def __init__(
            self,
            on_first_viewer: Callable[[], None],
            on_last_viewer: Callable[[], None],
    ):
        # _session_lock serializes the open/close hooks and is always taken
        # before _lock. _lock is only ever held for state changes.
        self._session_lock = threading.Lock()
        self._lock = threading.Lock()
        self._state = StreamState()
        self._on_first_viewer = on_first_viewer
        self._on_last_viewer = on_last_viewer

    # ---------- Transitions ----------

    def request_start(self) -> CancellationToken:
        # Denials are answered without waiting for a session open/close in flight.
        with self._lock:
            self._check_available()

        with self._session_lock:
            with self._lock:
                self._check_available()
                token = CancellationToken()
                self._state.active_viewer_count += 1
                self._state.owner = token

            try:
                self._on_first_viewer()
            except Exception:
                with self._lock:
                    if self._state.owner is token:
                        self._state.active_viewer_count = 0
                        self._state.owner = None
                raise

        logger.info("Livestream viewer connected (%s)", token.owner_name)
        return token

    def request_stop(self, token: Optional[CancellationToken] = None) -> bool:
        """
        Release one viewer. Returns False when the stop was ignored (stale
        token or nobody streaming). The last viewer out runs the close hook.
        """
        with self._lock:
            if not self._accepts_stop(token):
                return False

        with self._session_lock:
            with self._lock:
                if not self._accepts_stop(token):
                    return False
                self._state.active_viewer_count -= 1
                remaining = self._state.active_viewer_count
                if remaining == 0:
                    self._state.owner = None

            logger.info("Livestream viewer disconnected; %d remaining", remaining)
            if remaining == 0:
                self._on_last_viewer()
        return True

    def force_preempt(self, reason: str) -> bool:
        with self._lock:
            self._state.meeting_active = True
            return self._cancel_owner(reason)

    def force_stop(self, reason: str) -> bool:
        with self._lock:
            return self._cancel_owner(reason)

    def release_meeting(self) -> None:
        with self._lock:
            self._state.meeting_active = False
            logger.info("Meeting flag cleared")

    # ---------- Reads ----------

    def snapshot(self) -> StreamState:
        with self._lock:
            return copy.copy(self._state)

    @property
    def is_streaming(self) -> bool:
        with self._lock:
            return self._state.active_viewer_count > 0

    @property
    def meeting_active(self) -> bool:
        with self._lock:
            return self._state.meeting_active

    # ---------- Helpers (lock held) ----------

    def _check_available(self) -> None:
        if self._state.meeting_active:
            logger.info("Denying livestream request; meeting is active")
            raise MeetingInProgressError("Video meeting is active; livestream unavailable")

        if self._state.active_viewer_count >= self.MAX_VIEWERS:
            logger.info("Denying livestream request; already held by %r", self._state.owner)
            raise StreamBusyError("Livestream already active for another viewer")

    def _accepts_stop(self, token: Optional[CancellationToken]) -> bool:
        if token is not None and token is not self._state.owner:
            if self._state.owner is not None:
                logger.debug("Ignoring stop from %r; it does not own the livestream", token)
            return False

        if self._state.active_viewer_count == 0:
            logger.debug("Livestream stop requested but no viewers are connected")
            return False
        return True

    def _cancel_owner(self, reason: str) -> bool:
        owner = self._state.owner
        if owner is None:
            return False
        logger.warning("Signalling livestream owner %s to stop: %s", owner.owner_name, reason)
        owner.cancel(reason)
        return True
