import threading

import pytest

from livestream.errors import MeetingInProgressError
from livestream.meeting import MeetingCoordinator, MeetView, NullMeetView
from tests.helpers import make_livestream


class RecordingView(MeetView):
    def __init__(self, stop_error=None):
        self.urls = []
        self.stops = 0
        self.stop_error = stop_error
        self.started = threading.Event()

    def start_session(self, meeting_url: str) -> None:
        self.urls.append(meeting_url)
        self.started.set()

    def stop_session(self) -> None:
        self.stops += 1
        if self.stop_error is not None:
            raise self.stop_error


def test_start_meeting_blocks_livestream_before_returning(tmp_path):
    live = make_livestream(tmp_path)
    view = RecordingView()
    meetings = MeetingCoordinator(live, view=view, meeting_url="https://meet.example/room")

    thread = meetings.start_meeting()

    # No join needed: the flag is set synchronously.
    assert meetings.is_active()
    with pytest.raises(MeetingInProgressError):
        live.start()

    thread.join(timeout=2)
    assert view.urls == ["https://meet.example/room"]


def test_start_meeting_cancels_current_viewer(tmp_path):
    live = make_livestream(tmp_path)
    token = live.start()
    meetings = MeetingCoordinator(live, view=RecordingView())

    meetings.start_meeting().join(timeout=2)

    assert token.cancelled
    live.stop(token)
    assert not live.is_active()


def test_end_meeting_releases_livestream(tmp_path):
    live = make_livestream(tmp_path)
    view = RecordingView()
    meetings = MeetingCoordinator(live, view=view)

    meetings.start_meeting().join(timeout=2)
    meetings.end_meeting().join(timeout=2)

    assert view.stops == 1
    assert not meetings.is_active()
    live.stop(live.start())


def test_end_meeting_releases_even_when_view_fails(tmp_path):
    live = make_livestream(tmp_path)
    meetings = MeetingCoordinator(live, view=RecordingView(stop_error=RuntimeError("browser hung")))

    meetings.start_meeting().join(timeout=2)
    meetings.end_meeting().join(timeout=2)

    assert not meetings.is_active()
    assert not live.get_status()["meeting_active"]


def test_null_view_tracks_session():
    view = NullMeetView()

    view.start_session("https://meet.example/room")
    assert view.active

    view.stop_session()
    assert not view.active
