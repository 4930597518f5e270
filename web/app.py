"""
Flask application for the livestream hub UI and API.
"""
import logging

from flask import Flask, Response, jsonify

from livestream.config import LivestreamConfig, load_config
from livestream.errors import (
    ConfigurationError,
    ForceStopError,
    MeetingInProgressError,
    OperationError,
    StreamBusyError,
)
from livestream.health import HealthLevel
from livestream.livestream import Livestream, build_livestream
from livestream.meeting import MeetingCoordinator

logger = logging.getLogger(__name__)

BOUNDARY = "BoundaryString"

INDEX_HTML = """<!doctype html>
<html>
<head><title>Livestream Hub</title></head>
<body>
<h1>Livestream Hub</h1>
<p>{notice}</p>
{player}
</body>
</html>
"""

PLAYER_HTML = '<img src="/webcam_stream" width="640" alt="livestream">'


def multipart_part(frame: bytes) -> bytes:
    header = (
        f"--{BOUNDARY}\r\n"
        f"Content-Type: image/jpeg\r\n"
        f"Content-Length: {len(frame)}\r\n"
        f"\r\n"
    ).encode()
    return header + frame + b"\r\n"


def create_app(
        livestream: Livestream | None = None,
        meetings: MeetingCoordinator | None = None,
        config: LivestreamConfig | None = None,
):
    app = Flask(__name__)

    if livestream is None:
        config = config or load_config()
        livestream = build_livestream(config)
        try:
            livestream.verify_configuration()
        except ConfigurationError as e:
            # Keep serving /health so the operator can see why.
            logger.critical("Livestream configuration error: %s", e)

    if meetings is None:
        meeting_url = config.meeting_url if config else LivestreamConfig().meeting_url
        meetings = MeetingCoordinator(livestream, meeting_url=meeting_url)

    app.livestream = livestream
    app.meetings = meetings

    @app.route("/", methods=["GET"])
    def index():
        status = app.livestream.get_status()
        player = ""
        if status["meeting_active"]:
            notice = "Video meeting is active; livestream unavailable."
        elif status["streaming"]:
            notice = "Livestream already active for another viewer."
        else:
            notice = "Livestream ready."
            player = PLAYER_HTML
        return INDEX_HTML.format(notice=notice, player=player)

    @app.route("/health", methods=["GET"])
    def health():
        status = app.livestream.get_health()
        code = 200 if status.level == HealthLevel.OK else 503
        return jsonify(status.to_dict()), code

    @app.route("/status", methods=["GET"])
    def status():
        data = app.livestream.get_status()
        data["meeting_session"] = app.meetings.is_active()
        return jsonify(data)

    @app.route("/webcam_stream", methods=["GET"])
    def webcam_stream():
        live = app.livestream

        if not live.get_health().recoverable:
            return jsonify({"ok": False, "error": "unavailable", "message": live.get_health().message}), 503

        try:
            token = live.start(expected_viewers=1)
        except MeetingInProgressError:
            return jsonify({"ok": False, "error": "meeting_active"}), 409
        except StreamBusyError:
            return jsonify({"ok": False, "error": "busy"}), 409
        except ConfigurationError as e:
            return jsonify({"ok": False, "error": "unavailable", "message": str(e)}), 503
        except OperationError as e:
            logger.error("Failed to start livestream: %s", e)
            return jsonify({"ok": False, "error": "retry", "message": str(e)}), 503, {"Retry-After": "2"}

        def release():
            try:
                live.stop(token)
            except OperationError as e:
                logger.error("Livestream teardown failed: %s", e)

        def generate():
            try:
                for frame in live.frames(token):
                    yield multipart_part(frame)
            except ForceStopError as e:
                logger.warning("Livestream forcibly terminated: %s", e)
            except OperationError as e:
                logger.error("Livestream failed: %s", e)
            finally:
                release()

        response = Response(generate(), mimetype=f"multipart/x-mixed-replace; boundary={BOUNDARY}")
        # A client that disconnects before the first frame never runs the generator.
        response.call_on_close(release)
        return response

    @app.route("/start_meet", methods=["POST"])
    def start_meet():
        app.meetings.start_meeting()
        return jsonify({"ok": True, "message": "Starting video meeting..."})

    @app.route("/end_meet", methods=["POST"])
    def end_meet():
        app.meetings.end_meeting()
        return jsonify({"ok": True, "message": "Terminating video meeting..."})

    @app.route("/offweb", methods=["POST"])
    def offweb():
        signalled = app.livestream.force_off("Forced stop via /offweb")
        return jsonify({"ok": True, "signalled": signalled})

    return app
