import subprocess

import pytest

from livestream.errors import ConfigurationError, OperationError
from livestream.ffmpeg_producer import FFmpegProducer
from tests.fakes.fake_process import PopenFactory


def make_producer(**kwargs) -> FFmpegProducer:
    kwargs.setdefault("terminate_timeout", 0.01)
    kwargs.setdefault("kill_timeout", 0.01)
    kwargs.setdefault("launch_probe_delay", 0)
    return FFmpegProducer(channel_path="/tmp/CAMOUT", **kwargs)


class _Result:
    def __init__(self, returncode=0, stdout="", stderr=""):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


def test_command_is_fixed_mjpeg_invocation():
    producer = FFmpegProducer(channel_path="/tmp/CAMOUT", device_name="video0")

    assert producer.build_command() == [
        "ffmpeg", "-y",
        "-f", "v4l2",
        "-i", "/dev/video0",
        "-s", "640x480",
        "-r", "24",
        "-an",
        "-f", "mjpeg",
        "/tmp/CAMOUT",
    ]


def test_start_launches_once(monkeypatch):
    popen = PopenFactory()
    monkeypatch.setattr("subprocess.Popen", popen)

    producer = make_producer()
    producer.start()
    producer.start()

    assert len(popen.launched) == 1
    assert producer.is_running()
    assert producer.pid == 4242


def test_start_fails_when_process_dies_immediately(monkeypatch):
    monkeypatch.setattr("subprocess.Popen", PopenFactory(exit_code_at_launch=1))

    producer = make_producer()
    with pytest.raises(OperationError, match="exited during startup"):
        producer.start()

    assert not producer.is_running()
    assert producer.pid is None


def test_start_missing_binary_is_configuration_error(monkeypatch):
    def fake_popen(*args, **kwargs):
        raise FileNotFoundError("ffmpeg")

    monkeypatch.setattr("subprocess.Popen", fake_popen)

    producer = make_producer()
    with pytest.raises(ConfigurationError, match="not found"):
        producer.start()
    assert not producer.is_running()


def test_start_os_error_is_operation_error(monkeypatch):
    def fake_popen(*args, **kwargs):
        raise PermissionError("denied")

    monkeypatch.setattr("subprocess.Popen", fake_popen)

    with pytest.raises(OperationError, match="Failed to launch"):
        make_producer().start()


def test_stop_graceful(monkeypatch):
    popen = PopenFactory()
    monkeypatch.setattr("subprocess.Popen", popen)

    producer = make_producer()
    producer.start()
    producer.stop()

    assert popen.launched[0].signals == ["TERM"]
    assert not producer.is_running()


def test_stop_escalates_to_kill_when_terminate_ignored(monkeypatch):
    popen = PopenFactory(ignore_terminate=True)
    monkeypatch.setattr("subprocess.Popen", popen)

    producer = make_producer(terminate_timeout=0.05, kill_timeout=0.02)
    producer.start()
    producer.stop()

    proc = popen.launched[0]
    assert proc.signals == ["TERM", "KILL"]
    assert proc.waits == [0.05, 0.02]
    assert not producer.is_running()


def test_stop_sweeps_when_process_survives_kill(monkeypatch):
    monkeypatch.setattr("subprocess.Popen", PopenFactory(ignore_terminate=True, ignore_kill=True))

    sweeps = []

    def fake_run(cmd, **kwargs):
        sweeps.append(cmd)
        return _Result()

    monkeypatch.setattr("subprocess.run", fake_run)

    producer = make_producer()
    producer.start()

    with pytest.raises(OperationError, match="did not exit"):
        producer.stop()

    assert sweeps == [["pkill", "-9", "-x", "ffmpeg"]]
    assert not producer.is_running()


def test_stop_sweep_failure_still_clears_tracking(monkeypatch):
    monkeypatch.setattr("subprocess.Popen", PopenFactory(ignore_terminate=True, ignore_kill=True))

    def fake_run(*args, **kwargs):
        raise subprocess.TimeoutExpired(cmd="pkill", timeout=0.01)

    monkeypatch.setattr("subprocess.run", fake_run)

    producer = make_producer()
    producer.start()

    with pytest.raises(OperationError):
        producer.stop()
    assert not producer.is_running()


def test_stop_when_not_running_is_noop():
    producer = make_producer()
    producer.stop()
    producer.stop()
    assert not producer.is_running()


def test_stop_tolerates_process_already_reaped(monkeypatch):
    popen = PopenFactory()
    monkeypatch.setattr("subprocess.Popen", popen)

    producer = make_producer()
    producer.start()

    def gone():
        raise ProcessLookupError()

    monkeypatch.setattr(popen.launched[0], "terminate", gone)

    producer.stop()
    assert not producer.is_running()


def test_restart_after_stop_launches_new_process(monkeypatch):
    popen = PopenFactory()
    monkeypatch.setattr("subprocess.Popen", popen)

    producer = make_producer()
    producer.start()
    producer.stop()
    producer.start()

    assert len(popen.launched) == 2


def test_verify_configuration_ok(monkeypatch):
    monkeypatch.setattr("shutil.which", lambda _p: "/usr/bin/ffmpeg")
    monkeypatch.setattr(
        "subprocess.run",
        lambda *a, **k: _Result(stdout="USB Camera (usb-0000:00:14.0-1):\n\t/dev/video0\n"),
    )

    make_producer().verify_configuration()  # should not raise


def test_verify_configuration_missing_ffmpeg(monkeypatch):
    monkeypatch.setattr("shutil.which", lambda _p: None)

    with pytest.raises(ConfigurationError, match="not found in PATH"):
        make_producer().verify_configuration()


def test_verify_configuration_missing_device(monkeypatch):
    monkeypatch.setattr("shutil.which", lambda _p: "/usr/bin/ffmpeg")
    monkeypatch.setattr("subprocess.run", lambda *a, **k: _Result(stdout="/dev/video2\n"))

    with pytest.raises(ConfigurationError, match="/dev/video0"):
        make_producer().verify_configuration()


def test_verify_configuration_v4l2_ctl_missing(monkeypatch):
    monkeypatch.setattr("shutil.which", lambda _p: "/usr/bin/ffmpeg")

    def fake_run(*args, **kwargs):
        raise FileNotFoundError("v4l2-ctl")

    monkeypatch.setattr("subprocess.run", fake_run)

    with pytest.raises(ConfigurationError, match="v4l2-ctl"):
        make_producer().verify_configuration()


def test_verify_configuration_v4l2_ctl_fails(monkeypatch):
    monkeypatch.setattr("shutil.which", lambda _p: "/usr/bin/ffmpeg")
    monkeypatch.setattr(
        "subprocess.run",
        lambda *a, **k: _Result(returncode=1, stderr="Cannot open device /dev/video0"),
    )

    with pytest.raises(ConfigurationError, match="query failed"):
        make_producer().verify_configuration()
