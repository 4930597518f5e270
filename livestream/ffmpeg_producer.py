import logging
import shutil
import subprocess
import time
from pathlib import Path
from typing import List, Optional, Tuple

from livestream.errors import ConfigurationError, OperationError
from livestream.producer_base import Producer

logger = logging.getLogger(__name__)


class FFmpegProducer(Producer):
    """
    Supervises the ffmpeg process that encodes the webcam into the frame channel.

    stop() escalates: SIGTERM, then SIGKILL, then a pkill sweep of every
    process with the producer's name. is_running() only says whether a process
    is tracked; stop() is what confirms the process is gone.
    """

    def __init__(
            self,
            channel_path: Path | str,
            device_name: str = "video0",
            resolution: Tuple[int, int] = (640, 480),
            frame_rate: int = 24,
            ffmpeg_path: str = "ffmpeg",
            terminate_timeout: float = 5.0,
            kill_timeout: float = 2.0,
            launch_probe_delay: float = 0.2,
    ):
        self.channel_path = Path(channel_path)
        self.device_name = device_name
        self.resolution = resolution
        self.frame_rate = frame_rate
        self.ffmpeg_path = ffmpeg_path
        self.terminate_timeout = terminate_timeout
        self.kill_timeout = kill_timeout
        self.launch_probe_delay = launch_probe_delay
        self._process: Optional[subprocess.Popen] = None

    # ---------- Required interface ----------

    def verify_configuration(self) -> None:
        if shutil.which(self.ffmpeg_path) is None:
            raise ConfigurationError(f"Producer not available: '{self.ffmpeg_path}' not found in PATH")

        logger.info("Checking for webcam [v4l2-ctl]")
        try:
            proc = subprocess.run(
                ["v4l2-ctl", "--list-devices"],
                capture_output=True,
                text=True,
                timeout=5,
            )
        except FileNotFoundError as e:
            raise ConfigurationError("'v4l2-ctl' command not found") from e
        except subprocess.TimeoutExpired as e:
            raise ConfigurationError("v4l2-ctl query timed out") from e

        if proc.returncode != 0:
            raise ConfigurationError(f"v4l2-ctl query failed: {(proc.stderr or '').strip()}")

        if self.device_name not in (proc.stdout or ""):
            raise ConfigurationError(
                f"Expected '/dev/{self.device_name}' not found in v4l2-ctl output"
            )

        logger.info("Found webcam '/dev/%s'", self.device_name)

    def build_command(self) -> List[str]:
        width, height = self.resolution
        return [
            self.ffmpeg_path,
            "-y",
            "-f", "v4l2",
            "-i", f"/dev/{self.device_name}",
            "-s", f"{width}x{height}",
            "-r", str(self.frame_rate),
            "-an",
            "-f", "mjpeg",
            str(self.channel_path),
        ]

    def start(self) -> None:
        if self._process is not None:
            return

        cmd = self.build_command()
        logger.info("Starting producer: %s", " ".join(cmd))

        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except FileNotFoundError as e:
            raise ConfigurationError(f"Producer not available: '{self.ffmpeg_path}' not found") from e
        except OSError as e:
            raise OperationError(f"Failed to launch producer: {e}") from e

        # Liveness probe: a bad device or argument makes ffmpeg exit right away.
        time.sleep(self.launch_probe_delay)
        returncode = proc.poll()
        if returncode is not None:
            raise OperationError(f"Producer exited during startup (rc={returncode})")

        self._process = proc
        logger.info("Producer started (pid=%s)", proc.pid)

    def stop(self) -> None:
        proc = self._process
        if proc is None:
            return

        try:
            proc.terminate()
            if self._wait(proc, self.terminate_timeout):
                logger.info("Producer stopped (pid=%s)", proc.pid)
                return

            logger.warning(
                "Producer (pid=%s) ignored SIGTERM for %ss, killing", proc.pid, self.terminate_timeout
            )
            proc.kill()
            if self._wait(proc, self.kill_timeout):
                logger.info("Producer killed (pid=%s)", proc.pid)
                return

            logger.error("Producer (pid=%s) survived SIGKILL, sweeping all %s processes",
                         proc.pid, self.process_name)
            self._sweep()
            raise OperationError(f"Producer (pid={proc.pid}) did not exit; swept all {self.process_name} processes")
        except ProcessLookupError:
            logger.info("Producer (pid=%s) already gone", proc.pid)
        finally:
            self._process = None

    def is_running(self) -> bool:
        return self._process is not None

    # ---------- Helpers ----------

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    @property
    def process_name(self) -> str:
        return Path(self.ffmpeg_path).name

    @staticmethod
    def _wait(proc: subprocess.Popen, timeout: float) -> bool:
        try:
            proc.wait(timeout=timeout)
            return True
        except subprocess.TimeoutExpired:
            return False

    def _sweep(self) -> None:
        try:
            subprocess.run(
                ["pkill", "-9", "-x", self.process_name],
                check=False,
                timeout=self.kill_timeout,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.error("pkill sweep failed: %s", e)
