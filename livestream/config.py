import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional, Tuple

import yaml

from livestream.errors import ConfigurationError

DEFAULT_CONFIG_PATH = Path("config/config.yaml")
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass(frozen=True)
class LivestreamConfig:
    # camera / producer
    device_name: str = "video0"
    resolution: Tuple[int, int] = (640, 480)
    frame_rate: int = 24
    ffmpeg_path: str = "ffmpeg"
    mock_camera: bool = False
    terminate_timeout: float = 5.0
    kill_timeout: float = 2.0

    # channel / extractor
    channel_path: Path = Path("/tmp/CAMOUT")
    read_timeout: float = 0.5
    read_chunk_size: int = 4096
    max_buffer_size: int = 2 * 1024 * 1024
    frame_poll_interval: float = 0.1

    # meeting
    meeting_url: str = "https://jitsi.vpn.local/angalia#config.prejoinPageEnabled=false"

    # server
    host: str = "0.0.0.0"
    port: int = 8080

    # logging
    log_level: str = "INFO"
    log_format: str = DEFAULT_LOG_FORMAT


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def config_from_dict(data: dict) -> LivestreamConfig:
    camera = data.get("camera") or {}
    stream = data.get("livestream") or {}
    meeting = data.get("meeting") or {}
    server = data.get("server") or {}
    log = data.get("logging") or {}

    defaults = LivestreamConfig()
    try:
        return LivestreamConfig(
            device_name=str(camera.get("device", defaults.device_name)),
            resolution=tuple(camera.get("resolution", defaults.resolution)),
            frame_rate=int(camera.get("fps", defaults.frame_rate)),
            ffmpeg_path=str(camera.get("ffmpeg_path", defaults.ffmpeg_path)),
            mock_camera=_as_bool(camera.get("mock", defaults.mock_camera)),
            terminate_timeout=float(camera.get("terminate_timeout", defaults.terminate_timeout)),
            kill_timeout=float(camera.get("kill_timeout", defaults.kill_timeout)),
            channel_path=Path(stream.get("pipe_path", defaults.channel_path)),
            read_timeout=float(stream.get("read_timeout", defaults.read_timeout)),
            read_chunk_size=int(stream.get("chunk_size", defaults.read_chunk_size)),
            max_buffer_size=int(stream.get("max_buffer_size", defaults.max_buffer_size)),
            frame_poll_interval=float(stream.get("poll_interval", defaults.frame_poll_interval)),
            meeting_url=str(meeting.get("url", defaults.meeting_url)),
            host=str(server.get("host", defaults.host)),
            port=int(server.get("port", defaults.port)),
            log_level=str(log.get("level", defaults.log_level)).upper(),
            log_format=str(log.get("format", defaults.log_format)),
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid livestream configuration: {e}") from e


def load_config(path: Optional[Path | str] = None) -> LivestreamConfig:
    """
    Load configuration from YAML, then apply environment overrides.

    With no path, config/config.yaml is used if present and defaults otherwise.
    A path that was asked for explicitly must exist.
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH

    data = {}
    if config_path.exists():
        try:
            with open(config_path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot read config file {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {config_path} must contain a mapping")
    elif path is not None:
        raise ConfigurationError(f"Config file {config_path} does not exist")

    config = config_from_dict(data)

    # Environment overrides
    if os.getenv("LIVESTREAM_DEVICE"):
        config = replace(config, device_name=os.environ["LIVESTREAM_DEVICE"])
    if os.getenv("LIVESTREAM_MOCK_CAMERA") is not None:
        config = replace(config, mock_camera=_as_bool(os.environ["LIVESTREAM_MOCK_CAMERA"]))
    if os.getenv("PORT"):
        try:
            config = replace(config, port=int(os.environ["PORT"]))
        except ValueError as e:
            raise ConfigurationError(f"Invalid PORT: {os.environ['PORT']}") from e

    return config


def setup_logging(config: LivestreamConfig) -> None:
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format=config.log_format,
    )
