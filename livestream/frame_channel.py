import logging
import os
import stat
from pathlib import Path
from typing import Optional

from livestream.errors import ConfigurationError, OperationError

logger = logging.getLogger(__name__)


class FrameChannel:
    """
    Owns the named pipe the producer writes frames into.

    Only manages the open/closed lifecycle of the read end; reading frame
    bytes is the extractor's job. An open channel with no data in it is a
    normal state.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._fd: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self._fd is not None

    def ensure_open(self, path: Path | str | None = None) -> int:
        if self._fd is not None:
            return self._fd

        if path is not None:
            self.path = Path(path)

        self._create()

        try:
            # Non-blocking so the open succeeds before any writer shows up.
            fd = os.open(self.path, os.O_RDONLY | os.O_NONBLOCK)
        except OSError as e:
            raise OperationError(f"Cannot open frame channel {self.path}: {e}") from e

        self._fd = fd
        logger.info("Frame channel %s open for reading (fd=%d)", self.path, fd)
        return fd

    def close(self) -> None:
        if self._fd is None:
            return

        fd = self._fd
        self._fd = None
        try:
            os.close(fd)
        except OSError as e:
            logger.warning("Error closing frame channel %s: %s", self.path, e)
        logger.info("Frame channel %s closed", self.path)

    def fileno(self) -> int:
        if self._fd is None:
            raise OperationError(f"Frame channel {self.path} is not open")
        return self._fd

    def _create(self) -> None:
        try:
            mode = os.stat(self.path).st_mode
        except FileNotFoundError:
            mode = None
        except OSError as e:
            raise ConfigurationError(f"Cannot inspect frame channel path {self.path}: {e}") from e

        if mode is not None:
            if not stat.S_ISFIFO(mode):
                raise ConfigurationError(
                    f"Frame channel path {self.path} exists and is not a named pipe"
                )
            return

        try:
            os.mkfifo(self.path)
        except OSError as e:
            raise ConfigurationError(f"Cannot create frame channel {self.path}: {e}") from e
        logger.info("Created frame channel %s", self.path)
