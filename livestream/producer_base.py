from abc import ABC, abstractmethod


class Producer(ABC):
    """
    Abstract frame producer.

    Something that, once started, keeps writing an MJPEG byte stream into the
    frame channel. All producer implementations (ffmpeg, mock or fake) must
    implement this contract.
    """

    @abstractmethod
    def verify_configuration(self) -> None:
        """Raise ConfigurationError if this host cannot run the producer."""
        pass

    @abstractmethod
    def start(self) -> None:
        """Start producing. No-op if already running."""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop producing and forget the running process. Safe when stopped."""
        pass

    @abstractmethod
    def is_running(self) -> bool:
        """Return True while a producer is being tracked."""
        pass
