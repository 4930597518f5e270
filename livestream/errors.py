class LivestreamError(Exception):
    """Base class for every error raised by the livestream subsystem."""


class ConfigurationError(LivestreamError):
    """
    The host is not set up to stream at all.

    Producer binary missing, camera device absent, channel cannot be created.
    Not recoverable without operator intervention.
    """


class OperationError(LivestreamError):
    """
    A runtime failure the caller may retry.

    The component raising it has already reset its own state.
    """


class ChannelClosedError(OperationError):
    """The producer closed its end of the channel."""


class BufferOverflowError(OperationError):
    """No complete frame arrived before the frame buffer hit its limit."""


class StreamUnavailableError(LivestreamError):
    """The stream cannot be granted to this caller right now."""


class MeetingInProgressError(StreamUnavailableError):
    pass


class StreamBusyError(StreamUnavailableError):
    pass


class ForceStopError(LivestreamError):
    """Raised inside the thread serving a stream that was preempted or forced off."""
