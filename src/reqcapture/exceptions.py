"""
reqcapture-specific runtime exceptions.
"""


class CapturerError(RuntimeError):
    """
    Base class for errors raised by reqcapture itself.

    Notes
    -----
    Exceptions raised by user handlers are never wrapped in this type; they
    propagate unchanged from ``RequestCapturer.checkpoint``.
    """


class CheckpointSchedulingError(CapturerError):
    """
    Raised when an automatic checkpoint must be armed outside a running event loop.
    """


class HooksNotInstalledError(CapturerError):
    """
    Raised when a patched client method runs before the originals were recorded.
    """
