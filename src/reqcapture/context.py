"""
Context manager returned by ``capture_requests``.
"""

import typing as t

import structlog

from reqcapture.core import RequestCapturer
from reqcapture.hooks import active_capturer

log = structlog.get_logger(__name__)


class CaptureContext:
    """
    Context manager that activates a capturer for a scoped block.

    Parameters
    ----------
    capturer : RequestCapturer
        Capturer observing intercepted requests within the block.
    """

    def __init__(self, *, capturer: RequestCapturer) -> None:
        self._self_capturer = capturer
        self._self_context_token: t.Any | None = None

    @property
    def capturer(self) -> RequestCapturer:
        return self._self_capturer

    def _activate(self) -> RequestCapturer:
        self._self_context_token = active_capturer.set(self._self_capturer)
        return self._self_capturer

    def _deactivate(self, *, failed: bool) -> None:
        """
        Reset the context var, then flush or discard what is left.

        Parameters
        ----------
        failed : bool
            Whether the block raised. Leftover requests are then discarded
            and waiting callers released, so the handler cannot mask the error.
        """
        if self._self_context_token is not None:
            active_capturer.reset(self._self_context_token)
            self._self_context_token = None
        if failed:
            log.debug(
                event="Capture block failed, discarding pending requests",
                capturer_id=self._self_capturer.capturer_id,
            )
            self._self_capturer.reset(release_pending=True)
        else:
            self._self_capturer.close()

    def __enter__(self) -> RequestCapturer:
        """
        Enter the synchronous context manager and activate the capturer.

        Returns
        -------
        RequestCapturer
            The active capturer, to trigger checkpoints manually.
        """
        return self._activate()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: t.Any,
    ) -> None:
        """
        Exit the synchronous context manager and run a final checkpoint.

        Parameters
        ----------
        exc_type : type[BaseException] | None
            Exception type, if any.
        exc_val : BaseException | None
            Exception value, if any.
        exc_tb : typing.Any
            Exception traceback, if any.
        """
        self._deactivate(failed=exc_type is not None)

    async def __aenter__(self) -> RequestCapturer:
        """
        Enter the async context manager and activate the capturer.

        Returns
        -------
        RequestCapturer
            The active capturer, to trigger checkpoints manually.
        """
        return self._activate()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: t.Any,
    ) -> None:
        """
        Exit the async context manager and run a final checkpoint.

        Parameters
        ----------
        exc_type : type[BaseException] | None
            Exception type, if any.
        exc_val : BaseException | None
            Exception value, if any.
        exc_tb : typing.Any
            Exception traceback, if any.
        """
        self._deactivate(failed=exc_type is not None)
