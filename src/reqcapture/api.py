"""
Main endpoint for users.
Exposes a `capture_requests` function that returns a CaptureContext that activates
a RequestCapturer for the duration of a context manager.
"""

from reqcapture.context import CaptureContext
from reqcapture.core import RequestCapturer
from reqcapture.hooks import install_hooks
from reqcapture.models import CapturedRequestsHandler, CaptureOptions


def capture_requests(
    handler: CapturedRequestsHandler,
    timeout_ms: int | None = None,
    wait_for_checkpoint: bool = False,
) -> CaptureContext:
    """
    Context manager used to capture the HTTP requests sent within a scoped context.<br>
    Requests sent through ``httpx.AsyncClient`` or ``aiohttp.ClientSession`` are observed,
    then forwarded untouched.<br>
    Observations are handed to ``handler`` in batches sorted by URL then method.

    Parameters
    ----------
    handler : CapturedRequestsHandler
        Called with each non-empty batch of captured requests.
    timeout_ms : int | None, optional
        Run a checkpoint automatically once no request was observed for this many milliseconds.<br>
        If ``None``, checkpoints only run when ``checkpoint()`` is called or the context exits.
    wait_for_checkpoint : bool, optional
        If ``True``, each request is held back until the checkpoint including it has run.<br>
        Use it to make the handler run before the response is delivered.

    Returns
    -------
    CaptureContext
        Context manager that yields the active ``RequestCapturer``.
    """
    # 1. Install hooks globally (idempotent)
    install_hooks()

    # 2. Create RequestCapturer instance with provided configuration
    capturer = RequestCapturer(
        handler=handler,
        options=CaptureOptions(
            timeout_ms=timeout_ms,
            wait_for_checkpoint=wait_for_checkpoint,
        ),
    )

    # 3. Return CaptureContext activating the capturer.
    return CaptureContext(capturer=capturer)
