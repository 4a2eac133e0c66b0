"""
Core engine of the capture batcher.
Observed requests accumulate in a batch until a checkpoint sorts them and hands
them to the user handler. Checkpoints are triggered manually or by an
inactivity timer, and can optionally gate the observing callers until they run.
"""

from __future__ import annotations

import asyncio
import functools
import typing as t
import uuid

import structlog

from reqcapture.exceptions import CheckpointSchedulingError
from reqcapture.models import CapturedRequest, CapturedRequestsHandler, CaptureOptions

log = structlog.get_logger(__name__)

ReleaseCallback = t.Callable[[], None]


def _resolve_future(future: asyncio.Future[None]) -> None:
    # The awaiting task may have been cancelled in the meantime.
    if not future.done():
        future.set_result(None)


def _current_task() -> asyncio.Task[t.Any] | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class RequestCapturer:
    """
    Accumulate observed requests and flush them to a handler on checkpoints.

    A checkpoint sorts the accumulated requests by ``(url, method)`` and calls
    the handler once with them, unless nothing was observed. It then releases
    every caller waiting on the completion gate.

    Notes
    -----
    The capturer is designed for a single asyncio event loop: operations are
    serialized by the loop and no locking is used. Multiple capturers never
    share state.
    """

    def __init__(
        self,
        handler: CapturedRequestsHandler,
        options: CaptureOptions | None = None,
    ) -> None:
        """
        Initialize the capturer.

        Parameters
        ----------
        handler : CapturedRequestsHandler
            Called synchronously with each non-empty sorted batch.
        options : CaptureOptions | None, optional
            Automatic checkpoint and completion gate configuration.
            Defaults to manual checkpoints only.
        """
        self._handler = handler
        self._options = options or CaptureOptions()
        self._capturer_id = str(object=uuid.uuid4())

        self._batch: list[CapturedRequest] = []
        self._timer_task: asyncio.Task[None] | None = None
        self._pending_releases: list[ReleaseCallback] = []

        self._log = log.bind(capturer_id=self._capturer_id)
        self._log.debug(
            event="Initialized RequestCapturer",
            timeout_ms=self._options.timeout_ms,
            wait_for_checkpoint=self._options.wait_for_checkpoint,
        )

    @property
    def capturer_id(self) -> str:
        return self._capturer_id

    @property
    def options(self) -> CaptureOptions:
        return self._options

    @property
    def pending_count(self) -> int:
        """Number of requests observed since the last checkpoint."""
        return len(self._batch)

    @property
    def pending_release_count(self) -> int:
        """Number of callers currently waiting for the next checkpoint."""
        return len(self._pending_releases)

    @property
    def timer_armed(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    def add_request(self, request: CapturedRequest) -> None:
        """
        Append a request to the current batch and rearm the checkpoint timer.

        Parameters
        ----------
        request : CapturedRequest
            Observed request.

        Raises
        ------
        CheckpointSchedulingError
            If automatic checkpoints are enabled and no event loop is running.
        """
        loop = self._timer_loop()
        self._batch.append(request)
        self._log.debug(
            event="Captured request",
            method=request.method,
            url=request.url,
            pending_count=len(self._batch),
        )
        if loop is not None:
            self._start_checkpoint_timer(loop=loop)

    async def wait_for_checkpoint(self) -> None:
        """
        Suspend until the next checkpoint when the completion gate is enabled.

        The release callback is registered before the first suspension point,
        so the caller is part of the very next checkpoint.
        """
        if not self._options.wait_for_checkpoint:
            return

        loop = asyncio.get_running_loop()
        future: asyncio.Future[None] = loop.create_future()
        self.add_release_callback(functools.partial(_resolve_future, future))
        self._log.debug(
            event="Waiting for checkpoint",
            pending_release_count=len(self._pending_releases),
        )
        await future

    async def observe(self, method: str, url: str, body: str | None = None) -> CapturedRequest:
        """
        Record one observation, then wait on the completion gate.

        Parameters
        ----------
        method : str
            HTTP method, kept exactly as received.
        url : str
            Fully qualified request URL.
        body : str | None, optional
            Request body, if one was extracted.

        Returns
        -------
        CapturedRequest
            The captured request, once the gate (if any) released the caller.
        """
        request = CapturedRequest(method=method, url=url, body=body)
        self.add_request(request)
        await self.wait_for_checkpoint()
        return request

    def add_release_callback(self, callback: ReleaseCallback) -> None:
        """
        Register a callback invoked once, in registration order, at the next checkpoint.
        """
        self._pending_releases.append(callback)

    def drain_sorted(self) -> list[CapturedRequest]:
        """
        Return the current batch sorted by ``(url, method)`` and empty it.

        Returns
        -------
        list[CapturedRequest]
            Sorted requests. Ties keep their arrival order.
        """
        requests = sorted(self._batch, key=CapturedRequest.sort_key)
        self._batch = []
        return requests

    def checkpoint(self) -> None:
        """
        Flush the current batch to the handler and release waiting callers.

        The timer is cleared first. The handler is only called for a non-empty
        batch. The batch is emptied and the gate released even if the handler
        raises, in which case the exception propagates to the caller.
        """
        self._clear_checkpoint_timer()
        requests = self.drain_sorted()
        # Callbacks registered by the handler belong to the next checkpoint.
        callbacks = self._take_pending_releases()
        try:
            if requests:
                self._log.info(event="Processing checkpoint", request_count=len(requests))
                self._handler(requests)
            else:
                self._log.debug(event="Checkpoint with empty batch")
        finally:
            self._run_release_callbacks(callbacks)

    def reset(self, release_pending: bool = False) -> None:
        """
        Discard the current batch without calling the handler.

        Parameters
        ----------
        release_pending : bool, optional
            If ``True``, also release callers waiting on the completion gate.
            By default they keep waiting for the next checkpoint.
        """
        self._clear_checkpoint_timer()
        discarded = len(self._batch)
        self._batch = []
        self._log.debug(
            event="Capturer reset",
            discarded_count=discarded,
            release_pending=release_pending,
            pending_release_count=len(self._pending_releases),
        )
        if release_pending:
            self._release_pending()

    def close(self) -> None:
        """
        Run a final checkpoint.

        Notes
        -----
        The capturer remains usable afterwards.
        """
        self._log.debug(event="Closing capturer", pending_count=len(self._batch))
        self.checkpoint()

    def _timer_loop(self) -> asyncio.AbstractEventLoop | None:
        """
        Resolve the loop used for the checkpoint timer.

        Returns
        -------
        asyncio.AbstractEventLoop | None
            Running loop, or ``None`` when automatic checkpoints are disabled.
        """
        if self._options.timeout_ms is None:
            return None
        try:
            return asyncio.get_running_loop()
        except RuntimeError as error:
            raise CheckpointSchedulingError(
                "Automatic checkpoints require a running event loop. "
                "Observe requests from async code or disable timeout_ms."
            ) from error

    def _start_checkpoint_timer(self, *, loop: asyncio.AbstractEventLoop) -> None:
        timeout_seconds = t.cast(float, self._options.timeout_seconds)
        self._clear_checkpoint_timer()
        self._timer_task = loop.create_task(
            self._checkpoint_timer(timeout_seconds=timeout_seconds),
            name=f"checkpoint_timer_{self._capturer_id}",
        )

    def _clear_checkpoint_timer(self) -> None:
        timer_task = self._timer_task
        self._timer_task = None
        if timer_task is None or timer_task.done():
            return
        # A checkpoint fired by the timer must not cancel its own task.
        if timer_task is not _current_task():
            timer_task.cancel()

    async def _checkpoint_timer(self, *, timeout_seconds: float) -> None:
        """
        Trigger a checkpoint once no request arrived for ``timeout_seconds``.

        Parameters
        ----------
        timeout_seconds : float
            Inactivity window.
        """
        try:
            await asyncio.sleep(delay=timeout_seconds)
            self._log.debug(
                event="Checkpoint timer elapsed",
                timeout_seconds=timeout_seconds,
                pending_count=len(self._batch),
            )
            self.checkpoint()
        except asyncio.CancelledError:
            self._log.debug(event="Checkpoint timer cancelled")
            raise
        except Exception as e:
            # Nothing awaits this task: the loop reports the re-raised error.
            self._log.error(event="Automatic checkpoint failed", error=str(object=e))
            raise

    def _take_pending_releases(self) -> list[ReleaseCallback]:
        callbacks = self._pending_releases
        self._pending_releases = []
        return callbacks

    def _release_pending(self) -> None:
        self._run_release_callbacks(self._take_pending_releases())

    def _run_release_callbacks(self, callbacks: list[ReleaseCallback]) -> None:
        if callbacks:
            self._log.debug(event="Releasing waiting callers", released_count=len(callbacks))
        for callback in callbacks:
            callback()
