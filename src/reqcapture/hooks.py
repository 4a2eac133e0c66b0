"""
Intercepts asynchronous HTTP requests.
While a capturer is active, every request is observed by it and then falls
through to the original client method. No response is ever synthesized.
Hooks are installed globally but capture is activated through a context var.
The context var is set by the `capture_requests` context manager.
"""

import contextvars
import json
import typing as t

import aiohttp
import httpx
import structlog
from yarl import URL

from reqcapture.core import RequestCapturer
from reqcapture.exceptions import HooksNotInstalledError
from reqcapture.logging import logging_context

log = structlog.get_logger(__name__)

# Methods whose requests conventionally carry a body.
BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})

# ContextVar to hold the active RequestCapturer for the current Task
active_capturer: contextvars.ContextVar[RequestCapturer | None] = contextvars.ContextVar(
    "active_capturer", default=None
)

# Original method storage to avoid infinite recursion
_BASE_HTTPX_ASYNC_SEND = httpx.AsyncClient.send
_original_httpx_async_send: t.Callable[..., t.Awaitable[httpx.Response]] | None = None
_BASE_AIOHTTP_REQUEST = aiohttp.ClientSession._request
_original_aiohttp_request: t.Callable[..., t.Awaitable[t.Any]] | None = None
_hooks_installed = False


def _carries_body(*, method: str) -> bool:
    return method.upper() in BODY_METHODS


def _decode_body(*, raw: bytes | bytearray | str | None, method: str, url: str) -> str | None:
    """
    Decode a raw request body into text.

    Parameters
    ----------
    raw : bytes | bytearray | str | None
        Raw body.
    method : str
        HTTP method, for logging.
    url : str
        Request URL, for logging.

    Returns
    -------
    str | None
        Decoded body, or ``None`` when empty or not decodable.
    """
    if not raw:
        return None
    if isinstance(raw, str):
        return raw
    try:
        return bytes(raw).decode(encoding="utf-8")
    except UnicodeDecodeError as error:
        log.debug(
            event="Request body not captured",
            reason="body is not valid UTF-8",
            method=method,
            url=url,
            error=str(object=error),
        )
        return None


async def _extract_httpx_body(request: httpx.Request) -> str | None:
    """
    Extract the textual body of an httpx request.

    Parameters
    ----------
    request : httpx.Request
        Request instance to extract data from.

    Returns
    -------
    str | None
        Request body for body-carrying methods, otherwise ``None``.
    """
    if not _carries_body(method=request.method):
        return None
    try:
        content = request.content
    except httpx.RequestNotRead:
        await request.aread()
        content = request.content
    return _decode_body(raw=content, method=request.method, url=str(object=request.url))


def _extract_aiohttp_body(*, method: str, url: str, kwargs: dict[str, t.Any]) -> str | None:
    """
    Convert aiohttp request kwargs into the textual body sent on the wire.
    """
    if not _carries_body(method=method):
        return None
    if kwargs.get("json") is not None:
        return json.dumps(obj=kwargs["json"])

    raw_data = kwargs.get("data")
    if isinstance(raw_data, (bytes, bytearray, str)):
        return _decode_body(raw=raw_data, method=method, url=url)
    return None


def _aiohttp_observed_url(*, str_or_url: t.Any, params: t.Any) -> str:
    """
    Build the observed URL of an aiohttp request, including its query params.
    """
    if not params:
        return str(object=str_or_url)
    return str(object=URL(str(object=str_or_url)).extend_query(params))


async def _observe(
    *, capturer: RequestCapturer, method: str, url: str, body: str | None, client_type: str
) -> None:
    """
    Hand one request to the capturer and wait on its completion gate.

    Parameters
    ----------
    capturer : RequestCapturer
        Active capturer.
    method : str
        HTTP method.
    url : str
        Request URL.
    body : str | None
        Extracted request body.
    client_type : str
        Intercepted client library, for logging.
    """
    with logging_context(capturer_id=capturer.capturer_id):
        log.info(
            event="Request intercepted",
            client_type=client_type,
            method=method,
            url=url,
            body=body,
        )
        await capturer.observe(method=method, url=url, body=body)


def create_requests_capture_handler(
    capturer: RequestCapturer,
) -> t.Callable[[httpx.Request], t.Awaitable[None]]:
    """
    Build an httpx request handler that feeds ``capturer``.

    The handler can be registered as an ``httpx.AsyncClient`` request event
    hook, or called by any interception layer holding an ``httpx.Request``.
    It always returns ``None`` so the request proceeds to the next handler.

    Parameters
    ----------
    capturer : RequestCapturer
        Capturer receiving the observations.

    Returns
    -------
    typing.Callable[[httpx.Request], typing.Awaitable[None]]
        Async request handler.
    """

    async def capture_request(request: httpx.Request) -> None:
        await _observe(
            capturer=capturer,
            method=request.method,
            url=str(object=request.url),
            body=await _extract_httpx_body(request),
            client_type="httpx",
        )

    return capture_request


async def _httpx_async_send_hook(self, request: httpx.Request, **kwargs: t.Any) -> httpx.Response:
    """
    Intercept ``httpx.AsyncClient.send`` to observe requests before sending.

    Parameters
    ----------
    self : httpx.AsyncClient
        HTTPX client instance.
    request : httpx.Request
        Request to send.
    **kwargs : typing.Any
        Extra parameters forwarded to the original send method.

    Returns
    -------
    httpx.Response
        Response from the underlying HTTPX transport.
    """
    capturer = active_capturer.get()
    if capturer is not None:
        await create_requests_capture_handler(capturer)(request)

    if _original_httpx_async_send is None:
        raise HooksNotInstalledError("HTTPX async send hooks have not been installed")

    if _original_httpx_async_send is _httpx_async_send_hook:
        return await _BASE_HTTPX_ASYNC_SEND(self, request, **kwargs)

    return await _original_httpx_async_send(self, request, **kwargs)


async def _aiohttp_async_request_hook(
    self: t.Any,
    method: str,
    str_or_url: t.Any,
    **kwargs: t.Any,
) -> t.Any:
    """
    Intercept ``aiohttp.ClientSession._request`` to observe requests before sending.
    """
    capturer = active_capturer.get()
    if capturer is not None:
        url_str = _aiohttp_observed_url(str_or_url=str_or_url, params=kwargs.get("params"))
        await _observe(
            capturer=capturer,
            method=method,
            url=url_str,
            body=_extract_aiohttp_body(method=method, url=url_str, kwargs=kwargs),
            client_type="aiohttp",
        )

    if _original_aiohttp_request is None:
        raise HooksNotInstalledError("aiohttp request hooks have not been installed")

    if _original_aiohttp_request is _aiohttp_async_request_hook:
        return await _BASE_AIOHTTP_REQUEST(self, method, str_or_url, **kwargs)

    return await _original_aiohttp_request(self, method, str_or_url, **kwargs)


def install_hooks():
    """
    Install global hooks for supported libraries.

    Notes
    -----
    This function is idempotent and supports ``httpx`` and ``aiohttp``.
    """
    global _original_httpx_async_send
    global _original_aiohttp_request
    global _hooks_installed

    if _hooks_installed:
        return

    if httpx.AsyncClient.send is _httpx_async_send_hook:
        if _original_httpx_async_send is None:
            _original_httpx_async_send = _BASE_HTTPX_ASYNC_SEND
    else:
        _original_httpx_async_send = t.cast(
            typ=t.Callable[..., t.Awaitable[httpx.Response]],
            val=httpx.AsyncClient.send,
        )
        # Patch httpx clients with our hooks
        httpx.AsyncClient.send = t.cast(typ=t.Any, val=_httpx_async_send_hook)

    if aiohttp.ClientSession._request is _aiohttp_async_request_hook:
        if _original_aiohttp_request is None:
            _original_aiohttp_request = _BASE_AIOHTTP_REQUEST
    else:
        _original_aiohttp_request = t.cast(
            typ=t.Callable[..., t.Awaitable[t.Any]],
            val=aiohttp.ClientSession._request,
        )
        aiohttp.ClientSession._request = t.cast(
            typ=t.Any,
            val=_aiohttp_async_request_hook,
        )

    log.debug(event="Installed request capture hooks")
    _hooks_installed = True
