import aiohttp
import httpx
import pytest

import reqcapture.hooks as hooks_module
from reqcapture.hooks import active_capturer


@pytest.fixture(autouse=True)
def test_set_env(monkeypatch):
    monkeypatch.delenv("REQCAPTURE_TIMEOUT_MS", raising=False)
    monkeypatch.delenv("REQCAPTURE_WAIT_FOR_CHECKPOINT", raising=False)


@pytest.fixture
def reset_context():
    """Ensure no capturer leaks out of a test through the context var."""
    token = active_capturer.set(None)
    yield
    active_capturer.reset(token)


@pytest.fixture
def restore_hooks():
    """Fixture to restore original client methods and hook state after tests."""
    original_async_send = httpx.AsyncClient.send
    original_aiohttp_request = aiohttp.ClientSession._request
    original_hooks_installed = hooks_module._hooks_installed
    original_httpx_ref = hooks_module._original_httpx_async_send
    original_aiohttp_ref = hooks_module._original_aiohttp_request

    yield

    httpx.AsyncClient.send = original_async_send
    aiohttp.ClientSession._request = original_aiohttp_request
    hooks_module._hooks_installed = original_hooks_installed
    hooks_module._original_httpx_async_send = original_httpx_ref
    hooks_module._original_aiohttp_request = original_aiohttp_ref
