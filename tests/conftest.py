"""Shared test fixtures for LoadGate test suite."""

from __future__ import annotations

import asyncio
import logging
import socket
import threading
from typing import TYPE_CHECKING

import pytest
from aiohttp import web

from loadgate.config import TestConfig
from loadgate.engine.executor import RequestTemplate

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Iterator
    from typing import Any


# =============================================================================
# Pytest configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-apply markers based on test directory structure."""
    for item in items:
        test_path = str(item.fspath)
        if "/unit/" in test_path:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in test_path:
            item.add_marker(pytest.mark.integration)
        elif "/e2e/" in test_path:
            item.add_marker(pytest.mark.e2e)


@pytest.fixture(autouse=True)
def _reset_loadgate_logger() -> Iterator[None]:
    """Keep handler state from leaking between tests."""
    yield
    logger = logging.getLogger("loadgate")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


# =============================================================================
# Network utilities
# =============================================================================


def _get_free_port() -> int:
    """Find an available port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


# =============================================================================
# Stub HTTP server handlers
# =============================================================================


async def _ok_handler(request: web.Request) -> web.Response:
    """Plain 200 with a small body."""
    return web.Response(text="ok")


async def _wait_handler(request: web.Request) -> web.Response:
    """Respond 200 after a configurable delay (query param: ?delay=0.05)."""
    delay = float(request.query.get("delay", "0.05"))
    await asyncio.sleep(delay)
    return web.json_response({"waited": delay})


async def _status_handler(request: web.Request) -> web.Response:
    """Return a configurable status (query param: ?status=500)."""
    status = int(request.query.get("status", "500"))
    return web.json_response({"status": status}, status=status)


async def _check_handler(request: web.Request) -> web.Response:
    """200 only if the method matches ?method= and the body equals X-Check."""
    body = await request.text()
    method_ok = request.method == request.query.get("method", "GET")
    ok = method_ok and request.headers.get("X-Check") == body
    return web.Response(status=200 if ok else 400)


async def _json_handler(request: web.Request) -> web.Response:
    """200 only for a JSON object sent as application/json."""
    if request.content_type != "application/json":
        return web.Response(status=415)
    try:
        payload = await request.json()
    except ValueError:
        return web.Response(status=400)
    return web.Response(status=200 if isinstance(payload, dict) else 400)


def _create_stub_app() -> web.Application:
    """Build the stub server app with all test routes."""
    app = web.Application()
    app.router.add_get("/ok", _ok_handler)
    app.router.add_get("/wait", _wait_handler)
    app.router.add_route("*", "/status", _status_handler)
    app.router.add_route("*", "/check", _check_handler)
    app.router.add_route("*", "/json", _json_handler)
    return app


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
async def stub_server() -> AsyncIterator[str]:
    """Aiohttp stub server on the test's event loop.

    Returns the base URL (e.g., 'http://127.0.0.1:54321').
    """
    app = _create_stub_app()
    port = _get_free_port()
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", port)
    await site.start()
    yield f"http://127.0.0.1:{port}"
    await runner.cleanup()


@pytest.fixture
def sync_stub_server() -> Iterator[str]:
    """Stub server running in a background thread for blocking callers.

    The runner and the CLI own their event loop, so the server has to live
    on a separate one.
    """
    port = _get_free_port()
    started = threading.Event()
    loop_holder: list[asyncio.AbstractEventLoop] = []

    def _thread_target() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        runner = web.AppRunner(_create_stub_app())
        loop.run_until_complete(runner.setup())
        site = web.TCPSite(runner, "127.0.0.1", port)
        loop.run_until_complete(site.start())
        loop_holder.append(loop)
        started.set()
        loop.run_forever()
        loop.run_until_complete(runner.cleanup())
        loop.close()

    thread = threading.Thread(target=_thread_target, daemon=True)
    thread.start()
    started.wait(timeout=5.0)

    yield f"http://127.0.0.1:{port}"

    if loop_holder:
        loop_holder[0].call_soon_threadsafe(loop_holder[0].stop)
    thread.join(timeout=5.0)


@pytest.fixture
def unreachable_url() -> str:
    """URL of a local port nothing listens on (connection refused)."""
    return f"http://127.0.0.1:{_get_free_port()}/"


@pytest.fixture
def make_config() -> Callable[..., TestConfig]:
    """Factory for short-running TestConfigs.

    Defaults: 1 VU, 1s, 0.25s ticks, 1s grace period, 2s request timeout.
    """

    def _make(url: str, **overrides: Any) -> TestConfig:
        options: dict[str, Any] = {
            "vus": 1,
            "duration": 1.0,
            "tick_interval": 0.25,
            "grace_period": 1.0,
            "seed": 7,
        }
        options.update(overrides)
        timeout = options.pop("timeout", 2.0)
        method = options.pop("method", "GET")
        request = RequestTemplate(url=url, method=method, timeout=timeout)
        return TestConfig(request=request, **options)

    return _make
