"""Pytest configuration and shared fixtures."""

import asyncio
from pathlib import Path

import pytest
from aiohttp import web

from sse_relay.config import HeartbeatPolicy, RelayConfig, RetryPolicy


class RecordingSink:
    """Downstream stand-in that records writes and detects overlapping ones."""

    def __init__(self, delay: float = 0.0, accept: int | None = None):
        self.delay = delay
        # Number of writes accepted before the "client" disappears
        self.accept = accept
        self.writes: list[bytes] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.attempts = 0
        self.eof_calls = 0

    async def write(self, data: bytes) -> None:
        self.attempts += 1
        if self.accept is not None and len(self.writes) >= self.accept:
            raise ConnectionResetError("Cannot write to closing transport")
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            self.writes.append(bytes(data))
        finally:
            self.in_flight -= 1

    async def write_eof(self) -> None:
        self.eof_calls += 1

    @property
    def data_bytes(self) -> bytes:
        """Concatenated writes, minus the relay's own comment frames."""
        return b"".join(w for w in self.writes if not w.startswith(b": "))

    @property
    def keepalives(self) -> list[bytes]:
        return [w for w in self.writes if w.startswith(b": keep-alive ")]


class FakeContent:
    """Upstream body: bytes are chunks, floats are pauses, exceptions are raised."""

    def __init__(self, items):
        self._items = list(items)
        self.reads = 0

    async def readany(self) -> bytes:
        self.reads += 1
        while self._items:
            item = self._items.pop(0)
            if isinstance(item, (int, float)):
                await asyncio.sleep(item)
                continue
            if isinstance(item, BaseException):
                raise item
            return item
        return b""


class FakeUpstream:
    def __init__(self, items):
        self.content = FakeContent(items)
        self.close_calls = 0

    def close(self) -> None:
        self.close_calls += 1


async def _start_server(app_or_handler):
    """Start an aiohttp app (or catch-all handler) on an ephemeral port.

    Returns ``(runner, base_url)``; the caller cleans up the runner.
    """
    if isinstance(app_or_handler, web.Application):
        app = app_or_handler
    else:
        app = web.Application()
        app.router.add_route("*", "/{path_info:.*}", app_or_handler)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    port = site._server.sockets[0].getsockname()[1]
    return runner, f"http://127.0.0.1:{port}"


@pytest.fixture
def start_server():
    return _start_server


@pytest.fixture
def make_sink():
    return RecordingSink


@pytest.fixture
def make_upstream():
    return FakeUpstream


@pytest.fixture
def fast_heartbeat():
    return HeartbeatPolicy(check_interval_ms=10, idle_threshold_ms=50)


@pytest.fixture
def fast_config(fast_heartbeat):
    """Relay config with millisecond-scale timings for integration tests."""
    return RelayConfig(
        retry=RetryPolicy(backoff_ms=10),
        heartbeat=fast_heartbeat,
        write_timeout=5.0,
        connect_timeout=5.0,
        read_timeout=10.0,
    )


@pytest.fixture
def project_dir():
    """Return the project root directory."""
    return Path(__file__).parent.parent
