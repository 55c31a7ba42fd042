"""Per-request relay state and the serialized downstream writer."""

from __future__ import annotations

import asyncio
import enum
import logging
import time

from aiohttp import web

log = logging.getLogger("sse-relay")


class SessionState(str, enum.Enum):
    INIT = "init"
    STREAMING = "streaming"
    CLOSED = "closed"
    ERRORED = "errored"

    @property
    def terminal(self) -> bool:
        return self in (SessionState.CLOSED, SessionState.ERRORED)


class Session:
    """Shared state of one relay: activity clock, termination flag, cancellation.

    ``terminated`` flips false→true exactly once, on the first transition into
    a terminal state. Later transitions are ignored.
    """

    def __init__(self, req_id: str, clock=time.monotonic):
        self.req_id = req_id
        self.state = SessionState.INIT
        self.terminated = False
        self.cancelled = False
        self._clock = clock
        self._done = asyncio.Event()
        self.started_at = clock()
        self.last_activity = self.started_at
        # Stats for the closing log line
        self.chunks = 0
        self.bytes = 0
        self.heartbeats = 0

    def start(self) -> None:
        if self.state is not SessionState.INIT:
            raise RuntimeError(f"cannot start session in state {self.state.value}")
        self.state = SessionState.STREAMING
        self.touch()

    def touch(self) -> None:
        self.last_activity = self._clock()

    def idle_for(self) -> float:
        """Seconds since the last successful downstream write."""
        return self._clock() - self.last_activity

    def elapsed(self) -> float:
        return self._clock() - self.started_at

    def finish(self, state: SessionState) -> bool:
        """Enter a terminal state. Returns False if already terminated."""
        if not state.terminal:
            raise ValueError(f"{state.value} is not a terminal state")
        if self.terminated:
            return False
        self.state = state
        self.terminated = True
        self._done.set()
        return True

    def cancel(self) -> None:
        """Record a client-initiated disconnect."""
        self.cancelled = True
        self.finish(SessionState.ERRORED)

    async def wait_terminated(self, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds for termination; True if terminated."""
        try:
            await asyncio.wait_for(self._done.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass
        return self.terminated


class WriteSerializer:
    """Mutual-exclusion gate around the single downstream sink.

    ``asyncio.Lock`` admits waiters in FIFO order, so a heartbeat queued behind a
    data write goes out right after it. Every write is bounded by ``write_timeout``.
    """

    def __init__(
        self,
        sink: web.StreamResponse,
        session: Session,
        *,
        write_timeout: float = 30.0,
        log_prefix: str = "",
    ):
        self._sink = sink
        self._session = session
        self._write_timeout = write_timeout
        self._log_prefix = log_prefix
        self._lock = asyncio.Lock()
        self._eof_sent = False

    async def submit(self, data: bytes, context: str = "data") -> bool:
        """Write ``data`` downstream. False once the client is gone or the session ended."""
        if self._session.terminated:
            return False
        async with self._lock:
            if self._session.terminated:
                return False
            try:
                await asyncio.wait_for(self._sink.write(data), timeout=self._write_timeout)
            except asyncio.TimeoutError:
                log.warning(f"{self._log_prefix} write timed out after {self._write_timeout}s during {context}")
                self._session.finish(SessionState.ERRORED)
                return False
            except (ConnectionError, RuntimeError) as exc:
                log.warning(f"{self._log_prefix} write failed during {context}: {type(exc).__name__} - {exc}")
                self._session.finish(SessionState.ERRORED)
                return False
            # Updated before the lock is released so the next idle check sees it
            self._session.touch()
            return True

    async def close(self) -> None:
        """Write EOF to the sink, once."""
        if self._eof_sent:
            return
        self._eof_sent = True
        async with self._lock:
            try:
                await asyncio.wait_for(self._sink.write_eof(), timeout=self._write_timeout)
            except (ConnectionError, RuntimeError, asyncio.TimeoutError) as exc:
                log.debug(f"{self._log_prefix} write_eof failed: {type(exc).__name__} - {exc}")
