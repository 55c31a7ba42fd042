"""Streaming relay – data pump and idle heartbeat sharing one serialized sink."""

from __future__ import annotations

import asyncio
import logging

import aiohttp

from sse_relay.config import HeartbeatPolicy
from sse_relay.session import Session, SessionState, WriteSerializer
from sse_relay.sse import error_frame, keepalive_frame, start_frame

log = logging.getLogger("sse-relay")

# Errors that mean the upstream body can no longer be read
UPSTREAM_READ_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, ConnectionError)


class HeartbeatScheduler:
    """Emit a keep-alive frame whenever the relay has been silent too long.

    Ticks every ``check_interval``; a write from the pump between ticks resets
    the idle clock and suppresses the next heartbeat.
    """

    def __init__(self, session: Session, writer: WriteSerializer, policy: HeartbeatPolicy, log_prefix: str = ""):
        self._session = session
        self._writer = writer
        self._policy = policy
        self._log_prefix = log_prefix

    async def run(self) -> None:
        session = self._session
        while True:
            if await session.wait_terminated(self._policy.check_interval):
                return
            if session.idle_for() < self._policy.idle_threshold:
                continue
            if not await self._writer.submit(keepalive_frame(), context="heartbeat"):
                log.debug(f"{self._log_prefix} heartbeat failed, stopping")
                return
            session.heartbeats += 1
            log.debug(f"{self._log_prefix} heartbeat #{session.heartbeats}")


class DataPump:
    """Drain the upstream body into the serialized sink, in order."""

    def __init__(self, session: Session, writer: WriteSerializer, upstream: aiohttp.ClientResponse, log_prefix: str = ""):
        self._session = session
        self._writer = writer
        self._upstream = upstream
        self._log_prefix = log_prefix

    async def run(self) -> None:
        session = self._session
        if not await self._writer.submit(start_frame(), context="start"):
            return

        ended = asyncio.ensure_future(session.wait_terminated(None))
        try:
            await self._pump(ended)
        finally:
            ended.cancel()

    async def _next_chunk(self, ended: asyncio.Future) -> bytes | None:
        """Next upstream chunk, or None if the session ended while waiting on it."""
        read = asyncio.ensure_future(self._upstream.content.readany())
        try:
            await asyncio.wait({read, ended}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not read.done():
                read.cancel()
        # A cancelled read is not done until it runs again
        if not read.done():
            return None
        return read.result()

    async def _pump(self, ended: asyncio.Future) -> None:
        session = self._session
        while not (session.terminated or session.cancelled):
            try:
                chunk = await self._next_chunk(ended)
            except UPSTREAM_READ_ERRORS as exc:
                log.error(f"{self._log_prefix} stream loop error: {exc!r}")
                # Best effort; the status line is already committed
                await self._writer.submit(error_frame(f"Proxy Stream Error: {exc}"), context="error notification")
                session.finish(SessionState.ERRORED)
                return

            if chunk is None:
                log.warning(f"{self._log_prefix} session ended while waiting on upstream, stopping")
                return
            if not chunk:
                log.info(
                    f"{self._log_prefix} upstream stream complete (chunks={session.chunks}, bytes={session.bytes})"
                )
                session.finish(SessionState.CLOSED)
                return

            session.chunks += 1
            session.bytes += len(chunk)
            if not await self._writer.submit(chunk):
                log.warning(f"{self._log_prefix} client disconnected during stream, stopping")
                return


async def relay_stream(
    upstream: aiohttp.ClientResponse,
    sink,
    *,
    heartbeat: HeartbeatPolicy,
    write_timeout: float,
    req_id: str,
) -> Session:
    """Relay ``upstream``'s body into ``sink`` until EOF, failure or disconnect.

    ``sink`` is a prepared ``web.StreamResponse`` (anything with async
    ``write``/``write_eof``). Returns the finished Session. On every exit path the
    heartbeat task is cancelled, ``upstream`` is closed, and EOF is written once.
    """
    log_prefix = f"[{req_id}]"
    session = Session(req_id)
    writer = WriteSerializer(sink, session, write_timeout=write_timeout, log_prefix=log_prefix)
    session.start()

    beat = asyncio.create_task(HeartbeatScheduler(session, writer, heartbeat, log_prefix).run())
    pump = DataPump(session, writer, upstream, log_prefix)
    try:
        await pump.run()
    except asyncio.CancelledError:
        log.warning(f"{log_prefix} relay cancelled (client disconnected)")
        session.cancel()
        raise
    except Exception as exc:
        log.exception(f"{log_prefix} unexpected relay error: {exc!r}")
        await writer.submit(error_frame(f"Proxy Stream Error: {exc}"), context="error notification")
        session.finish(SessionState.ERRORED)
    finally:
        # Covers paths where the pump returned without a transition
        session.finish(SessionState.ERRORED)
        beat.cancel()
        await asyncio.wait([beat])
        upstream.close()
        log.info(
            f"{log_prefix} closed: state={session.state.value} chunks={session.chunks} "
            f"bytes={session.bytes} heartbeats={session.heartbeats} duration={session.elapsed():.2f}s"
        )
        await writer.close()
    return session
