"""Proxy handler – translate the request, connect upstream, relay the stream."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid

import aiohttp
from aiohttp import web

from sse_relay.config import RelayConfig
from sse_relay.relay import relay_stream
from sse_relay.rewrite import (
    build_upstream_headers,
    build_upstream_url,
    error_response_headers,
    needs_body,
    stream_response_headers,
    with_cors,
)
from sse_relay.sse import error_body
from sse_relay.upstream import connect_with_retry

log = logging.getLogger("sse-relay")

CONFIG_KEY = web.AppKey("config", RelayConfig)
CLIENT_KEY = web.AppKey("client", aiohttp.ClientSession)


def create_app(config: RelayConfig, client: aiohttp.ClientSession) -> web.Application:
    app = web.Application()
    app[CONFIG_KEY] = config
    app[CLIENT_KEY] = client
    app.router.add_route("*", "/{path_info:.*}", proxy_handler)
    return app


def _json_error(status: int, message: str, cors) -> web.Response:
    headers = with_cors({"Content-Type": "application/json"}, cors)
    return web.Response(status=status, body=error_body(message), headers=headers)


async def proxy_handler(request: web.Request) -> web.StreamResponse:
    config = request.app[CONFIG_KEY]
    req_id = uuid.uuid4().hex[:8]
    log_prefix = f"[{req_id}]"
    t0 = time.monotonic()

    if request.method == "OPTIONS":
        return web.Response(status=200, headers=with_cors({}, config.cors_headers))

    try:
        return await _proxy(request, config, req_id, log_prefix)
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        log.exception(f"{log_prefix} fatal handler error after {time.monotonic() - t0:.2f}s: {exc!r}")
        return _json_error(500, str(exc) or type(exc).__name__, config.cors_headers)


async def _proxy(request: web.Request, config: RelayConfig, req_id: str, log_prefix: str) -> web.StreamResponse:
    client = request.app[CLIENT_KEY]
    log.info(f"{log_prefix} → {request.method} {request.path_qs}")

    upstream_url = build_upstream_url(config, request.rel_url.raw_path, request.query)
    headers = build_upstream_headers(config, request.headers)
    # Buffered up front so every retry resends the same bytes
    body = await request.read() if needs_body(request.method) else None

    try:
        upstream = await connect_with_retry(
            client,
            request.method,
            upstream_url,
            headers=headers,
            body=body,
            policy=config.retry,
            timeout=aiohttp.ClientTimeout(total=None, sock_connect=config.connect_timeout, sock_read=config.read_timeout),
            log_prefix=log_prefix,
        )
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        log.error(
            f"{log_prefix} upstream error while requesting {upstream_url}: {exc!r}  "
            f"-- Check that the target ({config.upstream_url}) is reachable."
        )
        return _json_error(500, str(exc) or type(exc).__name__, config.cors_headers)

    log.info(f"{log_prefix} ← upstream {upstream.status} {upstream.reason} ({upstream.headers.get('Content-Type', '')})")

    if not 200 <= upstream.status < 300:
        return await _pass_through_error(upstream, config, log_prefix)

    resp = web.StreamResponse(
        status=upstream.status,
        reason=upstream.reason,
        headers=stream_response_headers(upstream.headers, config.cors_headers),
    )
    try:
        await resp.prepare(request)
    except BaseException:
        upstream.close()
        raise

    await relay_stream(
        upstream,
        resp,
        heartbeat=config.heartbeat,
        write_timeout=config.write_timeout,
        req_id=req_id,
    )
    return resp


async def _pass_through_error(upstream: aiohttp.ClientResponse, config: RelayConfig, log_prefix: str) -> web.Response:
    try:
        body = await upstream.read()
    finally:
        upstream.close()
    log.error(f"{log_prefix} upstream error body ({upstream.status}): {body[:500]!r}")
    return web.Response(
        status=upstream.status,
        body=body,
        headers=error_response_headers(upstream.headers, config.cors_headers),
    )
