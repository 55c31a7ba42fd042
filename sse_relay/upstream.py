"""Upstream connect with bounded retry."""

from __future__ import annotations

import asyncio
import logging

import aiohttp
from yarl import URL

from sse_relay.config import RetryPolicy

log = logging.getLogger("sse-relay")


async def connect_with_retry(
    session: aiohttp.ClientSession,
    method: str,
    url: URL | str,
    *,
    headers,
    body: bytes | None,
    policy: RetryPolicy,
    timeout: aiohttp.ClientTimeout | None = None,
    log_prefix: str = "",
) -> aiohttp.ClientResponse:
    """Issue the upstream request, retrying transient failures.

    Network errors are retried immediately; responses with a retryable status
    are retried after ``policy.backoff(attempt)``. Both share ``max_attempts``.
    Any other status is returned untouched, as is a retryable status on the
    final attempt. After the final network failure the error is re-raised.
    """
    attempt = 1
    while True:
        log.info(f"{log_prefix} connecting upstream (attempt {attempt}/{policy.max_attempts})")
        try:
            resp = await session.request(
                method,
                url,
                headers=headers,
                data=body,
                timeout=timeout,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            if attempt >= policy.max_attempts:
                log.error(f"{log_prefix} upstream error on final attempt {attempt}: {exc!r}")
                raise
            log.warning(f"{log_prefix} upstream error on attempt {attempt}, retrying: {exc!r}")
            attempt += 1
            continue

        if policy.is_retryable(resp.status) and attempt < policy.max_attempts:
            delay = policy.backoff(attempt)
            log.warning(f"{log_prefix} upstream returned {resp.status} on attempt {attempt}, retrying in {delay:.1f}s")
            resp.close()
            await asyncio.sleep(delay)
            attempt += 1
            continue

        return resp
