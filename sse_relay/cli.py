"""CLI entry points for sse-relay."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys

import aiohttp
from aiohttp import web

from sse_relay import __version__
from sse_relay.config import DEFAULT_UPSTREAM, HeartbeatPolicy, RelayConfig, RetryPolicy
from sse_relay.proxy import create_app

# Ensure print output is visible immediately when stdout is piped
if hasattr(sys.stdout, "reconfigure"):
    sys.stdout.reconfigure(line_buffering=True)

log = logging.getLogger("sse-relay")


def setup_logging(level: str = "INFO", log_file: str | None = None) -> None:
    if log_file:
        handler: logging.Handler = logging.FileHandler(log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s", datefmt="%H:%M:%S"))
    log.addHandler(handler)
    log.setLevel(level.upper())
    # Suppress aiohttp access logs
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


def build_config(args: argparse.Namespace) -> RelayConfig:
    return RelayConfig(
        upstream_url=args.upstream,
        retry=RetryPolicy(max_attempts=args.max_attempts, backoff_ms=args.backoff_ms),
        heartbeat=HeartbeatPolicy(
            check_interval_ms=args.heartbeat_interval_ms,
            idle_threshold_ms=args.idle_threshold_ms,
        ),
        write_timeout=args.write_timeout,
    )


async def async_main(args: argparse.Namespace) -> int:
    config = build_config(args)
    client = aiohttp.ClientSession()
    app = create_app(config, client)

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, args.host, args.port)
    await site.start()

    # Resolve actual port (site._server is a private API; fall back to args.port)
    try:
        actual_port = site._server.sockets[0].getsockname()[1]
    except (AttributeError, IndexError, OSError):
        actual_port = args.port
    print(f"sse-relay v{__version__} listening on http://{args.host}:{actual_port}")
    print(f"Upstream: {config.upstream_url}")
    log.info(
        f"heartbeat every {config.heartbeat.check_interval_ms}ms after {config.heartbeat.idle_threshold_ms}ms idle, "
        f"retry up to {config.retry.max_attempts} attempts on {sorted(config.retry.retryable_statuses)}"
    )

    try:
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        pass
    finally:
        try:
            await client.close()
        except Exception:
            pass
        try:
            await runner.cleanup()
        except Exception:
            pass
        print("sse-relay stopped")

    return 0


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(
        prog="sse-relay",
        description="Streaming reverse proxy that keeps long-lived SSE responses alive across idle periods.",
    )
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--host", default="127.0.0.1", help="Listen address (default: 127.0.0.1)")
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("PORT", "8000")),
        help="Listen port (default: $PORT or 8000, 0 = auto)",
    )
    parser.add_argument("--upstream", default=DEFAULT_UPSTREAM, help=f"Upstream API URL (default: {DEFAULT_UPSTREAM})")
    parser.add_argument("--max-attempts", type=int, default=3, help="Upstream connect attempts (default: 3)")
    parser.add_argument(
        "--backoff-ms", type=int, default=1000, help="Backoff step after 429/503, times attempt number (default: 1000)"
    )
    parser.add_argument(
        "--heartbeat-interval-ms", type=int, default=1000, help="Idle check interval in ms (default: 1000)"
    )
    parser.add_argument(
        "--idle-threshold-ms", type=int, default=9000, help="Silence before a keep-alive is sent, in ms (default: 9000)"
    )
    parser.add_argument(
        "--write-timeout", type=float, default=30.0, help="Seconds a client write may stall (default: 30)"
    )
    parser.add_argument("--log-file", default=None, help="Write logs here instead of stderr")
    parser.add_argument(
        "--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Log level (default: INFO)"
    )
    args = parser.parse_args(argv)

    try:
        build_config(args)
    except ValueError as exc:
        parser.error(str(exc))
    return args


def main_entry() -> None:
    """Entry point for the sse-relay CLI."""
    args = parse_args()
    setup_logging(args.log_level, args.log_file)
    try:
        code = asyncio.run(async_main(args))
    except KeyboardInterrupt:
        code = 0
    sys.exit(code)
