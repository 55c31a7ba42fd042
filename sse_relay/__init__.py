"""sse-relay: streaming reverse proxy with idle keep-alive.

Sits in front of an SSE-serving HTTP API, retries transient connect failures,
and relays the event stream while injecting keep-alive comments so idle
periods don't trip platform or client timeouts.
"""

from __future__ import annotations

__version__ = "0.1.0"
__all__ = [
    "__version__",
    "RelayConfig",
    "RetryPolicy",
    "HeartbeatPolicy",
    "Session",
    "SessionState",
    "WriteSerializer",
    "connect_with_retry",
    "relay_stream",
    "create_app",
    "rewrite_path",
    "filter_headers",
]

from sse_relay.config import HeartbeatPolicy, RelayConfig, RetryPolicy
from sse_relay.proxy import create_app
from sse_relay.relay import relay_stream
from sse_relay.rewrite import filter_headers, rewrite_path
from sse_relay.session import Session, SessionState, WriteSerializer
from sse_relay.upstream import connect_with_retry
