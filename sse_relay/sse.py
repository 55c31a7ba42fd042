"""SSE frames emitted by the relay itself (start marker, keep-alive, inline error)."""

from __future__ import annotations

import json
import time


def _now_ms() -> int:
    return int(time.time() * 1000)


def comment_frame(label: str, timestamp: int | None = None) -> bytes:
    """Build a comment frame (``: <label> <ts>``) that SSE clients ignore."""
    if timestamp is None:
        timestamp = _now_ms()
    return f": {label} {timestamp}\n\n".encode("utf-8")


def start_frame(timestamp: int | None = None) -> bytes:
    return comment_frame("start", timestamp)


def keepalive_frame(timestamp: int | None = None) -> bytes:
    return comment_frame("keep-alive", timestamp)


def error_frame(message: str) -> bytes:
    """Build an inline ``data:`` frame carrying ``{"error": message}``.

    Used once the status line is committed and an HTTP error is no longer possible.
    """
    data = json.dumps({"error": message}, ensure_ascii=False)
    return f"data: {data}\n\n".encode("utf-8")


def error_body(message: str) -> bytes:
    """JSON body for pre-stream 500 responses."""
    return json.dumps({"error": message}, ensure_ascii=False).encode("utf-8")
