"""Relay configuration – retry/heartbeat policies and the per-process settings."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from yarl import URL

DEFAULT_UPSTREAM = "https://generativelanguage.googleapis.com"


def _default_cors() -> Mapping[str, str]:
    return MappingProxyType(
        {
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
            "Access-Control-Allow-Headers": "*",
        }
    )


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded upstream-connect retry.

    Network failures and retryable statuses share one attempt budget.
    """

    max_attempts: int = 3
    retryable_statuses: frozenset[int] = frozenset({429, 503})
    backoff_ms: int = 1000

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.backoff_ms < 0:
            raise ValueError(f"backoff_ms must be >= 0, got {self.backoff_ms}")

    def backoff(self, attempt: int) -> float:
        """Seconds to sleep after a retryable status on ``attempt`` (1-based)."""
        return attempt * self.backoff_ms / 1000

    def is_retryable(self, status: int) -> bool:
        return status in self.retryable_statuses


@dataclass(frozen=True)
class HeartbeatPolicy:
    check_interval_ms: int = 1000
    idle_threshold_ms: int = 9000

    def __post_init__(self):
        if self.check_interval_ms <= 0:
            raise ValueError(f"check_interval_ms must be > 0, got {self.check_interval_ms}")
        if self.idle_threshold_ms <= self.check_interval_ms:
            raise ValueError(
                f"idle_threshold_ms ({self.idle_threshold_ms}) must be greater than "
                f"check_interval_ms ({self.check_interval_ms})"
            )

    @property
    def check_interval(self) -> float:
        return self.check_interval_ms / 1000

    @property
    def idle_threshold(self) -> float:
        return self.idle_threshold_ms / 1000


@dataclass(frozen=True)
class RelayConfig:
    """Settings built once at startup and handed to the proxy app."""

    upstream_url: str = DEFAULT_UPSTREAM
    # Paths under path_prefix get api_version prepended
    path_prefix: str = "/models"
    api_version: str = "/v1beta"
    # Query parameter forcing event-stream mode upstream
    stream_param: str = "alt"
    stream_value: str = "sse"
    cors_headers: Mapping[str, str] = field(default_factory=_default_cors)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    heartbeat: HeartbeatPolicy = field(default_factory=HeartbeatPolicy)
    # Seconds; a downstream write stalled longer than this counts as a disconnect
    write_timeout: float = 30.0
    connect_timeout: float = 30.0
    read_timeout: float = 300.0

    @property
    def upstream_host(self) -> str:
        url = URL(self.upstream_url)
        if url.port and not url.is_default_port():
            return f"{url.host}:{url.port}"
        return url.host or ""
