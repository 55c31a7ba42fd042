"""Inbound → upstream request translation and response header shaping."""

from __future__ import annotations

from typing import Mapping

from multidict import CIMultiDict, MultiDict
from yarl import URL

from sse_relay.config import RelayConfig

# ---------------------------------------------------------------------------
# Header helpers
# ---------------------------------------------------------------------------

HOP_BY_HOP = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)

# Client IP forwarding is not passed upstream
STRIPPED_REQUEST = frozenset({"x-forwarded-for"})

# The relay re-frames the body, so length and encoding no longer apply
STRIPPED_RESPONSE = frozenset({"content-length", "content-encoding"})

BODYLESS_METHODS = frozenset({"GET", "HEAD"})


def filter_headers(headers: Mapping[str, str], drop: frozenset[str] = frozenset()) -> CIMultiDict[str]:
    """Copy ``headers`` without hop-by-hop entries and anything named in ``drop``."""
    out: CIMultiDict[str] = CIMultiDict()
    for k, v in headers.items():
        lk = k.lower()
        if lk in HOP_BY_HOP or lk in drop:
            continue
        out.add(k, v)
    return out


# ---------------------------------------------------------------------------
# Request translation
# ---------------------------------------------------------------------------


def rewrite_path(path: str, prefix: str = "/models", version: str = "/v1beta") -> str:
    """Prepend ``version`` to paths under ``prefix``.

    Already-versioned paths do not start with ``prefix``, so rewriting twice is a no-op.
    """
    if path.startswith(prefix):
        return version + path
    return path


def force_stream_query(query: Mapping[str, str], param: str = "alt", value: str = "sse") -> MultiDict[str]:
    out: MultiDict[str] = MultiDict(query)
    if param not in out:
        out[param] = value
    return out


def build_upstream_url(config: RelayConfig, raw_path: str, query: Mapping[str, str]) -> URL:
    path = rewrite_path(raw_path, config.path_prefix, config.api_version)
    return (
        URL(config.upstream_url)
        .with_path(path, encoded=True)
        .with_query(force_stream_query(query, config.stream_param, config.stream_value))
    )


def build_upstream_headers(config: RelayConfig, headers: Mapping[str, str]) -> CIMultiDict[str]:
    out = filter_headers(headers, drop=STRIPPED_REQUEST)
    out["Host"] = config.upstream_host
    # Injected frames are plain text; a compressed upstream body can't take them
    out["Accept-Encoding"] = "identity"
    return out


def needs_body(method: str) -> bool:
    return method.upper() not in BODYLESS_METHODS


# ---------------------------------------------------------------------------
# Response shaping
# ---------------------------------------------------------------------------


def with_cors(headers: Mapping[str, str], cors: Mapping[str, str]) -> CIMultiDict[str]:
    out: CIMultiDict[str] = CIMultiDict(headers)
    for k, v in cors.items():
        out[k] = v
    return out


def stream_response_headers(upstream_headers: Mapping[str, str], cors: Mapping[str, str]) -> CIMultiDict[str]:
    out = with_cors(filter_headers(upstream_headers, drop=STRIPPED_RESPONSE), cors)
    out["Content-Type"] = "text/event-stream"
    out["Cache-Control"] = "no-cache"
    out["Connection"] = "keep-alive"
    return out


def error_response_headers(upstream_headers: Mapping[str, str], cors: Mapping[str, str]) -> CIMultiDict[str]:
    out: CIMultiDict[str] = CIMultiDict()
    content_type = upstream_headers.get("Content-Type")
    if content_type:
        out["Content-Type"] = content_type
    return with_cors(out, cors)
