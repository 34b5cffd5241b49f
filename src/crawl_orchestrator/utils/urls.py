"""URL normalization shared by deduplication and politeness keys."""

from __future__ import annotations

import logging
from urllib.parse import parse_qsl, urldefrag, urlencode, urlsplit, urlunsplit


logger = logging.getLogger(__name__)

_DEFAULT_PORTS = {"http": 80, "https": 443}


def _bracketed(host: str) -> str:
    # IPv6 literals keep their brackets so a port suffix stays unambiguous
    return f"[{host}]" if ":" in host else host


def normalize_url(url: str) -> str:
    """Collapse equivalent URLs to one comparison key.

    Drops the fragment, lowercases scheme and host, strips default ports,
    maps an empty path to ``/`` and sorts query parameters. Strings that do
    not parse as URLs are returned stripped, so they still deduplicate.
    """
    raw = str(url).strip()
    try:
        without_fragment, _frag = urldefrag(raw)
        parts = urlsplit(without_fragment)
        scheme = parts.scheme.lower()
        host = (parts.hostname or "").lower()
        port = parts.port
    except ValueError as exc:
        logger.debug("Failed to normalize URL %s: %s", raw, exc)
        return raw

    if not scheme or not host:
        return without_fragment

    netloc = _bracketed(host)
    if parts.username:
        credentials = parts.username + (f":{parts.password}" if parts.password else "")
        netloc = f"{credentials}@{netloc}"
    if port is not None and _DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{netloc}:{port}"

    path = parts.path or "/"
    query = urlencode(sorted(parse_qsl(parts.query, keep_blank_values=True)))
    return urlunsplit((scheme, netloc, path, query, ""))


def host_of(url: str) -> str:
    """Return the lowercased host (with non-default port) of ``url``."""
    try:
        parts = urlsplit(str(url).strip())
        host = (parts.hostname or "").lower()
        port = parts.port
    except ValueError:
        return ""
    if port is not None and _DEFAULT_PORTS.get(parts.scheme.lower()) != port:
        return f"{_bracketed(host)}:{port}"
    return _bracketed(host)


def hostname_of(url: str) -> str:
    """Return the lowercased host name of ``url`` without port or IPv6 brackets."""
    try:
        return (urlsplit(str(url).strip()).hostname or "").lower()
    except ValueError:
        return ""
