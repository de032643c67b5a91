"""Utility helpers for URL normalization, naming, and timestamps."""

from __future__ import annotations

import datetime as dt
import re
from typing import List, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .config import TRACKING_PARAM_PREFIXES, TRACKING_PARAMS
from .errors import InvalidUrlError

SLUG_PATTERN = re.compile(r"[^a-z0-9]+")
_EXTENSION_PATTERN = re.compile(r"\.[^./]+$")
_DEFAULT_PORTS = {"http": 80, "https": 443}


def slugify(value: str, fallback: str = "page") -> str:
    """Generate a filesystem-friendly slug using ASCII characters only."""
    normalized = value.encode("ascii", "ignore").decode("ascii")
    normalized = normalized.lower()
    normalized = SLUG_PATTERN.sub("-", normalized).strip("-")
    return normalized or fallback


def utc_timestamp(moment: Optional[dt.datetime] = None) -> str:
    """Return an ISO-8601 UTC timestamp with a trailing Z."""
    moment = moment or dt.datetime.now(dt.timezone.utc)
    return moment.replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _is_tracking_param(key: str) -> bool:
    lowered = key.lower()
    return lowered in TRACKING_PARAMS or lowered.startswith(TRACKING_PARAM_PREFIXES)


def ensure_url(url: str) -> str:
    """Validate a user supplied URL, adding https:// when no scheme is given.

    Tracking parameters and the fragment are dropped; the rest of the URL is
    preserved as typed so it stays followable.
    """
    if not url or not url.strip():
        raise InvalidUrlError("URL is required")
    url = url.strip()
    if not re.match(r"^[a-zA-Z][a-zA-Z0-9+.-]*://", url):
        url = f"https://{url}"
    parts = urlsplit(url)
    if parts.scheme.lower() not in ("http", "https"):
        raise InvalidUrlError(f"Invalid URL format: unsupported scheme {parts.scheme!r}")
    try:
        hostname = parts.hostname
        _ = parts.port
    except ValueError as exc:
        raise InvalidUrlError(f"Invalid URL format: {exc}") from exc
    if not hostname or " " in parts.netloc:
        raise InvalidUrlError(f"Invalid URL format: {url}")
    query = urlencode(
        [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if not _is_tracking_param(k)]
    )
    return urlunsplit((parts.scheme.lower(), parts.netloc, parts.path or "/", query, ""))


def normalize_url(url: str) -> str:
    """Return the canonical form of a URL used for deduplication.

    Scheme and host are lowercased, default ports and the fragment dropped,
    ``/index.html`` folded into its directory, trailing slashes removed from
    non-root paths, and the query filtered of tracking parameters and sorted.
    Non-http URLs are returned unchanged.
    """
    try:
        parts = urlsplit(url.strip())
        port = parts.port
    except ValueError:
        return url
    scheme = parts.scheme.lower()
    if scheme not in ("http", "https") or not parts.hostname:
        return url

    host = parts.hostname.lower()
    if port and port != _DEFAULT_PORTS[scheme]:
        host = f"{host}:{port}"

    path = parts.path or "/"
    if path.endswith("/index.html"):
        path = path[: -len("index.html")]
    if path != "/":
        path = path.rstrip("/") or "/"

    params = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if not _is_tracking_param(key)
    ]
    query = urlencode(sorted(params))
    return urlunsplit((scheme, host, path, query, ""))


def hostname_of(url: str) -> str:
    try:
        return (urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""


def same_site(host: str, other: str) -> bool:
    """Compare hostnames ignoring a leading ``www.``."""

    def _strip(value: str) -> str:
        value = value.lower()
        return value[4:] if value.startswith("www.") else value

    return bool(host) and _strip(host) == _strip(other)


def path_segments(url: str) -> List[str]:
    return [segment for segment in urlsplit(url).path.split("/") if segment]


def title_from_url(url: str) -> str:
    """Synthesize a readable title from the last URL path segment."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return "Untitled Page"
    segments = [segment for segment in parts.path.split("/") if segment]
    if not segments or segments[-1] == "index.html":
        return parts.hostname or "Untitled Page"
    title = _EXTENSION_PATTERN.sub("", segments[-1])
    title = re.sub(r"[-_]+", " ", title).strip()
    if not title:
        return parts.hostname or "Untitled Page"
    return " ".join(word[:1].upper() + word[1:] for word in title.split(" "))


def name_from_url(url: str) -> str:
    """Generate the archive file stem for a page URL."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return "untitled-page"
    host_slug = slugify(parts.hostname or "", fallback="untitled-page")
    segments = [segment for segment in parts.path.split("/") if segment]
    if segments and segments[-1] in ("index.html", "index.htm"):
        segments = segments[:-1]
    if not segments:
        return host_slug
    segments[-1] = _EXTENSION_PATTERN.sub("", segments[-1])
    return slugify("-".join(segments), fallback=host_slug)[:120].strip("-") or host_slug
