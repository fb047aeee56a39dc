"""URL normalization and the crawl domain policy."""

from __future__ import annotations

from typing import Iterable
from urllib.parse import urlsplit, urlunsplit

ALLOWED_SCHEMES = frozenset({"http", "https"})
_DEFAULT_PORTS = {"http": 80, "https": 443}


def is_crawlable_url(url: str) -> bool:
    """True for absolute http(s) URLs with a host."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme.lower() in ALLOWED_SCHEMES and bool(parts.hostname)


def normalize_url(url: str) -> str:
    """Visited-set key: lowercase scheme/host, no default port, no fragment, ``/`` for empty paths."""
    parts = urlsplit(url.strip())
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    try:
        port = parts.port
    except ValueError:
        port = None
    netloc = host
    if port is not None and port != _DEFAULT_PORTS.get(scheme):
        netloc = f"{host}:{port}"
    path = parts.path or "/"
    return urlunsplit((scheme, netloc, path, parts.query, ""))


def host_of(url: str) -> str:
    return (urlsplit(url).hostname or "").lower()


def _strip_www(host: str) -> str:
    return host[4:] if host.startswith("www.") else host


class DomainPolicy:
    """Allow the seed's site (``www.`` ignored, subdomains included) plus an allow-list."""

    def __init__(self, seed_url: str, allowed_domains: Iterable[str] = ()) -> None:
        self.domains: tuple[str, ...] = tuple(
            dict.fromkeys(
                _strip_www(domain.strip().lower().lstrip("."))
                for domain in (host_of(seed_url), *allowed_domains)
                if domain and domain.strip()
            )
        )

    def allows(self, url: str) -> bool:
        host = _strip_www(host_of(url))
        if not host:
            return False
        return any(host == domain or host.endswith("." + domain) for domain in self.domains)


__all__ = ["ALLOWED_SCHEMES", "DomainPolicy", "is_crawlable_url", "normalize_url", "host_of"]
