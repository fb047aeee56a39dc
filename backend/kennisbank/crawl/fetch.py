"""HTTP fetching for the crawler."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import requests

from kennisbank.core.errors import FetchError

DEFAULT_USER_AGENT = "kennisbank-crawler/0.1"


@dataclass(slots=True)
class FetchResponse:
    status: int
    body: str
    final_url: str
    content_type: str = "text/html"

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class Fetcher(Protocol):
    def get(self, url: str, timeout: float) -> FetchResponse:
        """Fetch ``url``; raise :class:`FetchError` on transport failure."""
        ...


class RequestsFetcher:
    """:class:`Fetcher` backed by a shared ``requests.Session``."""

    def __init__(self, user_agent: str = DEFAULT_USER_AGENT, session: requests.Session | None = None) -> None:
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", user_agent)
        self.session.headers.setdefault("Accept", "text/html,application/xhtml+xml,text/plain;q=0.9,*/*;q=0.5")

    def get(self, url: str, timeout: float) -> FetchResponse:
        try:
            resp = self.session.get(url, timeout=timeout, allow_redirects=True)
        except requests.Timeout as exc:
            raise FetchError(url, f"timed out after {timeout:g}s") from exc
        except requests.RequestException as exc:
            raise FetchError(url, str(exc)) from exc
        content_type = resp.headers.get("Content-Type", "").split(";", 1)[0].strip().lower()
        return FetchResponse(
            status=resp.status_code,
            body=resp.text,
            final_url=resp.url or url,
            content_type=content_type or "text/html",
        )

    def close(self) -> None:
        self.session.close()


__all__ = ["FetchResponse", "Fetcher", "RequestsFetcher", "DEFAULT_USER_AGENT"]
