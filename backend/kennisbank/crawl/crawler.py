"""Bounded breadth-first website crawler.

One crawl run fetches pages sequentially from a FIFO frontier. All run state
(frontier, visited set, events) lives in the run and is discarded afterwards,
so one :class:`Crawler` can serve concurrent runs for different sources.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable
from urllib.parse import urldefrag

from kennisbank.core.errors import FetchError, SeedUnreachableError
from kennisbank.core.logging import get_logger, log_context
from kennisbank.core.metrics import CRAWL_EVENTS, PAGES_FETCHED
from kennisbank.crawl.fetch import Fetcher
from kennisbank.crawl.html import ExtractedPage, extract_html, extract_plain_text
from kennisbank.crawl.policy import DomainPolicy, is_crawlable_url, normalize_url
from kennisbank.models.entities import Page, SyncStatus

logger = get_logger(__name__)

_HTML_TYPES = ("text/html", "application/xhtml+xml")


class CrawlEventKind(str, Enum):
    URL_INVALID = "url_invalid"
    URL_ALREADY_SEEN = "url_already_seen"
    URL_OUTSIDE_ALLOWED_DOMAINS = "url_outside_allowed_domains"
    FETCH_FAILED = "fetch_failed"


@dataclass(slots=True)
class CrawlEvent:
    kind: CrawlEventKind
    url: str
    depth: int
    found_on: str | None = None
    detail: str | None = None


@dataclass(slots=True)
class CrawlResult:
    seed_url: str
    pages: list[Page] = field(default_factory=list)
    events: list[CrawlEvent] = field(default_factory=list)
    deadline_reached: bool = False

    @property
    def successful_pages(self) -> list[Page]:
        return [page for page in self.pages if page.ok]

    @property
    def failed_pages(self) -> list[Page]:
        return [page for page in self.pages if not page.ok]

    @property
    def error_messages(self) -> list[str]:
        return [f"{page.url}: {page.error_message}" for page in self.failed_pages]


@dataclass(slots=True)
class _Run:
    policy: DomainPolicy
    max_pages: int
    max_depth: int
    result: CrawlResult
    frontier: deque[tuple[str, int]] = field(default_factory=deque)
    visited: set[str] = field(default_factory=set)
    queued: set[str] = field(default_factory=set)
    reported: set[str] = field(default_factory=set)
    fetched: int = 0

    def budget_left(self) -> bool:
        return self.fetched + len(self.frontier) < self.max_pages


class Crawler:
    """Crawl one website within page, depth and time budgets."""

    def __init__(
        self,
        fetcher: Fetcher,
        timeout: float = 15.0,
        allowed_domains: Iterable[str] = (),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.fetcher = fetcher
        self.timeout = timeout
        self.allowed_domains = tuple(allowed_domains)
        self.clock = clock

    def crawl(
        self,
        seed_url: str,
        max_pages: int,
        max_depth: int,
        deadline: float | None = None,
        allowed_domains: Iterable[str] = (),
    ) -> CrawlResult:
        """Crawl from ``seed_url``.

        ``deadline`` is a budget in seconds; once spent, no further page is
        fetched and the pages gathered so far are returned. Raises
        :class:`SeedUnreachableError` when the seed page itself cannot be fetched.
        """
        if not is_crawlable_url(seed_url):
            raise ValueError(f"Seed URL must be an absolute http(s) URL: {seed_url!r}")
        if max_pages < 1:
            raise ValueError("max_pages must be at least 1")
        if max_depth < 0:
            raise ValueError("max_depth must not be negative")

        seed, _fragment = urldefrag(seed_url.strip())
        run = _Run(
            policy=DomainPolicy(seed, (*self.allowed_domains, *allowed_domains)),
            max_pages=max_pages,
            max_depth=max_depth,
            result=CrawlResult(seed_url=seed),
        )
        run.frontier.append((seed, 0))
        run.queued.add(normalize_url(seed))
        expires_at = self.clock() + deadline if deadline is not None else None

        while run.frontier and run.fetched < max_pages:
            if expires_at is not None and self.clock() >= expires_at:
                run.result.deadline_reached = True
                logger.warning(
                    "Crawl deadline reached after %s pages; %s URLs left in frontier",
                    len(run.result.pages),
                    len(run.frontier),
                    extra=log_context(url=seed),
                )
                break

            url, depth = run.frontier.popleft()
            key = normalize_url(url)
            run.queued.discard(key)
            if key in run.visited:
                self._record(run, CrawlEventKind.URL_ALREADY_SEEN, url, depth, key=key)
                continue
            run.visited.add(key)

            page = self._fetch_page(url, depth)
            run.fetched += 1
            if not page.ok:
                run.result.pages.append(page)
                self._record(run, CrawlEventKind.FETCH_FAILED, url, depth, key=key, detail=page.error_message)
                if depth == 0:
                    raise SeedUnreachableError(seed, page.error_message or "unknown error")
                continue

            final_key = normalize_url(page.url)
            if final_key != key:
                if not run.policy.allows(page.url):
                    if depth == 0:
                        raise SeedUnreachableError(seed, f"redirected outside the allowed domains to {page.url}")
                    self._record(
                        run,
                        CrawlEventKind.URL_OUTSIDE_ALLOWED_DOMAINS,
                        page.url,
                        depth,
                        key=final_key,
                        found_on=url,
                        detail="redirect target",
                    )
                    continue
                if final_key in run.visited:
                    self._record(
                        run,
                        CrawlEventKind.URL_ALREADY_SEEN,
                        page.url,
                        depth,
                        key=final_key,
                        found_on=url,
                        detail="redirect target",
                    )
                    continue
                run.visited.add(final_key)
            run.result.pages.append(page)

            if depth + 1 > max_depth:
                continue
            for link in page.links:
                self._consider_link(run, link, depth + 1, found_on=page.url)

        logger.info(
            "Crawled %s: %s pages, %s events",
            seed,
            len(run.result.pages),
            len(run.result.events),
            extra=log_context(url=seed, deadline_reached=run.result.deadline_reached),
        )
        return run.result

    def _consider_link(self, run: _Run, link: str, depth: int, found_on: str) -> None:
        if not is_crawlable_url(link):
            self._record(run, CrawlEventKind.URL_INVALID, link, depth, key=link, found_on=found_on)
            return
        key = normalize_url(link)
        if not run.policy.allows(link):
            self._record(run, CrawlEventKind.URL_OUTSIDE_ALLOWED_DOMAINS, link, depth, key=key, found_on=found_on)
            return
        if key in run.visited or key in run.queued:
            self._record(run, CrawlEventKind.URL_ALREADY_SEEN, link, depth, key=key, found_on=found_on)
            return
        if not run.budget_left():
            return
        run.frontier.append((link, depth))
        run.queued.add(key)

    def _fetch_page(self, url: str, depth: int) -> Page:
        try:
            response = self.fetcher.get(url, self.timeout)
        except FetchError as exc:
            return _error_page(url, depth, str(exc))

        if not response.ok:
            return _error_page(response.final_url or url, depth, f"HTTP {response.status}")
        extracted = _extract(response.body, response.final_url or url, response.content_type)
        if extracted is None:
            return _error_page(url, depth, f"Unsupported content type {response.content_type}")

        PAGES_FETCHED.labels(status="ok").inc()
        return Page(
            url=response.final_url or url,
            title=extracted.title,
            content=extracted.text,
            links=extracted.links,
            status=SyncStatus.COMPLETED,
            depth=depth,
        )

    def _record(
        self,
        run: _Run,
        kind: CrawlEventKind,
        url: str,
        depth: int,
        key: str,
        found_on: str | None = None,
        detail: str | None = None,
    ) -> None:
        # one event per skipped URL
        if key in run.reported:
            return
        run.reported.add(key)
        run.result.events.append(CrawlEvent(kind=kind, url=url, depth=depth, found_on=found_on, detail=detail))
        CRAWL_EVENTS.labels(kind=kind.value).inc()
        logger.debug("Skipped %s (%s)", url, kind.value, extra=log_context(url=url, found_on=found_on, detail=detail))


def _extract(body: str, url: str, content_type: str) -> ExtractedPage | None:
    if content_type in _HTML_TYPES:
        return extract_html(body, url)
    if content_type.startswith("text/"):
        return extract_plain_text(body)
    return None


def _error_page(url: str, depth: int, message: str) -> Page:
    PAGES_FETCHED.labels(status="error").inc()
    logger.warning("Fetch failed for %s: %s", url, message, extra=log_context(url=url))
    return Page(url=url, title=None, content="", links=[], status=SyncStatus.ERROR, depth=depth, error_message=message)


__all__ = ["Crawler", "CrawlResult", "CrawlEvent", "CrawlEventKind"]
