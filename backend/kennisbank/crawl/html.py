"""HTML text and link extraction."""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urldefrag, urljoin

from bs4 import BeautifulSoup

from kennisbank.utils.text import normalize_paragraphs

_INVISIBLE_TAGS = ("script", "style", "noscript", "template", "svg", "iframe", "head")
_BOILERPLATE_TAGS = ("nav", "footer", "header", "aside")
_BLOCK_SEPARATOR = "\n"


@dataclass(slots=True)
class ExtractedPage:
    title: str | None
    text: str
    links: list[str]


def extract_html(html: str, base_url: str) -> ExtractedPage:
    """Extract title, visible text and absolute outbound links."""
    soup = BeautifulSoup(html, "html.parser")

    title = None
    if soup.title is not None:
        title = soup.title.get_text(strip=True) or None

    links = _extract_links(soup, base_url)

    for tag in soup(list(_INVISIBLE_TAGS + _BOILERPLATE_TAGS)):
        tag.decompose()
    text = normalize_paragraphs(soup.get_text(separator=_BLOCK_SEPARATOR, strip=True))
    return ExtractedPage(title=title, text=text, links=links)


def extract_plain_text(body: str) -> ExtractedPage:
    return ExtractedPage(title=None, text=normalize_paragraphs(body), links=[])


def _extract_links(soup: BeautifulSoup, base_url: str) -> list[str]:
    base = base_url
    base_tag = soup.find("base", href=True)
    if base_tag is not None:
        base = urljoin(base_url, base_tag["href"].strip())

    links: list[str] = []
    seen: set[str] = set()
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or href.startswith("#"):
            continue
        absolute, _fragment = urldefrag(urljoin(base, href))
        if absolute in seen:
            continue
        seen.add(absolute)
        links.append(absolute)
    return links


__all__ = ["ExtractedPage", "extract_html", "extract_plain_text"]
