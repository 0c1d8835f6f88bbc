"""
Pagination Links
================
RFC 5988 `Link` header parsing for Canvas list endpoints.
"""

import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs, urlsplit, urlunsplit

import httpx

LINK_HEADER = "Link"
DEFAULT_PER_PAGE = "10"

_LINK_RE = re.compile(r'<([^>]+)>;\s*rel="([^"]+)"')


@dataclass
class PaginationLinks:
    """Relations advertised by a single page."""
    current: Optional[str] = None
    next: Optional[str] = None
    prev: Optional[str] = None
    first: Optional[str] = None
    last: Optional[str] = None

    @property
    def has_next_page(self) -> bool:
        return bool(self.next)

    @property
    def has_prev_page(self) -> bool:
        return bool(self.prev)


def parse_link_header(value: Optional[str]) -> PaginationLinks:
    links = PaginationLinks()
    if not value:
        return links

    for url, rel in _LINK_RE.findall(value):
        # A link may carry several space-separated relations
        for name in rel.split():
            if name in ("current", "next", "prev", "first", "last"):
                setattr(links, name, url)

    return links


def parse_pagination_links(response: httpx.Response) -> PaginationLinks:
    return parse_link_header(response.headers.get(LINK_HEADER))


def next_request_path(url: str) -> str:
    """
    Reduce an absolute page URL to `path?query` so it is requested
    relative to the client's base URL.
    """
    parts = urlsplit(url)
    return urlunsplit(("", "", parts.path, parts.query, ""))


def get_page_number(url: str) -> Optional[str]:
    values = parse_qs(urlsplit(url).query).get("page")
    return values[0] if values else None


def get_per_page(url: str) -> str:
    values = parse_qs(urlsplit(url).query).get("per_page")
    return values[0] if values else DEFAULT_PER_PAGE
