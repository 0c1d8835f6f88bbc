from .client import CanvasClient, TokenSource
from .dryrun import generate_curl
from .pagination import (
    PaginationLinks,
    get_page_number,
    get_per_page,
    next_request_path,
    parse_link_header,
    parse_pagination_links,
)

__all__ = [
    "CanvasClient",
    "TokenSource",
    "generate_curl",
    "PaginationLinks",
    "get_page_number",
    "get_per_page",
    "next_request_path",
    "parse_link_header",
    "parse_pagination_links",
]
