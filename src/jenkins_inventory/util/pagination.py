from __future__ import annotations

from typing import Any, Callable, Dict, Generator, List, Optional, Set

import requests

from .errors import TransportError

PageRequest = Callable[[str, Optional[Dict[str, Any]]], requests.Response]


def next_link(resp: requests.Response) -> Optional[str]:
    nxt = resp.links.get("next") if resp.links else None
    if not nxt:
        return None
    return nxt.get("url")


def iter_linked_pages(
    get_page: PageRequest,
    first_url: str,
    params: Optional[Dict[str, Any]] = None,
) -> Generator[Any, None, None]:
    """
    Yield the items of a list endpoint paged through RFC 8288 Link headers.

    Query params are only sent with the first request; the "next" URLs already
    carry them. A page that is not a JSON list, or a "next" link pointing back to
    a page already read, raises TransportError.
    """
    seen: Set[str] = set()
    url: Optional[str] = first_url
    page_params = params
    while url:
        seen.add(url)
        resp = get_page(url, page_params)
        try:
            items: List[Any] = resp.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON from {url}: {e}") from e
        if not isinstance(items, list):
            raise TransportError(f"Unexpected payload for {url}: expected a JSON list")
        yield from items
        url = next_link(resp)
        page_params = None
        if url in seen:
            raise TransportError(f"Pagination loop detected at {url}")
