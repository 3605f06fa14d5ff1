from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import pytest
import requests

from jenkins_inventory.util.errors import TransportError
from jenkins_inventory.util.pagination import iter_linked_pages, next_link


def _page(payload: Any, nxt: Optional[str] = None) -> requests.Response:
    resp = requests.Response()
    resp.status_code = 200
    resp._content = json.dumps(payload).encode("utf-8")
    if nxt:
        resp.headers["Link"] = f'<{nxt}>; rel="next", <https://x/last>; rel="last"'
    return resp


def test_iter_linked_pages_follows_next_and_sends_params_once() -> None:
    calls: List[Any] = []
    pages: Dict[str, requests.Response] = {
        "https://x/items": _page(["a", "b"], "https://x/items?page=2"),
        "https://x/items?page=2": _page(["c"]),
    }

    def get_page(url, params):
        calls.append((url, params))
        return pages[url]

    items = list(iter_linked_pages(get_page, "https://x/items", {"per_page": 2}))

    assert items == ["a", "b", "c"]
    assert calls == [("https://x/items", {"per_page": 2}), ("https://x/items?page=2", None)]


def test_next_link_absent_on_last_page() -> None:
    assert next_link(_page([])) is None


def test_non_list_page_is_transport_error() -> None:
    with pytest.raises(TransportError):
        list(iter_linked_pages(lambda url, params: _page({"message": "x"}), "https://x/items"))


def test_link_cycle_is_transport_error() -> None:
    with pytest.raises(TransportError, match="loop"):
        list(iter_linked_pages(lambda url, params: _page(["a"], "https://x/items"), "https://x/items"))
