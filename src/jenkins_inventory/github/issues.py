from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence

import requests
from requests.adapters import HTTPAdapter

from ..logging import get_logger
from ..util.errors import ConfigError, TransportError
from ..util.pagination import iter_linked_pages

LOG = get_logger(__name__)

GITHUB_API_URL = "https://api.github.com"
DEFAULT_TIMEOUT = 30.0
PER_PAGE = 100


@dataclass(frozen=True)
class TrackingIssue:
    number: int
    title: str
    state: str = "open"
    body: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "TrackingIssue":
        return cls(
            number=int(data["number"]),
            title=str(data.get("title") or ""),
            state=str(data.get("state") or "open"),
            body=str(data.get("body") or ""),
        )


class IssueTracker(Protocol):
    """
    The four calls the issue lifecycle needs. GitHubIssueTracker is the real one;
    tests pass in-memory fakes.
    """

    def create_issue(
        self, title: str, body: str, labels: Sequence[str], assignees: Sequence[str]
    ) -> TrackingIssue:
        ...

    def list_open_issues(self) -> List[TrackingIssue]:
        ...

    def comment_on_issue(self, number: int, body: str) -> None:
        ...

    def set_issue_state(self, number: int, state: str) -> None:
        ...


class GitHubIssueTracker:
    def __init__(
        self,
        repository: str,
        token: str,
        *,
        api_url: str = GITHUB_API_URL,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not repository or repository.count("/") != 1:
            raise ConfigError(f"GitHub repository must look like 'owner/name', got {repository!r}")
        self.repository = repository
        self._base = f"{api_url.rstrip('/')}/repos/{repository}"
        self._timeout = timeout
        self._session = session or requests.Session()
        if session is None:
            adapter = HTTPAdapter(pool_connections=2, pool_maxsize=2)
            self._session.mount("https://", adapter)
        self._session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            }
        )

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        try:
            resp = self._session.request(method, url, timeout=self._timeout, **kwargs)
            resp.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise TransportError(f"GitHub API {method} {url} returned HTTP {status}", status_code=status) from e
        except requests.RequestException as e:
            raise TransportError(f"GitHub API {method} {url} failed: {e}") from e
        return resp

    def create_issue(
        self, title: str, body: str, labels: Sequence[str], assignees: Sequence[str]
    ) -> TrackingIssue:
        payload: Dict[str, Any] = {"title": title, "body": body}
        if labels:
            payload["labels"] = list(labels)
        if assignees:
            payload["assignees"] = list(assignees)
        resp = self._request("POST", f"{self._base}/issues", json=payload)
        issue = TrackingIssue.from_api(resp.json())
        LOG.info("Issue created", extra={"issue": issue.number, "title": title})
        return issue

    def list_open_issues(self) -> List[TrackingIssue]:
        def get_page(url: str, params: Optional[Dict[str, Any]]) -> requests.Response:
            return self._request("GET", url, params=params)

        # The issues endpoint also returns pull requests.
        pages = iter_linked_pages(get_page, f"{self._base}/issues", {"state": "open", "per_page": PER_PAGE})
        return [TrackingIssue.from_api(item) for item in pages if "pull_request" not in item]

    def comment_on_issue(self, number: int, body: str) -> None:
        self._request("POST", f"{self._base}/issues/{number}/comments", json={"body": body})

    def set_issue_state(self, number: int, state: str) -> None:
        self._request("PATCH", f"{self._base}/issues/{number}", json={"state": state})
