from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter

from ..logging import get_logger
from ..util.errors import TransportError

LOG = get_logger(__name__)

DEFAULT_TIMEOUT = 30.0
COMPUTER_API_PATH = "/computer/api/json"
COMPUTER_API_PARAMS = {"depth": "1"}


@dataclass(frozen=True)
class JenkinsCredentials:
    domain: str
    username: str
    token: str


def base_url(domain: str) -> str:
    """
    Jenkins is addressed by bare domain (ci.example.org); a scheme is accepted too.
    """
    domain = domain.strip().rstrip("/")
    if domain.startswith(("http://", "https://")):
        return domain
    return f"https://{domain}"


def make_session(pool_size: int = 4) -> requests.Session:
    session = requests.Session()
    adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update({"Accept": "application/json"})
    return session


def fetch_snapshot(
    creds: JenkinsCredentials,
    *,
    session: Optional[requests.Session] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> Dict[str, Any]:
    """
    Download the node list from the Jenkins computer API.
    Returns the decoded payload; callers read payload["computer"].
    """
    sess = session or make_session()
    url = base_url(creds.domain) + COMPUTER_API_PATH
    try:
        resp = sess.get(
            url,
            params=COMPUTER_API_PARAMS,
            auth=(creds.username, creds.token),
            timeout=timeout,
        )
        resp.raise_for_status()
        payload = resp.json()
    except requests.HTTPError as e:
        status = e.response.status_code if e.response is not None else None
        raise TransportError(f"Jenkins API returned HTTP {status} for {url}", status_code=status) from e
    except requests.RequestException as e:
        raise TransportError(f"Jenkins API request failed for {url}: {e}") from e
    except ValueError as e:
        raise TransportError(f"Jenkins API returned invalid JSON for {url}: {e}") from e

    if not isinstance(payload, dict):
        raise TransportError(f"Jenkins API returned unexpected payload type {type(payload).__name__}")
    computers = payload.get("computer")
    if computers is None:
        payload["computer"] = []
    elif not isinstance(computers, list):
        raise TransportError("Jenkins API field 'computer' is not a list")
    LOG.debug("Fetched Jenkins snapshot", extra={"url": url, "computers": len(payload["computer"])})
    return payload
