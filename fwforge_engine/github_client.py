from typing import Any, Dict, List, Optional

import httpx

from .errors import GithubApiError
from .logger_setup import logger
from .models import GitRepository, PullRequest

MAX_PAGES = 10


class GithubClient:
    """Lists the refs a firmware can be built from (releases, branches, open pull requests)."""

    def __init__(self, api_url: str = "https://api.github.com", token: Optional[str] = None,
                 transport: Optional[httpx.BaseTransport] = None):
        self.api_url = api_url.rstrip("/")
        self.headers = {"Accept": "application/vnd.github+json"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"
        self.transport = transport
        self.timeout = httpx.Timeout(connect=10.0, read=30.0, write=10.0, pool=5.0)

    def get_tags(self, repository: GitRepository) -> List[str]:
        return [item["name"] for item in self._get_paginated(repository, "tags")]

    def get_branches(self, repository: GitRepository) -> List[str]:
        return [item["name"] for item in self._get_paginated(repository, "branches")]

    def get_pull_requests(self, repository: GitRepository) -> List[PullRequest]:
        return [
            PullRequest(
                id=item["id"],
                number=item["number"],
                title=item.get("title", ""),
                head_commit_hash=item["head"]["sha"],
            )
            for item in self._get_paginated(repository, "pulls", {"state": "open"})
        ]

    def _get_paginated(self, repository: GitRepository, resource: str,
                       params: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
        if not repository.owner or not repository.repository_name:
            raise GithubApiError(f"repository {repository.url} has no owner/name to query")

        url: Optional[str] = f"{self.api_url}/repos/{repository.owner}/{repository.repository_name}/{resource}"
        query: Optional[Dict[str, Any]] = {"per_page": 100, **(params or {})}
        items: List[Dict[str, Any]] = []
        try:
            with httpx.Client(headers=self.headers, timeout=self.timeout, transport=self.transport) as client:
                for _ in range(MAX_PAGES):
                    if url is None:
                        break
                    response = client.get(url, params=query)
                    response.raise_for_status()
                    items.extend(response.json())
                    # The "next" link already carries the query string
                    url = response.links.get("next", {}).get("url")
                    query = None
        except httpx.HTTPStatusError as hse:
            logger.error(f"GitHub API returned {hse.response.status_code} for {hse.request.url}")
            raise GithubApiError(
                f"GitHub API request failed with status {hse.response.status_code}: {hse.response.text}",
                status_code=hse.response.status_code,
            ) from hse
        except httpx.HTTPError as e:
            logger.error(f"GitHub API request for {resource} of {repository.url} failed: {e}")
            raise GithubApiError(f"GitHub API request failed: {e}") from e
        return items
