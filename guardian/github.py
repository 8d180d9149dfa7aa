"""A small client for the parts of the GitHub REST API that guardian uses."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, TypeVar
from urllib.parse import parse_qs, quote, urlsplit

import requests

from .retry import RetryableError, RetryConfig, with_retries

T = TypeVar("T")

DEFAULT_BASE_URL = "https://api.github.com"

CLOSED = "closed"
OPEN = "open"
ANY = "any"

# Client errors that retrying cannot fix.
IGNORED_STATUS_CODES = frozenset({400, 401, 403, 404, 422})


class GitHubError(Exception):
    """Raised when a GitHub API request fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class Repository:
    """A GitHub repository."""

    id: int
    owner: str
    name: str
    full_name: str
    topics: list[str] = field(default_factory=list)


@dataclass
class Issue:
    """A GitHub issue."""

    number: int


@dataclass
class IssueComment:
    """A comment on an issue or pull request."""

    id: int
    body: str = ""


@dataclass
class IssueCommentResponse:
    """One page of issue comments; ``next_page`` is None on the last page."""

    comments: list[IssueComment] = field(default_factory=list)
    next_page: int | None = None


@dataclass
class PullRequest:
    """A GitHub pull request."""

    id: int
    number: int


@dataclass
class PullRequestResponse:
    """One page of pull requests; ``next_page`` is None on the last page."""

    pull_requests: list[PullRequest] = field(default_factory=list)
    next_page: int | None = None


def _query(options: Mapping[str, Any]) -> dict[str, Any]:
    params: dict[str, Any] = {}
    for key, value in options.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple, set, frozenset)):
            value = ",".join(str(v) for v in value)
        elif isinstance(value, bool):
            value = "true" if value else "false"
        params[key] = value
    return params


def _next_page(response: requests.Response) -> int:
    url = response.links.get("next", {}).get("url")
    if not url:
        return 0
    pages = parse_qs(urlsplit(url).query).get("page")
    try:
        return int(pages[0]) if pages else 0
    except ValueError:
        return 0


class GitHubClient:
    """Sends requests to the GitHub API, retrying transient failures."""

    def __init__(
        self,
        token: str | None = None,
        *,
        session: requests.Session | None = None,
        config: RetryConfig | None = None,
        base_url: str = DEFAULT_BASE_URL,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._session = session or requests.Session()
        self._session.headers["Accept"] = "application/vnd.github+json"
        if token is not None:
            self._session.headers["Authorization"] = f"Bearer {token}"
        self.config = config or RetryConfig()
        self._base_url = base_url.rstrip("/")
        self._sleep = sleep

    def _url(self, *parts: Any) -> str:
        return self._base_url + "".join("/" + quote(str(p), safe="") for p in parts)

    def _send(self, method: str, url: str, action: str, **kwargs: Any) -> requests.Response:
        """Send one request; raise RetryableError for failures worth retrying."""
        try:
            response = self._session.request(method, url, **kwargs)
        except requests.RequestException as exc:
            raise GitHubError(f"failed to {action}: {exc}") from exc
        if 200 <= response.status_code <= 299:
            return response
        error = GitHubError(
            f"failed to {action}: {method} {url}: {response.status_code} "
            f"{response.text[:200]}",
            response.status_code,
        )
        if response.status_code not in IGNORED_STATUS_CODES:
            raise RetryableError(error)
        raise error

    def _retry(self, func: Callable[[], T], failure: str) -> T:
        try:
            return with_retries(func, self.config, self._sleep)
        except GitHubError as exc:
            raise GitHubError(f"{failure}: {exc}", exc.status_code) from exc

    def _list_all(
        self, url: str, action: str, options: Mapping[str, Any]
    ) -> Iterable[dict[str, Any]]:
        """Fetch every page of a listing, following the next-page links."""
        params = _query(options)
        items: list[dict[str, Any]] = []
        page: int | None = None
        while page is None or page != 0:

            def attempt() -> int:
                if page is not None:
                    params["page"] = page
                response = self._send("GET", url, action, params=params)
                items.extend(response.json())
                return _next_page(response)

            page = self._retry(attempt, f"failed to {action} after retries")
        return items

    def list_repositories(self, owner: str, **kwargs: Any) -> list[Repository]:
        """List an organization's repositories; keyword arguments are query options."""
        # Items created while paging may appear twice; keep one per ID.
        unique: dict[int, Repository] = {}
        for r in self._list_all(self._url("orgs", owner, "repos"), "list repositories", kwargs):
            unique[r["id"]] = Repository(
                id=r["id"],
                owner=r["owner"]["login"],
                name=r["name"],
                full_name=r["full_name"],
                topics=list(r.get("topics") or []),
            )
        return list(unique.values())

    def list_issues(self, owner: str, repo: str, **kwargs: Any) -> list[Issue]:
        """List a repository's issues matching the given query options."""
        unique: dict[int, Issue] = {}
        url = self._url("repos", owner, repo, "issues")
        for i in self._list_all(url, "list issues", kwargs):
            number = i.get("number", 0)
            unique[number] = Issue(number=number)
        return list(unique.values())

    def create_issue(
        self,
        owner: str,
        repo: str,
        title: str,
        body: str,
        assignees: Iterable[str] | None = None,
        labels: Iterable[str] | None = None,
    ) -> Issue:
        """Create an issue and return it."""
        payload: dict[str, Any] = {"title": title, "body": body}
        # GitHub does not accept empty lists.
        assignee_list = list(assignees or [])
        label_list = list(labels or [])
        if assignee_list:
            payload["assignees"] = assignee_list
        if label_list:
            payload["labels"] = label_list
        url = self._url("repos", owner, repo, "issues")

        def attempt() -> Issue:
            response = self._send("POST", url, "create issue", json=payload)
            return Issue(number=response.json().get("number", 0))

        return self._retry(attempt, "failed to create issue with retries")

    def close_issue(self, owner: str, repo: str, number: int) -> None:
        """Close an issue."""
        url = self._url("repos", owner, repo, "issues", number)
        self._retry(
            lambda: self._send("PATCH", url, "close issue", json={"state": CLOSED}),
            "failed to close issue with retries",
        )

    def create_issue_comment(
        self, owner: str, repo: str, number: int, body: str
    ) -> IssueComment:
        """Comment on an issue or pull request."""
        url = self._url("repos", owner, repo, "issues", number, "comments")

        def attempt() -> IssueComment:
            response = self._send(
                "POST", url, "create pull-request/issue comment", json={"body": body}
            )
            return IssueComment(id=response.json().get("id", 0))

        return self._retry(
            attempt, "failed to create pull-request/issue comment with retries"
        )

    def update_issue_comment(
        self, owner: str, repo: str, comment_id: int, body: str
    ) -> None:
        """Replace the body of an issue or pull request comment."""
        url = self._url("repos", owner, repo, "issues", "comments", comment_id)
        self._retry(
            lambda: self._send(
                "PATCH", url, "update pull request comment", json={"body": body}
            ),
            "failed to update pull request comment",
        )

    def delete_issue_comment(self, owner: str, repo: str, comment_id: int) -> None:
        """Delete an issue or pull request comment."""
        url = self._url("repos", owner, repo, "issues", "comments", comment_id)
        self._retry(
            lambda: self._send("DELETE", url, "delete pull request comment"),
            "failed to delete pull request comment",
        )

    def list_issue_comments(
        self, owner: str, repo: str, number: int, **kwargs: Any
    ) -> IssueCommentResponse:
        """Return one page of comments on an issue or pull request."""
        url = self._url("repos", owner, repo, "issues", number, "comments")
        params = _query(kwargs)

        def attempt() -> IssueCommentResponse:
            response = self._send(
                "GET", url, "list pull request comments", params=params
            )
            comments = [
                IssueComment(id=c.get("id", 0), body=c.get("body") or "")
                for c in response.json()
            ]
            return IssueCommentResponse(comments, _next_page(response) or None)

        return self._retry(attempt, "failed to list pull request comments")

    def list_pull_requests_for_commit(
        self, owner: str, repo: str, sha: str, **kwargs: Any
    ) -> PullRequestResponse:
        """Return one page of the pull requests associated with a commit."""
        url = self._url("repos", owner, repo, "commits", sha, "pulls")
        params = _query(kwargs)

        def attempt() -> PullRequestResponse:
            response = self._send(
                "GET", url, "list pull requests for commit", params=params
            )
            pulls = [
                PullRequest(id=p.get("id", 0), number=p.get("number", 0))
                for p in response.json()
            ]
            return PullRequestResponse(pulls, _next_page(response) or None)

        return self._retry(attempt, "failed to list pull requests for commit")

    def repo_user_permission_level(self, owner: str, repo: str, user: str) -> str:
        """Return a user's permission on a repository: admin, write, read or none."""
        url = self._url("repos", owner, repo, "collaborators", user, "permission")

        def attempt() -> str:
            response = self._send("GET", url, "get repository permission level")
            return response.json().get("permission") or ""

        return self._retry(attempt, "failed to get repository permission level")