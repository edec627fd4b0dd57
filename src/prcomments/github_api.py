"""Async GitHub API client using httpx with token authentication.

A :class:`GitHubClient` owns one ``httpx.AsyncClient`` for its lifetime and
maps non-2xx responses to the :exc:`GitHubError` hierarchy so callers can
classify failures by type or status code.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from prcomments.config import DEFAULT_API_URL, DEFAULT_GRAPHQL_URL

if TYPE_CHECKING:
    from prcomments.config import Config

logger = logging.getLogger(__name__)

TOKEN_CREATE_URL = "https://github.com/settings/tokens/new?scopes=repo&description=pr-comments"  # noqa: S105

_HTTP_UNAUTHORIZED = 401
_HTTP_FORBIDDEN = 403
_HTTP_NOT_FOUND = 404
_HTTP_TOO_MANY_REQUESTS = 429


# ---------------------------------------------------------------------------
# Error types
# ---------------------------------------------------------------------------


class GitHubError(Exception):
    """Raised when a GitHub API call fails.

    ``status_code`` is 0 for failures that never produced an HTTP response
    (DNS, connection reset, timeout).
    """

    def __init__(self, message: str, status_code: int = 0, retry_after: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class GitHubAuthError(GitHubError):
    """Raised when GitHub rejects the token."""

    def __init__(self, detail: str = "", status_code: int = _HTTP_UNAUTHORIZED) -> None:
        msg = (
            "GitHub authentication failed. "
            "Set GH_TOKEN or GITHUB_TOKEN env var, or run 'gh auth login'.\n"
            f"Create a token (permissions pre-filled): {TOKEN_CREATE_URL}"
        )
        if detail:
            msg = f"{detail}\n{msg}"
        super().__init__(msg, status_code=status_code)


class GitHubNotFoundError(GitHubError):
    """Raised when the repository, PR or comment does not exist."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=_HTTP_NOT_FOUND)


class GitHubRateLimitError(GitHubError):
    """Raised when GitHub signals quota exhaustion (403 rate limit or 429)."""


# ---------------------------------------------------------------------------
# Response handling
# ---------------------------------------------------------------------------


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
        if isinstance(body, dict):
            return str(body.get("message", response.text))
    except ValueError:
        pass
    return response.text


def _is_rate_limited(response: httpx.Response, msg: str) -> bool:
    if response.status_code == _HTTP_TOO_MANY_REQUESTS:
        return True
    return (
        "rate limit" in msg.lower()
        or response.headers.get("x-ratelimit-remaining") == "0"
        or "retry-after" in response.headers
    )


def _raise_for_status(response: httpx.Response) -> None:
    """Raise the appropriate :exc:`GitHubError` subclass for non-2xx responses."""
    if response.is_success:
        return

    if response.status_code == _HTTP_UNAUTHORIZED:
        raise GitHubAuthError

    msg = _error_message(response)

    if response.status_code == _HTTP_NOT_FOUND:
        raise GitHubNotFoundError(f"GitHub API resource not found: {msg}")

    if response.status_code in {_HTTP_FORBIDDEN, _HTTP_TOO_MANY_REQUESTS}:
        if _is_rate_limited(response, msg):
            raise GitHubRateLimitError(
                f"GitHub API rate limit exceeded: {msg}",
                status_code=response.status_code,
                retry_after=response.headers.get("retry-after"),
            )
        raise GitHubAuthError(f"GitHub API access forbidden: {msg}", status_code=_HTTP_FORBIDDEN)

    raise GitHubError(f"GitHub API error {response.status_code}: {msg}", status_code=response.status_code)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class GitHubClient:
    """Thin async wrapper over the GitHub REST and GraphQL APIs.

    Use as an async context manager so the underlying connection pool is
    closed::

        async with GitHubClient(token) as client:
            response = await client.get("/repos/o/r/pulls/1/comments", per_page=100)
    """

    def __init__(
        self,
        token: str,
        *,
        base_url: str = DEFAULT_API_URL,
        graphql_url: str = DEFAULT_GRAPHQL_URL,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.graphql_url = graphql_url
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=httpx.Timeout(timeout),
        )

    @classmethod
    def from_config(cls, config: Config, token: str) -> GitHubClient:
        return cls(
            token,
            base_url=config.api_base_url,
            graphql_url=config.graphql_url,
            timeout=config.request_timeout,
        )

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        """Send one request and return the response, raising on non-2xx.

        Raises:
            GitHubError: On HTTP failure or transport failure (status 0).
            GitHubAuthError: On authentication failure.
        """
        logger.debug("%s %s", method, endpoint)
        try:
            response = await self._client.request(method, endpoint, params=params, json=json)
        except httpx.RequestError as exc:
            msg = f"Request to GitHub failed: {exc}" if str(exc) else f"Request to GitHub failed: {type(exc).__name__}"
            raise GitHubError(msg) from exc
        _raise_for_status(response)
        return response

    async def get(self, endpoint: str, **params: Any) -> httpx.Response:
        return await self.request("GET", endpoint, params=params or None)

    async def post(self, endpoint: str, **body: Any) -> httpx.Response:
        return await self.request("POST", endpoint, json=body)

    async def graphql(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Execute a GraphQL query or mutation and return the ``data`` envelope.

        Raises:
            GitHubError: On GraphQL errors or HTTP failure.
        """
        payload: dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        response = await self.request("POST", self.graphql_url, json=payload)
        result: dict[str, Any] = response.json()

        errors = result.get("errors")
        if errors:
            messages = "; ".join(e.get("message", str(e)) for e in errors)
            if any(e.get("type") == "NOT_FOUND" for e in errors):
                raise GitHubNotFoundError(f"GraphQL error: {messages}")
            raise GitHubError(f"GraphQL error: {messages}")

        return result.get("data") or {}
