"""Retrying fetch of PR review comments.

One fetch makes at most :data:`MAX_ATTEMPTS` listing calls. Each failed
attempt is classified into an :class:`ErrorKind`, and the pure
:func:`next_step` decides whether the fetch waits and retries or stops.
The async driver only carries out those steps, so the only suspension
points are the network call and the retry sleep.

Delays:

- rate limited with a ``Retry-After`` hint: ``hint * 1000`` ms
- everything else retryable: ``1000 * 2 ** attempt`` ms (1s, 2s, 4s)
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any, NamedTuple

from prcomments.config import get_config, validate_token
from prcomments.github_api import GitHubClient, GitHubError
from prcomments.models import Comment, FetchResult

if TYPE_CHECKING:
    import httpx

    from prcomments.config import Config

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
INITIAL_RETRY_DELAY_MS = 1000
PAGE_SIZE = 100
RATE_LIMIT_WARNING_THRESHOLD = 10

TOKEN_MISSING_MESSAGE = (
    "GitHub token is not configured. Set github_token in .prcomments.toml, "
    "the GH_TOKEN / GITHUB_TOKEN env var, or run 'gh auth login'."
)
AUTH_FAILED_MESSAGE = "Authentication failed. Please check your GitHub token."
EXHAUSTED_MESSAGE = "Failed to fetch PR comments after multiple attempts"

_HTTP_UNAUTHORIZED = 401
_HTTP_FORBIDDEN = 403
_HTTP_NOT_FOUND = 404
_HTTP_TOO_MANY_REQUESTS = 429
_HTTP_SERVER_ERROR = 500


class ErrorKind(StrEnum):
    """Classification of a failed attempt."""

    AUTH = "auth"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    SERVER = "server"
    OTHER = "other"


TERMINAL_KINDS = frozenset({ErrorKind.AUTH, ErrorKind.NOT_FOUND})


class RetryState(StrEnum):
    ATTEMPTING = "attempting"
    WAITING = "waiting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RetryStep(NamedTuple):
    """What the driver does after a failed attempt."""

    state: RetryState
    delay_ms: int = 0


def classify_error(exc: BaseException) -> ErrorKind:
    """Map an exception raised by an attempt to an :class:`ErrorKind`."""
    status = exc.status_code if isinstance(exc, GitHubError) else 0
    if status == _HTTP_UNAUTHORIZED:
        return ErrorKind.AUTH
    if status == _HTTP_NOT_FOUND:
        return ErrorKind.NOT_FOUND
    if status in {_HTTP_FORBIDDEN, _HTTP_TOO_MANY_REQUESTS}:
        return ErrorKind.RATE_LIMITED
    if status >= _HTTP_SERVER_ERROR:
        return ErrorKind.SERVER
    return ErrorKind.OTHER


def compute_retry_delay_ms(attempt: int, retry_after: str | int | None = None) -> int:
    """Delay before the attempt after *attempt* (0-indexed), in milliseconds.

    A ``retry_after`` hint that parses as a non-negative integer number of
    seconds wins; anything else falls back to exponential backoff.
    """
    if retry_after is not None:
        text = str(retry_after).strip()
        if text.isascii() and text.isdigit():
            return int(text) * 1000
    return INITIAL_RETRY_DELAY_MS * 2**attempt


def next_step(attempt: int, kind: ErrorKind, retry_after: str | int | None = None) -> RetryStep:
    """Decide what follows a failed *attempt* (0-indexed) of kind *kind*."""
    if kind in TERMINAL_KINDS:
        return RetryStep(RetryState.FAILED)
    if attempt + 1 >= MAX_ATTEMPTS:
        return RetryStep(RetryState.FAILED)
    hint = retry_after if kind is ErrorKind.RATE_LIMITED else None
    return RetryStep(RetryState.WAITING, compute_retry_delay_ms(attempt, hint))


def _terminal_message(kind: ErrorKind, owner: str, repo: str, pr_number: int) -> str | None:
    if kind is ErrorKind.AUTH:
        return AUTH_FAILED_MESSAGE
    if kind is ErrorKind.NOT_FOUND:
        return f"PR #{pr_number} not found in {owner}/{repo}. Check the PR number and repository."
    return None


def _describe_failure(kind: ErrorKind, exc: BaseException) -> str:
    if kind is ErrorKind.RATE_LIMITED:
        return "Rate limited"
    if kind is ErrorKind.SERVER and isinstance(exc, GitHubError):
        return f"Server error ({exc.status_code})"
    return f"Request failed ({exc})"


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def parse_review_comment(record: dict[str, Any]) -> Comment | None:
    """Map a REST review-comment record to a :class:`Comment`.

    Returns ``None`` for records without a path or line (conversation-level
    or outdated-diff comments).
    """
    path = record.get("path")
    line = record.get("line")
    if not path or line is None:
        return None
    user = record.get("user") or {}
    return Comment(
        id=record["id"],
        path=path,
        line=line,
        body=record.get("body") or "",
        author=user.get("login") or "Unknown",
        created_at=record.get("created_at"),
        updated_at=record.get("updated_at"),
        in_reply_to_id=record.get("in_reply_to_id"),
        diff_hunk=record.get("diff_hunk"),
        commit_id=record.get("commit_id"),
        author_association=record.get("author_association"),
    )


def _build_success(response: httpx.Response) -> FetchResult:
    records = response.json() or []
    comments = [c for c in (parse_review_comment(r) for r in records) if c is not None]

    remaining = _parse_int(response.headers.get("x-ratelimit-remaining"))
    reset_epoch = _parse_int(response.headers.get("x-ratelimit-reset"))
    reset = datetime.fromtimestamp(reset_epoch, tz=UTC) if reset_epoch is not None else None

    if remaining is not None and remaining < RATE_LIMIT_WARNING_THRESHOLD:
        logger.warning("GitHub API rate limit low: %d remaining", remaining)
    if len(records) >= PAGE_SIZE:
        logger.warning("Received a full page of %d review comments; later pages are not fetched", PAGE_SIZE)

    logger.info("Fetched %d comments (%d records)", len(comments), len(records))
    return FetchResult(
        success=True,
        comments=comments,
        rate_limit_remaining=remaining,
        rate_limit_reset=reset,
    )


async def _fetch_with_retry(client: GitHubClient, owner: str, repo: str, pr_number: int) -> FetchResult:
    endpoint = f"/repos/{owner}/{repo}/pulls/{pr_number}/comments"
    state = RetryState.ATTEMPTING
    attempt = 0
    step = RetryStep(RetryState.ATTEMPTING)
    kind = ErrorKind.OTHER
    result: FetchResult | None = None
    last_error: str | None = None
    reason = ""

    while state not in {RetryState.SUCCEEDED, RetryState.FAILED}:
        if state is RetryState.WAITING:
            logger.warning("%s. Waiting %dms before retry...", reason, step.delay_ms)
            await asyncio.sleep(step.delay_ms / 1000)
            attempt += 1
            state = RetryState.ATTEMPTING
            continue

        logger.info(
            "Fetching PR comments (attempt %d/%d): %s/%s#%d",
            attempt + 1,
            MAX_ATTEMPTS,
            owner,
            repo,
            pr_number,
        )
        try:
            response = await client.get(endpoint, per_page=PAGE_SIZE)
            result = _build_success(response)
        except Exception as exc:
            kind = classify_error(exc)
            last_error = str(exc) or type(exc).__name__
            retry_after = exc.retry_after if isinstance(exc, GitHubError) else None
            step = next_step(attempt, kind, retry_after)
            reason = _describe_failure(kind, exc)
            state = step.state
        else:
            state = RetryState.SUCCEEDED

    if result is not None:
        return result

    terminal = _terminal_message(kind, owner, repo, pr_number)
    if terminal is not None:
        logger.error("Not retrying %s failure for %s/%s#%d", kind, owner, repo, pr_number)
        return FetchResult(success=False, error=terminal)

    logger.error("Failed to fetch PR comments after %d attempts", attempt + 1)
    return FetchResult(success=False, error=last_error or EXHAUSTED_MESSAGE)


async def fetch_pr_comments(
    owner: str,
    repo: str,
    pr_number: int,
    token: str | None,
    *,
    client: GitHubClient | None = None,
    config: Config | None = None,
) -> FetchResult:
    """Fetch review comments for ``owner/repo#pr_number``, retrying transient failures.

    Never raises: configuration, authentication, not-found and exhausted-retry
    failures all come back as ``FetchResult(success=False, error=...)``.

    Args:
        owner: Repository owner.
        repo: Repository name.
        pr_number: Pull request number.
        token: GitHub token, validated locally before any network call.
        client: Existing client to reuse. A client built from *config* is
            created (and closed) when omitted.
        config: Configuration for a newly built client (defaults to the
            active config).
    """
    if not token:
        return FetchResult(success=False, error=TOKEN_MISSING_MESSAGE)

    validation = validate_token(token)
    if not validation.valid:
        return FetchResult(success=False, error=validation.message)

    try:
        if client is not None:
            return await _fetch_with_retry(client, owner, repo, pr_number)
        async with GitHubClient.from_config(config or get_config(), token) as owned:
            return await _fetch_with_retry(owned, owner, repo, pr_number)
    except Exception as exc:
        logger.exception("Unexpected failure fetching PR comments")
        return FetchResult(success=False, error=str(exc) or EXHAUSTED_MESSAGE)
