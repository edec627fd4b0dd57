"""Comment operations against a pull request.

Every function here returns a result model instead of raising: GitHub
failures are logged and reported through the ``error`` field.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from prcomments.config import validate_token
from prcomments.github_api import GitHubClient, GitHubError
from prcomments.models import (
    Comment,
    FetchResult,
    IssueComment,
    IssueCommentsResult,
    ListPRsResult,
    PullRequestInfo,
    RateLimitInfo,
    ReplyResult,
    ResolveResult,
    ThreadFetchResult,
    ThreadRef,
)

logger = logging.getLogger(__name__)

_HTTP_UNAUTHORIZED = 401
_HTTP_FORBIDDEN = 403
_HTTP_NOT_FOUND = 404
_HTTP_UNPROCESSABLE = 422

# GraphQL query for review threads with resolution state
_THREADS_QUERY = """
query($owner: String!, $repo: String!, $pr: Int!) {
  repository(owner: $owner, name: $repo) {
    pullRequest(number: $pr) {
      reviewThreads(first: 100) {
        nodes {
          id
          isResolved
          comments(first: 100) {
            nodes {
              databaseId
              path
              line
              body
              author { login }
              createdAt
              updatedAt
              replyTo { databaseId }
              diffHunk
              commit { oid }
              authorAssociation
            }
          }
        }
      }
    }
  }
}
"""

_RESOLVE_THREAD_MUTATION = """
mutation($threadId: ID!) {
  resolveReviewThread(input: {threadId: $threadId}) {
    thread { id isResolved }
  }
}
"""

_UNRESOLVE_THREAD_MUTATION = """
mutation($threadId: ID!) {
  unresolveReviewThread(input: {threadId: $threadId}) {
    thread { id isResolved }
  }
}
"""


def _status_of(exc: Exception) -> int:
    return exc.status_code if isinstance(exc, GitHubError) else 0


def _login(user: dict[str, Any] | None) -> str:
    return (user or {}).get("login") or "Unknown"


def _comment_from_rest(data: dict[str, Any], fallback_line: int | None = None) -> Comment:
    return Comment(
        id=data["id"],
        path=data.get("path") or "",
        line=data.get("line") or data.get("original_line") or fallback_line,
        body=data.get("body") or "",
        author=_login(data.get("user")),
        created_at=data.get("created_at"),
        updated_at=data.get("updated_at"),
        in_reply_to_id=data.get("in_reply_to_id"),
        diff_hunk=data.get("diff_hunk"),
        commit_id=data.get("commit_id"),
        author_association=data.get("author_association"),
    )


def _issue_comment_from_rest(data: dict[str, Any]) -> IssueComment:
    return IssueComment(
        id=data["id"],
        body=data.get("body") or "",
        author=_login(data.get("user")),
        created_at=data.get("created_at"),
        updated_at=data.get("updated_at"),
        author_association=data.get("author_association"),
    )


# ---------------------------------------------------------------------------
# Token / rate limit
# ---------------------------------------------------------------------------


async def validate_github_token(client: GitHubClient, token: str) -> tuple[bool, str]:
    """Validate *token* locally, then against ``GET /user``.

    Returns:
        (valid, message). The message names the authenticated user on success.
    """
    local = validate_token(token)
    if not local.valid:
        return False, local.message or "Invalid token format"

    try:
        response = await client.get("/user")
        login = response.json().get("login") or "unknown"
    except GitHubError as exc:
        if exc.status_code == _HTTP_UNAUTHORIZED:
            return False, "Token is invalid or expired"
        if exc.status_code == _HTTP_FORBIDDEN:
            return False, "Token lacks required permissions"
        logger.error("Token validation failed: %s", exc)
        return False, "Failed to validate token"
    except (AttributeError, ValueError) as exc:
        logger.error("Unexpected /user response: %s", exc)
        return False, "Failed to validate token"

    logger.info("Token validated for user: %s", login)
    return True, f"Authenticated as {login}"


async def check_rate_limit(client: GitHubClient) -> RateLimitInfo | None:
    """Return the core REST rate-limit status, or None if it can't be read."""
    try:
        response = await client.get("/rate_limit")
        rate = response.json()["rate"]
        return RateLimitInfo(
            remaining=rate["remaining"],
            limit=rate["limit"],
            reset=datetime.fromtimestamp(rate["reset"], tz=UTC),
        )
    except (GitHubError, KeyError, ValueError) as exc:
        logger.error("Failed to check rate limit: %s", exc)
        return None


# ---------------------------------------------------------------------------
# Review comments
# ---------------------------------------------------------------------------


async def reply_to_comment(
    client: GitHubClient,
    owner: str,
    repo: str,
    pr_number: int,
    comment_id: int,
    body: str,
) -> ReplyResult:
    """Reply to an existing review comment."""
    if not body or not body.strip():
        return ReplyResult(success=False, error="Reply body cannot be empty.")

    logger.info("Replying to comment %d on PR #%d", comment_id, pr_number)
    try:
        response = await client.post(
            f"/repos/{owner}/{repo}/pulls/{pr_number}/comments/{comment_id}/replies",
            body=body.strip(),
        )
        comment = _comment_from_rest(response.json())
    except (GitHubError, AttributeError, KeyError, TypeError, ValueError) as exc:
        logger.error("Failed to reply to comment: %s", exc)
        status = _status_of(exc)
        if status == _HTTP_UNAUTHORIZED:
            return ReplyResult(success=False, error="Authentication failed. Check your token.")
        if status == _HTTP_FORBIDDEN:
            return ReplyResult(success=False, error="Permission denied. Token may lack write access.")
        if status == _HTTP_NOT_FOUND:
            return ReplyResult(success=False, error="Comment or PR not found.")
        return ReplyResult(success=False, error=str(exc) or "Failed to post reply")

    logger.info("Created reply comment %d", comment.id)
    return ReplyResult(success=True, comment=comment)


async def create_review_comment(  # noqa: PLR0913, PLR0917
    client: GitHubClient,
    owner: str,
    repo: str,
    pr_number: int,
    path: str,
    line: int,
    body: str,
    commit_id: str,
) -> ReplyResult:
    """Create a new review comment on ``path:line`` at *commit_id*."""
    if not body or not body.strip():
        return ReplyResult(success=False, error="Comment body cannot be empty.")

    logger.info("Creating review comment on %s:%d for PR #%d", path, line, pr_number)
    try:
        response = await client.post(
            f"/repos/{owner}/{repo}/pulls/{pr_number}/comments",
            body=body.strip(),
            commit_id=commit_id,
            path=path,
            line=line,
        )
        comment = _comment_from_rest(response.json(), fallback_line=line)
    except (GitHubError, AttributeError, KeyError, TypeError, ValueError) as exc:
        logger.error("Failed to create comment: %s", exc)
        status = _status_of(exc)
        if status == _HTTP_UNAUTHORIZED:
            return ReplyResult(success=False, error="Authentication failed.")
        if status == _HTTP_FORBIDDEN:
            return ReplyResult(success=False, error="Permission denied.")
        if status == _HTTP_UNPROCESSABLE:
            return ReplyResult(success=False, error="Invalid comment location. Line may not be part of the diff.")
        return ReplyResult(success=False, error=str(exc) or "Failed to create comment")

    logger.info("Created comment %d", comment.id)
    return ReplyResult(success=True, comment=comment)


async def get_pr_head_commit(client: GitHubClient, owner: str, repo: str, pr_number: int) -> str | None:
    """Return the head commit SHA of the PR, or None on failure."""
    try:
        response = await client.get(f"/repos/{owner}/{repo}/pulls/{pr_number}")
        return response.json()["head"]["sha"]
    except (GitHubError, KeyError, ValueError) as exc:
        logger.error("Failed to get PR head commit: %s", exc)
        return None


async def get_pr_reviewers(client: GitHubClient, owner: str, repo: str, pr_number: int) -> list[str]:
    """Sorted logins of everyone who submitted a review on the PR."""
    try:
        response = await client.get(f"/repos/{owner}/{repo}/pulls/{pr_number}/reviews")
        reviews = response.json()
    except (GitHubError, ValueError) as exc:
        logger.error("Failed to get PR reviewers: %s", exc)
        return []
    return sorted({login for r in reviews if (login := (r.get("user") or {}).get("login"))})


# ---------------------------------------------------------------------------
# Thread resolution
# ---------------------------------------------------------------------------


async def _set_thread_resolution(client: GitHubClient, thread_id: str, *, resolve: bool) -> ResolveResult:
    verb = "resolve" if resolve else "unresolve"
    mutation = _RESOLVE_THREAD_MUTATION if resolve else _UNRESOLVE_THREAD_MUTATION
    logger.info("%sing thread %s", verb.capitalize(), thread_id)
    try:
        await client.graphql(mutation, {"threadId": thread_id})
    except GitHubError as exc:
        logger.error("Failed to %s thread: %s", verb, exc)
        if exc.status_code == _HTTP_UNAUTHORIZED:
            return ResolveResult(success=False, error="Authentication failed.")
        if exc.status_code == _HTTP_FORBIDDEN:
            return ResolveResult(success=False, error="Permission denied.")
        return ResolveResult(success=False, error=str(exc) or f"Failed to {verb} thread")

    logger.info("Thread %s %sd", thread_id, verb)
    return ResolveResult(success=True)


async def resolve_thread(client: GitHubClient, thread_id: str) -> ResolveResult:
    """Mark a review thread (GraphQL node ID ``PRRT_...``) as resolved."""
    return await _set_thread_resolution(client, thread_id, resolve=True)


async def unresolve_thread(client: GitHubClient, thread_id: str) -> ResolveResult:
    """Reopen a resolved review thread."""
    return await _set_thread_resolution(client, thread_id, resolve=False)


def parse_thread_nodes(nodes: list[dict[str, Any]]) -> tuple[list[Comment], dict[int, ThreadRef]]:
    """Flatten GraphQL review-thread nodes into comments plus a thread map.

    Each comment inherits ``resolved`` from its thread and gets
    ``in_reply_to_id`` from ``replyTo``.
    """
    comments: list[Comment] = []
    refs: dict[int, ThreadRef] = {}
    for thread in nodes:
        resolved = bool(thread.get("isResolved"))
        for node in (thread.get("comments") or {}).get("nodes", []):
            comment_id = node["databaseId"]
            comments.append(
                Comment(
                    id=comment_id,
                    path=node.get("path") or "",
                    line=node.get("line"),
                    body=node.get("body") or "",
                    author=_login(node.get("author")),
                    created_at=node.get("createdAt"),
                    updated_at=node.get("updatedAt"),
                    in_reply_to_id=(node.get("replyTo") or {}).get("databaseId"),
                    resolved=resolved,
                    diff_hunk=node.get("diffHunk"),
                    commit_id=(node.get("commit") or {}).get("oid"),
                    author_association=node.get("authorAssociation"),
                )
            )
            refs[comment_id] = ThreadRef(thread_id=thread["id"], resolved=resolved)
    return comments, refs


async def fetch_comments_with_threads(
    client: GitHubClient,
    owner: str,
    repo: str,
    pr_number: int,
) -> ThreadFetchResult:
    """Fetch review comments together with their thread resolution state."""
    logger.info("Fetching comments with thread info for PR #%d", pr_number)
    try:
        data = await client.graphql(_THREADS_QUERY, {"owner": owner, "repo": repo, "pr": pr_number})
        pr = ((data.get("repository") or {}).get("pullRequest")) or {}
        nodes = (pr.get("reviewThreads") or {}).get("nodes", [])
        comments, refs = parse_thread_nodes(nodes)
    except (GitHubError, KeyError, ValueError) as exc:
        logger.error("Failed to fetch comments with threads: %s", exc)
        return ThreadFetchResult(success=False, error=str(exc) or "Failed to fetch comments")

    logger.info("Fetched %d comments in %d threads", len(comments), len({r.thread_id for r in refs.values()}))
    return ThreadFetchResult(success=True, comments=comments, thread_refs=refs)


def apply_thread_state(result: FetchResult, refs: dict[int, ThreadRef]) -> list[Comment]:
    """Copy resolution state from *refs* onto the comments of a REST fetch."""
    return [
        c.model_copy(update={"resolved": refs[c.id].resolved}) if c.id in refs else c for c in result.comments
    ]


# ---------------------------------------------------------------------------
# Conversation comments and PR listing
# ---------------------------------------------------------------------------


async def fetch_issue_comments(client: GitHubClient, owner: str, repo: str, pr_number: int) -> IssueCommentsResult:
    """Fetch PR conversation comments (first 100)."""
    logger.info("Fetching issue comments for PR #%d", pr_number)
    try:
        response = await client.get(f"/repos/{owner}/{repo}/issues/{pr_number}/comments", per_page=100)
        comments = [_issue_comment_from_rest(c) for c in response.json()]
    except (GitHubError, KeyError, ValueError) as exc:
        logger.error("Failed to fetch issue comments: %s", exc)
        return IssueCommentsResult(success=False, error=str(exc) or "Failed to fetch issue comments")

    logger.info("Fetched %d issue comments", len(comments))
    return IssueCommentsResult(success=True, comments=comments)


async def create_issue_comment(client: GitHubClient, owner: str, repo: str, pr_number: int, body: str) -> ReplyResult:
    """Post a PR conversation comment."""
    if not body or not body.strip():
        return ReplyResult(success=False, error="Comment body cannot be empty.")

    logger.info("Creating issue comment on PR #%d", pr_number)
    try:
        response = await client.post(f"/repos/{owner}/{repo}/issues/{pr_number}/comments", body=body.strip())
        data = response.json()
        comment = Comment(
            id=data["id"],
            body=data.get("body") or "",
            author=_login(data.get("user")),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )
    except GitHubError as exc:
        logger.error("Failed to create issue comment: %s", exc)
        return ReplyResult(success=False, error=str(exc) or "Failed to create comment")
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        logger.error("Unexpected response creating issue comment: %s", exc)
        return ReplyResult(success=False, error="Unexpected response from GitHub")

    logger.info("Created issue comment %d", comment.id)
    return ReplyResult(success=True, comment=comment)


async def list_open_prs(client: GitHubClient, owner: str, repo: str) -> ListPRsResult:
    """List up to 50 open PRs, most recently updated first."""
    logger.info("Fetching open PRs for %s/%s", owner, repo)
    try:
        response = await client.get(
            f"/repos/{owner}/{repo}/pulls",
            state="open",
            per_page=50,
            sort="updated",
            direction="desc",
        )
        prs = [
            PullRequestInfo(
                number=pr["number"],
                title=pr["title"],
                state=pr.get("state", "open"),
                author=_login(pr.get("user")),
                created_at=pr.get("created_at"),
                updated_at=pr.get("updated_at"),
                head_branch=(pr.get("head") or {}).get("ref", ""),
                base_branch=(pr.get("base") or {}).get("ref", ""),
                draft=bool(pr.get("draft")),
            )
            for pr in response.json()
        ]
    except (GitHubError, KeyError, ValueError) as exc:
        logger.error("Failed to list PRs: %s", exc)
        return ListPRsResult(success=False, error=str(exc) or "Failed to list PRs")

    logger.info("Found %d open PRs", len(prs))
    return ListPRsResult(success=True, prs=prs)
