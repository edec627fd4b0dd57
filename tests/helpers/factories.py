"""Builders for comments and GitHub API records used across the tests."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from prcomments.models import Comment

TOKEN = "ghp_" + "a" * 36
API = "https://api.github.com"
GRAPHQL = "https://api.github.com/graphql"


def make_comment(  # noqa: PLR0913
    comment_id: int,
    author: str = "alice",
    *,
    line: int | None = 10,
    path: str = "src/app.py",
    reply_to: int | None = None,
    created: datetime | None = None,
    resolved: bool = False,
    body: str = "",
) -> Comment:
    return Comment(
        id=comment_id,
        path=path,
        line=line,
        body=body or f"comment {comment_id}",
        author=author,
        created_at=created,
        in_reply_to_id=reply_to,
        resolved=resolved,
    )


def at(hour: int, minute: int = 0) -> datetime:
    return datetime(2024, 5, 1, hour, minute, tzinfo=UTC)


def review_record(  # noqa: PLR0913
    comment_id: int,
    login: str = "alice",
    *,
    path: str | None = "src/app.py",
    line: int | None = 10,
    reply_to: int | None = None,
    created_at: str = "2024-05-01T10:00:00Z",
) -> dict[str, Any]:
    """A REST review-comment record shaped like GitHub's."""
    return {
        "id": comment_id,
        "path": path,
        "line": line,
        "body": f"comment {comment_id}",
        "user": {"login": login},
        "created_at": created_at,
        "updated_at": created_at,
        "in_reply_to_id": reply_to,
        "diff_hunk": "@@ -1,3 +1,4 @@",
        "commit_id": "abc123",
        "author_association": "MEMBER",
    }


def thread_node(
    thread_id: str,
    comments: list[dict[str, Any]],
    *,
    resolved: bool = False,
) -> dict[str, Any]:
    """A GraphQL reviewThreads node."""
    return {"id": thread_id, "isResolved": resolved, "comments": {"nodes": comments}}


def graphql_comment(
    database_id: int,
    login: str = "alice",
    *,
    path: str = "src/app.py",
    line: int | None = 10,
    reply_to: int | None = None,
) -> dict[str, Any]:
    return {
        "databaseId": database_id,
        "path": path,
        "line": line,
        "body": f"comment {database_id}",
        "author": {"login": login},
        "createdAt": "2024-05-01T10:00:00Z",
        "updatedAt": "2024-05-01T10:00:00Z",
        "replyTo": {"databaseId": reply_to} if reply_to is not None else None,
        "diffHunk": "@@ -1 +1 @@",
        "commit": {"oid": "abc123"},
        "authorAssociation": "MEMBER",
    }


def threads_payload(nodes: list[dict[str, Any]]) -> dict[str, Any]:
    return {"data": {"repository": {"pullRequest": {"reviewThreads": {"nodes": nodes}}}}}
