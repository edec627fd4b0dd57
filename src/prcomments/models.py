"""Pydantic models for pr-comments."""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - Pydantic needs this at runtime

from pydantic import BaseModel, Field


class Comment(BaseModel):
    """A single review comment on a file line (or a conversation comment)."""

    id: int = Field(description="Comment database ID, unique within a repository and PR")
    path: str = Field(default="", description="File path the comment is on (empty for conversation comments)")
    line: int | None = Field(default=None, description="1-based line number, None for conversation comments")
    body: str = Field(default="", description="Comment body text")
    author: str = Field(default="Unknown", description="GitHub username of the comment author")
    created_at: datetime | None = Field(default=None, description="When the comment was posted")
    updated_at: datetime | None = Field(default=None, description="When the comment was last edited")
    in_reply_to_id: int | None = Field(default=None, description="ID of the root comment this one replies to")
    resolved: bool = Field(default=False, description="Whether the owning thread is resolved")
    diff_hunk: str | None = Field(default=None, description="Diff context the comment was made against")
    commit_id: str | None = Field(default=None, description="Commit SHA the comment was made on")
    author_association: str | None = Field(default=None, description="Author relation to the repo (OWNER, MEMBER, ...)")

    @property
    def is_reply(self) -> bool:
        return self.in_reply_to_id is not None


class Thread(BaseModel):
    """A root comment plus its replies, oldest first."""

    id: int = Field(description="ID of the root comment")
    path: str = Field(description="File path, copied from the root comment")
    line: int | None = Field(default=None, description="Line number, copied from the root comment")
    root_comment: Comment = Field(description="The comment that started the thread")
    replies: list[Comment] = Field(default_factory=list, description="Replies sorted by creation time")
    resolved: bool = Field(default=False, description="Whether the conversation is closed")
    participants: list[str] = Field(
        default_factory=list,
        description="Root author first, then reply authors in first-appearance order",
    )

    @property
    def comment_count(self) -> int:
        return 1 + len(self.replies)


class ThreadFilter(BaseModel):
    """Filters applied to a thread list. Unset fields match everything."""

    reviewer: str | None = Field(default=None, description="Keep threads this user participates in")
    resolved: bool | None = Field(default=None, description="Keep threads with this resolved state")
    file: str | None = Field(default=None, description="Keep threads whose path contains this substring")

    @property
    def is_empty(self) -> bool:
        return self.reviewer is None and self.resolved is None and not self.file


class RepositoryInfo(BaseModel):
    """Identifies the scope comments are fetched for."""

    owner: str = Field(description="Repository owner (user or organization)")
    repo: str = Field(description="Repository name")
    pr_number: int | None = Field(default=None, description="Pull request number, if known")

    def __str__(self) -> str:
        suffix = f"#{self.pr_number}" if self.pr_number is not None else ""
        return f"{self.owner}/{self.repo}{suffix}"


class FetchResult(BaseModel):
    """Outcome of a retrying comment fetch."""

    success: bool = Field(description="Whether the fetch succeeded")
    comments: list[Comment] = Field(default_factory=list, description="Fetched line comments")
    error: str | None = Field(default=None, description="Error message, set only when success is False")
    rate_limit_remaining: int | None = Field(default=None, description="Requests left in the current window")
    rate_limit_reset: datetime | None = Field(default=None, description="When the rate-limit window resets")


class ThreadRef(BaseModel):
    """Maps a comment to the GraphQL review thread that contains it."""

    thread_id: str = Field(description="GraphQL node ID (PRRT_...) used to resolve the thread")
    resolved: bool = Field(default=False, description="Whether the thread is resolved")


class ThreadFetchResult(FetchResult):
    """Fetch outcome that also carries thread resolution state."""

    thread_refs: dict[int, ThreadRef] = Field(default_factory=dict, description="Comment ID to owning thread")


class ReplyResult(BaseModel):
    """Result of posting a reply or a new comment."""

    success: bool = Field(description="Whether the comment was posted")
    comment: Comment | None = Field(default=None, description="The created comment")
    error: str | None = Field(default=None, description="Error message if posting failed")


class ResolveResult(BaseModel):
    """Result of resolving or unresolving a review thread."""

    success: bool = Field(description="Whether the thread state changed")
    error: str | None = Field(default=None, description="Error message if the mutation failed")


class IssueComment(BaseModel):
    """A PR conversation comment (not attached to a file line)."""

    id: int = Field(description="Comment database ID")
    body: str = Field(default="", description="Comment body text")
    author: str = Field(default="Unknown", description="GitHub username of the comment author")
    created_at: datetime | None = Field(default=None, description="When the comment was posted")
    updated_at: datetime | None = Field(default=None, description="When the comment was last edited")
    author_association: str | None = Field(default=None, description="Author relation to the repo")


class IssueCommentsResult(BaseModel):
    """Result of fetching conversation comments."""

    success: bool = Field(description="Whether the fetch succeeded")
    comments: list[IssueComment] = Field(default_factory=list, description="Conversation comments")
    error: str | None = Field(default=None, description="Error message if the request failed")


class PullRequestInfo(BaseModel):
    """Summary of an open pull request."""

    number: int = Field(description="PR number")
    title: str = Field(description="PR title")
    state: str = Field(default="open", description="PR state")
    author: str = Field(default="Unknown", description="GitHub username of the PR author")
    created_at: datetime | None = Field(default=None, description="When the PR was opened")
    updated_at: datetime | None = Field(default=None, description="When the PR was last updated")
    head_branch: str = Field(default="", description="Source branch")
    base_branch: str = Field(default="", description="Target branch")
    draft: bool = Field(default=False, description="Whether the PR is a draft")


class ListPRsResult(BaseModel):
    """Result of listing open pull requests."""

    success: bool = Field(description="Whether the listing succeeded")
    prs: list[PullRequestInfo] = Field(default_factory=list, description="Open pull requests, most recently updated first")
    error: str | None = Field(default=None, description="Error message if the request failed")


class RateLimitInfo(BaseModel):
    """Core REST rate-limit status."""

    remaining: int = Field(description="Requests left in the current window")
    limit: int = Field(description="Requests allowed per window")
    reset: datetime = Field(description="When the window resets")
