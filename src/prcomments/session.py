"""Session state: the comment store plus the operations that mutate it.

A :class:`Session` owns the single :class:`CommentStore` for a front-end.
Fetches are serialized with an ``asyncio.Lock`` so two overlapping fetches
can never interleave their writes to the store.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from prcomments import comments as ops
from prcomments.fetch import fetch_pr_comments
from prcomments.github_api import GitHubClient
from prcomments.models import (
    Comment,
    FetchResult,
    IssueComment,
    ReplyResult,
    RepositoryInfo,
    ResolveResult,
    Thread,
    ThreadFilter,
    ThreadRef,
)
from prcomments.threads import (
    build_threads,
    build_threads_by_file,
    collect_reviewers,
    count_comments,
    filter_threads,
    group_by_file,
)
from prcomments.views import LineDecoration, file_nodes, line_decorations

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from prcomments.config import Config
    from prcomments.views import FileNode

logger = logging.getLogger(__name__)

NO_PR_LOADED_MESSAGE = "No PR loaded. Fetch comments first."


class SessionError(Exception):
    """Raised when an operation needs a loaded PR and there is none."""


class CommentStore:
    """Snapshot of everything known about the loaded PR.

    The snapshot is only ever swapped whole by :meth:`replace`; threads are
    rebuilt from scratch each time.
    """

    def __init__(self) -> None:
        self.repo_info: RepositoryInfo | None = None
        self.comments_by_file: dict[str, list[Comment]] = {}
        self.threads_by_file: dict[str, list[Thread]] = {}
        self.thread_refs: dict[int, ThreadRef] = {}
        self.issue_comments: list[IssueComment] = []

    def replace(
        self,
        repo_info: RepositoryInfo,
        comments: list[Comment],
        thread_refs: dict[int, ThreadRef] | None = None,
        issue_comments: list[IssueComment] | None = None,
    ) -> None:
        comments_by_file = group_by_file(comments)
        self.repo_info = repo_info
        self.comments_by_file = comments_by_file
        self.threads_by_file = build_threads_by_file(comments_by_file)
        self.thread_refs = dict(thread_refs or {})
        self.issue_comments = list(issue_comments or [])

    def clear(self) -> None:
        self.repo_info = None
        self.comments_by_file = {}
        self.threads_by_file = {}
        self.thread_refs = {}
        self.issue_comments = []

    @property
    def comments(self) -> list[Comment]:
        return [c for file_comments in self.comments_by_file.values() for c in file_comments]

    @property
    def threads(self) -> list[Thread]:
        return [t for path in sorted(self.threads_by_file) for t in self.threads_by_file[path]]

    def set_thread_resolved(self, thread_id: str, *, resolved: bool) -> None:
        """Flip the resolved flag of every comment in review thread *thread_id*."""
        ids = {cid for cid, ref in self.thread_refs.items() if ref.thread_id == thread_id}
        for cid in ids:
            self.thread_refs[cid] = ThreadRef(thread_id=thread_id, resolved=resolved)

        for path, file_comments in self.comments_by_file.items():
            if not any(c.id in ids for c in file_comments):
                continue
            updated = [c.model_copy(update={"resolved": resolved}) if c.id in ids else c for c in file_comments]
            self.comments_by_file[path] = updated
            self.threads_by_file[path] = build_threads(updated)


class Session:
    """Front-end controller: fetches, posts, and answers view queries."""

    def __init__(
        self,
        config: Config,
        token: str | None,
        store: CommentStore | None = None,
        *,
        client: GitHubClient | None = None,
    ) -> None:
        self.config = config
        self.token = token
        self.store = store or CommentStore()
        self.filter = ThreadFilter()
        self._client = client
        self._lock = asyncio.Lock()

    @property
    def fetching(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def _open_client(self) -> AsyncIterator[GitHubClient]:
        if self._client is not None:
            yield self._client
            return
        async with GitHubClient.from_config(self.config, self.token or "") as client:
            yield client

    def select(self, repo_info: RepositoryInfo) -> None:
        """Point the session at *repo_info* without fetching, dropping stale state."""
        if self.store.repo_info != repo_info:
            self.store.clear()
            self.store.repo_info = repo_info

    def _require_repo(self) -> RepositoryInfo:
        info = self.store.repo_info
        if info is None or info.pr_number is None:
            raise SessionError(NO_PR_LOADED_MESSAGE)
        return info

    # -- Fetching -------------------------------------------------------------

    async def fetch(self, repo_info: RepositoryInfo) -> FetchResult:
        """Fetch comments for *repo_info* and replace the store on success.

        Concurrent calls queue on the session lock and run one after another.
        """
        if repo_info.pr_number is None:
            return FetchResult(success=False, error="PR number is required")

        async with self._lock:
            return await self._fetch_locked(repo_info)

    async def fetch_if_idle(self, repo_info: RepositoryInfo) -> FetchResult | None:
        """Like :meth:`fetch`, but returns None instead of waiting on a running fetch."""
        if self._lock.locked():
            logger.warning("Fetch already in progress, skipping")
            return None
        return await self.fetch(repo_info)

    async def start(self, repo_info: RepositoryInfo) -> FetchResult | None:
        """Point the session at *repo_info* and fetch right away when ``auto_fetch`` is on.

        Returns None when the config leaves fetching to the caller.
        """
        self.select(repo_info)
        if not self.config.auto_fetch:
            return None
        return await self.fetch(repo_info)

    async def _fetch_locked(self, repo_info: RepositoryInfo) -> FetchResult:
        owner, repo, pr_number = repo_info.owner, repo_info.repo, repo_info.pr_number
        assert pr_number is not None  # noqa: S101

        if not self.token:
            return await fetch_pr_comments(owner, repo, pr_number, self.token)

        async with self._open_client() as client:
            result = await fetch_pr_comments(owner, repo, pr_number, self.token, client=client)
            if not result.success:
                return result

            threads = await ops.fetch_comments_with_threads(client, owner, repo, pr_number)
            refs = threads.thread_refs if threads.success else {}
            if not threads.success:
                logger.warning("Thread state unavailable, comments shown as unresolved: %s", threads.error)

            issue = await ops.fetch_issue_comments(client, owner, repo, pr_number)

        merged = ops.apply_thread_state(result, refs)
        self.store.replace(repo_info, merged, refs, issue.comments if issue.success else [])
        logger.info(
            "Loaded %d comments in %d files for %s",
            len(merged),
            len(self.store.comments_by_file),
            repo_info,
        )
        return result.model_copy(update={"comments": merged})

    # -- Posting --------------------------------------------------------------

    async def reply(self, comment_id: int, body: str) -> ReplyResult:
        info = self._require_repo()
        async with self._open_client() as client:
            return await ops.reply_to_comment(client, info.owner, info.repo, info.pr_number, comment_id, body)

    async def add_comment(self, path: str, line: int, body: str) -> ReplyResult:
        """Create a review comment on ``path:line`` at the PR head commit."""
        info = self._require_repo()
        if not body or not body.strip():
            return ReplyResult(success=False, error="Comment body cannot be empty.")
        async with self._open_client() as client:
            commit_id = await ops.get_pr_head_commit(client, info.owner, info.repo, info.pr_number)
            if commit_id is None:
                return ReplyResult(success=False, error="Could not determine the PR head commit.")
            return await ops.create_review_comment(
                client, info.owner, info.repo, info.pr_number, path, line, body, commit_id
            )

    async def add_conversation_comment(self, body: str) -> ReplyResult:
        info = self._require_repo()
        async with self._open_client() as client:
            return await ops.create_issue_comment(client, info.owner, info.repo, info.pr_number, body)

    async def pr_reviewers(self) -> list[str]:
        """Reviewers who submitted a review, as reported by GitHub."""
        info = self._require_repo()
        async with self._open_client() as client:
            return await ops.get_pr_reviewers(client, info.owner, info.repo, info.pr_number)

    async def _set_resolution(self, comment_id: int, *, resolve: bool) -> ResolveResult:
        self._require_repo()
        ref = self.store.thread_refs.get(comment_id)
        if ref is None:
            return ResolveResult(
                success=False,
                error=f"No review thread found for comment {comment_id}. Fetch comments first.",
            )
        async with self._open_client() as client:
            if resolve:
                result = await ops.resolve_thread(client, ref.thread_id)
            else:
                result = await ops.unresolve_thread(client, ref.thread_id)
        if result.success:
            self.store.set_thread_resolved(ref.thread_id, resolved=resolve)
        return result

    async def resolve(self, comment_id: int) -> ResolveResult:
        """Resolve the review thread containing *comment_id*."""
        return await self._set_resolution(comment_id, resolve=True)

    async def unresolve(self, comment_id: int) -> ResolveResult:
        return await self._set_resolution(comment_id, resolve=False)

    # -- Views ----------------------------------------------------------------

    def set_filter(
        self,
        *,
        reviewer: str | None = None,
        resolved: bool | None = None,
        file: str | None = None,
    ) -> ThreadFilter:
        self.filter = ThreadFilter(reviewer=reviewer, resolved=resolved, file=file)
        return self.filter

    def clear_filter(self) -> None:
        self.filter = ThreadFilter()

    def visible_threads(self) -> list[Thread]:
        """Threads passing the current filter, ordered by path then line."""
        return filter_threads(self.store.threads, self.filter)

    def file_nodes(self) -> list[FileNode]:
        return file_nodes(self.store.threads_by_file, self.filter)

    def total_comment_count(self) -> int:
        return count_comments(self.store.threads)

    def thread_count(self) -> int:
        return len(self.store.threads)

    def reviewers(self) -> list[str]:
        """Sorted authors of every loaded review comment."""
        return collect_reviewers(self.store.comments)

    def decorations_for(self, path: str) -> list[LineDecoration]:
        """Line annotations for *path*, styled from the config."""
        return line_decorations(
            self.store.comments_by_file.get(path, []),
            show_resolved=self.config.show_resolved,
            color=self.config.highlight_color,
            icon=self.config.comment_icon,
        )
