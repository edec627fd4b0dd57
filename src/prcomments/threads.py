"""Rebuild review threads from a flat comment list.

Everything here is pure: the same input list (in the same order) always
yields the same threads. Threads are rebuilt from scratch on every fetch.
"""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING

from prcomments.models import Comment, Thread, ThreadFilter

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


def _created_timestamp(comment: Comment) -> float:
    # Missing timestamps sort as the epoch, i.e. before any timestamped reply.
    return comment.created_at.timestamp() if comment.created_at else 0.0


def _thread_line(thread: Thread) -> int:
    return thread.line or 0


def build_threads(comments: Iterable[Comment]) -> list[Thread]:
    """Group *comments* into threads sorted by line.

    Comments without ``in_reply_to_id`` start a thread; replies are attached
    to their root, sorted oldest first. Replies whose root is not in
    *comments* are dropped. Threads on the same line keep first-seen order.
    """
    threads: dict[int, Thread] = {}
    replies_by_parent: dict[int, list[Comment]] = defaultdict(list)

    for comment in comments:
        if comment.in_reply_to_id is not None:
            replies_by_parent[comment.in_reply_to_id].append(comment)
            continue
        threads[comment.id] = Thread(
            id=comment.id,
            path=comment.path,
            line=comment.line,
            root_comment=comment,
            resolved=comment.resolved,
            participants=[comment.author],
        )

    for parent_id, replies in replies_by_parent.items():
        thread = threads.get(parent_id)
        if thread is None:
            continue
        thread.replies = sorted(replies, key=_created_timestamp)
        for reply in thread.replies:
            if reply.author not in thread.participants:
                thread.participants.append(reply.author)

    return sorted(threads.values(), key=_thread_line)


def group_by_file(comments: Iterable[Comment]) -> dict[str, list[Comment]]:
    """Bucket comments by path, keeping first-seen file and comment order."""
    by_file: dict[str, list[Comment]] = {}
    for comment in comments:
        by_file.setdefault(comment.path, []).append(comment)
    return by_file


def build_threads_by_file(comments_by_file: Mapping[str, list[Comment]]) -> dict[str, list[Thread]]:
    return {path: build_threads(comments) for path, comments in comments_by_file.items()}


def matches_filter(thread: Thread, flt: ThreadFilter) -> bool:
    if flt.reviewer is not None and flt.reviewer not in thread.participants:
        return False
    if flt.resolved is not None and thread.resolved != flt.resolved:
        return False
    return not (flt.file and flt.file not in thread.path)


def filter_threads(threads: Iterable[Thread], flt: ThreadFilter | None = None) -> list[Thread]:
    """Return threads matching every set field of *flt* (all threads when unset)."""
    if flt is None or flt.is_empty:
        return list(threads)
    return [t for t in threads if matches_filter(t, flt)]


def count_comments(threads: Iterable[Thread]) -> int:
    """Root comments plus replies across *threads*."""
    return sum(t.comment_count for t in threads)


def count_threads(threads: Iterable[Thread]) -> int:
    return sum(1 for _ in threads)


def collect_reviewers(comments: Iterable[Comment]) -> list[str]:
    """Sorted unique comment authors."""
    return sorted({c.author for c in comments})
