"""Presentation model for the comment tree and inline line annotations.

Tree nodes are a tagged union discriminated by ``kind``; front-ends match
on it instead of on node classes. Nothing here talks to the network.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated, Literal

from pydantic import BaseModel, Field

from prcomments.config import DEFAULT_COMMENT_ICON, DEFAULT_HIGHLIGHT_COLOR
from prcomments.models import Comment, Thread, ThreadFilter
from prcomments.threads import count_comments, filter_threads

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

_TOOLTIP_BODY_LIMIT = 200


def _plural(count: int, singular: str, plural: str) -> str:
    return f"{count} {singular if count == 1 else plural}"


def _format_timestamp(comment: Comment) -> str:
    return comment.created_at.strftime("%Y-%m-%d %H:%M") if comment.created_at else ""


class FileNode(BaseModel):
    """A file with at least one visible thread."""

    kind: Literal["file"] = "file"
    path: str = Field(description="Repository-relative file path")
    threads: list[Thread] = Field(default_factory=list, description="Visible threads on the file")
    comment_count: int = Field(default=0, description="Roots plus replies across visible threads")

    @property
    def label(self) -> str:
        return self.path

    @property
    def description(self) -> str:
        return _plural(self.comment_count, "comment", "comments")

    @property
    def tooltip(self) -> str:
        threads = _plural(len(self.threads), "thread", "threads")
        return f"{self.path}\n{self.description} in {threads}"


class ThreadNode(BaseModel):
    """One thread under a file."""

    kind: Literal["thread"] = "thread"
    path: str = Field(description="File the thread belongs to")
    thread: Thread

    @property
    def label(self) -> str:
        return f"Line {self.thread.line}: {self.thread.root_comment.author}"

    @property
    def description(self) -> str:
        replies = len(self.thread.replies)
        return _plural(replies, "reply", "replies") if replies else ""

    @property
    def tooltip(self) -> str:
        body = self.thread.root_comment.body
        suffix = "..." if len(body) > _TOOLTIP_BODY_LIMIT else ""
        return f"**@{self.thread.root_comment.author}**\n\n{body[:_TOOLTIP_BODY_LIMIT]}{suffix}"

    @property
    def expandable(self) -> bool:
        return bool(self.thread.replies)


class CommentNode(BaseModel):
    """The root comment or a reply inside a thread."""

    kind: Literal["comment"] = "comment"
    path: str = Field(description="File the comment belongs to")
    comment: Comment
    is_reply: bool = False

    @property
    def label(self) -> str:
        prefix = "↳ " if self.is_reply else ""
        return f"{prefix}{self.comment.author}"

    @property
    def description(self) -> str:
        return self.comment.created_at.date().isoformat() if self.comment.created_at else ""


TreeNode = Annotated[FileNode | ThreadNode | CommentNode, Field(discriminator="kind")]


def file_nodes(threads_by_file: Mapping[str, list[Thread]], flt: ThreadFilter | None = None) -> list[FileNode]:
    """Top level of the tree: files with visible threads, sorted by path."""
    flt = flt or ThreadFilter()
    nodes: list[FileNode] = []
    for path, threads in threads_by_file.items():
        if flt.file and flt.file not in path:
            continue
        visible = filter_threads(threads, flt)
        if not visible:
            continue
        nodes.append(FileNode(path=path, threads=visible, comment_count=count_comments(visible)))
    return sorted(nodes, key=lambda n: n.path)


def children(node: TreeNode, flt: ThreadFilter | None = None) -> list[TreeNode]:
    """Expand one level of the tree."""
    match node.kind:
        case "file":
            return [ThreadNode(path=node.path, thread=t) for t in filter_threads(node.threads, flt)]
        case "thread":
            root = CommentNode(path=node.path, comment=node.thread.root_comment)
            replies = [CommentNode(path=node.path, comment=r, is_reply=True) for r in node.thread.replies]
            return [root, *replies]
        case _:
            return []


# ---------------------------------------------------------------------------
# Line annotations
# ---------------------------------------------------------------------------


class LineDecoration(BaseModel):
    """Highlight for one commented line, with the hover text for it."""

    line: int = Field(description="1-based line number")
    hover_markdown: str = Field(description="Markdown listing every comment on the line")
    resolved: bool = Field(default=False, description="True when every comment on the line is resolved")
    color: str = Field(default=DEFAULT_HIGHLIGHT_COLOR, description="Background color for the line")
    icon: str = Field(default=DEFAULT_COMMENT_ICON, description="Marker rendered after the line")


def hover_markdown(comment: Comment) -> str:
    header = f"**@{comment.author}**"
    stamp = _format_timestamp(comment)
    if stamp:
        header += f" • {stamp}"
    return f"{header}\n\n---\n\n{comment.body}"


def line_decorations(
    comments: Iterable[Comment],
    *,
    show_resolved: bool = True,
    color: str = DEFAULT_HIGHLIGHT_COLOR,
    icon: str = DEFAULT_COMMENT_ICON,
) -> list[LineDecoration]:
    """One decoration per distinct commented line, sorted by line.

    Comments without a positive line are skipped, as are resolved comments
    when *show_resolved* is false. Every decoration carries *color* and *icon*.
    """
    by_line: dict[int, list[Comment]] = {}
    for comment in comments:
        if not comment.line or comment.line < 1:
            continue
        if comment.resolved and not show_resolved:
            continue
        by_line.setdefault(comment.line, []).append(comment)

    return [
        LineDecoration(
            line=line,
            hover_markdown="\n\n".join(hover_markdown(c) for c in group),
            resolved=all(c.resolved for c in group),
            color=color,
            icon=icon,
        )
        for line, group in sorted(by_line.items())
    ]
