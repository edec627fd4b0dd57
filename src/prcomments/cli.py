"""CLI for pr-comments, built on cyclopts.

Every command resolves the repository from the checkout (or ``--repo``),
loads ``.prcomments.toml``, and talks to GitHub through a :class:`Session`.
Failures print a red ``Error:`` line and exit with status 1.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, NoReturn

import cyclopts
from rich import print as rprint
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.prompt import Prompt
from rich.table import Table
from rich.tree import Tree

from prcomments.config import (
    CONFIG_FILENAME,
    Config,
    get_config,
    init_config,
    load_config,
    register_reload_callback,
    resolve_token,
    set_config,
    update_config,
    validate_token,
)
from prcomments.models import RepositoryInfo
from prcomments.refresh import AutoRefresher
from prcomments.repository import (
    RepositoryError,
    parse_pr_number_input,
    parse_remote_url,
    resolve_repository_info,
)
from prcomments.session import Session, SessionError
from prcomments.views import children

if TYPE_CHECKING:
    from prcomments.views import FileNode

logger = logging.getLogger(__name__)

app = cyclopts.App(
    name="pr-comments",
    help="pr-comments: GitHub PR review comments as per-line threads.",
)

_stderr = Console(stderr=True)

PrOption = Annotated[int | None, cyclopts.Parameter(name="--pr", help="PR number (default: from branch name)")]
RepoOption = Annotated[str | None, cyclopts.Parameter(name="--repo", help="owner/repo (default: origin remote)")]
CwdOption = Annotated[Path | None, cyclopts.Parameter(name="--cwd", help="Directory inside the checkout")]


# ---------------------------------------------------------------------------
# Bootstrap helpers
# ---------------------------------------------------------------------------


def setup_logging(*, verbose: bool = False) -> None:
    """Route all logging through a single rich handler on stderr."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=_stderr, show_path=False, rich_tracebacks=True)],
        force=True,
    )


def _fail(message: str) -> NoReturn:
    rprint(f"[red]Error:[/red] {escape(message)}")
    sys.exit(1)


def _prompt_pr_number() -> str | None:
    answer = Prompt.ask("PR number (could not detect from branch)", console=_stderr, default="")
    return answer or None


def _load_config(cwd: Path | None) -> Config:
    try:
        config, path = load_config(cwd)
    except ValueError as exc:
        _fail(str(exc))
    set_config(config, config_path=path)
    return config


def _resolve_repository(
    cwd: Path | None,
    repo: str | None,
    pr: int | None,
    *,
    require_pr: bool = True,
) -> RepositoryInfo:
    """Work out owner/repo/PR from flags, falling back to the git checkout."""
    try:
        pr_number = parse_pr_number_input(str(pr)) if pr is not None else None

        if repo is not None:
            parsed = parse_remote_url(repo)
            if parsed is None:
                _fail(f"Could not parse repository {repo!r}. Use owner/repo.")
            info = RepositoryInfo(owner=parsed[0], repo=parsed[1], pr_number=pr_number)
            if info.pr_number is None and require_pr:
                info.pr_number = parse_pr_number_input(_prompt_pr_number())
        else:
            wants_prompt = require_pr and pr_number is None
            resolved = resolve_repository_info(
                str(cwd) if cwd else None,
                prompt=_prompt_pr_number if wants_prompt else None,
            )
            if resolved is None:
                _fail("Could not determine repository. Make sure you're in a git repository with a GitHub remote.")
            info = resolved
            if pr_number is not None:
                info.pr_number = pr_number
    except RepositoryError as exc:
        _fail(str(exc))

    if require_pr and info.pr_number is None:
        _fail("PR number is required")
    return info


def _open_session(cwd: Path | None) -> Session:
    config = _load_config(cwd)
    token = resolve_token(config)
    if token:
        validation = validate_token(token)
        if not validation.valid:
            _fail(validation.message or "Invalid token format")
    return Session(config, token)


def _fetch_or_fail(session: Session, info: RepositoryInfo) -> None:
    result = asyncio.run(session.fetch(info))
    if not result.success:
        _fail(result.error or "Failed to fetch PR comments")
    if result.rate_limit_remaining is not None:
        logger.info("Rate limit remaining: %d", result.rate_limit_remaining)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def render_tree(session: Session) -> Tree:
    """Build a rich tree of the session's visible threads, grouped by file."""
    info = session.store.repo_info
    title = f"[bold]{info}[/bold]" if info else "[bold]PR comments[/bold]"
    nodes = session.file_nodes()
    visible = [t for n in nodes for t in n.threads]
    comments = sum(n.comment_count for n in nodes)
    tree = Tree(f"{title}  {comments} comment(s) in {len(visible)} thread(s)")
    for node in nodes:
        _add_file_branch(tree, node, session)
    return tree


def _add_file_branch(tree: Tree, node: FileNode, session: Session) -> None:
    branch = tree.add(f"[bold cyan]{escape(node.label)}[/bold cyan] [dim]{node.description}[/dim]")
    icon = escape(session.config.comment_icon)
    for thread_node in children(node, session.filter):
        mark = "[green]✓[/green] " if thread_node.thread.resolved else ""
        thread_branch = branch.add(
            f"{mark}{icon} {escape(thread_node.label)} [dim]{thread_node.description}[/dim]",
        )
        for comment_node in children(thread_node):
            comment = comment_node.comment
            first_line = comment.body.strip().splitlines()[0] if comment.body.strip() else ""
            thread_branch.add(
                f"[yellow]#{comment.id}[/yellow] {escape(comment_node.label)} "
                f"[dim]{comment_node.description}[/dim]  {escape(first_line)}",
            )


def _show_comments(session: Session, info: RepositoryInfo) -> None:
    if session.total_comment_count() == 0:
        rprint(f"No review comments on {info}.")
        return
    rprint(render_tree(session))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command
def fetch(
    *,
    pr: PrOption = None,
    repo: RepoOption = None,
    reviewer: Annotated[str | None, cyclopts.Parameter(help="Only threads this user took part in")] = None,
    resolved: Annotated[
        bool | None,
        cyclopts.Parameter(negative="--unresolved", help="Only resolved (--resolved) or open (--unresolved) threads"),
    ] = None,
    file: Annotated[str | None, cyclopts.Parameter(help="Only files whose path contains this text")] = None,
    cwd: CwdOption = None,
) -> None:
    """Fetch review comments for the PR and print them as threads."""
    session = _open_session(cwd)
    info = _resolve_repository(cwd, repo, pr)

    _fetch_or_fail(session, info)
    session.set_filter(reviewer=reviewer, resolved=resolved, file=file)
    _show_comments(session, info)


@app.command
def reply(
    comment_id: int,
    body: str,
    *,
    pr: PrOption = None,
    repo: RepoOption = None,
    cwd: CwdOption = None,
) -> None:
    """Reply to review comment COMMENT_ID."""
    session = _open_session(cwd)
    session.select(_resolve_repository(cwd, repo, pr))
    result = asyncio.run(session.reply(comment_id, body))
    if not result.success:
        _fail(result.error or "Failed to post reply")
    rprint(f"[green]Reply posted[/green] (#{result.comment.id if result.comment else '?'})")


@app.command
def comment(
    path: str,
    line: int,
    body: str,
    *,
    pr: PrOption = None,
    repo: RepoOption = None,
    cwd: CwdOption = None,
) -> None:
    """Add a review comment on PATH at LINE (must be part of the diff)."""
    session = _open_session(cwd)
    session.select(_resolve_repository(cwd, repo, pr))
    result = asyncio.run(session.add_comment(path, line, body))
    if not result.success:
        _fail(result.error or "Failed to create comment")
    rprint(f"[green]Comment added[/green] on {escape(path)}:{line}")


def _change_resolution(comment_id: int, cwd: Path | None, repo: str | None, pr: int | None, *, resolve: bool) -> None:
    session = _open_session(cwd)
    info = _resolve_repository(cwd, repo, pr)

    async def _run() -> str | None:
        fetched = await session.fetch(info)
        if not fetched.success:
            return fetched.error or "Failed to fetch PR comments"
        result = await (session.resolve(comment_id) if resolve else session.unresolve(comment_id))
        return None if result.success else (result.error or "Failed to update thread")

    error = asyncio.run(_run())
    if error:
        _fail(error)
    rprint(f"[green]Thread {'resolved' if resolve else 'reopened'}[/green] (comment #{comment_id})")


@app.command
def resolve(
    comment_id: int,
    *,
    pr: PrOption = None,
    repo: RepoOption = None,
    cwd: CwdOption = None,
) -> None:
    """Resolve the review thread containing COMMENT_ID."""
    _change_resolution(comment_id, cwd, repo, pr, resolve=True)


@app.command
def unresolve(
    comment_id: int,
    *,
    pr: PrOption = None,
    repo: RepoOption = None,
    cwd: CwdOption = None,
) -> None:
    """Reopen the review thread containing COMMENT_ID."""
    _change_resolution(comment_id, cwd, repo, pr, resolve=False)


@app.command
def prs(*, repo: RepoOption = None, cwd: CwdOption = None) -> None:
    """List open pull requests, most recently updated first."""
    from prcomments.comments import list_open_prs  # noqa: PLC0415
    from prcomments.github_api import GitHubClient  # noqa: PLC0415

    session = _open_session(cwd)
    if not session.token:
        _fail("GitHub token is not configured. Set GH_TOKEN or GITHUB_TOKEN, or run 'gh auth login'.")
    info = _resolve_repository(cwd, repo, None, require_pr=False)

    async def _run():
        async with GitHubClient.from_config(session.config, session.token) as client:
            return await list_open_prs(client, info.owner, info.repo)

    result = asyncio.run(_run())
    if not result.success:
        _fail(result.error or "Failed to list PRs")
    if not result.prs:
        rprint(f"No open pull requests in {info.owner}/{info.repo}.")
        return

    table = Table(title=f"Open PRs in {info.owner}/{info.repo}")
    table.add_column("#", justify="right")
    table.add_column("Title")
    table.add_column("Author")
    table.add_column("Branch")
    for pr_info in result.prs:
        title = f"[dim](draft)[/dim] {escape(pr_info.title)}" if pr_info.draft else escape(pr_info.title)
        table.add_row(str(pr_info.number), title, pr_info.author, f"{pr_info.head_branch} → {pr_info.base_branch}")
    rprint(table)


@app.command
def conversation(
    *,
    post: Annotated[str | None, cyclopts.Parameter(help="Post this text as a new conversation comment")] = None,
    pr: PrOption = None,
    repo: RepoOption = None,
    cwd: CwdOption = None,
) -> None:
    """Show the PR conversation comments, or post one with --post."""
    session = _open_session(cwd)
    info = _resolve_repository(cwd, repo, pr)

    if post is not None:
        session.select(info)
        result = asyncio.run(session.add_conversation_comment(post))
        if not result.success:
            _fail(result.error or "Failed to create comment")
        rprint("[green]Comment posted[/green]")
        return

    _fetch_or_fail(session, info)
    if not session.store.issue_comments:
        rprint(f"No conversation comments on {info}.")
        return
    for item in session.store.issue_comments:
        stamp = item.created_at.strftime("%Y-%m-%d %H:%M") if item.created_at else ""
        rprint(f"[bold]@{item.author}[/bold] [dim]{stamp}[/dim]")
        rprint(escape(item.body))
        rprint()


@app.command
def watch(
    *,
    interval: Annotated[int | None, cyclopts.Parameter(help="Minutes between refreshes (default: refresh_interval)")] = None,
    pr: PrOption = None,
    repo: RepoOption = None,
    cwd: CwdOption = None,
) -> None:
    """Fetch now, then re-fetch on a timer until interrupted."""
    session = _open_session(cwd)
    info = _resolve_repository(cwd, repo, pr)
    minutes = interval if interval is not None else session.config.refresh_interval
    if minutes <= 0:
        _fail("Auto-refresh is disabled. Set refresh_interval in .prcomments.toml or pass --interval.")

    try:
        asyncio.run(_watch(session, info, minutes, follow_config=interval is None))
    except KeyboardInterrupt:
        rprint("\nStopped.")


async def _watch(session: Session, info: RepositoryInfo, minutes: int, *, follow_config: bool) -> None:
    async def _refresh() -> None:
        result = await session.fetch(info)
        if not result.success:
            raise SessionError(result.error or "Failed to fetch PR comments")

    refresher = AutoRefresher(
        _refresh,
        minutes,
        on_complete=lambda: rprint(render_tree(session)),
        on_error=lambda exc: rprint(f"[red]Error:[/red] {escape(str(exc))}"),
    )
    unregister = (
        register_reload_callback(lambda cfg: refresher.set_interval(cfg.refresh_interval)) if follow_config else None
    )

    try:
        await refresher.refresh_once()
        refresher.start()
        rprint(f"[dim]{refresher.status_text()}, Ctrl+C to stop[/dim]")
        while refresher.is_active:
            await asyncio.sleep(1)
            get_config()  # picks up edits to the config file
    finally:
        await refresher.aclose()
        if unregister is not None:
            unregister()


@app.command
def config(
    *,
    init: Annotated[bool, cyclopts.Parameter(help=f"Create a new {CONFIG_FILENAME}")] = False,
    update: Annotated[bool, cyclopts.Parameter(help="Add missing settings, comment out unknown ones")] = False,
    cwd: CwdOption = None,
) -> None:
    """Create or update the project config file."""
    target = cwd or Path.cwd()
    if init == update:
        _fail("Pass exactly one of --init or --update")
    if init:
        init_config(target)
    else:
        update_config(target)


@app.command(name="check-env")
def check_env(*, cwd: CwdOption = None) -> None:
    """Print a diagnostic summary of token, config and GitHub connectivity."""
    rprint("[bold]pr-comments check-env[/bold]")
    rprint("=" * 40)

    token_vars = {k: os.environ[k] for k in _TOKEN_ENV_VARS if os.environ.get(k)}
    if not token_vars:
        rprint("\nNo GH_TOKEN / GITHUB_TOKEN environment variables set.")
    else:
        rprint()
        for key, value in token_vars.items():
            rprint(f"  {key} = {_mask_value(key, value)}")

    rprint("\n" + "-" * 40)
    rprint("Validating configuration...\n")
    try:
        config, path = load_config(cwd)
    except ValueError as exc:
        rprint(f"❌ Configuration error: {escape(str(exc))}")
        sys.exit(1)
    rprint(f"  Config file: {path or 'none (defaults)'}")
    _print_config_summary(config)

    rprint("-" * 40)
    rprint("Checking GitHub token...\n")
    token = resolve_token(config)
    if not token:
        rprint("  ❌ No GitHub token found (config, GH_TOKEN, GITHUB_TOKEN or gh auth token)")
        rprint()
        return
    validation = validate_token(token)
    if not validation.valid:
        rprint(f"  ❌ {validation.message}")
        rprint()
        return

    valid, message, rate = asyncio.run(_check_remote(config, token))
    rprint(f"  {'✅' if valid else '❌'} {escape(message)}")
    if rate is not None:
        rprint(f"  Rate limit: {rate.remaining}/{rate.limit} (resets {rate.reset:%H:%M:%S} UTC)")
    rprint()


async def _check_remote(config: Config, token: str):
    from prcomments.comments import check_rate_limit, validate_github_token  # noqa: PLC0415
    from prcomments.github_api import GitHubClient  # noqa: PLC0415

    async with GitHubClient.from_config(config, token) as client:
        valid, message = await validate_github_token(client, token)
        rate = await check_rate_limit(client) if valid else None
    return valid, message, rate


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_MASK_MIN_LENGTH = 4
_TRUNCATE_LENGTH = 80
_TOKEN_ENV_VARS = ("GH_TOKEN", "GITHUB_TOKEN")


def _mask_value(key: str, value: str) -> str:
    """Mask sensitive values."""
    sensitive_keywords = ("token", "secret", "key", "password")
    if any(kw in key.lower() for kw in sensitive_keywords):
        if len(value) > _MASK_MIN_LENGTH:
            return value[:2] + "*" * (len(value) - _MASK_MIN_LENGTH) + value[-2:]
        return "****"
    if len(value) > _TRUNCATE_LENGTH:
        return value[: _TRUNCATE_LENGTH - 3] + "..."
    return value


def _print_config_summary(config: Config) -> None:
    token_display = _mask_value("github_token", config.github_token) if config.github_token else "(not set)"
    rprint(f"  github_token: {token_display}")
    rprint(f"  API: {config.api_base_url}")
    rprint(f"  auto_fetch: {'yes' if config.auto_fetch else 'no'}")
    rprint(f"  show_resolved: {'yes' if config.show_resolved else 'no'}")
    if config.refresh_interval > 0:
        rprint(f"  Auto-refresh: every {config.refresh_interval}m")
    else:
        rprint("  Auto-refresh: off")
    rprint(f"  request_timeout: {config.request_timeout:g}s")
    rprint()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def _run_default(cwd: Path | None = None) -> None:
    """Bare ``pr-comments``: show the current branch's PR when ``auto_fetch`` is on, help otherwise."""
    if not _load_config(cwd).auto_fetch:
        app.help_print()
        return

    session = _open_session(cwd)
    info = _resolve_repository(cwd, None, None)
    result = asyncio.run(session.start(info))
    if result is not None and not result.success:
        _fail(result.error or "Failed to fetch PR comments")
    _show_comments(session, info)


@app.meta.default
def launcher(
    *tokens: Annotated[str, cyclopts.Parameter(show=False, allow_leading_hyphen=True)],
    verbose: Annotated[bool, cyclopts.Parameter(name=["--verbose", "-v"], help="Debug logging")] = False,
) -> None:
    setup_logging(verbose=verbose)
    if not tokens:
        _run_default()
        return
    command, bound, _ = app.parse_args(tokens)
    command(*bound.args, **bound.kwargs)


def main() -> None:
    """Run the pr-comments CLI."""
    app.meta()
