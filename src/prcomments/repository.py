"""Work out which repository and PR the current checkout belongs to.

The parsing helpers (:func:`parse_remote_url`, :func:`extract_pr_number`,
:func:`parse_pr_number_input`) are pure. The git helpers shell out to
``git`` with a short timeout.
"""

from __future__ import annotations

import logging
import re
import subprocess  # noqa: S404
from typing import TYPE_CHECKING

from prcomments.models import RepositoryInfo

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

_GIT_TIMEOUT = 5

# scheme://[user@]host[:port]/owner/repo[.git] or user@host:owner/repo[.git] where
# host is github.com or a GitHub Enterprise host (github.example.com). Other forges
# fall through to the bare pattern, which rejects full URLs.
_HOSTED_REMOTE_RE = re.compile(
    r"^(?:[a-z][a-z0-9+.-]*://)?"
    r"(?:[^@/\s]+@)?"
    r"[^/:@\s]*github[^/:@\s]*"
    r"(?::\d+)?"
    r"[:/](?P<owner>[\w.-]+)/(?P<repo>[\w.-]+?)(?:\.git)?/?$",
    re.IGNORECASE,
)
_BARE_REMOTE_RE = re.compile(r"^(?P<owner>[\w.-]+)/(?P<repo>[\w.-]+)$")

# Tried in order; the first match wins.
_PR_BRANCH_PATTERNS = (
    re.compile(r"^pr[_-]?(\d+)", re.IGNORECASE),  # pr-123, pr_123, pr123
    re.compile(r"^pull[_-]?(\d+)", re.IGNORECASE),  # pull-123, pull_123
    re.compile(r"^(\d+)[_-]"),  # 123-feature-name
    re.compile(r"[_-]pr[_-]?(\d+)", re.IGNORECASE),  # feature-pr-123
    re.compile(r"[_-]pull[_-]?(\d+)", re.IGNORECASE),  # feature-pull-123
)


class RepositoryError(ValueError):
    """Raised for local parse/validation failures (bad remote, bad PR number)."""


class GitError(Exception):
    """Raised when a git command fails."""

    def __init__(self, message: str, stderr: str = "", returncode: int = 1) -> None:
        super().__init__(message)
        self.stderr = stderr
        self.returncode = returncode


# ---------------------------------------------------------------------------
# Pure parsing
# ---------------------------------------------------------------------------


def parse_remote_url(url: str) -> tuple[str, str] | None:
    """Extract ``(owner, repo)`` from a git remote URL.

    Supports SSH (``git@github.com:owner/repo.git``), HTTPS with or without
    ``.git``, enterprise hosts, and a bare ``owner/repo``. Returns ``None``
    for anything else.
    """
    url = url.strip()
    for pattern in (_HOSTED_REMOTE_RE, _BARE_REMOTE_RE):
        match = pattern.match(url)
        if match:
            return match.group("owner"), match.group("repo").removesuffix(".git")
    return None


def extract_pr_number(branch_name: str) -> int | None:
    """Guess the PR number from a branch name.

    ``pr-123``, ``PR_123``, ``pull-456``, ``789-feature`` and ``feature-pr-42``
    all match. Digits are only taken at the start of the branch or right
    after ``pr``/``pull``, so ``node-20-upgrade`` does not match.
    """
    for pattern in _PR_BRANCH_PATTERNS:
        match = pattern.search(branch_name)
        if match and int(match.group(1)) > 0:
            return int(match.group(1))
    return None


def parse_pr_number_input(text: str | None) -> int:
    """Validate a user-entered PR number.

    Raises:
        RepositoryError: If *text* is empty or not a positive integer.
    """
    if text is None or not text.strip():
        msg = "PR number is required"
        raise RepositoryError(msg)
    value = text.strip().lstrip("#")
    if not (value.isascii() and value.isdigit()) or int(value) <= 0:
        msg = f"Please enter a valid positive number, got {text!r}"
        raise RepositoryError(msg)
    return int(value)


# ---------------------------------------------------------------------------
# git helpers
# ---------------------------------------------------------------------------


def run_git(*args: str, cwd: str | None = None) -> str:
    """Run a git command and return stripped stdout.

    Raises:
        GitError: If git is missing, times out, or exits non-zero.
    """
    cmd = ["git", *args]
    logger.debug("Running: %s", " ".join(cmd))
    try:
        result = subprocess.run(  # noqa: S603
            cmd,
            capture_output=True,
            text=True,
            check=False,
            cwd=cwd,
            timeout=_GIT_TIMEOUT,
        )
    except FileNotFoundError:
        msg = "git not found. Install git and make sure it is on PATH."
        raise GitError(msg) from None
    except subprocess.TimeoutExpired as exc:
        msg = f"git {' '.join(args)} timed out after {_GIT_TIMEOUT}s"
        raise GitError(msg) from exc

    if result.returncode != 0:
        logger.debug("git stderr: %s", result.stderr)
        raise GitError(result.stderr.strip(), stderr=result.stderr, returncode=result.returncode)
    return result.stdout.strip()


def is_git_repository(cwd: str | None = None) -> bool:
    try:
        run_git("rev-parse", "--is-inside-work-tree", cwd=cwd)
    except GitError:
        return False
    return True


def get_remote_url(cwd: str | None = None) -> str | None:
    """Return the ``origin`` remote URL, or None if it can't be read."""
    try:
        url = run_git("config", "--get", "remote.origin.url", cwd=cwd)
    except GitError as exc:
        logger.error("Failed to get git remote URL: %s", exc)
        return None
    logger.info("Git remote URL: %s", url)
    return url or None


def get_current_branch(cwd: str | None = None) -> str | None:
    try:
        branch = run_git("rev-parse", "--abbrev-ref", "HEAD", cwd=cwd)
    except GitError as exc:
        logger.error("Failed to get current branch: %s", exc)
        return None
    logger.info("Current branch: %s", branch)
    return branch or None


def resolve_repository_info(
    cwd: str | None = None,
    prompt: Callable[[], str | None] | None = None,
) -> RepositoryInfo | None:
    """Resolve owner, repo and PR number for the checkout at *cwd*.

    The PR number comes from the branch name, falling back to *prompt* (which
    returns the user's input, or None if they cancelled). Returns None when
    *cwd* is not a git repository or its remote can't be parsed.

    Raises:
        RepositoryError: If the prompted PR number is not a positive integer.
    """
    if not is_git_repository(cwd):
        logger.warning("Not a git repository: %s", cwd or ".")
        return None

    remote_url = get_remote_url(cwd)
    if not remote_url:
        return None

    parsed = parse_remote_url(remote_url)
    if parsed is None:
        logger.error("Could not parse remote URL: %s", remote_url)
        return None
    owner, repo = parsed

    pr_number: int | None = None
    branch = get_current_branch(cwd)
    if branch:
        pr_number = extract_pr_number(branch)
        if pr_number is not None:
            logger.info("Extracted PR number from branch: %d", pr_number)

    if pr_number is None and prompt is not None:
        answer = prompt()
        if answer:
            pr_number = parse_pr_number_input(answer)

    return RepositoryInfo(owner=owner, repo=repo, pr_number=pr_number)
