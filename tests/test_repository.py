"""Tests for remote URL / branch parsing and repository resolution."""

from __future__ import annotations

import subprocess
from typing import TYPE_CHECKING
from unittest.mock import MagicMock

import pytest

if TYPE_CHECKING:
    from pytest_mock import MockerFixture

from prcomments.repository import (
    GitError,
    RepositoryError,
    extract_pr_number,
    parse_pr_number_input,
    parse_remote_url,
    resolve_repository_info,
    run_git,
)


class TestParseRemoteUrl:
    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("git@github.com:owner/repo.git", ("owner", "repo")),
            ("https://github.com/owner/repo", ("owner", "repo")),
            ("git@github.enterprise.com:owner/repo.git", ("owner", "repo")),
            ("HTTPS://GitHub.com/Owner/Repo.git", ("Owner", "Repo")),
            ("git@github.com:octo-org/my_repo.git", ("octo-org", "my_repo")),
            ("https://github.com/owner/repo.git", ("owner", "repo")),
            ("https://github.com/owner/repo/", ("owner", "repo")),
            ("ssh://git@github.com/owner/repo.git", ("owner", "repo")),
            ("https://github.example.com/team/service.js", ("team", "service.js")),
            ("owner/repo", ("owner", "repo")),
            ("  owner/repo  ", ("owner", "repo")),
        ],
    )
    def test_supported_shapes(self, url, expected):
        assert parse_remote_url(url) == expected

    @pytest.mark.parametrize(
        "url",
        [
            "not-a-url",
            "",
            "https://gitlab.com/owner/repo.git",
            "git@bitbucket.org:owner/repo.git",
            "https://github.com/group/sub/repo",
            "just/too/many",
            "https://github.com/owner",
        ],
    )
    def test_unsupported_returns_none(self, url):
        assert parse_remote_url(url) is None


class TestExtractPrNumber:
    @pytest.mark.parametrize(
        ("branch", "expected"),
        [
            ("pr-123", 123),
            ("PR-123", 123),
            ("pr_7", 7),
            ("pr99", 99),
            ("pull_456", 456),
            ("pull-8", 8),
            ("789-feature-name", 789),
            ("12_fix", 12),
            ("feature-pr-42", 42),
            ("feature_pull_5", 5),
        ],
    )
    def test_matches(self, branch, expected):
        assert extract_pr_number(branch) == expected

    @pytest.mark.parametrize("branch", ["main", "node-20-upgrade", "release-1.2", "123", "feature/login", "pr-0"])
    def test_no_match(self, branch):
        assert extract_pr_number(branch) is None

    def test_first_pattern_wins(self):
        assert extract_pr_number("pr-1-feature-pr-2") == 1


class TestParsePrNumberInput:
    def test_valid(self):
        assert parse_pr_number_input("42") == 42
        assert parse_pr_number_input(" #17 ") == 17

    @pytest.mark.parametrize("text", [None, "", "   "])
    def test_missing(self, text):
        with pytest.raises(RepositoryError, match="required"):
            parse_pr_number_input(text)

    @pytest.mark.parametrize("text", ["abc", "0", "-3", "1.5", "١٢"])
    def test_invalid(self, text):
        with pytest.raises(RepositoryError, match="valid positive number"):
            parse_pr_number_input(text)


def _completed(stdout: str = "", returncode: int = 0, stderr: str = "") -> MagicMock:
    result = MagicMock()
    result.stdout = stdout
    result.stderr = stderr
    result.returncode = returncode
    return result


class TestRunGit:
    def test_returns_stripped_stdout(self, mocker: MockerFixture):
        run = mocker.patch("prcomments.repository.subprocess.run", return_value=_completed("main\n"))
        assert run_git("rev-parse", "--abbrev-ref", "HEAD", cwd="/repo") == "main"
        args, kwargs = run.call_args
        assert args[0] == ["git", "rev-parse", "--abbrev-ref", "HEAD"]
        assert kwargs["cwd"] == "/repo"
        assert kwargs["timeout"] == 5

    def test_nonzero_exit_raises(self, mocker: MockerFixture):
        mocker.patch(
            "prcomments.repository.subprocess.run",
            return_value=_completed(returncode=128, stderr="fatal: not a git repository\n"),
        )
        with pytest.raises(GitError, match="not a git repository") as exc_info:
            run_git("status")
        assert exc_info.value.returncode == 128

    def test_missing_git(self, mocker: MockerFixture):
        mocker.patch("prcomments.repository.subprocess.run", side_effect=FileNotFoundError)
        with pytest.raises(GitError, match="git not found"):
            run_git("status")

    def test_timeout(self, mocker: MockerFixture):
        mocker.patch(
            "prcomments.repository.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="git", timeout=5),
        )
        with pytest.raises(GitError, match="timed out"):
            run_git("status")


class TestResolveRepositoryInfo:
    def _patch_git(self, mocker: MockerFixture, responses: dict[str, str | Exception]) -> None:
        def fake_run_git(*args, cwd=None):
            key = args[0] if args[0] != "config" else "config"
            value = responses[key]
            if isinstance(value, Exception):
                raise value
            return value

        mocker.patch("prcomments.repository.run_git", side_effect=fake_run_git)

    def test_from_branch(self, mocker: MockerFixture):
        responses = {"rev-parse": "pr-12", "config": "git@github.com:octo/widgets.git"}
        self._patch_git(mocker, responses)
        mocker.patch("prcomments.repository.is_git_repository", return_value=True)

        info = resolve_repository_info("/repo")

        assert info is not None
        assert (info.owner, info.repo, info.pr_number) == ("octo", "widgets", 12)

    def test_prompt_used_when_branch_has_no_number(self, mocker: MockerFixture):
        self._patch_git(mocker, {"rev-parse": "main", "config": "https://github.com/octo/widgets"})
        mocker.patch("prcomments.repository.is_git_repository", return_value=True)
        prompt = MagicMock(return_value="#77")

        info = resolve_repository_info("/repo", prompt=prompt)

        prompt.assert_called_once()
        assert info is not None
        assert info.pr_number == 77

    def test_cancelled_prompt_leaves_pr_unset(self, mocker: MockerFixture):
        self._patch_git(mocker, {"rev-parse": "main", "config": "https://github.com/octo/widgets"})
        mocker.patch("prcomments.repository.is_git_repository", return_value=True)

        info = resolve_repository_info("/repo", prompt=lambda: None)

        assert info is not None
        assert info.pr_number is None

    def test_invalid_prompt_input_raises(self, mocker: MockerFixture):
        self._patch_git(mocker, {"rev-parse": "main", "config": "https://github.com/octo/widgets"})
        mocker.patch("prcomments.repository.is_git_repository", return_value=True)

        with pytest.raises(RepositoryError):
            resolve_repository_info("/repo", prompt=lambda: "abc")

    def test_not_a_repository(self, mocker: MockerFixture):
        mocker.patch("prcomments.repository.run_git", side_effect=GitError("fatal"))
        assert resolve_repository_info("/tmp") is None

    def test_unparseable_remote(self, mocker: MockerFixture):
        self._patch_git(mocker, {"rev-parse": "pr-1", "config": "https://gitlab.com/a/b/c"})
        mocker.patch("prcomments.repository.is_git_repository", return_value=True)
        assert resolve_repository_info("/repo") is None

    def test_missing_remote(self, mocker: MockerFixture):
        self._patch_git(mocker, {"rev-parse": "pr-1", "config": GitError("")})
        mocker.patch("prcomments.repository.is_git_repository", return_value=True)
        assert resolve_repository_info("/repo") is None
