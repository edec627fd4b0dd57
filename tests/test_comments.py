"""Tests for comment operations: replies, new comments, threads, PR listing."""

from __future__ import annotations

import json

import pytest
import respx
from helpers.factories import API, GRAPHQL, TOKEN, graphql_comment, review_record, thread_node, threads_payload
from httpx import Response

from prcomments.comments import (
    apply_thread_state,
    check_rate_limit,
    create_issue_comment,
    create_review_comment,
    fetch_comments_with_threads,
    fetch_issue_comments,
    get_pr_head_commit,
    get_pr_reviewers,
    list_open_prs,
    parse_thread_nodes,
    reply_to_comment,
    resolve_thread,
    unresolve_thread,
    validate_github_token,
)
from prcomments.github_api import GitHubClient
from prcomments.models import Comment, FetchResult, ThreadRef

PR = f"{API}/repos/octo/widgets/pulls/7"


@pytest.fixture
async def client():
    async with GitHubClient(TOKEN) as gh:
        yield gh


class TestValidateGithubToken:
    async def test_valid(self, client):
        with respx.mock:
            respx.get(f"{API}/user").mock(return_value=Response(200, json={"login": "octocat"}))
            valid, message = await validate_github_token(client, TOKEN)
        assert valid is True
        assert "octocat" in message

    async def test_local_validation_first(self, client):
        with respx.mock:
            route = respx.get(f"{API}/user")
            valid, message = await validate_github_token(client, "short")
        assert valid is False
        assert message == "Token appears too short to be valid"
        assert route.call_count == 0

    @pytest.mark.parametrize(
        ("status", "message"),
        [(401, "Token is invalid or expired"), (403, "Token lacks required permissions")],
    )
    async def test_rejected(self, client, status, message):
        with respx.mock:
            respx.get(f"{API}/user").mock(return_value=Response(status, json={"message": "no"}))
            valid, text = await validate_github_token(client, TOKEN)
        assert valid is False
        assert text == message

    @pytest.mark.parametrize("response", [Response(200, text="<html>"), Response(200, json=["unexpected"])])
    async def test_malformed_user_body(self, client, response):
        with respx.mock:
            respx.get(f"{API}/user").mock(return_value=response)
            valid, text = await validate_github_token(client, TOKEN)
        assert valid is False
        assert text == "Failed to validate token"


class TestReplyToComment:
    async def test_posts_trimmed_body(self, client):
        with respx.mock:
            route = respx.post(f"{PR}/comments/5/replies").mock(
                return_value=Response(201, json=review_record(6, "me", reply_to=5)),
            )
            result = await reply_to_comment(client, "octo", "widgets", 7, 5, "  thanks!  ")

        assert result.success is True
        assert result.comment is not None
        assert result.comment.in_reply_to_id == 5
        assert json.loads(route.calls[0].request.content) == {"body": "thanks!"}

    async def test_reply_without_id_is_an_error(self, client):
        with respx.mock:
            respx.post(f"{PR}/comments/5/replies").mock(return_value=Response(201, json={"body": "hi"}))
            result = await reply_to_comment(client, "octo", "widgets", 7, 5, "hi")
        assert result.success is False

    @pytest.mark.parametrize("body", ["", "   \n"])
    async def test_empty_body_rejected_without_call(self, client, body):
        with respx.mock:
            route = respx.post(f"{PR}/comments/5/replies")
            result = await reply_to_comment(client, "octo", "widgets", 7, 5, body)
        assert result.success is False
        assert result.error == "Reply body cannot be empty."
        assert route.call_count == 0

    @pytest.mark.parametrize(
        ("status", "fragment"),
        [(401, "Authentication failed"), (403, "Permission denied"), (404, "not found"), (500, "500")],
    )
    async def test_errors(self, client, status, fragment):
        with respx.mock:
            respx.post(f"{PR}/comments/5/replies").mock(return_value=Response(status, json={"message": "x"}))
            result = await reply_to_comment(client, "octo", "widgets", 7, 5, "hi")
        assert result.success is False
        assert fragment in result.error


class TestCreateReviewComment:
    async def test_creates_comment(self, client):
        with respx.mock:
            route = respx.post(f"{PR}/comments").mock(
                return_value=Response(201, json=review_record(11, "me", path="a.py", line=3)),
            )
            result = await create_review_comment(client, "octo", "widgets", 7, "a.py", 3, "nit", "sha1")

        assert result.success is True
        assert result.comment.line == 3
        body = json.loads(route.calls[0].request.content)
        assert body == {"body": "nit", "commit_id": "sha1", "path": "a.py", "line": 3}

    async def test_line_not_in_diff(self, client):
        with respx.mock:
            respx.post(f"{PR}/comments").mock(return_value=Response(422, json={"message": "Validation Failed"}))
            result = await create_review_comment(client, "octo", "widgets", 7, "a.py", 300, "nit", "sha1")
        assert result.success is False
        assert result.error == "Invalid comment location. Line may not be part of the diff."

    async def test_empty_body(self, client):
        result = await create_review_comment(client, "octo", "widgets", 7, "a.py", 3, " ", "sha1")
        assert result.success is False
        assert result.error == "Comment body cannot be empty."


class TestPullRequestQueries:
    async def test_head_commit(self, client):
        with respx.mock:
            respx.get(PR).mock(return_value=Response(200, json={"head": {"sha": "deadbeef"}}))
            assert await get_pr_head_commit(client, "octo", "widgets", 7) == "deadbeef"

    async def test_head_commit_failure(self, client):
        with respx.mock:
            respx.get(PR).mock(return_value=Response(404, json={"message": "Not Found"}))
            assert await get_pr_head_commit(client, "octo", "widgets", 7) is None

    async def test_reviewers_sorted_unique(self, client):
        reviews = [{"user": {"login": "zed"}}, {"user": {"login": "amy"}}, {"user": {"login": "zed"}}, {"user": None}]
        with respx.mock:
            respx.get(f"{PR}/reviews").mock(return_value=Response(200, json=reviews))
            assert await get_pr_reviewers(client, "octo", "widgets", 7) == ["amy", "zed"]

    async def test_reviewers_empty_on_error(self, client):
        with respx.mock:
            respx.get(f"{PR}/reviews").mock(return_value=Response(500))
            assert await get_pr_reviewers(client, "octo", "widgets", 7) == []

    async def test_rate_limit(self, client):
        payload = {"rate": {"remaining": 4321, "limit": 5000, "reset": 1714557600}}
        with respx.mock:
            respx.get(f"{API}/rate_limit").mock(return_value=Response(200, json=payload))
            info = await check_rate_limit(client)
        assert info is not None
        assert (info.remaining, info.limit) == (4321, 5000)
        assert info.reset.timestamp() == 1714557600

    async def test_rate_limit_failure(self, client):
        with respx.mock:
            respx.get(f"{API}/rate_limit").mock(return_value=Response(500))
            assert await check_rate_limit(client) is None

    async def test_list_open_prs(self, client):
        pulls = [
            {
                "number": 12,
                "title": "Add widgets",
                "state": "open",
                "user": {"login": "amy"},
                "head": {"ref": "pr-12"},
                "base": {"ref": "main"},
                "draft": True,
            },
        ]
        with respx.mock:
            route = respx.get(f"{API}/repos/octo/widgets/pulls").mock(return_value=Response(200, json=pulls))
            result = await list_open_prs(client, "octo", "widgets")

        assert result.success is True
        (pr,) = result.prs
        assert (pr.number, pr.author, pr.head_branch, pr.base_branch, pr.draft) == (12, "amy", "pr-12", "main", True)
        params = route.calls[0].request.url.params
        assert dict(params) == {"state": "open", "per_page": "50", "sort": "updated", "direction": "desc"}

    async def test_list_open_prs_failure(self, client):
        with respx.mock:
            respx.get(f"{API}/repos/octo/widgets/pulls").mock(return_value=Response(404, json={"message": "Not Found"}))
            result = await list_open_prs(client, "octo", "widgets")
        assert result.success is False
        assert result.error


class TestThreadResolution:
    async def test_resolve(self, client):
        with respx.mock:
            route = respx.post(GRAPHQL).mock(
                return_value=Response(200, json={"data": {"resolveReviewThread": {"thread": {"id": "PRRT_1"}}}}),
            )
            result = await resolve_thread(client, "PRRT_1")

        assert result.success is True
        payload = json.loads(route.calls[0].request.content)
        assert "resolveReviewThread" in payload["query"]
        assert payload["variables"] == {"threadId": "PRRT_1"}

    async def test_unresolve(self, client):
        with respx.mock:
            route = respx.post(GRAPHQL).mock(return_value=Response(200, json={"data": {}}))
            result = await unresolve_thread(client, "PRRT_1")

        assert result.success is True
        assert "unresolveReviewThread" in json.loads(route.calls[0].request.content)["query"]

    async def test_graphql_error(self, client):
        with respx.mock:
            respx.post(GRAPHQL).mock(return_value=Response(200, json={"errors": [{"message": "not allowed"}]}))
            result = await resolve_thread(client, "PRRT_1")
        assert result.success is False
        assert "not allowed" in result.error

    async def test_permission_denied(self, client):
        with respx.mock:
            respx.post(GRAPHQL).mock(return_value=Response(403, json={"message": "Resource not accessible"}))
            result = await resolve_thread(client, "PRRT_1")
        assert result.success is False
        assert result.error == "Permission denied."


class TestThreadsQuery:
    def test_parse_thread_nodes(self):
        nodes = [
            thread_node("PRRT_a", [graphql_comment(1, "amy"), graphql_comment(2, "bob", reply_to=1)], resolved=True),
            thread_node("PRRT_b", [graphql_comment(3, "cat", line=None)]),
        ]
        comments, refs = parse_thread_nodes(nodes)

        assert [c.id for c in comments] == [1, 2, 3]
        assert comments[1].in_reply_to_id == 1
        assert comments[0].resolved is True
        assert comments[2].resolved is False
        assert comments[0].commit_id == "abc123"
        assert refs[2] == ThreadRef(thread_id="PRRT_a", resolved=True)
        assert refs[3].thread_id == "PRRT_b"

    async def test_fetch_comments_with_threads(self, client):
        payload = threads_payload([thread_node("PRRT_a", [graphql_comment(1)], resolved=True)])
        with respx.mock:
            route = respx.post(GRAPHQL).mock(return_value=Response(200, json=payload))
            result = await fetch_comments_with_threads(client, "octo", "widgets", 7)

        assert result.success is True
        assert result.thread_refs[1].resolved is True
        variables = json.loads(route.calls[0].request.content)["variables"]
        assert variables == {"owner": "octo", "repo": "widgets", "pr": 7}

    async def test_fetch_comments_with_threads_failure(self, client):
        with respx.mock:
            respx.post(GRAPHQL).mock(return_value=Response(502))
            result = await fetch_comments_with_threads(client, "octo", "widgets", 7)
        assert result.success is False
        assert result.thread_refs == {}

    def test_apply_thread_state(self):
        fetched = FetchResult(success=True, comments=[Comment(id=1, path="a", line=1), Comment(id=2, path="a", line=2)])
        merged = apply_thread_state(fetched, {1: ThreadRef(thread_id="PRRT_a", resolved=True)})
        assert [c.resolved for c in merged] == [True, False]
        assert fetched.comments[0].resolved is False


class TestConversationComments:
    async def test_fetch_issue_comments(self, client):
        records = [{"id": 1, "body": "LGTM", "user": {"login": "amy"}, "created_at": "2024-05-01T10:00:00Z"}]
        with respx.mock:
            respx.get(f"{API}/repos/octo/widgets/issues/7/comments").mock(return_value=Response(200, json=records))
            result = await fetch_issue_comments(client, "octo", "widgets", 7)

        assert result.success is True
        assert result.comments[0].author == "amy"
        assert result.comments[0].body == "LGTM"

    async def test_fetch_issue_comments_failure(self, client):
        with respx.mock:
            respx.get(f"{API}/repos/octo/widgets/issues/7/comments").mock(return_value=Response(500))
            result = await fetch_issue_comments(client, "octo", "widgets", 7)
        assert result.success is False

    async def test_create_issue_comment(self, client):
        with respx.mock:
            respx.post(f"{API}/repos/octo/widgets/issues/7/comments").mock(
                return_value=Response(201, json={"id": 5, "body": "thanks", "user": {"login": "me"}}),
            )
            result = await create_issue_comment(client, "octo", "widgets", 7, "thanks")

        assert result.success is True
        assert result.comment.id == 5
        assert result.comment.path == ""
        assert result.comment.line is None

    async def test_create_issue_comment_empty(self, client):
        result = await create_issue_comment(client, "octo", "widgets", 7, "")
        assert result.success is False

    @pytest.mark.parametrize("response", [Response(201, json={"body": "no id"}), Response(201, text="oops")])
    async def test_create_issue_comment_malformed_body(self, client, response):
        with respx.mock:
            respx.post(f"{API}/repos/octo/widgets/issues/7/comments").mock(return_value=response)
            result = await create_issue_comment(client, "octo", "widgets", 7, "thanks")
        assert result.success is False
        assert result.error == "Unexpected response from GitHub"
