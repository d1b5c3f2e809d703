"""
Tests for the GitHub connection handler, against a mocked HTTP transport.
"""

import base64
import json
import tempfile
from pathlib import Path

import httpx
import pytest

from devify.core.rate_limiter import RateLimiter
from devify.core.tool_executors import ToolExecutor
from devify.core.tool_parser import ToolCall
from devify.services.connections import ConnectorError
from devify.services.github import API_BASE, GitHubHandler, default_connections


class FakeGitHub:
    """Records requests and answers from a route table."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        if key not in self.routes:
            return httpx.Response(404, json={"message": "Not Found"})
        status, body = self.routes[key]
        return httpx.Response(status, json=body)

    def client(self):
        return httpx.Client(base_url=API_BASE, transport=httpx.MockTransport(self))


@pytest.fixture
def github():
    return FakeGitHub({
        ("GET", "/user"): (200, {"login": "octo", "id": 1}),
        ("GET", "/user/repos"): (200, [{"full_name": "octo/site"}]),
        ("PUT", "/repos/octo/site/contents/index.html"): (201, {"content": {"path": "index.html"}}),
        ("GET", "/repos/octo/private"): (403, {"message": "Resource not accessible by integration"}),
    })


class TestGitHubHandler:
    def test_list_repos_sends_token(self, github):
        handler = GitHubHandler(client=github.client())

        repos = handler.execute("list_repos", {}, "t0k")

        assert repos == [{"full_name": "octo/site"}]
        request = github.requests[0]
        assert request.headers["Authorization"] == "Bearer t0k"
        assert request.url.params["sort"] == "updated"

    def test_put_file_encodes_content(self, github):
        handler = GitHubHandler(client=github.client())

        handler.execute("put_file", {"owner": "octo", "repo": "site", "path": "index.html", "content": "<h1>Hi</h1>"}, "t0k")

        body = json.loads(github.requests[0].content)
        assert base64.b64decode(body["content"]).decode() == "<h1>Hi</h1>"
        assert body["message"] == "Update index.html"

    def test_api_error_message(self, github):
        handler = GitHubHandler(client=github.client())

        with pytest.raises(ConnectorError, match="Resource not accessible"):
            handler.execute("get_repo", {"owner": "octo", "repo": "private"}, "t0k")

    def test_missing_repo_params(self, github):
        with pytest.raises(ConnectorError, match="owner"):
            GitHubHandler(client=github.client()).execute("list_branches", {}, "t0k")
        assert github.requests == []

    def test_unknown_action_lists_actions(self, github):
        with pytest.raises(ConnectorError, match="list_repos"):
            GitHubHandler(client=github.client()).execute("launch", {}, "t0k")


class TestDefaultConnections:
    def test_without_token(self, github):
        manager = default_connections(None, client=github.client())

        assert manager.connected_providers() == []
        assert manager.summary() == "No external services connected."
        assert github.requests == []

    def test_with_token(self, github):
        manager = default_connections("t0k", client=github.client())

        assert manager.is_connected("github")
        summary = manager.summary()
        assert "- GitHub: Connected (octo)" in summary
        assert "list_repos" in summary

    def test_rejected_token(self):
        fake = FakeGitHub({("GET", "/user"): (401, {"message": "Bad credentials"})})

        manager = default_connections("bad", client=fake.client())

        assert not manager.is_connected("github")

    def test_connection_tool_end_to_end(self, github):
        manager = default_connections("t0k", client=github.client())
        with tempfile.TemporaryDirectory() as tmpdir:
            executor = ToolExecutor(Path(tmpdir), rate_limiter=RateLimiter(limits={}), connections=manager)

            result = executor.execute(ToolCall(
                name="connection",
                arguments={"provider": "github", "action": "list_repos", "params": {}},
            ))

        assert result.success is True
        assert json.loads(result.message) == [{"full_name": "octo/site"}]
