"""
GitHub connection handler for the `connection` tool.

Uses the GitHub REST API with a personal access token (GITHUB_TOKEN).
"""

import base64
from typing import Any, Callable, Dict, List, Optional

import httpx
from loguru import logger

from devify.services.connections import ConnectionHandler, ConnectionManager, ConnectorError

API_BASE = "https://api.github.com"


class GitHubHandler(ConnectionHandler):
    """Repositories, branches, files, commits and pull requests."""

    name = "github"
    display_name = "GitHub"

    def __init__(self, client: Optional[httpx.Client] = None, timeout: float = 30.0):
        """
        Args:
            client: HTTP client (defaults to one pointed at api.github.com)
            timeout: Request timeout in seconds
        """
        self.client = client or httpx.Client(base_url=API_BASE, timeout=timeout)
        self._actions: Dict[str, Callable[[Dict[str, Any], str], Any]] = {
            "list_repos": self._list_repos,
            "get_repo": self._get_repo,
            "create_repo": self._create_repo,
            "list_branches": self._list_branches,
            "get_file": self._get_file,
            "put_file": self._put_file,
            "list_commits": self._list_commits,
            "list_prs": self._list_prs,
            "create_pr": self._create_pr,
        }

    def actions(self) -> List[str]:
        return sorted(self._actions)

    def _request(self, method: str, path: str, token: str, **kwargs) -> Any:
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "devify",
        }
        try:
            response = self.client.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise ConnectorError(f"GitHub request failed: {e}") from e

        if response.is_error:
            try:
                message = response.json().get("message")
            except ValueError:
                message = None
            raise ConnectorError(message or f"GitHub API error: {response.status_code}")
        return response.json()

    def account(self, token: str) -> str:
        """Login name the token belongs to."""
        user = self._request("GET", "/user", token)
        return user.get("login") or str(user.get("id", ""))

    def execute(self, action: str, params: Dict[str, Any], token: str) -> Any:
        handler = self._actions.get(action)
        if handler is None:
            raise ConnectorError(f'Unknown GitHub action: "{action}". Available: {", ".join(self.actions())}')
        logger.debug(f"GitHub {action} {sorted(params)}")
        return handler(params, token)

    @staticmethod
    def _repo_path(params: Dict[str, Any]) -> str:
        owner, repo = params.get("owner"), params.get("repo")
        if not owner or not repo:
            raise ConnectorError("Missing 'owner' or 'repo' parameter")
        return f"/repos/{owner}/{repo}"

    def _list_repos(self, params, token):
        query = {
            "sort": params.get("sort", "updated"),
            "per_page": params.get("per_page", 30),
            "page": params.get("page", 1),
        }
        return self._request("GET", "/user/repos", token, params=query)

    def _get_repo(self, params, token):
        return self._request("GET", self._repo_path(params), token)

    def _create_repo(self, params, token):
        if not params.get("name"):
            raise ConnectorError("Missing 'name' parameter")
        body = {
            "name": params["name"],
            "description": params.get("description", ""),
            "private": params.get("private", True),
            "auto_init": params.get("auto_init", True),
        }
        return self._request("POST", "/user/repos", token, json=body)

    def _list_branches(self, params, token):
        return self._request("GET", f"{self._repo_path(params)}/branches", token)

    def _get_file(self, params, token):
        query = {"ref": params["ref"]} if params.get("ref") else None
        return self._request("GET", f"{self._repo_path(params)}/contents/{params.get('path', '')}", token, params=query)

    def _put_file(self, params, token):
        path = params.get("path")
        if not path or params.get("content") is None:
            raise ConnectorError("Missing 'path' or 'content' parameter")
        body = {
            "message": params.get("message") or f"Update {path}",
            "content": base64.b64encode(str(params["content"]).encode("utf-8")).decode("ascii"),
        }
        for key in ("branch", "sha"):
            if params.get(key):
                body[key] = params[key]
        return self._request("PUT", f"{self._repo_path(params)}/contents/{path}", token, json=body)

    def _list_commits(self, params, token):
        query = {"per_page": params.get("per_page", 10)}
        if params.get("sha"):
            query["sha"] = params["sha"]
        return self._request("GET", f"{self._repo_path(params)}/commits", token, params=query)

    def _list_prs(self, params, token):
        return self._request("GET", f"{self._repo_path(params)}/pulls", token, params={"state": params.get("state", "open")})

    def _create_pr(self, params, token):
        if not params.get("title") or not params.get("head"):
            raise ConnectorError("Missing 'title' or 'head' parameter")
        body = {
            "title": params["title"],
            "body": params.get("body", ""),
            "head": params["head"],
            "base": params.get("base", "main"),
        }
        return self._request("POST", f"{self._repo_path(params)}/pulls", token, json=body)


def default_connections(token: Optional[str] = None, client: Optional[httpx.Client] = None) -> ConnectionManager:
    """
    ConnectionManager with the built-in handlers registered, and GitHub
    connected when a token is available.
    """
    manager = ConnectionManager()
    github = GitHubHandler(client=client)
    manager.register(github)
    if token:
        try:
            manager.connect("github", token, account=github.account(token))
        except ConnectorError as e:
            logger.warning(f"GitHub token rejected, staying disconnected: {e}")
    return manager
