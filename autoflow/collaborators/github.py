"""Publish a workspace branch as a GitHub pull request."""

import logging
import re
import shlex
from typing import Optional

import requests

from autoflow.collaborators.protocols import CollaboratorError
from autoflow.collaborators.shell import run_command
from autoflow.config import get_settings

logger = logging.getLogger(__name__)

_GITHUB_REMOTE = re.compile(r"github\.com[/:]([^/]+)/([^/]+?)(?:\.git)?/?$")


def parse_github_remote(remote_url: str) -> tuple[str, str]:
    """(owner, repo) from an https or ssh GitHub remote URL."""
    match = _GITHUB_REMOTE.search(remote_url.strip())
    if not match:
        raise CollaboratorError(f"Not a GitHub remote: {remote_url}")
    return match.group(1), match.group(2)


class GitHubPublisher:
    """Commit, push and open a pull request through the GitHub REST API."""

    def __init__(self, token: Optional[str] = None, timeout: Optional[int] = None):
        self.settings = get_settings()
        self.token = token or self.settings.github_token
        self.timeout = timeout or self.settings.command_timeout_seconds
        self.session = requests.Session()
        if self.token:
            self.session.headers["Authorization"] = f"token {self.token}"
        self.session.headers["Accept"] = "application/vnd.github.v3+json"
        self.session.headers["User-Agent"] = "autoflow"

    def _git(self, workspace: str, args: str) -> str:
        code, output = run_command(f"git {args}", workspace, self.timeout)
        if code != 0:
            raise CollaboratorError(f"git {args} failed: {output.strip()[-500:]}")
        return output.strip()

    def open_change_request(
        self,
        workspace: str,
        branch: str,
        description: str,
        base_branch: Optional[str] = None,
    ) -> str:
        """Push ``branch`` with all workspace changes and open a pull request.

        Returns:
            URL of the pull request
        """
        title = (description.strip().splitlines() or ["AutoFlow change"])[0].lstrip("# ")[:120]

        self._git(workspace, f"checkout -B {shlex.quote(branch)}")
        self._git(workspace, "add -A")
        self._git(workspace, f"commit -m {shlex.quote('AutoFlow: ' + title)}")
        self._git(workspace, f"push -u origin {shlex.quote(branch)}")

        owner, repo = parse_github_remote(self._git(workspace, "remote get-url origin"))
        response = self.session.post(
            f"{self.settings.github_api_url}/repos/{owner}/{repo}/pulls",
            json={
                "title": title,
                "head": branch,
                "base": base_branch or self.settings.default_branch,
                "body": description,
            },
            timeout=30,
        )
        if response.status_code >= 400:
            raise CollaboratorError(
                f"GitHub rejected pull request ({response.status_code}): {response.text[:300]}"
            )

        url = response.json()["html_url"]
        logger.info("Opened pull request %s", url)
        return url
