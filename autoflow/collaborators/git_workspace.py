"""Source checkout through the git command line."""

import logging
import re
import shutil
from pathlib import Path
from typing import Optional

from autoflow.collaborators.protocols import CollaboratorError
from autoflow.collaborators.shell import run_command
from autoflow.config import get_settings

logger = logging.getLogger(__name__)

_SAFE_BRANCH = re.compile(r"^[A-Za-z0-9._/-]+$")


def repo_name_from_ref(repo_ref: str) -> str:
    """Repository name from a clone URL, browse URL or local path.

    >>> repo_name_from_ref("https://github.com/acme/shop/tree/develop")
    'shop'
    """
    ref = repo_ref.strip().rstrip("/")
    if "/tree/" in ref:
        ref = ref.split("/tree/", 1)[0]
    name = re.split(r"[/:]", ref)[-1] if ref else ""
    if name.endswith(".git"):
        name = name[:-4]
    return name or "repository"


def validate_branch(branch: str) -> str:
    if not branch or not _SAFE_BRANCH.match(branch) or branch.startswith("-") or ".." in branch:
        raise CollaboratorError(f"Invalid branch name: {branch!r}")
    return branch


class GitWorkspaceProvider:
    """Clone a repository once per name and fast-forward it on reuse."""

    def __init__(self, root: Optional[Path] = None, timeout: Optional[int] = None):
        settings = get_settings()
        self.root = Path(root or settings.workspace_root)
        self.timeout = timeout or settings.command_timeout_seconds

    def _git(self, args: str, cwd: Path) -> str:
        code, output = run_command(f"git {args}", str(cwd), self.timeout)
        if code != 0:
            raise CollaboratorError(f"git {args} failed: {output.strip()[-500:]}")
        return output

    def materialize_workspace(self, repo_ref: str, branch: str) -> str:
        """Return a local checkout of ``repo_ref`` at ``branch``.

        Existing local directories are used in place.
        """
        validate_branch(branch)
        local = Path(repo_ref).expanduser()
        if local.is_dir():
            return str(local.resolve())

        workspace = self.root / repo_name_from_ref(repo_ref)
        if (workspace / ".git").is_dir():
            try:
                self._git(f"fetch origin {branch}", workspace)
                self._git(f"checkout {branch}", workspace)
                self._git(f"pull --ff-only origin {branch}", workspace)
                return str(workspace.resolve())
            except CollaboratorError as e:
                logger.warning("Reusing %s failed, re-cloning: %s", workspace, e)
                shutil.rmtree(workspace)

        self.root.mkdir(parents=True, exist_ok=True)
        clone_url = repo_ref.split("/tree/", 1)[0]
        self._git(f"clone --branch {branch} {clone_url} {workspace.resolve()}", self.root)
        return str(workspace.resolve())
