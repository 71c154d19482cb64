"""Collaborator contracts and their default implementations."""

from autoflow.collaborators.code_graph import CodeGraphStore
from autoflow.collaborators.embedder import TextEmbedder
from autoflow.collaborators.git_workspace import GitWorkspaceProvider, repo_name_from_ref
from autoflow.collaborators.github import GitHubPublisher
from autoflow.collaborators.indexer import WorkspaceIndexer
from autoflow.collaborators.llm_client import LLMClient, extract_json
from autoflow.collaborators.protocols import (
    BuildRunner,
    ChangeRequestPublisher,
    CodeIndexer,
    CodeSearch,
    CollaboratorError,
    DependencyGraph,
    Embedder,
    TestRunner,
    TextGenerator,
    WorkspaceProvider,
)
from autoflow.collaborators.search_index import CodeSearchIndex
from autoflow.collaborators.shell import ShellBuildRunner, ShellTestRunner

__all__ = [
    "BuildRunner",
    "ChangeRequestPublisher",
    "CodeIndexer",
    "CodeSearch",
    "CollaboratorError",
    "DependencyGraph",
    "Embedder",
    "TestRunner",
    "TextGenerator",
    "WorkspaceProvider",
    "CodeGraphStore",
    "CodeSearchIndex",
    "GitHubPublisher",
    "GitWorkspaceProvider",
    "LLMClient",
    "ShellBuildRunner",
    "ShellTestRunner",
    "TextEmbedder",
    "WorkspaceIndexer",
    "extract_json",
    "repo_name_from_ref",
]
