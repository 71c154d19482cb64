"""Capability contracts the pipeline consumes from its collaborators.

Every call is expected to enforce its own timeout and raise on failure; the
stage that made the call turns the exception into an ERROR decision.
"""

from typing import Optional, Protocol, Sequence

from autoflow.schema import BuildResult, CodeUnit, IndexingResult, SearchMatch, TestResult


class CollaboratorError(RuntimeError):
    """Raised by collaborator implementations for failed or timed-out calls."""


class TextGenerator(Protocol):
    def generate(self, prompt: str) -> str: ...


class Embedder(Protocol):
    def embed(self, text: str) -> Sequence[float]: ...


class CodeSearch(Protocol):
    def search(self, vector: Sequence[float], repo_scope: str, top_n: int) -> list[SearchMatch]: ...


class DependencyGraph(Protocol):
    """Read access to the code knowledge graph."""

    def direct_dependencies(self, unit_id: str, repo_scope: str) -> list[str]: ...

    def direct_dependents(self, unit_id: str, repo_scope: str) -> list[str]: ...

    def find_by_domain(self, domains: set[str], repo_scope: str) -> list[CodeUnit]: ...

    def find_unit(self, qualified_name: str, repo_scope: str) -> Optional[CodeUnit]: ...

    def get_unit(self, unit_id: str) -> Optional[CodeUnit]: ...


class WorkspaceProvider(Protocol):
    def materialize_workspace(self, repo_ref: str, branch: str) -> str: ...


class CodeIndexer(Protocol):
    """Parses a workspace and replaces its repository in the graph and search index."""

    def index_workspace(self, workspace: str, repo: str) -> IndexingResult: ...


class BuildRunner(Protocol):
    def build_and_verify(self, workspace: str) -> BuildResult: ...


class TestRunner(Protocol):
    __test__ = False

    def run_tests(self, workspace: str) -> TestResult: ...


class ChangeRequestPublisher(Protocol):
    def open_change_request(self, workspace: str, branch: str, description: str) -> str: ...
