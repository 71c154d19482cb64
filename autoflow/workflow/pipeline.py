"""Collaborator bundle shared by every workflow stage."""

import logging
from typing import Optional

from autoflow.collaborators import (
    BuildRunner,
    ChangeRequestPublisher,
    CodeGraphStore,
    CodeIndexer,
    CodeSearch,
    CodeSearchIndex,
    DependencyGraph,
    Embedder,
    GitHubPublisher,
    GitWorkspaceProvider,
    LLMClient,
    ShellBuildRunner,
    ShellTestRunner,
    TestRunner,
    TextEmbedder,
    TextGenerator,
    WorkspaceIndexer,
    WorkspaceProvider,
    extract_json,
    repo_name_from_ref,
)
from autoflow.config import Settings, get_settings
from autoflow.pipeline.state import PipelineState
from autoflow.scope import CandidateSelector, ContextAssembler

logger = logging.getLogger(__name__)


class AutoFlowPipeline:
    """Holds the collaborators the workflow stages call into."""

    def __init__(
        self,
        llm: TextGenerator,
        embedder: Embedder,
        search: CodeSearch,
        graph: DependencyGraph,
        workspaces: WorkspaceProvider,
        builder: BuildRunner,
        tester: TestRunner,
        publisher: ChangeRequestPublisher,
        indexer: CodeIndexer,
        settings: Optional[Settings] = None,
    ):
        """Initialize the pipeline.

        Args:
            llm: Text generation collaborator
            embedder: Embedding collaborator used for similarity search
            search: Vector search over indexed code units
            graph: Code knowledge graph
            workspaces: Source checkout provider
            builder: Compile/verify runner
            tester: Test runner
            publisher: Change request publisher
            indexer: Workspace parser feeding the graph and search index
            settings: Settings (global settings if not specified)
        """
        self.settings = settings or get_settings()
        self.llm = llm
        self.embedder = embedder
        self.search = search
        self.graph = graph
        self.workspaces = workspaces
        self.builder = builder
        self.tester = tester
        self.publisher = publisher
        self.indexer = indexer

        self.selector = CandidateSelector(llm, embedder, search, graph, self.settings)
        self.assembler = ContextAssembler(graph, self.settings)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "AutoFlowPipeline":
        """Build the default collaborators, loading any persisted index and graph."""
        settings = settings or get_settings()
        embedder = TextEmbedder()
        search = CodeSearchIndex(embedder=embedder, index_path=settings.index_dir)

        graph = CodeGraphStore()
        if settings.graph_path.exists():
            graph.load_jsonl(settings.graph_path)
        else:
            logger.info("No code graph at %s; repositories are indexed when first checked out", settings.graph_path)

        return cls(
            llm=LLMClient(),
            embedder=embedder,
            search=search,
            graph=graph,
            workspaces=GitWorkspaceProvider(),
            builder=ShellBuildRunner(),
            tester=ShellTestRunner(),
            publisher=GitHubPublisher(),
            indexer=WorkspaceIndexer(graph, search, settings=settings),
            settings=settings,
        )

    def generate_json(self, prompt: str) -> dict:
        """Run a generation call and parse its JSON object.

        Raises:
            ValueError: If the response holds no JSON object.
        """
        return extract_json(self.llm.generate(prompt))

    @staticmethod
    def repo_scope(state: PipelineState) -> str:
        return repo_name_from_ref(state.repo_ref)
