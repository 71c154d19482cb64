"""Index a checked-out workspace into the code graph and the search index."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional

from autoflow.collaborators.code_graph import CodeGraphStore
from autoflow.collaborators.search_index import CodeSearchIndex
from autoflow.collaborators.source_parser import JavaSourceParser, ParsedSource, domain_from_package
from autoflow.config import Settings, get_settings
from autoflow.schema import CandidateKind, CodeUnit, IndexingResult

logger = logging.getLogger(__name__)

# Build output and tooling directories that never hold sources to index
SKIPPED_DIRS = {".git", ".gradle", ".idea", "build", "node_modules", "out", "target"}


def find_sources(root: Path, include_tests: bool = False) -> list[Path]:
    """Java files under ``root``, skipping build output and, unless asked, test sources."""
    files = []
    for path in root.rglob("*.java"):
        parts = path.relative_to(root).parts
        if SKIPPED_DIRS.intersection(parts):
            continue
        if not include_tests and "test" in parts[:-1]:
            continue
        files.append(path)
    return sorted(files)


def build_units(repo: str, sources: list[ParsedSource]) -> list[CodeUnit]:
    """Turn parsed files into graph units with dependency edges.

    A referenced type name becomes an edge only when it resolves, through
    the file's imports or its own package, to a type declared in the repo.
    """
    declared = {parsed_type.qualified_name for source in sources for parsed_type in source.types}
    units: dict[str, CodeUnit] = {}

    for source in sources:
        domain = domain_from_package(source.package)
        for parsed_type in source.types:
            type_id = f"{repo}:{parsed_type.qualified_name}"
            dependencies = sorted(
                {
                    f"{repo}:{source.resolve(name)}"
                    for name in parsed_type.references
                    if source.resolve(name) in declared and source.resolve(name) != parsed_type.qualified_name
                }
            )
            units[type_id] = CodeUnit(
                id=type_id,
                repo=repo,
                qualified_name=parsed_type.qualified_name,
                kind=CandidateKind.TYPE,
                file_path=source.path,
                domain=domain,
                summary=parsed_type.summary,
                dependencies=dependencies,
            )
            for member in parsed_type.members:
                member_id = f"{type_id}.{member.name}"
                # overloads share one unit
                units.setdefault(
                    member_id,
                    CodeUnit(
                        id=member_id,
                        repo=repo,
                        qualified_name=f"{parsed_type.qualified_name}.{member.name}",
                        kind=member.kind,
                        file_path=source.path,
                        domain=domain,
                        summary=member.signature,
                        parent_id=type_id,
                    ),
                )
    return list(units.values())


class WorkspaceIndexer:
    """Parse a workspace's sources and replace its repository in the graph and search index.

    Files are parsed on a thread pool. A file that fails to parse is
    reported in the result and skipped; it never fails the whole run.
    """

    def __init__(
        self,
        graph: CodeGraphStore,
        search: Optional[CodeSearchIndex] = None,
        parser: Optional[JavaSourceParser] = None,
        settings: Optional[Settings] = None,
    ):
        self.graph = graph
        self.search = search
        self.parser = parser or JavaSourceParser()
        self.settings = settings or get_settings()
        self._lock = threading.Lock()

    def index_workspace(self, workspace: str, repo: str) -> IndexingResult:
        root = Path(workspace).resolve()
        files = find_sources(root, include_tests=self.settings.index_test_sources)
        logger.info("Found %d Java files to index in %s", len(files), root)

        with ThreadPoolExecutor(max_workers=self.settings.index_workers) as executor:
            sources = list(executor.map(lambda path: self.parser.parse_file(path, root), files))

        errors = [source.error for source in sources if source.error]
        for error in errors:
            logger.warning("Parse problem: %s", error)

        units = build_units(repo, sources)
        # One repository is re-indexed at a time; its units are replaced as a whole
        with self._lock:
            self.graph.replace_repo(repo, units)
            if self.search is not None:
                try:
                    self.search.replace_repo(repo, units)
                except (OSError, RuntimeError, ValueError) as e:
                    logger.warning("Search index not updated for %s: %s", repo, e)
                    errors.append(f"Search index not updated: {e}")

        result = IndexingResult(
            success=bool(units),
            files_processed=len(files),
            units_indexed=len(units),
            edges_indexed=sum(len(unit.dependencies) for unit in units),
            errors=errors if units else [*errors, f"No Java types found in {root}"],
        )
        logger.info(
            "Indexed %s: %d files, %d units, %d edges, %d errors",
            repo,
            result.files_processed,
            result.units_indexed,
            result.edges_indexed,
            len(result.errors),
        )
        return result
