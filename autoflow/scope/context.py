"""Context assembly for the files in an approved scope."""

import logging
from pathlib import Path
from typing import Optional

from autoflow.collaborators.protocols import DependencyGraph
from autoflow.config import Settings, get_settings
from autoflow.schema import (
    DomainContext,
    FileAction,
    FileActionKind,
    FileContext,
    ScopeProposal,
    StructuredContext,
)

logger = logging.getLogger(__name__)


class ContextAssembler:
    """Resolve file contents and one-hop graph neighbours for a scope.

    Dependencies and dependents are attached as id lists, never as full
    bodies. ``confidence`` is the share of requested files that resolved.
    """

    def __init__(self, graph: DependencyGraph, settings: Optional[Settings] = None):
        self.graph = graph
        self.settings = settings or get_settings()

    def assemble(
        self,
        proposal: ScopeProposal,
        workspace: str,
        repo_scope: str,
        domain: str,
    ) -> StructuredContext:
        root = Path(workspace).resolve()
        # A path listed twice is resolved once; the first listing decides its action
        actions: dict[str, FileAction] = {}
        for action in proposal.all_actions():
            actions.setdefault(action.path, action)
        test_only = {action.path for action in proposal.tests_to_update} - {
            action.path for action in [*proposal.files_to_modify, *proposal.files_to_create]
        }

        file_contexts: dict[str, FileContext] = {}
        unresolved: list[str] = []
        for path, action in actions.items():
            context = self._resolve(action, root, repo_scope, allow_missing=path in test_only)
            if context is None:
                unresolved.append(path)
            else:
                file_contexts[path] = context

        confidence = len(file_contexts) / len(actions) if actions else 0.0
        logger.info(
            "Resolved %d/%d files for %s (confidence %.2f)",
            len(file_contexts),
            len(actions),
            repo_scope,
            confidence,
        )
        return StructuredContext(
            file_contexts=file_contexts,
            domain_context=DomainContext(domain=domain or "unknown"),
            confidence=confidence,
            unresolved=unresolved,
        )

    def is_confident(self, context: StructuredContext) -> bool:
        return context.confidence >= self.settings.context_confidence_floor

    def _resolve(
        self,
        action: FileAction,
        root: Path,
        repo_scope: str,
        allow_missing: bool = False,
    ) -> Optional[FileContext]:
        """Build the FileContext for one action, or None if it cannot be resolved.

        Paths that leave the workspace (absolute, or through "..") never resolve.
        """
        target_methods = [m.name for m in action.target_methods]

        file_path = (root / action.path).resolve()
        try:
            file_path.relative_to(root)
        except ValueError:
            logger.warning("Path in scope is outside the workspace: %s", action.path)
            return None

        if action.kind == FileActionKind.CREATE:
            return FileContext(
                path=action.path,
                exists=False,
                purpose=action.reason,
                target_methods=target_methods,
            )

        try:
            current_code = file_path.read_text()
        except FileNotFoundError:
            if allow_missing:
                return FileContext(path=action.path, exists=False, purpose=action.reason)
            logger.warning("File in scope not found: %s", file_path)
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Could not read %s: %s", file_path, e)
            return None

        dependencies: list[str] = []
        dependents: list[str] = []
        unit = self.graph.find_unit(action.target_symbol, repo_scope) if action.target_symbol else None
        if unit is not None:
            dependencies = self.graph.direct_dependencies(unit.id, repo_scope)
            dependents = self.graph.direct_dependents(unit.id, repo_scope)

        return FileContext(
            path=action.path,
            current_code=current_code,
            exists=True,
            purpose=action.reason,
            dependencies=dependencies,
            dependents=dependents,
            target_methods=target_methods,
        )
