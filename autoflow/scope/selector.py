"""Multi-strategy candidate selection for a change request."""

import logging
from typing import Iterable, Optional

from autoflow.collaborators.protocols import CodeSearch, DependencyGraph, Embedder, TextGenerator
from autoflow.config import Settings, get_settings, parse_multi_value
from autoflow.prompts import load_prompt_template
from autoflow.schema import (
    Candidate,
    CandidateKind,
    FileAction,
    FileActionKind,
    RequirementAnalysis,
    ScopeProposal,
    SearchMatch,
    TargetMethod,
)
from autoflow.scope.parsing import Fallback, Parsed, ScopeParseResult, ScopeSelection, parse_scope_response
from autoflow.scope.threshold import adaptive_threshold

logger = logging.getLogger(__name__)

_PURPOSE_BY_SUFFIX = [
    ("Controller", "REST API endpoint"),
    ("Service", "Business logic"),
    ("Repository", "Data access"),
    ("Client", "External API client"),
    ("Agent", "Workflow agent"),
    ("Utils", "Utility functions"),
    ("Util", "Utility functions"),
    ("Config", "Configuration"),
    ("Test", "Test class"),
]


def split_symbol(match: SearchMatch) -> tuple[str, Optional[str], CandidateKind]:
    """Split a match into (owning type name, member name or None, member kind).

    Without an explicit kind, a lower-case last segment (or one ending in
    ``_field``) is read as a member of the preceding type.
    """
    name = match.symbol_name or match.id.split(":", 1)[-1]
    head, _, last = name.rpartition(".")

    if match.kind == CandidateKind.TYPE or not head:
        return name, None, CandidateKind.TYPE
    if match.kind in (CandidateKind.METHOD, CandidateKind.FIELD):
        return head, last, match.kind
    if last.endswith("_field"):
        return head, last, CandidateKind.FIELD
    if last[:1].islower():
        return head, last, CandidateKind.METHOD
    return name, None, CandidateKind.TYPE


def infer_purpose(candidate: Candidate) -> str:
    if candidate.summary:
        purpose = candidate.summary
    else:
        purpose = next(
            (text for suffix, text in _PURPOSE_BY_SUFFIX if candidate.simple_name.endswith(suffix)),
            "Component",
        )
    if candidate.domain_tag:
        purpose += f" (domain: {candidate.domain_tag})"
    return purpose


def _truncate(text: str, limit: int) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[:limit] + "..."


class CandidateSelector:
    """Collect, rank and narrow the code units a change should touch.

    Candidates come from three strategies: exact domain match, similarity
    search with an adaptive cutoff, and one-hop dependency expansion within
    the requirement's domain. A generation call then picks the files.
    """

    def __init__(
        self,
        generator: TextGenerator,
        embedder: Embedder,
        search: CodeSearch,
        graph: DependencyGraph,
        settings: Optional[Settings] = None,
    ):
        self.generator = generator
        self.embedder = embedder
        self.search = search
        self.graph = graph
        self.settings = settings or get_settings()

    def collect(
        self,
        analysis: RequirementAnalysis,
        requirement_text: str,
        repo_scope: str,
    ) -> list[Candidate]:
        """Run the three strategies and return deduplicated, ranked candidates."""
        domains = parse_multi_value(analysis.domain)
        selected: dict[str, Candidate] = {}

        # Strategy 1: domain filter
        for unit in self.graph.find_by_domain(domains, repo_scope):
            selected.setdefault(unit.qualified_name, Candidate.from_unit(unit))
        domain_count = len(selected)

        # Strategy 2: similarity search
        self._add_similarity_matches(analysis.summary or requirement_text, repo_scope, selected)
        similarity_count = len(selected) - domain_count

        # Strategy 3: dependency expansion
        self._expand_dependencies(selected, domains, repo_scope)

        logger.info(
            "Candidates for %s: %d domain, %d similarity, %d expansion",
            repo_scope,
            domain_count,
            similarity_count,
            len(selected) - domain_count - similarity_count,
        )
        return self.rank(selected.values())

    @staticmethod
    def rank(candidates: Iterable[Candidate]) -> list[Candidate]:
        return sorted(candidates, key=lambda c: -c.relevance_score)

    def _add_similarity_matches(
        self,
        query: str,
        repo_scope: str,
        selected: dict[str, Candidate],
    ) -> None:
        vector = self.embedder.embed(query)
        matches = sorted(
            self.search.search(vector, repo_scope, self.settings.similarity_top_n),
            key=lambda m: -m.score,
        )
        threshold = adaptive_threshold(
            [m.score for m in matches],
            significant_gap=self.settings.significant_gap,
            floor=self.settings.threshold_floor,
            ceiling=self.settings.threshold_ceiling,
        )
        kept = [m for m in matches if m.score >= threshold][: self.settings.max_similarity_chunks]
        logger.debug("Similarity threshold %.2f kept %d/%d matches", threshold, len(kept), len(matches))

        new_types = 0
        for match in kept:
            owner_name, member, member_kind = split_symbol(match)
            unit = self.graph.find_unit(owner_name, repo_scope)
            key = unit.qualified_name if unit else owner_name
            candidate = selected.get(key)

            if candidate is None:
                if new_types >= self.settings.max_similarity_types:
                    continue
                if unit is not None:
                    candidate = Candidate.from_unit(unit)
                else:
                    owner_id = match.id if member is None else match.id.rsplit(".", 1)[0]
                    candidate = Candidate(id=owner_id, qualified_name=owner_name, file_path=match.file_path)
                selected[key] = candidate
                new_types += 1

            candidate.relevance_score = max(candidate.relevance_score, match.score)
            if member and all(t.name != member for t in candidate.target_methods):
                candidate.target_methods.append(
                    TargetMethod(
                        name=member,
                        score=match.score,
                        kind=member_kind,
                        snippet=_truncate(match.snippet, self.settings.snippet_chars),
                    )
                )

    def _expand_dependencies(
        self,
        selected: dict[str, Candidate],
        domains: set[str],
        repo_scope: str,
    ) -> None:
        for candidate in list(selected.values()):
            dependency_ids = self.graph.direct_dependencies(candidate.id, repo_scope)
            if dependency_ids:
                candidate.dependency_edges = list(dependency_ids)
            for dependency_id in dependency_ids:
                unit = self.graph.get_unit(dependency_id)
                if unit is None or unit.qualified_name in selected:
                    continue
                if unit.domain and unit.domain.lower() in domains:
                    selected[unit.qualified_name] = Candidate.from_unit(unit)

    def format_candidates(self, candidates: list[Candidate]) -> str:
        """Render candidates for the selection prompt."""
        parts = []
        limit = self.settings.max_prompt_dependencies
        for i, candidate in enumerate(candidates, 1):
            dependencies = [d.rsplit(".", 1)[-1] for d in candidate.dependency_edges[:limit]]
            lines = [
                f"{i}. {candidate.qualified_name}",
                f"   File: {candidate.file_path or 'unknown'}",
                f"   Purpose: {infer_purpose(candidate)}",
                f"   Dependencies: {', '.join(dependencies) if dependencies else 'None'}",
            ]
            if candidate.target_methods:
                lines.append("   Target methods:")
                for target in candidate.target_methods:
                    lines.append(
                        f"     - {target.name} (score {target.score:.2f}, {target.kind.value}): {target.snippet}"
                    )
            parts.append("\n".join(lines))
        return "\n\n".join(parts)

    def build_prompt(
        self,
        requirement_text: str,
        analysis: RequirementAnalysis,
        candidates: list[Candidate],
        feedback: str = "",
    ) -> str:
        return load_prompt_template("scope_selection").format(
            requirement=requirement_text,
            summary=analysis.summary or requirement_text,
            candidates=self.format_candidates(candidates),
            feedback=feedback or "(none)",
        )

    def select(
        self,
        requirement_text: str,
        analysis: RequirementAnalysis,
        candidates: list[Candidate],
        feedback: str = "",
    ) -> tuple[ScopeProposal, ScopeParseResult]:
        """Ask the generator to choose files among candidates.

        Returns:
            The proposal and the parse result it was built from; a
            ``Fallback`` result means the proposal is the top-ranked
            candidates rather than the generator's choice.
        """
        prompt = self.build_prompt(requirement_text, analysis, candidates, feedback)
        try:
            result = parse_scope_response(self.generator.generate(prompt))
        except Exception as e:
            logger.warning("Scope selection call failed: %s", e)
            result = Fallback(reason=f"Generation failed: {e}")

        if isinstance(result, Parsed):
            return self._proposal_from_selection(result.selection, candidates), result

        logger.warning("Scope selection fell back to top candidates: %s", result.reason)
        return self.fallback_proposal(candidates, result.reason), result

    def fallback_proposal(self, candidates: list[Candidate], reason: str) -> ScopeProposal:
        """Deterministic proposal from the top-ranked candidates."""
        top = candidates[: self.settings.fallback_scope_size]
        return ScopeProposal(
            files_to_modify=[self._modify_action(c.file_path or c.qualified_name, c) for c in top],
            reasoning=f"Fallback - LLM analysis failed ({reason})",
            estimated_complexity=5,
            risks=["Scope was chosen by ranking alone; review it carefully"],
        )

    def _proposal_from_selection(
        self,
        selection: ScopeSelection,
        candidates: list[Candidate],
    ) -> ScopeProposal:
        return ScopeProposal(
            files_to_modify=[
                self._modify_action(path, _match_candidate(path, candidates))
                for path in _unique(selection.files_to_modify)
            ],
            files_to_create=[
                FileAction(path=path, kind=FileActionKind.CREATE, reason="New file needed")
                for path in _unique(selection.files_to_create)
            ],
            tests_to_update=[
                FileAction(path=path, kind=FileActionKind.MODIFY, reason="Update tests")
                for path in _unique(selection.tests_to_update)
            ],
            reasoning=selection.reasoning,
            estimated_complexity=max(1, min(10, selection.estimated_complexity)),
            risks=selection.risks,
        )

    @staticmethod
    def _modify_action(path: str, candidate: Optional[Candidate]) -> FileAction:
        if candidate is None:
            return FileAction(path=path, kind=FileActionKind.MODIFY, reason="Selected by scope analysis")
        return FileAction(
            path=path,
            kind=FileActionKind.MODIFY,
            target_symbol=candidate.qualified_name,
            target_methods=list(candidate.target_methods),
            reason=infer_purpose(candidate),
        )


def _unique(paths: list[str]) -> list[str]:
    return list(dict.fromkeys(p.strip() for p in paths if p.strip()))


def _match_candidate(path: str, candidates: list[Candidate]) -> Optional[Candidate]:
    """Candidate whose file is ``path``, else whose simple name appears in it."""
    for candidate in candidates:
        if candidate.file_path and (
            candidate.file_path == path
            or path.endswith(candidate.file_path)
            or candidate.file_path.endswith(path)
        ):
            return candidate
    for candidate in candidates:
        if candidate.simple_name and candidate.simple_name in path:
            return candidate
    return None
