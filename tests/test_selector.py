"""Tests for candidate collection and scope selection."""

import json
from unittest.mock import MagicMock

import pytest

from autoflow.pipeline import DecisionKind, PipelineState
from autoflow.schema import (
    Candidate,
    CandidateKind,
    CodeUnit,
    FileActionKind,
    RequirementAnalysis,
    SearchMatch,
    TaskType,
)
from autoflow.scope import CandidateSelector, Fallback, Parsed
from autoflow.scope.selector import infer_purpose, split_symbol
from autoflow.stages import make_scope_discovery_node

from conftest import ORDER_SERVICE, ORDER_SERVICE_TEST, ScriptedLLM


@pytest.fixture
def analysis() -> RequirementAnalysis:
    return RequirementAnalysis(
        task_type=TaskType.BUG_FIX,
        domain="order",
        summary="fix null pointer in OrderService.process",
        confidence=0.9,
        data_sources=["code"],
        modifies_code=True,
    )


@pytest.fixture
def empty_graph() -> MagicMock:
    graph = MagicMock()
    graph.find_by_domain.return_value = []
    graph.find_unit.return_value = None
    graph.get_unit.return_value = None
    graph.direct_dependencies.return_value = []
    return graph


@pytest.fixture
def embedder() -> MagicMock:
    embedder = MagicMock()
    embedder.embed.return_value = [0.1, 0.2, 0.3]
    return embedder


def search_returning(*matches) -> MagicMock:
    search = MagicMock()
    search.search.return_value = list(matches)
    return search


def selection_response(**fields) -> str:
    return "```json\n" + json.dumps(fields) + "\n```"


def ranked_candidates(count: int) -> list[Candidate]:
    return [
        Candidate(
            id=f"shop:com.acme.order.Part{i}",
            qualified_name=f"com.acme.order.Part{i}",
            file_path=f"src/main/java/com/acme/order/Part{i}.java",
            relevance_score=1.0 - i * 0.1,
        )
        for i in range(count)
    ]


class TestSplitSymbol:
    """Tests for reading owner and member from a search match."""

    def test_method_kind(self):
        match = SearchMatch(id="x", score=0.9, symbol_name="com.acme.OrderService.process", kind=CandidateKind.METHOD)
        assert split_symbol(match) == ("com.acme.OrderService", "process", CandidateKind.METHOD)

    def test_lowercase_member_read_as_method(self):
        match = SearchMatch(id="x", score=0.9, symbol_name="com.acme.OrderService.process")
        assert split_symbol(match)[1] == "process"

    def test_type_name(self):
        match = SearchMatch(id="x", score=0.9, symbol_name="com.acme.OrderService")
        assert split_symbol(match) == ("com.acme.OrderService", None, CandidateKind.TYPE)

    def test_field_suffix(self):
        match = SearchMatch(id="x", score=0.9, symbol_name="com.acme.Order.total_field")
        assert split_symbol(match)[2] == CandidateKind.FIELD


class TestCollect:
    """Tests for the three candidate strategies."""

    def test_similarity_match_on_method(self, analysis, empty_graph, embedder, settings):
        match = SearchMatch(
            id="shop:com.acme.order.OrderService.process",
            score=0.93,
            symbol_name="com.acme.order.OrderService.process",
            kind=CandidateKind.METHOD,
            file_path=ORDER_SERVICE,
            snippet="void process(Order order) { order.getCustomer().notify(); }",
        )
        selector = CandidateSelector(MagicMock(), embedder, search_returning(match), empty_graph, settings)

        candidates = selector.collect(analysis, "fix null pointer in OrderService.process", "shop")

        assert len(candidates) == 1
        candidate = candidates[0]
        assert candidate.qualified_name == "com.acme.order.OrderService"
        assert candidate.file_path == ORDER_SERVICE
        assert candidate.relevance_score == pytest.approx(0.93)
        assert [t.name for t in candidate.target_methods] == ["process"]
        empty_graph.find_by_domain.assert_called_once_with({"order"}, "shop")

    def test_domain_and_similarity_are_deduplicated(self, analysis, code_graph, embedder, settings):
        matches = [
            SearchMatch(id="a", score=0.92, symbol_name="com.acme.order.OrderService.process"),
            SearchMatch(id="b", score=0.90, symbol_name="com.acme.order.OrderService.cancel"),
        ]
        selector = CandidateSelector(MagicMock(), embedder, search_returning(*matches), code_graph, settings)

        candidates = selector.collect(analysis, "fix order processing", "shop")
        names = [c.qualified_name for c in candidates]

        assert names.count("com.acme.order.OrderService") == 1
        service = candidates[0]
        assert service.qualified_name == "com.acme.order.OrderService"
        assert service.relevance_score == pytest.approx(0.92)
        assert [t.name for t in service.target_methods] == ["process", "cancel"]
        assert "com.acme.order.OrderRepository" in names

    def test_matches_below_threshold_dropped(self, analysis, empty_graph, embedder, settings):
        matches = [
            SearchMatch(id="a", score=0.9, symbol_name="com.acme.order.OrderService"),
            SearchMatch(id="b", score=0.3, symbol_name="com.acme.misc.Unrelated"),
        ]
        selector = CandidateSelector(MagicMock(), embedder, search_returning(*matches), empty_graph, settings)

        candidates = selector.collect(analysis, "order", "shop")
        assert [c.qualified_name for c in candidates] == ["com.acme.order.OrderService"]

    def test_new_types_from_similarity_are_capped(self, analysis, empty_graph, embedder, settings):
        matches = [
            SearchMatch(id=f"t{i}", score=0.9, symbol_name=f"com.acme.order.Type{i}") for i in range(5)
        ]
        selector = CandidateSelector(MagicMock(), embedder, search_returning(*matches), empty_graph, settings)

        candidates = selector.collect(analysis, "order", "shop")
        assert len(candidates) == settings.max_similarity_types

    def test_dependencies_in_domain_are_added(self, analysis, embedder, settings):
        service = CodeUnit(id="s", repo="shop", qualified_name="com.acme.order.OrderService", domain="order")
        repository = CodeUnit(id="r", repo="shop", qualified_name="com.acme.order.OrderRepository", domain="order")
        gateway = CodeUnit(id="g", repo="shop", qualified_name="com.acme.payment.Gateway", domain="payment")

        graph = MagicMock()
        graph.find_by_domain.return_value = [service]
        graph.direct_dependencies.side_effect = lambda unit_id, repo: ["r", "g"] if unit_id == "s" else []
        graph.get_unit.side_effect = {"r": repository, "g": gateway}.get

        selector = CandidateSelector(MagicMock(), embedder, search_returning(), graph, settings)
        candidates = selector.collect(analysis, "order", "shop")
        names = {c.qualified_name for c in candidates}

        assert names == {"com.acme.order.OrderService", "com.acme.order.OrderRepository"}
        service_candidate = next(c for c in candidates if c.id == "s")
        assert service_candidate.dependency_edges == ["r", "g"]

    def test_multi_value_domain_is_split(self, empty_graph, embedder, settings):
        analysis = RequirementAnalysis(domain="Order|Payment", summary="checkout")
        selector = CandidateSelector(MagicMock(), embedder, search_returning(), empty_graph, settings)

        selector.collect(analysis, "checkout", "shop")

        empty_graph.find_by_domain.assert_called_once_with({"order", "payment"}, "shop")

    def test_ranked_by_relevance(self):
        candidates = ranked_candidates(4)
        assert CandidateSelector.rank(reversed(candidates)) == candidates


class TestSelect:
    """Tests for LLM-backed file selection."""

    def test_single_method_fix(self, analysis, empty_graph, embedder, settings):
        match = SearchMatch(
            id="shop:com.acme.order.OrderService.process",
            score=0.93,
            symbol_name="com.acme.order.OrderService.process",
            kind=CandidateKind.METHOD,
            file_path=ORDER_SERVICE,
        )
        llm = ScriptedLLM(
            scope_selection=selection_response(
                files_to_modify=[ORDER_SERVICE],
                reasoning="The null dereference is in process()",
                estimated_complexity=2,
            )
        )
        selector = CandidateSelector(llm, embedder, search_returning(match), empty_graph, settings)
        requirement = "fix null pointer in OrderService.process"

        candidates = selector.collect(analysis, requirement, "shop")
        proposal, result = selector.select(requirement, analysis, candidates)

        assert isinstance(result, Parsed)
        assert proposal.total_file_count() == 1
        action = proposal.files_to_modify[0]
        assert action.kind == FileActionKind.MODIFY
        assert action.path == ORDER_SERVICE
        assert [m.name for m in action.target_methods] == ["process"]
        assert proposal.estimated_complexity == 2

    def test_repeated_selection_is_identical(self, analysis, empty_graph, embedder, settings):
        response = selection_response(
            files_to_modify=["src/main/java/com/acme/order/Part0.java"],
            files_to_create=["src/main/java/com/acme/order/RetryPolicy.java"],
            tests_to_update=[ORDER_SERVICE_TEST],
            reasoning="retry wrapper",
        )
        selector = CandidateSelector(
            ScriptedLLM(scope_selection=response), embedder, search_returning(), empty_graph, settings
        )
        candidates = ranked_candidates(3)

        first, _ = selector.select("Add retry", analysis, candidates)
        second, _ = selector.select("Add retry", analysis, candidates)

        assert first == second
        assert first.files_to_create[0].kind == FileActionKind.CREATE
        assert first.tests_to_update[0].reason == "Update tests"

    def test_unparsable_response_falls_back_to_top_candidates(self, analysis, empty_graph, embedder, settings):
        selector = CandidateSelector(
            ScriptedLLM(scope_selection="I think you should change a few files."),
            embedder,
            search_returning(),
            empty_graph,
            settings,
        )
        candidates = ranked_candidates(5)

        proposal, result = selector.select("Add retry", analysis, candidates)

        assert isinstance(result, Fallback)
        assert [a.path for a in proposal.files_to_modify] == [c.file_path for c in candidates[:3]]
        assert proposal.reasoning.startswith("Fallback")

    def test_generation_failure_falls_back(self, analysis, empty_graph, embedder, settings):
        selector = CandidateSelector(
            ScriptedLLM(scope_selection=TimeoutError("read timed out")),
            embedder,
            search_returning(),
            empty_graph,
            settings,
        )

        proposal, result = selector.select("Add retry", analysis, ranked_candidates(2))

        assert isinstance(result, Fallback)
        assert "read timed out" in result.reason
        assert proposal.total_file_count() == 2

    def test_feedback_reaches_prompt(self, analysis, empty_graph, embedder, settings):
        llm = ScriptedLLM(scope_selection=selection_response(files_to_modify=[ORDER_SERVICE]))
        selector = CandidateSelector(llm, embedder, search_returning(), empty_graph, settings)

        selector.select("Add retry", analysis, ranked_candidates(1), feedback="leave the repository alone")

        assert "leave the repository alone" in llm.prompts[0]

    def test_purpose_from_suffix_and_domain(self):
        candidate = Candidate(id="c", qualified_name="com.acme.order.OrderController", domain_tag="order")
        assert infer_purpose(candidate) == "REST API endpoint (domain: order)"


class TestScopeDiscoveryStage:
    """Tests for the scope discovery stage built on the selector."""

    @pytest.fixture
    def state(self, analysis) -> PipelineState:
        return PipelineState(
            conversation_id="conv-1",
            requirement_text="fix null pointer in BillingJob.run",
            repo_ref="acme/shop",
            requirement_analysis=analysis.model_copy(update={"domain": "billing"}),
        )

    def test_nothing_found_asks_about_indexing(self, make_pipeline, state):
        llm = ScriptedLLM()
        stage = make_scope_discovery_node(make_pipeline(llm))

        partial = stage(state)
        decision = partial["last_decision"]

        assert decision.kind == DecisionKind.ASK_HUMAN
        assert "indexed" in decision.explanation
        assert "domain" in decision.explanation
        assert partial["scope_proposal"] is None
        assert llm.calls == []

    def test_proposal_is_sent_for_approval(self, make_pipeline, state, analysis, collaborators):
        collaborators["search"].search.return_value = [
            SearchMatch(id="m", score=0.93, symbol_name="com.acme.order.OrderService.process")
        ]
        llm = ScriptedLLM(scope_selection=selection_response(files_to_modify=[ORDER_SERVICE]))
        stage = make_scope_discovery_node(make_pipeline(llm))

        partial = stage(state.model_copy(update={"requirement_analysis": analysis}))

        assert partial["last_decision"].kind == DecisionKind.ASK_HUMAN
        assert "**Scope Proposal**" in partial["last_decision"].explanation
        assert partial["scope_proposal"].files_to_modify[0].path == ORDER_SERVICE

    def test_oversized_scope_asks_to_split(self, make_pipeline, state, analysis):
        paths = [f"src/main/java/com/acme/order/Part{i}.java" for i in range(8)]
        llm = ScriptedLLM(scope_selection=selection_response(files_to_modify=paths))
        stage = make_scope_discovery_node(make_pipeline(llm))

        partial = stage(state.model_copy(update={"requirement_analysis": analysis}))

        assert partial["last_decision"].kind == DecisionKind.ASK_HUMAN
        assert "Scope Too Large" in partial["last_decision"].explanation
        assert "split" in partial["last_decision"].explanation
