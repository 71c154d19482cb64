"""Tests for the pipeline graph engine."""

import pytest

from autoflow.pipeline import (
    PAUSE_STAGE,
    TERMINAL,
    Decision,
    DecisionKind,
    DecisionRouter,
    GraphCompileError,
    PipelineGraph,
    PipelineState,
    PipelineStatus,
)
from autoflow.stages import pause


@pytest.fixture
def initial_state() -> PipelineState:
    return PipelineState(conversation_id="conv-1", requirement_text="Add retry", repo_ref="acme/shop")


def proceed(state):
    return {"last_decision": Decision.proceed("step done")}


def finish(state):
    return {"status": PipelineStatus.COMPLETED, "last_decision": Decision.end("all done")}


def ask(state):
    return {"last_decision": Decision.ask_human("Which file?")}


def linear_graph(*stages) -> PipelineGraph:
    """first -> second -> ... with the last stage ending the run."""
    graph = PipelineGraph()
    names = [name for name, _ in stages]
    for name, fn in stages:
        graph.add_stage(name, fn)
    graph.add_stage(PAUSE_STAGE, pause)
    for name, following in zip(names, names[1:] + [TERMINAL]):
        graph.add_conditional_edge(name, DecisionRouter(following))
    graph.add_edge(PAUSE_STAGE, TERMINAL)
    graph.set_entry(names[0])
    return graph


class TestCompile:
    """Tests for graph validation at compile time."""

    def test_empty_graph_rejected(self):
        with pytest.raises(GraphCompileError):
            PipelineGraph().compile()

    def test_unknown_destination_rejected(self):
        graph = PipelineGraph().add_stage("first", proceed).add_edge("first", "missing")
        with pytest.raises(GraphCompileError, match="missing"):
            graph.compile()

    def test_stage_without_exit_rejected(self):
        graph = PipelineGraph().add_stage("first", proceed).add_stage("second", finish)
        graph.add_edge("first", "second")
        with pytest.raises(GraphCompileError, match="second"):
            graph.compile()

    def test_duplicate_stage_rejected(self):
        graph = PipelineGraph().add_stage("first", proceed)
        with pytest.raises(GraphCompileError, match="Duplicate"):
            graph.add_stage("first", finish)

    def test_stage_named_like_state_field_rejected(self):
        with pytest.raises(GraphCompileError, match="state field"):
            PipelineGraph().add_stage("review", proceed)

    def test_missing_entry_stage_rejected(self):
        graph = PipelineGraph().add_stage("first", proceed).add_edge("first", TERMINAL)
        graph.set_entry("nowhere")
        with pytest.raises(GraphCompileError, match="Entry"):
            graph.compile()

    def test_ambiguous_entry_rejected(self):
        graph = PipelineGraph().add_stage("first", proceed).add_stage("second", proceed)
        graph.add_edge("first", TERMINAL).add_edge("second", TERMINAL)
        with pytest.raises(GraphCompileError, match="entry"):
            graph.compile()

    def test_entry_inferred_from_single_root(self):
        graph = PipelineGraph().add_stage("first", proceed).add_stage("second", finish)
        graph.add_edge("first", "second").add_edge("second", TERMINAL)
        assert graph.compile().entry == "first"

    def test_second_exit_rejected(self):
        graph = PipelineGraph().add_stage("first", proceed).add_edge("first", TERMINAL)
        with pytest.raises(GraphCompileError, match="outgoing"):
            graph.add_edge("first", TERMINAL)

    def test_conditional_edge_needs_destinations(self):
        graph = PipelineGraph().add_stage("first", proceed)
        with pytest.raises(GraphCompileError, match="destinations"):
            graph.add_conditional_edge("first", lambda state: TERMINAL)


class TestRun:
    """Tests for driving a compiled pipeline."""

    def test_runs_stages_in_order_until_end(self, initial_state):
        visited = []

        def first(state):
            visited.append("first")
            return proceed(state)

        def second(state):
            visited.append("second")
            return finish(state)

        compiled = linear_graph(("first", first), ("second", second)).compile()
        final = compiled.run(initial_state)

        assert visited == ["first", "second"]
        assert final.status == PipelineStatus.COMPLETED
        assert final.current_stage == "second"
        assert final.last_decision.kind == DecisionKind.END

    def test_ask_human_pauses(self, initial_state):
        compiled = linear_graph(("first", ask), ("second", finish)).compile()
        final = compiled.run(initial_state)

        assert final.status == PipelineStatus.PAUSED
        assert final.paused_stage == "first"
        assert final.conversation_history[-1].content == "Which file?"

    def test_stage_exception_becomes_failed_state(self, initial_state):
        def explode(state):
            raise RuntimeError("disk on fire")

        compiled = linear_graph(("first", proceed), ("second", explode)).compile()
        final = compiled.run(initial_state)

        assert final.status == PipelineStatus.FAILED
        assert final.current_stage == "second"
        assert final.last_decision.kind == DecisionKind.ERROR
        assert "disk on fire" in final.last_decision.explanation

    def test_unknown_state_key_becomes_failed_state(self, initial_state):
        compiled = linear_graph(("first", lambda state: {"not_a_field": 1})).compile()
        final = compiled.run(initial_state)

        assert final.status == PipelineStatus.FAILED
        assert "not_a_field" in final.last_decision.explanation

    def test_undeclared_route_fails_run(self, initial_state):
        graph = PipelineGraph().add_stage("first", proceed).add_stage("second", finish)
        graph.add_conditional_edge("first", lambda state: "elsewhere", ["second"])
        graph.add_edge("second", TERMINAL)

        final = graph.compile().run(initial_state)

        assert final.status == PipelineStatus.FAILED
        assert final.last_decision.kind == DecisionKind.ERROR

    def test_recursion_limit_fails_run(self, initial_state):
        graph = PipelineGraph().add_stage("loop", proceed).add_stage(PAUSE_STAGE, pause)
        graph.add_conditional_edge("loop", DecisionRouter("loop"))
        graph.add_edge(PAUSE_STAGE, TERMINAL)
        graph.set_entry("loop")

        final = graph.compile(recursion_limit=5).run(initial_state)

        assert final.status == PipelineStatus.FAILED
        assert final.last_decision.kind == DecisionKind.ERROR

    def test_stage_may_return_full_state(self, initial_state):
        def whole(state):
            return state.model_copy(
                update={"status": PipelineStatus.COMPLETED, "last_decision": Decision.end("done")}
            )

        final = linear_graph(("whole", whole)).compile().run(initial_state)
        assert final.status == PipelineStatus.COMPLETED

    def test_compiled_pipeline_is_reusable(self, initial_state):
        compiled = linear_graph(("first", proceed), ("second", finish)).compile()

        first_run = compiled.run(initial_state)
        second_run = compiled.run(initial_state.model_copy(update={"conversation_id": "conv-2"}))

        assert first_run.conversation_id == "conv-1"
        assert second_run.conversation_id == "conv-2"
        assert initial_state.status == PipelineStatus.RUNNING
        assert second_run.status == PipelineStatus.COMPLETED


class TestProgress:
    """Tests for progress notifications."""

    def test_one_event_per_stage(self, initial_state):
        events = []
        compiled = linear_graph(("first", proceed), ("second", finish)).compile(
            progress_order=["first", "second"]
        )
        compiled.run(initial_state, progress_sink=events.append)

        assert [e.stage_name for e in events] == ["first", "second"]
        assert events[0].percent_complete == 50
        assert events[-1].percent_complete == 100
        assert events[0].message == "step done"
        assert all(e.conversation_id == "conv-1" for e in events)

    def test_failing_sink_does_not_stop_run(self, initial_state):
        def broken_sink(event):
            raise RuntimeError("socket closed")

        compiled = linear_graph(("first", proceed), ("second", finish)).compile()
        final = compiled.run(initial_state, progress_sink=broken_sink)

        assert final.status == PipelineStatus.COMPLETED
