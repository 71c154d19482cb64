"""Tests for pipeline state, decisions and decision routing."""

import pytest
from pydantic import ValidationError

from autoflow.pipeline import (
    PAUSE_STAGE,
    TERMINAL,
    Decision,
    DecisionKind,
    DecisionRouter,
    PipelineState,
    PipelineStatus,
    update,
)
from autoflow.schema import ChatMessage, ScopeProposal


@pytest.fixture
def state() -> PipelineState:
    return PipelineState(
        conversation_id="conv-1",
        requirement_text="Add retry to order submission",
        repo_ref="https://github.com/acme/shop",
        conversation_history=[ChatMessage(role="user", content="Add retry to order submission")],
    )


class TestUpdate:
    """Tests for the state merge function."""

    def test_merges_fields(self, state):
        merged = update(state, {"build_attempt": 2, "current_stage": "build_validator"})

        assert merged.build_attempt == 2
        assert merged.current_stage == "build_validator"
        assert merged.requirement_text == state.requirement_text

    def test_does_not_mutate_input(self, state):
        update(state, {"build_attempt": 1})
        assert state.build_attempt == 0

    def test_unknown_field_rejected(self, state):
        with pytest.raises(KeyError, match="buildAttempts"):
            update(state, {"buildAttempts": 1})

    def test_invalid_value_rejected(self, state):
        with pytest.raises(ValidationError):
            update(state, {"build_attempt": -1})


class TestRoundTrip:
    """Tests for map serialization."""

    def test_round_trip_keeps_control_fields(self, state):
        saved = update(
            state,
            {
                "status": PipelineStatus.PAUSED,
                "last_decision": Decision.ask_human("Approve?", questions=["yes", "no"]),
                "build_attempt": 2,
                "review_attempt": 1,
                "paused_stage": "scope_discovery",
                "scope_proposal": ScopeProposal(reasoning="small change"),
            },
        )

        restored = PipelineState.from_map(saved.to_map())

        assert restored.status == saved.status
        assert restored.last_decision == saved.last_decision
        assert restored.build_attempt == 2
        assert restored.review_attempt == 1
        assert restored.paused_stage == "scope_discovery"
        assert restored.scope_proposal.reasoning == "small change"

    def test_map_is_json_safe(self, state):
        data = state.to_map()
        assert data["status"] == "running"
        assert isinstance(data["conversation_history"][0]["timestamp"], str)


class TestConversationHelpers:
    """Tests for history helpers."""

    def test_first_message_is_not_a_reply(self, state):
        assert state.user_just_responded() is False

    def test_reply_after_assistant_message(self, state):
        history = state.with_message("assistant", "Approve?")
        history.append(ChatMessage(role="user", content="yes"))
        replied = update(state, {"conversation_history": history})

        assert replied.user_just_responded() is True
        assert replied.last_user_message() == "yes"

    def test_with_message_returns_new_list(self, state):
        history = state.with_message("assistant", "hi")
        assert len(history) == 2
        assert len(state.conversation_history) == 1

    def test_blank_logs_are_not_logs(self, state):
        assert update(state, {"logs_pasted": "   "}).has_logs() is False
        assert update(state, {"logs_pasted": "NullPointerException"}).has_logs() is True


class TestDecision:
    """Tests for the decision protocol."""

    def test_factories_set_kind(self):
        assert Decision.proceed().kind == DecisionKind.PROCEED
        assert Decision.retry("again").kind == DecisionKind.RETRY
        assert Decision.ask_human("why?").kind == DecisionKind.ASK_HUMAN
        assert Decision.error("broken").kind == DecisionKind.ERROR
        assert Decision.end().kind == DecisionKind.END

    def test_decisions_are_immutable(self):
        decision = Decision.proceed("ok")
        with pytest.raises(ValidationError):
            decision.explanation = "changed"

    def test_needs_human(self):
        assert Decision.ask_human("?").needs_human
        assert Decision.error("!").needs_human
        assert not Decision.proceed().needs_human


class TestDecisionRouter:
    """Tests for decision-to-stage routing."""

    @pytest.fixture
    def router(self) -> DecisionRouter:
        return DecisionRouter("test_runner", on_retry="code_generator")

    def test_routes(self, state, router):
        assert router(update(state, {"last_decision": Decision.proceed()})) == "test_runner"
        assert router(update(state, {"last_decision": Decision.retry("x")})) == "code_generator"
        assert router(update(state, {"last_decision": Decision.ask_human("x")})) == PAUSE_STAGE
        assert router(update(state, {"last_decision": Decision.error("x")})) == PAUSE_STAGE
        assert router(update(state, {"last_decision": Decision.end()})) == TERMINAL

    def test_missing_decision_pauses(self, state, router):
        assert router(state) == PAUSE_STAGE

    def test_retry_without_target_pauses(self, state):
        router = DecisionRouter("test_runner")
        assert router(update(state, {"last_decision": Decision.retry("x")})) == PAUSE_STAGE

    def test_destinations(self, router):
        assert set(router.destinations) == {"test_runner", "code_generator", PAUSE_STAGE, TERMINAL}
