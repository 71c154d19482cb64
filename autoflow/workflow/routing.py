"""Branch points of the AutoFlow workflow that depend on more than the last decision."""

from autoflow.pipeline.decision import DecisionKind
from autoflow.pipeline.routing import PAUSE_STAGE
from autoflow.pipeline.state import PipelineState
from autoflow.stages.common import (
    BUILD_VALIDATION,
    CHANGE_DESCRIPTION,
    CHAT_RESPONSE,
    CODE_GENERATION,
    CODE_INDEXING,
    CONTEXT_ASSEMBLY,
    DOCUMENTATION,
    LOG_ANALYSIS,
    PUBLISH,
    REQUIREMENT_ANALYSIS,
    REVIEW,
    SCOPE_APPROVAL,
    SCOPE_DISCOVERY,
    TEST_EXECUTION,
    wants_skip,
)

CLASSIFICATION_DESTINATIONS = (CHAT_RESPONSE, LOG_ANALYSIS, CODE_INDEXING, PAUSE_STAGE)
INDEX_DESTINATIONS = (DOCUMENTATION, SCOPE_DISCOVERY, SCOPE_APPROVAL, PAUSE_STAGE)

# Stages that are simply run again with the human's reply in the history
_RERUN_ON_RESUME = {
    REQUIREMENT_ANALYSIS,
    LOG_ANALYSIS,
    CODE_INDEXING,
    CONTEXT_ASSEMBLY,
    CODE_GENERATION,
    CHANGE_DESCRIPTION,
    PUBLISH,
}

# Where a "skip" reply continues after a failure pause
_SKIP_TARGETS = {
    BUILD_VALIDATION: TEST_EXECUTION,
    TEST_EXECUTION: REVIEW,
    REVIEW: CHANGE_DESCRIPTION,
}


def route_after_analysis(state: PipelineState) -> str:
    """Classification router: pick the branch for the analyzed request.

    Casual conversation gets a chat reply, read-only questions go to
    indexing and then documentation, code changes go through log analysis
    when logs were attached.
    """
    decision = state.last_decision
    if decision is None or decision.kind != DecisionKind.PROCEED:
        return PAUSE_STAGE

    analysis = state.requirement_analysis
    if analysis is None:
        return CODE_INDEXING
    if analysis.is_casual_chat():
        return CHAT_RESPONSE
    if not analysis.needs_code_context():
        return CHAT_RESPONSE
    if analysis.is_read_only():
        return CODE_INDEXING
    return LOG_ANALYSIS if state.has_logs() else CODE_INDEXING


def route_after_indexing(state: PipelineState) -> str:
    """Index router: documentation for read-only requests, else scope discovery or approval."""
    decision = state.last_decision
    if decision is None or decision.kind == DecisionKind.ERROR:
        return PAUSE_STAGE

    analysis = state.requirement_analysis
    if analysis is not None and analysis.is_read_only():
        return DOCUMENTATION
    if decision.kind != DecisionKind.PROCEED:
        return PAUSE_STAGE
    if state.scope_proposal is not None and state.user_just_responded():
        return SCOPE_APPROVAL
    return SCOPE_DISCOVERY


class ResumeRouter:
    """Pick the stage a run continues from.

    Fresh runs start at requirement analysis. A run resumed with a human
    reply continues at, or right after, the stage that paused it.
    """

    def __init__(self, max_scope_files: int):
        self.max_scope_files = max_scope_files

    @property
    def destinations(self) -> tuple[str, ...]:
        return (
            REQUIREMENT_ANALYSIS,
            SCOPE_DISCOVERY,
            SCOPE_APPROVAL,
            *sorted(_RERUN_ON_RESUME - {REQUIREMENT_ANALYSIS}),
            *sorted(set(_SKIP_TARGETS.values()) - _RERUN_ON_RESUME),
        )

    def __call__(self, state: PipelineState) -> str:
        paused = state.paused_stage
        if not paused or not state.user_just_responded():
            return REQUIREMENT_ANALYSIS

        reply = state.last_user_message()

        if paused == SCOPE_DISCOVERY:
            proposal = state.scope_proposal
            if proposal is None:
                # Nothing matched; the reply may correct the domain, so analyze again
                return REQUIREMENT_ANALYSIS
            if proposal.total_file_count() > self.max_scope_files:
                return SCOPE_DISCOVERY
            return SCOPE_APPROVAL

        if paused == SCOPE_APPROVAL:
            return SCOPE_APPROVAL

        if paused in _SKIP_TARGETS:
            return _SKIP_TARGETS[paused] if wants_skip(reply) else CODE_GENERATION

        if paused in _RERUN_ON_RESUME:
            return paused

        return REQUIREMENT_ANALYSIS
