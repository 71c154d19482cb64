"""Entry and pause stages."""

import logging

from autoflow.pipeline.decision import DecisionKind
from autoflow.pipeline.state import PipelineState, PipelineStatus

logger = logging.getLogger(__name__)


def intake(state: PipelineState) -> dict:
    """Entry stage; the router after it picks where a fresh or resumed run continues."""
    if state.paused_stage and state.user_just_responded():
        logger.info("[%s] resuming after pause at %s", state.conversation_id, state.paused_stage)
    return {}


def pause(state: PipelineState) -> dict:
    """Suspend the run and hand the last decision's message to the human.

    ERROR decisions end the run as FAILED; everything else as PAUSED. The
    stage that produced the decision is recorded so that a resume can pick
    up from it.
    """
    decision = state.last_decision
    failed = decision is not None and decision.kind == DecisionKind.ERROR
    explanation = decision.explanation if decision and decision.explanation else "Waiting for your input."

    logger.info(
        "[%s] %s at %s",
        state.conversation_id,
        "failed" if failed else "paused",
        state.current_stage,
    )
    return {
        "paused_stage": state.current_stage,
        "conversation_history": state.with_message("assistant", explanation),
        "status": PipelineStatus.FAILED if failed else PipelineStatus.PAUSED,
    }
